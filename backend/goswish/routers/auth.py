from fastapi import APIRouter, Depends, HTTPException

from goswish.auth import Session, require_session, session_registry
from goswish.models import AuthLoginRequest, AuthLoginResponse, AuthMeResponse, RegisterRequest
from goswish.routers.errors import raise_store_http_error
from goswish.services.document_store import StoreError
from goswish.services.profiles import profile_store

router = APIRouter(prefix="/auth", tags=["auth"])


def _login_response(session) -> AuthLoginResponse:
    return AuthLoginResponse(
        access_token=session.token,
        user_id=session.user_id,
        role=session.role,
        expires_at=session.expires_at,
    )


@router.post("/register", response_model=AuthLoginResponse)
def register(payload: RegisterRequest):
    try:
        user = profile_store.register_user(payload)
    except StoreError as exc:
        raise_store_http_error(exc)
    return _login_response(session_registry.open(user_id=user.id, role=user.role))


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    user = profile_store.authenticate(payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _login_response(session_registry.open(user_id=user.id, role=user.role))


@router.post("/logout", response_model=dict)
def logout(session: Session = Depends(require_session)):
    session_registry.close(session.token)
    return {"status": "ok"}


@router.get("/me", response_model=AuthMeResponse)
def me(session: Session = Depends(require_session)):
    return AuthMeResponse(user_id=session.user_id, role=session.role, session_started_at=session.created_at)
