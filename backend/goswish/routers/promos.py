from fastapi import APIRouter, Depends

from goswish.auth import Session, require_role, require_session
from goswish.models import PromoCode, PromoCreateRequest, PromoValidateRequest, PromoValidation
from goswish.routers.errors import raise_store_http_error
from goswish.services.document_store import StoreError
from goswish.services.promos import promo_store

router = APIRouter(prefix="/promos", tags=["promos"])


@router.post("", response_model=PromoCode)
def create_promo(payload: PromoCreateRequest, session: Session = Depends(require_session)):
    require_role(session, "admin")
    try:
        return promo_store.create(payload)
    except StoreError as exc:
        raise_store_http_error(exc)


@router.get("", response_model=list[PromoCode])
def list_promos(session: Session = Depends(require_session)):
    require_role(session, "admin")
    return promo_store.promos.list()


@router.post("/validate", response_model=PromoValidation)
def validate_promo(payload: PromoValidateRequest, session: Session = Depends(require_session)):
    require_role(session, "customer")
    return promo_store.validate(payload.code, session.user_id, payload.service_type_id, payload.amount)
