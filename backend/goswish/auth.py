import base64
import hashlib
import hmac
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Dict, Optional

from fastapi import Header, HTTPException, status


def _env_positive_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


TOKEN_TTL_HOURS = _env_positive_int("AUTH_TOKEN_TTL_HOURS", 24)
_AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def create_access_token(user_id: str) -> tuple[str, str]:
    expiry = datetime.now(timezone.utc) + timedelta(hours=TOKEN_TTL_HOURS)
    payload = f"{user_id}|{int(expiry.timestamp())}|{os.urandom(6).hex()}".encode("utf-8")
    sig = hmac.new(_AUTH_SECRET.encode("utf-8"), payload, hashlib.sha256).digest()
    return f"{_b64url(payload)}.{_b64url(sig)}", expiry.isoformat()


def verify_access_token(token: str) -> Optional[str]:
    try:
        payload_part, sig_part = token.split(".", 1)
        payload = _b64urldecode(payload_part)
        sent_sig = _b64urldecode(sig_part)
    except ValueError:
        return None
    expected_sig = hmac.new(_AUTH_SECRET.encode("utf-8"), payload, hashlib.sha256).digest()
    if not hmac.compare_digest(sent_sig, expected_sig):
        return None
    try:
        user_id, expiry_ts, _ = payload.decode("utf-8").split("|", 2)
        expired = datetime.now(timezone.utc).timestamp() > int(expiry_ts)
    except ValueError:
        return None
    return None if expired else user_id


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


@dataclass(frozen=True)
class Session:
    """Who is calling: opened on login, closed on logout."""

    token: str
    user_id: str
    role: str
    created_at: str
    expires_at: str


class SessionRegistry:
    def __init__(self):
        self._lock = Lock()
        self._sessions: Dict[str, Session] = {}

    def open(self, user_id: str, role: str) -> Session:
        token, expires_at = create_access_token(user_id)
        session = Session(
            token=token,
            user_id=user_id,
            role=role,
            created_at=datetime.now(timezone.utc).isoformat(),
            expires_at=expires_at,
        )
        with self._lock:
            self._sessions[token] = session
        return session

    def resolve(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        with self._lock:
            session = self._sessions.get(token)
        if session is None:
            return None
        if verify_access_token(token) != session.user_id:
            self.close(token)
            return None
        return session

    def close(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def close_user(self, user_id: str) -> int:
        with self._lock:
            tokens = [t for t, s in self._sessions.items() if s.user_id == user_id]
            for token in tokens:
                del self._sessions[token]
        return len(tokens)


session_registry = SessionRegistry()


def require_session(authorization: Optional[str] = Header(default=None)) -> Session:
    session = session_registry.resolve(parse_bearer_token(authorization))
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing bearer token")
    return session


def require_role(session: Session, *roles: str) -> None:
    if session.role not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Requires role: {', '.join(roles)}")
