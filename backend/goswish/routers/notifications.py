from fastapi import APIRouter, Depends, HTTPException, Query

from goswish.auth import Session, require_session
from goswish.models import DeviceTokenRegisterRequest, Notification
from goswish.services.notification_store import notification_store

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[Notification])
def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    session: Session = Depends(require_session),
):
    return notification_store.list_for_user(user_id=session.user_id, unread_only=unread_only, limit=limit)


@router.post("/register-device", response_model=dict)
def register_device(payload: DeviceTokenRegisterRequest, session: Session = Depends(require_session)):
    if not notification_store.register_device_token(user_id=session.user_id, device_token=payload.device_token):
        raise HTTPException(status_code=400, detail="Device token is required")
    return {"status": "ok"}


@router.post("/read-all", response_model=dict)
def mark_all_read(session: Session = Depends(require_session)):
    return {"updated": notification_store.mark_all_read(session.user_id)}


@router.post("/{notification_id}/read", response_model=Notification)
def mark_notification_read(notification_id: str, session: Session = Depends(require_session)):
    updated = notification_store.mark_read(user_id=session.user_id, notification_id=notification_id)
    if not updated:
        raise HTTPException(status_code=404, detail="Notification not found")
    return updated
