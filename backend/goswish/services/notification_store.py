import logging
from typing import List, Optional

from goswish.models import Notification, User
from goswish.services.document_store import Collection, DocumentStore, document_store
from goswish.services.push_sender import PushSender, push_sender
from goswish.services.repository import Repository

logger = logging.getLogger(__name__)


class NotificationStore:
    def __init__(self, store: DocumentStore, sender: PushSender):
        self._notifications = Repository(store, Collection.NOTIFICATIONS, Notification)
        self._users = Repository(store, Collection.USERS, User)
        self._sender = sender

    def register_device_token(self, user_id: str, device_token: str) -> bool:
        token = device_token.strip()
        user = self._users.get(user_id)
        if not token or user is None:
            return False
        if token not in user.device_tokens:
            self._users.update(user_id, device_tokens=[*user.device_tokens, token])
        return True

    def create(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str = "",
        related_id: Optional[str] = None,
    ) -> Notification:
        record = self._notifications.add(
            Notification(user_id=user_id, type=type, title=title, message=message, related_id=related_id)
        )
        self._push(record)
        return record

    def _push(self, record: Notification) -> None:
        user = self._users.get(record.user_id)
        if user is None or not user.device_tokens:
            return
        rejected = self._sender.send(
            tokens=list(user.device_tokens),
            title=record.title,
            body=record.message,
            data={
                "notification_id": record.id,
                "type": record.type,
                "related_id": record.related_id or "",
            },
        )
        if rejected:
            logger.info("Dropping %d rejected device token(s) for %s", len(rejected), user.id)
            self._users.update(user.id, device_tokens=[t for t in user.device_tokens if t not in rejected])

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: Optional[int] = None) -> List[Notification]:
        rows = self._notifications.query("user_id", user_id)
        if unread_only:
            rows = [n for n in rows if not n.read]
        rows.sort(key=lambda n: n.created_at or "", reverse=True)
        return rows if limit is None else rows[:limit]

    def list_for_booking(self, booking_id: str, type: Optional[str] = None) -> List[Notification]:
        rows = self._notifications.query("related_id", booking_id)
        if type is not None:
            rows = [n for n in rows if n.type == type]
        return rows

    def mark_read(self, user_id: str, notification_id: str) -> Optional[Notification]:
        record = self._notifications.get(notification_id)
        if record is None or record.user_id != user_id:
            return None
        return self._notifications.update(notification_id, read=True)

    def mark_all_read(self, user_id: str) -> int:
        unread = self.list_for_user(user_id, unread_only=True)
        for record in unread:
            self._notifications.update(record.id, read=True)
        return len(unread)

    def delete_job_offers(self, booking_id: str) -> int:
        offers = self.list_for_booking(booking_id, type="job_offer")
        for offer in offers:
            self._notifications.delete(offer.id)
        logger.info("Deleted %d stale job offers for booking %s", len(offers), booking_id)
        return len(offers)


notification_store = NotificationStore(document_store, push_sender)
