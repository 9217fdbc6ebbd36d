import logging
from typing import List, Optional

from goswish.models import Booking, Conversation, Message
from goswish.services.document_store import (
    Collection,
    DocumentNotFoundError,
    DocumentStore,
    StoreConflictError,
    StorePermissionError,
    StoreValidationError,
    document_store,
    utc_now,
)
from goswish.services.repository import Repository

logger = logging.getLogger(__name__)

LOCKED_BOOKING_STATUSES = {"approved", "cancelled", "disputed"}


class ConversationStore:
    """One message thread per booking, closed once the booking ends."""

    def __init__(self, store: DocumentStore):
        self.conversations = Repository(store, Collection.CONVERSATIONS, Conversation)
        self.messages = Repository(store, Collection.MESSAGES, Message)
        self.bookings = Repository(store, Collection.BOOKINGS, Booking)

    def get_for_booking(self, booking_id: str) -> Optional[Conversation]:
        matches = self.conversations.query("booking_id", booking_id)
        return matches[0] if matches else None

    def get_or_create_for_booking(self, booking: Booking, participant_ids: List[str]) -> Conversation:
        existing = self.get_for_booking(booking.id)
        if existing is not None:
            return existing
        if booking.status in LOCKED_BOOKING_STATUSES:
            raise StoreConflictError(f"Cannot open a conversation for a booking that is {booking.status}")
        return self.conversations.add(
            Conversation(booking_id=booking.id, participant_ids=[p for p in participant_ids if p])
        )

    def list_for_user(self, user_id: str) -> List[Conversation]:
        rows = [c for c in self.conversations.list() if user_id in c.participant_ids]
        rows.sort(key=lambda c: c.last_message_time or c.created_at or "", reverse=True)
        return rows

    def list_messages(self, conversation_id: str) -> List[Message]:
        rows = self.messages.query("conversation_id", conversation_id)
        rows.sort(key=lambda m: m.created_at or "")
        return rows

    def send_message(self, conversation_id: str, sender_id: str, content: str) -> Message:
        text = content.strip()
        if not text:
            raise StoreValidationError("Message content is required")
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise DocumentNotFoundError("Conversation not found")
        if sender_id not in conversation.participant_ids:
            raise StorePermissionError("Sender is not part of this conversation")
        booking = self.bookings.get(conversation.booking_id)
        if conversation.status == "closed" or (booking and booking.status in LOCKED_BOOKING_STATUSES):
            raise StoreConflictError("This conversation is locked")
        message = self.messages.add(Message(conversation_id=conversation_id, sender_id=sender_id, content=text))
        self.conversations.update(conversation_id, last_message=text, last_message_time=message.created_at)
        return message

    def lock_for_booking(self, booking_id: str) -> Optional[Conversation]:
        conversation = self.get_for_booking(booking_id)
        if conversation is None or conversation.status == "closed":
            return conversation
        logger.info("Locking conversation %s for booking %s", conversation.id, booking_id)
        return self.conversations.update(conversation.id, status="closed", closed_at=utc_now())


conversation_store = ConversationStore(document_store)
