from fastapi import APIRouter, Depends, HTTPException

from goswish.auth import Session, require_session
from goswish.models import Conversation, Message, MessageSendRequest
from goswish.routers.errors import raise_store_http_error
from goswish.services.conversations import conversation_store
from goswish.services.document_store import StoreError

router = APIRouter(prefix="/conversations", tags=["messages"])


def _conversation_for(conversation_id: str, session: Session) -> Conversation:
    conversation = conversation_store.conversations.get(conversation_id)
    if conversation is None or session.user_id not in conversation.participant_ids:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.get("", response_model=list[Conversation])
def list_conversations(session: Session = Depends(require_session)):
    return conversation_store.list_for_user(session.user_id)


@router.get("/{conversation_id}/messages", response_model=list[Message])
def list_messages(conversation_id: str, session: Session = Depends(require_session)):
    conversation = _conversation_for(conversation_id, session)
    return conversation_store.list_messages(conversation.id)


@router.post("/{conversation_id}/messages", response_model=Message)
def send_message(conversation_id: str, payload: MessageSendRequest, session: Session = Depends(require_session)):
    conversation = _conversation_for(conversation_id, session)
    try:
        return conversation_store.send_message(conversation.id, session.user_id, payload.content)
    except StoreError as exc:
        raise_store_http_error(exc)
