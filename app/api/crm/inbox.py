from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_account
from app.models.crm.enums import ConversationStatus
from app.schemas.crm.conversation import ConversationRead, ConversationUpdate, MessageRead
from app.services.crm.inbox.conversations import conversations as conversations_service
from app.services.crm.inbox.messages import messages as messages_service
from app.services.crm.inbox.pages import pages as pages_service

router = APIRouter(prefix="/inbox", tags=["inbox"])


@router.get("/pages/{page_id}/conversations", response_model=list[ConversationRead])
def list_local_conversations(
    page_id: str,
    status: ConversationStatus | None = None,
    is_active: bool | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    account_id: str = Depends(require_account),
):
    page = pages_service.get_owned(db, account_id, page_id)
    return conversations_service.list_for_page(db, page.page_id, status, is_active, limit, offset)


@router.get("/conversations/{conversation_id}", response_model=ConversationRead)
def get_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    account_id: str = Depends(require_account),
):
    return conversations_service.get(db, conversation_id, account_id)


@router.patch("/conversations/{conversation_id}", response_model=ConversationRead)
def update_conversation(
    conversation_id: str,
    payload: ConversationUpdate,
    db: Session = Depends(get_db),
    account_id: str = Depends(require_account),
):
    conversation = conversations_service.get(db, conversation_id, account_id)
    conversations_service.update(db, conversation, payload)
    db.commit()
    db.refresh(conversation)
    return conversation


@router.post("/conversations/{conversation_id}/read", response_model=ConversationRead)
def mark_conversation_read(
    conversation_id: str,
    db: Session = Depends(get_db),
    account_id: str = Depends(require_account),
):
    conversation = conversations_service.get(db, conversation_id, account_id)
    conversations_service.mark_read(db, conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


@router.get("/conversations/{conversation_id}/messages", response_model=list[MessageRead])
def list_local_messages(
    conversation_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    account_id: str = Depends(require_account),
):
    conversation = conversations_service.get(db, conversation_id, account_id)
    return messages_service.list(db, conversation, limit, offset)
