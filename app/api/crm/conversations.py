from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_graph_client, require_account
from app.schemas.crm.conversation import EnrichedConversation, FetchedMessage, SendMessageRequest, SendResult
from app.services.crm.inbox.fetcher import fetcher
from app.services.crm.inbox.outbound import relay
from app.services.crm.inbox.pages import pages as pages_service
from app.services.meta_graph import MetaGraphClient

router = APIRouter(prefix="/facebook", tags=["facebook-conversations"])


@router.get("/pages/{page_id}/conversations", response_model=list[EnrichedConversation])
def list_page_conversations(
    page_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    graph: MetaGraphClient = Depends(get_graph_client),
    account_id: str = Depends(require_account),
):
    page = pages_service.get_owned(db, account_id, page_id)
    conversations = fetcher.list_conversations(graph, page, limit=limit)
    pages_service.mark_synced(db, page)
    return conversations


@router.get("/conversations/{conversation_id}/messages", response_model=list[FetchedMessage])
def list_conversation_messages(
    conversation_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    db: Session = Depends(get_db),
    graph: MetaGraphClient = Depends(get_graph_client),
    account_id: str = Depends(require_account),
):
    credentials = pages_service.list_connected(db, account_id)
    return fetcher.list_messages(graph, credentials, conversation_id, limit=limit)


@router.post("/conversations/{conversation_id}/messages", response_model=SendResult)
def send_conversation_message(
    conversation_id: str,
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    graph: MetaGraphClient = Depends(get_graph_client),
    account_id: str = Depends(require_account),
):
    credentials = pages_service.list_connected(db, account_id)
    return relay.send(db, graph, credentials, conversation_id, payload.text, agent_id=payload.agent_id or account_id)
