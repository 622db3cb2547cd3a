from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_graph_client, require_account
from app.schemas.crm.page import AvailablePage, AvailablePagesRequest, ConnectPageRequest, PageRead
from app.services.crm.inbox.pages import pages as pages_service
from app.services.meta_graph import MetaGraphClient

router = APIRouter(prefix="/facebook/pages", tags=["facebook-pages"])


@router.post("/available", response_model=list[AvailablePage])
def list_available_pages(
    payload: AvailablePagesRequest,
    graph: MetaGraphClient = Depends(get_graph_client),
    account_id: str = Depends(require_account),
):
    return pages_service.list_available(graph, payload.access_token)


@router.post("/connect", response_model=PageRead, status_code=status.HTTP_200_OK)
def connect_page(
    payload: ConnectPageRequest,
    db: Session = Depends(get_db),
    graph: MetaGraphClient = Depends(get_graph_client),
    account_id: str = Depends(require_account),
):
    return pages_service.connect(db, graph, account_id, payload.access_token, payload.page_id)


@router.get("", response_model=list[PageRead])
def list_connected_pages(db: Session = Depends(get_db), account_id: str = Depends(require_account)):
    return pages_service.list_connected(db, account_id)


@router.delete("/{page_id}", status_code=status.HTTP_204_NO_CONTENT)
def disconnect_page(page_id: str, db: Session = Depends(get_db), account_id: str = Depends(require_account)):
    pages_service.disconnect(db, account_id, page_id)
