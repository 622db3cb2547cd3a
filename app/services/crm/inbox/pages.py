"""Facebook Page credentials: connect, list, disconnect and per-request lookup.

Credentials are always read from the database for the request at hand; a
reconnect that re-issues the page token is visible to the next lookup.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from app.models.crm.page import PageCredential
from app.services.common import now_utc
from app.services.crm.inbox import cache as inbox_cache
from app.services.crm.inbox.context import get_inbox_logger
from app.services.crm.inbox.errors import InboxConflictError, InboxNotFoundError, translate_graph_error
from app.services.meta_graph import MetaGraphClient, MetaGraphError

logger = get_inbox_logger(__name__)


def _picture_url(page_data: dict) -> str | None:
    picture = page_data.get("picture") or {}
    data = picture.get("data") if isinstance(picture, dict) else None
    return data.get("url") if isinstance(data, dict) else None


def _first_email(page_data: dict) -> str | None:
    emails = page_data.get("emails") or []
    return emails[0] if emails else None


class Pages:
    @staticmethod
    def list_available(graph: MetaGraphClient, short_lived_token: str) -> list[dict]:
        """Pages the Facebook user behind ``short_lived_token`` can manage."""
        try:
            long_lived_token = graph.exchange_token(short_lived_token)
            pages = graph.list_pages_for_account(long_lived_token)
        except MetaGraphError as exc:
            raise translate_graph_error(exc) from exc
        return [
            {
                "id": page["id"],
                "name": page.get("name") or page["id"],
                "category": page.get("category"),
                "picture_url": _picture_url(page),
                "tasks": page.get("tasks") or [],
            }
            for page in pages
        ]

    @staticmethod
    def connect(
        db: Session,
        graph: MetaGraphClient,
        account_id: str,
        short_lived_token: str,
        page_id: str,
    ) -> PageCredential:
        try:
            long_lived_token = graph.exchange_token(short_lived_token)
            pages = graph.list_pages_for_account(long_lived_token)
        except MetaGraphError as exc:
            raise translate_graph_error(exc) from exc

        selected = next((page for page in pages if str(page.get("id")) == page_id), None)
        if selected is None or not selected.get("access_token"):
            raise InboxNotFoundError(
                "page_not_manageable",
                "Page not found or you do not have permission to manage it",
            )

        existing = db.query(PageCredential).filter(PageCredential.page_id == page_id).first()
        if existing is not None and existing.is_active and existing.account_id != account_id:
            logger.warning("page_connect_conflict page_id=%s account_id=%s", page_id, account_id)
            raise InboxConflictError("page_already_connected", "This page is already connected to another account")

        page_token = selected["access_token"]
        try:
            info = graph.get_page_info(page_id, page_token)
            webhook_verified = graph.subscribe_webhook(page_id, page_token)
        except MetaGraphError as exc:
            raise translate_graph_error(exc) from exc

        values = {
            "account_id": account_id,
            "page_name": info.get("name") or selected.get("name") or page_id,
            "access_token": page_token,
            "picture_url": _picture_url(info) or _picture_url(selected),
            "category": info.get("category") or selected.get("category"),
            "about": info.get("about"),
            "website": info.get("website"),
            "phone": info.get("phone"),
            "email": _first_email(info),
            "webhook_verified": webhook_verified,
            "is_active": True,
            "last_sync_at": now_utc(),
            "disconnected_at": None,
        }
        if existing is None:
            page = PageCredential(page_id=page_id, **values)
            db.add(page)
        else:
            page = existing
            for key, value in values.items():
                setattr(page, key, value)
        db.commit()
        db.refresh(page)
        inbox_cache.invalidate_page_identities(page_id)
        logger.info(
            "page_connected page_id=%s account_id=%s reconnect=%s webhook_verified=%s",
            page_id,
            account_id,
            existing is not None,
            webhook_verified,
        )
        return page

    @staticmethod
    def list_connected(db: Session, account_id: str) -> list[PageCredential]:
        return (
            db.query(PageCredential)
            .filter(PageCredential.account_id == account_id)
            .filter(PageCredential.is_active.is_(True))
            .order_by(PageCredential.created_at.asc())
            .all()
        )

    @staticmethod
    def get_owned(db: Session, account_id: str, page_id: str) -> PageCredential:
        page = (
            db.query(PageCredential)
            .filter(PageCredential.page_id == page_id)
            .filter(PageCredential.account_id == account_id)
            .filter(PageCredential.is_active.is_(True))
            .first()
        )
        if not page:
            raise InboxNotFoundError("page_not_found", "Page not found")
        return page

    @staticmethod
    def disconnect(db: Session, account_id: str, page_id: str) -> PageCredential:
        page = Pages.get_owned(db, account_id, page_id)
        page.is_active = False
        page.disconnected_at = now_utc()
        db.commit()
        db.refresh(page)
        inbox_cache.invalidate_page_identities(page_id)
        logger.info("page_disconnected page_id=%s account_id=%s", page_id, account_id)
        return page

    @staticmethod
    def get_active(db: Session, page_id: str) -> PageCredential | None:
        return (
            db.query(PageCredential)
            .filter(PageCredential.page_id == page_id)
            .filter(PageCredential.is_active.is_(True))
            .first()
        )

    @staticmethod
    def mark_synced(db: Session, page: PageCredential) -> None:
        page.last_sync_at = now_utc()
        db.commit()


pages = Pages()
