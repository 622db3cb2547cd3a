"""Conversation sessions for Page customers.

A conversation is keyed by (page, customer) within a rolling activity window
(``CONVERSATION_WINDOW_HOURS``, 24 by default). The partial unique index on
active rows serializes creation; a loser of the insert race re-reads and
returns the winner's row.

Every operation here only flushes. The caller owns the transaction and
commits once per webhook event, relay send or request.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.crm.conversation import Conversation
from app.models.crm.enums import ConversationStatus
from app.models.crm.page import PageCredential
from app.schemas.crm.conversation import ConversationUpdate
from app.services.common import apply_pagination, as_utc, coerce_uuid, now_utc
from app.services.crm.inbox.context import get_inbox_logger
from app.services.crm.inbox.errors import InboxNotFoundError
from app.services.crm.inbox.identity import UNKNOWN_NAME

logger = get_inbox_logger(__name__)


def _active_conversation(db: Session, page_id: str, customer_id: str) -> Conversation | None:
    return (
        db.query(Conversation)
        .filter(Conversation.page_id == page_id)
        .filter(Conversation.customer_id == customer_id)
        .filter(Conversation.is_active.is_(True))
        .first()
    )


def _refresh_customer(conversation: Conversation, display_name: str | None, avatar_url: str | None) -> None:
    if display_name and display_name != conversation.customer_name:
        conversation.customer_name = display_name
    if avatar_url and avatar_url != conversation.customer_profile_pic:
        conversation.customer_profile_pic = avatar_url


def within_window(conversation: Conversation, at: datetime) -> bool:
    window_start = as_utc(at) - timedelta(hours=settings.conversation_window_hours)
    return as_utc(conversation.last_message_at) >= window_start


class Conversations:
    @staticmethod
    def find_or_create(
        db: Session,
        page_id: str,
        customer_id: str,
        display_name: str | None = None,
        avatar_url: str | None = None,
        at: datetime | None = None,
    ) -> Conversation:
        """Return the customer's current session, opening a new one after a window gap.

        ``at`` is the activity time the window is measured against (the event
        timestamp for webhook traffic); it defaults to now. A session whose last
        activity is exactly one window old still counts as current. A new
        session without a display name keeps the name and avatar of the one
        it replaces.
        """
        reference = as_utc(at) or now_utc()
        current = _active_conversation(db, page_id, customer_id)
        if current is not None and within_window(current, reference):
            _refresh_customer(current, display_name, avatar_url)
            db.flush()
            return current

        known_name = current.customer_name if current is not None else None
        known_pic = current.customer_profile_pic if current is not None else None
        savepoint = db.begin_nested()
        try:
            if current is not None:
                db.query(Conversation).filter(
                    Conversation.id == current.id,
                    Conversation.is_active.is_(True),
                ).update({Conversation.is_active: False}, synchronize_session="fetch")
            conversation = Conversation(
                page_id=page_id,
                customer_id=customer_id,
                customer_name=display_name or known_name or UNKNOWN_NAME,
                customer_profile_pic=avatar_url or known_pic,
                last_message_at=reference,
                unread_count=0,
                status=ConversationStatus.open,
                is_active=True,
            )
            db.add(conversation)
            db.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            winner = _active_conversation(db, page_id, customer_id)
            if winner is None:
                raise
            logger.info(
                "conversation_create_race page_id=%s customer=%s conversation_id=%s",
                page_id,
                customer_id[:8],
                winner.id,
            )
            _refresh_customer(winner, display_name, avatar_url)
            db.flush()
            return winner

        logger.info(
            "conversation_opened page_id=%s customer=%s conversation_id=%s previous=%s",
            page_id,
            customer_id[:8],
            conversation.id,
            current.id if current is not None else None,
        )
        return conversation

    @staticmethod
    def get_active(db: Session, page_id: str, customer_id: str) -> Conversation | None:
        return _active_conversation(db, page_id, customer_id)

    @staticmethod
    def record_activity(
        db: Session, conversation: Conversation, preview_text: str | None, timestamp: datetime
    ) -> bool:
        """Move the session's last activity forward; late events never rewind it."""
        at = as_utc(timestamp)
        db.flush()
        updated = (
            db.query(Conversation)
            .filter(Conversation.id == conversation.id)
            .filter(Conversation.last_message_at <= at)
            .update(
                {
                    Conversation.last_message_at: at,
                    Conversation.last_message_text: preview_text,
                    Conversation.updated_at: now_utc(),
                },
                synchronize_session="fetch",
            )
        )
        return bool(updated)

    @staticmethod
    def increment_unread(db: Session, conversation: Conversation) -> None:
        db.flush()
        db.query(Conversation).filter(Conversation.id == conversation.id).update(
            {Conversation.unread_count: Conversation.unread_count + 1},
            synchronize_session=False,
        )
        db.expire(conversation, ["unread_count"])

    @staticmethod
    def mark_read(db: Session, conversation: Conversation) -> Conversation:
        conversation.unread_count = 0
        db.flush()
        return conversation

    @staticmethod
    def get(db: Session, conversation_id: str, account_id: str | None = None) -> Conversation:
        query = db.query(Conversation).filter(Conversation.id == coerce_uuid(conversation_id, "conversation id"))
        if account_id is not None:
            query = query.join(PageCredential, PageCredential.page_id == Conversation.page_id).filter(
                PageCredential.account_id == account_id
            )
        conversation = query.first()
        if not conversation:
            raise InboxNotFoundError("conversation_not_found", "Conversation not found")
        return conversation

    @staticmethod
    def list_for_page(
        db: Session,
        page_id: str,
        status: ConversationStatus | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Conversation]:
        query = db.query(Conversation).filter(Conversation.page_id == page_id)
        if status is not None:
            query = query.filter(Conversation.status == status)
        if is_active is not None:
            query = query.filter(Conversation.is_active == is_active)
        query = query.order_by(Conversation.last_message_at.desc())
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def update(db: Session, conversation: Conversation, payload: ConversationUpdate) -> Conversation:
        data = payload.model_dump(exclude_unset=True)
        if "tags" in data and data["tags"] is not None:
            data["tags"] = sorted({tag.strip() for tag in data["tags"] if tag and tag.strip()})
        for key, value in data.items():
            setattr(conversation, key, value)
        db.flush()
        return conversation


conversations = Conversations()
