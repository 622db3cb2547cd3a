"""Message storage for Page conversations.

Messages are keyed by the Messenger message id (``mid``), so webhook
redelivery is a no-op. Status only moves forward (sent -> delivered -> read,
or to failed); every receipt transition is a compare-and-set on the current
status, which makes re-applied or out-of-order receipts harmless.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.models.crm.conversation import Conversation, Message
from app.models.crm.enums import MessageStatus, MessageType
from app.services.common import apply_pagination, as_utc, from_epoch_ms, now_utc
from app.services.crm.inbox.context import get_inbox_logger

logger = get_inbox_logger(__name__)

_DELIVERABLE = (MessageStatus.sent,)
_READABLE = (MessageStatus.sent, MessageStatus.delivered)


def _by_message_id(db: Session, message_id: str) -> Message | None:
    return db.query(Message).filter(Message.message_id == message_id).first()


def _transition(db: Session, message: Message, from_statuses: tuple, values: dict) -> bool:
    updated = (
        db.query(Message)
        .filter(Message.id == message.id)
        .filter(Message.status.in_(from_statuses))
        .update(values, synchronize_session=False)
    )
    db.expire(message)
    return bool(updated)


class Messages:
    @staticmethod
    def upsert_incoming(
        db: Session,
        *,
        message_id: str,
        conversation: Conversation,
        sender_id: str,
        text: str | None,
        timestamp: datetime,
        message_type: MessageType = MessageType.text,
        attachments: list[dict] | None = None,
        metadata: dict | None = None,
        sender_name: str | None = None,
        sender_profile_pic: str | None = None,
        is_from_page: bool = False,
        agent_id: str | None = None,
        reply_to_message_id: str | None = None,
    ) -> tuple[Message, bool]:
        """Insert a message unless one with ``message_id`` exists.

        Returns ``(message, created)``; ``created`` is False for duplicates,
        including a concurrent insert that won the race.
        """
        existing = _by_message_id(db, message_id)
        if existing is not None:
            return existing, False

        reply_to = _by_message_id(db, reply_to_message_id) if reply_to_message_id else None
        savepoint = db.begin_nested()
        try:
            message = Message(
                message_id=message_id,
                conversation_id=conversation.id,
                reply_to_id=reply_to.id if reply_to else None,
                sender_id=sender_id,
                sender_name=sender_name,
                sender_profile_pic=sender_profile_pic,
                text=text,
                attachments=attachments or [],
                timestamp=as_utc(timestamp),
                is_from_page=is_from_page,
                message_type=message_type,
                status=MessageStatus.sent,
                agent_id=agent_id,
                metadata_=metadata or {},
            )
            db.add(message)
            db.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            existing = _by_message_id(db, message_id)
            if existing is None:
                raise
            logger.info("message_insert_race message_id=%s", message_id)
            return existing, False
        return message, True

    @staticmethod
    def record_outgoing(
        db: Session,
        *,
        conversation: Conversation,
        message_id: str,
        text: str,
        timestamp: datetime,
        agent_id: str | None = None,
    ) -> tuple[Message, bool]:
        return Messages.upsert_incoming(
            db,
            message_id=message_id,
            conversation=conversation,
            sender_id=conversation.page_id,
            text=text,
            timestamp=timestamp,
            message_type=MessageType.text,
            is_from_page=True,
            agent_id=agent_id,
        )

    @staticmethod
    def apply_delivery_receipt(
        db: Session, conversation: Conversation, delivered_mids: list[str], watermark: int | None
    ) -> int:
        """Mark listed messages delivered. Returns how many changed status.

        Messenger may omit ``mids``; the watermark then means every earlier
        message was delivered.
        """
        db.flush()
        query = (
            db.query(Message)
            .filter(Message.conversation_id == conversation.id)
            .filter(Message.status.in_(_DELIVERABLE))
        )
        if delivered_mids:
            query = query.filter(Message.message_id.in_(delivered_mids))
        elif watermark is not None:
            query = query.filter(Message.timestamp <= from_epoch_ms(watermark))
        else:
            return 0

        transitioned = 0
        for message in query.all():
            metadata = dict(message.metadata_ or {})
            if watermark is not None:
                metadata["watermark"] = watermark
            if _transition(
                db,
                message,
                _DELIVERABLE,
                {Message.status: MessageStatus.delivered, Message.metadata_: metadata},
            ):
                transitioned += 1
        return transitioned

    @staticmethod
    def apply_read_receipt(db: Session, conversation: Conversation, watermark: int) -> int:
        """Mark every message up to the watermark (epoch ms) read."""
        db.flush()
        cutoff = from_epoch_ms(watermark)
        candidates = (
            db.query(Message)
            .filter(Message.conversation_id == conversation.id)
            .filter(Message.timestamp <= cutoff)
            .filter(Message.status.in_(_READABLE))
            .all()
        )
        read_at = now_utc()
        transitioned = 0
        for message in candidates:
            metadata = dict(message.metadata_ or {})
            metadata["watermark"] = watermark
            metadata["read"] = True
            if _transition(
                db,
                message,
                _READABLE,
                {Message.status: MessageStatus.read, Message.metadata_: metadata, Message.read_at: read_at},
            ):
                transitioned += 1
        return transitioned

    @staticmethod
    def list(db: Session, conversation: Conversation, limit: int = 50, offset: int = 0) -> list[Message]:
        query = (
            db.query(Message)
            .options(selectinload(Message.reply_to))
            .filter(Message.conversation_id == conversation.id)
            .order_by(Message.timestamp.desc(), Message.created_at.desc())
        )
        return apply_pagination(query, limit, offset).all()


messages = Messages()
