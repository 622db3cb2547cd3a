"""Page webhook event processing.

payload -> entry (one Page) -> messaging event (one customer interaction).

Each messaging event is parsed, resolved and committed on its own: a failure
rolls back only that event, is logged and dead-lettered, and processing moves
on to the next event. Entries for pages that are unknown or disconnected are
skipped, since Meta keeps delivering for a while after a disconnect.
"""

from __future__ import annotations

import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.crm.conversation import Conversation
from app.models.crm.enums import MessageType
from app.models.crm.page import PageCredential
from app.schemas.crm.inbox import (
    MessagingEventKind,
    MetaMessagingEvent,
    MetaWebhookPayload,
    WebhookProcessResult,
)
from app.services.common import from_epoch_ms, now_utc
from app.services.crm.inbox.context import get_inbox_logger, get_request_id
from app.services.crm.inbox.conversations import conversations
from app.services.crm.inbox.identity import resolve_identity
from app.services.crm.inbox.messages import messages
from app.services.crm.inbox.observability import MESSAGE_PROCESSING_TIME, WEBHOOK_EVENTS
from app.services.crm.inbox.pages import pages
from app.services.meta_graph import MetaGraphClient
from app.services.webhook_dead_letter import write_dead_letter
from app.telemetry import get_tracer

logger = get_inbox_logger(__name__)
_tracer = get_tracer(__name__)

CHANNEL = "facebook_messenger"
ATTACHMENT_PREVIEW = "[Attachment]"
POSTBACK_PREVIEW = "[Postback]"

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_SKIPPED = "skipped"

_ATTACHMENT_MESSAGE_TYPES = {member.value: member for member in MessageType}


@dataclass
class EventContext:
    db: Session
    page: PageCredential
    event: MetaMessagingEvent
    conversation: Conversation
    occurred_at: datetime


def _build_attachments(event: MetaMessagingEvent) -> list[dict]:
    return [
        {
            "type": attachment.type,
            "url": (attachment.payload or {}).get("url"),
            "payload": attachment.payload,
        }
        for attachment in event.message.attachments
    ]


def classify_message_type(attachments: list[dict], quick_reply: dict | None) -> MessageType:
    if attachments:
        return _ATTACHMENT_MESSAGE_TYPES.get(attachments[0]["type"], MessageType.fallback)
    if quick_reply:
        return MessageType.quick_reply
    return MessageType.text


def build_postback_id(page_id: str, sender_id: str, timestamp: int | None, payload: str | None, title: str | None) -> str:
    """Deterministic local id for a postback, so a redelivered postback stays a duplicate."""
    raw = "|".join([page_id, sender_id, str(timestamp or ""), payload or "", title or ""])
    return f"postback_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:32]}"


def _handle_message(ctx: EventContext) -> str:
    part = ctx.event.message
    attachments = _build_attachments(ctx.event)
    metadata: dict = {"mid": part.mid}
    extra = part.model_extra or {}
    if extra.get("seq") is not None:
        metadata["seq"] = extra["seq"]
    if part.quick_reply:
        metadata["quick_reply_payload"] = part.quick_reply.get("payload")
    _message, created = messages.upsert_incoming(
        ctx.db,
        message_id=part.mid,
        conversation=ctx.conversation,
        sender_id=ctx.event.sender.id,
        sender_name=ctx.conversation.customer_name,
        sender_profile_pic=ctx.conversation.customer_profile_pic,
        text=part.text,
        attachments=attachments,
        timestamp=ctx.occurred_at,
        message_type=classify_message_type(attachments, part.quick_reply),
        metadata=metadata,
        reply_to_message_id=(part.reply_to or {}).get("mid"),
    )
    if not created:
        logger.info("webhook_message_duplicate page_id=%s mid=%s", ctx.page.page_id, part.mid)
        return OUTCOME_DUPLICATE
    conversations.record_activity(ctx.db, ctx.conversation, part.text or ATTACHMENT_PREVIEW, ctx.occurred_at)
    conversations.increment_unread(ctx.db, ctx.conversation)
    return OUTCOME_PROCESSED


def _handle_delivery(ctx: EventContext) -> str:
    part = ctx.event.delivery
    changed = messages.apply_delivery_receipt(ctx.db, ctx.conversation, part.mids, part.watermark)
    logger.info(
        "webhook_delivery_applied page_id=%s mids=%d changed=%d",
        ctx.page.page_id,
        len(part.mids),
        changed,
    )
    return OUTCOME_PROCESSED


def _handle_read(ctx: EventContext) -> str:
    changed = messages.apply_read_receipt(ctx.db, ctx.conversation, ctx.event.read.watermark)
    logger.info("webhook_read_applied page_id=%s changed=%d", ctx.page.page_id, changed)
    return OUTCOME_PROCESSED


def _handle_postback(ctx: EventContext) -> str:
    part = ctx.event.postback
    message_id = part.mid or build_postback_id(
        ctx.page.page_id, ctx.event.sender.id, ctx.event.timestamp, part.payload, part.title
    )
    _message, created = messages.upsert_incoming(
        ctx.db,
        message_id=message_id,
        conversation=ctx.conversation,
        sender_id=ctx.event.sender.id,
        sender_name=ctx.conversation.customer_name,
        sender_profile_pic=ctx.conversation.customer_profile_pic,
        text=part.title or part.payload,
        timestamp=ctx.occurred_at,
        message_type=MessageType.postback,
        metadata={"payload": part.payload},
    )
    if not created:
        return OUTCOME_DUPLICATE
    conversations.record_activity(ctx.db, ctx.conversation, part.title or POSTBACK_PREVIEW, ctx.occurred_at)
    return OUTCOME_PROCESSED


EVENT_HANDLERS: dict[MessagingEventKind, Callable[[EventContext], str]] = {
    MessagingEventKind.message: _handle_message,
    MessagingEventKind.delivery: _handle_delivery,
    MessagingEventKind.read: _handle_read,
    MessagingEventKind.postback: _handle_postback,
}


def process_event(db: Session, graph: MetaGraphClient, page: PageCredential, event: MetaMessagingEvent) -> str:
    """Apply one parsed messaging event. The caller commits or rolls back."""
    kind = event.kind
    if kind is None:
        logger.info("webhook_event_unsupported page_id=%s", page.page_id)
        return OUTCOME_SKIPPED
    if event.sender.id == page.page_id or (kind is MessagingEventKind.message and event.message.is_echo):
        return OUTCOME_SKIPPED

    occurred_at = from_epoch_ms(event.timestamp) or now_utc()
    identity = resolve_identity(graph, page, event.sender.id)
    conversation = conversations.find_or_create(
        db,
        page.page_id,
        event.sender.id,
        display_name=None if identity.degraded else identity.name,
        avatar_url=identity.profile_pic,
        at=occurred_at,
    )
    ctx = EventContext(
        db=db,
        page=page,
        event=event,
        conversation=conversation,
        occurred_at=occurred_at,
    )
    return EVENT_HANDLERS[kind](ctx)


def _raw_kind(raw_event: dict) -> str:
    for kind in MessagingEventKind:
        if raw_event.get(kind.value) is not None:
            return kind.value
    return "other"


def _raw_message_id(raw_event: dict) -> str | None:
    for key in ("message", "postback"):
        part = raw_event.get(key)
        if isinstance(part, dict) and part.get("mid"):
            return str(part["mid"])
    return None


def process_payload(
    db: Session,
    graph: MetaGraphClient,
    payload: MetaWebhookPayload,
    trace_id: str | None = None,
) -> WebhookProcessResult:
    trace_id = trace_id or get_request_id() or None
    result = WebhookProcessResult()
    for entry in payload.entry:
        page = pages.get_active(db, entry.id)
        if page is None:
            logger.info(
                "webhook_entry_skipped page_id=%s reason=page_not_connected events=%d",
                entry.id,
                len(entry.messaging),
            )
            result.skipped += len(entry.messaging)
            continue
        page_id = page.page_id

        for raw_event in entry.messaging:
            kind_label = _raw_kind(raw_event)
            started = time.monotonic()
            try:
                with _tracer.start_as_current_span(
                    "inbox.webhook_event",
                    attributes={"inbox.page_id": page_id, "inbox.event_kind": kind_label},
                ):
                    event = MetaMessagingEvent.model_validate(raw_event)
                    outcome = process_event(db, graph, page, event)
                    db.commit()
            except Exception as exc:
                db.rollback()
                result.failed += 1
                WEBHOOK_EVENTS.labels(kind=kind_label, status="error").inc()
                logger.exception(
                    "webhook_event_failed page_id=%s kind=%s trace_id=%s error=%s",
                    page_id,
                    kind_label,
                    trace_id,
                    exc,
                )
                write_dead_letter(
                    CHANNEL,
                    raw_event,
                    exc,
                    trace_id=trace_id,
                    message_id=_raw_message_id(raw_event),
                )
                continue
            finally:
                MESSAGE_PROCESSING_TIME.labels(kind=kind_label).observe(time.monotonic() - started)

            WEBHOOK_EVENTS.labels(kind=kind_label, status=outcome).inc()
            if outcome == OUTCOME_PROCESSED:
                result.processed += 1
            elif outcome == OUTCOME_DUPLICATE:
                result.duplicates += 1
            else:
                result.skipped += 1

    logger.info(
        "webhook_payload_processed trace_id=%s processed=%d duplicates=%d skipped=%d failed=%d",
        trace_id,
        result.processed,
        result.duplicates,
        result.skipped,
        result.failed,
    )
    return result
