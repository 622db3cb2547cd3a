"""Dead letter storage for messaging events the inbox could not apply."""

import traceback

from sqlalchemy.exc import SQLAlchemyError

from app.db import SessionLocal
from app.models.webhook_dead_letter import WebhookDeadLetter
from app.services.crm.inbox.context import get_inbox_logger

logger = get_inbox_logger(__name__)

MAX_ERROR_CHARS = 4000
MAX_RAW_TEXT_CHARS = 8000


def _error_text(error: str | Exception) -> str:
    if isinstance(error, Exception):
        return "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return str(error)


def _payload_dict(raw_payload: dict | str | bytes) -> dict:
    if isinstance(raw_payload, dict):
        return raw_payload
    if isinstance(raw_payload, bytes):
        raw_payload = raw_payload.decode("utf-8", errors="replace")
    return {"raw_text": raw_payload[:MAX_RAW_TEXT_CHARS]}


def write_dead_letter(
    channel: str,
    raw_payload: dict | str | bytes,
    error: str | Exception,
    trace_id: str | None = None,
    message_id: str | None = None,
) -> None:
    """Store one failed event.

    Uses a session of its own: the caller's session has usually just been
    rolled back. A failure to store is logged and never raised, so one bad
    event cannot stop the rest of the delivery.
    """
    row = WebhookDeadLetter(
        channel=channel,
        trace_id=trace_id,
        message_id=message_id,
        raw_payload=_payload_dict(raw_payload),
        error=_error_text(error)[:MAX_ERROR_CHARS] or None,
    )
    with SessionLocal() as session:
        try:
            session.add(row)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.exception("dead_letter_write_failed channel=%s trace_id=%s", channel, trace_id)
            return
    logger.info(
        "dead_letter_written channel=%s trace_id=%s message_id=%s",
        channel,
        trace_id,
        message_id,
    )
