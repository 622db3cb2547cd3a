"""Outbound reply relay for Page conversations.

The caller does not know which of its pages owns a conversation, so each page
is tried in order until one can read the participants; that page sends the
reply. When no page resolves a recipient, or the Send API call fails, the
relay still answers with a locally stamped result marked ``confirmed=False``
so the agent's reply is not lost from the UI. Those results carry a
``degraded_reason`` and a ``local_`` message id and must not be read as
delivered. An account with no connected page at all is refused outright.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.crm.page import PageCredential
from app.schemas.crm.conversation import SendResult
from app.services.common import now_utc
from app.services.crm.inbox.context import get_inbox_logger
from app.services.crm.inbox.conversations import conversations
from app.services.crm.inbox.errors import InboxForbiddenError
from app.services.crm.inbox.fetcher import other_participant
from app.services.crm.inbox.messages import messages
from app.services.crm.inbox.observability import OUTBOUND_MESSAGES
from app.services.meta_graph import MetaGraphClient, MetaGraphError

logger = get_inbox_logger(__name__)

REASON_RECIPIENT_UNRESOLVED = "recipient_unresolved"
REASON_SEND_FAILED = "send_failed"


def _local_message_id() -> str:
    return f"local_{uuid.uuid4().hex}"


def _degraded_result(
    text: str,
    reason: str,
    page_id: str | None = None,
    recipient_id: str | None = None,
) -> SendResult:
    OUTBOUND_MESSAGES.labels(status=reason).inc()
    return SendResult(
        message_id=_local_message_id(),
        text=text,
        timestamp=now_utc(),
        confirmed=False,
        page_id=page_id,
        recipient_id=recipient_id,
        degraded_reason=reason,
    )


def _resolve_recipient(
    graph: MetaGraphClient, credentials: Sequence[PageCredential], conversation_id: str
) -> tuple[PageCredential, str] | None:
    for page in credentials:
        try:
            participants = graph.get_conversation_participants(conversation_id, page.access_token)
        except MetaGraphError as exc:
            logger.info(
                "relay_page_rejected page_id=%s conversation_id=%s code=%s",
                page.page_id,
                conversation_id,
                exc.code,
            )
            continue
        participant = other_participant(participants, page.page_id)
        if participant is not None:
            return page, str(participant["id"])
    return None


def _record_locally(db: Session, page: PageCredential, result: SendResult, agent_id: str | None) -> None:
    conversation = conversations.get_active(db, page.page_id, result.recipient_id)
    if conversation is None:
        return
    try:
        messages.record_outgoing(
            db,
            conversation=conversation,
            message_id=result.message_id,
            text=result.text,
            timestamp=result.timestamp,
            agent_id=agent_id,
        )
        conversations.record_activity(db, conversation, result.text, result.timestamp)
        conversations.mark_read(db, conversation)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "relay_local_record_failed page_id=%s message_id=%s",
            page.page_id,
            result.message_id,
        )


class OutboundRelay:
    @staticmethod
    def send(
        db: Session,
        graph: MetaGraphClient,
        credentials: Sequence[PageCredential],
        conversation_id: str,
        text: str,
        agent_id: str | None = None,
    ) -> SendResult:
        if not credentials:
            raise InboxForbiddenError("no_connected_pages", "No active Facebook pages found")
        resolved = _resolve_recipient(graph, credentials, conversation_id)
        if resolved is None:
            logger.warning(
                "relay_recipient_unresolved conversation_id=%s pages=%d",
                conversation_id,
                len(credentials),
            )
            return _degraded_result(text, REASON_RECIPIENT_UNRESOLVED)

        page, recipient_id = resolved
        try:
            data = graph.send_text_message(recipient_id, text, page.access_token)
        except MetaGraphError as exc:
            logger.warning(
                "relay_send_failed page_id=%s conversation_id=%s code=%s message=%s",
                page.page_id,
                conversation_id,
                exc.code,
                exc.message,
            )
            return _degraded_result(text, REASON_SEND_FAILED, page.page_id, recipient_id)

        OUTBOUND_MESSAGES.labels(status="sent").inc()
        result = SendResult(
            message_id=data.get("message_id") or _local_message_id(),
            text=text,
            timestamp=now_utc(),
            confirmed=True,
            page_id=page.page_id,
            recipient_id=recipient_id,
        )
        _record_locally(db, page, result, agent_id)
        return result


relay = OutboundRelay()
