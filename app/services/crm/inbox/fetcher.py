"""Live conversation and message listings from the Graph API.

Listings are best-effort aggregations: an entry whose participant, identity
or preview lookup fails is returned degraded instead of being dropped. Only a
failure of the listing call itself is reported to the caller.
"""

from __future__ import annotations

from collections.abc import Sequence

from app.models.crm.page import PageCredential
from app.schemas.crm.conversation import (
    EnrichedConversation,
    FetchedMessage,
    LastMessagePreview,
    ParticipantInfo,
)
from app.services.crm.inbox.context import get_inbox_logger
from app.services.crm.inbox.errors import InboxForbiddenError, NoAccessiblePageError, translate_graph_error
from app.services.crm.inbox.events import ATTACHMENT_PREVIEW
from app.services.crm.inbox.identity import UNKNOWN_NAME, ResolvedIdentity, resolve_identity
from app.services.meta_graph import MetaGraphClient, MetaGraphError

logger = get_inbox_logger(__name__)

NO_RECENT_MESSAGES = "No recent messages"
UNAVAILABLE_PREVIEW = "Unable to load message"


def other_participant(participants: Sequence[dict], page_id: str) -> dict | None:
    for participant in participants:
        if participant.get("id") and str(participant["id"]) != page_id:
            return participant
    return None


def _listed_participants(raw: dict) -> list[dict]:
    participants = raw.get("participants")
    if isinstance(participants, dict) and isinstance(participants.get("data"), list):
        return participants["data"]
    return []


def _counts(raw: dict) -> dict:
    return {
        "id": str(raw["id"]),
        "updated_time": raw.get("updated_time"),
        "can_reply": raw.get("can_reply"),
        "is_subscribed": raw.get("is_subscribed"),
        "message_count": raw.get("message_count"),
        "unread_count": raw.get("unread_count") or 0,
    }


def _message_text(raw_message: dict) -> str:
    return raw_message.get("message") or ATTACHMENT_PREVIEW


def _participant_from_identity(participant_id: str, raw_name: str | None, identity: ResolvedIdentity) -> ParticipantInfo:
    if identity.degraded:
        return ParticipantInfo(
            id=participant_id,
            name=raw_name or UNKNOWN_NAME,
            first_name=identity.first_name,
            last_name=identity.last_name,
            profile_pic=identity.profile_pic,
        )
    return ParticipantInfo(
        id=participant_id,
        name=identity.name,
        first_name=identity.first_name,
        last_name=identity.last_name,
        profile_pic=identity.profile_pic,
    )


def _minimal_entry(raw: dict, page_id: str) -> EnrichedConversation:
    participant = other_participant(_listed_participants(raw), page_id) or {}
    return EnrichedConversation(
        **_counts(raw),
        participant=ParticipantInfo(
            id=str(participant["id"]) if participant.get("id") else None,
            name=participant.get("name") or UNKNOWN_NAME,
        ),
        last_message=LastMessagePreview(text=UNAVAILABLE_PREVIEW, created_time=raw.get("updated_time")),
        degraded=True,
    )


def _enrich_conversation(graph: MetaGraphClient, page: PageCredential, raw: dict) -> EnrichedConversation:
    conversation_id = str(raw["id"])
    degraded = False

    participant = other_participant(_listed_participants(raw), page.page_id)
    if participant is None:
        try:
            participant = other_participant(
                graph.get_conversation_participants(conversation_id, page.access_token), page.page_id
            )
        except MetaGraphError as exc:
            logger.info("fetch_participants_failed conversation_id=%s error=%s", conversation_id, exc)

    if participant is None:
        info = ParticipantInfo()
        degraded = True
    else:
        participant_id = str(participant["id"])
        identity = resolve_identity(graph, page, participant_id, conversation_hint=conversation_id)
        info = _participant_from_identity(participant_id, participant.get("name"), identity)

    try:
        recent = graph.list_messages(conversation_id, page.access_token, limit=1)
    except MetaGraphError as exc:
        logger.info("fetch_preview_failed conversation_id=%s error=%s", conversation_id, exc)
        preview = LastMessagePreview(text=NO_RECENT_MESSAGES, created_time=raw.get("updated_time"))
        degraded = True
    else:
        preview = None
        if recent:
            latest = recent[0]
            preview = LastMessagePreview(
                text=_message_text(latest),
                created_time=latest.get("created_time"),
                from_id=(latest.get("from") or {}).get("id"),
            )

    return EnrichedConversation(**_counts(raw), participant=info, last_message=preview, degraded=degraded)


class ConversationFetcher:
    @staticmethod
    def list_conversations(
        graph: MetaGraphClient, page: PageCredential, limit: int = 20
    ) -> list[EnrichedConversation]:
        try:
            raw_conversations = graph.list_conversations(page.page_id, page.access_token, limit=limit)
        except MetaGraphError as exc:
            logger.warning(
                "fetch_conversations_failed page_id=%s code=%s message=%s",
                page.page_id,
                exc.code,
                exc.message,
            )
            raise translate_graph_error(exc) from exc

        results: list[EnrichedConversation] = []
        for raw in raw_conversations:
            if not isinstance(raw, dict) or not raw.get("id"):
                continue
            try:
                results.append(_enrich_conversation(graph, page, raw))
            except Exception as exc:
                logger.warning(
                    "fetch_conversation_degraded page_id=%s conversation_id=%s error=%s",
                    page.page_id,
                    raw.get("id"),
                    exc,
                )
                results.append(_minimal_entry(raw, page.page_id))
        logger.info(
            "fetch_conversations_done page_id=%s total=%d degraded=%d",
            page.page_id,
            len(results),
            sum(1 for item in results if item.degraded),
        )
        return results

    @staticmethod
    def list_messages(
        graph: MetaGraphClient,
        credentials: Sequence[PageCredential],
        conversation_id: str,
        limit: int = 50,
    ) -> list[FetchedMessage]:
        """Messages oldest first, read with the first page that can see the conversation."""
        if not credentials:
            raise InboxForbiddenError("no_connected_pages", "No connected Facebook page")

        owner: PageCredential | None = None
        raw_messages: list[dict] = []
        for page in credentials:
            try:
                raw_messages = graph.list_messages(conversation_id, page.access_token, limit=limit)
            except MetaGraphError as exc:
                logger.info(
                    "fetch_messages_page_rejected page_id=%s conversation_id=%s code=%s",
                    page.page_id,
                    conversation_id,
                    exc.code,
                )
                continue
            owner = page
            break
        if owner is None:
            raise NoAccessiblePageError(conversation_id)

        identities: dict[str, ResolvedIdentity] = {}
        results: list[FetchedMessage] = []
        for raw in reversed(raw_messages):
            sender = raw.get("from") or {}
            sender_id = str(sender["id"]) if sender.get("id") else None
            is_from_page = sender_id == owner.page_id
            sender_name = sender.get("name")
            profile_pic = None
            if sender_id and not is_from_page:
                identity = identities.get(sender_id)
                if identity is None:
                    identity = resolve_identity(graph, owner, sender_id, conversation_hint=conversation_id)
                    identities[sender_id] = identity
                if not identity.degraded:
                    sender_name = identity.name
                profile_pic = identity.profile_pic
            attachments = raw.get("attachments") or {}
            results.append(
                FetchedMessage(
                    id=str(raw.get("id")),
                    text=_message_text(raw),
                    sender_id=sender_id,
                    sender_name=sender_name or (owner.page_name if is_from_page else UNKNOWN_NAME),
                    sender_profile_pic=profile_pic,
                    created_time=raw.get("created_time"),
                    attachments=(attachments.get("data") or []) if isinstance(attachments, dict) else [],
                    is_from_page=is_from_page,
                )
            )
        return results


fetcher = ConversationFetcher()
