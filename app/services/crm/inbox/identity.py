"""Customer identity resolution for Page conversations.

Profile reads on the Graph API fail often (privacy settings, missing
permissions, rate limits), so identities are resolved through an ordered list
of strategies. The first strategy that yields a name wins; the profile
picture is looked up separately whenever the winning strategy did not supply
one. When every name strategy fails a placeholder identity is returned, so
callers never see an exception from here.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace

from app.config import settings
from app.models.crm.page import PageCredential
from app.services.crm.inbox import cache as inbox_cache
from app.services.crm.inbox.context import get_inbox_logger
from app.services.crm.inbox.observability import IDENTITY_RESOLUTIONS
from app.services.meta_graph import MetaGraphClient

logger = get_inbox_logger(__name__)

UNKNOWN_FIRST_NAME = "Unknown"
UNKNOWN_LAST_NAME = "User"
UNKNOWN_NAME = f"{UNKNOWN_FIRST_NAME} {UNKNOWN_LAST_NAME}"

FULL_PROFILE_FIELDS = "name,first_name,last_name,profile_pic,id"
BASIC_PROFILE_FIELDS = "name,id"
NAME_ONLY_FIELDS = "name"


@dataclass(frozen=True)
class ResolvedIdentity:
    id: str
    first_name: str
    last_name: str
    name: str
    profile_pic: str | None = None
    locale: str | None = None
    timezone: float | None = None
    gender: str | None = None
    source: str = "placeholder"
    degraded: bool = False


def split_name(full_name: str | None) -> tuple[str, str]:
    parts = (full_name or "").split()
    first = parts[0] if parts else UNKNOWN_FIRST_NAME
    last = " ".join(parts[1:]) if len(parts) > 1 else UNKNOWN_LAST_NAME
    return first, last


def placeholder_identity(customer_id: str, profile_pic: str | None = None) -> ResolvedIdentity:
    return ResolvedIdentity(
        id=customer_id,
        first_name=UNKNOWN_FIRST_NAME,
        last_name=UNKNOWN_LAST_NAME,
        name=UNKNOWN_NAME,
        profile_pic=profile_pic,
        source="placeholder",
        degraded=True,
    )


def _identity_from_profile(customer_id: str, data: dict, source: str) -> ResolvedIdentity | None:
    name = (data.get("name") or "").strip()
    first_name = (data.get("first_name") or "").strip()
    last_name = (data.get("last_name") or "").strip()
    if not name and not first_name:
        return None
    if not name:
        name = f"{first_name} {last_name}".strip()
    parsed_first, parsed_last = split_name(name)
    timezone = data.get("timezone")
    return ResolvedIdentity(
        id=str(data.get("id") or customer_id),
        first_name=first_name or parsed_first,
        last_name=last_name or parsed_last,
        name=name,
        profile_pic=data.get("profile_pic") or None,
        locale=data.get("locale"),
        timezone=float(timezone) if isinstance(timezone, int | float) else None,
        gender=data.get("gender"),
        source=source,
    )


# A strategy gets (graph, customer_id, access_token, conversation_hint) and
# returns an identity, or None when it has nothing to offer. Raising counts
# as a failed step.
IdentityStrategy = Callable[[MetaGraphClient, str, str, str | None], ResolvedIdentity | None]


def _from_conversation_participants(
    graph: MetaGraphClient, customer_id: str, access_token: str, conversation_hint: str | None
) -> ResolvedIdentity | None:
    if not conversation_hint:
        return None
    for participant in graph.get_conversation_participants(conversation_hint, access_token):
        if str(participant.get("id")) == customer_id and participant.get("name"):
            return _identity_from_profile(customer_id, {"name": participant["name"]}, "conversation")
    return None


def _from_profile_fields(fields: str, source: str) -> IdentityStrategy:
    def _strategy(
        graph: MetaGraphClient, customer_id: str, access_token: str, conversation_hint: str | None
    ) -> ResolvedIdentity | None:
        data = graph.get_user_profile(customer_id, access_token, fields)
        return _identity_from_profile(customer_id, data, source)

    return _strategy


NAME_STRATEGIES: tuple[tuple[str, IdentityStrategy], ...] = (
    ("conversation", _from_conversation_participants),
    ("profile_full", _from_profile_fields(FULL_PROFILE_FIELDS, "profile_full")),
    ("profile_basic", _from_profile_fields(BASIC_PROFILE_FIELDS, "profile_basic")),
    ("profile_name", _from_profile_fields(NAME_ONLY_FIELDS, "profile_name")),
)


def _fetch_picture(graph: MetaGraphClient, customer_id: str, access_token: str) -> str | None:
    try:
        return graph.get_profile_picture(customer_id, access_token)
    except Exception as exc:
        logger.info("identity_picture_failed customer=%s error=%s", customer_id[:8], exc)
        return None


def resolve_identity(
    graph: MetaGraphClient,
    page: PageCredential,
    customer_id: str,
    conversation_hint: str | None = None,
) -> ResolvedIdentity:
    """Resolve a customer's name and avatar as seen by ``page``. Never raises."""
    cache_key = inbox_cache.build_identity_key(page.page_id, customer_id)
    cached = inbox_cache.get(cache_key)
    if cached is not None:
        IDENTITY_RESOLUTIONS.labels(source="cache").inc()
        return cached

    identity: ResolvedIdentity | None = None
    for source, strategy in NAME_STRATEGIES:
        try:
            identity = strategy(graph, customer_id, page.access_token, conversation_hint)
        except Exception as exc:
            logger.info(
                "identity_strategy_failed source=%s page_id=%s customer=%s error=%s",
                source,
                page.page_id,
                customer_id[:8],
                exc,
            )
            identity = None
        if identity is not None:
            break

    if identity is None:
        identity = placeholder_identity(customer_id, _fetch_picture(graph, customer_id, page.access_token))
        logger.warning(
            "identity_degraded page_id=%s customer=%s has_picture=%s",
            page.page_id,
            customer_id[:8],
            identity.profile_pic is not None,
        )
    elif not identity.profile_pic:
        picture = _fetch_picture(graph, customer_id, page.access_token)
        if picture:
            identity = replace(identity, profile_pic=picture)

    IDENTITY_RESOLUTIONS.labels(source=identity.source).inc()
    if not identity.degraded:
        inbox_cache.set(cache_key, identity, settings.identity_cache_ttl_seconds)
    return identity
