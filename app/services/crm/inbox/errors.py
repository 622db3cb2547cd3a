"""Unified error taxonomy for CRM inbox services."""

from __future__ import annotations

from dataclasses import dataclass

from app.services.meta_graph import MetaGraphError


@dataclass(frozen=True)
class InboxError(Exception):
    code: str
    detail: str
    status_code: int = 400
    retryable: bool = False


class InboxValidationError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=400, retryable=False)


class InboxNotFoundError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=404, retryable=False)


class InboxAuthError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=401, retryable=False)


class InboxForbiddenError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=403, retryable=False)


class InboxConflictError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=409, retryable=False)


class InboxRateLimitError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=429, retryable=True)


class InboxTransientError(InboxError):
    def __init__(self, code: str, detail: str, status_code: int = 503):
        super().__init__(code=code, detail=detail, status_code=status_code, retryable=True)


class InboxExternalError(InboxError):
    def __init__(self, code: str, detail: str, status_code: int = 502, retryable: bool = True):
        super().__init__(code=code, detail=detail, status_code=status_code, retryable=retryable)


class NoAccessiblePageError(InboxError):
    """None of the caller's pages could read the requested conversation."""

    def __init__(self, conversation_id: str):
        super().__init__(
            code="no_accessible_page",
            detail=f"Conversation {conversation_id} is not accessible from any connected page",
            status_code=404,
            retryable=False,
        )


# Graph error codes that mean the page token can no longer be used as-is.
_TOKEN_EXPIRED_CODES = {190}
_PERMISSION_CODES = {10, 200, 230}
_INVALID_OBJECT_CODES = {100}


def translate_graph_error(exc: MetaGraphError) -> InboxError:
    """Map an upstream Graph failure onto an actionable inbox error."""
    if exc.transient and exc.code is None:
        return InboxTransientError("graph_unavailable", "Facebook API is temporarily unreachable")
    if exc.code in _TOKEN_EXPIRED_CODES:
        return InboxAuthError(
            "graph_token_expired",
            "Facebook access token expired. Please reconnect your page.",
        )
    if exc.code in _PERMISSION_CODES:
        return InboxForbiddenError(
            "graph_permission_denied",
            "Insufficient permissions to access conversations. "
            "Please reconnect your page with proper permissions.",
        )
    if exc.code in _INVALID_OBJECT_CODES:
        return InboxNotFoundError(
            "graph_invalid_page",
            "Invalid Facebook page ID or the page no longer exists.",
        )
    if exc.code in {4, 17, 32, 613} or exc.status_code == 429:
        return InboxRateLimitError("graph_rate_limited", f"Facebook API Error: {exc.message}")
    return InboxExternalError("graph_error", f"Facebook API Error: {exc.message}", retryable=exc.transient)
