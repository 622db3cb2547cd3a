from fastapi import Header

from app.db import get_db  # noqa: F401
from app.services.auth import verify_identity
from app.services.crm.inbox.errors import InboxAuthError
from app.services.meta_graph import MetaGraphClient


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def require_account(authorization: str | None = Header(default=None)) -> str:
    """Authenticated account id for the request."""
    token = _extract_bearer_token(authorization)
    if not token:
        raise InboxAuthError("unauthorized", "Unauthorized")
    return verify_identity(token)


def get_graph_client() -> MetaGraphClient:
    """Graph client dependency. Tests override it with a fake."""
    return MetaGraphClient()
