"""Bearer token verification against the account credential store.

Accounts are managed elsewhere; this service only checks the signed access
token and returns the account id carried in ``sub``.
"""

from jose import JWTError, jwt

from app import config
from app.services.crm.inbox.errors import InboxAuthError


def verify_identity(token: str) -> str:
    current = config.settings
    if not current.jwt_secret:
        raise InboxAuthError("auth_not_configured", "Token verification is not configured")
    try:
        payload = jwt.decode(token, current.jwt_secret, algorithms=[current.jwt_algorithm])
    except JWTError as exc:
        raise InboxAuthError("invalid_token", "Invalid or expired token") from exc
    account_id = payload.get("sub")
    if not account_id:
        raise InboxAuthError("invalid_token", "Token has no subject")
    return str(account_id)
