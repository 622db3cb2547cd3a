"""Meta webhook boundary helpers: subscription handshake and payload signatures."""

from __future__ import annotations

import hashlib
import hmac

from app.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature"
SIGNATURE_256_HEADER = "X-Hub-Signature-256"

_DIGESTS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
}


def verify_subscription(mode: str | None, token: str | None, expected_token: str | None) -> bool:
    if not expected_token:
        return False
    if mode != "subscribe" or token is None:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected_token.encode("utf-8"))


def verify_webhook_signature(body: bytes, signature: str | None, app_secret: str) -> bool:
    """Check an ``algo=<hex>`` signature header against the raw request body.

    Accepts both the legacy ``X-Hub-Signature`` (sha1) and
    ``X-Hub-Signature-256`` forms.
    """
    if not signature or "=" not in signature:
        return False
    algorithm, _, received = signature.partition("=")
    digest = _DIGESTS.get(algorithm.strip().lower())
    if digest is None:
        logger.warning("meta_webhook_signature_unsupported algorithm=%s", algorithm)
        return False
    expected = hmac.new(app_secret.encode("utf-8"), body, digest).hexdigest()
    return hmac.compare_digest(expected, received.strip().lower())


def sign_payload(body: bytes, app_secret: str, algorithm: str = "sha1") -> str:
    digest = _DIGESTS[algorithm]
    return f"{algorithm}=" + hmac.new(app_secret.encode("utf-8"), body, digest).hexdigest()
