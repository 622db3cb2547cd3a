"""Meta Graph API client for Facebook Page messaging.

Thin synchronous wrapper around the Graph endpoints the inbox needs: page
connection (token exchange, page listing, webhook subscription), conversation
and message listing, participant and profile lookups, and the Send API.

Every call is bounded by ``META_REQUEST_TIMEOUT`` and failures surface as
``MetaGraphError`` carrying the Graph error code so callers can decide whether
to degrade or translate the failure.
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from app.config import settings
from app.logging import get_logger
from app.services.crm.inbox.observability import GRAPH_REQUEST_TIME, GRAPH_REQUESTS

logger = get_logger(__name__)

CONVERSATION_FIELDS = "id,updated_time,participants,can_reply,is_subscribed,message_count,unread_count"
MESSAGE_FIELDS = "id,message,from,created_time,attachments"
PAGE_LIST_FIELDS = "id,name,access_token,category,about,website,phone,emails,picture{url},tasks"
PAGE_INFO_FIELDS = "id,name,category,about,website,phone,emails,picture{url},fan_count,is_verified"
WEBHOOK_SUBSCRIBED_FIELDS = "messages,messaging_postbacks,messaging_optins,message_deliveries,message_reads"
PROFILE_PICTURE_SIZE = 200


class MetaGraphError(Exception):
    """A Graph API call failed, either at transport level or with an error body."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: int | None = None,
        subcode: int | None = None,
        error_type: str | None = None,
        transient: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.subcode = subcode
        self.error_type = error_type
        self.transient = transient

    @classmethod
    def from_response(cls, response: httpx.Response) -> MetaGraphError:
        status_code = _safe_status_code(response)
        error: dict = {}
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
        message = error.get("message") or f"HTTP {status_code}"
        code = _as_int(error.get("code"))
        transient = bool(error.get("is_transient")) or (status_code is not None and status_code >= 500)
        return cls(
            str(message),
            status_code=status_code,
            code=code,
            subcode=_as_int(error.get("error_subcode")),
            error_type=error.get("type"),
            transient=transient,
        )

    def __repr__(self) -> str:
        return f"MetaGraphError(status={self.status_code}, code={self.code}, message={self.message!r})"


def _safe_status_code(response: httpx.Response) -> int | None:
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    if status_code is None:
        return None
    try:
        return int(status_code)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class MetaGraphClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        app_id: str | None = None,
        app_secret: str | None = None,
    ):
        self.base_url = (base_url or settings.meta_graph_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.meta_request_timeout
        self.app_id = app_id if app_id is not None else settings.meta_app_id
        self.app_secret = app_secret if app_secret is not None else settings.meta_app_secret

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        access_token: str | None = None,
        params: dict | None = None,
        json: dict | None = None,
    ) -> dict:
        query = dict(params or {})
        if access_token:
            query["access_token"] = access_token
        url = f"{self.base_url}/{path.lstrip('/')}"
        started = time.monotonic()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, params=query, json=json)
        except httpx.HTTPError as exc:
            GRAPH_REQUESTS.labels(operation=operation, outcome="transport_error").inc()
            logger.warning("meta_graph_transport_error operation=%s error=%s", operation, exc)
            raise MetaGraphError(f"Transport error: {exc}", transient=True) from exc
        finally:
            GRAPH_REQUEST_TIME.labels(operation=operation).observe(time.monotonic() - started)

        status_code = _safe_status_code(response)
        if status_code is None or status_code >= 400:
            error = MetaGraphError.from_response(response)
            GRAPH_REQUESTS.labels(operation=operation, outcome="error").inc()
            logger.warning(
                "meta_graph_request_failed operation=%s status=%s code=%s message=%s",
                operation,
                status_code,
                error.code,
                error.message,
            )
            raise error
        try:
            data = response.json()
        except ValueError as exc:
            GRAPH_REQUESTS.labels(operation=operation, outcome="error").inc()
            raise MetaGraphError("Invalid JSON in Graph response", status_code=status_code) from exc
        if not isinstance(data, dict):
            data = {"data": data}
        GRAPH_REQUESTS.labels(operation=operation, outcome="success").inc()
        return data

    # ------------------------------------------------------------------
    # Page connection
    # ------------------------------------------------------------------

    def exchange_token(self, short_lived_token: str) -> str:
        """Exchange a short-lived user token for a long-lived one."""
        data = self._request(
            "GET",
            "oauth/access_token",
            operation="exchange_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": short_lived_token,
            },
        )
        token = data.get("access_token")
        if not token:
            raise MetaGraphError("Token exchange returned no access token")
        return token

    def list_pages_for_account(self, user_token: str) -> list[dict]:
        """Pages the user can manage, each with its own page access token."""
        data = self._request(
            "GET",
            "me/accounts",
            operation="list_pages",
            access_token=user_token,
            params={"fields": PAGE_LIST_FIELDS},
        )
        pages = data.get("data") or []
        return [page for page in pages if "MANAGE" in (page.get("tasks") or [])]

    def get_page_info(self, page_id: str, access_token: str) -> dict:
        return self._request(
            "GET",
            page_id,
            operation="page_info",
            access_token=access_token,
            params={"fields": PAGE_INFO_FIELDS},
        )

    def subscribe_webhook(self, page_id: str, access_token: str) -> bool:
        data = self._request(
            "POST",
            f"{page_id}/subscribed_apps",
            operation="subscribe_webhook",
            access_token=access_token,
            params={"subscribed_fields": WEBHOOK_SUBSCRIBED_FIELDS},
        )
        return bool(data.get("success"))

    # ------------------------------------------------------------------
    # Conversations and messages
    # ------------------------------------------------------------------

    def list_conversations(self, page_id: str, access_token: str, limit: int = 20) -> list[dict]:
        data = self._request(
            "GET",
            f"{page_id}/conversations",
            operation="list_conversations",
            access_token=access_token,
            params={"fields": CONVERSATION_FIELDS, "limit": limit},
        )
        return data.get("data") or []

    def list_messages(self, conversation_id: str, access_token: str, limit: int = 50) -> list[dict]:
        """Messages of a conversation, newest first as Graph returns them."""
        data = self._request(
            "GET",
            f"{conversation_id}/messages",
            operation="list_messages",
            access_token=access_token,
            params={"fields": MESSAGE_FIELDS, "limit": limit},
        )
        return data.get("data") or []

    def get_conversation_participants(self, conversation_id: str, access_token: str) -> list[dict]:
        data = self._request(
            "GET",
            conversation_id,
            operation="conversation_participants",
            access_token=access_token,
            params={"fields": "participants"},
        )
        participants = data.get("participants") or {}
        return participants.get("data") or []

    def send_message(
        self,
        recipient_id: str,
        message: dict,
        access_token: str,
        messaging_type: str = "RESPONSE",
    ) -> dict:
        data = self._request(
            "POST",
            "me/messages",
            operation="send_message",
            access_token=access_token,
            json={
                "recipient": {"id": recipient_id},
                "message": message,
                "messaging_type": messaging_type,
            },
        )
        logger.info(
            "facebook_message_sent recipient=%s... message_id=%s",
            recipient_id[:8],
            data.get("message_id"),
        )
        return data

    def send_text_message(self, recipient_id: str, text: str, access_token: str) -> dict:
        return self.send_message(recipient_id, {"text": text}, access_token)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_user_profile(self, user_id: str, access_token: str, fields: str) -> dict:
        return self._request(
            "GET",
            user_id,
            operation="user_profile",
            access_token=access_token,
            params={"fields": fields},
        )

    def get_profile_picture(self, user_id: str, access_token: str) -> str | None:
        data = self._request(
            "GET",
            f"{user_id}/picture",
            operation="profile_picture",
            access_token=access_token,
            params={"redirect": "false", "height": PROFILE_PICTURE_SIZE, "width": PROFILE_PICTURE_SIZE},
        )
        picture = data.get("data") or {}
        return picture.get("url") if isinstance(picture, dict) else None
