import json
import time
import uuid

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect
from starlette.responses import JSONResponse, PlainTextResponse

from app import config
from app.api.deps import get_db, get_graph_client
from app.schemas.crm.inbox import MetaWebhookPayload
from app.services import meta_webhooks
from app.services.crm.inbox import events
from app.services.crm.inbox.context import get_inbox_logger, request_context
from app.services.meta_graph import MetaGraphClient

logger = get_inbox_logger(__name__)

router = APIRouter(prefix="/api/facebook", tags=["web-public-facebook"])

PAGE_OBJECT = "page"
EVENT_RECEIVED = "EVENT_RECEIVED"


def _signature_header(request: Request) -> str | None:
    return request.headers.get(meta_webhooks.SIGNATURE_HEADER) or request.headers.get(
        meta_webhooks.SIGNATURE_256_HEADER
    )


@router.get("/webhook")
def facebook_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
):
    """Answer Meta's subscription handshake with the challenge when the token matches."""
    expected_token = config.settings.meta_webhook_verify_token
    if not expected_token:
        logger.warning("facebook_webhook_verify_failed reason=no_verify_token_configured")
        return Response(status_code=status.HTTP_403_FORBIDDEN)

    if meta_webhooks.verify_subscription(hub_mode, hub_verify_token, expected_token):
        logger.info("facebook_webhook_verified")
        return PlainTextResponse(hub_challenge or "")

    logger.warning("facebook_webhook_verify_failed mode=%s", hub_mode)
    return Response(status_code=status.HTTP_403_FORBIDDEN)


@router.post("/webhook")
async def facebook_webhook(
    request: Request,
    db: Session = Depends(get_db),
    graph: MetaGraphClient = Depends(get_graph_client),
):
    """Receive Page messaging events.

    The body is authenticated against the app secret before it is parsed.
    Events are processed inline; individual event failures are dead-lettered
    and still acknowledged so Meta does not redeliver the whole batch.
    """
    trace_id = str(uuid.uuid4())
    start_time = time.monotonic()
    with request_context(trace_id[:8]):
        try:
            body = await request.body()
        except ClientDisconnect:
            logger.warning("facebook_webhook_client_disconnect trace_id=%s", trace_id)
            return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        current = config.settings
        if current.meta_verify_signature:
            if not current.meta_app_secret:
                logger.warning("facebook_webhook_secret_missing")
                return Response(status_code=status.HTTP_403_FORBIDDEN)
            if not meta_webhooks.verify_webhook_signature(body, _signature_header(request), current.meta_app_secret):
                logger.warning("facebook_webhook_signature_invalid trace_id=%s", trace_id)
                return Response(status_code=status.HTTP_401_UNAUTHORIZED)

        try:
            raw = json.loads(body)
        except ValueError as exc:
            logger.warning("facebook_webhook_invalid_json error=%s", exc)
            return JSONResponse(status_code=400, content={"detail": "Invalid JSON body", "code": "invalid_payload"})
        if not isinstance(raw, dict):
            return JSONResponse(status_code=400, content={"detail": "Invalid payload", "code": "invalid_payload"})
        if raw.get("object") != PAGE_OBJECT:
            logger.info("facebook_webhook_ignored object=%s", raw.get("object"))
            return JSONResponse(status_code=404, content={"detail": "Not a page subscription", "code": "not_found"})

        try:
            payload = MetaWebhookPayload.model_validate(raw)
        except ValidationError as exc:
            logger.warning("facebook_webhook_invalid_payload error=%s", exc)
            return JSONResponse(status_code=400, content={"detail": "Invalid payload", "code": "invalid_payload"})

        result = await run_in_threadpool(events.process_payload, db, graph, payload, trace_id)
        logger.info(
            "facebook_webhook_handled trace_id=%s entries=%d failed=%d latency_ms=%d",
            trace_id,
            len(payload.entry),
            result.failed,
            int((time.monotonic() - start_time) * 1000),
        )
        return PlainTextResponse(EVENT_RECEIVED)
