from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.crm import router as crm_router
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.services.crm.inbox.context import request_context
from app.telemetry import setup_otel
from app.web.public.crm_webhooks import router as facebook_webhook_router

REQUEST_ID_HEADER = "X-Request-ID"

app = FastAPI(title="pagedesk API")

configure_logging()
setup_otel(app)
register_error_handlers(app)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Bind a request id to every log record emitted while serving the request."""
    with request_context(request.headers.get(REQUEST_ID_HEADER)) as request_id:
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


app.include_router(crm_router, prefix="/api")
app.include_router(facebook_webhook_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.head("/health")
def head_health():
    return Response(status_code=200)


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
