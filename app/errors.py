from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.logging import get_logger
from app.services.crm.inbox.errors import InboxError

logger = get_logger(__name__)

_HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


def _http_error_code(status_code: int) -> str:
    return _HTTP_ERROR_CODES.get(status_code, f"http_{status_code}")


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(InboxError)
    async def _inbox_error_handler(request: Request, exc: InboxError):
        if exc.status_code >= 500:
            logger.warning(
                "inbox_error path=%s code=%s status=%s detail=%s",
                request.url.path,
                exc.code,
                exc.status_code,
                exc.detail,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": exc.code},
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": _http_error_code(exc.status_code)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ())),
                "message": error.get("msg"),
                "type": error.get("type"),
            }
            for error in exc.errors()
        ]
        logger.info("request_validation_failed path=%s errors=%d", request.url.path, len(errors))
        return JSONResponse(
            status_code=422,
            content=jsonable_encoder({"detail": errors, "code": "validation_error"}),
        )
