"""Structured logging context for the Page inbox.

A request id is bound per webhook delivery or API call and stamped on every
inbox log record, so the events of one delivery can be followed across the
processor, the stores and the Graph client.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
import uuid
from collections.abc import Iterator

from app.logging import get_logger

request_id: contextvars.ContextVar[str] = contextvars.ContextVar("inbox_request_id", default="")


def set_request_id(value: str | None = None) -> str:
    if not value:
        value = uuid.uuid4().hex[:8]
    request_id.set(value)
    return value


def get_request_id() -> str:
    return request_id.get()


@contextlib.contextmanager
def request_context(value: str | None = None) -> Iterator[str]:
    token = request_id.set(value or uuid.uuid4().hex[:8])
    try:
        yield request_id.get()
    finally:
        request_id.reset(token)


class InboxLoggerAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        if "request_id" not in extra:
            rid = get_request_id()
            if rid:
                extra["request_id"] = rid
        kwargs["extra"] = extra
        return msg, kwargs


def get_inbox_logger(name: str, **context) -> logging.LoggerAdapter:
    return InboxLoggerAdapter(get_logger(name), context)
