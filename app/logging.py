"""Application logging setup.

Log lines are event style: ``event_name key=value ...``. The request id set by
``app.services.crm.inbox.context`` is appended to every record when present.
"""

from __future__ import annotations

import logging
import sys

from app.config import settings

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s%(request_id_suffix)s"

_configured = False


class _RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        request_id = getattr(record, "request_id", None)
        record.request_id_suffix = f" request_id={request_id}" if request_id else ""
        return True


def configure_logging(level: str | None = None) -> None:
    """Install the root handler once per process."""
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler.addFilter(_RequestIdFilter())
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel((level or settings.log_level).upper())
    # httpx logs every request at INFO, including the access token in the query string
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
