"""Structured logging for the storefront service.

Every record is emitted as one JSON object on stdout. Fields passed with
``extra=`` (visitor ids, experiment ids, feed sizes) become top-level keys
so signal, recommendation and experiment events can be queried directly.
"""

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# LogRecord attributes that are not user-supplied "extra" fields
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}

VISITOR_HEADER = "x-visitor-id"
IDENTITY_HEADER = "x-identity-id"
REQUEST_ID_HEADER = "X-Request-ID"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "urllib3")

request_logger = logging.getLogger("storefront.api.requests")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with extra fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def setup_logging(log_level: str = "INFO") -> None:
    """Route all logging through a single JSON stdout handler.

    Args:
        log_level: Root level name; unknown names fall back to INFO.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _request_fields(request: Request, request_id: str) -> Dict[str, Any]:
    return {
        "request_id": request_id,
        "http_method": request.method,
        "route": request.url.path,
        "visitor_id": request.headers.get(VISITOR_HEADER),
        "identity_id": request.headers.get(IDENTITY_HEADER),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log with visitor context, and a request id echoed to clients."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = uuid.uuid4().hex
        fields = _request_fields(request, request_id)
        started = time.perf_counter()

        request_logger.debug("Request received", extra={**fields, "query": str(request.query_params)})

        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.error(
                "Unhandled error while serving request",
                extra={
                    **fields,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
                exc_info=True,
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        request_logger.info(
            "Request served",
            extra={
                **fields,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return response
