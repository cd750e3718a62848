"""
Structured JSON logging.

Every record becomes one JSON line. Pipeline context passed through
``extra=`` (interview, question, response, locator, request) is lifted to
top-level keys so log search can follow a single submission end to end.
"""
import json
import logging
import logging.config
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from video_interview.core.config import settings

APPLICATION = "video-interview-api"

_CONTEXT_FIELDS = (
    "request_id",
    "interview_id",
    "question_id",
    "response_id",
    "locator",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_ip",
    "error_code",
    "category",
    "severity",
    "exception_type",
)


class CustomJSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "application": APPLICATION,
            "environment": settings.environment,
        }
        entry.update(
            (name, getattr(record, name))
            for name in _CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _quiet(level: str = "WARNING") -> dict:
    return {"handlers": ["console"], "level": level, "propagate": False}


def setup_logging(level: Optional[str] = None) -> None:
    level = (level or settings.log_level).upper()
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": CustomJSONFormatter},
            "plain": {"format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "plain" if settings.debug else "json",
                "stream": sys.stdout,
            },
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": {
            # Storage/ledger disagreements must reach the sink whatever LOG_LEVEL says
            "reconciliation": _quiet(),
            "uvicorn": _quiet(),
            "sqlalchemy": _quiet(),
            "botocore": _quiet(),
            "httpx": _quiet(),
        },
    })


class RequestLoggingMiddleware:
    """Pure ASGI middleware: one line when a request starts, one when it is answered."""

    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger("api.requests")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        context = {
            "request_id": uuid.uuid4().hex,
            "method": scope.get("method", ""),
            "path": scope.get("path", ""),
            "client_ip": self._client_ip(scope),
        }
        started = time.perf_counter()
        self.logger.info("HTTP request started", extra=context)

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                status_code = message["status"]
                level = logging.ERROR if status_code >= 500 else logging.WARNING if status_code >= 400 else logging.INFO
                self.logger.log(
                    level,
                    "HTTP request completed",
                    extra={
                        **context,
                        "status_code": status_code,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    },
                )
            await send(message)

        await self.app(scope, receive, send_wrapper)

    @staticmethod
    def _client_ip(scope) -> str:
        headers = dict(scope.get("headers") or [])
        forwarded = headers.get(b"x-forwarded-for")
        if forwarded:
            return forwarded.decode().split(",")[0].strip()
        real_ip = headers.get(b"x-real-ip")
        if real_ip:
            return real_ip.decode()
        client = scope.get("client")
        return client[0] if client else "unknown"


def setup_production_logging() -> None:
    setup_logging()
    logging.getLogger("startup").info("Application logging initialized")
