"""
Request monitoring middleware for the audit trail service.

Provides request ids, request timing, slow request logging and the JSON log
formatter used in production.
"""

import time
import uuid
import logging
import json
from typing import Callable, Optional
from contextvars import ContextVar
from datetime import datetime

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from audittrail.core.config import settings

logger = logging.getLogger(__name__)

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_ctx.get()


class MonitoringMiddleware(BaseHTTPMiddleware):
    """
    Request monitoring middleware.

    Features:
    - Request ID tracking (X-Request-ID in and out)
    - Request timing
    - Slow request logging
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(request_id)

        start_time = time.perf_counter()
        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        try:
            try:
                response = await call_next(request)
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.error(
                    "Request failed with exception",
                    extra={
                        "request_id": request_id,
                        "method": method,
                        "path": path,
                        "client_ip": client_ip,
                        "duration_ms": round(duration_ms, 2),
                        "error": str(e),
                        "event_type": "request_error"
                    }
                )
                raise

            duration_ms = (time.perf_counter() - start_time) * 1000

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

            log_context = {
                "request_id": request_id,
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
                "event_type": "request_complete"
            }

            if duration_ms > settings.SLOW_REQUEST_THRESHOLD_MS:
                log_context["event_type"] = "slow_request"
                logger.warning(
                    f"Slow request: {method} {path} took {duration_ms:.2f}ms",
                    extra=log_context
                )
            elif settings.DEBUG or path.startswith("/api/"):
                logger.info(
                    f"Request: {method} {path} - {response.status_code} - {duration_ms:.2f}ms",
                    extra=log_context
                )

            return response
        finally:
            request_id_ctx.reset(token)


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in JSON format for easy parsing by log aggregation systems.
    """

    RESERVED = (
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName"
    )

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_ctx.get()
        if request_id:
            log_data["request_id"] = request_id

        for key, value in record.__dict__.items():
            if key not in self.RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_structured_logging(log_level: str = "INFO", json_format: bool = True):
    """
    Configure application-wide logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, use JSON formatting; otherwise use standard format
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    if json_format:
        console_handler.setFormatter(StructuredJsonFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
                defaults={"request_id": "no-request"}
            )
        )

    root_logger.addHandler(console_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.DEBUG else logging.WARNING
    )

    logger.info("Structured logging configured", extra={"json_format": json_format})
