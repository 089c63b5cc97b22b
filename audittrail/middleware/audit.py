from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request
import logging

from audittrail.middleware.monitoring import get_request_id
from audittrail.schemas.audit import RequestMetadata

logger = logging.getLogger(__name__)

request_metadata_ctx: ContextVar[Optional[RequestMetadata]] = ContextVar("request_metadata", default=None)


def extract_request_metadata(request: Request) -> RequestMetadata:
    """Build audit metadata from request headers."""
    forwarded_for = request.headers.get("x-forwarded-for")
    ip_address = (
        (forwarded_for.split(",")[0].strip() if forwarded_for else None)
        or request.headers.get("x-real-ip")
        or (request.client.host if request.client else None)
        or "unknown"
    )
    return RequestMetadata(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent") or "unknown",
        session_id=request.headers.get("x-session-id") or get_request_id(),
    )


def get_request_metadata() -> RequestMetadata:
    """Metadata of the current request, or an 'unknown' placeholder outside one."""
    return request_metadata_ctx.get() or RequestMetadata()


class AuditContextMiddleware(BaseHTTPMiddleware):
    """Captures request metadata so audit writes can attach it."""

    async def dispatch(self, request: Request, call_next):
        metadata = extract_request_metadata(request)
        token = request_metadata_ctx.set(metadata)
        try:
            return await call_next(request)
        finally:
            request_metadata_ctx.reset(token)
