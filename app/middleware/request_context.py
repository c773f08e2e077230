"""
RequestContext Middleware - request id and client IP on every request.

Sets on request.state:
- request_id: UUID for tracing, echoed back as X-Request-ID
- ip_address: client IP (used by the per-IP rate limit)
- user_agent: client user agent string

The request id is also bound into structlog's context variables so every
log line emitted while handling the request carries it.
"""

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
)

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Request.state namespace convention:
    - request_id, ip_address, user_agent: set here
    - rate_limit_info: set by rate limit dependencies
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = self._extract_client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        clear_request_context()
        bind_request_context(request_id=request_id)

        logger.debug(
            "Request started",
            method=request.method,
            path=request.url.path,
            ip_address=request.state.ip_address,
        )

        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        response.headers["X-Request-ID"] = request_id
        return response

    def _extract_client_ip(self, request: Request) -> str | None:
        """
        Direct peer address, unless the peer is a trusted proxy and
        TRUST_X_FORWARDED_FOR is on, in which case the first X-Forwarded-For
        entry is used. Untrusted peers cannot spoof their way past the
        per-IP limit.
        """
        direct_ip = request.client.host if request.client else None

        if not settings.TRUST_X_FORWARDED_FOR:
            return direct_ip

        if direct_ip and direct_ip in settings.TRUSTED_PROXY_IPS:
            forwarded_for = request.headers.get("x-forwarded-for")
            if forwarded_for:
                return forwarded_for.split(",")[0].strip()

        return direct_ip
