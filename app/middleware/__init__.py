"""
Middleware components for request processing.

- Request context (request ID, client IP, user agent)
- Rate limiting (per-user, per-IP and paid-endpoint limits) and its headers
"""

from app.middleware.rate_limit_dependencies import (
    rate_limit_combined,
    rate_limit_ip,
    rate_limit_search,
    rate_limit_user,
)
from app.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from app.middleware.rate_limiter import rate_limiter
from app.middleware.request_context import RequestContextMiddleware

__all__ = [
    "RequestContextMiddleware",
    "RateLimitHeadersMiddleware",
    "rate_limiter",
    "rate_limit_user",
    "rate_limit_ip",
    "rate_limit_combined",
    "rate_limit_search",
]
