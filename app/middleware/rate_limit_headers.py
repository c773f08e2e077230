"""
Rate Limit Headers Middleware - expose rate limit state on responses.

Headers:
- X-RateLimit-Limit: requests allowed in the window
- X-RateLimit-Remaining: requests left in the current window
- X-RateLimit-Reset: unix time when a denied client may retry
- Retry-After: seconds to wait (denied requests only)

Reads request.state.rate_limit_info, set by the rate limit dependencies.
Responses without that info are left untouched.
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)

        rate_limit_info = getattr(request.state, "rate_limit_info", None)
        if not rate_limit_info:
            return response

        if "limit" in rate_limit_info:
            response.headers["X-RateLimit-Limit"] = str(rate_limit_info["limit"])

        if "remaining" in rate_limit_info:
            response.headers["X-RateLimit-Remaining"] = str(rate_limit_info["remaining"])

        retry_after = rate_limit_info.get("retry_after")
        if retry_after is not None:
            response.headers["X-RateLimit-Reset"] = str(int(time.time()) + retry_after)
            if not rate_limit_info.get("allowed", True):
                response.headers["Retry-After"] = str(retry_after)

        return response
