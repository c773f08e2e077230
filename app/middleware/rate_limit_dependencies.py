"""
Rate Limit Dependencies - per-endpoint rate limiting as FastAPI dependencies.

Usage:
    from app.middleware.rate_limit_dependencies import rate_limit_user

    @router.get("/my-endpoint")
    async def my_endpoint(
        request: Request,
        claims: dict = Depends(auth_dependency),
        _rate: None = Depends(rate_limit_user),
    ):
        pass

The limit info of the last check is stored on request.state.rate_limit_info
for RateLimitHeadersMiddleware.
"""

from fastapi import Depends, HTTPException, Request, status

from app.auth.verify import auth_dependency
from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limiter import rate_limiter

logger = get_logger(__name__)


def _too_many_requests(info: dict, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": "rate_limit_exceeded",
            "message": message,
            "limit": info["limit"],
            "retry_after": info["retry_after"],
        },
        headers={"Retry-After": str(info["retry_after"])},
    )


async def rate_limit_user_only(
    request: Request,
    claims: dict = Depends(auth_dependency),
) -> None:
    """
    Per-user limit for authenticated endpoints.

    Raises:
        HTTPException: 429 if the user exceeded the limit
    """
    if not settings.RATE_LIMIT_ENABLED:
        return

    user_id = claims.get("sub")
    if not user_id:
        logger.warning("Rate limit check skipped - no user_id in claims")
        return

    allowed, info = await rate_limiter.check_user_rate_limit(user_id)
    request.state.rate_limit_info = info

    if not allowed:
        logger.warning(
            "User rate limit exceeded",
            user_id=user_id,
            limit=info["limit"],
            retry_after=info["retry_after"],
            path=request.url.path,
        )
        raise _too_many_requests(
            info, f"Too many requests. Try again in {info['retry_after']} seconds."
        )


async def rate_limit_ip_only(request: Request) -> None:
    """
    Per-IP limit, for unauthenticated endpoints.

    Raises:
        HTTPException: 429 if the client IP exceeded the limit
    """
    if not settings.RATE_LIMIT_ENABLED:
        return

    ip_address = getattr(request.state, "ip_address", None)
    if not ip_address:
        logger.warning("Rate limit check skipped - no IP address")
        return

    allowed, info = await rate_limiter.check_ip_rate_limit(ip_address)
    request.state.rate_limit_info = info

    if not allowed:
        logger.warning(
            "IP rate limit exceeded",
            ip_address=ip_address,
            limit=info["limit"],
            retry_after=info["retry_after"],
            path=request.url.path,
        )
        raise _too_many_requests(
            info,
            f"Too many requests from your IP. Try again in {info['retry_after']} seconds.",
        )


async def rate_limit_combined(
    request: Request,
    claims: dict = Depends(auth_dependency),
) -> None:
    """
    Per-IP limit first (broader), then per-user (finer-grained).

    Raises:
        HTTPException: 429 if either limit is exceeded
    """
    if not settings.RATE_LIMIT_ENABLED:
        return

    ip_address = getattr(request.state, "ip_address", None)
    if ip_address:
        ip_allowed, ip_info = await rate_limiter.check_ip_rate_limit(ip_address)

        if not ip_allowed:
            request.state.rate_limit_info = ip_info
            logger.warning(
                "IP rate limit exceeded (combined check)",
                ip_address=ip_address,
                limit=ip_info["limit"],
                retry_after=ip_info["retry_after"],
            )
            raise _too_many_requests(
                ip_info,
                f"Too many requests from your IP. Try again in {ip_info['retry_after']} seconds.",
            )

    user_id = claims.get("sub")
    if user_id:
        user_allowed, user_info = await rate_limiter.check_user_rate_limit(user_id)

        # User info takes precedence over IP info in the response headers
        request.state.rate_limit_info = user_info

        if not user_allowed:
            logger.warning(
                "User rate limit exceeded (combined check)",
                user_id=user_id,
                limit=user_info["limit"],
                retry_after=user_info["retry_after"],
            )
            raise _too_many_requests(
                user_info, f"Too many requests. Try again in {user_info['retry_after']} seconds."
            )


async def rate_limit_search(
    request: Request,
    claims: dict = Depends(auth_dependency),
) -> None:
    """
    Per-user limit for endpoints that spend provider budget (search, rerank,
    expansion, AI grouping). Runs on top of the general per-user limit.
    """
    if not settings.RATE_LIMIT_ENABLED:
        return

    user_id = claims.get("sub")
    if not user_id:
        return

    allowed, info = await rate_limiter.check_search_rate_limit(user_id)
    request.state.rate_limit_info = info

    if not allowed:
        logger.warning(
            "Search rate limit exceeded",
            user_id=user_id,
            limit=info["limit"],
            retry_after=info["retry_after"],
            path=request.url.path,
        )
        raise _too_many_requests(
            info, f"Too many searches. Try again in {info['retry_after']} seconds."
        )


# Convenience aliases
rate_limit_user = rate_limit_combined
rate_limit_ip = rate_limit_ip_only
