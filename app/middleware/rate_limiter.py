"""
Rate Limiter - Redis-based request rate limiting.

Sliding window limits keyed by identity (user id, client IP, or user id
scoped to the paid search endpoints). Request timestamps live in Redis
sorted sets and are checked and recorded in one atomic Lua script.

If Redis is unreachable the limiter fails open by default: the budget gate,
not the rate limiter, is what protects paid provider calls.

Usage:
    from app.middleware.rate_limiter import rate_limiter

    allowed, info = await rate_limiter.check_rate_limit(
        key="user:user-123",
        limit=100,
        window_seconds=60,
    )
"""

import time

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import cache_store

logger = get_logger(__name__)


class RateLimiter:
    """
    Sliding window rate limiter.

    Example:
        With 30 req/min and 30 requests at 10:00:00, the next request is
        accepted from 10:01:00 onward, not at an arbitrary bucket boundary.
    """

    # Returns {allowed (0 or 1), current_count, oldest_timestamp or 0}
    RATE_LIMIT_LUA_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_seconds = tonumber(ARGV[2])
    local current_time = tonumber(ARGV[3])
    local unique_id = ARGV[4]

    redis.call('ZREMRANGEBYSCORE', key, 0, current_time - window_seconds)

    local current_count = redis.call('ZCARD', key)
    if current_count >= limit then
        local oldest_entries = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        local oldest_timestamp = 0
        if #oldest_entries > 0 then
            oldest_timestamp = tonumber(oldest_entries[2])
        end
        return {0, current_count, oldest_timestamp}
    end

    redis.call('ZADD', key, current_time, unique_id)
    redis.call('EXPIRE', key, window_seconds * 2)
    return {1, current_count + 1, 0}
    """

    def __init__(
        self,
        default_limit: int = 100,
        window_seconds: int = 60,
        fail_open: bool = True,
        store=None,
    ):
        """
        Args:
            default_limit: Requests per window when the caller gives no limit
            window_seconds: Window length in seconds
            fail_open: Allow requests when Redis fails
            store: Cache store providing get_client() (defaults to the shared one)
        """
        self.default_limit = default_limit
        self.window_seconds = window_seconds
        self.fail_open = fail_open
        self.store = store or cache_store

    async def check_rate_limit(
        self,
        key: str,
        limit: int | None = None,
        window_seconds: int | None = None,
    ) -> tuple[bool, dict]:
        """
        Record one request against `key` and report whether it is allowed.

        Returns:
            (allowed, info) where info carries limit, remaining and
            retry_after (seconds, only when denied).
        """
        limit = limit or self.default_limit
        window_seconds = window_seconds or self.window_seconds

        redis_key = f"ratelimit:{key}"
        current_time = int(time.time())

        try:
            client = await self.store.get_client()
            unique_id = f"{current_time}:{time.time_ns()}"

            result = await client.eval(
                self.RATE_LIMIT_LUA_SCRIPT,
                1,
                redis_key,
                limit,
                window_seconds,
                current_time,
                unique_id,
            )

            allowed = bool(result[0])
            current_count = int(result[1])
            oldest_timestamp = int(result[2]) if result[2] else 0

            if not allowed:
                if oldest_timestamp > 0:
                    retry_after = max(1, (oldest_timestamp + window_seconds) - current_time)
                else:
                    retry_after = window_seconds

                return False, self._create_info_dict(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    retry_after=retry_after,
                    window_seconds=window_seconds,
                )

            return True, self._create_info_dict(
                allowed=True,
                limit=limit,
                remaining=max(0, limit - current_count),
                window_seconds=window_seconds,
            )

        except Exception as e:
            logger.error(
                "Rate limiter Redis error",
                error=str(e),
                error_type=type(e).__name__,
                key=key,
                limit=limit,
                fail_open=self.fail_open,
            )

            if self.fail_open:
                return True, self._create_info_dict(
                    allowed=True, limit=limit, remaining=limit, error="rate_limiter_error"
                )
            return False, self._create_info_dict(
                allowed=False,
                limit=limit,
                remaining=0,
                retry_after=window_seconds,
                error="rate_limiter_error",
            )

    async def _check_scoped(
        self, scope: str, identity: str, limit_name: str, limit: int | None
    ) -> tuple[bool, dict]:
        if limit is None:
            limit = settings.get_rate_limits()[limit_name]
        return await self.check_rate_limit(
            key=f"{scope}:{identity}",
            limit=limit,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )

    async def check_user_rate_limit(self, user_id: str, limit: int | None = None) -> tuple[bool, dict]:
        return await self._check_scoped("user", user_id, "user_per_minute", limit)

    async def check_search_rate_limit(
        self, user_id: str, limit: int | None = None
    ) -> tuple[bool, dict]:
        """Tighter per-user window for endpoints that reach paid providers."""
        return await self._check_scoped("search", user_id, "search_per_minute", limit)

    async def check_ip_rate_limit(self, ip_address: str, limit: int | None = None) -> tuple[bool, dict]:
        return await self._check_scoped("ip", ip_address, "ip_per_minute", limit)

    def _create_info_dict(
        self,
        allowed: bool,
        limit: int,
        remaining: int,
        retry_after: int | None = None,
        window_seconds: int | None = None,
        error: str | None = None,
    ) -> dict:
        info = {
            "allowed": allowed,
            "limit": limit,
            "remaining": remaining,
            "retry_after": retry_after,
        }

        if window_seconds is not None:
            info["window_seconds"] = window_seconds

        if error:
            info["error"] = error

        return info


# Global singleton
rate_limiter = RateLimiter(
    default_limit=settings.RATE_LIMIT_USER_PER_MINUTE,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    fail_open=settings.RATE_LIMIT_FAIL_OPEN,
)
