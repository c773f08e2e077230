# app/services/redis_client.py
"""
Redis-backed TTL cache store.

Caching is an optimization, never a correctness dependency: every public
operation swallows Redis/serialization failures and degrades to a neutral
value (None, False, -1 or 0) so callers can fall back to direct computation.
"""

import json
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def generate_cache_key(prefix: str, *parts: Any) -> str:
    """Build a colon-delimited key, e.g. ("query_expansion", "ceo") -> "query_expansion:ceo"."""
    return ":".join([prefix, *[str(part) for part in parts if part is not None]])


class RedisCacheStore:
    """Lazily connected, pooled Redis client exposing the cache operations."""

    def __init__(self, url: str | None = None, default_ttl: int | None = None):
        self.url = url or settings.REDIS_URL
        self.default_ttl = default_ttl or settings.CACHE_DEFAULT_TTL_SECONDS
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Create the connection pool and verify it with a PING."""
        if self._initialized:
            return

        try:
            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info(
                "Redis cache store initialized", max_connections=settings.REDIS_MAX_CONNECTIONS
            )

        except Exception as e:
            logger.error("Failed to initialize Redis cache store", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis cache store closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def get_client(self) -> redis.Redis:
        """Return the live client, connecting on first use. Raises when Redis is unreachable."""
        await self._ensure_initialized()
        return self.client

    async def ping(self) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        """Store a JSON-serializable value with a TTL (defaults to 24h)."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning("Cache value not serializable", key=key[:60], error=str(e))
            return False

        try:
            await self._ensure_initialized()
            if ttl and ttl > 0:
                result = await self.client.setex(key, ttl, payload)
            else:
                result = await self.client.set(key, payload)
            return bool(result)
        except Exception as e:
            logger.error("Redis SET failed", key=key[:60], error=str(e))
            return False

    async def get(self, key: str, parse_json: bool = True) -> Any | None:
        """Return the cached value, or None on miss, expiry or failure."""
        try:
            await self._ensure_initialized()
            raw = await self.client.get(key)
        except Exception as e:
            logger.error("Redis GET failed", key=key[:60], error=str(e))
            return None

        if raw is None:
            return None
        if not parse_json:
            return raw

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Cached value is not valid JSON", key=key[:60], error=str(e))
            return None

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.delete(key)
            return result > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:60], error=str(e))
            return False

    async def exists(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.exists(key)
            return result > 0
        except Exception as e:
            logger.error("Redis EXISTS failed", key=key[:60], error=str(e))
            return False

    async def ttl(self, key: str) -> int:
        """Seconds to live; Redis semantics (-2 missing, -1 no expiry), -1 on failure."""
        try:
            await self._ensure_initialized()
            return int(await self.client.ttl(key))
        except Exception as e:
            logger.error("Redis TTL failed", key=key[:60], error=str(e))
            return -1

    async def clear_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern and return how many were removed."""
        try:
            await self._ensure_initialized()
            batch: list[str] = []
            deleted = 0
            async for key in self.client.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.client.delete(*batch)

            logger.info("Cache pattern cleared", pattern=pattern, deleted=deleted)
            return deleted
        except Exception as e:
            logger.error("Redis pattern clear failed", pattern=pattern, error=str(e))
            return 0

    async def get_stats(self) -> dict[str, Any]:
        """Best-effort key count and memory usage."""
        try:
            await self._ensure_initialized()
            key_count = await self.client.dbsize()
            memory = await self.client.info("memory")
            return {
                "connected": True,
                "keys": int(key_count),
                "used_memory": memory.get("used_memory_human"),
            }
        except Exception as e:
            logger.error("Redis stats failed", error=str(e))
            return {"connected": False, "error": str(e)}


# Global instance
cache_store = RedisCacheStore()
