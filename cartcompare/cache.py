"""Content-addressed cache for extraction results."""

import hashlib
import json
from typing import Any, Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__).bind(service="cartcompare")

KEY_PREFIX = "cartcompare:"


def make_key(**parts: Any) -> str:
    """
    Hash a canonical JSON serialization of ``parts`` into a cache key.

    Identical parts always give the same key regardless of argument order.
    """
    canonical = json.dumps(parts, sort_keys=True, separators=(",", ":"), default=str)
    return KEY_PREFIX + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResultCache:
    """
    Redis-backed memoization of extraction results.

    Never authoritative: connection problems and corrupt entries read as a
    miss, failed writes are dropped.
    """

    def __init__(self, client: Optional[Any] = None, default_ttl: int = 21600, max_ttl: int = 86400):
        """
        Initialize result cache.

        Args:
            client: ``redis.asyncio.Redis`` (or compatible); None disables caching
            default_ttl: TTL for writes without an explicit one (seconds)
            max_ttl: Upper bound applied to every TTL (seconds)
        """
        self._client = client
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl

    @classmethod
    def from_url(cls, redis_url: Optional[str], **kwargs) -> "ResultCache":
        if not redis_url:
            logger.info("cache_disabled")
            return cls(None, **kwargs)

        try:
            client = redis.from_url(redis_url, socket_timeout=2.0, socket_connect_timeout=2.0)
        except ValueError as e:
            logger.warning("cache_url_invalid", error=str(e))
            return cls(None, **kwargs)
        return cls(client, **kwargs)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss/corruption/unavailability."""
        if self._client is None:
            return None

        try:
            raw = await self._client.get(key)
        except (RedisError, OSError) as e:
            logger.warning("cache_unavailable", operation="get", error=str(e))
            return None

        if raw is None:
            logger.debug("cache_miss", key=key)
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("cache_entry_corrupt", key=key)
            return None

        logger.debug("cache_hit", key=key)
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Store a JSON-serializable value.

        Returns:
            True if the write reached the backend
        """
        if self._client is None:
            return False

        ttl = min(ttl or self.default_ttl, self.max_ttl)
        try:
            payload = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("cache_value_unserializable", key=key, error=str(e))
            return False

        try:
            await self._client.set(key, payload, ex=ttl)
        except (RedisError, OSError) as e:
            logger.warning("cache_unavailable", operation="set", error=str(e))
            return False

        return True

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning("cache_close_failed", error=str(e))
