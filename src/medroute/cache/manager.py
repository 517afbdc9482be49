"""Two-tier response cache.

Tiers are checked and written in a fixed order:

  1. Durable tier (Redis, optional). Native expiry via SETEX. Any error is
     logged and treated as a miss; it never reaches the caller.
  2. In-process tier. Bounded dict of key -> (json, absolute expiry).
     When full, the first key the dict yields is evicted (insertion order,
     not LRU). Expired entries read as misses and are left in place until
     purge_expired() or eviction removes them.

set() always writes the in-process tier so it stays warm when Redis is
down. Values must be JSON-serializable.
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()

DEFAULT_NAMESPACE = "medical_agent"
DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_MEMORY_ITEMS = 1000
KEY_ENCODED_LENGTH = 32


class DurableStore(Protocol):
    """Subset of the redis.asyncio client the cache relies on."""

    async def get(self, name: str) -> Any: ...

    async def setex(self, name: str, time: int, value: str) -> Any: ...

    async def ping(self) -> Any: ...

    async def aclose(self) -> None: ...


@dataclass(slots=True)
class CacheEntry:
    value: str
    expires_at: float


def generate_key(raw: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Namespace + first 32 chars of base64(raw).

    Truncation means inputs sharing a 24-byte prefix collide. Callers that
    need uniqueness should pass a fixed-width fingerprint.
    """
    encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    return f"{namespace}:{encoded[:KEY_ENCODED_LENGTH]}"


class CacheManager:
    """Redis + in-process cache with TTL."""

    def __init__(
        self,
        durable: DurableStore | None = None,
        *,
        max_memory_items: int = DEFAULT_MAX_MEMORY_ITEMS,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        namespace: str = DEFAULT_NAMESPACE,
        clock: Callable[[], float] = time.time,
    ):
        if max_memory_items < 1:
            raise ValueError(f"max_memory_items must be >= 1, got {max_memory_items}")
        self._durable = durable
        self._memory: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self.max_memory_items = max_memory_items
        self.default_ttl = default_ttl
        self.namespace = namespace
        self._clock = clock

    @classmethod
    def from_url(cls, url: str | None, **kwargs: Any) -> CacheManager:
        """Build a cache, attaching Redis when a URL is configured.

        No URL, or a client that cannot be constructed, yields a
        memory-only cache.
        """
        if not url:
            logger.info("cache_memory_only", reason="no REDIS_URL configured")
            return cls(None, **kwargs)
        try:
            from redis import asyncio as redis_asyncio

            client = redis_asyncio.from_url(url, decode_responses=True)
        except Exception as exc:
            logger.error("cache_redis_init_failed", error=str(exc)[:200])
            return cls(None, **kwargs)
        logger.info("cache_redis_configured")
        return cls(client, **kwargs)

    @property
    def durable_enabled(self) -> bool:
        return self._durable is not None

    def generate_key(self, raw: str) -> str:
        return generate_key(raw, self.namespace)

    async def connect(self) -> bool:
        """Ping Redis once; drop to memory-only if it is unreachable."""
        if self._durable is None:
            return False
        try:
            await self._durable.ping()
        except Exception as exc:
            logger.error("cache_redis_connect_failed", error=str(exc)[:200])
            await self._close_durable()
            self._durable = None
            return False
        logger.info("cache_redis_connected")
        return True

    async def get(self, key: str) -> Any | None:
        if self._durable is not None:
            try:
                cached = await self._durable.get(key)
                if cached:
                    return json.loads(cached)
            except Exception as exc:
                logger.warning("cache_redis_get_failed", key=key, error=str(exc)[:200])

        entry = self._memory.get(key)
        if entry is not None and self._clock() < entry.expires_at:
            return json.loads(entry.value)
        return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        serialized = json.dumps(value)

        if self._durable is not None:
            try:
                await self._durable.setex(key, ttl, serialized)
            except Exception as exc:
                logger.warning("cache_redis_set_failed", key=key, error=str(exc)[:200])

        async with self._lock:
            if key not in self._memory and len(self._memory) >= self.max_memory_items:
                evicted = next(iter(self._memory))
                del self._memory[evicted]
                logger.debug("cache_memory_evicted", key=evicted)
            self._memory[key] = CacheEntry(value=serialized, expires_at=self._clock() + ttl)

    async def purge_expired(self) -> int:
        """Drop expired in-process entries. Returns how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, e in self._memory.items() if now >= e.expires_at]
            for key in expired:
                del self._memory[key]
        return len(expired)

    def memory_size(self) -> int:
        return len(self._memory)

    async def health_check(self) -> dict[str, str]:
        health = {
            "memory": "healthy" if len(self._memory) < self.max_memory_items else "full",
            "redis": "not_configured",
        }
        if self._durable is not None:
            try:
                await self._durable.ping()
                health["redis"] = "healthy"
            except Exception as exc:
                logger.warning("cache_redis_ping_failed", error=str(exc)[:200])
                health["redis"] = "error"
        return health

    async def aclose(self) -> None:
        await self._close_durable()

    async def _close_durable(self) -> None:
        if self._durable is None:
            return
        try:
            await self._durable.aclose()
        except Exception:
            logger.warning("cache_redis_close_failed", exc_info=True)
