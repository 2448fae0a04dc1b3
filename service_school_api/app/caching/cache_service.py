"""
Failure-tolerant cache operations over the Redis store.

Every operation degrades to a miss or no-op when the store is unavailable
or errors; callers must stay correct with caching disabled.
"""

import json
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, TYPE_CHECKING

from shared.logging import get_logger
from .redis_store import RedisStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


T = TypeVar("T")

DEFAULT_TTL = 300
DEFAULT_SCAN_BATCH_SIZE = 100


class CacheService:
    """JSON cache with TTL, pattern invalidation and cache-aside helpers."""

    def __init__(
        self,
        store: RedisStore,
        *,
        default_ttl: int = DEFAULT_TTL,
        scan_batch_size: int = DEFAULT_SCAN_BATCH_SIZE,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.default_ttl = default_ttl
        self.scan_batch_size = scan_batch_size
        self.metrics = metrics
        self.logger = get_logger("school_api.cache")
        self._counters = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "errors": 0}

    @property
    def is_available(self) -> bool:
        """Whether a live store connection exists."""
        return self.store.get_client() is not None

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key, or None on miss or failure."""
        client = self.store.get_client()
        if client is None:
            self._record("get", "skipped")
            return None

        try:
            raw = await client.get(key)
        except Exception as e:
            self.logger.warning("Cache get error", key=key, error=str(e))
            self._record("get", "error")
            return None

        if raw is None:
            self._record("get", "miss")
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            self.logger.warning("Failed to deserialize cached value", key=key, error=str(e))
            self._record("get", "error")
            return None

        self._record("get", "hit")
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store value as JSON with an expiry. Returns whether it was written."""
        client = self.store.get_client()
        if client is None:
            self._record("set", "skipped")
            return False

        cache_ttl = ttl if ttl is not None else self.default_ttl
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            self.logger.warning("Failed to serialize value for cache", key=key, error=str(e))
            self._record("set", "error")
            return False

        try:
            await client.setex(key, cache_ttl, payload)
        except Exception as e:
            self.logger.warning("Cache set error", key=key, error=str(e))
            self._record("set", "error")
            return False

        self.logger.debug("Cached value", key=key, ttl=cache_ttl)
        self._record("set", "ok")
        return True

    async def delete(self, key: str) -> bool:
        """Remove a single key. Returns whether a key was removed."""
        client = self.store.get_client()
        if client is None:
            self._record("delete", "skipped")
            return False

        try:
            removed = await client.delete(key)
        except Exception as e:
            self.logger.warning("Cache delete error", key=key, error=str(e))
            self._record("delete", "error")
            return False

        self._record("delete", "ok")
        return bool(removed)

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.

        Walks the keyspace with SCAN in batches of ``scan_batch_size`` and
        deletes each batch as it arrives, until the cursor comes back to 0.
        Returns the number of keys deleted before any failure.
        """
        client = self.store.get_client()
        if client is None:
            self._record("invalidate", "skipped")
            return 0

        deleted = 0
        cursor = 0
        try:
            while True:
                cursor, keys = await client.scan(cursor=cursor, match=pattern, count=self.scan_batch_size)
                if keys:
                    deleted += await client.delete(*keys)
                if int(cursor) == 0:
                    break
        except Exception as e:
            self.logger.warning(
                "Cache pattern invalidation error",
                pattern=pattern,
                deleted=deleted,
                error=str(e)
            )
            self._record("invalidate", "error")
            return deleted

        if deleted:
            self.logger.info("Invalidated cache pattern", pattern=pattern, keys_count=deleted)
        if self.metrics:
            self.metrics.record_invalidated_keys(deleted)
        self._record("invalidate", "ok")
        return deleted

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl: Optional[int] = None,
    ) -> T:
        """
        Cache-aside lookup.

        On a hit the cached value is returned and ``factory`` is not called.
        On a miss ``factory`` is awaited exactly once and its result stored.
        Concurrent misses on the same key each run their own factory.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await factory()
        await self.set(key, value, ttl)
        return value

    async def flush(self) -> bool:
        """Clear the whole cache database."""
        client = self.store.get_client()
        if client is None:
            self._record("flush", "skipped")
            return False

        try:
            await client.flushdb()
        except Exception as e:
            self.logger.warning("Cache flush error", error=str(e))
            self._record("flush", "error")
            return False

        self.logger.info("Cache flushed")
        self._record("flush", "ok")
        return True

    async def stats(self) -> Dict[str, Any]:
        """Process-local counters plus store size when connected."""
        total_lookups = self._counters["hits"] + self._counters["misses"]
        stats: Dict[str, Any] = {
            "available": self.is_available,
            "store_state": self.store.state,
            "default_ttl": self.default_ttl,
            **self._counters,
            "hit_ratio": round(self._counters["hits"] / total_lookups, 4) if total_lookups else 0.0,
        }

        client = self.store.get_client()
        if client is not None:
            try:
                stats["total_keys"] = await client.dbsize()
            except Exception as e:
                self.logger.warning("Cache stats error", error=str(e))
                stats["total_keys"] = None

        return stats

    def _record(self, operation: str, result: str) -> None:
        if result == "hit":
            self._counters["hits"] += 1
        elif result == "miss":
            self._counters["misses"] += 1
        elif result == "error":
            self._counters["errors"] += 1
        elif result == "ok" and operation == "set":
            self._counters["sets"] += 1
        elif result == "ok" and operation == "delete":
            self._counters["deletes"] += 1

        if self.metrics:
            self.metrics.record_cache_operation(operation, result)
