"""
Shared fixtures for School API tests.
"""

import fnmatch
from typing import Any, Dict, List, Optional, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from service_school_api.app.caching.cache_service import CacheService
from service_school_api.app.caching.redis_store import RedisStore


class FakeRedis:
    """In-memory stand-in for the redis.asyncio commands the service uses."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.calls: List[str] = []
        # Scan order never shrinks while keys are deleted, like a real
        # cursor walk: keys present for the whole scan are always returned.
        self._scan_order: List[str] = []

    def _write(self, key: str, value: Any) -> None:
        if key not in self.data and key not in self._scan_order:
            self._scan_order.append(key)
        self.data[key] = str(value)

    async def ping(self) -> bool:
        self.calls.append("ping")
        return True

    async def get(self, key: str) -> Optional[str]:
        self.calls.append("get")
        return self.data.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None, nx: bool = False) -> Optional[bool]:
        self.calls.append("set")
        if nx and key in self.data:
            return None
        self._write(key, value)
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def setex(self, key: str, ttl: int, value: Any) -> bool:
        self.calls.append("setex")
        self._write(key, value)
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        self.calls.append("delete")
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def scan(self, cursor: int = 0, match: Optional[str] = None, count: Optional[int] = None) -> Tuple[int, List[str]]:
        self.calls.append("scan")
        batch_size = count or 10
        window = self._scan_order[cursor:cursor + batch_size]
        next_cursor = cursor + batch_size
        if next_cursor >= len(self._scan_order):
            next_cursor = 0
        keys = [
            key for key in window
            if key in self.data and (match is None or fnmatch.fnmatchcase(key, match))
        ]
        return next_cursor, keys

    async def flushdb(self) -> bool:
        self.calls.append("flushdb")
        self.data.clear()
        self.ttls.clear()
        self._scan_order.clear()
        return True

    async def incr(self, key: str) -> int:
        self.calls.append("incr")
        value = int(self.data.get(key, 0)) + 1
        self._write(key, value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self.calls.append("expire")
        if key not in self.data:
            return False
        self.ttls[key] = seconds
        return True

    async def ttl(self, key: str) -> int:
        self.calls.append("ttl")
        if key not in self.data:
            return -2
        return self.ttls.get(key, -1)

    async def dbsize(self) -> int:
        self.calls.append("dbsize")
        return len(self.data)

    async def aclose(self) -> None:
        self.calls.append("aclose")

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        self.calls.append("pipeline")
        return FakePipeline(self, transaction)


class FakePipeline:
    """Queues commands and runs them back to back on execute, like MULTI/EXEC."""

    def __init__(self, redis: FakeRedis, transaction: bool):
        self.redis = redis
        self.transaction = transaction
        self._commands: List[Tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._commands.clear()

    def _queue(self, name: str, *args, **kwargs) -> "FakePipeline":
        self._commands.append((name, args, kwargs))
        return self

    def set(self, *args, **kwargs) -> "FakePipeline":
        return self._queue("set", *args, **kwargs)

    def incr(self, *args, **kwargs) -> "FakePipeline":
        return self._queue("incr", *args, **kwargs)

    def ttl(self, *args, **kwargs) -> "FakePipeline":
        return self._queue("ttl", *args, **kwargs)

    async def execute(self) -> List[Any]:
        commands, self._commands = self._commands, []
        results = []
        for name, args, kwargs in commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        return results


class BrokenRedis(FakeRedis):
    """Every command fails as if the server went away after connecting."""

    def __getattribute__(self, name):
        if name in {"get", "set", "setex", "delete", "scan", "flushdb", "incr", "expire", "ttl", "dbsize", "ping"}:
            async def _fail(*args, **kwargs):
                raise RedisConnectionError("Connection refused")
            return _fail
        return super().__getattribute__(name)


@pytest.fixture
def fake_redis():
    """Empty in-memory Redis."""
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    """Connected store backed by the fake."""
    return RedisStore(client=fake_redis)


@pytest.fixture
def cache(store):
    """Cache service over the connected fake store."""
    return CacheService(store, default_ttl=300, scan_batch_size=10)


@pytest.fixture
def unavailable_store():
    """Store with no Redis configuration at all."""
    return RedisStore()


@pytest.fixture
def unavailable_cache(unavailable_store):
    """Cache service that never has a connection."""
    return CacheService(unavailable_store)


@pytest.fixture
def broken_store():
    """Connected store whose client errors on every command."""
    return RedisStore(client=BrokenRedis())


@pytest.fixture
def broken_cache(broken_store):
    """Cache service whose store errors on every command."""
    return CacheService(broken_store)
