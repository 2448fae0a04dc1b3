"""
Unit tests for the Redis store adapter.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from shared.config import BaseConfig
from shared.errors import CacheConnectionError
from service_school_api.app.caching.redis_store import (
    RedisStore,
    STATE_CLOSED,
    STATE_CONNECTED,
    STATE_UNCONFIGURED,
)


STORE_MODULE = "service_school_api.app.caching.redis_store.redis"


def make_config(**overrides):
    values = {"redis_url": None, "redis_host": None}
    values.update(overrides)
    return BaseConfig(**values)


class TestRedisStore:
    """Test cases for RedisStore."""

    @pytest.mark.asyncio
    async def test_connect_without_configuration_returns_none(self):
        """No URL and no host means caching is disabled, not an error."""
        store = RedisStore(make_config())

        with patch(f"{STORE_MODULE}.from_url") as mock_from_url, patch(f"{STORE_MODULE}.Redis") as mock_redis:
            assert await store.connect() is None
            assert await store.connect() is None

            mock_from_url.assert_not_called()
            mock_redis.assert_not_called()

        assert store.get_client() is None
        assert store.state == STATE_UNCONFIGURED

    @pytest.mark.asyncio
    async def test_connect_with_url(self):
        """A configured URL builds a client with explicit timeouts and pings it."""
        store = RedisStore(make_config(redis_url="redis://cache:6379/2", redis_socket_timeout=2.5))
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)

        with patch(f"{STORE_MODULE}.from_url", return_value=client) as mock_from_url:
            result = await store.connect()

        assert result is client
        assert store.get_client() is client
        assert store.state == STATE_CONNECTED
        args, kwargs = mock_from_url.call_args
        assert args == ("redis://cache:6379/2",)
        assert kwargs["socket_timeout"] == 2.5
        assert kwargs["socket_connect_timeout"] == 5.0
        assert kwargs["decode_responses"] is True
        client.ping.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_with_discrete_settings(self):
        """Host, port, password and db are used when no URL is set."""
        store = RedisStore(make_config(redis_host="cache.local", redis_port=6380, redis_password="s3cret", redis_db=3))
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)

        with patch(f"{STORE_MODULE}.Redis", return_value=client) as mock_redis:
            assert await store.connect() is client

        kwargs = mock_redis.call_args.kwargs
        assert kwargs["host"] == "cache.local"
        assert kwargs["port"] == 6380
        assert kwargs["password"] == "s3cret"
        assert kwargs["db"] == 3

    @pytest.mark.asyncio
    async def test_connect_failure_propagates(self):
        """A configured but unreachable Redis raises and leaves no handle behind."""
        store = RedisStore(make_config(redis_url="redis://user:pw@cache:6379/0"))
        client = MagicMock()
        client.ping = AsyncMock(side_effect=OSError("Connection refused"))
        client.aclose = AsyncMock()

        with patch(f"{STORE_MODULE}.from_url", return_value=client):
            with pytest.raises(CacheConnectionError) as exc_info:
                await store.connect()

        assert exc_info.value.code == "CACHE_CONNECTION_FAILED"
        assert exc_info.value.details["target"] == "cache:6379/0"
        assert store.get_client() is None
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_connect_does_not_wait(self):
        """Callers arriving during an in-flight connect see None instead of queuing."""
        store = RedisStore(make_config(redis_url="redis://cache:6379/0"))
        release = asyncio.Event()
        client = MagicMock()

        async def slow_ping():
            await release.wait()
            return True

        client.ping = slow_ping

        with patch(f"{STORE_MODULE}.from_url", return_value=client):
            first = asyncio.create_task(store.connect())
            await asyncio.sleep(0)

            assert await store.connect() is None

            release.set()
            assert await first is client

        assert await store.connect() is client

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_redis):
        """Closing twice releases the client once."""
        store = RedisStore(client=fake_redis)
        assert store.state == STATE_CONNECTED

        await store.close()
        await store.close()

        assert store.get_client() is None
        assert store.state == STATE_CLOSED
        assert fake_redis.calls.count("aclose") == 1

    @pytest.mark.asyncio
    async def test_close_without_connection(self):
        """Closing an unconfigured store is a no-op."""
        store = RedisStore(make_config())
        await store.close()
        assert store.state == STATE_UNCONFIGURED

    @pytest.mark.asyncio
    async def test_ping(self, fake_redis):
        """Ping reports connection health without raising."""
        assert await RedisStore(client=fake_redis).ping() is True
        assert await RedisStore(make_config()).ping() is False
