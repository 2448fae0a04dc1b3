"""
Redis connection adapter for the School API cache.

Caching is optional infrastructure: when no Redis URL or host is configured
the store stays unconfigured and every consumer runs uncached.
"""

from typing import Optional

import redis.asyncio as redis

from shared.config import BaseConfig
from shared.errors import CacheConnectionError
from shared.logging import get_logger


STATE_UNCONFIGURED = "unconfigured"
STATE_DISCONNECTED = "disconnected"
STATE_CONNECTING = "connecting"
STATE_CONNECTED = "connected"
STATE_CLOSED = "closed"


class RedisStore:
    """Best-effort handle on the remote key-value store."""

    def __init__(self, config: Optional[BaseConfig] = None, *, client: Optional[redis.Redis] = None):
        self.config = config
        self.logger = get_logger("school_api.cache.store")
        self._client: Optional[redis.Redis] = client
        self._connecting = False
        self._closed = False
        self._announced_disabled = False

    @property
    def is_configured(self) -> bool:
        """Whether a connection URL or host is available."""
        if self._client is not None:
            return True
        return bool(self.config and self.config.cache_configured)

    @property
    def state(self) -> str:
        """Current lifecycle state of the store."""
        if self._client is not None:
            return STATE_CONNECTED
        if self._closed:
            return STATE_CLOSED
        if not self.is_configured:
            return STATE_UNCONFIGURED
        if self._connecting:
            return STATE_CONNECTING
        return STATE_DISCONNECTED

    def get_client(self) -> Optional[redis.Redis]:
        """Return the live client, or None when caching is unavailable."""
        return self._client

    async def connect(self) -> Optional[redis.Redis]:
        """
        Connect to Redis if configured.

        Returns None without error when no connection settings exist, and
        while another caller's connection attempt is still in flight.
        Raises CacheConnectionError when configured but unreachable.
        """
        if self._client is not None:
            return self._client

        if not self.is_configured:
            if not self._announced_disabled:
                self.logger.info("Redis not configured, caching disabled")
                self._announced_disabled = True
            return None

        if self._connecting:
            return None

        self._connecting = True
        client = self._build_client()
        try:
            await client.ping()
        except Exception as e:
            self.logger.error("Failed to connect to Redis", error=str(e))
            await self._discard(client)
            raise CacheConnectionError(
                "Failed to connect to Redis",
                {"target": self._describe_target(), "error": str(e)}
            ) from e
        finally:
            self._connecting = False

        self._client = client
        self._closed = False
        self.logger.info("Redis connected", target=self._describe_target())
        return client

    async def close(self) -> None:
        """Release the connection; safe to call repeatedly."""
        client = self._client
        self._client = None
        if client is None:
            return

        self._closed = True
        await self._discard(client)
        self.logger.info("Redis connection closed")

    async def ping(self) -> bool:
        """Round-trip check used by the health endpoint."""
        client = self._client
        if client is None:
            return False
        try:
            return bool(await client.ping())
        except Exception as e:
            self.logger.warning("Redis ping failed", error=str(e))
            return False

    def _build_client(self) -> redis.Redis:
        """Create a client with explicit timeouts from configuration."""
        config = self.config
        options = {
            "encoding": "utf-8",
            "decode_responses": True,
            "socket_connect_timeout": config.redis_connect_timeout,
            "socket_timeout": config.redis_socket_timeout,
            "retry_on_timeout": True,
            "health_check_interval": 30,
        }
        if config.redis_url:
            return redis.from_url(config.redis_url, **options)

        return redis.Redis(
            host=config.redis_host,
            port=config.redis_port,
            password=config.redis_password,
            db=config.redis_db,
            **options
        )

    def _describe_target(self) -> str:
        """Connection target without credentials, for logs."""
        config = self.config
        if config is None:
            return "injected"
        if config.redis_url:
            return config.redis_url.rsplit("@", 1)[-1]
        return f"{config.redis_host}:{config.redis_port}/{config.redis_db}"

    async def _discard(self, client: redis.Redis) -> None:
        try:
            await client.aclose()
        except Exception as e:
            self.logger.debug("Error while closing Redis client", error=str(e))
