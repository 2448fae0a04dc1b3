"""
Response caching package.

Provides the Redis store adapter, the cache service and the HTTP
middlewares used by the School API to serve repeated reads from Redis.
Caching is best-effort: every piece degrades to a pass-through when the
store is unconfigured or failing.
"""

from .cache_service import CacheService
from .envelope import CachedResponse
from .middleware import (
    CacheInvalidationMiddleware,
    InvalidationConfig,
    ResponseCacheConfig,
    ResponseCacheMiddleware,
    build_cache_key,
    cache_pattern,
    compute_cache_key,
    is_cacheable_status,
)
from .redis_store import RedisStore

__all__ = [
    "CacheService",
    "CachedResponse",
    "CacheInvalidationMiddleware",
    "InvalidationConfig",
    "RedisStore",
    "ResponseCacheConfig",
    "ResponseCacheMiddleware",
    "build_cache_key",
    "cache_pattern",
    "compute_cache_key",
    "is_cacheable_status",
]
