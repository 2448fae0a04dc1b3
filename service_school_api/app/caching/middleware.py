"""
HTTP response caching and invalidation middleware.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TYPE_CHECKING
from urllib.parse import urlencode

from fastapi import Request
from pydantic import ValidationError as PydanticValidationError
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from shared.logging import get_logger
from .cache_service import CacheService
from .envelope import CachedResponse

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_RESPONSE_TTL = 300
DEFAULT_KEY_PREFIX = "api"
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
CACHE_STATUS_HEADER = "X-Cache"
RESPONSE_KEY_NAMESPACE = "http:"


@dataclass
class ResponseCacheConfig:
    """Options for ResponseCacheMiddleware."""

    ttl_seconds: int = DEFAULT_RESPONSE_TTL
    key_prefix: str = DEFAULT_KEY_PREFIX
    # Returning True sends the request straight to the handler
    skip_if: Optional[Callable[[Request], bool]] = None
    path_prefixes: Tuple[str, ...] = ()


@dataclass
class InvalidationConfig:
    """Options for CacheInvalidationMiddleware."""

    patterns: List[str] = field(default_factory=list)
    methods: frozenset = MUTATING_METHODS
    path_prefixes: Tuple[str, ...] = ()
    only_on_success: bool = False


def is_cacheable_status(status_code: int) -> bool:
    """Only 2xx responses are stored."""
    return 200 <= status_code <= 299


def cache_pattern(key_prefix: str) -> str:
    """Glob matching every response cached under key_prefix."""
    return f"{RESPONSE_KEY_NAMESPACE}{key_prefix}:*"


def compute_cache_key(key_prefix: str, path: str, query_items: Iterable[Tuple[str, str]]) -> str:
    """
    Deterministic key for a GET request.

    Query parameters are sorted before hashing, so the same parameter set
    always yields the same key whatever order the client sent it in.
    """
    items = sorted(query_items)
    canonical_url = f"{path}?{urlencode(items)}" if items else path

    query_object: Dict[str, Any] = {}
    for name, value in items:
        query_object.setdefault(name, []).append(value)
    canonical_query = json.dumps(
        {name: values[0] if len(values) == 1 else values for name, values in query_object.items()},
        sort_keys=True,
        separators=(",", ":"),
    )

    key_material = f"{key_prefix}|{canonical_url}|{canonical_query}"
    return f"{RESPONSE_KEY_NAMESPACE}{key_prefix}:{hashlib.md5(key_material.encode('utf-8')).hexdigest()}"


def build_cache_key(key_prefix: str, request: Request) -> str:
    """Cache key for an incoming request."""
    return compute_cache_key(key_prefix, request.url.path, request.query_params.multi_items())


def _matches_prefix(path: str, prefixes: Sequence[str]) -> bool:
    return not prefixes or any(path.startswith(prefix) for prefix in prefixes)


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Read-through cache for GET endpoints returning JSON."""

    def __init__(
        self,
        app,
        cache: CacheService,
        config: Optional[ResponseCacheConfig] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        super().__init__(app)
        self.cache = cache
        self.config = config or ResponseCacheConfig()
        self.metrics = metrics
        self.logger = get_logger("school_api.cache.http")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method != "GET" or not _matches_prefix(request.url.path, self.config.path_prefixes):
            return await call_next(request)

        if self.config.skip_if is not None and self.config.skip_if(request):
            self._record_lookup("bypass")
            return await call_next(request)

        key = build_cache_key(self.config.key_prefix, request)

        cached = await self._lookup(key)
        if cached is not None:
            self._record_lookup("hit")
            self.logger.debug("Response served from cache", key=key, path=request.url.path)
            return cached.to_response(headers={CACHE_STATUS_HEADER: "HIT"})

        self._record_lookup("miss")
        response = await call_next(request)
        return await self._capture(key, response)

    async def _lookup(self, key: str) -> Optional[CachedResponse]:
        payload = await self.cache.get(key)
        if payload is None:
            return None

        try:
            return CachedResponse.from_payload(payload)
        except PydanticValidationError as e:
            self.logger.warning("Discarding malformed cached response", key=key, error=str(e))
            return None

    async def _capture(self, key: str, response: Response) -> Response:
        """Buffer the handler's body and schedule storage of 2xx JSON responses."""
        body = b"".join([chunk async for chunk in response.body_iterator])

        background = None
        if is_cacheable_status(response.status_code):
            envelope = CachedResponse.from_http(
                response.status_code,
                body,
                response.headers.get("content-type"),
            )
            if envelope is not None:
                background = BackgroundTask(self._store, key, envelope)
            else:
                self.logger.debug("Response not cacheable, body is not JSON", key=key)

        replay = Response(content=body, status_code=response.status_code, background=background)
        replay.raw_headers = list(response.raw_headers)
        replay.headers[CACHE_STATUS_HEADER] = "MISS"
        return replay

    async def _store(self, key: str, envelope: CachedResponse) -> None:
        stored = await self.cache.set(key, envelope.to_payload(), self.config.ttl_seconds)
        if not stored and self.cache.is_available:
            self.logger.warning("Failed to store response in cache", key=key)

    def _record_lookup(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("http_cache_lookups_total", result=result)


class CacheInvalidationMiddleware(BaseHTTPMiddleware):
    """Evicts cached responses after mutating requests."""

    def __init__(self, app, cache: CacheService, config: InvalidationConfig):
        super().__init__(app)
        self.cache = cache
        self.config = config
        self.logger = get_logger("school_api.cache.invalidation")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)

        if request.method not in self.config.methods:
            return response
        if not _matches_prefix(request.url.path, self.config.path_prefixes):
            return response

        if self.config.only_on_success and not is_cacheable_status(response.status_code):
            self.logger.debug(
                "Skipping cache invalidation after failed mutation",
                path=request.url.path,
                status_code=response.status_code
            )
            return response

        await self.invalidate(self.config.patterns)
        return response

    async def invalidate(self, patterns: Iterable[str]) -> Dict[str, int]:
        """Invalidate each pattern in order; one failure does not stop the rest."""
        results: Dict[str, int] = {}
        for pattern in patterns:
            try:
                results[pattern] = await self.cache.invalidate_pattern(pattern)
            except Exception as e:
                self.logger.warning("Cache invalidation failed", pattern=pattern, error=str(e))
                results[pattern] = 0
        return results
