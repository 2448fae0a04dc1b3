"""
Fixed-window rate limiter for the School API.
"""

from typing import Any, Dict, Optional, Sequence, TYPE_CHECKING

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from shared.errors import RateLimitError
from shared.logging import get_logger
from ..caching.redis_store import RedisStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


WINDOW_SECONDS = 60


class FixedWindowRateLimiter:
    """Per-client request counters kept in Redis, one window per minute."""

    def __init__(self, store: RedisStore, window_seconds: int = WINDOW_SECONDS):
        self.store = store
        self.window_seconds = window_seconds
        self.logger = get_logger("school_api.rate_limiter")

        # Requests per window
        self.default_limits = {
            "public": 100,
            "authenticated": 1000,
            "heavy": 10,
            "admin": 5
        }

    def _make_key(self, client_id: str, endpoint: str) -> str:
        """Generate rate limit key."""
        return f"rate_limit:{client_id}:{endpoint}"

    def _allow(self, limit: int, reason: Optional[str] = None) -> Dict[str, Any]:
        result = {
            "allowed": True,
            "current_count": 0,
            "limit": limit,
            "remaining": limit,
            "reset_in_seconds": self.window_seconds,
        }
        if reason:
            result["error"] = reason
        return result

    async def check_rate_limit(self, client_id: str, endpoint: str, limit_type: str = "authenticated") -> Dict[str, Any]:
        """Count the request and report whether it fits in the current window."""
        limit = self.default_limits.get(limit_type, self.default_limits["authenticated"])

        client = self.store.get_client()
        if client is None:
            return self._allow(limit, "Redis unavailable")

        key = self._make_key(client_id, endpoint)
        try:
            # SET NX opens the window with its expiry; INCR keeps the TTL
            async with client.pipeline(transaction=True) as pipeline:
                pipeline.set(key, 0, ex=self.window_seconds, nx=True)
                pipeline.incr(key)
                pipeline.ttl(key)
                _, current_count, ttl = await pipeline.execute()

            current_count = int(current_count)
            if ttl is None or ttl < 0:
                ttl = self.window_seconds

            if current_count > limit:
                self.logger.warning(
                    "Rate limit exceeded",
                    client_id=client_id,
                    endpoint=endpoint,
                    current_count=current_count,
                    limit=limit
                )
                return {
                    "allowed": False,
                    "current_count": current_count,
                    "limit": limit,
                    "remaining": 0,
                    "reset_in_seconds": int(ttl),
                    "retry_after": int(ttl)
                }

            return {
                "allowed": True,
                "current_count": current_count,
                "limit": limit,
                "remaining": max(0, limit - current_count),
                "reset_in_seconds": int(ttl)
            }

        except Exception as e:
            self.logger.error("Rate limit check error", error=str(e))
            return self._allow(limit, str(e))

    async def reset_rate_limit(self, client_id: str, endpoint: str) -> bool:
        """Reset rate limit for client and endpoint."""
        client = self.store.get_client()
        if client is None:
            return False

        try:
            await client.delete(self._make_key(client_id, endpoint))
            self.logger.info("Rate limit reset", client_id=client_id, endpoint=endpoint)
            return True
        except Exception as e:
            self.logger.error("Rate limit reset error", error=str(e))
            return False


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects requests over budget with 429."""

    def __init__(
        self,
        app,
        rate_limiter: FixedWindowRateLimiter,
        path_prefixes: Sequence[str] = ("/api/",),
        metrics: Optional["MetricsCollector"] = None,
    ):
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.path_prefixes = tuple(path_prefixes)
        self.metrics = metrics
        self.logger = get_logger("school_api.rate_limit_middleware")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if not path.startswith(self.path_prefixes):
            return await call_next(request)

        limit_type = self._categorize_endpoint(path)
        scope = self._budget_scope(path, limit_type)
        result = await self.rate_limiter.check_rate_limit(
            self._get_client_id(request),
            scope,
            limit_type
        )

        if not result.get("allowed", True):
            if self.metrics:
                self.metrics.increment_counter("rate_limit_hits_total", endpoint=scope)
            error = RateLimitError(details={
                "limit": result["limit"],
                "current_count": result["current_count"],
                "reset_in_seconds": result["reset_in_seconds"],
            })
            response: Response = JSONResponse(status_code=error.status_code, content=error.to_response().model_dump())
            response.headers["Retry-After"] = str(result["retry_after"])
        else:
            response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(result["limit"])
        response.headers["X-RateLimit-Remaining"] = str(result.get("remaining", 0))
        response.headers["X-RateLimit-Reset"] = str(result["reset_in_seconds"])
        return response

    def _get_client_id(self, request: Request) -> str:
        """Extract client ID from request."""
        user_info = getattr(request.state, "user_info", None)
        if isinstance(user_info, dict) and user_info.get("user_id"):
            return str(user_info["user_id"])

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"

    def _budget_scope(self, path: str, limit_type: str) -> str:
        """Counter scope: one shared admin budget, otherwise the route with ids collapsed."""
        if limit_type == "admin":
            return "admin"
        return "/".join("{id}" if segment.isdigit() else segment for segment in path.split("/"))

    def _categorize_endpoint(self, path: str) -> str:
        """Categorize endpoint for rate limiting."""
        if path.startswith("/api/v1/cache") or path.startswith("/api/v1/auth/lockout"):
            return "admin"
        elif path.startswith("/api/v1/"):
            return "authenticated"
        else:
            return "public"
