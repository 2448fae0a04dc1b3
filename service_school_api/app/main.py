"""
School API service: student records fronted by a Redis response cache.
"""

from typing import Any, Dict, Optional

from fastapi import Body, Query, Request, Response
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import CacheConnectionError, ValidationError
from .auth.lockout import AccountLockoutService
from .caching.cache_service import CacheService
from .caching.middleware import (
    CacheInvalidationMiddleware,
    InvalidationConfig,
    RESPONSE_KEY_NAMESPACE,
    ResponseCacheConfig,
    ResponseCacheMiddleware,
    cache_pattern,
)
from .caching.redis_store import RedisStore
from .ratelimit.limiter import FixedWindowRateLimiter, RateLimitMiddleware
from .students.models import Student, StudentCreate, StudentUpdate
from .students.repository import StudentRepository


SERVICE_NAME = "school_api"
SERVICE_PORT = 8000
STUDENTS_PATH = "/api/v1/students"


class InvalidateRequest(BaseModel):
    pattern: str = Field(min_length=1)


class FailedLoginRequest(BaseModel):
    user_id: Optional[str] = None


def bypass_requested(request: Request) -> bool:
    """Clients can opt out of cached reads with Cache-Control: no-cache."""
    cache_control = request.headers.get("cache-control", "").lower()
    return "no-cache" in cache_control or "no-store" in cache_control


class SchoolApiService(BaseService):
    """Composition root: owns the Redis store and everything built on it."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[RedisStore] = None,
        repository: Optional[StudentRepository] = None,
    ):
        config = config or get_config(SERVICE_NAME, SERVICE_PORT)
        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config)

        self.store = store or RedisStore(self.config)
        self.cache = CacheService(
            self.store,
            default_ttl=self.config.cache_default_ttl,
            scan_batch_size=self.config.cache_scan_batch_size,
            metrics=self.metrics,
        )
        self.lockout = AccountLockoutService(self.store)
        self.rate_limiter = FixedWindowRateLimiter(self.store)
        self.repository = repository or StudentRepository()

        self.students_key_prefix = f"{self.config.cache_key_prefix}:students"

        self._setup_cache_middleware()
        self._setup_student_routes()
        self._setup_cache_routes()
        self._setup_lockout_routes()
        self._setup_service_routes()

        self.app.state.school_api_service = self

    async def on_startup(self) -> None:
        try:
            await self.store.connect()
        except CacheConnectionError as e:
            self.logger.warning("Redis connection failed, continuing without cache", error=e.message, details=e.details)

    async def on_shutdown(self) -> None:
        await self.store.close()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report cache status; an unreachable cache degrades but does not fail the service."""
        if not self.store.is_configured:
            return {"cache": "disabled"}
        return {"cache": "ok" if await self.store.ping() else "unavailable"}

    def _setup_cache_middleware(self):
        """Register cache middlewares; the last one added runs first."""
        self.app.add_middleware(
            ResponseCacheMiddleware,
            cache=self.cache,
            config=ResponseCacheConfig(
                ttl_seconds=self.config.cache_default_ttl,
                key_prefix=self.students_key_prefix,
                skip_if=bypass_requested,
                path_prefixes=(STUDENTS_PATH,),
            ),
            metrics=self.metrics,
        )
        self.app.add_middleware(
            CacheInvalidationMiddleware,
            cache=self.cache,
            config=InvalidationConfig(
                patterns=[cache_pattern(self.students_key_prefix)],
                path_prefixes=(STUDENTS_PATH,),
            ),
        )
        if self.config.rate_limit_enabled:
            self.app.add_middleware(
                RateLimitMiddleware,
                rate_limiter=self.rate_limiter,
                metrics=self.metrics,
            )

    def _setup_student_routes(self):
        """Set up student record routes."""

        @self.app.get(STUDENTS_PATH)
        async def list_students(
            page: int = Query(1, ge=1),
            limit: int = Query(20, ge=1, le=100),
            class_name: Optional[str] = Query(None, min_length=1),
            search: Optional[str] = Query(None, min_length=1),
        ):
            """Paginated student listing."""
            return await self.repository.list(page=page, limit=limit, class_name=class_name, search=search)

        @self.app.get(STUDENTS_PATH + "/{student_id}", response_model=Student)
        async def get_student(student_id: int):
            """Single student record."""
            return await self.repository.get(student_id)

        @self.app.post(STUDENTS_PATH, response_model=Student, status_code=201)
        async def create_student(payload: StudentCreate):
            """Create a student record."""
            student = await self.repository.create(payload)
            self.logger.info("Student created", student_id=student.id)
            return student

        @self.app.put(STUDENTS_PATH + "/{student_id}", response_model=Student)
        async def update_student(student_id: int, payload: StudentUpdate):
            """Update fields of a student record."""
            student = await self.repository.update(student_id, payload)
            self.logger.info("Student updated", student_id=student_id)
            return student

        @self.app.delete(STUDENTS_PATH + "/{student_id}", status_code=204)
        async def delete_student(student_id: int):
            """Delete a student record."""
            await self.repository.delete(student_id)
            self.logger.info("Student deleted", student_id=student_id)
            return Response(status_code=204)

    def _setup_cache_routes(self):
        """Set up cache administration routes."""

        @self.app.get("/api/v1/cache/stats")
        async def cache_stats():
            """Cache counters and store status."""
            return await self.cache.stats()

        @self.app.post("/api/v1/cache/invalidate")
        async def invalidate_cache(payload: InvalidateRequest):
            """Delete cached entries matching a glob pattern."""
            # Lockout and rate limit counters share the store
            if not payload.pattern.startswith(RESPONSE_KEY_NAMESPACE):
                raise ValidationError(
                    "Pattern must target cached responses",
                    {"pattern": payload.pattern, "expected_prefix": RESPONSE_KEY_NAMESPACE}
                )
            deleted = await self.cache.invalidate_pattern(payload.pattern)
            return {"pattern": payload.pattern, "deleted": deleted}

        @self.app.delete("/api/v1/cache")
        async def flush_cache():
            """Drop every cached entry."""
            flushed = await self.cache.flush()
            return {"flushed": flushed}

    def _setup_lockout_routes(self):
        """Set up account lockout routes used by the auth service and admins."""

        @self.app.get("/api/v1/auth/lockout")
        async def lockout_configuration():
            """Lockout thresholds."""
            return self.lockout.get_configuration()

        @self.app.get("/api/v1/auth/lockout/{identifier}")
        async def lockout_status(identifier: str):
            """Lockout status for a username or email."""
            status = await self.lockout.check_lockout_status(identifier)
            return status.to_dict()

        @self.app.post("/api/v1/auth/lockout/{identifier}/failures")
        async def record_failed_login(identifier: str, payload: Optional[FailedLoginRequest] = Body(None)):
            """Record a failed login attempt."""
            user_id = payload.user_id if payload else None
            status = await self.lockout.record_failed_attempt(identifier, user_id)
            return status.to_dict()

        @self.app.delete("/api/v1/auth/lockout/{identifier}")
        async def unlock_account(identifier: str, admin_user_id: str = Query(..., min_length=1)) -> Dict[str, Any]:
            """Manually unlock an account."""
            await self.lockout.unlock_account(identifier, admin_user_id)
            return {"identifier": identifier, "unlocked": True}

    def _setup_service_routes(self):
        """Set up service metadata routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "School Management API",
                "version": "1.0.0"
            }


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = SchoolApiService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = SchoolApiService()
    service.run()
