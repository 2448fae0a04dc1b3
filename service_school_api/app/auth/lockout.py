"""
Failed-login tracking and temporary account lockout backed by Redis.
"""

import asyncio
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from shared.logging import get_logger
from ..caching.redis_store import RedisStore


FAILED_ATTEMPTS_PREFIX = "failed_login_attempts:"
LOCKOUT_PREFIX = "account_lockout:"
MAX_FAILED_ATTEMPTS = 5
ATTEMPT_WINDOW_SECONDS = 15 * 60
LOCKOUT_DURATION_SECONDS = 15 * 60

UserId = Union[int, str]


@dataclass
class LockoutStatus:
    """Lockout state for one login identifier."""

    is_locked: bool
    failed_attempts: int
    remaining_attempts: int
    lockout_expires_at: Optional[datetime] = None
    lockout_time_remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.lockout_expires_at is not None:
            data["lockout_expires_at"] = self.lockout_expires_at.isoformat()
        return data


class AccountLockoutService:
    """Locks an identifier after too many failed logins inside a window."""

    def __init__(
        self,
        store: RedisStore,
        *,
        max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
        attempt_window_seconds: int = ATTEMPT_WINDOW_SECONDS,
        lockout_duration_seconds: int = LOCKOUT_DURATION_SECONDS,
    ):
        self.store = store
        self.max_failed_attempts = max_failed_attempts
        self.attempt_window_seconds = attempt_window_seconds
        self.lockout_duration_seconds = lockout_duration_seconds
        self.logger = get_logger("school_api.auth.lockout")
        self.security_logger = get_logger("school_api.security")

    def _attempts_key(self, identifier: str) -> str:
        return f"{FAILED_ATTEMPTS_PREFIX}{identifier}"

    def _lockout_key(self, identifier: str) -> str:
        return f"{LOCKOUT_PREFIX}{identifier}"

    def _unlocked(self, failed_attempts: int = 0) -> LockoutStatus:
        return LockoutStatus(
            is_locked=False,
            failed_attempts=failed_attempts,
            remaining_attempts=max(0, self.max_failed_attempts - failed_attempts),
        )

    async def record_failed_attempt(self, identifier: str, user_id: Optional[UserId] = None) -> LockoutStatus:
        """Count a failed login and lock the identifier once the threshold is reached."""
        client = self.store.get_client()
        if client is None:
            return self._unlocked()

        attempts_key = self._attempts_key(identifier)
        try:
            async with client.pipeline(transaction=True) as pipeline:
                pipeline.set(attempts_key, 0, ex=self.attempt_window_seconds, nx=True)
                pipeline.incr(attempts_key)
                _, attempts = await pipeline.execute()
            attempts = int(attempts)

            if attempts >= self.max_failed_attempts:
                expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.lockout_duration_seconds)
                await client.setex(
                    self._lockout_key(identifier),
                    self.lockout_duration_seconds,
                    expires_at.isoformat()
                )

                self.security_logger.warning(
                    "auth.lockout",
                    user_id=user_id or "unknown",
                    identifier=identifier,
                    outcome="failure",
                    failed_attempts=attempts,
                    lockout_duration=self.lockout_duration_seconds,
                    lockout_expires_at=expires_at.isoformat()
                )
                self.logger.warning(
                    "Account locked due to failed login attempts",
                    identifier=identifier,
                    failed_attempts=attempts
                )
                return LockoutStatus(
                    is_locked=True,
                    failed_attempts=attempts,
                    remaining_attempts=0,
                    lockout_expires_at=expires_at,
                    lockout_time_remaining=self.lockout_duration_seconds,
                )

            self.security_logger.info(
                "auth.failure",
                user_id=user_id or "unknown",
                identifier=identifier,
                outcome="failure",
                failed_attempts=attempts,
                remaining_attempts=self.max_failed_attempts - attempts
            )
            return self._unlocked(attempts)

        except Exception as e:
            self.logger.error("Error recording failed login attempt", identifier=identifier, error=str(e))
            return self._unlocked()

    async def check_lockout_status(self, identifier: str) -> LockoutStatus:
        """Current lockout state for an identifier."""
        client = self.store.get_client()
        if client is None:
            return self._unlocked()

        try:
            lockout_data = await client.get(self._lockout_key(identifier))
            failed_attempts = await client.get(self._attempts_key(identifier))

            if lockout_data:
                expires_at = datetime.fromisoformat(lockout_data)
                now = datetime.now(timezone.utc)
                if expires_at > now:
                    return LockoutStatus(
                        is_locked=True,
                        failed_attempts=int(failed_attempts) if failed_attempts else self.max_failed_attempts,
                        remaining_attempts=0,
                        lockout_expires_at=expires_at,
                        lockout_time_remaining=math.ceil((expires_at - now).total_seconds()),
                    )

            return self._unlocked(int(failed_attempts) if failed_attempts else 0)

        except Exception as e:
            self.logger.error("Error checking lockout status", identifier=identifier, error=str(e))
            return self._unlocked()

    async def reset_failed_attempts(self, identifier: str, user_id: Optional[UserId] = None) -> None:
        """Clear counters after a successful login."""
        client = self.store.get_client()
        if client is None:
            return

        try:
            await asyncio.gather(
                client.delete(self._attempts_key(identifier)),
                client.delete(self._lockout_key(identifier)),
            )
            self.logger.info("Failed login attempts reset", identifier=identifier, user_id=user_id)
        except Exception as e:
            self.logger.error("Error resetting failed attempts", identifier=identifier, error=str(e))

    async def unlock_account(self, identifier: str, admin_user_id: UserId) -> None:
        """Admin unlock. Store errors propagate to the caller."""
        client = self.store.get_client()
        if client is None:
            return

        try:
            await asyncio.gather(
                client.delete(self._attempts_key(identifier)),
                client.delete(self._lockout_key(identifier)),
            )
        except Exception as e:
            self.logger.error("Error unlocking account", identifier=identifier, error=str(e))
            raise

        self.security_logger.info(
            "admin.action",
            user_id=admin_user_id,
            action="unlock_account",
            outcome="success",
            target_identifier=identifier,
            reason="manual_unlock"
        )
        self.logger.info("Account manually unlocked by admin", identifier=identifier, admin_user_id=admin_user_id)

    def get_configuration(self) -> Dict[str, Any]:
        """Lockout thresholds, in seconds and minutes."""
        return {
            "max_failed_attempts": self.max_failed_attempts,
            "attempt_window_seconds": self.attempt_window_seconds,
            "lockout_duration_seconds": self.lockout_duration_seconds,
            "attempt_window_minutes": self.attempt_window_seconds / 60,
            "lockout_duration_minutes": self.lockout_duration_seconds / 60,
        }
