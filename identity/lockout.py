"""Failed-login lockout per user.

Two states, Unlocked and Locked(until). There is no timer: an expired lock
is noticed lazily on the next attempt. Counter changes are delegated to the
storage adapter's atomic updates so concurrent attempts never lose a count.
"""

import logging
from datetime import datetime
from typing import Callable

from identity.config import IdentityConfig
from identity.exceptions import AccountLocked, UserNotFound
from identity.security_logger import SecurityEvent, SecurityLogger
from identity.storage.base import IdentityStorage
from identity.types import User
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class LockoutGuard:
    """Tracks failed-login state per user."""

    def __init__(
        self,
        storage: IdentityStorage,
        config: IdentityConfig,
        security_logger: SecurityLogger,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._storage = storage
        self._threshold = config.lockout_threshold
        self._duration = config.lockout_duration
        self._security_logger = security_logger
        self._clock = clock

    def locked_until(self, user: User) -> datetime | None:
        """Lock expiry if the user is currently locked, else None."""
        if user.is_locked(self._clock()):
            return user.locked_until
        return None

    def check(self, user: User) -> None:
        """Raise if the user is locked. No side effects.

        Raises:
            AccountLocked: Lock is in force.
        """
        until = self.locked_until(user)
        if until is not None:
            raise AccountLocked(until)

    def record_failure(self, user: User) -> User:
        """Count a failed credential check; lock when the threshold is hit."""
        now = self._clock()
        updated = self._storage.record_failed_login(
            user.id,
            now=now,
            threshold=self._threshold,
            lock_until=now + self._duration,
        )
        if updated is None:
            raise UserNotFound(f"User {user.id} disappeared during login")

        if updated.is_locked(now) and not user.is_locked(now):
            logger.warning(f"Account {updated.id} locked after {updated.failed_attempts} failed logins")
            self._security_logger.log(
                SecurityEvent.ACCOUNT_LOCKED,
                email=updated.email,
                user_id=updated.id,
                details={
                    "failed_attempts": updated.failed_attempts,
                    "locked_until": updated.locked_until.isoformat(),
                },
            )
        return updated

    def record_success(self, user: User) -> User:
        """Reset the counter and clear any lapsed lock.

        The storage step is conditional on no lock being in force, so a
        login that passed check() on a stale record cannot clear a lock set
        by concurrent failures in the meantime.

        Raises:
            AccountLocked: A lock was set after check() ran.
        """
        now = self._clock()
        updated = self._storage.record_successful_login(user.id, now)
        if updated is not None:
            return updated

        current = self._storage.get_user(user.id)
        if current is None:
            raise UserNotFound(f"User {user.id} disappeared during login")
        logger.warning(f"Account {user.id} locked while its login was in flight")
        raise AccountLocked(current.locked_until or now)
