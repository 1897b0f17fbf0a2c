"""Security event logging for the identity audit trail.

Append-only: events go to the storage adapter's security_events log and are
mirrored to the standard logger. Passwords and bearer values never appear in
event details.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable
from uuid import UUID

from identity.storage.base import IdentityStorage
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    """Identity security event types."""

    USER_REGISTERED = "user_registered"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    LOGIN_BLOCKED = "login_blocked"
    ACCOUNT_LOCKED = "account_locked"
    TOKEN_REFRESHED = "token_refreshed"
    REFRESH_REJECTED = "refresh_rejected"
    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"
    SESSION_REVOKED = "session_revoked"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    EMAIL_VERIFICATION_REQUESTED = "email_verification_requested"
    EMAIL_VERIFIED = "email_verified"
    EPHEMERAL_TOKEN_REJECTED = "ephemeral_token_rejected"
    ACCOUNT_DELETED = "account_deleted"
    ROLE_CHANGED = "role_changed"
    ROLE_ASSIGNED = "role_assigned"


class SecurityLogger:
    """Append-only security event logger."""

    def __init__(self, storage: IdentityStorage, clock: Callable[[], datetime] = now_utc):
        self._storage = storage
        self._clock = clock

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record security event."""
        logger.info(
            f"security event {event.value}",
            extra={"event_type": event.value, "user_id": str(user_id) if user_id else None},
        )
        self._storage.append_security_event(
            event_type=event.value,
            email=email,
            user_id=user_id,
            details=details,
            created_at=self._clock(),
        )

    def get_recent_events(
        self,
        email: str | None = None,
        user_id: UUID | None = None,
        event_type: SecurityEvent | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """Query recent security events with optional filters."""
        return self._storage.recent_security_events(
            email=email,
            user_id=user_id,
            event_type=event_type.value if event_type else None,
            limit=limit,
        )
