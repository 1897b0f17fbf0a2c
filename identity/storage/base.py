"""Storage interface for users, roles, tokens and security events.

Adapters must implement every method marked atomic as a single conditional
update (or under a single lock), never as a read followed by a write: the
lockout counter, default-role exclusivity, token claims and role deletion
all run concurrently for the same record.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any
from uuid import UUID

from identity.types import Role, RoleUpdate, TokenKind, TokenRecord, User, UserUpdate


class IdentityStorage(ABC):
    """Record interface over Users, Roles, Tokens and the security event log."""

    # -- users ---------------------------------------------------------------

    @abstractmethod
    def create_user(
        self,
        email: str,
        credential_hash: str,
        role_id: UUID,
        email_verified: bool = False,
    ) -> User:
        """Create user with email (lowercased).

        Raises:
            EmailAlreadyRegistered: A non-deleted user already has this email.
        """

    @abstractmethod
    def get_user(self, user_id: UUID) -> User | None:
        """Find user by ID, deleted or not."""

    @abstractmethod
    def get_user_by_email(self, email: str) -> User | None:
        """Find non-deleted user by email (case-insensitive)."""

    @abstractmethod
    def update_user(self, user_id: UUID, update: UserUpdate) -> User | None:
        """Apply the set fields of update. Returns None if user not found."""

    @abstractmethod
    def record_failed_login(
        self,
        user_id: UUID,
        now: datetime,
        threshold: int,
        lock_until: datetime,
    ) -> User | None:
        """Atomic: count one failed login.

        If a previous lock has lapsed (locked_until <= now) the counter
        restarts at 1 and the lock is cleared. When the counter reaches
        threshold, locked_until is set to lock_until.
        """

    @abstractmethod
    def record_successful_login(self, user_id: UUID, now: datetime) -> User | None:
        """Atomic: reset failed_attempts to 0, clear lock, stamp last_login_at.

        Only applies while no lock is in force at now. Returns None if the
        user is missing or still locked.
        """

    @abstractmethod
    def count_users_with_role(self, role_id: UUID) -> int:
        """Number of users (deleted included) referencing the role."""

    # -- roles ---------------------------------------------------------------

    @abstractmethod
    def create_role(
        self,
        name: str,
        permissions: list[str],
        description: str | None = None,
        is_system: bool = False,
        is_active: bool = True,
    ) -> Role:
        """Create a non-default role.

        Raises:
            RoleNameTaken: Name already used.
        """

    @abstractmethod
    def get_role(self, role_id: UUID) -> Role | None:
        """Find role by ID."""

    @abstractmethod
    def get_role_by_name(self, name: str) -> Role | None:
        """Find role by exact name."""

    @abstractmethod
    def get_default_role(self) -> Role | None:
        """The active default role, if any."""

    @abstractmethod
    def list_roles(self) -> list[Role]:
        """All roles ordered by name."""

    @abstractmethod
    def update_role(self, role_id: UUID, update: RoleUpdate) -> Role | None:
        """Apply the set fields of update. Returns None if role not found.

        Raises:
            RoleNameTaken: New name already used by another role.
            RoleInUse: Deactivating the current default role.
        """

    @abstractmethod
    def set_default_role(self, role_id: UUID) -> Role | None:
        """Atomic: make role_id the only default role. None if not found or inactive."""

    @abstractmethod
    def delete_role(self, role_id: UUID) -> bool:
        """Atomic: delete the role only if it is not a system role and no
        user (deleted included) references it. Returns True if deleted."""

    # -- tokens --------------------------------------------------------------

    @abstractmethod
    def create_token(self, record: TokenRecord) -> TokenRecord:
        """Persist a token record."""

    @abstractmethod
    def find_valid_token(self, value: str, kind: TokenKind, now: datetime) -> TokenRecord | None:
        """Record matching value+kind that is not revoked and not expired."""

    @abstractmethod
    def claim_token(
        self,
        value: str,
        kind: TokenKind,
        now: datetime,
        consume: bool,
    ) -> TokenRecord | None:
        """Atomic: match a valid record, stamp last_used_at and, if consume,
        mark it revoked. Returns the updated record, or None if no valid
        record matched. Of N concurrent consuming claims at most one wins."""

    @abstractmethod
    def revoke_token(self, value: str) -> bool:
        """Mark revoked. True if a previously valid record changed."""

    @abstractmethod
    def revoke_token_by_id(self, token_id: UUID, owner_id: UUID) -> bool:
        """Revoke one record belonging to owner. True if it changed."""

    @abstractmethod
    def revoke_tokens_for_owner(self, owner_id: UUID, kind: TokenKind) -> int:
        """Revoke every unrevoked record of kind for owner. Returns count."""

    @abstractmethod
    def list_valid_tokens(self, owner_id: UUID, kind: TokenKind, now: datetime) -> list[TokenRecord]:
        """Valid records for owner, newest first."""

    @abstractmethod
    def purge_tokens(self, now: datetime) -> int:
        """Physically delete expired or revoked records. Returns count."""

    # -- security events -----------------------------------------------------

    @abstractmethod
    def append_security_event(
        self,
        event_type: str,
        email: str | None,
        user_id: UUID | None,
        details: dict[str, Any] | None,
        created_at: datetime,
    ) -> None:
        """Append one audit event."""

    @abstractmethod
    def recent_security_events(
        self,
        email: str | None = None,
        user_id: UUID | None = None,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Query recent events with optional filters, newest first."""
