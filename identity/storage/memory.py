"""In-memory storage adapter.

Used for local development and the test suite. One RLock guards all data so
every method, including the atomic primitives, runs as a single critical
section. Records are copied on the way in and out; callers never hold a live
reference to stored state.
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from identity.exceptions import EmailAlreadyRegistered, RoleInUse, RoleNameTaken
from identity.storage.base import IdentityStorage
from identity.types import Role, RoleUpdate, TokenKind, TokenRecord, User, UserUpdate
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class MemoryIdentityStorage(IdentityStorage):
    """Thread-safe in-process backing store."""

    def __init__(self, clock: Callable[[], datetime] = now_utc) -> None:
        self._clock = clock
        self._users: dict[UUID, User] = {}
        self._roles: dict[UUID, Role] = {}
        self._tokens: dict[UUID, TokenRecord] = {}
        self._token_index: dict[str, UUID] = {}
        self._events: list[dict[str, Any]] = []
        # RLock for all data operations to ensure thread safety
        self._lock = threading.RLock()

    # -- users ---------------------------------------------------------------

    def _find_user_by_email(self, email: str) -> User | None:
        email = email.lower()
        for user in self._users.values():
            if user.email == email and not user.is_deleted:
                return user
        return None

    def create_user(
        self,
        email: str,
        credential_hash: str,
        role_id: UUID,
        email_verified: bool = False,
    ) -> User:
        with self._lock:
            if self._find_user_by_email(email) is not None:
                raise EmailAlreadyRegistered("User with this email already exists")
            user = User(
                id=uuid.uuid4(),
                email=email.lower(),
                credential_hash=credential_hash,
                role_id=role_id,
                email_verified=email_verified,
                created_at=self._clock(),
            )
            self._users[user.id] = user
            return user.model_copy()

    def get_user(self, user_id: UUID) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    def get_user_by_email(self, email: str) -> User | None:
        with self._lock:
            user = self._find_user_by_email(email)
            return user.model_copy() if user else None

    def update_user(self, user_id: UUID, update: UserUpdate) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            updated = user.model_copy(update=update.model_dump(exclude_unset=True))
            self._users[user_id] = updated
            return updated.model_copy()

    def record_failed_login(
        self,
        user_id: UUID,
        now: datetime,
        threshold: int,
        lock_until: datetime,
    ) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None

            lapsed = user.locked_until is not None and user.locked_until <= now
            attempts = 1 if lapsed else user.failed_attempts + 1
            if attempts >= threshold:
                locked_until = lock_until
            elif lapsed:
                locked_until = None
            else:
                locked_until = user.locked_until

            updated = user.model_copy(
                update={"failed_attempts": attempts, "locked_until": locked_until}
            )
            self._users[user_id] = updated
            return updated.model_copy()

    def record_successful_login(self, user_id: UUID, now: datetime) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            if user.is_locked(now):
                return None
            updated = user.model_copy(
                update={"failed_attempts": 0, "locked_until": None, "last_login_at": now}
            )
            self._users[user_id] = updated
            return updated.model_copy()

    def count_users_with_role(self, role_id: UUID) -> int:
        with self._lock:
            return sum(1 for u in self._users.values() if u.role_id == role_id)

    # -- roles ---------------------------------------------------------------

    def _name_taken(self, name: str, exclude: UUID | None = None) -> bool:
        return any(r.name == name and r.id != exclude for r in self._roles.values())

    def create_role(
        self,
        name: str,
        permissions: list[str],
        description: str | None = None,
        is_system: bool = False,
        is_active: bool = True,
    ) -> Role:
        with self._lock:
            if self._name_taken(name):
                raise RoleNameTaken(f"Role '{name}' already exists")
            role = Role(
                id=uuid.uuid4(),
                name=name,
                description=description,
                permissions=list(permissions),
                is_system=is_system,
                is_active=is_active,
                created_at=self._clock(),
            )
            self._roles[role.id] = role
            return role.model_copy(deep=True)

    def get_role(self, role_id: UUID) -> Role | None:
        with self._lock:
            role = self._roles.get(role_id)
            return role.model_copy(deep=True) if role else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self._lock:
            for role in self._roles.values():
                if role.name == name:
                    return role.model_copy(deep=True)
            return None

    def get_default_role(self) -> Role | None:
        with self._lock:
            for role in self._roles.values():
                if role.is_default and role.is_active:
                    return role.model_copy(deep=True)
            return None

    def list_roles(self) -> list[Role]:
        with self._lock:
            return [r.model_copy(deep=True) for r in sorted(self._roles.values(), key=lambda r: r.name)]

    def update_role(self, role_id: UUID, update: RoleUpdate) -> Role | None:
        with self._lock:
            role = self._roles.get(role_id)
            if role is None:
                return None
            changes = update.model_dump(exclude_unset=True)
            if "name" in changes and self._name_taken(changes["name"], exclude=role_id):
                raise RoleNameTaken(f"Role '{changes['name']}' already exists")
            if changes.get("is_active") is False and role.is_default:
                raise RoleInUse("The default role cannot be deactivated")
            updated = role.model_copy(update=changes, deep=True)
            self._roles[role_id] = updated
            return updated.model_copy(deep=True)

    def set_default_role(self, role_id: UUID) -> Role | None:
        with self._lock:
            target = self._roles.get(role_id)
            if target is None or not target.is_active:
                return None
            for rid, role in self._roles.items():
                is_target = rid == role_id
                if role.is_default != is_target:
                    self._roles[rid] = role.model_copy(update={"is_default": is_target})
            return self._roles[role_id].model_copy(deep=True)

    def delete_role(self, role_id: UUID) -> bool:
        with self._lock:
            role = self._roles.get(role_id)
            if role is None or role.is_system or self.count_users_with_role(role_id) > 0:
                return False
            del self._roles[role_id]
            return True

    # -- tokens --------------------------------------------------------------

    def _token_by_value(self, value: str) -> TokenRecord | None:
        token_id = self._token_index.get(value)
        return self._tokens.get(token_id) if token_id else None

    def create_token(self, record: TokenRecord) -> TokenRecord:
        with self._lock:
            if record.value in self._token_index:
                raise ValueError("Token value already stored")
            self._tokens[record.id] = record.model_copy()
            self._token_index[record.value] = record.id
            return record.model_copy()

    def find_valid_token(self, value: str, kind: TokenKind, now: datetime) -> TokenRecord | None:
        with self._lock:
            record = self._token_by_value(value)
            if record is None or record.kind != kind or not record.is_valid(now):
                return None
            return record.model_copy()

    def claim_token(
        self,
        value: str,
        kind: TokenKind,
        now: datetime,
        consume: bool,
    ) -> TokenRecord | None:
        with self._lock:
            record = self._token_by_value(value)
            if record is None or record.kind != kind or not record.is_valid(now):
                return None
            updated = record.model_copy(update={"last_used_at": now, "revoked": consume})
            self._tokens[record.id] = updated
            return updated.model_copy()

    def revoke_token(self, value: str) -> bool:
        with self._lock:
            record = self._token_by_value(value)
            if record is None or record.revoked:
                return False
            self._tokens[record.id] = record.model_copy(update={"revoked": True})
            return True

    def revoke_token_by_id(self, token_id: UUID, owner_id: UUID) -> bool:
        with self._lock:
            record = self._tokens.get(token_id)
            if record is None or record.owner_id != owner_id or record.revoked:
                return False
            self._tokens[token_id] = record.model_copy(update={"revoked": True})
            return True

    def revoke_tokens_for_owner(self, owner_id: UUID, kind: TokenKind) -> int:
        with self._lock:
            count = 0
            for token_id, record in self._tokens.items():
                if record.owner_id == owner_id and record.kind == kind and not record.revoked:
                    self._tokens[token_id] = record.model_copy(update={"revoked": True})
                    count += 1
            return count

    def list_valid_tokens(self, owner_id: UUID, kind: TokenKind, now: datetime) -> list[TokenRecord]:
        with self._lock:
            records = [
                r.model_copy()
                for r in self._tokens.values()
                if r.owner_id == owner_id and r.kind == kind and r.is_valid(now)
            ]
            return sorted(records, key=lambda r: r.issued_at, reverse=True)

    def purge_tokens(self, now: datetime) -> int:
        with self._lock:
            stale = [tid for tid, r in self._tokens.items() if not r.is_valid(now)]
            for token_id in stale:
                record = self._tokens.pop(token_id)
                self._token_index.pop(record.value, None)
            if stale:
                logger.info(f"Purged {len(stale)} stale token records")
            return len(stale)

    # -- security events -----------------------------------------------------

    def append_security_event(
        self,
        event_type: str,
        email: str | None,
        user_id: UUID | None,
        details: dict[str, Any] | None,
        created_at: datetime,
    ) -> None:
        with self._lock:
            self._events.append(
                {
                    "id": len(self._events) + 1,
                    "event_type": event_type,
                    "email": email,
                    "user_id": user_id,
                    "details": dict(details) if details else None,
                    "created_at": created_at,
                }
            )

    def recent_security_events(
        self,
        email: str | None = None,
        user_id: UUID | None = None,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        with self._lock:
            matches = [
                dict(e)
                for e in reversed(self._events)
                if (email is None or e["email"] == email)
                and (user_id is None or e["user_id"] == user_id)
                and (event_type is None or e["event_type"] == event_type)
            ]
            return matches[:limit]
