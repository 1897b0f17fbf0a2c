"""PostgreSQL storage adapter.

Tables: users, roles, tokens, security_events (see schema.sql). These are
accessed during auth before any user context exists, so no RLS applies.

Every atomic operation is one conditional statement. Under READ COMMITTED a
concurrent UPDATE blocks on the row lock and re-evaluates its WHERE clause
against the committed row, which is what makes consume-once and the lockout
counter safe without explicit transactions.
"""

import logging
import uuid
from datetime import datetime
from typing import Any
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from identity.exceptions import EmailAlreadyRegistered, RoleInUse, RoleNameTaken
from identity.storage.base import IdentityStorage
from identity.types import Role, RoleUpdate, TokenKind, TokenRecord, User, UserUpdate

logger = logging.getLogger(__name__)

_USER_COLUMNS = """id, email, credential_hash, role_id, email_verified, failed_attempts,
                   locked_until, is_active, is_deleted, created_at, last_login_at"""

_ROLE_COLUMNS = "id, name, description, permissions, is_system, is_default, is_active, created_at"

_TOKEN_COLUMNS = "id, owner_id, kind, value, issued_at, expires_at, revoked, last_used_at"


def _uuid(value: Any) -> UUID:
    return UUID(value) if isinstance(value, str) else value


def _user_from_row(row: dict[str, Any]) -> User:
    return User(
        id=_uuid(row["id"]),
        email=row["email"],
        credential_hash=row["credential_hash"],
        role_id=_uuid(row["role_id"]),
        email_verified=row["email_verified"],
        failed_attempts=row["failed_attempts"],
        locked_until=row["locked_until"],
        is_active=row["is_active"],
        is_deleted=row["is_deleted"],
        created_at=row["created_at"],
        last_login_at=row["last_login_at"],
    )


def _role_from_row(row: dict[str, Any]) -> Role:
    return Role(
        id=_uuid(row["id"]),
        name=row["name"],
        description=row["description"],
        permissions=list(row["permissions"] or []),
        is_system=row["is_system"],
        is_default=row["is_default"],
        is_active=row["is_active"],
        created_at=row["created_at"],
    )


def _token_from_row(row: dict[str, Any]) -> TokenRecord:
    return TokenRecord(
        id=_uuid(row["id"]),
        owner_id=_uuid(row["owner_id"]),
        kind=TokenKind(row["kind"]),
        value=row["value"],
        issued_at=row["issued_at"],
        expires_at=row["expires_at"],
        revoked=row["revoked"],
        last_used_at=row["last_used_at"],
    )


class PostgresIdentityStorage(IdentityStorage):
    """Identity records in PostgreSQL via the pooled PostgresClient."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    # -- users ---------------------------------------------------------------

    def create_user(
        self,
        email: str,
        credential_hash: str,
        role_id: UUID,
        email_verified: bool = False,
    ) -> User:
        # users_email_live is a partial unique index on lower(email)
        rows = self._db.execute_returning(
            f"""INSERT INTO users (id, email, credential_hash, role_id, email_verified)
                VALUES (%s, lower(%s), %s, %s, %s)
                ON CONFLICT DO NOTHING
                RETURNING {_USER_COLUMNS}""",
            (uuid.uuid4(), email, credential_hash, role_id, email_verified),
        )
        if not rows:
            raise EmailAlreadyRegistered("User with this email already exists")
        return _user_from_row(rows[0])

    def get_user(self, user_id: UUID) -> User | None:
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (user_id,),
        )
        return _user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> User | None:
        row = self._db.execute_single(
            f"""SELECT {_USER_COLUMNS} FROM users
                WHERE lower(email) = lower(%s) AND NOT is_deleted""",
            (email,),
        )
        return _user_from_row(row) if row else None

    def update_user(self, user_id: UUID, update: UserUpdate) -> User | None:
        changes = update.model_dump(exclude_unset=True)
        if not changes:
            return self.get_user(user_id)

        # Column names come from UserUpdate's declared fields, never from input
        assignments = ", ".join(f"{column} = %({column})s" for column in changes)
        changes["id"] = user_id
        rows = self._db.execute_returning(
            f"UPDATE users SET {assignments} WHERE id = %(id)s RETURNING {_USER_COLUMNS}",
            changes,
        )
        return _user_from_row(rows[0]) if rows else None

    def record_failed_login(
        self,
        user_id: UUID,
        now: datetime,
        threshold: int,
        lock_until: datetime,
    ) -> User | None:
        rows = self._db.execute_returning(
            f"""UPDATE users SET
                    failed_attempts = CASE
                        WHEN locked_until IS NOT NULL AND locked_until <= %(now)s THEN 1
                        ELSE failed_attempts + 1
                    END,
                    locked_until = CASE
                        WHEN (CASE
                                WHEN locked_until IS NOT NULL AND locked_until <= %(now)s THEN 1
                                ELSE failed_attempts + 1
                              END) >= %(threshold)s THEN %(lock_until)s
                        WHEN locked_until IS NOT NULL AND locked_until <= %(now)s THEN NULL
                        ELSE locked_until
                    END
                WHERE id = %(id)s
                RETURNING {_USER_COLUMNS}""",
            {"id": user_id, "now": now, "threshold": threshold, "lock_until": lock_until},
        )
        return _user_from_row(rows[0]) if rows else None

    def record_successful_login(self, user_id: UUID, now: datetime) -> User | None:
        rows = self._db.execute_returning(
            f"""UPDATE users
                SET failed_attempts = 0, locked_until = NULL, last_login_at = %(now)s
                WHERE id = %(id)s
                  AND (locked_until IS NULL OR locked_until <= %(now)s)
                RETURNING {_USER_COLUMNS}""",
            {"id": user_id, "now": now},
        )
        return _user_from_row(rows[0]) if rows else None

    def count_users_with_role(self, role_id: UUID) -> int:
        count = self._db.execute_scalar(
            "SELECT count(*) FROM users WHERE role_id = %s",
            (role_id,),
        )
        return int(count or 0)

    # -- roles ---------------------------------------------------------------

    def create_role(
        self,
        name: str,
        permissions: list[str],
        description: str | None = None,
        is_system: bool = False,
        is_active: bool = True,
    ) -> Role:
        rows = self._db.execute_returning(
            f"""INSERT INTO roles (id, name, description, permissions, is_system, is_active)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (name) DO NOTHING
                RETURNING {_ROLE_COLUMNS}""",
            (uuid.uuid4(), name, description, list(permissions), is_system, is_active),
        )
        if not rows:
            raise RoleNameTaken(f"Role '{name}' already exists")
        return _role_from_row(rows[0])

    def get_role(self, role_id: UUID) -> Role | None:
        row = self._db.execute_single(
            f"SELECT {_ROLE_COLUMNS} FROM roles WHERE id = %s",
            (role_id,),
        )
        return _role_from_row(row) if row else None

    def get_role_by_name(self, name: str) -> Role | None:
        row = self._db.execute_single(
            f"SELECT {_ROLE_COLUMNS} FROM roles WHERE name = %s",
            (name,),
        )
        return _role_from_row(row) if row else None

    def get_default_role(self) -> Role | None:
        row = self._db.execute_single(
            f"SELECT {_ROLE_COLUMNS} FROM roles WHERE is_default AND is_active LIMIT 1",
        )
        return _role_from_row(row) if row else None

    def list_roles(self) -> list[Role]:
        rows = self._db.execute(f"SELECT {_ROLE_COLUMNS} FROM roles ORDER BY name")
        return [_role_from_row(row) for row in rows]

    def update_role(self, role_id: UUID, update: RoleUpdate) -> Role | None:
        changes = update.model_dump(exclude_unset=True)
        if not changes:
            return self.get_role(role_id)

        if "name" in changes:
            clash = self._db.execute_single(
                "SELECT id FROM roles WHERE name = %s AND id <> %s",
                (changes["name"], role_id),
            )
            if clash:
                raise RoleNameTaken(f"Role '{changes['name']}' already exists")

        assignments = ", ".join(f"{column} = %({column})s" for column in changes)
        # The default role must stay active; checked in the same statement
        guard = " AND NOT is_default" if changes.get("is_active") is False else ""
        changes["id"] = role_id
        rows = self._db.execute_returning(
            f"UPDATE roles SET {assignments} WHERE id = %(id)s{guard} RETURNING {_ROLE_COLUMNS}",
            changes,
        )
        if rows:
            return _role_from_row(rows[0])
        if guard and self.get_role(role_id) is not None:
            raise RoleInUse("The default role cannot be deactivated")
        return None

    def set_default_role(self, role_id: UUID) -> Role | None:
        # Touches every row on purpose: a concurrent call blocks on the first
        # locked row and then rewrites all rows from their committed versions,
        # so the last committer wins and exactly one default remains. The
        # target row is locked so a concurrent deactivation is seen.
        rows = self._db.execute_returning(
            f"""UPDATE roles SET is_default = (id = %(id)s)
                WHERE EXISTS (SELECT 1 FROM roles WHERE id = %(id)s AND is_active FOR UPDATE)
                RETURNING {_ROLE_COLUMNS}""",
            {"id": role_id},
        )
        for row in rows:
            if _uuid(row["id"]) == role_id:
                return _role_from_row(row)
        return None

    def delete_role(self, role_id: UUID) -> bool:
        rows = self._db.execute_returning(
            """DELETE FROM roles r
               WHERE r.id = %(id)s
                 AND NOT r.is_system
                 AND NOT EXISTS (SELECT 1 FROM users u WHERE u.role_id = r.id)
               RETURNING r.id""",
            {"id": role_id},
        )
        return len(rows) > 0

    # -- tokens --------------------------------------------------------------

    def create_token(self, record: TokenRecord) -> TokenRecord:
        rows = self._db.execute_returning(
            f"""INSERT INTO tokens (id, owner_id, kind, value, issued_at, expires_at, revoked, last_used_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_TOKEN_COLUMNS}""",
            (
                record.id,
                record.owner_id,
                record.kind.value,
                record.value,
                record.issued_at,
                record.expires_at,
                record.revoked,
                record.last_used_at,
            ),
        )
        return _token_from_row(rows[0])

    def find_valid_token(self, value: str, kind: TokenKind, now: datetime) -> TokenRecord | None:
        row = self._db.execute_single(
            f"""SELECT {_TOKEN_COLUMNS} FROM tokens
                WHERE value = %s AND kind = %s AND NOT revoked AND expires_at > %s""",
            (value, kind.value, now),
        )
        return _token_from_row(row) if row else None

    def claim_token(
        self,
        value: str,
        kind: TokenKind,
        now: datetime,
        consume: bool,
    ) -> TokenRecord | None:
        rows = self._db.execute_returning(
            f"""UPDATE tokens
                SET last_used_at = %(now)s, revoked = %(consume)s
                WHERE value = %(value)s
                  AND kind = %(kind)s
                  AND NOT revoked
                  AND expires_at > %(now)s
                RETURNING {_TOKEN_COLUMNS}""",
            {"value": value, "kind": kind.value, "now": now, "consume": consume},
        )
        return _token_from_row(rows[0]) if rows else None

    def revoke_token(self, value: str) -> bool:
        rows = self._db.execute_returning(
            "UPDATE tokens SET revoked = true WHERE value = %s AND NOT revoked RETURNING id",
            (value,),
        )
        return len(rows) > 0

    def revoke_token_by_id(self, token_id: UUID, owner_id: UUID) -> bool:
        rows = self._db.execute_returning(
            """UPDATE tokens SET revoked = true
               WHERE id = %s AND owner_id = %s AND NOT revoked
               RETURNING id""",
            (token_id, owner_id),
        )
        return len(rows) > 0

    def revoke_tokens_for_owner(self, owner_id: UUID, kind: TokenKind) -> int:
        rows = self._db.execute_returning(
            """UPDATE tokens SET revoked = true
               WHERE owner_id = %s AND kind = %s AND NOT revoked
               RETURNING id""",
            (owner_id, kind.value),
        )
        return len(rows)

    def list_valid_tokens(self, owner_id: UUID, kind: TokenKind, now: datetime) -> list[TokenRecord]:
        rows = self._db.execute(
            f"""SELECT {_TOKEN_COLUMNS} FROM tokens
                WHERE owner_id = %s AND kind = %s AND NOT revoked AND expires_at > %s
                ORDER BY issued_at DESC""",
            (owner_id, kind.value, now),
        )
        return [_token_from_row(row) for row in rows]

    def purge_tokens(self, now: datetime) -> int:
        rows = self._db.execute_returning(
            "DELETE FROM tokens WHERE revoked OR expires_at <= %s RETURNING id",
            (now,),
        )
        if rows:
            logger.info(f"Purged {len(rows)} stale token records")
        return len(rows)

    # -- security events -----------------------------------------------------

    def append_security_event(
        self,
        event_type: str,
        email: str | None,
        user_id: UUID | None,
        details: dict[str, Any] | None,
        created_at: datetime,
    ) -> None:
        self._db.execute_returning(
            """INSERT INTO security_events (event_type, email, user_id, details, created_at)
               VALUES (%s, %s, %s, %s, %s)
               RETURNING id""",
            (
                event_type,
                email,
                user_id,
                Json(details) if details else None,
                created_at,
            ),
        )

    def recent_security_events(
        self,
        email: str | None = None,
        user_id: UUID | None = None,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        conditions = []
        params: list[Any] = []

        if email:
            conditions.append("email = %s")
            params.append(email)

        if user_id:
            conditions.append("user_id = %s")
            params.append(user_id)

        if event_type:
            conditions.append("event_type = %s")
            params.append(event_type)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        return self._db.execute(
            f"""SELECT id, event_type, email, user_id, details, created_at
                FROM security_events
                WHERE {where_clause}
                ORDER BY created_at DESC, id DESC
                LIMIT %s""",
            tuple(params),
        )
