"""Pydantic models for the identity domain."""

from datetime import datetime
from enum import Enum
from typing import ClassVar
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

WILDCARD_PERMISSION = "admin:all"


class TokenKind(str, Enum):
    """Token kinds. Only refresh and the two ephemeral kinds are persisted."""

    ACCESS = "access"
    REFRESH = "refresh"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"

    @property
    def is_ephemeral(self) -> bool:
        return self in (TokenKind.PASSWORD_RESET, TokenKind.EMAIL_VERIFICATION)


class User(BaseModel):
    """A registered user of the system."""

    id: UUID
    email: EmailStr
    credential_hash: str = Field(..., repr=False)
    role_id: UUID
    email_verified: bool = False
    failed_attempts: int = 0
    locked_until: datetime | None = None
    is_active: bool = True
    is_deleted: bool = False
    created_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}

    def is_locked(self, now: datetime) -> bool:
        """Locked iff a lock is recorded and has not lapsed yet."""
        return self.locked_until is not None and now < self.locked_until


class Role(BaseModel):
    """A named permission set assigned to users."""

    id: UUID
    name: str
    description: str | None = None
    permissions: list[str] = Field(default_factory=list)
    is_system: bool = False
    is_default: bool = False
    is_active: bool = True
    created_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_admin(self) -> bool:
        return WILDCARD_PERMISSION in self.permissions

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions or self.is_admin

    def has_any(self, permissions: list[str]) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def has_all(self, permissions: list[str]) -> bool:
        return all(self.has_permission(p) for p in permissions)


class TokenRecord(BaseModel):
    """A persisted refresh or ephemeral token."""

    id: UUID
    owner_id: UUID
    kind: TokenKind
    value: str = Field(..., description="SHA-256 digest of the bearer value", repr=False)
    issued_at: datetime
    expires_at: datetime
    revoked: bool  # Required - fail closed, no default
    last_used_at: datetime | None = None

    def is_valid(self, now: datetime) -> bool:
        return not self.revoked and now < self.expires_at


class UserUpdate(BaseModel):
    """Mutable user fields. Anything else is rejected."""

    credential_hash: str | None = Field(default=None, repr=False)
    role_id: UUID | None = None
    email_verified: bool | None = None
    is_active: bool | None = None
    is_deleted: bool | None = None

    model_config = {"extra": "forbid"}


class RoleUpdate(BaseModel):
    """Mutable role fields. Anything else is rejected.

    is_default is deliberately absent: it only changes through the exclusive
    set_default operation.
    """

    name: str | None = None
    description: str | None = None
    permissions: list[str] | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}

    # Fields a system role may still change
    SYSTEM_MUTABLE_FIELDS: ClassVar[frozenset[str]] = frozenset({"description", "is_active"})


class IssuedToken(BaseModel):
    """A freshly signed or generated bearer token."""

    token: str = Field(..., repr=False)
    expires_at: datetime


class AccessClaims(BaseModel):
    """Verified claims carried by an access token."""

    user_id: UUID
    email: EmailStr
    role: str
    permissions: list[str]
    issued_at: datetime
    expires_at: datetime

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions or WILDCARD_PERMISSION in self.permissions


class LoginResult(BaseModel):
    """Tokens and permission snapshot returned after a successful login."""

    user: User
    access_token: IssuedToken
    refresh_token: IssuedToken
    role: str
    permissions: list[str]


class RefreshResult(BaseModel):
    """Outcome of a refresh. refresh_token is set only when rotation is enabled."""

    access_token: IssuedToken
    refresh_token: IssuedToken | None = None
    role: str
    permissions: list[str]
