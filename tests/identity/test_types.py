"""Tests for identity domain models."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from identity.types import AccessClaims, Role, RoleUpdate, TokenKind, TokenRecord, User, UserUpdate

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_role(**overrides) -> Role:
    fields = {"id": uuid.uuid4(), "name": "editor", "permissions": ["content:read"], "created_at": NOW}
    fields.update(overrides)
    return Role(**fields)


def make_user(**overrides) -> User:
    fields = {
        "id": uuid.uuid4(),
        "email": "bob@example.com",
        "credential_hash": "$2b$04$" + "x" * 53,
        "role_id": uuid.uuid4(),
        "created_at": NOW,
    }
    fields.update(overrides)
    return User(**fields)


class TestTokenKind:
    def test_ephemeral_kinds(self):
        assert TokenKind.PASSWORD_RESET.is_ephemeral
        assert TokenKind.EMAIL_VERIFICATION.is_ephemeral
        assert not TokenKind.ACCESS.is_ephemeral
        assert not TokenKind.REFRESH.is_ephemeral


class TestUser:
    def test_lock_in_force(self):
        user = make_user(locked_until=NOW + timedelta(minutes=1))
        assert user.is_locked(NOW)

    def test_lock_lapsed(self):
        user = make_user(locked_until=NOW)
        assert not user.is_locked(NOW)

    def test_hash_hidden_from_repr(self):
        assert "$2b$" not in repr(make_user())

    def test_rejects_malformed_email(self):
        with pytest.raises(ValidationError):
            make_user(email="not-an-email")


class TestRolePermissions:
    def test_listed_permission_granted(self):
        role = make_role(permissions=["content:read"])
        assert role.has_permission("content:read")
        assert not role.has_permission("content:delete")

    def test_wildcard_grants_everything(self):
        role = make_role(permissions=["admin:all"])
        assert role.is_admin
        assert role.has_permission("file:delete")
        assert role.has_all(["user:delete", "role:create"])

    def test_has_any_and_has_all(self):
        role = make_role(permissions=["content:read", "file:list"])
        assert role.has_any(["content:publish", "file:list"])
        assert not role.has_all(["content:publish", "file:list"])


class TestTokenRecord:
    def test_valid_until_expiry(self):
        record = TokenRecord(
            id=uuid.uuid4(), owner_id=uuid.uuid4(), kind=TokenKind.REFRESH, value="d" * 64,
            issued_at=NOW, expires_at=NOW + timedelta(seconds=1), revoked=False,
        )
        assert record.is_valid(NOW)
        assert not record.is_valid(NOW + timedelta(seconds=1))

    def test_revoked_flag_required(self):
        with pytest.raises(ValidationError):
            TokenRecord(
                id=uuid.uuid4(), owner_id=uuid.uuid4(), kind=TokenKind.REFRESH, value="d" * 64,
                issued_at=NOW, expires_at=NOW,
            )


class TestUpdateStructs:
    """Update structs reject unknown fields instead of ignoring them."""

    def test_user_update_rejects_email(self):
        with pytest.raises(ValidationError):
            UserUpdate(email="new@example.com")

    def test_role_update_rejects_is_system(self):
        with pytest.raises(ValidationError):
            RoleUpdate(is_system=False)

    def test_role_update_rejects_is_default(self):
        with pytest.raises(ValidationError):
            RoleUpdate(is_default=True)

    def test_system_mutable_fields(self):
        assert RoleUpdate.SYSTEM_MUTABLE_FIELDS == {"description", "is_active"}
        assert "SYSTEM_MUTABLE_FIELDS" not in RoleUpdate.model_fields


class TestAccessClaims:
    def test_wildcard_in_claims(self):
        claims = AccessClaims(
            user_id=uuid.uuid4(), email="a@x.com", role="admin", permissions=["admin:all"],
            issued_at=NOW, expires_at=NOW,
        )
        assert claims.has_permission("role:delete")
