"""Tests for the identity exception hierarchy."""

from datetime import datetime, timezone

import pytest

from identity.exceptions import (
    AccountInactive,
    AccountLocked,
    ConfigurationError,
    HashingError,
    IdentityError,
    ImmutableRoleViolation,
    InvalidCredentials,
    InvalidPermission,
    InvalidRoleDefinition,
    PermissionDenied,
    RoleInUse,
    TokenError,
    TokenExpired,
    TokenInvalidSignature,
    TokenRevokedOrUnknown,
    TokenWrongKind,
)


class TestHierarchy:
    """Every engine error is catchable as IdentityError."""

    @pytest.mark.parametrize(
        "exc_class",
        [
            InvalidCredentials,
            AccountInactive,
            TokenError,
            ImmutableRoleViolation,
            InvalidRoleDefinition,
            RoleInUse,
            PermissionDenied,
            HashingError,
            ConfigurationError,
        ],
    )
    def test_inherits_identity_error(self, exc_class):
        assert issubclass(exc_class, IdentityError)

    @pytest.mark.parametrize(
        "exc_class", [TokenExpired, TokenInvalidSignature, TokenWrongKind, TokenRevokedOrUnknown]
    )
    def test_token_errors_share_base(self, exc_class):
        assert issubclass(exc_class, TokenError)
        assert exc_class.status_code == 401


class TestTransportMapping:
    """status_code and code let the boundary map errors without parsing messages."""

    def test_codes_are_distinct(self):
        classes = [
            InvalidCredentials, AccountLocked, AccountInactive, TokenExpired,
            TokenInvalidSignature, TokenWrongKind, TokenRevokedOrUnknown,
            ImmutableRoleViolation, RoleInUse, PermissionDenied, HashingError,
        ]
        codes = [c.code for c in classes]
        assert len(codes) == len(set(codes))

    def test_status_codes(self):
        assert InvalidCredentials.status_code == 401
        assert AccountLocked.status_code == 423
        assert AccountInactive.status_code == 403
        assert PermissionDenied.status_code == 403
        assert RoleInUse.status_code == 409
        assert HashingError.status_code == 500


class TestPayloads:
    """Exceptions that carry data expose it as attributes."""

    def test_account_locked_carries_until(self):
        until = datetime(2026, 1, 1, 14, 0, tzinfo=timezone.utc)
        exc = AccountLocked(until)
        assert exc.until == until
        assert "2026-01-01T14:00:00+00:00" in str(exc)

    def test_wrong_kind_names_both_kinds(self):
        exc = TokenWrongKind("access", "refresh")
        assert exc.expected == "access"
        assert exc.actual == "refresh"
        assert "refresh" in str(exc)

    def test_invalid_permission_lists_offenders(self):
        exc = InvalidPermission(["nope:x", "bad:y"])
        assert exc.permissions == ["nope:x", "bad:y"]
        assert "nope:x, bad:y" in str(exc)
