"""Typed exceptions for identity and access failures.

Every engine error carries an HTTP-ish ``status_code`` and a machine-readable
``code`` so the transport layer can map it without inspecting messages.
"""

from datetime import datetime


class IdentityError(Exception):
    """Base class for authentication/authorization errors."""

    status_code = 400
    code = "IDENTITY_ERROR"


class InvalidCredentials(IdentityError):
    """
    Email/password pair did not authenticate.

    Raised for both unknown email and wrong password. The two cases must stay
    indistinguishable to callers to prevent account enumeration.
    """

    status_code = 401
    code = "INVALID_CREDENTIALS"


class AccountLocked(IdentityError):
    """Too many failed logins. Client should wait until the lock lifts."""

    status_code = 423
    code = "ACCOUNT_LOCKED"

    def __init__(self, until: datetime):
        self.until = until
        super().__init__(f"Account is temporarily locked until {until.isoformat()}.")


class AccountInactive(IdentityError):
    """User account is deactivated. Login not permitted."""

    status_code = 403
    code = "ACCOUNT_INACTIVE"


class TokenError(IdentityError):
    """Base class for token failures."""

    status_code = 401
    code = "INVALID_TOKEN"


class TokenExpired(TokenError):
    """Token signature is valid but its exp claim is in the past."""

    code = "TOKEN_EXPIRED"


class TokenInvalidSignature(TokenError):
    """Token is malformed or was not signed with the expected secret."""

    code = "TOKEN_INVALID_SIGNATURE"


class TokenWrongKind(TokenError):
    """Token is well-formed but of a different kind than requested."""

    code = "TOKEN_WRONG_KIND"

    def __init__(self, expected: str, actual: str | None):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected a {expected} token, got {actual or 'unknown'}.")


class TokenRevokedOrUnknown(TokenError):
    """
    No valid persisted record matches the token.

    Covers revoked, consumed, expired-in-store, and never-issued values alike.
    """

    code = "TOKEN_REVOKED"


class ImmutableRoleViolation(IdentityError):
    """Attempted to change a protected field of a system role."""

    status_code = 409
    code = "IMMUTABLE_ROLE"


class RoleInUse(IdentityError):
    """Role is still assigned to at least one user and cannot be deleted."""

    status_code = 409
    code = "ROLE_IN_USE"


class RoleNotFound(IdentityError):
    """Referenced role does not exist."""

    status_code = 404
    code = "ROLE_NOT_FOUND"


class RoleNameTaken(IdentityError):
    """Another role already uses this name."""

    status_code = 409
    code = "ROLE_NAME_TAKEN"


class InvalidRoleDefinition(IdentityError):
    """Role name or description is malformed."""

    code = "INVALID_ROLE"


class InvalidPermission(IdentityError):
    """Permission string is not part of the known catalog."""

    code = "INVALID_PERMISSION"

    def __init__(self, permissions: list[str]):
        self.permissions = permissions
        super().__init__(f"Invalid permissions: {', '.join(permissions)}")


class DefaultRoleMissing(IdentityError):
    """No active default role is configured. Registration cannot proceed."""

    status_code = 500
    code = "DEFAULT_ROLE_MISSING"


class PermissionDenied(IdentityError):
    """Caller lacks a required permission."""

    status_code = 403
    code = "PERMISSION_DENIED"


class UserNotFound(IdentityError):
    """
    User id not associated with any account.

    Note: In user-facing responses, don't reveal whether an email exists.
    This exception is for id-based internal lookups only.
    """

    status_code = 404
    code = "USER_NOT_FOUND"


class EmailAlreadyRegistered(IdentityError):
    """An account with this email already exists."""

    status_code = 409
    code = "EMAIL_TAKEN"


class HashingError(IdentityError):
    """Password hashing failed. Fatal, usually a configuration problem."""

    status_code = 500
    code = "HASHING_ERROR"


class ConfigurationError(IdentityError):
    """Engine cannot start with the supplied configuration."""

    status_code = 500
    code = "CONFIGURATION_ERROR"
