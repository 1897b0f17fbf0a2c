"""Login, refresh, logout and bearer authentication.

Access tokens are self-contained: their permission snapshot stays as issued
until expiry, so a role change takes effect at the next login or refresh.
Refresh tokens are additionally backed by a store record, which is what
makes logout and revocation possible.
"""

import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from pydantic import ValidationError

from identity.config import IdentityConfig
from identity.exceptions import (
    AccountInactive,
    AccountLocked,
    InvalidCredentials,
    TokenError,
    TokenInvalidSignature,
    TokenRevokedOrUnknown,
)
from identity.lockout import LockoutGuard
from identity.passwords import CredentialVerifier
from identity.permissions import PermissionResolver
from identity.security_logger import SecurityEvent, SecurityLogger
from identity.storage.base import IdentityStorage
from identity.token_store import TokenStore
from identity.tokens import TokenIssuer
from identity.types import (
    AccessClaims,
    IssuedToken,
    LoginResult,
    RefreshResult,
    Role,
    TokenKind,
    TokenRecord,
    User,
)
from utils.timezone import from_timestamp, now_utc

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


class SessionManager:
    """Token-based session lifecycle.

    Handles:
    - Login with lockout and enumeration protection
    - Access token reissue from a refresh token
    - Logout of one device or all devices
    - Bearer access token authentication
    """

    def __init__(
        self,
        storage: IdentityStorage,
        verifier: CredentialVerifier,
        issuer: TokenIssuer,
        token_store: TokenStore,
        lockout: LockoutGuard,
        resolver: PermissionResolver,
        config: IdentityConfig,
        security_logger: SecurityLogger,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._storage = storage
        self._verifier = verifier
        self._issuer = issuer
        self._token_store = token_store
        self._lockout = lockout
        self._resolver = resolver
        self._config = config
        self._security_logger = security_logger
        self._clock = clock

    def _issue_access(self, user: User, role: Role, permissions: list[str]) -> IssuedToken:
        return self._issuer.issue(
            TokenKind.ACCESS,
            {"sub": str(user.id), "email": user.email, "role": role.name, "permissions": permissions},
            self._config.access_token_ttl,
        )

    def _issue_refresh(self, user: User, role: Role) -> IssuedToken:
        """Sign a refresh token and persist its record."""
        issued = self._issuer.issue(
            TokenKind.REFRESH,
            {"sub": str(user.id), "email": user.email, "role": role.name},
            self._config.refresh_token_ttl,
        )
        self._token_store.create(user.id, TokenKind.REFRESH, issued.token, issued.expires_at)
        return issued

    def _log_blocked(self, user: User, error: AccountLocked) -> None:
        self._security_logger.log(
            SecurityEvent.LOGIN_BLOCKED,
            email=user.email,
            user_id=user.id,
            details={"locked_until": error.until.isoformat()},
        )

    def login(self, email: str, password: str) -> LoginResult:
        """Authenticate with email and password.

        Flow:
        1. Look up user (unknown email burns a dummy hash check)
        2. Refuse if locked, without touching the counter
        3. Verify password; failure counts toward lockout
        4. Reset counter, refuse deactivated accounts
        5. Resolve role, issue access + refresh tokens

        Raises:
            InvalidCredentials: Unknown email or wrong password.
            AccountLocked: Lock is in force.
            AccountInactive: Correct password but account deactivated.
        """
        email = email.lower().strip()
        user = self._storage.get_user_by_email(email)

        if user is None:
            self._verifier.verify_dummy(password)
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=email,
                details={"reason": "unknown_email"},
            )
            raise InvalidCredentials(INVALID_CREDENTIALS_MESSAGE)

        try:
            self._lockout.check(user)
        except AccountLocked as e:
            self._log_blocked(user, e)
            raise

        if not self._verifier.verify(password, user.credential_hash):
            updated = self._lockout.record_failure(user)
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=user.email,
                user_id=user.id,
                details={"reason": "wrong_password", "failed_attempts": updated.failed_attempts},
            )
            raise InvalidCredentials(INVALID_CREDENTIALS_MESSAGE)

        try:
            user = self._lockout.record_success(user)
        except AccountLocked as e:
            self._log_blocked(user, e)
            raise

        # Checked after the password so a wrong guess can't reveal account state
        if not user.is_active:
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=user.email,
                user_id=user.id,
                details={"reason": "inactive"},
            )
            raise AccountInactive("User account is deactivated")

        role = self._resolver.resolve(user)
        permissions = self._resolver.effective_permissions(role)
        access = self._issue_access(user, role, permissions)
        refresh = self._issue_refresh(user, role)

        self._security_logger.log(
            SecurityEvent.LOGIN_SUCCEEDED,
            email=user.email,
            user_id=user.id,
            details={"role": role.name},
        )
        logger.info(f"User {user.id} logged in")

        return LoginResult(
            user=user,
            access_token=access,
            refresh_token=refresh,
            role=role.name,
            permissions=permissions,
        )

    def refresh(self, refresh_token: str) -> RefreshResult:
        """Issue a new access token with the role's current permissions.

        The refresh token itself is reused unless rotation is enabled, in
        which case the presented one is consumed and a new one returned.

        Raises:
            TokenError: Bad signature, wrong kind, expired, or no valid record.
            AccountInactive: Owner was deactivated since login.
        """
        rotate = self._config.rotate_refresh_tokens
        try:
            claims = self._issuer.verify(refresh_token, TokenKind.REFRESH)
            record = self._token_store.claim(refresh_token, TokenKind.REFRESH, consume=rotate)
            if record is None or str(record.owner_id) != claims.get("sub"):
                raise TokenRevokedOrUnknown("Refresh token revoked or unknown")

            user = self._storage.get_user(record.owner_id)
            if user is None or user.is_deleted:
                raise TokenRevokedOrUnknown("Refresh token owner no longer exists")
        except TokenError as e:
            self._security_logger.log(
                SecurityEvent.REFRESH_REJECTED,
                details={"reason": e.code},
            )
            raise

        if not user.is_active:
            raise AccountInactive("User account is deactivated")

        role = self._resolver.resolve(user)
        permissions = self._resolver.effective_permissions(role)
        access = self._issue_access(user, role, permissions)
        new_refresh = self._issue_refresh(user, role) if rotate else None

        self._security_logger.log(
            SecurityEvent.TOKEN_REFRESHED,
            email=user.email,
            user_id=user.id,
            details={"rotated": rotate},
        )

        return RefreshResult(
            access_token=access,
            refresh_token=new_refresh,
            role=role.name,
            permissions=permissions,
        )

    def logout(self, refresh_token: str) -> None:
        """Revoke one refresh token. Unknown, revoked or malformed is fine."""
        self._token_store.revoke(refresh_token)

        claims = self._issuer.decode_unsafe(refresh_token) or {}
        user_id = claims.get("sub")
        self._security_logger.log(
            SecurityEvent.LOGOUT,
            email=claims.get("email"),
            user_id=UUID(user_id) if isinstance(user_id, str) and _is_uuid(user_id) else None,
        )

    def logout_all(self, user_id: UUID) -> int:
        """Revoke every refresh token of the user. Returns how many."""
        count = self._token_store.revoke_all_for_owner(user_id, TokenKind.REFRESH)
        self._security_logger.log(
            SecurityEvent.LOGOUT_ALL,
            user_id=user_id,
            details={"revoked": count},
        )
        logger.info(f"Revoked {count} refresh token(s) for user {user_id}")
        return count

    def authenticate(self, access_token: str) -> AccessClaims:
        """Verify a bearer access token and return its claims.

        Raises:
            TokenError: Bad signature, wrong kind or expired.
        """
        claims = self._issuer.verify(access_token, TokenKind.ACCESS)
        try:
            return AccessClaims(
                user_id=claims["sub"],
                email=claims["email"],
                role=claims["role"],
                permissions=claims["permissions"],
                issued_at=from_timestamp(claims["iat"]),
                expires_at=from_timestamp(claims["exp"]),
            )
        except (KeyError, ValidationError) as e:
            raise TokenInvalidSignature("Access token is missing required claims") from e

    def list_sessions(self, user_id: UUID) -> list[TokenRecord]:
        """Live refresh token records (one per logged-in device)."""
        return self._token_store.list_active(user_id, TokenKind.REFRESH)

    def revoke_session(self, user_id: UUID, token_id: UUID) -> bool:
        """Revoke one of the user's sessions by record id."""
        revoked = self._token_store.revoke_by_id(user_id, token_id)
        if revoked:
            self._security_logger.log(
                SecurityEvent.SESSION_REVOKED,
                user_id=user_id,
                details={"token_id": str(token_id)},
            )
        return revoked


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except ValueError:
        return False
    return True
