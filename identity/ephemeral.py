"""Single-use tokens for password reset and email verification.

Tokens are opaque random strings emailed to the user. A token is good for
exactly one use: consumption is a single atomic claim in the store, so two
concurrent redemptions of the same link can never both succeed.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from clients.email_client import EmailGatewayClient, EmailGatewayError
from identity.config import IdentityConfig
from identity.exceptions import TokenRevokedOrUnknown, UserNotFound
from identity.passwords import CredentialVerifier
from identity.security_logger import SecurityEvent, SecurityLogger
from identity.session import SessionManager
from identity.storage.base import IdentityStorage
from identity.token_store import TokenStore
from identity.tokens import TokenIssuer
from identity.types import TokenKind, User, UserUpdate
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class EphemeralTokenWorkflow:
    """Issues, mails and redeems password reset and email verification tokens.

    Request operations return nothing and behave the same whether or not
    the email belongs to an account, to prevent account enumeration.
    """

    def __init__(
        self,
        storage: IdentityStorage,
        verifier: CredentialVerifier,
        issuer: TokenIssuer,
        token_store: TokenStore,
        sessions: SessionManager,
        email_client: EmailGatewayClient,
        config: IdentityConfig,
        security_logger: SecurityLogger,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._storage = storage
        self._verifier = verifier
        self._issuer = issuer
        self._token_store = token_store
        self._sessions = sessions
        self._email_client = email_client
        self._config = config
        self._security_logger = security_logger
        self._clock = clock

    def _ttl(self, kind: TokenKind) -> timedelta:
        if kind == TokenKind.PASSWORD_RESET:
            return self._config.password_reset_ttl
        return self._config.email_verification_ttl

    def _issue(self, user: User, kind: TokenKind) -> str:
        """Replace any outstanding token of kind with a fresh one."""
        revoked = self._token_store.revoke_all_for_owner(user.id, kind)
        if revoked:
            logger.debug(f"Superseded {revoked} outstanding {kind.value} token(s)")

        value = self._issuer.generate_opaque()
        self._token_store.create(user.id, kind, value, self._clock() + self._ttl(kind))
        return value

    def _dispatch(self, send: Callable[[str, str], None], user: User, value: str) -> None:
        # Token stays valid if sending fails; the caller sees no difference
        try:
            send(user.email, value)
        except EmailGatewayError as e:
            logger.error(f"Email dispatch failed for user {user.id}: {e}")
        except Exception:
            logger.exception(f"Unexpected email dispatch error for user {user.id}")

    def send_verification(self, user: User) -> None:
        """Issue and mail a verification token to a known user."""
        value = self._issue(user, TokenKind.EMAIL_VERIFICATION)
        self._security_logger.log(
            SecurityEvent.EMAIL_VERIFICATION_REQUESTED,
            email=user.email,
            user_id=user.id,
        )
        self._dispatch(self._email_client.send_verification_email, user, value)

    def request_reset(self, email: str) -> None:
        """Mail a password reset link if the email belongs to an active account."""
        email = email.lower().strip()
        user = self._storage.get_user_by_email(email)

        if user is None or not user.is_active:
            self._security_logger.log(
                SecurityEvent.PASSWORD_RESET_REQUESTED,
                email=email,
                details={"sent": False},
            )
            return

        value = self._issue(user, TokenKind.PASSWORD_RESET)
        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_REQUESTED,
            email=user.email,
            user_id=user.id,
            details={"sent": True},
        )
        self._dispatch(self._email_client.send_password_reset_email, user, value)

    def request_verification(self, email: str) -> None:
        """Re-send the verification link. Verified or unknown emails get nothing."""
        email = email.lower().strip()
        user = self._storage.get_user_by_email(email)

        if user is None or user.email_verified or not user.is_active:
            logger.debug("Verification request skipped")
            return

        self.send_verification(user)

    def consume(
        self,
        token: str,
        kind: TokenKind,
        on_consumed: Callable[[UUID], None] | None = None,
    ) -> UUID:
        """
        Redeem a token exactly once and run on_consumed for its owner.

        Raises:
            TokenRevokedOrUnknown: Unknown, expired, already used, or of another kind.
        """
        if not kind.is_ephemeral:
            raise ValueError(f"{kind.value} tokens are not single-use")

        record = self._token_store.claim(token, kind, consume=True)
        if record is None:
            self._security_logger.log(
                SecurityEvent.EPHEMERAL_TOKEN_REJECTED,
                details={"kind": kind.value},
            )
            raise TokenRevokedOrUnknown("Invalid or expired token")

        if on_consumed is not None:
            on_consumed(record.owner_id)
        return record.owner_id

    def reset_password(self, token: str, new_password: str) -> UUID:
        """
        Set a new password from a reset token and sign out every device.

        Raises:
            TokenRevokedOrUnknown: Token not redeemable.
            HashingError: New password cannot be hashed (checked before the
                token is spent).
        """
        credential_hash = self._verifier.hash(new_password)

        def apply(user_id: UUID) -> None:
            if self._storage.update_user(user_id, UserUpdate(credential_hash=credential_hash)) is None:
                raise UserNotFound(f"User {user_id} not found")

        user_id = self.consume(token, TokenKind.PASSWORD_RESET, on_consumed=apply)
        self._sessions.logout_all(user_id)
        self._security_logger.log(SecurityEvent.PASSWORD_RESET_COMPLETED, user_id=user_id)
        return user_id

    def verify_email(self, token: str) -> UUID:
        """Mark the token owner's email as verified."""

        def apply(user_id: UUID) -> None:
            if self._storage.update_user(user_id, UserUpdate(email_verified=True)) is None:
                raise UserNotFound(f"User {user_id} not found")

        user_id = self.consume(token, TokenKind.EMAIL_VERIFICATION, on_consumed=apply)
        self._security_logger.log(SecurityEvent.EMAIL_VERIFIED, user_id=user_id)
        return user_id
