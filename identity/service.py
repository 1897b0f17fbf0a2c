"""Account lifecycle: registration, password change, account deletion."""

import logging
from uuid import UUID

from identity.exceptions import (
    DefaultRoleMissing,
    EmailAlreadyRegistered,
    InvalidCredentials,
    UserNotFound,
)
from identity.ephemeral import EphemeralTokenWorkflow
from identity.passwords import CredentialVerifier
from identity.security_logger import SecurityEvent, SecurityLogger
from identity.session import SessionManager
from identity.storage.base import IdentityStorage
from identity.types import User, UserUpdate

logger = logging.getLogger(__name__)


class AccountService:
    """Orchestrates account-level operations on top of the session layer."""

    def __init__(
        self,
        storage: IdentityStorage,
        verifier: CredentialVerifier,
        sessions: SessionManager,
        ephemeral: EphemeralTokenWorkflow,
        security_logger: SecurityLogger,
    ):
        self._storage = storage
        self._verifier = verifier
        self._sessions = sessions
        self._ephemeral = ephemeral
        self._security_logger = security_logger

    def _require_user(self, user_id: UUID) -> User:
        user = self._storage.get_user(user_id)
        if user is None or user.is_deleted:
            raise UserNotFound(f"User {user_id} not found")
        return user

    def register(self, email: str, password: str) -> User:
        """Create an account with the default role and mail a verification link.

        Raises:
            EmailAlreadyRegistered: A live account already uses the email.
            DefaultRoleMissing: No active default role is configured.
            HashingError: Password cannot be hashed.
        """
        email = email.lower().strip()
        if self._storage.get_user_by_email(email) is not None:
            raise EmailAlreadyRegistered("User with this email already exists")

        role = self._storage.get_default_role()
        if role is None:
            raise DefaultRoleMissing("Default role not found")

        # Storage re-checks uniqueness atomically; the lookup above is the fast path
        user = self._storage.create_user(
            email=email,
            credential_hash=self._verifier.hash(password),
            role_id=role.id,
        )
        logger.info(f"Registered user {user.id} with role '{role.name}'")
        self._security_logger.log(
            SecurityEvent.USER_REGISTERED,
            email=user.email,
            user_id=user.id,
            details={"role": role.name},
        )

        self._ephemeral.send_verification(user)
        return user

    def change_password(self, user_id: UUID, current_password: str, new_password: str) -> None:
        """Replace the password and sign out every device.

        Raises:
            UserNotFound: No live account with this id.
            InvalidCredentials: Current password is wrong.
        """
        user = self._require_user(user_id)
        if not self._verifier.verify(current_password, user.credential_hash):
            raise InvalidCredentials("Current password is incorrect")

        self._storage.update_user(user_id, UserUpdate(credential_hash=self._verifier.hash(new_password)))
        self._sessions.logout_all(user_id)
        self._security_logger.log(SecurityEvent.PASSWORD_CHANGED, email=user.email, user_id=user_id)

    def delete_account(self, user_id: UUID, password: str) -> None:
        """Soft-delete the account after re-confirming the password.

        The email is released for new registrations; the row stays for audit.
        """
        user = self._require_user(user_id)
        if not self._verifier.verify(password, user.credential_hash):
            raise InvalidCredentials("Password is incorrect")

        self._storage.update_user(user_id, UserUpdate(is_deleted=True, is_active=False))
        self._sessions.logout_all(user_id)
        self._security_logger.log(SecurityEvent.ACCOUNT_DELETED, email=user.email, user_id=user_id)
        logger.info(f"Deleted account {user_id}")
