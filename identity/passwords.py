"""Password hashing and verification (bcrypt, direct usage).

bcrypt is used without a passlib wrapper. Its cost factor makes offline
brute force expensive; the work factor is configurable per deployment.
"""

import logging

import bcrypt

from identity.exceptions import HashingError

logger = logging.getLogger(__name__)

# bcrypt silently ignores (4.x) or rejects (5.x) input beyond 72 bytes.
MAX_PASSWORD_BYTES = 72


class CredentialVerifier:
    """Hashes and compares passwords. Stateless and thread-safe."""

    def __init__(self, rounds: int = 12):
        self._rounds = rounds
        self._dummy_hash: bytes | None = None

    def hash(self, password: str) -> str:
        """Return a salted bcrypt hash of the password.

        Raises:
            HashingError: If the password cannot be encoded or is too long.
        """
        try:
            encoded = password.encode("utf-8")
        except (AttributeError, UnicodeEncodeError) as e:
            raise HashingError(f"Password could not be encoded: {e}") from e

        if len(encoded) > MAX_PASSWORD_BYTES:
            raise HashingError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes")

        try:
            return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")
        except ValueError as e:
            raise HashingError(f"Password hashing failed: {e}") from e

    def verify(self, password: str, hashed: str) -> bool:
        """Constant-time check of password against a stored hash.

        Raises:
            HashingError: If the stored hash is corrupted.
        """
        if not self.is_well_formed(hashed):
            logger.error("Stored credential hash is not a bcrypt hash")
            raise HashingError("Stored credential hash is corrupted")

        try:
            encoded = password.encode("utf-8")
        except UnicodeEncodeError:
            return False

        # Anything longer could never have been hashed by hash()
        if len(encoded) > MAX_PASSWORD_BYTES:
            return False

        try:
            return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
        except ValueError as e:
            logger.error("Stored credential hash is corrupted")
            raise HashingError("Stored credential hash is corrupted") from e

    def verify_dummy(self, password: str) -> bool:
        """Spend one comparison against a throwaway hash. Always False.

        Called when the user does not exist so the response time matches a
        wrong-password attempt.
        """
        if self._dummy_hash is None:
            self._dummy_hash = bcrypt.hashpw(b"identity_timing_dummy", bcrypt.gensalt(rounds=self._rounds))
        encoded = password.encode("utf-8", errors="replace")[:MAX_PASSWORD_BYTES]
        bcrypt.checkpw(encoded, self._dummy_hash)
        return False

    @staticmethod
    def is_well_formed(hashed: str) -> bool:
        """True if the string looks like a bcrypt hash ($2a/$2b/$2y, 60 chars)."""
        return len(hashed) == 60 and hashed[:4] in ("$2a$", "$2b$", "$2y$")
