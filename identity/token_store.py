"""Persistence for refresh and ephemeral tokens.

Only SHA-256 digests of bearer values reach storage. Bearer values carry at
least 256 bits of entropy, so a fast unsalted digest is enough to make a
leaked table useless without slowing every lookup down.
"""

import hashlib
import logging
import uuid
from datetime import datetime
from typing import Callable
from uuid import UUID

from identity.storage.base import IdentityStorage
from identity.types import TokenKind, TokenRecord
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


def digest_token(value: str) -> str:
    """Storage key for a bearer value."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class TokenStore:
    """Token record lifecycle over the storage adapter."""

    def __init__(self, storage: IdentityStorage, clock: Callable[[], datetime] = now_utc):
        self._storage = storage
        self._clock = clock

    def create(
        self,
        owner_id: UUID,
        kind: TokenKind,
        value: str,
        expires_at: datetime,
    ) -> TokenRecord:
        """Persist a new token record for the bearer value."""
        if kind == TokenKind.ACCESS:
            raise ValueError("Access tokens are self-contained and never persisted")

        record = TokenRecord(
            id=uuid.uuid4(),
            owner_id=owner_id,
            kind=kind,
            value=digest_token(value),
            issued_at=self._clock(),
            expires_at=expires_at,
            revoked=False,
        )
        return self._storage.create_token(record)

    def find_valid(self, value: str, kind: TokenKind) -> TokenRecord | None:
        """Read-only validity check. Not for paths that must not double-use."""
        return self._storage.find_valid_token(digest_token(value), kind, self._clock())

    def claim(self, value: str, kind: TokenKind, consume: bool) -> TokenRecord | None:
        """Atomically match a valid record and mark it used.

        With consume=True the record is revoked in the same step, so of any
        number of concurrent claims exactly one receives the record.
        """
        return self._storage.claim_token(digest_token(value), kind, self._clock(), consume)

    def revoke(self, value: str) -> None:
        """Revoke by bearer value. Unknown or already revoked is not an error."""
        if not self._storage.revoke_token(digest_token(value)):
            logger.debug("Revoke was a no-op: token unknown or already revoked")

    def revoke_by_id(self, owner_id: UUID, token_id: UUID) -> bool:
        """Revoke one of owner's records by id. Returns True if it changed."""
        return self._storage.revoke_token_by_id(token_id, owner_id)

    def revoke_all_for_owner(self, owner_id: UUID, kind: TokenKind) -> int:
        """Revoke every live record of kind for owner."""
        return self._storage.revoke_tokens_for_owner(owner_id, kind)

    def list_active(self, owner_id: UUID, kind: TokenKind = TokenKind.REFRESH) -> list[TokenRecord]:
        """Live records for owner, newest first."""
        return self._storage.list_valid_tokens(owner_id, kind, self._clock())

    def purge_expired(self) -> int:
        """Delete expired and revoked records. Safe to run at any time."""
        return self._storage.purge_tokens(self._clock())
