"""Signed access/refresh tokens and opaque ephemeral token values.

Access and refresh tokens are HS256 JWTs (PyJWT) signed with different
secrets, so a leaked refresh secret cannot forge access tokens and vice
versa. Ephemeral tokens are plain random strings; possession plus a matching
store record is the only proof.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable

import jwt

from identity.config import IdentityConfig
from identity.exceptions import TokenExpired, TokenInvalidSignature, TokenWrongKind
from identity.types import IssuedToken, TokenKind
from utils.timezone import from_timestamp, now_utc, to_timestamp

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Claims the issuer owns; callers cannot override them
RESERVED_CLAIMS = frozenset({"type", "iat", "exp", "jti"})


class TokenIssuer:
    """Creates and verifies signed tokens, generates opaque values."""

    def __init__(self, config: IdentityConfig, clock: Callable[[], datetime] = now_utc):
        self._secrets = {
            TokenKind.ACCESS: config.access_token_secret,
            TokenKind.REFRESH: config.refresh_token_secret,
        }
        self._clock = clock

    def _secret_for(self, kind: TokenKind) -> str:
        try:
            return self._secrets[kind]
        except KeyError:
            raise ValueError(f"{kind.value} tokens are opaque and cannot be signed")

    def issue(self, kind: TokenKind, claims: dict[str, Any], ttl: timedelta) -> IssuedToken:
        """Sign claims into a token of the given kind.

        Adds type, iat, exp and a random jti so two tokens issued in the same
        second for the same user never collide.
        """
        overlap = RESERVED_CLAIMS & claims.keys()
        if overlap:
            raise ValueError(f"Reserved claims cannot be set by callers: {sorted(overlap)}")

        now = self._clock()
        payload = dict(claims)
        payload["type"] = kind.value
        payload["iat"] = to_timestamp(now)
        payload["exp"] = to_timestamp(now + ttl)
        payload["jti"] = secrets.token_hex(16)

        token = jwt.encode(payload, self._secret_for(kind), algorithm=ALGORITHM)
        return IssuedToken(token=token, expires_at=from_timestamp(payload["exp"]))

    def verify(self, token: str, expected_kind: TokenKind) -> dict[str, Any]:
        """Verify signature, kind and expiry; return the claims.

        Raises:
            TokenWrongKind: Token declares a different kind.
            TokenInvalidSignature: Malformed, or signature does not match.
            TokenExpired: Signature fine but exp has passed.
        """
        # Kind is read before verification only to pick the error;
        # nothing is trusted until the signature checks out below.
        try:
            unverified = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            raise TokenInvalidSignature("Malformed token") from e

        actual_kind = unverified.get("type")
        if actual_kind != expected_kind.value:
            raise TokenWrongKind(expected_kind.value, actual_kind)

        try:
            claims = jwt.decode(
                token,
                self._secret_for(expected_kind),
                algorithms=[ALGORITHM],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["type", "iat", "exp"],
                },
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected {expected_kind.value} token: {type(e).__name__}")
            raise TokenInvalidSignature("Invalid token signature") from e

        # Expiry against the injected clock, not time.time()
        if from_timestamp(claims["exp"]) <= self._clock():
            raise TokenExpired(f"{expected_kind.value.capitalize()} token expired")

        return claims

    @staticmethod
    def generate_opaque(num_bytes: int = 32) -> str:
        """High-entropy URL-safe value for ephemeral tokens."""
        if num_bytes < 16:
            raise ValueError("Opaque tokens need at least 16 bytes of entropy")
        return secrets.token_urlsafe(num_bytes)

    @staticmethod
    def decode_unsafe(token: str) -> dict[str, Any] | None:
        """Decode WITHOUT verifying anything.

        Diagnostics only (logging, support tooling). Never base an
        authorization decision on the result.
        """
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
