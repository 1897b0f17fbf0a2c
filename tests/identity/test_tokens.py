"""Tests for TokenIssuer - signed access/refresh tokens and opaque values."""

import base64
import json
from datetime import timedelta

import jwt
import pytest

from identity.exceptions import TokenExpired, TokenInvalidSignature, TokenWrongKind
from identity.tokens import TokenIssuer
from identity.types import TokenKind
from utils.timezone import to_timestamp

TTL = timedelta(minutes=15)


@pytest.fixture
def issuer(config, clock):
    return TokenIssuer(config, clock=clock)


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


class TestIssue:
    """issue() signs claims and adds the issuer-owned ones."""

    def test_roundtrip_claims(self, issuer):
        issued = issuer.issue(TokenKind.ACCESS, {"sub": "u1", "permissions": ["content:read"]}, TTL)

        claims = issuer.verify(issued.token, TokenKind.ACCESS)
        assert claims["sub"] == "u1"
        assert claims["permissions"] == ["content:read"]
        assert claims["type"] == "access"

    def test_expiry_matches_ttl(self, issuer, clock):
        issued = issuer.issue(TokenKind.REFRESH, {"sub": "u1"}, TTL)
        assert issued.expires_at == clock.now + TTL

    def test_tokens_issued_same_instant_differ(self, issuer):
        first = issuer.issue(TokenKind.REFRESH, {"sub": "u1"}, TTL)
        second = issuer.issue(TokenKind.REFRESH, {"sub": "u1"}, TTL)
        assert first.token != second.token

    def test_reserved_claims_rejected(self, issuer):
        with pytest.raises(ValueError, match="Reserved"):
            issuer.issue(TokenKind.ACCESS, {"sub": "u1", "exp": 0}, TTL)

    def test_ephemeral_kinds_cannot_be_signed(self, issuer):
        with pytest.raises(ValueError, match="opaque"):
            issuer.issue(TokenKind.PASSWORD_RESET, {"sub": "u1"}, TTL)

    def test_kinds_use_different_secrets(self, issuer, config):
        access = issuer.issue(TokenKind.ACCESS, {"sub": "u1"}, TTL)
        refresh = issuer.issue(TokenKind.REFRESH, {"sub": "u1"}, TTL)

        jwt.decode(access.token, config.access_token_secret, algorithms=["HS256"],
                   options={"verify_exp": False, "verify_iat": False})
        with pytest.raises(jwt.InvalidSignatureError):
            jwt.decode(refresh.token, config.access_token_secret, algorithms=["HS256"],
                       options={"verify_exp": False, "verify_iat": False})


class TestVerify:
    """verify() checks kind, signature and expiry, in that order of reporting."""

    def test_wrong_kind(self, issuer):
        refresh = issuer.issue(TokenKind.REFRESH, {"sub": "u1"}, TTL)
        with pytest.raises(TokenWrongKind) as exc_info:
            issuer.verify(refresh.token, TokenKind.ACCESS)
        assert exc_info.value.actual == "refresh"

    def test_expired_exactly_at_exp(self, issuer, clock):
        issued = issuer.issue(TokenKind.ACCESS, {"sub": "u1"}, TTL)
        clock.advance(minutes=15)
        with pytest.raises(TokenExpired):
            issuer.verify(issued.token, TokenKind.ACCESS)

    def test_valid_just_before_exp(self, issuer, clock):
        issued = issuer.issue(TokenKind.ACCESS, {"sub": "u1"}, TTL)
        clock.advance(minutes=14, seconds=59)
        assert issuer.verify(issued.token, TokenKind.ACCESS)["sub"] == "u1"

    def test_tampered_payload(self, issuer, clock):
        issued = issuer.issue(TokenKind.ACCESS, {"sub": "u1", "permissions": []}, TTL)
        header, _, signature = issued.token.split(".")
        forged_payload = _b64({
            "sub": "u1",
            "permissions": ["admin:all"],
            "type": "access",
            "iat": to_timestamp(clock.now),
            "exp": to_timestamp(clock.now + TTL),
        })

        with pytest.raises(TokenInvalidSignature):
            issuer.verify(f"{header}.{forged_payload}.{signature}", TokenKind.ACCESS)

    def test_refresh_forged_with_access_secret(self, issuer, config, clock):
        """A token typed refresh but signed with the access secret is rejected."""
        forged = jwt.encode(
            {"sub": "u1", "type": "refresh", "iat": to_timestamp(clock.now),
             "exp": to_timestamp(clock.now + TTL)},
            config.access_token_secret,
            algorithm="HS256",
        )
        with pytest.raises(TokenInvalidSignature):
            issuer.verify(forged, TokenKind.REFRESH)

    def test_missing_exp_rejected(self, issuer, config, clock):
        token = jwt.encode(
            {"sub": "u1", "type": "access", "iat": to_timestamp(clock.now)},
            config.access_token_secret,
            algorithm="HS256",
        )
        with pytest.raises(TokenInvalidSignature):
            issuer.verify(token, TokenKind.ACCESS)

    @pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c"])
    def test_malformed(self, issuer, garbage):
        with pytest.raises(TokenInvalidSignature):
            issuer.verify(garbage, TokenKind.ACCESS)


class TestOpaque:
    def test_generate_opaque_is_random_and_long(self):
        values = {TokenIssuer.generate_opaque() for _ in range(50)}
        assert len(values) == 50
        assert all(len(v) >= 43 for v in values)

    def test_rejects_low_entropy(self):
        with pytest.raises(ValueError):
            TokenIssuer.generate_opaque(8)


class TestDecodeUnsafe:
    def test_reads_claims_without_verifying(self, issuer):
        issued = issuer.issue(TokenKind.REFRESH, {"sub": "u1"}, TTL)
        assert TokenIssuer.decode_unsafe(issued.token)["sub"] == "u1"

    def test_garbage_returns_none(self):
        assert TokenIssuer.decode_unsafe("garbage") is None
