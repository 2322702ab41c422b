"""Unit tests for auth/tokens.py (signed access/refresh session tokens).

Covers:
- access and refresh tokens verify with their own verifier
- type confusion: each verifier rejects the other kind
- distinct signing secrets
- expiry, bad signature, wrong issuer/audience -> UnauthorizedError with codes
- claims carry sub, type, iat, exp, iss, aud and nothing else
- extract_bearer() parsing rules
- decode_unverified() / token_expiration() helpers
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from auth.models import SessionTokenType
from auth.tokens import SessionTokenService, decode_unverified, extract_bearer, token_expiration
from core.errors import UnauthorizedError


@pytest.fixture
def tokens(settings, clock) -> SessionTokenService:
    return SessionTokenService(settings, clock=clock)


class TestIssueAndVerify:
    def test_access_round_trip(self, tokens) -> None:
        claims = tokens.verify_access(tokens.issue_access("user-1"))
        assert claims.user_id == "user-1"
        assert claims.token_type is SessionTokenType.ACCESS

    def test_refresh_round_trip(self, tokens) -> None:
        claims = tokens.verify_refresh(tokens.issue_refresh("user-1"))
        assert claims.user_id == "user-1"
        assert claims.token_type is SessionTokenType.REFRESH

    def test_pair_contains_both_kinds(self, tokens) -> None:
        pair = tokens.issue_pair("user-1")
        assert tokens.verify_access(pair.access_token).user_id == "user-1"
        assert tokens.verify_refresh(pair.refresh_token).user_id == "user-1"

    def test_lifetimes_follow_settings(self, tokens, settings, clock) -> None:
        claims = tokens.verify_access(tokens.issue_access("user-1"))
        assert claims.issued_at == int(clock().timestamp())
        assert claims.expires_at - claims.issued_at == settings.access_token_expire_seconds
        refresh = tokens.verify_refresh(tokens.issue_refresh("user-1"))
        assert refresh.expires_at - refresh.issued_at == settings.refresh_token_expire_seconds

    def test_claims_are_minimal(self, tokens) -> None:
        payload = decode_unverified(tokens.issue_access("user-1"))
        assert set(payload) == {"sub", "type", "iat", "exp", "iss", "aud"}


class TestTokenConfusion:
    def test_refresh_token_rejected_as_access(self, tokens) -> None:
        with pytest.raises(UnauthorizedError):
            tokens.verify_access(tokens.issue_refresh("user-1"))

    def test_access_token_rejected_as_refresh(self, tokens) -> None:
        with pytest.raises(UnauthorizedError):
            tokens.verify_refresh(tokens.issue_access("user-1"))

    def test_type_claim_checked_even_with_matching_key(self, tokens, settings, clock) -> None:
        """A refresh-typed token signed with the ACCESS key is still refused."""
        now = int(clock().timestamp())
        forged = jwt.encode(
            {
                "sub": "user-1",
                "type": "refresh",
                "iat": now,
                "exp": now + 60,
                "iss": settings.jwt_issuer,
                "aud": settings.jwt_audience,
            },
            settings.jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(UnauthorizedError) as exc_info:
            tokens.verify_access(forged)
        assert exc_info.value.code == "token_wrong_type"


class TestVerificationFailures:
    def test_expired_access_token(self, settings, clock) -> None:
        past = clock.now - timedelta(seconds=settings.access_token_expire_seconds + 60)
        old = SessionTokenService(settings, clock=lambda: past).issue_access("user-1")
        with pytest.raises(UnauthorizedError) as exc_info:
            SessionTokenService(settings, clock=clock).verify_access(old)
        assert exc_info.value.code == "token_expired"
        assert "expired" in exc_info.value.message

    def test_tampered_signature(self, tokens) -> None:
        token = tokens.issue_access("user-1")
        head, payload, sig = token.split(".")
        tampered = ".".join([head, payload, ("B" if sig[0] == "A" else "A") + sig[1:]])
        with pytest.raises(UnauthorizedError) as exc_info:
            tokens.verify_access(tampered)
        assert exc_info.value.code == "token_invalid"

    def test_garbage_token(self, tokens) -> None:
        with pytest.raises(UnauthorizedError) as exc_info:
            tokens.verify_access("not.a.jwt")
        assert exc_info.value.code == "token_invalid"

    def test_foreign_issuer_rejected(self, tokens, settings) -> None:
        other = SessionTokenService(settings.model_copy(update={"jwt_issuer": "someone-else"}))
        with pytest.raises(UnauthorizedError):
            tokens.verify_access(other.issue_access("user-1"))

    def test_foreign_audience_rejected(self, tokens, settings) -> None:
        other = SessionTokenService(settings.model_copy(update={"jwt_audience": "other-app"}))
        with pytest.raises(UnauthorizedError):
            tokens.verify_access(other.issue_access("user-1"))

    def test_secrets_are_distinct(self, tokens, settings) -> None:
        """An access token re-signed with the refresh secret fails signature checks."""
        payload = decode_unverified(tokens.issue_access("user-1"))
        resigned = jwt.encode(payload, settings.jwt_refresh_secret, algorithm="HS256")
        with pytest.raises(UnauthorizedError) as exc_info:
            tokens.verify_access(resigned)
        assert exc_info.value.code == "token_invalid"


class TestExtractBearer:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            (None, None),
            ("", None),
            ("Bearer", None),
            ("Bearer ", None),
            ("Basic abc", None),
            ("bearer abc", None),
            ("Bearer a b", None),
            ("Token abc", None),
        ],
    )
    def test_parsing(self, header, expected) -> None:
        assert extract_bearer(header) == expected


class TestUnverifiedHelpers:
    def test_decode_unverified_garbage_is_none(self) -> None:
        assert decode_unverified("garbage") is None

    def test_token_expiration_matches_exp_claim(self, tokens, settings, clock) -> None:
        expires = token_expiration(tokens.issue_access("user-1"))
        expected = int(clock().timestamp()) + settings.access_token_expire_seconds
        assert int(expires.timestamp()) == expected
        assert expires.tzinfo is not None

    def test_token_expiration_garbage_is_none(self) -> None:
        assert token_expiration("garbage") is None
