"""
tests/test_config.py -- Unit tests for core.config.Settings.

Covers:
  - Production mode refuses to start without signing secrets
  - Dev mode generates distinct throwaway secrets
  - Length, distinctness and numeric range checks
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

ACCESS_SECRET = "a" * 64
REFRESH_SECRET = "b" * 64


@pytest.fixture(autouse=True)
def _no_secret_env(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    monkeypatch.delenv("JWT_REFRESH_SECRET", raising=False)


class TestSigningSecrets:
    def test_production_without_secrets_raises(self) -> None:
        with pytest.raises(ValidationError, match="JWT_SECRET is required"):
            Settings(debug=False)

    def test_production_without_refresh_secret_raises(self) -> None:
        with pytest.raises(ValidationError, match="JWT_REFRESH_SECRET is required"):
            Settings(debug=False, jwt_secret=ACCESS_SECRET)

    def test_debug_generates_distinct_secrets(self) -> None:
        settings = Settings(debug=True)
        assert len(settings.jwt_secret) >= 32
        assert settings.jwt_secret != settings.jwt_refresh_secret

    def test_configured_secrets_are_kept(self) -> None:
        settings = Settings(debug=False, jwt_secret=ACCESS_SECRET, jwt_refresh_secret=REFRESH_SECRET)
        assert settings.jwt_secret == ACCESS_SECRET
        assert settings.jwt_refresh_secret == REFRESH_SECRET

    def test_short_secret_raises(self) -> None:
        with pytest.raises(ValidationError, match="at least"):
            Settings(debug=False, jwt_secret="short", jwt_refresh_secret=REFRESH_SECRET)

    def test_identical_secrets_raise(self) -> None:
        with pytest.raises(ValidationError, match="must differ"):
            Settings(debug=False, jwt_secret=ACCESS_SECRET, jwt_refresh_secret=ACCESS_SECRET)


class TestNumericPolicy:
    @pytest.mark.parametrize("rounds", [3, 32])
    def test_bcrypt_rounds_out_of_range(self, rounds) -> None:
        with pytest.raises(ValidationError, match="BCRYPT_ROUNDS"):
            Settings(debug=True, bcrypt_rounds=rounds)

    def test_max_login_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValidationError, match="MAX_LOGIN_ATTEMPTS"):
            Settings(debug=True, max_login_attempts=0)

    def test_defaults(self) -> None:
        settings = Settings(debug=True)
        assert settings.max_login_attempts == 5
        assert settings.lock_duration_seconds == 2 * 3600
        assert settings.email_verification_ttl_seconds == 24 * 3600
        assert settings.password_reset_ttl_seconds == 3600
