"""
auth/tokens.py -- Signed access/refresh session tokens (python-jose, HS256).

Security design decisions:
  Two secrets: access tokens are signed with JWT_SECRET, refresh tokens with
      JWT_REFRESH_SECRET. Compromise of one key does not let an attacker mint
      the other kind.

  Typed tokens: every token carries type=access|refresh and the verifier for
      one kind rejects the other even if the signature were somehow valid.
      This closes token-confusion attacks (a refresh token replayed as a
      bearer credential, or vice versa).

  Claims: sub (user id), type, iat, exp, iss, aud. Nothing else -- the payload
      is only base64, not encrypted.

  Failure taxonomy: expired vs malformed/bad-signature vs wrong-type are
      distinguished in the error code and the debug log, but all surface to the
      caller as UnauthorizedError.

  No server-side state: revocation happens by waiting out expiry or by the
      password-change check in AuthService.authenticate().

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import SessionClaims, SessionTokenType, TokenPair
from core.config import Settings
from core.errors import UnauthorizedError

logger = logging.getLogger("authcore.auth.tokens")

_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def extract_bearer(header_value: str | None) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' value.

    Anything else (missing header, other scheme, extra spaces, empty token)
    yields None rather than an error.
    """
    if not header_value:
        return None
    parts = header_value.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


def decode_unverified(token: str) -> dict | None:
    """Read claims WITHOUT verifying the signature. Never use for auth decisions."""
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None


def token_expiration(token: str) -> datetime | None:
    """Expiry of a token as an aware datetime, or None if unreadable (unverified)."""
    claims = decode_unverified(token)
    if not claims or "exp" not in claims:
        return None
    return datetime.fromtimestamp(claims["exp"], tz=timezone.utc)


class SessionTokenService:
    """Mint and verify signed session tokens.

    Usage:
        tokens = SessionTokenService(settings)
        pair = tokens.issue_pair(user.id)
        claims = tokens.verify_access(pair.access_token)
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> None:
        self._settings = settings
        self._clock = clock
        self._keys = {
            SessionTokenType.ACCESS: settings.jwt_secret,
            SessionTokenType.REFRESH: settings.jwt_refresh_secret,
        }
        self._lifetimes = {
            SessionTokenType.ACCESS: timedelta(seconds=settings.access_token_expire_seconds),
            SessionTokenType.REFRESH: timedelta(seconds=settings.refresh_token_expire_seconds),
        }

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _issue(self, user_id: str, token_type: SessionTokenType) -> str:
        now = self._clock()
        payload = {
            "sub": user_id,
            "type": token_type.value,
            "iat": int(now.timestamp()),
            "exp": int((now + self._lifetimes[token_type]).timestamp()),
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
        }
        return jwt.encode(payload, self._keys[token_type], algorithm=_ALGORITHM)

    def issue_access(self, user_id: str) -> str:
        return self._issue(user_id, SessionTokenType.ACCESS)

    def issue_refresh(self, user_id: str) -> str:
        return self._issue(user_id, SessionTokenType.REFRESH)

    def issue_pair(self, user_id: str) -> TokenPair:
        return TokenPair(access_token=self.issue_access(user_id), refresh_token=self.issue_refresh(user_id))

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access(self, token: str) -> SessionClaims:
        """Verify an access token. Raises UnauthorizedError on any failure."""
        return self._verify(token, SessionTokenType.ACCESS)

    def verify_refresh(self, token: str) -> SessionClaims:
        """Verify a refresh token. Raises UnauthorizedError on any failure."""
        return self._verify(token, SessionTokenType.REFRESH)

    def _verify(self, token: str, expected: SessionTokenType) -> SessionClaims:
        label = "Token" if expected is SessionTokenType.ACCESS else "Refresh token"
        try:
            payload = jwt.decode(
                token,
                self._keys[expected],
                algorithms=[_ALGORITHM],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
            )
        except ExpiredSignatureError as exc:
            logger.debug("%s rejected: expired", expected.value)
            raise UnauthorizedError(f"{label} has expired. Please log in again.", code="token_expired") from exc
        except JWTError as exc:
            logger.debug("%s rejected: %s", expected.value, exc)
            raise UnauthorizedError(f"Invalid {label.lower()}. Please log in again.", code="token_invalid") from exc

        if payload.get("type") != expected.value:
            logger.debug("%s rejected: wrong type %r", expected.value, payload.get("type"))
            raise UnauthorizedError("Invalid token type.", code="token_wrong_type")
        if not payload.get("sub") or "iat" not in payload:
            raise UnauthorizedError(f"Invalid {label.lower()}. Please log in again.", code="token_invalid")

        return SessionClaims(
            user_id=payload["sub"],
            token_type=expected,
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
        )
