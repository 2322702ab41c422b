"""
auth/ephemeral.py -- Single-use emailed secrets (email verification, password reset).

Security design:
  Generation: secrets.token_hex(32) -> 64 lowercase hex chars, 256 bits of
      entropy. The raw value is returned ONCE to the caller, who delivers it
      out-of-band (email link). It is never logged and never persisted.

  Storage: SHA-256(raw) hex. bcrypt's slowness buys nothing for a 256-bit
      random value, and a deterministic hash allows O(1) lookup by index.
      A store dump therefore yields no usable links.

  One live token per (user, kind): issue() deletes earlier tokens of the same
      kind first. Two concurrent issue() calls may briefly leave two rows; the
      extra row dies at the next issue() or at expiry.

  Single use: consume() deletes the row it matched. The delete's row count
      decides which of two concurrent consumers wins; the loser sees None.

  Expired == absent: an expired match is deleted on sight and reported
      exactly like an unknown token.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import EphemeralToken, TokenKind
from auth.store import AuthStore

logger = logging.getLogger("authcore.auth.ephemeral")

TOKEN_BYTES = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_token(raw: str) -> str:
    """SHA-256 hex digest of a raw ephemeral token."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class EphemeralTokenService:
    """Issue, consume and revoke hashed single-use tokens.

    retention bounds how long any row may live regardless of its own expiry;
    purge_expired() enforces it.
    """

    def __init__(
        self,
        store: AuthStore,
        retention: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._retention = retention
        self._clock = clock

    def issue(self, user_id: str, kind: TokenKind, ttl: timedelta) -> str:
        """Invalidate same-kind tokens for the user and return a fresh raw token."""
        removed = self._store.delete_tokens(user_id, kind)
        if removed:
            logger.debug("Replaced %d existing %s token(s) for user %s", removed, kind.value, user_id)
        raw = secrets.token_hex(TOKEN_BYTES)
        now = self._clock()
        self._store.insert_token(
            EphemeralToken(
                user_id=user_id,
                token_hash=hash_token(raw),
                kind=kind,
                expires_at=now + ttl,
                created_at=now,
            )
        )
        return raw

    def consume(self, raw: str, kind: TokenKind) -> str | None:
        """Return the owning user id and delete the token, or None if unusable."""
        record = self._store.get_token(hash_token(raw), kind)
        if record is None:
            return None
        if record.is_expired(self._clock()):
            self._store.delete_token(record.id)
            logger.info("Expired %s token presented for user %s", kind.value, record.user_id)
            return None
        if not self._store.delete_token(record.id):
            # Another request consumed it between our read and our delete.
            return None
        return record.user_id

    def has_valid(self, user_id: str, kind: TokenKind) -> bool:
        """True if an unexpired token of this kind exists. Does not consume."""
        return self._store.has_unexpired_token(user_id, kind, self._clock())

    def revoke_all(self, user_id: str, kind: TokenKind | None = None) -> int:
        return self._store.delete_tokens(user_id, kind)

    def purge_expired(self) -> int:
        """Garbage-collect expired rows and rows older than the retention window."""
        now = self._clock()
        return self._store.purge_tokens(now, created_before=now - self._retention)
