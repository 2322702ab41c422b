"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Dataclasses own the domain shape; auth/store.py maps rows
to them and auth/service.py does the work. The few methods here are pure
functions of the record's own fields (no I/O), so they can be unit-tested
without a store.

All timestamps are timezone-aware UTC datetimes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TokenKind(str, Enum):
    """Purpose of an ephemeral (emailed) token."""

    EMAIL_VERIFICATION = "email-verification"
    PASSWORD_RESET = "password-reset"


class SessionTokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class User:
    """An identity and its credential state.

    password_hash is None only for records that never had a local password;
    federated sign-ups get a hash of a random secret nobody knows instead.
    federated_id holds the Google subject id once the account is linked.

    is_active=False is a soft delete: authentication lookups skip such rows
    unless the caller explicitly asks for inactive records.
    """

    email: str
    id: str | None = None
    password_hash: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    avatar: str | None = None
    is_email_verified: bool = False
    email_verified_at: datetime | None = None
    password_changed_at: datetime | None = None
    login_attempts: int = 0
    lock_until: datetime | None = None
    last_login_at: datetime | None = None
    federated_id: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def full_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name or self.last_name or ""

    def is_locked(self, now: datetime) -> bool:
        """True iff lock_until is set and strictly in the future.

        A lock_until in the past is stale and means "not locked".
        """
        return self.lock_until is not None and self.lock_until > now

    def password_changed_after(self, issued_at: int) -> bool:
        """Return True if the password was replaced after a token's iat (epoch seconds).

        Comparison is at whole-second granularity, matching the JWT iat claim.
        """
        if self.password_changed_at is None:
            return False
        return issued_at < int(self.password_changed_at.timestamp())


@dataclass
class EphemeralToken:
    """A single-use emailed secret. Only the SHA-256 hash is ever stored.

    The raw value is returned ONCE by EphemeralTokenService.issue() and is
    unrecoverable afterwards.
    """

    user_id: str
    token_hash: str
    kind: TokenKind
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class SessionClaims:
    """Verified claims of a signed access or refresh token."""

    user_id: str
    token_type: SessionTokenType
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class FederatedIdentity:
    """What the identity provider asserts about a signed-in user."""

    external_id: str
    email: str
    email_verified: bool
    first_name: str | None = None
    last_name: str | None = None
    picture: str | None = None
