"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository;
_row_to_user / _row_to_token are the mappers. Service code never touches SQL.

Query semantics the service layer relies on:
  - Emails are stored trimmed and lowercased; lookups normalize the same way,
    so uniqueness and matching are case-insensitive.
  - Soft-deleted users (is_active = 0) are excluded from every user lookup
    unless the caller passes include_inactive=True. There is no implicit
    filtering anywhere else.
  - record_failed_login() is ONE UPDATE statement whose CASE expressions read
    the pre-update row. Two concurrent failed logins cannot both observe the
    same counter value and both miss the lock threshold.
  - consume-side deletes report their row count so the caller can tell
    whether it won a race for a single-use token.

Security:
  All queries use bound parameters. No f-strings in SQL.
  password_hash never leaves this module except inside a User dataclass.

Timestamps are stored as naive UTC (SQLite has no timezone support) and
re-attached to UTC on read by _UTCDateTime.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    case,
    create_engine,
    event,
    literal,
    null,
)
from sqlalchemy.engine import Engine
from sqlalchemy.types import TypeDecorator

from auth.models import EphemeralToken, TokenKind, User

_DEFAULT_DB_URL = "sqlite:///authcore.db"


class _UTCDateTime(TypeDecorator):
    """Store aware datetimes as naive UTC; hand back aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to the auth store; use timezone-aware UTC")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL only when no local password ever existed
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("avatar", Text),
    Column("is_email_verified", Boolean, nullable=False, default=False),
    Column("email_verified_at", _UTCDateTime),
    Column("password_changed_at", _UTCDateTime),
    Column("login_attempts", Integer, nullable=False, default=0),
    Column("lock_until", _UTCDateTime),
    Column("last_login_at", _UTCDateTime),
    # Multiple NULLs are allowed by UNIQUE in SQLite and PostgreSQL, which is
    # what we want: only linked accounts carry a value.
    Column("federated_id", String(255), unique=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", _UTCDateTime, nullable=False),
    Column("updated_at", _UTCDateTime, nullable=False),
)

_tokens = Table(
    "auth_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(32), nullable=False),
    Column("token_hash", String(64), nullable=False),  # SHA-256 hex
    Column("kind", String(32), nullable=False),
    Column("expires_at", _UTCDateTime, nullable=False),
    Column("created_at", _UTCDateTime, nullable=False),
    Index("ix_auth_tokens_user_kind", "user_id", "kind"),
    Index("ix_auth_tokens_hash_kind", "token_hash", "kind"),
)

# Fields callers may change through update_user(). Lockout counters are
# deliberately absent: they only move through the atomic methods below.
_UPDATABLE_USER_FIELDS = frozenset(
    {
        "email",
        "password_hash",
        "password_changed_at",
        "first_name",
        "last_name",
        "avatar",
        "is_email_verified",
        "email_verified_at",
        "federated_id",
        "is_active",
    }
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User and EphemeralToken records.

    Usage:
        store = AuthStore("sqlite:///authcore.db")
        user_id = store.create_user(User(email="a@x.com", password_hash=...))
        user = store.get_by_email("A@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated opaque id.

        Raises sqlalchemy.exc.IntegrityError if the email or federated_id is
        already taken (including by a soft-deleted account). The service layer
        turns that into a ConflictError.
        """
        user_id = uuid.uuid4().hex
        now = _utcnow()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=normalize_email(user.email),
                    password_hash=user.password_hash,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    avatar=user.avatar,
                    is_email_verified=user.is_email_verified,
                    email_verified_at=user.email_verified_at,
                    login_attempts=0,
                    federated_id=user.federated_id,
                    is_active=user.is_active,
                    created_at=now,
                    updated_at=now,
                )
            )
        return user_id

    def get_by_id(self, user_id: str, *, include_inactive: bool = False) -> User | None:
        """Look up a user by id. Soft-deleted users are skipped unless include_inactive."""
        query = _users.select().where(_users.c.id == user_id)
        if not include_inactive:
            query = query.where(_users.c.is_active.is_(True))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str, *, include_inactive: bool = False) -> User | None:
        """Look up a user by email (case-insensitive via normalization)."""
        query = _users.select().where(_users.c.email == normalize_email(email))
        if not include_inactive:
            query = query.where(_users.c.is_active.is_(True))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_federated_id(self, federated_id: str, *, include_inactive: bool = False) -> User | None:
        query = _users.select().where(_users.c.federated_id == federated_id)
        if not include_inactive:
            query = query.where(_users.c.is_active.is_(True))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user (active or not).

        Only keys in _UPDATABLE_USER_FIELDS are accepted. Unknown keys raise
        ValueError rather than being silently ignored.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        fields["updated_at"] = _utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def record_failed_login(self, user_id: str, max_attempts: int, lock_duration: timedelta, now: datetime) -> User | None:
        """Atomically count a failed password attempt and lock when the threshold is hit.

        Transition, evaluated by the database against the pre-update row:
          lock expired (lock_until <= now)     -> attempts = 1, lock cleared
          attempts + 1 >= max and not locked   -> attempts + 1, lock_until = now + lock_duration
          otherwise                            -> attempts + 1, lock unchanged

        Returns the updated user, or None if the id does not exist.
        """
        stale_lock = and_(_users.c.lock_until.is_not(None), _users.c.lock_until <= now)
        reaches_threshold = and_(_users.c.login_attempts + 1 >= max_attempts, _users.c.lock_until.is_(None))
        stmt = (
            _users.update()
            .where(_users.c.id == user_id)
            .values(
                login_attempts=case((stale_lock, 1), else_=_users.c.login_attempts + 1),
                lock_until=case(
                    (stale_lock, null()),
                    (reaches_threshold, literal(now + lock_duration, _UTCDateTime())),
                    else_=_users.c.lock_until,
                ),
                updated_at=now,
            )
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def record_successful_login(self, user_id: str, now: datetime) -> None:
        """Reset the failure counter, clear any lock, stamp last_login_at."""
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(login_attempts=0, lock_until=None, last_login_at=now, updated_at=now)
            )

    def clear_lock(self, user_id: str) -> bool:
        """Operator unlock: reset counter and lock without touching last_login_at."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(login_attempts=0, lock_until=None, updated_at=_utcnow())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Ephemeral token queries
    # ------------------------------------------------------------------

    def insert_token(self, token: EphemeralToken) -> int:
        """Insert a hashed token record and return its id."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _tokens.insert().values(
                    user_id=token.user_id,
                    token_hash=token.token_hash,
                    kind=token.kind.value,
                    expires_at=token.expires_at,
                    created_at=token.created_at or _utcnow(),
                )
            )
        return result.inserted_primary_key[0]

    def get_token(self, token_hash: str, kind: TokenKind) -> EphemeralToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _tokens.select().where((_tokens.c.token_hash == token_hash) & (_tokens.c.kind == kind.value))
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def delete_token(self, token_id: int) -> bool:
        """Delete one token. Returns False if another caller already deleted it."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.id == token_id))
        return result.rowcount > 0

    def delete_tokens(self, user_id: str, kind: TokenKind | None = None) -> int:
        """Delete all tokens for a user, optionally only one kind. Returns rows removed."""
        query = _tokens.delete().where(_tokens.c.user_id == user_id)
        if kind is not None:
            query = query.where(_tokens.c.kind == kind.value)
        with self.engine.begin() as conn:
            result = conn.execute(query)
        return result.rowcount

    def has_unexpired_token(self, user_id: str, kind: TokenKind, now: datetime) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                _tokens.select()
                .where((_tokens.c.user_id == user_id) & (_tokens.c.kind == kind.value) & (_tokens.c.expires_at > now))
                .limit(1)
            ).fetchone()
        return row is not None

    def purge_tokens(self, now: datetime, created_before: datetime) -> int:
        """Delete expired tokens and tokens created before the retention cutoff."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _tokens.delete().where((_tokens.c.expires_at <= now) | (_tokens.c.created_at < created_before))
            )
        return result.rowcount

    def ping(self) -> bool:
        """Cheap connectivity probe for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(_users.select().limit(1)).fetchone()
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        avatar=row.avatar,
        is_email_verified=bool(row.is_email_verified),
        email_verified_at=row.email_verified_at,
        password_changed_at=row.password_changed_at,
        login_attempts=row.login_attempts or 0,
        lock_until=row.lock_until,
        last_login_at=row.last_login_at,
        federated_id=row.federated_id,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_token(row) -> EphemeralToken:
    return EphemeralToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        kind=TokenKind(row.kind),
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
