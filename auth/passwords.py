"""
auth/passwords.py -- Adaptive password hashing (bcrypt, direct usage).

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a >72-byte password that current bcrypt releases reject.

bcrypt keys on at most 72 bytes, and bcrypt 5 raises ValueError instead of
truncating. The API layer allows 128 characters (up to 512 UTF-8 bytes), so
both functions cut the encoded password to its first 72 bytes themselves.
Hashing and verifying share _encode(), so a password that was set is always
accepted at login.

Failure modes:
  Wrong password        -> verify_password() returns False.
  Malformed stored hash -> PasswordHashingError (non-operational, logged as a
                           server error by the API layer).

Both functions are CPU-bound: tens to hundreds of ms at cost 12.
They are only called from sync service methods, which FastAPI executes on its
worker thread pool, so the event loop is never blocked.
"""

from __future__ import annotations

import secrets

import bcrypt

from core.errors import PasswordHashingError

DEFAULT_ROUNDS = 12

# bcrypt keys on at most this many bytes.
MAX_PASSWORD_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:MAX_PASSWORD_BYTES]


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    try:
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")
    except ValueError as exc:
        raise PasswordHashingError("password hashing failed") from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the bcrypt hash.

    bcrypt.checkpw performs a constant-time comparison of the derived hash.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError as exc:
        raise PasswordHashingError("stored password hash is malformed") from exc


def unusable_password_hash(rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash of a random 256-bit secret that is discarded immediately.

    Used for accounts created through a federated provider: the record has a
    well-formed hash, but no one can ever present the matching password.
    """
    return hash_password(secrets.token_urlsafe(32), rounds=rounds)
