"""
core/errors.py -- Operational error taxonomy shared by auth/ and api/.

Every expected failure of the credential engine is an AuthError subclass
carrying an HTTP-flavoured status code, a stable machine-readable code, and a
message that is safe to show to the caller. api/main.py renders these as the
standard {"error": {...}} envelope.

Anything that is NOT an AuthError (store unavailable, bcrypt failure, a bug)
is non-operational: the generic exception handler logs it with a traceback and
returns an opaque 500.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for operational (expected) errors."""

    status_code: int = 400
    default_code: str = "bad_request"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class BadRequestError(AuthError):
    status_code = 400
    default_code = "bad_request"


class UnauthorizedError(AuthError):
    status_code = 401
    default_code = "unauthorized"


class NotFoundError(AuthError):
    status_code = 404
    default_code = "not_found"


class ConflictError(AuthError):
    status_code = 409
    default_code = "conflict"


class ProviderUnavailableError(AuthError):
    """The external identity provider timed out or could not be reached.

    Retryable: the caller may try again later. Distinct from an invalid
    provider token, which is a BadRequestError.
    """

    status_code = 503
    default_code = "provider_unavailable"


class PasswordHashingError(RuntimeError):
    """bcrypt failed (malformed stored hash, primitive error).

    Not an AuthError: it renders as an opaque 500. A wrong password is a False
    return from verify_password(), never this exception.
    """
