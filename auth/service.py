"""
auth/service.py -- Account workflows: signup, login, verification, reset, sessions.

AuthService is the only place that sequences the building blocks:

  passwords.py   -- bcrypt hash / verify
  ephemeral.py   -- emailed single-use secrets
  tokens.py      -- signed access / refresh tokens
  lockout.py     -- brute-force guard on the password path
  mailer.py      -- outbound mail
  federation.py  -- Google identity verification
  store.py       -- persistence

Every method is synchronous. The API layer declares its routes with plain
`def`, so FastAPI runs them on its worker thread pool and the deliberately
slow bcrypt calls never block the event loop.

Failure contract: expected failures raise core.errors.AuthError subclasses
with caller-safe messages. Anything else propagates and becomes an opaque 500.

Security notes:
  [C1] Login for an unknown email still runs one bcrypt verification against
       a dummy hash, so response time does not reveal whether the account
       exists.

  [C2] resend_verification() and forgot_password() return the same value
       whether or not the email is registered. The routes answer with the
       same fixed message in both cases.

  [C3] Replacing a password stamps password_changed_at one second in the
       past. authenticate() and refresh_access_token() reject any token with
       iat earlier than that stamp, which kills sessions issued before the
       change without a server-side revocation list. The one-second offset
       keeps a pair minted in the same second as the change valid.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.ephemeral import EphemeralTokenService
from auth.federation import GoogleIdentityVerifier, IdentityVerifier
from auth.lockout import LOCKED_MESSAGE, LockoutPolicy, LoginGuard
from auth.mailer import AccountMailer, EmailSender, build_sender
from auth.models import FederatedIdentity, TokenKind, TokenPair, User
from auth.passwords import hash_password, unusable_password_hash, verify_password
from auth.store import AuthStore
from auth.tokens import SessionTokenService
from core.config import Settings
from core.errors import BadRequestError, ConflictError, NotFoundError, UnauthorizedError

logger = logging.getLogger("authcore.auth.service")

INVALID_CREDENTIALS = "Invalid email or password"
EMAIL_IN_USE = "Email already in use. Please login or use a different email."
ALREADY_VERIFIED = "Email is already verified. You can log in now."
PASSWORD_CHANGED = "You recently changed your password. Please log in again."

_NAME_MAX = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clip_name(value: str | None) -> str | None:
    """Provider-supplied names are free text; the column holds 50 characters."""
    return value[:_NAME_MAX] if value else None


@dataclass(frozen=True)
class AuthResult:
    """A signed-in user and their freshly issued session pair."""

    user: User
    tokens: TokenPair


class AuthService:
    """Orchestrates the credential and session workflows.

    Usage:
        service = AuthService.from_settings(settings, AuthStore(settings.database_url))
        user = service.signup("a@example.com", "correct horse")
        result = service.login("a@example.com", "correct horse")
    """

    def __init__(
        self,
        settings: Settings,
        store: AuthStore,
        ephemeral: EphemeralTokenService,
        tokens: SessionTokenService,
        guard: LoginGuard,
        mailer: AccountMailer,
        verifier: IdentityVerifier,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._ephemeral = ephemeral
        self._tokens = tokens
        self._guard = guard
        self._mailer = mailer
        self._verifier = verifier
        self._clock = clock
        self._rounds = settings.bcrypt_rounds
        self._verification_ttl = timedelta(seconds=settings.email_verification_ttl_seconds)
        self._reset_ttl = timedelta(seconds=settings.password_reset_ttl_seconds)
        # [C1] Hashed once at construction with the configured cost.
        self._dummy_hash = hash_password("authcore-timing-equalizer", rounds=self._rounds)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: AuthStore,
        *,
        sender: EmailSender | None = None,
        verifier: IdentityVerifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "AuthService":
        """Wire the default collaborators around a store."""
        return cls(
            settings=settings,
            store=store,
            ephemeral=EphemeralTokenService(
                store, retention=timedelta(seconds=settings.token_retention_seconds), clock=clock
            ),
            tokens=SessionTokenService(settings, clock=clock),
            guard=LoginGuard(store, LockoutPolicy.from_settings(settings)),
            mailer=AccountMailer(settings, sender or build_sender(settings)),
            verifier=verifier or GoogleIdentityVerifier(settings),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    def signup(
        self,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        """Create an unverified account and mail a verification link.

        No session is issued: the account cannot log in until verified.
        Raises ConflictError if the email is taken, including by a deleted account.
        """
        if self._store.get_by_email(email, include_inactive=True) is not None:
            raise ConflictError(EMAIL_IN_USE)

        user = User(
            email=email,
            password_hash=hash_password(password, rounds=self._rounds),
            first_name=first_name,
            last_name=last_name,
        )
        try:
            user_id = self._store.create_user(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent signup for the same address.
            raise ConflictError(EMAIL_IN_USE) from exc

        created = self._store.get_by_id(user_id)
        token = self._ephemeral.issue(user_id, TokenKind.EMAIL_VERIFICATION, self._verification_ttl)
        try:
            self._mailer.send_verification(created, token)
        except OSError:
            logger.exception("Verification email to user %s failed; the user can request a resend", user_id)
        logger.info("User %s signed up", user_id)
        return created

    def verify_email(self, token: str) -> AuthResult:
        """Consume a verification token, mark the email verified and sign the user in."""
        user_id = self._ephemeral.consume(token, TokenKind.EMAIL_VERIFICATION)
        if user_id is None:
            raise BadRequestError(
                "Invalid or expired verification link. Please request a new verification email.",
                code="invalid_token",
            )
        user = self._store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.is_email_verified:
            raise BadRequestError(ALREADY_VERIFIED, code="already_verified")

        self._store.update_user(user.id, is_email_verified=True, email_verified_at=self._clock())
        user = self._store.get_by_id(user.id)
        pair = self._tokens.issue_pair(user.id)
        logger.info("User %s verified their email", user.id)

        try:
            self._mailer.send_welcome(user)
        except OSError:
            logger.exception("Welcome email to user %s failed", user.id)
        return AuthResult(user=user, tokens=pair)

    def resend_verification(self, email: str) -> None:
        """Mail a new verification link. Silent for unknown emails [C2]."""
        user = self._store.get_by_email(email)
        if user is None:
            return
        if user.is_email_verified:
            raise BadRequestError(ALREADY_VERIFIED, code="already_verified")
        if self._ephemeral.has_valid(user.id, TokenKind.EMAIL_VERIFICATION):
            raise BadRequestError(
                "A verification email was recently sent. Please check your inbox or spam folder. "
                "Wait a few minutes before requesting another.",
                code="already_sent",
            )
        token = self._ephemeral.issue(user.id, TokenKind.EMAIL_VERIFICATION, self._verification_ttl)
        try:
            self._mailer.send_verification(user, token)
        except OSError:
            logger.exception("Verification email to user %s failed", user.id)

    # ------------------------------------------------------------------
    # Password login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> AuthResult:
        """Password login.

        Order: existence -> verified -> locked -> password. A locked account is
        refused before the password is looked at, so the counter is untouched.
        The attempt that trips the lock gets the locked message, the same as
        every attempt during the lock window.
        """
        user = self._store.get_by_email(email)
        if user is None or not user.password_hash:
            verify_password(password, self._dummy_hash)  # [C1]
            raise UnauthorizedError(INVALID_CREDENTIALS, code="invalid_credentials")
        if not user.is_email_verified:
            raise UnauthorizedError(
                "Please verify your email before logging in. Check your inbox for the verification link.",
                code="email_unverified",
            )

        now = self._clock()
        self._guard.ensure_not_locked(user, now)

        if not verify_password(password, user.password_hash):
            updated = self._guard.record_failure(user, now)
            if updated is not None and updated.is_locked(now):
                raise UnauthorizedError(LOCKED_MESSAGE, code="account_locked")
            raise UnauthorizedError(INVALID_CREDENTIALS, code="invalid_credentials")

        self._guard.record_success(user, now)
        user = self._store.get_by_id(user.id)
        logger.info("User %s logged in", user.id)
        return AuthResult(user=user, tokens=self._tokens.issue_pair(user.id))

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Mail a password-reset link. Silent for unknown emails [C2].

        Unlike the verification mail, a delivery failure here is reported to
        the caller: there is no other way for them to learn it did not arrive.
        """
        user = self._store.get_by_email(email)
        if user is None:
            return
        token = self._ephemeral.issue(user.id, TokenKind.PASSWORD_RESET, self._reset_ttl)
        try:
            self._mailer.send_password_reset(user, token)
        except OSError as exc:
            logger.exception("Password reset email to user %s failed", user.id)
            raise BadRequestError(
                "Failed to send password reset email. Please try again later.",
                code="email_failed",
            ) from exc

    def reset_password(self, token: str, new_password: str) -> None:
        """Consume a reset token and replace the password. Does not sign the user in."""
        user_id = self._ephemeral.consume(token, TokenKind.PASSWORD_RESET)
        if user_id is None:
            raise BadRequestError(
                "Invalid or expired password reset link. Please request a new one.",
                code="invalid_token",
            )
        user = self._store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        self._replace_password(user, new_password)
        # Any other outstanding link for this account dies with the old password.
        self._ephemeral.revoke_all(user.id)
        logger.info("User %s reset their password", user.id)

    def _replace_password(self, user: User, new_password: str) -> None:
        # [C3] Stamped one second early against a whole-second iat: the pair
        # issued right after this change must verify. A token issued up to two
        # seconds before the change also still verifies.
        changed_at = self._clock() - timedelta(seconds=1)
        self._store.update_user(
            user.id,
            password_hash=hash_password(new_password, rounds=self._rounds),
            password_changed_at=changed_at,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def refresh_access_token(self, refresh_token: str) -> str:
        """Exchange a valid refresh token for a new access token.

        The refresh token itself is not rotated. It is refused once the
        password has changed since it was issued [C3].
        """
        claims = self._tokens.verify_refresh(refresh_token)
        user = self._store.get_by_id(claims.user_id)
        if user is None:
            raise UnauthorizedError("User no longer exists. Please log in again.", code="user_not_found")
        if user.password_changed_after(claims.issued_at):
            raise UnauthorizedError(PASSWORD_CHANGED, code="password_changed")
        if not user.is_email_verified:
            raise UnauthorizedError("Email not verified. Please verify your email.", code="email_unverified")
        return self._tokens.issue_access(user.id)

    def authenticate(self, access_token: str) -> User:
        """Resolve a bearer access token to its active, verified user."""
        claims = self._tokens.verify_access(access_token)
        user = self._store.get_by_id(claims.user_id)
        if user is None:
            raise UnauthorizedError(
                "The user belonging to this token no longer exists. Please log in again.",
                code="user_not_found",
            )
        if user.password_changed_after(claims.issued_at):
            raise UnauthorizedError(PASSWORD_CHANGED, code="password_changed")
        if not user.is_email_verified:
            raise UnauthorizedError(
                "Please verify your email before accessing this resource.",
                code="email_unverified",
            )
        return user

    # ------------------------------------------------------------------
    # Authenticated account management
    # ------------------------------------------------------------------

    def get_current_user(self, user_id: str) -> User:
        user = self._store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def update_password(self, user: User, current_password: str, new_password: str) -> TokenPair:
        """Change the password of a signed-in user and return a fresh session pair.

        Every session issued before the change stops working [C3].
        """
        current = self.get_current_user(user.id)
        if not current.password_hash or not verify_password(current_password, current.password_hash):
            raise UnauthorizedError("Current password is incorrect", code="invalid_credentials")

        self._replace_password(current, new_password)
        self._ephemeral.revoke_all(current.id, TokenKind.PASSWORD_RESET)
        logger.info("User %s changed their password", current.id)
        return self._tokens.issue_pair(current.id)

    def update_profile(self, user: User, **changes: str | None) -> User:
        """Update first_name and/or last_name. Only keys present are changed."""
        allowed = {key: changes[key] for key in ("first_name", "last_name") if key in changes}
        if allowed:
            self._store.update_user(user.id, **allowed)
        return self.get_current_user(user.id)

    def delete_account(self, user: User) -> None:
        """Soft-delete: the record stays, but every lookup and token stops finding it."""
        self._store.update_user(user.id, is_active=False)
        self._ephemeral.revoke_all(user.id)
        logger.info("User %s deleted their account", user.id)

    # ------------------------------------------------------------------
    # Federated login
    # ------------------------------------------------------------------

    def federated_login(self, id_token: str) -> AuthResult:
        """Sign in (or sign up) with a Google ID token.

        The provider has already proven control of the address, so an existing
        account is marked verified. A successful sign-in resets the failed
        password counter and clears any lockout, as a password login does.
        """
        identity = self._verifier.verify(id_token)
        now = self._clock()

        user = self._store.get_by_email(identity.email)
        if user is None:
            # The Google account's address may have changed since it was linked.
            user = self._store.get_by_federated_id(identity.external_id)

        if user is None:
            user = self._create_federated_user(identity, now)
        else:
            if user.federated_id and user.federated_id != identity.external_id:
                raise ConflictError("This email is linked to a different Google account.")
            updates: dict = {}
            if not user.federated_id:
                updates["federated_id"] = identity.external_id
            if not user.is_email_verified:
                updates["is_email_verified"] = True
                updates["email_verified_at"] = now
            if not user.avatar and identity.picture:
                updates["avatar"] = identity.picture
            if updates:
                self._store.update_user(user.id, **updates)

        self._guard.record_success(user, now)
        user = self._store.get_by_id(user.id)
        logger.info("User %s logged in with Google", user.id)
        return AuthResult(user=user, tokens=self._tokens.issue_pair(user.id))

    def _create_federated_user(self, identity: FederatedIdentity, now: datetime) -> User:
        if self._store.get_by_email(identity.email, include_inactive=True) is not None:
            raise ConflictError(EMAIL_IN_USE)
        user = User(
            email=identity.email,
            password_hash=unusable_password_hash(self._rounds),
            first_name=_clip_name(identity.first_name),
            last_name=_clip_name(identity.last_name),
            avatar=identity.picture,
            is_email_verified=True,
            email_verified_at=now,
            federated_id=identity.external_id,
        )
        try:
            user_id = self._store.create_user(user)
        except IntegrityError as exc:
            raise ConflictError(EMAIL_IN_USE) from exc
        logger.info("User %s signed up with Google", user_id)
        return self._store.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Operator maintenance
    # ------------------------------------------------------------------

    def unlock(self, email: str) -> bool:
        """Clear a lockout by email. Returns False if no active account matches."""
        user = self._store.get_by_email(email)
        if user is None:
            return False
        self._store.clear_lock(user.id)
        logger.info("Lockout cleared for user %s", user.id)
        return True

    def purge_expired_tokens(self) -> int:
        removed = self._ephemeral.purge_expired()
        if removed:
            logger.info("Purged %d expired ephemeral token(s)", removed)
        return removed
