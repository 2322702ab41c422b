"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST   /api/v1/auth/signup                 -- create unverified account; 201
  POST   /api/v1/auth/login                  -- password login; session pair
  GET    /api/v1/auth/verify-email/{token}   -- verify email; session pair (auto-login)
  POST   /api/v1/auth/resend-verification    -- mail a new verification link
  POST   /api/v1/auth/forgot-password        -- mail a password-reset link
  POST   /api/v1/auth/reset-password/{token} -- set a new password (no auto-login)
  POST   /api/v1/auth/refresh-token          -- new access token from a refresh token
  POST   /api/v1/auth/google                 -- Google sign-in / sign-up; session pair
  GET    /api/v1/auth/me                     -- current user (requires auth)
  PATCH  /api/v1/auth/update-password        -- change password; new pair (requires auth)
  PATCH  /api/v1/auth/profile                -- change names (requires auth)
  POST   /api/v1/auth/logout                 -- client-side logout (requires auth)
  DELETE /api/v1/auth/account                -- soft-delete account (requires auth)

Every handler is a plain `def`: FastAPI runs it on the worker thread pool,
which is where the blocking bcrypt and store calls belong.

Security:
  [H2] POST /login is rate-limited per IP; forgot-password and
       resend-verification are limited harder, since each one sends mail.
  [C2] resend-verification and forgot-password answer with one fixed message
       whether or not the email is registered.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

import re

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    EPHEMERAL_TOKEN_PATTERN,
    EmailRequest,
    GoogleLoginRequest,
    LoginRequest,
    RefreshTokenRequest,
    ResetPasswordRequest,
    SessionData,
    SignupRequest,
    UpdatePasswordRequest,
    UpdateProfileRequest,
    UserSummary,
    success,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.models import User
from auth.service import AuthService
from core.config import get_settings
from core.errors import BadRequestError

RESEND_MESSAGE = "If your email is registered, you will receive a verification link."
FORGOT_MESSAGE = "If your email is registered, you will receive a password reset link."

_TOKEN_RE = re.compile(EPHEMERAL_TOKEN_PATTERN)

# Auth policy:
# - signup, login, verify-email, resend-verification, forgot-password,
#   reset-password, refresh-token, google:  public
# - me, update-password, profile, logout, account:  requires auth (get_current_user)
router = APIRouter(prefix="/auth")


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _check_token_format(token: str, message: str) -> None:
    """Reject a path token that cannot possibly be one of ours before touching the store."""
    if not _TOKEN_RE.match(token):
        raise BadRequestError(message, code="invalid_token")


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/signup", status_code=201)
def signup(body: SignupRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Register a new account. No session is issued until the email is verified."""
    user = service.signup(body.email, body.password, body.first_name, body.last_name)
    return JSONResponse(
        status_code=201,
        content=success(
            "Signup successful! Please check your email to verify your account.",
            {"user": UserSummary.from_user(user).model_dump(mode="json", by_alias=True)},
        ),
    )


@limiter.limit(_login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/login")
def login(request: Request, body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Password login. Unknown email and wrong password share one error message."""
    result = service.login(body.email, body.password)
    return _no_store(success("Login successful", SessionData.build(result.user, result.tokens)))


@router.get("/verify-email/{token}")
def verify_email(token: str, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    _check_token_format(token, "Invalid or expired verification link. Please request a new verification email.")
    result = service.verify_email(token)
    return _no_store(
        success("Email verified successfully! Welcome aboard!", SessionData.build(result.user, result.tokens))
    )


@limiter.limit("5/minute")  # [H2]
@router.post("/resend-verification")
def resend_verification(
    request: Request, body: EmailRequest, service: AuthService = Depends(get_auth_service)
) -> dict:
    service.resend_verification(body.email)
    return success(RESEND_MESSAGE)  # [C2]


@limiter.limit("5/minute")  # [H2]
@router.post("/forgot-password")
def forgot_password(request: Request, body: EmailRequest, service: AuthService = Depends(get_auth_service)) -> dict:
    service.forgot_password(body.email)
    return success(FORGOT_MESSAGE)  # [C2]


@router.post("/reset-password/{token}")
def reset_password(
    token: str, body: ResetPasswordRequest, service: AuthService = Depends(get_auth_service)
) -> dict:
    """Set a new password from an emailed link. The user must log in afterwards."""
    _check_token_format(token, "Invalid or expired password reset link. Please request a new one.")
    service.reset_password(token, body.password)
    return success("Password reset successful! You can now log in with your new password.")


@router.post("/refresh-token")
def refresh_token(body: RefreshTokenRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    access_token = service.refresh_access_token(body.refresh_token)
    return _no_store(success(data={"accessToken": access_token}))


@limiter.limit(_login_limit)  # [H2]
@router.post("/google")
def google_login(
    request: Request, body: GoogleLoginRequest, service: AuthService = Depends(get_auth_service)
) -> JSONResponse:
    result = service.federated_login(body.id_token)
    return _no_store(success("Login successful", SessionData.build(result.user, result.tokens)))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/me")
def me(current_user: User = Depends(get_current_user)) -> dict:
    """Return the profile of the currently authenticated user."""
    return success(data={"user": UserSummary.from_user(current_user).model_dump(mode="json", by_alias=True)})


@router.patch("/update-password")
def update_password(
    body: UpdatePasswordRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Change the password. Sessions issued before the change stop working."""
    pair = service.update_password(current_user, body.current_password, body.new_password)
    return _no_store(
        success(
            "Password updated successfully",
            {"accessToken": pair.access_token, "refreshToken": pair.refresh_token},
        )
    )


@router.patch("/profile")
def update_profile(
    body: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    changes = body.model_dump(include=body.model_fields_set)
    user = service.update_profile(current_user, **changes)
    return success(
        "Profile updated successfully",
        {"user": UserSummary.from_user(user).model_dump(mode="json", by_alias=True)},
    )


@router.post("/logout")
def logout(current_user: User = Depends(get_current_user)) -> dict:
    """Session tokens are stateless; the client discards them. Nothing is revoked here."""
    return success("Logged out successfully")


@router.delete("/account")
def delete_account(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    service.delete_account(current_user)
    return success("Account deleted successfully")
