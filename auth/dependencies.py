"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Protected routes accept exactly one credential: an access token in
Authorization: Bearer <token>. There is no cookie and no API-key path.

get_auth_service() hands routes the AuthService built in the app lifespan.
get_current_user() resolves the bearer token to an active, verified User via
AuthService.authenticate(), which also applies the password-change check.

Errors are raised as core.errors.UnauthorizedError, so they reach the client
through the same AuthError handler as every other auth failure.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import User
from auth.service import AuthService
from auth.tokens import extract_bearer
from core.errors import UnauthorizedError


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_user(request: Request) -> User:
    """Require a valid access token. Raises UnauthorizedError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = extract_bearer(request.headers.get("Authorization"))
    if token is None:
        raise UnauthorizedError(
            "You are not logged in. Please log in to access this resource.",
            code="not_authenticated",
        )
    return get_auth_service(request).authenticate(token)
