"""
tests/conftest.py -- Shared test fixtures for AuthCore unit and integration tests.

This module provides:
  - MutableClock: injectable clock so lockout windows, token expiry and the
    password-change check can be driven without sleeping
  - RecordingEmailSender: captures outgoing mail; raw tokens are read back
    out of the rendered links, exactly as a user would click them
  - FakeIdentityVerifier: stands in for Google's tokeninfo endpoint
  - store / service fixtures: one isolated database per test
  - api_client: TestClient with a patched lifespan wired to the test service

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates signing secrets in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import re
import smtplib
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate JWT secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import FederatedIdentity
from auth.service import AuthService
from auth.store import AuthStore
from core.config import Settings
from core.errors import BadRequestError

# Rate limits are exercised in production only; tests hit the same routes many
# times from one client address.
limiter.enabled = False

PASSWORD = "correct-horse-1"

_TOKEN_LINK = re.compile(r"/(verify-email|reset-password)/([0-9a-f]{64})")


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class MutableClock:
    """Callable clock returning an aware UTC datetime that tests can move forward.

    Starts at the real current time: python-jose checks exp against the wall
    clock, so issued tokens must be anchored to it.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SentEmail:
    to: str
    subject: str
    text: str
    html: str


@dataclass
class RecordingEmailSender:
    """EmailSender that records messages. Set fail=True to simulate an SMTP outage."""

    sent: list[SentEmail] = field(default_factory=list)
    fail: bool = False

    def send(self, to: str, subject: str, text: str, html: str) -> None:
        if self.fail:
            raise smtplib.SMTPServerDisconnected("simulated outage")
        self.sent.append(SentEmail(to, subject, text, html))

    def last_token(self, to: str, kind: str) -> str:
        """Return the raw token from the newest link of the given kind sent to `to`.

        kind is the link path segment: "verify-email" or "reset-password".
        """
        for mail in reversed(self.sent):
            if mail.to != to:
                continue
            match = _TOKEN_LINK.search(mail.text)
            if match and match.group(1) == kind:
                return match.group(2)
        raise AssertionError(f"no {kind} link sent to {to}")


class FakeIdentityVerifier:
    """IdentityVerifier returning a fixed identity, or raising a fixed error."""

    def __init__(self) -> None:
        self.identity = FederatedIdentity(
            external_id="google-sub-1",
            email="gina@example.com",
            email_verified=True,
            first_name="Gina",
            last_name="Google",
            picture="https://example.com/gina.png",
        )
        self.error: Exception | None = None
        self.calls: list[str] = []

    def verify(self, id_token: str) -> FederatedIdentity:
        self.calls.append(id_token)
        if self.error is not None:
            raise self.error
        if id_token == "bad-token":
            raise BadRequestError("Invalid Google token", code="invalid_provider_token")
        return self.identity


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> AuthStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so tests never share state.
    """
    return AuthStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: AuthStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test store and service into app.state so TestClient
    routes see the isolated test DB and the fake collaborators. The purge_task
    is a long-sleeping coroutine so shutdown can cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    # bcrypt cost 4 keeps the suite fast; the cost factor does not change behavior.
    return Settings(
        debug=True,
        jwt_secret="a" * 64,
        jwt_refresh_secret="b" * 64,
        bcrypt_rounds=4,
        client_url="http://app.test",
        google_client_id="test-client-id.apps.googleusercontent.com",
    )


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = _make_test_store(uuid.uuid4().hex)
    yield s
    s.close()


@pytest.fixture
def sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def verifier() -> FakeIdentityVerifier:
    return FakeIdentityVerifier()


@pytest.fixture
def service(settings, store, sender, verifier, clock) -> AuthService:
    return AuthService.from_settings(settings, store, sender=sender, verifier=verifier, clock=clock)


@pytest.fixture
def verified_user(service, sender):
    """Factory: sign up and verify an account, return the verified User."""

    def _create(email: str = "alice@example.com", password: str = PASSWORD, **names):
        service.signup(email, password, names.get("first_name", "Alice"), names.get("last_name", "Liddell"))
        token = sender.last_token(email, "verify-email")
        return service.verify_email(token).user

    return _create


@pytest.fixture
def api_client(store, service) -> Generator[TestClient, None, None]:
    """TestClient over the real app with the test service behind it.

    Route tests reach the same fixtures (sender, clock, verifier) as the
    service they talk to, so they can read mail and move time.
    """
    app.router.lifespan_context = _patch_lifespan(store, service)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
