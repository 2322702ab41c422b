"""
auth/federation.py -- Exchange a Google ID token for a verified identity.

The front end obtains an ID token from Google Sign-In and posts it to
POST /api/v1/auth/google. We hand it to Google's tokeninfo endpoint, which
checks the signature and expiry, then apply our own checks on the claims.

Security notes:
  [H1] Email verification is mandatory. An identity whose email_verified
       claim is not true is rejected -- it could be a victim's address added
       to an attacker's Google account without confirmation.

  The aud claim must equal our GOOGLE_CLIENT_ID, otherwise a token minted for
  some other application could be replayed here.

  Every call carries a timeout. Timeouts, connection errors and 5xx replies
  become ProviderUnavailableError (retryable, 503); a token Google rejects
  becomes BadRequestError. The raw ID token is never logged.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import Protocol

import requests

from auth.models import FederatedIdentity
from core.config import Settings
from core.errors import BadRequestError, ProviderUnavailableError

logger = logging.getLogger("authcore.auth.federation")

_GOOGLE_ISSUERS = frozenset({"accounts.google.com", "https://accounts.google.com"})

_INVALID_TOKEN = "Invalid Google token"


class IdentityVerifier(Protocol):
    def verify(self, id_token: str) -> FederatedIdentity: ...


class GoogleIdentityVerifier:
    """Verify Google ID tokens via the tokeninfo endpoint.

    Usage:
        verifier = GoogleIdentityVerifier(settings)
        identity = verifier.verify(id_token)
    """

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self._client_id = settings.google_client_id
        self._tokeninfo_url = settings.google_tokeninfo_url
        self._timeout = settings.provider_timeout_seconds
        # max_redirects=3: tokeninfo does not redirect; a long chain would be suspicious.
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    def verify(self, id_token: str) -> FederatedIdentity:
        if not self._client_id:
            raise BadRequestError("Google sign-in is not configured.", code="provider_disabled")
        if not id_token:
            raise BadRequestError("Google ID token is required")

        data = self._fetch_tokeninfo(id_token)

        if data.get("aud") != self._client_id:
            logger.warning("Google token rejected: audience mismatch")
            raise BadRequestError(_INVALID_TOKEN, code="invalid_provider_token")
        if data.get("iss") not in _GOOGLE_ISSUERS:
            logger.warning("Google token rejected: unexpected issuer %r", data.get("iss"))
            raise BadRequestError(_INVALID_TOKEN, code="invalid_provider_token")

        subject = data.get("sub")
        email = data.get("email")
        if not subject or not email:
            raise BadRequestError(_INVALID_TOKEN, code="invalid_provider_token")

        # tokeninfo serializes booleans as the strings "true"/"false".
        email_verified = str(data.get("email_verified", "")).lower() == "true"
        if not email_verified:  # [H1]
            raise BadRequestError(
                "Your Google account email is not verified.",
                code="provider_email_unverified",
            )

        return FederatedIdentity(
            external_id=str(subject),
            email=email,
            email_verified=True,
            first_name=data.get("given_name"),
            last_name=data.get("family_name"),
            picture=data.get("picture"),
        )

    def _fetch_tokeninfo(self, id_token: str) -> dict:
        try:
            resp = self._session.get(self._tokeninfo_url, params={"id_token": id_token}, timeout=self._timeout)
        except requests.Timeout as exc:
            logger.warning("Google tokeninfo timed out after %.1fs", self._timeout)
            raise ProviderUnavailableError("Google sign-in is temporarily unavailable. Please try again.") from exc
        except requests.RequestException as exc:
            logger.warning("Google tokeninfo request failed: %s", type(exc).__name__)
            raise ProviderUnavailableError("Google sign-in is temporarily unavailable. Please try again.") from exc

        if resp.status_code >= 500:
            logger.warning("Google tokeninfo returned %d", resp.status_code)
            raise ProviderUnavailableError("Google sign-in is temporarily unavailable. Please try again.")
        if resp.status_code != 200:
            logger.info("Google tokeninfo rejected token (%d)", resp.status_code)
            raise BadRequestError(_INVALID_TOKEN, code="invalid_provider_token")
        try:
            data = resp.json()
        except ValueError as exc:
            raise BadRequestError(_INVALID_TOKEN, code="invalid_provider_token") from exc
        if not isinstance(data, dict):
            raise BadRequestError(_INVALID_TOKEN, code="invalid_provider_token")
        return data
