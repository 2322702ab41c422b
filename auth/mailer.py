"""
auth/mailer.py -- Outbound account email: verification, password reset, welcome.

Two layers:
  EmailSender      -- transport. send(to, subject, text, html). SmtpEmailSender
                      speaks SMTP with STARTTLS; ConsoleEmailSender only logs
                      (development, DEBUG=true).
  AccountMailer    -- content. Renders Jinja2 templates from auth/templates/email
                      and builds links from CLIENT_URL.

Transport errors propagate out of AccountMailer unchanged. Whether a failure
is swallowed or surfaced is the caller's decision (see AuthService).

Security: the rendered body contains a live single-use secret. Only the
console sender writes it anywhere other than the wire, and only in DEBUG.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape

from auth.models import User
from core.config import Settings

logger = logging.getLogger("authcore.mail")

_TEMPLATE_DIR = Path(__file__).parent / "templates" / "email"


class EmailSender(Protocol):
    def send(self, to: str, subject: str, text: str, html: str) -> None: ...


class SmtpEmailSender:
    """Deliver mail through an SMTP relay. Raises smtplib/OSError on failure."""

    def __init__(self, settings: Settings) -> None:
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._username = settings.smtp_username
        self._password = settings.smtp_password
        self._use_tls = settings.smtp_use_tls
        self._sender = settings.email_from
        self._timeout = settings.provider_timeout_seconds

    def send(self, to: str, subject: str, text: str, html: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._sender
        msg["To"] = to
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._use_tls:
                server.starttls()
            if self._username and self._password:
                server.login(self._username, self._password)
            server.send_message(msg)
        logger.info("Sent %r to %s", subject, to)


class ConsoleEmailSender:
    """Log messages instead of sending them. Development only."""

    def send(self, to: str, subject: str, text: str, html: str) -> None:
        logger.info("DEV MAIL to=%s subject=%r\n%s", to, subject, text)


def build_sender(settings: Settings) -> EmailSender:
    """Pick the transport for this deployment."""
    if settings.debug:
        return ConsoleEmailSender()
    return SmtpEmailSender(settings)


class AccountMailer:
    """Render and send the three account messages.

    Usage:
        mailer = AccountMailer(settings, build_sender(settings))
        mailer.send_verification(user, raw_token)
    """

    def __init__(self, settings: Settings, sender: EmailSender) -> None:
        self._client_url = settings.client_url.rstrip("/")
        self._sender = sender
        self._verification_hours = max(1, settings.email_verification_ttl_seconds // 3600)
        self._reset_minutes = max(1, settings.password_reset_ttl_seconds // 60)
        self._env = Environment(
            loader=FileSystemLoader(str(_TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
            keep_trailing_newline=True,
        )

    def verification_link(self, token: str) -> str:
        return f"{self._client_url}/verify-email/{token}"

    def reset_link(self, token: str) -> str:
        return f"{self._client_url}/reset-password/{token}"

    def send_verification(self, user: User, token: str) -> None:
        self._send(
            user,
            "Verify Your Email Address",
            "verify_email",
            link=self.verification_link(token),
            expires_hours=self._verification_hours,
        )

    def send_password_reset(self, user: User, token: str) -> None:
        self._send(
            user,
            "Reset Your Password",
            "reset_password",
            link=self.reset_link(token),
            expires_minutes=self._reset_minutes,
        )

    def send_welcome(self, user: User) -> None:
        self._send(user, "Welcome to AuthCore!", "welcome", link=self._client_url)

    def _send(self, user: User, subject: str, template: str, **context) -> None:
        context["first_name"] = user.first_name
        text = self._env.get_template(f"{template}.txt").render(**context)
        html = self._env.get_template(f"{template}.html").render(**context)
        self._sender.send(user.email, subject, text, html)
