"""
auth/mailer.py -- Outbound email transport and the OTP message template.

Two transports share one interface, send(to, subject, text_body, html_body):

  SmtpMailer    -- smtplib with STARTTLS and login. Any SMTP or socket
                   failure is raised as EmailDeliveryError; the caller
                   decides whether that undoes anything.
  ConsoleMailer -- DEBUG-only fallback when no SMTP relay is configured.
                   Writes the message to the log so OTPs can be read
                   during local development.

build_mailer(settings) picks one. Settings refuses to load in production
without SMTP settings, so ConsoleMailer is never chosen outside DEBUG.
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from core.config import Settings
from core.errors import EmailDeliveryError

logger = logging.getLogger("verifyhub.auth.mailer")

_SMTP_TIMEOUT_SECONDS = 10


class Mailer:
    """Base class for outbound mail transports."""

    def send(self, to_email: str, subject: str, text_body: str, html_body: Optional[str] = None) -> None:
        raise NotImplementedError


class SmtpMailer(Mailer):
    """Send email through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int,
        from_email: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        from_name: str = "VerifyHub",
    ) -> None:
        self.host = host
        self.port = port
        self.from_email = from_email
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_name = from_name

    def send(self, to_email: str, subject: str, text_body: str, html_body: Optional[str] = None) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        if html_body:
            msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=_SMTP_TIMEOUT_SECONDS) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery to %s failed: %s", to_email, exc)
            raise EmailDeliveryError(details={"reason": type(exc).__name__}) from exc


class ConsoleMailer(Mailer):
    """Log outgoing mail instead of sending it (DEBUG only)."""

    def send(self, to_email: str, subject: str, text_body: str, html_body: Optional[str] = None) -> None:
        logger.info("[EMAIL] to=%s subject=%r\n%s", to_email, subject, text_body)


def build_mailer(settings: Settings) -> Mailer:
    """Return the transport the settings call for."""
    if settings.smtp_configured:
        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            from_email=settings.smtp_from_email,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_name=settings.mail_from_name,
        )
    logger.warning("SMTP is not configured -- outgoing mail will be written to the log.")
    return ConsoleMailer()


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def otp_email(name: str, code: str, expire_minutes: int) -> tuple[str, str, str]:
    """Return (subject, text_body, html_body) for an email-verification OTP."""
    greeting = f"Hi {name}," if name else "Hi,"
    html_greeting = html.escape(greeting)
    subject = "Verify your email address"
    text_body = (
        f"{greeting}\n\n"
        f"Your verification code is: {code}\n\n"
        f"This code expires in {expire_minutes} minutes.\n"
        "If you did not create an account, you can ignore this email.\n"
    )
    html_body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <p>{html_greeting}</p>
      <p>Your verification code is:</p>
      <p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{code}</p>
      <p>This code expires in {expire_minutes} minutes.</p>
      <p style="color: #64748b; font-size: 13px;">If you did not create an account, you can ignore this email.</p>
    </div>
    """
    return subject, text_body, html_body
