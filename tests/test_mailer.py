"""
tests/test_mailer.py -- Unit tests for the SMTP transport and OTP template.

smtplib.SMTP is replaced with an in-process fake so no socket is opened.
"""

from __future__ import annotations

import smtplib

import pytest

from auth.mailer import ConsoleMailer, SmtpMailer, build_mailer, otp_email
from core.config import Settings
from core.errors import EmailDeliveryError


class FakeSMTP:
    instances: list["FakeSMTP"] = []
    fail_on_login = False

    def __init__(self, host: str, port: int, timeout: int = 0) -> None:
        self.host = host
        self.port = port
        self.calls: list[str] = []
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc) -> None:
        self.calls.append("quit")

    def starttls(self) -> None:
        self.calls.append("starttls")

    def login(self, username: str, password: str) -> None:
        if FakeSMTP.fail_on_login:
            raise smtplib.SMTPAuthenticationError(535, b"authentication failed")
        self.calls.append("login")

    def send_message(self, msg) -> None:
        self.calls.append("send_message")
        self.messages.append(msg)


@pytest.fixture
def fake_smtp(monkeypatch: pytest.MonkeyPatch) -> type[FakeSMTP]:
    FakeSMTP.instances = []
    FakeSMTP.fail_on_login = False
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def _mailer(**overrides) -> SmtpMailer:
    kwargs = {
        "host": "smtp.example.com",
        "port": 587,
        "from_email": "no-reply@example.com",
        "username": "relay-user",
        "password": "relay-pass",
    }
    kwargs.update(overrides)
    return SmtpMailer(**kwargs)


class TestSmtpMailer:
    def test_sends_with_tls_and_login(self, fake_smtp) -> None:
        _mailer().send("grace@example.com", "Hello", "plain body", "<p>html body</p>")
        server = fake_smtp.instances[0]
        assert (server.host, server.port) == ("smtp.example.com", 587)
        assert server.calls == ["starttls", "login", "send_message", "quit"]
        msg = server.messages[0]
        assert msg["To"] == "grace@example.com"
        assert msg["Subject"] == "Hello"
        assert "no-reply@example.com" in msg["From"]

    def test_no_tls_no_login(self, fake_smtp) -> None:
        _mailer(username="", use_tls=False).send("grace@example.com", "Hello", "plain body")
        assert fake_smtp.instances[0].calls == ["send_message", "quit"]

    def test_smtp_error_becomes_delivery_error(self, fake_smtp) -> None:
        fake_smtp.fail_on_login = True
        with pytest.raises(EmailDeliveryError) as exc_info:
            _mailer().send("grace@example.com", "Hello", "plain body")
        assert exc_info.value.details == {"reason": "SMTPAuthenticationError"}
        assert isinstance(exc_info.value.__cause__, smtplib.SMTPAuthenticationError)
        assert exc_info.value.is_operational is False

    def test_connection_error_becomes_delivery_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def refuse(*args, **kwargs):
            raise ConnectionRefusedError("connection refused")

        monkeypatch.setattr(smtplib, "SMTP", refuse)
        with pytest.raises(EmailDeliveryError):
            _mailer().send("grace@example.com", "Hello", "plain body")


class TestBuildMailer:
    def test_smtp_when_configured(self) -> None:
        settings = Settings(
            _env_file=None,
            debug=True,
            secret_key="s" * 32,
            smtp_host="smtp.example.com",
            smtp_from_email="no-reply@example.com",
        )
        assert isinstance(build_mailer(settings), SmtpMailer)

    def test_console_fallback_in_debug(self) -> None:
        settings = Settings(_env_file=None, debug=True, secret_key="s" * 32)
        assert isinstance(build_mailer(settings), ConsoleMailer)


class TestOtpTemplate:
    def test_contains_code_and_expiry(self) -> None:
        subject, text_body, html_body = otp_email("Grace", "482913", 10)
        assert subject == "Verify your email address"
        assert "482913" in text_body
        assert "482913" in html_body
        assert "10 minutes" in text_body
        assert text_body.startswith("Hi Grace,")

    def test_name_is_html_escaped(self) -> None:
        _, _, html_body = otp_email("<script>x</script>", "482913", 10)
        assert "<script>" not in html_body
        assert "&lt;script&gt;" in html_body
