"""
tests/conftest.py -- Shared test fixtures for VerifyHub tests.

This module provides:
  - FakeMailer: records outgoing mail in memory; can be told to fail
  - FakeClock: a settable "now" for OTP expiry tests
  - store / service: an AccountService over an isolated in-memory store
  - api_client: TestClient over the real app with a patched lifespan
  - registration_payload: factory for a valid POST /users/register body

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any core/auth import so get_settings()
auto-generates SECRET_KEY and falls back to console mail instead of raising.

bcrypt runs at 4 rounds (its minimum) everywhere in tests to keep the suite
fast; the cost factor does not change any behaviour under test.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.accounts import AccountService
from auth.mailer import Mailer
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from core.errors import EmailDeliveryError

TEST_SECRET = "test-secret-key-for-verifyhub-0123456789"
TEST_ROUNDS = 4
TOKEN_LIFETIME = 7 * 24 * 60 * 60
OTP_LIFETIME = 600

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"

_OTP_RE = re.compile(r"\b(\d{6})\b")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@dataclass
class SentMail:
    to_email: str
    subject: str
    text_body: str
    html_body: Optional[str]


class FakeMailer(Mailer):
    """Mailer that keeps messages in a list. Set fail=True to simulate a dead relay."""

    def __init__(self) -> None:
        self.sent: list[SentMail] = []
        self.fail = False

    def send(self, to_email: str, subject: str, text_body: str, html_body: Optional[str] = None) -> None:
        if self.fail:
            raise EmailDeliveryError(details={"reason": "SMTPServerDisconnected"})
        self.sent.append(SentMail(to_email, subject, text_body, html_body))

    def last_code_for(self, email: str) -> str:
        """Return the OTP from the most recent message sent to email."""
        for mail in reversed(self.sent):
            if mail.to_email == email:
                match = _OTP_RE.search(mail.text_body)
                assert match, f"no OTP in mail to {email}: {mail.text_body!r}"
                return match.group(1)
        raise AssertionError(f"no mail sent to {email}")


@dataclass
class FakeClock:
    """Callable clock. Starts at the real current time so tokens it stamps still verify."""

    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_db_url(name: str) -> str:
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_service(
    store: AccountStore,
    mailer: Mailer,
    clock: Optional[Callable[[], datetime]] = None,
    tokens: Optional[TokenIssuer] = None,
) -> AccountService:
    kwargs: dict[str, Any] = {}
    if clock is not None:
        kwargs["clock"] = clock
    return AccountService(
        store=store,
        mailer=mailer,
        tokens=tokens or TokenIssuer(TEST_SECRET, TOKEN_LIFETIME),
        otp_lifetime_seconds=OTP_LIFETIME,
        bcrypt_rounds=TEST_ROUNDS,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- unit tests against the service layer
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore(db_url=_memory_db_url("accounts"))
    yield s
    s.close()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(store: AccountStore, mailer: FakeMailer, clock: FakeClock) -> AccountService:
    return make_service(store, mailer, clock)


@pytest.fixture
def profile() -> dict[str, Any]:
    """Profile dict in the shape RegisterRequest.to_profile() produces."""
    return {
        "first_name": "Grace",
        "last_name": "Hopper",
        "profession": "RESEARCHER",
        "primary_specialty": "Compilers",
        "institution": "Navy Labs",
        "department": "Computing",
        "phone_code": "+1",
        "mobile_number": "5551234567",
        "address": {
            "street": "1 Main St",
            "city": "Arlington",
            "state": "VA",
            "country": "US",
            "postalCode": "22201",
        },
        "terms_accepted": True,
    }


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    mailer: FakeMailer
    store: AccountStore
    service: AccountService
    tokens: TokenIssuer
    admin_id: int
    admin_token: str

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(store: AccountStore, mailer: FakeMailer, tokens: TokenIssuer, service: AccountService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, fake mailer and service into app.state so
    TestClient routes see an isolated in-memory database and never open an
    SMTP connection.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.mailer = mailer
        app.state.token_issuer = tokens
        app.state.accounts = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers and exception handlers. A verified admin
    is provisioned before the client starts.
    """
    store = AccountStore(db_url=_memory_db_url("api"))
    mailer = FakeMailer()
    tokens = TokenIssuer(TEST_SECRET, TOKEN_LIFETIME)
    service = make_service(store, mailer, tokens=tokens)

    admin = service.provision_admin(ADMIN_EMAIL, ADMIN_PASSWORD, "Ada", "Admin")
    admin_token = service.login(ADMIN_EMAIL, ADMIN_PASSWORD).token

    app.router.lifespan_context = _patch_lifespan(store, mailer, tokens, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(
            client=client,
            mailer=mailer,
            store=store,
            service=service,
            tokens=tokens,
            admin_id=admin.id,
            admin_token=admin_token,
        )

    store.close()


@pytest.fixture
def registration_payload() -> Callable[..., dict[str, Any]]:
    """Return a factory for a valid camelCase registration body."""

    def _make(email: str, **overrides: Any) -> dict[str, Any]:
        body = {
            "firstName": "Grace",
            "lastName": "Hopper",
            "email": email,
            "password": "secret123",
            "confirmPassword": "secret123",
            "profession": "RESEARCHER",
            "primarySpecialty": "Compilers",
            "institution": "Navy Labs",
            "department": "Computing",
            "phoneCode": "+1",
            "mobileNumber": "5551234567",
            "address": {
                "street": "1 Main St",
                "city": "Arlington",
                "state": "VA",
                "country": "US",
                "postalCode": "22201",
            },
            "termsAccepted": True,
        }
        body.update(overrides)
        return body

    return _make
