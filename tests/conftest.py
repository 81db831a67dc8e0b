"""
tests/conftest.py -- Shared test fixtures for TokenGate.

This module provides:
  - FakeClock / RecordingMailer: deterministic time and captured outbound mail
  - store, codec, otp_engine, service: unit-level component fixtures
  - api: ApiContext wrapping a TestClient over the real app with a patched lifespan

Design: API fixtures use named shared-memory SQLite URIs (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each api fixture gets a uniquely named DB so tests stay isolated.

DEBUG and ALLOWED_HOSTS must be set before any api/ import: api/main.py reads
settings at import time to build the middleware stack.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any api/ or core/ import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, wire_app_state
from auth.hashing import BcryptHasher
from auth.models import Role, User
from auth.otp import OtpEngine
from auth.service import CredentialService
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"
TEST_ISSUER = "tokengate-test"
START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

_CODE_RE = re.compile(r"\b(\d{6})\b")


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Frozen clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)


@dataclass
class SentMail:
    to: str
    subject: str
    body: str


@dataclass
class RecordingMailer:
    """Captures mail instead of sending it. Set fail=True to simulate a transport outage."""

    sent: list[SentMail] = field(default_factory=list)
    fail: bool = False

    def send(self, to: str, subject: str, body: str) -> None:
        if self.fail:
            raise ConnectionError("SMTP relay unreachable")
        self.sent.append(SentMail(to, subject, body))

    def last_code(self, to: str) -> str:
        """Return the 6-digit code from the most recent mail to ``to``."""
        for mail in reversed(self.sent):
            if mail.to.lower() == to.lower():
                match = _CODE_RE.search(mail.body)
                assert match, f"No code in mail body: {mail.body!r}"
                return match.group(1)
        raise AssertionError(f"No mail sent to {to}")


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def hasher() -> BcryptHasher:
    # Minimum bcrypt cost keeps the suite fast; production uses 12.
    return BcryptHasher(rounds=4)


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(TEST_SECRET, issuer=TEST_ISSUER, clock=clock)


@pytest.fixture
def otp_engine(store: UserStore, mailer: RecordingMailer, clock: FakeClock) -> OtpEngine:
    return OtpEngine(store, mailer, clock=clock)


@pytest.fixture
def service(
    store: UserStore, hasher: BcryptHasher, codec: TokenCodec, otp_engine: OtpEngine
) -> CredentialService:
    return CredentialService(store, hasher, codec, otp_engine, token_ttl_seconds=3600)


def make_user(store: UserStore, hasher: BcryptHasher, username: str = "alice", **overrides) -> User:
    """Insert a user directly, bypassing registration."""
    fields = {
        "username": username,
        "email": f"{username}@x.com",
        "password_hash": hasher.hash("correct horse"),
        "role": Role.USER,
        "verified": True,
    }
    fields.update(overrides)
    return store.save(User(**fields))


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    store: UserStore
    mailer: RecordingMailer
    clock: FakeClock
    codec: TokenCodec

    def bearer(self, username: str, role: Role = Role.USER, ttl: int = 3600) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.codec.issue(username, role, ttl)}"}


def _patch_lifespan(settings: Settings, store: UserStore, mailer: RecordingMailer, clock: FakeClock):
    """Return a lifespan that wires test doubles into app.state instead of real resources."""

    @asynccontextmanager
    async def test_lifespan(app):
        wire_app_state(app, settings, store, mailer, clock=clock, hasher=BcryptHasher(rounds=4))
        yield

    return test_lifespan


@pytest.fixture
def api(clock: FakeClock, mailer: RecordingMailer) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext over the real app with an isolated in-memory store."""
    settings = Settings(debug=True, secret_key=TEST_SECRET, token_issuer=TEST_ISSUER)
    store = UserStore(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    app.router.lifespan_context = _patch_lifespan(settings, store, mailer, clock)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client, store, mailer, clock, app.state.token_codec)

    limiter.enabled = True
    store.close()
