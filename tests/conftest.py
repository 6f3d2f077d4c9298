"""
tests/conftest.py -- Shared test fixtures for OTPGate.

This module provides:
  - FakeClock / RecordingNotifier: deterministic time and an in-memory mailbox
  - store / service: unit-level fixtures on a private in-memory database
  - api_client: TestClient on the real app with a patched lifespan

Design: API tests use named shared-memory SQLite URIs (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each api_client gets its own name so tests never share accounts.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# TestClient sends Host: testserver, which production defaults do not allow.
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.errors import DeliveryError
from auth.otp import OtpIssuer
from auth.service import AuthService
from auth.sessions import SessionManager
from auth.store import AccountStore
from core.config import get_settings

_CODE_RE = re.compile(r"\b(\d{6})\b")


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """A settable UTC clock. Call it to read the time, advance() to move it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


@dataclass
class SentMessage:
    recipient: str
    subject: str
    body: str

    @property
    def code(self) -> str:
        match = _CODE_RE.search(self.body)
        assert match, f"no code in body {self.body!r}"
        return match.group(1)


@dataclass
class RecordingNotifier:
    """Keeps every message instead of sending it. Set fail=True to simulate a relay outage."""

    sent: list[SentMessage] = field(default_factory=list)
    fail: bool = False

    def send(self, recipient: str, subject: str, body: str) -> None:
        if self.fail:
            raise DeliveryError()
        self.sent.append(SentMessage(recipient, subject, body))

    def last_code(self, recipient: str) -> str:
        for message in reversed(self.sent):
            if message.recipient == recipient:
                return message.code
        raise AssertionError(f"nothing sent to {recipient}")


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(store: AccountStore, notifier: RecordingNotifier, clock: FakeClock) -> AuthService:
    issuer = OtpIssuer(store, notifier, expire_minutes=10, clock=clock)
    sessions = SessionManager(store, expire_seconds=3600, clock=clock)
    return AuthService(store, issuer, sessions)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AccountStore, notifier: RecordingNotifier, clock: FakeClock):
    """Return a lifespan that wires the test store, notifier and clock into app.state.

    No purge task is started; tests call SessionManager.purge_expired() directly.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, store, notifier, get_settings(), clock=clock)
        yield

    return test_lifespan


@dataclass
class ApiHarness:
    client: TestClient
    notifier: RecordingNotifier
    clock: FakeClock
    store: AccountStore


@pytest.fixture
def api_client(clock: FakeClock, notifier: RecordingNotifier) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around a TestClient on the real app.

    Each test gets a fresh shared-memory database, so accounts and cookies
    never leak between tests.
    """
    db_url = f"sqlite:///file:test_api_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    store = AccountStore(db_url)
    app.router.lifespan_context = _patch_lifespan(store, notifier, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, notifier=notifier, clock=clock, store=store)

    store.close()
