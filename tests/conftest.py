"""
tests/conftest.py -- Shared test fixtures for AuthGate unit and integration tests.

This module provides:
  - FakeClock: injectable clock so TTL and TOTP tests never sleep
  - RecordingDelivery: in-memory email/SMS transport that captures codes
  - make_test_store(): isolated shared-memory SQLite AccountStore
  - orchestrator / challenge_manager fixtures wired to a FakeClock
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError. The
rate limit is raised for the same reason: the integration tests log in far
more than ten times a minute from one client address.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.challenges import ChallengeManager
from auth.errors import DeliveryFailure
from auth.models import CodePurpose
from auth.revocation import TokenRevocationStore
from auth.session import AuthOrchestrator
from auth.store import AccountStore
from auth.tokens import TokenService
from core.config import get_settings

# 12:00:00 UTC sits on a 30 second TOTP step boundary.
EPOCH = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

TEST_SECRET_KEY = "test-secret-key-that-is-at-least-32-characters"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@dataclass
class SentCode:
    destination: str
    code: str
    purpose: CodePurpose


@dataclass
class RecordingDelivery:
    """CodeDelivery that records every code instead of sending it.

    Set fail=True to make the next deliveries raise DeliveryFailure.
    """

    sent: list[SentCode] = field(default_factory=list)
    fail: bool = False

    def deliver(self, destination: str, code: str, purpose: CodePurpose) -> None:
        if self.fail:
            raise DeliveryFailure("transport down (test)")
        self.sent.append(SentCode(destination, code, purpose))

    def last_code(self, destination: str | None = None) -> str:
        for item in reversed(self.sent):
            if destination is None or item.destination == destination:
                return item.code
        raise AssertionError(f"no code delivered to {destination!r}")


def totp_code_outside_window(totp, now: datetime, direction: int = -1, window: int = 1) -> str:
    """Return a TOTP code from a step beyond the accepted window that differs from every in-window code.

    direction is -1 for a stale code, +1 for a future one. Random secrets
    occasionally repeat a code across steps, so farther steps are tried
    until one cannot be mistaken for a valid code.
    """
    accepted = {totp.at(now + timedelta(seconds=30 * step)) for step in range(-window, window + 1)}
    for step in range(window + 2, window + 12):
        code = totp.at(now + timedelta(seconds=30 * step * direction))
        if code not in accepted:
            return code
    raise AssertionError("every candidate step repeats an in-window code")


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_store(db_suffix: str | None = None) -> AccountStore:
    """Create an isolated named shared-memory SQLite AccountStore.

    Args:
        db_suffix: Unique string appended to the DB name so tests and modules
                   don't share state. Defaults to a random suffix.
    """
    suffix = db_suffix or uuid.uuid4().hex
    return AccountStore(db_url=f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def email_outbox() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture()
def sms_outbox() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture()
def account_store() -> Generator[AccountStore, None, None]:
    store = make_test_store()
    yield store
    store.close()


@pytest.fixture()
def challenge_manager(
    clock: FakeClock, email_outbox: RecordingDelivery, sms_outbox: RecordingDelivery
) -> ChallengeManager:
    return ChallengeManager(email_outbox, sms_outbox, clock=clock)


@pytest.fixture()
def token_service() -> TokenService:
    # Real clock: python-jose checks exp against the wall clock.
    return TokenService(secret_key=TEST_SECRET_KEY, expire_seconds=3600)


@pytest.fixture()
def revocations(clock: FakeClock) -> TokenRevocationStore:
    return TokenRevocationStore(clock=clock)


@pytest.fixture()
def orchestrator(
    account_store: AccountStore,
    challenge_manager: ChallengeManager,
    token_service: TokenService,
    revocations: TokenRevocationStore,
    clock: FakeClock,
) -> AuthOrchestrator:
    return AuthOrchestrator(account_store, challenge_manager, token_service, revocations, clock=clock)


# ---------------------------------------------------------------------------
# Integration fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    orchestrator: AuthOrchestrator
    email_outbox: RecordingDelivery
    sms_outbox: RecordingDelivery


def _patch_lifespan(orchestrator: AuthOrchestrator):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test components into app.state so TestClient routes use
    recording deliveries and an isolated DB rather than SMTP and a file DB.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = orchestrator.store
        app.state.tokens = orchestrator.tokens
        app.state.revocations = orchestrator.revocations
        app.state.challenges = orchestrator.challenges
        app.state.orchestrator = orchestrator
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for HTTP integration tests.

    One TestClient per test module for speed. Tests share the DB, so each
    test signs up its own email address.
    """
    store = make_test_store()
    email_outbox = RecordingDelivery()
    sms_outbox = RecordingDelivery()
    orchestrator = AuthOrchestrator(
        store,
        ChallengeManager(email_outbox, sms_outbox),
        TokenService.from_settings(get_settings()),
        TokenRevocationStore(),
    )
    app.router.lifespan_context = _patch_lifespan(orchestrator)

    # base_url host must pass TrustedHostMiddleware.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield ApiHarness(client, orchestrator, email_outbox, sms_outbox)

    store.close()
