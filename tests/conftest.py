"""
tests/conftest.py -- Shared test fixtures for identity service tests.

This module provides:
  - FakeClock: deterministic time source for TTL and iat assertions
  - RecordingEmailSender / FailingEmailSender: EmailSender test doubles
  - config / store / sender / service: isolated unit-level fixtures
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API client because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit fixtures run in one thread and use plain :memory:.

bcrypt runs at its minimum cost (rounds=4) so hashing stays fast.

The DEBUG env var must be set before any api/ import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.codes import ConfirmationCodeEngine
from auth.errors import EmailDispatchError
from auth.refresh import RefreshTokenManager
from auth.service import SessionService
from auth.store import IdentityStore
from auth.tokens import TokenSigner
from core.config import SessionConfig

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"

_CODE_RE = re.compile(r"Confirmation code: (\d{4})")


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingEmailSender:
    """Keeps every message instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to_email: str, subject: str, body: str) -> None:
        self.sent.append((to_email, subject, body))

    def last_code_for(self, email: str) -> int:
        for to_email, _subject, body in reversed(self.sent):
            if to_email == email:
                match = _CODE_RE.search(body)
                assert match is not None, f"No code in message body: {body!r}"
                return int(match.group(1))
        raise AssertionError(f"No email sent to {email}")


class FailingEmailSender:
    def send(self, to_email: str, subject: str, body: str) -> None:
        raise EmailDispatchError("smtp down")


def make_config(**overrides) -> SessionConfig:
    values = {"secret_key": TEST_SECRET, "access_token_lifetime": 900, "code_ttl": 300, "hash_rounds": 4}
    values.update(overrides)
    return SessionConfig(**values)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> SessionConfig:
    return make_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> Generator[IdentityStore, None, None]:
    s = IdentityStore("sqlite:///:memory:", clock=clock)
    yield s
    s.close()


@pytest.fixture
def sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def failing_sender() -> FailingEmailSender:
    return FailingEmailSender()


@pytest.fixture
def service(
    store: IdentityStore, config: SessionConfig, sender: RecordingEmailSender, clock: FakeClock
) -> SessionService:
    return SessionService(
        identities=store,
        codes=ConfirmationCodeEngine(store, config),
        refresh_tokens=RefreshTokenManager(store, config),
        signer=TokenSigner(config),
        email_sender=sender,
        code_ttl=config.code_ttl,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(store: IdentityStore, email_sender, config: SessionConfig):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and a recording email sender through the same
    wire_services() the real lifespan uses. The purge_task is a long-sleeping
    coroutine so shutdown can cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, store, email_sender, config)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingEmailSender], None, None]:
    """Yield (client, sender) for API integration tests.

    The database name includes the test module name so modules never share
    state.
    """
    db_name = request.module.__name__.replace(".", "_")
    store = IdentityStore(f"sqlite:///file:test_identity_{db_name}?mode=memory&cache=shared&uri=true")
    email_sender = RecordingEmailSender()

    app.router.lifespan_context = _patch_lifespan(store, email_sender, make_config())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, email_sender

    store.close()
