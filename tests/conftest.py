"""
tests/conftest.py -- Shared test fixtures for the authentication service.

This module provides:
  - db_url(): a fresh named shared-memory SQLite URI
  - verification_store / user_store: isolated stores for unit tests
  - make_harness: factory that starts a TestClient against the real app with
    a patched lifespan and a VerificationConfig built from keyword overrides
  - Harness.codes / Harness.reset_codes: plaintext codes captured from the
    event port, the way a mailer would receive them

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, wire_state
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import VerificationConfig
from verification.events import EventDispatcher, PasswordResetCodeGenerated, VerificationCodeGenerated
from verification.gate import VerificationGate
from verification.store import VerificationStore, utcnow

TEST_PASSWORD = "correct-horse-battery"


def db_url() -> str:
    return f"sqlite:///file:test_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Unit-test stores
# ---------------------------------------------------------------------------


@pytest.fixture
def verification_store() -> Generator[VerificationStore, None, None]:
    store = VerificationStore(db_url=db_url())
    yield store
    store.close()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=db_url())
    yield store
    store.close()


@pytest.fixture(autouse=True)
def _reset_route_limits() -> None:
    """slowapi counters are process-global; start every test from zero."""
    limiter.reset()


# ---------------------------------------------------------------------------
# Integration harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    app: FastAPI
    user_store: UserStore
    verification_store: VerificationStore
    events: EventDispatcher
    codes: list[VerificationCodeGenerated] = field(default_factory=list)
    reset_codes: list[PasswordResetCodeGenerated] = field(default_factory=list)

    @property
    def gate(self) -> VerificationGate:
        return self.app.state.gate

    def last_code(self) -> str:
        return self.codes[-1].code

    def create_user(self, email: str = "ada@example.com", **kwargs: Any) -> User:
        user = User(
            email=email,
            first_name=kwargs.pop("first_name", "Ada"),
            hashed_password=hash_password(kwargs.pop("password", TEST_PASSWORD)),
            **kwargs,
        )
        user.id = self.user_store.create_user(user)
        return user


@pytest.fixture
def make_harness() -> Generator[Callable[..., Harness], None, None]:
    """Yield a factory: make_harness(session=None, clock=utcnow, **config_overrides).

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores and a
    VerificationConfig built from the overrides.
    """
    opened: list[Harness] = []

    def _make(session: Any = None, clock: Callable[[], datetime] = utcnow, **overrides: Any) -> Harness:
        url = db_url()
        user_store = UserStore(db_url=url)
        verification_store = VerificationStore(db_url=url)
        events = EventDispatcher()
        config = VerificationConfig(**{"contact_hash_key": "k" * 32, **overrides})

        @asynccontextmanager
        async def test_lifespan(app):
            app.state.events = events
            app.state.hooks = []
            wire_state(app, user_store, verification_store, config, session=session, clock=clock)
            app.state.oauth = MagicMock()
            yield

        app.router.lifespan_context = test_lifespan
        client = TestClient(app, raise_server_exceptions=True)
        client.__enter__()

        harness = Harness(
            client=client,
            app=app,
            user_store=user_store,
            verification_store=verification_store,
            events=events,
        )
        events.subscribe(VerificationCodeGenerated, harness.codes.append)
        events.subscribe(PasswordResetCodeGenerated, harness.reset_codes.append)
        opened.append(harness)
        return harness

    yield _make

    for harness in opened:
        harness.client.__exit__(None, None, None)
        harness.verification_store.close()
        harness.user_store.close()


@pytest.fixture
def harness(make_harness: Callable[..., Harness]) -> Harness:
    """Default configuration: self-managed, no registration gate."""
    return make_harness()
