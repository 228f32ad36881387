"""
tests/conftest.py -- Shared test fixtures for the LabLive auth service.

This module provides:
  - RecordingMailer: a Mailer that keeps reset links and login codes in memory
  - make_store(): isolated named shared-memory SQLite stores
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api_client: TestClient against the real app, one isolated DB per test module
  - register(), login_token(): request helpers used by the route tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

DEBUG and BCRYPT_ROUNDS must be set before any app import: get_settings() is
cached on first use, and the limiter reads it at import time.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import so get_settings() auto-generates
# SECRET_KEY in dev mode and hashing stays fast.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.mailer import Mailer
from auth.reset import PasswordResetLifecycle
from auth.service import AuthService
from auth.store import ResetTokenStore, UserStore
from core.config import get_settings

STRONG_PASSWORD = "Correct-Horse-9-Battery"
OTHER_STRONG_PASSWORD = "Another-Strong-7-Passphrase"

_email_counter = itertools.count(1)


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}{next(_email_counter)}-{uuid.uuid4().hex[:6]}@example.com"


# ---------------------------------------------------------------------------
# Recording mailer
# ---------------------------------------------------------------------------


class RecordingMailer(Mailer):
    """Captures outbound mail instead of speaking SMTP."""

    def __init__(self) -> None:
        super().__init__()
        self.resets: list[tuple[str, str]] = []
        self.codes: list[tuple[str, str]] = []

    def send_password_reset(self, to: str, link: str) -> None:
        self.resets.append((to, link))

    def send_login_code(self, to: str, code: str, valid_minutes: int = 5) -> None:
        self.codes.append((to, code))

    def links_for(self, email: str) -> list[str]:
        return [link for to, link in self.resets if to == email.lower()]

    def codes_for(self, email: str) -> list[str]:
        return [code for to, code in self.codes if to == email.lower()]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite UserStore.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def build_components(store: UserStore, mailer: Mailer) -> tuple[AuthService, PasswordResetLifecycle, ResetTokenStore]:
    settings = get_settings()
    reset_tokens = ResetTokenStore(store.engine)
    auth = AuthService.from_settings(settings, store, mailer=mailer)
    reset = PasswordResetLifecycle(
        users=store,
        tokens=reset_tokens,
        hasher=auth.hasher,
        policy=auth.policy,
        mailer=mailer,
        frontend_url=settings.frontend_url,
        ttl_seconds=settings.reset_token_ttl_seconds,
    )
    return auth, reset, reset_tokens


def _patch_lifespan(auth: AuthService, reset: PasswordResetLifecycle, reset_tokens: ResetTokenStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = auth
        app.state.password_reset = reset
        app.state.reset_tokens = reset_tokens
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """Every test starts with empty rate-limit counters."""
    limiter.reset()


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingMailer], None, None]:
    """Yield (client, mailer) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated in-memory store. The
    component graph is reachable as client.app.state.auth.
    """
    store = make_store(request.module.__name__.rsplit(".", 1)[-1])
    mailer = RecordingMailer()
    auth, reset, reset_tokens = build_components(store, mailer)

    app.router.lifespan_context = _patch_lifespan(auth, reset, reset_tokens)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer

    store.close()


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def register(client: TestClient, email: str, password: str = STRONG_PASSWORD, **extra) -> dict:
    resp = client.post(
        "/api/v1/auth/register",
        json={"name": extra.pop("name", "Test User"), "email": email, "password": password, **extra},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def login_token(client: TestClient, email: str, password: str = STRONG_PASSWORD) -> str:
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["token"]
