"""
tests/conftest.py -- Shared test fixtures for VidTube.

This module provides:
  - settings / store / service: unit-level collaborators on a private
    in-memory SQLite database
  - alice: a registered user with a known password
  - api_client: TestClient over the real app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Each test gets its own database name, so rotation and logout
tests cannot see each other's refresh tokens.

The DEBUG env var must be set before api.main is imported: the module reads
get_settings() at import time to configure CORS, and with DEBUG=true missing
token secrets are generated instead of raising.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any api/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.session import SessionService
from auth.store import UserStore
from auth.tokens import TokenSigner, hash_password
from core.config import Settings

ALICE_PASSWORD = "wonderland-42"


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "access_token_secret": "access-secret-" + "a" * 40,
        "refresh_token_secret": "refresh-secret-" + "b" * 40,
        "access_token_expire_seconds": 900,
        "refresh_token_expire_seconds": 3600,
        "secure_cookies": True,
    }
    values.update(overrides)
    return Settings(**values)


def create_alice(store: UserStore) -> User:
    uid = store.create_user(
        User(
            username="alice",
            email="alice@example.com",
            full_name="Alice Liddell",
            hashed_password=hash_password(ALICE_PASSWORD),
        )
    )
    return store.get_by_id(uid)


def flip_signature_char(token: str) -> str:
    """Change one character in the middle of a JWT's signature segment.

    Middle characters carry six full bits, so the decoded signature changes
    (the last character may only differ in padding bits).
    """
    header, payload, sig = token.split(".")
    i = len(sig) // 2
    replacement = "A" if sig[i] != "A" else "B"
    return ".".join([header, payload, sig[:i] + replacement + sig[i + 1 :]])


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def signer(settings: Settings) -> TokenSigner:
    return TokenSigner(settings)


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(store: UserStore, settings: Settings, signer: TokenSigner) -> SessionService:
    return SessionService(store, settings, signer=signer)


@pytest.fixture
def alice(store: UserStore) -> User:
    return create_alice(store)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: UserStore
    settings: Settings
    service: SessionService
    alice: User


def _patch_lifespan(user_store: UserStore, settings: Settings, service: SessionService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, settings and service into app.state so routes use
    the isolated database and known token secrets.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.session_service = service
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around a TestClient with alice pre-registered."""
    db_url = f"sqlite:///file:test_users_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    settings = make_settings()
    service = SessionService(user_store, settings)
    alice = create_alice(user_store)

    app.router.lifespan_context = _patch_lifespan(user_store, settings, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=user_store, settings=settings, service=service, alice=alice)

    user_store.close()
