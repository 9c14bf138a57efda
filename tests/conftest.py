"""
tests/conftest.py -- Shared test fixtures for ResourceHub auth tests.

This module provides:
  - unit fixtures: hasher, session_tokens, user_store, clock, ephemeral_store,
    accounts -- each backed by a private in-memory SQLite DB
  - make_user(): builds and persists a User of any role without going through
    registration (admin tiers cannot self-register)
  - api: module-scoped TestClient wired to an isolated shared-memory DB, plus
    a super_admin and an admin with ready-made bearer tokens

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG must be set before any core/auth import so get_settings() auto-generates
SECRET_KEY instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_services
from auth.ephemeral import EphemeralTokenStore
from auth.lifecycle import AccountService
from auth.models import Department, Role, User
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import SessionTokens
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"
# Minimum bcrypt cost keeps the suite fast; production default is 10.
TEST_ROUNDS = 4


class FakeClock:
    """Controllable epoch clock for EphemeralTokenStore."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@x.edu"


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=TEST_ROUNDS)


@pytest.fixture
def session_tokens() -> SessionTokens:
    return SessionTokens(TEST_SECRET, default_ttl=3600)


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ephemeral_store(clock: FakeClock) -> Generator[EphemeralTokenStore, None, None]:
    store = EphemeralTokenStore("sqlite:///:memory:", TEST_SECRET, clock=clock)
    yield store
    store.close()


@pytest.fixture
def accounts(
    user_store: UserStore,
    session_tokens: SessionTokens,
    ephemeral_store: EphemeralTokenStore,
    hasher: PasswordHasher,
) -> AccountService:
    return AccountService(user_store, session_tokens, ephemeral_store, hasher)


def make_user(
    store: UserStore,
    hasher: PasswordHasher,
    role: Role = Role.student,
    password: str = "secret1",
    **overrides,
) -> User:
    """Persist a user directly through the store and return it (without hash)."""
    fields = {
        "name": "Test User",
        "email": unique_email(role.value),
        "role": role,
        "department": Department.CSE,
        "semester": 3 if role == Role.student else None,
        "hashed_password": hasher.hash(password),
    }
    fields.update(overrides)
    return store.create_user(User(**fields))


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    accounts: AccountService
    super_admin: User
    super_admin_token: str
    admin: User
    admin_token: str

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(settings: Settings):
    """Return a lifespan that wires isolated stores into app.state.

    No purge task: token_purge_interval_seconds is 0 in test settings.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, settings)
        yield
        app.state.ephemeral_tokens.close()
        app.state.user_store.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for HTTP integration tests.

    Each test module gets its own named in-memory DB, so modules never see
    each other's users.
    """
    db_name = f"test_auth_{request.module.__name__.rsplit('.', 1)[-1]}_{uuid.uuid4().hex[:6]}"
    settings = Settings(
        debug=True,
        secret_key=TEST_SECRET,
        database_url=f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true",
        bcrypt_rounds=TEST_ROUNDS,
        token_purge_interval_seconds=0,
    )
    app.router.lifespan_context = _patch_lifespan(settings)

    with TestClient(app, raise_server_exceptions=True) as client:
        accounts: AccountService = app.state.accounts
        super_admin = accounts.bootstrap_super_admin("Root Admin", unique_email("root"), "rootpass1", "CSE")
        admin = make_user(accounts.store, accounts.hasher, role=Role.admin, password="adminpass1")
        yield ApiContext(
            client=client,
            accounts=accounts,
            super_admin=super_admin,
            super_admin_token=accounts.session_tokens.issue_for(super_admin),
            admin=admin,
            admin_token=accounts.session_tokens.issue_for(admin),
        )

