"""
tests/conftest.py -- Shared fixtures for TenantAuth unit and integration tests.

This module provides:
  - RecordingEventSink / RecordingMailSink: in-memory sinks the flows write to
  - _make_test_store(): an isolated in-memory AccountStore
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - insert_tenant() / count_accounts() / linked_identities(): direct SQL for
    setup and assertions the store API has no use for
  - store, sessions, make_account: fixtures for flow-level tests
  - client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and the signing secrets must be set before any auth/core import so
get_settings() never raises and tokens survive a settings cache clear.
BCRYPT_ROUNDS=4 keeps hashing fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import MagicMock

# CRITICAL: Set these before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-access-secret-0123456789abcdef0123456789")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef012345678")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_services
from auth.models import Account, AccountStatus, Role, Tenant, TenantStatus
from auth.passwords import PasswordHasher
from auth.sessions import SessionManager
from auth.store import AccountStore
from core.config import get_settings

get_settings.cache_clear()

# Rate limits are exercised by one dedicated test that switches this back on.
limiter.enabled = False

DEFAULT_PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Recording sinks
# ---------------------------------------------------------------------------


class RecordingEventSink:
    """Keeps every emitted event as (name, fields) for assertions."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def emit(self, event: str, **fields) -> None:
        self.events.append((event, fields))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class RecordingMailSink:
    """Keeps (email, url) pairs instead of sending mail."""

    def __init__(self) -> None:
        self.verifications: list[tuple[str, str]] = []
        self.invitations: list[tuple[str, str]] = []

    def send_verification(self, account, url: str) -> None:
        self.verifications.append((account.email, url))

    def send_invitation(self, invitation, tenant, url: str) -> None:
        self.invitations.append((invitation.email, url))


def token_from_url(url: str) -> str:
    """Extract the ?token= value from a mailed link."""
    return url.split("token=", 1)[1]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> AccountStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so tests never
                   share state.
    """
    return AccountStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: AccountStore, events: RecordingEventSink, mail: RecordingMailSink):
    """Return an async context manager that replaces the real lifespan.

    Builds the real flows around the test store and recording sinks, then
    swaps the OAuth registry for a MagicMock so no network call is possible.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, store, events=events, mail=mail)
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


def insert_tenant(
    store: AccountStore, name: str = "Acme", slug: str | None = None, status: TenantStatus = TenantStatus.ACTIVE
) -> Tenant:
    """Insert a bare tenant row. Production code only creates tenants together with their owner."""
    tenant_id = str(uuid.uuid4())
    created_at = datetime.now(timezone.utc).isoformat()
    with store.engine.begin() as conn:
        conn.exec_driver_sql(
            "INSERT INTO tenants (id, name, slug, status, plan, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (tenant_id, name, slug or store.unique_slug("acme"), TenantStatus(status).value, "free", created_at),
        )
    return store.get_tenant(tenant_id)


def count_accounts(store: AccountStore) -> int:
    with store.engine.connect() as conn:
        return conn.exec_driver_sql("SELECT COUNT(*) FROM accounts").scalar()


def linked_identities(store: AccountStore, account_id: str) -> list[tuple[str, str]]:
    """(provider, subject) pairs linked to an account, oldest first."""
    with store.engine.connect() as conn:
        rows = conn.exec_driver_sql(
            "SELECT provider, subject FROM account_identities WHERE account_id = ? ORDER BY id", (account_id,)
        ).fetchall()
    return [(r[0], r[1]) for r in rows]


def seed_account(
    store: AccountStore,
    hasher: PasswordHasher,
    email: str = "owner@acme.test",
    password: str = DEFAULT_PASSWORD,
    role: Role = Role.owner,
    status: AccountStatus = AccountStatus.ACTIVE,
    email_verified: bool = True,
    tenant: Tenant | None = None,
    tenant_status: TenantStatus = TenantStatus.ACTIVE,
) -> tuple[Tenant, Account]:
    """Insert an account (and, unless given, a fresh tenant) straight into the store."""
    if tenant is None:
        tenant = insert_tenant(store, status=tenant_status)
    account = store.create_account(
        Account(
            tenant_id=tenant.id,
            email=email,
            role=role,
            status=status,
            first_name="Ada",
            last_name="Lovelace",
            hashed_password=hasher.hash(password) if password else None,
            email_verified=email_verified,
        )
    )
    return tenant, account


# ---------------------------------------------------------------------------
# Flow-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = _make_test_store(uuid.uuid4().hex)
    yield s
    s.close()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def mail() -> RecordingMailSink:
    return RecordingMailSink()


@pytest.fixture
def sessions(store, hasher, events, mail) -> SessionManager:
    return SessionManager(store, hasher=hasher, events=events, mail=mail, settings=get_settings())


@pytest.fixture
def make_account(store, hasher):
    """Factory fixture: make_account(email=..., status=..., tenant_status=...) -> (tenant, account)."""

    def _make(**kwargs) -> tuple[Tenant, Account]:
        return seed_account(store, hasher, **kwargs)

    return _make


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client(store, events, mail) -> Generator[TestClient, None, None]:
    """TestClient over the real app, routes backed by the per-test store.

    app.state.store / app.state.sessions are reachable through client.app
    for seeding data and asserting on persisted state.
    """
    app.router.lifespan_context = _patch_lifespan(store, events, mail)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


def login_headers(client: TestClient, email: str, password: str = DEFAULT_PASSWORD) -> dict:
    """Log in over HTTP and return an Authorization header for the access token."""
    resp = client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['accessToken']}"}
