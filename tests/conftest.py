"""Shared pytest fixtures for relayguard tests.

Unit tests run against FakeDurableTier, an in-memory DurableTier that keeps
the conditional-insert contract (one first writer per fingerprint, expired
rows superseded).

Integration tests get PostgreSQL via two modes:
1. TEST_DATABASE_* env vars present → connect to external PG (CI scenario)
2. Otherwise → testcontainers auto-starts a temporary PG container (local dev)

Safety: refuses to run against any database whose name doesn't contain '_test'.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from relayguard.config.settings import DedupSettings
from relayguard.constants import DB_SCHEMA
from relayguard.dedup.store import DedupStore
from relayguard.dedup.tiers import DedupRecord, DurableTier, InsertOutcome
from relayguard.infra.errors import StorageUnavailable
from relayguard.storage.models import Base

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Unit-test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FakeDurableTier(DurableTier):
    """In-memory DurableTier. `fail` simulates an outage, `delay` a slow backend."""

    def __init__(self) -> None:
        self.rows: dict[str, DedupRecord] = {}
        self.fail = False
        self.delay = 0.0
        self.insert_calls = 0
        self._lock = asyncio.Lock()

    def seed(self, fp: str, seen_at: datetime, ttl: timedelta = timedelta(hours=72)) -> DedupRecord:
        record = DedupRecord(
            fingerprint=fp,
            from_agent_id="a",
            to_agent_id="b",
            seen_at=seen_at,
            expires_at=seen_at + ttl,
        )
        self.rows[fp] = record
        return record

    async def conditional_insert(self, record: DedupRecord) -> InsertOutcome:
        self.insert_calls += 1
        if self.fail:
            raise StorageUnavailable("simulated outage")
        async with self._lock:
            await asyncio.sleep(0)  # let racing callers interleave up to the lock
            existing = self.rows.get(record.fingerprint)
            if existing is not None and existing.expires_at < record.seen_at:
                existing = None
            if existing is None:
                self.rows[record.fingerprint] = record
                return InsertOutcome(inserted=True, seen_at=record.seen_at)
            return InsertOutcome(inserted=False, seen_at=existing.seen_at)

    async def iter_live(self, *, now, since, limit, batch_size):
        if self.fail:
            raise StorageUnavailable("simulated outage")
        live = sorted(
            (r for r in self.rows.values() if r.expires_at >= now and r.seen_at > since),
            key=lambda r: r.seen_at,
            reverse=True,
        )[:limit]
        for i in range(0, len(live), batch_size):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield [(r.fingerprint, r.seen_at) for r in live[i : i + batch_size]]

    async def delete_expired(self, now, *, batch_size):
        if self.fail:
            raise StorageUnavailable("simulated outage")
        if self.delay:
            await asyncio.sleep(self.delay)
        expired = [fp for fp, r in self.rows.items() if r.expires_at < now][:batch_size]
        for fp in expired:
            del self.rows[fp]
        return len(expired)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def durable() -> FakeDurableTier:
    return FakeDurableTier()


@pytest.fixture
def dedup_settings() -> DedupSettings:
    return DedupSettings()


@pytest.fixture
def store(durable: FakeDurableTier, dedup_settings: DedupSettings, clock: FakeClock) -> DedupStore:
    return DedupStore(durable, dedup_settings, clock=clock)


# ---------------------------------------------------------------------------
# PostgreSQL (integration)
# ---------------------------------------------------------------------------


def _validate_test_db_name(name: str) -> None:
    """Safety: refuse to truncate a database whose name doesn't contain '_test'."""
    if "_test" not in name.lower():
        raise RuntimeError(
            f"Refusing to run tests against database '{name}': "
            "name must contain '_test' to prevent accidental data loss. "
            "Set TEST_DATABASE_NAME to a test-specific database."
        )


def _build_pg_url_from_env() -> str | None:
    """Build async PG URL from TEST_DATABASE_* env vars, or return None."""
    host = os.getenv("TEST_DATABASE_HOST")
    if host is None:
        return None
    port = os.getenv("TEST_DATABASE_PORT", "5432")
    user = os.getenv("TEST_DATABASE_USER", "postgres")
    password = os.getenv("TEST_DATABASE_PASSWORD", "")
    name = os.getenv("TEST_DATABASE_NAME", "relayguard_test")
    _validate_test_db_name(name)
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


@pytest.fixture(scope="session")
def _pg_container():
    """Manage testcontainers PostgreSQL lifecycle.

    Yields (url, container) where container is None if using external PG.
    Skips integration tests when neither env vars nor a Docker daemon are available.
    """
    url = _build_pg_url_from_env()
    if url is not None:
        yield url, None
        return

    try:
        from testcontainers.postgres import PostgresContainer

        container = PostgresContainer("postgres:16", dbname="relayguard_test")
        container.start()
    except Exception as exc:
        pytest.skip(f"PostgreSQL unavailable for integration tests: {exc}")

    host = container.get_container_host_ip()
    port = container.get_exposed_port(5432)
    user = container.username
    password = container.password
    dbname = container.dbname
    _validate_test_db_name(dbname)

    url = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{dbname}"

    yield url, container

    container.stop()


@pytest.fixture(scope="session")
def pg_url(_pg_container) -> str:
    """Provide an async PostgreSQL URL for integration tests."""
    url, _ = _pg_container
    return url


@pytest_asyncio.fixture
async def db_engine(pg_url: str) -> AsyncIterator[AsyncEngine]:
    """Per-test engine over the shared database; tables truncated on teardown.

    Function-scoped so the engine's connections live on the test's event loop.
    """
    engine = create_async_engine(pg_url, echo=False)

    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {DB_SCHEMA}"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.execute(text(
            f"TRUNCATE {DB_SCHEMA}.message_dedup, {DB_SCHEMA}.agents,"
            f" {DB_SCHEMA}.agent_activities RESTART IDENTITY"
        ))

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session_factory(db_engine: AsyncEngine) -> async_sessionmaker:
    """Provide an async session factory bound to the test engine."""
    return async_sessionmaker(db_engine, expire_on_commit=False)
