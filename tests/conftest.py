"""
Pytest configuration and shared fixtures for metricstore tests.

Provides:
- An in-memory fake of ``asyncpg.Connection`` that understands the store's
  schema, upsert and read queries, with failure injection
- A fake ``asyncpg.Pool`` and a ``Pool`` wired to it
- Store configurations with a zero-wait retry schedule
"""

from __future__ import annotations

import copy
import logging
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from metricstore.core.pool import DatabaseConfig, Pool, PoolConfig
from metricstore.core.retry import RetryConfig
from metricstore.core.statements import (
    CURRENT_DATABASE_QUERY,
    GET_ALL_QUERY,
    GET_COUNTER_QUERY,
    GET_GAUGE_QUERY,
    SCHEMA,
    UPSERT_QUERY,
)
from metricstore.core.store import Store, StoreConfig


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# asyncpg Fakes
# ============================================================================


class FakeStatement:
    """Prepared statement bound to a FakeConnection."""

    def __init__(self, conn: FakeConnection, query: str) -> None:
        self.conn = conn
        self.query = query

    async def fetchval(self, *args: Any) -> Any:
        return await self.conn.fetchval(self.query, *args)

    async def fetch(self, *args: Any) -> list[dict[str, Any]]:
        return await self.conn.fetch(self.query, *args)


class FakeDbTransaction:
    """Snapshot-based stand-in for ``asyncpg.transaction.Transaction``."""

    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.active = False
        self._snapshot: dict[tuple[str, str], dict[str, Any]] = {}

    async def start(self) -> None:
        self.conn.maybe_fail("BEGIN")
        self._snapshot = copy.deepcopy(self.conn.rows)
        self.active = True

    async def commit(self) -> None:
        self.conn.maybe_fail("COMMIT")
        self.active = False

    async def rollback(self) -> None:
        self.conn.maybe_fail("ROLLBACK")
        self.conn.rows = self._snapshot
        self.active = False

    def is_active(self) -> bool:
        return self.active


class FakeConnection:
    """In-memory ``metrics`` table answering the store's exact queries.

    Exceptions queued in ``failures`` are raised, one per call, by the next
    calls whose statement is in ``fail_on`` (every statement when
    ``fail_on`` is None).
    """

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], dict[str, Any]] = {}
        self.failures: list[BaseException] = []
        self.fail_on: set[str] | None = None
        self.calls: list[str] = []
        self.database = "metrics_test"
        self.schema_created = False

    def maybe_fail(self, query: str) -> None:
        self.calls.append(query)
        if self.failures and (self.fail_on is None or query in self.fail_on):
            raise self.failures.pop(0)

    def count(self, query: str) -> int:
        return self.calls.count(query)

    def _upsert(self, name: str, mtype: str, delta: int, value: float) -> None:
        row = self.rows.get((name, mtype))
        if row is None:
            self.rows[(name, mtype)] = {"name": name, "mtype": mtype, "delta": delta, "value": value}
        else:
            row["delta"] += delta
            row["value"] = value

    def _read(self, name: str, mtype: str, column: str) -> Any:
        row = self.rows.get((name, mtype))
        return None if row is None else row[column]

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:
        self.maybe_fail(query)
        if query == SCHEMA:
            self.schema_created = True
            return "CREATE TABLE"
        if query == UPSERT_QUERY:
            self._upsert(*args)
            return "INSERT 0 1"
        raise AssertionError(f"unexpected execute: {query}")

    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:
        self.maybe_fail(query)
        if query == "SELECT 1":
            return 1
        if query == CURRENT_DATABASE_QUERY:
            return self.database
        if query == GET_GAUGE_QUERY:
            return self._read(args[0], "gauge", "value")
        if query == GET_COUNTER_QUERY:
            return self._read(args[0], "counter", "delta")
        raise AssertionError(f"unexpected fetchval: {query}")

    async def fetch(self, query: str, *args: Any, timeout: float | None = None) -> list[Any]:
        self.maybe_fail(query)
        if query == GET_ALL_QUERY:
            return [dict(row) for row in self.rows.values()]
        if query == UPSERT_QUERY:
            self._upsert(*args)
            return []
        raise AssertionError(f"unexpected fetch: {query}")

    async def prepare(self, query: str, timeout: float | None = None) -> FakeStatement:
        self.maybe_fail(query)
        return FakeStatement(self, query)

    def transaction(self) -> FakeDbTransaction:
        return FakeDbTransaction(self)


class FakeAcquire:
    """Both an async context manager and an awaitable, like asyncpg's PoolAcquireContext."""

    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn

    async def __aenter__(self) -> FakeConnection:
        return self.conn

    async def __aexit__(self, *exc: Any) -> None:
        return None

    def __await__(self):  # type: ignore[no-untyped-def]
        return self._borrow().__await__()

    async def _borrow(self) -> FakeConnection:
        return self.conn


class FakeAsyncpgPool:
    """Single-connection stand-in for ``asyncpg.Pool``."""

    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.release = AsyncMock()
        self.close = AsyncMock()
        self.terminate = MagicMock()

    def acquire(self, *, timeout: float | None = None) -> FakeAcquire:
        return FakeAcquire(self.conn)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def fake_asyncpg_pool(fake_connection: FakeConnection) -> FakeAsyncpgPool:
    return FakeAsyncpgPool(fake_connection)


@pytest.fixture
def pool_config(monkeypatch: pytest.MonkeyPatch) -> PoolConfig:
    monkeypatch.setenv("DB_PASSWORD", "test_password")
    return PoolConfig(
        database=DatabaseConfig(
            host="localhost",
            port=5432,
            database="metrics_test",
            user="test_user",
        )
    )


@pytest.fixture
def mock_pool(fake_asyncpg_pool: FakeAsyncpgPool, pool_config: PoolConfig) -> Pool:
    """A Pool that is already 'connected' to the fake asyncpg pool."""
    pool = Pool(config=pool_config)
    pool._pool = fake_asyncpg_pool  # type: ignore[assignment]
    pool._is_connected = True
    return pool


@pytest.fixture
def fast_config() -> StoreConfig:
    """Store config with the default three attempts and no waiting."""
    return StoreConfig(retry=RetryConfig(schedule=(0, 0, 0)))


@pytest.fixture
def store(mock_pool: Pool, fast_config: StoreConfig) -> Store:
    """An unopened store on the fake pool."""
    return Store(pool=mock_pool, config=fast_config)


@pytest_asyncio.fixture
async def open_store(store: Store) -> Store:
    """A bootstrapped store on the fake pool."""
    return await store.open()


@pytest.fixture
def pool_config_dict() -> dict[str, Any]:
    """Sample pool configuration dictionary."""
    return {
        "database": {
            "host": "localhost",
            "port": 5432,
            "database": "metrics_test",
            "user": "test_user",
        },
        "limits": {
            "min_size": 1,
            "max_size": 5,
            "statement_cache_size": 50,
        },
        "timeouts": {
            "connect": 5.0,
            "acquisition": 5.0,
        },
        "server_settings": {
            "application_name": "test_app",
            "timezone": "UTC",
        },
    }


@pytest.fixture
def store_config_dict(pool_config_dict: dict[str, Any]) -> dict[str, Any]:
    """Sample store configuration dictionary (pool + store settings)."""
    return {
        "pool": pool_config_dict,
        "retry": {"schedule": [0.5, 1.5]},
        "timeouts": {"bootstrap": 5.0, "transaction": 2.0},
    }
