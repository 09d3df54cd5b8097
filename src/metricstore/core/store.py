"""
Gauge and counter storage on PostgreSQL.

[Store][metricstore.core.store.Store] is the non-transactional facade used
by the metrics server: every public operation runs under the
[RetryPolicy][metricstore.core.retry.RetryPolicy], acquiring a fresh pooled
connection per attempt, so a connection lost mid-call is replaced on the
next attempt.

Construction pings the database within a 10 second budget. An unreachable
database yields a degraded store (logged, not raised) whose operations
retry the bootstrap before each attempt; a reachable database that rejects
the schema or the statements fails construction with
[BootstrapError][metricstore.core.exceptions.BootstrapError].

Examples:
    ```python
    store = await Store.create()

    async with store:
        await store.set_gauge("temp", 5.5)
        await store.add_counter("hits", 1)
        await store.get_gauge("temp")      # 5.5
        await store.get_gauge("unknown")   # None
    ```
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import asyncpg
from aiohttp import web
from pydantic import BaseModel, Field

from metricstore.models import MetricRow, MetricType, MetricUpdate

from .exceptions import BootstrapError, ShutdownError, StoreClosedError
from .logger import Logger
from .pool import Pool, PoolConfig
from .retry import RetryConfig, RetryPolicy, raise_store_error
from .statements import (
    CURRENT_DATABASE_QUERY,
    GET_ALL_QUERY,
    GET_COUNTER_QUERY,
    GET_GAUGE_QUERY,
    UPSERT_QUERY,
    create_schema,
    prepare_statements,
)
from .transaction import Transaction
from .yaml import load_yaml


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from aiohttp.typedefs import Handler, Middleware


_INVALID_DATABASE_NAME = "(Error: Invalid database name)"

# Raised by a database that is down or unreachable during the startup check
_UNREACHABLE_ERRORS = (OSError, TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class StoreTimeoutsConfig(BaseModel):
    """Timeouts (in seconds) for the bounded construction-time steps."""

    bootstrap: float = Field(
        default=10.0, ge=0.1, description="Overall budget for ping, schema and statements"
    )
    transaction: float = Field(
        default=3.0, ge=0.1, description="Budget for preparing a transaction's statements"
    )
    describe: float = Field(
        default=3.0, ge=0.1, description="Budget for the current_database() lookup"
    )


class StoreConfig(BaseModel):
    """Aggregate configuration for the store (pool settings live in PoolConfig)."""

    retry: RetryConfig = Field(default_factory=RetryConfig)
    timeouts: StoreTimeoutsConfig = Field(default_factory=StoreTimeoutsConfig)


# ---------------------------------------------------------------------------
# Store Class
# ---------------------------------------------------------------------------


class Store:
    """Non-transactional gauge/counter store with bounded retry.

    Owns a [Pool][metricstore.core.pool.Pool]. Safe for concurrent use by
    many tasks; nothing is locked across calls except the one-time lazy
    bootstrap of a degraded store.

    Reads distinguish absence from failure: ``get_gauge`` and
    ``get_counter`` return ``None`` for a name never written and raise
    only on database faults.
    """

    def __init__(
        self,
        pool: Pool | None = None,
        config: StoreConfig | None = None,
    ) -> None:
        """Initialize the store without touching the database.

        Call [open()][metricstore.core.store.Store.open] (or use
        [create()][metricstore.core.store.Store.create] / ``async with``)
        before use.

        Args:
            pool: Connection pool. Creates a default Pool if not provided.
            config: Retry schedule and timeouts. Uses defaults if not provided.
        """
        self._pool = pool or Pool()
        self._config = config or StoreConfig()
        self._logger = Logger("store")
        self._retry = RetryPolicy(self._config.retry, logger=self._logger)
        self._ready = False
        self._closed = False
        self._bootstrap_lock = asyncio.Lock()

    @classmethod
    async def create(
        cls,
        pool: Pool | None = None,
        config: StoreConfig | None = None,
    ) -> Store:
        """Build and open a store in one step."""
        store = cls(pool=pool, config=config)
        await store.open()
        return store

    @classmethod
    def from_yaml(cls, config_path: str) -> Store:
        """Create a Store from a YAML file with a ``pool`` key and optional ``retry``/``timeouts``."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Store:
        """Create a Store from a dictionary, splitting off the ``pool`` key."""
        pool = None
        if "pool" in config_dict:
            pool = Pool.from_dict(config_dict["pool"])

        store_config_dict = {k: v for k, v in config_dict.items() if k != "pool"}
        config = StoreConfig(**store_config_dict) if store_config_dict else None

        return cls(pool=pool, config=config)

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def pool_config(self) -> PoolConfig:
        return self._pool.config

    @property
    def is_ready(self) -> bool:
        """True once the schema exists and the statements compiled."""
        return self._ready

    @property
    def is_closed(self) -> bool:
        """True once [close()][metricstore.core.store.Store.close] has been called."""
        return self._closed

    def _require_open(self) -> None:
        if self._closed:
            raise StoreClosedError("store is closed")

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    async def open(self) -> Store:
        """Connect, create the schema and compile the statements.

        Every step shares one ``timeouts.bootstrap`` budget. If the
        liveness check fails the store is returned degraded.

        Raises:
            BootstrapError: The database answered the check but the schema or
                a statement could not be created.
        """
        self._require_open()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.timeouts.bootstrap

        try:
            async with asyncio.timeout_at(deadline):
                await self._pool.connect()
                await self._pool.ping()
        except _UNREACHABLE_ERRORS as e:
            self._logger.error("store_degraded", error=str(e))
            return self

        try:
            async with asyncio.timeout_at(deadline):
                await self._bootstrap()
        except _UNREACHABLE_ERRORS as e:
            self._logger.error("bootstrap_failed", error=str(e))
            raise BootstrapError(f"Failed to create schema or prepare statements: {e}") from e

        return self

    async def _bootstrap(self) -> None:
        async with self._pool.acquire() as conn:
            await create_schema(conn, timeout=None)
            self._logger.debug("schema_created")
            # Compile check; steady-state calls reuse asyncpg's per-connection cache
            await prepare_statements(conn, timeout=None)
            self._logger.debug("statements_prepared")
        self._ready = True

    async def _ensure_ready(self) -> None:
        """Finish the bootstrap a degraded store skipped at construction."""
        self._require_open()
        if self._ready:
            return
        async with self._bootstrap_lock:
            self._require_open()
            if self._ready:
                return
            await self._pool.connect()
            await self._bootstrap()
            self._logger.info("store_recovered")

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        await self._ensure_ready()
        async with self._pool.acquire() as conn:
            yield conn

    # -------------------------------------------------------------------------
    # Metric Operations
    # -------------------------------------------------------------------------

    async def _upsert(self, operation: str, update: MetricUpdate) -> None:
        params = update.to_db_params()

        async def attempt() -> None:
            async with self._connection() as conn:
                await conn.execute(UPSERT_QUERY, *params)

        await self._retry.run(operation, attempt, name=update.name)

    async def set_gauge(self, name: str, value: float) -> None:
        """Store ``value`` as the gauge ``name`` (last write wins)."""
        await self._upsert("set_gauge", MetricUpdate(name, MetricType.GAUGE, value=value))

    async def add_counter(self, name: str, delta: int) -> None:
        """Add ``delta`` to the counter ``name``, creating it at ``delta``."""
        await self._upsert("add_counter", MetricUpdate(name, MetricType.COUNTER, delta=delta))

    async def _fetchval(self, operation: str, query: str, name: str) -> Any:
        async def attempt() -> Any:
            async with self._connection() as conn:
                return await conn.fetchval(query, name)

        return await self._retry.run(operation, attempt, name=name)

    async def get_gauge(self, name: str) -> float | None:
        """Current gauge value, or ``None`` if ``name`` has no gauge row."""
        return await self._fetchval("get_gauge", GET_GAUGE_QUERY, name)

    async def get_counter(self, name: str) -> int | None:
        """Accumulated counter total, or ``None`` if ``name`` has no counter row."""
        return await self._fetchval("get_counter", GET_COUNTER_QUERY, name)

    async def get_all(self) -> list[MetricRow]:
        """Every stored row, gauges and counters, in no particular order."""

        async def attempt() -> list[asyncpg.Record]:
            async with self._connection() as conn:
                return await conn.fetch(GET_ALL_QUERY)

        rows = await self._retry.run("get_all", attempt)
        return [MetricRow.from_db_row(row) for row in rows]

    async def update(self, update: MetricUpdate) -> MetricRow:
        """Apply one update and read back the value now stored.

        The write and the read-back are retried independently, so under
        concurrent writers the returned counter total may already include
        other increments.
        """
        if update.mtype is MetricType.COUNTER:
            await self._upsert("add_counter", update)
            total = await self.get_counter(update.name)
            return MetricRow(update.name, MetricType.COUNTER, delta=total or 0)

        await self._upsert("set_gauge", update)
        value = await self.get_gauge(update.name)
        return MetricRow(update.name, MetricType.GAUGE, value=value or 0.0)

    async def update_batch(self, updates: Iterable[MetricUpdate]) -> None:
        """Apply every update atomically in one transaction.

        Retry happens at the transaction level: on a connectivity fault the
        whole transaction is rolled back and started again per the schedule.
        """
        batch = list(updates)
        if not batch:
            return

        async def attempt() -> None:
            async with await self.new_tx() as tx:
                for update in batch:
                    await tx.apply(update)

        await self._retry.run("update_batch", attempt, count=len(batch))

    # -------------------------------------------------------------------------
    # Health, Transactions, Lifecycle
    # -------------------------------------------------------------------------

    async def ping(self, timeout: float | None = None) -> None:  # noqa: ASYNC109
        """Liveness check. Not retried.

        Raises:
            ConnectivityError: The database is unreachable.
            QueryError: The server rejected the check.
            StoreClosedError: The store has been closed.
        """
        self._require_open()
        try:
            await self._pool.connect()
            await self._pool.ping(timeout=timeout)
        except Exception as e:
            raise_store_error(e, "ping")

    async def new_tx(self) -> Transaction:
        """Borrow a connection and open a [Transaction][metricstore.core.transaction.Transaction] on it.

        The caller owns commit/rollback and ``close()``.
        """
        try:
            await self._ensure_ready()
        except Exception as e:
            raise_store_error(e, "new_tx")

        tx = await Transaction.begin(self._pool, timeout=self._config.timeouts.transaction)
        self._logger.debug("transaction_started")
        return tx

    async def close(self) -> None:
        """Release the pool and every connection (with its cached statements).

        Idempotent and final: every later operation raises
        [StoreClosedError][metricstore.core.exceptions.StoreClosedError]
        instead of reconnecting. Open transactions may still be closed
        afterwards. Release failures are collected into one
        [ShutdownError][metricstore.core.exceptions.ShutdownError].
        """
        self._closed = True
        errors: list[BaseException] = []
        try:
            await self._pool.close()
        except Exception as e:
            errors.append(e)
        self._ready = False

        if errors:
            self._logger.error("store_close_failed", errors=len(errors))
            raise ShutdownError("Failed to close store", errors)

    async def describe(self) -> str:
        """Diagnostic label naming the current database.

        Never raises: any failure yields a placeholder name instead. Connect,
        acquire and query share one ``timeouts.describe`` budget; a closed
        store answers with the placeholder without connecting.
        """
        name = None
        if self._closed:
            return f"MetricStore - {_INVALID_DATABASE_NAME}"
        try:
            async with asyncio.timeout(self._config.timeouts.describe):
                await self._pool.connect()
                async with self._pool.acquire() as conn:
                    name = await conn.fetchval(CURRENT_DATABASE_QUERY)
        except Exception as e:  # Diagnostic path: degrade to the placeholder
            self._logger.debug("describe_failed", error=str(e))

        return f"MetricStore - {name or _INVALID_DATABASE_NAME}"

    def get_middleware(self) -> Middleware:
        """Hook for the HTTP pipeline; the database store adds no behaviour."""

        @web.middleware
        async def storage_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
            return await handler(request)

        return storage_middleware

    async def __aenter__(self) -> Store:
        return await self.open()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"Store(pool={self._pool!r}, ready={self._ready})"
