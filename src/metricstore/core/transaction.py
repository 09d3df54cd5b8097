"""
Transactional counterpart of the store.

A [Transaction][metricstore.core.transaction.Transaction] owns one
connection borrowed from the pool, an open database transaction on it, and
its own [StatementSet][metricstore.core.statements.StatementSet] compiled on
that connection. Statements are never retried here: a transaction spans
several statements, so retry belongs one level up (roll back and start a
new transaction), as
[Store.update_batch()][metricstore.core.store.Store.update_batch] does.

A transaction is single-owner; it must not be shared between tasks.

Examples:
    ```python
    async with await store.new_tx() as tx:
        await tx.add_counter("hits", 1)
        await tx.set_gauge("temp", 21.5)
    # committed on clean exit, rolled back on exception, always closed
    ```
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from metricstore.models import MetricRow, MetricType, MetricUpdate

from .exceptions import ShutdownError, TransactionStateError
from .logger import Logger
from .retry import raise_store_error
from .statements import GET_ALL_QUERY, StatementSet, prepare_statements


if TYPE_CHECKING:
    from types import TracebackType

    import asyncpg

    from .pool import Pool


T = TypeVar("T")


class Transaction:
    """One unit of work on a borrowed connection.

    Build it with [Transaction.begin()][metricstore.core.transaction.Transaction.begin]
    (or ``Store.new_tx()``), then ``commit()`` or ``rollback()`` and finally
    ``close()`` -- or use it as an async context manager.
    """

    def __init__(
        self,
        pool: Pool,
        conn: asyncpg.Connection,
        db_transaction: asyncpg.transaction.Transaction,
        statements: StatementSet,
    ) -> None:
        self._pool = pool
        self._conn = conn
        self._db_transaction = db_transaction
        self._statements: StatementSet | None = statements
        self._finished = False
        self._closed = False
        self._logger = Logger("transaction")

    @classmethod
    async def begin(cls, pool: Pool, *, timeout: float | None) -> Transaction:  # noqa: ASYNC109
        """Borrow a connection, start a transaction and prepare its statements.

        Args:
            pool: A connected pool to borrow from.
            timeout: Budget in seconds for compiling the statement set.

        Raises:
            ConnectivityError: The connection could not be borrowed or was
                lost during setup.
            QueryError: A statement failed to compile.
        """
        try:
            conn = await pool.borrow()
        except Exception as e:
            raise_store_error(e, "new_tx")

        db_transaction = conn.transaction()
        try:
            await db_transaction.start()
            statements = await prepare_statements(conn, timeout=timeout)
        except Exception as e:
            await cls._abandon(pool, conn, db_transaction)
            raise_store_error(e, "new_tx")

        return cls(pool, conn, db_transaction, statements)

    @staticmethod
    async def _abandon(
        pool: Pool,
        conn: asyncpg.Connection,
        db_transaction: asyncpg.transaction.Transaction,
    ) -> None:
        """Best-effort cleanup after a failed setup; the setup error wins."""
        logger = Logger("transaction")
        try:
            if db_transaction.is_active():
                await db_transaction.rollback()
        except Exception as e:  # Setup already failed; that error is the one raised
            logger.warning("transaction_abandon_rollback_failed", error=str(e))
        try:
            await pool.release(conn)
        except Exception as e:  # Setup already failed; that error is the one raised
            logger.warning("transaction_abandon_release_failed", error=str(e))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_statements(self) -> StatementSet:
        if self._closed or self._statements is None:
            raise TransactionStateError("transaction is closed")
        if self._finished:
            raise TransactionStateError("transaction is already committed or rolled back")
        return self._statements

    async def _call(self, operation: str, attempt: Callable[[], Awaitable[T]]) -> T:
        try:
            return await attempt()
        except Exception as e:
            raise_store_error(e, operation)

    # -------------------------------------------------------------------------
    # Metric Operations
    # -------------------------------------------------------------------------

    async def set_gauge(self, name: str, value: float) -> None:
        await self.apply(MetricUpdate(name, MetricType.GAUGE, value=value))

    async def add_counter(self, name: str, delta: int) -> None:
        await self.apply(MetricUpdate(name, MetricType.COUNTER, delta=delta))

    async def apply(self, update: MetricUpdate) -> None:
        """Upsert a single validated update inside this transaction."""
        statements = self._require_statements()
        params = update.to_db_params()
        operation = "tx_add_counter" if update.mtype is MetricType.COUNTER else "tx_set_gauge"
        await self._call(operation, lambda: statements.upsert.fetch(*params))

    async def get_gauge(self, name: str) -> float | None:
        """Gauge value as seen by this transaction, or ``None`` if absent."""
        statements = self._require_statements()
        return await self._call("tx_get_gauge", lambda: statements.get_gauge.fetchval(name))

    async def get_counter(self, name: str) -> int | None:
        """Counter total as seen by this transaction, or ``None`` if absent."""
        statements = self._require_statements()
        return await self._call("tx_get_counter", lambda: statements.get_counter.fetchval(name))

    async def get_all(self) -> list[MetricRow]:
        self._require_statements()
        rows = await self._call("tx_get_all", lambda: self._conn.fetch(GET_ALL_QUERY))
        return [MetricRow.from_db_row(row) for row in rows]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def commit(self) -> None:
        self._require_statements()
        try:
            await self._call("tx_commit", self._db_transaction.commit)
        finally:
            self._finished = True
        self._logger.debug("transaction_committed")

    async def rollback(self) -> None:
        self._require_statements()
        try:
            await self._call("tx_rollback", self._db_transaction.rollback)
        finally:
            self._finished = True
        self._logger.debug("transaction_rolled_back")

    async def close(self) -> None:
        """Roll back if still open, drop the statements, return the connection.

        Idempotent and independent of the store's own ``close()``. Every
        failure is collected into a single
        [ShutdownError][metricstore.core.exceptions.ShutdownError].
        """
        if self._closed:
            return

        errors: list[BaseException] = []
        if not self._finished:
            try:
                await self._db_transaction.rollback()
            except Exception as e:
                errors.append(e)
            self._finished = True

        # Prepared statements die with their connection's session state
        self._statements = None
        try:
            await self._pool.release(self._conn)
        except Exception as e:
            errors.append(e)
        self._closed = True

        if errors:
            self._logger.error("transaction_close_failed", errors=len(errors))
            raise ShutdownError("Failed to close transaction", errors)
        self._logger.debug("transaction_closed")

    @property
    def is_finished(self) -> bool:
        """True once committed or rolled back."""
        return self._finished

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> Transaction:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Commit on clean exit; otherwise ``close()`` rolls back. Always closes.

        When the block or the commit failed, close failures are only logged
        so the original exception reaches the caller.
        """
        if exc_type is None and not self._finished and not self._closed:
            try:
                await self.commit()
            except BaseException:
                await self._close_quietly()
                raise
        if exc_type is None:
            await self.close()
        else:
            await self._close_quietly()

    async def _close_quietly(self) -> None:
        try:
            await self.close()
        except ShutdownError as e:
            self._logger.warning("transaction_close_failed", error=str(e))

    def __repr__(self) -> str:
        state = "closed" if self._closed else "finished" if self._finished else "active"
        return f"Transaction(state={state})"

