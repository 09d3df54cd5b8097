"""
Error classification and bounded retry for database operations.

Only faults that plausibly heal on their own are retried: transport errors
(``OSError``, ``TimeoutError``) and PostgreSQL statuses in the
connection-exception class ``08`` plus the server shutdown/startup codes
``57P01``-``57P03``. Constraint violations, malformed SQL, type errors and
driver misuse surface on the first attempt.

A read that finds no row is not an error at all: the store returns ``None``
and the policy never sees it.

Examples:
    ```python
    policy = RetryPolicy(RetryConfig(schedule=(1, 3, 5)))
    value = await policy.run("get_gauge", lambda: fetch_gauge("temp"))
    ```
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, NoReturn, TypeVar

import asyncpg
from pydantic import BaseModel, Field, field_validator

from .exceptions import ConnectivityError, MetricStoreError, QueryError
from .logger import Logger
from .metrics import OPERATION_DURATION_SECONDS, OPERATIONS_TOTAL, RETRIES_TOTAL


T = TypeVar("T")

_CONNECTION_EXCEPTION_CLASS = "08"
_SHUTDOWN_SQLSTATES = frozenset({"57P01", "57P02", "57P03"})


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class RetryConfig(BaseModel):
    """Backoff schedule for store operations.

    Each entry is the wait (seconds) after a failed attempt, so an operation
    runs at most ``len(schedule)`` times. No wait follows the final attempt:
    a persistent fault costs ``sum(schedule[:-1])`` seconds of sleep.
    """

    schedule: tuple[float, ...] = Field(
        default=(1.0, 3.0, 5.0),
        min_length=1,
        description="Wait in seconds between successive attempts",
    )

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        """Reject negative waits."""
        if any(delay < 0 for delay in v):
            raise ValueError("schedule entries must be >= 0")
        return v

    @property
    def max_attempts(self) -> int:
        return len(self.schedule)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Classification:
    """Verdict of [classify()][metricstore.core.retry.classify].

    Attributes:
        retriable: True when another attempt may succeed.
        detail: Short description for log lines; ``None`` when not retriable.
    """

    retriable: bool
    detail: str | None = None


def _describe(err: BaseException) -> str:
    sqlstate = getattr(err, "sqlstate", None)
    kind = f"{type(err).__name__}[{sqlstate}]" if sqlstate else type(err).__name__
    return f"{kind}: {err}"


def classify(err: BaseException | None) -> Classification:
    """Decide whether a failed database call is worth retrying."""
    if err is None:
        return Classification(retriable=False)

    if isinstance(err, OSError | TimeoutError):
        return Classification(retriable=True, detail=_describe(err))

    # Already classified by a transaction statement
    if isinstance(err, ConnectivityError):
        return Classification(retriable=True, detail=str(err))

    if isinstance(err, asyncpg.PostgresError):
        sqlstate = getattr(err, "sqlstate", None) or ""
        if sqlstate.startswith(_CONNECTION_EXCEPTION_CLASS) or sqlstate in _SHUTDOWN_SQLSTATES:
            return Classification(retriable=True, detail=_describe(err))

    return Classification(retriable=False)


def to_store_error(err: Exception, operation: str) -> Exception:
    """Map a raw database exception onto the package hierarchy.

    Retriable faults become
    [ConnectivityError][metricstore.core.exceptions.ConnectivityError],
    driver and server errors become
    [QueryError][metricstore.core.exceptions.QueryError]. Package errors and
    anything unrelated to the database are returned unchanged.
    """
    if isinstance(err, MetricStoreError):
        return err
    verdict = classify(err)
    if verdict.retriable:
        return ConnectivityError(f"{operation} failed: {verdict.detail}")
    if isinstance(err, asyncpg.PostgresError | asyncpg.InterfaceError):
        return QueryError(f"{operation} failed: {_describe(err)}")
    return err


def raise_store_error(err: Exception, operation: str) -> NoReturn:
    """Raise ``err`` mapped by [to_store_error()][metricstore.core.retry.to_store_error].

    The original exception is chained as ``__cause__`` when mapping applies;
    unmapped exceptions are re-raised as they are.
    """
    mapped = to_store_error(err, operation)
    if mapped is err:
        raise err
    raise mapped from err


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class RetryPolicy:
    """Runs one logical operation under a fixed backoff schedule.

    Every [run()][metricstore.core.retry.RetryPolicy.run] call starts a
    fresh attempt counter; retries never span logical calls. Backoff awaits
    in the calling task.
    """

    def __init__(self, config: RetryConfig | None = None, *, logger: Logger | None = None) -> None:
        self._config = config or RetryConfig()
        self._logger = logger or Logger("retry")

    @property
    def config(self) -> RetryConfig:
        return self._config

    async def run(
        self,
        operation: str,
        attempt: Callable[[], Awaitable[T]],
        **context: Any,
    ) -> T:
        """Await ``attempt()`` until it succeeds, fails permanently, or the schedule ends.

        Args:
            operation: Operation name for logs and metrics (e.g. ``"set_gauge"``).
            attempt: Zero-argument coroutine factory; called once per attempt.
            **context: Extra key=value pairs for log lines (e.g. ``name="hits"``).

        Returns:
            Whatever the successful attempt returned.

        Raises:
            ConnectivityError: Every attempt hit a retriable fault; the last
                one is chained as ``__cause__``.
            QueryError: A database error that is not retriable.
        """
        schedule = self._config.schedule
        started = time.monotonic()
        try:
            for number, delay in enumerate(schedule, start=1):
                try:
                    result = await attempt()
                except Exception as e:
                    verdict = classify(e)
                    if not verdict.retriable:
                        OPERATIONS_TOTAL.labels(operation=operation, outcome="error").inc()
                        raise_store_error(e, operation)

                    if number == len(schedule):
                        OPERATIONS_TOTAL.labels(
                            operation=operation, outcome="connectivity_error"
                        ).inc()
                        self._logger.error(
                            "operation_failed",
                            operation=operation,
                            attempts=number,
                            error=verdict.detail,
                            **context,
                        )
                        raise ConnectivityError(
                            f"{operation} failed after {number} attempts: {verdict.detail}"
                        ) from e

                    self._logger.warning(
                        "operation_retry",
                        operation=operation,
                        attempt=number,
                        delay_s=delay,
                        error=verdict.detail,
                        **context,
                    )
                    RETRIES_TOTAL.labels(operation=operation).inc()
                    await asyncio.sleep(delay)
                else:
                    OPERATIONS_TOTAL.labels(operation=operation, outcome="success").inc()
                    return result
        finally:
            OPERATION_DURATION_SECONDS.labels(operation=operation).observe(
                time.monotonic() - started
            )

        # RetryConfig guarantees a non-empty schedule
        raise RuntimeError("Unexpected state in RetryPolicy.run")
