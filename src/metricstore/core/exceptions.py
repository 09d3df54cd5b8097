"""metricstore exception hierarchy.

Typed exceptions let callers tell a transient connectivity fault (worth
retrying later) from a permanent query fault, without catching bare
``Exception``. ``CancelledError`` is never wrapped.

Exception hierarchy:

```text
MetricStoreError (base -- never raised directly)
├── ConfigurationError         -- config validation, missing env, bad YAML
└── DatabaseError              -- store/transaction failures
    ├── ConnectivityError      -- transient: retry schedule exhausted
    ├── QueryError             -- permanent: bad SQL, constraint violation
    ├── BootstrapError         -- schema creation / statement compile failed
    ├── ShutdownError          -- one or more resources failed to release
    ├── StoreClosedError       -- operation on a store after close()
    └── TransactionStateError  -- transaction already finished or closed
```

See Also:
    [RetryPolicy][metricstore.core.retry.RetryPolicy]: Raises
        [ConnectivityError][metricstore.core.exceptions.ConnectivityError]
        and [QueryError][metricstore.core.exceptions.QueryError].
    [Store][metricstore.core.store.Store]: Raises
        [BootstrapError][metricstore.core.exceptions.BootstrapError] during
        construction and
        [ShutdownError][metricstore.core.exceptions.ShutdownError] on close.
"""

from __future__ import annotations

from collections.abc import Sequence


class MetricStoreError(Exception):
    """Base exception for all metricstore errors.

    Never raised directly -- always use a specific subclass.
    """


class ConfigurationError(MetricStoreError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseError(MetricStoreError):
    """Base for all database-related errors."""


class ConnectivityError(DatabaseError):
    """Transient database error that outlived the retry schedule.

    Raised after every attempt hit a transport fault or a PostgreSQL
    connection-exception status. The cause is chained as ``__cause__``.
    """


class QueryError(DatabaseError):
    """Permanent database error: bad SQL, constraint violation, data type.

    Callers should NOT retry -- the query itself is wrong.
    """


class BootstrapError(DatabaseError):
    """The schema or the prepared statements could not be created.

    Only raised once the database answered the liveness check; an
    unreachable database yields a degraded store instead.
    """


class TransactionStateError(DatabaseError):
    """A statement was issued on a committed, rolled back or closed transaction."""


class StoreClosedError(DatabaseError):
    """An operation was issued on a store after ``close()``.

    A closed store never reconnects; build a new one instead.
    """


class ShutdownError(DatabaseError):
    """One or more resources failed to release.

    Every failure is collected rather than stopping at the first.

    Attributes:
        errors: The individual release failures, in release order.
    """

    def __init__(self, message: str, errors: Sequence[BaseException]) -> None:
        super().__init__(message)
        self.errors: tuple[BaseException, ...] = tuple(errors)

    def __str__(self) -> str:
        details = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        return f"{self.args[0]} ({details})" if details else str(self.args[0])
