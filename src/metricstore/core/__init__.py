"""Storage engine for gauges and counters on PostgreSQL.

Depends only on ``metricstore.models``.

Attributes:
    Store: Non-transactional facade with bounded retry.
        See [Store][metricstore.core.store.Store].
    Transaction: Unit of work on one borrowed connection, never retried
        internally. See [Transaction][metricstore.core.transaction.Transaction].
    Pool: asyncpg connection pool wrapper. See [Pool][metricstore.core.pool.Pool].
    RetryPolicy: Fixed backoff schedule around one operation, driven by
        [classify()][metricstore.core.retry.classify].
    StatementSet: The three compiled queries bound to one connection.
    Logger: Structured logger supporting key=value and JSON output modes.

Examples:
    ```python
    from metricstore.core import Store

    async with Store.from_yaml("config.yaml") as store:
        await store.add_counter("hits", 1)
    ```
"""

from .exceptions import (
    BootstrapError,
    ConfigurationError,
    ConnectivityError,
    DatabaseError,
    MetricStoreError,
    QueryError,
    ShutdownError,
    StoreClosedError,
    TransactionStateError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolTimeoutsConfig,
    ServerSettingsConfig,
)
from .retry import Classification, RetryConfig, RetryPolicy, classify
from .statements import StatementSet, create_schema, prepare_statements
from .store import Store, StoreConfig, StoreTimeoutsConfig
from .transaction import Transaction
from .yaml import load_yaml


__all__ = [
    "BootstrapError",
    "Classification",
    "ConfigurationError",
    "ConnectivityError",
    "DatabaseConfig",
    "DatabaseError",
    "Logger",
    "MetricStoreError",
    "Pool",
    "PoolConfig",
    "PoolLimitsConfig",
    "PoolTimeoutsConfig",
    "QueryError",
    "RetryConfig",
    "RetryPolicy",
    "ServerSettingsConfig",
    "ShutdownError",
    "StatementSet",
    "Store",
    "StoreClosedError",
    "StoreConfig",
    "StoreTimeoutsConfig",
    "StructuredFormatter",
    "Transaction",
    "TransactionStateError",
    "classify",
    "create_schema",
    "format_kv_pairs",
    "load_yaml",
    "prepare_statements",
]
