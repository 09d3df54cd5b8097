r"""metricstore -- durable gauge and counter storage on PostgreSQL.

Layers import strictly downward:

```text
    core      Pool, Store, Transaction, retry, logging, metrics
     |
    models    Pure frozen dataclasses (zero I/O)
```

Note:
    Top-level imports (``from metricstore import Store``) are lazy and
    resolve on first access, so ``import metricstore`` does not pull in
    asyncpg or aiohttp.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("metricstore")

__all__ = [
    "ConnectivityError",
    "Logger",
    "MetricRow",
    "MetricStoreError",
    "MetricType",
    "MetricUpdate",
    "Pool",
    "PoolConfig",
    "QueryError",
    "RetryConfig",
    "Store",
    "StoreConfig",
    "Transaction",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "ConnectivityError": ("metricstore.core", "ConnectivityError"),
    "Logger": ("metricstore.core", "Logger"),
    "MetricStoreError": ("metricstore.core", "MetricStoreError"),
    "Pool": ("metricstore.core", "Pool"),
    "PoolConfig": ("metricstore.core", "PoolConfig"),
    "QueryError": ("metricstore.core", "QueryError"),
    "RetryConfig": ("metricstore.core", "RetryConfig"),
    "Store": ("metricstore.core", "Store"),
    "StoreConfig": ("metricstore.core", "StoreConfig"),
    "Transaction": ("metricstore.core", "Transaction"),
    "MetricRow": ("metricstore.models", "MetricRow"),
    "MetricType": ("metricstore.models", "MetricType"),
    "MetricUpdate": ("metricstore.models", "MetricUpdate"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'metricstore' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
