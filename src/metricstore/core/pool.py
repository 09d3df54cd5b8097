"""
Async PostgreSQL connection pool built on asyncpg.

Owns the ``asyncpg.Pool`` used by the [Store][metricstore.core.store.Store]:
configuration, connect/close lifecycle, scoped acquisition, and borrowing a
connection for the lifetime of a
[Transaction][metricstore.core.transaction.Transaction].

The pool itself does not retry. Connect failures surface as
``ConnectionError`` (an ``OSError``), which the
[error classifier][metricstore.core.retry.classify] treats as a transport
fault, so the store's retry schedule covers a database that is not up yet.

Examples:
    ```python
    pool = Pool.from_yaml("config.yaml")

    async with pool:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    ```
"""

from __future__ import annotations

import asyncio
import os
from contextlib import AbstractAsyncContextManager
from typing import Any, cast

import asyncpg
from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator, model_validator

from .logger import Logger
from .yaml import load_yaml


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """PostgreSQL connection parameters.

    The password is loaded from the environment variable named by
    ``password_env`` (default: ``DB_PASSWORD``) unless passed explicitly.
    It is a ``SecretStr`` and never appears in reprs or serialized output.
    """

    host: str = Field(default="localhost", min_length=1, description="Database hostname")
    port: int = Field(default=5432, ge=1, le=65535, description="Database port")
    database: str = Field(default="metrics", min_length=1, description="Database name")
    user: str = Field(default="metrics", min_length=1, description="Database user")
    password_env: str = Field(
        default="DB_PASSWORD",  # pragma: allowlist secret
        min_length=1,
        description="Environment variable name for database password",
    )
    password: SecretStr = Field(description="Database password (loaded from password_env)")

    @model_validator(mode="before")
    @classmethod
    def resolve_password(cls, data: Any) -> Any:
        """Resolve the database password from the environment variable."""
        if isinstance(data, dict) and data.get("password") is None:
            env_var = data.get("password_env", "DB_PASSWORD")  # pragma: allowlist secret
            value = os.getenv(env_var)
            if not value:
                raise ValueError(f"{env_var} environment variable not set")
            data = {**data, "password": SecretStr(value)}
        return data


class PoolLimitsConfig(BaseModel):
    """Connection pool size, recycling and statement cache limits.

    Note:
        ``statement_cache_size`` is the number of prepared statements asyncpg
        keeps per connection. The store's three queries are compiled once per
        pooled connection and reused from this cache, so it must hold at
        least one statement.
    """

    min_size: int = Field(default=1, ge=0, le=100, description="Minimum connections")
    max_size: int = Field(default=10, ge=1, le=200, description="Maximum connections")
    max_queries: int = Field(default=50_000, ge=100, description="Queries before recycling")
    max_inactive_connection_lifetime: float = Field(
        default=300.0, ge=0.0, description="Idle timeout (seconds)"
    )
    statement_cache_size: int = Field(
        default=100, ge=1, description="Prepared statements cached per connection"
    )

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int, info: ValidationInfo) -> int:
        """Ensure max_size >= min_size."""
        min_size = info.data.get("min_size", 1)
        if v < min_size:
            raise ValueError(f"max_size ({v}) must be >= min_size ({min_size})")
        return v


class PoolTimeoutsConfig(BaseModel):
    """Timeout settings for pool operations (in seconds)."""

    connect: float = Field(default=10.0, ge=0.1, description="Connection establishment timeout")
    acquisition: float = Field(default=10.0, ge=0.1, description="Connection acquisition timeout")
    close: float = Field(
        default=10.0,
        ge=0.1,
        description="Graceful close budget before remaining connections are terminated",
    )


class ServerSettingsConfig(BaseModel):
    """PostgreSQL session settings sent with every pooled connection.

    ``statement_timeout`` is in milliseconds (PostgreSQL convention); ``0``
    disables it.
    """

    application_name: str = Field(default="metricstore", description="Application name")
    timezone: str = Field(default="UTC", description="Timezone")
    statement_timeout: int = Field(
        default=30_000, ge=0, description="Max query execution time in milliseconds (0=unlimited)"
    )


class PoolConfig(BaseModel):
    """Aggregate configuration for the connection pool."""

    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    timeouts: PoolTimeoutsConfig = Field(default_factory=PoolTimeoutsConfig)
    server_settings: ServerSettingsConfig = Field(default_factory=ServerSettingsConfig)


# ---------------------------------------------------------------------------
# Pool Class
# ---------------------------------------------------------------------------


class Pool:
    """Async PostgreSQL connection pool manager.

    Created disconnected; call [connect()][metricstore.core.pool.Pool.connect]
    or use it as an async context manager. ``connect()`` is idempotent, so
    the store calls it again on every attempt while the database has not
    been reachable yet.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        """Initialize the pool with optional configuration.

        Args:
            config: Pool configuration. If not provided, uses defaults
                which read ``DB_PASSWORD`` from the environment.
        """
        self._config = config or PoolConfig()
        self._pool: asyncpg.Pool | None = None
        self._is_connected: bool = False
        self._connection_lock = asyncio.Lock()
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str) -> Pool:
        """Create a Pool from a YAML configuration file (not yet connected)."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Pool:
        """Create a Pool from a dictionary matching ``PoolConfig`` fields."""
        return cls(config=PoolConfig(**config_dict))

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the asyncpg pool.

        Guarded by an internal lock so concurrent callers create at most
        one pool. Returns immediately if already connected.

        Raises:
            ConnectionError: If the server cannot be reached (refused,
                unresolvable host, timeout).
            asyncpg.PostgresError: If the server rejects the session
                (e.g. bad credentials, unknown database).
        """
        async with self._connection_lock:
            if self._is_connected:
                return

            db = self._config.database
            limits = self._config.limits
            self._logger.info(
                "connection_starting", host=db.host, port=db.port, database=db.database
            )

            try:
                self._pool = await asyncpg.create_pool(
                    host=db.host,
                    port=db.port,
                    database=db.database,
                    user=db.user,
                    password=db.password.get_secret_value(),
                    min_size=limits.min_size,
                    max_size=limits.max_size,
                    max_queries=limits.max_queries,
                    max_inactive_connection_lifetime=limits.max_inactive_connection_lifetime,
                    statement_cache_size=limits.statement_cache_size,
                    timeout=self._config.timeouts.connect,
                    server_settings={
                        "application_name": self._config.server_settings.application_name,
                        "timezone": self._config.server_settings.timezone,
                        "statement_timeout": str(self._config.server_settings.statement_timeout),
                    },
                )
            except (OSError, TimeoutError) as e:
                self._logger.error("connection_failed", error=str(e))
                raise ConnectionError(f"Failed to connect to {db.host}:{db.port}: {e}") from e

            self._is_connected = True
            self._logger.info("connection_established")

    async def close(self) -> None:
        """Close the pool and release all connections.

        ``asyncpg.Pool.close()`` waits for every acquired connection to come
        back, including ones still borrowed by open transactions. After
        ``timeouts.close`` seconds the remaining connections are terminated
        instead, so closing never waits on a borrower.

        Idempotent. Internal state is reset even if the underlying close
        raises; the exception still propagates.
        """
        async with self._connection_lock:
            if self._pool is not None:
                try:
                    try:
                        async with asyncio.timeout(self._config.timeouts.close):
                            await self._pool.close()
                    except TimeoutError:
                        self._logger.warning(
                            "connection_close_timeout", timeout_s=self._config.timeouts.close
                        )
                        self._pool.terminate()
                    self._logger.info("connection_closed")
                finally:
                    self._pool = None
                    self._is_connected = False

    # -------------------------------------------------------------------------
    # Connection Acquisition
    # -------------------------------------------------------------------------

    def _require_pool(self) -> asyncpg.Pool:
        if not self._is_connected or self._pool is None:
            raise RuntimeError("Pool not connected. Call connect() first.")
        return self._pool

    def acquire(self) -> AbstractAsyncContextManager[asyncpg.Connection]:
        """Acquire a connection, returned to the pool when the context exits.

        Raises:
            RuntimeError: If the pool has not been connected yet.
        """
        pool = self._require_pool()
        # asyncpg's PoolAcquireContext is duck-type compatible with AbstractAsyncContextManager
        return cast(
            "AbstractAsyncContextManager[asyncpg.Connection]",
            pool.acquire(timeout=self._config.timeouts.acquisition),
        )

    async def borrow(self) -> asyncpg.Connection:
        """Take a connection out of the pool until [release()][metricstore.core.pool.Pool.release].

        Used for transactions, whose connection outlives a single ``async with``.
        """
        pool = self._require_pool()
        return await pool.acquire(timeout=self._config.timeouts.acquisition)

    async def release(self, conn: asyncpg.Connection) -> None:
        """Return a borrowed connection to the pool.

        A no-op when the pool has already been closed, since
        [close()][metricstore.core.pool.Pool.close] terminates any connection
        still borrowed once ``timeouts.close`` runs out.
        """
        if self._pool is None:
            return
        await self._pool.release(conn, timeout=self._config.timeouts.acquisition)

    async def ping(self, timeout: float | None = None) -> None:  # noqa: ASYNC109
        """Round-trip ``SELECT 1`` on a pooled connection; raises on failure."""
        async with self.acquire() as conn:
            await conn.fetchval("SELECT 1", timeout=timeout)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """Whether the asyncpg pool has been created."""
        return self._is_connected

    @property
    def config(self) -> PoolConfig:
        """The pool configuration (read-only)."""
        return self._config

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._config.database
        return f"Pool(host={db.host}, database={db.database}, connected={self._is_connected})"
