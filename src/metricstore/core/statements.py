"""
Schema bootstrap and the prepared statement set.

The ``metrics`` table holds one row per ``(name, mtype)``. Writes always go
through a single upsert: a gauge write sends ``delta=0`` so the additive
merge leaves ``delta`` untouched, a counter write sends ``value=0.0`` and
relies on ``delta = metrics.delta + excluded.delta`` to accumulate.

[prepare_statements()][metricstore.core.statements.prepare_statements] is
the one builder for both the store and transactions: it compiles the three
queries on whichever connection it is handed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    import asyncpg


SCHEMA = """CREATE TABLE IF NOT EXISTS metrics (
    "_id" SERIAL,
    "name" TEXT NOT NULL,
    "mtype" VARCHAR(12) NOT NULL DEFAULT 'gauge',
    "delta" BIGINT NOT NULL DEFAULT 0,
    "value" DOUBLE PRECISION NOT NULL DEFAULT 0.0,
    CONSTRAINT unique_id_mtype UNIQUE (name, mtype),
    PRIMARY KEY (_id)
)"""

GET_GAUGE_QUERY = "SELECT value FROM metrics WHERE name = $1 AND mtype = 'gauge'"

GET_COUNTER_QUERY = "SELECT delta FROM metrics WHERE name = $1 AND mtype = 'counter'"

UPSERT_QUERY = """INSERT INTO metrics (name, mtype, delta, value)
    VALUES ($1, $2, $3, $4)
ON CONFLICT (name, mtype) DO
    UPDATE SET delta = metrics.delta + excluded.delta, value = excluded.value"""

GET_ALL_QUERY = "SELECT name, mtype, delta, value FROM metrics"

CURRENT_DATABASE_QUERY = "SELECT current_database()"


@dataclass(frozen=True, slots=True)
class StatementSet:
    """The three compiled queries, bound to the connection that prepared them.

    Attributes:
        get_gauge: ``$1=name`` -> ``value`` of the gauge row.
        get_counter: ``$1=name`` -> ``delta`` of the counter row.
        upsert: ``($1=name, $2=mtype, $3=delta, $4=value)``.
    """

    get_gauge: asyncpg.prepared_stmt.PreparedStatement
    get_counter: asyncpg.prepared_stmt.PreparedStatement
    upsert: asyncpg.prepared_stmt.PreparedStatement


async def create_schema(conn: asyncpg.Connection, *, timeout: float | None) -> None:  # noqa: ASYNC109
    """Create the ``metrics`` table if it does not exist yet."""
    await conn.execute(SCHEMA, timeout=timeout)


async def prepare_statements(
    conn: asyncpg.Connection,
    *,
    timeout: float | None,  # noqa: ASYNC109
) -> StatementSet:
    """Compile the three queries on ``conn`` within ``timeout`` seconds overall.

    Raises:
        TimeoutError: The budget ran out before all three compiled.
        asyncpg.PostgresError: A query failed to compile (e.g. the table
            does not exist).
    """
    async with asyncio.timeout(timeout):
        get_gauge = await conn.prepare(GET_GAUGE_QUERY)
        get_counter = await conn.prepare(GET_COUNTER_QUERY)
        upsert = await conn.prepare(UPSERT_QUERY)
    return StatementSet(get_gauge=get_gauge, get_counter=get_counter, upsert=upsert)
