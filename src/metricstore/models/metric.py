"""Metric rows and write requests for the ``metrics`` table.

Pure data containers with zero I/O. [MetricRow][metricstore.models.metric.MetricRow]
mirrors one persisted row; [MetricUpdate][metricstore.models.metric.MetricUpdate]
is a single validated write consumed by ``Store.update()`` and
``Store.update_batch()``.

A name owns at most one gauge row and one counter row: ``(name, mtype)`` is
the uniqueness key, so the two kinds never interfere.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, NamedTuple

from ._validation import validate_float, validate_int64, validate_name


class MetricType(StrEnum):
    """Discriminator stored in the ``mtype`` column.

    Attributes:
        GAUGE: Last-write-wins float value.
        COUNTER: Additively accumulated integer delta.
    """

    GAUGE = "gauge"
    COUNTER = "counter"


class MetricDbParams(NamedTuple):
    """Positional parameters for the upsert statement ``($1, $2, $3, $4)``."""

    name: str
    mtype: str
    delta: int
    value: float


@dataclass(frozen=True, slots=True)
class MetricRow:
    """A single row of the ``metrics`` table.

    Attributes:
        name: Metric identifier.
        mtype: Gauge or counter.
        delta: Accumulated counter value (0 for gauges).
        value: Last gauge value (0.0 for counters).
    """

    name: str
    mtype: MetricType
    delta: int = 0
    value: float = 0.0

    def __post_init__(self) -> None:
        validate_name(self.name, "name")
        object.__setattr__(self, "mtype", MetricType(self.mtype))
        validate_int64(self.delta, "delta")
        validate_float(self.value, "value")
        object.__setattr__(self, "value", float(self.value))

    @classmethod
    def from_db_row(cls, row: Any) -> MetricRow:
        """Build from an ``asyncpg.Record`` (or any mapping) with the four columns."""
        return cls(
            name=row["name"],
            mtype=MetricType(row["mtype"]),
            delta=row["delta"],
            value=row["value"],
        )


@dataclass(frozen=True, slots=True)
class MetricUpdate:
    """One write request: set a gauge or increment a counter.

    Counters require an integer ``delta``; gauges require a real ``value``.
    The field that does not apply to the kind must be left as ``None``.

    Examples:
        ```python
        MetricUpdate("temp", MetricType.GAUGE, value=21.5)
        MetricUpdate("hits", MetricType.COUNTER, delta=1)
        ```
    """

    name: str
    mtype: MetricType
    delta: int | None = None
    value: float | None = None

    def __post_init__(self) -> None:
        validate_name(self.name, "name")
        mtype = MetricType(self.mtype)
        object.__setattr__(self, "mtype", mtype)

        if mtype is MetricType.COUNTER:
            if self.delta is None:
                raise ValueError("counter update requires delta")
            if self.value is not None:
                raise ValueError("counter update must not carry value")
            validate_int64(self.delta, "delta")
        else:
            if self.value is None:
                raise ValueError("gauge update requires value")
            if self.delta is not None:
                raise ValueError("gauge update must not carry delta")
            validate_float(self.value, "value")
            object.__setattr__(self, "value", float(self.value))

    def to_db_params(self) -> MetricDbParams:
        """Upsert parameters: gauges send ``delta=0``, counters send ``value=0.0``."""
        if self.mtype is MetricType.COUNTER:
            return MetricDbParams(self.name, self.mtype.value, self.delta or 0, 0.0)
        return MetricDbParams(self.name, self.mtype.value, 0, self.value or 0.0)
