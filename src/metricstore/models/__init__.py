"""Pure frozen dataclasses with zero I/O for stored metrics.

Every model uses ``@dataclass(frozen=True, slots=True)`` and validates in
``__post_init__`` so invalid instances never escape the constructor.

Attributes:
    MetricType: ``gauge`` / ``counter`` discriminator.
    MetricRow: One persisted row of the ``metrics`` table.
    MetricUpdate: One validated write request.
    MetricDbParams: Positional upsert parameters.
"""

from .metric import MetricDbParams, MetricRow, MetricType, MetricUpdate


__all__ = [
    "MetricDbParams",
    "MetricRow",
    "MetricType",
    "MetricUpdate",
]
