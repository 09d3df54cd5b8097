"""
Prometheus collectors for store activity.

Module-level singletons (thread-safe), recorded by the
[RetryPolicy][metricstore.core.retry.RetryPolicy] around every store
operation. Exposition is left to the hosting process, which typically
already serves ``prometheus_client.generate_latest()``.

Collectors:
    OPERATIONS_TOTAL:            Completed operations by outcome
                                 (``success``, ``error``,
                                 ``connectivity_error``).
    RETRIES_TOTAL:               Backoff sleeps taken after a retriable fault.
    OPERATION_DURATION_SECONDS:  Wall time per operation, backoff included.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram


OPERATIONS_TOTAL = Counter(
    "metricstore_operations_total",
    "Store operations by final outcome",
    ["operation", "outcome"],
)

RETRIES_TOTAL = Counter(
    "metricstore_retries_total",
    "Retries taken after a retriable database fault",
    ["operation"],
)

# Buckets span a fast round-trip up to the default schedule's 9 s of backoff
OPERATION_DURATION_SECONDS = Histogram(
    "metricstore_operation_duration_seconds",
    "Duration of store operations in seconds, backoff included",
    ["operation"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)
