"""Prometheus metrics for the inventory service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram


LEDGER_CLAMPED_TOTAL: Final = Counter(
    "stockroom_ledger_clamped_total",
    "Number of availability reads clamped to zero after an invariant breach.",
)

TAG_OPERATIONS_TOTAL: Final = Counter(
    "stockroom_tag_operations_total",
    "Number of tag operations processed.",
    labelnames=("operation", "outcome"),
)

TAG_VALIDATION_FAILURES_TOTAL: Final = Counter(
    "stockroom_tag_validation_failures_total",
    "Number of tag mutations rejected by validation.",
    labelnames=("code",),
)

STOCK_MOVEMENTS_TOTAL: Final = Counter(
    "stockroom_stock_movements_total",
    "Units received into or removed from stock.",
    labelnames=("direction",),
)

ALLOCATION_SIZE: Final = Histogram(
    "stockroom_allocation_size",
    "Number of instances bound per allocation.",
    labelnames=("method",),
    buckets=(1, 2, 5, 10, 25, 50, 100, 250, 1000),
)
