"""Binding tag line-items to concrete physical instances."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from .errors import InsufficientInstancesError, InvalidQuantityError
from .metrics import ALLOCATION_SIZE

_CENT = Decimal("0.01")


class SelectionMethod(str, Enum):
    FIFO = "fifo"
    COST_BASED = "cost_based"
    MANUAL = "manual"


class CostOrder(str, Enum):
    LOWEST = "lowest"
    HIGHEST = "highest"


@dataclass(frozen=True)
class InstanceRecord:
    """One physical unit of a SKU as seen by the allocator."""

    id: int
    sku: str
    acquisition_date: datetime
    acquisition_cost: Decimal
    location: str = "HQ"
    tag_item_id: int | None = None

    @property
    def is_available(self) -> bool:
        return self.tag_item_id is None


@dataclass(frozen=True)
class Allocation:
    sku: str
    method: SelectionMethod
    instance_ids: tuple[int, ...]
    total_cost: Decimal

    @property
    def quantity(self) -> int:
        return len(self.instance_ids)


@dataclass(frozen=True)
class CostSummary:
    count: int
    average_cost: Decimal
    lowest_cost: Decimal
    highest_cost: Decimal
    total_value: Decimal
    oldest_date: datetime
    newest_date: datetime


@dataclass(frozen=True)
class CostBucket:
    unit_cost: Decimal
    count: int
    oldest_date: datetime
    newest_date: datetime
    locations: tuple[str, ...]


def _fifo_key(instance: InstanceRecord) -> tuple[datetime, int]:
    return (instance.acquisition_date, instance.id)


class InstanceAllocator:
    """Select available instances of a SKU for a requested quantity.

    ``cost_order`` decides whether cost-based selection favours the cheapest
    or the most expensive units. Cost ties fall back to acquisition order and
    then to instance id, so every selection is deterministic.
    """

    def __init__(self, *, cost_order: CostOrder = CostOrder.LOWEST) -> None:
        self.cost_order = cost_order

    def _cost_key(self, instance: InstanceRecord) -> tuple[Decimal, datetime, int]:
        cost = instance.acquisition_cost
        if self.cost_order is CostOrder.HIGHEST:
            cost = -cost
        return (cost, instance.acquisition_date, instance.id)

    def allocate(
        self,
        sku: str,
        quantity: int,
        instances: Iterable[InstanceRecord],
        method: SelectionMethod = SelectionMethod.FIFO,
        *,
        instance_ids: Sequence[int] = (),
    ) -> Allocation:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            msg = f"Allocation quantity for SKU {sku} must be a positive integer"
            raise InvalidQuantityError(msg, sku=sku, value=quantity)

        candidates = [item for item in instances if item.sku == sku and item.is_available]

        if method is SelectionMethod.MANUAL:
            selected = self._validate_manual(sku, quantity, candidates, instance_ids)
        else:
            if len(candidates) < quantity:
                raise InsufficientInstancesError(sku, requested=quantity, available=len(candidates))
            key = _fifo_key if method is SelectionMethod.FIFO else self._cost_key
            selected = sorted(candidates, key=key)[:quantity]

        ALLOCATION_SIZE.labels(method=method.value).observe(len(selected))
        return Allocation(
            sku=sku,
            method=method,
            instance_ids=tuple(item.id for item in selected),
            total_cost=sum((item.acquisition_cost for item in selected), Decimal("0")),
        )

    @staticmethod
    def _validate_manual(
        sku: str,
        quantity: int,
        candidates: list[InstanceRecord],
        instance_ids: Sequence[int],
    ) -> list[InstanceRecord]:
        if len(instance_ids) != quantity:
            msg = f"Manual selection for SKU {sku} lists {len(instance_ids)} instances, expected {quantity}"
            raise InvalidQuantityError(msg, sku=sku, value=len(instance_ids), expected=quantity)
        duplicates = sorted(item_id for item_id, seen in Counter(instance_ids).items() if seen > 1)
        if duplicates:
            msg = f"Manual selection for SKU {sku} repeats instances {duplicates}"
            raise InvalidQuantityError(msg, sku=sku, duplicates=duplicates)

        by_id = {item.id: item for item in candidates}
        missing = [item_id for item_id in instance_ids if item_id not in by_id]
        if missing:
            raise InsufficientInstancesError(
                sku,
                requested=quantity,
                available=quantity - len(missing),
                unavailable_ids=missing,
            )
        return [by_id[item_id] for item_id in instance_ids]


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def cost_summary(instances: Iterable[InstanceRecord]) -> CostSummary | None:
    """Aggregate cost figures over available instances, or ``None`` if there are none."""

    available = [item for item in instances if item.is_available]
    if not available:
        return None
    costs = [item.acquisition_cost for item in available]
    dates = [item.acquisition_date for item in available]
    total = sum(costs, Decimal("0"))
    return CostSummary(
        count=len(available),
        average_cost=_quantize(total / len(available)),
        lowest_cost=min(costs),
        highest_cost=max(costs),
        total_value=total,
        oldest_date=min(dates),
        newest_date=max(dates),
    )


def cost_breakdown(instances: Iterable[InstanceRecord]) -> list[CostBucket]:
    """Group available instances by unit cost, cheapest first."""

    groups: dict[Decimal, list[InstanceRecord]] = {}
    for item in instances:
        if item.is_available:
            groups.setdefault(item.acquisition_cost, []).append(item)
    buckets = []
    for unit_cost in sorted(groups):
        members = groups[unit_cost]
        buckets.append(
            CostBucket(
                unit_cost=unit_cost,
                count=len(members),
                oldest_date=min(item.acquisition_date for item in members),
                newest_date=max(item.acquisition_date for item in members),
                locations=tuple(sorted({item.location for item in members})),
            )
        )
    return buckets
