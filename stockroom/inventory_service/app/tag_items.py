"""Validation of tag line-item adjustments, additions and removals.

Each validator inspects current state and a requested change, and either
returns the normalised change set or raises an :class:`InventoryError`
subclass without touching any state. Callers apply the result.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .allocation import SelectionMethod
from .errors import (
    InsufficientAvailabilityError,
    InvalidQuantityError,
    NoChangeError,
    NoOpError,
    NotFoundError,
    OverRemovalError,
)

AvailabilityLookup = Callable[[str], int]


@dataclass(frozen=True)
class LineItemState:
    """Current state of one persisted tag line-item."""

    id: int
    sku: str
    quantity: int
    remaining_quantity: int
    fulfilled_quantity: int = 0

    @property
    def open_quantity(self) -> int:
        """Largest remaining quantity the line-item may hold after fulfilment."""

        return self.quantity - self.fulfilled_quantity


@dataclass(frozen=True)
class NewLineItem:
    sku: str
    quantity: int
    selection_method: SelectionMethod = SelectionMethod.FIFO
    instance_ids: tuple[int, ...] = field(default=())


@dataclass(frozen=True)
class QuantityChange:
    item_id: int
    sku: str
    previous: int
    proposed: int

    @property
    def delta(self) -> int:
        return self.proposed - self.previous


@dataclass(frozen=True)
class Removal:
    item_id: int
    sku: str
    quantity: int
    remaining_after: int


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _lookup(items: Mapping[int, LineItemState], item_id: int) -> LineItemState:
    state = items.get(item_id)
    if state is None:
        msg = f"Line-item {item_id} does not belong to this tag"
        raise NotFoundError(msg, item_id=item_id)
    return state


def validate_adjust(
    items: Mapping[int, LineItemState],
    proposed: Mapping[int, Any],
    *,
    available: AvailabilityLookup | None = None,
) -> list[QuantityChange]:
    """Validate new ``remaining_quantity`` values and return the changed subset.

    Increases draw on availability again, so when ``available`` is given the
    summed increase per SKU must fit within it.
    """

    for item_id, value in proposed.items():
        if not _is_count(value) or value < 0:
            msg = f"Remaining quantity for line-item {item_id} must be a non-negative integer"
            raise InvalidQuantityError(msg, item_id=item_id, value=value)

    changes: list[QuantityChange] = []
    for item_id, value in proposed.items():
        state = _lookup(items, item_id)
        if value > state.open_quantity:
            msg = (
                f"Remaining quantity for line-item {item_id} cannot exceed its unfulfilled quantity "
                f"{state.open_quantity}"
            )
            raise InvalidQuantityError(
                msg,
                item_id=item_id,
                value=value,
                quantity=state.quantity,
                fulfilled=state.fulfilled_quantity,
            )
        if value != state.remaining_quantity:
            changes.append(
                QuantityChange(
                    item_id=item_id,
                    sku=state.sku,
                    previous=state.remaining_quantity,
                    proposed=value,
                )
            )

    if not changes:
        msg = "No line-item quantity differs from its current value"
        raise NoChangeError(msg)

    if available is not None:
        increases: dict[str, int] = defaultdict(int)
        for change in changes:
            if change.delta > 0:
                increases[change.sku] += change.delta
        for sku, increase in increases.items():
            free = available(sku)
            if increase > free:
                raise InsufficientAvailabilityError(sku, requested=increase, available=free)
    return changes


def validate_add(candidates: Sequence[NewLineItem], available: AvailabilityLookup) -> list[NewLineItem]:
    """Check that every candidate fits within current availability.

    Quantities for the same SKU within one batch are summed. The batch is
    accepted or rejected as a whole.
    """

    if not candidates:
        msg = "No line-items to add"
        raise NoOpError(msg)

    for candidate in candidates:
        if not _is_count(candidate.quantity) or candidate.quantity <= 0:
            msg = f"Quantity for SKU {candidate.sku} must be a positive integer"
            raise InvalidQuantityError(msg, sku=candidate.sku, value=candidate.quantity)

    requested: dict[str, int] = defaultdict(int)
    for candidate in candidates:
        requested[candidate.sku] += candidate.quantity
        free = available(candidate.sku)
        if requested[candidate.sku] > free:
            raise InsufficientAvailabilityError(
                candidate.sku,
                requested=requested[candidate.sku],
                available=free,
            )
    return list(candidates)


def validate_remove(items: Mapping[int, LineItemState], removals: Mapping[int, Any]) -> list[Removal]:
    """Validate per-line-item removal quantities and return the non-zero ones."""

    for item_id, value in removals.items():
        if not _is_count(value) or value < 0:
            msg = f"Removal quantity for line-item {item_id} must be a non-negative integer"
            raise InvalidQuantityError(msg, item_id=item_id, value=value)

    result: list[Removal] = []
    for item_id, value in removals.items():
        state = _lookup(items, item_id)
        if value > state.remaining_quantity:
            raise OverRemovalError(item_id, requested=value, remaining=state.remaining_quantity)
        if value:
            result.append(
                Removal(
                    item_id=item_id,
                    sku=state.sku,
                    quantity=value,
                    remaining_after=state.remaining_quantity - value,
                )
            )

    if not result:
        msg = "Every requested removal quantity is zero"
        raise NoOpError(msg)
    return result
