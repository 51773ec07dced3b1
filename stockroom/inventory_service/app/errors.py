"""Domain errors raised by the inventory accounting core."""

from __future__ import annotations

from typing import Any


class InventoryError(Exception):
    """Base class for recoverable inventory accounting errors."""

    code = "inventory_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class InvalidQuantityError(InventoryError):
    """Quantity input is negative, non-integer or out of range."""

    code = "invalid_quantity"


class NoChangeError(InventoryError):
    """An adjust request would not change any line-item."""

    code = "no_change"


class NoOpError(InventoryError):
    """A remove request asks to remove nothing."""

    code = "no_op"


class InsufficientAvailabilityError(InventoryError):
    code = "insufficient_availability"

    def __init__(self, sku: str, *, requested: int, available: int) -> None:
        super().__init__(
            f"SKU {sku} has {available} available, requested {requested}",
            sku=sku,
            requested=requested,
            available=available,
            shortage=requested - available,
        )
        self.sku = sku
        self.requested = requested
        self.available = available


class InsufficientInstancesError(InventoryError):
    code = "insufficient_instances"

    def __init__(
        self,
        sku: str,
        *,
        requested: int,
        available: int,
        unavailable_ids: list[int] | None = None,
    ) -> None:
        shortfall = requested - available
        super().__init__(
            f"SKU {sku} has {available} available instances, requested {requested} (short {shortfall})",
            sku=sku,
            requested=requested,
            available=available,
            shortfall=shortfall,
            unavailable_ids=unavailable_ids or [],
        )
        self.sku = sku
        self.shortfall = shortfall


class OverRemovalError(InventoryError):
    code = "over_removal"

    def __init__(self, item_id: int, *, requested: int, remaining: int) -> None:
        super().__init__(
            f"Cannot remove {requested} from line-item {item_id}; only {remaining} remaining",
            item_id=item_id,
            requested=requested,
            remaining=remaining,
        )
        self.item_id = item_id


class InsufficientStockError(InventoryError):
    """Total stock cannot shrink below what is already claimed."""

    code = "insufficient_stock"

    def __init__(self, sku: str, *, requested_total: int, tagged_total: int) -> None:
        super().__init__(
            f"SKU {sku} total cannot drop to {requested_total}; {tagged_total} units are tagged",
            sku=sku,
            requested_total=requested_total,
            tagged_total=tagged_total,
        )
        self.sku = sku


class WorkflowStateError(InventoryError):
    code = "workflow_state"


class TagStateError(InventoryError):
    code = "tag_state"


class ConcurrentModificationError(InventoryError):
    code = "concurrent_modification"

    def __init__(self, sku: str) -> None:
        super().__init__(f"Inventory for SKU {sku} changed concurrently; re-read and retry", sku=sku)
        self.sku = sku


class NotFoundError(InventoryError):
    code = "not_found"


class CostVisibilityError(InventoryError):
    """The caller may not see acquisition costs."""

    code = "cost_hidden"
