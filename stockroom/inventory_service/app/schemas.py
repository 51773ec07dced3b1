"""Pydantic schemas for inventory service."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator

from .allocation import SelectionMethod
from .ledger import TagKind
from .stock_status import StockStatus


def _strip_required(value: str, name: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        msg = f"{name} must be non-empty"
        raise ValueError(msg)
    return cleaned


class SkuCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0, alias="unitCost")
    understocked_threshold: NonNegativeInt | None = Field(default=None, alias="understockedThreshold")
    overstocked_threshold: NonNegativeInt | None = Field(default=None, alias="overstockedThreshold")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("code")
    @classmethod
    def _strip_code(cls, value: str) -> str:
        return _strip_required(value, "code")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _strip_required(value, "name")


class SkuUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    unit_cost: Decimal | None = Field(default=None, ge=0, alias="unitCost")
    understocked_threshold: NonNegativeInt | None = Field(default=None, alias="understockedThreshold")
    overstocked_threshold: NonNegativeInt | None = Field(default=None, alias="overstockedThreshold")

    model_config = ConfigDict(populate_by_name=True)


class SkuResponse(BaseModel):
    id: int
    code: str
    name: str
    unit_cost: Decimal | None = Field(default=None, alias="unitCost")
    understocked_threshold: int | None = Field(alias="understockedThreshold")
    overstocked_threshold: int | None = Field(alias="overstockedThreshold")
    status: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class SkuListResponse(BaseModel):
    items: list[SkuResponse]
    total: int


class StockReceive(BaseModel):
    quantity: int
    unit_cost: Decimal | None = Field(default=None, ge=0, alias="unitCost")
    acquired_at: datetime | None = Field(default=None, alias="acquiredAt")
    location: str = Field(default="HQ", min_length=1, max_length=128)
    supplier: str = Field(default="", max_length=255)
    reference_number: str = Field(default="", max_length=128, alias="referenceNumber")

    model_config = ConfigDict(populate_by_name=True)


class StockRemove(BaseModel):
    quantity: int


class CostSummaryResponse(BaseModel):
    count: int
    average_cost: Decimal = Field(alias="averageCost")
    lowest_cost: Decimal = Field(alias="lowestCost")
    highest_cost: Decimal = Field(alias="highestCost")
    total_value: Decimal = Field(alias="totalValue")
    oldest_date: datetime = Field(alias="oldestDate")
    newest_date: datetime = Field(alias="newestDate")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class CostBucketResponse(BaseModel):
    unit_cost: Decimal = Field(alias="unitCost")
    count: int
    oldest_date: datetime = Field(alias="oldestDate")
    newest_date: datetime = Field(alias="newestDate")
    locations: list[str]

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class InventoryResponse(BaseModel):
    sku: str
    name: str
    total_quantity: int = Field(alias="totalQuantity")
    tagged_quantity: int = Field(alias="taggedQuantity")
    available_quantity: int = Field(alias="availableQuantity")
    tagged_breakdown: dict[str, int] = Field(alias="taggedBreakdown")
    status: StockStatus
    understocked_threshold: int = Field(alias="understockedThreshold")
    overstocked_threshold: int = Field(alias="overstockedThreshold")
    last_movement_at: datetime | None = Field(default=None, alias="lastMovementAt")
    cost: CostSummaryResponse | None = None

    model_config = ConfigDict(populate_by_name=True)


class InventoryListResponse(BaseModel):
    items: list[InventoryResponse]
    total: int


class StockRemovalResponse(BaseModel):
    inventory: InventoryResponse
    removed_quantity: int = Field(alias="removedQuantity")
    removed_instance_ids: list[int] = Field(alias="removedInstanceIds")
    total_value_removed: Decimal | None = Field(default=None, alias="totalValueRemoved")
    average_cost_removed: Decimal | None = Field(default=None, alias="averageCostRemoved")

    model_config = ConfigDict(populate_by_name=True)


class InventoryEventResponse(BaseModel):
    type: str
    payload: str
    actor: str
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class TagItemCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    quantity: int
    selection_method: SelectionMethod = Field(default=SelectionMethod.FIFO, alias="selectionMethod")
    instance_ids: list[int] = Field(default_factory=list, alias="instanceIds")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("sku")
    @classmethod
    def _strip_sku(cls, value: str) -> str:
        return _strip_required(value, "sku")


class TagCreate(BaseModel):
    attribution: str = Field(default="", max_length=200)
    kind: TagKind = TagKind.RESERVED
    due_date: date | None = Field(default=None, alias="dueDate")
    notes: str = Field(default="", max_length=2000)
    project_name: str = Field(default="", max_length=200, alias="projectName")
    items: list[TagItemCreate] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("items")
    @classmethod
    def _unique_skus(cls, value: list[TagItemCreate]) -> list[TagItemCreate]:
        seen: set[str] = set()
        for item in value:
            if item.sku in seen:
                msg = f"SKU {item.sku} is listed more than once"
                raise ValueError(msg)
            seen.add(item.sku)
        return value


class TagUpdate(BaseModel):
    attribution: str | None = Field(default=None, max_length=200)
    due_date: date | None = Field(default=None, alias="dueDate")
    notes: str | None = Field(default=None, max_length=2000)
    project_name: str | None = Field(default=None, max_length=200, alias="projectName")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("attribution")
    @classmethod
    def _attribution_present(cls, value: str | None) -> str | None:
        return None if value is None else _strip_required(value, "attribution")


class TagItemsAdd(BaseModel):
    items: list[TagItemCreate] = Field(default_factory=list)


class TagQuantities(BaseModel):
    """Line-item id to quantity; used for adjust, remove and fulfil."""

    quantities: dict[int, Any]


class TagCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class InstanceResponse(BaseModel):
    id: int
    acquisition_date: datetime = Field(alias="acquisitionDate")
    acquisition_cost: Decimal | None = Field(default=None, alias="acquisitionCost")
    location: str

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class TagItemResponse(BaseModel):
    id: int
    sku: str
    quantity: int
    remaining_quantity: int = Field(alias="remainingQuantity")
    fulfilled_quantity: int = Field(default=0, alias="fulfilledQuantity")
    selection_method: SelectionMethod = Field(alias="selectionMethod")
    instances: list[InstanceResponse]

    model_config = ConfigDict(populate_by_name=True)


class TagResponse(BaseModel):
    id: int
    kind: TagKind
    attribution: str
    project_name: str = Field(alias="projectName")
    notes: str
    due_date: date | None = Field(alias="dueDate")
    status: str
    created_by: str = Field(alias="createdBy")
    fulfilled_quantity: int = Field(alias="fulfilledQuantity")
    cancel_reason: str | None = Field(default=None, alias="cancelReason")
    fulfilled_at: datetime | None = Field(default=None, alias="fulfilledAt")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    items: list[TagItemResponse]

    model_config = ConfigDict(populate_by_name=True)


class TagChangeResponse(BaseModel):
    tag: TagResponse
    changed_item_ids: list[int] = Field(alias="changedItemIds")

    model_config = ConfigDict(populate_by_name=True)


class TagListResponse(BaseModel):
    items: list[TagResponse]
    total: int


class TagStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int] = Field(alias="byStatus")
    by_kind: dict[str, int] = Field(alias="byKind")
    partially_fulfilled: int = Field(alias="partiallyFulfilled")
    overdue: int
    total_quantity: int = Field(alias="totalQuantity")
    remaining_quantity: int = Field(alias="remainingQuantity")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)
