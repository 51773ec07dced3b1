"""Inventory HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..authorization import CostVisibility
from ..dependencies import get_actor, get_cost_visibility, get_inventory_service, http_error
from ..errors import InventoryError
from ..schemas import (
    CostBucketResponse,
    CostSummaryResponse,
    InstanceResponse,
    InventoryEventResponse,
    InventoryListResponse,
    InventoryResponse,
    StockReceive,
    StockRemovalResponse,
    StockRemove,
)
from ..services import InventoryService, InventoryView
from ..stock_status import StockStatus

router = APIRouter(prefix="/inventory", tags=["inventory"])


def _serialize_view(view: InventoryView) -> InventoryResponse:
    snapshot = view.snapshot
    return InventoryResponse.model_validate(
        {
            "sku": view.sku.code,
            "name": view.sku.name,
            "totalQuantity": snapshot.total_quantity,
            "taggedQuantity": snapshot.tagged_total,
            "availableQuantity": snapshot.available_quantity,
            "taggedBreakdown": {kind.value: count for kind, count in snapshot.tag_summary.items() if count},
            "status": view.status,
            "understockedThreshold": view.thresholds.understocked,
            "overstockedThreshold": view.thresholds.overstocked,
            "lastMovementAt": view.record.last_movement_at if view.record is not None else None,
            "cost": CostSummaryResponse.model_validate(view.cost) if view.cost is not None else None,
        }
    )


async def _list_by_status(
    service: InventoryService,
    stock_status: StockStatus | None,
    limit: int,
    offset: int,
) -> InventoryListResponse:
    views, total = await service.list_inventory(limit=limit, offset=offset, status=stock_status)
    return InventoryListResponse(items=[_serialize_view(view) for view in views], total=total)


@router.get("", response_model=InventoryListResponse)
async def list_inventory(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    stock_status: StockStatus | None = Query(default=None, alias="status"),
    service: InventoryService = Depends(get_inventory_service),
) -> InventoryListResponse:
    return await _list_by_status(service, stock_status, limit, offset)


@router.get("/alerts/low-stock", response_model=InventoryListResponse)
async def low_stock_alerts(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: InventoryService = Depends(get_inventory_service),
) -> InventoryListResponse:
    return await _list_by_status(service, StockStatus.UNDERSTOCKED, limit, offset)


@router.get("/alerts/out-of-stock", response_model=InventoryListResponse)
async def out_of_stock_alerts(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: InventoryService = Depends(get_inventory_service),
) -> InventoryListResponse:
    return await _list_by_status(service, StockStatus.OUT, limit, offset)


@router.get("/{code}", response_model=InventoryResponse)
async def get_inventory(
    code: str,
    service: InventoryService = Depends(get_inventory_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> InventoryResponse:
    try:
        view = await service.view(code, visibility=visibility)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_view(view)


@router.post("/{code}/receive", response_model=InventoryResponse, status_code=status.HTTP_201_CREATED)
async def receive_stock(
    code: str,
    payload: StockReceive,
    service: InventoryService = Depends(get_inventory_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
    actor: str = Depends(get_actor),
) -> InventoryResponse:
    try:
        await service.receive_stock(
            code,
            quantity=payload.quantity,
            unit_cost=payload.unit_cost,
            acquired_at=payload.acquired_at,
            location=payload.location,
            supplier=payload.supplier,
            reference_number=payload.reference_number,
            actor=actor,
        )
        view = await service.view(code, visibility=visibility)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_view(view)


@router.post("/{code}/remove", response_model=StockRemovalResponse)
async def remove_stock(
    code: str,
    payload: StockRemove,
    service: InventoryService = Depends(get_inventory_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
    actor: str = Depends(get_actor),
) -> StockRemovalResponse:
    try:
        removal = await service.remove_stock(code, quantity=payload.quantity, actor=actor)
        view = await service.view(code, visibility=visibility)
    except InventoryError as exc:
        raise http_error(exc) from exc
    show_cost = visibility.can_view_cost()
    return StockRemovalResponse(
        inventory=_serialize_view(view),
        removed_quantity=len(removal.removed_instance_ids),
        removed_instance_ids=removal.removed_instance_ids,
        total_value_removed=removal.total_value_removed if show_cost else None,
        average_cost_removed=removal.average_cost_removed if show_cost else None,
    )


@router.get("/{code}/instances", response_model=list[InstanceResponse])
async def list_available_instances(
    code: str,
    service: InventoryService = Depends(get_inventory_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> list[InstanceResponse]:
    """Untagged units in acquisition order, for manual selection."""

    try:
        instances = await service.repository.get_available_instances(code)
    except InventoryError as exc:
        raise http_error(exc) from exc
    show_cost = visibility.can_view_cost()
    return [
        InstanceResponse(
            id=instance.id,
            acquisition_date=instance.acquisition_date,
            acquisition_cost=instance.acquisition_cost if show_cost else None,
            location=instance.location,
        )
        for instance in instances
    ]


@router.get("/{code}/cost-breakdown", response_model=list[CostBucketResponse])
async def cost_breakdown(
    code: str,
    service: InventoryService = Depends(get_inventory_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> list[CostBucketResponse]:
    try:
        buckets = await service.cost_breakdown(code, visibility)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return [CostBucketResponse.model_validate(bucket) for bucket in buckets]


@router.get("/{code}/events", response_model=list[InventoryEventResponse])
async def list_inventory_events(
    code: str,
    service: InventoryService = Depends(get_inventory_service),
) -> list[InventoryEventResponse]:
    try:
        events = await service.events(code)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return [InventoryEventResponse.model_validate(event) for event in events]
