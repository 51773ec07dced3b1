"""SKU catalogue endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ..authorization import CostVisibility
from ..dependencies import get_cost_visibility, get_inventory_service, http_error
from ..errors import InventoryError
from ..models import Sku
from ..schemas import SkuCreate, SkuListResponse, SkuResponse, SkuUpdate
from ..services import InventoryService

router = APIRouter(prefix="/skus", tags=["skus"])


def _serialize_sku(sku: Sku, visibility: CostVisibility) -> SkuResponse:
    return SkuResponse.model_validate(
        {
            "id": sku.id,
            "code": sku.code,
            "name": sku.name,
            "unitCost": sku.unit_cost if visibility.can_view_cost() else None,
            "understockedThreshold": sku.understocked_threshold,
            "overstockedThreshold": sku.overstocked_threshold,
            "status": sku.status,
            "createdAt": sku.created_at,
            "updatedAt": sku.updated_at,
        }
    )


@router.post("", response_model=SkuResponse, status_code=status.HTTP_201_CREATED)
async def create_sku(
    payload: SkuCreate,
    service: InventoryService = Depends(get_inventory_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> SkuResponse:
    existing = await service.repository.get_sku(payload.code)
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="SKU already exists")
    try:
        sku = await service.create_sku(
            code=payload.code,
            name=payload.name,
            unit_cost=payload.unit_cost,
            understocked_threshold=payload.understocked_threshold,
            overstocked_threshold=payload.overstocked_threshold,
        )
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_sku(sku, visibility)


@router.get("", response_model=SkuListResponse)
async def list_skus(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    status_filter: str | None = Query(default=None, alias="status"),
    service: InventoryService = Depends(get_inventory_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> SkuListResponse:
    skus, total = await service.repository.list_skus(status=status_filter, limit=limit, offset=offset)
    return SkuListResponse(items=[_serialize_sku(sku, visibility) for sku in skus], total=total)


@router.get("/{code}", response_model=SkuResponse)
async def get_sku(
    code: str,
    service: InventoryService = Depends(get_inventory_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> SkuResponse:
    try:
        sku = await service.require_sku(code)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_sku(sku, visibility)


@router.patch("/{code}", response_model=SkuResponse)
async def update_sku(
    code: str,
    payload: SkuUpdate,
    service: InventoryService = Depends(get_inventory_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> SkuResponse:
    # A null threshold falls back to the service default; null name or cost is ignored.
    changes = {
        name: value
        for name, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or name.endswith("_threshold")
    }
    try:
        sku = await service.require_sku(code)
        if changes:
            sku = await service.update_sku(sku, **changes)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_sku(sku, visibility)


@router.delete("/{code}", response_model=None)
async def retire_sku(
    code: str,
    service: InventoryService = Depends(get_inventory_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> SkuResponse | Response:
    """Delete an unused SKU; a SKU with stock or tag history is discontinued instead."""

    try:
        sku = await service.require_sku(code)
        retired = await service.retire_sku(sku)
    except InventoryError as exc:
        raise http_error(exc) from exc
    if retired is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return _serialize_sku(retired, visibility)
