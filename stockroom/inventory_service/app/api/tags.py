"""HTTP routes for tag creation and line-item maintenance."""

from __future__ import annotations

from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Response, status

from ..authorization import CostVisibility
from ..dependencies import get_cost_visibility, get_tag_service, http_error
from ..errors import InventoryError, NotFoundError
from ..ledger import TagKind
from ..models import Tag
from ..schemas import (
    InstanceResponse,
    TagCancel,
    TagChangeResponse,
    TagCreate,
    TagItemResponse,
    TagItemsAdd,
    TagListResponse,
    TagQuantities,
    TagResponse,
    TagStatsResponse,
    TagUpdate,
)
from ..services import TAG_ACTIVE, TagChangeResult, TagService
from ..tag_items import NewLineItem
from ..workflow import TagWorkflow

router = APIRouter(prefix="/tags", tags=["tags"])


def _nothing_available(sku: str) -> int:
    return 0


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _serialize_tag(tag: Tag, visibility: CostVisibility) -> TagResponse:
    show_cost = visibility.can_view_cost()
    items = [
        TagItemResponse(
            id=item.id,
            sku=item.sku.code,
            quantity=item.quantity,
            remaining_quantity=item.remaining_quantity,
            fulfilled_quantity=item.fulfilled_quantity,
            selection_method=item.selection_method,
            instances=[
                InstanceResponse(
                    id=instance.id,
                    acquisition_date=instance.acquisition_date,
                    acquisition_cost=instance.acquisition_cost if show_cost else None,
                    location=instance.location,
                )
                for instance in item.instances
            ],
        )
        for item in tag.items
    ]
    return TagResponse(
        id=tag.id,
        kind=tag.kind,
        attribution=tag.attribution,
        project_name=tag.project_name,
        notes=tag.notes,
        due_date=tag.due_date,
        status=tag.status,
        created_by=tag.created_by,
        fulfilled_quantity=tag.fulfilled_quantity,
        cancel_reason=tag.cancel_reason,
        fulfilled_at=tag.fulfilled_at,
        created_at=tag.created_at,
        updated_at=tag.updated_at,
        items=items,
    )


def _serialize_change(result: TagChangeResult, visibility: CostVisibility) -> TagChangeResponse:
    return TagChangeResponse(tag=_serialize_tag(result.tag, visibility), changed_item_ids=result.changed_item_ids)


@router.post("", response_model=TagResponse, status_code=status.HTTP_201_CREATED)
async def create_tag(
    payload: TagCreate,
    service: TagService = Depends(get_tag_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> TagResponse:
    workflow = TagWorkflow(creator=service)
    try:
        workflow.update_details(
            attribution=payload.attribution,
            kind=payload.kind,
            due_date=payload.due_date,
            notes=payload.notes,
            project_name=payload.project_name,
        )
        workflow.next()
        for item in payload.items:
            workflow.select_item(
                item.sku,
                item.quantity,
                selection_method=item.selection_method,
                instance_ids=tuple(item.instance_ids),
            )
        codes = [item.sku for item in payload.items]
        available = await service.availability(codes, payload.kind) if codes else _nothing_available
        workflow.next(available)
        tag = await workflow.submit()
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_tag(tag, visibility)


@router.get("", response_model=TagListResponse)
async def list_tags(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    status_filter: str | None = Query(default=None, alias="status"),
    kind: TagKind | None = None,
    attribution: str | None = None,
    service: TagService = Depends(get_tag_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> TagListResponse:
    tags, total = await service.repository.list_tags(
        status=status_filter,
        kind=kind.value if kind is not None else None,
        attribution=attribution,
        due_before=None,
        limit=limit,
        offset=offset,
    )
    return TagListResponse(items=[_serialize_tag(tag, visibility) for tag in tags], total=total)


@router.get("/overdue", response_model=TagListResponse)
async def list_overdue_tags(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: TagService = Depends(get_tag_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> TagListResponse:
    tags, total = await service.repository.list_tags(
        status=TAG_ACTIVE,
        kind=None,
        attribution=None,
        due_before=_today(),
        limit=limit,
        offset=offset,
    )
    return TagListResponse(items=[_serialize_tag(tag, visibility) for tag in tags], total=total)


@router.get("/stats", response_model=TagStatsResponse)
async def tag_stats(service: TagService = Depends(get_tag_service)) -> TagStatsResponse:
    stats = await service.stats(today=_today())
    return TagStatsResponse.model_validate(stats)


@router.get("/{tag_id}", response_model=TagResponse)
async def get_tag(
    tag_id: int,
    service: TagService = Depends(get_tag_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> TagResponse:
    tag = await service.repository.get_tag(tag_id)
    if tag is None:
        raise http_error(NotFoundError(f"Tag {tag_id} not found", tag_id=tag_id))
    return _serialize_tag(tag, visibility)


@router.patch("/{tag_id}", response_model=TagResponse)
async def update_tag(
    tag_id: int,
    payload: TagUpdate,
    service: TagService = Depends(get_tag_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> TagResponse:
    # A null due date clears it; other null fields are ignored.
    changes = {
        name: value
        for name, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or name == "due_date"
    }
    try:
        tag = await service.update_tag_details(tag_id, **changes)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_tag(tag, visibility)


@router.post("/{tag_id}/adjust", response_model=TagChangeResponse)
async def adjust_tag(
    tag_id: int,
    payload: TagQuantities,
    service: TagService = Depends(get_tag_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> TagChangeResponse:
    try:
        result = await service.adjust_tag_quantities(tag_id, payload.quantities)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_change(result, visibility)


@router.post("/{tag_id}/items", response_model=TagChangeResponse)
async def add_tag_items(
    tag_id: int,
    payload: TagItemsAdd,
    service: TagService = Depends(get_tag_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> TagChangeResponse:
    candidates = [
        NewLineItem(
            sku=item.sku,
            quantity=item.quantity,
            selection_method=item.selection_method,
            instance_ids=tuple(item.instance_ids),
        )
        for item in payload.items
    ]
    try:
        result = await service.add_tag_items(tag_id, candidates)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_change(result, visibility)


@router.post("/{tag_id}/items/remove", response_model=TagChangeResponse)
async def remove_tag_items(
    tag_id: int,
    payload: TagQuantities,
    service: TagService = Depends(get_tag_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> TagChangeResponse:
    try:
        result = await service.remove_tag_items(tag_id, payload.quantities)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_change(result, visibility)


@router.post("/{tag_id}/fulfill", response_model=TagChangeResponse)
async def fulfill_tag(
    tag_id: int,
    payload: TagQuantities,
    service: TagService = Depends(get_tag_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> TagChangeResponse:
    try:
        result = await service.fulfill_tag(tag_id, payload.quantities)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_change(result, visibility)


@router.post("/{tag_id}/cancel", response_model=TagResponse)
async def cancel_tag(
    tag_id: int,
    payload: TagCancel,
    service: TagService = Depends(get_tag_service),
    visibility: CostVisibility = Depends(get_cost_visibility),
) -> TagResponse:
    try:
        tag = await service.cancel_tag(tag_id, reason=payload.reason)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return _serialize_tag(tag, visibility)


@router.delete("/{tag_id}")
async def delete_tag(tag_id: int, service: TagService = Depends(get_tag_service)) -> Response:
    try:
        await service.delete_tag(tag_id)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
