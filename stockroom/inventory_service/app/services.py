"""Inventory domain services.

Every mutation follows the same shape: load the inventory records it
touches, build a :class:`QuantityLedger` from them, validate the request
against the ledger, bind or release physical instances, apply the change to
the ledger (which re-checks conservation) and finally persist, bumping each
touched record's version so a concurrent writer on the same SKU fails.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from .allocation import (
    CostBucket,
    CostOrder,
    CostSummary,
    InstanceAllocator,
    SelectionMethod,
    cost_breakdown,
    cost_summary,
)
from .authorization import CostVisibility
from .errors import (
    CostVisibilityError,
    InvalidQuantityError,
    InventoryError,
    NoChangeError,
    NotFoundError,
    TagStateError,
)
from .ledger import LedgerSnapshot, QuantityLedger, TagKind
from .metrics import STOCK_MOVEMENTS_TOTAL, TAG_OPERATIONS_TOTAL, TAG_VALIDATION_FAILURES_TOTAL
from .models import Instance, InventoryRecord, Sku, Tag, TagItem
from .repository import InventoryRepository, to_instance_record
from .stock_status import StockStatus, StockThresholds, classify_snapshot
from .tag_items import (
    AvailabilityLookup,
    LineItemState,
    NewLineItem,
    QuantityChange,
    validate_add,
    validate_adjust,
    validate_remove,
)
from .workflow import CreateTagRequest

_LOGGER = logging.getLogger(__name__)

SKU_ACTIVE = "active"
SKU_DISCONTINUED = "discontinued"
TAG_ACTIVE = "active"
TAG_FULFILLED = "fulfilled"
TAG_CANCELLED = "cancelled"

# Fulfilling these kinds means the units leave the building.
_CONSUMING_KINDS = frozenset({TagKind.RESERVED, TagKind.BROKEN, TagKind.IMPERFECT})
_TAG_DETAIL_FIELDS = frozenset({"attribution", "project_name", "notes", "due_date"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _payload(**values: Any) -> str:
    return json.dumps(values, sort_keys=True, default=str)


def _require_positive(quantity: Any) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        msg = "Stock quantity must be a positive integer"
        raise InvalidQuantityError(msg, value=quantity)


@dataclass
class InventoryView:
    sku: Sku
    snapshot: LedgerSnapshot
    thresholds: StockThresholds
    status: StockStatus
    cost: CostSummary | None = None
    record: InventoryRecord | None = None


@dataclass
class StockRemoval:
    record: InventoryRecord
    removed_instance_ids: list[int]
    total_value_removed: Decimal

    @property
    def average_cost_removed(self) -> Decimal:
        if not self.removed_instance_ids:
            return Decimal("0")
        return (self.total_value_removed / len(self.removed_instance_ids)).quantize(Decimal("0.01"))


@dataclass
class TagChangeResult:
    tag: Tag
    changed_item_ids: list[int] = field(default_factory=list)


@dataclass
class TagStats:
    total: int
    by_status: dict[str, int]
    by_kind: dict[str, int]
    partially_fulfilled: int
    overdue: int
    total_quantity: int
    remaining_quantity: int


class InventoryService:
    """SKU, stock and availability orchestration."""

    def __init__(
        self,
        repository: InventoryRepository,
        *,
        default_thresholds: StockThresholds | None = None,
        cost_order: CostOrder = CostOrder.LOWEST,
    ) -> None:
        self.repository = repository
        self.default_thresholds = default_thresholds or StockThresholds()
        self.allocator = InstanceAllocator(cost_order=cost_order)

    def thresholds_for(self, sku: Sku) -> StockThresholds:
        return StockThresholds.resolve(
            sku.understocked_threshold,
            sku.overstocked_threshold,
            default=self.default_thresholds,
        )

    async def require_sku(self, code: str) -> Sku:
        sku = await self.repository.get_sku(code)
        if sku is None:
            msg = f"SKU {code} not found"
            raise NotFoundError(msg, sku=code)
        return sku

    async def create_sku(
        self,
        *,
        code: str,
        name: str,
        unit_cost: Decimal,
        understocked_threshold: int | None = None,
        overstocked_threshold: int | None = None,
    ) -> Sku:
        # Validates the thresholds before anything is written.
        StockThresholds.resolve(understocked_threshold, overstocked_threshold, default=self.default_thresholds)
        sku = await self.repository.create_sku(
            code=code,
            name=name,
            unit_cost=unit_cost,
            understocked_threshold=understocked_threshold,
            overstocked_threshold=overstocked_threshold,
        )
        _LOGGER.info("Created SKU %s", code)
        return sku

    async def update_sku(self, sku: Sku, **fields: Any) -> Sku:
        StockThresholds.resolve(
            fields.get("understocked_threshold", sku.understocked_threshold),
            fields.get("overstocked_threshold", sku.overstocked_threshold),
            default=self.default_thresholds,
        )
        return await self.repository.update_sku(sku, **fields)

    async def retire_sku(self, sku: Sku) -> Sku | None:
        """Delete an unreferenced SKU, otherwise mark it discontinued."""

        if await self.repository.is_sku_referenced(sku):
            _LOGGER.info("SKU %s is referenced; marking discontinued", sku.code)
            return await self.repository.update_sku(sku, status=SKU_DISCONTINUED)
        await self.repository.delete_sku(sku)
        return None

    async def view(self, code: str, *, visibility: CostVisibility | None = None) -> InventoryView:
        sku = await self.require_sku(code)
        if sku.inventory is None:
            snapshot = LedgerSnapshot(sku=code, total_quantity=0)
        else:
            snapshot = await self.repository.get_inventory(code)
        return await self._build_view(sku, snapshot, visibility, sku.inventory)

    async def _build_view(
        self,
        sku: Sku,
        snapshot: LedgerSnapshot,
        visibility: CostVisibility | None,
        record: InventoryRecord | None = None,
    ) -> InventoryView:
        thresholds = self.thresholds_for(sku)
        cost = None
        if visibility is not None and visibility.can_view_cost():
            cost = cost_summary(await self.repository.get_available_instances(sku.code))
        return InventoryView(
            sku=sku,
            snapshot=snapshot,
            thresholds=thresholds,
            status=classify_snapshot(snapshot, thresholds),
            cost=cost,
            record=record,
        )

    async def list_inventory(
        self,
        *,
        limit: int,
        offset: int,
        status: StockStatus | None = None,
    ) -> tuple[list[InventoryView], int]:
        if status is None:
            records, total = await self.repository.list_records(limit=limit, offset=offset)
        else:
            # Status is derived, so filtering needs every record.
            records, total = await self.repository.list_records(limit=None, offset=0)
        ledger = await self.repository.load_ledger(records)
        views = []
        for record in records:
            view = await self._build_view(record.sku, ledger.snapshot(record.sku.code), None, record)
            if status is None or view.status is status:
                views.append(view)
        if status is not None:
            total = len(views)
            views = views[offset : offset + limit]
        return views, total

    async def cost_breakdown(self, code: str, visibility: CostVisibility) -> list[CostBucket]:
        if not visibility.can_view_cost():
            msg = "Cost information is not visible to this caller"
            raise CostVisibilityError(msg, sku=code)
        return cost_breakdown(await self.repository.get_available_instances(code))

    async def receive_stock(
        self,
        code: str,
        *,
        quantity: int,
        unit_cost: Decimal | None = None,
        acquired_at: datetime | None = None,
        location: str = "HQ",
        supplier: str = "",
        reference_number: str = "",
        actor: str = "system",
    ) -> InventoryRecord:
        _require_positive(quantity)
        sku = await self.require_sku(code)
        if sku.status != SKU_ACTIVE:
            msg = f"SKU {code} is {sku.status}"
            raise TagStateError(msg, sku=code)
        record = await self.repository.ensure_record(sku, actor=actor)
        ledger = await self.repository.load_ledger([record])
        record.total_quantity = ledger.apply_stock_delta(code, quantity)
        cost = sku.unit_cost if unit_cost is None else unit_cost
        await self.repository.add_instances(
            sku,
            quantity=quantity,
            unit_cost=cost,
            acquired_at=acquired_at or _utcnow(),
            location=location,
            supplier=supplier,
            reference_number=reference_number,
        )
        await self.repository.touch([record], actor=actor)
        await self.repository.add_event(
            record,
            event_type="stock_received",
            payload=_payload(quantity=quantity, unit_cost=cost, location=location),
            actor=actor,
        )
        STOCK_MOVEMENTS_TOTAL.labels(direction="in").inc(quantity)
        _LOGGER.info("Received %s units of %s", quantity, code)
        return record

    async def remove_stock(self, code: str, *, quantity: int, actor: str = "system") -> StockRemoval:
        """Remove untagged units, oldest first."""

        _require_positive(quantity)
        records = await self.repository.load_records([code])
        record = records[code]
        ledger = await self.repository.load_ledger([record])
        new_total = ledger.apply_stock_delta(code, -quantity)
        available = await self.repository.load_available_instances(record.sku_id)
        allocation = self.allocator.allocate(
            code,
            quantity,
            [to_instance_record(item, code) for item in available],
            SelectionMethod.FIFO,
        )
        chosen = set(allocation.instance_ids)
        await self.repository.delete_instances(item for item in available if item.id in chosen)
        record.total_quantity = new_total
        await self.repository.touch([record], actor=actor)
        await self.repository.add_event(
            record,
            event_type="stock_removed",
            payload=_payload(quantity=quantity, value=allocation.total_cost),
            actor=actor,
        )
        STOCK_MOVEMENTS_TOTAL.labels(direction="out").inc(quantity)
        return StockRemoval(
            record=record,
            removed_instance_ids=list(allocation.instance_ids),
            total_value_removed=allocation.total_cost,
        )

    async def events(self, code: str) -> list[Any]:
        record = (await self.repository.load_records([code]))[code]
        return await self.repository.list_events(record)


class TagService:
    """Creation and mutation of tags against the quantity ledger.

    The method names mirror the persistence boundary used by the tag
    workflow: ``create_tag``, ``adjust_tag_quantities``, ``add_tag_items``
    and ``remove_tag_items``.
    """

    def __init__(
        self,
        repository: InventoryRepository,
        *,
        cost_order: CostOrder = CostOrder.LOWEST,
        actor: str = "system",
    ) -> None:
        self.repository = repository
        self.allocator = InstanceAllocator(cost_order=cost_order)
        self.actor = actor

    async def _record_failure(self, operation: str, exc: InventoryError) -> None:
        TAG_OPERATIONS_TOTAL.labels(operation=operation, outcome="rejected").inc()
        TAG_VALIDATION_FAILURES_TOTAL.labels(code=exc.code).inc()
        _LOGGER.info("Tag %s rejected: %s", operation, exc.message)

    async def _load(self, codes: Sequence[str]) -> tuple[dict[str, InventoryRecord], QuantityLedger]:
        records = await self.repository.load_records(codes)
        ledger = await self.repository.load_ledger(list(records.values()))
        return records, ledger

    async def _require_active_tag(self, tag_id: int) -> Tag:
        tag = await self.repository.get_tag(tag_id)
        if tag is None:
            msg = f"Tag {tag_id} not found"
            raise NotFoundError(msg, tag_id=tag_id)
        if tag.status != TAG_ACTIVE:
            msg = f"Tag {tag_id} is {tag.status}; only active tags can change"
            raise TagStateError(msg, tag_id=tag_id, status=tag.status)
        return tag

    def _availability(self, ledger: QuantityLedger, kind: TagKind) -> AvailabilityLookup:
        # Stock tags label inventory without claiming it, so they are bounded by the total.
        return ledger.available if kind.claims_stock else ledger.total

    async def availability(self, codes: Sequence[str], kind: TagKind) -> AvailabilityLookup:
        """Fresh per-SKU availability for a tag of ``kind``."""

        _, ledger = await self._load(codes)
        return self._availability(ledger, kind)

    async def _bind(
        self,
        record: InventoryRecord,
        quantity: int,
        method: SelectionMethod,
        instance_ids: Sequence[int],
        taken: set[int],
    ) -> list[Instance]:
        available = [
            item for item in await self.repository.load_available_instances(record.sku_id) if item.id not in taken
        ]
        code = record.sku.code
        allocation = self.allocator.allocate(
            code,
            quantity,
            [to_instance_record(item, code) for item in available],
            method,
            instance_ids=instance_ids,
        )
        by_id = {item.id: item for item in available}
        taken.update(allocation.instance_ids)
        return [by_id[item_id] for item_id in allocation.instance_ids]

    @staticmethod
    def _unbind(item: TagItem, quantity: int, *, newest_first: bool) -> list[Instance]:
        bound = sorted(item.instances, key=lambda inst: (inst.acquisition_date, inst.id))
        if newest_first:
            bound.reverse()
        released = bound[:quantity]
        for instance in released:
            item.instances.remove(instance)
        return released

    async def _persist(self, records: Mapping[str, InventoryRecord], event_type: str, tag: Tag, **details: Any) -> None:
        await self.repository.touch(records.values(), actor=self.actor)
        for record in records.values():
            await self.repository.add_event(
                record,
                event_type=event_type,
                payload=_payload(tag_id=tag.id, kind=tag.kind, **details),
                actor=self.actor,
            )

    async def _new_items(
        self,
        kind: TagKind,
        candidates: Sequence[NewLineItem],
        records: Mapping[str, InventoryRecord],
        ledger: QuantityLedger,
    ) -> list[TagItem]:
        for code in {candidate.sku for candidate in candidates}:
            if records[code].sku.status != SKU_ACTIVE:
                msg = f"SKU {code} is {records[code].sku.status}"
                raise TagStateError(msg, sku=code)
        validate_add(candidates, self._availability(ledger, kind))

        taken: set[int] = set()
        items = []
        for candidate in candidates:
            record = records[candidate.sku]
            instances: list[Instance] = []
            if kind.claims_stock:
                instances = await self._bind(
                    record,
                    candidate.quantity,
                    candidate.selection_method,
                    candidate.instance_ids,
                    taken,
                )
                ledger.claim(candidate.sku, kind, candidate.quantity)
            items.append(
                TagItem(
                    sku=record.sku,
                    sku_id=record.sku_id,
                    quantity=candidate.quantity,
                    remaining_quantity=candidate.quantity,
                    fulfilled_quantity=0,
                    selection_method=candidate.selection_method.value,
                    instances=instances,
                )
            )
        return items

    async def create_tag(self, request: CreateTagRequest) -> Tag:
        try:
            if not request.items:
                msg = "A tag needs at least one line-item"
                raise TagStateError(msg)
            records, ledger = await self._load([item.sku for item in request.items])
            items = await self._new_items(request.kind, request.items, records, ledger)
        except InventoryError as exc:
            await self._record_failure("create", exc)
            raise
        tag = await self.repository.insert_tag(
            kind=request.kind.value,
            attribution=request.attribution,
            project_name=request.project_name,
            notes=request.notes,
            due_date=request.due_date,
            created_by=self.actor,
            items=items,
        )
        await self._persist(records, "tag_created", tag, quantity=sum(item.quantity for item in items))
        TAG_OPERATIONS_TOTAL.labels(operation="create", outcome="ok").inc()
        _LOGGER.info("Created %s tag %s for %s", tag.kind, tag.id, tag.attribution)
        return tag

    async def update_tag_details(self, tag_id: int, **changes: Any) -> Tag:
        """Edit attribution, project name, notes or due date of an active tag."""

        try:
            tag = await self._require_active_tag(tag_id)
            unknown = sorted(set(changes) - _TAG_DETAIL_FIELDS)
            if unknown:
                msg = f"Tag field {unknown[0]} cannot be edited"
                raise TagStateError(msg, tag_id=tag_id, field=unknown[0])
            updates = {name: value for name, value in changes.items() if getattr(tag, name) != value}
            if not updates:
                msg = "No tag detail differs from its current value"
                raise NoChangeError(msg, tag_id=tag_id)
        except InventoryError as exc:
            await self._record_failure("update", exc)
            raise
        for name, value in updates.items():
            setattr(tag, name, value)
        await self.repository.save_tag(tag)
        codes = sorted({item.sku.code for item in tag.items})
        records = await self.repository.load_records(codes) if codes else {}
        for record in records.values():
            await self.repository.add_event(
                record,
                event_type="tag_updated",
                payload=_payload(tag_id=tag.id, kind=tag.kind, fields=sorted(updates)),
                actor=self.actor,
            )
        TAG_OPERATIONS_TOTAL.labels(operation="update", outcome="ok").inc()
        _LOGGER.info("Updated tag %s: %s", tag.id, ", ".join(sorted(updates)))
        return tag

    @staticmethod
    def _states(tag: Tag) -> dict[int, LineItemState]:
        return {
            item.id: LineItemState(
                id=item.id,
                sku=item.sku.code,
                quantity=item.quantity,
                remaining_quantity=item.remaining_quantity,
                fulfilled_quantity=item.fulfilled_quantity,
            )
            for item in tag.items
        }

    def _drop_empty_items(self, tag: Tag) -> None:
        for item in [item for item in tag.items if item.remaining_quantity == 0]:
            item.instances.clear()
            tag.items.remove(item)

    async def adjust_tag_quantities(self, tag_id: int, changes: Mapping[int, Any]) -> TagChangeResult:
        """Set new remaining quantities for existing line-items."""

        try:
            tag = await self._require_active_tag(tag_id)
            kind = TagKind(tag.kind)
            states = self._states(tag)
            records, ledger = await self._load([state.sku for state in states.values()])
            accepted: list[QuantityChange] = validate_adjust(
                states,
                changes,
                available=ledger.available if kind.claims_stock else None,
            )
            by_id = {item.id: item for item in tag.items}
            taken: set[int] = set()
            for change in accepted:
                item = by_id[change.item_id]
                if kind.claims_stock and change.delta > 0:
                    # Manual selections are not re-prompted; extra units follow acquisition order.
                    method = SelectionMethod(item.selection_method)
                    if method is SelectionMethod.MANUAL:
                        method = SelectionMethod.FIFO
                    item.instances.extend(await self._bind(records[change.sku], change.delta, method, (), taken))
                    ledger.claim(change.sku, kind, change.delta)
                elif kind.claims_stock and change.delta < 0:
                    self._unbind(item, -change.delta, newest_first=True)
                    ledger.release(change.sku, kind, -change.delta)
                item.remaining_quantity = change.proposed
        except InventoryError as exc:
            await self._record_failure("adjust", exc)
            raise

        self._drop_empty_items(tag)
        if not tag.items:
            tag.status = TAG_CANCELLED
        await self.repository.save_tag(tag)
        await self._persist(
            records,
            "tag_adjusted",
            tag,
            changes={change.item_id: change.proposed for change in accepted},
        )
        TAG_OPERATIONS_TOTAL.labels(operation="adjust", outcome="ok").inc()
        return TagChangeResult(tag=tag, changed_item_ids=[change.item_id for change in accepted])

    async def add_tag_items(self, tag_id: int, candidates: Sequence[NewLineItem]) -> TagChangeResult:
        try:
            tag = await self._require_active_tag(tag_id)
            kind = TagKind(tag.kind)
            codes = [candidate.sku for candidate in candidates]
            records, ledger = await self._load(codes) if codes else ({}, QuantityLedger())
            items = await self._new_items(kind, candidates, records, ledger)
        except InventoryError as exc:
            await self._record_failure("add", exc)
            raise
        tag.items.extend(items)
        await self.repository.save_tag(tag)
        await self._persist(records, "tag_items_added", tag, quantity=sum(item.quantity for item in items))
        TAG_OPERATIONS_TOTAL.labels(operation="add", outcome="ok").inc()
        return TagChangeResult(tag=tag, changed_item_ids=[item.id for item in items])

    async def remove_tag_items(self, tag_id: int, removals: Mapping[int, Any]) -> TagChangeResult:
        """Reduce line-items' remaining quantities, releasing their units."""

        try:
            tag = await self._require_active_tag(tag_id)
            kind = TagKind(tag.kind)
            states = self._states(tag)
            accepted = validate_remove(states, removals)
            records, ledger = await self._load([removal.sku for removal in accepted])
            by_id = {item.id: item for item in tag.items}
            for removal in accepted:
                item = by_id[removal.item_id]
                if kind.claims_stock:
                    self._unbind(item, removal.quantity, newest_first=True)
                    ledger.release(removal.sku, kind, removal.quantity)
                item.remaining_quantity = removal.remaining_after
        except InventoryError as exc:
            await self._record_failure("remove", exc)
            raise

        self._drop_empty_items(tag)
        if not tag.items:
            tag.status = TAG_CANCELLED
        await self.repository.save_tag(tag)
        await self._persist(
            records,
            "tag_items_removed",
            tag,
            removed={removal.item_id: removal.quantity for removal in accepted},
        )
        TAG_OPERATIONS_TOTAL.labels(operation="remove", outcome="ok").inc()
        return TagChangeResult(tag=tag, changed_item_ids=[removal.item_id for removal in accepted])

    async def fulfill_tag(self, tag_id: int, quantities: Mapping[int, Any]) -> TagChangeResult:
        """Fulfil part or all of a tag.

        Reserved, broken and imperfect units leave stock; loaned units come
        back and become available again.
        """

        try:
            tag = await self._require_active_tag(tag_id)
            kind = TagKind(tag.kind)
            accepted = validate_remove(self._states(tag), quantities)
            records, ledger = await self._load([removal.sku for removal in accepted])
            by_id = {item.id: item for item in tag.items}
            consumed: list[Instance] = []
            for removal in accepted:
                item = by_id[removal.item_id]
                if kind in _CONSUMING_KINDS:
                    consumed.extend(self._unbind(item, removal.quantity, newest_first=False))
                    ledger.consume(removal.sku, kind, removal.quantity)
                    records[removal.sku].total_quantity = ledger.total(removal.sku)
                elif kind.claims_stock:
                    self._unbind(item, removal.quantity, newest_first=False)
                    ledger.release(removal.sku, kind, removal.quantity)
                item.remaining_quantity = removal.remaining_after
                item.fulfilled_quantity += removal.quantity
        except InventoryError as exc:
            await self._record_failure("fulfill", exc)
            raise

        fulfilled = sum(removal.quantity for removal in accepted)
        tag.fulfilled_quantity += fulfilled
        self._drop_empty_items(tag)
        await self.repository.delete_instances(consumed)
        if not tag.items:
            tag.status = TAG_FULFILLED
            tag.fulfilled_at = _utcnow()
        await self.repository.save_tag(tag)
        await self._persist(records, "tag_fulfilled", tag, quantity=fulfilled)
        TAG_OPERATIONS_TOTAL.labels(operation="fulfill", outcome="ok").inc()
        return TagChangeResult(tag=tag, changed_item_ids=[removal.item_id for removal in accepted])

    async def _release_all(self, tag: Tag) -> dict[str, InventoryRecord]:
        kind = TagKind(tag.kind)
        codes = sorted({item.sku.code for item in tag.items})
        if not codes:
            return {}
        records, ledger = await self._load(codes)
        for item in tag.items:
            if kind.claims_stock and item.remaining_quantity:
                self._unbind(item, len(item.instances), newest_first=True)
                ledger.release(item.sku.code, kind, item.remaining_quantity)
        return records

    async def cancel_tag(self, tag_id: int, *, reason: str | None = None) -> Tag:
        try:
            tag = await self._require_active_tag(tag_id)
        except InventoryError as exc:
            await self._record_failure("cancel", exc)
            raise
        records = await self._release_all(tag)
        tag.status = TAG_CANCELLED
        tag.cancel_reason = reason
        await self.repository.save_tag(tag)
        await self._persist(records, "tag_cancelled", tag, reason=reason)
        TAG_OPERATIONS_TOTAL.labels(operation="cancel", outcome="ok").inc()
        return tag

    async def delete_tag(self, tag_id: int) -> None:
        tag = await self.repository.get_tag(tag_id)
        if tag is None:
            msg = f"Tag {tag_id} not found"
            raise NotFoundError(msg, tag_id=tag_id)
        if tag.status == TAG_ACTIVE and tag.fulfilled_quantity > 0:
            msg = f"Tag {tag_id} is partially fulfilled; cancel it instead"
            exc = TagStateError(msg, tag_id=tag_id)
            await self._record_failure("delete", exc)
            raise exc
        records: dict[str, InventoryRecord] = {}
        if tag.status == TAG_ACTIVE:
            records = await self._release_all(tag)
        tag_ref = {"tag_id": tag.id, "kind": tag.kind}
        await self.repository.delete_tag(tag)
        if records:
            await self.repository.touch(records.values(), actor=self.actor)
            for record in records.values():
                await self.repository.add_event(
                    record,
                    event_type="tag_deleted",
                    payload=_payload(**tag_ref),
                    actor=self.actor,
                )
        TAG_OPERATIONS_TOTAL.labels(operation="delete", outcome="ok").inc()

    async def stats(self, *, today: date | None = None) -> TagStats:
        today = today or _utcnow().date()
        tags = await self.repository.all_tags()
        by_status: dict[str, int] = {TAG_ACTIVE: 0, TAG_FULFILLED: 0, TAG_CANCELLED: 0}
        by_kind: dict[str, int] = {kind.value: 0 for kind in TagKind}
        for tag in tags:
            by_status[tag.status] = by_status.get(tag.status, 0) + 1
            by_kind[tag.kind] = by_kind.get(tag.kind, 0) + 1
        active = [tag for tag in tags if tag.status == TAG_ACTIVE]
        return TagStats(
            total=len(tags),
            by_status=by_status,
            by_kind=by_kind,
            partially_fulfilled=sum(1 for tag in active if tag.fulfilled_quantity > 0),
            overdue=sum(1 for tag in active if tag.due_date is not None and tag.due_date < today),
            total_quantity=sum(item.quantity for tag in tags for item in tag.items),
            remaining_quantity=sum(item.remaining_quantity for tag in active for item in tag.items),
        )


__all__ = [
    "InventoryService",
    "InventoryView",
    "StockRemoval",
    "TagChangeResult",
    "TagService",
    "TagStats",
]
