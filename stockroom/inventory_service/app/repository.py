"""Data access helpers for inventory service."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Select, and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from .allocation import InstanceRecord
from .errors import ConcurrentModificationError, NotFoundError
from .ledger import CLAIMING_KINDS, LedgerSnapshot, QuantityLedger, TagKind
from .models import Instance, InventoryEvent, InventoryRecord, Sku, Tag, TagItem

_CLAIMING_VALUES = [kind.value for kind in CLAIMING_KINDS]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_instance_record(instance: Instance, sku_code: str) -> InstanceRecord:
    return InstanceRecord(
        id=instance.id,
        sku=sku_code,
        acquisition_date=instance.acquisition_date,
        acquisition_cost=instance.acquisition_cost,
        location=instance.location,
        tag_item_id=instance.tag_item_id,
    )


class InventoryRepository:
    """Persistence for SKUs, inventory records, instances and tags.

    Inventory records carry a version column; any flush that updates a record
    loaded at an older version raises :class:`ConcurrentModificationError`.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def flush(self, *, sku: str = "") -> None:
        try:
            await self.session.flush()
        except StaleDataError as exc:
            raise ConcurrentModificationError(sku or "unknown") from exc

    # SKUs

    async def create_sku(
        self,
        *,
        code: str,
        name: str,
        unit_cost: Decimal,
        understocked_threshold: int | None,
        overstocked_threshold: int | None,
    ) -> Sku:
        sku = Sku(
            code=code,
            name=name,
            unit_cost=unit_cost,
            understocked_threshold=understocked_threshold,
            overstocked_threshold=overstocked_threshold,
        )
        self.session.add(sku)
        await self.flush()
        await self.session.refresh(sku, attribute_names=["created_at", "updated_at", "inventory"])
        return sku

    async def get_sku(self, code: str) -> Sku | None:
        result = await self.session.execute(select(Sku).where(Sku.code == code))
        return result.scalar_one_or_none()

    async def list_skus(self, *, status: str | None, limit: int, offset: int) -> tuple[list[Sku], int]:
        base: Select[tuple[Sku]] = select(Sku).order_by(Sku.code)
        count: Select[tuple[int]] = select(func.count(Sku.id))
        if status is not None:
            base = base.where(Sku.status == status)
            count = count.where(Sku.status == status)
        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars().unique()), total

    async def update_sku(self, sku: Sku, **fields: object) -> Sku:
        for name, value in fields.items():
            setattr(sku, name, value)
        await self.flush()
        await self.session.refresh(sku, attribute_names=["updated_at"])
        return sku

    async def is_sku_referenced(self, sku: Sku) -> bool:
        items = await self.session.execute(select(func.count(TagItem.id)).where(TagItem.sku_id == sku.id))
        instances = await self.session.execute(select(func.count(Instance.id)).where(Instance.sku_id == sku.id))
        return sku.inventory is not None or items.scalar_one() > 0 or instances.scalar_one() > 0

    async def delete_sku(self, sku: Sku) -> None:
        await self.session.delete(sku)
        await self.flush()

    # Inventory records

    async def get_record(self, code: str) -> InventoryRecord | None:
        result = await self.session.execute(
            select(InventoryRecord).join(InventoryRecord.sku).where(Sku.code == code)
        )
        return result.scalar_one_or_none()

    async def ensure_record(self, sku: Sku, *, actor: str) -> InventoryRecord:
        if sku.inventory is not None:
            return sku.inventory
        record = InventoryRecord(sku=sku, total_quantity=0, last_updated_by=actor)
        self.session.add(record)
        await self.flush()
        return record

    async def list_records(self, *, limit: int | None, offset: int) -> tuple[list[InventoryRecord], int]:
        count: Select[tuple[int]] = select(func.count(InventoryRecord.id))
        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(
            select(InventoryRecord).join(InventoryRecord.sku).order_by(Sku.code).offset(offset).limit(limit)
        )
        return list(result.scalars().unique()), total

    async def tag_summaries(self, sku_ids: Iterable[int]) -> dict[int, dict[TagKind, int]]:
        """Sum remaining quantities of active claiming tags per SKU and kind."""

        ids = list(sku_ids)
        summaries: dict[int, dict[TagKind, int]] = {sku_id: {} for sku_id in ids}
        if not ids:
            return summaries
        result = await self.session.execute(
            select(TagItem.sku_id, Tag.kind, func.sum(TagItem.remaining_quantity))
            .join(Tag, TagItem.tag_id == Tag.id)
            .where(
                and_(
                    TagItem.sku_id.in_(ids),
                    Tag.status == "active",
                    Tag.kind.in_(_CLAIMING_VALUES),
                )
            )
            .group_by(TagItem.sku_id, Tag.kind)
        )
        for sku_id, kind, remaining in result.all():
            summaries[sku_id][TagKind(kind)] = int(remaining or 0)
        return summaries

    def snapshot(self, record: InventoryRecord, summary: dict[TagKind, int]) -> LedgerSnapshot:
        return LedgerSnapshot.from_mapping(
            record.sku.code,
            {"total_quantity": record.total_quantity, "tag_summary": {k.value: v for k, v in summary.items()}},
        )

    async def get_inventory(self, code: str) -> LedgerSnapshot:
        """Return ``{total_quantity, tag_summary}`` for one SKU as a snapshot."""

        record = await self.get_record(code)
        if record is None:
            msg = f"No inventory record for SKU {code}"
            raise NotFoundError(msg, sku=code)
        summaries = await self.tag_summaries([record.sku_id])
        return self.snapshot(record, summaries[record.sku_id])

    async def load_records(self, codes: Iterable[str]) -> dict[str, InventoryRecord]:
        wanted = sorted(set(codes))
        result = await self.session.execute(
            select(InventoryRecord).join(InventoryRecord.sku).where(Sku.code.in_(wanted))
        )
        records = {record.sku.code: record for record in result.scalars().unique()}
        missing = [code for code in wanted if code not in records]
        if missing:
            msg = f"No inventory record for SKU {missing[0]}"
            raise NotFoundError(msg, sku=missing[0])
        return records

    async def load_ledger(self, records: Sequence[InventoryRecord]) -> QuantityLedger:
        summaries = await self.tag_summaries(record.sku_id for record in records)
        return QuantityLedger(self.snapshot(record, summaries[record.sku_id]) for record in records)

    async def touch(self, records: Iterable[InventoryRecord], *, actor: str) -> None:
        """Bump the version of every record so concurrent writers conflict."""

        touched = list(records)
        now = _utcnow()
        for record in touched:
            record.last_movement_at = now
            record.last_updated_by = actor
        codes = ",".join(sorted(record.sku.code for record in touched))
        await self.flush(sku=codes)

    async def add_event(
        self,
        record: InventoryRecord,
        *,
        event_type: str,
        payload: str,
        actor: str,
    ) -> InventoryEvent:
        event = InventoryEvent(record=record, type=event_type, payload=payload, actor=actor)
        self.session.add(event)
        await self.flush()
        await self.session.refresh(event)
        return event

    async def list_events(self, record: InventoryRecord) -> list[InventoryEvent]:
        result = await self.session.execute(
            select(InventoryEvent).where(InventoryEvent.record_id == record.id).order_by(InventoryEvent.id)
        )
        return list(result.scalars())

    # Instances

    async def load_available_instances(self, sku_id: int) -> list[Instance]:
        result = await self.session.execute(
            select(Instance)
            .where(and_(Instance.sku_id == sku_id, Instance.tag_item_id.is_(None)))
            .order_by(Instance.acquisition_date, Instance.id)
        )
        return list(result.scalars().unique())

    async def get_available_instances(self, code: str) -> list[InstanceRecord]:
        sku = await self.get_sku(code)
        if sku is None:
            msg = f"SKU {code} not found"
            raise NotFoundError(msg, sku=code)
        return [to_instance_record(item, code) for item in await self.load_available_instances(sku.id)]

    async def add_instances(
        self,
        sku: Sku,
        *,
        quantity: int,
        unit_cost: Decimal,
        acquired_at: datetime,
        location: str,
        supplier: str,
        reference_number: str,
    ) -> list[Instance]:
        instances = [
            Instance(
                sku=sku,
                acquisition_date=acquired_at,
                acquisition_cost=unit_cost,
                location=location,
                supplier=supplier,
                reference_number=reference_number,
            )
            for _ in range(quantity)
        ]
        self.session.add_all(instances)
        await self.flush()
        return instances

    async def delete_instances(self, instances: Iterable[Instance]) -> None:
        for instance in instances:
            await self.session.delete(instance)
        await self.flush()

    # Tags

    async def insert_tag(
        self,
        *,
        kind: str,
        attribution: str,
        project_name: str,
        notes: str,
        due_date: date | None,
        created_by: str,
        items: list[TagItem],
    ) -> Tag:
        tag = Tag(
            kind=kind,
            attribution=attribution,
            project_name=project_name,
            notes=notes,
            due_date=due_date,
            created_by=created_by,
            items=items,
        )
        self.session.add(tag)
        await self.flush()
        await self.session.refresh(tag, attribute_names=["created_at", "updated_at"])
        return tag

    async def get_tag(self, tag_id: int) -> Tag | None:
        result = await self.session.execute(select(Tag).where(Tag.id == tag_id))
        return result.scalar_one_or_none()

    async def list_tags(
        self,
        *,
        status: str | None,
        kind: str | None,
        attribution: str | None,
        due_before: date | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Tag], int]:
        filters = []
        if status is not None:
            filters.append(Tag.status == status)
        if kind is not None:
            filters.append(Tag.kind == kind)
        if attribution is not None:
            filters.append(Tag.attribution == attribution)
        if due_before is not None:
            filters.append(and_(Tag.due_date.is_not(None), Tag.due_date < due_before))

        base: Select[tuple[Tag]] = select(Tag).order_by(Tag.created_at.desc(), Tag.id.desc())
        count: Select[tuple[int]] = select(func.count(Tag.id))
        if filters:
            clause = and_(*filters)
            base = base.where(clause)
            count = count.where(clause)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars().unique()), total

    async def all_tags(self) -> list[Tag]:
        result = await self.session.execute(select(Tag).order_by(Tag.id))
        return list(result.scalars().unique())

    async def save_tag(self, tag: Tag) -> Tag:
        await self.flush()
        await self.session.refresh(tag, attribute_names=["updated_at"])
        return tag

    async def delete_tag(self, tag: Tag) -> None:
        await self.session.delete(tag)
        await self.flush()
