import asyncio
import random
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockroom.common import create_schema, dispose_engines, get_session_factory
from stockroom.inventory_service.app.allocation import SelectionMethod
from stockroom.inventory_service.app.errors import InventoryError
from stockroom.inventory_service.app.ledger import TagKind
from stockroom.inventory_service.app.models import Base
from stockroom.inventory_service.app.repository import InventoryRepository
from stockroom.inventory_service.app.services import TAG_ACTIVE, InventoryService, TagService
from stockroom.inventory_service.app.tag_items import NewLineItem
from stockroom.inventory_service.app.workflow import CreateTagRequest

CODES = ("SKU-A", "SKU-B")
KINDS = (TagKind.RESERVED, TagKind.LOANED, TagKind.BROKEN, TagKind.STOCK)


def _run(coro):
    return asyncio.run(coro)


async def _seed(factory: async_sessionmaker[AsyncSession]) -> None:
    async with factory() as session:
        service = InventoryService(InventoryRepository(session))
        for index, code in enumerate(CODES):
            await service.create_sku(code=code, name=code, unit_cost=Decimal("1.00"))
            await service.receive_stock(code, quantity=6, unit_cost=Decimal(3 + index))
            await service.receive_stock(code, quantity=6, unit_cost=Decimal(1 + index))
        await session.commit()


async def _assert_conserved(factory: async_sessionmaker[AsyncSession]) -> None:
    async with factory() as session:
        repository = InventoryRepository(session)
        for code in CODES:
            snapshot = await repository.get_inventory(code)
            assert 0 <= snapshot.tagged_total <= snapshot.total_quantity
            assert snapshot.total_quantity - snapshot.tagged_total >= 0
            free = await repository.get_available_instances(code)
            assert len(free) == snapshot.total_quantity - snapshot.tagged_total
        for tag in await repository.all_tags():
            for item in tag.items:
                assert item.remaining_quantity >= 0
                assert item.remaining_quantity + item.fulfilled_quantity <= item.quantity
                if tag.status == TAG_ACTIVE and TagKind(tag.kind).claims_stock:
                    assert len(item.instances) == item.remaining_quantity


async def _step(factory: async_sessionmaker[AsyncSession], operation) -> bool:
    """Run one operation in its own transaction; report whether it was accepted."""

    async with factory() as session:
        repository = InventoryRepository(session)
        try:
            await operation(InventoryService(repository), TagService(repository, actor="sequence"), repository)
        except InventoryError:
            await session.rollback()
            return False
        await session.commit()
        return True


async def _active_items(repository: InventoryRepository) -> list[tuple[int, int, int, int]]:
    tags, _ = await repository.list_tags(
        status=TAG_ACTIVE,
        kind=None,
        attribution=None,
        due_before=None,
        limit=100,
        offset=0,
    )
    return sorted(
        (tag.id, item.id, item.quantity, item.remaining_quantity) for tag in tags for item in tag.items
    )


def _random_operation(rng: random.Random):
    choice = rng.choice(
        ("receive", "remove_stock", "create", "add", "adjust", "remove", "fulfill", "cancel", "delete")
    )

    async def operation(inventory: InventoryService, tags: TagService, repository: InventoryRepository) -> None:
        code = rng.choice(CODES)
        if choice == "receive":
            await inventory.receive_stock(code, quantity=rng.randint(1, 4))
            return
        if choice == "remove_stock":
            await inventory.remove_stock(code, quantity=rng.randint(1, 4))
            return
        if choice == "create":
            method = rng.choice((SelectionMethod.FIFO, SelectionMethod.COST_BASED))
            items = tuple(
                NewLineItem(sku=sku, quantity=rng.randint(1, 5), selection_method=method)
                for sku in rng.sample(CODES, rng.randint(1, 2))
            )
            await tags.create_tag(CreateTagRequest(attribution="Ops", kind=rng.choice(KINDS), items=items))
            return

        active = await _active_items(repository)
        if not active:
            return
        tag_id, item_id, quantity, remaining = rng.choice(active)
        if choice == "add":
            await tags.add_tag_items(tag_id, [NewLineItem(sku=code, quantity=rng.randint(1, 3))])
        elif choice == "adjust":
            await tags.adjust_tag_quantities(tag_id, {item_id: rng.randint(0, quantity + 1)})
        elif choice == "remove":
            await tags.remove_tag_items(tag_id, {item_id: rng.randint(0, remaining + 1)})
        elif choice == "fulfill":
            await tags.fulfill_tag(tag_id, {item_id: rng.randint(1, remaining + 1)})
        elif choice == "cancel":
            await tags.cancel_tag(tag_id, reason="sequence")
        else:
            await tags.delete_tag(tag_id)

    return operation


@pytest.mark.parametrize("seed", [3, 17, 2024])
def test_random_operation_sequences_conserve_quantities(tmp_path, seed: int) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'sequence.db'}"
    rng = random.Random(seed)

    async def body() -> None:
        await create_schema(database_url, Base.metadata)
        factory = get_session_factory(database_url)
        await _seed(factory)
        await _assert_conserved(factory)
        accepted = 0
        for _ in range(60):
            accepted += await _step(factory, _random_operation(rng))
            await _assert_conserved(factory)
        assert accepted > 0
        await dispose_engines()

    _run(body())


def test_scripted_sequence_conserves_quantities(tmp_path) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'scripted.db'}"

    async def body() -> None:
        await create_schema(database_url, Base.metadata)
        factory = get_session_factory(database_url)
        await _seed(factory)
        created: dict[str, int] = {}

        async def create(inventory, tags, repository) -> None:
            tag = await tags.create_tag(
                CreateTagRequest(
                    attribution="Ops",
                    kind=TagKind.RESERVED,
                    items=(NewLineItem(sku="SKU-A", quantity=5),),
                )
            )
            created["tag"] = tag.id
            created["item"] = tag.items[0].id

        async def add(inventory, tags, repository) -> None:
            await tags.add_tag_items(created["tag"], [NewLineItem(sku="SKU-B", quantity=4)])

        async def adjust_down(inventory, tags, repository) -> None:
            await tags.adjust_tag_quantities(created["tag"], {created["item"]: 2})

        async def adjust_up(inventory, tags, repository) -> None:
            await tags.adjust_tag_quantities(created["tag"], {created["item"]: 5})

        async def fulfil_three(inventory, tags, repository) -> None:
            await tags.fulfill_tag(created["tag"], {created["item"]: 3})

        async def reclaim_fulfilled(inventory, tags, repository) -> None:
            await tags.adjust_tag_quantities(created["tag"], {created["item"]: 5})

        async def remove_one(inventory, tags, repository) -> None:
            await tags.remove_tag_items(created["tag"], {created["item"]: 1})

        async def shrink_stock(inventory, tags, repository) -> None:
            await inventory.remove_stock("SKU-A", quantity=3)

        async def cancel(inventory, tags, repository) -> None:
            await tags.cancel_tag(created["tag"], reason="done")

        assert await _step(factory, create)
        await _assert_conserved(factory)
        for operation in (add, adjust_down, adjust_up, fulfil_three):
            assert await _step(factory, operation)
            await _assert_conserved(factory)

        assert not await _step(factory, reclaim_fulfilled)
        await _assert_conserved(factory)
        for operation in (remove_one, shrink_stock, cancel):
            assert await _step(factory, operation)
            await _assert_conserved(factory)

        async with factory() as session:
            snapshot = await InventoryRepository(session).get_inventory("SKU-A")
            assert snapshot.total_quantity == 6
            assert snapshot.tagged_total == 0
        await dispose_engines()

    _run(body())
