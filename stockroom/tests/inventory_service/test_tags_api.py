import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from stockroom.common import ServiceSettings, create_schema, dispose_engines
from stockroom.inventory_service.app.main import create_app
from stockroom.inventory_service.app.models import Base

MANAGER = {"X-Stockroom-Role": "manager"}


def _run(coro):
    return asyncio.run(coro)


async def _prepare_app(tmp_path) -> FastAPI:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'tags.db'}"
    await create_schema(database_url, Base.metadata)
    settings = ServiceSettings(
        app_name="Inventory Tags Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
    )
    return create_app(settings)


async def _stock(client: AsyncClient, code: str = "SKU-1", quantity: int = 10, **receive: Any) -> None:
    if (await client.get(f"/skus/{code}")).status_code == 404:
        created = await client.post("/skus", json={"code": code, "name": f"Item {code}", "unitCost": "1.00"})
        assert created.status_code == 201
    received = await client.post(f"/inventory/{code}/receive", json={"quantity": quantity, **receive})
    assert received.status_code == 201


async def _tag(client: AsyncClient, *items: tuple[str, int], **fields: Any) -> dict[str, Any]:
    payload = {"attribution": "Ops", "kind": "reserved", **fields}
    payload["items"] = [{"sku": sku, "quantity": quantity} for sku, quantity in items]
    response = await client.post("/tags", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


async def _available(client: AsyncClient, code: str = "SKU-1") -> int:
    return (await client.get(f"/inventory/{code}")).json()["availableQuantity"]


def test_create_binds_oldest_then_cheapest_units(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=3, unitCost="5.00", acquiredAt="2024-01-01T00:00:00")
                await _stock(client, quantity=2, unitCost="9.00", acquiredAt="2024-02-01T00:00:00")
                await _stock(client, quantity=2, unitCost="2.00", acquiredAt="2024-03-01T00:00:00")

                fifo = await _tag(client, ("SKU-1", 4))
                item = fifo["items"][0]
                assert item["selectionMethod"] == "fifo"
                assert item["remainingQuantity"] == 4
                dates = [instance["acquisitionDate"][:7] for instance in item["instances"]]
                assert dates == ["2024-01", "2024-01", "2024-01", "2024-02"]

                cheapest = await client.post(
                    "/tags",
                    json={
                        "attribution": "Ops",
                        "items": [{"sku": "SKU-1", "quantity": 2, "selectionMethod": "cost_based"}],
                    },
                    headers=MANAGER,
                )
                assert cheapest.status_code == 201
                costs = [instance["acquisitionCost"] for instance in cheapest.json()["items"][0]["instances"]]
                assert costs == ["2.00", "2.00"]

                assert await _available(client) == 1
                short = await client.post(
                    "/tags",
                    json={"attribution": "Ops", "items": [{"sku": "SKU-1", "quantity": 2}]},
                )
                assert short.status_code == 409
                assert short.json()["detail"]["code"] == "insufficient_availability"

    _run(body())
    _run(dispose_engines())


def test_manual_selection_binds_named_units(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=4)
                instance_ids = [row["id"] for row in (await client.get("/inventory/SKU-1/instances")).json()]
                chosen = [instance_ids[3], instance_ids[1]]

                manual = await client.post(
                    "/tags",
                    json={
                        "attribution": "Ops",
                        "kind": "broken",
                        "items": [
                            {"sku": "SKU-1", "quantity": 2, "selectionMethod": "manual", "instanceIds": chosen}
                        ],
                    },
                )
                assert manual.status_code == 201
                bound = sorted(instance["id"] for instance in manual.json()["items"][0]["instances"])
                assert bound == sorted(chosen)

                taken = await client.post(
                    "/tags",
                    json={
                        "attribution": "Ops",
                        "items": [
                            {"sku": "SKU-1", "quantity": 1, "selectionMethod": "manual", "instanceIds": [chosen[0]]}
                        ],
                    },
                )
                assert taken.status_code == 409
                assert taken.json()["detail"]["unavailable_ids"] == [chosen[0]]

                miscounted = await client.post(
                    "/tags",
                    json={
                        "attribution": "Ops",
                        "items": [
                            {"sku": "SKU-1", "quantity": 2, "selectionMethod": "manual", "instanceIds": [instance_ids[0]]}
                        ],
                    },
                )
                assert miscounted.status_code == 400

    _run(body())
    _run(dispose_engines())


def test_create_validation_errors(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=5)

                anonymous = await client.post("/tags", json={"items": [{"sku": "SKU-1", "quantity": 1}]})
                assert anonymous.status_code == 400
                assert anonymous.json()["detail"]["code"] == "workflow_state"

                empty = await client.post("/tags", json={"attribution": "Ops", "items": []})
                assert empty.status_code == 400
                assert empty.json()["detail"]["code"] == "workflow_state"

                zero = await client.post("/tags", json={"attribution": "Ops", "items": [{"sku": "SKU-1", "quantity": 0}]})
                assert zero.status_code == 400
                assert zero.json()["detail"]["code"] == "invalid_quantity"

                duplicate = await client.post(
                    "/tags",
                    json={"attribution": "Ops", "items": [{"sku": "SKU-1", "quantity": 1}, {"sku": "SKU-1", "quantity": 1}]},
                )
                assert duplicate.status_code == 422

                unknown = await client.post("/tags", json={"attribution": "Ops", "items": [{"sku": "NOPE", "quantity": 1}]})
                assert unknown.status_code == 404

                assert await _available(client) == 5
                assert (await client.get("/tags")).json()["total"] == 0

    _run(body())
    _run(dispose_engines())


def test_remove_items_guards_remaining_quantity(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=20)
                tag = await _tag(client, ("SKU-1", 16))
                item_id = tag["items"][0]["id"]

                over = await client.post(f"/tags/{tag['id']}/items/remove", json={"quantities": {str(item_id): 20}})
                assert over.status_code == 409
                assert over.json()["detail"]["code"] == "over_removal"
                unchanged = (await client.get(f"/tags/{tag['id']}")).json()
                assert unchanged["items"][0]["remainingQuantity"] == 16
                assert await _available(client) == 4

                nothing = await client.post(f"/tags/{tag['id']}/items/remove", json={"quantities": {str(item_id): 0}})
                assert nothing.status_code == 400
                assert nothing.json()["detail"]["code"] == "no_op"

                removed = await client.post(f"/tags/{tag['id']}/items/remove", json={"quantities": {str(item_id): 6}})
                assert removed.status_code == 200
                assert removed.json()["changedItemIds"] == [item_id]
                item = removed.json()["tag"]["items"][0]
                assert item["remainingQuantity"] == 10
                assert item["quantity"] == 16
                assert len(item["instances"]) == 10
                assert await _available(client) == 10

                foreign = await client.post(f"/tags/{tag['id']}/items/remove", json={"quantities": {"9999": 1}})
                assert foreign.status_code == 404

    _run(body())
    _run(dispose_engines())


def test_add_items_is_all_or_nothing(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=10)
                await _stock(client, code="SKU-2", quantity=3)
                tag = await _tag(client, ("SKU-1", 3))
                assert await _available(client) == 7

                rejected = await client.post(
                    f"/tags/{tag['id']}/items",
                    json={"items": [{"sku": "SKU-2", "quantity": 1}, {"sku": "SKU-1", "quantity": 10}]},
                )
                assert rejected.status_code == 409
                assert rejected.json()["detail"]["sku"] == "SKU-1"
                assert len((await client.get(f"/tags/{tag['id']}")).json()["items"]) == 1
                assert await _available(client, "SKU-2") == 3

                empty = await client.post(f"/tags/{tag['id']}/items", json={"items": []})
                assert empty.status_code == 400
                assert empty.json()["detail"]["code"] == "no_op"

                added = await client.post(
                    f"/tags/{tag['id']}/items",
                    json={"items": [{"sku": "SKU-2", "quantity": 2}, {"sku": "SKU-1", "quantity": 5}]},
                )
                assert added.status_code == 200
                assert len(added.json()["tag"]["items"]) == 3
                assert await _available(client) == 2
                assert await _available(client, "SKU-2") == 1

    _run(body())
    _run(dispose_engines())


def test_adjust_quantities(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=10)
                tag = await _tag(client, ("SKU-1", 5))
                tag_id = tag["id"]
                item_id = str(tag["items"][0]["id"])

                lowered = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: 2}})
                assert lowered.status_code == 200
                assert lowered.json()["tag"]["items"][0]["remainingQuantity"] == 2
                assert len(lowered.json()["tag"]["items"][0]["instances"]) == 2
                assert await _available(client) == 8

                same = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: 2}})
                assert same.status_code == 400
                assert same.json()["detail"]["code"] == "no_change"

                above = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: 6}})
                assert above.status_code == 400
                assert above.json()["detail"]["code"] == "invalid_quantity"

                negative = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: -1}})
                assert negative.status_code == 400

                raised = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: 5}})
                assert raised.status_code == 200
                assert len(raised.json()["tag"]["items"][0]["instances"]) == 5
                assert await _available(client) == 5

                emptied = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: 0}})
                assert emptied.status_code == 200
                assert emptied.json()["tag"]["items"] == []
                assert emptied.json()["tag"]["status"] == "cancelled"
                assert await _available(client) == 10

                closed = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: 1}})
                assert closed.status_code == 409
                assert closed.json()["detail"]["code"] == "tag_state"

    _run(body())
    _run(dispose_engines())


def test_fulfil_reserved_consumes_stock(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=10)
                tag = await _tag(client, ("SKU-1", 4))
                item_id = str(tag["items"][0]["id"])

                partial = await client.post(f"/tags/{tag['id']}/fulfill", json={"quantities": {item_id: 1}})
                assert partial.status_code == 200
                assert partial.json()["tag"]["fulfilledQuantity"] == 1
                assert partial.json()["tag"]["status"] == "active"
                view = (await client.get("/inventory/SKU-1")).json()
                assert view["totalQuantity"] == 9
                assert view["availableQuantity"] == 6

                refused = await client.delete(f"/tags/{tag['id']}")
                assert refused.status_code == 409

                rest = await client.post(f"/tags/{tag['id']}/fulfill", json={"quantities": {item_id: 3}})
                assert rest.status_code == 200
                done = rest.json()["tag"]
                assert done["status"] == "fulfilled"
                assert done["fulfilledAt"] is not None
                assert done["items"] == []
                view = (await client.get("/inventory/SKU-1")).json()
                assert view["totalQuantity"] == 6
                assert view["availableQuantity"] == 6
                assert len((await client.get("/inventory/SKU-1/instances")).json()) == 6

    _run(body())
    _run(dispose_engines())


def test_adjust_cannot_reclaim_fulfilled_units(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=10)
                tag = await _tag(client, ("SKU-1", 5))
                tag_id = tag["id"]
                item_id = str(tag["items"][0]["id"])

                fulfilled = await client.post(f"/tags/{tag_id}/fulfill", json={"quantities": {item_id: 3}})
                assert fulfilled.status_code == 200
                item = fulfilled.json()["tag"]["items"][0]
                assert item["fulfilledQuantity"] == 3
                assert item["remainingQuantity"] == 2

                reclaimed = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: 5}})
                assert reclaimed.status_code == 400
                assert reclaimed.json()["detail"]["code"] == "invalid_quantity"

                view = (await client.get("/inventory/SKU-1")).json()
                assert view["totalQuantity"] == 7
                assert view["taggedQuantity"] == 2
                assert view["availableQuantity"] == 5

                lowered = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: 1}})
                assert lowered.status_code == 200
                restored = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: 2}})
                assert restored.status_code == 200
                assert restored.json()["tag"]["items"][0]["remainingQuantity"] == 2

    _run(body())
    _run(dispose_engines())


def test_non_integer_quantities_are_invalid_quantity_errors(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=10)
                tag = await _tag(client, ("SKU-1", 5))
                tag_id = tag["id"]
                item_id = str(tag["items"][0]["id"])

                for value in (2.5, True, "3"):
                    adjusted = await client.post(f"/tags/{tag_id}/adjust", json={"quantities": {item_id: value}})
                    assert adjusted.status_code == 400
                    assert adjusted.json()["detail"]["code"] == "invalid_quantity"

                removed = await client.post(f"/tags/{tag_id}/items/remove", json={"quantities": {item_id: 1.5}})
                assert removed.status_code == 400
                assert removed.json()["detail"]["code"] == "invalid_quantity"

                fulfilled = await client.post(f"/tags/{tag_id}/fulfill", json={"quantities": {item_id: False}})
                assert fulfilled.status_code == 400
                assert fulfilled.json()["detail"]["code"] == "invalid_quantity"
                assert await _available(client) == 5

    _run(body())
    _run(dispose_engines())


def test_update_tag_details(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=10)
                tag = await _tag(client, ("SKU-1", 2), dueDate="2030-01-01")
                tag_id = tag["id"]

                updated = await client.patch(
                    f"/tags/{tag_id}",
                    json={"attribution": "  Facilities ", "projectName": "Relocation", "notes": "Second floor"},
                    headers={"X-Stockroom-User": "dana"},
                )
                assert updated.status_code == 200
                body = updated.json()
                assert body["attribution"] == "Facilities"
                assert body["projectName"] == "Relocation"
                assert body["notes"] == "Second floor"
                assert body["dueDate"] == "2030-01-01"
                assert body["items"][0]["remainingQuantity"] == 2

                cleared = await client.patch(f"/tags/{tag_id}", json={"dueDate": None})
                assert cleared.status_code == 200
                assert cleared.json()["dueDate"] is None

                unchanged = await client.patch(f"/tags/{tag_id}", json={"notes": "Second floor"})
                assert unchanged.status_code == 400
                assert unchanged.json()["detail"]["code"] == "no_change"

                blank = await client.patch(f"/tags/{tag_id}", json={"attribution": "   "})
                assert blank.status_code == 422

                missing = await client.patch("/tags/9999", json={"notes": "x"})
                assert missing.status_code == 404

                events = (await client.get("/inventory/SKU-1/events")).json()
                updates = [event for event in events if event["type"] == "tag_updated"]
                assert len(updates) == 2
                assert updates[0]["actor"] == "dana"
                assert await _available(client) == 8

                await client.post(f"/tags/{tag_id}/cancel", json={})
                closed = await client.patch(f"/tags/{tag_id}", json={"notes": "late"})
                assert closed.status_code == 409
                assert closed.json()["detail"]["code"] == "tag_state"

    _run(body())
    _run(dispose_engines())


def test_fulfil_loan_returns_units(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=5)
                tag = await _tag(client, ("SKU-1", 3), kind="loaned")
                assert await _available(client) == 2

                returned = await client.post(
                    f"/tags/{tag['id']}/fulfill",
                    json={"quantities": {str(tag["items"][0]["id"]): 3}},
                )
                assert returned.json()["tag"]["status"] == "fulfilled"
                view = (await client.get("/inventory/SKU-1")).json()
                assert view["totalQuantity"] == 5
                assert view["availableQuantity"] == 5

    _run(body())
    _run(dispose_engines())


def test_cancel_and_delete_release_claims(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=10)
                first = await _tag(client, ("SKU-1", 3))
                second = await _tag(client, ("SKU-1", 4), kind="imperfect")
                assert await _available(client) == 3

                cancelled = await client.post(f"/tags/{first['id']}/cancel", json={"reason": "Project dropped"})
                assert cancelled.status_code == 200
                body = cancelled.json()
                assert body["status"] == "cancelled"
                assert body["cancelReason"] == "Project dropped"
                assert body["items"][0]["remainingQuantity"] == 3
                assert body["items"][0]["instances"] == []
                assert await _available(client) == 6

                again = await client.post(f"/tags/{first['id']}/cancel", json={})
                assert again.status_code == 409

                deleted = await client.delete(f"/tags/{second['id']}")
                assert deleted.status_code == 204
                assert (await client.get(f"/tags/{second['id']}")).status_code == 404
                assert await _available(client) == 10

                removed = await client.delete(f"/tags/{first['id']}")
                assert removed.status_code == 204
                assert (await client.delete(f"/tags/{first['id']}")).status_code == 404

    _run(body())
    _run(dispose_engines())


def test_stock_tags_label_without_claiming(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=10)
                tag = await _tag(client, ("SKU-1", 10), kind="stock")
                assert tag["items"][0]["instances"] == []

                view = (await client.get("/inventory/SKU-1")).json()
                assert view["availableQuantity"] == 10
                assert view["taggedBreakdown"] == {}

                beyond = await client.post(
                    "/tags",
                    json={"attribution": "Ops", "kind": "stock", "items": [{"sku": "SKU-1", "quantity": 11}]},
                )
                assert beyond.status_code == 409

    _run(body())
    _run(dispose_engines())


def test_listing_overdue_and_stats(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _stock(client, quantity=20)
                late = await _tag(client, ("SKU-1", 2), attribution="Alpha", dueDate="2020-01-01")
                await _tag(client, ("SKU-1", 3), attribution="Beta", kind="loaned", dueDate="2999-01-01")
                dropped = await _tag(client, ("SKU-1", 1), attribution="Alpha", dueDate="2020-01-01")
                await client.post(f"/tags/{dropped['id']}/cancel", json={})

                active = await client.get("/tags", params={"status": "active"})
                assert active.json()["total"] == 2
                loans = await client.get("/tags", params={"kind": "loaned"})
                assert [tag["attribution"] for tag in loans.json()["items"]] == ["Beta"]
                alpha = await client.get("/tags", params={"attribution": "Alpha"})
                assert alpha.json()["total"] == 2

                overdue = await client.get("/tags/overdue")
                assert [tag["id"] for tag in overdue.json()["items"]] == [late["id"]]

                stats = (await client.get("/tags/stats")).json()
                assert stats["total"] == 3
                assert stats["byStatus"] == {"active": 2, "fulfilled": 0, "cancelled": 1}
                assert stats["byKind"]["reserved"] == 2
                assert stats["byKind"]["loaned"] == 1
                assert stats["overdue"] == 1
                assert stats["partiallyFulfilled"] == 0
                assert stats["totalQuantity"] == 6
                assert stats["remainingQuantity"] == 5

    _run(body())
    _run(dispose_engines())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
