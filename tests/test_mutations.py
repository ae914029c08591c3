import json

import httpx
import pytest

from conftest import page_of
from inventory_console.errors import InvalidPayloadError, RequestValidationError
from inventory_console.listing import FilteredList
from inventory_console.mutations import MutationGateway
from inventory_console.notifications import Notifier
from inventory_console.query import QueryEngine, cache_key


def _backend(request: httpx.Request) -> httpx.Response:
    if request.method == "GET":
        return page_of([], page=1, limit=50, total=0, totalPages=0)
    if request.url.path == "/items/404":
        return httpx.Response(404, json={"message": "Item 404 not found"})
    return httpx.Response(200, json={"data": {"id": 7}})


@pytest.mark.asyncio
async def test_update_invalidates_every_list_of_the_endpoint(mock_client) -> None:
    client, handler = mock_client(_backend)
    engine = QueryEngine(client)
    filters = [{"page": 1}, {"page": 2, "status": "active"}, {"search": "soap"}]
    for params in filters:
        await engine.fetch("/items", params)
    await engine.fetch("/warehouses", {"page": 1})

    await MutationGateway(engine, "/items").update(7, {"name": "Renamed"})

    for params in filters:
        assert engine.cache.get(cache_key("/items", params)).stale is True
    assert engine.cache.get(cache_key("/warehouses", {"page": 1})).stale is False
    assert json.loads(handler.calls("PUT", "/items/7")[0].content) == {"name": "Renamed"}


@pytest.mark.asyncio
async def test_failed_mutation_leaves_cache_untouched(mock_client) -> None:
    client, _ = mock_client(_backend)
    engine = QueryEngine(client)
    await engine.fetch("/items", {"page": 1})
    notes = []
    gateway = MutationGateway(engine, "/items", notifier=Notifier([notes.append]))

    with pytest.raises(RequestValidationError) as excinfo:
        await gateway.remove(404)

    assert excinfo.value.operation == "delete"
    assert engine.cache.get(cache_key("/items", {"page": 1})).stale is False
    assert [note.title for note in notes] == ["Delete failed"]
    assert notes[0].description == "Item 404 not found"


@pytest.mark.asyncio
async def test_success_is_notified_and_extra_endpoints_invalidated(mock_client) -> None:
    client, handler = mock_client(_backend)
    engine = QueryEngine(client)
    await engine.fetch("/reports/stock", {})
    notes = []
    gateway = MutationGateway(
        engine, "/purchase-orders", also_invalidates=("/reports",), notifier=Notifier([notes.append])
    )

    await gateway.perform("approve", record_id=3)
    await gateway.create({"partnerId": 1})

    assert engine.cache.get(cache_key("/reports/stock", {})).stale is True
    assert handler.calls("POST", "/purchase-orders/3/approve")
    assert [note.title for note in notes] == ["Updated successfully", "Created successfully"]


@pytest.mark.asyncio
async def test_restore_requires_soft_delete(mock_client) -> None:
    client, handler = mock_client(_backend)
    engine = QueryEngine(client)

    await MutationGateway(engine, "/items").restore(7)
    assert json.loads(handler.calls("PUT", "/items/7")[0].content) == {"status": "active"}

    with pytest.raises(InvalidPayloadError):
        await MutationGateway(engine, "/inventory-checks", soft_delete=False).restore(7)
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_lists_reflect_writes_against_the_backend(engine) -> None:
    warehouses = FilteredList(engine, "/warehouses", initial_filters={"status": "active"})
    gateway = MutationGateway(engine, "/warehouses")
    await warehouses.refetch()
    assert len(warehouses.data) == 2

    created = await gateway.create({"code": "WH-NORTH", "name": "North"})
    new_id = created["data"]["id"]
    await warehouses.refetch()
    assert "WH-NORTH" in {warehouse.code for warehouse in warehouses.data}

    await gateway.remove(new_id)
    await warehouses.refetch()
    assert "WH-NORTH" not in {warehouse.code for warehouse in warehouses.data}
    record = await gateway.get_one(new_id)
    assert record["status"] == "inactive"

    await gateway.restore(new_id)
    await warehouses.refetch()
    assert "WH-NORTH" in {warehouse.code for warehouse in warehouses.data}
