import asyncio

import httpx
import pytest

from conftest import page_of
from inventory_console.errors import ResponseSchemaError, ServerError
from inventory_console.notifications import Notifier
from inventory_console.mutations import MutationGateway
from inventory_console.query import QueryCache, QueryEngine, QueryObserver, cache_key
from inventory_console.schemas import Item, QueryResult


def _items(page: int) -> list[dict]:
    return [{"id": page * 10 + n, "code": f"ITM-{page}{n}", "name": f"Item {page}-{n}"} for n in (1, 2)]


def _paged(request: httpx.Request) -> httpx.Response:
    page = int(request.url.params.get("page", "1"))
    return page_of(_items(page), page=page, limit=2, total=6, totalPages=3)


def test_cache_key_ignores_key_order_and_empty_values() -> None:
    first = cache_key("/items", {"status": "active", "page": 1, "search": ""})
    second = cache_key("items/", {"page": 1, "status": "active"})

    assert first == second
    assert first != cache_key("/items", {"page": 2, "status": "active"})
    assert first != cache_key("/partners", {"page": 1, "status": "active"})


def test_query_result_accepts_bare_list_and_meta_envelope() -> None:
    bare = QueryResult.from_response([{"id": 1}])
    assert bare.items == ({"id": 1},)
    assert bare.pagination.total is None

    legacy = QueryResult.from_response({"data": [], "meta": {"page": 2, "total": 40, "totalPages": 4}})
    assert legacy.pagination.page == 2
    assert legacy.pagination.total_pages == 4
    assert legacy.meta == {"page": 2, "total": 40, "totalPages": 4}

    with pytest.raises(ResponseSchemaError):
        QueryResult.from_response({"data": {"id": 1}})
    with pytest.raises(ResponseSchemaError):
        QueryResult.from_response({"data": [{"id": "x"}]}, Item)


@pytest.mark.asyncio
async def test_equal_filters_share_one_request(mock_client) -> None:
    client, handler = mock_client(_paged)
    engine = QueryEngine(client)

    first = await engine.fetch("/items", {"page": 1, "status": "active"})
    second = await engine.fetch("/items", {"status": "active", "page": 1, "search": None})

    assert first is second
    assert len(handler.requests) == 1
    assert isinstance(first.items[0], Item)
    assert handler.requests[0].headers["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_concurrent_identical_fetches_are_deduplicated(mock_client) -> None:
    release = asyncio.Event()

    async def slow(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return _paged(request)

    client, handler = mock_client(slow)
    engine = QueryEngine(client)

    pending = asyncio.gather(
        engine.fetch("/items", {"page": 1}),
        engine.fetch("/items", {"page": 1}),
        engine.fetch("/items", {"page": 2}),
    )
    await asyncio.sleep(0)
    release.set()
    one, same, two = await pending

    assert one is same
    assert one is not two
    assert len(handler.requests) == 2


@pytest.mark.asyncio
async def test_empty_values_are_never_sent(mock_client) -> None:
    client, handler = mock_client(_paged)

    await QueryEngine(client).fetch("/items", {"page": 1, "search": "", "status": None})

    assert dict(handler.requests[0].url.params) == {"page": "1"}


@pytest.mark.asyncio
async def test_invalidated_entries_are_refetched(mock_client) -> None:
    client, handler = mock_client(_paged)
    engine = QueryEngine(client)
    await engine.fetch("/items", {"page": 1})
    await engine.fetch("/items", {"page": 2})

    assert engine.cache.invalidate("/items") == 2
    await engine.fetch("/items", {"page": 1})
    await engine.fetch("/items", {"page": 1})

    assert len(handler.calls("GET", "/items")) == 3


@pytest.mark.asyncio
async def test_force_bypasses_the_cache(mock_client) -> None:
    client, handler = mock_client(_paged)
    engine = QueryEngine(client)

    await engine.fetch("/items", {"page": 1})
    await engine.fetch("/items", {"page": 1}, force=True)

    assert len(handler.requests) == 2


@pytest.mark.asyncio
async def test_result_racing_an_invalidation_is_stored_stale(mock_client) -> None:
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow(request: httpx.Request) -> httpx.Response:
        started.set()
        await release.wait()
        return _paged(request)

    client, handler = mock_client(slow)
    engine = QueryEngine(client)

    task = asyncio.ensure_future(engine.fetch("/items", {"page": 1}))
    await started.wait()
    engine.cache.invalidate("/items")
    release.set()
    result = await task

    entry = engine.cache.get(cache_key("/items", {"page": 1}))
    assert entry.result is result
    assert entry.stale is True
    await engine.fetch("/items", {"page": 1})
    assert len(handler.requests) == 2


@pytest.mark.asyncio
async def test_observer_keeps_previous_page_while_fetching(mock_client) -> None:
    gate = asyncio.Event()

    async def gated(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("page") == "2":
            await gate.wait()
        return _paged(request)

    client, _ = mock_client(gated)
    observer = QueryObserver(QueryEngine(client), "/items")

    state = await observer.load({"page": 1})
    assert state.is_loading is False
    first_page = state.items

    loading = asyncio.ensure_future(observer.load({"page": 2}))
    await asyncio.sleep(0)
    assert observer.state.is_fetching is True
    assert observer.state.is_loading is False
    assert observer.state.items == first_page

    gate.set()
    state = await loading
    assert [item.id for item in state.items] == [21, 22]
    assert state.is_fetching is False


@pytest.mark.asyncio
async def test_observer_failure_keeps_data_and_notifies(mock_client) -> None:
    def failing(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("page") == "2":
            return httpx.Response(500, json={"message": "database unavailable"})
        return _paged(request)

    client, _ = mock_client(failing)
    notes = []
    observer = QueryObserver(QueryEngine(client), "/items", notifier=Notifier([notes.append]))
    await observer.load({"page": 1})

    state = await observer.load({"page": 2})

    assert isinstance(state.error, ServerError)
    assert state.error.operation == "fetch"
    assert [item.id for item in state.items] == [11, 12]
    assert state.is_fetching is False
    assert notes[0].title == "Fetch failed"
    assert notes[0].description == "database unavailable"


@pytest.mark.asyncio
async def test_last_filter_wins(mock_client) -> None:
    gate = asyncio.Event()

    async def respond(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("search") == "slow":
            await gate.wait()
            return page_of([{"id": 1, "code": "OLD", "name": "Old"}])
        return page_of([{"id": 2, "code": "NEW", "name": "New"}])

    client, _ = mock_client(respond)
    engine = QueryEngine(client)
    observer = QueryObserver(engine, "/items")

    superseded = asyncio.ensure_future(observer.load({"search": "slow"}))
    await asyncio.sleep(0)
    await observer.load({"search": "fast"})
    gate.set()
    await superseded

    assert observer.state.filters == {"search": "fast"}
    assert [item.code for item in observer.state.items] == ["NEW"]
    old = engine.cache.get(cache_key("/items", {"search": "slow"}))
    assert old is not None and old.result.items[0].code == "OLD"


@pytest.mark.asyncio
async def test_fetch_record_unwraps_envelopes(mock_client) -> None:
    client, _ = mock_client(
        lambda request: httpx.Response(200, json={"data": {"id": 7, "code": "ITM-7", "name": "Seven"}})
    )

    item = await QueryEngine(client).fetch_record("/items", 7, schema=Item)

    assert item.id == 7
    assert item.code == "ITM-7"


@pytest.mark.asyncio
async def test_fetch_after_a_mutation_does_not_join_the_older_request(mock_client) -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    name = {"value": "Old"}

    async def respond(request: httpx.Request) -> httpx.Response:
        if request.method == "PUT":
            name["value"] = "Renamed"
            return httpx.Response(200, json={"data": {"id": 7}})
        seen = name["value"]
        if seen == "Old":
            started.set()
            await release.wait()
        return page_of([{"id": 7, "code": "ITM-7", "name": seen}])

    client, handler = mock_client(respond)
    engine = QueryEngine(client)

    before = asyncio.ensure_future(engine.fetch("/items", {"page": 1}))
    await started.wait()
    await MutationGateway(engine, "/items").update(7, {"name": "Renamed"})
    after = await engine.fetch("/items", {"page": 1})
    release.set()
    old = await before

    assert after.items[0].name == "Renamed"
    assert old.items[0].name == "Old"
    assert len(handler.calls("GET", "/items")) == 2
    entry = engine.cache.get(cache_key("/items", {"page": 1}))
    assert entry.result is after
    assert entry.stale is False


@pytest.mark.asyncio
async def test_observer_reports_staleness_until_reloaded(mock_client) -> None:
    client, _ = mock_client(
        lambda request: _paged(request) if request.method == "GET" else httpx.Response(200, json={"data": {}})
    )
    engine = QueryEngine(client)
    observer = QueryObserver(engine, "/items")
    assert observer.is_stale is False

    await observer.load({"page": 1})
    assert observer.is_stale is False

    await MutationGateway(engine, "/items").remove(11)
    assert observer.is_stale is True

    await observer.load({"page": 1})
    assert observer.is_stale is False


@pytest.mark.asyncio
async def test_numeric_and_string_filter_values_share_a_request(mock_client) -> None:
    client, handler = mock_client(_paged)
    engine = QueryEngine(client)

    first = await engine.fetch("/bins", {"warehouseId": 1, "isReceivingBin": False})
    second = await engine.fetch("/bins", {"warehouseId": "1", "isReceivingBin": "false"})

    assert first is second
    assert len(handler.requests) == 1
    assert cache_key("/bins", {"warehouseId": 1}) == cache_key("/bins", {"warehouseId": "1"})


def test_cache_evicts_the_oldest_write() -> None:
    cache = QueryCache(max_entries=2)
    result = QueryResult()
    keys = [cache_key("/items", {"page": page}) for page in (1, 2, 3)]

    for page, key in enumerate(keys, start=1):
        cache.store(key, "/items", {"page": page}, result)
    cache.store(keys[1], "/items", {"page": 2}, result)

    assert len(cache) == 2
    assert cache.get(keys[0]) is None
    assert cache.get(keys[1]) is not None and cache.get(keys[2]) is not None

    with pytest.raises(ValueError):
        QueryCache(max_entries=0)


def test_invalidating_a_parent_path_bumps_sub_path_generations() -> None:
    cache = QueryCache()
    before = cache.generation("/inventory-stock/filter")

    cache.invalidate("/inventory-stock")

    assert cache.generation("/inventory-stock/filter") == before + 1
    assert cache.generation("/inventory-checks") == 0
