import pytest

from inventory_console.filters import Location, parse_query_string
from inventory_console.listing import FilteredList
from inventory_console.notifications import Notifier


@pytest.mark.asyncio
async def test_search_and_status_filters_hit_the_backend(engine) -> None:
    location = Location("/items", "status=active")
    items = FilteredList(engine, "/items", location=location)

    state = await items.refetch()
    assert {item.code for item in state.items} == {"ITM-001", "ITM-002"}
    assert items.pagination.total == 2

    await items.set_filter("search", "water")
    assert [item.name for item in items.data] == ["Bottled Water"]
    assert parse_query_string(location.query) == {"limit": 50, "status": "active", "search": "water"}

    await items.reset_filters()
    assert items.filters == {"limit": 50}
    assert len(items.data) == 3


@pytest.mark.asyncio
async def test_page_navigation_follows_the_store(engine) -> None:
    partners = FilteredList(engine, "/partners", default_limit=2)

    await partners.refetch()
    assert partners.pagination.total == 5
    assert partners.pagination.total_pages == 3

    await partners.go_to_next_page()
    assert [partner.code for partner in partners.data] == ["P-003", "P-004"]

    await partners.go_to_page(3)
    assert [partner.code for partner in partners.data] == ["P-005"]

    await partners.go_to_previous_page()
    await partners.go_to_previous_page()
    state = await partners.go_to_previous_page()
    assert state.filters["page"] == 1
    assert [partner.code for partner in state.items] == ["P-001", "P-002"]


@pytest.mark.asyncio
async def test_cursor_pages_forward_and_back_to_first(engine) -> None:
    items = FilteredList(engine, "/items", initial_filters={"cursor": "0"}, default_limit=2)

    await items.refetch()
    assert [item.id for item in items.data] == [1, 2]
    assert items.pagination.next_cursor == "2"

    await items.go_to_next_cursor_page()
    assert [item.id for item in items.data] == [3]
    assert items.pagination.next_cursor is None

    state = await items.go_to_next_cursor_page()
    assert [item.id for item in state.items] == [3]

    await items.go_to_first_page()
    assert "cursor" not in items.filters
    assert items.pagination.total == 3


@pytest.mark.asyncio
async def test_backend_rejection_is_reported_and_previous_data_kept(engine) -> None:
    notes = []
    items = FilteredList(engine, "/items", notifier=Notifier([notes.append]))
    await items.refetch()

    state = await items.set_filter("order", "-nonexistent")

    assert state.error is not None
    assert state.error.status_code == 400
    assert len(items.data) == 3
    assert notes[-1].title == "Fetch failed"
