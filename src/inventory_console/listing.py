"""A filtered, paginated list view bound to one endpoint."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel

from .filters import Filter, FilterStore, Location
from .notifications import Notifier
from .query import QueryEngine, QueryObserver, QueryState
from .schemas import Pagination


class FilteredList:
    """Couple a :class:`FilterStore` with a :class:`QueryObserver`.

    Every filter mutation is followed by exactly one reload for the resulting
    filter, so the list always reflects the newest filter once the latest
    call has returned.

    Example::

        orders = FilteredList(engine, "/purchase-orders", initial_filters={"status": "draft"})
        await orders.refetch()
        await orders.set_filter("search", "PO-2024")
        await orders.go_to_next_page()
    """

    def __init__(
        self,
        engine: QueryEngine,
        endpoint: str,
        *,
        initial_filters: Optional[Mapping[str, Any]] = None,
        default_limit: Optional[int] = 50,
        location: Optional[Location] = None,
        schema: Optional[type[BaseModel]] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.store = FilterStore(initial_filters, default_limit=default_limit, location=location)
        self.observer = QueryObserver(engine, endpoint, schema=schema, notifier=notifier)

    @property
    def endpoint(self) -> str:
        return self.observer.endpoint

    @property
    def filters(self) -> Filter:
        return self.store.get()

    @property
    def state(self) -> QueryState:
        return self.observer.state

    @property
    def data(self) -> tuple[Any, ...]:
        return self.state.items

    @property
    def pagination(self) -> Optional[Pagination]:
        return self.state.pagination

    @property
    def meta(self) -> Optional[dict[str, Any]]:
        return self.state.result.meta if self.state.result else None

    @property
    def is_loading(self) -> bool:
        return self.state.is_loading

    @property
    def is_fetching(self) -> bool:
        return self.state.is_fetching

    @property
    def error(self):
        return self.state.error

    async def refetch(self, *, force: bool = False) -> QueryState:
        return await self.observer.load(self.store.get(), force=force)

    async def set_filter(self, key: str, value: Any) -> QueryState:
        self.store.set(key, value)
        return await self.refetch()

    async def set_filters(self, partial: Mapping[str, Any]) -> QueryState:
        self.store.set_many(partial)
        return await self.refetch()

    async def reset_filters(self) -> QueryState:
        self.store.reset()
        return await self.refetch()

    async def go_to_page(self, page: int) -> QueryState:
        self.store.go_to_page(page)
        return await self.refetch()

    async def go_to_next_page(self) -> QueryState:
        self.store.go_to_next_page()
        return await self.refetch()

    async def go_to_previous_page(self) -> QueryState:
        if not self.store.go_to_previous_page():
            return self.state
        return await self.refetch()

    async def set_next_cursor(self, cursor: str) -> QueryState:
        self.store.set_next_cursor(cursor)
        return await self.refetch()

    async def go_to_next_cursor_page(self) -> QueryState:
        """Follow ``pagination.nextCursor`` of the current result, if there is one."""

        pagination = self.pagination
        if pagination is None or not pagination.next_cursor:
            return self.state
        return await self.set_next_cursor(pagination.next_cursor)

    async def go_to_first_page(self) -> QueryState:
        self.store.go_to_first_page()
        return await self.refetch()
