"""Filter state for list views, optionally mirrored into a URL query string."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional
from urllib.parse import parse_qsl, urlencode

logger = logging.getLogger(__name__)

Filter = dict[str, Any]
Listener = Callable[[Filter], None]

RESERVED_KEYS = ("page", "limit", "order", "cursor", "search", "from", "to")
NUMERIC_KEYS = frozenset({"page", "limit"})


def is_empty(value: Any) -> bool:
    return value is None or value == ""


def clean(filters: Mapping[str, Any]) -> Filter:
    """Drop keys whose value must never be serialized."""

    return {key: value for key, value in filters.items() if not is_empty(value)}


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_wire(filters: Mapping[str, Any]) -> dict[str, str]:
    """The non-empty filter values exactly as they are sent over the wire."""

    return {key: _stringify(value) for key, value in clean(filters).items()}


def to_query_string(filters: Mapping[str, Any]) -> str:
    return urlencode(list(to_wire(filters).items()))


def parse_query_string(query: str) -> Filter:
    """Parse a query string into a filter; ``page`` and ``limit`` become integers."""

    parsed: Filter = {}
    for key, value in parse_qsl(query.lstrip("?")):
        if key in NUMERIC_KEYS:
            try:
                parsed[key] = int(value)
            except ValueError:
                logger.warning("Ignoring non-numeric %s=%r in query string", key, value)
            continue
        parsed[key] = value
    return parsed


class Location:
    """A navigable location whose query string can mirror a filter store."""

    def __init__(self, path: str = "/", query: str = "") -> None:
        self.path = path
        self.query = query.lstrip("?")
        self.history: list[str] = [self.href]

    @property
    def href(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path

    def replace(self, query: str) -> None:
        """Swap the current history entry instead of pushing a new one."""

        self.query = query
        self.history[-1] = self.href


class FilterStore:
    """Current query filters for one list view.

    The store owns the canonical filter value. When a ``location`` is given it
    seeds itself from the location's query string once, then only ever writes
    to it.
    """

    def __init__(
        self,
        initial: Optional[Mapping[str, Any]] = None,
        *,
        default_limit: Optional[int] = 50,
        location: Optional[Location] = None,
    ) -> None:
        self._initial = clean(initial or {})
        self._default_limit = default_limit
        self._location = location
        self._listeners: list[Listener] = []

        filters = self.initial_filters()
        if location is not None:
            filters.update(parse_query_string(location.query))
        self._filters: Filter = filters

    def initial_filters(self) -> Filter:
        return clean({"limit": self._default_limit, **self._initial})

    def get(self) -> Filter:
        return dict(self._filters)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, partial: Mapping[str, Any]) -> None:
        """Merge several keys as one update; empty values clear their key."""

        updated = dict(self._filters)
        for key, value in partial.items():
            if is_empty(value):
                updated.pop(key, None)
            else:
                updated[key] = value
        self._commit(updated)

    def reset(self) -> None:
        self._commit(self.initial_filters())

    def _commit(self, filters: Filter) -> None:
        self._filters = filters
        if self._location is not None:
            self._location.replace(to_query_string(filters))
        snapshot = self.get()
        for listener in self._listeners:
            listener(snapshot)

    # pagination helpers

    @property
    def page(self) -> int:
        return int(self._filters.get("page") or 1)

    def go_to_page(self, page: int) -> None:
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        self.set("page", page)

    def go_to_next_page(self) -> None:
        self.go_to_page(self.page + 1)

    def go_to_previous_page(self) -> bool:
        """Step back one page; returns ``False`` when already on the first page."""

        if self.page <= 1:
            return False
        self.go_to_page(self.page - 1)
        return True

    def set_next_cursor(self, cursor: str) -> None:
        self.set("cursor", cursor)

    def go_to_first_page(self) -> None:
        """Return to the first page by dropping the cursor; there is no cursor history."""

        self.set_many({"cursor": None, "page": 1 if "page" in self._filters else None})
