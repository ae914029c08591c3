"""Cached, deduplicated list queries.

Cache entries are addressed by a hash of ``(endpoint, wire-form filter)``, so
two deeply equal filters share one entry and one in-flight request regardless
of key order. A result for a superseded filter lands in its own slot and never
touches the view that moved on.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ValidationError

from .errors import ConsoleError, ResponseSchemaError
from .filters import Filter, clean, to_wire
from .notifications import Notifier
from .schemas import QueryResult, schema_for, unwrap_record
from .transport import ApiClient

logger = logging.getLogger(__name__)


def normalize_endpoint(endpoint: str) -> str:
    return "/" + endpoint.strip("/")


def cache_key(endpoint: str, filters: Mapping[str, Any]) -> str:
    """Deterministic hash of the endpoint and the filter as sent over the wire.

    ``{"warehouseId": 1}`` and ``{"warehouseId": "1"}`` produce the same
    request and therefore the same key.
    """

    canonical = json.dumps(
        [normalize_endpoint(endpoint), to_wire(filters)],
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class CacheEntry:
    endpoint: str
    filters: Filter
    result: Optional[QueryResult] = None
    error: Optional[ConsoleError] = None
    stale: bool = False
    updated_at: float = 0.0


class QueryCache:
    """Shared result cache. Only the engine writes data; mutations only invalidate.

    At most ``max_entries`` entries are kept; the least recently written one
    is evicted first.
    """

    def __init__(self, max_entries: int = 500) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self._entries: dict[str, CacheEntry] = {}
        self._generations: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def generation(self, endpoint: str) -> int:
        """Invalidation counter of ``endpoint``; invalidating a parent path bumps it too."""

        parts = normalize_endpoint(endpoint).strip("/").split("/")
        return sum(
            self._generations.get("/" + "/".join(parts[:depth]), 0) for depth in range(1, len(parts) + 1)
        )

    def store(self, key: str, endpoint: str, filters: Filter, result: QueryResult, *, stale: bool = False) -> None:
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(
            endpoint=normalize_endpoint(endpoint),
            filters=dict(filters),
            result=result,
            stale=stale,
            updated_at=time.monotonic(),
        )
        self._evict()

    def record_error(self, key: str, endpoint: str, filters: Filter, error: ConsoleError) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            entry = CacheEntry(endpoint=normalize_endpoint(endpoint), filters=dict(filters))
        self._entries[key] = entry
        entry.error = error
        entry.updated_at = time.monotonic()
        self._evict()

    def _evict(self) -> None:
        while len(self._entries) > self.max_entries:
            oldest = min(self._entries, key=lambda key: self._entries[key].updated_at)
            del self._entries[oldest]
            logger.debug("Evicted cached query %s", oldest)

    def invalidate(self, endpoint: str) -> int:
        """Mark every entry of ``endpoint`` (and its sub-paths) stale, whatever its filter."""

        root = normalize_endpoint(endpoint)
        self._generations[root] = self._generations.get(root, 0) + 1
        count = 0
        for entry in self._entries.values():
            if entry.endpoint == root or entry.endpoint.startswith(root + "/"):
                entry.stale = True
                count += 1
        logger.debug("Invalidated %d cached queries for %s", count, root)
        return count


class QueryEngine:
    """Fetch list pages through the cache, sharing identical in-flight requests.

    An in-flight request is shared only with callers that arrive before the
    endpoint is invalidated again; later callers start a fresh request.
    """

    def __init__(self, api: ApiClient, cache: Optional[QueryCache] = None) -> None:
        self.api = api
        self.cache = cache if cache is not None else QueryCache()
        self._in_flight: dict[str, tuple[asyncio.Future[QueryResult], int]] = {}

    async def fetch(
        self,
        endpoint: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        schema: Optional[type[BaseModel]] = None,
        force: bool = False,
    ) -> QueryResult:
        params = clean(filters or {})
        key = cache_key(endpoint, params)

        entry = self.cache.get(key)
        if not force and entry is not None and entry.result is not None and not entry.stale:
            logger.debug("Cache hit for %s %s", endpoint, params)
            return entry.result

        generation = self.cache.generation(endpoint)
        pending = self._in_flight.get(key)
        if pending is not None and pending[1] == generation:
            task = pending[0]
        else:
            logger.debug("Cache miss for %s %s", endpoint, params)
            task = asyncio.ensure_future(self._load(key, endpoint, params, schema, generation))
            self._in_flight[key] = (task, generation)
            task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Future[QueryResult]) -> None:
        pending = self._in_flight.get(key)
        if pending is not None and pending[0] is task:
            del self._in_flight[key]

    async def _load(
        self, key: str, endpoint: str, params: Filter, schema: Optional[type[BaseModel]], generation: int
    ) -> QueryResult:
        try:
            body = await self.api.get(normalize_endpoint(endpoint), params=params, operation="fetch")
            result = QueryResult.from_response(body, schema or schema_for(endpoint))
        except ConsoleError as exc:
            self.cache.record_error(key, endpoint, params, exc)
            raise
        if self.cache.generation(endpoint) == generation:
            self.cache.store(key, endpoint, params, result)
            return result
        # Raced an invalidation: keep it only as a stale placeholder, never over fresher data.
        current = self.cache.get(key)
        if current is None or current.result is None or current.stale:
            self.cache.store(key, endpoint, params, result, stale=True)
        return result

    async def fetch_record(
        self,
        endpoint: str,
        record_id: Any,
        *,
        schema: Optional[type[BaseModel]] = None,
        envelope: tuple[str, ...] = (),
    ) -> Any:
        """Read one record; always goes to the network."""

        body = await self.api.get(f"{normalize_endpoint(endpoint)}/{record_id}", operation="fetch")
        record = unwrap_record(body, *envelope)
        if schema is None:
            return record
        try:
            return schema.model_validate(record)
        except ValidationError as exc:
            raise ResponseSchemaError(f"Invalid {endpoint} record: {exc}", operation="fetch") from exc


@dataclass(slots=True)
class QueryState:
    """What a list view renders: the last good result plus status flags."""

    filters: Filter = field(default_factory=dict)
    result: Optional[QueryResult] = None
    is_loading: bool = False
    is_fetching: bool = False
    error: Optional[ConsoleError] = None

    @property
    def items(self) -> tuple[Any, ...]:
        return self.result.items if self.result else ()

    @property
    def pagination(self):
        return self.result.pagination if self.result else None


class QueryObserver:
    """Tracks one list view's current query and keeps the previous page visible.

    Failures are stored on :attr:`state` and reported to the notifier; the last
    good result is kept.
    """

    def __init__(
        self,
        engine: QueryEngine,
        endpoint: str,
        *,
        schema: Optional[type[BaseModel]] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.engine = engine
        self.endpoint = normalize_endpoint(endpoint)
        self.schema = schema
        self.notifier = notifier
        self.state = QueryState()
        self._current_key: Optional[str] = None

    @property
    def is_stale(self) -> bool:
        entry = self.engine.cache.get(self._current_key) if self._current_key else None
        return bool(entry and entry.stale)

    async def load(self, filters: Mapping[str, Any], *, force: bool = False) -> QueryState:
        params = clean(filters)
        key = cache_key(self.endpoint, params)
        self._current_key = key
        self.state.filters = params
        self.state.is_fetching = True
        self.state.is_loading = self.state.result is None

        try:
            result = await self.engine.fetch(self.endpoint, params, schema=self.schema, force=force)
        except ConsoleError as exc:
            if self._current_key != key:
                logger.warning("Ignoring failure for superseded query %s %s: %s", self.endpoint, params, exc)
                return self.state
            self.state.error = exc
            self.state.is_fetching = self.state.is_loading = False
            if self.notifier is not None:
                self.notifier.failure(exc, "fetch")
            return self.state

        if self._current_key != key:
            logger.warning("Discarding result for superseded query %s %s", self.endpoint, params)
            return self.state
        self.state.result = result
        self.state.error = None
        self.state.is_fetching = self.state.is_loading = False
        return self.state
