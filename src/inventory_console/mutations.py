"""Create, update and delete calls that invalidate cached queries on success."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from .errors import ConsoleError, InvalidPayloadError
from .notifications import Notifier
from .query import QueryCache, QueryEngine, normalize_endpoint

logger = logging.getLogger(__name__)


def _as_payload(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    return payload


class MutationGateway:
    """Write access to one entity endpoint.

    Any successful call invalidates every cached query of the endpoint (plus
    ``also_invalidates``); filters are not inspected.
    """

    def __init__(
        self,
        engine: QueryEngine,
        endpoint: str,
        *,
        soft_delete: bool = True,
        status_field: str = "status",
        active_value: str = "active",
        also_invalidates: Iterable[str] = (),
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.engine = engine
        self.endpoint = normalize_endpoint(endpoint)
        self.soft_delete = soft_delete
        self.status_field = status_field
        self.active_value = active_value
        self.also_invalidates = tuple(also_invalidates)
        self.notifier = notifier

    @property
    def cache(self) -> QueryCache:
        return self.engine.cache

    def _path(self, *parts: Any) -> str:
        return "/".join([self.endpoint, *(str(part) for part in parts)])

    async def _call(
        self,
        method: str,
        path: str,
        operation: str,
        payload: Any = None,
        invalidates: Iterable[str] = (),
    ) -> Any:
        api = self.engine.api
        try:
            if method == "POST":
                body = await api.post(path, _as_payload(payload), operation=operation)
            elif method == "PUT":
                body = await api.put(path, _as_payload(payload), operation=operation)
            else:
                body = await api.delete(path, operation=operation)
        except ConsoleError as exc:
            exc.operation = exc.operation or operation
            if self.notifier is not None:
                self.notifier.failure(exc, operation)
            raise
        for endpoint in (self.endpoint, *self.also_invalidates, *invalidates):
            self.cache.invalidate(endpoint)
        if self.notifier is not None:
            self.notifier.success(operation)
        return body

    async def get_one(self, record_id: Any, *, schema: Optional[type[BaseModel]] = None) -> Any:
        return await self.engine.fetch_record(self.endpoint, record_id, schema=schema)

    async def create(self, payload: Any) -> Any:
        return await self._call("POST", self.endpoint, "create", payload)

    async def update(self, record_id: Any, payload: Any) -> Any:
        return await self._call("PUT", self._path(record_id), "update", payload)

    async def remove(self, record_id: Any) -> Any:
        return await self._call("DELETE", self._path(record_id), "delete")

    async def restore(self, record_id: Any) -> Any:
        """Reverse a logical delete by setting the status field back to active."""

        if not self.soft_delete:
            raise InvalidPayloadError(f"{self.endpoint} does not support restore", operation="update")
        return await self._call(
            "PUT", self._path(record_id), "update", {self.status_field: self.active_value}
        )

    async def perform(
        self,
        action: str,
        *,
        record_id: Any = None,
        payload: Any = None,
        operation: str = "update",
        invalidates: Iterable[str] = (),
    ) -> Any:
        """POST to ``/{endpoint}/{id}/{action}`` (or ``/{endpoint}/{action}`` without an id)."""

        path = self._path(record_id, action) if record_id is not None else self._path(action)
        logger.debug("Performing %s on %s", action, path)
        return await self._call("POST", path, operation, payload, invalidates)
