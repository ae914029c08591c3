"""HTTP transport for the inventory backend."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

import httpx

from .errors import ConsoleError, TransportError, error_for_status

logger = logging.getLogger(__name__)

USER_AGENT = "inventory-console"

TokenProvider = Callable[[], Optional[str]]


def _build_headers(token: Optional[str]) -> dict[str, str]:
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    """Extract the server-provided message from an error response."""

    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or response.reason_phrase or f"HTTP {response.status_code}", None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value, body
            if value:
                return str(value), body
    return f"HTTP {response.status_code}", body


class ApiClient:
    """Asynchronous JSON client attaching the bearer token to every request.

    The token is read from ``token_provider`` on each call, so a login or logout
    performed elsewhere takes effect on the next request.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider or (lambda: None)
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        payload: Any = None,
        operation: Optional[str] = None,
    ) -> Any:
        """Execute a request and return the decoded JSON body (``None`` when empty)."""

        headers = _build_headers(self._token_provider())
        logger.debug("%s %s params=%s", method, path, dict(params or {}))
        try:
            response = await self._client.request(
                method,
                path,
                params=dict(params) if params else None,
                json=payload,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {path} timed out", operation=operation) from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {path} failed: {exc}", operation=operation) from exc

        logger.debug("%s %s -> %s", method, path, response.status_code)
        if response.is_error:
            message, body = _error_message(response)
            error = error_for_status(response.status_code, message, body)
            error.operation = operation
            raise error

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ConsoleError(
                f"{method} {path} returned invalid JSON", operation=operation, status_code=response.status_code
            ) from exc

    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return await self.request("GET", path, params=params, operation=kwargs.get("operation", "fetch"))

    async def post(self, path: str, payload: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", path, payload=payload, operation=kwargs.get("operation", "create"))

    async def put(self, path: str, payload: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", path, payload=payload, operation=kwargs.get("operation", "update"))

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, operation=kwargs.get("operation", "delete"))


__all__ = ["ApiClient", "TokenProvider"]
