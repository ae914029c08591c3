from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from inventory_console.auth import TokenStore, login
from inventory_console.config import Settings
from inventory_console.query import QueryEngine
from inventory_console.sandbox import create_app
from inventory_console.transport import ApiClient

SANDBOX_URL = "http://sandbox.test"
MOCK_URL = "http://mock.test"

Handler = Callable[[httpx.Request], Any]


class RecordingHandler:
    """MockTransport handler that keeps every request it answered."""

    def __init__(self, respond: Handler) -> None:
        self.respond = respond
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.respond(request)
        if hasattr(response, "__await__"):
            response = await response
        return response

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


def page_of(items: list[dict[str, Any]], **pagination: Any) -> httpx.Response:
    return httpx.Response(200, json={"data": items, "pagination": pagination})


@pytest.fixture(name="settings")
def settings_fixture(tmp_path) -> Settings:
    return Settings(
        api_url=SANDBOX_URL,
        token_path=tmp_path / "auth_token",
        sandbox_database="sqlite://",
        strict_discrepancy_actions=False,
    )


@pytest.fixture(name="sandbox_app")
def sandbox_app_fixture(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest.fixture(name="token_store")
def token_store_fixture(settings: Settings) -> TokenStore:
    return TokenStore(settings.token_path)


@pytest_asyncio.fixture(name="anonymous_api")
async def anonymous_api_fixture(sandbox_app, token_store) -> AsyncGenerator[ApiClient, None]:
    client = ApiClient(SANDBOX_URL, token_provider=token_store, transport=httpx.ASGITransport(app=sandbox_app))
    try:
        yield client
    finally:
        await client.aclose()


@pytest_asyncio.fixture(name="api")
async def api_fixture(anonymous_api, token_store, settings) -> AsyncGenerator[ApiClient, None]:
    await login(anonymous_api, token_store, settings.sandbox_email, settings.sandbox_password)
    yield anonymous_api


@pytest.fixture(name="engine")
def engine_fixture(api: ApiClient) -> QueryEngine:
    return QueryEngine(api)


@pytest_asyncio.fixture(name="mock_client")
async def mock_client_fixture() -> AsyncGenerator[Callable[[Handler], tuple[ApiClient, RecordingHandler]], None]:
    """Build clients over ``httpx.MockTransport``; returns ``(client, handler)``."""

    clients: list[ApiClient] = []

    def factory(respond: Handler) -> tuple[ApiClient, RecordingHandler]:
        handler = RecordingHandler(respond)
        client = ApiClient(MOCK_URL, token_provider=lambda: "test-token", transport=httpx.MockTransport(handler))
        clients.append(client)
        return client, handler

    yield factory
    for client in clients:
        await client.aclose()
