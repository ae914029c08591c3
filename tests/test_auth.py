import os

import pytest

from inventory_console.auth import TokenStore, login, logout
from inventory_console.errors import AuthenticationError


def test_token_store_round_trip(tmp_path) -> None:
    store = TokenStore(tmp_path / "nested" / "auth_token")
    assert store.load() is None

    store.save("abc123")

    assert store() == "abc123"
    if os.name != "nt":
        assert store.path.stat().st_mode & 0o777 == 0o600
    store.clear()
    store.clear()
    assert store.load() is None


@pytest.mark.asyncio
async def test_login_persists_token_used_by_later_requests(anonymous_api, token_store, settings) -> None:
    result = await login(anonymous_api, token_store, settings.sandbox_email, settings.sandbox_password)

    assert token_store.load() == result.token
    assert result.user["email"] == settings.sandbox_email
    body = await anonymous_api.get("/warehouses")
    assert len(body["data"]) == 2


@pytest.mark.asyncio
async def test_wrong_password_is_rejected(anonymous_api, token_store, settings) -> None:
    with pytest.raises(AuthenticationError) as excinfo:
        await login(anonymous_api, token_store, settings.sandbox_email, "wrong")

    assert excinfo.value.status_code == 401
    assert excinfo.value.operation == "login"
    assert str(excinfo.value) == "Invalid email or password"
    assert token_store.load() is None


@pytest.mark.asyncio
async def test_requests_after_logout_are_unauthenticated(api, token_store) -> None:
    await api.get("/items")

    logout(token_store)

    with pytest.raises(AuthenticationError):
        await api.get("/items")
