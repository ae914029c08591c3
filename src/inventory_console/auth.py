"""Bearer token persistence and login helpers."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .errors import ResponseSchemaError
from .schemas import LoginResult
from .transport import ApiClient

logger = logging.getLogger(__name__)

LOGIN_PATH = "/users/login"


class TokenStore:
    """Keep the bearer token in a file so it survives between sessions."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Optional[str]:
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return token or None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token, encoding="utf-8")
        if os.name != "nt":
            self.path.chmod(0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

    __call__ = load


async def login(client: ApiClient, store: TokenStore, email: str, password: str) -> LoginResult:
    """Authenticate and persist the returned token."""

    body = await client.post(LOGIN_PATH, {"email": email, "password": password}, operation="login")
    if not body:
        raise ResponseSchemaError("No login data returned", operation="login")
    try:
        result = LoginResult.model_validate(body)
    except ValidationError as exc:
        raise ResponseSchemaError(f"Invalid login response: {exc}", operation="login") from exc
    store.save(result.token)
    logger.info("Logged in as %s", result.user.get("email") or email)
    return result


def logout(store: TokenStore) -> None:
    """Forget the stored token; subsequent requests go out unauthenticated."""

    store.clear()
    logger.info("Logged out")
