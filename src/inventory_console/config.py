"""Application configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path


def _default_data_root() -> Path:
    """Return the platform specific directory used for persistent data."""

    if os.name == "nt":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home()))
        return base / "InventoryConsole"
    return Path.home() / ".inventory_console"


def _default_token_path() -> Path:
    """Resolve the bearer token file taking overrides into account."""

    override = os.environ.get("INVENTORY_CONSOLE_TOKEN_FILE")
    if override:
        return Path(override).expanduser()
    return _default_data_root() / "auth_token"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class Settings:
    """Runtime configuration loaded from environment variables."""

    api_url: str = field(default_factory=lambda: os.environ.get("INVENTORY_CONSOLE_API_URL", "http://localhost:8081"))
    request_timeout: float = field(default_factory=lambda: float(os.environ.get("INVENTORY_CONSOLE_TIMEOUT", "15")))
    default_page_size: int = field(default_factory=lambda: int(os.environ.get("INVENTORY_CONSOLE_PAGE_SIZE", "50")))
    log_level: str = field(default_factory=lambda: os.environ.get("INVENTORY_CONSOLE_LOG_LEVEL", "info"))
    token_path: Path = field(default_factory=_default_token_path)
    strict_discrepancy_actions: bool = field(
        default_factory=lambda: _env_flag("INVENTORY_CONSOLE_STRICT_ACTIONS")
    )
    sandbox_host: str = field(default_factory=lambda: os.environ.get("INVENTORY_CONSOLE_SANDBOX_HOST", "127.0.0.1"))
    sandbox_port: int = field(default_factory=lambda: int(os.environ.get("INVENTORY_CONSOLE_SANDBOX_PORT", "8081")))
    sandbox_database: str = field(
        default_factory=lambda: os.environ.get("INVENTORY_CONSOLE_SANDBOX_DB", "sqlite://")
    )
    sandbox_email: str = field(
        default_factory=lambda: os.environ.get("INVENTORY_CONSOLE_SANDBOX_EMAIL", "admin@example.com")
    )
    sandbox_password: str = field(
        default_factory=lambda: os.environ.get("INVENTORY_CONSOLE_SANDBOX_PASSWORD", "admin123")
    )

    def ensure_storage(self) -> None:
        """Ensure that the token directory exists."""

        self.token_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    settings = Settings()
    settings.ensure_storage()
    return settings
