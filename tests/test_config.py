from pathlib import Path

from inventory_console.config import Settings


def test_settings_read_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("INVENTORY_CONSOLE_API_URL", "https://inventory.example.com/api")
    monkeypatch.setenv("INVENTORY_CONSOLE_PAGE_SIZE", "25")
    monkeypatch.setenv("INVENTORY_CONSOLE_TOKEN_FILE", str(tmp_path / "token"))
    monkeypatch.setenv("INVENTORY_CONSOLE_STRICT_ACTIONS", "yes")

    settings = Settings()

    assert settings.api_url == "https://inventory.example.com/api"
    assert settings.default_page_size == 25
    assert settings.token_path == Path(tmp_path / "token")
    assert settings.strict_discrepancy_actions is True


def test_settings_defaults(monkeypatch) -> None:
    for name in ("INVENTORY_CONSOLE_API_URL", "INVENTORY_CONSOLE_TIMEOUT", "INVENTORY_CONSOLE_STRICT_ACTIONS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.api_url == "http://localhost:8081"
    assert settings.request_timeout == 15.0
    assert settings.strict_discrepancy_actions is False
    assert settings.sandbox_database == "sqlite://"
