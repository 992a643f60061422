"""Unit tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from draftwright.config import DraftwrightSettings

_ENV_VARS = [
    "DRAFTWRIGHT_VAULT_PATH",
    "DRAFTWRIGHT_SETTINGS_FILE",
    "LOG_LEVEL",
    "DRAFTWRIGHT_SAVE_DEBOUNCE_SECONDS",
    "DRAFTWRIGHT_POLL_INTERVAL_SECONDS",
    "DRAFTWRIGHT_CORS_ORIGINS",
]


@pytest.fixture(autouse=True)
def _clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_settings_defaults() -> None:
    """Test default values with no environment."""
    settings = DraftwrightSettings()

    assert settings.vault_path == Path(".")
    assert settings.log_level == "INFO"
    assert settings.save_debounce_seconds == 3.0
    assert settings.poll_interval_seconds == 1.0
    assert settings.settings_path == Path(".") / ".draftwright" / "settings.json"


def test_settings_loads_from_dotenv(tmp_path: Path) -> None:
    vault = tmp_path / "vault"
    vault.mkdir()
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                f"DRAFTWRIGHT_VAULT_PATH={vault}",
                "LOG_LEVEL=DEBUG",
                "DRAFTWRIGHT_SAVE_DEBOUNCE_SECONDS=0.5",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = DraftwrightSettings()

    assert settings.vault_path == vault
    assert settings.log_level == "DEBUG"
    assert settings.save_debounce_seconds == 0.5
    assert settings.settings_path == vault / ".draftwright" / "settings.json"


def test_explicit_settings_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DRAFTWRIGHT_SETTINGS_FILE", str(tmp_path / "elsewhere.json"))

    assert DraftwrightSettings().settings_path == tmp_path / "elsewhere.json"


def test_vault_path_must_be_a_directory(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    not_a_dir = tmp_path / "file.txt"
    not_a_dir.write_text("x", encoding="utf-8")
    monkeypatch.setenv("DRAFTWRIGHT_VAULT_PATH", str(not_a_dir))

    with pytest.raises(ValidationError):
        DraftwrightSettings()


def test_negative_debounce_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DRAFTWRIGHT_SAVE_DEBOUNCE_SECONDS", "-1")

    with pytest.raises(ValidationError):
        DraftwrightSettings()


def test_parsed_cors_origins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DRAFTWRIGHT_CORS_ORIGINS", " http://a.test , ,http://b.test")

    assert DraftwrightSettings().parsed_cors_origins() == ["http://a.test", "http://b.test"]
