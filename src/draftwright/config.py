"""Runtime configuration.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Persisted user state (workflows, selected draft, script folder) is not
configuration; it lives in the settings file managed by
:mod:`draftwright.persistence`.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DraftwrightSettings(BaseSettings):
    """Settings for the draftwright host.

    Environment variables:
    - DRAFTWRIGHT_VAULT_PATH
    - DRAFTWRIGHT_SETTINGS_FILE        (optional)
    - LOG_LEVEL                        (optional)
    - DRAFTWRIGHT_SAVE_DEBOUNCE_SECONDS (optional)
    - DRAFTWRIGHT_POLL_INTERVAL_SECONDS (optional)

    Notes:
        Tests can override the env file via
        `DraftwrightSettings(_env_file=path_to_env)`.
    """

    vault_path: Path = Field(
        default=Path("."),
        validation_alias="DRAFTWRIGHT_VAULT_PATH",
        description="Root directory of the document store",
    )
    settings_file: Path | None = Field(
        default=None,
        validation_alias="DRAFTWRIGHT_SETTINGS_FILE",
        description="JSON file holding persisted workflows and draft state",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    save_debounce_seconds: float = Field(
        default=3.0,
        ge=0.0,
        validation_alias="DRAFTWRIGHT_SAVE_DEBOUNCE_SECONDS",
        description="Quiet period before a burst of model changes is persisted",
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        gt=0.0,
        validation_alias="DRAFTWRIGHT_POLL_INTERVAL_SECONDS",
        description="Wake-up interval of the watchdog observer thread used by `draftwright watch`",
    )

    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="DRAFTWRIGHT_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_vault_directory(self) -> DraftwrightSettings:
        if self.vault_path.exists() and not self.vault_path.is_dir():
            raise ValueError(f"DRAFTWRIGHT_VAULT_PATH is not a directory: {self.vault_path}")
        return self

    @property
    def settings_path(self) -> Path:
        """Where persisted plugin data lives."""

        if self.settings_file is not None:
            return self.settings_file
        return self.vault_path / ".draftwright" / "settings.json"

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
