"""Persisted plugin settings and the debounced save behind them.

The settings file is a single JSON document::

    {
      "selectedDraftVaultPath": "Novel/Index.md",
      "userScriptFolder": "scripts",
      "workflows": {"Default Workflow": {...}},
      "drafts": {"Novel/Index.md": {"sceneOrder": ["one", "two"], "type": "scenes"}}
    }

``drafts`` is a convenience snapshot for other readers of the file; each
Draft's index frontmatter remains the source of truth for its Scene order.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from draftwright.errors import PersistenceFailure

logger = logging.getLogger(__name__)


class DraftRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    scene_order: list[str] = Field(default_factory=list, alias="sceneOrder")
    type: str = "scenes"


class PluginData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    selected_draft_vault_path: str | None = Field(default=None, alias="selectedDraftVaultPath")
    user_script_folder: str | None = Field(default=None, alias="userScriptFolder")
    workflows: dict[str, Any] = Field(default_factory=dict)
    drafts: dict[str, DraftRecord] = Field(default_factory=dict)


@dataclass
class SettingsStore:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def load(self) -> PluginData:
        """Read the settings file; a missing or unreadable file yields defaults."""

        with self._lock:
            if not self.path.exists():
                return PluginData()
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                return PluginData.model_validate(raw)
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.error(
                    "Ignoring unreadable settings file",
                    extra={"path": str(self.path), "error": str(e)},
                )
                return PluginData()

    def save(self, data: PluginData) -> None:
        """Write ``data``; raises PersistenceFailure when the file cannot be written."""

        payload = data.model_dump(mode="json", by_alias=True)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text(
                    json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
                )
            except OSError as e:
                raise PersistenceFailure(f"Could not write {self.path}: {e}") from e


class Debouncer:
    """Runs ``fn`` once, ``delay`` seconds after the last ``trigger()``.

    Each trigger restarts the countdown rather than extending it.
    """

    def __init__(self, delay: float, fn: Callable[[], None]) -> None:
        self._delay = delay
        self._fn = fn
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            self._fn()

    def cancel(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _fire(self) -> None:
        with self._lock:
            if self._timer is None or threading.current_thread() is not self._timer:
                return
            self._timer = None
        self._fn()
