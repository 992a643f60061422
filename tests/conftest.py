"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
import yaml

from draftwright.app import DraftwrightApp
from draftwright.persistence import SettingsStore
from draftwright.vault.store import FileSystemVault

MakeDraft = Callable[..., str]


def _write_file(root: Path, path: str, content: str) -> None:
    target = root / path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")


def _index_text(
    *,
    scenes: list[str] | None = None,
    title: str | None = None,
    fmt: str = "scenes",
    scene_folder: str = "/",
    extra: dict[str, object] | None = None,
    body: str = "",
) -> str:
    block: dict[str, object] = {"format": fmt}
    if title is not None:
        block["title"] = title
    if fmt == "scenes":
        block["sceneFolder"] = scene_folder
        block["scenes"] = list(scenes or [])
    metadata: dict[str, object] = {"longform": block, **(extra or {})}
    return f"---\n{yaml.safe_dump(metadata, sort_keys=False)}---\n{body}"


def _stored_order(root: Path, index_path: str) -> list[str]:
    text = (root / index_path).read_text(encoding="utf-8")
    metadata = yaml.safe_load(text.split("---\n")[1])
    return list(metadata["longform"]["scenes"])


@pytest.fixture
def vault_root(tmp_path: Path) -> Path:
    """Provide an empty vault directory."""
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def vault(vault_root: Path) -> FileSystemVault:
    return FileSystemVault(vault_root)


@pytest.fixture
def make_draft(vault_root: Path) -> MakeDraft:
    """Write an index file plus one file per scene; returns the index path."""

    def _make(
        folder: str,
        scenes: list[str],
        *,
        files: list[str] | None = None,
        title: str | None = None,
        index_name: str = "Index.md",
    ) -> str:
        index_path = f"{folder}/{index_name}" if folder else index_name
        _write_file(vault_root, index_path, _index_text(scenes=scenes, title=title))
        for name in scenes if files is None else files:
            scene_path = f"{folder}/{name}.md" if folder else f"{name}.md"
            _write_file(vault_root, scene_path, f"Text of {name}.\n")
        return index_path

    return _make


@pytest.fixture
def make_app(
    vault: FileSystemVault, tmp_path: Path
) -> Iterator[Callable[..., DraftwrightApp]]:
    """Build (and tear down) an application over the test vault."""

    created: list[DraftwrightApp] = []

    def _make(*, debounce: float = 60.0, observe: bool = True) -> DraftwrightApp:
        app = DraftwrightApp(
            vault,
            SettingsStore(tmp_path / "settings.json"),
            save_debounce_seconds=debounce,
            poll_interval_seconds=0.05,
        )
        app.load_settings()
        if observe:
            app.begin_observing()
        created.append(app)
        return app

    yield _make

    for app in created:
        app.close()


@pytest.fixture
def write(vault_root: Path) -> Callable[[str, str], None]:
    """Write a vault-relative file."""

    def _write(path: str, content: str) -> None:
        _write_file(vault_root, path, content)

    return _write


@pytest.fixture
def index_text() -> Callable[..., str]:
    """Render an index file with a ``longform`` frontmatter block."""
    return _index_text


@pytest.fixture
def stored_order(vault_root: Path) -> Callable[[str], list[str]]:
    """Read the scene order persisted in an index file's frontmatter."""

    def _read(index_path: str) -> list[str]:
        return _stored_order(vault_root, index_path)

    return _read
