"""Unit tests for the vault watcher and the event bus."""

from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest
from watchdog.events import DirMovedEvent, FileDeletedEvent, FileMovedEvent

from draftwright.vault.events import EventBus, EventKind, VaultEvent
from draftwright.vault.store import FileSystemVault
from draftwright.vault.watcher import VaultEventHandler, VaultWatcher

LONG_AGO = 1_000_000_000


def _kinds(events: list[VaultEvent]) -> list[tuple[str, str, str | None]]:
    return [(e.kind.value, e.path, e.old_path) for e in events]


@pytest.fixture
def watcher(vault: FileSystemVault):
    watcher = VaultWatcher(vault, EventBus(), timeout_seconds=0.1)
    yield watcher
    watcher.stop()


@pytest.fixture
def handler(vault: FileSystemVault) -> VaultEventHandler:
    return VaultEventHandler(vault, EventBus(), vault.root.resolve())


def _age(vault_root: Path, *paths: str) -> None:
    for path in paths:
        os.utime(vault_root / path, (LONG_AGO, LONG_AGO))


def test_created_modified_and_deleted(vault: FileSystemVault, write) -> None:
    write("a.md", "one\n")
    write("b.txt", "keep\n")
    watcher = VaultWatcher(vault, EventBus())

    write("a.md", "changed\n")
    write("c.md", "new\n")
    vault.delete("b.txt")
    events = watcher.scan()

    assert _kinds(events) == [
        ("deleted", "b.txt", None),
        ("created", "c.md", None),
        ("metadata_changed", "c.md", None),
        ("modified", "a.md", None),
        ("metadata_changed", "a.md", None),
    ]


def test_rename_is_reported_as_a_rename(
    vault: FileSystemVault, watcher: VaultWatcher, write
) -> None:
    write("Novel/old.md", "scene text\n")
    watcher.scan()

    vault.rename("Novel/old.md", "Novel/new.md")

    assert _kinds(watcher.scan()) == [("renamed", "Novel/new.md", "Novel/old.md")]


def test_identical_files_deleted_and_created_are_not_paired(
    vault: FileSystemVault, vault_root: Path, write
) -> None:
    write("Novel/a.md", "")
    write("Other/b.md", "")
    _age(vault_root, "Novel/a.md", "Other/b.md")
    watcher = VaultWatcher(vault, EventBus())

    vault.delete("Novel/a.md")
    vault.delete("Other/b.md")
    write("Novel/c.md", "")
    events = watcher.scan()

    assert _kinds(events) == [
        ("deleted", "Novel/a.md", None),
        ("deleted", "Other/b.md", None),
        ("created", "Novel/c.md", None),
        ("metadata_changed", "Novel/c.md", None),
    ]


def test_file_replaced_in_place_is_a_modification(
    vault: FileSystemVault, vault_root: Path, write
) -> None:
    write("a.md", "one\n")
    _age(vault_root, "a.md")
    watcher = VaultWatcher(vault, EventBus())

    (vault_root / "a.md").unlink()
    write("a.md", "two\n")

    assert _kinds(watcher.scan()) == [
        ("modified", "a.md", None),
        ("metadata_changed", "a.md", None),
    ]


def test_whole_folder_move_is_one_folder_rename(
    vault: FileSystemVault, watcher: VaultWatcher, write
) -> None:
    write("Novel/Index.md", "index\n")
    write("Novel/a.md", "a\n")
    write("Novel/b.md", "b\n")
    watcher.scan()

    vault.rename("Novel", "Book")
    events = watcher.scan()

    assert len(events) == 1
    assert events[0].kind == EventKind.RENAMED
    assert events[0].is_folder
    assert (events[0].old_path, events[0].path) == ("Novel", "Book")


def test_hidden_entries_are_not_watched(watcher: VaultWatcher, write) -> None:
    write(".draftwright/settings.json", "{}\n")

    assert watcher.scan() == []


def test_moves_across_the_hidden_boundary(
    handler: VaultEventHandler, vault_root: Path, write
) -> None:
    root = vault_root.resolve()
    write("Novel/a.md", "a\n")
    write("Novel/b.md", "b\n")

    into_hidden = FileMovedEvent(str(root / "x.md"), str(root / ".trash/x.md"))
    assert _kinds(handler.translate(into_hidden)) == [("deleted", "x.md", None)]

    out_of_hidden = DirMovedEvent(str(root / ".trash/Novel"), str(root / "Novel"))
    assert _kinds(handler.translate(out_of_hidden)) == [
        ("created", "Novel/a.md", None),
        ("metadata_changed", "Novel/a.md", None),
        ("created", "Novel/b.md", None),
        ("metadata_changed", "Novel/b.md", None),
    ]


def test_synthetic_child_moves_are_ignored(handler: VaultEventHandler, vault_root: Path) -> None:
    root = vault_root.resolve()
    child = FileMovedEvent(str(root / "Novel/a.md"), str(root / "Book/a.md"), is_synthetic=True)
    folder = DirMovedEvent(str(root / "Novel"), str(root / "Book"))

    assert handler.translate(child) == []
    assert _kinds(handler.translate(folder)) == [("renamed", "Book", "Novel")]
    assert handler.translate(folder)[0].is_folder
    assert handler.translate(FileDeletedEvent(str(root.parent / "elsewhere.md"))) == []


def test_scan_publishes_to_subscribers_in_order(vault: FileSystemVault, write) -> None:
    bus = EventBus()
    seen: list[tuple[str, str]] = []
    bus.subscribe(lambda e: seen.append(("first", e.kind.value)))
    bus.subscribe(lambda e: seen.append(("second", e.kind.value)))
    watcher = VaultWatcher(vault, bus)

    write("a.md", "x\n")
    watcher.scan()

    assert seen == [
        ("first", "created"),
        ("second", "created"),
        ("first", "metadata_changed"),
        ("second", "metadata_changed"),
    ]
    assert watcher.scan() == []


def test_running_observer_delivers_creates_and_renames(
    vault: FileSystemVault, write
) -> None:
    bus = EventBus()
    seen: list[VaultEvent] = []
    renamed = threading.Event()

    def record(event: VaultEvent) -> None:
        seen.append(event)
        if event.kind == EventKind.RENAMED:
            renamed.set()

    bus.subscribe(record)
    write("Novel/seed.md", "seed\n")
    watcher = VaultWatcher(vault, bus, timeout_seconds=0.1)
    watcher.start()
    try:
        assert watcher.running
        assert watcher.scan() == []
        write("Novel/a.md", "a\n")
        vault.rename("Novel/a.md", "Novel/b.md")
        assert renamed.wait(5.0)
    finally:
        watcher.stop()

    assert not watcher.running
    assert VaultEvent.created("Novel/a.md") in seen
    assert VaultEvent.renamed("Novel/a.md", "Novel/b.md") in seen
    assert watcher.scan() == []


def test_failing_subscriber_does_not_block_others() -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken(_event: VaultEvent) -> None:
        raise RuntimeError("boom")

    bus.subscribe(broken)
    unsubscribe = bus.subscribe(lambda e: seen.append(e.path))
    bus.publish(VaultEvent.created("x.md"))
    unsubscribe()
    bus.publish(VaultEvent.created("y.md"))

    assert seen == ["x.md"]
