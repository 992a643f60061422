"""Watchdog-backed watcher that turns a local directory into a notification feed.

Two ways to drive it, both through the same :class:`VaultEventHandler`:
- ``start()`` runs a watchdog ``Observer``; native move events become
  ``renamed`` (a moved folder is a single folder ``renamed``);
- ``scan()`` diffs two ``DirectorySnapshot``s on the calling thread, for hosts
  that do not keep an observer running. Moves are paired by inode.

Markdown files also yield ``metadata_changed`` after ``created`` /
``modified``, mirroring how a metadata cache reacts to content changes.
Hidden entries (``.draftwright/`` and friends) never produce events.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.utils.dirsnapshot import DirectorySnapshot, DirectorySnapshotDiff

from draftwright.vault.events import EventBus, VaultEvent
from draftwright.vault.store import FileSystemVault, is_hidden

logger = logging.getLogger(__name__)


def _content_events(path: str, first: VaultEvent) -> list[VaultEvent]:
    if path.endswith(".md"):
        return [first, VaultEvent.metadata_changed(path)]
    return [first]


class VaultEventHandler(FileSystemEventHandler):
    """Translate watchdog events into :class:`VaultEvent`s and publish them."""

    def __init__(self, vault: FileSystemVault, bus: EventBus, root: Path) -> None:
        super().__init__()
        self._vault = vault
        self._bus = bus
        self._root = root

    def relative(self, path: str | bytes) -> str | None:
        """The vault path for ``path``, or None when it is outside or hidden."""

        try:
            relative = Path(os.fsdecode(path)).relative_to(self._root).as_posix()
        except ValueError:
            return None
        if relative in ("", ".") or is_hidden(relative):
            return None
        return relative

    def translate(self, event: FileSystemEvent) -> list[VaultEvent]:
        if event.event_type == EVENT_TYPE_MOVED:
            return self._moved(event)

        path = self.relative(event.src_path)
        if path is None:
            return []
        if event.event_type == EVENT_TYPE_DELETED:
            return [VaultEvent.deleted(path, is_folder=event.is_directory)]
        if event.is_directory:
            # Files inside a new folder arrive as their own created events.
            return []
        if event.event_type == EVENT_TYPE_CREATED:
            return _content_events(path, VaultEvent.created(path))
        if event.event_type == EVENT_TYPE_MODIFIED:
            return _content_events(path, VaultEvent.modified(path))
        return []

    def _moved(self, event: FileSystemEvent) -> list[VaultEvent]:
        # Children of a moved folder are covered by the folder rename.
        if event.is_synthetic:
            return []
        old_path = self.relative(event.src_path)
        new_path = self.relative(event.dest_path)
        if old_path is None and new_path is None:
            return []
        if new_path is None:
            return [VaultEvent.deleted(old_path, is_folder=event.is_directory)]
        if old_path is None:
            if not event.is_directory:
                return _content_events(new_path, VaultEvent.created(new_path))
            events: list[VaultEvent] = []
            for path in self._vault.list_files(new_path, recursive=True):
                events.extend(_content_events(path, VaultEvent.created(path)))
            return events
        return [VaultEvent.renamed(old_path, new_path, is_folder=event.is_directory)]

    def handle(self, event: FileSystemEvent) -> list[VaultEvent]:
        events = self.translate(event)
        for vault_event in events:
            logger.debug(
                "Vault change detected",
                extra={
                    "kind": vault_event.kind.value,
                    "path": vault_event.path,
                    "old_path": vault_event.old_path,
                },
            )
            self._bus.publish(vault_event)
        return events

    def _handle_from_observer(self, event: FileSystemEvent) -> None:
        try:
            self.handle(event)
        except Exception:
            logger.exception("Vault event dispatch failed", extra={"src": str(event.src_path)})

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle_from_observer(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._handle_from_observer(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle_from_observer(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._handle_from_observer(event)


def _beneath(path: str, folders: list[str]) -> bool:
    return any(path.startswith(folder + os.sep) for folder in folders)


def _outermost(paths: list[str]) -> list[str]:
    kept: list[str] = []
    for path in sorted(paths):
        if not _beneath(path, kept):
            kept.append(path)
    return kept


def diff_to_events(diff: DirectorySnapshotDiff) -> list[FileSystemEvent]:
    """Order a snapshot diff the way the observer would report it."""

    moved_dirs = dict(diff.dirs_moved)
    moved_roots = _outermost(list(moved_dirs))
    modified = set(diff.files_modified)
    # Same path, new inode: the file was replaced in place.
    replaced = set(diff.files_created) & set(diff.files_deleted)

    deleted = set(diff.files_deleted) - replaced
    created = set(diff.files_created) - replaced
    events: list[FileSystemEvent] = [DirMovedEvent(src, moved_dirs[src]) for src in moved_roots]
    for src, dest in sorted(diff.files_moved):
        if _beneath(src, moved_roots):
            continue
        if src in modified:
            # A new file that reused a deleted file's inode.
            deleted.add(src)
            created.add(dest)
            continue
        events.append(FileMovedEvent(src, dest))

    events.extend(FileDeletedEvent(path) for path in sorted(deleted))
    events.extend(DirDeletedEvent(path) for path in _outermost(list(diff.dirs_deleted)))
    events.extend(FileCreatedEvent(path) for path in sorted(created))
    moved_sources = {src for src, _ in diff.files_moved}
    events.extend(
        FileModifiedEvent(path) for path in sorted((modified | replaced) - moved_sources)
    )
    return events


class VaultWatcher:
    """Publish vault changes to an :class:`EventBus`.

    The baseline snapshot is taken on construction. While the observer runs,
    ``scan()`` is a no-op; stopping the observer re-baselines the snapshot so
    a later ``scan()`` does not replay what the observer already delivered.
    """

    def __init__(
        self, vault: FileSystemVault, bus: EventBus, *, timeout_seconds: float = 1.0
    ) -> None:
        self._root = vault.root.resolve()
        self._handler = VaultEventHandler(vault, bus, self._root)
        self._timeout = timeout_seconds
        self._lock = threading.Lock()
        self._snapshot = self._take_snapshot()
        self._observer: Observer | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def _take_snapshot(self) -> DirectorySnapshot:
        return DirectorySnapshot(str(self._root), recursive=True)

    def scan(self) -> list[VaultEvent]:
        """Diff the tree once and publish the resulting events."""

        with self._lock:
            if self._observer is not None:
                return []
            current = self._take_snapshot()
            diff = DirectorySnapshotDiff(self._snapshot, current)
            self._snapshot = current
        published: list[VaultEvent] = []
        for event in diff_to_events(diff):
            published.extend(self._handler.handle(event))
        return published

    def start(self) -> None:
        with self._lock:
            if self._observer is not None:
                return
            observer = Observer(timeout=self._timeout)
            observer.schedule(self._handler, str(self._root), recursive=True)
            observer.start()
            self._observer = observer
        logger.info("Vault observer started", extra={"root": str(self._root)})

    def stop(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=self._timeout * 2 + 1)
        with self._lock:
            self._snapshot = self._take_snapshot()
        logger.info("Vault observer stopped", extra={"root": str(self._root)})
