"""Keep the in-memory Draft/Scene model consistent with the vault.

:class:`VaultSync` is the only writer of the Draft model. It reacts to vault
notifications one at a time (in delivery order) and applies these rules:

- ``metadata_changed``: a Draft root is re-read and its order re-reconciled;
  a file that gained (lost) the Draft marker is added (dropped); a tracked
  Scene only has its cached entry refreshed.
- ``deleted``: a Draft root drops the Draft and all its Scenes; a Scene is
  pruned from its Draft's order.
- ``renamed``: a Scene keeps its position; a Draft root is re-keyed and its
  Scene paths follow the new root; a Scene moved between Drafts leaves one
  and is appended to the other.
- ``created``: an untracked content file is appended to its Draft's order.

Order corrections made here are written back to the index file. Each such
write first records the path as a pending self-write; the next
``metadata_changed`` for that path clears the marker and is not processed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import yaml

from draftwright.errors import ReconciliationInconsistency, UnknownDraftError
from draftwright.model.drafts import (
    SCENE_SUFFIX,
    Draft,
    DraftFormat,
    Scene,
    draft_for_path,
    draft_frontmatter,
    read_draft,
)
from draftwright.model.frontmatter import replace_frontmatter, split_frontmatter
from draftwright.sync.reconcile import reconcile_order
from draftwright.vault.events import EventKind, VaultEvent
from draftwright.vault.store import Vault, is_within, normalize_path, parent_of

logger = logging.getLogger(__name__)

ModelListener = Callable[[], None]


class VaultSync:
    def __init__(self, vault: Vault) -> None:
        self._vault = vault
        self._drafts: dict[str, Draft] = {}
        self._scene_cache: dict[str, Scene] = {}
        self._pending_self_writes: set[str] = set()
        self._listeners: list[ModelListener] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def list_drafts(self) -> list[Draft]:
        with self._lock:
            return list(self._drafts.values())

    def get_draft(self, vault_path: str) -> Draft:
        with self._lock:
            draft = self._drafts.get(normalize_path(vault_path))
        if draft is None:
            raise UnknownDraftError(vault_path)
        return draft

    def draft_for_path(self, path: str) -> Draft | None:
        return draft_for_path(path, self.list_drafts())

    def scenes_of(self, draft: Draft) -> list[Scene]:
        with self._lock:
            current = self._drafts.get(draft.vault_path, draft)
            scenes: list[Scene] = []
            for name in current.scenes:
                path = current.scene_path(name)
                scene = self._scene_cache.get(path)
                if scene is None or scene.draft_path != current.vault_path or scene.name != name:
                    scene = Scene(path=path, name=name, draft_path=current.vault_path)
                    self._scene_cache[path] = scene
                scenes.append(scene)
            return scenes

    def has_pending_self_write(self, path: str) -> bool:
        with self._lock:
            return normalize_path(path) in self._pending_self_writes

    def subscribe(self, listener: ModelListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Full scan
    # ------------------------------------------------------------------

    def discover_drafts(self) -> list[Draft]:
        """Walk the whole vault, load every Draft and correct its order."""

        with self._lock:
            roots: dict[str, Draft] = {}
            for path in self._vault.list_files(suffix=SCENE_SUFFIX, recursive=True):
                draft = self._read_root(path)
                if draft is not None:
                    roots[draft.vault_path] = draft
            # Roots are known before reconciling so no index file is taken for a Scene.
            self._drafts = roots
            found: dict[str, Draft] = {}
            for draft in roots.values():
                reconciled = self._reconcile(draft)
                if reconciled is not None:
                    found[reconciled.vault_path] = reconciled
            self._drafts = found
            self._scene_cache.clear()
            logger.info("Discovered drafts", extra={"count": len(found)})
            self._notify()
            return list(found.values())

    # ------------------------------------------------------------------
    # Explicit edits
    # ------------------------------------------------------------------

    def reorder_scenes(self, vault_path: str, scenes: list[str]) -> Draft:
        """Apply a user-chosen order; it must be a permutation of the current one."""

        with self._lock:
            draft = self.get_draft(vault_path)
            if sorted(scenes) != sorted(draft.scenes):
                raise ValueError("New order must contain exactly the draft's current scenes")
            updated = draft.with_scenes(scenes)
            self._store(updated, persist=True)
            return updated

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def handle_event(self, event: VaultEvent) -> None:
        with self._lock:
            if event.kind == EventKind.METADATA_CHANGED:
                self.file_metadata_changed(event.path)
            elif event.kind == EventKind.DELETED:
                self.file_deleted(event.path, is_folder=event.is_folder)
            elif event.kind == EventKind.RENAMED and event.old_path is not None:
                self.file_renamed(event.old_path, event.path, is_folder=event.is_folder)
            elif event.kind == EventKind.CREATED:
                self.file_created(event.path)

    def file_metadata_changed(self, path: str) -> None:
        with self._lock:
            path = normalize_path(path)
            if path in self._pending_self_writes:
                self._pending_self_writes.discard(path)
                logger.debug("Ignoring self-write notification", extra={"path": path})
                return
            if not path.endswith(SCENE_SUFFIX) or not self._vault.exists(path):
                return

            try:
                parsed = read_draft(self._vault, path)
            except yaml.YAMLError as e:
                logger.warning(
                    "Unreadable frontmatter; keeping previous state",
                    extra={"path": path, "error": str(e)},
                )
                return
            except FileNotFoundError:
                return

            if parsed is not None:
                is_new_root = path not in self._drafts
                reconciled = self._reconcile(parsed)
                if reconciled is not None:
                    self._store(reconciled)
                if is_new_root:
                    # A neighbour may have taken this file for one of its Scenes.
                    self._folder_changed(parent_of(path))
                return

            if path in self._drafts:
                logger.info("File is no longer a draft root", extra={"path": path})
                self._drop(path)
                return

            tracked = False
            for draft in self.list_drafts():
                name = self._scene_name(draft, path)
                if name is None:
                    continue
                if name in draft.scenes:
                    tracked = True
                    self._scene_cache.pop(path, None)
            if tracked:
                self._notify()
            else:
                self.file_created(path)

    def file_created(self, path: str) -> None:
        with self._lock:
            path = normalize_path(path)
            for draft in self.list_drafts():
                name = self._scene_name(draft, path)
                if name is None or name in draft.scenes:
                    continue
                if not self._vault.exists(path):
                    return
                logger.info(
                    "Appending new scene to draft",
                    extra={"draft": draft.vault_path, "scene": name},
                )
                self._store(draft.with_scenes((*draft.scenes, name)), persist=True)

    def file_deleted(self, path: str, *, is_folder: bool = False) -> None:
        with self._lock:
            path = normalize_path(path)
            self._pending_self_writes.discard(path)
            self._scene_cache.pop(path, None)

            if is_folder:
                self._folder_changed(path)
                return

            if path in self._drafts:
                if self._vault.exists(path):
                    return
                logger.info("Draft root deleted", extra={"path": path})
                self._drop(path)
                return

            for draft in self.list_drafts():
                name = self._scene_name(draft, path)
                if name is None or name not in draft.scenes:
                    continue
                if self._vault.exists(path):
                    continue
                logger.info(
                    "Pruning deleted scene", extra={"draft": draft.vault_path, "scene": name}
                )
                self._store(
                    draft.with_scenes(s for s in draft.scenes if s != name), persist=True
                )

    def file_renamed(self, old_path: str, new_path: str, *, is_folder: bool = False) -> None:
        with self._lock:
            old_path = normalize_path(old_path)
            new_path = normalize_path(new_path)
            self._pending_self_writes.discard(old_path)
            self._scene_cache.pop(old_path, None)

            if is_folder:
                self._folder_renamed(old_path, new_path)
                return

            if old_path in self._drafts:
                self._move_root(old_path, new_path)
                return

            source = self._draft_tracking(old_path)
            destination = self._draft_accepting(new_path)

            if source is not None and destination is not None and (
                source.vault_path == destination.vault_path
            ):
                old_name = self._scene_name(source, old_path)
                new_name = self._scene_name(source, new_path)
                if new_name in source.scenes:
                    scenes = tuple(s for s in source.scenes if s != old_name)
                else:
                    scenes = tuple(new_name if s == old_name else s for s in source.scenes)
                logger.info(
                    "Scene renamed in place",
                    extra={"draft": source.vault_path, "old": old_name, "new": new_name},
                )
                self._store(source.with_scenes(scenes), persist=True)
                return

            if source is not None:
                old_name = self._scene_name(source, old_path)
                self._store(
                    source.with_scenes(s for s in source.scenes if s != old_name), persist=True
                )
            if destination is not None:
                self.file_created(new_path)
            elif new_path.endswith(SCENE_SUFFIX):
                # The renamed file may itself now be a Draft root.
                self.file_metadata_changed(new_path)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read_root(self, path: str) -> Draft | None:
        try:
            return read_draft(self._vault, path)
        except yaml.YAMLError as e:
            logger.warning(
                "Skipping file with unreadable frontmatter", extra={"path": path, "error": str(e)}
            )
        except FileNotFoundError:
            pass
        return None

    def _scene_name(self, draft: Draft, path: str) -> str | None:
        if path in self._drafts:
            return None
        return draft.scene_name_for(path)

    def _draft_tracking(self, path: str) -> Draft | None:
        for draft in self._drafts.values():
            name = self._scene_name(draft, path)
            if name is not None and name in draft.scenes:
                return draft
        return None

    def _draft_accepting(self, path: str) -> Draft | None:
        for draft in self._drafts.values():
            if self._scene_name(draft, path) is not None:
                return draft
        return None

    def _present_scene_names(self, draft: Draft) -> list[str]:
        names: list[str] = []
        for path in self._vault.list_files(draft.scene_root, suffix=SCENE_SUFFIX):
            name = self._scene_name(draft, path)
            if name is not None:
                names.append(name)
        return names

    def _reconcile(self, draft: Draft) -> Draft | None:
        """Cross-reference ``draft`` with the files present; persist corrections.

        Returns ``None`` when the index file vanished while we were reading.
        """

        if draft.format != DraftFormat.SCENES:
            return draft if self._vault.exists(draft.vault_path) else None

        present = self._present_scene_names(draft)
        if not self._vault.exists(draft.vault_path):
            return None

        result = reconcile_order(draft.vault_path, draft.scenes, present)
        reconciled = draft.with_scenes(result.scenes)
        if result.corrected:
            for inconsistency in result.inconsistencies:
                self._log_inconsistency(inconsistency)
            self._persist_order(reconciled)
        return reconciled

    def _log_inconsistency(self, inconsistency: ReconciliationInconsistency) -> None:
        logger.info("Corrected scene order drift", extra=inconsistency.to_log_extra())

    def _persist_order(self, draft: Draft) -> None:
        path = draft.vault_path
        try:
            text = self._vault.read(path)
        except FileNotFoundError:
            return
        metadata, _ = split_frontmatter(text)
        updated = replace_frontmatter(text, draft_frontmatter(draft, metadata))
        if updated == text:
            return
        self._pending_self_writes.add(path)
        try:
            self._vault.write(path, updated)
        except OSError:
            self._pending_self_writes.discard(path)
            logger.exception("Failed to write scene order", extra={"path": path})

    def _store(self, draft: Draft, *, persist: bool = False) -> None:
        if persist:
            self._persist_order(draft)
        self._drafts[draft.vault_path] = draft
        self._notify()

    def _drop(self, vault_path: str) -> None:
        draft = self._drafts.pop(vault_path, None)
        if draft is None:
            return
        for path in draft.scene_paths():
            self._scene_cache.pop(path, None)
        self._notify()

    def _move_root(self, old_path: str, new_path: str) -> None:
        draft = self._drafts.pop(old_path)
        for path in draft.scene_paths():
            self._scene_cache.pop(path, None)
        moved = draft.moved_to(new_path)
        logger.info("Draft root moved", extra={"old": old_path, "new": new_path})
        reconciled = self._reconcile(moved)
        if reconciled is None:
            self._notify()
            return
        self._store(reconciled)

    def _folder_renamed(self, old_folder: str, new_folder: str) -> None:
        for draft in self.list_drafts():
            if is_within(draft.vault_path, old_folder):
                suffix = draft.vault_path[len(old_folder) :]
                self._move_root(draft.vault_path, normalize_path(new_folder + suffix))
        self._folder_changed(old_folder)
        self._folder_changed(new_folder)

    def _folder_changed(self, folder: str) -> None:
        for draft in self.list_drafts():
            if is_within(draft.vault_path, folder) and not self._vault.exists(draft.vault_path):
                self._drop(draft.vault_path)
                continue
            if is_within(draft.scene_root, folder):
                reconciled = self._reconcile(draft)
                if reconciled is None:
                    self._drop(draft.vault_path)
                else:
                    self._store(reconciled)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Draft model listener failed")
