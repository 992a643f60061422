"""Application lifecycle: wires the vault, the sync engine and the compiler.

Lifecycle::

    app = DraftwrightApp.from_settings(settings)
    app.load_settings()      # built-ins, user scripts, stored workflows
    app.begin_observing()    # watcher snapshot, discovery, then initialized
    ...
    app.close()              # stop watching, flush the pending save

Model changes made before ``initialized`` is set (startup discovery, default
workflow installation) are not saved; the settings file is only rewritten
after a change made once the app is observing.
"""

from __future__ import annotations

import logging
import threading

from draftwright.compile.builtin import register_builtin_steps
from draftwright.compile.engine import CompiledArtifact, execute
from draftwright.compile.registry import StepRegistry
from draftwright.compile.steps import StepDefinition
from draftwright.compile.user_scripts import UserScriptObserver
from draftwright.compile.workflow import Workflow
from draftwright.compile.workflow_store import WorkflowStore
from draftwright.config import DraftwrightSettings
from draftwright.errors import PersistenceFailure, UnknownDraftError
from draftwright.model.drafts import Draft, Scene
from draftwright.persistence import Debouncer, DraftRecord, PluginData, SettingsStore
from draftwright.sync.engine import VaultSync
from draftwright.vault.events import EventBus, EventKind, VaultEvent
from draftwright.vault.store import FileSystemVault, is_within, normalize_path
from draftwright.vault.watcher import VaultWatcher

logger = logging.getLogger(__name__)


class DraftwrightApp:
    def __init__(
        self,
        vault: FileSystemVault,
        settings_store: SettingsStore,
        *,
        save_debounce_seconds: float = 3.0,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        self.vault = vault
        self.settings_store = settings_store
        self.poll_interval_seconds = poll_interval_seconds

        self.registry = StepRegistry()
        self.sync = VaultSync(vault)
        self.workflows = WorkflowStore(self.registry, on_change=self._mark_changed)
        self.scripts = UserScriptObserver(vault, self.registry, None)
        self.bus = EventBus()
        self.watcher: VaultWatcher | None = None

        self.initialized = False
        self._selected_draft: str | None = None
        self._dirty = False
        self._lock = threading.RLock()
        self._debouncer = Debouncer(save_debounce_seconds, self._save_debounced)
        self._unsubscribers = [self.sync.subscribe(self._mark_changed)]

    @classmethod
    def from_settings(cls, settings: DraftwrightSettings) -> DraftwrightApp:
        return cls(
            FileSystemVault(settings.vault_path),
            SettingsStore(settings.settings_path),
            save_debounce_seconds=settings.save_debounce_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load_settings(self) -> PluginData:
        """Register steps and restore persisted state.

        User scripts are loaded before stored workflows are read so that a
        workflow referencing a script step resolves on first use.
        """

        data = self.settings_store.load()
        register_builtin_steps(self.registry)
        self.scripts.set_folder(data.user_script_folder)
        self.workflows.load(data.workflows)
        self.workflows.install_defaults()
        with self._lock:
            self._selected_draft = data.selected_draft_vault_path
        logger.info(
            "Settings loaded",
            extra={
                "settings_file": str(self.settings_store.path),
                "workflows": self.workflows.list_workflows(),
                "user_script_folder": data.user_script_folder,
            },
        )
        return data

    def begin_observing(self, *, watch: bool = False) -> None:
        """Discover drafts and start reacting to vault changes.

        The watcher is set up before discovery (baseline snapshot, or a
        running observer with ``watch``) so that the index files rewritten by
        discovery are reported back and clear their self-write markers.
        Changes made before this point are never saved.
        """

        self.watcher = VaultWatcher(
            self.vault, self.bus, timeout_seconds=self.poll_interval_seconds
        )
        self._unsubscribers.extend(
            [
                self.bus.subscribe(self.sync.handle_event),
                self.bus.subscribe(self.scripts.handle_event),
                self.bus.subscribe(self._track_selection),
            ]
        )
        if watch:
            self.watcher.start()
        self.scripts.begin_observing()
        self.sync.discover_drafts()

        with self._lock:
            self.initialized = True
        logger.info("Observing vault", extra={"vault": repr(self.vault), "watch": watch})

    def scan(self) -> None:
        """Process vault changes since the last scan, on the calling thread."""

        if self.watcher is not None:
            self.watcher.scan()

    def close(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        try:
            self._debouncer.flush()
        finally:
            self.scripts.destroy()
            logger.info("Closed draftwright", extra={"vault": repr(self.vault)})

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def list_drafts(self) -> list[Draft]:
        return sorted(self.sync.list_drafts(), key=lambda d: d.vault_path)

    def draft_for_path(self, path: str) -> Draft | None:
        return self.sync.draft_for_path(normalize_path(path))

    def scenes_of(self, draft: Draft) -> list[Scene]:
        return self.sync.scenes_of(draft)

    def reorder_scenes(self, draft_path: str, scenes: list[str]) -> Draft:
        return self.sync.reorder_scenes(draft_path, scenes)

    @property
    def selected_draft(self) -> str | None:
        with self._lock:
            return self._selected_draft

    def select_draft(self, path: str | None) -> Draft | None:
        draft = None
        if path is not None:
            draft = self._require_draft(path)
        with self._lock:
            self._selected_draft = draft.vault_path if draft else None
        self._mark_changed()
        return draft

    # ------------------------------------------------------------------
    # Workflows and steps
    # ------------------------------------------------------------------

    def list_workflows(self) -> list[str]:
        return self.workflows.list_workflows()

    def get_workflow(self, name: str) -> Workflow:
        return self.workflows.get_workflow(name)

    def set_workflow(self, name: str, workflow: Workflow) -> Workflow:
        return self.workflows.set_workflow(name, workflow)

    def delete_workflow(self, name: str) -> None:
        self.workflows.delete_workflow(name)

    def list_steps(self) -> list[StepDefinition]:
        return self.registry.list_steps()

    def set_user_script_folder(self, folder: str | None) -> None:
        self.scripts.set_folder(folder)
        self._mark_changed()

    def run_workflow(self, name: str, draft_path: str) -> CompiledArtifact:
        """Compile the Draft owning ``draft_path`` with the named Workflow.

        Raises:
            UnknownWorkflowError: no Workflow is stored under ``name``.
            UnknownDraftError: ``draft_path`` belongs to no known Draft.
            WorkflowRunError: the run failed; nothing was written.
        """

        workflow = self.workflows.get_workflow(name)
        draft = self._require_draft(draft_path)
        return execute(workflow, draft, vault=self.vault, registry=self.registry)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def plugin_data(self) -> PluginData:
        with self._lock:
            selected = self._selected_draft
        return PluginData(
            selected_draft_vault_path=selected,
            user_script_folder=self.scripts.folder,
            workflows=self.workflows.serialize(),
            drafts={
                d.vault_path: DraftRecord(scene_order=list(d.scenes), type=d.format.value)
                for d in self.list_drafts()
            },
        )

    def save(self) -> None:
        """Persist now; raises PersistenceFailure when the write fails."""

        with self._lock:
            self._dirty = False
        try:
            self.settings_store.save(self.plugin_data())
        except PersistenceFailure:
            with self._lock:
                self._dirty = True
            raise
        logger.debug("Settings saved", extra={"settings_file": str(self.settings_store.path)})

    @property
    def dirty(self) -> bool:
        with self._lock:
            return self._dirty

    def _mark_changed(self) -> None:
        with self._lock:
            if not self.initialized:
                return
            self._dirty = True
        self._debouncer.trigger()

    def _save_debounced(self) -> None:
        try:
            self.save()
        except PersistenceFailure as e:
            logger.error(
                "Saving settings failed; will retry on the next change",
                extra={"error": str(e)},
            )

    def _require_draft(self, path: str) -> Draft:
        draft = self.draft_for_path(path)
        if draft is None:
            raise UnknownDraftError(path)
        return draft

    def _track_selection(self, event: VaultEvent) -> None:
        with self._lock:
            selected = self._selected_draft
            if selected is None:
                return
            if event.kind == EventKind.RENAMED and event.old_path is not None:
                if selected == event.old_path:
                    self._selected_draft = event.path
                elif event.is_folder and is_within(selected, event.old_path):
                    self._selected_draft = event.path + selected[len(event.old_path):]
                else:
                    return
            elif event.kind == EventKind.DELETED and (
                selected == event.path or (event.is_folder and is_within(selected, event.path))
            ):
                self._selected_draft = None
            else:
                return
        self._mark_changed()
