"""Load Steps from user-authored Python scripts in a single vault folder.

A script is a ``*.py`` file placed directly in the configured folder. It must
define a ``STEP`` mapping describing the step and a ``compile(value, context)``
function implementing it::

    STEP = {
        "id": "shout",                  # optional; defaults to "user-" + slug(name)
        "name": "Shout",
        "description": "Upper-cases the manuscript.",
        "input": "text",
        "output": "text",
        "options": [{"id": "suffix", "type": "text", "default": "!"}],
    }

    def compile(value, context):
        return value.upper() + context.options["suffix"]

The step id comes from the script's content, never from its path, so renaming
a script re-keys its entry without re-registering anything. Each script runs in
its own fresh module namespace (never inserted into ``sys.modules``); a script
that fails to evaluate or to satisfy the contract is logged and skipped.
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
import types
from collections.abc import Mapping
from dataclasses import dataclass

from draftwright.compile.registry import StepRegistry
from draftwright.compile.steps import StepDefinition, StepKind, parse_options
from draftwright.errors import ScriptLoadError
from draftwright.vault.events import EventKind, VaultEvent
from draftwright.vault.store import Vault, is_within, normalize_path, parent_of

logger = logging.getLogger(__name__)

SCRIPT_SUFFIX = ".py"
USER_STEP_PREFIX = "user-"


@dataclass(frozen=True, slots=True)
class UserScriptEntry:
    path: str
    step_id: str
    content_hash: str


def content_hash(source: str) -> str:
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.casefold()).strip("-")


def evaluate_script(path: str, source: str) -> StepDefinition:
    """Run ``source`` in an isolated namespace and extract its Step.

    Raises:
        ScriptLoadError: evaluation raised, or the script does not export a
            usable ``STEP``/``compile`` pair.
    """

    module = types.ModuleType(f"draftwright_user_script_{content_hash(path)[:12]}")
    module.__file__ = path
    try:
        code = compile(source, path, "exec")
        exec(code, module.__dict__)  # noqa: S102
    except (Exception, SystemExit) as e:
        raise ScriptLoadError(path, f"{type(e).__name__}: {e}") from e

    declaration = module.__dict__.get("STEP")
    run = module.__dict__.get("compile")
    if not isinstance(declaration, Mapping):
        raise ScriptLoadError(path, "missing a STEP mapping")
    if not callable(run):
        raise ScriptLoadError(path, "missing a compile(value, context) function")

    name = declaration.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ScriptLoadError(path, "STEP['name'] must be a non-empty string")

    raw_id = declaration.get("id")
    step_id = str(raw_id).strip() if raw_id else USER_STEP_PREFIX + _slugify(name)
    if not step_id or step_id == USER_STEP_PREFIX:
        raise ScriptLoadError(path, "could not derive a step id")

    try:
        input_kind = StepKind(declaration.get("input", StepKind.TEXT.value))
        output_kind = StepKind(declaration.get("output", StepKind.TEXT.value))
        options = parse_options(declaration.get("options"))
        version = int(declaration.get("version", 1))
    except (ValueError, TypeError) as e:
        raise ScriptLoadError(path, str(e)) from e

    return StepDefinition(
        id=step_id,
        name=name.strip(),
        description=str(declaration.get("description", "")),
        version=version,
        input_kind=input_kind,
        output_kind=output_kind,
        options=options,
        run=run,
        source=path,
    )


class UserScriptObserver:
    """Keeps the registry's user-script portion in step with one folder.

    Public methods are serialized by one lock; they are called from the vault
    watcher thread as well as from host requests.
    """

    def __init__(self, vault: Vault, registry: StepRegistry, folder: str | None) -> None:
        self._vault = vault
        self._registry = registry
        self._folder = normalize_path(folder) if folder else None
        self._entries: dict[str, UserScriptEntry] = {}
        self._observing = False
        self._lock = threading.RLock()

    @property
    def folder(self) -> str | None:
        return self._folder

    def entries(self) -> list[UserScriptEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.path)

    def load_user_steps(self) -> list[StepDefinition]:
        """Evaluate every script in the folder; failures are skipped."""

        with self._lock:
            if not self._folder:
                return []
            loaded: list[StepDefinition] = []
            for path in self._vault.list_files(self._folder, suffix=SCRIPT_SUFFIX):
                step = self._load(path)
                if step is not None:
                    loaded.append(step)
            logger.info(
                "Loaded user script steps",
                extra={"folder": self._folder, "count": len(loaded)},
            )
            return loaded

    def begin_observing(self) -> None:
        with self._lock:
            self._observing = True

    def set_folder(self, folder: str | None) -> None:
        new_folder = normalize_path(folder) if folder else None
        with self._lock:
            if new_folder == self._folder:
                return
            logger.info(
                "User script folder changed", extra={"old": self._folder, "new": new_folder}
            )
            self._unload_all()
            self._folder = new_folder
            self.load_user_steps()

    def destroy(self) -> None:
        with self._lock:
            self._observing = False
            self._unload_all()

    def handle_event(self, event: VaultEvent) -> None:
        with self._lock:
            if not self._observing or not self._folder:
                return

            if event.kind in {EventKind.CREATED, EventKind.MODIFIED}:
                if self._is_script(event.path):
                    self._load(event.path)
            elif event.kind == EventKind.DELETED:
                if event.is_folder:
                    for path in [p for p in self._entries if is_within(p, event.path)]:
                        self._remove(path)
                elif event.path in self._entries:
                    self._remove(event.path)
            elif event.kind == EventKind.RENAMED and event.old_path is not None:
                self._renamed(event.old_path, event.path, is_folder=event.is_folder)

    def _is_script(self, path: str) -> bool:
        return (
            self._folder is not None
            and path.endswith(SCRIPT_SUFFIX)
            and parent_of(path) == self._folder
        )

    def _renamed(self, old_path: str, new_path: str, *, is_folder: bool) -> None:
        if is_folder:
            for path in [p for p in self._entries if is_within(p, old_path)]:
                self._remove(path)
            return

        entry = self._entries.get(old_path)
        if entry is not None and self._is_script(new_path):
            del self._entries[old_path]
            self._entries[new_path] = UserScriptEntry(
                path=new_path, step_id=entry.step_id, content_hash=entry.content_hash
            )
            logger.info(
                "User script renamed",
                extra={"old": old_path, "new": new_path, "step_id": entry.step_id},
            )
        elif entry is not None:
            self._remove(old_path)
        elif self._is_script(new_path):
            self._load(new_path)

    def _load(self, path: str, *, force: bool = False) -> StepDefinition | None:
        try:
            source = self._vault.read(path)
        except FileNotFoundError:
            return None
        digest = content_hash(source)

        previous = self._entries.get(path)
        if (
            not force
            and previous is not None
            and previous.content_hash == digest
            and self._registry.resolve(previous.step_id) is not None
        ):
            return self._registry.resolve(previous.step_id)

        try:
            step = evaluate_script(path, source)
        except ScriptLoadError as e:
            logger.error("Skipping user script", extra={"path": path, "reason": e.reason})
            if previous is not None:
                self._remove(path)
            return None

        # The file may have gone away while it was being evaluated.
        if not self._vault.exists(path):
            return None

        existing = self._registry.resolve(step.id)
        if existing is not None and not existing.is_user_script:
            logger.error(
                "Skipping user script that shadows a built-in step",
                extra={"path": path, "step_id": step.id},
            )
            if previous is not None:
                self._remove(path)
            return None

        self._entries[path] = UserScriptEntry(path=path, step_id=step.id, content_hash=digest)
        if previous is not None and previous.step_id != step.id:
            self._release(previous.step_id)
        self._registry.register(step)
        logger.info("User script step loaded", extra={"path": path, "step_id": step.id})
        return step

    def _remove(self, path: str) -> None:
        entry = self._entries.pop(path, None)
        if entry is None:
            return
        logger.info("User script removed", extra={"path": path, "step_id": entry.step_id})
        self._release(entry.step_id)

    def _release(self, step_id: str) -> None:
        """Unregister ``step_id`` unless another script still declares it."""

        claimants = sorted(p for p, e in self._entries.items() if e.step_id == step_id)
        if claimants:
            self._load(claimants[0], force=True)
            return
        self._registry.unregister(step_id)

    def _unload_all(self) -> None:
        for path in list(self._entries):
            entry = self._entries.pop(path)
            self._registry.unregister(entry.step_id)
