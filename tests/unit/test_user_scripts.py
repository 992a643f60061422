"""Unit tests for loading steps from user scripts in the vault."""

from __future__ import annotations

import sys
import threading

import pytest

from draftwright.compile.builtin import register_builtin_steps
from draftwright.compile.registry import StepRegistry
from draftwright.compile.steps import StepKind
from draftwright.compile.user_scripts import UserScriptObserver, evaluate_script
from draftwright.errors import ScriptLoadError
from draftwright.vault.events import VaultEvent
from draftwright.vault.store import FileSystemVault

SHOUT = '''
STEP = {
    "name": "Shout",
    "description": "Upper-cases the manuscript.",
    "input": "text",
    "output": "text",
    "options": [{"id": "suffix", "type": "text", "default": "!"}],
}


def compile(value, context):
    return value.upper() + context.options["suffix"]
'''

WHISPER = '''
STEP = {"id": "whisper", "name": "Whisper"}


def compile(value, context):
    return value.lower()
'''


def _script(step_id: str, body: str = "value") -> str:
    return (
        f"STEP = {{'id': {step_id!r}, 'name': {step_id!r}}}\n\n"
        f"def compile(value, context):\n    return {body}\n"
    )


@pytest.fixture
def registry() -> StepRegistry:
    registry = StepRegistry()
    register_builtin_steps(registry)
    return registry


@pytest.fixture
def observer(vault: FileSystemVault, registry: StepRegistry) -> UserScriptObserver:
    observer = UserScriptObserver(vault, registry, "scripts")
    observer.begin_observing()
    return observer


def test_evaluate_script_derives_id_from_name() -> None:
    step = evaluate_script("scripts/shout.py", SHOUT)

    assert step.id == "user-shout"
    assert step.name == "Shout"
    assert step.input_kind == StepKind.TEXT
    assert step.is_user_script
    assert step.bind_options({}) == {"suffix": "!"}


@pytest.mark.parametrize(
    "source",
    [
        "this is not python",
        "raise RuntimeError('at import')",
        "import sys\nsys.exit(1)",
        "def compile(value, context):\n    return value\n",
        "STEP = {'name': 'No function'}\n",
        "STEP = {'name': 'x', 'input': 'nonsense'}\ndef compile(v, c):\n    return v\n",
        "STEP = {'name': ''}\ndef compile(v, c):\n    return v\n",
    ],
)
def test_evaluate_script_rejects_broken_scripts(source: str) -> None:
    with pytest.raises(ScriptLoadError):
        evaluate_script("scripts/bad.py", source)


def test_script_namespace_is_not_shared() -> None:
    evaluate_script("scripts/a.py", "import os\nLEAK = 1\n" + WHISPER)
    step = evaluate_script("scripts/b.py", WHISPER + "\nHAS_LEAK = 'LEAK' in globals()\n")

    assert not any(name.startswith("draftwright_user_script_") for name in sys.modules)
    assert step.run.__globals__["HAS_LEAK"] is False


def test_malformed_script_does_not_block_others(
    write, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    write("scripts/a_broken.py", "def compile(:\n")
    write("scripts/shout.py", SHOUT)
    write("scripts/whisper.py", WHISPER)
    write("scripts/notes.md", "not a script")
    write("scripts/nested/deep.py", _script("deep"))

    loaded = observer.load_user_steps()

    assert sorted(s.id for s in loaded) == ["user-shout", "whisper"]
    assert registry.resolve("user-shout") is not None
    assert registry.resolve("deep") is None


def test_script_cannot_shadow_a_builtin(
    write, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    write("scripts/evil.py", _script("write-to-note"))

    assert observer.load_user_steps() == []
    assert registry.resolve("write-to-note").source == "builtin"


def test_script_edited_to_shadow_a_builtin_drops_its_old_step(
    write, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    write("scripts/s.py", _script("mine"))
    observer.handle_event(VaultEvent.created("scripts/s.py"))
    assert registry.resolve("mine") is not None

    write("scripts/s.py", _script("write-to-note"))
    observer.handle_event(VaultEvent.modified("scripts/s.py"))

    assert registry.resolve("mine") is None
    assert registry.resolve("write-to-note").source == "builtin"
    assert observer.entries() == []


def test_created_modified_and_deleted_scripts(
    write, vault: FileSystemVault, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    write("scripts/s.py", _script("first"))
    observer.handle_event(VaultEvent.created("scripts/s.py"))
    assert registry.resolve("first") is not None

    write("scripts/s.py", _script("second"))
    observer.handle_event(VaultEvent.modified("scripts/s.py"))
    assert registry.resolve("first") is None
    assert registry.resolve("second") is not None

    vault.delete("scripts/s.py")
    observer.handle_event(VaultEvent.deleted("scripts/s.py"))
    assert registry.resolve("second") is None
    assert observer.entries() == []


def test_unchanged_content_is_not_reevaluated(
    write, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    write("scripts/s.py", _script("same"))
    observer.handle_event(VaultEvent.created("scripts/s.py"))
    first = registry.resolve("same")

    observer.handle_event(VaultEvent.modified("scripts/s.py"))

    assert registry.resolve("same") is first


def test_script_that_breaks_is_unregistered(
    write, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    write("scripts/s.py", _script("fragile"))
    observer.handle_event(VaultEvent.created("scripts/s.py"))

    write("scripts/s.py", "STEP = None\n")
    observer.handle_event(VaultEvent.modified("scripts/s.py"))

    assert registry.resolve("fragile") is None


def test_rename_rekeys_without_reregistering(
    write, vault: FileSystemVault, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    write("scripts/old.py", _script("kept"))
    observer.handle_event(VaultEvent.created("scripts/old.py"))
    step = registry.resolve("kept")
    changes: list[str] = []
    registry.subscribe(changes.append)

    vault.rename("scripts/old.py", "scripts/new.py")
    observer.handle_event(VaultEvent.renamed("scripts/old.py", "scripts/new.py"))

    assert registry.resolve("kept") is step
    assert changes == []
    assert [e.path for e in observer.entries()] == ["scripts/new.py"]


def test_rename_out_of_folder_unregisters(
    write, vault: FileSystemVault, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    write("scripts/s.py", _script("leaving"))
    observer.handle_event(VaultEvent.created("scripts/s.py"))

    vault.rename("scripts/s.py", "archive/s.py")
    observer.handle_event(VaultEvent.renamed("scripts/s.py", "archive/s.py"))

    assert registry.resolve("leaving") is None


def test_deleting_one_of_two_claimants_keeps_the_step(
    write, vault: FileSystemVault, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    write("scripts/a.py", _script("shared", "value + 'a'"))
    write("scripts/b.py", _script("shared", "value + 'b'"))
    observer.load_user_steps()

    vault.delete("scripts/b.py")
    observer.handle_event(VaultEvent.deleted("scripts/b.py"))

    step = registry.resolve("shared")
    assert step is not None
    assert step.source == "scripts/a.py"


def test_switching_folders_replaces_script_steps(
    write, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    write("scripts/a.py", _script("from-a"))
    write("other/b.py", _script("from-b"))
    observer.load_user_steps()

    observer.set_folder("other")

    assert registry.resolve("from-a") is None
    assert registry.resolve("from-b") is not None

    observer.destroy()
    assert registry.resolve("from-b") is None
    assert registry.resolve("write-to-note") is not None


def test_folder_switches_and_script_events_from_two_threads(
    write, observer: UserScriptObserver, registry: StepRegistry
) -> None:
    for n in range(10):
        write(f"scripts/s{n}.py", _script(f"a{n}"))
        write(f"other/s{n}.py", _script(f"b{n}"))
    errors: list[BaseException] = []

    def switch_folders() -> None:
        try:
            for i in range(20):
                observer.set_folder("other" if i % 2 == 0 else "scripts")
        except BaseException as e:
            errors.append(e)

    def deliver_events() -> None:
        try:
            for _ in range(5):
                for n in range(10):
                    observer.handle_event(VaultEvent.created(f"scripts/s{n}.py"))
                    observer.handle_event(VaultEvent.deleted(f"other/s{n}.py"))
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=switch_folders), threading.Thread(target=deliver_events)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10.0)

    assert errors == []
    assert observer.folder == "scripts"
    assert {e.step_id for e in observer.entries()} == {f"a{n}" for n in range(10)}
    assert all(registry.resolve(f"b{n}") is None for n in range(10))
