"""Unit tests for Workflow execution."""

from __future__ import annotations

from pathlib import Path
from unittest import mock

import pytest

from draftwright.compile.builtin import register_builtin_steps
from draftwright.compile.engine import execute, unresolved_steps, validate_workflow
from draftwright.compile.registry import StepRegistry
from draftwright.compile.steps import StepDefinition, StepKind
from draftwright.compile.workflow import Workflow
from draftwright.errors import (
    KindMismatchError,
    StepExecutionError,
    UnresolvedStepError,
    WorkflowRunError,
)
from draftwright.model.drafts import read_draft
from draftwright.vault.store import FileSystemVault


def _step(step_id: str, run, *, input_kind=StepKind.TEXT, output_kind=StepKind.TEXT):
    return StepDefinition(
        id=step_id,
        name=step_id,
        input_kind=input_kind,
        output_kind=output_kind,
        run=run,
        source=f"scripts/{step_id}.py",
    )


@pytest.fixture
def registry() -> StepRegistry:
    registry = StepRegistry()
    register_builtin_steps(registry)
    registry.register(_step("upper", lambda v, _c: v.upper()))
    registry.register(_step("exclaim", lambda v, _c: v + "!"))
    return registry


@pytest.fixture
def hello_draft(vault: FileSystemVault, write, index_text):
    write("Hello.md", index_text(fmt="single", title="Hello", body="hello"))
    draft = read_draft(vault, "Hello.md")
    assert draft is not None
    return draft


def test_text_steps_run_in_order(vault: FileSystemVault, registry, hello_draft) -> None:
    workflow = Workflow(name="w").add_step("upper").add_step("exclaim")

    artifact = execute(workflow, hello_draft, vault=vault, registry=registry)

    assert artifact.text == "HELLO!"
    assert artifact.draft_path == "Hello.md"
    assert artifact.workflow_name == "w"
    assert artifact.written_paths == ()


def test_unregistered_step_fails_instead_of_being_skipped(
    vault: FileSystemVault, registry, hello_draft
) -> None:
    workflow = Workflow(name="w").add_step("upper").add_step("exclaim")
    registry.unregister("exclaim")

    assert unresolved_steps(workflow, registry) == [(1, "exclaim")]
    with pytest.raises(UnresolvedStepError) as exc_info:
        execute(workflow, hello_draft, vault=vault, registry=registry)
    assert exc_info.value.step_id == "exclaim"
    assert exc_info.value.position == 1


def test_step_exception_is_wrapped_with_its_position(
    vault: FileSystemVault, registry, hello_draft
) -> None:
    def broken(_value, _context):
        raise RuntimeError("nope")

    registry.register(_step("broken", broken))
    workflow = Workflow(name="w").add_step("upper").add_step("broken")

    with pytest.raises(StepExecutionError) as exc_info:
        execute(workflow, hello_draft, vault=vault, registry=registry)
    assert exc_info.value.step_id == "broken"
    assert exc_info.value.position == 1
    assert "RuntimeError: nope" in str(exc_info.value)


def test_step_returning_wrong_kind_fails(vault: FileSystemVault, registry, hello_draft) -> None:
    registry.register(_step("liar", lambda _v, _c: 42))
    workflow = Workflow(name="w").add_step("liar")

    with pytest.raises(KindMismatchError) as exc_info:
        execute(workflow, hello_draft, vault=vault, registry=registry)
    assert exc_info.value.step_id == "liar"


def test_adjacent_kinds_must_agree(vault: FileSystemVault, registry, make_draft) -> None:
    draft = read_draft(vault, make_draft("Novel", ["a"]))
    workflow = Workflow(name="w").add_step("upper").add_step("strip-frontmatter")

    with pytest.raises(KindMismatchError):
        validate_workflow(workflow, registry)
    with pytest.raises(KindMismatchError) as exc_info:
        execute(workflow, draft, vault=vault, registry=registry)
    assert exc_info.value.position == 1


def test_validation_skips_unresolved_steps(registry) -> None:
    workflow = Workflow(name="w").add_step("upper").add_step("user-later").add_step("exclaim")

    validate_workflow(workflow, registry)


def test_first_step_input_is_adapted_to_its_kind(
    vault: FileSystemVault, registry, make_draft
) -> None:
    draft = read_draft(vault, make_draft("Novel", ["a", "b"], title="Novel"))
    registry.register(
        _step(
            "count",
            lambda snapshot, _c: f"{snapshot.title}: {len(snapshot.scenes)}",
            input_kind=StepKind.DRAFT,
        )
    )

    as_text = execute(Workflow(name="t").add_step("upper"), draft, vault=vault, registry=registry)
    as_draft = execute(Workflow(name="d").add_step("count"), draft, vault=vault, registry=registry)
    as_scenes = execute(
        Workflow(name="s").add_step("concatenate-text", {"separator": " | "}),
        draft,
        vault=vault,
        registry=registry,
    )

    assert as_text.text == "TEXT OF A.\n\n\nTEXT OF B.\n"
    assert as_draft.text == "Novel: 2"
    assert as_scenes.text == "Text of a. | Text of b."


def test_empty_workflow_returns_the_draft_text(
    vault: FileSystemVault, registry, hello_draft
) -> None:
    assert execute(Workflow(name="w"), hello_draft, vault=vault, registry=registry).text == "hello"


def test_default_workflow_writes_the_manuscript(
    vault: FileSystemVault, vault_root: Path, registry, write, index_text
) -> None:
    write("Novel/Index.md", index_text(scenes=["one", "two"], title="Novel"))
    write("Novel/one.md", "---\ntags: [x]\n---\nSee [[two]].\n")
    write("Novel/two.md", "The end.\n")
    draft = read_draft(vault, "Novel/Index.md")
    workflow = (
        Workflow(name="default")
        .add_step("strip-frontmatter")
        .add_step("remove-links")
        .add_step("prepend-title")
        .add_step("concatenate-text")
        .add_step("write-to-note")
    )

    artifact = execute(workflow, draft, vault=vault, registry=registry)

    expected = "## one\n\nSee two.\n\n## two\n\nThe end."
    assert artifact.text == expected
    assert artifact.written_paths == ("manuscripts/Novel.md",)
    assert (vault_root / "manuscripts/Novel.md").read_text(encoding="utf-8") == expected


def test_nothing_is_written_when_a_later_step_fails(
    vault: FileSystemVault, vault_root: Path, registry, hello_draft
) -> None:
    def broken(_value, _context):
        raise ValueError("late failure")

    registry.register(_step("broken", broken))
    workflow = Workflow(name="w").add_step("write-to-note").add_step("broken")

    with pytest.raises(StepExecutionError):
        execute(workflow, hello_draft, vault=vault, registry=registry)
    assert not (vault_root / "manuscripts").exists()


def test_registry_changes_during_a_run_do_not_affect_it(
    vault: FileSystemVault, registry, hello_draft
) -> None:
    def unregister_next(value, _context):
        registry.unregister("exclaim")
        return value

    registry.register(_step("meddle", unregister_next))
    workflow = Workflow(name="w").add_step("meddle").add_step("exclaim")

    assert execute(workflow, hello_draft, vault=vault, registry=registry).text == "hello!"
    assert registry.resolve("exclaim") is None


def test_missing_scene_file_fails_the_run(
    vault: FileSystemVault, vault_root: Path, registry, make_draft
) -> None:
    draft = read_draft(vault, make_draft("Novel", ["a"]))
    (vault_root / "Novel/a.md").unlink()

    with pytest.raises(WorkflowRunError):
        execute(Workflow(name="w").add_step("upper"), draft, vault=vault, registry=registry)


def test_failed_output_write_restores_earlier_outputs(
    vault: FileSystemVault, vault_root: Path, registry, hello_draft, write
) -> None:
    write("out/a.md", "previous a\n")
    workflow = (
        Workflow(name="w")
        .add_step("write-to-note", {"target": "out/a.md"})
        .add_step("write-to-note", {"target": "out/b.md"})
    )
    real_write = vault.write

    def failing_write(path: str, content: str) -> None:
        if path == "out/b.md":
            raise OSError("disk full")
        real_write(path, content)

    with mock.patch.object(vault, "write", side_effect=failing_write):
        with pytest.raises(WorkflowRunError) as exc_info:
            execute(workflow, hello_draft, vault=vault, registry=registry)

    assert "out/b.md" in str(exc_info.value)
    assert exc_info.value.step_id is None
    assert (vault_root / "out/a.md").read_text(encoding="utf-8") == "previous a\n"
    assert not (vault_root / "out/b.md").exists()


def test_output_path_that_is_a_folder_fails_before_writing(
    vault: FileSystemVault, vault_root: Path, registry, hello_draft, write
) -> None:
    write("out/keep.md", "x\n")
    workflow = (
        Workflow(name="w")
        .add_step("write-to-note", {"target": "first.md"})
        .add_step("write-to-note", {"target": "out"})
    )

    with pytest.raises(WorkflowRunError):
        execute(workflow, hello_draft, vault=vault, registry=registry)

    assert not (vault_root / "first.md").exists()
