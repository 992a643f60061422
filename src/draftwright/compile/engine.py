"""Validate and execute Workflows against Drafts.

Execution is all-or-nothing: steps run strictly in order over an immutable
snapshot of the Draft, and files queued by steps are written only after the
last step succeeded.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict

from draftwright.compile.registry import StepRegistry
from draftwright.compile.steps import StepContext, StepDefinition, StepKind, value_matches_kind
from draftwright.compile.workflow import Workflow
from draftwright.errors import (
    KindMismatchError,
    StepExecutionError,
    UnresolvedStepError,
    WorkflowRunError,
)
from draftwright.model.drafts import Draft, DraftSnapshot, take_draft_snapshot
from draftwright.vault.store import Vault

logger = logging.getLogger(__name__)

SCENE_SEPARATOR = "\n\n"


class CompiledArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    workflow_name: str
    draft_path: str
    text: str
    written_paths: tuple[str, ...] = ()


def unresolved_steps(workflow: Workflow, registry: StepRegistry) -> list[tuple[int, str]]:
    return [
        (position, step.id)
        for position, step in enumerate(workflow.steps)
        if registry.resolve(step.id) is None
    ]


def validate_workflow(workflow: Workflow, registry: StepRegistry) -> None:
    """Check a Workflow as far as the currently registered steps allow.

    Raises:
        KindMismatchError: two adjacent resolvable steps disagree on kinds.
        ValueError: a bound option value does not fit its declaration.
    """

    previous: tuple[int, StepDefinition] | None = None
    for position, invocation in enumerate(workflow.steps):
        step = registry.resolve(invocation.id)
        if step is None:
            previous = None
            continue
        step.bind_options(invocation.options)
        if previous is not None:
            _check_adjacent(previous[1], step, position)
        previous = (position, step)


def _check_adjacent(before: StepDefinition, after: StepDefinition, position: int) -> None:
    if before.output_kind != after.input_kind:
        raise KindMismatchError(
            f"{before.id} outputs {before.output_kind.value} but "
            f"{after.id} expects {after.input_kind.value}",
            step_id=after.id,
            position=position,
        )


def initial_value(snapshot: DraftSnapshot, kind: StepKind) -> object:
    """The Draft presented as the first step's declared input kind."""

    if kind == StepKind.DRAFT:
        return snapshot
    if kind == StepKind.SCENES:
        return list(snapshot.scenes)
    return snapshot.compiled_text(SCENE_SEPARATOR)


def final_text(value: object, kind: StepKind) -> str:
    if kind == StepKind.TEXT:
        return str(value)
    if kind == StepKind.SCENES:
        return SCENE_SEPARATOR.join(s.text for s in value)  # type: ignore[attr-defined]
    assert isinstance(value, DraftSnapshot)
    return value.compiled_text(SCENE_SEPARATOR)


def run_steps(
    workflow: Workflow,
    snapshot: DraftSnapshot,
    steps: Mapping[str, StepDefinition],
) -> tuple[str, list[tuple[str, str]]]:
    """Run every step over ``snapshot``; returns the text and queued writes.

    Raises:
        UnresolvedStepError: a step id is missing from ``steps``.
        StepExecutionError: a step raised.
        KindMismatchError: a step's output does not fit the next step.
    """

    pending_writes: list[tuple[str, str]] = []
    value: object = None
    previous: StepDefinition | None = None

    if not workflow.steps:
        return snapshot.compiled_text(SCENE_SEPARATOR), pending_writes

    for position, invocation in enumerate(workflow.steps):
        step = steps.get(invocation.id)
        if step is None:
            raise UnresolvedStepError(
                "Workflow references a step that is not registered",
                step_id=invocation.id,
                position=position,
            )

        if previous is None:
            value = initial_value(snapshot, step.input_kind)
        else:
            _check_adjacent(previous, step, position)

        try:
            options = step.bind_options(invocation.options)
        except ValueError as e:
            raise StepExecutionError(str(e), step_id=step.id, position=position) from e

        context = StepContext(
            snapshot=snapshot,
            options=options,
            workflow_name=workflow.name,
            step_id=step.id,
            position=position,
            pending_writes=pending_writes,
        )
        try:
            value = step.run(value, context)
        except Exception as e:
            raise StepExecutionError(
                f"{type(e).__name__}: {e}", step_id=step.id, position=position
            ) from e

        if not value_matches_kind(step.output_kind, value):
            raise KindMismatchError(
                f"{step.id} declared {step.output_kind.value} output but returned "
                f"{type(value).__name__}",
                step_id=step.id,
                position=position,
            )
        if step.output_kind == StepKind.SCENES:
            value = list(value)  # type: ignore[call-overload]
        previous = step

    assert previous is not None
    return final_text(value, previous.output_kind), pending_writes


def write_outputs(vault: Vault, pending_writes: list[tuple[str, str]]) -> list[str]:
    """Write the files queued by a successful run.

    Targets are checked before anything is written. If a write fails, every
    file already written by this run is put back as it was.

    Raises:
        WorkflowRunError: a target cannot be written.
    """

    for path, _content in pending_writes:
        if not path or vault.is_folder(path):
            raise WorkflowRunError(
                f"Output path is not a file: {path!r}", step_id=None, position=None
            )

    previous: list[tuple[str, str | None]] = []
    try:
        for path, content in pending_writes:
            previous.append((path, vault.read(path) if vault.exists(path) else None))
            vault.write(path, content)
    except OSError as e:
        _restore(vault, previous)
        raise WorkflowRunError(
            f"Could not write {path}: {e}", step_id=None, position=None
        ) from e
    return [path for path, _content in pending_writes]


def _restore(vault: Vault, previous: list[tuple[str, str | None]]) -> None:
    for path, content in reversed(previous):
        try:
            if content is not None:
                vault.write(path, content)
            elif vault.exists(path):
                vault.delete(path)
        except OSError:
            logger.exception("Could not restore output file", extra={"path": path})


def execute(
    workflow: Workflow,
    draft: Draft,
    *,
    vault: Vault,
    registry: StepRegistry,
) -> CompiledArtifact:
    """Compile ``draft`` with ``workflow``.

    The registry is read once, when the run starts; the Draft's content is
    captured once, before the first step. Nothing is written unless every step
    succeeds.
    """

    steps = registry.snapshot()
    try:
        snapshot = take_draft_snapshot(draft, vault)
    except FileNotFoundError as e:
        raise WorkflowRunError(
            f"Draft content disappeared before compiling: {e.filename}",
            step_id=None,
            position=None,
        ) from e
    logger.info(
        "Compiling draft",
        extra={
            "workflow": workflow.name,
            "draft": draft.vault_path,
            "steps": workflow.step_ids(),
        },
    )

    text, pending_writes = run_steps(workflow, snapshot, steps)

    written = write_outputs(vault, pending_writes)

    logger.info(
        "Compiled draft",
        extra={"workflow": workflow.name, "draft": draft.vault_path, "written": written},
    )
    return CompiledArtifact(
        workflow_name=workflow.name,
        draft_path=draft.vault_path,
        text=text,
        written_paths=tuple(written),
    )
