"""Error taxonomy.

Script and reconciliation problems are absorbed at their component boundary
(logged, never raised past it). Workflow run failures propagate to the caller
as a :class:`WorkflowRunError` carrying the failing step's id and position.
"""

from __future__ import annotations

from dataclasses import dataclass


class DraftwrightError(Exception):
    """Base class for every error raised by draftwright."""


class ScriptLoadError(DraftwrightError):
    """A user script failed to evaluate or did not export a usable Step."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to load user script {path}: {reason}")
        self.path = path
        self.reason = reason


class WorkflowRunError(DraftwrightError):
    """A Workflow failed at a specific step."""

    def __init__(self, message: str, *, step_id: str | None, position: int | None) -> None:
        location = ""
        if step_id is not None:
            location = f" (step {position}: {step_id})"
        super().__init__(f"{message}{location}")
        self.message = message
        self.step_id = step_id
        self.position = position


class UnresolvedStepError(WorkflowRunError):
    """The Workflow references a step id missing from the registry."""


class StepExecutionError(WorkflowRunError):
    """A step raised while compiling."""


class KindMismatchError(WorkflowRunError):
    """Adjacent steps disagree on the kind of value passed between them."""


class PersistenceFailure(DraftwrightError):
    """The settings store could not be written."""


class UnknownWorkflowError(DraftwrightError, KeyError):
    pass


class UnknownDraftError(DraftwrightError, KeyError):
    pass


@dataclass(frozen=True, slots=True)
class ReconciliationInconsistency:
    """A drift between a Draft's stored order and the file tree.

    Never raised: the sync engine corrects the drift, persists the result and
    logs one of these for diagnostics.
    """

    draft_path: str
    kind: str
    detail: str

    def to_log_extra(self) -> dict[str, object]:
        return {"draft": self.draft_path, "inconsistency": self.kind, "detail": self.detail}
