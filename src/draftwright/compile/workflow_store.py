"""Named Workflows kept in memory and flagged against the Step registry."""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from draftwright.compile.engine import validate_workflow
from draftwright.compile.registry import StepRegistry
from draftwright.compile.workflow import (
    DEFAULT_WORKFLOWS,
    Workflow,
    deserialize_workflow,
    serialize_workflow,
)
from draftwright.errors import UnknownWorkflowError

logger = logging.getLogger(__name__)


class WorkflowStore:
    """The named Workflows, with unresolved-step flags kept current.

    Every settled mutation calls ``on_change`` (the app wires it to the
    debounced settings save). Workflows are only ever deleted explicitly.
    """

    def __init__(
        self,
        registry: StepRegistry,
        *,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._registry = registry
        self._workflows: dict[str, Workflow] = {}
        self._unresolved: dict[str, list[str]] = {}
        # Stored entries that failed to parse; written back untouched.
        self._malformed: dict[str, Any] = {}
        self._on_change = on_change
        self._lock = threading.RLock()
        registry.subscribe(self._registry_changed)

    def load(self, serialized: Mapping[str, Mapping[str, Any]]) -> None:
        """Replace the contents from persisted data without signalling a change.

        An entry without an inner ``name`` is named after its key.
        """

        with self._lock:
            self._workflows = {}
            self._malformed = {}
            for key, value in serialized.items():
                try:
                    self._workflows[key] = deserialize_workflow({"name": key, **value})
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    self._malformed[key] = copy.deepcopy(value)
                    logger.error(
                        "Skipping malformed stored workflow",
                        extra={"workflow": key, "error": str(e)},
                    )
            self._refresh_flags()

    def install_defaults(
        self, defaults: Mapping[str, Mapping[str, Any]] = DEFAULT_WORKFLOWS
    ) -> list[str]:
        """Add each default Workflow whose name is not taken yet."""

        installed: list[str] = []
        with self._lock:
            for key, value in defaults.items():
                if key in self._workflows or key in self._malformed:
                    continue
                self._workflows[key] = deserialize_workflow(value)
                installed.append(key)
            if installed:
                logger.info("Installed default workflows", extra={"names": installed})
                self._refresh_flags()
        if installed:
            self._changed()
        return installed

    def serialize(self) -> dict[str, Any]:
        with self._lock:
            out: dict[str, Any] = copy.deepcopy(self._malformed)
            out.update({key: serialize_workflow(w) for key, w in self._workflows.items()})
            return out

    def list_workflows(self) -> list[str]:
        with self._lock:
            return sorted(self._workflows)

    def get_workflow(self, name: str) -> Workflow:
        with self._lock:
            workflow = self._workflows.get(name)
        if workflow is None:
            raise UnknownWorkflowError(name)
        return workflow

    def set_workflow(self, name: str, workflow: Workflow) -> Workflow:
        """Store ``workflow`` under ``name`` after validating it.

        Raises:
            KindMismatchError: adjacent resolvable steps disagree on kinds.
            ValueError: a bound option value does not fit its declaration.
        """

        validate_workflow(workflow, self._registry)
        with self._lock:
            self._workflows[name] = workflow
            self._malformed.pop(name, None)
            self._refresh_flags()
        self._changed()
        return workflow

    def delete_workflow(self, name: str) -> None:
        with self._lock:
            if self._workflows.pop(name, None) is None:
                raise UnknownWorkflowError(name)
            self._unresolved.pop(name, None)
        self._changed()

    def unresolved(self, name: str) -> list[str]:
        """Step ids in ``name`` that are currently missing from the registry."""

        with self._lock:
            return list(self._unresolved.get(name, []))

    def _registry_changed(self, _step_id: str) -> None:
        with self._lock:
            self._refresh_flags()

    def _refresh_flags(self) -> None:
        flags: dict[str, list[str]] = {}
        for key, workflow in self._workflows.items():
            missing = [s.id for s in workflow.steps if self._registry.resolve(s.id) is None]
            if missing:
                flags[key] = missing
        for key in sorted(set(flags) - set(self._unresolved)):
            logger.warning(
                "Workflow references unresolved steps",
                extra={"workflow": key, "steps": flags[key]},
            )
        self._unresolved = flags

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
