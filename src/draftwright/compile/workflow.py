"""Workflows: named, ordered Step invocations, and their persisted form.

A Workflow is data, not code. Its serialized form only carries step ids and
bound option values::

    {
      "name": "Default Workflow",
      "description": "...",            # optional
      "steps": [{"id": "strip-frontmatter", "options": {}}, ...]
    }

Deserialization never consults the registry, so a Workflow referencing a
user-script step that has not been loaded yet is preserved verbatim.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StepInvocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    options: dict[str, Any] = Field(default_factory=dict)


class Workflow(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str | None = None
    steps: tuple[StepInvocation, ...] = ()

    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]

    def add_step(
        self,
        step_id: str,
        options: Mapping[str, Any] | None = None,
        *,
        position: int | None = None,
    ) -> Workflow:
        steps = list(self.steps)
        invocation = StepInvocation(id=step_id, options=dict(options or {}))
        steps.insert(len(steps) if position is None else position, invocation)
        return self.model_copy(update={"steps": tuple(steps)})

    def remove_step(self, position: int) -> Workflow:
        steps = list(self.steps)
        del steps[position]
        return self.model_copy(update={"steps": tuple(steps)})

    def move_step(self, source: int, destination: int) -> Workflow:
        steps = list(self.steps)
        moved = steps.pop(source)
        steps.insert(destination, moved)
        return self.model_copy(update={"steps": tuple(steps)})

    def with_options(self, position: int, options: Mapping[str, Any]) -> Workflow:
        steps = list(self.steps)
        steps[position] = StepInvocation(id=steps[position].id, options=dict(options))
        return self.model_copy(update={"steps": tuple(steps)})


def deserialize_workflow(data: Mapping[str, Any]) -> Workflow:
    """Rebuild a Workflow from its persisted form, options copied verbatim."""

    steps = tuple(
        StepInvocation(id=str(raw["id"]), options=copy.deepcopy(dict(raw.get("options") or {})))
        for raw in data.get("steps") or []
    )
    description = data.get("description")
    return Workflow(
        name=str(data["name"]),
        description=None if description is None else str(description),
        steps=steps,
    )


def serialize_workflow(workflow: Workflow) -> dict[str, Any]:
    out: dict[str, Any] = {"name": workflow.name}
    if workflow.description is not None:
        out["description"] = workflow.description
    out["steps"] = [
        {"id": step.id, "options": copy.deepcopy(step.options)} for step in workflow.steps
    ]
    return out


DEFAULT_WORKFLOWS: dict[str, dict[str, Any]] = {
    "Default Workflow": {
        "name": "Default Workflow",
        "description": (
            "A starter workflow: cleans each scene, titles it, joins the scenes into a "
            "manuscript and saves it as a note."
        ),
        "steps": [
            {"id": "strip-frontmatter", "options": {}},
            {"id": "remove-links", "options": {"remove-external-links": False}},
            {"id": "prepend-title", "options": {"format": "## $1", "separator": "\n\n"}},
            {"id": "concatenate-text", "options": {"separator": "\n\n"}},
            {"id": "write-to-note", "options": {"target": "manuscripts/$1.md"}},
        ],
    },
}

