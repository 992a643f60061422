"""Step definitions: the unit of transformation a Workflow is built from."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, model_validator

from draftwright.model.drafts import DraftSnapshot, SceneText
from draftwright.vault.store import normalize_path

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    """What flows between steps."""

    DRAFT = "draft"
    SCENES = "scenes"
    TEXT = "text"


def value_matches_kind(kind: StepKind, value: object) -> bool:
    if kind == StepKind.DRAFT:
        return isinstance(value, DraftSnapshot)
    if kind == StepKind.SCENES:
        return isinstance(value, list | tuple) and all(isinstance(v, SceneText) for v in value)
    return isinstance(value, str)


OptionType = Literal["text", "boolean", "number", "choice"]


class StepOption(BaseModel):
    """A configurable option a step declares, with its default and bounds."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    type: OptionType = "text"
    default: Any = None
    choices: tuple[str, ...] = ()
    minimum: float | None = None
    maximum: float | None = None

    @model_validator(mode="after")
    def _check_default(self) -> StepOption:
        if self.type == "choice" and not self.choices:
            raise ValueError(f"Choice option {self.id!r} declares no choices")
        if self.default is not None:
            self.coerce(self.default)
        return self

    def coerce(self, value: object) -> object:
        """Validate a bound value; raises ``ValueError`` when it does not fit."""

        if self.type == "text":
            if not isinstance(value, str):
                raise ValueError(f"Option {self.id!r} expects text, got {value!r}")
            return value
        if self.type == "boolean":
            if not isinstance(value, bool):
                raise ValueError(f"Option {self.id!r} expects a boolean, got {value!r}")
            return value
        if self.type == "number":
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise ValueError(f"Option {self.id!r} expects a number, got {value!r}")
            if self.minimum is not None and value < self.minimum:
                raise ValueError(f"Option {self.id!r} must be >= {self.minimum}")
            if self.maximum is not None and value > self.maximum:
                raise ValueError(f"Option {self.id!r} must be <= {self.maximum}")
            return value
        if value not in self.choices:
            raise ValueError(f"Option {self.id!r} must be one of {list(self.choices)}")
        return value


@dataclass(slots=True)
class StepContext:
    """What a running step may see and do besides transforming its input.

    Steps never write to the vault themselves: ``write_note`` queues a file
    that the engine writes only once the whole Workflow has succeeded.
    """

    snapshot: DraftSnapshot
    options: Mapping[str, object]
    workflow_name: str
    step_id: str
    position: int
    pending_writes: list[tuple[str, str]] = field(default_factory=list)

    @property
    def draft_title(self) -> str:
        return self.snapshot.title

    def write_note(self, path: str, content: str) -> None:
        self.pending_writes.append((normalize_path(path), content))

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(f"draftwright.steps.{self.step_id}")


StepFunction = Callable[[Any, StepContext], Any]


@dataclass(frozen=True, slots=True)
class StepDefinition:
    """A registered transformation. Immutable once registered."""

    id: str
    name: str
    input_kind: StepKind
    output_kind: StepKind
    run: StepFunction
    description: str = ""
    version: int = 1
    options: tuple[StepOption, ...] = ()
    source: str = "builtin"

    @property
    def is_user_script(self) -> bool:
        return self.source != "builtin"

    def option_defaults(self) -> dict[str, object]:
        return {o.id: o.default for o in self.options}

    def bind_options(self, values: Mapping[str, object]) -> dict[str, object]:
        """Merge ``values`` over the defaults, validating each bound value.

        Unknown keys are kept untouched so a newer script version can still
        read values stored by an older Workflow.
        """

        bound: dict[str, object] = self.option_defaults()
        declared = {o.id: o for o in self.options}
        for key, value in values.items():
            option = declared.get(key)
            bound[key] = option.coerce(value) if option is not None else value
        return bound

    def describe(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "input": self.input_kind.value,
            "output": self.output_kind.value,
            "options": [o.model_dump() for o in self.options],
            "source": self.source,
        }


def parse_options(raw: Sequence[Mapping[str, Any]] | None) -> tuple[StepOption, ...]:
    if not raw:
        return ()
    return tuple(StepOption.model_validate(dict(item)) for item in raw)
