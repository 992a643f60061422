"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ApiScene(BaseModel):
    name: str
    title: str
    path: str


class ApiDraft(BaseModel):
    vault_path: str
    title: str
    format: str
    scene_folder: str
    scenes: list[str] = Field(default_factory=list)
    workflow: str | None = None


class ApiDraftDetail(ApiDraft):
    scene_files: list[ApiScene] = Field(default_factory=list)


class ReorderRequest(BaseModel):
    draft_path: str
    scenes: list[str]


class SelectDraftRequest(BaseModel):
    draft_path: str | None = None


class UserScriptFolderRequest(BaseModel):
    folder: str | None = None


class ApiStepInvocation(BaseModel):
    id: str
    options: dict[str, Any] = Field(default_factory=dict)


class WorkflowPayload(BaseModel):
    description: str | None = None
    steps: list[ApiStepInvocation] = Field(default_factory=list)


class ApiWorkflow(BaseModel):
    name: str
    description: str | None = None
    steps: list[ApiStepInvocation] = Field(default_factory=list)
    unresolved_steps: list[str] = Field(default_factory=list)


class ApiStepOption(BaseModel):
    id: str
    name: str
    description: str
    type: str
    default: Any = None
    choices: list[str] = Field(default_factory=list)
    minimum: float | None = None
    maximum: float | None = None


class ApiStep(BaseModel):
    id: str
    name: str
    description: str
    version: int
    input: str
    output: str
    source: str
    options: list[ApiStepOption] = Field(default_factory=list)


class CompileRequest(BaseModel):
    workflow: str
    draft_path: str


class CompileResult(BaseModel):
    workflow_name: str
    draft_path: str
    text: str
    written_paths: list[str] = Field(default_factory=list)
