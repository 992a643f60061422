"""FastAPI app factory.

Endpoints are thin wrappers over :class:`draftwright.app.DraftwrightApp`.
Run with ``uvicorn draftwright.server.app:create_app --factory``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from draftwright import __version__
from draftwright.app import DraftwrightApp
from draftwright.compile.steps import StepDefinition
from draftwright.compile.workflow import StepInvocation, Workflow
from draftwright.config import DraftwrightSettings
from draftwright.errors import (
    KindMismatchError,
    PersistenceFailure,
    UnknownDraftError,
    UnknownWorkflowError,
    WorkflowRunError,
)
from draftwright.model.drafts import Draft
from draftwright.server.models import (
    ApiDraft,
    ApiDraftDetail,
    ApiScene,
    ApiStep,
    ApiStepInvocation,
    ApiWorkflow,
    CompileRequest,
    CompileResult,
    ReorderRequest,
    SelectDraftRequest,
    UserScriptFolderRequest,
    WorkflowPayload,
)

logger = logging.getLogger(__name__)


def _to_api_draft(draft: Draft) -> ApiDraft:
    return ApiDraft(
        vault_path=draft.vault_path,
        title=draft.title,
        format=draft.format.value,
        scene_folder=draft.scene_folder,
        scenes=list(draft.scenes),
        workflow=draft.workflow,
    )


def _to_api_workflow(dw: DraftwrightApp, name: str) -> ApiWorkflow:
    workflow = dw.get_workflow(name)
    return ApiWorkflow(
        name=workflow.name,
        description=workflow.description,
        steps=[ApiStepInvocation(id=s.id, options=dict(s.options)) for s in workflow.steps],
        unresolved_steps=dw.workflows.unresolved(name),
    )


def _to_api_step(step: StepDefinition) -> ApiStep:
    return ApiStep.model_validate(step.describe())


def _run_error_detail(e: WorkflowRunError) -> dict[str, object]:
    return {
        "error": type(e).__name__,
        "message": e.message,
        "step_id": e.step_id,
        "position": e.position,
    }


def _start_default_app() -> DraftwrightApp:
    settings = DraftwrightSettings()
    dw = DraftwrightApp.from_settings(settings)
    dw.load_settings()
    dw.begin_observing(watch=True)
    return dw


def create_app(draftwright: DraftwrightApp | None = None) -> FastAPI:
    """Build the REST app over ``draftwright``.

    Without an explicit application object one is created from
    :class:`DraftwrightSettings`, initialized, and set watching the vault.
    """

    settings = DraftwrightSettings()
    dw = draftwright if draftwright is not None else _start_default_app()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        dw.close()

    app = FastAPI(
        title="draftwright",
        version=__version__,
        description="REST API over draftwright drafts, workflows and steps.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    # Expose state for request handlers that want to read it.
    app.state.settings = settings
    app.state.draftwright = dw

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health() -> dict[str, object]:
        return {
            "status": "ok",
            "version": __version__,
            "initialized": dw.initialized,
            "drafts": len(dw.list_drafts()),
        }

    @app.get("/api/drafts", response_model=list[ApiDraft])
    def list_drafts() -> list[ApiDraft]:
        return [_to_api_draft(d) for d in dw.list_drafts()]

    @app.get("/api/drafts/{draft_path:path}", response_model=ApiDraftDetail)
    def get_draft(draft_path: str) -> ApiDraftDetail:
        draft = dw.draft_for_path(draft_path)
        if draft is None:
            raise HTTPException(status_code=404, detail="Draft not found")
        base = _to_api_draft(draft)
        return ApiDraftDetail(
            **base.model_dump(),
            scene_files=[
                ApiScene(name=s.name, title=s.title, path=s.path) for s in dw.scenes_of(draft)
            ],
        )

    @app.put("/api/scene-order", response_model=ApiDraft)
    def reorder_scenes(req: ReorderRequest) -> ApiDraft:
        try:
            return _to_api_draft(dw.reorder_scenes(req.draft_path, req.scenes))
        except UnknownDraftError as e:
            raise HTTPException(status_code=404, detail="Draft not found") from e
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

    @app.put("/api/selected-draft")
    def select_draft(req: SelectDraftRequest) -> dict[str, str | None]:
        try:
            dw.select_draft(req.draft_path)
        except UnknownDraftError as e:
            raise HTTPException(status_code=404, detail="Draft not found") from e
        return {"selected_draft": dw.selected_draft}

    @app.put("/api/user-script-folder")
    def set_user_script_folder(req: UserScriptFolderRequest) -> dict[str, object]:
        try:
            dw.set_user_script_folder(req.folder)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return {
            "folder": dw.scripts.folder,
            "steps": [e.step_id for e in dw.scripts.entries()],
        }

    @app.get("/api/workflows", response_model=list[ApiWorkflow])
    def list_workflows() -> list[ApiWorkflow]:
        return [_to_api_workflow(dw, name) for name in dw.list_workflows()]

    @app.get("/api/workflows/{name}", response_model=ApiWorkflow)
    def get_workflow(name: str) -> ApiWorkflow:
        try:
            return _to_api_workflow(dw, name)
        except UnknownWorkflowError as e:
            raise HTTPException(status_code=404, detail="Workflow not found") from e

    @app.put("/api/workflows/{name}", response_model=ApiWorkflow)
    def put_workflow(name: str, payload: WorkflowPayload) -> ApiWorkflow:
        workflow = Workflow(
            name=name,
            description=payload.description,
            steps=tuple(StepInvocation(id=s.id, options=dict(s.options)) for s in payload.steps),
        )
        try:
            dw.set_workflow(name, workflow)
        except KindMismatchError as e:
            raise HTTPException(status_code=422, detail=_run_error_detail(e)) from e
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return _to_api_workflow(dw, name)

    @app.delete("/api/workflows/{name}")
    def delete_workflow(name: str) -> dict[str, str]:
        try:
            dw.delete_workflow(name)
        except UnknownWorkflowError as e:
            raise HTTPException(status_code=404, detail="Workflow not found") from e
        return {"deleted": name}

    @app.get("/api/steps", response_model=list[ApiStep])
    def list_steps() -> list[ApiStep]:
        return [_to_api_step(s) for s in dw.list_steps()]

    @app.post("/api/compile", response_model=CompileResult)
    def compile_draft(req: CompileRequest) -> CompileResult:
        try:
            artifact = dw.run_workflow(req.workflow, req.draft_path)
        except UnknownWorkflowError as e:
            raise HTTPException(status_code=404, detail="Workflow not found") from e
        except UnknownDraftError as e:
            raise HTTPException(status_code=404, detail="Draft not found") from e
        except WorkflowRunError as e:
            logger.warning(
                "Compile failed",
                extra={"workflow": req.workflow, "step_id": e.step_id, "position": e.position},
            )
            raise HTTPException(status_code=422, detail=_run_error_detail(e)) from e
        return CompileResult(
            workflow_name=artifact.workflow_name,
            draft_path=artifact.draft_path,
            text=artifact.text,
            written_paths=list(artifact.written_paths),
        )

    @app.post("/api/save")
    def save() -> dict[str, str]:
        try:
            dw.save()
        except PersistenceFailure as e:
            raise HTTPException(status_code=500, detail=str(e)) from e
        return {"status": "saved"}

    return app
