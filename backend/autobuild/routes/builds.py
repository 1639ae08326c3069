from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, HTTPException, status

from autobuild.dependencies import DeployAdapterDep, OrchestratorDep
from autobuild.errors import BuildError
from autobuild.models.api import (
    BuildCancelResponse,
    BuildDeleteResponse,
    BuildListResponse,
    BuildModifyRequest,
    BuildModifyResponse,
    BuildRespondRequest,
    BuildRespondResponse,
    BuildRetryRequest,
    BuildRetryResponse,
    BuildStartRequest,
    BuildStartResponse,
    BuildStatusResponse,
    PendingQuestionResponse,
    WorkspaceEntryResponse,
    WorkspaceFileResponse,
    WorkspaceFilesResponse,
)
from autobuild.models.build import BuildStatus

router = APIRouter(prefix="/build", tags=["build"])


def _raise_http(exc: BuildError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.post(
    "/start",
    response_model=BuildStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_build(
    request: BuildStartRequest,
    orchestrator: OrchestratorDep,
) -> BuildStartResponse:
    """Queue a new build; progress is observed via status or the WebSocket stream."""
    try:
        project_id = await orchestrator.start_build(
            request.description,
            request.project_type,
            preferred_stack=request.preferred_stack,
            deploy_target=request.deploy_target,
        )
    except BuildError as exc:
        _raise_http(exc)
    return BuildStartResponse(project_id=project_id, status=BuildStatus.QUEUED)


@router.get("/projects", response_model=BuildListResponse)
async def list_projects(
    orchestrator: OrchestratorDep,
    limit: int | None = None,
) -> BuildListResponse:
    projects = await orchestrator.list_projects(limit)
    return BuildListResponse(projects=projects)


@router.get("/deploy/cli")
async def deploy_cli_status(deploy_adapter: DeployAdapterDep) -> dict[str, object]:
    if deploy_adapter is None:
        return {"installed": False, "authenticated": False, "user": None}
    cli_status = await deploy_adapter.check_cli()
    return {
        "installed": cli_status.installed,
        "authenticated": cli_status.authenticated,
        "user": cli_status.user,
    }


@router.get("/{project_id}/status", response_model=BuildStatusResponse)
async def get_build_status(
    project_id: str,
    orchestrator: OrchestratorDep,
) -> BuildStatusResponse:
    snapshot = await orchestrator.get_project_status(project_id)
    if snapshot.project is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Project '{project_id}' was not found",
        )
    return BuildStatusResponse(
        project=snapshot.project,
        logs=snapshot.logs,
        session=orchestrator.get_session(project_id),
        run_state=orchestrator.get_run_state(project_id),
    )


@router.post("/{project_id}/cancel", response_model=BuildCancelResponse)
async def cancel_build(
    project_id: str,
    orchestrator: OrchestratorDep,
) -> BuildCancelResponse:
    try:
        cancelled = await orchestrator.cancel_build(project_id)
    except BuildError as exc:
        _raise_http(exc)
    return BuildCancelResponse(project_id=project_id, cancelled=cancelled)


@router.post("/{project_id}/retry", response_model=BuildRetryResponse)
async def retry_build(
    project_id: str,
    orchestrator: OrchestratorDep,
    request: BuildRetryRequest | None = None,
) -> BuildRetryResponse:
    modifications = request.modifications if request else None
    try:
        new_project_id = await orchestrator.retry_build(project_id, modifications)
    except BuildError as exc:
        _raise_http(exc)
    return BuildRetryResponse(project_id=new_project_id, retried_from=project_id)


@router.post(
    "/{project_id}/modify",
    response_model=BuildModifyResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def modify_build(
    project_id: str,
    request: BuildModifyRequest,
    orchestrator: OrchestratorDep,
) -> BuildModifyResponse:
    try:
        await orchestrator.modify_existing_project(project_id, request.change_description)
    except BuildError as exc:
        _raise_http(exc)
    project = await orchestrator.get_project(project_id)
    return BuildModifyResponse(
        project_id=project_id,
        status=project.status if project else BuildStatus.BUILDING,
    )


@router.get("/{project_id}/respond", response_model=PendingQuestionResponse)
async def get_pending_question(
    project_id: str,
    orchestrator: OrchestratorDep,
) -> PendingQuestionResponse:
    session = orchestrator.get_session(project_id)
    if session is None or not orchestrator.session_manager.has_active_question(project_id):
        return PendingQuestionResponse(project_id=project_id, has_question=False)
    return PendingQuestionResponse(
        project_id=project_id,
        has_question=True,
        session_id=session.id,
        question=session.pending_question,
        options=session.pending_options,
    )


@router.post("/{project_id}/respond", response_model=BuildRespondResponse)
async def respond_to_question(
    project_id: str,
    request: BuildRespondRequest,
    orchestrator: OrchestratorDep,
) -> BuildRespondResponse:
    try:
        session = await orchestrator.respond_to_question(project_id, request.response)
    except BuildError as exc:
        _raise_http(exc)
    return BuildRespondResponse(
        project_id=project_id,
        session_id=session.id,
        status=session.status,
        response=session.response or "",
    )


@router.get("/{project_id}/files", response_model=WorkspaceFilesResponse)
async def list_project_files(
    project_id: str,
    orchestrator: OrchestratorDep,
    max_depth: int = 10,
) -> WorkspaceFilesResponse:
    try:
        entries = await orchestrator.list_project_files(project_id, max_depth)
    except BuildError as exc:
        _raise_http(exc)
    return WorkspaceFilesResponse(
        project_id=project_id,
        files=[
            WorkspaceEntryResponse(
                path=entry.path,
                name=entry.name,
                is_dir=entry.is_dir,
                depth=entry.depth,
                size=entry.size,
                updated_at=entry.updated_at,
            )
            for entry in entries
        ],
    )


@router.get("/{project_id}/files/{file_path:path}", response_model=WorkspaceFileResponse)
async def read_project_file(
    project_id: str,
    file_path: str,
    orchestrator: OrchestratorDep,
) -> WorkspaceFileResponse:
    try:
        workspace_file = await orchestrator.read_project_file(project_id, file_path)
    except BuildError as exc:
        _raise_http(exc)
    return WorkspaceFileResponse(
        path=workspace_file.path,
        content=workspace_file.content,
        size=workspace_file.size,
        extension=workspace_file.extension,
        is_binary=workspace_file.is_binary,
    )


@router.delete("/{project_id}", response_model=BuildDeleteResponse)
async def delete_build(
    project_id: str,
    orchestrator: OrchestratorDep,
) -> BuildDeleteResponse:
    try:
        deleted = await orchestrator.delete_project(project_id)
    except BuildError as exc:
        _raise_http(exc)
    return BuildDeleteResponse(project_id=project_id, deleted=deleted)
