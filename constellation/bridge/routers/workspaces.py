"""Workspace endpoints (RPC-style).

Thin HTTP adapter -- delegates to the workspace store and container manager.
"""

from __future__ import annotations

from fastapi import APIRouter, Query
from loguru import logger

from constellation.bridge.deps import Containers, Workspaces
from constellation.bridge.errors import ContainerCommandFailed
from constellation.bridge.models.api import (
    CommandResponse,
    FilesResponse,
    FileWriteRequest,
    FileWriteResponse,
    WorkspaceCreateRequest,
    WorkspaceDestroyRequest,
    WorkspaceDestroyResponse,
    WorkspaceExecRequest,
    WorkspaceListResponse,
)
from constellation.bridge.models.workspace import Workspace

router = APIRouter(prefix="/workspace", tags=["workspaces"])


@router.post("/create", response_model=Workspace)
async def create_workspace(body: WorkspaceCreateRequest, workspaces: Workspaces) -> Workspace:
    """Create the workspace for a project, or return the existing one."""
    return await workspaces.create(body.project_id, body.project_name)


@router.post("/destroy", response_model=WorkspaceDestroyResponse)
async def destroy_workspace(
    body: WorkspaceDestroyRequest,
    workspaces: Workspaces,
    containers: Containers,
) -> WorkspaceDestroyResponse:
    """Tear down the project's container and prepare the workspace for rebuild.

    Workspace files are kept.
    """
    if body.workspace_path:
        path = workspaces.resolve_path(body.workspace_path)
    else:
        path = workspaces.path_for(body.project_id)
    name = containers.name_for(body.project_id)

    try:
        await containers.destroy(project_id=body.project_id, container_id=body.container_id)
        destroyed = True
    except ContainerCommandFailed as exc:
        logger.warning("Container cleanup for {} failed: {}", body.project_id, exc)
        destroyed = False

    cleared = await workspaces.clear(path)
    return WorkspaceDestroyResponse(
        container_destroyed=destroyed,
        workspace_cleared=cleared,
        project_id=body.project_id,
        container_name=name,
    )


@router.post("/exec", response_model=CommandResponse)
async def exec_in_workspace(body: WorkspaceExecRequest, workspaces: Workspaces) -> CommandResponse:
    result = await workspaces.exec(body.project_id, body.command)
    return CommandResponse(
        success=result.exit_code == 0,
        output=result.output,
        stderr=result.stderr,
        exit_code=result.exit_code,
    )


@router.get("/list", response_model=WorkspaceListResponse)
async def list_workspaces(
    workspaces: Workspaces,
    limit: int | None = Query(None, ge=1, description="Maximum number of workspaces to return."),
) -> WorkspaceListResponse:
    """List workspaces, newest first."""
    projects = await workspaces.list_workspaces(limit)
    return WorkspaceListResponse(workspace_root=str(workspaces.root), total=len(projects), projects=projects)


@router.get("/{project_id}/files", response_model=FilesResponse)
async def get_files(project_id: str, workspaces: Workspaces) -> FilesResponse:
    path = await workspaces.require_path(project_id)
    return FilesResponse(files=await workspaces.scan(path))


@router.post("/{project_id}/files", response_model=FileWriteResponse)
async def write_file(project_id: str, body: FileWriteRequest, workspaces: Workspaces) -> FileWriteResponse:
    file_path = await workspaces.write_file(project_id, body.path, body.content)
    return FileWriteResponse(project_id=project_id, file_path=file_path)
