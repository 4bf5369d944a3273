"""Container endpoints (RPC-style).

Thin HTTP adapter -- delegates to the container manager.  ``/exec`` reports
failures in-band and always answers 200.
"""

from __future__ import annotations

from fastapi import APIRouter

from constellation.bridge.deps import Containers, Workspaces
from constellation.bridge.models.api import (
    ContainerCreateRequest,
    ContainerDestroyRequest,
    ContainerExecRequest,
    VolumeCheckRequest,
    VolumeCheckResponse,
)
from constellation.bridge.models.container import ContainerRecord, DestroyResult, ExecResult

router = APIRouter(prefix="/container", tags=["containers"])


@router.post("/create", response_model=ContainerRecord)
async def create_container(
    body: ContainerCreateRequest,
    workspaces: Workspaces,
    containers: Containers,
) -> ContainerRecord:
    # The bind-mount source must exist before the runtime sees it.
    workspace = await workspaces.create(body.project_id)
    return await containers.create(body.project_id, body.config, workspaces.path_for(workspace.id))


@router.post("/destroy", response_model=DestroyResult)
async def destroy_container(body: ContainerDestroyRequest, containers: Containers) -> DestroyResult:
    return await containers.destroy(project_id=body.project_id, container_id=body.container_id)


@router.post("/exec", response_model=ExecResult)
async def exec_in_container(body: ContainerExecRequest, containers: Containers) -> ExecResult:
    return await containers.exec(body.command, container_id=body.container_id, project_id=body.project_id)


@router.post("/verify-volume", response_model=VolumeCheckResponse)
async def verify_volume(
    body: VolumeCheckRequest,
    workspaces: Workspaces,
    containers: Containers,
) -> VolumeCheckResponse:
    """Check that the workspace mount is visible from both sides."""
    path = await workspaces.require_path(body.project_id)
    check = await containers.verify_volume(body.project_id, path, container_id=body.container_id)
    return VolumeCheckResponse(volume_mount=check)
