"""File sync endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from constellation.bridge.deps import Workspaces
from constellation.bridge.models.api import FileSyncRequest
from constellation.bridge.models.workspace import FileTree

router = APIRouter(prefix="/files", tags=["files"])


@router.post("/sync")
async def sync_files(body: FileSyncRequest, workspaces: Workspaces) -> FileTree:
    """Return the full file tree of a workspace, by project id or path."""
    path = await workspaces.require_path(body.project_id, body.workspace_path)
    return await workspaces.scan(path)
