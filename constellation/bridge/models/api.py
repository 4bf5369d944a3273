"""API request / response schemas.

Thin wire schemas sit between HTTP and the managers.  Request models accept
both camelCase (what the browser sends) and snake_case; responses are always
emitted in camelCase.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, model_validator

from constellation.bridge.models.base import CamelModel
from constellation.bridge.models.container import ContainerConfig, VolumeCheck
from constellation.bridge.models.workspace import FileTree, Workspace

# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


class WorkspaceCreateRequest(CamelModel):
    project_id: str
    project_name: str | None = None


class WorkspaceDestroyRequest(CamelModel):
    project_id: str
    container_id: str | None = None
    workspace_path: str | None = None


class WorkspaceDestroyResponse(CamelModel):
    success: bool = True
    container_destroyed: bool
    workspace_cleared: bool
    project_id: str
    container_name: str


class WorkspaceExecRequest(CamelModel):
    project_id: str
    command: str


class WorkspaceListResponse(CamelModel):
    workspace_root: str
    total: int
    projects: list[Workspace]


class FileWriteRequest(CamelModel):
    path: str = Field(min_length=1)
    content: str = ""


class FileWriteResponse(CamelModel):
    success: bool = True
    project_id: str
    file_path: str


class FilesResponse(CamelModel):
    files: FileTree


class FileSyncRequest(CamelModel):
    project_id: str | None = None
    workspace_path: str | None = None

    @model_validator(mode="after")
    def _require_target(self) -> FileSyncRequest:
        if not self.project_id and not self.workspace_path:
            msg = "Either projectId or workspacePath must be provided"
            raise ValueError(msg)
        return self


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class CommandResponse(CamelModel):
    """Result of a command whose failure is reported in-band (HTTP 200)."""

    success: bool
    output: str
    stderr: str = ""
    exit_code: int


# ---------------------------------------------------------------------------
# Containers
# ---------------------------------------------------------------------------


class ContainerCreateRequest(CamelModel):
    project_id: str
    config: ContainerConfig = Field(default_factory=ContainerConfig)


class ContainerDestroyRequest(CamelModel):
    project_id: str | None = None
    container_id: str | None = None

    @model_validator(mode="after")
    def _require_target(self) -> ContainerDestroyRequest:
        if not self.project_id and not self.container_id:
            msg = "Either projectId or containerId must be provided"
            raise ValueError(msg)
        return self


class ContainerExecRequest(CamelModel):
    # Neither id is required here: a missing target is reported in-band as
    # exitCode 1, like any other exec failure.
    container_id: str | None = None
    project_id: str | None = None
    command: str


class VolumeCheckRequest(CamelModel):
    project_id: str
    container_id: str | None = None


class VolumeCheckResponse(CamelModel):
    success: bool = True
    volume_mount: VolumeCheck


# ---------------------------------------------------------------------------
# Chat / agent
# ---------------------------------------------------------------------------


class ChatRequest(CamelModel):
    message: str = Field(min_length=1)
    project_id: str


class ChatResponse(CamelModel):
    success: bool
    message: str
    files: FileTree = Field(default_factory=dict)
    changed_files: list[str] = Field(default_factory=list)
    workspace: str
    claude_output: str | None = None
    error: str | None = None
    fallback: bool = False


class AgentResult(CamelModel):
    """Outcome of a successful agent run."""

    message: str
    files: FileTree = Field(default_factory=dict)
    raw_output: str = ""
    changed_files: list[str] = Field(default_factory=list)
    workspace: str


class AgentStatus(CamelModel):
    available: bool
    version: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(CamelModel):
    status: str = "healthy"
    timestamp: datetime
    workspace_root: str
    active_terminals: int = 0
