"""Data models for the bridge."""

from constellation.bridge.models.api import (
    AgentResult,
    AgentStatus,
    ChatRequest,
    ChatResponse,
    CommandResponse,
    ContainerCreateRequest,
    ContainerDestroyRequest,
    ContainerExecRequest,
    FilesResponse,
    FileSyncRequest,
    FileWriteRequest,
    FileWriteResponse,
    HealthResponse,
    VolumeCheckRequest,
    VolumeCheckResponse,
    WorkspaceCreateRequest,
    WorkspaceDestroyRequest,
    WorkspaceDestroyResponse,
    WorkspaceExecRequest,
    WorkspaceListResponse,
)
from constellation.bridge.models.container import (
    ContainerConfig,
    ContainerRecord,
    DestroyResult,
    ExecResult,
    PortMapping,
    VolumeCheck,
    VolumeFileCheck,
)
from constellation.bridge.models.enums import ContainerElevation, StreamName, WorkspaceStatus
from constellation.bridge.models.events import (
    ConnectedFrame,
    DataFrame,
    ExitFrame,
    InputFrame,
    ResizeFrame,
    StreamFrame,
)
from constellation.bridge.models.workspace import FileTree, Workspace

__all__ = [
    # API schemas
    "AgentResult",
    "AgentStatus",
    "ChatRequest",
    "ChatResponse",
    "CommandResponse",
    # Events
    "ConnectedFrame",
    # Container
    "ContainerConfig",
    "ContainerCreateRequest",
    "ContainerDestroyRequest",
    # Enums
    "ContainerElevation",
    "ContainerExecRequest",
    "ContainerRecord",
    "DataFrame",
    "DestroyResult",
    "ExecResult",
    "ExitFrame",
    "FileSyncRequest",
    # Workspace
    "FileTree",
    "FileWriteRequest",
    "FileWriteResponse",
    "FilesResponse",
    "HealthResponse",
    "InputFrame",
    "PortMapping",
    "ResizeFrame",
    "StreamFrame",
    "StreamName",
    "VolumeCheck",
    "VolumeCheckRequest",
    "VolumeCheckResponse",
    "VolumeFileCheck",
    "Workspace",
    "WorkspaceCreateRequest",
    "WorkspaceDestroyRequest",
    "WorkspaceDestroyResponse",
    "WorkspaceExecRequest",
    "WorkspaceListResponse",
    "WorkspaceStatus",
]
