"""Workspace data model.

A workspace is a per-project directory under ``{data_root}/projects/``.  It is
the unit of file isolation: containers bind-mount it and the agent CLI runs
inside it.  Workspaces are never deleted by the bridge.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from constellation.bridge.models.base import CamelModel
from constellation.bridge.models.container import PortMapping
from constellation.bridge.models.enums import WorkspaceStatus

FileTree = dict[str, str]
"""Root-relative ``/``-prefixed path -> text contents."""


class Workspace(CamelModel):
    id: str
    name: str | None = None
    path: str
    status: WorkspaceStatus = WorkspaceStatus.READY
    ports: list[PortMapping] = Field(default_factory=list)
    created_at: datetime | None = None
