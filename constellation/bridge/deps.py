"""FastAPI dependency injection for the bridge services.

Usage in route handlers::

    @router.post("/create")
    async def create(body: WorkspaceCreateRequest, workspaces: Workspaces) -> dict:
        ...

Every service is built once in the app lifespan and stored on ``app.state``.
Dependencies raise HTTP 503 if a service is missing (lifespan not run).
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, status
from starlette.requests import HTTPConnection

from constellation.bridge.managers.agent import AgentRunner
from constellation.bridge.managers.containers import ContainerManager
from constellation.bridge.managers.workspaces import WorkspaceStore
from constellation.bridge.registry import TerminalRegistry
from constellation.bridge.settings import BridgeSettings


def _state(conn: HTTPConnection, name: str) -> Any:
    value = getattr(conn.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service not initialised: {name}",
        )
    return value


def get_settings_dep(conn: HTTPConnection) -> BridgeSettings:
    return _state(conn, "settings")


def get_workspaces(conn: HTTPConnection) -> WorkspaceStore:
    return _state(conn, "workspaces")


def get_containers(conn: HTTPConnection) -> ContainerManager:
    return _state(conn, "containers")


def get_agent(conn: HTTPConnection) -> AgentRunner:
    return _state(conn, "agent")


def get_terminal_registry(conn: HTTPConnection) -> TerminalRegistry:
    return _state(conn, "terminal_registry")


# -- Annotated type aliases for concise route signatures ---------------------

Settings = Annotated[BridgeSettings, Depends(get_settings_dep)]
Workspaces = Annotated[WorkspaceStore, Depends(get_workspaces)]
"""Annotated dependency: the workspace store."""

Containers = Annotated[ContainerManager, Depends(get_containers)]
Agent = Annotated[AgentRunner, Depends(get_agent)]
Terminals = Annotated[TerminalRegistry, Depends(get_terminal_registry)]
