"""Agent chat endpoints.

``/chat/stream`` is the primary interface: an SSE channel that carries the
agent's raw output as it is produced and always ends with exactly one frame
carrying ``complete: true``.  ``/chat`` runs the same request buffered.

When the SSE client goes away the generator is closed, the run task is
cancelled and the agent's process group is killed with it.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from pathlib import Path

from fastapi import APIRouter
from loguru import logger
from sse_starlette.sse import EventSourceResponse

from constellation.bridge.deps import Agent, Workspaces
from constellation.bridge.errors import (
    AgentProcessFailed,
    AgentSpawnFailed,
    BridgeError,
    InvalidProjectId,
    WorkspaceNotFound,
)
from constellation.bridge.guidance import render_guidance
from constellation.bridge.managers.agent import AgentRunner
from constellation.bridge.managers.workspaces import WorkspaceStore
from constellation.bridge.models.api import AgentResult, AgentStatus, ChatRequest, ChatResponse
from constellation.bridge.models.enums import StreamName
from constellation.bridge.models.events import StreamFrame

router = APIRouter(tags=["chat"])


def _event(frame: StreamFrame) -> dict[str, str]:
    return {"data": frame.model_dump_json(by_alias=True, exclude_none=True)}


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


async def _stream_chat(
    body: ChatRequest,
    workspaces: WorkspaceStore,
    agent: AgentRunner,
) -> AsyncIterator[dict[str, str]]:
    try:
        path = await workspaces.require_path(body.project_id)
    except (WorkspaceNotFound, InvalidProjectId) as exc:
        yield _event(StreamFrame(complete=True, success=False, error=str(exc)))
        return

    logger.info("Streaming agent request for project {}", body.project_id)
    yield _event(StreamFrame(message=f"Processing request...\n\nWorkspace: {path}\n\n"))

    queue: asyncio.Queue[StreamFrame | None] = asyncio.Queue()

    async def on_chunk(stream: StreamName, text: str) -> None:
        queue.put_nowait(StreamFrame(message=text, stream=stream))

    async def run() -> AgentResult:
        try:
            return await agent.run(body.message, path, on_chunk)
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(run())
    try:
        while (frame := await queue.get()) is not None:
            yield _event(frame)

        try:
            result = await task
        except BridgeError as exc:
            logger.warning("Agent run for project {} failed: {}", body.project_id, exc)
            async for event in _failure_events(body, path, str(exc), workspaces, agent):
                yield event
            return

        yield _event(StreamFrame(message=f"\n\nAgent completed.\n\nFiles in workspace: {len(result.files)}\n"))
        yield _event(
            StreamFrame(
                complete=True,
                success=True,
                message=result.message,
                files=result.files,
                changed_files=result.changed_files,
                workspace=result.workspace,
                raw_output=result.raw_output,
            )
        )
    finally:
        if not task.done():
            logger.info("Stream client for project {} went away, stopping agent", body.project_id)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


async def _failure_events(
    body: ChatRequest,
    path: Path,
    error: str,
    workspaces: WorkspaceStore,
    agent: AgentRunner,
) -> AsyncIterator[dict[str, str]]:
    guidance = render_guidance(error=error, workspace=str(path), message=body.message, agent_argv=agent.base_argv)
    yield _event(StreamFrame(message=f"\n\n{guidance}"))
    files = await workspaces.scan(path)
    yield _event(
        StreamFrame(
            complete=True,
            success=False,
            error=error,
            files=files,
            workspace=str(path),
            fallback=True,
        )
    )


@router.post("/chat/stream")
async def chat_stream(body: ChatRequest, workspaces: Workspaces, agent: Agent) -> EventSourceResponse:
    """Run the agent in the project workspace and stream its output."""
    return EventSourceResponse(_stream_chat(body, workspaces, agent))


# ---------------------------------------------------------------------------
# Buffered
# ---------------------------------------------------------------------------


@router.post("/chat", response_model=ChatResponse)
async def chat(body: ChatRequest, workspaces: Workspaces, agent: Agent) -> ChatResponse:
    """Run the agent to completion.  Agent failures come back as a fallback reply."""
    path = await workspaces.require_path(body.project_id)
    try:
        result = await agent.run_buffered(body.message, path)
    except (AgentSpawnFailed, AgentProcessFailed) as exc:
        logger.warning("Agent run for project {} failed: {}", body.project_id, exc)
        return ChatResponse(
            success=False,
            error=str(exc),
            message=render_guidance(
                error=str(exc),
                workspace=str(path),
                message=body.message,
                agent_argv=agent.base_argv,
            ),
            files=await workspaces.scan(path),
            workspace=str(path),
            fallback=True,
        )

    return ChatResponse(
        success=True,
        message=result.message,
        files=result.files,
        changed_files=result.changed_files,
        workspace=result.workspace,
        claude_output=result.raw_output,
    )


@router.get("/agent/status", response_model=AgentStatus)
async def agent_status(agent: Agent) -> AgentStatus:
    """Report whether the agent CLI can be started."""
    return await agent.version()
