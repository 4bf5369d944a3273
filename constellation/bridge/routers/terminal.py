"""Terminal WebSocket.

One socket, one shell.  Frames are JSON objects tagged by ``type``:

- server -> client: ``connected {terminalId}``, ``data {data}``, ``exit {exitCode}``
- client -> server: ``input {data}``, ``resize {cols, rows}``

The shell is killed as soon as the socket closes for any reason; sessions
cannot be resumed.
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from pathlib import Path

from fastapi import APIRouter, WebSocket
from loguru import logger
from pydantic import BaseModel, ValidationError
from starlette.websockets import WebSocketDisconnect, WebSocketState

from constellation.bridge.context import TerminalSession
from constellation.bridge.deps import Settings, Terminals
from constellation.bridge.managers.terminals import PtySession, resolve_shell
from constellation.bridge.models.events import (
    ConnectedFrame,
    DataFrame,
    ExitFrame,
    InputFrame,
    ResizeFrame,
    client_frame_adapter,
)
from constellation.bridge.registry import ShuttingDownError
from constellation.bridge.settings import BridgeSettings

router = APIRouter(tags=["terminal"])


def _connected(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


async def _send(websocket: WebSocket, frame: BaseModel) -> bool:
    """Send *frame* if the socket is still open.  Returns whether it was sent."""
    if not _connected(websocket):
        return False
    try:
        await websocket.send_json(frame.model_dump(mode="json", by_alias=True))
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("Terminal send dropped: {}", exc)
        return False
    return True


async def _forward_output(websocket: WebSocket, pty: PtySession) -> None:
    while (chunk := await pty.read()) is not None:
        await _send(websocket, DataFrame(data=chunk))


async def _receive_input(websocket: WebSocket, pty: PtySession, terminal_id: str) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        raw = message.get("text")
        if raw is None:
            logger.warning("Terminal {}: ignoring binary frame", terminal_id)
            continue
        try:
            frame = client_frame_adapter.validate_json(raw)
        except ValidationError as exc:
            logger.warning("Terminal {}: ignoring unrecognised frame: {}", terminal_id, exc.errors()[0]["msg"])
            continue

        if isinstance(frame, InputFrame):
            pty.write(frame.data)
        elif isinstance(frame, ResizeFrame):
            pty.resize(frame.cols, frame.rows)


def _spawn_shell(settings: BridgeSettings) -> PtySession:
    env = dict(os.environ)
    env["TERM"] = settings.terminal_term
    return PtySession.spawn(
        [resolve_shell(settings.terminal_shell)],
        cwd=Path.home(),
        env=env,
        cols=settings.terminal_cols,
        rows=settings.terminal_rows,
    )


@router.websocket("/terminal")
async def terminal(websocket: WebSocket, settings: Settings, registry: Terminals) -> None:
    await websocket.accept()
    if registry.is_shutting_down:
        await websocket.close(code=1001)
        return

    try:
        pty = _spawn_shell(settings)
    except OSError as exc:
        logger.error("Failed to start terminal shell: {}", exc)
        await websocket.close(code=1011)
        return

    session = TerminalSession(terminal_id=uuid.uuid4().hex, pty=pty)
    try:
        registry.register(session)
    except ShuttingDownError:
        pty.terminate()
        await pty.wait()
        pty.close()
        await websocket.close(code=1001)
        return

    terminal_id = session.terminal_id
    logger.info("Terminal {} connected (pid={})", terminal_id, pty.pid)
    tasks: list[asyncio.Task] = []
    try:
        await _send(websocket, ConnectedFrame(terminal_id=terminal_id))

        output = asyncio.create_task(_forward_output(websocket, pty))
        inbound = asyncio.create_task(_receive_input(websocket, pty, terminal_id))
        tasks = [output, inbound]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning("Terminal {} stream failed: {}", terminal_id, task.exception())

        if output in done:
            exit_code = await pty.wait()
            logger.info("Terminal {} shell exited with {}", terminal_id, exit_code)
            await _send(websocket, ExitFrame(exit_code=exit_code))
            if _connected(websocket):
                await websocket.close()
    finally:
        for task in tasks:
            task.cancel()
        pty.terminate()
        pty.close()
        registry.unregister(terminal_id)
        logger.info("Terminal {} closed after {:.1f}s", terminal_id, time.monotonic() - session.created_at)
        await pty.wait()
