"""Wire frames for the streaming chat channel and the terminal WebSocket."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field, TypeAdapter

from constellation.bridge.models.base import CamelModel
from constellation.bridge.models.enums import StreamName
from constellation.bridge.models.workspace import FileTree

# ---------------------------------------------------------------------------
# Chat SSE
# ---------------------------------------------------------------------------


class StreamFrame(CamelModel):
    """One ``data:`` payload on ``/api/chat/stream``.

    Progress frames carry only ``message`` (and ``stream`` for raw CLI output).
    Exactly one frame per request has ``complete=True``; it is always the last.
    """

    message: str | None = None
    stream: StreamName | None = None
    complete: bool | None = None
    success: bool | None = None
    error: str | None = None
    files: FileTree | None = None
    changed_files: list[str] | None = None
    workspace: str | None = None
    raw_output: str | None = None
    fallback: bool | None = None


# ---------------------------------------------------------------------------
# Terminal WebSocket
# ---------------------------------------------------------------------------


class ConnectedFrame(CamelModel):
    type: Literal["connected"] = "connected"
    terminal_id: str


class DataFrame(CamelModel):
    type: Literal["data"] = "data"
    data: str


class ExitFrame(CamelModel):
    type: Literal["exit"] = "exit"
    exit_code: int | None = None


class InputFrame(CamelModel):
    type: Literal["input"]
    data: str


class ResizeFrame(CamelModel):
    type: Literal["resize"]
    cols: int = Field(ge=1)
    rows: int = Field(ge=1)


ClientFrame = Annotated[InputFrame | ResizeFrame, Field(discriminator="type")]

client_frame_adapter: TypeAdapter[InputFrame | ResizeFrame] = TypeAdapter(ClientFrame)
