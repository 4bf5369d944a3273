"""In-flight session state.

``AgentSession`` lives for one agent CLI run; ``TerminalSession`` for one
terminal WebSocket.  Neither is persisted: both are discarded when the
process behind them exits.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from constellation.bridge.models.enums import StreamName

if TYPE_CHECKING:
    from constellation.bridge.managers.terminals import PtySession
    from constellation.bridge.process.runner import ChunkCallback


@dataclass
class AgentSession:
    """State for a single agent CLI invocation.

    Every chunk goes to the subscriber first and is accumulated afterwards,
    so a subscriber never sees output out of order with the final result.
    """

    workspace_path: Path
    message: str
    on_chunk: ChunkCallback | None = None

    # -- Live references (set once spawned) ------------------------------------
    process: asyncio.subprocess.Process | None = None

    # -- Accumulated output ----------------------------------------------------
    stdout_parts: list[str] = field(default_factory=list)
    stderr_parts: list[str] = field(default_factory=list)

    started_at: float = field(default_factory=time.monotonic)

    async def emit(self, stream: StreamName, text: str) -> None:
        if self.on_chunk is not None:
            await self.on_chunk(stream, text)
        if stream == StreamName.STDERR:
            self.stderr_parts.append(text)
        else:
            self.stdout_parts.append(text)

    @property
    def stdout(self) -> str:
        return "".join(self.stdout_parts)

    @property
    def stderr(self) -> str:
        return "".join(self.stderr_parts)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


@dataclass
class TerminalSession:
    """One interactive shell bound to one WebSocket.  Single owner, no resume."""

    terminal_id: str
    pty: PtySession
    created_at: float = field(default_factory=time.monotonic)
