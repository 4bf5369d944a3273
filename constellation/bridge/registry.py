"""In-process terminal registry.

Tracks live terminal sessions by id so the health endpoint can count them
and shutdown can terminate them.  Ephemeral -- empty on process restart.
Built in the app lifespan and stored on ``app.state``.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from constellation.bridge.context import TerminalSession


class ShuttingDownError(RuntimeError):
    """Raised when attempting to register a session during shutdown."""


class TerminalRegistry:
    """Registry of open terminal sessions.

    Also provides a drain mechanism for graceful shutdown:
    ``wait_until_drained`` blocks until all sessions have been unregistered.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, TerminalSession] = {}
        self._drain_event = asyncio.Event()
        self._drain_event.set()  # Starts "drained" (no sessions).
        self._shutting_down = False

    # -- Mutation --------------------------------------------------------------

    def register(self, session: TerminalSession) -> None:
        """Register a session.  Raises ``ShuttingDownError`` if shutting down."""
        if self._shutting_down:
            raise ShuttingDownError
        logger.debug("Registry: register terminal {} (pid={})", session.terminal_id, session.pty.pid)
        self._sessions[session.terminal_id] = session
        self._drain_event.clear()

    def unregister(self, terminal_id: str) -> TerminalSession | None:
        session = self._sessions.pop(terminal_id, None)
        if session:
            logger.debug("Registry: unregister terminal {}", terminal_id)
        if not self._sessions:
            self._drain_event.set()
        return session

    # -- Query -----------------------------------------------------------------

    def get(self, terminal_id: str) -> TerminalSession | None:
        return self._sessions.get(terminal_id)

    def all_sessions(self) -> list[TerminalSession]:
        return list(self._sessions.values())

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    # -- Lifecycle -------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Mark the registry as shutting down.  New registrations are refused."""
        self._shutting_down = True
        logger.info("Registry: shutdown initiated, refusing new terminals")
        if not self._sessions:
            self._drain_event.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    def terminate_all(self) -> int:
        """Kill every live shell.  Their WebSocket handlers unregister them.

        Returns the number of sessions signalled.
        """
        count = 0
        for session in self._sessions.values():
            session.pty.terminate()
            count += 1
            logger.info("Registry: terminated terminal {}", session.terminal_id)
        return count

    async def wait_until_drained(self, timeout: float | None = None) -> bool:
        """Wait until all sessions have been unregistered.

        Returns ``True`` if the registry is empty, ``False`` if *timeout*
        expired with sessions still active.
        """
        if not self._sessions:
            return True
        try:
            await asyncio.wait_for(self._drain_event.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Registry: drain timed out after {}s with {} terminals still active",
                timeout,
                len(self._sessions),
            )
            return False
        else:
            return True
