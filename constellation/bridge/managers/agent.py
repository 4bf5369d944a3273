"""Agent CLI runner.

Runs the code-generation CLI non-interactively inside a project workspace:

    <agent_command> <agent_args...> <message>

with the workspace as cwd and stdin closed.  Output chunks are forwarded to a
subscriber as they arrive.  The workspace is scanned before and after the run
so the result can report which files the agent touched.

The child runs in its own process group.  A timeout, or cancellation of the
awaiting task (client disconnect), kills the whole group.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from constellation.bridge.context import AgentSession
from constellation.bridge.errors import (
    AgentProcessFailed,
    AgentSpawnFailed,
    AgentTimeout,
    CommandFailed,
    CommandSpawnFailed,
    CommandTimeout,
    OutputLimitExceeded,
)
from constellation.bridge.managers.workspaces import WorkspaceStore, diff_file_trees
from constellation.bridge.models.api import AgentResult, AgentStatus
from constellation.bridge.process.runner import MAX_BUFFER, ChunkCallback, communicate, run_buffered, spawn

_VERSION_TIMEOUT = 30.0


class AgentRunner:
    def __init__(
        self,
        workspaces: WorkspaceStore,
        *,
        command: str = "claude",
        args: Sequence[str] = ("--permission-mode", "bypassPermissions", "--print"),
        json_args: Sequence[str] = ("--output-format", "json"),
        timeout: float | None = None,
        max_buffer: int = MAX_BUFFER,
    ) -> None:
        self._workspaces = workspaces
        self.command = command
        self.args = list(args)
        self.json_args = list(json_args)
        self.timeout = timeout
        self.max_buffer = max_buffer

    @property
    def base_argv(self) -> list[str]:
        """Command line without the user message."""
        return [self.command, *self.args]

    def build_argv(self, message: str, *, json_output: bool = False) -> list[str]:
        extra = self.json_args if json_output else []
        return [*self.base_argv, *extra, message]

    # -- Runs ------------------------------------------------------------------

    async def run(
        self,
        message: str,
        workspace_path: Path,
        on_chunk: ChunkCallback | None = None,
    ) -> AgentResult:
        """Run the agent, streaming output to *on_chunk*.

        Resolves only after the child has exited and the workspace has been
        rescanned.  Raises ``AgentSpawnFailed``, ``AgentProcessFailed`` or
        ``AgentTimeout``.
        """
        session = AgentSession(workspace_path=workspace_path, message=message, on_chunk=on_chunk)
        before = await self._workspaces.scan(workspace_path)
        stdout = await self._execute(session, self.build_argv(message))
        files = await self._workspaces.scan(workspace_path)

        logger.info("Agent run in {} finished in {:.1f}s", workspace_path, session.elapsed)
        return AgentResult(
            message=stdout,
            files=files,
            raw_output=stdout,
            changed_files=diff_file_trees(before, files),
            workspace=str(workspace_path),
        )

    async def run_buffered(self, message: str, workspace_path: Path) -> AgentResult:
        """Run the agent with JSON output and no streaming.

        The reply is taken from the ``result`` field, then ``message``, and
        falls back to the raw stdout when it is not a JSON object.
        """
        session = AgentSession(workspace_path=workspace_path, message=message)
        before = await self._workspaces.scan(workspace_path)
        stdout = await self._execute(session, self.build_argv(message, json_output=True))
        files = await self._workspaces.scan(workspace_path)

        return AgentResult(
            message=_extract_reply(stdout),
            files=files,
            raw_output=stdout,
            changed_files=diff_file_trees(before, files),
            workspace=str(workspace_path),
        )

    async def _execute(self, session: AgentSession, argv: list[str]) -> str:
        # The user message itself is never logged.
        label = [*argv[:-1], "<message>"]
        logger.info("Starting agent in {}: {}", session.workspace_path, " ".join(label))

        try:
            session.process = await spawn(argv, cwd=session.workspace_path)
        except CommandSpawnFailed as exc:
            raise AgentSpawnFailed(f"Failed to start agent: {exc.reason}") from exc

        try:
            result = await communicate(
                session.process,
                label,
                on_chunk=session.emit,
                timeout=self.timeout,
                max_buffer=self.max_buffer,
            )
        except CommandTimeout as exc:
            raise AgentTimeout(exc.timeout, session.stderr) from exc
        except OutputLimitExceeded as exc:
            raise AgentProcessFailed(None, str(exc)) from exc

        if result.exit_code != 0:
            logger.warning("Agent exited with code {} in {}", result.exit_code, session.workspace_path)
            raise AgentProcessFailed(result.exit_code, result.stderr)
        return result.stdout

    # -- Probe -----------------------------------------------------------------

    async def version(self) -> AgentStatus:
        """Check that the agent CLI can be started at all."""
        try:
            result = await run_buffered([self.command, "--version"], timeout=_VERSION_TIMEOUT)
        except (CommandFailed, CommandSpawnFailed, CommandTimeout) as exc:
            logger.warning("Agent CLI unavailable: {}", exc)
            return AgentStatus(available=False, error=str(exc))
        return AgentStatus(available=True, version=result.stdout or None)


def _extract_reply(stdout: str) -> str:
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError:
        return stdout
    if isinstance(data, dict):
        for key in ("result", "message"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return stdout
