"""Domain errors raised by the bridge.

Managers and process helpers raise these, never HTTP exceptions.  The app
registers a single handler that renders any ``BridgeError`` as
``{"success": false, "error": "..."}`` with the class's ``status_code``.
"""

from __future__ import annotations

from collections.abc import Sequence


class BridgeError(Exception):
    """Base class for every error surfaced to HTTP callers."""

    status_code: int = 500


# -- Process runner ----------------------------------------------------------


def _describe(command: str | Sequence[str]) -> str:
    if isinstance(command, str):
        return command
    return " ".join(command)


class CommandFailed(BridgeError):
    """A buffered command exited with a nonzero status."""

    def __init__(self, command: str | Sequence[str], exit_code: int | None, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {exit_code}"
        super().__init__(f"Command failed: {_describe(command)}\n{detail}")


class OutputLimitExceeded(CommandFailed):
    """A child wrote more than the configured per-stream output cap."""

    def __init__(self, command: str | Sequence[str], limit: int) -> None:
        self.limit = limit
        super().__init__(command, None, f"output exceeded {limit} bytes")


class CommandSpawnFailed(BridgeError):
    """The OS refused to start the process (missing executable, bad cwd, ...)."""

    def __init__(self, command: str | Sequence[str], reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start {_describe(command)}: {reason}")


class CommandTimeout(BridgeError, TimeoutError):
    """A child outlived its deadline and was killed."""

    status_code = 504

    def __init__(self, command: str | Sequence[str], timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout}s: {_describe(command)}")


# -- Containers --------------------------------------------------------------


class ContainerCommandFailed(BridgeError):
    """A container-runtime invocation (through the privileged wrapper) failed."""

    def __init__(self, args: Sequence[str], stderr: str, exit_code: int | None = None) -> None:
        self.args_list = list(args)
        self.stderr = stderr
        self.exit_code = exit_code
        super().__init__(f"Container command failed: {' '.join(self.args_list)}\n{stderr.strip()}")


class ContainerNotFound(BridgeError, LookupError):
    status_code = 404


class PortAllocationFailed(BridgeError):
    status_code = 503


# -- Agent CLI ---------------------------------------------------------------


class AgentSpawnFailed(BridgeError):
    """The code-generation CLI could not be started."""


class AgentProcessFailed(BridgeError):
    """The code-generation CLI exited with a nonzero status."""

    def __init__(self, exit_code: int | None, stderr: str) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Agent exited with code {exit_code}: {stderr.strip()}")


class AgentTimeout(AgentProcessFailed):
    status_code = 504

    def __init__(self, timeout: float, stderr: str = "") -> None:
        self.timeout = timeout
        BridgeError.__init__(self, f"Agent timed out after {timeout}s")
        self.exit_code = None
        self.stderr = stderr


# -- Workspaces --------------------------------------------------------------


class WorkspaceNotFound(BridgeError, LookupError):
    status_code = 404


class InvalidProjectId(BridgeError, ValueError):
    status_code = 400
