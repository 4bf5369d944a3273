"""Privileged command wrapper for the container runtime.

The service user usually has no direct access to the runtime's control socket,
so every invocation is re-issued through an elevation layer chosen by
``ContainerElevation``:

- ``sg``:   ``sg docker -c '<quoted command>'``.  ``sg`` only accepts a command
  string, so each argument is POSIX-quoted with ``shlex.join``; the inner shell
  sees literal words and never expands argument content.
- ``sudo``: ``sudo -n -g docker -- docker ...``.  An argument list end to end,
  with no string reconstruction at all.
- ``none``: ``docker ...`` directly.
"""

from __future__ import annotations

import shlex
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from constellation.bridge.errors import CommandFailed, CommandSpawnFailed, CommandTimeout, ContainerCommandFailed
from constellation.bridge.models.enums import ContainerElevation
from constellation.bridge.process.runner import MAX_BUFFER, CommandResult, run_buffered


class ContainerCommandRunner:
    """Runs container-runtime subcommands through the configured elevation layer."""

    def __init__(
        self,
        *,
        binary: str = "docker",
        elevation: ContainerElevation = ContainerElevation.SG,
        group: str = "docker",
        timeout: float | None = None,
        max_buffer: int = MAX_BUFFER,
    ) -> None:
        self.binary = binary
        self.elevation = elevation
        self.group = group
        self.timeout = timeout
        self.max_buffer = max_buffer

    def build_argv(self, args: Sequence[str]) -> list[str]:
        """Full argument vector for ``<binary> *args`` under the elevation mode."""
        inner = [self.binary, *args]
        if self.elevation == ContainerElevation.SG:
            return ["sg", self.group, "-c", shlex.join(inner)]
        if self.elevation == ContainerElevation.SUDO:
            return ["sudo", "-n", "-g", self.group, "--", *inner]
        return inner

    async def run(self, args: Sequence[str], cwd: str | Path | None = None) -> CommandResult:
        """Run ``<binary> *args``.  Raises ``ContainerCommandFailed`` on any failure.

        Timeouts still surface as ``CommandTimeout`` so callers can tell a hung
        runtime from a refused command.
        """
        argv = self.build_argv(args)
        logger.debug("Container command ({}): {} {}", self.elevation, self.binary, " ".join(args))
        try:
            return await run_buffered(argv, cwd=cwd, timeout=self.timeout, max_buffer=self.max_buffer)
        except CommandTimeout:
            raise
        except CommandFailed as exc:
            raise ContainerCommandFailed(args, exc.stderr, exc.exit_code) from exc
        except CommandSpawnFailed as exc:
            raise ContainerCommandFailed(args, exc.reason) from exc
