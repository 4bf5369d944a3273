"""Shared enumerations used across the bridge."""

from __future__ import annotations

from enum import StrEnum

# -- Processes ---------------------------------------------------------------


class StreamName(StrEnum):
    """Which pipe of a child process a chunk came from."""

    STDOUT = "stdout"
    STDERR = "stderr"


# -- Containers --------------------------------------------------------------


class ContainerElevation(StrEnum):
    """How container-runtime commands gain access to the runtime socket.

    - ``sg``: re-issue through ``sg <group> -c`` with every argument
      shell-quoted.
    - ``sudo``: ``sudo -n -g <group> -- <binary> ...`` (argument array, no shell).
    - ``none``: invoke the binary directly.
    """

    SG = "sg"
    SUDO = "sudo"
    NONE = "none"


# -- Workspaces --------------------------------------------------------------


class WorkspaceStatus(StrEnum):
    READY = "ready"
