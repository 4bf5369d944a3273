"""Container lifecycle manager.

Every project gets at most one long-lived container named after its project
id, with the project workspace bind-mounted at ``/app``.  Nothing about
containers is persisted: the name is derived, the id is looked up from the
runtime, and port reservations live only in the ``PortAllocator``.

Lifecycle::

    absent -> creating -> running -> stopping -> absent
                            ^   |
                            +---+  exec

All runtime invocations go through ``ContainerCommandRunner``.
"""

from __future__ import annotations

import re
import time
import uuid
from pathlib import Path

from anyio import to_thread
from loguru import logger

from constellation.bridge.errors import (
    BridgeError,
    ContainerCommandFailed,
    ContainerNotFound,
)
from constellation.bridge.managers.ports import PortAllocator
from constellation.bridge.models.container import (
    ContainerConfig,
    ContainerRecord,
    DestroyResult,
    ExecResult,
    VolumeCheck,
    VolumeFileCheck,
)
from constellation.bridge.process.privileged import ContainerCommandRunner

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9-]")

# Runtime messages that mean the container is already where we want it.
_ALREADY_GONE = ("no such container", "is not running")


def container_name(project_id: str, prefix: str = "constellation") -> str:
    """Deterministic container name for *project_id*.

    >>> container_name("My_App")
    'constellation-my-app'
    """
    return _UNSAFE_NAME_CHARS.sub("-", f"{prefix}-{project_id}".lower())


def _already_gone(exc: ContainerCommandFailed) -> bool:
    stderr = exc.stderr.lower()
    return any(marker in stderr for marker in _ALREADY_GONE)


class ContainerManager:
    """Create, destroy and exec into per-project containers."""

    def __init__(
        self,
        runner: ContainerCommandRunner,
        ports: PortAllocator,
        *,
        default_image: str = "node:18-alpine",
        mount_path: str = "/app",
        name_prefix: str = "constellation",
    ) -> None:
        self._runner = runner
        self._ports = ports
        self._default_image = default_image
        self._mount_path = mount_path
        self._name_prefix = name_prefix
        # Full container id -> name, for containers this process created.
        self._names: dict[str, str] = {}

    def name_for(self, project_id: str) -> str:
        return container_name(project_id, self._name_prefix)

    def _owner_for(self, container_id: str) -> str | None:
        """Container name for a full id, an id prefix or a name this process created."""
        if container_id in self._names.values():
            return container_id
        for known_id, name in self._names.items():
            if known_id.startswith(container_id):
                return name
        return None

    def _forget(self, name: str) -> None:
        for known_id in [i for i, n in self._names.items() if n == name]:
            del self._names[known_id]

    # -- Create / destroy ------------------------------------------------------

    async def create(self, project_id: str, config: ContainerConfig, workspace_path: Path) -> ContainerRecord:
        """Start a detached container for *project_id* with the workspace mounted.

        The container is kept alive by ``tail -f /dev/null`` and removed by the
        runtime when it stops (``--rm``).  New host ports are held under a staging
        owner during the run and handed to the container name once it starts,
        so a failed run leaves any existing container's ports reserved.
        """
        name = self.name_for(project_id)
        staging = f"{name}#{uuid.uuid4().hex}"
        mappings = self._ports.allocate(staging, config.ports)

        args = [
            "run",
            "-d",
            "--name",
            name,
            "-v",
            f"{workspace_path}:{self._mount_path}",
            "-w",
            self._mount_path,
            "--rm",
        ]
        for mapping in mappings:
            args += ["-p", f"{mapping.external}:{mapping.internal}"]
        for key, value in config.environment.items():
            args += ["-e", f"{key}={_env_value(value)}"]
        args += [config.image or self._default_image, "tail", "-f", "/dev/null"]

        try:
            result = await self._runner.run(args)
        except BridgeError:
            self._ports.release(staging)
            raise

        container_id = result.stdout.strip()
        self._ports.transfer(staging, name)
        self._forget(name)
        self._names[container_id] = name
        logger.info("Created container {} ({}) for project {}", name, container_id[:12], project_id)
        return ContainerRecord(container_id=container_id, container_name=name, ports=mappings)

    async def destroy(self, project_id: str | None = None, container_id: str | None = None) -> DestroyResult:
        """Stop and remove a container.  Idempotent.

        A container that is already stopped or gone counts as destroyed.
        """
        if not container_id and not project_id:
            msg = "Either project_id or container_id is required"
            raise ValueError(msg)

        name = self.name_for(project_id) if project_id else self._owner_for(container_id)
        target = container_id or name
        assert target is not None  # noqa: S101

        try:
            await self._runner.run(["stop", target])
        except ContainerCommandFailed as exc:
            if _already_gone(exc):
                logger.info("Container {} already stopped", target)
            else:
                logger.warning("Stopping container {} failed, removing anyway: {}", target, exc.stderr)

        try:
            await self._runner.run(["rm", "-f", target])
        except ContainerCommandFailed as exc:
            if not _already_gone(exc):
                raise
            logger.info("Container {} already removed", target)

        if name:
            self._ports.release(name)
            self._forget(name)
        logger.info("Destroyed container {}", target)
        return DestroyResult(container_name=name or target)

    async def resolve_container_id(self, project_id: str) -> str:
        """Look up the running container for *project_id*.  Raises ``ContainerNotFound``."""
        name = self.name_for(project_id)
        result = await self._runner.run(["ps", "-q", "--no-trunc", "--filter", f"name=^/?{name}$"])
        lines = result.stdout.splitlines()
        if not lines or not lines[0].strip():
            msg = f"No running container for project {project_id} ({name})"
            raise ContainerNotFound(msg)
        return lines[0].strip()

    # -- Exec ------------------------------------------------------------------

    async def exec(
        self,
        command: str,
        container_id: str | None = None,
        project_id: str | None = None,
    ) -> ExecResult:
        """Run ``sh -c <command>`` inside the container.

        Never raises: any failure comes back as ``exit_code=1`` with the error
        text in ``output``.
        """
        try:
            if not container_id:
                if not project_id:
                    msg = "Either container_id or project_id is required"
                    raise ContainerNotFound(msg)
                container_id = await self.resolve_container_id(project_id)
            result = await self._runner.run(["exec", container_id, "sh", "-c", command])
        except ContainerCommandFailed as exc:
            return ExecResult(output=exc.stderr or str(exc), stderr=exc.stderr, exit_code=1)
        except BridgeError as exc:
            logger.warning("Exec in container {} failed: {}", container_id or project_id, exc)
            return ExecResult(output=str(exc), exit_code=1)
        return ExecResult(output=result.stdout, stderr=result.stderr, exit_code=result.exit_code)

    async def verify_volume(
        self,
        project_id: str,
        workspace_path: Path,
        container_id: str | None = None,
    ) -> VolumeCheck:
        """Check that the workspace bind mount is live in both directions.

        Writes a marker file from inside the container, reads it back there,
        then looks for the same content on the host side.
        """
        container_id = container_id or await self.resolve_container_id(project_id)
        marker = f"volume-test-{time.time_ns()}.txt"
        content = f"Volume mount test for {project_id} at {time.strftime('%Y-%m-%dT%H:%M:%S')}"
        container_path = f"{self._mount_path.rstrip('/')}/{marker}"

        # Content and path are passed as positional parameters, never spliced
        # into the script text.
        script = 'printf "%s" "$1" > "$2"'
        await self._runner.run(["exec", container_id, "sh", "-c", script, "sh", content, container_path])
        readback = await self._runner.run(["exec", container_id, "cat", container_path])

        host_path = workspace_path / marker
        host_content = await to_thread.run_sync(_read_marker, host_path)
        host_exists = host_content is not None

        working = host_exists and host_content.strip() == content
        if not working:
            logger.warning("Volume mount check failed for {}: host file {} missing or different", project_id, host_path)
        return VolumeCheck(
            working=working,
            container_file=VolumeFileCheck(exists=True, content=readback.stdout.strip(), path=container_path),
            host_file=VolumeFileCheck(exists=host_exists, content=(host_content or "").strip(), path=str(host_path)),
        )


def _env_value(value: str | int | float | bool) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _read_marker(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
