"""Workspace store -- one directory per project.

Layout::

    {data_root}/{prefix}/projects/{project_id}/

Workspaces are created on demand and never deleted by the bridge: tearing a
project down only removes its container, so a rebuild keeps the user's files.

All filesystem work runs through ``anyio.to_thread.run_sync`` so scans of large
trees never stall the event loop.  Writes are atomic (temp file + rename).
"""

from __future__ import annotations

import contextlib
import os
import re
import tempfile
from datetime import UTC, datetime
from functools import partial
from pathlib import Path

from anyio import to_thread
from loguru import logger

from constellation.bridge.errors import BridgeError, CommandFailed, CommandSpawnFailed, InvalidProjectId, WorkspaceNotFound
from constellation.bridge.models.container import ExecResult
from constellation.bridge.models.workspace import FileTree, Workspace
from constellation.bridge.process.runner import run_buffered

README_NAME = "WORKSPACE_README.md"

_PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_README_TITLE_RE = re.compile(r"^# (?P<name>.+) Workspace$")


def validate_project_id(project_id: str) -> str:
    """Return *project_id* unchanged if it is safe as a single path segment."""
    if not _PROJECT_ID_RE.fullmatch(project_id) or project_id in {".", ".."}:
        msg = f"Invalid project id: {project_id!r}"
        raise InvalidProjectId(msg)
    return project_id


# ---------------------------------------------------------------------------
# File tree scanning
# ---------------------------------------------------------------------------


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def _scan_dir(directory: Path, prefix: str, files: FileTree) -> None:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as exc:
        logger.warning("Failed to scan directory {}: {}", directory, exc)
        return

    for entry in entries:
        if entry.name.startswith("."):
            continue
        rel_path = f"{prefix}/{entry.name}"
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
            is_file = not is_dir and entry.is_file()
        except OSError as exc:
            logger.warning("Failed to stat {}: {}", entry.path, exc)
            continue

        if is_dir:
            _scan_dir(Path(entry.path), rel_path, files)
        elif is_file:
            try:
                files[rel_path] = _read_text(Path(entry.path))
            except OSError as exc:
                logger.warning("Failed to read file {}: {}", entry.path, exc)


def scan_file_tree(root: Path) -> FileTree:
    """Recursively read every non-hidden file under *root*.

    Keys are ``/``-prefixed, forward-slash paths relative to *root*.  Entries
    whose name starts with ``.`` are skipped at every depth; symlinked
    directories are not followed.  Unreadable files and directories are logged
    and left out; the scan itself never raises.
    """
    files: FileTree = {}
    _scan_dir(root, "", files)
    return files


def diff_file_trees(before: FileTree, after: FileTree) -> list[str]:
    """Paths added, removed or modified between two scans, sorted."""
    changed = {path for path in before.keys() | after.keys() if before.get(path) != after.get(path)}
    return sorted(changed)


# ---------------------------------------------------------------------------
# Sync helpers (run in thread pool)
# ---------------------------------------------------------------------------


def _prepare_directory(path: Path, project_id: str, project_name: str | None) -> bool:
    """Create the workspace directory and README.  Returns True if newly created."""
    existed = path.is_dir()
    path.mkdir(parents=True, exist_ok=True)
    # Readable by container users regardless of the service's umask.
    path.chmod(0o755)

    readme = path / README_NAME
    if not readme.exists():
        title = project_name or project_id
        created = datetime.now(tz=UTC).isoformat()
        _atomic_write(readme, f"# {title} Workspace\n\nCreated: {created}\nProject ID: {project_id}\n")
    return not existed


def _describe_directory(path: Path, project_id: str) -> Workspace | None:
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    if not path.is_dir():
        return None

    name = None
    with contextlib.suppress(OSError):
        with (path / README_NAME).open(encoding="utf-8", errors="replace") as f:
            match = _README_TITLE_RE.match(f.readline().rstrip("\n"))
            if match:
                name = match.group("name")

    return Workspace(
        id=project_id,
        name=name,
        path=str(path),
        created_at=datetime.fromtimestamp(stat.st_ctime, tz=UTC),
    )


def _list_directories(root: Path) -> list[Workspace]:
    if not root.is_dir():
        return []
    workspaces = []
    for child in root.iterdir():
        if child.name.startswith(".") or not _PROJECT_ID_RE.fullmatch(child.name):
            continue
        try:
            workspace = _describe_directory(child, child.name)
        except OSError as exc:
            logger.warning("Failed to read workspace {}: {}", child, exc)
            continue
        if workspace is not None:
            workspaces.append(workspace)
    return workspaces


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.chmod(tmp_path, 0o644)
        os.rename(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class WorkspaceStore:
    """Creates, locates and scans per-project workspace directories."""

    def __init__(
        self,
        root: str | Path,
        *,
        git_init: bool = True,
        command_timeout: float | None = None,
    ) -> None:
        self._root = Path(root).resolve()
        self._git_init = git_init
        self._command_timeout = command_timeout

    @property
    def root(self) -> Path:
        return self._root

    def ensure_root(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)

    # -- Path resolution -------------------------------------------------------

    def path_for(self, project_id: str) -> Path:
        """Workspace path for *project_id*.  Pure; does not touch the disk."""
        return self._root / validate_project_id(project_id)

    def resolve_path(self, workspace_path: str | Path) -> Path:
        """Validate a caller-supplied workspace path.

        Only paths inside the workspace root are accepted, so a request cannot
        point scans or tear-downs at arbitrary host directories.
        """
        resolved = Path(workspace_path).resolve()
        if resolved == self._root or not resolved.is_relative_to(self._root):
            msg = f"Workspace path outside workspace root: {workspace_path}"
            raise InvalidProjectId(msg)
        return resolved

    async def require_path(self, project_id: str | None = None, workspace_path: str | None = None) -> Path:
        """Resolve an existing workspace directory.  Raises ``WorkspaceNotFound``."""
        path = self.resolve_path(workspace_path) if workspace_path else self.path_for(project_id or "")
        if not await to_thread.run_sync(path.is_dir):
            msg = f"Workspace not found: {path}"
            raise WorkspaceNotFound(msg)
        return path

    # -- Lifecycle -------------------------------------------------------------

    async def create(self, project_id: str, project_name: str | None = None) -> Workspace:
        """Create the workspace for *project_id*, or return the existing one.

        Idempotent: a second call returns the same path and leaves existing
        files (including the README) untouched.
        """
        path = self.path_for(project_id)
        created = await to_thread.run_sync(partial(_prepare_directory, path, project_id, project_name))

        if self._git_init and not await to_thread.run_sync((path / ".git").exists):
            await self._init_git(path)

        if created:
            logger.info("Created workspace {} at {}", project_id, path)
        else:
            logger.debug("Workspace {} already exists at {}", project_id, path)
        return await self.get(project_id)

    async def _init_git(self, path: Path) -> None:
        try:
            await run_buffered(["git", "init", "--quiet"], cwd=path, timeout=self._command_timeout)
        except (CommandFailed, CommandSpawnFailed) as exc:
            # A workspace without history is still usable.
            logger.warning("git init failed in {}: {}", path, exc)

    async def get(self, project_id: str) -> Workspace:
        """Describe an existing workspace.  Raises ``WorkspaceNotFound`` if missing."""
        path = self.path_for(project_id)
        workspace = await to_thread.run_sync(partial(_describe_directory, path, project_id))
        if workspace is None:
            msg = f"Workspace not found: {path}"
            raise WorkspaceNotFound(msg)
        return workspace

    async def exists(self, project_id: str) -> bool:
        return await to_thread.run_sync(self.path_for(project_id).is_dir)

    async def list_workspaces(self, limit: int | None = None) -> list[Workspace]:
        """All workspaces, newest first."""
        workspaces = await to_thread.run_sync(partial(_list_directories, self._root))
        epoch = datetime.min.replace(tzinfo=UTC)
        workspaces.sort(key=lambda w: w.created_at or epoch, reverse=True)
        return workspaces[:limit] if limit is not None else workspaces

    async def clear(self, path: Path) -> bool:
        """Prepare a workspace for rebuild without deleting anything.

        The directory and its contents are deliberately left in place.
        Returns whether the workspace directory is present.
        """
        present = await to_thread.run_sync(path.is_dir)
        if present:
            logger.info("Workspace {} prepared for rebuild (contents preserved)", path)
        else:
            logger.warning("Workspace {} does not exist; nothing to clear", path)
        return present

    # -- Files -----------------------------------------------------------------

    async def scan(self, path: Path) -> FileTree:
        """Snapshot every non-hidden file in the workspace at *path*."""
        return await to_thread.run_sync(partial(scan_file_tree, path))

    async def write_file(self, project_id: str, relative_path: str, content: str) -> str:
        """Write *content* to a file inside the workspace.

        Returns the normalized ``/``-prefixed path.  Paths escaping the
        workspace or touching hidden entries are rejected.
        """
        root = await self.require_path(project_id)
        parts = [p for p in relative_path.replace("\\", "/").split("/") if p not in {"", "."}]
        if not parts or any(p == ".." or p.startswith(".") for p in parts):
            msg = f"Invalid file path: {relative_path!r}"
            raise InvalidProjectId(msg)

        target = root.joinpath(*parts)
        await to_thread.run_sync(partial(_atomic_write, target, content))
        normalized = "/" + "/".join(parts)
        logger.info("Wrote {} in workspace {}", normalized, project_id)
        return normalized

    # -- Commands --------------------------------------------------------------

    async def exec(self, project_id: str, command: str) -> ExecResult:
        """Run a shell command on the host with the workspace as cwd.

        Never raises: failures come back as ``exit_code=1``.
        """
        try:
            path = await self.require_path(project_id)
            result = await run_buffered(command, cwd=path, timeout=self._command_timeout, check=False)
        except BridgeError as exc:
            logger.warning("Workspace exec in {} failed: {}", project_id, exc)
            return ExecResult(output=str(exc), exit_code=1)
        return ExecResult(output=result.stdout, stderr=result.stderr, exit_code=result.exit_code)
