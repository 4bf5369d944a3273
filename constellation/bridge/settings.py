"""Service configuration loaded from CONSTELLATION_* environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from constellation.bridge.models.enums import ContainerElevation


class BridgeSettings(BaseSettings):
    """Constellation bridge settings.

    All fields are read from environment variables with the ``CONSTELLATION_``
    prefix.  For example, ``CONSTELLATION_LOG_LEVEL=DEBUG`` maps to ``log_level``.
    List-valued fields (``agent_args``, ``cors_origins``) are given as JSON
    arrays, e.g. ``CONSTELLATION_AGENT_ARGS='["--print"]'``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONSTELLATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    """Emit structured JSON log lines instead of coloured text."""

    log_file: str | None = None

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    graceful_shutdown_timeout: int = 30
    """Seconds to wait for terminal sessions to drain during shutdown."""

    cors_origins: list[str] = ["*"]

    # -- Workspaces ------------------------------------------------------------
    data_root: str = "./data"
    """Root directory for all managed data.  Workspaces live under ``projects/``."""

    data_prefix: str | None = None
    """Optional namespace inserted between ``data_root`` and ``projects/``."""

    workspace_git_init: bool = True
    """Run ``git init`` in freshly created workspaces."""

    # -- Container runtime -----------------------------------------------------
    container_binary: str = "docker"
    container_elevation: ContainerElevation = ContainerElevation.SG
    container_group: str = "docker"
    container_default_image: str = "node:18-alpine"
    container_mount_path: str = "/app"
    container_name_prefix: str = "constellation"

    port_range_start: int = 5000
    port_range_size: int = 1000
    port_probe: bool = True
    """Check that a drawn host port can actually be bound before reserving it."""

    # -- Processes -------------------------------------------------------------
    command_timeout: float | None = 300.0
    """Deadline (seconds) for container-runtime and workspace commands."""

    max_output_bytes: int = 10 * 1024 * 1024
    """Per-stream output cap for any spawned command."""

    # -- Agent CLI -------------------------------------------------------------
    agent_command: str = "claude"
    agent_args: list[str] = ["--permission-mode", "bypassPermissions", "--print"]
    """Arguments placed before the user message.  Must keep the CLI non-interactive."""

    agent_json_args: list[str] = ["--output-format", "json"]
    """Extra arguments for buffered (non-streaming) runs."""

    agent_timeout: float | None = 3600.0

    # -- Terminal --------------------------------------------------------------
    terminal_shell: str | None = None
    """Shell for terminal sessions.  Falls back to ``$SHELL`` then ``bash``."""

    terminal_cols: int = 80
    terminal_rows: int = 24
    terminal_term: str = "xterm-color"

    # -- Helpers ---------------------------------------------------------------

    @property
    def workspace_root(self) -> Path:
        """``{data_root}/{data_prefix}/projects`` (prefix segment omitted when unset)."""
        base = Path(self.data_root)
        if self.data_prefix:
            base = base / self.data_prefix
        return (base / "projects").resolve()


def get_settings() -> BridgeSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> BridgeSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return BridgeSettings()


from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
