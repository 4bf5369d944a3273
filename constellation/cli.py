import click


@click.group()
def main() -> None:
    """Constellation - workspace, container and agent bridge."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from CONSTELLATION_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from CONSTELLATION_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the bridge server."""
    import uvicorn

    from constellation.bridge.settings import BridgeSettings

    settings = BridgeSettings()

    uvicorn.run(
        "constellation.bridge.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
        # Terminals are killed at shutdown; leave a margin for the drain.
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout + 10,
    )


@main.command()
def doctor() -> None:
    """Check that the agent CLI and the container runtime can be invoked."""
    import asyncio

    from constellation.bridge.errors import BridgeError
    from constellation.bridge.log import setup_logging
    from constellation.bridge.managers.agent import AgentRunner
    from constellation.bridge.managers.workspaces import WorkspaceStore
    from constellation.bridge.process.privileged import ContainerCommandRunner
    from constellation.bridge.settings import BridgeSettings

    settings = BridgeSettings()
    setup_logging("WARNING")

    async def _check() -> bool:
        ok = True

        agent = AgentRunner(WorkspaceStore(settings.workspace_root), command=settings.agent_command)
        status = await agent.version()
        if status.available:
            click.echo(f"[ok]   agent CLI: {settings.agent_command} {status.version or ''}".rstrip())
        else:
            click.echo(f"[fail] agent CLI: {status.error}")
            ok = False

        runner = ContainerCommandRunner(
            binary=settings.container_binary,
            elevation=settings.container_elevation,
            group=settings.container_group,
            timeout=30.0,
        )
        try:
            result = await runner.run(["version", "--format", "{{.Server.Version}}"])
        except BridgeError as exc:
            click.echo(f"[fail] container runtime ({settings.container_elevation}): {exc}")
            ok = False
        else:
            click.echo(f"[ok]   container runtime ({settings.container_elevation}): {result.stdout}")

        click.echo(f"       workspace root: {settings.workspace_root}")
        return ok

    if not asyncio.run(_check()):
        raise SystemExit(1)
