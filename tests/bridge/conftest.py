"""Shared fixtures for bridge tests.

The container runtime is replaced by ``FakeContainerRunner``, which records
every argument list and answers from per-subcommand handlers.  The agent CLI
is replaced by a small Python script run with ``sys.executable``.
"""

from __future__ import annotations

import sys
import textwrap
from collections.abc import AsyncIterator, Callable, Sequence
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sse_starlette.sse import AppStatus

from constellation.bridge.app import app, init_state
from constellation.bridge.errors import ContainerCommandFailed
from constellation.bridge.managers.agent import AgentRunner
from constellation.bridge.managers.containers import ContainerManager
from constellation.bridge.managers.ports import PortAllocator
from constellation.bridge.managers.workspaces import WorkspaceStore
from constellation.bridge.process.runner import CommandResult
from constellation.bridge.settings import BridgeSettings

FAKE_AGENT = textwrap.dedent(
    """
    import json
    import pathlib
    import sys
    import time

    message = sys.argv[-1]
    json_mode = "--output-format" in sys.argv

    if message.startswith("fail"):
        print("model unavailable", file=sys.stderr, flush=True)
        sys.exit(3)
    if message.startswith("sleep"):
        print("working", flush=True)
        time.sleep(60)
    if message.startswith("write "):
        name = message.split()[1]
        pathlib.Path(name).write_text("generated by agent\\n")

    if json_mode:
        print(json.dumps({"type": "result", "result": "done: " + message}))
    else:
        print("thinking...", flush=True)
        print("tool call", file=sys.stderr, flush=True)
        print("done: " + message, flush=True)
    """
)


class FakeContainerRunner:
    """Stands in for ``ContainerCommandRunner``.

    Handlers are keyed by the first argument (``run``, ``stop``, ``exec``...)
    and may return a ``CommandResult`` or raise ``ContainerCommandFailed``.
    Unhandled subcommands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.handlers: dict[str, Callable[[list[str]], CommandResult]] = {}

    def on(self, subcommand: str, handler: Callable[[list[str]], CommandResult]) -> None:
        self.handlers[subcommand] = handler

    def fail(self, subcommand: str, stderr: str, exit_code: int = 1) -> None:
        def _raise(args: list[str]) -> CommandResult:
            raise ContainerCommandFailed(args, stderr, exit_code)

        self.on(subcommand, _raise)

    def reply(self, subcommand: str, stdout: str) -> None:
        self.on(subcommand, lambda _args: CommandResult(stdout=stdout, stderr="", exit_code=0))

    def subcommands(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def run(self, args: Sequence[str], cwd: object = None) -> CommandResult:
        args = list(args)
        self.calls.append(args)
        handler = self.handlers.get(args[0])
        if handler is None:
            return CommandResult(stdout="", stderr="", exit_code=0)
        return handler(args)


@pytest.fixture(autouse=True)
def _reset_sse_status() -> None:
    # sse-starlette keeps a class-level exit event bound to the first event loop.
    AppStatus.should_exit_event = None


@pytest.fixture
def fake_agent(tmp_path: Path) -> Path:
    script = tmp_path / "fake_agent.py"
    script.write_text(FAKE_AGENT)
    return script


@pytest.fixture
def settings(tmp_path: Path, fake_agent: Path) -> BridgeSettings:
    return BridgeSettings(
        data_root=str(tmp_path / "data"),
        workspace_git_init=False,
        port_probe=False,
        command_timeout=30.0,
        agent_command=sys.executable,
        agent_args=[str(fake_agent)],
        agent_timeout=30.0,
        terminal_shell="/bin/sh",
    )


@pytest.fixture
def store(settings: BridgeSettings) -> WorkspaceStore:
    store = WorkspaceStore(settings.workspace_root)
    store.ensure_root()
    return store


@pytest.fixture
def fake_runner() -> FakeContainerRunner:
    return FakeContainerRunner()


@pytest.fixture
def ports() -> PortAllocator:
    return PortAllocator(5000, 1000, probe=False)


@pytest.fixture
def containers(fake_runner: FakeContainerRunner, ports: PortAllocator) -> ContainerManager:
    return ContainerManager(fake_runner, ports)  # type: ignore[arg-type]


@pytest.fixture
def agent(store: WorkspaceStore, settings: BridgeSettings) -> AgentRunner:
    return AgentRunner(store, command=settings.agent_command, args=settings.agent_args, timeout=30.0)


@pytest.fixture
def seeded_app(settings: BridgeSettings, containers: ContainerManager):
    """The app with every service on ``app.state``, containers faked.

    The lifespan does NOT run under ``ASGITransport``, so state is pre-set.
    """
    init_state(app, settings)
    app.state.containers = containers
    return app


@pytest.fixture
async def client(seeded_app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=seeded_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
