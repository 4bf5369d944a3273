"""Container manager tests against a recording fake runtime."""

from __future__ import annotations

from pathlib import Path

import pytest

from constellation.bridge.errors import ContainerCommandFailed, ContainerNotFound
from constellation.bridge.managers.containers import ContainerManager, container_name
from constellation.bridge.managers.ports import PortAllocator
from constellation.bridge.models.container import ContainerConfig
from constellation.bridge.process.runner import CommandResult


def _ok(stdout: str = "") -> CommandResult:
    return CommandResult(stdout=stdout, stderr="", exit_code=0)


@pytest.mark.parametrize(
    ("project_id", "expected"),
    [
        ("todo-app", "constellation-todo-app"),
        ("My_App", "constellation-my-app"),
        ("a.b..c", "constellation-a-b--c"),
        ("UPPER123", "constellation-upper123"),
    ],
)
def test_container_name_is_derived_from_project_id(project_id: str, expected: str) -> None:
    assert container_name(project_id) == expected


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def test_create_builds_run_command(containers: ContainerManager, fake_runner, tmp_path: Path) -> None:
    fake_runner.reply("run", "f00dbabe\n")
    config = ContainerConfig(image="python:3.12-slim", ports=[3000], environment={"DEBUG": True, "N": 2})

    record = await containers.create("demo", config, tmp_path)

    assert record.container_id == "f00dbabe"
    assert record.container_name == "constellation-demo"
    assert len(record.ports) == 1
    mapping = record.ports[0]
    assert mapping.internal == 3000
    assert 5000 <= mapping.external < 6000

    args = fake_runner.calls[0]
    assert args[:9] == ["run", "-d", "--name", "constellation-demo", "-v", f"{tmp_path}:/app", "-w", "/app", "--rm"]
    assert ["-p", f"{mapping.external}:3000"] == args[9:11]
    assert "DEBUG=true" in args
    assert "N=2" in args
    assert args[-4:] == ["python:3.12-slim", "tail", "-f", "/dev/null"]


async def test_create_uses_default_image(containers: ContainerManager, fake_runner, tmp_path: Path) -> None:
    fake_runner.reply("run", "abc")

    await containers.create("demo", ContainerConfig(), tmp_path)

    assert fake_runner.calls[0][-4] == "node:18-alpine"


async def test_failed_create_releases_ports(fake_runner, tmp_path: Path) -> None:
    ports = PortAllocator(5000, 10, probe=False)
    manager = ContainerManager(fake_runner, ports)
    fake_runner.fail("run", "image not found")

    with pytest.raises(ContainerCommandFailed):
        await manager.create("demo", ContainerConfig(ports=[80, 443]), tmp_path)

    assert ports.reserved == frozenset()


# ---------------------------------------------------------------------------
# Destroy
# ---------------------------------------------------------------------------


async def test_destroy_stops_then_removes(containers: ContainerManager, fake_runner) -> None:
    result = await containers.destroy(project_id="demo")

    assert fake_runner.calls == [["stop", "constellation-demo"], ["rm", "-f", "constellation-demo"]]
    assert result.success
    assert result.container_name == "constellation-demo"


async def test_destroy_prefers_container_id(containers: ContainerManager, fake_runner) -> None:
    await containers.destroy(project_id="demo", container_id="deadbeef")

    assert fake_runner.calls == [["stop", "deadbeef"], ["rm", "-f", "deadbeef"]]


async def test_destroy_missing_container_is_success(containers: ContainerManager, fake_runner) -> None:
    fake_runner.fail("stop", "Error response from daemon: No such container: constellation-demo")
    fake_runner.fail("rm", "Error: No such container: constellation-demo")

    first = await containers.destroy(project_id="demo")
    second = await containers.destroy(project_id="demo")

    assert first.success
    assert second.success


async def test_destroy_ignores_other_stop_errors(containers: ContainerManager, fake_runner) -> None:
    fake_runner.fail("stop", "permission denied while trying to connect")

    result = await containers.destroy(project_id="demo")

    assert result.success
    assert fake_runner.subcommands() == ["stop", "rm"]


async def test_destroy_raises_on_other_rm_errors(containers: ContainerManager, fake_runner) -> None:
    fake_runner.fail("rm", "removal of container is already in progress")

    with pytest.raises(ContainerCommandFailed):
        await containers.destroy(project_id="demo")


async def test_destroy_releases_ports(fake_runner, tmp_path: Path) -> None:
    ports = PortAllocator(5000, 10, probe=False)
    manager = ContainerManager(fake_runner, ports)
    fake_runner.reply("run", "abc")
    await manager.create("demo", ContainerConfig(ports=[3000]), tmp_path)
    assert ports.reserved

    await manager.destroy(project_id="demo")

    assert ports.reserved == frozenset()


async def test_failed_recreate_keeps_running_container_ports(fake_runner, tmp_path: Path) -> None:
    ports = PortAllocator(5000, 10, probe=False)
    manager = ContainerManager(fake_runner, ports)
    fake_runner.reply("run", "abc")
    first = await manager.create("demo", ContainerConfig(ports=[3000]), tmp_path)
    held = first.ports[0].external

    fake_runner.fail("run", 'Conflict. The container name "/constellation-demo" is already in use')
    with pytest.raises(ContainerCommandFailed):
        await manager.create("demo", ContainerConfig(ports=[3000]), tmp_path)

    assert ports.reserved == frozenset({held})
    assert ports.owned_by("constellation-demo") == [held]


async def test_recreate_replaces_reservation(fake_runner, tmp_path: Path) -> None:
    ports = PortAllocator(5000, 10, probe=False)
    manager = ContainerManager(fake_runner, ports)
    fake_runner.reply("run", "abc")
    await manager.create("demo", ContainerConfig(ports=[3000]), tmp_path)

    second = await manager.create("demo", ContainerConfig(ports=[3000, 8080]), tmp_path)

    assert ports.reserved == frozenset(m.external for m in second.ports)


@pytest.mark.parametrize("target", ["abc123def456", "abc123", "constellation-demo"])
async def test_destroy_by_container_id_releases_ports(fake_runner, tmp_path: Path, target: str) -> None:
    ports = PortAllocator(5000, 10, probe=False)
    manager = ContainerManager(fake_runner, ports)
    fake_runner.reply("run", "abc123def456\n")
    await manager.create("demo", ContainerConfig(ports=[3000]), tmp_path)

    result = await manager.destroy(container_id=target)

    assert ports.reserved == frozenset()
    assert result.container_name == "constellation-demo"
    assert fake_runner.calls[-1] == ["rm", "-f", target]


async def test_destroy_unknown_container_id(containers: ContainerManager, fake_runner) -> None:
    result = await containers.destroy(container_id="f00d")

    assert result.success
    assert result.container_name == "f00d"


# ---------------------------------------------------------------------------
# Resolve / exec
# ---------------------------------------------------------------------------


async def test_resolve_container_id_takes_first_line(containers: ContainerManager, fake_runner) -> None:
    fake_runner.reply("ps", "1111\n2222\n")

    assert await containers.resolve_container_id("demo") == "1111"
    assert fake_runner.calls[0] == ["ps", "-q", "--no-trunc", "--filter", "name=^/?constellation-demo$"]


async def test_resolve_container_id_raises_when_absent(containers: ContainerManager, fake_runner) -> None:
    fake_runner.reply("ps", "")

    with pytest.raises(ContainerNotFound):
        await containers.resolve_container_id("demo")


async def test_exec_runs_through_sh(containers: ContainerManager, fake_runner) -> None:
    fake_runner.reply("exec", "hi")

    result = await containers.exec("echo hi", container_id="abc")

    assert fake_runner.calls[0] == ["exec", "abc", "sh", "-c", "echo hi"]
    assert result.output == "hi"
    assert result.exit_code == 0


async def test_exec_resolves_project_container(containers: ContainerManager, fake_runner) -> None:
    fake_runner.reply("ps", "abc\n")
    fake_runner.reply("exec", "ok")

    result = await containers.exec("true", project_id="demo")

    assert fake_runner.calls[1][:2] == ["exec", "abc"]
    assert result.exit_code == 0


async def test_exec_failure_is_reported_in_band(containers: ContainerManager, fake_runner) -> None:
    fake_runner.fail("exec", "sh: nope: not found", exit_code=127)

    result = await containers.exec("nope", container_id="abc")

    assert result.exit_code == 1
    assert "not found" in result.output


async def test_exec_without_running_container_never_raises(containers: ContainerManager, fake_runner) -> None:
    fake_runner.reply("ps", "")

    result = await containers.exec("ls", project_id="demo")

    assert result.exit_code == 1
    assert "No running container" in result.output


async def test_exec_without_target(containers: ContainerManager) -> None:
    result = await containers.exec("ls")

    assert result.exit_code == 1


# ---------------------------------------------------------------------------
# Volume check
# ---------------------------------------------------------------------------


async def test_verify_volume_finds_marker_on_host(containers: ContainerManager, fake_runner, tmp_path: Path) -> None:
    written: dict[str, str] = {}

    def _exec(args: list[str]) -> CommandResult:
        if args[2] == "sh":
            # printf "%s" "$1" > "$2" with $1=content, $2=/app/<marker>
            content, container_path = args[-2], args[-1]
            host_path = tmp_path / Path(container_path).relative_to("/app")
            host_path.write_text(content)
            written[container_path] = content
            return _ok()
        return _ok(written[args[-1]])

    fake_runner.on("exec", _exec)

    check = await containers.verify_volume("demo", tmp_path, container_id="abc")

    assert check.working
    assert check.host_file.exists
    assert check.container_file.content == check.host_file.content


async def test_verify_volume_reports_broken_mount(containers: ContainerManager, fake_runner, tmp_path: Path) -> None:
    fake_runner.reply("exec", "marker")

    check = await containers.verify_volume("demo", tmp_path, container_id="abc")

    assert not check.working
    assert not check.host_file.exists
