"""End-to-end container lifecycle against a real docker daemon."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from constellation.bridge.managers.containers import ContainerManager
from constellation.bridge.managers.ports import PortAllocator
from constellation.bridge.managers.workspaces import WorkspaceStore
from constellation.bridge.models.container import ContainerConfig
from constellation.bridge.models.enums import ContainerElevation
from constellation.bridge.process.privileged import ContainerCommandRunner

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("docker") is None, reason="docker not installed"),
]


@pytest.fixture
def docker_manager() -> ContainerManager:
    runner = ContainerCommandRunner(elevation=ContainerElevation.NONE, timeout=300.0)
    return ContainerManager(runner, PortAllocator(5000, 1000), default_image="alpine:3")


async def test_create_exec_destroy_twice(docker_manager: ContainerManager, tmp_path: Path) -> None:
    store = WorkspaceStore(tmp_path / "projects", git_init=False)
    workspace = await store.create("itest")
    path = Path(workspace.path)

    record = await docker_manager.create("itest", ContainerConfig(ports=[3000]), path)
    try:
        assert record.container_id
        assert await docker_manager.resolve_container_id("itest") == record.container_id

        result = await docker_manager.exec("echo hi", project_id="itest")
        assert result.output == "hi"
        assert result.exit_code == 0

        check = await docker_manager.verify_volume("itest", path, container_id=record.container_id)
        assert check.working
    finally:
        first = await docker_manager.destroy(project_id="itest")
    second = await docker_manager.destroy(project_id="itest")

    assert first.success
    assert second.success
