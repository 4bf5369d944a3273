"""Container-facing models.

Container records are never persisted: the name is derived from the project id
and everything else comes back from the runtime on demand.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import Field

from constellation.bridge.models.base import CamelModel

Port = Annotated[int, Field(ge=1, le=65535)]


class ContainerConfig(CamelModel):
    """Caller-supplied creation options."""

    image: str | None = None
    ports: list[Port] = Field(default_factory=list)
    environment: dict[str, str | int | float | bool] = Field(default_factory=dict)


class PortMapping(CamelModel):
    internal: int
    external: int


class ContainerRecord(CamelModel):
    container_id: str
    container_name: str
    ports: list[PortMapping] = Field(default_factory=list)


class DestroyResult(CamelModel):
    success: bool = True
    container_name: str
    destroyed: bool = True


class ExecResult(CamelModel):
    output: str
    stderr: str = ""
    exit_code: int = 0


class VolumeFileCheck(CamelModel):
    exists: bool
    content: str = ""
    path: str | None = None


class VolumeCheck(CamelModel):
    """Outcome of writing a marker file in the container and finding it on the host."""

    working: bool
    container_file: VolumeFileCheck
    host_file: VolumeFileCheck
