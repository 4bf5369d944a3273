"""Process runner -- spawn external commands without blocking the event loop.

Two entry points share one implementation:

- ``run_buffered``: collect all output and return once the child exits.
  Accepts either an argument list (preferred) or a single shell string; the
  shell form is reserved for trusted, internally-built commands.
- ``run_streaming``: same, but every decoded chunk is handed to an async
  callback as it arrives, before it is appended to the accumulator.

Every child is started in its own session so that a timeout or a cancelled
caller can kill the whole process group, not just the direct child.  stdin is
``/dev/null``: no command run through here is interactive.
"""

from __future__ import annotations

import asyncio
import codecs
import os
import signal
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from constellation.bridge.errors import CommandFailed, CommandSpawnFailed, CommandTimeout, OutputLimitExceeded
from constellation.bridge.models.enums import StreamName

MAX_BUFFER = 10 * 1024 * 1024
"""Default per-stream output cap (bytes)."""

_READ_SIZE = 4096

ChunkCallback = Callable[[StreamName, str], Awaitable[None]]
Command = str | Sequence[str]


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int


class _BufferOverflow(Exception):
    pass


class _OutputBuffer:
    """Accumulates one pipe's output with incremental UTF-8 decoding."""

    def __init__(self, name: StreamName, limit: int) -> None:
        self.name = name
        self._limit = limit
        self._size = 0
        self._parts: list[str] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")("replace")

    def decode(self, data: bytes) -> str:
        self._size += len(data)
        if self._size > self._limit:
            raise _BufferOverflow
        return self._decoder.decode(data)

    def flush(self) -> str:
        return self._decoder.decode(b"", final=True)

    def append(self, text: str) -> None:
        self._parts.append(text)

    @property
    def text(self) -> str:
        return "".join(self._parts)


# ---------------------------------------------------------------------------
# Spawn / kill
# ---------------------------------------------------------------------------


def _merge_env(env: Mapping[str, str] | None) -> dict[str, str] | None:
    if not env:
        return None
    merged = dict(os.environ)
    merged.update({str(k): str(v) for k, v in env.items()})
    return merged


async def spawn(
    command: Command,
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> asyncio.subprocess.Process:
    """Start *command* with piped stdout/stderr in a new process group.

    Raises ``CommandSpawnFailed`` if the OS cannot start it.
    """
    kwargs = {
        "cwd": str(cwd) if cwd is not None else None,
        "env": _merge_env(env),
        "stdin": asyncio.subprocess.DEVNULL,
        "stdout": asyncio.subprocess.PIPE,
        "stderr": asyncio.subprocess.PIPE,
        "start_new_session": True,
    }
    try:
        if isinstance(command, str):
            return await asyncio.create_subprocess_shell(command, **kwargs)
        return await asyncio.create_subprocess_exec(*command, **kwargs)
    except OSError as exc:
        raise CommandSpawnFailed(command, exc.strerror or str(exc)) from exc


def kill_process_tree(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the child's process group.  No-op once the child has been reaped."""
    if process.returncode is not None:
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        return
    except PermissionError:
        process.kill()
    logger.debug("Killed process group {}", process.pid)


# ---------------------------------------------------------------------------
# Output collection
# ---------------------------------------------------------------------------


async def _pump(
    reader: asyncio.StreamReader,
    buffer: _OutputBuffer,
    on_chunk: ChunkCallback | None,
) -> None:
    while True:
        data = await reader.read(_READ_SIZE)
        if not data:
            break
        text = buffer.decode(data)
        if not text:
            continue
        if on_chunk is not None:
            await on_chunk(buffer.name, text)
        buffer.append(text)

    tail = buffer.flush()
    if tail:
        if on_chunk is not None:
            await on_chunk(buffer.name, tail)
        buffer.append(tail)


async def communicate(
    process: asyncio.subprocess.Process,
    command: Command,
    *,
    on_chunk: ChunkCallback | None = None,
    timeout: float | None = None,
    max_buffer: int = MAX_BUFFER,
) -> CommandResult:
    """Drain both pipes of *process* until it exits.

    The process group is killed if this coroutine leaves early for any reason:
    timeout (``CommandTimeout``), output cap (``OutputLimitExceeded``) or
    cancellation of the awaiting task.
    """
    assert process.stdout is not None  # noqa: S101
    assert process.stderr is not None  # noqa: S101

    stdout = _OutputBuffer(StreamName.STDOUT, max_buffer)
    stderr = _OutputBuffer(StreamName.STDERR, max_buffer)

    async def _drain() -> int:
        pumps = [
            asyncio.ensure_future(_pump(process.stdout, stdout, on_chunk)),
            asyncio.ensure_future(_pump(process.stderr, stderr, on_chunk)),
        ]
        try:
            await asyncio.gather(*pumps)
        finally:
            for pump in pumps:
                pump.cancel()
        return await process.wait()

    try:
        exit_code = await asyncio.wait_for(_drain(), timeout=timeout)
    except TimeoutError:
        logger.warning("Command timed out after {}s: {}", timeout, command)
        raise CommandTimeout(command, timeout or 0) from None
    except _BufferOverflow:
        logger.warning("Command exceeded {} bytes of output: {}", max_buffer, command)
        raise OutputLimitExceeded(command, max_buffer) from None
    finally:
        kill_process_tree(process)

    return CommandResult(stdout=stdout.text.strip(), stderr=stderr.text.strip(), exit_code=exit_code)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def run_buffered(
    command: Command,
    *,
    cwd: str | Path | None = None,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
    max_buffer: int = MAX_BUFFER,
) -> CommandResult:
    """Run *command* to completion and return its trimmed output.

    A ``str`` command goes through ``/bin/sh``; a sequence is exec'd directly
    and never shell-interpreted.  Raises ``CommandFailed`` on a nonzero exit
    when *check* is true.
    """
    return await run_streaming(
        command,
        cwd=cwd,
        timeout=timeout,
        env=env,
        check=check,
        max_buffer=max_buffer,
    )


async def run_streaming(
    command: Command,
    *,
    cwd: str | Path | None = None,
    on_chunk: ChunkCallback | None = None,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
    max_buffer: int = MAX_BUFFER,
) -> CommandResult:
    """Run *command*, awaiting ``on_chunk(stream, text)`` for every output chunk.

    Chunks are delivered in arrival order.  Each chunk reaches the callback
    before it is added to the returned ``CommandResult``.
    """
    logger.debug("Running {} (cwd={})", command, cwd)
    process = await spawn(command, cwd=cwd, env=env)
    result = await communicate(process, command, on_chunk=on_chunk, timeout=timeout, max_buffer=max_buffer)

    if check and result.exit_code != 0:
        raise CommandFailed(command, result.exit_code, result.stderr)
    return result
