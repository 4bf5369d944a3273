"""Pseudo-terminal sessions for the terminal WebSocket.

Each session is one shell on a fresh PTY, started in its own session so the
whole process group can be killed when the socket goes away.  Output is read
from the master side on the event loop (``loop.add_reader``), decoded
incrementally as UTF-8 and pushed onto an ``asyncio.Queue``; ``None`` marks
end of output.  When the consumer falls behind, reading from the master pauses
until the queue drains, so the shell blocks on its writes and no output is lost.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import fcntl
import os
import signal
import struct
import subprocess
import termios
from collections.abc import Mapping, Sequence
from pathlib import Path

from anyio import to_thread
from loguru import logger

_READ_SIZE = 4096
_QUEUE_HIGH_WATER = 256
_QUEUE_LOW_WATER = 64


def set_terminal_size(fd: int, cols: int, rows: int) -> None:
    safe_cols = max(1, int(cols))
    safe_rows = max(1, int(rows))
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", safe_rows, safe_cols, 0, 0))


def resolve_shell(configured: str | None = None) -> str:
    """Configured shell, else ``$SHELL``, else ``bash``."""
    return configured or os.environ.get("SHELL") or "bash"


class PtySession:
    """A shell attached to a pseudo-terminal.

    Use ``PtySession.spawn`` from inside a running event loop.
    """

    def __init__(self, process: subprocess.Popen, master_fd: int) -> None:
        self._process = process
        self._master_fd = master_fd
        self._decoder = codecs.getincrementaldecoder("utf-8")("replace")
        self._loop = asyncio.get_running_loop()
        self._reading = False
        self._paused = False
        self._closed = False
        self.output: asyncio.Queue[str | None] = asyncio.Queue()

    @classmethod
    def spawn(
        cls,
        argv: Sequence[str],
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        cols: int = 80,
        rows: int = 24,
    ) -> PtySession:
        """Start *argv* on a new PTY.  Raises ``OSError`` if it cannot be started."""
        master_fd, slave_fd = os.openpty()
        try:
            set_terminal_size(slave_fd, cols, rows)
            process = subprocess.Popen(  # noqa: S603
                list(argv),
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                close_fds=True,
                start_new_session=True,
            )
        except BaseException:
            with contextlib.suppress(OSError):
                os.close(master_fd)
            with contextlib.suppress(OSError):
                os.close(slave_fd)
            raise

        with contextlib.suppress(OSError):
            os.close(slave_fd)

        session = cls(process, master_fd)
        session._start_reading()
        logger.info("Spawned terminal shell {} (pid={})", argv[0], process.pid)
        return session

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.poll()

    # -- Output ----------------------------------------------------------------

    def _start_reading(self) -> None:
        self._loop.add_reader(self._master_fd, self._on_readable)
        self._reading = True

    def _stop_reading(self) -> None:
        if self._reading:
            self._loop.remove_reader(self._master_fd)
            self._reading = False

    def _pause_reading(self) -> None:
        if self._reading:
            self._stop_reading()
            self._paused = True
            logger.debug("Terminal pid={} output paused, {} chunks queued", self.pid, self.output.qsize())

    def _resume_reading(self) -> None:
        if self._paused and not self._closed:
            self._paused = False
            self._start_reading()

    async def read(self) -> str | None:
        """Next chunk of output, or ``None`` once the shell has closed the PTY."""
        chunk = await self.output.get()
        if self._paused and self.output.qsize() <= _QUEUE_LOW_WATER:
            self._resume_reading()
        return chunk

    def _on_readable(self) -> None:
        try:
            chunk = os.read(self._master_fd, _READ_SIZE)
        except OSError:
            # EIO once every slave fd is closed.
            chunk = b""
        if not chunk:
            self._finish()
            return
        text = self._decoder.decode(chunk)
        if text:
            self.output.put_nowait(text)
            if self.output.qsize() >= _QUEUE_HIGH_WATER:
                self._pause_reading()

    def _finish(self) -> None:
        self._paused = False
        self._stop_reading()
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self.output.put_nowait(tail)
        self.output.put_nowait(None)

    # -- Input / control -------------------------------------------------------

    def write(self, data: str) -> None:
        if self._closed:
            return
        payload = data.encode("utf-8")
        try:
            while payload:
                written = os.write(self._master_fd, payload)
                payload = payload[written:]
        except OSError as exc:
            logger.warning("Write to terminal pid={} failed: {}", self.pid, exc)

    def resize(self, cols: int, rows: int) -> None:
        if self._closed:
            return
        try:
            set_terminal_size(self._master_fd, cols, rows)
        except OSError as exc:
            logger.warning("Resize of terminal pid={} failed: {}", self.pid, exc)

    def terminate(self) -> None:
        """SIGKILL the shell's process group.  Safe to call repeatedly."""
        if self._process.poll() is not None:
            return
        try:
            os.killpg(self._process.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except PermissionError:
            self._process.kill()
        logger.debug("Killed terminal process group {}", self._process.pid)

    async def wait(self) -> int | None:
        """Reap the shell and return its exit status."""
        return await to_thread.run_sync(self._process.wait)

    def close(self) -> None:
        """Release the PTY master.  The shell must already be gone."""
        if self._closed:
            return
        self._closed = True
        self._stop_reading()
        with contextlib.suppress(OSError):
            os.close(self._master_fd)
