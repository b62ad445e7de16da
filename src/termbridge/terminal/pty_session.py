"""Pseudo-terminal backed shell session.

Runs one interactive shell on a pty and reports what it prints. Output
is read from the master side as soon as the event loop sees it readable,
decoded incrementally as UTF-8, and handed to ``on_output`` chunk by
chunk in arrival order. ``on_exit`` fires exactly once.
"""

from __future__ import annotations

import asyncio
import codecs
import fcntl
import logging
import os
import pty
import signal
import struct
import subprocess
import termios
from typing import Callable, Mapping, Sequence

logger = logging.getLogger(__name__)

READ_CHUNK = 4096

OutputCallback = Callable[[str], None]
ExitCallback = Callable[[int], None]


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid() and after stdio is the pty slave.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PtySession:
    """An interactive shell subprocess attached to a pseudo-terminal.

    Writes after the process has exited are silently dropped; the exit
    callback is the authoritative signal that the session is gone.
    """

    def __init__(
        self,
        shell_command: str = "/bin/bash",
        shell_args: Sequence[str] = (),
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        rows: int = 30,
        cols: int = 120,
        term: str = "xterm-256color",
        kill_grace: float = 0.5,
        on_output: OutputCallback | None = None,
        on_exit: ExitCallback | None = None,
    ) -> None:
        self._shell_command = shell_command
        self._shell_args = list(shell_args)
        self._cwd = cwd
        self._extra_env = dict(env or {})
        self._rows = rows
        self._cols = cols
        self._term = term
        self._kill_grace = kill_grace
        self.on_output = on_output
        self.on_exit = on_exit

        self._process: asyncio.subprocess.Process | None = None
        self._master_fd: int | None = None
        self._chunks: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._read_task: asyncio.Task[None] | None = None
        self._reader_registered = False
        self._is_alive = False
        self._exit_code: int | None = None
        self._exit_reported = False

    @property
    def is_alive(self) -> bool:
        return self._is_alive

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def cwd(self) -> str | None:
        return self._cwd

    def _build_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self._extra_env)
        env["TERM"] = self._term
        env["COLUMNS"] = str(self._cols)
        env["LINES"] = str(self._rows)
        return env

    async def start(self) -> None:
        """Spawn the shell on a fresh pty.

        Raises:
            SpawnError: If the shell cannot be executed or the working
                directory does not exist.
        """
        if self._process is not None:
            raise SpawnError("Session already started")

        master_fd: int | None = None
        slave_fd: int | None = None
        try:
            master_fd, slave_fd = pty.openpty()
            winsize = struct.pack("HHHH", self._rows, self._cols, 0, 0)
            fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, winsize)
            self._process = await asyncio.create_subprocess_exec(
                self._shell_command,
                *self._shell_args,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=self._cwd,
                env=self._build_env(),
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            if master_fd is not None:
                os.close(master_fd)
            raise SpawnError(f"Cannot start {self._shell_command}: {e}") from e
        finally:
            if slave_fd is not None:
                os.close(slave_fd)

        flags = fcntl.fcntl(master_fd, fcntl.F_GETFL)
        fcntl.fcntl(master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)
        self._master_fd = master_fd
        self._is_alive = True

        loop = asyncio.get_running_loop()
        loop.add_reader(master_fd, self._on_readable)
        self._reader_registered = True
        self._read_task = asyncio.create_task(self._read_output_loop())
        logger.info(
            "Started shell %s (pid=%d, cwd=%s, %dx%d)",
            self._shell_command, self._process.pid, self._cwd, self._cols, self._rows,
        )

    async def write(self, data: str) -> None:
        """Send input to the shell. A no-op once the shell has exited."""
        if not self._is_alive or self._master_fd is None:
            logger.debug("Dropping %d chars for exited shell", len(data))
            return
        payload = data.encode()
        while payload:
            try:
                written = os.write(self._master_fd, payload)
            except BlockingIOError:
                await asyncio.sleep(0.01)
                continue
            except OSError as e:
                logger.debug("Write to shell failed: %s", e)
                return
            payload = payload[written:]

    async def stop(self) -> None:
        """Terminate the shell's process group and release the pty.

        Sends SIGHUP, escalating to SIGKILL after the grace period.
        Safe to call more than once and after the shell exited by itself.
        """
        self._remove_reader()
        self._is_alive = False

        if self._read_task is not None:
            if not self._read_task.done() and self._read_task is not asyncio.current_task():
                self._read_task.cancel()
                try:
                    await self._read_task
                except asyncio.CancelledError:
                    pass
            self._read_task = None

        process = self._process
        if process is not None and process.returncode is None:
            self._signal_group(signal.SIGHUP)
            try:
                await asyncio.wait_for(process.wait(), self._kill_grace)
            except asyncio.TimeoutError:
                self._signal_group(signal.SIGKILL)
                await process.wait()

        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = None

        if process is not None:
            self._report_exit(process.returncode if process.returncode is not None else -1)
            logger.info("Shell stopped (pid=%d)", process.pid)

    def _signal_group(self, sig: signal.Signals) -> None:
        if self._process is None:
            return
        try:
            os.killpg(self._process.pid, sig)
        except (ProcessLookupError, PermissionError):
            pass

    def _remove_reader(self) -> None:
        if self._reader_registered and self._master_fd is not None:
            try:
                asyncio.get_running_loop().remove_reader(self._master_fd)
            except RuntimeError:
                pass
        self._reader_registered = False

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, READ_CHUNK)
        except BlockingIOError:
            return
        except OSError:
            # EIO: every slave fd is closed, the shell is gone
            data = b""
        if not data:
            self._remove_reader()
            self._chunks.put_nowait(None)
            return
        self._chunks.put_nowait(data)

    async def _read_output_loop(self) -> None:
        """Deliver decoded output until EOF, then wait for the exit status."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await self._chunks.get()
            if chunk is None:
                break
            text = decoder.decode(chunk)
            if text:
                logger.debug("Shell output: %d chars", len(text))
                self._deliver(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            self._deliver(tail)

        self._is_alive = False
        code = await self._process.wait()
        logger.info("Shell exited (pid=%d, code=%d)", self._process.pid, code)
        self._report_exit(code)

    def _deliver(self, text: str) -> None:
        if self.on_output is None or self._exit_reported:
            return
        try:
            self.on_output(text)
        except Exception:
            logger.exception("Output callback failed")

    def _report_exit(self, code: int) -> None:
        if self._exit_reported:
            return
        self._exit_reported = True
        self._exit_code = code
        if self.on_exit is not None:
            self.on_exit(code)


class SpawnError(Exception):
    """Raised when a shell process cannot be started."""
