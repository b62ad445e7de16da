"""Session registry: the single owner of session lifecycle.

Holds the id -> session map and the active-session pointer. Creation
and removal are serialized by one lock; reads never wait on it, and
sessions only become visible once fully started.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Protocol, Sequence

from termbridge.domain.models import (
    BridgeEvent,
    OutputEvent,
    SessionInfo,
    SessionSelectedEvent,
    SessionsEvent,
)
from termbridge.terminal.detector import DEFAULT_IDLE_TIMEOUT, IdleCompletionDetector
from termbridge.terminal.pty_session import ExitCallback, OutputCallback, PtySession

logger = logging.getLogger(__name__)

EmitFn = Callable[[BridgeEvent], None]


class Terminal(Protocol):
    """What the registry needs from a shell session."""

    @property
    def is_alive(self) -> bool: ...

    async def start(self) -> None: ...

    async def write(self, data: str) -> None: ...

    async def stop(self) -> None: ...


TerminalFactory = Callable[[str, OutputCallback, ExitCallback], Terminal]


@dataclass
class ManagedSession:
    """A registered terminal plus its completion detector."""

    id: int
    name: str
    cwd: str
    terminal: Terminal
    detector: IdleCompletionDetector
    closed: bool = field(default=False)

    def info(self) -> SessionInfo:
        return SessionInfo(
            id=self.id,
            name=self.name,
            cwd=self.cwd,
            alive=self.terminal.is_alive,
        )

    async def submit(self, text: str, auto_execute: bool = True) -> None:
        """Open a capture window, then type ``text`` (plus Enter if asked)."""
        self.detector.arm(text)
        await self.terminal.write(text + "\n" if auto_execute else text)


def pty_factory(
    shell_command: str = "/bin/bash",
    shell_args: Sequence[str] = (),
    env: Mapping[str, str] | None = None,
    rows: int = 30,
    cols: int = 120,
    term: str = "xterm-256color",
    kill_grace: float = 0.5,
) -> TerminalFactory:
    """Build a factory that spawns real pty shells with fixed launch options."""

    def make(cwd: str, on_output: OutputCallback, on_exit: ExitCallback) -> Terminal:
        return PtySession(
            shell_command=shell_command,
            shell_args=shell_args,
            cwd=cwd,
            env=env,
            rows=rows,
            cols=cols,
            term=term,
            kill_grace=kill_grace,
            on_output=on_output,
            on_exit=on_exit,
        )

    return make


class SessionRegistry:
    """Creates, selects and removes terminal sessions.

    Every mutation publishes a ``sessions`` event through ``emit``;
    session output and completion events are published the same way.
    """

    def __init__(
        self,
        emit: EmitFn,
        terminal_factory: TerminalFactory | None = None,
        default_cwd: str | None = None,
        default_name: str = "Terminal",
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    ) -> None:
        self._emit = emit
        self._terminal_factory = terminal_factory or pty_factory()
        self._default_cwd = default_cwd or str(Path.home())
        self._default_name = default_name
        self._idle_timeout = idle_timeout
        self._sessions: dict[int, ManagedSession] = {}
        self._active_id: int | None = None
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._reapers: set[asyncio.Task[None]] = set()

    @property
    def active_id(self) -> int | None:
        return self._active_id

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: int) -> ManagedSession | None:
        return self._sessions.get(session_id)

    def resolve(self, session_id: int | None = None) -> ManagedSession | None:
        """Look up an explicit session, or the active one when no id is given."""
        if session_id is not None:
            return self._sessions.get(session_id)
        if self._active_id is None:
            return None
        return self._sessions.get(self._active_id)

    def list(self) -> list[SessionInfo]:
        return [s.info() for s in sorted(self._sessions.values(), key=lambda s: s.id)]

    def snapshot(self) -> SessionsEvent:
        return SessionsEvent(sessions=self.list(), active_id=self._active_id)

    async def create(self, name: str | None = None, cwd: str | None = None) -> ManagedSession:
        """Spawn and register a new session.

        The first session created while none is active becomes active.

        Raises:
            SpawnError: If the shell could not be started.
        """
        async with self._lock:
            session_id = next(self._ids)
            name = name or f"{self._default_name} {session_id}"
            cwd = str(Path(cwd).expanduser()) if cwd else self._default_cwd

            detector = IdleCompletionDetector(
                session_id, name, emit=self._emit, idle_timeout=self._idle_timeout,
            )
            session: ManagedSession

            def on_output(text: str) -> None:
                self._on_output(session, text)

            def on_exit(code: int) -> None:
                self._on_exit(session, code)

            terminal = self._terminal_factory(cwd, on_output, on_exit)
            session = ManagedSession(
                id=session_id, name=name, cwd=cwd, terminal=terminal, detector=detector,
            )
            await terminal.start()

            self._sessions[session_id] = session
            if self._active_id is None:
                self._active_id = session_id
            logger.info("Created session %d (%s) in %s", session_id, name, cwd)

        self._publish()
        return session

    async def remove(self, session_id: int) -> bool:
        """Remove a session and kill its shell. Unknown ids are ignored."""
        async with self._lock:
            session = self._detach(session_id)
            if session is None:
                return False
        logger.info("Removed session %d (%s)", session.id, session.name)
        self._publish()
        await session.terminal.stop()
        return True

    def select(self, session_id: int) -> bool:
        """Point the active pointer at an existing session."""
        if session_id not in self._sessions:
            logger.warning("Cannot select unknown session %d", session_id)
            return False
        self._active_id = session_id
        logger.info("Selected session %d", session_id)
        self._emit(SessionSelectedEvent(active_id=session_id))
        self._publish()
        return True

    async def close_all(self) -> None:
        """Stop every session. Used at shutdown."""
        async with self._lock:
            sessions = [self._detach(sid) for sid in list(self._sessions)]
        for task in list(self._reapers):
            task.cancel()
        await asyncio.gather(
            *(s.terminal.stop() for s in sessions if s is not None),
            return_exceptions=True,
        )
        logger.info("Closed %d session(s)", len(sessions))

    def _detach(self, session_id: int) -> ManagedSession | None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        session.closed = True
        session.detector.close()
        if self._active_id == session_id:
            self._active_id = next(iter(sorted(self._sessions)), None)
        return session

    def _publish(self) -> None:
        self._emit(self.snapshot())

    def _on_output(self, session: ManagedSession, text: str) -> None:
        if session.closed:
            return
        self._emit(OutputEvent(text=text, session_id=session.id, session_name=session.name))
        session.detector.feed(text)

    def _on_exit(self, session: ManagedSession, code: int) -> None:
        if session.closed:
            return
        logger.warning("Session %d (%s) exited unexpectedly (code=%d)", session.id, session.name, code)
        task = asyncio.create_task(self.remove(session.id))
        self._reapers.add(task)
        task.add_done_callback(self._reapers.discard)
