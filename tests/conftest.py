"""Shared test fixtures for the termbridge test suite.

Provides fakes for the pieces that touch the OS or the network: a
scripted terminal in place of a pty shell, a websocket stand-in that
records what it was sent, and a screenshot source with a canned result.
"""

from __future__ import annotations

import asyncio
import json
from typing import Callable

import pytest

from termbridge.capture.base import CaptureError, Screenshot, ScreenshotSource
from termbridge.domain.models import BridgeEvent
from termbridge.terminal.pty_session import SpawnError

IDLE = 0.05
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


# ---------------------------------------------------------------------------
# Terminal Fakes
# ---------------------------------------------------------------------------


PROMPT = "\x1b[01;32mbash-5.2$\x1b[0m "


def fake_shell(data: str) -> str | None:
    """Answer typed input the way a pty shell does: echo, reply, prompt."""
    echo = data.replace("\n", "\r\n")
    if not data.endswith("\n"):
        return echo
    command = data.strip()
    if command.startswith("echo "):
        reply = "\x1b[0m" + command[len("echo "):] + "\r\n"
    else:
        reply = f"bash: {command}: command not found\r\n"
    return echo + reply + PROMPT


class FakeTerminal:
    """Scripted stand-in for PtySession."""

    def __init__(
        self,
        cwd: str,
        on_output: Callable[[str], None],
        on_exit: Callable[[int], None],
        responder: Callable[[str], str | None] | None = fake_shell,
        fail: bool = False,
    ) -> None:
        self.cwd = cwd
        self.on_output = on_output
        self.on_exit = on_exit
        self.responder = responder
        self.fail = fail
        self.writes: list[str] = []
        self.started = False
        self.stopped = False
        self._alive = False

    @property
    def is_alive(self) -> bool:
        return self._alive

    async def start(self) -> None:
        if self.fail:
            raise SpawnError("Cannot start /bin/nope: No such file or directory")
        self.started = True
        self._alive = True

    async def write(self, data: str) -> None:
        if not self._alive:
            return
        self.writes.append(data)
        if self.responder is not None:
            reply = self.responder(data)
            if reply:
                self.on_output(reply)

    async def stop(self) -> None:
        self._alive = False
        self.stopped = True

    def emit(self, text: str) -> None:
        self.on_output(text)

    def crash(self, code: int = 1) -> None:
        self._alive = False
        self.on_exit(code)


class FakeTerminalFactory:
    """Terminal factory that remembers every terminal it built."""

    def __init__(self) -> None:
        self.terminals: list[FakeTerminal] = []
        self.fail_next = False

    def __call__(self, cwd, on_output, on_exit) -> FakeTerminal:
        terminal = FakeTerminal(cwd, on_output, on_exit, fail=self.fail_next)
        self.fail_next = False
        self.terminals.append(terminal)
        return terminal


# ---------------------------------------------------------------------------
# Transport Fakes
# ---------------------------------------------------------------------------


class FakeSocket:
    """Records text frames and closes; can be told to fail or to stall."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.broken = False
        self.gate: asyncio.Event | None = None
        self.close_code: int | None = None

    async def send_text(self, data: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.broken:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    @property
    def closed(self) -> bool:
        return self.close_code is not None

    @property
    def messages(self) -> list[dict]:
        return [json.loads(m) for m in self.sent]

    def of_type(self, kind: str) -> list[dict]:
        return [m for m in self.messages if m["type"] == kind]


class EventRecorder:
    """Collects emitted events, in order."""

    def __init__(self) -> None:
        self.events: list[BridgeEvent] = []

    def __call__(self, event: BridgeEvent) -> None:
        self.events.append(event)

    def of_type(self, kind: str) -> list[BridgeEvent]:
        return [e for e in self.events if e.type == kind]


# ---------------------------------------------------------------------------
# Screenshot Fakes
# ---------------------------------------------------------------------------


class FakeScreenshotSource(ScreenshotSource):
    source_name = "fake"

    def __init__(self, image: bytes = PNG_BYTES, error: str | None = None) -> None:
        super().__init__(timeout=1.0)
        self.image = image
        self.error = error
        self.release: asyncio.Event | None = None
        self.calls = 0

    async def capture(self) -> Screenshot:
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        if self.error:
            raise CaptureError(self.error)
        return Screenshot(image=self.image, source=self.source_name)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def terminal_factory() -> FakeTerminalFactory:
    return FakeTerminalFactory()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def screenshots() -> FakeScreenshotSource:
    return FakeScreenshotSource()
