"""Idle-based command completion detection.

A shell gives no acknowledgment when a command finishes, so completion
is inferred from silence: once a command is submitted the detector is
*armed*, every output chunk restarts a quiescence timer, and when the
timer expires the accumulated output is cleaned, classified and
reported.

Known limitation: a command that pauses output for at least the idle
timeout (``sleep 5``, a slow compile step) is reported complete early.
The timeout is fixed rather than adaptive.

Re-arming while a window is open discards the partial output of the
previous window without reporting it.

A pty echoes what was typed and prints a fresh prompt once the command
is done, so the reported output drops a first line that repeats the
submitted command and a last line that looks like a bare prompt.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable, Iterable, Pattern

from termbridge.domain.models import (
    BridgeEvent,
    CommandCompleteEvent,
    CompletionResult,
    ErrorDetectedEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 2.0

# Any match marks the command as failed; order does not matter.
ERROR_PATTERNS: tuple[Pattern[str], ...] = (
    re.compile(r"Error:", re.IGNORECASE),
    re.compile(r"ERR!"),
    re.compile(r"ENOENT"),
    re.compile(r"EACCES"),
    re.compile(r"EADDRINUSE"),
    re.compile(r"SyntaxError"),
    re.compile(r"TypeError"),
    re.compile(r"ReferenceError"),
    re.compile(r"ModuleNotFoundError"),
    re.compile(r"Traceback"),
    re.compile(r"FAILED"),
    re.compile(r"npm ERR"),
    re.compile(r"command not found"),
    re.compile(r"Permission denied"),
    re.compile(r"Cannot find module"),
    re.compile(r"FATAL"),
)

# CSI sequences (colors, cursor movement, bracketed paste toggles)
_CSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
# OSC sequences (window title), BEL or ST terminated
_OSC_RE = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
# Charset selection and keypad mode
_ESC_RE = re.compile(r"\x1b(?:[()][A-Za-z0-9]|[=>])")
# A lone shell prompt: "$", "bash-5.2#", "user@host:~/src$", "(venv) me@box ~ %"
_PROMPT_RE = re.compile(
    r"^(?:\([^)]*\) ?)?(?!\d+%$)[\w.@\-]*(?:[:\s][~/]\S*)*\s?[$#%>]$"
)

EmitFn = Callable[[BridgeEvent], None]


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences, keeping the printable text."""
    text = _OSC_RE.sub("", text)
    text = _CSI_RE.sub("", text)
    return _ESC_RE.sub("", text)


def clean_output(raw: str, command: str | None = None) -> str:
    """Normalize captured output for classification and reporting.

    Strips escape sequences, turns CRLF and lone CR into LF, and removes
    the echoed ``command`` line and the trailing prompt, if present.
    """
    text = strip_ansi(raw)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = text.strip().split("\n")
    typed = (command or "").strip()
    if typed and lines[0].rstrip().endswith(typed):
        lines = lines[1:]
    if lines and _PROMPT_RE.match(lines[-1].strip()):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def has_error(text: str, patterns: Iterable[Pattern[str]] = ERROR_PATTERNS) -> bool:
    """Whether any error pattern matches ``text``. Pure function of its input."""
    return any(p.search(text) for p in patterns)


def classify(
    raw: str,
    patterns: Iterable[Pattern[str]] = ERROR_PATTERNS,
    command: str | None = None,
) -> CompletionResult:
    """Clean raw captured output and classify it."""
    cleaned = clean_output(raw, command)
    return CompletionResult(output=cleaned, has_error=has_error(cleaned, patterns))


class IdleCompletionDetector:
    """Per-session command-capture window with a quiescence timer.

    Runs entirely on the event loop; the pending timer is a single
    replaceable ``asyncio.TimerHandle``.
    """

    def __init__(
        self,
        session_id: int,
        session_name: str,
        emit: EmitFn,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        patterns: Iterable[Pattern[str]] = ERROR_PATTERNS,
    ) -> None:
        self._session_id = session_id
        self._session_name = session_name
        self._emit = emit
        self._idle_timeout = idle_timeout
        self._patterns = tuple(patterns)
        self._buffer: list[str] = []
        self._armed = False
        self._closed = False
        self._command: str | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def is_armed(self) -> bool:
        return self._armed

    @property
    def idle_timeout(self) -> float:
        return self._idle_timeout

    @property
    def buffered(self) -> str:
        return "".join(self._buffer)

    def arm(self, command: str | None = None) -> None:
        """Open a new capture window, discarding any window in progress.

        ``command`` is the submitted text, used to drop its echo.
        """
        if self._closed:
            return
        if self._armed:
            logger.debug(
                "Session %d re-armed, discarding %d buffered chars",
                self._session_id, len(self.buffered),
            )
        self._buffer.clear()
        self._command = command
        self._armed = True
        self._restart_timer()

    def feed(self, text: str) -> None:
        """Record an output chunk. Ignored unless a window is open."""
        if not self._armed or self._closed:
            return
        self._buffer.append(text)
        self._restart_timer()

    def close(self) -> None:
        """Cancel any pending timer; no further events will be emitted."""
        self._closed = True
        self._armed = False
        self._cancel_timer()
        self._buffer.clear()

    def _restart_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._idle_timeout, self._on_quiet)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_quiet(self) -> None:
        self._timer = None
        if self._closed or not self._armed:
            return
        self._armed = False
        raw = self.buffered
        self._buffer.clear()

        result = classify(raw, self._patterns, self._command)
        if result.has_error:
            logger.info("Session %d: finished with errors", self._session_id)
        else:
            logger.info("Session %d: finished OK", self._session_id)

        self._emit(CommandCompleteEvent(
            session_id=self._session_id,
            session_name=self._session_name,
            output=result.output,
            exit_code=result.exit_code,
            has_error=result.has_error,
        ))
        if result.has_error:
            self._emit(ErrorDetectedEvent(
                session_id=self._session_id,
                output=result.output,
            ))
