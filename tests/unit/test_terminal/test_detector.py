"""Tests for idle-based completion detection and output classification."""

from __future__ import annotations

import asyncio

import pytest

from conftest import IDLE, EventRecorder
from termbridge.terminal.detector import (
    ERROR_PATTERNS,
    IdleCompletionDetector,
    classify,
    clean_output,
    has_error,
    strip_ansi,
)


@pytest.fixture
def detector(recorder: EventRecorder) -> IdleCompletionDetector:
    return IdleCompletionDetector(7, "build", emit=recorder, idle_timeout=IDLE)


class TestCleaning:
    def test_strip_color_codes(self) -> None:
        assert strip_ansi("\x1b[1;31mred\x1b[0m text") == "red text"

    def test_strip_cursor_and_mode_sequences(self) -> None:
        assert strip_ansi("\x1b[?2004hls\x1b[K\x1b[2J") == "ls"

    def test_strip_window_title(self) -> None:
        assert strip_ansi("\x1b]0;user@host: ~\x07$ ") == "$ "

    def test_clean_output_trims_and_normalizes(self) -> None:
        assert clean_output("\r\n  \x1b[32mhi\x1b[0m\r\nthere\r\n") == "hi\nthere"

    def test_clean_output_empty(self) -> None:
        assert clean_output("\x1b[0m \r\n") == ""

    def test_lone_carriage_returns_become_newlines(self) -> None:
        assert clean_output("10%\r50%\r100%\r\ndone") == "10%\n50%\n100%\ndone"

    def test_drops_echo_and_prompt(self) -> None:
        raw = "echo hi\r\n\rhi\r\nbash-5.2# "
        assert clean_output(raw, "echo hi") == "hi"

    def test_drops_echo_after_redrawn_prompt(self) -> None:
        raw = "\x1b[?2004h$ ls\r\nREADME.md\r\n\x1b]0;me@box: ~\x07me@box:~/src$ "
        assert clean_output(raw, "ls") == "README.md"

    @pytest.mark.parametrize("prompt", ["$", "sh-5.2$", "user@host:~/src$", "(venv) me@box ~ %", ">"])
    def test_recognized_prompts(self, prompt: str) -> None:
        assert clean_output(f"out\n{prompt} ") == "out"

    @pytest.mark.parametrize("last", ["100%", "Progress: 100%", "a -> b", "total 0"])
    def test_output_lines_kept(self, last: str) -> None:
        assert clean_output(f"out\n{last}") == f"out\n{last}"

    def test_echo_only_drops_matching_first_line(self) -> None:
        assert clean_output("hi\nmore", "echo hi") == "hi\nmore"
        assert clean_output("git status", "git status") == ""


class TestClassification:
    @pytest.mark.parametrize("text", [
        "bash: nonexistent-cmd-xyz: command not found",
        "Traceback (most recent call last):",
        "npm ERR! code E404",
        "error: pathspec 'main' did not match",
        "ERROR: Could not open requirements file",
        "Error: listen EADDRINUSE: address already in use",
        "ls: cannot open directory '/root': Permission denied",
        "=== 2 FAILED, 10 passed ===",
        "ModuleNotFoundError: No module named 'foo'",
    ])
    def test_error_outputs(self, text: str) -> None:
        assert has_error(text)

    @pytest.mark.parametrize("text", ["hi", "", "3 passed in 0.1s", "errors are fine in prose"])
    def test_clean_outputs(self, text: str) -> None:
        assert not has_error(text)

    def test_failed_is_case_sensitive(self) -> None:
        assert not has_error("the job failed quietly")

    def test_classification_is_repeatable(self) -> None:
        text = "Traceback\nTypeError: boom"
        assert {has_error(text) for _ in range(5)} == {True}

    def test_classify_exit_code(self) -> None:
        ok = classify("\x1b[0mhi\r\n")
        bad = classify("sh: 1: nope: command not found\r\n")
        assert (ok.output, ok.has_error, ok.exit_code) == ("hi", False, 0)
        assert (bad.has_error, bad.exit_code) == (True, 1)

    def test_pattern_order_irrelevant(self) -> None:
        text = "FATAL: Permission denied"
        assert has_error(text, ERROR_PATTERNS) == has_error(text, tuple(reversed(ERROR_PATTERNS)))


class TestDetectorWindow:
    @pytest.mark.asyncio
    async def test_completes_once_after_quiet_period(self) -> None:
        loop = asyncio.get_running_loop()
        fired: list[tuple[float, object]] = []
        detector = IdleCompletionDetector(
            1, "t", emit=lambda e: fired.append((loop.time(), e)), idle_timeout=IDLE,
        )
        detector.arm()
        for chunk in ["a", "b", "c", "d"]:
            await asyncio.sleep(IDLE / 3)
            detector.feed(chunk)
        last_chunk_at = loop.time()
        assert fired == []

        await asyncio.sleep(IDLE * 4)
        assert len(fired) == 1
        fired_at, event = fired[0]
        assert event.output == "abcd"
        assert fired_at - last_chunk_at >= IDLE * 0.9
        assert not detector.is_armed

    @pytest.mark.asyncio
    async def test_not_before_timeout(
        self, detector: IdleCompletionDetector, recorder: EventRecorder,
    ) -> None:
        detector.arm()
        detector.feed("partial")
        await asyncio.sleep(IDLE / 2)
        assert recorder.events == []
        await asyncio.sleep(IDLE * 3)
        assert len(recorder.events) == 1

    @pytest.mark.asyncio
    async def test_rearm_discards_previous_buffer(
        self, detector: IdleCompletionDetector, recorder: EventRecorder,
    ) -> None:
        detector.arm()
        detector.feed("output of X\r\n")
        detector.arm()
        detector.feed("output of Y\r\n")
        await asyncio.sleep(IDLE * 4)

        completes = recorder.of_type("command_complete")
        assert len(completes) == 1
        assert completes[0].output == "output of Y"

    @pytest.mark.asyncio
    async def test_feed_while_idle_is_ignored(
        self, detector: IdleCompletionDetector, recorder: EventRecorder,
    ) -> None:
        detector.feed("prompt$ ")
        await asyncio.sleep(IDLE * 3)
        assert recorder.events == []
        assert detector.buffered == ""

    @pytest.mark.asyncio
    async def test_silent_command_completes_empty(
        self, detector: IdleCompletionDetector, recorder: EventRecorder,
    ) -> None:
        detector.arm()
        await asyncio.sleep(IDLE * 3)
        (event,) = recorder.events
        assert event.output == ""
        assert event.has_error is False
        assert event.exit_code == 0

    @pytest.mark.asyncio
    async def test_error_emits_error_detected_after_complete(
        self, detector: IdleCompletionDetector, recorder: EventRecorder,
    ) -> None:
        detector.arm()
        detector.feed("bash: nonexistent-cmd-xyz: command not found\r\n")
        await asyncio.sleep(IDLE * 3)

        assert [e.type for e in recorder.events] == ["command_complete", "error_detected"]
        complete, detected = recorder.events
        assert complete.session_id == 7
        assert complete.session_name == "build"
        assert complete.exit_code == 1
        assert complete.has_error is True
        assert detected.output == complete.output

    @pytest.mark.asyncio
    async def test_close_cancels_pending_timer(
        self, detector: IdleCompletionDetector, recorder: EventRecorder,
    ) -> None:
        detector.arm()
        detector.feed("still running")
        detector.close()
        await asyncio.sleep(IDLE * 3)
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_arm_after_close_is_ignored(
        self, detector: IdleCompletionDetector, recorder: EventRecorder,
    ) -> None:
        detector.close()
        detector.arm()
        await asyncio.sleep(IDLE * 3)
        assert not detector.is_armed
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_submitted_command_echo_is_dropped(
        self, detector: IdleCompletionDetector, recorder: EventRecorder,
    ) -> None:
        detector.arm("echo hi")
        detector.feed("echo hi\r\n")
        detector.feed("hi\r\n$ ")
        await asyncio.sleep(IDLE * 3)
        (event,) = recorder.events
        assert event.output == "hi"

    @pytest.mark.asyncio
    async def test_consecutive_windows(
        self, detector: IdleCompletionDetector, recorder: EventRecorder,
    ) -> None:
        for text in ["first", "second"]:
            detector.arm()
            detector.feed(text)
            await asyncio.sleep(IDLE * 3)
        assert [e.output for e in recorder.of_type("command_complete")] == ["first", "second"]
