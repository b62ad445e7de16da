"""Tests for the ScreenshotSource base class and Screenshot model."""

from __future__ import annotations

import asyncio
import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from termbridge.capture.base import CaptureError, Screenshot, ScreenshotSource


class EchoSource(ScreenshotSource):
    source_name = "echo"

    async def capture(self) -> Screenshot:
        code, out = await self._run(["echo", "captured"])
        return Screenshot(image=out.encode(), source=self.source_name)


class TestScreenshot:
    def test_data_url(self) -> None:
        shot = Screenshot(image=b"\x89PNG", source="snip")
        assert shot.data_url == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()

    def test_custom_mime_type(self) -> None:
        shot = Screenshot(image=b"x", source="t", mime_type="image/jpeg")
        assert shot.data_url.startswith("data:image/jpeg;base64,")


class TestScreenshotSourceInterface:
    def test_cannot_instantiate_abstract_class(self) -> None:
        with pytest.raises(TypeError):
            ScreenshotSource()  # type: ignore[abstract]

    def test_default_timeout(self) -> None:
        assert EchoSource().timeout == 30.0

    @pytest.mark.asyncio
    async def test_run_collects_stdout(self) -> None:
        process = MagicMock()
        process.communicate = AsyncMock(return_value=(b"captured\n", b""))
        process.returncode = 0
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)) as spawn:
            shot = await EchoSource().capture()
        assert shot.image == b"captured"
        assert spawn.call_args.args[:2] == ("echo", "captured")

    @pytest.mark.asyncio
    async def test_run_missing_tool(self) -> None:
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("echo"))):
            with pytest.raises(CaptureError, match="Cannot run echo"):
                await EchoSource().capture()

    @pytest.mark.asyncio
    async def test_run_timeout_kills_process(self) -> None:
        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        process = MagicMock()
        process.communicate = hang
        process.wait = AsyncMock(return_value=-9)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(CaptureError, match="timed out"):
                await EchoSource(timeout=0.05).capture()
        process.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_cancelled_capture_kills_process(self) -> None:
        started = asyncio.Event()

        async def hang() -> tuple[bytes, bytes]:
            started.set()
            await asyncio.sleep(10)
            return b"", b""

        process = MagicMock()
        process.communicate = hang
        process.wait = AsyncMock(return_value=-9)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            task = asyncio.create_task(EchoSource(timeout=5).capture())
            await asyncio.wait_for(started.wait(), 1.0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        process.kill.assert_called_once()
        process.wait.assert_awaited()
