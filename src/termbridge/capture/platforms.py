"""Platform screenshot tools.

Each source shells out to the native interactive capture tool, writes
to a temporary PNG, and returns its bytes. The temporary file is always
removed.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
import tempfile
import uuid
from pathlib import Path

from termbridge.capture.base import (
    DEFAULT_CAPTURE_TIMEOUT,
    CaptureError,
    Screenshot,
    ScreenshotSource,
)

logger = logging.getLogger(__name__)


def _temp_png() -> Path:
    # Not created up front: an empty file would look like a capture.
    return Path(tempfile.gettempdir()) / f"termbridge-{uuid.uuid4().hex}.png"


def _collect(path: Path, source: str) -> Screenshot:
    try:
        if not path.exists() or path.stat().st_size == 0:
            raise CaptureError("Screenshot cancelled")
        return Screenshot(image=path.read_bytes(), source=source)
    finally:
        path.unlink(missing_ok=True)


class SnipCapture(ScreenshotSource):
    """Windows Snip & Sketch, read back from the clipboard.

    Opens the snipping overlay, then polls the clipboard until an image
    appears or the timeout elapses.
    """

    source_name = "snip"

    def __init__(
        self,
        timeout: float = DEFAULT_CAPTURE_TIMEOUT,
        poll_interval: float = 0.5,
        auto_paste: bool = False,
    ) -> None:
        super().__init__(timeout=timeout)
        self._poll_interval = poll_interval
        self._auto_paste = auto_paste
        self._paste_tasks: set[asyncio.Task[None]] = set()

    def build_script(self, path: Path) -> str:
        polls = max(1, int(self._timeout / self._poll_interval))
        delay_ms = int(self._poll_interval * 1000)
        target = str(path).replace("'", "''")
        return "; ".join([
            "Add-Type -AssemblyName System.Windows.Forms",
            "Add-Type -AssemblyName System.Drawing",
            "[System.Windows.Forms.Clipboard]::Clear()",
            "Start-Process 'ms-screenclip:'",
            f"$limit = {polls}",
            "$i = 0",
            "while ($i -lt $limit) {",
            f"  Start-Sleep -Milliseconds {delay_ms}",
            "  $i++",
            "  $img = [System.Windows.Forms.Clipboard]::GetImage()",
            "  if ($img -ne $null) {",
            f"    $img.Save('{target}', [System.Drawing.Imaging.ImageFormat]::Png)",
            "    Write-Output 'OK'",
            "    exit 0",
            "  }",
            "}",
            "Write-Output 'TIMEOUT'",
        ])

    async def capture(self) -> Screenshot:
        path = _temp_png()
        logger.info("Snipping tool opened, waiting for capture...")
        try:
            _, result = await self._run(
                ["powershell", "-NoProfile", "-STA", "-Command", self.build_script(path)],
                timeout=self._timeout + 5,
            )
        except (CaptureError, asyncio.CancelledError):
            path.unlink(missing_ok=True)
            raise
        if result != "OK":
            path.unlink(missing_ok=True)
            raise CaptureError("Snip cancelled or timed out")

        shot = _collect(path, self.source_name)
        if self._auto_paste:
            task = asyncio.create_task(self._paste())
            self._paste_tasks.add(task)
            task.add_done_callback(self._paste_tasks.discard)
        return shot

    async def close(self) -> None:
        tasks = list(self._paste_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _paste(self) -> None:
        """Send Ctrl+V to the foreground window so the chat input gets the image."""
        await asyncio.sleep(1.0)
        script = (
            "Add-Type -AssemblyName System.Windows.Forms; "
            "Start-Sleep -Milliseconds 500; "
            "[System.Windows.Forms.SendKeys]::SendWait('^v')"
        )
        try:
            await self._run(["powershell", "-NoProfile", "-Command", script], timeout=5)
            logger.info("Auto-pasted screenshot")
        except CaptureError as e:
            logger.debug("Auto-paste failed: %s", e)


class ScreencaptureCapture(ScreenshotSource):
    """macOS interactive ``screencapture -i``."""

    source_name = "screencapture"

    async def capture(self) -> Screenshot:
        path = _temp_png()
        try:
            await self._run(["screencapture", "-i", str(path)])
        except (CaptureError, asyncio.CancelledError):
            path.unlink(missing_ok=True)
            raise
        return _collect(path, self.source_name)


class ScrotCapture(ScreenshotSource):
    """X11 region selection with scrot, or ImageMagick ``import`` without it."""

    source_name = "scrot"

    def command(self, path: Path) -> list[str]:
        if shutil.which("scrot"):
            return ["scrot", "-s", str(path)]
        if shutil.which("import"):
            return ["import", str(path)]
        raise CaptureError("Neither scrot nor ImageMagick import is installed")

    async def capture(self) -> Screenshot:
        path = _temp_png()
        try:
            await self._run(self.command(path))
        except (CaptureError, asyncio.CancelledError):
            path.unlink(missing_ok=True)
            raise
        return _collect(path, self.source_name)


def create_screenshot_source(
    platform: str | None = None,
    timeout: float = DEFAULT_CAPTURE_TIMEOUT,
    poll_interval: float = 0.5,
    auto_paste: bool = False,
) -> ScreenshotSource:
    """Pick the capture tool for ``platform`` (defaults to ``sys.platform``)."""
    platform = platform or sys.platform
    if platform.startswith("win"):
        return SnipCapture(timeout=timeout, poll_interval=poll_interval, auto_paste=auto_paste)
    if platform == "darwin":
        return ScreencaptureCapture(timeout=timeout)
    return ScrotCapture(timeout=timeout)
