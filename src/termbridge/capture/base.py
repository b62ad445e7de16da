"""Abstract base class for screenshot sources.

The bridge asks for a screenshot and receives image bytes or a
``CaptureError``; which platform tool produced the image is hidden
behind this interface.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_CAPTURE_TIMEOUT = 30.0


class Screenshot(BaseModel):
    """A captured image and the tool that produced it."""

    model_config = ConfigDict(frozen=True)

    image: bytes = Field(description="Encoded image data")
    source: str = Field(description="Capture tool identifier, e.g. 'snip'")
    mime_type: str = Field(default="image/png")

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.image).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


class ScreenshotSource(ABC):
    """Interface for interactive screen capture.

    ``capture`` may wait on the user for several seconds but must give up
    after ``timeout`` seconds.
    """

    source_name: str = "unknown"

    def __init__(self, timeout: float = DEFAULT_CAPTURE_TIMEOUT) -> None:
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return self._timeout

    @abstractmethod
    async def capture(self) -> Screenshot:
        """Capture one screenshot.

        Raises:
            CaptureError: If the capture failed, was cancelled by the
                user, or timed out.
        """
        ...

    async def close(self) -> None:
        """Release background work. Called once at shutdown."""

    async def _run(self, args: Sequence[str], timeout: float | None = None) -> tuple[int, str]:
        """Run an external tool, killing it if it outlives ``timeout``.

        Returns the exit status and decoded stdout.
        """
        limit = self._timeout if timeout is None else timeout
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CaptureError(f"Cannot run {args[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), limit)
        except asyncio.TimeoutError:
            await _kill(process)
            raise CaptureError(f"{args[0]} timed out after {limit:.0f}s")
        except asyncio.CancelledError:
            await _kill(process)
            raise

        if stderr:
            logger.debug("%s stderr: %s", args[0], stderr.decode(errors="replace").strip())
        return process.returncode, stdout.decode(errors="replace").strip()


async def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


class CaptureError(Exception):
    """Raised when a screenshot cannot be captured."""
