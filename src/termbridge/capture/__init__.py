"""Screenshot capture module for termbridge.

Public API:
    ScreenshotSource -- Abstract base class
    Screenshot -- Captured image with its data URL
    CaptureError -- Raised on failure, cancellation or timeout
    create_screenshot_source -- Picks the native tool for this platform
"""

from termbridge.capture.base import CaptureError, Screenshot, ScreenshotSource
from termbridge.capture.platforms import create_screenshot_source

__all__ = ["CaptureError", "Screenshot", "ScreenshotSource", "create_screenshot_source"]
