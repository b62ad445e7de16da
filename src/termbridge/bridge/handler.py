"""Bridge protocol dispatch.

Decodes client requests, applies them to the session registry or the
screenshot source, and answers through the hub. Every per-request
failure becomes an ``error`` reply to the requester; nothing here
closes a connection.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError

from termbridge.bridge.hub import BroadcastHub, Observer
from termbridge.capture.base import CaptureError, ScreenshotSource
from termbridge.domain.models import (
    AckEvent,
    CaptureReady,
    ConnectedEvent,
    CreateSession,
    ErrorEvent,
    Prompt,
    RefreshSessions,
    RemoveSession,
    ScreenshotEvent,
    ScreenshotRequest,
    SelectSession,
    parse_inbound,
)
from termbridge.terminal.pty_session import SpawnError
from termbridge.terminal.registry import SessionRegistry

logger = logging.getLogger(__name__)

NO_SESSION_MESSAGE = "No terminal session available"


def _preview(text: str, limit: int = 80) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class BridgeProtocolHandler:
    """Stateless dispatcher from inbound messages to their effects."""

    def __init__(
        self,
        registry: SessionRegistry,
        hub: BroadcastHub,
        screenshots: ScreenshotSource | None,
        port: int,
    ) -> None:
        self._registry = registry
        self._hub = hub
        self._screenshots = screenshots
        self._port = port
        self._captures: set[asyncio.Task[None]] = set()

    def on_connect(self, observer: Observer) -> None:
        self._hub.reply(observer, ConnectedEvent(port=self._port))
        self._hub.reply(observer, self._registry.snapshot())

    async def handle(self, observer: Observer, raw: str | bytes) -> None:
        """Process one inbound frame from ``observer``."""
        try:
            message = parse_inbound(raw)
        except ValidationError as e:
            logger.warning("Malformed message: %s", e.errors(include_url=False)[:1])
            self._hub.reply(observer, ErrorEvent(message=f"Malformed message: {_first_error(e)}"))
            return

        if isinstance(message, Prompt):
            await self._prompt(observer, message)
        elif isinstance(message, CreateSession):
            await self._create(observer, message)
        elif isinstance(message, RemoveSession):
            await self._registry.remove(message.session_id)
        elif isinstance(message, SelectSession):
            if not self._registry.select(message.session_id):
                self._hub.reply(
                    observer, ErrorEvent(message=f"Unknown session {message.session_id}"),
                )
        elif isinstance(message, RefreshSessions):
            self._hub.reply(observer, self._registry.snapshot())
        elif isinstance(message, ScreenshotRequest):
            self._start_capture(observer, message)
        elif isinstance(message, CaptureReady):
            logger.info("Capture mode active")

    async def _prompt(self, observer: Observer, message: Prompt) -> None:
        session = self._registry.resolve(message.session_id)
        if session is None:
            logger.warning("Prompt dropped: no session (requested %s)", message.session_id)
            self._hub.reply(observer, ErrorEvent(message=NO_SESSION_MESSAGE))
            return

        logger.info(
            "Prompt for session %d (%d chars): %s",
            session.id, len(message.text), _preview(message.text),
        )
        await session.submit(message.text, auto_execute=message.auto_execute)
        self._hub.reply(observer, AckEvent(
            status="sent", session_id=session.id, session_name=session.name,
        ))

    async def _create(self, observer: Observer, message: CreateSession) -> None:
        try:
            await self._registry.create(name=message.name, cwd=message.cwd)
        except SpawnError as e:
            logger.error("Session spawn failed: %s", e)
            self._hub.reply(observer, ErrorEvent(message=str(e)))

    def _start_capture(self, observer: Observer, message: ScreenshotRequest) -> None:
        logger.info("Screenshot requested (trigger=%s)", message.trigger)
        task = asyncio.create_task(self._capture(observer))
        self._captures.add(task)
        task.add_done_callback(self._captures.discard)

    async def _capture(self, observer: Observer) -> None:
        if self._screenshots is None:
            self._hub.reply(observer, ErrorEvent(message="Screenshot capture unavailable"))
            return
        try:
            shot = await self._screenshots.capture()
        except CaptureError as e:
            logger.warning("Screenshot failed: %s", e)
            self._hub.reply(observer, ErrorEvent(message=f"Screenshot failed: {e}"))
            return
        logger.info("Screenshot captured (%d bytes)", len(shot.image))
        self._hub.reply(observer, ScreenshotEvent(data_url=shot.data_url, source=shot.source))

    async def close(self) -> None:
        """Cancel screenshot captures still in flight."""
        tasks = list(self._captures)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._screenshots is not None:
            await self._screenshots.close()


def _first_error(error: ValidationError) -> str:
    details = error.errors(include_url=False)
    if not details:
        return "invalid"
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first['msg']}" if location else first["msg"]
