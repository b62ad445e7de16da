"""FastAPI application for the terminal bridge.

Clients connect a websocket to ``/`` and exchange JSON frames with the
bridge. On startup one default session is spawned; on shutdown every
session's shell is killed before the server exits.

    WS   /         <- {"type": "prompt", "text": "ls", "sessionId": 1}
                   -> {"type": "output", "text": "...", "sessionId": 1, ...}
    GET  /health   -> {"status": "ok", "sessions": 1, ...}
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from termbridge.bridge.handler import BridgeProtocolHandler
from termbridge.bridge.hub import BroadcastHub
from termbridge.capture.base import ScreenshotSource
from termbridge.capture.platforms import create_screenshot_source
from termbridge.config.settings import Settings
from termbridge.terminal.pty_session import SpawnError
from termbridge.terminal.registry import SessionRegistry, TerminalFactory, pty_factory

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str = "ok"
    sessions: int = 0
    active_id: int | None = None
    observers: int = 0


def create_app(
    settings: Settings | None = None,
    terminal_factory: TerminalFactory | None = None,
    screenshots: ScreenshotSource | None = None,
    spawn_default_session: bool = True,
) -> FastAPI:
    """Create the bridge application.

    Args:
        settings: Service configuration; defaults apply when None.
        terminal_factory: Optional terminal builder (for testing). Real
            pty shells are used when None.
        screenshots: Optional pre-configured screenshot source (for
            testing). The platform's native tool is used when None.
        spawn_default_session: Whether to start one session at startup.
    """
    settings = settings or Settings()
    term = settings.terminal

    hub = BroadcastHub(max_pending=settings.bridge.max_pending_messages)
    registry = SessionRegistry(
        emit=hub.broadcast,
        terminal_factory=terminal_factory or pty_factory(
            shell_command=term.shell_command,
            shell_args=term.shell_args,
            env=term.env,
            rows=term.rows,
            cols=term.cols,
            term=term.term,
            kill_grace=term.kill_grace,
        ),
        default_cwd=term.default_cwd,
        default_name=term.default_session_name,
        idle_timeout=term.idle_timeout,
    )
    if screenshots is None:
        shot = settings.screenshot
        screenshots = create_screenshot_source(
            timeout=shot.timeout, poll_interval=shot.poll_interval, auto_paste=shot.auto_paste,
        )
    handler = BridgeProtocolHandler(registry, hub, screenshots, port=settings.bridge.port)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Bridge listening on port %d", settings.bridge.port)
        logger.info("Shell: %s", term.shell_command)
        logger.info("CWD:   %s", term.default_cwd)
        if spawn_default_session:
            try:
                await registry.create()
            except SpawnError as e:
                logger.error("Default session failed to start: %s", e)
        logger.info("Ready")
        yield
        logger.info("Shutting down...")
        await handler.close()
        await registry.close_all()
        await hub.close_all()
        logger.info("Bridge stopped")

    app = FastAPI(
        title="termbridge",
        description="Terminal session bridge for chat-style web clients",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.hub = hub
    app.state.registry = registry
    app.state.handler = handler

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="ok",
            sessions=len(registry),
            active_id=registry.active_id,
            observers=len(hub),
        )

    @app.websocket("/")
    async def bridge_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        observer = hub.register(websocket)
        handler.on_connect(observer)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await handler.handle(observer, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await hub.unregister(observer)

    return app
