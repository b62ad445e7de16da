"""Core domain models for the termbridge system.

These models represent the data flowing over the bridge: the session
snapshot shown to clients, the inbound requests a client can send, and
the outbound events the bridge broadcasts or replies with. Wire names
are camelCase (``sessionId``, ``hasError``); Python attributes are
snake_case.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for everything that crosses the websocket."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Session Models
# ---------------------------------------------------------------------------


class SessionInfo(WireModel):
    """Snapshot of one registered terminal session."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=1, description="Registry-assigned id, never reused")
    name: str = Field(description="Display name; may collide across sessions")
    cwd: str = Field(description="Working directory at creation time")
    alive: bool = Field(default=True, description="Whether the shell process is running")


class CompletionResult(BaseModel):
    """Outcome of one closed command-capture window."""

    model_config = ConfigDict(frozen=True)

    output: str = Field(description="Captured output, ANSI-stripped and trimmed")
    has_error: bool = Field(description="Whether any error pattern matched")

    @property
    def exit_code(self) -> int:
        """Exit-code surrogate: 1 if an error pattern matched, else 0."""
        return 1 if self.has_error else 0


# ---------------------------------------------------------------------------
# Inbound Messages (discriminated union)
# ---------------------------------------------------------------------------


class CreateSession(WireModel):
    type: Literal["create_session"] = "create_session"
    name: str | None = None
    cwd: str | None = None


class RemoveSession(WireModel):
    type: Literal["remove_session"] = "remove_session"
    session_id: int


class SelectSession(WireModel):
    type: Literal["select_session"] = "select_session"
    session_id: int


class Prompt(WireModel):
    """Text to type into a session, optionally followed by Enter."""

    type: Literal["prompt"] = "prompt"
    text: str
    session_id: int | None = None
    auto_execute: bool = True


class ScreenshotRequest(WireModel):
    type: Literal["screenshot_request"] = "screenshot_request"
    trigger: str | None = Field(default=None, description="Informational only")


class RefreshSessions(WireModel):
    type: Literal["refresh_sessions"] = "refresh_sessions"


class CaptureReady(WireModel):
    """Sent by the browser when it enters screen-capture mode."""

    type: Literal["capture_ready"] = "capture_ready"


InboundMessage = Annotated[
    Union[
        CreateSession,
        RemoveSession,
        SelectSession,
        Prompt,
        ScreenshotRequest,
        RefreshSessions,
        CaptureReady,
    ],
    Field(discriminator="type"),
]

inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound(raw: str | bytes) -> InboundMessage:
    """Decode one JSON frame into an inbound message.

    Raises:
        pydantic.ValidationError: If the frame is not valid JSON or does
            not match any known message type.
    """
    return inbound_adapter.validate_json(raw)


# ---------------------------------------------------------------------------
# Outbound Events
# ---------------------------------------------------------------------------


class BridgeEvent(WireModel):
    """Base class for events sent to observers."""

    model_config = ConfigDict(frozen=True)

    type: str

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ConnectedEvent(BridgeEvent):
    type: Literal["connected"] = "connected"
    port: int


class SessionsEvent(BridgeEvent):
    type: Literal["sessions"] = "sessions"
    sessions: list[SessionInfo] = Field(default_factory=list, alias="list")
    active_id: int | None = None


class SessionSelectedEvent(BridgeEvent):
    type: Literal["session_selected"] = "session_selected"
    active_id: int | None = None


class OutputEvent(BridgeEvent):
    """Raw terminal output, ANSI codes intact."""

    type: Literal["output"] = "output"
    text: str
    session_id: int
    session_name: str


class CommandCompleteEvent(BridgeEvent):
    type: Literal["command_complete"] = "command_complete"
    session_id: int
    session_name: str
    output: str
    exit_code: int
    has_error: bool


class ErrorDetectedEvent(BridgeEvent):
    type: Literal["error_detected"] = "error_detected"
    session_id: int
    output: str


class AckEvent(BridgeEvent):
    type: Literal["ack"] = "ack"
    status: str = "sent"
    session_id: int
    session_name: str


class ErrorEvent(BridgeEvent):
    type: Literal["error"] = "error"
    message: str


class ScreenshotEvent(BridgeEvent):
    type: Literal["screenshot"] = "screenshot"
    data_url: str
    source: str
