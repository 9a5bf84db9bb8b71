"""Pydantic v2 models for events emitted to the external observer.

Each model's camelCase dump *is* the payload contract the UI consumes;
the event name lives on the class as ``event_name``.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RequestId = int | str


class _EventBase(BaseModel):
    """Common configuration shared by every observer event."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        alias_generator=to_camel,
    )

    event_name: ClassVar[str] = ""

    def payload(self) -> dict[str, Any]:
        """Return the JSON-ready payload with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


class AgentReadyEvent(_EventBase):
    """The adapter finished the initialize handshake."""

    event_name: ClassVar[str] = "agent-ready"


class AgentExitedEvent(_EventBase):
    """The adapter process went away without ``stop()`` being called."""

    event_name: ClassVar[str] = "agent-exited"

    exit_code: int | None = Field(default=None, description="Adapter return code")


class SessionCreatedEvent(_EventBase):
    """A new adapter session was created for a working directory."""

    event_name: ClassVar[str] = "agent-session-created"

    session_id: str = Field(description="Adapter-assigned session id")


class AgentMessageChunkEvent(_EventBase):
    """A streamed piece of assistant text."""

    event_name: ClassVar[str] = "agent-message-chunk"

    session_id: str
    request_id: RequestId | None = Field(description="Logical request in flight")
    text: str


class UserMessageChunkEvent(_EventBase):
    """A replayed piece of user text (history replay)."""

    event_name: ClassVar[str] = "user-message-chunk"

    session_id: str
    text: str


class ToolCallLocation(BaseModel):
    """A file location touched by a tool call."""

    model_config = ConfigDict(extra="ignore")

    path: str
    line: int | None = None


class ToolCallEvent(_EventBase):
    """The agent started a tool call."""

    event_name: ClassVar[str] = "tool-call"

    session_id: str
    request_id: RequestId | None
    tool_call_id: str
    title: str
    status: str
    kind: str
    raw_input: Any = None
    locations: list[ToolCallLocation] = Field(default_factory=list)


class ToolCallUpdateEvent(_EventBase):
    """Fields of an existing tool call changed."""

    event_name: ClassVar[str] = "tool-call-update"

    session_id: str
    request_id: RequestId | None
    tool_call_id: str
    status: str | None = None
    content: Any = None


class ModeUpdateEvent(_EventBase):
    """The session's current mode changed."""

    event_name: ClassVar[str] = "mode-update"

    session_id: str
    mode: str


class PermissionOption(BaseModel):
    """One choice offered to the user for a permission request."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        alias_generator=to_camel,
    )

    option_id: str
    name: str
    kind: str


class PermissionRequestEvent(_EventBase):
    """The agent asks the user to approve a tool call."""

    event_name: ClassVar[str] = "permission-request"

    request_id: str = Field(description="Correlation id for the decision")
    session_id: str
    tool_call_id: str
    title: str
    kind: str
    raw_input: Any = None
    options: list[PermissionOption] = Field(default_factory=list)
    current_request_id: RequestId | None = Field(
        default=None,
        description="Logical request the tool call belongs to, for UI correlation",
    )


class AgentMessageCompleteEvent(_EventBase):
    """A prompt finished."""

    event_name: ClassVar[str] = "agent-message-complete"

    request_id: RequestId
    stop_reason: str


class AgentMessageErrorEvent(_EventBase):
    """A prompt failed."""

    event_name: ClassVar[str] = "agent-message-error"

    request_id: RequestId
    error: str


class AgentMaxTokensEvent(_EventBase):
    """A prompt stopped because the model hit its output token limit."""

    event_name: ClassVar[str] = "agent-max-tokens"

    request_id: RequestId
    message: str


class TerminalCreatedEvent(_EventBase):
    """A terminal was spawned on the agent's behalf."""

    event_name: ClassVar[str] = "terminal-created"

    session_id: str
    terminal_id: str
    command: str


class TerminalOutputEvent(_EventBase):
    """The agent polled a terminal's output."""

    event_name: ClassVar[str] = "terminal-output"

    terminal_id: str
    output: str
    exit_status: int | None = None


ObserverEvent = (
    AgentReadyEvent
    | AgentExitedEvent
    | SessionCreatedEvent
    | AgentMessageChunkEvent
    | UserMessageChunkEvent
    | ToolCallEvent
    | ToolCallUpdateEvent
    | ModeUpdateEvent
    | PermissionRequestEvent
    | AgentMessageCompleteEvent
    | AgentMessageErrorEvent
    | AgentMaxTokensEvent
    | TerminalCreatedEvent
    | TerminalOutputEvent
)
"""Union of every event the host emits."""
