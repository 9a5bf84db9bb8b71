"""Observer events — models, fan-out emitter and JSONL recorder."""

from acphost.events.emitter import EventEmitter
from acphost.events.models import (
    AgentExitedEvent,
    AgentMaxTokensEvent,
    AgentMessageChunkEvent,
    AgentMessageCompleteEvent,
    AgentMessageErrorEvent,
    AgentReadyEvent,
    ModeUpdateEvent,
    ObserverEvent,
    PermissionOption,
    PermissionRequestEvent,
    SessionCreatedEvent,
    TerminalCreatedEvent,
    TerminalOutputEvent,
    ToolCallEvent,
    ToolCallLocation,
    ToolCallUpdateEvent,
    UserMessageChunkEvent,
)
from acphost.events.recorder import EventRecorder

__all__ = [
    "AgentExitedEvent",
    "AgentMaxTokensEvent",
    "AgentMessageChunkEvent",
    "AgentMessageCompleteEvent",
    "AgentMessageErrorEvent",
    "AgentReadyEvent",
    "EventEmitter",
    "EventRecorder",
    "ModeUpdateEvent",
    "ObserverEvent",
    "PermissionOption",
    "PermissionRequestEvent",
    "SessionCreatedEvent",
    "TerminalCreatedEvent",
    "TerminalOutputEvent",
    "ToolCallEvent",
    "ToolCallLocation",
    "ToolCallUpdateEvent",
    "UserMessageChunkEvent",
]
