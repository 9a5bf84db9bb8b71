"""Agent-facing components: supervisor, sessions, permissions and relay."""

from acphost.agent.client import AgentClient
from acphost.agent.helpers import ConversationMessage, build_first_prompt
from acphost.agent.permissions import (
    PermissionBroker,
    PermissionDecision,
    UnknownPermissionRequestError,
)
from acphost.agent.relay import NotificationRelay
from acphost.agent.sessions import SessionRegistry
from acphost.agent.supervisor import AdapterStartError, AgentSupervisor, NotConnectedError

__all__ = [
    "AdapterStartError",
    "AgentClient",
    "AgentSupervisor",
    "ConversationMessage",
    "NotConnectedError",
    "NotificationRelay",
    "PermissionBroker",
    "PermissionDecision",
    "SessionRegistry",
    "UnknownPermissionRequestError",
    "build_first_prompt",
]
