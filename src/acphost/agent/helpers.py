"""Shared helper functions for the agent-facing components."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict

from acphost.events.emitter import EventEmitter
from acphost.events.models import AgentMessageErrorEvent, RequestId


class ConversationMessage(BaseModel):
    """One prior turn supplied by the caller on first contact."""

    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"]
    content: str


def build_first_prompt(
    message: str,
    system_prompt: str | None = None,
    history: list[ConversationMessage] | None = None,
) -> str:
    """Fold the system prompt and prior turns into the first prompt's text.

    History is rendered once, as plain text, so the adapter's own context
    accounting stays authoritative; it is never replayed as separate turns.
    """
    parts: list[str] = []
    if system_prompt:
        parts.append(system_prompt.strip())

    if history:
        lines = ["# Previous Conversation:"]
        for turn in history:
            speaker = "User" if turn.role == "user" else "Assistant"
            lines.append(f"\n{speaker}: {turn.content}")
        lines.append("\n# Current Request:")
        parts.append("\n".join(lines))

    if not parts:
        return message
    parts.append(message)
    return "\n\n".join(parts)


def report_message_error(
    emitter: EventEmitter,
    request_id: RequestId,
    error_msg: str,
    logger: logging.Logger | None = None,
) -> None:
    """Log and emit an ``agent-message-error`` event in one call."""
    if logger:
        logger.error("request %s: %s", request_id, error_msg)
    emitter.emit(AgentMessageErrorEvent(request_id=request_id, error=error_msg))
