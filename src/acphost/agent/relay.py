"""Notification relay — session updates from the agent to the observer."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from acphost.constants import METHOD_SESSION_UPDATE
from acphost.events.emitter import EventEmitter
from acphost.events.models import (
    AgentMessageChunkEvent,
    ModeUpdateEvent,
    RequestId,
    ToolCallEvent,
    ToolCallLocation,
    ToolCallUpdateEvent,
    UserMessageChunkEvent,
)

logger = logging.getLogger(__name__)

#: Update kinds accepted but not surfaced to the observer yet.
_IGNORED_UPDATES = frozenset(
    {"agent_thought_chunk", "plan", "available_commands_update"}
)


class NotificationRelay:
    """Translates each ``session/update`` into exactly one observer event.

    Events are tagged with the logical request id that was current for
    the session when the update arrived.  The caller sets it right before
    issuing a prompt; it stays in force until the next prompt replaces it.
    """

    def __init__(self, emitter: EventEmitter) -> None:
        self._emitter = emitter
        self._by_session: dict[str, RequestId] = {}
        self._latest: RequestId | None = None

    def set_current_request_id(
        self,
        request_id: RequestId,
        session_id: str | None = None,
    ) -> None:
        """Mark *request_id* as the one in flight (for *session_id*)."""
        self._latest = request_id
        if session_id is not None:
            self._by_session[session_id] = request_id

    def current_request_id(self, session_id: str | None = None) -> RequestId | None:
        """Request id in force for *session_id*, else the most recent one."""
        if session_id is not None and session_id in self._by_session:
            return self._by_session[session_id]
        return self._latest

    def reset(self) -> None:
        self._by_session.clear()
        self._latest = None

    async def handle_notification(self, method: str, params: Any) -> None:
        """Connection notification handler."""
        if method != METHOD_SESSION_UPDATE:
            logger.debug("Ignoring notification %s", method)
            return
        if not isinstance(params, dict):
            logger.warning("session/update without params object: %r", params)
            return
        session_id = params.get("sessionId")
        update = params.get("update")
        if not isinstance(session_id, str) or not isinstance(update, dict):
            logger.warning("Malformed session/update: %r", params)
            return
        self.relay_update(session_id, update)

    def relay_update(self, session_id: str, update: dict[str, Any]) -> None:
        """Emit the observer event for one update of *session_id*."""
        kind = update.get("sessionUpdate")
        try:
            self._dispatch(session_id, kind, update)
        except (KeyError, TypeError, ValidationError) as exc:
            logger.warning("Malformed %s update for session %s: %s", kind, session_id, exc)

    def _dispatch(self, session_id: str, kind: Any, update: dict[str, Any]) -> None:
        request_id = self.current_request_id(session_id)

        match kind:
            case "agent_message_chunk":
                text = _text_of(update.get("content"))
                if text is None:
                    logger.debug("Agent chunk was not text: %r", update.get("content"))
                    return
                self._emitter.emit(
                    AgentMessageChunkEvent(
                        session_id=session_id, request_id=request_id, text=text
                    )
                )

            case "user_message_chunk":
                text = _text_of(update.get("content"))
                if text is None:
                    return
                self._emitter.emit(UserMessageChunkEvent(session_id=session_id, text=text))

            case "tool_call":
                locations = [
                    ToolCallLocation.model_validate(loc)
                    for loc in update.get("locations") or []
                ]
                self._emitter.emit(
                    ToolCallEvent(
                        session_id=session_id,
                        request_id=request_id,
                        tool_call_id=update["toolCallId"],
                        title=update.get("title") or "",
                        status=update.get("status") or "pending",
                        kind=update.get("kind") or "other",
                        raw_input=update.get("rawInput"),
                        locations=locations,
                    )
                )

            case "tool_call_update":
                self._emitter.emit(
                    ToolCallUpdateEvent(
                        session_id=session_id,
                        request_id=request_id,
                        tool_call_id=update["toolCallId"],
                        status=update.get("status"),
                        content=update.get("content"),
                    )
                )

            case "current_mode_update":
                self._emitter.emit(
                    ModeUpdateEvent(session_id=session_id, mode=str(update["currentModeId"]))
                )

            case _ if kind in _IGNORED_UPDATES:
                logger.debug("%s update (not displayed)", kind)

            case _:
                logger.debug("Unknown session update kind %r (ignored)", kind)


def _text_of(content: Any) -> str | None:
    """Return the text of a text content block, else None."""
    if isinstance(content, dict) and content.get("type") == "text":
        text = content.get("text")
        if isinstance(text, str):
            return text
    return None
