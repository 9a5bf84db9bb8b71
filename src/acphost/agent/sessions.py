"""Session registry — one adapter session per working directory."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from acphost.config.mcp import load_mcp_config
from acphost.constants import DEFAULT_MCP_CONFIG_NAME
from acphost.events.emitter import EventEmitter
from acphost.events.models import SessionCreatedEvent

logger = logging.getLogger(__name__)

#: Creates a session on the adapter: ``(cwd, mcp_servers) -> session_id``.
SessionFactory = Callable[[str, list[dict[str, Any]]], Awaitable[str]]


class SessionRegistry:
    """Resolves a working-directory key to an adapter session id.

    Creation is serialized per key with one ``asyncio.Lock`` each, so
    concurrent first messages for the same directory create exactly one
    session while different directories never wait on each other.

    There is no per-session teardown; ``clear()`` drops everything when
    the adapter stops.
    """

    def __init__(
        self,
        create_session: SessionFactory,
        emitter: EventEmitter,
        mcp_config_name: str = DEFAULT_MCP_CONFIG_NAME,
    ) -> None:
        self._create_session = create_session
        self._emitter = emitter
        self._mcp_config_name = mcp_config_name
        self._sessions: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._generation = 0

    def __len__(self) -> int:
        return len(self._sessions)

    @staticmethod
    def normalize_key(working_dir: str | Path) -> str:
        return str(Path(working_dir))

    def get(self, working_dir: str | Path) -> str | None:
        """Return the session id for *working_dir*, if one exists."""
        return self._sessions.get(self.normalize_key(working_dir))

    def working_dir_for(self, session_id: str) -> str | None:
        """Reverse lookup: which working directory owns *session_id*."""
        for key, sid in self._sessions.items():
            if sid == session_id:
                return key
        return None

    async def resolve_or_create(self, working_dir: str | Path) -> tuple[str, bool]:
        """Return ``(session_id, created)`` for *working_dir*.

        ``created`` is True only for the single call that actually made
        the session, which is the call that must send history.

        Raises:
            ConfigError: The workspace's MCP config file is malformed.
            RpcError / ConnectionClosedError: The adapter refused or went away.
        """
        key = self.normalize_key(working_dir)
        existing = self._sessions.get(key)
        if existing is not None:
            return existing, False

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            existing = self._sessions.get(key)
            if existing is not None:
                return existing, False

            generation = self._generation
            mcp_servers = load_mcp_config(Path(key), self._mcp_config_name).to_acp_servers()
            logger.info(
                "Creating session for %s (%d MCP server(s))", key, len(mcp_servers)
            )
            session_id = await self._create_session(key, mcp_servers)

            if generation != self._generation:
                # Registry was cleared (adapter stopped) while we waited.
                logger.debug("Discarding session %s created before a clear", session_id)
                return session_id, True

            self._sessions[key] = session_id
            self._emitter.emit(SessionCreatedEvent(session_id=session_id))
            logger.info("Session created for %s: %s", key, session_id)
            return session_id, True

    def clear(self) -> None:
        """Forget every session.  In-flight creations will not be stored."""
        self._generation += 1
        self._sessions.clear()
        self._locks.clear()
