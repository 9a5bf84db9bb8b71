"""Agent supervisor — owns the adapter process and its protocol connection."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from acphost.agent.client import AgentClient
from acphost.agent.helpers import ConversationMessage, build_first_prompt, report_message_error
from acphost.agent.permissions import PermissionBroker, PermissionDecision
from acphost.agent.relay import NotificationRelay
from acphost.agent.sessions import SessionRegistry
from acphost.config.models import HostConfig
from acphost.config.parser import ConfigError
from acphost.constants import (
    ACP_PROTOCOL_VERSION,
    METHOD_INITIALIZE,
    METHOD_SESSION_CANCEL,
    METHOD_SESSION_NEW,
    METHOD_SESSION_PROMPT,
    STOP_REASON_MAX_TOKENS,
)
from acphost.events.emitter import EventEmitter
from acphost.events.models import (
    AgentExitedEvent,
    AgentMaxTokensEvent,
    AgentMessageCompleteEvent,
    AgentReadyEvent,
    RequestId,
)
from acphost.protocol.connection import Connection
from acphost.protocol.envelope import ConnectionClosedError, RpcError
from acphost.shutdown import drain_tasks, terminate_process
from acphost.terminal import TerminalManager

logger = logging.getLogger(__name__)

#: Seconds to wait for the adapter's return code after its output closed.
_EXIT_CODE_WAIT = 2.0

_MAX_TOKENS_MESSAGE = (
    "The response stopped because the model reached its maximum output length."
)


class NotConnectedError(Exception):
    """Raised when an operation needs a running adapter and there is none."""


class AdapterStartError(Exception):
    """Raised when the adapter cannot be spawned or fails to initialize."""


class AgentSupervisor:
    """Lifecycle owner of one adapter process.

    ``start()`` spawns the adapter and performs the initialize handshake;
    ``stop()`` tears everything down and unblocks every waiter.  Each
    ``send_message`` runs as its own tracked task, so messages for
    different working directories proceed concurrently.

    If the adapter exits on its own the supervisor emits ``agent-exited``
    and becomes not-running; a new ``start()`` is required.
    """

    def __init__(self, config: HostConfig | None = None, emitter: EventEmitter | None = None) -> None:
        self._config = config or HostConfig()
        self.emitter = emitter or EventEmitter()

        self._lifecycle_lock = asyncio.Lock()
        self._process: asyncio.subprocess.Process | None = None
        self._connection: Connection | None = None
        self._ready = False
        self._stopping = False
        self._exit_task: asyncio.Task[None] | None = None

        self.terminals = TerminalManager(
            default_output_byte_limit=self._config.terminals.default_output_byte_limit,
            poll_interval=self._config.terminals.poll_interval,
        )
        self.relay = NotificationRelay(self.emitter)
        self.broker = PermissionBroker(self.emitter, self.relay.current_request_id)
        self.sessions = SessionRegistry(
            self._new_session,
            self.emitter,
            mcp_config_name=self._config.sessions.mcp_config_name,
        )
        self._client = AgentClient(
            self.emitter,
            self.broker,
            self.terminals,
            fs_enabled=self._config.client.fs,
            terminal_enabled=self._config.client.terminal,
        )

        self._message_tasks: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._ready and self._connection is not None and not self._connection.closed

    @property
    def pid(self) -> int | None:
        if self._process is not None and self._process.returncode is None:
            return self._process.pid
        return None

    @property
    def pending_messages(self) -> int:
        return len(self._message_tasks)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self, api_key: str | None = None) -> None:
        """Spawn the adapter and complete the initialize handshake.

        A no-op when already running.  *api_key*, when given, is passed
        through the configured environment variable; otherwise the
        adapter uses whatever authentication it finds on its own.

        Raises:
            AdapterStartError: Spawn failed, or initialize failed or timed out.
        """
        async with self._lifecycle_lock:
            if self.running:
                logger.debug("Adapter already running")
                return
            if self._connection is not None or self._process is not None:
                # The previous adapter died and its exit has not been handled yet.
                await self._reap_exited()
            await self._spawn(api_key)

    async def stop(self) -> None:
        """Stop the adapter and fail every outstanding wait.  Idempotent."""
        async with self._lifecycle_lock:
            if self._process is None and self._connection is None:
                return
            self._stopping = True
            try:
                await self._teardown("agent stopped")
            finally:
                self._stopping = False
            logger.info("Adapter stopped")

    async def _spawn(self, api_key: str | None) -> None:
        adapter = self._config.adapter
        env = dict(os.environ)
        if api_key:
            env[adapter.api_key_env] = api_key

        logger.info("Starting adapter: %s", " ".join(adapter.command))
        try:
            process = await asyncio.create_subprocess_exec(
                *adapter.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,
                env=env,
                limit=adapter.max_line_bytes,
            )
        except FileNotFoundError as exc:
            msg = f"Adapter command not found: {adapter.command[0]}"
            raise AdapterStartError(msg) from exc
        except OSError as exc:
            msg = f"Failed to spawn adapter: {exc}"
            raise AdapterStartError(msg) from exc

        assert process.stdin is not None and process.stdout is not None
        self._process = process
        connection = Connection(
            process.stdout,
            process.stdin,
            self._client.handle_request,
            self.relay.handle_notification,
            name=f"adapter[{process.pid}]",
            on_close=self._on_connection_close,
        )
        self._connection = connection
        connection.start()

        try:
            result = await asyncio.wait_for(
                connection.request(METHOD_INITIALIZE, self._initialize_params()),
                timeout=adapter.initialize_timeout,
            )
        except (RpcError, ConnectionClosedError, TimeoutError) as exc:
            reason = str(exc) or "initialize timed out"
            await self._teardown(f"initialize failed: {reason}")
            msg = f"Adapter failed to initialize: {reason}"
            raise AdapterStartError(msg) from exc

        version = result.get("protocolVersion") if isinstance(result, dict) else None
        if version is not None and version != ACP_PROTOCOL_VERSION:
            logger.warning(
                "Adapter speaks protocol version %s (host speaks %s)",
                version,
                ACP_PROTOCOL_VERSION,
            )
        self._ready = True
        logger.info("Adapter ready (pid %d)", process.pid)
        self.emitter.emit(AgentReadyEvent())

    def _initialize_params(self) -> dict[str, Any]:
        client = self._config.client
        return {
            "protocolVersion": ACP_PROTOCOL_VERSION,
            "clientCapabilities": {
                "fs": {"readTextFile": client.fs, "writeTextFile": client.fs},
                "terminal": client.terminal,
            },
            "clientInfo": {"name": client.name, "version": client.version},
        }

    async def _teardown(self, reason: str) -> None:
        """Release everything tied to the current adapter process."""
        self._ready = False
        connection, self._connection = self._connection, None
        process, self._process = self._process, None

        self.broker.fail_all(ConnectionClosedError(reason))
        if connection is not None:
            await connection.close(reason)

        current = asyncio.current_task()
        tasks = [t for t in self._message_tasks if t is not current]
        cancelled = await drain_tasks(tasks, self._config.adapter.drain_timeout)
        if cancelled:
            logger.info("Cancelled %d in-flight message(s)", cancelled)

        await self.terminals.shutdown()
        if process is not None:
            await terminate_process(
                process, self._config.adapter.shutdown_timeout, name="adapter"
            )

        self.sessions.clear()
        self.relay.reset()

    def _on_connection_close(self, connection: Connection) -> None:
        if self._stopping or not self._ready or connection is not self._connection:
            return
        logger.error("Adapter connection lost unexpectedly")
        self._exit_task = asyncio.create_task(self._handle_unexpected_exit(connection))

    async def _handle_unexpected_exit(self, connection: Connection) -> None:
        async with self._lifecycle_lock:
            if connection is not self._connection:
                return
            await self._reap_exited()

    async def _reap_exited(self) -> None:
        """Tear down after the adapter ended on its own; emit ``agent-exited``.

        Must be called with the lifecycle lock held.
        """
        process = self._process
        exit_code: int | None = None
        if process is not None:
            with contextlib.suppress(TimeoutError):
                exit_code = await asyncio.wait_for(process.wait(), timeout=_EXIT_CODE_WAIT)
        await self._teardown("adapter exited")
        logger.error("Adapter exited unexpectedly (code %s)", exit_code)
        self.emitter.emit(AgentExitedEvent(exit_code=exit_code))

    # ------------------------------------------------------------------ #
    # Messages
    # ------------------------------------------------------------------ #

    def send_message(
        self,
        request_id: RequestId,
        message: str,
        working_directory: str | Path,
        system_prompt: str | None = None,
        history: Sequence[ConversationMessage | dict[str, Any]] | None = None,
    ) -> asyncio.Task[None]:
        """Send *message* to the session for *working_directory*.

        Returns the task that carries the exchange; its outcome is reported
        as ``agent-message-complete`` (optionally preceded by
        ``agent-max-tokens``) or ``agent-message-error``.

        Raises:
            NotConnectedError: The adapter is not running.
        """
        connection = self._require_connection()
        turns = [ConversationMessage.model_validate(turn) for turn in history or []]
        task = asyncio.create_task(
            self._run_message(
                connection, request_id, message, str(working_directory), system_prompt, turns
            )
        )
        self._message_tasks.add(task)
        task.add_done_callback(self._message_done)
        return task

    async def _run_message(
        self,
        connection: Connection,
        request_id: RequestId,
        message: str,
        working_directory: str,
        system_prompt: str | None,
        history: list[ConversationMessage],
    ) -> None:
        try:
            session_id, created = await self.sessions.resolve_or_create(working_directory)
        except (ConfigError, RpcError, ConnectionClosedError, NotConnectedError) as exc:
            report_message_error(
                self.emitter, request_id, f"Failed to create session: {exc}", logger
            )
            return
        except asyncio.CancelledError:
            report_message_error(self.emitter, request_id, "Agent stopped", logger)
            raise

        text = build_first_prompt(message, system_prompt, history) if created else message
        self.relay.set_current_request_id(request_id, session_id)

        logger.info("request %s: prompting session %s", request_id, session_id)
        try:
            result = await connection.request(
                METHOD_SESSION_PROMPT,
                {"sessionId": session_id, "prompt": [{"type": "text", "text": text}]},
            )
        except RpcError as exc:
            report_message_error(self.emitter, request_id, exc.message, logger)
            return
        except ConnectionClosedError as exc:
            report_message_error(self.emitter, request_id, f"Agent connection lost: {exc}", logger)
            return
        except asyncio.CancelledError:
            report_message_error(self.emitter, request_id, "Agent stopped", logger)
            raise

        stop_reason = "end_turn"
        if isinstance(result, dict) and result.get("stopReason"):
            stop_reason = str(result["stopReason"])
        logger.info("request %s: completed (%s)", request_id, stop_reason)

        if stop_reason == STOP_REASON_MAX_TOKENS:
            self.emitter.emit(
                AgentMaxTokensEvent(request_id=request_id, message=_MAX_TOKENS_MESSAGE)
            )
        self.emitter.emit(AgentMessageCompleteEvent(request_id=request_id, stop_reason=stop_reason))

    def _message_done(self, task: asyncio.Task[None]) -> None:
        self._message_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Message task failed: %s", task.exception())

    async def cancel_message(self, working_directory: str | Path) -> bool:
        """Ask the adapter to stop the turn running for *working_directory*.

        Outstanding permission requests of that session resolve as
        cancelled.  Returns False when the directory has no session.
        """
        connection = self._require_connection()
        session_id = self.sessions.get(working_directory)
        if session_id is None:
            return False
        logger.info("Cancelling turn for session %s", session_id)
        await connection.notify(METHOD_SESSION_CANCEL, {"sessionId": session_id})
        self.broker.cancel_session(session_id)
        return True

    def submit_permission_decision(self, decision: PermissionDecision) -> None:
        """Forward the observer's decision to the waiting permission request.

        Raises:
            UnknownPermissionRequestError: No outstanding request has that id.
        """
        self.broker.submit(decision)

    # ------------------------------------------------------------------ #
    # Internal
    # ------------------------------------------------------------------ #

    def _require_connection(self) -> Connection:
        if not self.running or self._connection is None:
            msg = "Agent is not running; call start() first"
            raise NotConnectedError(msg)
        return self._connection

    async def _new_session(self, cwd: str, mcp_servers: list[dict[str, Any]]) -> str:
        connection = self._require_connection()
        result = await connection.request(
            METHOD_SESSION_NEW, {"cwd": cwd, "mcpServers": mcp_servers}
        )
        session_id = result.get("sessionId") if isinstance(result, dict) else None
        if not isinstance(session_id, str) or not session_id:
            raise RpcError.internal_error(f"session/new returned no sessionId: {result!r}")
        return session_id
