"""Connection — correlated JSON-RPC over a pair of byte streams."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from acphost.protocol.envelope import (
    ConnectionClosedError,
    Envelope,
    RequestId,
    RpcError,
    decode_line,
    encode_envelope,
)

logger = logging.getLogger(__name__)

#: Handles an inbound request; the return value becomes ``result``.
RequestHandler = Callable[[str, Any], Awaitable[Any]]

#: Handles an inbound notification.  Called inline, in arrival order.
NotificationHandler = Callable[[str, Any], Awaitable[None]]

#: Max characters of an offending line to include in log messages.
_PREVIEW_LEN = 200


class StreamReader(Protocol):
    async def readline(self) -> bytes: ...


class StreamWriter(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class Connection:
    """A live protocol channel over an adapter's stdout/stdin.

    One background task owns the reader.  Outgoing requests are correlated
    with their responses by id through one future per request, so any
    number of exchanges can be in flight at once.  Inbound requests run on
    their own tasks and never block the read loop; inbound notifications
    are awaited inline so their order is preserved.
    """

    def __init__(
        self,
        reader: StreamReader,
        writer: StreamWriter,
        request_handler: RequestHandler,
        notification_handler: NotificationHandler,
        name: str = "adapter",
        on_close: Callable[[Connection], None] | None = None,
    ) -> None:
        self.name = name
        self._reader = reader
        self._writer = writer
        self._request_handler = request_handler
        self._notification_handler = notification_handler
        self._on_close = on_close

        self._ids = itertools.count(1)
        self._pending: dict[RequestId, asyncio.Future[Any]] = {}
        self._handler_tasks: set[asyncio.Task[None]] = set()
        self._write_lock = asyncio.Lock()
        self._read_task: asyncio.Task[None] | None = None
        self._closed = False

        #: Responses that matched no outstanding request.
        self.unmatched_responses = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_requests(self) -> int:
        """Number of outgoing requests still awaiting a response."""
        return len(self._pending)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Begin the background read loop."""
        if self._read_task is None:
            self._read_task = asyncio.create_task(self._read_loop())

    async def close(self, reason: str = "connection closed") -> None:
        """Tear down the connection.  Idempotent.

        Every pending request future fails with ``ConnectionClosedError``
        and in-flight handler tasks are cancelled.  Also used after the
        read loop has seen EOF, to reap handlers still running.
        """
        self._mark_closed(reason)

        current = asyncio.current_task()
        if self._read_task is not None and self._read_task is not current:
            self._read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._read_task

        handlers = [t for t in self._handler_tasks if t is not current]
        for task in handlers:
            task.cancel()
        if handlers:
            await asyncio.gather(*handlers, return_exceptions=True)

    def _mark_closed(self, reason: str) -> None:
        """Flip to closed, fail waiters and fire ``on_close`` exactly once."""
        if self._closed:
            return
        self._closed = True
        logger.debug("%s: connection closed: %s", self.name, reason)

        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(
                    ConnectionClosedError(
                        f"{self.name}: {reason} before request {request_id} completed"
                    )
                )
        self._pending.clear()

        if self._on_close is not None:
            try:
                self._on_close(self)
            except Exception:
                logger.exception("%s: on_close callback failed", self.name)

    # ------------------------------------------------------------------ #
    # Outgoing
    # ------------------------------------------------------------------ #

    async def request(self, method: str, params: Any = None) -> Any:
        """Send a request and wait for its correlated response.

        Raises:
            RpcError: The peer answered with an error object.
            ConnectionClosedError: The transport ended first.
        """
        if self._closed:
            msg = f"{self.name}: cannot send {method!r}, connection is closed"
            raise ConnectionClosedError(msg)

        request_id = next(self._ids)
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._pending[request_id] = future

        try:
            await self._send(Envelope.request(request_id, method, params))
        except ConnectionClosedError:
            self._pending.pop(request_id, None)
            raise

        try:
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Any = None) -> None:
        """Send a notification (no response expected)."""
        if self._closed:
            msg = f"{self.name}: cannot send {method!r}, connection is closed"
            raise ConnectionClosedError(msg)
        await self._send(Envelope.notification(method, params))

    async def _send(self, envelope: Envelope) -> None:
        data = encode_envelope(envelope)
        async with self._write_lock:
            try:
                self._writer.write(data)
                await self._writer.drain()
            except (BrokenPipeError, ConnectionResetError, OSError) as exc:
                logger.error("%s: write failed: %s", self.name, exc)
                self._mark_closed(f"write failed: {exc}")
                raise ConnectionClosedError(f"{self.name}: write failed: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Incoming
    # ------------------------------------------------------------------ #

    async def _read_loop(self) -> None:
        """Read envelopes until EOF and dispatch them."""
        reason = "adapter closed its output"
        try:
            while True:
                try:
                    line = await self._reader.readline()
                except ValueError as exc:
                    # Line exceeded the reader limit; the reader discarded it.
                    logger.error("%s: oversized protocol line skipped: %s", self.name, exc)
                    continue
                if not line:
                    break
                if not line.strip():
                    continue
                await self._dispatch_line(line)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("%s: read loop error", self.name)
            reason = f"read loop error: {exc}"
        self._mark_closed(reason)

    async def _dispatch_line(self, line: bytes) -> None:
        try:
            envelope = decode_line(line)
        except RpcError as exc:
            preview = line[:_PREVIEW_LEN].decode("utf-8", errors="replace").strip()
            logger.error("%s: malformed envelope (%s): %s", self.name, exc, preview)
            with contextlib.suppress(ConnectionClosedError):
                await self._send(Envelope.failure(None, exc))
            return

        match envelope.kind:
            case "response":
                self._resolve(envelope)
            case "request":
                task = asyncio.create_task(self._handle_request(envelope))
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_done)
            case "notification":
                try:
                    await self._notification_handler(envelope.method or "", envelope.params)
                except Exception:
                    logger.exception(
                        "%s: notification handler failed for %s",
                        self.name,
                        envelope.method,
                    )

    def _resolve(self, envelope: Envelope) -> None:
        future = self._pending.pop(envelope.id, None) if envelope.id is not None else None
        if future is None or future.done():
            self.unmatched_responses += 1
            logger.warning(
                "%s: response for unknown or already-resolved request id %r",
                self.name,
                envelope.id,
            )
            return
        if envelope.error is not None:
            future.set_exception(RpcError.from_object(envelope.error))
        else:
            future.set_result(envelope.result)

    async def _handle_request(self, envelope: Envelope) -> None:
        method = envelope.method or ""
        try:
            result = await self._request_handler(method, envelope.params)
        except RpcError as exc:
            reply = Envelope.failure(envelope.id, exc)
        except (asyncio.CancelledError, ConnectionClosedError):
            raise
        except Exception as exc:
            logger.exception("%s: handler for %s failed", self.name, method)
            reply = Envelope.failure(envelope.id, RpcError.internal_error(str(exc)))
        else:
            reply = Envelope.success(envelope.id, result)

        if self._closed:
            return
        with contextlib.suppress(ConnectionClosedError):
            await self._send(reply)

    def _handler_done(self, task: asyncio.Task[None]) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            exc = task.exception()
            if not isinstance(exc, ConnectionClosedError):
                logger.error("%s: request handler task error: %s", self.name, exc)
