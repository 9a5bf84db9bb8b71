"""Permission broker — blocking approval round-trips to the observer."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from acphost.events.emitter import EventEmitter
from acphost.events.models import PermissionOption, PermissionRequestEvent, RequestId
from acphost.protocol.envelope import RpcError

logger = logging.getLogger(__name__)


class UnknownPermissionRequestError(Exception):
    """A decision named a request id that is not outstanding."""


class PermissionDecision(BaseModel):
    """The observer's answer to a ``permission-request`` event."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    request_id: str
    option_id: str | None = None
    cancelled: bool = False


class _ToolCallRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    tool_call_id: str
    title: str | None = None
    kind: str | None = None
    raw_input: Any = None


class _RequestPermissionParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    session_id: str
    tool_call: _ToolCallRef
    options: list[PermissionOption] = Field(default_factory=list)


@dataclass
class PendingPermission:
    """Correlation record for one outstanding permission request."""

    request_id: str
    session_id: str
    tool_call_id: str
    options: list[PermissionOption]
    future: asyncio.Future[PermissionDecision] = field(repr=False)


class PermissionBroker:
    """Turns ``session/request_permission`` into an observer round-trip.

    Every outstanding request owns its own future, keyed by a fresh
    correlation id, so a decision can only ever wake the waiter it was
    issued for.
    """

    def __init__(
        self,
        emitter: EventEmitter,
        current_request_id: Callable[[str], RequestId | None] | None = None,
    ) -> None:
        self._emitter = emitter
        self._current_request_id = current_request_id
        self._pending: dict[str, PendingPermission] = {}

    @property
    def pending(self) -> list[PendingPermission]:
        """Snapshot of outstanding requests."""
        return list(self._pending.values())

    async def request_permission(self, params: Any) -> dict[str, Any]:
        """Handle one agent permission request and return the ACP response."""
        try:
            request = _RequestPermissionParams.model_validate(params)
        except ValidationError as exc:
            raise RpcError.invalid_params(str(exc.errors()[0]["msg"])) from exc

        request_id = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        record = PendingPermission(
            request_id=request_id,
            session_id=request.session_id,
            tool_call_id=request.tool_call.tool_call_id,
            options=request.options,
            future=loop.create_future(),
        )
        self._pending[request_id] = record

        current = None
        if self._current_request_id is not None:
            current = self._current_request_id(request.session_id)

        logger.info(
            "Permission request %s for tool call %s",
            request_id,
            request.tool_call.tool_call_id,
        )
        try:
            self._emitter.emit(
                PermissionRequestEvent(
                    request_id=request_id,
                    session_id=request.session_id,
                    tool_call_id=request.tool_call.tool_call_id,
                    title=request.tool_call.title or "",
                    kind=request.tool_call.kind or "",
                    raw_input=request.tool_call.raw_input,
                    options=request.options,
                    current_request_id=current,
                )
            )
            decision = await record.future
        finally:
            self._pending.pop(request_id, None)

        return _to_outcome(decision)

    def submit(self, decision: PermissionDecision) -> None:
        """Deliver *decision* to the waiter that issued its request id.

        Raises:
            UnknownPermissionRequestError: No outstanding request has that id
                (never issued, already answered, or torn down).
        """
        record = self._pending.pop(decision.request_id, None)
        if record is None or record.future.done():
            msg = f"No outstanding permission request with id {decision.request_id!r}"
            raise UnknownPermissionRequestError(msg)
        record.future.set_result(decision)

    def cancel_session(self, session_id: str) -> int:
        """Resolve every outstanding request of *session_id* as cancelled."""
        count = 0
        for request_id, record in list(self._pending.items()):
            if record.session_id != session_id:
                continue
            self._pending.pop(request_id, None)
            if not record.future.done():
                record.future.set_result(
                    PermissionDecision(request_id=request_id, cancelled=True)
                )
                count += 1
        return count

    def fail_all(self, exc: BaseException) -> None:
        """Fail every outstanding wait with *exc* (used during shutdown)."""
        for record in self._pending.values():
            if not record.future.done():
                record.future.set_exception(exc)
        self._pending.clear()


def _to_outcome(decision: PermissionDecision) -> dict[str, Any]:
    if decision.cancelled:
        return {"outcome": {"outcome": "cancelled"}}
    if decision.option_id:
        return {"outcome": {"outcome": "selected", "optionId": decision.option_id}}
    raise RpcError.internal_error(
        "permission decision carried neither an option nor a cancellation"
    )
