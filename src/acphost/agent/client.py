"""Agent callback dispatch — requests the adapter makes of the host."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from acphost.agent.permissions import PermissionBroker
from acphost.constants import (
    METHOD_FS_READ,
    METHOD_FS_WRITE,
    METHOD_TERMINAL_CREATE,
    METHOD_TERMINAL_KILL,
    METHOD_TERMINAL_OUTPUT,
    METHOD_TERMINAL_RELEASE,
    METHOD_TERMINAL_WAIT,
)
from acphost.events.emitter import EventEmitter
from acphost.events.models import TerminalCreatedEvent, TerminalOutputEvent
from acphost.protocol.envelope import RpcError
from acphost.terminal import (
    Terminal,
    TerminalManager,
    TerminalNotFoundError,
    TerminalSpawnError,
)

logger = logging.getLogger(__name__)

_TERMINAL_METHODS = frozenset(
    {
        METHOD_TERMINAL_CREATE,
        METHOD_TERMINAL_OUTPUT,
        METHOD_TERMINAL_KILL,
        METHOD_TERMINAL_RELEASE,
        METHOD_TERMINAL_WAIT,
    }
)

_ParamsT = TypeVar("_ParamsT", bound=BaseModel)


class _Params(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")


class ReadTextFileParams(_Params):
    session_id: str
    path: str
    line: int | None = Field(default=None, ge=1, description="1-based first line")
    limit: int | None = Field(default=None, ge=0, description="Maximum lines to return")


class WriteTextFileParams(_Params):
    session_id: str
    path: str
    content: str


class EnvVariable(_Params):
    name: str
    value: str


class CreateTerminalParams(_Params):
    session_id: str
    command: str
    args: list[str] = Field(default_factory=list)
    env: list[EnvVariable] = Field(default_factory=list)
    cwd: str | None = None
    output_byte_limit: int | None = Field(default=None, ge=0)


class TerminalRefParams(_Params):
    session_id: str
    terminal_id: str


def _parse(model: type[_ParamsT], params: Any) -> _ParamsT:
    try:
        return model.model_validate(params if params is not None else {})
    except ValidationError as exc:
        error = exc.errors()[0]
        loc = ".".join(str(part) for part in error["loc"])
        raise RpcError.invalid_params(f"{loc}: {error['msg']}" if loc else error["msg"]) from exc


def _exit_status(terminal: Terminal) -> dict[str, Any] | None:
    if not terminal.exited:
        return None
    code = terminal.exit_code
    return {
        "exitCode": code if code is not None and code >= 0 else None,
        "signal": terminal.signal,
    }


class AgentClient:
    """Request handler bound to the adapter connection.

    Each call returns the ACP ``result`` object or raises ``RpcError``,
    which the connection turns into the error response.
    """

    def __init__(
        self,
        emitter: EventEmitter,
        broker: PermissionBroker,
        terminals: TerminalManager,
        fs_enabled: bool = True,
        terminal_enabled: bool = True,
    ) -> None:
        self._emitter = emitter
        self._broker = broker
        self._terminals = terminals
        self._fs_enabled = fs_enabled
        self._terminal_enabled = terminal_enabled

    async def handle_request(self, method: str, params: Any) -> Any:
        if method in (METHOD_FS_READ, METHOD_FS_WRITE) and not self._fs_enabled:
            raise RpcError.method_not_found(method)
        if method in _TERMINAL_METHODS and not self._terminal_enabled:
            raise RpcError.method_not_found(method)

        match method:
            case "session/request_permission":
                return await self._broker.request_permission(params)
            case "fs/read_text_file":
                return self.read_text_file(_parse(ReadTextFileParams, params))
            case "fs/write_text_file":
                return self.write_text_file(_parse(WriteTextFileParams, params))
            case "terminal/create":
                return await self.create_terminal(_parse(CreateTerminalParams, params))
            case "terminal/output":
                return self.terminal_output(_parse(TerminalRefParams, params))
            case "terminal/kill":
                ref = _parse(TerminalRefParams, params)
                self._terminal_call(self._terminals.kill, ref.terminal_id)
                return {}
            case "terminal/release":
                ref = _parse(TerminalRefParams, params)
                self._terminal_call(self._terminals.release, ref.terminal_id)
                return {}
            case "terminal/wait_for_exit":
                return await self.wait_for_terminal_exit(_parse(TerminalRefParams, params))
            case _:
                logger.warning("Agent called unsupported method %s", method)
                raise RpcError.method_not_found(method)

    # ------------------------------------------------------------------ #
    # File system
    # ------------------------------------------------------------------ #

    def read_text_file(self, params: ReadTextFileParams) -> dict[str, Any]:
        path = Path(params.path)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise RpcError.resource_not_found({"path": params.path}) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise RpcError.internal_error(f"Failed to read {params.path}: {exc}") from exc

        if params.line is not None or params.limit is not None:
            lines = content.splitlines(keepends=True)
            start = (params.line or 1) - 1
            end = start + params.limit if params.limit is not None else None
            content = "".join(lines[start:end])

        logger.debug("Read %s (%d chars)", path, len(content))
        return {"content": content}

    def write_text_file(self, params: WriteTextFileParams) -> dict[str, Any]:
        path = Path(params.path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(params.content, encoding="utf-8")
        except OSError as exc:
            raise RpcError.internal_error(f"Failed to write {params.path}: {exc}") from exc
        logger.info("Wrote %s (%d chars)", path, len(params.content))
        return {}

    # ------------------------------------------------------------------ #
    # Terminals
    # ------------------------------------------------------------------ #

    async def create_terminal(self, params: CreateTerminalParams) -> dict[str, Any]:
        env = {var.name: var.value for var in params.env}
        cwd = Path(params.cwd).resolve() if params.cwd else None
        try:
            terminal = await self._terminals.create(
                params.command,
                params.args,
                env=env,
                cwd=cwd,
                output_byte_limit=params.output_byte_limit,
            )
        except TerminalSpawnError as exc:
            raise RpcError.internal_error(str(exc)) from exc

        self._emitter.emit(
            TerminalCreatedEvent(
                session_id=params.session_id,
                terminal_id=terminal.id,
                command=terminal.command_line,
            )
        )
        return {"terminalId": terminal.id}

    def terminal_output(self, params: TerminalRefParams) -> dict[str, Any]:
        terminal = self._terminal_call(self._terminals.get, params.terminal_id)
        self._emitter.emit(
            TerminalOutputEvent(
                terminal_id=terminal.id,
                output=terminal.output,
                exit_status=terminal.exit_code,
            )
        )
        return {
            "output": terminal.output,
            "truncated": terminal.truncated,
            "exitStatus": _exit_status(terminal),
        }

    async def wait_for_terminal_exit(self, params: TerminalRefParams) -> dict[str, Any]:
        try:
            terminal = await self._terminals.wait_for_exit(params.terminal_id)
        except TerminalNotFoundError as exc:
            raise RpcError.resource_not_found({"terminalId": params.terminal_id}) from exc
        return _exit_status(terminal) or {"exitCode": None, "signal": None}

    @staticmethod
    def _terminal_call(func: Any, terminal_id: str) -> Any:
        try:
            return func(terminal_id)
        except TerminalNotFoundError as exc:
            raise RpcError.resource_not_found({"terminalId": terminal_id}) from exc
