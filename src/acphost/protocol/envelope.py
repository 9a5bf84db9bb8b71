"""Line-delimited JSON-RPC envelope model and codec."""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from acphost.constants import JSONRPC_VERSION

# Standard JSON-RPC 2.0 error codes.
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# ACP extension: the referenced resource (file, terminal) does not exist.
RESOURCE_NOT_FOUND = -32002

EnvelopeKind = Literal["request", "response", "notification"]

RequestId = int | str


class RpcErrorObject(BaseModel):
    """The ``error`` member of a failed response."""

    model_config = ConfigDict(extra="allow")

    code: int = Field(description="JSON-RPC error code")
    message: str = Field(description="Short error description")
    data: Any = Field(default=None, description="Optional structured detail")


class RpcError(Exception):
    """A protocol-level error, raised by handlers or received from the peer."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        if self.data is None:
            return f"{self.message} (code {self.code})"
        return f"{self.message} (code {self.code}): {self.data}"

    def to_object(self) -> RpcErrorObject:
        if self.data is None:
            return RpcErrorObject(code=self.code, message=self.message)
        return RpcErrorObject(code=self.code, message=self.message, data=self.data)

    @classmethod
    def from_object(cls, obj: RpcErrorObject) -> RpcError:
        return cls(obj.code, obj.message, obj.data)

    @classmethod
    def parse_error(cls, data: Any = None) -> RpcError:
        return cls(PARSE_ERROR, "Parse error", data)

    @classmethod
    def invalid_request(cls, data: Any = None) -> RpcError:
        return cls(INVALID_REQUEST, "Invalid request", data)

    @classmethod
    def method_not_found(cls, method: str) -> RpcError:
        return cls(METHOD_NOT_FOUND, "Method not found", {"method": method})

    @classmethod
    def invalid_params(cls, data: Any = None) -> RpcError:
        return cls(INVALID_PARAMS, "Invalid params", data)

    @classmethod
    def internal_error(cls, data: Any = None) -> RpcError:
        return cls(INTERNAL_ERROR, "Internal error", data)

    @classmethod
    def resource_not_found(cls, data: Any = None) -> RpcError:
        return cls(RESOURCE_NOT_FOUND, "Resource not found", data)


class ConnectionClosedError(Exception):
    """Raised to every waiter when the transport goes away."""


class Envelope(BaseModel):
    """One protocol message.

    The kind is decided by which members are *present*, not by their
    values: ``{"id": null, "error": ...}`` is still a response.
    """

    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = JSONRPC_VERSION
    id: RequestId | None = None
    method: str | None = None
    params: Any = None
    result: Any = None
    error: RpcErrorObject | None = None

    @property
    def kind(self) -> EnvelopeKind | None:
        has_id = "id" in self.model_fields_set
        if self.method is not None:
            if has_id and self.id is not None:
                return "request"
            if not has_id:
                return "notification"
            return None
        if has_id:
            return "response"
        return None

    @classmethod
    def request(cls, request_id: RequestId, method: str, params: Any = None) -> Envelope:
        if params is None:
            return cls(jsonrpc=JSONRPC_VERSION, id=request_id, method=method)
        return cls(jsonrpc=JSONRPC_VERSION, id=request_id, method=method, params=params)

    @classmethod
    def notification(cls, method: str, params: Any = None) -> Envelope:
        if params is None:
            return cls(jsonrpc=JSONRPC_VERSION, method=method)
        return cls(jsonrpc=JSONRPC_VERSION, method=method, params=params)

    @classmethod
    def success(cls, request_id: RequestId | None, result: Any) -> Envelope:
        return cls(jsonrpc=JSONRPC_VERSION, id=request_id, result=result)

    @classmethod
    def failure(cls, request_id: RequestId | None, error: RpcError) -> Envelope:
        return cls(jsonrpc=JSONRPC_VERSION, id=request_id, error=error.to_object())


def encode_envelope(envelope: Envelope) -> bytes:
    """Serialize *envelope* as a single newline-terminated JSON line.

    Only members that were explicitly set are written, so a success
    response keeps ``"result": null`` while a request never grows one.
    """
    data = envelope.model_dump(mode="json", exclude_unset=True)
    data["jsonrpc"] = JSONRPC_VERSION
    return json.dumps(data, ensure_ascii=False).encode("utf-8") + b"\n"


def decode_line(line: bytes | str) -> Envelope:
    """Parse one protocol line into an :class:`Envelope`.

    Raises:
        RpcError: ``parse_error`` for invalid UTF-8 or JSON, ``invalid_request``
            for anything that is not a request, response or notification.
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise RpcError.parse_error(f"invalid UTF-8: {exc}") from exc
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as exc:
        raise RpcError.parse_error(str(exc)) from exc

    if not isinstance(raw, dict):
        raise RpcError.invalid_request(f"expected an object, got {type(raw).__name__}")

    try:
        envelope = Envelope.model_validate(raw)
    except ValidationError as exc:
        raise RpcError.invalid_request(str(exc.errors()[0]["msg"])) from exc

    if envelope.kind is None:
        raise RpcError.invalid_request("message is neither request, response nor notification")
    if envelope.kind == "response" and envelope.error is None and "result" not in raw:
        raise RpcError.invalid_request("response carries neither result nor error")
    return envelope
