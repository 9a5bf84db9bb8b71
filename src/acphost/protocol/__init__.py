"""Protocol envelope codec and correlated JSON-RPC connection."""

from acphost.protocol.connection import Connection
from acphost.protocol.envelope import (
    ConnectionClosedError,
    Envelope,
    RpcError,
    RpcErrorObject,
    decode_line,
    encode_envelope,
)

__all__ = [
    "Connection",
    "ConnectionClosedError",
    "Envelope",
    "RpcError",
    "RpcErrorObject",
    "decode_line",
    "encode_envelope",
]
