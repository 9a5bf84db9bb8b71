"""Shared constants and type aliases for the acphost runtime."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

#: JSON-RPC protocol version stamped on every envelope.
JSONRPC_VERSION = "2.0"

#: ACP protocol version sent in the initialize handshake.
ACP_PROTOCOL_VERSION = 1

#: Default adapter command (the Zed Claude Code ACP adapter via npx).
DEFAULT_ADAPTER_COMMAND = ["npx", "@zed-industries/claude-code-acp"]

#: Environment variable that carries an explicit API key to the adapter.
DEFAULT_API_KEY_ENV = "ANTHROPIC_API_KEY"

#: Default terminal output ceiling in bytes.
DEFAULT_OUTPUT_BYTE_LIMIT = 1_000_000

#: Default per-workspace MCP server config file name.
DEFAULT_MCP_CONFIG_NAME = ".mcp.json"

# Client -> agent methods.
METHOD_INITIALIZE = "initialize"
METHOD_SESSION_NEW = "session/new"
METHOD_SESSION_PROMPT = "session/prompt"
METHOD_SESSION_CANCEL = "session/cancel"

# Agent -> client methods.
METHOD_SESSION_UPDATE = "session/update"
METHOD_FS_READ = "fs/read_text_file"
METHOD_FS_WRITE = "fs/write_text_file"
METHOD_TERMINAL_CREATE = "terminal/create"
METHOD_TERMINAL_OUTPUT = "terminal/output"
METHOD_TERMINAL_KILL = "terminal/kill"
METHOD_TERMINAL_RELEASE = "terminal/release"
METHOD_TERMINAL_WAIT = "terminal/wait_for_exit"

#: Stop reason reported when the model ran out of output tokens.
STOP_REASON_MAX_TOKENS = "max_tokens"

#: Callback type for event observers: ``(event_name, payload)``.
Observer = Callable[[str, dict[str, Any]], None]
