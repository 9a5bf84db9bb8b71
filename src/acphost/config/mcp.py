"""Per-workspace MCP server configuration (``.mcp.json``)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from acphost.config.parser import ConfigError, format_validation_error
from acphost.constants import DEFAULT_MCP_CONFIG_NAME


class McpServerConfig(BaseModel):
    """One stdio MCP server entry."""

    model_config = ConfigDict(extra="ignore")

    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class McpConfig(BaseModel):
    """Contents of a ``.mcp.json`` file."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    mcp_servers: dict[str, McpServerConfig] = Field(
        default_factory=dict,
        alias="mcpServers",
    )

    def to_acp_servers(self) -> list[dict[str, Any]]:
        """Convert to the ACP ``session/new`` stdio server shape."""
        return [
            {
                "name": name,
                "command": server.command,
                "args": list(server.args),
                "env": [{"name": k, "value": v} for k, v in server.env.items()],
            }
            for name, server in self.mcp_servers.items()
        ]


def load_mcp_config(
    working_dir: Path,
    file_name: str = DEFAULT_MCP_CONFIG_NAME,
) -> McpConfig:
    """Load the MCP config stored in *working_dir*.

    A missing file means "no MCP servers" and is not an error.

    Raises:
        ConfigError: The file exists but cannot be read or parsed.
    """
    path = Path(working_dir) / file_name
    if not path.is_file():
        return McpConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        msg = f"Failed to read MCP config {path}: {exc}"
        raise ConfigError(msg) from exc
    except json.JSONDecodeError as exc:
        msg = f"Failed to parse MCP config {path}: {exc}"
        raise ConfigError(msg) from exc

    try:
        return McpConfig.model_validate(raw)
    except ValidationError as exc:
        msg = f"Invalid MCP config {path}:\n{format_validation_error(exc)}"
        raise ConfigError(msg) from exc
