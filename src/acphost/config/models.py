"""Pydantic v2 models for acphost.yaml configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from acphost import __version__
from acphost.constants import (
    DEFAULT_ADAPTER_COMMAND,
    DEFAULT_API_KEY_ENV,
    DEFAULT_MCP_CONFIG_NAME,
    DEFAULT_OUTPUT_BYTE_LIMIT,
)


class AdapterConfig(BaseModel):
    """How to launch and talk to the agent adapter process."""

    model_config = ConfigDict(extra="forbid")

    command: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ADAPTER_COMMAND),
        description="Adapter argv, e.g. ['npx', '@zed-industries/claude-code-acp']",
    )
    api_key_env: str = Field(
        default=DEFAULT_API_KEY_ENV,
        description="Env var that receives an explicitly supplied API key",
    )
    initialize_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds to wait for the initialize handshake",
    )
    shutdown_timeout: float = Field(
        default=5.0,
        ge=0,
        description="Seconds between SIGTERM and SIGKILL on stop",
    )
    drain_timeout: float = Field(
        default=2.0,
        ge=0,
        description="Seconds to let in-flight messages settle on stop",
    )
    max_line_bytes: int = Field(
        default=50 * 1024 * 1024,
        gt=0,
        description="Maximum size of one protocol line from the adapter",
    )

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, value: list[str]) -> list[str]:
        if not value or not value[0]:
            msg = "Adapter command must name an executable"
            raise ValueError(msg)
        return value


class TerminalsConfig(BaseModel):
    """Limits for terminals spawned on the agent's behalf."""

    model_config = ConfigDict(extra="forbid")

    default_output_byte_limit: int = Field(
        default=DEFAULT_OUTPUT_BYTE_LIMIT,
        gt=0,
        description="Output ceiling when the agent does not specify one",
    )
    poll_interval: float = Field(
        default=0.1,
        gt=0,
        description="Seconds between exit checks in wait_for_exit",
    )


class SessionsConfig(BaseModel):
    """Per-workspace session settings."""

    model_config = ConfigDict(extra="forbid")

    mcp_config_name: str = Field(
        default=DEFAULT_MCP_CONFIG_NAME,
        description="MCP server config file looked up in each working directory",
    )


class ClientConfig(BaseModel):
    """What the host advertises about itself during initialize."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="acphost", description="Client name")
    version: str = Field(default=__version__, description="Client version")
    fs: bool = Field(default=True, description="Serve fs/* requests")
    terminal: bool = Field(default=True, description="Serve terminal/* requests")


class HostConfig(BaseModel):
    """Top-level acphost.yaml configuration.  Every section is optional."""

    model_config = ConfigDict(extra="forbid")

    adapter: AdapterConfig = Field(default_factory=AdapterConfig)
    terminals: TerminalsConfig = Field(default_factory=TerminalsConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
