"""Configuration models and loaders for acphost.yaml and .mcp.json."""

from acphost.config.mcp import McpConfig, McpServerConfig, load_mcp_config
from acphost.config.models import (
    AdapterConfig,
    ClientConfig,
    HostConfig,
    SessionsConfig,
    TerminalsConfig,
)
from acphost.config.parser import ConfigError, load_config

__all__ = [
    "AdapterConfig",
    "ClientConfig",
    "ConfigError",
    "HostConfig",
    "McpConfig",
    "McpServerConfig",
    "SessionsConfig",
    "TerminalsConfig",
    "load_config",
    "load_mcp_config",
]
