"""acphost mcp — show the MCP servers a session would be given."""

from __future__ import annotations

import json
from pathlib import Path

import click

from acphost.config.mcp import load_mcp_config
from acphost.config.parser import ConfigError, load_config


@click.command()
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
@click.option(
    "-C",
    "--workdir",
    type=click.Path(file_okay=False),
    default=".",
    show_default=True,
    help="Working directory whose MCP config is read.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the ACP server list as JSON.")
def mcp(config_file: str | None, workdir: str, as_json: bool) -> None:
    """List the MCP servers passed to a new session in WORKDIR."""
    try:
        config = load_config(Path(config_file) if config_file else None)
        file_name = config.sessions.mcp_config_name
        servers = load_mcp_config(Path(workdir), file_name).to_acp_servers()
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    if as_json:
        click.echo(json.dumps(servers, indent=2))
        return

    if not servers:
        click.echo(f"No MCP servers configured ({Path(workdir) / file_name} not found or empty)")
        return

    click.echo(f"{len(servers)} MCP server(s) from {Path(workdir) / file_name}:")
    for server in servers:
        command = " ".join([server["command"], *server["args"]])
        click.echo(f"  {click.style(server['name'], bold=True)}: {command}")
        for var in server["env"]:
            click.echo(f"      {var['name']}=…")
