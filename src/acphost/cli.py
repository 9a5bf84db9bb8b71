"""Root CLI group and version flag."""

import signal

import click

from acphost import __version__
from acphost.commands.chat import chat
from acphost.commands.mcp import mcp

# Keep a closed stdout pipe from killing the process mid-echo.
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)


@click.group()
@click.version_option(version=__version__, prog_name="acphost")
def cli() -> None:
    """acphost — host an ACP coding agent from the command line."""


cli.add_command(chat)
cli.add_command(mcp)
