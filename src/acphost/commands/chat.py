"""acphost chat — talk to the agent from an interactive REPL."""

from __future__ import annotations

import asyncio
import functools
import itertools
import logging
import select
import sys
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any

import click

from acphost.agent.permissions import PermissionDecision, UnknownPermissionRequestError
from acphost.agent.supervisor import AdapterStartError, AgentSupervisor, NotConnectedError
from acphost.config.models import HostConfig
from acphost.config.parser import ConfigError, load_config
from acphost.events.emitter import EventEmitter
from acphost.events.recorder import EventRecorder
from acphost.shutdown import format_duration


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
    help="Working directory the agent session is bound to.",
)
@click.option(
    "--api-key",
    default=None,
    help="API key handed to the adapter (otherwise it authenticates on its own).",
)
@click.option(
    "--record",
    "record_dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Append every observer event to a JSONL file in this directory.",
)
@click.option(
    "--system-prompt",
    default=None,
    help="System prompt folded into the first message of the session.",
)
@click.option("--debug", is_flag=True, help="Enable debug logging.")
def chat(
    config_file: str | None,
    workdir: str,
    api_key: str | None,
    record_dir: str | None,
    system_prompt: str | None,
    debug: bool,
) -> None:
    """Start the agent adapter and enter the interactive REPL."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    work_dir = Path(workdir).resolve()
    if not work_dir.is_dir():
        click.echo(f"Error: working directory does not exist: {work_dir}", err=True)
        raise SystemExit(1)

    asyncio.run(
        _run_chat(
            config,
            work_dir,
            api_key,
            Path(record_dir) if record_dir else None,
            system_prompt,
        )
    )


# ------------------------------------------------------------------ #
# Event rendering
# ------------------------------------------------------------------ #


class ChatRenderer:
    """Observer that prints events and queues permission questions.

    Permission requests are answered by the next REPL line, so they are
    kept in arrival order until answered or the turn ends.
    """

    def __init__(self) -> None:
        self.pending_permissions: deque[dict[str, Any]] = deque()
        #: Set when the adapter dies, so a blocked stdin read can give up.
        self.exited = threading.Event()
        self._mid_line = False

    def __call__(self, name: str, payload: dict[str, Any]) -> None:
        match name:
            case "agent-message-chunk":
                click.echo(payload["text"], nl=False)
                self._mid_line = not payload["text"].endswith("\n")
            case "tool-call":
                self._line(click.style(f"[tool] {payload['title']} ({payload['kind']})", fg="cyan"))
            case "tool-call-update":
                if payload.get("status") in ("completed", "failed"):
                    color = "green" if payload["status"] == "completed" else "red"
                    self._line(
                        click.style(f"[tool] {payload['toolCallId']} {payload['status']}", fg=color)
                    )
            case "permission-request":
                self.pending_permissions.append(payload)
                if len(self.pending_permissions) == 1:
                    self._show_permission(payload)
            case "terminal-created":
                self._line(click.style(f"$ {payload['command']}", dim=True))
            case "mode-update":
                self._line(click.style(f"[mode] {payload['mode']}", dim=True))
            case "agent-session-created":
                self._line(click.style(f"[session {payload['sessionId']}]", dim=True))
            case "agent-max-tokens":
                self._line(click.style(payload["message"], fg="yellow"))
            case "agent-message-complete":
                self.pending_permissions.clear()
                self._line(click.style(f"(done: {payload['stopReason']})", dim=True))
            case "agent-message-error":
                self.pending_permissions.clear()
                self._line(click.style(f"Error: {payload['error']}", fg="red"), err=True)
            case "agent-exited":
                self.exited.set()
                self._line(
                    click.style(f"Agent exited (code {payload['exitCode']})", fg="red"), err=True
                )

    def next_permission(self) -> dict[str, Any] | None:
        return self.pending_permissions[0] if self.pending_permissions else None

    def answered(self) -> None:
        """Drop the head question and show the next one, if any."""
        if self.pending_permissions:
            self.pending_permissions.popleft()
        if self.pending_permissions:
            self._show_permission(self.pending_permissions[0])

    def _show_permission(self, payload: dict[str, Any]) -> None:
        self._line(click.style(f"Permission requested: {payload['title']}", fg="yellow", bold=True))
        for index, option in enumerate(payload["options"], start=1):
            click.echo(f"  {index}. {option['name']} ({option['kind']})")
        click.echo("Answer with an option number, or 'c' to cancel.")

    def _line(self, text: str, err: bool = False) -> None:
        if self._mid_line:
            click.echo()
            self._mid_line = False
        click.echo(text, err=err)


def parse_permission_answer(
    answer: str, payload: dict[str, Any]
) -> PermissionDecision | None:
    """Turn a REPL answer into a decision, or None if it is not valid."""
    answer = answer.strip().lower()
    request_id = payload["requestId"]
    if answer in ("c", "cancel"):
        return PermissionDecision(request_id=request_id, cancelled=True)
    options = payload["options"]
    if answer.isdigit() and 1 <= int(answer) <= len(options):
        return PermissionDecision(
            request_id=request_id, option_id=options[int(answer) - 1]["optionId"]
        )
    return None


# ------------------------------------------------------------------ #
# Session runner
# ------------------------------------------------------------------ #


async def _run_chat(
    config: HostConfig,
    work_dir: Path,
    api_key: str | None,
    record_dir: Path | None,
    system_prompt: str | None,
) -> None:
    """Start the supervisor, run the REPL, and always stop cleanly."""
    start_time = time.monotonic()
    emitter = EventEmitter()
    renderer = ChatRenderer()
    emitter.subscribe(renderer)

    recorder = EventRecorder(record_dir) if record_dir is not None else None
    if recorder is not None:
        emitter.subscribe(recorder)

    supervisor = AgentSupervisor(config, emitter)
    click.echo(f"Starting agent: {' '.join(config.adapter.command)}")
    try:
        await supervisor.start(api_key)
    except AdapterStartError as exc:
        click.echo(f"Error: {exc}", err=True)
        if recorder is not None:
            recorder.close()
        raise SystemExit(1) from exc

    click.echo(f"Agent ready. Working directory: {work_dir}")
    click.echo("Type a message, /cancel to stop the current turn, /quit to exit.")

    turns = 0
    try:
        turns = await _repl_loop(supervisor, renderer, work_dir, system_prompt)
    finally:
        await supervisor.stop()
        if recorder is not None:
            recorder.close()

    summary = [
        "\nSession ended",
        format_duration(time.monotonic() - start_time),
        f"{turns} message(s)",
    ]
    click.echo(" | ".join(summary))
    if recorder is not None:
        click.echo(f"Log: {recorder.events_file}")


async def _repl_loop(
    supervisor: AgentSupervisor,
    renderer: ChatRenderer,
    work_dir: Path,
    system_prompt: str | None,
) -> int:
    """Read lines until /quit or EOF.  Returns the number of messages sent."""
    loop = asyncio.get_running_loop()
    request_ids = itertools.count(1)
    current: asyncio.Task[None] | None = None
    sent = 0

    while supervisor.running:
        try:
            line = await loop.run_in_executor(
                None, functools.partial(_read_input, renderer.exited)
            )
        except EOFError:
            break

        line = line.strip()
        if not line:
            continue

        if line.startswith("/"):
            cmd = line.split()[0].lower()
            if cmd == "/quit":
                break
            if cmd == "/cancel":
                await _cancel_turn(supervisor, renderer, work_dir, current)
                continue
            click.echo(f"Unknown command: {cmd}")
            continue

        question = renderer.next_permission()
        if question is not None:
            _answer_permission(supervisor, renderer, question, line)
            continue

        if current is not None and not current.done():
            click.echo("A turn is still running; wait for it or use /cancel.")
            continue

        try:
            current = supervisor.send_message(
                next(request_ids),
                line,
                work_dir,
                system_prompt=system_prompt,
            )
        except NotConnectedError as exc:
            click.echo(f"Error: {exc}", err=True)
            break
        sent += 1

    if not supervisor.running:
        click.echo("Agent is no longer running.", err=True)
    return sent


async def _cancel_turn(
    supervisor: AgentSupervisor,
    renderer: ChatRenderer,
    work_dir: Path,
    current: asyncio.Task[None] | None,
) -> None:
    if current is None or current.done():
        click.echo("Nothing to cancel.")
        return
    try:
        cancelled = await supervisor.cancel_message(work_dir)
    except NotConnectedError as exc:
        click.echo(f"Error: {exc}", err=True)
        return
    renderer.pending_permissions.clear()
    click.echo("Cancel requested." if cancelled else "No session to cancel yet.")


def _answer_permission(
    supervisor: AgentSupervisor,
    renderer: ChatRenderer,
    question: dict[str, Any],
    answer: str,
) -> None:
    decision = parse_permission_answer(answer, question)
    if decision is None:
        click.echo("Please answer with an option number or 'c'.")
        return
    try:
        supervisor.submit_permission_decision(decision)
    except UnknownPermissionRequestError:
        click.echo("That permission request is no longer pending.")
    renderer.answered()


def _read_input(cancel: threading.Event | None = None) -> str:
    """Blocking stdin reader for use with ``run_in_executor``.

    Polls with ``select`` so the thread notices *cancel* between polls
    and raises ``EOFError`` instead of blocking on a dead stdin.
    """
    sys.stdout.write("> ")
    sys.stdout.flush()

    while cancel is None or not cancel.is_set():
        ready, _, _ = select.select([sys.stdin], [], [], 0.5)
        if ready:
            break
        if cancel is None:
            break

    if cancel is not None and cancel.is_set():
        raise EOFError

    line = sys.stdin.readline()
    if not line:
        raise EOFError
    return line.rstrip("\n")
