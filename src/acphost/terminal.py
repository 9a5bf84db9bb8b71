"""Terminal supervisor — short-lived processes run on the agent's behalf."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import signal
import uuid
from collections import deque
from collections.abc import Coroutine, Mapping, Sequence
from pathlib import Path
from typing import Any

from acphost.constants import DEFAULT_OUTPUT_BYTE_LIMIT

logger = logging.getLogger(__name__)

#: Stream-reader line limit for terminal output (1 MB).
_MAX_LINE_BYTES = 1_048_576

#: Seconds to let output capture finish after the process has exited.
#: A grandchild holding the pipes open must not stall exit recording.
_DRAIN_WAIT = 1.0


class TerminalNotFoundError(Exception):
    """Raised when a terminal id is not (or no longer) registered."""


class TerminalSpawnError(Exception):
    """Raised when a terminal process cannot be started."""


def truncate_utf8_front(text: str, limit: int) -> str:
    """Drop bytes from the front of *text* until it fits in *limit* bytes.

    The cut is moved forward past any UTF-8 continuation bytes so a
    multi-byte character is never split; the result may therefore be a
    few bytes shorter than *limit*.
    """
    data = text.encode("utf-8")
    if len(data) <= limit:
        return text
    return data[_utf8_boundary(data, len(data) - limit):].decode("utf-8")


def _utf8_boundary(data: bytes, cut: int) -> int:
    """Move *cut* forward past UTF-8 continuation bytes."""
    while cut < len(data) and (data[cut] & 0xC0) == 0x80:
        cut += 1
    return cut


class Terminal:
    """A supervised child process and its bounded output buffer."""

    def __init__(
        self,
        terminal_id: str,
        command: str,
        args: list[str],
        process: asyncio.subprocess.Process,
        output_byte_limit: int,
        cwd: str | None = None,
    ) -> None:
        self.id = terminal_id
        self.command = command
        self.args = args
        self.cwd = cwd
        self.process = process
        self.output_byte_limit = output_byte_limit

        # Raw captured chunks; decoded lazily by ``output``.
        self._chunks: deque[bytes] = deque()
        self._output_bytes = 0
        self._decoded: str | None = ""

        #: True once output has been cut from the front at least once.
        self.truncated = False

        #: Raw OS return code; negative means killed by that signal.
        self.exit_code: int | None = None

    @property
    def output(self) -> str:
        if self._decoded is None:
            self._decoded = b"".join(self._chunks).decode("utf-8", errors="replace")
        return self._decoded

    @property
    def output_bytes(self) -> int:
        return self._output_bytes

    @property
    def exited(self) -> bool:
        return self.exit_code is not None

    @property
    def signal(self) -> str | None:
        """Name of the signal that ended the process, if any."""
        if self.exit_code is None or self.exit_code >= 0:
            return None
        try:
            return signal.Signals(-self.exit_code).name
        except ValueError:
            return f"SIG{-self.exit_code}"

    @property
    def command_line(self) -> str:
        return " ".join([self.command, *self.args]).strip()

    def append_output(self, chunk: bytes) -> None:
        """Append *chunk*, then trim the front to respect the byte ceiling.

        Whole chunks are dropped from the front; only the head chunk is sliced.
        """
        if not chunk:
            return
        self._chunks.append(chunk)
        self._output_bytes += len(chunk)
        self._decoded = None
        if self._output_bytes > self.output_byte_limit:
            self._trim_front(self._output_bytes - self.output_byte_limit)
            self.truncated = True

    def _trim_front(self, excess: int) -> None:
        while self._chunks and len(self._chunks[0]) <= excess:
            head = self._chunks.popleft()
            excess -= len(head)
            self._output_bytes -= len(head)

        # Cut inside the head chunk, never in the middle of a character.
        while self._chunks:
            head = self._chunks[0]
            cut = _utf8_boundary(head, excess)
            if cut < len(head):
                if cut:
                    self._chunks[0] = head[cut:]
                    self._output_bytes -= cut
                return
            self._chunks.popleft()
            self._output_bytes -= len(head)
            excess = 0


class TerminalManager:
    """Registry of terminals keyed by id.

    Each terminal gets two capture tasks (stdout, stderr) feeding one
    combined buffer, and one exit watcher that records the return code
    once the process has ended and capture has drained.  Killing a
    terminal never removes it; only ``release`` does.
    """

    # Shell metacharacters that require a shell interpreter.
    _SHELL_META_RE = re.compile(r"[|&;<>(){}\$`!]|2>&1")

    def __init__(
        self,
        default_output_byte_limit: int = DEFAULT_OUTPUT_BYTE_LIMIT,
        poll_interval: float = 0.1,
    ) -> None:
        self._default_limit = default_output_byte_limit
        self._poll_interval = poll_interval
        self._terminals: dict[str, Terminal] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._terminals)

    def __contains__(self, terminal_id: object) -> bool:
        return terminal_id in self._terminals

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    async def create(
        self,
        command: str,
        args: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
        output_byte_limit: int | None = None,
    ) -> Terminal:
        """Spawn a process and start capturing its output.

        Raises:
            TerminalSpawnError: The process could not be started.
        """
        argv = list(args or [])
        limit = output_byte_limit if output_byte_limit is not None else self._default_limit
        if limit < 0:
            msg = f"Output byte limit must be non-negative, got {limit}"
            raise ValueError(msg)

        proc_env = dict(os.environ)
        if env:
            proc_env.update(env)
        work_dir = str(cwd) if cwd is not None else None

        use_shell = not argv and (
            self._SHELL_META_RE.search(command) is not None or " " in command.strip()
        )
        try:
            if use_shell:
                proc = await asyncio.create_subprocess_shell(
                    command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=proc_env,
                    cwd=work_dir,
                    limit=_MAX_LINE_BYTES,
                )
            else:
                proc = await asyncio.create_subprocess_exec(
                    command,
                    *argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=proc_env,
                    cwd=work_dir,
                    limit=_MAX_LINE_BYTES,
                )
        except FileNotFoundError as exc:
            msg = f"Command not found: {command}"
            raise TerminalSpawnError(msg) from exc
        except OSError as exc:
            msg = f"Failed to spawn terminal {command!r}: {exc}"
            raise TerminalSpawnError(msg) from exc

        terminal_id = uuid.uuid4().hex
        terminal = Terminal(terminal_id, command, argv, proc, limit, cwd=work_dir)
        self._terminals[terminal_id] = terminal
        logger.info("Terminal %s created: %s", terminal_id, terminal.command_line)

        captures = [
            self._track(self._capture(terminal, proc.stdout, "stdout")),
            self._track(self._capture(terminal, proc.stderr, "stderr")),
        ]
        self._track(self._watch_exit(terminal, captures))
        return terminal

    def get(self, terminal_id: str) -> Terminal:
        """Return the registered terminal or raise ``TerminalNotFoundError``."""
        terminal = self._terminals.get(terminal_id)
        if terminal is None:
            msg = f"Terminal not found: {terminal_id}"
            raise TerminalNotFoundError(msg)
        return terminal

    def get_output(self, terminal_id: str) -> tuple[str, int | None]:
        """Return the current buffer and exit code (if known).  Never blocks."""
        terminal = self.get(terminal_id)
        return terminal.output, terminal.exit_code

    def kill(self, terminal_id: str) -> None:
        """Signal the process to stop.  The terminal stays registered."""
        terminal = self.get(terminal_id)
        proc = terminal.process
        if proc.returncode is not None:
            logger.debug("Terminal %s already exited; kill is a no-op", terminal_id)
            return
        logger.info("Killing terminal %s", terminal_id)
        with contextlib.suppress(ProcessLookupError):
            proc.kill()

    def release(self, terminal_id: str) -> None:
        """Forget the terminal and its buffer.  Does not kill the process."""
        self.get(terminal_id)
        del self._terminals[terminal_id]
        logger.info("Terminal %s released", terminal_id)

    async def wait_for_exit(self, terminal_id: str) -> Terminal:
        """Suspend until the exit watcher has recorded an exit code.

        Raises:
            TerminalNotFoundError: Unknown id, or released while waiting.
        """
        terminal = self.get(terminal_id)
        while terminal.exit_code is None:
            await asyncio.sleep(self._poll_interval)
            if terminal_id not in self._terminals:
                msg = f"Terminal {terminal_id} was released before it exited"
                raise TerminalNotFoundError(msg)
        return terminal

    async def shutdown(self) -> None:
        """Kill every running terminal and empty the registry."""
        for terminal in list(self._terminals.values()):
            if terminal.process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    terminal.process.kill()
        self._terminals.clear()

        pending = list(self._tasks)
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=_DRAIN_WAIT + 1.0)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Background routines
    # ------------------------------------------------------------------ #

    def _track(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Terminal background task failed: %s", task.exception())

    async def _capture(
        self,
        terminal: Terminal,
        stream: asyncio.StreamReader | None,
        stream_name: str,
    ) -> None:
        """Append newline-terminated chunks from *stream* until EOF."""
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                logger.warning(
                    "Terminal %s: %s line exceeds %d bytes, skipping",
                    terminal.id,
                    stream_name,
                    _MAX_LINE_BYTES,
                )
                continue
            if not line:
                break
            if not line.endswith(b"\n"):
                line += b"\n"
            terminal.append_output(line)
        logger.debug("Terminal %s: %s capture ended", terminal.id, stream_name)

    async def _watch_exit(
        self,
        terminal: Terminal,
        captures: list[asyncio.Task[None]],
    ) -> None:
        """Record the exit code once the process ends and capture drains."""
        returncode = await terminal.process.wait()
        _, still_running = await asyncio.wait(captures, timeout=_DRAIN_WAIT)
        if still_running:
            logger.debug(
                "Terminal %s: output pipes still open after exit, recording anyway",
                terminal.id,
            )
        terminal.exit_code = returncode
        logger.info("Terminal %s exited with code %d", terminal.id, returncode)
