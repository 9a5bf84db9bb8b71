"""Tests for the Terminal Supervisor, using real child processes."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from acphost.terminal import (
    Terminal,
    TerminalManager,
    TerminalNotFoundError,
    TerminalSpawnError,
    truncate_utf8_front,
)

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _make_manager(limit: int = 1_000_000) -> TerminalManager:
    return TerminalManager(default_output_byte_limit=limit, poll_interval=0.01)


async def _run_python(manager: TerminalManager, code: str, **kwargs: Any) -> Terminal:
    return await manager.create(sys.executable, ["-c", code], **kwargs)


async def _wait(manager: TerminalManager, terminal_id: str) -> Terminal:
    return await asyncio.wait_for(manager.wait_for_exit(terminal_id), timeout=10.0)


def _make_terminal(limit: int) -> Terminal:
    return Terminal("t1", "cmd", [], MagicMock(), limit)


# ------------------------------------------------------------------ #
# truncate_utf8_front
# ------------------------------------------------------------------ #


class TestTruncateUtf8Front:
    def test_under_limit_unchanged(self) -> None:
        assert truncate_utf8_front("hello", 10) == "hello"

    def test_exact_limit_unchanged(self) -> None:
        assert truncate_utf8_front("hello", 5) == "hello"

    def test_keeps_tail(self) -> None:
        assert truncate_utf8_front("abcdefghij", 4) == "ghij"

    def test_never_splits_a_character(self) -> None:
        # "a" + two 2-byte chars = 5 bytes; cutting 2 bytes would split.
        result = truncate_utf8_front("aéé", 3)
        assert result == "é"
        assert len(result.encode("utf-8")) <= 3

    def test_four_byte_characters(self) -> None:
        text = "x" + "😀" * 3  # 1 + 12 bytes
        result = truncate_utf8_front(text, 6)
        assert result == "😀"

    def test_zero_limit(self) -> None:
        assert truncate_utf8_front("abc", 0) == ""


# ------------------------------------------------------------------ #
# Lifecycle
# ------------------------------------------------------------------ #


class TestCreateAndOutput:
    async def test_captures_stdout(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "print('hello')")
        await _wait(manager, term.id)
        output, exit_code = manager.get_output(term.id)
        assert output == "hello\n"
        assert exit_code == 0
        assert term.signal is None

    async def test_captures_stderr(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "import sys; sys.stderr.write('oops\\n')")
        await _wait(manager, term.id)
        assert "oops" in term.output

    async def test_exit_code(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "import sys; sys.exit(3)")
        await _wait(manager, term.id)
        assert term.exit_code == 3
        assert term.exited

    async def test_env_merged_over_inherited(self) -> None:
        manager = _make_manager()
        term = await _run_python(
            manager,
            "import os; print(os.environ['ACPHOST_TEST_VAR'], 'PATH' in os.environ)",
            env={"ACPHOST_TEST_VAR": "value-1"},
        )
        await _wait(manager, term.id)
        assert term.output == "value-1 True\n"

    async def test_cwd(self, tmp_path: Path) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "import os; print(os.getcwd())", cwd=tmp_path)
        await _wait(manager, term.id)
        assert Path(term.output.strip()).resolve() == tmp_path.resolve()

    async def test_shell_command_line(self) -> None:
        manager = _make_manager()
        term = await manager.create("echo one && echo two")
        await _wait(manager, term.id)
        assert term.output == "one\ntwo\n"

    async def test_unterminated_last_line_gets_newline(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "import sys; sys.stdout.write('no newline')")
        await _wait(manager, term.id)
        assert term.output == "no newline\n"

    async def test_output_never_blocks(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "import time; time.sleep(5)")
        output, exit_code = manager.get_output(term.id)
        assert output == ""
        assert exit_code is None
        await manager.shutdown()

    async def test_spawn_failure(self) -> None:
        manager = _make_manager()
        with pytest.raises(TerminalSpawnError):
            await manager.create("/definitely/not/a/real/binary-xyz", [])
        assert len(manager) == 0

    async def test_command_line(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "pass")
        assert term.command_line == f"{sys.executable} -c pass"
        await _wait(manager, term.id)


class TestOutputBuffer:
    def test_drops_whole_chunks_from_front(self) -> None:
        term = _make_terminal(10)
        for chunk in (b"aaaa\n", b"bbbb\n", b"cccc\n"):
            term.append_output(chunk)
        assert term.output == "bbbb\ncccc\n"
        assert term.output_bytes == 10
        assert term.truncated

    def test_slices_head_chunk_at_character_boundary(self) -> None:
        term = _make_terminal(4)
        term.append_output(b"ab\n")
        term.append_output("éé\n".encode())  # 5 bytes
        # One byte must go from "éé\n", which would split the first "é".
        assert term.output == "é\n"
        assert term.output_bytes == 3

    def test_head_chunk_of_only_continuation_bytes_is_dropped(self) -> None:
        term = _make_terminal(3)
        term.append_output(b"\xa9\xa9")
        term.append_output(b"ok")
        assert term.output == "ok"
        assert term.output_bytes == 2

    def test_output_is_cached_until_next_append(self) -> None:
        term = _make_terminal(100)
        term.append_output(b"one\n")
        first = term.output
        assert term.output is first
        term.append_output(b"two\n")
        assert term.output == "one\ntwo\n"

    def test_empty_chunk_ignored(self) -> None:
        term = _make_terminal(0)
        term.append_output(b"")
        assert term.output == ""
        assert not term.truncated


class TestTruncation:
    async def test_200_bytes_with_100_byte_limit(self) -> None:
        manager = _make_manager()
        # 4 lines of 49 chars + newline = 200 bytes.
        code = "for c in 'abcd': print(c * 49)"
        term = await _run_python(manager, code, output_byte_limit=100)
        await _wait(manager, term.id)

        assert len(term.output.encode("utf-8")) <= 100
        assert term.output == "c" * 49 + "\n" + "d" * 49 + "\n"
        assert term.truncated

    async def test_limit_from_manager_default(self) -> None:
        manager = _make_manager(limit=10)
        term = await _run_python(manager, "print('0123456789abcdef')")
        await _wait(manager, term.id)
        assert term.output == "789abcdef\n"
        assert term.truncated

    async def test_multibyte_output_stays_valid(self) -> None:
        manager = _make_manager()
        term = await _run_python(
            manager,
            "import sys; sys.stdout.buffer.write(('é' * 40 + '\\n').encode('utf-8'))",
            output_byte_limit=25,
        )
        await _wait(manager, term.id)
        data = term.output.encode("utf-8")
        assert len(data) <= 25
        assert set(term.output) <= {"é", "\n"}

    async def test_large_output_with_default_limit_is_fast(self) -> None:
        manager = TerminalManager(poll_interval=0.01)
        # 60,000 lines of 85 bytes, about 5 MB against the 1 MB default.
        code = "import sys; sys.stdout.write(('y' * 84 + '\\n') * 60000)"
        term = await _run_python(manager, code)
        await asyncio.wait_for(manager.wait_for_exit(term.id), timeout=10.0)

        assert term.truncated
        assert term.output_bytes == 1_000_000
        assert len(term.output.encode("utf-8")) == 1_000_000
        lines = term.output.splitlines()
        assert all(line == "y" * 84 for line in lines[1:])

    async def test_not_truncated_under_limit(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "print('short')", output_byte_limit=100)
        await _wait(manager, term.id)
        assert not term.truncated


class TestKillAndRelease:
    async def test_kill_records_signal(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "import time; time.sleep(30)")
        manager.kill(term.id)
        await _wait(manager, term.id)
        assert term.exit_code is not None and term.exit_code < 0
        assert term.signal == "SIGKILL"
        # Killing never removes the terminal.
        assert term.id in manager

    async def test_kill_after_exit_is_noop(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "pass")
        await _wait(manager, term.id)
        manager.kill(term.id)
        assert term.exit_code == 0

    async def test_release_does_not_kill(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "import time; time.sleep(30)")
        manager.release(term.id)

        assert term.id not in manager
        assert term.process.returncode is None
        with pytest.raises(TerminalNotFoundError):
            manager.get_output(term.id)

        term.process.kill()
        await term.process.wait()
        await manager.shutdown()

    async def test_release_while_waiting_raises(self) -> None:
        manager = _make_manager()
        term = await _run_python(manager, "import time; time.sleep(30)")
        waiter = asyncio.create_task(manager.wait_for_exit(term.id))
        await asyncio.sleep(0.05)
        manager.release(term.id)
        with pytest.raises(TerminalNotFoundError):
            await asyncio.wait_for(waiter, 2.0)
        term.process.kill()
        await term.process.wait()
        await manager.shutdown()

    async def test_unknown_id(self) -> None:
        manager = _make_manager()
        with pytest.raises(TerminalNotFoundError):
            manager.get_output("nope")
        with pytest.raises(TerminalNotFoundError):
            manager.kill("nope")
        with pytest.raises(TerminalNotFoundError):
            manager.release("nope")
        with pytest.raises(TerminalNotFoundError):
            await manager.wait_for_exit("nope")

    async def test_shutdown_kills_everything(self) -> None:
        manager = _make_manager()
        terms = [await _run_python(manager, "import time; time.sleep(30)") for _ in range(3)]
        await manager.shutdown()
        assert len(manager) == 0
        for term in terms:
            assert term.process.returncode is not None
