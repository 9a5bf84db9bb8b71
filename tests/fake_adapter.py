"""Scripted stand-in for an ACP adapter, spoken to over stdio by the tests.

The last line of each prompt selects the behaviour:

    exit          exit with status 3 without answering
    hang          never answer until ``session/cancel`` arrives
    fail          answer with a JSON-RPC error
    max tokens    answer with stopReason ``max_tokens``
    permission    ask for permission, echo the outcome as a chunk
    read <path>   call fs/read_text_file and echo the content
    terminal      run a terminal to completion and echo its output
    env           echo $ACPHOST_FAKE_KEY
    anything else echo the full prompt text back as ``echo: <text>``

Flags: ``--no-init`` never answers initialize, ``--init-error`` rejects it.
"""

from __future__ import annotations

import json
import os
import sys
from typing import Any

_backlog: list[dict[str, Any]] = []
_hanging: dict[str, Any] = {}
_counters = {"request": 0, "session": 0}


def _send(message: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def _respond(request_id: Any, result: Any) -> None:
    _send({"jsonrpc": "2.0", "id": request_id, "result": result})


def _fail(request_id: Any, code: int, message: str) -> None:
    _send({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})


def _chunk(session_id: str, text: str) -> None:
    _send(
        {
            "jsonrpc": "2.0",
            "method": "session/update",
            "params": {
                "sessionId": session_id,
                "update": {
                    "sessionUpdate": "agent_message_chunk",
                    "content": {"type": "text", "text": text},
                },
            },
        }
    )


def _read() -> dict[str, Any] | None:
    if _backlog:
        return _backlog.pop(0)
    line = sys.stdin.readline()
    if not line:
        return None
    return json.loads(line)


def _call(method: str, params: dict[str, Any]) -> dict[str, Any]:
    """Send a request to the host and block until its response arrives."""
    _counters["request"] += 1
    request_id = f"fake-{_counters['request']}"
    _send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
    while True:
        line = sys.stdin.readline()
        if not line:
            sys.exit(0)
        message = json.loads(line)
        if message.get("id") == request_id and "method" not in message:
            return message
        _backlog.append(message)


def _handle_prompt(message: dict[str, Any]) -> None:
    request_id = message["id"]
    session_id = message["params"]["sessionId"]
    text = message["params"]["prompt"][0]["text"]
    command = text.splitlines()[-1].strip() if text else ""

    if command == "exit":
        sys.exit(3)
    if command == "hang":
        _hanging[session_id] = request_id
        return
    if command == "fail":
        _fail(request_id, -32000, "prompt failed")
        return

    stop_reason = "end_turn"
    if command == "permission":
        reply = _call(
            "session/request_permission",
            {
                "sessionId": session_id,
                "toolCall": {
                    "toolCallId": "tc-1",
                    "title": "Write notes.txt",
                    "kind": "edit",
                    "rawInput": {"path": "notes.txt"},
                },
                "options": [
                    {"optionId": "allow", "name": "Allow", "kind": "allow_once"},
                    {"optionId": "deny", "name": "Deny", "kind": "reject_once"},
                ],
            },
        )
        _chunk(session_id, json.dumps(reply.get("result", reply.get("error"))))
    elif command.startswith("read "):
        reply = _call("fs/read_text_file", {"sessionId": session_id, "path": command[5:]})
        if "result" in reply:
            _chunk(session_id, reply["result"]["content"])
        else:
            _chunk(session_id, f"error {reply['error']['code']}")
    elif command == "terminal":
        created = _call(
            "terminal/create",
            {
                "sessionId": session_id,
                "command": sys.executable,
                "args": ["-c", "print('from terminal')"],
            },
        )
        ref = {"sessionId": session_id, "terminalId": created["result"]["terminalId"]}
        _call("terminal/wait_for_exit", ref)
        output = _call("terminal/output", ref)
        _call("terminal/release", ref)
        _chunk(session_id, output["result"]["output"])
    elif command == "env":
        _chunk(session_id, os.environ.get("ACPHOST_FAKE_KEY", "<unset>"))
    elif command == "max tokens":
        stop_reason = "max_tokens"
    else:
        _chunk(session_id, f"echo: {text}")

    _respond(request_id, {"stopReason": stop_reason})


def main() -> None:
    no_init = "--no-init" in sys.argv
    init_error = "--init-error" in sys.argv

    while True:
        message = _read()
        if message is None:
            return
        method = message.get("method")

        if method == "initialize":
            if no_init:
                continue
            if init_error:
                _fail(message["id"], -32000, "unsupported client")
                continue
            _respond(
                message["id"],
                {"protocolVersion": 1, "agentCapabilities": {}, "authMethods": []},
            )
        elif method == "session/new":
            _counters["session"] += 1
            _respond(message["id"], {"sessionId": f"sess-{_counters['session']}"})
        elif method == "session/prompt":
            _handle_prompt(message)
        elif method == "session/cancel":
            pending = _hanging.pop(message["params"]["sessionId"], None)
            if pending is not None:
                _respond(pending, {"stopReason": "cancelled"})
        elif method is not None and "id" in message:
            _fail(message["id"], -32601, "Method not found")


if __name__ == "__main__":
    main()
