"""Tests for the JSON-RPC envelope model and line codec."""

from __future__ import annotations

import json

import pytest

from acphost.protocol.envelope import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    Envelope,
    RpcError,
    decode_line,
    encode_envelope,
)


def _decoded(envelope: Envelope) -> dict:
    return json.loads(encode_envelope(envelope))


class TestClassification:
    def test_request(self) -> None:
        env = decode_line(b'{"jsonrpc":"2.0","id":1,"method":"initialize","params":{}}')
        assert env.kind == "request"
        assert env.id == 1
        assert env.method == "initialize"

    def test_string_id_request(self) -> None:
        env = decode_line('{"jsonrpc":"2.0","id":"abc","method":"fs/read_text_file"}')
        assert env.kind == "request"
        assert env.id == "abc"

    def test_notification(self) -> None:
        env = decode_line(b'{"jsonrpc":"2.0","method":"session/update","params":{"x":1}}')
        assert env.kind == "notification"
        assert env.params == {"x": 1}

    def test_success_response(self) -> None:
        env = decode_line(b'{"jsonrpc":"2.0","id":7,"result":{"stopReason":"end_turn"}}')
        assert env.kind == "response"
        assert env.result == {"stopReason": "end_turn"}
        assert env.error is None

    def test_null_result_is_a_response(self) -> None:
        env = decode_line(b'{"jsonrpc":"2.0","id":7,"result":null}')
        assert env.kind == "response"
        assert env.result is None

    def test_error_response_with_null_id(self) -> None:
        env = decode_line(b'{"jsonrpc":"2.0","id":null,"error":{"code":-32700,"message":"x"}}')
        assert env.kind == "response"
        assert env.error is not None
        assert env.error.code == PARSE_ERROR


class TestDecodeErrors:
    def test_bad_json_is_parse_error(self) -> None:
        with pytest.raises(RpcError) as exc_info:
            decode_line(b"{not json")
        assert exc_info.value.code == PARSE_ERROR

    def test_invalid_utf8_is_parse_error(self) -> None:
        with pytest.raises(RpcError) as exc_info:
            decode_line(b'{"jsonrpc":"2.0","method":"x","params":"\xff"}')
        assert exc_info.value.code == PARSE_ERROR

    def test_non_object_is_invalid_request(self) -> None:
        with pytest.raises(RpcError) as exc_info:
            decode_line(b"[1, 2, 3]")
        assert exc_info.value.code == INVALID_REQUEST

    def test_neither_id_nor_method(self) -> None:
        with pytest.raises(RpcError) as exc_info:
            decode_line(b'{"jsonrpc":"2.0","params":{}}')
        assert exc_info.value.code == INVALID_REQUEST

    def test_response_without_result_or_error(self) -> None:
        with pytest.raises(RpcError) as exc_info:
            decode_line(b'{"jsonrpc":"2.0","id":3}')
        assert exc_info.value.code == INVALID_REQUEST

    def test_method_with_null_id(self) -> None:
        with pytest.raises(RpcError) as exc_info:
            decode_line(b'{"jsonrpc":"2.0","id":null,"method":"x"}')
        assert exc_info.value.code == INVALID_REQUEST


class TestEncode:
    def test_single_line(self) -> None:
        data = encode_envelope(Envelope.request(1, "initialize", {"a": "b\nc"}))
        assert data.endswith(b"\n")
        assert data.count(b"\n") == 1

    def test_request_omits_result(self) -> None:
        data = _decoded(Envelope.request(1, "session/new", {"cwd": "/tmp"}))
        assert data == {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "session/new",
            "params": {"cwd": "/tmp"},
        }

    def test_request_without_params(self) -> None:
        assert "params" not in _decoded(Envelope.request(2, "ping"))

    def test_notification_has_no_id(self) -> None:
        data = _decoded(Envelope.notification("session/cancel", {"sessionId": "s"}))
        assert "id" not in data

    def test_success_keeps_null_result(self) -> None:
        data = _decoded(Envelope.success(5, None))
        assert data == {"jsonrpc": "2.0", "id": 5, "result": None}

    def test_failure(self) -> None:
        data = _decoded(Envelope.failure(9, RpcError.method_not_found("foo/bar")))
        assert data["id"] == 9
        assert data["error"]["code"] == METHOD_NOT_FOUND
        assert data["error"]["data"] == {"method": "foo/bar"}
        assert "result" not in data

    def test_failure_without_data(self) -> None:
        data = _decoded(Envelope.failure(None, RpcError(INTERNAL_ERROR, "boom")))
        assert data["id"] is None
        assert data["error"] == {"code": INTERNAL_ERROR, "message": "boom"}

    def test_non_ascii_survives(self) -> None:
        env = decode_line(encode_envelope(Envelope.notification("m", {"text": "héllo ✓"})))
        assert env.params == {"text": "héllo ✓"}


class TestRpcError:
    def test_str_includes_code(self) -> None:
        assert str(RpcError(-1, "nope")) == "nope (code -1)"

    def test_str_includes_data(self) -> None:
        assert "details" in str(RpcError.internal_error("details"))

    def test_from_object_round_trip(self) -> None:
        original = RpcError.invalid_params({"field": "path"})
        restored = RpcError.from_object(original.to_object())
        assert restored.code == original.code
        assert restored.data == {"field": "path"}
