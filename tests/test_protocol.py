"""
JSON-RPC envelope tests
"""

import json

import pytest

from mcp_memory.core.exceptions import (
    InvalidParamsError,
    InvalidRequestError,
    MemoryNotFoundError,
    StorageConnectionError,
    ValidationError,
)
from mcp_memory.mcp.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    encode,
    error_from_exception,
    error_response,
    parse_request,
    request_key,
    success_response,
)


class TestParseRequest:
    def test_request_with_id(self):
        request = parse_request('{"jsonrpc":"2.0","id":7,"method":"tools/list"}')
        assert request.method == "tools/list"
        assert request.id == 7
        assert request.params == {}
        assert not request.is_notification

    def test_notification(self):
        request = parse_request('{"jsonrpc":"2.0","method":"notifications/initialized"}')
        assert request.is_notification

    def test_null_id_is_not_a_notification(self):
        with pytest.raises(InvalidRequestError):
            parse_request('{"jsonrpc":"2.0","id":null,"method":"ping"}')

    @pytest.mark.parametrize(
        "line",
        [
            "{not json",
            "[1, 2]",
            '"just a string"',
            '{"jsonrpc":"2.0","id":true,"method":"ping"}',
            '{"jsonrpc":"2.0","id":1.5,"method":"ping"}',
            '{"jsonrpc":"2.0","id":{"a":1},"method":"ping"}',
        ],
    )
    def test_unrecoverable_envelope_has_no_id(self, line):
        with pytest.raises(InvalidRequestError) as exc_info:
            parse_request(line)
        assert exc_info.value.request_id is None
        assert exc_info.value.rpc_code == INVALID_REQUEST

    @pytest.mark.parametrize(
        "document",
        [
            {"jsonrpc": "1.0", "id": "a", "method": "ping"},
            {"id": "a", "method": "ping"},
            {"jsonrpc": "2.0", "id": "a"},
            {"jsonrpc": "2.0", "id": "a", "method": ""},
        ],
    )
    def test_bad_envelope_keeps_id(self, document):
        with pytest.raises(InvalidRequestError) as exc_info:
            parse_request(json.dumps(document))
        assert exc_info.value.request_id == "a"

    def test_params_must_be_object(self):
        with pytest.raises(InvalidParamsError) as exc_info:
            parse_request('{"jsonrpc":"2.0","id":3,"method":"tools/call","params":[1]}')
        assert exc_info.value.request_id == 3
        assert exc_info.value.rpc_code == INVALID_PARAMS
        assert exc_info.value.reply

    def test_bad_params_on_notification_is_not_replied_to(self):
        with pytest.raises(InvalidParamsError) as exc_info:
            parse_request('{"jsonrpc":"2.0","method":"tools/list","params":"x"}')
        assert exc_info.value.request_id is None
        assert not exc_info.value.reply

    def test_request_key_distinguishes_types(self):
        assert request_key(1) != request_key("1")
        assert request_key("x") == request_key("x")


class TestResponses:
    def test_success(self):
        assert success_response("a", {"ok": 1}) == {"jsonrpc": "2.0", "id": "a", "result": {"ok": 1}}

    def test_error_without_data(self):
        response = error_response(None, INVALID_REQUEST, "bad")
        assert response == {"jsonrpc": "2.0", "id": None, "error": {"code": -32600, "message": "bad"}}

    def test_encode_is_one_line(self):
        raw = encode({"jsonrpc": "2.0", "id": 1, "result": {"text": "line1\nline2"}})
        assert raw.endswith(b"\n")
        assert raw.count(b"\n") == 1
        assert json.loads(raw)["result"]["text"] == "line1\nline2"

    def test_encode_escapes_lone_surrogates(self):
        raw = encode({"jsonrpc": "2.0", "id": "\ud800", "result": {"text": "über"}})
        raw.decode("ascii")
        assert json.loads(raw) == {"jsonrpc": "2.0", "id": "\ud800", "result": {"text": "über"}}

    def test_encode_rejects_unserializable_values(self):
        with pytest.raises(TypeError):
            encode({"jsonrpc": "2.0", "id": 1, "result": object()})


class TestErrorMapping:
    def test_validation_error(self):
        code, message, data = error_from_exception(ValidationError("confidence", "must be between 0 and 1", 2))
        assert code == INVALID_PARAMS
        assert data == {"field": "confidence", "reason": "must be between 0 and 1", "code": "VALIDATION_ERROR"}
        assert "confidence" in message

    def test_domain_error(self):
        code, _, data = error_from_exception(MemoryNotFoundError("abc"))
        assert code == INTERNAL_ERROR
        assert data["code"] == "MEMORY_NOT_FOUND_ERROR"
        assert data["recoverable"] is False

    def test_recoverable_domain_error(self):
        _, _, data = error_from_exception(StorageConnectionError("sqlite", "gone"))
        assert data["recoverable"] is True

    def test_unexpected_exception_hides_detail(self):
        code, message, data = error_from_exception(KeyError("secret internals"))
        assert code == INTERNAL_ERROR
        assert message == "Internal error"
        assert data is None
