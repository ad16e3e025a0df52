"""
JSON-RPC 2.0 envelope codec
===========================
Parsing of inbound lines into requests, construction of responses and the
mapping from exceptions to JSON-RPC error objects.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

from mcp_memory.core.exceptions import (
    InvalidParamsError,
    InvalidRequestError,
    MemoryServerError,
    ProtocolError,
    ValidationError,
)

JSONRPC_VERSION = "2.0"

INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_DRAINING = -32000
NOT_READY = -32002


@dataclass
class Request:
    method: str
    id: Any = None
    has_id: bool = False
    params: dict = field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return not self.has_id


def _valid_id(value: Any) -> bool:
    return isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool))


def request_key(request_id: Any) -> Tuple[str, Any]:
    """Correlation key; 1 and "1" are distinct ids."""
    return (type(request_id).__name__, request_id)


def parse_request(line: str) -> Request:
    """
    Decode one line into a Request.

    Raises:
        InvalidRequestError: Unparseable JSON, batch arrays, non-object
            documents, bad `jsonrpc` or `method` members, or an id that is
            neither a string nor an integer.
        InvalidParamsError: `params` present but not an object. Raised with
            `reply=False` when the document carried no id.
    """
    try:
        document = json.loads(line)
    except ValueError as e:
        raise InvalidRequestError(f"Parse error: {e.__class__.__name__}")

    if isinstance(document, list):
        raise InvalidRequestError("Batch requests are not supported")
    if not isinstance(document, dict):
        raise InvalidRequestError("Request must be a JSON object")

    has_id = "id" in document
    request_id = document.get("id")
    if has_id and not _valid_id(request_id):
        raise InvalidRequestError("Request id must be a string or an integer")

    reply_to = request_id if has_id else None
    if document.get("jsonrpc") != JSONRPC_VERSION:
        raise InvalidRequestError('"jsonrpc" must be "2.0"', request_id=reply_to)

    method = document.get("method")
    if not isinstance(method, str) or not method:
        raise InvalidRequestError('"method" must be a non-empty string', request_id=reply_to)

    params = document.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, dict):
        raise InvalidParamsError(
            '"params" must be an object', request_id=reply_to, reply=has_id
        )

    return Request(method=method, id=request_id, has_id=has_id, params=params)


def success_response(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id: Any, code: int, message: str, data: Optional[dict] = None) -> dict:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def error_from_exception(exc: BaseException) -> Tuple[int, str, Optional[dict]]:
    """
    (code, message, data) for an exception raised while serving a request.

    Domain validation failures become invalid-params errors with field
    detail; other domain errors carry their code, category and
    recoverability; anything else is reported without detail.
    """
    if isinstance(exc, ProtocolError):
        return exc.rpc_code, exc.message, exc.data
    if isinstance(exc, ValidationError):
        return INVALID_PARAMS, exc.message, {
            "field": exc.field,
            "reason": exc.reason,
            "code": exc.error_code,
        }
    if isinstance(exc, MemoryServerError):
        return INTERNAL_ERROR, exc.message, {
            "code": exc.error_code,
            "recoverable": exc.recoverable,
            "category": exc.category.value,
        }
    return INTERNAL_ERROR, "Internal error", None


def encode(message: dict) -> bytes:
    """
    One compact JSON document terminated by a newline.

    Non-ASCII text is escaped, so strings holding lone surrogates still
    produce valid UTF-8 output.

    Raises:
        TypeError, ValueError: The message holds values JSON cannot represent.
    """
    return (json.dumps(message, separators=(",", ":")) + "\n").encode("ascii")
