"""JSON-RPC 2.0 message shapes exchanged with ACP agents over stdio."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Union

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# Application / tool failures use -32000..-32099.
SERVER_ERROR = -32000

RequestId = Union[str, int, float]


@dataclass
class JsonRpcErrorObject:
    code: int
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JsonRpcErrorObject:
        return cls(code=data["code"], message=data["message"], data=data.get("data"))


@dataclass
class JsonRpcRequest:
    id: RequestId
    method: str
    params: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            out["params"] = self.params
        return out


@dataclass
class JsonRpcNotification:
    method: str
    params: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            out["params"] = self.params
        return out


@dataclass
class JsonRpcResponse:
    id: RequestId
    result: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "result": self.result}


@dataclass
class JsonRpcError:
    """Error reply. ``id`` is None only when the error is not tied to a request."""

    id: RequestId | None
    error: JsonRpcErrorObject = field(default_factory=lambda: JsonRpcErrorObject(INTERNAL_ERROR, ""))

    def to_dict(self) -> dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "error": self.error.to_dict()}


JsonRpcMessage = Union[JsonRpcRequest, JsonRpcNotification, JsonRpcResponse, JsonRpcError]


def is_valid_id(value: Any) -> bool:
    """Ids are strings or finite-or-infinite numbers; bools and NaN are rejected."""
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        return True
    if isinstance(value, (int, float)):
        return not (isinstance(value, float) and math.isnan(value))
    return False


def _is_envelope(value: Any) -> bool:
    return isinstance(value, dict) and value.get("jsonrpc") == JSONRPC_VERSION


def is_request(value: Any) -> bool:
    return (
        _is_envelope(value)
        and isinstance(value.get("method"), str)
        and "id" in value
        and is_valid_id(value["id"])
    )


def is_notification(value: Any) -> bool:
    return _is_envelope(value) and isinstance(value.get("method"), str) and "id" not in value


def is_response(value: Any) -> bool:
    return (
        _is_envelope(value)
        and "result" in value
        and "error" not in value
        and "id" in value
        and is_valid_id(value["id"])
    )


def is_error(value: Any) -> bool:
    if not _is_envelope(value) or "error" not in value or "id" not in value:
        return False
    msg_id = value["id"]
    if msg_id is not None and not is_valid_id(msg_id):
        return False
    err = value["error"]
    return (
        isinstance(err, dict)
        and isinstance(err.get("code"), int)
        and not isinstance(err.get("code"), bool)
        and isinstance(err.get("message"), str)
    )


def parse_message(value: Any) -> JsonRpcMessage | None:
    """Classify a decoded JSON value, returning None when it matches no shape."""
    if is_request(value):
        return JsonRpcRequest(id=value["id"], method=value["method"], params=value.get("params"))
    if is_notification(value):
        return JsonRpcNotification(method=value["method"], params=value.get("params"))
    if is_response(value):
        return JsonRpcResponse(id=value["id"], result=value["result"])
    if is_error(value):
        return JsonRpcError(id=value["id"], error=JsonRpcErrorObject.from_dict(value["error"]))
    return None
