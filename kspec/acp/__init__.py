"""Agent Client Protocol transport: JSON-RPC framing and the protocol client."""

from __future__ import annotations

from .client import PROTOCOL_VERSION, ACPClient, ClientOptions, SessionState
from .errors import (
    ACPError,
    ProtocolViolationError,
    RemoteError,
    RequestTimeoutError,
    TransportClosedError,
)
from .framing import DEFAULT_METHOD_TIMEOUTS, DEFAULT_TIMEOUT, JsonRpcFraming, PendingCall
from .types import (
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SERVER_ERROR,
    JsonRpcError,
    JsonRpcErrorObject,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    is_error,
    is_notification,
    is_request,
    is_response,
    parse_message,
)

__all__ = [
    "ACPClient",
    "ACPError",
    "ClientOptions",
    "DEFAULT_METHOD_TIMEOUTS",
    "DEFAULT_TIMEOUT",
    "INVALID_REQUEST",
    "JsonRpcError",
    "JsonRpcErrorObject",
    "JsonRpcFraming",
    "JsonRpcMessage",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "PROTOCOL_VERSION",
    "PendingCall",
    "ProtocolViolationError",
    "RemoteError",
    "RequestTimeoutError",
    "SERVER_ERROR",
    "SessionState",
    "TransportClosedError",
    "is_error",
    "is_notification",
    "is_request",
    "is_response",
    "parse_message",
]
