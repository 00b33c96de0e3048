"""Errors raised by the ACP transport and client."""

from __future__ import annotations

from typing import Any

from .types import METHOD_NOT_FOUND, RequestId


class ACPError(Exception):
    """Base class for ACP transport and protocol failures."""


class TransportClosedError(ACPError):
    """Raised for operations attempted after the transport closed."""

    def __init__(self, details: str = "transport closed") -> None:
        super().__init__(f"ACP connection closed: {details}")


class RequestTimeoutError(ACPError):
    """Raised when a request sees neither a reply nor agent activity in time."""

    def __init__(self, request_id: RequestId, method: str, timeout: float, elapsed: float) -> None:
        self.request_id = request_id
        self.method = method
        self.timeout = timeout
        self.elapsed = elapsed
        super().__init__(
            f"Request {request_id} ({method}) timed out after {elapsed:.1f}s "
            f"(timeout {timeout:g}s)"
        )


class RemoteError(ACPError):
    """Structured error returned by the other endpoint."""

    def __init__(self, code: int, message: str, data: Any = None, method: str | None = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        self.method = method
        prefix = f"{method}: " if method else ""
        super().__init__(f"{prefix}{message} (code {code})")

    @property
    def is_method_not_found(self) -> bool:
        return self.code == METHOD_NOT_FOUND


class ProtocolViolationError(ACPError):
    """Raised when the agent breaks the expected ACP exchange."""
