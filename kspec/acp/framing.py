"""Newline-delimited JSON-RPC framing over an agent's stdio pipes.

One ``JsonRpcFraming`` owns one channel: it allocates request ids, keeps the
table of pending calls, enforces per-call deadlines, and turns the inbound byte
stream into messages. Replies settle their own pending call; inbound requests
and notifications are queued for the protocol client and also count as proof
that the agent is alive, pushing every pending deadline out again.

Deadlines are checked by a single watchdog task against one monotonic clock,
so the cost of many pending calls is a scan, not a timer each.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .errors import RemoteError, RequestTimeoutError, TransportClosedError
from .types import (
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    JsonRpcError,
    JsonRpcErrorObject,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    RequestId,
    parse_message,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
# Prompt turns routinely run for minutes.
DEFAULT_METHOD_TIMEOUTS: dict[str, float] = {
    "session/prompt": 300.0,
    "session/resume": 300.0,
}
DEFAULT_MAX_QUEUE = 1000
READ_CHUNK_SIZE = 65536


class ByteReader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


class ByteWriter(Protocol):
    def write(self, data: bytes) -> None: ...


@dataclass
class PendingCall:
    """An outbound request awaiting its reply."""

    id: RequestId
    method: str
    timeout: float
    started: float
    deadline: float
    future: asyncio.Future[Any]
    silent_method_not_found: bool = False

    def rearm(self, now: float) -> None:
        self.deadline = now + self.timeout


class _Closed:
    """Queue sentinel marking the end of the inbound stream."""


_CLOSED = _Closed()


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class JsonRpcFraming:
    """JSON-RPC 2.0 endpoint over a byte reader/writer pair."""

    def __init__(
        self,
        reader: ByteReader,
        writer: ByteWriter,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        method_timeouts: dict[str, float] | None = None,
        max_queue: int = DEFAULT_MAX_QUEUE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._timeout = timeout
        self._method_timeouts = {**DEFAULT_METHOD_TIMEOUTS, **(method_timeouts or {})}
        self._clock = clock

        self._next_id = 1
        self._pending: dict[RequestId, PendingCall] = {}
        self._buffer = b""
        self._inbound: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_queue)
        self._wakeup = asyncio.Event()
        self._closed_event = asyncio.Event()
        self._closed = False
        self._reader_task: asyncio.Task[None] | None = None
        self._watchdog_task: asyncio.Task[None] | None = None
        self._sentinel_task: asyncio.Task[None] | None = None

    # --- Lifecycle ---

    def start(self) -> None:
        """Start the receive loop and deadline watchdog. Must run inside an event loop."""
        if self._closed:
            raise TransportClosedError("cannot start a closed transport")
        if self._reader_task is not None:
            return
        self._reader_task = asyncio.create_task(self._read_loop())
        self._watchdog_task = asyncio.create_task(self._watchdog())

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def timeout_for(self, method: str) -> float:
        return self._method_timeouts.get(method, self._timeout)

    def close(self, reason: str = "transport closed") -> None:
        """Fail every pending call and stop all background work. Idempotent."""
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing JSON-RPC framing: %s", reason)

        pending = list(self._pending.values())
        self._pending.clear()
        for call in pending:
            if not call.future.done():
                call.future.set_exception(TransportClosedError(reason))

        current = _current_task()
        for task in (self._reader_task, self._watchdog_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        self._wakeup.set()
        self._closed_event.set()
        try:
            self._inbound.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            try:
                self._sentinel_task = asyncio.get_running_loop().create_task(
                    self._inbound.put(_CLOSED)
                )
            except RuntimeError:
                logger.debug("Inbound queue full at close and no running loop")

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    # --- Outbound ---

    async def send_request(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: float | None = None,
        silent_method_not_found: bool = False,
    ) -> Any:
        """Send a request and wait for its result.

        Raises:
            TransportClosedError: the channel is or becomes closed.
            RequestTimeoutError: no reply and no agent activity within the timeout.
            RemoteError: the agent replied with an error object.
        """
        if self._closed:
            raise TransportClosedError(f"cannot send {method}")

        request_id = self._next_id
        self._next_id += 1
        effective = timeout if timeout is not None else self.timeout_for(method)
        now = self._clock()
        call = PendingCall(
            id=request_id,
            method=method,
            timeout=effective,
            started=now,
            deadline=now + effective,
            future=asyncio.get_running_loop().create_future(),
            silent_method_not_found=silent_method_not_found,
        )
        # Registered before the write so a fast reply always finds its entry.
        self._pending[request_id] = call
        self._wakeup.set()

        try:
            await self._write(JsonRpcRequest(id=request_id, method=method, params=params).to_dict())
        except TransportClosedError:
            self._pending.pop(request_id, None)
            if not call.future.done():
                raise

        try:
            return await call.future
        finally:
            if self._pending.get(request_id) is call:
                del self._pending[request_id]

    async def send_notification(self, method: str, params: Any = None) -> None:
        if self._closed:
            raise TransportClosedError(f"cannot send {method}")
        await self._write(JsonRpcNotification(method=method, params=params).to_dict())

    async def send_response(self, request_id: RequestId, result: Any) -> None:
        if self._closed:
            raise TransportClosedError(f"cannot respond to {request_id!r}")
        await self._write(JsonRpcResponse(id=request_id, result=result).to_dict())

    async def send_error(self, request_id: RequestId | None, error: JsonRpcErrorObject) -> None:
        if self._closed:
            raise TransportClosedError(f"cannot respond to {request_id!r}")
        await self._write(JsonRpcError(id=request_id, error=error).to_dict())

    async def _write(self, payload: dict[str, Any]) -> None:
        data = (json.dumps(payload, separators=(",", ":")) + "\n").encode("utf-8")
        try:
            self._writer.write(data)
            drain = getattr(self._writer, "drain", None)
            if drain is not None:
                await drain()
        except (ConnectionError, OSError, RuntimeError) as exc:
            logger.debug("Write to agent failed: %s", exc)
            self.close(f"write failed: {exc}")
            raise TransportClosedError(f"write failed: {exc}") from exc

    async def _reply_error(self, request_id: RequestId | None, error: JsonRpcErrorObject) -> None:
        try:
            await self.send_error(request_id, error)
        except TransportClosedError:
            logger.debug("Dropped %s reply: transport closed", error.message)

    # --- Inbound ---

    async def receive(self) -> JsonRpcMessage | None:
        """Next inbound request, notification, or id-less error; None once closed."""
        item = await self._inbound.get()
        if item is _CLOSED:
            # Leave the sentinel for any other consumer.
            self._inbound.put_nowait(_CLOSED)
            return None
        return item

    async def messages(self) -> AsyncIterator[JsonRpcMessage]:
        while True:
            message = await self.receive()
            if message is None:
                return
            yield message

    async def _read_loop(self) -> None:
        reason = "agent closed its output"
        try:
            # A failed reply write closes the framing from inside this task.
            while not self._closed:
                chunk = await self._reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._buffer += chunk
                while b"\n" in self._buffer and not self._closed:
                    line, _, self._buffer = self._buffer.partition(b"\n")
                    await self._handle_line(line)
            if self._buffer.strip() and not self._closed:
                line, self._buffer = self._buffer, b""
                await self._handle_line(line)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Error reading from agent: %s", exc)
            reason = f"read failed: {exc}"
        self.close(reason)

    async def _handle_line(self, raw: bytes) -> None:
        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            return
        try:
            value = json.loads(text)
        except ValueError:
            logger.warning("Unparseable line from agent: %.200s", text)
            await self._reply_error(
                None, JsonRpcErrorObject(PARSE_ERROR, "Parse error", {"line": text})
            )
            return

        message = parse_message(value)
        if message is None:
            logger.warning("Invalid JSON-RPC message from agent: %.200s", text)
            await self._reply_error(
                None, JsonRpcErrorObject(INVALID_REQUEST, "Invalid Request", value)
            )
            return

        if isinstance(message, (JsonRpcRequest, JsonRpcNotification)):
            self._keepalive()
            await self._inbound.put(message)
        elif isinstance(message, JsonRpcError) and message.id is None:
            logger.warning("Agent reported error: %s (code %s)", message.error.message, message.error.code)
            await self._inbound.put(message)
        else:
            self._settle(message)

    def _keepalive(self) -> None:
        if not self._pending:
            return
        now = self._clock()
        for call in self._pending.values():
            call.rearm(now)
        logger.debug("Agent activity re-armed %d pending call(s)", len(self._pending))

    def _settle(self, message: JsonRpcResponse | JsonRpcError) -> None:
        call = self._pending.pop(message.id, None)
        if call is None:
            logger.warning("Reply for unknown request id %r", message.id)
            return
        self._wakeup.set()
        if call.future.done():
            return
        if isinstance(message, JsonRpcResponse):
            call.future.set_result(message.result)
            return
        err = message.error
        if not (call.silent_method_not_found and err.code == METHOD_NOT_FOUND):
            logger.warning("Request %s (%s) failed: %s (code %s)", call.id, call.method, err.message, err.code)
        call.future.set_exception(RemoteError(err.code, err.message, err.data, call.method))

    # --- Deadlines ---

    async def _watchdog(self) -> None:
        while not self._closed:
            self._wakeup.clear()
            now = self._clock()
            next_deadline: float | None = None
            for call in list(self._pending.values()):
                if call.deadline <= now:
                    self._expire(call, now)
                elif next_deadline is None or call.deadline < next_deadline:
                    next_deadline = call.deadline
            delay = None if next_deadline is None else max(0.0, next_deadline - now)
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    def _expire(self, call: PendingCall, now: float) -> None:
        self._pending.pop(call.id, None)
        if call.future.done():
            return
        elapsed = now - call.started
        logger.warning("Request %s (%s) timed out after %.1fs", call.id, call.method, elapsed)
        call.future.set_exception(RequestTimeoutError(call.id, call.method, call.timeout, elapsed))
