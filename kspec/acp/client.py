"""ACP protocol client layered on the JSON-RPC framing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .errors import ProtocolViolationError, RemoteError, TransportClosedError
from .framing import DEFAULT_TIMEOUT, ByteReader, ByteWriter, JsonRpcFraming
from .types import (
    METHOD_NOT_FOUND,
    SERVER_ERROR,
    JsonRpcErrorObject,
    JsonRpcNotification,
    JsonRpcRequest,
    RequestId,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1

DEFAULT_CLIENT_CAPABILITIES: dict[str, Any] = {
    "fs": {"readTextFile": False, "writeTextFile": False},
    "terminal": False,
}

UpdateHandler = Callable[[str, dict[str, Any]], None]
RequestHandler = Callable[[RequestId, str, Any], Awaitable[None]]


@dataclass
class SessionState:
    """Client-side view of one ACP session."""

    id: str
    cwd: str
    status: str = "idle"  # idle | prompting | cancelled


@dataclass
class ClientOptions:
    timeout: float = DEFAULT_TIMEOUT
    method_timeouts: dict[str, float] | None = None
    client_capabilities: dict[str, Any] | None = None
    client_info: dict[str, Any] | None = None


class ACPClient:
    """Named ACP operations plus dispatch of agent-initiated traffic.

    Session updates go to a single update handler; agent requests (permission
    prompts, tool calls) go to a single request handler, which is expected to
    answer with ``respond`` or ``respond_error``. Requests arriving with no
    handler installed are answered with method-not-found.
    """

    def __init__(
        self,
        reader: ByteReader,
        writer: ByteWriter,
        options: ClientOptions | None = None,
    ) -> None:
        self._options = options or ClientOptions()
        self._framing = JsonRpcFraming(
            reader,
            writer,
            timeout=self._options.timeout,
            method_timeouts=self._options.method_timeouts,
        )
        self._sessions: dict[str, SessionState] = {}
        self._agent_capabilities: dict[str, Any] = {}
        self._initialized = False
        self._update_handler: UpdateHandler | None = None
        self._request_handler: RequestHandler | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._request_tasks: set[asyncio.Task[None]] = set()

    @property
    def framing(self) -> JsonRpcFraming:
        return self._framing

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_closed(self) -> bool:
        return self._framing.is_closed

    @property
    def capabilities(self) -> dict[str, Any]:
        return dict(self._agent_capabilities)

    @property
    def sessions(self) -> list[SessionState]:
        return list(self._sessions.values())

    def get_session(self, session_id: str) -> SessionState | None:
        return self._sessions.get(session_id)

    def set_update_handler(self, handler: UpdateHandler | None) -> None:
        self._update_handler = handler

    def set_request_handler(self, handler: RequestHandler | None) -> None:
        self._request_handler = handler

    # --- Lifecycle ---

    def start(self) -> None:
        if self._dispatcher is not None:
            return
        self._framing.start()
        self._dispatcher = asyncio.create_task(self._dispatch())

    def close(self, reason: str = "client closed") -> None:
        self._framing.close(reason)
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if self._dispatcher is not None and self._dispatcher is not current:
            self._dispatcher.cancel()
        for task in list(self._request_tasks):
            if task is not current:
                task.cancel()

    async def wait_closed(self) -> None:
        await self._framing.wait_closed()

    # --- Operations ---

    async def initialize(self) -> dict[str, Any]:
        """Negotiate protocol version and capabilities with the agent."""
        if self._initialized:
            raise ProtocolViolationError("ACP client already initialized")
        params: dict[str, Any] = {
            "protocolVersion": PROTOCOL_VERSION,
            "clientCapabilities": self._options.client_capabilities or DEFAULT_CLIENT_CAPABILITIES,
        }
        if self._options.client_info:
            params["clientInfo"] = self._options.client_info
        result = await self._framing.send_request("initialize", params)
        if not isinstance(result, dict):
            raise ProtocolViolationError(f"initialize returned {type(result).__name__}, expected object")
        self._agent_capabilities = result.get("agentCapabilities") or {}
        self._initialized = True
        return result

    async def new_session(self, cwd: str, mcp_servers: Iterable[dict[str, Any]] = ()) -> str:
        result = await self._framing.send_request(
            "session/new", {"cwd": cwd, "mcpServers": list(mcp_servers)}
        )
        session_id = result.get("sessionId") if isinstance(result, dict) else None
        if not isinstance(session_id, str) or not session_id:
            raise ProtocolViolationError("session/new response is missing sessionId")
        self._sessions[session_id] = SessionState(id=session_id, cwd=cwd)
        return session_id

    async def prompt(self, session_id: str, prompt: str | list[dict[str, Any]]) -> dict[str, Any]:
        """Send one prompt turn and wait for its stop reason."""
        session = self._sessions.get(session_id)
        if session is None:
            raise ValueError(f"Unknown session: {session_id}")
        if session.status == "prompting":
            raise RuntimeError(f"Session {session_id} already has a prompt in flight")

        blocks = [{"type": "text", "text": prompt}] if isinstance(prompt, str) else list(prompt)
        session.status = "prompting"
        try:
            result = await self._framing.send_request(
                "session/prompt", {"sessionId": session_id, "prompt": blocks}
            )
        except BaseException:
            if session.status == "prompting":
                session.status = "idle"
            raise
        if not isinstance(result, dict):
            result = {}
        session.status = "cancelled" if result.get("stopReason") == "cancelled" else "idle"
        return result

    async def cancel(self, session_id: str) -> None:
        """Ask the agent to stop the current turn. Agents may not implement this."""
        session = self._sessions.get(session_id)
        if session is not None and session.status == "prompting":
            session.status = "cancelled"
        try:
            await self._framing.send_request(
                "session/cancel", {"sessionId": session_id}, silent_method_not_found=True
            )
        except RemoteError as exc:
            if exc.code != METHOD_NOT_FOUND:
                raise

    async def respond(self, request_id: RequestId, result: Any) -> None:
        await self._framing.send_response(request_id, result)

    async def respond_error(
        self, request_id: RequestId, code: int, message: str, data: Any = None
    ) -> None:
        await self._framing.send_error(request_id, JsonRpcErrorObject(code, message, data))

    # --- Inbound dispatch ---

    async def _dispatch(self) -> None:
        async for message in self._framing.messages():
            if isinstance(message, JsonRpcNotification):
                self._handle_notification(message)
            elif isinstance(message, JsonRpcRequest):
                task = asyncio.create_task(self._handle_request(message))
                self._request_tasks.add(task)
                task.add_done_callback(self._request_tasks.discard)

    def _handle_notification(self, message: JsonRpcNotification) -> None:
        if message.method != "session/update":
            logger.debug("Ignoring notification %s", message.method)
            return
        params = message.params if isinstance(message.params, dict) else {}
        session_id = params.get("sessionId")
        update = params.get("update")
        if not isinstance(session_id, str) or not isinstance(update, dict):
            logger.warning("Malformed session/update notification")
            return
        if self._update_handler is None:
            return
        try:
            self._update_handler(session_id, update)
        except Exception as exc:
            logger.warning("Session update handler failed: %s", exc)

    async def _handle_request(self, message: JsonRpcRequest) -> None:
        handler = self._request_handler
        try:
            if handler is None:
                await self.respond_error(message.id, METHOD_NOT_FOUND, f"Method not found: {message.method}")
                return
            await handler(message.id, message.method, message.params)
        except TransportClosedError:
            logger.debug("Transport closed while handling %s", message.method)
        except Exception as exc:
            logger.warning("Request handler for %s failed: %s", message.method, exc)
            try:
                await self.respond_error(message.id, SERVER_ERROR, str(exc) or type(exc).__name__)
            except TransportClosedError:
                pass
