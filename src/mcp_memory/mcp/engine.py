"""
Memory Protocol Engine
======================
Per-connection JSON-RPC state machine multiplexing concurrent tool calls
over one line-delimited stream.

States:
    AWAITING_HANDSHAKE -> READY -> DRAINING -> CLOSED

Tasks:
    - reader: decodes lines and does all bookkeeping (state, open-request
      table, registry lookup) without awaiting
    - one task per tools/call, bounded by a semaphore
    - writer: drains the outbox queue onto the output stream, so responses
      leave in completion order and never interleave

Every request carrying an id gets exactly one response; notifications get
none.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Optional

from loguru import logger

from mcp_memory.core.config import ProtocolConfig, ServerConfig
from mcp_memory.core.exceptions import (
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    MemoryServerError,
    MethodNotFoundError,
    NotFoundError,
    NotReadyError,
    ProtocolError,
    ServerDrainingError,
    ValidationError,
)
from mcp_memory.mcp.protocol import (
    INTERNAL_ERROR,
    Request,
    encode,
    error_from_exception,
    error_response,
    parse_request,
    request_key,
    success_response,
)
from mcp_memory.mcp.registry import ToolRegistry

LIST_METHODS = ("tools/list", "listTools")
CALL_METHODS = ("tools/call", "callTool")

_STOP = object()


class ConnectionState(str, Enum):
    AWAITING_HANDSHAKE = "awaiting_handshake"
    READY = "ready"
    DRAINING = "draining"
    CLOSED = "closed"


class ProtocolEngine:
    def __init__(
        self,
        registry: ToolRegistry,
        server_config: Optional[ServerConfig] = None,
        protocol_config: Optional[ProtocolConfig] = None,
    ):
        self.registry = registry
        self.server_config = server_config or ServerConfig()
        self.config = protocol_config or ProtocolConfig()
        self.state = ConnectionState.AWAITING_HANDSHAKE
        self.client_info: Optional[dict] = None
        self._initialized = False
        self._open: dict[tuple, asyncio.Task] = {}
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)
        self._closed = asyncio.Event()
        self._drain_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    @property
    def outbox(self) -> asyncio.Queue:
        return self._outbox

    @property
    def in_flight(self) -> int:
        return len(self._open)

    def _send(self, message: dict) -> None:
        self._outbox.put_nowait(message)

    def _send_error(self, request_id: Any, exc: BaseException) -> None:
        code, message, data = error_from_exception(exc)
        self._send(error_response(request_id, code, message, data))

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def handle_line(self, line: str) -> None:
        """Decode and route one inbound line. Never raises."""
        if not line.strip():
            return
        if self.state is ConnectionState.CLOSED:
            return
        try:
            request = parse_request(line)
        except ProtocolError as e:
            if not e.reply:
                logger.debug(f"Dropped error for malformed notification: {e.message}")
                return
            logger.warning(f"Rejected malformed request: {e.message}")
            self._send_error(e.request_id, e)
            return

        try:
            self._route(request)
        except ProtocolError as e:
            if request.has_id:
                self._send_error(request.id, e)
            else:
                logger.debug(f"Dropped error for notification {request.method}: {e.message}")

    def _route(self, request: Request) -> None:
        if self.state is ConnectionState.DRAINING:
            raise ServerDrainingError("Server is shutting down")

        if request.is_notification:
            logger.debug(f"Notification received: {request.method}")
            return

        if request_key(request.id) in self._open:
            raise InvalidRequestError(f"Request id {request.id!r} is already in flight")

        method = request.method
        if method == "initialize":
            self._initialize(request)
            return
        if method == "ping":
            self._send(success_response(request.id, {}))
            return

        if self.state is ConnectionState.AWAITING_HANDSHAKE:
            if not self.config.best_effort:
                raise NotReadyError("Server not initialized: send 'initialize' first")
            logger.warning(f"'{method}' received before initialize; continuing (best_effort)")
            self.state = ConnectionState.READY

        if method == "shutdown":
            self._send(success_response(request.id, {}))
            self.begin_shutdown("shutdown requested")
        elif method in LIST_METHODS:
            self._send(success_response(request.id, {"tools": self.registry.list_tools()}))
        elif method in CALL_METHODS:
            self._dispatch(request)
        else:
            raise MethodNotFoundError(f"Method not found: {method}", data={"method": method})

    def _initialize(self, request: Request) -> None:
        if self._initialized:
            raise InvalidRequestError("Server already initialized")
        self._initialized = True
        self.client_info = request.params.get("clientInfo")
        self.state = ConnectionState.READY
        logger.info(
            f"Client initialized: {self.client_info or 'unknown client'} "
            f"(requested protocol {request.params.get('protocolVersion', 'n/a')})"
        )
        self._send(success_response(request.id, {
            "protocolVersion": self.server_config.protocol_version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {
                "name": self.server_config.name,
                "version": self.server_config.version,
                "description": self.server_config.description,
            },
        }))

    def _dispatch(self, request: Request) -> None:
        params = request.params
        name = params["name"] if "name" in params else params.get("tool")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError(
                "Tool name is required",
                data={"errors": [{"field": "name", "constraint": "missing",
                                  "message": "Field required"}]},
            )
        if "arguments" in params:
            arguments = params["arguments"]
        else:
            arguments = params.get("params")
        key = request_key(request.id)
        task = asyncio.ensure_future(self._run_tool(request, name, arguments))
        task.set_name(f"tool-{name}-{request.id}")
        self._open[key] = task

    async def _run_tool(self, request: Request, name: str, arguments: Any) -> None:
        key = request_key(request.id)
        try:
            async with self._semaphore:
                data = await self.registry.call(name, arguments)
            result = {
                "toolResult": data,
                "content": [{"type": "text", "text": json.dumps(data, ensure_ascii=False)}],
            }
            self._send(success_response(request.id, result))
        except asyncio.CancelledError:
            logger.warning(f"Tool call {name} (id={request.id!r}) cancelled during shutdown")
            self._send_error(request.id, InternalError("Request cancelled: server shut down"))
            raise
        except Exception as e:
            self._log_failure(name, request.id, e)
            self._send_error(request.id, e)
        finally:
            self._open.pop(key, None)

    @staticmethod
    def _log_failure(name: str, request_id: Any, exc: Exception) -> None:
        if isinstance(exc, (ProtocolError, ValidationError, NotFoundError)):
            logger.info(f"Tool {name} (id={request_id!r}) rejected: {exc}")
        elif isinstance(exc, MemoryServerError):
            logger.error(f"Tool {name} (id={request_id!r}) failed: {exc}")
        else:
            logger.opt(exception=exc).error(f"Tool {name} (id={request_id!r}) crashed")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def begin_shutdown(self, reason: str = "shutdown requested") -> asyncio.Task:
        """Start draining (idempotent). Returns the drain task."""
        if self._drain_task is None:
            self.state = ConnectionState.DRAINING
            self._drain_task = asyncio.ensure_future(self._drain(reason))
        return self._drain_task

    async def shutdown(self, reason: str = "shutdown requested") -> None:
        await asyncio.shield(self.begin_shutdown(reason))

    async def _drain(self, reason: str) -> None:
        logger.info(f"Draining connection ({reason}); {len(self._open)} request(s) in flight")
        pending = list(self._open.values())
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self.config.shutdown_grace_seconds)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning(f"Cancelled {len(still_running)} request(s) after grace period")
                await asyncio.gather(*still_running, return_exceptions=True)
        self.state = ConnectionState.CLOSED
        self._closed.set()
        logger.info("Connection closed")

    # ------------------------------------------------------------------
    # Stream loop
    # ------------------------------------------------------------------

    async def _next_line(self, reader: asyncio.StreamReader) -> Optional[str]:
        """Next line, or None on end of input or once the engine has closed."""
        read = asyncio.ensure_future(reader.readline())
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({read, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
        if read not in done:
            read.cancel()
            return None
        try:
            data = read.result()
        except ValueError:
            logger.warning("Inbound line exceeds the stream buffer limit")
            self._send_error(None, InvalidRequestError("Request line too long"))
            return ""
        except ConnectionError as e:
            logger.info(f"Input stream closed: {e}")
            return None
        if not data:
            return None
        return data.decode("utf-8", errors="replace")

    @staticmethod
    def _encode_or_error(message: dict) -> bytes:
        try:
            return encode(message)
        except (TypeError, ValueError) as e:
            request_id = message.get("id")
            logger.error(f"Could not encode response for id {request_id!r}: {e}")
            try:
                return encode(error_response(request_id, INTERNAL_ERROR, "Internal error"))
            except (TypeError, ValueError):
                return encode(error_response(None, INTERNAL_ERROR, "Internal error"))

    async def _write_loop(self, writer) -> None:
        broken = False
        while True:
            message = await self._outbox.get()
            if message is _STOP:
                return
            if broken:
                continue
            try:
                writer.write(self._encode_or_error(message))
                await writer.drain()
            except (ConnectionError, RuntimeError) as e:
                logger.error(f"Output stream failed, dropping further responses: {e}")
                broken = True

    async def serve(self, reader: asyncio.StreamReader, writer) -> None:
        """
        Run the connection until it closes.

        `writer` needs write(bytes) and an awaitable drain(), as
        asyncio.StreamWriter provides.
        """
        writer_task = asyncio.ensure_future(self._write_loop(writer))
        try:
            while self.state is not ConnectionState.CLOSED:
                line = await self._next_line(reader)
                if line is None:
                    break
                self.handle_line(line)
        finally:
            await self.shutdown("end of input")
            self._outbox.put_nowait(_STOP)
            await writer_task
