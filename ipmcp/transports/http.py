import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from aiohttp import web

from ipmcp.contracts.mcp_message import (
    McpError,
    McpMessage,
    McpMethod,
    McpNotification,
    McpRequest,
    McpResponseOrError,
    McpSystemError,
)
from ipmcp.jsonrpc_error_codes import JsonRpcErrorCodes
from ipmcp.mcp_context import McpServerSession
from ipmcp.mcp_serialization import McpMessageParseError, McpSerialization
from ipmcp.mcp_server import McpServer
from ipmcp.mcp_session_store import McpHttpSession, McpSessionStore
from ipmcp.mcp_version import McpVersion
from ipmcp.transports.base import McpServerTransport

logger = logging.getLogger(__name__)

HEADER_CONTENT_TYPE = "content-type"
HEADER_ACCEPT = "accept"
HEADER_ORIGIN = "origin"
HEADER_CACHE_CONTROL = "cache-control"
HEADER_MCP_SESSION_ID = "mcp-session-id"
HEADER_MCP_PROTOCOL_VERSION = "mcp-protocol-version"
DEFAULT_PROTOCOL_VERSION = McpVersion.LATEST
SUPPORTED_PROTOCOL_VERSIONS = set(McpVersion.SUPPORTED)

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_STREAM = "text/event-stream"

ALLOWED_ORIGINS = (
    "http://localhost",
    "http://127.0.0.1",
    "https://localhost",
    "https://127.0.0.1",
)
SSE_KEEPALIVE_INTERVAL = 15.0


def _error_response(
    status: int,
    code: JsonRpcErrorCodes,
    message: str,
    request_id: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> web.Response:
    error = McpError(id=request_id, error=McpSystemError(code=int(code), message=message))
    return web.json_response(
        McpSerialization.dump_server_message(error), status=status, headers=headers
    )


def _accepted_media(request: web.Request) -> List[str]:
    accept = request.headers.get(HEADER_ACCEPT, "")
    return [part.split(";")[0].strip().lower() for part in accept.split(",") if part.strip()]


def _accepts(request: web.Request, content_type: str) -> bool:
    media = _accepted_media(request)
    if not media:
        return True
    major = content_type.split("/")[0]
    return content_type in media or "*/*" in media or f"{major}/*" in media


def _sse_event(payload: Any) -> bytes:
    return f"event: message\ndata: {json.dumps(payload)}\n\n".encode("utf-8")


def is_allowed_origin(origin: str) -> bool:
    return any(origin == allowed or origin.startswith(f"{allowed}:") for allowed in ALLOWED_ORIGINS)


@web.middleware
async def origin_middleware(request: web.Request, handler) -> web.StreamResponse:
    # DNS rebinding protection; requests without Origin (curl, SDK clients) pass
    origin = request.headers.get(HEADER_ORIGIN)
    if origin and not is_allowed_origin(origin):
        logger.warning("rejected request with invalid origin: %s", origin)
        return web.json_response(
            {"error": "Forbidden", "message": "Invalid origin for MCP server"},
            status=403,
        )
    return await handler(request)


class McpStreamableHttpHandler:
    """Translates HTTP requests of one session into protocol operations and back.

    Server-initiated messages (notifications, requests to the client) go
    through :meth:`push`, which feeds the session's GET stream. The bundled
    capabilities never push; it is the entry point for ones that do.
    """

    def __init__(
        self,
        server_session: McpServerSession,
        *,
        json_response: bool = True,
        keepalive_interval: float = SSE_KEEPALIVE_INTERVAL,
    ) -> None:
        self._session = server_session
        self._json_response = json_response
        self._keepalive_interval = keepalive_interval
        self._outbox: asyncio.Queue[Optional[McpMessage]] = asyncio.Queue()
        self._stream: Optional[web.StreamResponse] = None
        self._closed = False

    @property
    def session_id(self) -> str:
        return self._session.id

    @property
    def closed(self) -> bool:
        return self._closed

    def _headers(self) -> Dict[str, str]:
        return {
            HEADER_MCP_SESSION_ID: self.session_id,
            HEADER_MCP_PROTOCOL_VERSION: self._session.version.version or DEFAULT_PROTOCOL_VERSION,
        }

    async def dispatch(self, messages: List[McpMessage]) -> List[McpResponseOrError]:
        responses: List[McpResponseOrError] = []
        for message in messages:
            if isinstance(message, McpRequest):
                responses.append(await self._session.process(message))
            elif isinstance(message, McpNotification):
                await self._session.notify(message)
            else:
                # we never send requests to the client, so replies are dropped
                logger.debug("session %s dropped client response", self.session_id)
        return responses

    async def respond(
        self, request: web.Request, responses: List[McpResponseOrError], batch: bool
    ) -> web.StreamResponse:
        headers = self._headers()
        if not responses:
            return web.Response(status=202, headers=headers)

        payloads = [McpSerialization.dump_server_message(r) for r in responses]
        if self._json_response or CONTENT_TYPE_STREAM not in _accepted_media(request):
            return web.json_response(payloads if batch else payloads[0], headers=headers)

        stream = web.StreamResponse(
            status=200,
            headers={
                **headers,
                HEADER_CONTENT_TYPE: CONTENT_TYPE_STREAM,
                HEADER_CACHE_CONTROL: "no-cache",
            },
        )
        await stream.prepare(request)
        for payload in payloads:
            await stream.write(_sse_event(payload))
        await stream.write_eof()
        return stream

    async def handle_post(
        self, request: web.Request, messages: List[McpMessage], batch: bool
    ) -> web.StreamResponse:
        responses = await self.dispatch(messages)
        return await self.respond(request, responses, batch)

    def push(self, message: McpMessage) -> bool:
        """Queue a server-initiated message for the session's GET stream."""
        if self._closed:
            return False
        self._outbox.put_nowait(message)
        return True

    async def handle_get(self, request: web.Request) -> web.StreamResponse:
        if self._stream is not None:
            return _error_response(
                409,
                JsonRpcErrorCodes.BAD_REQUEST,
                "Conflict: only one SSE stream is allowed per session",
            )
        stream = web.StreamResponse(
            status=200,
            headers={
                **self._headers(),
                HEADER_CONTENT_TYPE: CONTENT_TYPE_STREAM,
                HEADER_CACHE_CONTROL: "no-cache",
            },
        )
        self._stream = stream
        try:
            await stream.prepare(request)
            while not self._closed:
                try:
                    message = await asyncio.wait_for(
                        self._outbox.get(), timeout=self._keepalive_interval
                    )
                except asyncio.TimeoutError:
                    await stream.write(b": keepalive\n\n")
                    continue
                if message is None:
                    break
                await stream.write(_sse_event(McpSerialization.dump_server_message(message)))
            await stream.write_eof()
        except ConnectionResetError:
            logger.debug("session %s stream disconnected", self.session_id)
        finally:
            self._stream = None
        return stream

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # wakes a pending GET stream
        self._outbox.put_nowait(None)


class McpHttpServerTransport(McpServerTransport):
    """Streamable HTTP transport with one session per initialize handshake.

    POST, GET and DELETE on ``path`` are routed by the ``mcp-session-id``
    header. Sessions live in ``store``, which the idle reaper and the
    shutdown coordinator share.
    """

    def __init__(
        self,
        hostname: str = "127.0.0.1",
        port: int = 3000,
        *,
        path: str = "/mcp",
        store: Optional[McpSessionStore] = None,
        clock: Callable[[], float] = time.monotonic,
        keepalive_interval: float = SSE_KEEPALIVE_INTERVAL,
    ) -> None:
        assert path.startswith("/"), "HTTP path must start with '/'"
        self._path = path
        self._hostname: str = hostname
        self._port: int = port
        self.store = store if store is not None else McpSessionStore()
        self._clock = clock
        self._keepalive_interval = keepalive_interval
        self._runner: Optional[web.AppRunner] = None
        self._server: Optional[McpServer] = None
        self._closed: Optional[asyncio.Event] = None

    @property
    def url(self) -> str:
        return f"http://{self._hostname}:{self._port}{self._path}"

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[origin_middleware])
        app.router.add_post(self._path, self._handle_post)
        app.router.add_get(self._path, self._handle_get)
        app.router.add_delete(self._path, self._handle_delete)
        if self._path != "/":
            app.router.add_get("/", self._handle_health)
        return app

    async def server_initialize(self, server: McpServer):
        if self._runner is not None:
            raise RuntimeError(
                f"{McpHttpServerTransport.__name__} is already initialized"
            )
        self._server = server
        self._closed = asyncio.Event()
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        _site = web.TCPSite(self._runner, self._hostname, self._port)
        await _site.start()
        logger.info("HTTP transport listening on %s", self.url)

    async def wait_closed(self):
        if self._closed is not None:
            await self._closed.wait()

    async def close(self):
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP listener closed")
        if self._closed is not None:
            self._closed.set()

    def _check_protocol_header(self, request: web.Request) -> Optional[web.Response]:
        value = request.headers.get(HEADER_MCP_PROTOCOL_VERSION, "").strip()
        if not value:
            if self._server.flags.enforce_mcp_protocol_header:
                return _error_response(
                    400,
                    JsonRpcErrorCodes.BAD_REQUEST,
                    f"Bad Request: {HEADER_MCP_PROTOCOL_VERSION} header required",
                )
            return None
        if value not in SUPPORTED_PROTOCOL_VERSIONS:
            return _error_response(
                400,
                JsonRpcErrorCodes.BAD_REQUEST,
                f"Bad Request: unsupported {HEADER_MCP_PROTOCOL_VERSION}: {value}",
            )
        return None

    def _resolve(
        self, request: web.Request
    ) -> Tuple[Optional[McpHttpSession], Optional[web.Response]]:
        session_id = request.headers.get(HEADER_MCP_SESSION_ID, "").strip()
        if not session_id:
            return None, _error_response(
                400,
                JsonRpcErrorCodes.BAD_REQUEST,
                "Bad Request: No valid session ID provided",
            )
        session = self.store.get(session_id)
        if session is None:
            return None, _error_response(
                404, JsonRpcErrorCodes.SESSION_NOT_FOUND, "Session not found"
            )
        session.touch(self._clock())
        return session, None

    def _new_session(self) -> McpHttpSession:
        server_session = self._server.create_session()
        handler = McpStreamableHttpHandler(
            server_session,
            json_response=self._server.flags.json_response,
            keepalive_interval=self._keepalive_interval,
        )
        return McpHttpSession(server_session.id, handler, server_session, self._clock())

    async def _discard(self, session: McpHttpSession) -> None:
        try:
            await session.close()
        except Exception:
            logger.exception("failed to close session %s", session.id)

    async def _initialize_session(
        self, request: web.Request, messages: List[McpMessage], batch: bool
    ) -> web.StreamResponse:
        # pending until the handshake resolves; only then visible in the store
        session = self._new_session()
        try:
            responses = await session.handler.dispatch(messages)
            if not session.server_session.handshake.done():
                await self._discard(session)
                payload = [McpSerialization.dump_server_message(r) for r in responses]
                return web.json_response(payload if batch else payload[0], status=400)
            await session.server_session.handshake
            self.store.register(session.id, session)
        except Exception:
            logger.exception("failed to initialize session %s", session.id)
            await self._discard(session)
            return _error_response(
                500,
                JsonRpcErrorCodes.INTERNAL_ERROR,
                "Internal error: failed to initialize session",
            )
        logger.info("session %s created (%d active)", session.id, len(self.store))

        try:
            return await session.handler.respond(request, responses, batch)
        except Exception:
            # the client never learned the id, nothing can reach this session
            if self.store.remove(session.id) is not None:
                await self._discard(session)
            raise

    async def _handle_post(self, request: web.Request) -> web.StreamResponse:
        if not (_accepts(request, CONTENT_TYPE_JSON) or _accepts(request, CONTENT_TYPE_STREAM)):
            return _error_response(
                406,
                JsonRpcErrorCodes.BAD_REQUEST,
                f"Not Acceptable: client must accept {CONTENT_TYPE_JSON} or {CONTENT_TYPE_STREAM}",
            )
        if request.content_type != CONTENT_TYPE_JSON:
            return _error_response(
                415,
                JsonRpcErrorCodes.BAD_REQUEST,
                f"Unsupported Media Type: Content-Type must be {CONTENT_TYPE_JSON}",
            )
        error = self._check_protocol_header(request)
        if error is not None:
            return error

        body = await request.read()
        try:
            messages, batch = McpSerialization.parse_client_payload(body)
        except McpMessageParseError as e:
            return _error_response(400, e.code, str(e), e.request_id)

        is_initialize = any(
            isinstance(m, McpRequest) and m.method == McpMethod.INITIALIZE for m in messages
        )
        if is_initialize:
            if len(messages) > 1:
                return _error_response(
                    400,
                    JsonRpcErrorCodes.INVALID_REQUEST,
                    "Invalid Request: initialize must not be part of a batch",
                )
            if request.headers.get(HEADER_MCP_SESSION_ID, "").strip():
                return _error_response(
                    400,
                    JsonRpcErrorCodes.INVALID_REQUEST,
                    "Invalid Request: initialize must not carry a session id",
                )
            return await self._initialize_session(request, messages, batch)

        session, error = self._resolve(request)
        if error is not None:
            return error
        try:
            return await session.handler.handle_post(request, messages, batch)
        except Exception:
            # one bad request does not invalidate the session
            logger.exception("request on session %s failed", session.id)
            return _error_response(
                500, JsonRpcErrorCodes.INTERNAL_ERROR, "Internal server error"
            )

    async def _handle_get(self, request: web.Request) -> web.StreamResponse:
        if CONTENT_TYPE_STREAM not in _accepted_media(request):
            return _error_response(
                406,
                JsonRpcErrorCodes.BAD_REQUEST,
                f"Not Acceptable: client must accept {CONTENT_TYPE_STREAM}",
            )
        error = self._check_protocol_header(request)
        if error is not None:
            return error
        session, error = self._resolve(request)
        if error is not None:
            return error
        return await session.handler.handle_get(request)

    async def _handle_delete(self, request: web.Request) -> web.StreamResponse:
        session, error = self._resolve(request)
        if error is not None:
            return error
        self.store.remove(session.id)
        await self._discard(session)
        logger.info("session %s terminated by client", session.id)
        return web.Response(status=200)

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.Response(text=f"{self._server.name} v{self._server.version} is running")
