import asyncio
import json

import aiohttp
import pytest

from ipmcp.mcp_server import McpServer
from ipmcp.mcp_reaper import McpIdleReaper
from ipmcp.mcp_session_store import McpSessionStore
from ipmcp.contracts.mcp_message import McpNotification
from ipmcp.jsonrpc_error_codes import JsonRpcErrorCodes
from ipmcp.transports.http import McpHttpServerTransport


HEADER_CONTENT_TYPE = "content-type"
HEADER_ACCEPT = "accept"
HEADER_ORIGIN = "origin"
HEADER_MCP_SESSION_ID = "mcp-session-id"
HEADER_MCP_PROTOCOL_VERSION = "mcp-protocol-version"

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": "2025-06-18",
        "capabilities": {},
        "clientInfo": {"name": "test", "version": "1.0"},
    },
}
INITIALIZED = {"jsonrpc": "2.0", "method": "notifications/initialized"}
TOOLS_LIST = {"jsonrpc": "2.0", "id": 2, "method": "tools/list"}


def _headers(session_id=None, **extra):
    headers = {
        HEADER_CONTENT_TYPE: "application/json",
        HEADER_ACCEPT: "application/json, text/event-stream",
    }
    if session_id:
        headers[HEADER_MCP_SESSION_ID] = session_id
    headers.update(extra)
    return headers


def _sse_payloads(text):
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


async def _build_server() -> McpServer:
    server = McpServer(name="test-server", version="1.2.3")

    async def echo(text: str):
        return text

    async def slow_echo(text: str, delay: float = 0.05):
        await asyncio.sleep(delay)
        return text

    await server.register_tool(echo)
    await server.register_tool(slow_echo)
    return server


async def _start(port, server=None, **kwargs):
    server = server or await _build_server()
    transport = McpHttpServerTransport("127.0.0.1", port, path="/mcp", **kwargs)
    await server.host(transport)
    return server, transport


async def _post(client, url, payload, session_id=None, **extra):
    body = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
    return await client.post(url, data=body, headers=_headers(session_id, **extra))


async def _initialize(client, url) -> str:
    resp = await _post(client, url, INITIALIZE)
    assert resp.status == 200
    body = await resp.json()
    assert body["id"] == 1
    assert body["result"]["protocolVersion"] == "2025-06-18"
    return resp.headers[HEADER_MCP_SESSION_ID]


@pytest.mark.asyncio
async def test_session_lifecycle_scenario(unused_tcp_port):
    server, transport = await _start(unused_tcp_port)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            # initialize without a session header creates S1
            session_id = await _initialize(client, url)
            assert session_id in transport.store
            assert len(transport.store) == 1

            resp = await _post(client, url, INITIALIZED, session_id)
            assert resp.status == 202
            await resp.read()

            resp = await _post(client, url, TOOLS_LIST, session_id)
            assert resp.status == 200
            assert resp.headers[HEADER_MCP_SESSION_ID] == session_id
            body = await resp.json()
            assert body["id"] == 2
            assert {t["name"] for t in body["result"]["tools"]} == {"echo", "slow_echo"}

            # unknown session id
            resp = await _post(client, url, TOOLS_LIST, "does-not-exist")
            assert resp.status == 404
            assert await resp.json() == {
                "jsonrpc": "2.0",
                "error": {"code": JsonRpcErrorCodes.SESSION_NOT_FOUND.value, "message": "Session not found"},
                "id": None,
            }

            # no session header on a non-initialize request
            resp = await _post(client, url, TOOLS_LIST)
            assert resp.status == 400
            assert await resp.json() == {
                "jsonrpc": "2.0",
                "error": {
                    "code": JsonRpcErrorCodes.BAD_REQUEST.value,
                    "message": "Bad Request: No valid session ID provided",
                },
                "id": None,
            }

            # explicit termination, twice
            resp = await client.delete(url, headers={HEADER_MCP_SESSION_ID: session_id})
            assert resp.status == 200
            await resp.read()
            assert session_id not in transport.store

            resp = await client.delete(url, headers={HEADER_MCP_SESSION_ID: session_id})
            assert resp.status == 404
            await resp.read()

            resp = await _post(client, url, TOOLS_LIST, session_id)
            assert resp.status == 404
            await resp.read()
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_get_and_delete_require_a_known_session(unused_tcp_port):
    _, transport = await _start(unused_tcp_port)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            resp = await client.get(url, headers={HEADER_ACCEPT: "text/event-stream"})
            assert resp.status == 400
            assert (await resp.json())["error"]["code"] == JsonRpcErrorCodes.BAD_REQUEST.value

            resp = await client.get(
                url, headers={HEADER_ACCEPT: "text/event-stream", HEADER_MCP_SESSION_ID: "nope"}
            )
            assert resp.status == 404
            await resp.read()

            resp = await client.delete(url)
            assert resp.status == 400
            await resp.read()

            session_id = await _initialize(client, url)
            resp = await client.get(
                url, headers={HEADER_ACCEPT: "application/json", HEADER_MCP_SESSION_ID: session_id}
            )
            assert resp.status == 406
            await resp.read()
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_sessions_are_isolated(unused_tcp_port):
    _, transport = await _start(unused_tcp_port)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            first = await _initialize(client, url)
            second = await _initialize(client, url)
            assert first != second
            assert len(transport.store) == 2

            resp = await client.delete(url, headers={HEADER_MCP_SESSION_ID: first})
            assert resp.status == 200
            await resp.read()

            resp = await _post(client, url, TOOLS_LIST, second)
            assert resp.status == 200
            await resp.read()
            assert list(transport.store) == [second]
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_concurrent_requests_on_one_session(unused_tcp_port):
    _, transport = await _start(unused_tcp_port)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            session_id = await _initialize(client, url)

            async def call(req_id):
                payload = {
                    "jsonrpc": "2.0",
                    "id": req_id,
                    "method": "tools/call",
                    "params": {"name": "slow_echo", "arguments": {"text": f"t{req_id}"}},
                }
                resp = await _post(client, url, payload, session_id)
                assert resp.status == 200
                return await resp.json()

            results = await asyncio.gather(*(call(i) for i in range(10, 15)))
            for req_id, body in zip(range(10, 15), results):
                assert body["id"] == req_id
                assert body["result"]["content"][0]["text"] == f"t{req_id}"
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_failed_initialize_is_not_registered(unused_tcp_port):
    class BrokenServer(McpServer):
        def _initialize(self, request, session):
            raise RuntimeError("initialize exploded")

    _, transport = await _start(unused_tcp_port, server=BrokenServer())
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            resp = await _post(client, url, INITIALIZE)
            assert resp.status == 400
            assert HEADER_MCP_SESSION_ID not in resp.headers
            body = await resp.json()
            assert body["id"] == 1
            assert body["error"]["code"] == JsonRpcErrorCodes.INTERNAL_ERROR.value
            assert len(transport.store) == 0
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_store_failure_rolls_back_pending_session(unused_tcp_port):
    store = McpSessionStore()
    created = []

    def _register(session_id, session):
        created.append(session)
        raise ValueError("store unavailable")

    store.register = _register
    _, transport = await _start(unused_tcp_port, store=store)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            resp = await _post(client, url, INITIALIZE)
            assert resp.status == 500
            body = await resp.json()
            assert body["id"] is None
            assert body["error"]["code"] == JsonRpcErrorCodes.INTERNAL_ERROR.value
            assert len(store) == 0
            assert created[0].server_session.closed
            assert created[0].handler.closed
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_handler_error_keeps_session_registered(unused_tcp_port):
    _, transport = await _start(unused_tcp_port)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            session_id = await _initialize(client, url)
            handler = transport.store.get(session_id).handler
            dispatch = handler.dispatch

            async def _failing_dispatch(messages):
                handler.dispatch = dispatch
                raise RuntimeError("handler exploded")

            handler.dispatch = _failing_dispatch

            resp = await _post(client, url, TOOLS_LIST, session_id)
            assert resp.status == 500
            body = await resp.json()
            assert body["id"] is None
            assert body["error"]["code"] == JsonRpcErrorCodes.INTERNAL_ERROR.value
            assert "handler exploded" not in body["error"]["message"]
            assert session_id in transport.store

            resp = await _post(client, url, TOOLS_LIST, session_id)
            assert resp.status == 200
            body = await resp.json()
            assert {t["name"] for t in body["result"]["tools"]} == {"echo", "slow_echo"}
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_malformed_requests(unused_tcp_port):
    _, transport = await _start(unused_tcp_port)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            resp = await _post(client, url, "not json")
            assert resp.status == 400
            body = await resp.json()
            assert body["id"] is None
            assert body["error"]["code"] == JsonRpcErrorCodes.PARSE_ERROR.value

            resp = await _post(client, url, [])
            assert resp.status == 400
            assert (await resp.json())["error"]["code"] == JsonRpcErrorCodes.INVALID_REQUEST.value

            resp = await client.post(
                url, data="{}", headers={HEADER_CONTENT_TYPE: "text/plain", HEADER_ACCEPT: "application/json"}
            )
            assert resp.status == 415
            await resp.read()

            resp = await _post(client, url, [INITIALIZE, TOOLS_LIST])
            assert resp.status == 400
            await resp.read()
            assert len(transport.store) == 0

            resp = await _post(client, url, INITIALIZE, **{HEADER_MCP_PROTOCOL_VERSION: "1999-01-01"})
            assert resp.status == 400
            await resp.read()
            assert len(transport.store) == 0
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_batch_request(unused_tcp_port):
    _, transport = await _start(unused_tcp_port)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            session_id = await _initialize(client, url)
            batch = [
                INITIALIZED,
                {"jsonrpc": "2.0", "id": "a", "method": "ping"},
                TOOLS_LIST,
            ]
            resp = await _post(client, url, batch, session_id)
            assert resp.status == 200
            body = await resp.json()
            assert [item["id"] for item in body] == ["a", 2]

            resp = await _post(client, url, [INITIALIZED], session_id)
            assert resp.status == 202
            await resp.read()
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_health_check_and_origin_validation(unused_tcp_port):
    _, transport = await _start(unused_tcp_port)
    base = f"http://127.0.0.1:{unused_tcp_port}"
    try:
        async with aiohttp.ClientSession() as client:
            resp = await client.get(f"{base}/")
            assert resp.status == 200
            assert await resp.text() == "test-server v1.2.3 is running"

            resp = await _post(client, transport.url, INITIALIZE, **{HEADER_ORIGIN: "http://evil.example"})
            assert resp.status == 403
            assert await resp.json() == {
                "error": "Forbidden",
                "message": "Invalid origin for MCP server",
            }
            assert len(transport.store) == 0

            resp = await _post(client, transport.url, INITIALIZE, **{HEADER_ORIGIN: "http://localhost:5173"})
            assert resp.status == 200
            await resp.read()
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_sse_responses(unused_tcp_port):
    server = await _build_server()
    server.flags.json_response = False
    _, transport = await _start(unused_tcp_port, server=server)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            resp = await _post(client, url, INITIALIZE)
            assert resp.status == 200
            assert resp.headers[HEADER_CONTENT_TYPE].startswith("text/event-stream")
            session_id = resp.headers[HEADER_MCP_SESSION_ID]
            payloads = _sse_payloads(await resp.text())
            assert payloads[0]["id"] == 1

            # clients that only accept JSON still get JSON
            resp = await client.post(
                url,
                data=json.dumps(TOOLS_LIST),
                headers={
                    HEADER_CONTENT_TYPE: "application/json",
                    HEADER_ACCEPT: "application/json",
                    HEADER_MCP_SESSION_ID: session_id,
                },
            )
            assert resp.status == 200
            assert (await resp.json())["id"] == 2
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_server_push_stream(unused_tcp_port):
    _, transport = await _start(unused_tcp_port)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            session_id = await _initialize(client, url)
            stream_headers = {HEADER_ACCEPT: "text/event-stream", HEADER_MCP_SESSION_ID: session_id}

            async with client.get(url, headers=stream_headers) as stream:
                assert stream.status == 200
                assert stream.headers[HEADER_CONTENT_TYPE].startswith("text/event-stream")

                resp = await client.get(url, headers=stream_headers)
                assert resp.status == 409
                await resp.read()

                session = transport.store.get(session_id)
                assert session.handler.push(
                    McpNotification(method="notifications/message", params={"level": "info"})
                )
                line = b""
                while not line.startswith(b"data: "):
                    line = await asyncio.wait_for(stream.content.readline(), timeout=5)
                message = json.loads(line[len(b"data: "):])
                assert message["method"] == "notifications/message"

                resp = await client.delete(url, headers={HEADER_MCP_SESSION_ID: session_id})
                assert resp.status == 200
                await resp.read()

                # closing the session ends the stream
                rest = await asyncio.wait_for(stream.content.read(), timeout=5)
                assert b"data: " not in rest
                assert not session.handler.push(McpNotification(method="notifications/message"))
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_idle_sessions_are_reaped(unused_tcp_port, fake_clock):
    store = McpSessionStore()
    _, transport = await _start(unused_tcp_port, store=store, clock=fake_clock)
    reaper = McpIdleReaper(store, ttl=30 * 60, interval=5 * 60, clock=fake_clock)
    url = transport.url
    try:
        async with aiohttp.ClientSession() as client:
            idle = await _initialize(client, url)
            active = await _initialize(client, url)

            fake_clock.advance(20 * 60)
            resp = await _post(client, url, TOOLS_LIST, active)
            assert resp.status == 200
            await resp.read()

            fake_clock.advance(11 * 60)
            assert await reaper.sweep() == [idle]
            assert list(store) == [active]

            resp = await _post(client, url, TOOLS_LIST, idle)
            assert resp.status == 404
            await resp.read()

            resp = await _post(client, url, TOOLS_LIST, active)
            assert resp.status == 200
            await resp.read()
    finally:
        await transport.close()
