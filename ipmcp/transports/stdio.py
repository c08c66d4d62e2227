import asyncio
import json
import logging
import sys
from typing import BinaryIO, Optional

from ipmcp.contracts.mcp_message import (
    McpError,
    McpMessage,
    McpNotification,
    McpRequest,
    McpSystemError,
)
from ipmcp.jsonrpc_error_codes import JsonRpcErrorCodes
from ipmcp.mcp_context import McpServerSession
from ipmcp.mcp_serialization import McpMessageParseError, McpSerialization
from ipmcp.mcp_server import McpServer
from ipmcp.transports.base import McpServerTransport

logger = logging.getLogger(__name__)


class McpStdioServerTransport(McpServerTransport):
    """Newline-delimited JSON-RPC over stdin/stdout with a single session."""

    def __init__(
        self,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
    ) -> None:
        self._stdin = stdin
        self._stdout = stdout
        self._session: Optional[McpServerSession] = None
        self._raw_lines: asyncio.Queue[Optional[bytes]] = asyncio.Queue()
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._process_task: Optional[asyncio.Task[None]] = None
        self._writer_lock = asyncio.Lock()
        self._closed: Optional[asyncio.Event] = None

    @property
    def session(self) -> Optional[McpServerSession]:
        return self._session

    async def server_initialize(self, server: McpServer):
        if self._session is not None:
            return
        self._session = server.create_session()
        self._raw_lines = asyncio.Queue()
        self._writer_lock = asyncio.Lock()
        self._closed = asyncio.Event()
        self._reader_task = asyncio.create_task(self._read_loop())
        self._process_task = asyncio.create_task(self._process_loop())
        logger.info("stdio transport ready")

    async def _read_loop(self) -> None:
        buffer = self._stdin or sys.stdin.buffer
        try:
            while True:
                line = await asyncio.to_thread(buffer.readline)
                if not line:
                    break
                await self._raw_lines.put(line)
        finally:
            await self._raw_lines.put(None)

    async def _process_loop(self) -> None:
        try:
            while True:
                line = await self._raw_lines.get()
                if line is None:
                    logger.info("stdin closed")
                    break
                if not line.strip():
                    continue
                await self._handle_line(line)
        finally:
            self._closed.set()

    async def _handle_line(self, line: bytes) -> None:
        try:
            data = json.loads(line)
        except ValueError:
            await self._send_error(JsonRpcErrorCodes.PARSE_ERROR, "Parse error: invalid JSON")
            return
        try:
            if isinstance(data, list):
                raise McpMessageParseError(
                    "Invalid Request: batches are not supported over stdio",
                    JsonRpcErrorCodes.INVALID_REQUEST,
                )
            message = McpSerialization.parse_client_message(data)
        except McpMessageParseError as e:
            await self._send_error(e.code, str(e), e.request_id)
            return

        if isinstance(message, McpRequest):
            await self.send(await self._session.process(message))
        elif isinstance(message, McpNotification):
            await self._session.notify(message)

    async def _send_error(self, code: JsonRpcErrorCodes, message: str, request_id=None) -> None:
        await self.send(
            McpError(id=request_id, error=McpSystemError(code=int(code), message=message))
        )

    async def send(self, message: McpMessage) -> bool:
        payload = McpSerialization.dump_server_line(message)
        async with self._writer_lock:
            await asyncio.to_thread(self._write_bytes, payload)
        return True

    def _write_bytes(self, data: bytes) -> None:
        out = self._stdout or sys.stdout.buffer
        out.write(data)
        out.flush()

    async def wait_closed(self):
        if self._closed is not None:
            await self._closed.wait()

    async def close(self):
        for task in (self._reader_task, self._process_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reader_task = None
        self._process_task = None
        if self._session is not None:
            await self._session.close()
        if self._closed is not None:
            self._closed.set()
