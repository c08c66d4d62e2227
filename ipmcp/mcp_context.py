from __future__ import annotations

import asyncio
import uuid
from enum import StrEnum
from typing import TYPE_CHECKING, Optional

from ipmcp.contracts.mcp_message import (
    McpNotification,
    McpRequest,
    McpResponseOrError,
)
from ipmcp.mcp_flag import McpServerFlags
from ipmcp.mcp_version import McpVersion

if TYPE_CHECKING:
    from ipmcp.mcp_server import McpServer


class McpSessionStatus(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    CLOSED = "closed"


class McpServerSession:
    """The logical server bound to one client connection.

    All sessions of a process share the capability registry of their
    :class:`McpServer`; only the handshake state and negotiated protocol
    version are per session.
    """

    def __init__(self, server: McpServer, session_id: Optional[str] = None) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.status: McpSessionStatus = McpSessionStatus.UNINITIALIZED
        self.version: McpVersion = McpVersion()
        self.handshake: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._server = server

    @property
    def flags(self) -> McpServerFlags:
        return self._server.flags

    @property
    def closed(self) -> bool:
        return self.status == McpSessionStatus.CLOSED

    def complete_handshake(self) -> None:
        self.status = McpSessionStatus.INITIALIZING
        if not self.handshake.done():
            self.handshake.set_result(self.id)

    async def process(self, request: McpRequest) -> McpResponseOrError:
        return await self._server.process(request, self)

    async def notify(self, notification: McpNotification) -> None:
        await self._server.notify(notification, self)

    async def close(self) -> None:
        self.status = McpSessionStatus.CLOSED
        if not self.handshake.done():
            self.handshake.cancel()
