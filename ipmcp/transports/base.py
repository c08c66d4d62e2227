from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ipmcp.mcp_server import McpServer


class McpServerTransport(ABC):
    @abstractmethod
    async def server_initialize(self, server: "McpServer"):
        pass

    @abstractmethod
    async def wait_closed(self):
        pass

    @abstractmethod
    async def close(self):
        pass
