__version__ = "1.0.0"

from .mcp_server import McpServer
from .mcp_session_store import McpSessionStore
from .mcp_reaper import McpIdleReaper
from .mcp_shutdown import McpShutdownCoordinator

from .transports.base import McpServerTransport
from .transports.http import McpHttpServerTransport
from .transports.stdio import McpStdioServerTransport
