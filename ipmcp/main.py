import logging

from ipmcp import __version__
from ipmcp.capabilities.ipaddress import register_ip_capabilities
from ipmcp.capabilities.shopify import register_shopify_capabilities
from ipmcp.controllers.ipaddress import IpAddressController
from ipmcp.controllers.shopify import ShopifyController
from ipmcp.mcp_config import PACKAGE_NAME, McpConfig
from ipmcp.mcp_flag import McpServerFlags
from ipmcp.mcp_reaper import McpIdleReaper
from ipmcp.mcp_server import McpServer
from ipmcp.mcp_session_store import McpSessionStore
from ipmcp.mcp_shutdown import McpShutdownCoordinator
from ipmcp.services.ip_api import IpApiService
from ipmcp.services.shopify import ShopifyService
from ipmcp.transports.http import McpHttpServerTransport
from ipmcp.transports.stdio import McpStdioServerTransport

logger = logging.getLogger(__name__)

SERVER_INSTRUCTIONS = (
    "Look up geolocation and network details of public IP addresses with "
    "ip_get_details, or read ip://{ipAddress} resources."
)


async def create_server(config: McpConfig) -> McpServer:
    flags = McpServerFlags()
    flags.json_response = config.json_response
    server = McpServer(
        name=PACKAGE_NAME,
        version=__version__,
        flags=flags,
        instructions=SERVER_INSTRUCTIONS,
    )
    await register_ip_capabilities(
        server, IpAddressController(IpApiService(config.ipapi_api_token))
    )
    if config.shopify_domain and config.shopify_access_token:
        service = ShopifyService(config.shopify_domain, config.shopify_access_token)
        await register_shopify_capabilities(server, ShopifyController(service))
    else:
        logger.info("Shopify credentials not configured, Shopify tools disabled")
    return server


async def serve_http(server: McpServer, config: McpConfig) -> int:
    store = McpSessionStore()
    transport = McpHttpServerTransport(
        config.host, config.port, path=config.mcp_path, store=store
    )
    reaper = McpIdleReaper(
        store,
        ttl=config.session_ttl_seconds,
        interval=config.session_reap_interval_seconds,
    )
    coordinator = McpShutdownCoordinator(store, listener=transport, reaper=reaper)

    await server.host(transport)
    reaper.start()
    coordinator.install_signal_handlers()
    logger.info("%s v%s serving MCP on %s", server.name, server.version, transport.url)
    return await coordinator.wait_terminated()


async def serve_stdio(server: McpServer) -> int:
    transport = McpStdioServerTransport()
    await server.host(transport)
    try:
        await transport.wait_closed()
    finally:
        await transport.close()
    return 0


async def serve(config: McpConfig) -> int:
    server = await create_server(config)
    mode = config.transport_mode
    if mode == "http":
        return await serve_http(server, config)
    if mode != "stdio":
        logger.warning("unknown TRANSPORT_MODE %r, falling back to stdio", mode)
    return await serve_stdio(server)
