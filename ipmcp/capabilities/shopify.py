import logging

from ipmcp.contracts.mcp_tool import McpToolAnnotations
from ipmcp.controllers.shopify import ShopifyController
from ipmcp.mcp_server import McpServer

logger = logging.getLogger(__name__)


async def register_shopify_capabilities(server: McpServer, controller: ShopifyController) -> None:
    async def shopify_get_shop_details():
        result = await controller.get_shop_details()
        return result.content

    await server.register_tool(
        shopify_get_shop_details,
        description=(
            "Retrieves general details and plan information for the configured Shopify store. "
            "Credentials should be set in ~/.mcp/configs.json or environment variables."
        ),
        title="Shopify Shop Details",
        annotations=McpToolAnnotations(readOnlyHint=True, openWorldHint=True),
    )
    logger.info("Shopify tools registered")
