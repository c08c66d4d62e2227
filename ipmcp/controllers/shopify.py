import json
import logging

from ipmcp.contracts.controller_response import ControllerResponse
from ipmcp.mcp_errors import create_api_error, ensure_service_error
from ipmcp.services.shopify import GET_SHOP_DETAILS_QUERY, ShopifyService

logger = logging.getLogger(__name__)


class ShopifyController:
    def __init__(self, service: ShopifyService) -> None:
        self._service = service

    async def get_shop_details(self) -> ControllerResponse:
        domain = self._service.domain
        logger.info("fetching shop details for %s", domain)
        try:
            data = await self._service.execute(GET_SHOP_DETAILS_QUERY)
            shop = data.get("shop")
            if not shop:
                raise create_api_error(
                    f"No shop data received from Shopify API for store: {domain}"
                )
        except Exception as e:
            raise ensure_service_error(
                e,
                entity="ShopifyShopDetails",
                operation="getShopDetails",
                context={"myshopifyDomain": domain},
            )
        logger.info("fetched shop details for %s (%s)", domain, shop.get("name"))
        return ControllerResponse(content=f"```json\n{json.dumps(shop, indent=2)}\n```")
