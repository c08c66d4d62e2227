import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from ipmcp.mcp_errors import (
    McpServiceError,
    create_api_error,
    create_auth_missing_error,
)

logger = logging.getLogger(__name__)

SHOPIFY_API_VERSION = "2025-01"
DEFAULT_TIMEOUT = 30.0

GET_SHOP_DETAILS_QUERY = """
query GetShopDetails {
  shop {
    id
    name
    email
    currencyCode
    primaryDomain {
      host
      url
    }
    plan {
      displayName
      partnerDevelopment
      shopifyPlus
    }
  }
}
"""


class ShopifyService:
    """Executes GraphQL queries against the Shopify Admin API of one store."""

    def __init__(
        self,
        domain: Optional[str],
        access_token: Optional[str],
        *,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.domain = domain
        self._access_token = access_token
        self._base_url = base_url.rstrip("/") if base_url else None
        self._timeout = timeout

    @property
    def endpoint(self) -> str:
        base = self._base_url or f"https://{self.domain}"
        return f"{base}/admin/api/{SHOPIFY_API_VERSION}/graphql.json"

    async def execute(
        self, query: str, variables: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        if not self.domain:
            raise create_auth_missing_error(
                "Shopify domain is missing. Set SHOPIFY_DOMAIN or shopify.myshopifyDomain "
                "in ~/.mcp/configs.json"
            )
        if not self._access_token:
            raise create_auth_missing_error(
                "Shopify access token is missing. Set SHOPIFY_ACCESS_TOKEN or "
                "shopify.accessToken in ~/.mcp/configs.json"
            )

        logger.debug("executing Shopify query against %s", self.endpoint)
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self._access_token,
        }
        try:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.endpoint,
                    data=json.dumps({"query": query, "variables": variables}),
                    headers=headers,
                ) as response:
                    text = await response.text()
                    if response.status >= 400:
                        raise create_api_error(
                            f"Shopify API request failed: {response.status} {response.reason} - {text}",
                            response.status,
                            text,
                        )
                    payload = json.loads(text)
        except McpServiceError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("Shopify request failed: %s", e)
            raise create_api_error(f"Shopify API request failed: {e}", original_error=e)

        if payload.get("errors"):
            raise create_api_error(
                f"Shopify API returned GraphQL errors: {json.dumps(payload['errors'])}",
                original_error=payload["errors"],
            )
        if payload.get("data") is None:
            raise create_api_error("Shopify API returned no data and no errors.")
        return payload["data"]
