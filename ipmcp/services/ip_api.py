"""
Client for the ip-api.com geolocation API.

The free tier only serves plain HTTP on ``ip-api.com``; with an API token the
``pro.ip-api.com`` endpoint is used and HTTPS becomes available.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ipmcp.mcp_errors import McpServiceError, create_api_error

logger = logging.getLogger(__name__)

IP_API_HOST = "ip-api.com"
IP_API_PRO_HOST = "pro.ip-api.com"
DEFAULT_TIMEOUT = 10.0

EXTENDED_FIELDS = ",".join(
    [
        "status",
        "message",
        "continent",
        "continentCode",
        "country",
        "countryCode",
        "region",
        "regionName",
        "city",
        "district",
        "zip",
        "lat",
        "lon",
        "timezone",
        "offset",
        "currency",
        "isp",
        "org",
        "as",
        "asname",
        "reverse",
        "mobile",
        "proxy",
        "hosting",
        "query",
    ]
)


class IpApiResponse(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    status: str
    country: str
    countryCode: str
    region: str
    regionName: str
    city: str
    zip: str
    lat: float
    lon: float
    timezone: str
    isp: str
    org: str
    as_: str = Field(alias="as")
    query: str

    # extended fields
    continent: Optional[str] = None
    continentCode: Optional[str] = None
    district: Optional[str] = None
    offset: Optional[int] = None
    currency: Optional[str] = None
    asname: Optional[str] = None
    reverse: Optional[str] = None
    mobile: Optional[bool] = None
    proxy: Optional[bool] = None
    hosting: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class IpApiService:
    def __init__(
        self,
        api_token: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._api_token = api_token
        self._base_url = base_url.rstrip("/") if base_url else None
        self._timeout = timeout

    def endpoint(
        self,
        ip_address: Optional[str] = None,
        include_extended_data: bool = False,
        use_https: bool = True,
    ) -> Tuple[str, Dict[str, str]]:
        if self._base_url:
            base = self._base_url
        elif self._api_token:
            base = f"{'https' if use_https else 'http'}://{IP_API_PRO_HOST}"
        else:
            if use_https:
                logger.warning("HTTPS requires an ip-api.com API token, using HTTP")
            base = f"http://{IP_API_HOST}"

        params: Dict[str, str] = {}
        if include_extended_data:
            params["fields"] = EXTENDED_FIELDS
        if self._api_token:
            params["key"] = self._api_token
        return f"{base}/json/{ip_address or ''}", params

    async def get(
        self,
        ip_address: Optional[str] = None,
        include_extended_data: bool = False,
        use_https: bool = True,
    ) -> IpApiResponse:
        url, params = self.endpoint(ip_address, include_extended_data, use_https)
        logger.debug("querying %s (extended=%s)", url, include_extended_data)
        try:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, params=params) as response:
                    if response.status == 429:
                        raise create_api_error(
                            "IP API rate limit exceeded", 429, await response.text()
                        )
                    if response.status >= 400:
                        raise create_api_error(
                            f"IP API request failed: {response.status} {response.reason}",
                            response.status,
                            await response.text(),
                        )
                    data = await response.json(content_type=None)
        except McpServiceError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("ip-api request to %s failed: %s", url, e)
            raise create_api_error(f"Failed to reach IP API: {e}", original_error=e)
        return self.parse(data)

    @staticmethod
    def parse(data: Any) -> IpApiResponse:
        if isinstance(data, dict) and data.get("status") == "fail":
            message = str(data.get("message") or "unknown error")
            if "private range" in message:
                raise create_api_error("Private IP addresses are not supported", 400, data)
            if "reserved range" in message:
                raise create_api_error("Reserved IP addresses are not supported", 400, data)
            raise create_api_error(f"IP API error: {message}", 400, data)
        try:
            return IpApiResponse.model_validate(data)
        except ValidationError as e:
            logger.error("ip-api response failed validation: %s", e)
            raise create_api_error("API response validation failed", 500, e)
