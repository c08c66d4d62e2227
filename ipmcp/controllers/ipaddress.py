import json
import logging
from typing import Any, Literal, Optional

import jmespath
from jmespath.exceptions import JMESPathError

from ipmcp.contracts.controller_response import ControllerResponse
from ipmcp.mcp_errors import create_api_error, ensure_service_error
from ipmcp.mcp_toon import to_toon_or_json
from ipmcp.services.ip_api import IpApiResponse, IpApiService

logger = logging.getLogger(__name__)

OutputFormat = Literal["toon", "json"]


def apply_jq_filter(data: Any, expression: Optional[str]) -> Any:
    """Apply a JMESPath expression; a blank expression returns data unchanged."""
    if not expression or not expression.strip():
        return data
    try:
        return jmespath.search(expression, data)
    except JMESPathError as e:
        raise create_api_error(f"Invalid jq expression '{expression}': {e}", 400, e)


def render(data: Any, output_format: OutputFormat = "toon") -> str:
    json_text = json.dumps(data, indent=2, ensure_ascii=False)
    if output_format == "json":
        return json_text
    return to_toon_or_json(data, json_text)


class IpAddressController:
    def __init__(self, service: IpApiService) -> None:
        self._service = service

    async def fetch(
        self,
        ip_address: Optional[str] = None,
        include_extended_data: bool = False,
        use_https: bool = True,
    ) -> IpApiResponse:
        try:
            return await self._service.get(ip_address, include_extended_data, use_https)
        except Exception as e:
            raise ensure_service_error(
                e,
                entity="IP Address Details",
                operation="retrieving",
                context={"ipAddress": ip_address},
            )

    async def get(
        self,
        ip_address: Optional[str] = None,
        include_extended_data: bool = False,
        use_https: bool = True,
        jq: Optional[str] = None,
        output_format: OutputFormat = "toon",
    ) -> ControllerResponse:
        logger.debug("getting details for %s", ip_address or "current IP")
        response = await self.fetch(ip_address, include_extended_data, use_https)
        try:
            data = apply_jq_filter(response.to_dict(), jq)
            return ControllerResponse(content=render(data, output_format))
        except Exception as e:
            raise ensure_service_error(
                e,
                entity="IP Address Details",
                operation="formatting",
                context={"ipAddress": ip_address, "jq": jq},
            )
