"""
MCP surface of the IP lookup feature: the ``ip_get_details`` and
``ip_get_details_link`` tools, the ``ip://{ipAddress}`` resource template and
the ``ip-analysis`` prompt.
"""

import logging
from typing import Annotated, List, Literal, Optional

from ipmcp.contracts.mcp_message import McpCallToolResult
from ipmcp.contracts.mcp_prompt import McpPromptMessage
from ipmcp.contracts.mcp_resource import McpResource, McpResourceContents
from ipmcp.contracts.mcp_tool import McpToolAnnotations
from ipmcp.controllers.ipaddress import IpAddressController
from ipmcp.mcp_errors import format_error_for_resource
from ipmcp.mcp_server import McpServer

logger = logging.getLogger(__name__)

MAX_TOOL_OUTPUT_CHARS = 40_000
IP_RESOURCE_MIME_TYPE = "text/markdown"

IP_GET_DETAILS_DESCRIPTION = """Retrieve geolocation and network information for a public IP address. Returns TOON format by default (30-60% fewer tokens than JSON).

**IMPORTANT - Cost Optimization:**
- Use `jq` param to extract only needed fields. Unfiltered responses are expensive!
- Example: `jq: "{ip: query, country: country, city: city}"` - extract specific fields
- If unsure about available fields, first call WITHOUT jq filter to see all fields, then use jq in subsequent calls

**Output format:** TOON (default, token-efficient) or JSON (`outputFormat: "json"`)

**JQ examples:** `query` (IP only), `{ip: query, country: country}`, `{location: {lat: lat, lon: lon}}`

**Note:** Cannot lookup private IPs (192.168.x.x, 10.x.x.x). Powered by ip-api.com."""

IP_GET_DETAILS_LINK_DESCRIPTION = """Retrieve IP address details and return them as a resource reference instead of inline content.

The returned `ip://{ipAddress}` resource can be read separately, cached and reused by other tools.

**Note:** Cannot lookup private IPs (192.168.x.x, 10.x.x.x). Powered by ip-api.com."""

EXAMPLE_RESOURCES = [
    McpResource(
        uri="ip://8.8.8.8",
        name="Google DNS",
        description="Lookup Google DNS server",
        mimeType=IP_RESOURCE_MIME_TYPE,
    ),
    McpResource(
        uri="ip://1.1.1.1",
        name="Cloudflare DNS",
        description="Lookup Cloudflare DNS server",
        mimeType=IP_RESOURCE_MIME_TYPE,
    ),
]

AnalysisFocus = Literal["security", "geolocation", "network", "comprehensive"]

ANALYSIS_PROMPTS = {
    "security": """Analyze the security profile of this IP address. Focus on:
- Whether it's associated with known threats or malicious activity
- Proxy/VPN detection indicators
- ASN reputation and ownership
- Geographic risk factors

IP Data:
{content}

Provide a security risk assessment and recommendations.""",
    "geolocation": """Analyze the geographic location of this IP address. Focus on:
- Precise location accuracy
- Timezone and regional context
- ISP and connectivity patterns
- Distance from major data centers

IP Data:
{content}

Provide geographic insights and potential use cases.""",
    "network": """Analyze the network characteristics of this IP address. Focus on:
- ISP and network provider details
- ASN and routing information
- Connection type and infrastructure
- Network performance indicators

IP Data:
{content}

Provide network analysis and technical insights.""",
    "comprehensive": """Provide a comprehensive analysis of this IP address covering:
- Geolocation and regional context
- Network and ISP information
- Security and reputation assessment
- Potential use cases and considerations

IP Data:
{content}

Deliver a detailed, actionable analysis.""",
}


def truncate_for_ai(text: str, limit: int = MAX_TOOL_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return (
        f"{text[:limit]}\n\n"
        f"[Response truncated: showing {limit} of {len(text)} characters. "
        "Use the jq parameter to select fewer fields.]"
    )


async def register_ip_capabilities(server: McpServer, controller: IpAddressController) -> None:
    async def ip_get_details(
        ipAddress: Annotated[Optional[str], "IP address to lookup (omit for current IP)"] = None,
        includeExtendedData: Annotated[
            bool,
            "Whether to include extended data (ASN, host, organization, etc.). Requires API token.",
        ] = False,
        useHttps: Annotated[bool, "Whether to use HTTPS for the API call (recommended)."] = True,
        jq: Annotated[
            Optional[str],
            "JMESPath expression to filter/transform the response. "
            'Examples: "{ip: query, country: country}", "lat". See https://jmespath.org',
        ] = None,
        outputFormat: Annotated[
            Literal["toon", "json"],
            'Output format: "toon" (default, fewer tokens) or "json".',
        ] = "toon",
    ):
        logger.debug("ip_get_details for %s", ipAddress or "current IP")
        result = await controller.get(ipAddress, includeExtendedData, useHttps, jq, outputFormat)
        return truncate_for_ai(result.content)

    async def ip_get_details_link(
        ipAddress: Annotated[Optional[str], "IP address to lookup (omit for current IP)"] = None,
        includeExtendedData: Annotated[
            bool, "Include extended data (ASN, host, proxy detection)"
        ] = False,
    ):
        response = await controller.fetch(ipAddress, includeExtendedData)
        uri = f"ip://{response.query}"
        return McpCallToolResult(
            content=[
                {
                    "type": "resource",
                    "resource": {
                        "uri": uri,
                        "text": f"IP lookup result available at resource {uri}",
                        "mimeType": IP_RESOURCE_MIME_TYPE,
                    },
                }
            ]
        )

    async def read_ip_resource(uri: str, ipAddress: str) -> McpResourceContents:
        try:
            result = await controller.get(ipAddress or None)
        except Exception as e:
            logger.error("resource %s failed: %s", uri, e)
            return format_error_for_resource(e, uri)
        return McpResourceContents(uri=uri, mimeType=IP_RESOURCE_MIME_TYPE, text=result.content)

    async def list_ip_resources() -> List[McpResource]:
        return list(EXAMPLE_RESOURCES)

    async def ip_analysis(
        ipAddress: Annotated[Optional[str], "IP address to analyze (omit for current IP)"] = None,
        focus: Annotated[
            Optional[AnalysisFocus],
            "Analysis focus: security, geolocation, network, or comprehensive",
        ] = None,
    ) -> List[McpPromptMessage]:
        try:
            result = await controller.get(ipAddress, include_extended_data=True)
        except Exception as e:
            logger.error("failed to generate IP analysis prompt: %s", e)
            return [McpPromptMessage.user_text(f"Error generating IP analysis: {e}")]
        template = ANALYSIS_PROMPTS[focus or "comprehensive"]
        return [McpPromptMessage.user_text(template.format(content=result.content))]

    await server.register_tool(
        ip_get_details,
        description=IP_GET_DETAILS_DESCRIPTION,
        title="IP Address Lookup",
        annotations=McpToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
    )
    await server.register_tool(
        ip_get_details_link,
        description=IP_GET_DETAILS_LINK_DESCRIPTION,
        title="IP Address Lookup (ResourceLink)",
    )
    await server.register_resource_template(
        "ip://{ipAddress}",
        "ip-lookup",
        read_ip_resource,
        list_func=list_ip_resources,
        description="Retrieve geolocation and network information for a public IP address",
        title="IP Address Lookup",
        mime_type=IP_RESOURCE_MIME_TYPE,
    )
    await server.register_prompt(
        ip_analysis,
        name="ip-analysis",
        description="Generate a structured analysis request for IP address geolocation and network information",
        title="IP Address Analysis",
    )
    logger.debug("registered IP lookup capabilities")
