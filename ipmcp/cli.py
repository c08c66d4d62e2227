"""Command line entry point.

Without a command the MCP server starts in the configured transport mode;
with a command the lookup runs once and prints its result to stdout.
"""

import argparse
import asyncio
import logging
import sys
from typing import Mapping, Optional, Sequence

from pydantic import ValidationError

from ipmcp import __version__
from ipmcp.controllers.ipaddress import IpAddressController
from ipmcp.controllers.shopify import ShopifyController
from ipmcp.mcp_config import PACKAGE_NAME, McpConfig
from ipmcp.mcp_errors import McpServiceError
from ipmcp.mcp_logging import configure_logging
from ipmcp.services.ip_api import IpApiService
from ipmcp.services.shopify import ShopifyService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PACKAGE_NAME,
        description="MCP server for IP address geolocation lookups",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    ip_parser = subparsers.add_parser(
        "get-ip-details",
        help="Get geolocation and network details about an IP address",
        description=(
            "Retrieve location, ISP, organization and network details of an IP "
            "address, or of the current device when no address is given."
        ),
    )
    ip_parser.add_argument(
        "ip_address",
        nargs="?",
        metavar="ipAddress",
        help="IP address to lookup (omit for current device)",
    )
    ip_parser.add_argument(
        "--extended",
        action="store_true",
        help="Include extended data like ASN, mobile and proxy detection",
    )
    ip_parser.add_argument(
        "--https",
        action="store_true",
        help="Use HTTPS for API requests (requires an API token)",
    )
    ip_parser.add_argument("--jq", help="JMESPath expression to filter the response")
    ip_parser.add_argument(
        "--output-format",
        dest="output_format",
        choices=["toon", "json"],
        default="toon",
        help="Output format (default: toon)",
    )

    subparsers.add_parser(
        "get-shop-details",
        help="Get details and plan information of the configured Shopify store",
    )
    return parser


async def _run_command(args: argparse.Namespace, config: McpConfig) -> str:
    if args.command == "get-ip-details":
        controller = IpAddressController(IpApiService(config.ipapi_api_token))
        result = await controller.get(
            args.ip_address,
            include_extended_data=args.extended,
            use_https=args.https,
            jq=args.jq,
            output_format=args.output_format,
        )
    else:
        service = ShopifyService(config.shopify_domain, config.shopify_access_token)
        result = await ShopifyController(service).get_shop_details()
    return result.content


def main(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = McpConfig.load(environ)
    except ValidationError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    if args.command is None:
        from ipmcp.main import serve

        configure_logging(config.debug)
        try:
            return asyncio.run(serve(config))
        except OSError as e:
            logger.error("failed to start server: %s", e)
            return 1
        except KeyboardInterrupt:
            return 0

    configure_logging(config.debug, logging.WARNING)
    try:
        print(asyncio.run(_run_command(args, config)))
    except McpServiceError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    return 0
