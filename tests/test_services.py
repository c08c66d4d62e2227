import aiohttp
from aiohttp import web
import pytest

from ipmcp.mcp_errors import McpErrorType, McpServiceError
from ipmcp.services.ip_api import EXTENDED_FIELDS, IpApiService
from ipmcp.services.shopify import SHOPIFY_API_VERSION, ShopifyService


GOOGLE_DNS = {
    "status": "success",
    "country": "United States",
    "countryCode": "US",
    "region": "VA",
    "regionName": "Virginia",
    "city": "Ashburn",
    "zip": "20149",
    "lat": 39.03,
    "lon": -77.5,
    "timezone": "America/New_York",
    "isp": "Google LLC",
    "org": "Google Public DNS",
    "as": "AS15169 Google LLC",
    "query": "8.8.8.8",
}


async def _start_stub_http_server(port: int, routes) -> web.AppRunner:
    app = web.Application()
    app.add_routes(routes)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    return runner


def _ip_api_routes(responses: dict, seen: list):
    async def _handle(request: web.Request) -> web.Response:
        ip = request.match_info.get("ip", "")
        seen.append((ip, dict(request.query)))
        status, body = responses.get(ip, responses.get("*"))
        return web.json_response(body, status=status)

    return [web.get("/json/", _handle), web.get("/json/{ip}", _handle)]


@pytest.mark.asyncio
async def test_ip_api_success(unused_tcp_port):
    seen = []
    current = dict(GOOGLE_DNS, query="203.0.113.9")
    routes = _ip_api_routes({"8.8.8.8": (200, GOOGLE_DNS), "": (200, current)}, seen)
    runner = await _start_stub_http_server(unused_tcp_port, routes)
    try:
        service = IpApiService(base_url=f"http://127.0.0.1:{unused_tcp_port}")

        response = await service.get("8.8.8.8")
        assert response.query == "8.8.8.8"
        assert response.as_ == "AS15169 Google LLC"
        assert response.to_dict() == GOOGLE_DNS

        response = await service.get(None, include_extended_data=True)
        assert response.query == "203.0.113.9"
        assert seen[0] == ("8.8.8.8", {})
        assert seen[1] == ("", {"fields": EXTENDED_FIELDS})
    finally:
        await runner.cleanup()


@pytest.mark.asyncio
async def test_ip_api_failures(unused_tcp_port):
    private = {"status": "fail", "message": "private range", "query": "192.168.1.1"}
    reserved = {"status": "fail", "message": "reserved range", "query": "127.0.0.1"}
    invalid = {"status": "fail", "message": "invalid query", "query": "nope"}
    routes = _ip_api_routes(
        {
            "192.168.1.1": (200, private),
            "127.0.0.1": (200, reserved),
            "nope": (200, invalid),
            "9.9.9.9": (200, {"status": "success"}),
            "1.2.3.4": (429, {"message": "too many requests"}),
        },
        [],
    )
    runner = await _start_stub_http_server(unused_tcp_port, routes)
    try:
        service = IpApiService(base_url=f"http://127.0.0.1:{unused_tcp_port}")

        with pytest.raises(McpServiceError) as excinfo:
            await service.get("192.168.1.1")
        assert excinfo.value.type == McpErrorType.API_ERROR
        assert excinfo.value.status_code == 400
        assert "Private IP addresses are not supported" in excinfo.value.message
        assert excinfo.value.original_error == private

        with pytest.raises(McpServiceError) as excinfo:
            await service.get("127.0.0.1")
        assert "Reserved IP addresses are not supported" in excinfo.value.message

        with pytest.raises(McpServiceError) as excinfo:
            await service.get("nope")
        assert excinfo.value.message == "IP API error: invalid query"
        assert excinfo.value.status_code == 400

        with pytest.raises(McpServiceError) as excinfo:
            await service.get("9.9.9.9")
        assert excinfo.value.status_code == 500
        assert "API response validation failed" in excinfo.value.message

        with pytest.raises(McpServiceError) as excinfo:
            await service.get("1.2.3.4")
        assert excinfo.value.status_code == 429
    finally:
        await runner.cleanup()


@pytest.mark.asyncio
async def test_ip_api_network_error(unused_tcp_port):
    # nothing listens on the port
    service = IpApiService(base_url=f"http://127.0.0.1:{unused_tcp_port}", timeout=2)
    with pytest.raises(McpServiceError) as excinfo:
        await service.get("8.8.8.8")
    assert excinfo.value.type == McpErrorType.API_ERROR
    assert isinstance(excinfo.value.original_error, aiohttp.ClientError)


def test_ip_api_endpoint_selection():
    # the free tier has no HTTPS
    url, params = IpApiService().endpoint("8.8.8.8", use_https=True)
    assert url == "http://ip-api.com/json/8.8.8.8"
    assert params == {}

    pro = IpApiService("secret")
    url, params = pro.endpoint("8.8.8.8", include_extended_data=True, use_https=True)
    assert url == "https://pro.ip-api.com/json/8.8.8.8"
    assert params == {"fields": EXTENDED_FIELDS, "key": "secret"}

    url, _ = pro.endpoint(None, use_https=False)
    assert url == "http://pro.ip-api.com/json/"


def _shopify_routes(status: int, body: dict, seen: list):
    async def _handle(request: web.Request) -> web.Response:
        seen.append((request.headers.get("X-Shopify-Access-Token"), await request.json()))
        return web.json_response(body, status=status)

    return [web.post(f"/admin/api/{SHOPIFY_API_VERSION}/graphql.json", _handle)]


@pytest.mark.asyncio
async def test_shopify_execute(unused_tcp_port):
    seen = []
    shop = {"id": "gid://shopify/Shop/1", "name": "Demo"}
    runner = await _start_stub_http_server(
        unused_tcp_port, _shopify_routes(200, {"data": {"shop": shop}}, seen)
    )
    try:
        service = ShopifyService(
            "demo.myshopify.com", "shpat_token", base_url=f"http://127.0.0.1:{unused_tcp_port}"
        )
        data = await service.execute("query { shop { id name } }", {"first": 1})
        assert data == {"shop": shop}
        assert seen == [
            ("shpat_token", {"query": "query { shop { id name } }", "variables": {"first": 1}})
        ]
    finally:
        await runner.cleanup()


@pytest.mark.asyncio
async def test_shopify_errors(unused_tcp_port):
    base_url = f"http://127.0.0.1:{unused_tcp_port}"

    with pytest.raises(McpServiceError) as excinfo:
        await ShopifyService(None, "token", base_url=base_url).execute("query { shop { id } }")
    assert excinfo.value.type == McpErrorType.AUTH_MISSING

    with pytest.raises(McpServiceError) as excinfo:
        await ShopifyService("demo.myshopify.com", "", base_url=base_url).execute("query { shop { id } }")
    assert excinfo.value.type == McpErrorType.AUTH_MISSING

    runner = await _start_stub_http_server(
        unused_tcp_port, _shopify_routes(200, {"errors": [{"message": "bad field"}]}, [])
    )
    try:
        service = ShopifyService("demo.myshopify.com", "token", base_url=base_url)
        with pytest.raises(McpServiceError) as excinfo:
            await service.execute("query { nope }")
        assert "GraphQL errors" in excinfo.value.message
        assert "bad field" in excinfo.value.message
    finally:
        await runner.cleanup()

    runner = await _start_stub_http_server(
        unused_tcp_port, _shopify_routes(401, {"errors": "Invalid API key"}, [])
    )
    try:
        service = ShopifyService("demo.myshopify.com", "token", base_url=base_url)
        with pytest.raises(McpServiceError) as excinfo:
            await service.execute("query { shop { id } }")
        assert excinfo.value.status_code == 401
        assert excinfo.value.type == McpErrorType.API_ERROR
    finally:
        await runner.cleanup()


def test_shopify_endpoint():
    service = ShopifyService("demo.myshopify.com", "token")
    assert service.endpoint == "https://demo.myshopify.com/admin/api/2025-01/graphql.json"
