"""
Runtime configuration.

Values are resolved in this order: process environment (after ``.env`` in the
working directory has been merged in by python-dotenv without overriding real
variables), then the ``ipmcp.environments`` section of ``~/.mcp/configs.json``,
then the defaults declared on :class:`McpConfig`.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

PACKAGE_NAME = "ipmcp"
GLOBAL_CONFIG_PATH = Path.home() / ".mcp" / "configs.json"

_TRUE_VALUES = ("1", "true", "yes", "y", "on")


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def read_global_config(path: Optional[Path] = None) -> Dict[str, Any]:
    path = path or GLOBAL_CONFIG_PATH
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error("failed to read %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("ignoring %s, top level is not an object", path)
        return {}
    return data


class McpConfig(BaseModel):
    transport_mode: str = "stdio"
    host: str = "127.0.0.1"
    port: int = 3000
    mcp_path: str = "/mcp"
    session_ttl_seconds: float = 30 * 60
    session_reap_interval_seconds: float = 5 * 60
    json_response: bool = True
    debug: bool = False
    ipapi_api_token: Optional[str] = None
    shopify_domain: Optional[str] = None
    shopify_access_token: Optional[str] = None

    @field_validator("json_response", "debug", mode="before")
    @classmethod
    def _coerce_bool(cls, value: Any) -> bool:
        return parse_bool(value)

    @field_validator("transport_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> str:
        return str(value).strip().lower()

    @field_validator("mcp_path")
    @classmethod
    def _check_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("MCP_PATH must start with '/'")
        return value

    @classmethod
    def load(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        config_path: Optional[Path] = None,
        dotenv: bool = True,
    ) -> "McpConfig":
        if environ is None:
            if dotenv:
                load_dotenv(override=False)
            environ = os.environ

        global_config = read_global_config(config_path)
        section = global_config.get(PACKAGE_NAME, {})
        file_values = section.get("environments", {}) if isinstance(section, dict) else {}

        # legacy location of the shopify credentials
        shopify = global_config.get("shopify", {})
        if isinstance(shopify, dict):
            file_values = dict(file_values)
            if shopify.get("myshopifyDomain"):
                file_values.setdefault("SHOPIFY_DOMAIN", shopify["myshopifyDomain"])
            if shopify.get("accessToken"):
                file_values.setdefault("SHOPIFY_ACCESS_TOKEN", shopify["accessToken"])

        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            key = name.upper()
            if environ.get(key):
                values[name] = environ[key]
            elif file_values.get(key) not in (None, ""):
                values[name] = file_values[key]
        return cls.model_validate(values)
