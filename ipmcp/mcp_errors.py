"""
Errors raised by the vendor services and controllers, and their rendering into
MCP tool and resource results.

Services raise :class:`McpServiceError`; anything else escaping a controller is
normalized by :func:`ensure_service_error` so callers only ever see one type.
"""

import logging
from enum import StrEnum
from typing import Any, Dict, Optional

from ipmcp.contracts.mcp_message import McpCallToolResult
from ipmcp.contracts.mcp_resource import McpResourceContents

logger = logging.getLogger(__name__)


class McpErrorType(StrEnum):
    AUTH_MISSING = "AUTH_MISSING"
    AUTH_INVALID = "AUTH_INVALID"
    API_ERROR = "API_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class McpServiceError(Exception):
    def __init__(
        self,
        message: str,
        error_type: McpErrorType = McpErrorType.UNEXPECTED_ERROR,
        status_code: Optional[int] = None,
        original_error: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.type = error_type
        self.status_code = status_code
        self.original_error = original_error

    def __repr__(self) -> str:
        return (
            f"{McpServiceError.__name__}(type={self.type}, "
            f"status_code={self.status_code}, message={self.message!r})"
        )


class McpInvalidParamsError(ValueError):
    """Raised when request parameters do not match a registered handler."""


def create_auth_missing_error(message: str = "Authentication credentials are missing") -> McpServiceError:
    return McpServiceError(message, McpErrorType.AUTH_MISSING)


def create_api_error(
    message: str, status_code: Optional[int] = None, original_error: Any = None
) -> McpServiceError:
    return McpServiceError(message, McpErrorType.API_ERROR, status_code, original_error)


def create_unexpected_error(
    message: str = "An unexpected error occurred", original_error: Any = None
) -> McpServiceError:
    return McpServiceError(message, McpErrorType.UNEXPECTED_ERROR, None, original_error)


def ensure_service_error(
    error: BaseException,
    *,
    entity: Optional[str] = None,
    operation: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> McpServiceError:
    if isinstance(error, McpServiceError):
        return error
    action = f"{operation} {entity}".strip() if (entity or operation) else "processing request"
    logger.debug("normalizing %r while %s (%s)", error, action, context or {})
    return create_unexpected_error(f"Error {action}: {error}", original_error=error)


def format_error_for_tool(error: BaseException) -> McpCallToolResult:
    service_error = ensure_service_error(error)
    return McpCallToolResult(
        content=[{"type": "text", "text": f"Error: {service_error.message}"}],
        isError=True,
    )


def format_error_for_resource(error: BaseException, uri: str) -> McpResourceContents:
    service_error = ensure_service_error(error)
    return McpResourceContents(
        uri=uri,
        mimeType="text/plain",
        text=f"Error: {service_error.message}",
    )
