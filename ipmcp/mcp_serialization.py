import json
from typing import Any, Dict, List, Tuple

from pydantic import TypeAdapter, ValidationError
from ipmcp.contracts.mcp_message import (
    McpClientRequestAnnotated,
    McpError,
    McpInitializedNotification,
    McpMessage,
    McpMethod,
    McpNotification,
    McpRequest,
    McpResponseOrError,
)
from ipmcp.jsonrpc_error_codes import JsonRpcErrorCodes

"""
Client message parsing relies on the deterministic method field: known methods
validate against their typed request model, unknown methods stay generic so the
server can answer them with METHOD_NOT_FOUND instead of a parse failure.
"""

_REQUEST_ADAPTER: TypeAdapter = TypeAdapter(McpClientRequestAnnotated)
_RESPONSE_ADAPTER: TypeAdapter = TypeAdapter(McpResponseOrError)
_KNOWN_METHODS = {m.value for m in McpMethod}


class McpMessageParseError(ValueError):
    def __init__(self, message: str, code: JsonRpcErrorCodes, request_id: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.request_id = request_id


class McpSerialization:
    @staticmethod
    def parse_client_message(data: Any) -> McpMessage:
        if not isinstance(data, dict) or data.get("jsonrpc") != "2.0":
            raise McpMessageParseError(
                "Invalid Request: not a JSON-RPC 2.0 message",
                JsonRpcErrorCodes.INVALID_REQUEST,
            )
        if "method" not in data:
            if "id" in data and ("result" in data or "error" in data):
                try:
                    return _RESPONSE_ADAPTER.validate_python(data)
                except ValidationError as e:
                    raise McpMessageParseError(
                        f"Invalid Request: malformed response: {e.errors()[0]['msg']}",
                        JsonRpcErrorCodes.INVALID_REQUEST,
                    )
            raise McpMessageParseError(
                "Invalid Request: missing method",
                JsonRpcErrorCodes.INVALID_REQUEST,
                data.get("id"),
            )
        try:
            if "id" not in data:
                if data["method"] == McpMethod.NOTIFICATIONS_INITIALIZED:
                    return McpInitializedNotification.model_validate(data)
                return McpNotification.model_validate(data)
            if data["method"] in _KNOWN_METHODS:
                return _REQUEST_ADAPTER.validate_python(data)
            return McpRequest.model_validate(data)
        except ValidationError as e:
            request_id = data.get("id") if isinstance(data.get("id"), (int, str)) else None
            code = (
                JsonRpcErrorCodes.INVALID_PARAMS
                if request_id is not None and data.get("method") in _KNOWN_METHODS
                else JsonRpcErrorCodes.INVALID_REQUEST
            )
            raise McpMessageParseError(
                f"Invalid {data.get('method')} message: {e.errors()[0]['msg']}",
                code,
                request_id,
            )

    @staticmethod
    def parse_client_payload(body: bytes) -> Tuple[List[McpMessage], bool]:
        """Parse a POST body into messages; the flag tells whether it was a batch."""
        try:
            data = json.loads(body)
        except ValueError:
            raise McpMessageParseError(
                "Parse error: invalid JSON", JsonRpcErrorCodes.PARSE_ERROR
            )
        if isinstance(data, list):
            if not data:
                raise McpMessageParseError(
                    "Invalid Request: empty batch", JsonRpcErrorCodes.INVALID_REQUEST
                )
            return [McpSerialization.parse_client_message(item) for item in data], True
        return [McpSerialization.parse_client_message(data)], False

    @staticmethod
    def dump_server_message(message: McpMessage) -> Dict[str, Any]:
        payload = message.model_dump(mode="json", exclude_none=True)
        if isinstance(message, McpError):
            # id stays in the envelope even when null
            payload["id"] = message.id
        return payload

    @staticmethod
    def dump_server_line(message: McpMessage) -> bytes:
        return json.dumps(McpSerialization.dump_server_message(message)).encode("utf-8") + b"\n"
