from typing import Annotated, List, Optional, Union, Literal, Dict, Any
from enum import StrEnum
from pydantic import BaseModel, Field

from ipmcp.contracts.mcp_tool import McpTool
from ipmcp.contracts.mcp_resource import (
    McpResource,
    McpResourceContents,
    McpResourceTemplate,
)
from ipmcp.contracts.mcp_prompt import McpPrompt, McpPromptMessage


class McpMethod(StrEnum):
    INITIALIZE = "initialize"
    PING = "ping"
    TOOLS_CALL = "tools/call"
    TOOLS_LIST = "tools/list"
    RESOURCES_LIST = "resources/list"
    RESOURCES_TEMPLATES_LIST = "resources/templates/list"
    RESOURCES_READ = "resources/read"
    PROMPTS_LIST = "prompts/list"
    PROMPTS_GET = "prompts/get"
    NOTIFICATIONS_INITIALIZED = "notifications/initialized"
    NOTIFICATIONS_CANCELLED = "notifications/cancelled"


class McpMessage(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"


class McpPackage(McpMessage):
    id: Union[int, str]


class McpNotification(McpMessage):
    method: str
    params: Optional[Dict[str, Any]] = None


class McpInitializedNotification(McpNotification):
    method: Literal[McpMethod.NOTIFICATIONS_INITIALIZED] = (
        McpMethod.NOTIFICATIONS_INITIALIZED
    )


class McpRequest(McpPackage):
    method: str
    params: Optional[Dict[str, Any]] = None


class McpInitializeParams(BaseModel):
    capabilities: Dict[str, Any]
    protocolVersion: Optional[str] = None
    clientInfo: Optional[Dict[str, Any]] = None


class McpInitializeRequest(McpRequest):
    method: Literal[McpMethod.INITIALIZE] = McpMethod.INITIALIZE
    params: McpInitializeParams


class McpPingRequest(McpRequest):
    method: Literal[McpMethod.PING] = McpMethod.PING
    params: Optional[Dict[str, Any]] = None


class McpCallToolParams(BaseModel):
    name: str
    arguments: Optional[Dict[str, Any]] = None


class McpCallToolRequest(McpRequest):
    method: Literal[McpMethod.TOOLS_CALL] = McpMethod.TOOLS_CALL
    params: McpCallToolParams


class McpCursorParams(BaseModel):
    cursor: Optional[str] = None


class McpListToolsRequest(McpRequest):
    method: Literal[McpMethod.TOOLS_LIST] = McpMethod.TOOLS_LIST
    params: Optional[McpCursorParams] = None


class McpListResourcesRequest(McpRequest):
    method: Literal[McpMethod.RESOURCES_LIST] = McpMethod.RESOURCES_LIST
    params: Optional[McpCursorParams] = None


class McpListResourceTemplatesRequest(McpRequest):
    method: Literal[McpMethod.RESOURCES_TEMPLATES_LIST] = (
        McpMethod.RESOURCES_TEMPLATES_LIST
    )
    params: Optional[McpCursorParams] = None


class McpReadResourceParams(BaseModel):
    uri: str


class McpReadResourceRequest(McpRequest):
    method: Literal[McpMethod.RESOURCES_READ] = McpMethod.RESOURCES_READ
    params: McpReadResourceParams


class McpListPromptsRequest(McpRequest):
    method: Literal[McpMethod.PROMPTS_LIST] = McpMethod.PROMPTS_LIST
    params: Optional[McpCursorParams] = None


class McpGetPromptParams(BaseModel):
    name: str
    arguments: Optional[Dict[str, str]] = None


class McpGetPromptRequest(McpRequest):
    method: Literal[McpMethod.PROMPTS_GET] = McpMethod.PROMPTS_GET
    params: McpGetPromptParams


class McpSystemError(BaseModel):
    code: Optional[int | str] = None
    message: Optional[str] = None
    data: Optional[Any] = None


class McpError(McpPackage):
    # null when the failure happened before a request id could be read
    id: Optional[Union[int, str]] = None
    error: McpSystemError


class McpResponse(McpPackage):
    result: Dict[str, Any]


class McpInitializeResult(BaseModel):
    capabilities: Dict[str, Any]
    protocolVersion: Optional[str] = None
    serverInfo: Optional[Dict[str, Any]] = None
    instructions: Optional[str] = None


class McpCallToolResult(BaseModel):
    content: Optional[List[Dict[str, Any]]] = None
    isError: Optional[bool] = None
    structuredContent: Optional[Any] = None


class McpListToolsResult(BaseModel):
    nextCursor: Optional[str] = None
    tools: list[McpTool]


class McpListResourcesResult(BaseModel):
    nextCursor: Optional[str] = None
    resources: list[McpResource]


class McpListResourceTemplatesResult(BaseModel):
    nextCursor: Optional[str] = None
    resourceTemplates: list[McpResourceTemplate]


class McpReadResourceResult(BaseModel):
    contents: list[McpResourceContents]


class McpListPromptsResult(BaseModel):
    nextCursor: Optional[str] = None
    prompts: list[McpPrompt]


class McpGetPromptResult(BaseModel):
    description: Optional[str] = None
    messages: list[McpPromptMessage]


McpResponseOrError = Union[McpResponse, McpError]


McpClientRequestAnnotated = Annotated[
    Union[
        McpInitializeRequest,
        McpPingRequest,
        McpCallToolRequest,
        McpListToolsRequest,
        McpListResourcesRequest,
        McpListResourceTemplatesRequest,
        McpReadResourceRequest,
        McpListPromptsRequest,
        McpGetPromptRequest,
    ],
    Field(discriminator="method"),
]
