import functools
import inspect
import json
import logging
import re
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Optional,
    List,
)

from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from ipmcp.contracts.mcp_schema import JsonSchema
from ipmcp.mcp_flag import McpServerFlags
from ipmcp.mcp_context import McpServerSession, McpSessionStatus
from ipmcp.mcp_errors import McpInvalidParamsError, format_error_for_tool
from ipmcp.mcp_schema_resolver import McpSchemaResolver
from ipmcp.contracts.mcp_tool import McpTool, McpToolAnnotations
from ipmcp.contracts.mcp_resource import (
    McpResource,
    McpResourceContents,
    McpResourceTemplate,
)
from ipmcp.contracts.mcp_prompt import McpPrompt, McpPromptArgument, McpPromptMessage
from ipmcp.jsonrpc_error_codes import JsonRpcErrorCodes as McpErrorCodes
from ipmcp.contracts.mcp_message import (
    McpCallToolRequest,
    McpGetPromptRequest,
    McpGetPromptResult,
    McpListPromptsResult,
    McpListResourceTemplatesResult,
    McpListResourcesResult,
    McpNotification,
    McpReadResourceRequest,
    McpReadResourceResult,
    McpResponseOrError,
    McpSystemError,
    McpInitializeResult,
    McpRequest,
    McpResponse,
    McpError,
    McpMethod,
    McpCallToolResult,
    McpListToolsResult,
    McpInitializeRequest,
)

logger = logging.getLogger(__name__)


class McpCallableTool(McpTool):
    callable_async: Callable[..., Awaitable] = Field(exclude=True)


class McpCallableResource(McpResource):
    callable_async: Callable[[str], Awaitable] = Field(exclude=True)


class McpCallableResourceTemplate(McpResourceTemplate):
    callable_async: Callable[..., Awaitable] = Field(exclude=True)
    list_async: Optional[Callable[[], Awaitable]] = Field(default=None, exclude=True)

    def match(self, uri: str) -> Optional[Dict[str, str]]:
        # RFC 6570 level 1: each {name} matches one non-empty path-free segment
        pattern = ""
        for part in re.split(r"(\{[A-Za-z_][A-Za-z0-9_]*\})", self.uriTemplate):
            if part.startswith("{") and part.endswith("}"):
                pattern += f"(?P<{part[1:-1]}>[^/?#]*)"
            else:
                pattern += re.escape(part)
        found = re.fullmatch(pattern, uri)
        return found.groupdict() if found else None


class McpCallablePrompt(McpPrompt):
    callable_async: Callable[..., Awaitable] = Field(exclude=True)


def _to_async(func: Callable) -> Callable[..., Awaitable]:
    if inspect.iscoroutinefunction(func):
        return func

    # tolerate sync functions by wrapping with async
    @functools.wraps(func)
    async def _async_wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return _async_wrapper


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", exclude_none=True)


class McpServer:
    def __init__(
        self,
        name: str = "ipmcp",
        version: str = "0.0.0",
        flags: Optional[McpServerFlags] = None,
        instructions: Optional[str] = None,
    ) -> None:
        self.name = name
        self.version = version
        self.flags = flags or McpServerFlags()
        self.instructions = instructions
        self._tools: Dict[str, McpCallableTool] = {}
        self._resources: Dict[str, McpCallableResource] = {}
        self._resource_templates: Dict[str, McpCallableResourceTemplate] = {}
        self._prompts: Dict[str, McpCallablePrompt] = {}
        self._sealed: bool = False

    def _check_not_sealed(self) -> None:
        if self._sealed:
            raise RuntimeError(
                f"{McpServer.__name__} capabilities are read-only once sessions exist"
            )

    def create_session(self, session_id: Optional[str] = None) -> McpServerSession:
        self._sealed = True
        return McpServerSession(self, session_id)

    async def register_tool(
        self,
        func: Callable,
        alias: Optional[str] = None,
        description: Optional[str] = None,
        title: Optional[str] = None,
        annotations: Optional[McpToolAnnotations] = None,
    ) -> None:
        func_name, input_schema, output_schema = McpSchemaResolver.resolve(func)

        await self.mcp_tools_register(
            name=alias or func_name,
            func=func,
            input_schema=input_schema,
            output_schema=output_schema,
            description=description or inspect.getdoc(func),
            title=title,
            annotations=annotations,
        )

    async def mcp_tools_register(
        self,
        name: str,
        func: Callable,
        input_schema: Dict[str, Any],
        output_schema: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        title: Optional[str] = None,
        annotations: Optional[McpToolAnnotations] = None,
    ) -> None:
        self._check_not_sealed()
        inputSchema = JsonSchema.model_validate(input_schema)
        outputSchema: Optional[JsonSchema] = None
        if output_schema is not None:
            outputSchema = JsonSchema.model_validate(output_schema)

        _tool = McpCallableTool(
            name=name,
            title=title,
            description=description,
            inputSchema=inputSchema,
            outputSchema=outputSchema,
            annotations=annotations,
            callable_async=_to_async(func),
        )
        self._tools[name] = _tool
        logger.debug("registered tool %s", name)

    async def register_resource(
        self,
        uri: str,
        name: str,
        func: Callable[[str], Any],
        description: Optional[str] = None,
        title: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> None:
        self._check_not_sealed()
        self._resources[uri] = McpCallableResource(
            uri=uri,
            name=name,
            title=title,
            description=description,
            mimeType=mime_type,
            callable_async=_to_async(func),
        )
        logger.debug("registered resource %s", uri)

    async def register_resource_template(
        self,
        uri_template: str,
        name: str,
        func: Callable[..., Any],
        list_func: Optional[Callable[[], Any]] = None,
        description: Optional[str] = None,
        title: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> None:
        self._check_not_sealed()
        self._resource_templates[name] = McpCallableResourceTemplate(
            uriTemplate=uri_template,
            name=name,
            title=title,
            description=description,
            mimeType=mime_type,
            callable_async=_to_async(func),
            list_async=_to_async(list_func) if list_func else None,
        )
        logger.debug("registered resource template %s", uri_template)

    async def register_prompt(
        self,
        func: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        title: Optional[str] = None,
    ) -> None:
        self._check_not_sealed()
        arguments = [
            McpPromptArgument(name=arg_name, description=arg_description, required=required)
            for arg_name, arg_description, required in McpSchemaResolver.describe_parameters(func)
        ]
        prompt_name = name or McpSchemaResolver.resolve(func)[0]
        self._prompts[prompt_name] = McpCallablePrompt(
            name=prompt_name,
            title=title,
            description=description or inspect.getdoc(func),
            arguments=arguments,
            callable_async=_to_async(func),
        )
        logger.debug("registered prompt %s", prompt_name)

    async def list_tools(self) -> List[McpTool]:
        return list(self._tools.values())

    async def list_resources(self) -> List[McpResource]:
        resources: List[McpResource] = list(self._resources.values())
        for template in self._resource_templates.values():
            if template.list_async is not None:
                resources.extend(await template.list_async())
        return resources

    async def list_resource_templates(self) -> List[McpResourceTemplate]:
        return list(self._resource_templates.values())

    async def list_prompts(self) -> List[McpPrompt]:
        return list(self._prompts.values())

    async def host(self, transport) -> None:
        await transport.server_initialize(self)

    def _to_kwargs(
        self, func: Callable[..., Awaitable], arguments: Dict[str, Any]
    ) -> Dict[str, Any]:
        try:
            signature = McpSchemaResolver.signature(func)
        except (TypeError, ValueError):
            return arguments
        unknown = set(arguments) - set(signature.parameters)
        if unknown:
            raise McpInvalidParamsError(f"unexpected arguments: {', '.join(sorted(unknown))}")
        _kwargs: Dict[str, Any] = {}
        for name, parameter in signature.parameters.items():
            if name not in arguments:
                if parameter.default is inspect.Parameter.empty:
                    raise McpInvalidParamsError(f"missing required argument '{name}'")
                continue
            annotation = parameter.annotation
            if annotation is inspect.Parameter.empty:
                _kwargs[name] = arguments[name]
                continue
            try:
                _kwargs[name] = TypeAdapter(annotation).validate_python(arguments[name])
            except ValidationError as e:
                raise McpInvalidParamsError(
                    f"invalid value for argument '{name}': {e.errors()[0]['msg']}"
                )
        return _kwargs

    @staticmethod
    def _to_call_tool_result(call_result: Any) -> McpCallToolResult:
        if isinstance(call_result, McpCallToolResult):
            return call_result
        if isinstance(call_result, str):
            return McpCallToolResult(content=[{"type": "text", "text": call_result}])
        # only support pydantic models and built-in types (dict, list, str, int, etc)
        if isinstance(call_result, BaseModel):
            call_result = call_result.model_dump(mode="json")
        return McpCallToolResult(
            content=[{"type": "text", "text": json.dumps(call_result)}],
            structuredContent=call_result,
        )

    @staticmethod
    def _error(
        request: McpRequest, message: str, code: McpErrorCodes = McpErrorCodes.INTERNAL_ERROR
    ) -> McpError:
        return McpError(
            id=request.id,
            error=McpSystemError(code=code.value, message=message),
        )

    async def _call_tool(self, request: McpCallToolRequest) -> McpResponseOrError:
        name = request.params.name
        tool = self._tools.get(name)
        if tool is None:
            return self._error(
                request,
                f"{McpServer.__name__} tool '{name}' not found",
                McpErrorCodes.INVALID_PARAMS,
            )
        try:
            _kwargs = self._to_kwargs(tool.callable_async, request.params.arguments or {})
        except McpInvalidParamsError as e:
            return self._error(request, f"tool '{name}' {e}", McpErrorCodes.INVALID_PARAMS)
        try:
            call_result = await tool.callable_async(**_kwargs)
            result = self._to_call_tool_result(call_result)
        except Exception as ex:
            logger.exception("tool %s failed", name)
            result = format_error_for_tool(ex)
        return McpResponse(id=request.id, result=_dump(result))

    async def _read_resource(self, request: McpReadResourceRequest) -> McpResponseOrError:
        uri = request.params.uri
        contents: Any
        resource = self._resources.get(uri)
        if resource is not None:
            contents = await resource.callable_async(uri)
        else:
            for template in self._resource_templates.values():
                variables = template.match(uri)
                if variables is not None:
                    contents = await template.callable_async(uri, **variables)
                    break
            else:
                return self._error(
                    request,
                    f"{McpServer.__name__} resource '{uri}' not found",
                    McpErrorCodes.RESOURCE_NOT_FOUND,
                )
        if isinstance(contents, (McpResourceContents, str)):
            contents = [contents]
        contents = [
            McpResourceContents(uri=uri, text=c) if isinstance(c, str) else c
            for c in contents
        ]
        return McpResponse(id=request.id, result=_dump(McpReadResourceResult(contents=contents)))

    async def _get_prompt(self, request: McpGetPromptRequest) -> McpResponseOrError:
        name = request.params.name
        prompt = self._prompts.get(name)
        if prompt is None:
            return self._error(
                request,
                f"{McpServer.__name__} prompt '{name}' not found",
                McpErrorCodes.INVALID_PARAMS,
            )
        try:
            _kwargs = self._to_kwargs(prompt.callable_async, request.params.arguments or {})
        except McpInvalidParamsError as e:
            return self._error(request, f"prompt '{name}' {e}", McpErrorCodes.INVALID_PARAMS)
        messages = await prompt.callable_async(**_kwargs)
        if isinstance(messages, McpGetPromptResult):
            result = messages
        else:
            if isinstance(messages, str):
                messages = [McpPromptMessage.user_text(messages)]
            result = McpGetPromptResult(description=prompt.description, messages=messages)
        return McpResponse(id=request.id, result=_dump(result))

    def _initialize(
        self, request: McpInitializeRequest, session: McpServerSession
    ) -> McpResponseOrError:
        # unsupported client versions fall back to the latest one we speak
        client_version = request.params.protocolVersion
        protocol_version = session.version.negotiate(
            client_version or session.version.default_version
        )

        result = McpInitializeResult(
            capabilities={
                "tools": {"listChanged": False},
                "resources": {"listChanged": False, "subscribe": False},
                "prompts": {"listChanged": False},
            },
            protocolVersion=protocol_version,
            serverInfo={"name": self.name, "version": self.version},
            instructions=self.instructions,
        )
        session.complete_handshake()
        logger.debug(
            "session %s initialized with protocol %s", session.id, protocol_version
        )
        return McpResponse(id=request.id, result=_dump(result))

    async def process(
        self, request: McpRequest, session: McpServerSession
    ) -> McpResponseOrError:
        """Process a single MCP request and return a response."""
        try:
            method = request.method

            if session.closed:
                return self._error(
                    request,
                    f"{McpServer.__name__} session closed",
                    McpErrorCodes.INVALID_REQUEST,
                )

            if method == McpMethod.INITIALIZE:
                if not isinstance(request, McpInitializeRequest):
                    return self._error(
                        request,
                        f"{McpServer.__name__} request is not a {McpInitializeRequest.__name__}",
                        McpErrorCodes.INVALID_PARAMS,
                    )
                if session.status != McpSessionStatus.UNINITIALIZED:
                    return self._error(
                        request,
                        f"{McpServer.__name__} session already initialized",
                        McpErrorCodes.INVALID_REQUEST,
                    )
                return self._initialize(request, session)

            if method == McpMethod.PING:
                return McpResponse(id=request.id, result={})

            if self.flags.enforce_mcp_initialize_sequence:
                if session.status == McpSessionStatus.UNINITIALIZED:
                    return self._error(
                        request,
                        f"{McpServer.__name__} not initialized",
                        McpErrorCodes.INVALID_REQUEST,
                    )
                if session.status == McpSessionStatus.INITIALIZING:
                    return self._error(
                        request,
                        f"{McpServer.__name__} initializing, waiting for initialized notification",
                        McpErrorCodes.INVALID_REQUEST,
                    )

            if method == McpMethod.TOOLS_LIST:
                result = McpListToolsResult(tools=await self.list_tools())
                return McpResponse(id=request.id, result=_dump(result))
            elif method == McpMethod.TOOLS_CALL:
                return await self._call_tool(request)
            elif method == McpMethod.RESOURCES_LIST:
                result = McpListResourcesResult(resources=await self.list_resources())
                return McpResponse(id=request.id, result=_dump(result))
            elif method == McpMethod.RESOURCES_TEMPLATES_LIST:
                result = McpListResourceTemplatesResult(
                    resourceTemplates=await self.list_resource_templates()
                )
                return McpResponse(id=request.id, result=_dump(result))
            elif method == McpMethod.RESOURCES_READ:
                return await self._read_resource(request)
            elif method == McpMethod.PROMPTS_LIST:
                result = McpListPromptsResult(prompts=await self.list_prompts())
                return McpResponse(id=request.id, result=_dump(result))
            elif method == McpMethod.PROMPTS_GET:
                return await self._get_prompt(request)
            else:
                return self._error(
                    request,
                    f"{McpServer.__name__} unknown method {method}",
                    McpErrorCodes.METHOD_NOT_FOUND,
                )
        except Exception as e:
            logger.exception("request %s (%s) failed", request.id, request.method)
            return self._error(
                request, f"{McpServer.__name__} exception during process: {e}"
            )

    async def notify(
        self, notification: McpNotification, session: McpServerSession
    ) -> None:
        if notification.method == McpMethod.NOTIFICATIONS_INITIALIZED:
            if self.flags.enforce_mcp_initialize_sequence:
                if session.status == McpSessionStatus.INITIALIZING:
                    session.status = McpSessionStatus.INITIALIZED
            elif not session.closed:
                session.status = McpSessionStatus.INITIALIZED
        else:
            logger.debug(
                "session %s ignored notification %s", session.id, notification.method
            )
