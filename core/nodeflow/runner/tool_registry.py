"""Tool discovery, registration and uniform invocation.

Tools come from two kinds of sources:
1. Static Python functions (sync or async), registered in-process
2. MCP servers, over STDIO or HTTP

Both are flattened into ToolDescriptors with the same async ``invoke``
contract, so chat handlers never care which transport backs a tool.
"""

import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from nodeflow.errors import ToolInvocationError
from nodeflow.runner.mcp_client import MCPClient, MCPServerConfig, MCPTool

logger = logging.getLogger(__name__)

ToolInvoker = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDescriptor:
    """A callable tool, bound to its transport."""

    name: str
    description: str
    invoke: ToolInvoker = field(repr=False, compare=False)
    input_schema: dict[str, Any] = field(default_factory=dict, compare=False)
    source: str = "local"  # "local" or the MCP server name


_ANNOTATION_TYPES = {
    int: "integer",
    float: "number",
    bool: "boolean",
    dict: "object",
    list: "array",
}


def schema_from_signature(func: Callable) -> dict[str, Any]:
    """Generate a JSON schema for a function's parameters."""
    sig = inspect.signature(func)
    properties = {}
    required = []

    for param_name, param in sig.parameters.items():
        if param_name in ("self", "cls"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        param_type = "string"  # Default
        if param.annotation != inspect.Parameter.empty:
            param_type = _ANNOTATION_TYPES.get(param.annotation, "string")

        properties[param_name] = {"type": param_type}

        if param.default == inspect.Parameter.empty:
            required.append(param_name)

    return {"type": "object", "properties": properties, "required": required}


class ToolRegistry:
    """
    Request-scoped set of tools.

    Built once at run start by a ToolResolver, then frozen: concurrent node
    tasks share it read-only.
    """

    def __init__(self):
        self._tools: dict[str, ToolDescriptor] = {}
        self._mcp_clients: list[MCPClient] = []
        self._frozen = False

    def register(self, descriptor: ToolDescriptor) -> None:
        """Register a single tool descriptor. Later registrations win."""
        if self._frozen:
            raise RuntimeError("ToolRegistry is frozen for this run")
        if descriptor.name in self._tools:
            logger.warning(
                f"Tool '{descriptor.name}' from '{descriptor.source}' replaces the one "
                f"from '{self._tools[descriptor.name].source}'"
            )
        self._tools[descriptor.name] = descriptor

    def register_function(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
    ) -> ToolDescriptor:
        """
        Register a function as a tool, auto-generating its input schema.

        Args:
            func: Function to register; may be a coroutine function
            name: Tool name (defaults to function name)
            description: Tool description (defaults to docstring)
        """
        metadata = getattr(func, "_tool_metadata", {})
        tool_name = name or metadata.get("name") or func.__name__
        tool_desc = (
            description or metadata.get("description") or func.__doc__ or f"Execute {tool_name}"
        )

        async def invoke(arguments: dict[str, Any]) -> Any:
            result = func(**arguments)
            if inspect.isawaitable(result):
                result = await result
            return result

        descriptor = ToolDescriptor(
            name=tool_name,
            description=inspect.cleandoc(tool_desc),
            invoke=invoke,
            input_schema=schema_from_signature(func),
        )
        self.register(descriptor)
        return descriptor

    async def register_mcp_client(self, client: MCPClient) -> int:
        """
        Connect an MCP client and register every tool it exposes.

        Returns:
            Number of tools registered from this server

        Raises:
            ToolInvocationError: if the server cannot be reached or listed
        """
        tools = await client.list_tools()
        self._mcp_clients.append(client)

        for mcp_tool in tools:
            self.register(self._descriptor_for_mcp_tool(client, mcp_tool))

        logger.info(f"Registered {len(tools)} tools from MCP server '{client.config.name}'")
        return len(tools)

    def register_unavailable(self, config: MCPServerConfig, reason: str) -> None:
        """Register the expected tools of an unreachable server as always-failing."""
        for tool_name in config.tools:

            async def invoke(arguments: dict[str, Any], _name: str = tool_name) -> Any:
                raise ToolInvocationError(
                    f"MCP server '{config.name}' is unavailable: {reason}", tool_name=_name
                )

            self.register(
                ToolDescriptor(
                    name=tool_name,
                    description=f"Unavailable tool from '{config.name}'",
                    invoke=invoke,
                    source=config.name,
                )
            )

    @staticmethod
    def _descriptor_for_mcp_tool(client: MCPClient, mcp_tool: MCPTool) -> ToolDescriptor:
        async def invoke(arguments: dict[str, Any]) -> Any:
            return await client.call_tool(mcp_tool.name, arguments)

        return ToolDescriptor(
            name=mcp_tool.name,
            description=mcp_tool.description,
            invoke=invoke,
            input_schema=mcp_tool.input_schema,
            source=mcp_tool.server_name,
        )

    def freeze(self) -> None:
        self._frozen = True

    def descriptors(self, names: list[str] | None = None) -> list[ToolDescriptor]:
        """Get registered tools, optionally restricted to ``names`` (in that order)."""
        if names is None:
            return list(self._tools.values())
        return [self._tools[n] for n in names if n in self._tools]

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def get_registered_names(self) -> list[str]:
        """Get list of registered tool names."""
        return list(self._tools.keys())

    async def invoke(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        """
        Invoke a tool by name.

        Raises:
            ToolInvocationError: unknown tool, transport failure, or the tool raised
        """
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise ToolInvocationError(f"Unknown tool: {name}", tool_name=name)
        if arguments is not None and not isinstance(arguments, dict):
            raise ToolInvocationError(
                f"Arguments for tool '{name}' must be an object, got {type(arguments).__name__}",
                tool_name=name,
            )

        try:
            return await descriptor.invoke(arguments or {})
        except ToolInvocationError:
            raise
        except Exception as e:
            raise ToolInvocationError(
                f"Tool '{name}' failed: {type(e).__name__}: {e}", tool_name=name
            ) from e

    async def aclose(self) -> None:
        """Disconnect all MCP clients."""
        for client in self._mcp_clients:
            try:
                await client.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting MCP client: {e}")
        self._mcp_clients.clear()


class ToolResolver:
    """
    Builds the request-scoped ToolRegistry for a run.

    Static functions and engine-wide MCP servers are configured here; a graph
    may add its own servers through its ``toolServers`` section. A server that
    fails to connect does not abort the run: its expected tools are
    registered as failing so the calling chat handler sees ToolInvocationError.

    Example:
        resolver = ToolResolver(functions=[get_weather])
        async with resolver.resolve(graph.tool_servers) as tools:
            await tools.invoke("get_weather", {"city": "Paris"})
    """

    def __init__(
        self,
        functions: list[Callable] | None = None,
        mcp_servers: list[dict[str, Any]] | None = None,
        client_factory: Callable[[MCPServerConfig], MCPClient] = MCPClient,
    ):
        self._functions = list(functions or [])
        self._mcp_servers = list(mcp_servers or [])
        self._client_factory = client_factory

    @asynccontextmanager
    async def resolve(
        self, extra_servers: tuple[dict[str, Any], ...] | list[dict[str, Any]] = ()
    ) -> AsyncIterator[ToolRegistry]:
        registry = ToolRegistry()
        for func in self._functions:
            registry.register_function(func)

        try:
            for server in [*self._mcp_servers, *extra_servers]:
                config = MCPServerConfig.from_dict(server)
                client = self._client_factory(config)
                try:
                    await registry.register_mcp_client(client)
                except ToolInvocationError as e:
                    logger.error(f"MCP server '{config.name}' unavailable: {e}")
                    registry.register_unavailable(config, str(e))

            registry.freeze()
            yield registry
        finally:
            await registry.aclose()


def tool(
    description: str | None = None,
    name: str | None = None,
) -> Callable:
    """
    Decorator to attach tool metadata to a function.

    Usage:
        @tool(description="Look up an order by id")
        def get_order(order_id: str) -> dict:
            return {"status": "shipped"}
    """

    def decorator(func: Callable) -> Callable:
        func._tool_metadata = {
            "name": name or func.__name__,
            "description": description or func.__doc__,
        }
        return func

    return decorator
