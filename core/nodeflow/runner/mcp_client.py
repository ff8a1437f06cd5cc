"""Client side of the Model Context Protocol.

Speaks to one server over stdio (official MCP Python SDK) or HTTP (JSON-RPC
over httpx). Every transport or protocol failure surfaces as
ToolInvocationError carrying the tool name.
"""

import logging
import os
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from nodeflow.errors import ToolInvocationError

logger = logging.getLogger(__name__)


@dataclass
class MCPServerConfig:
    """How to reach one MCP server, as declared in a graph's ``toolServers``."""

    name: str
    transport: Literal["stdio", "http"]

    # For STDIO transport
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None

    # For HTTP transport
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 30.0

    # Tool names expected from this server; used to keep graphs loadable
    # (and failing per call) when the server cannot be reached.
    tools: list[str] = field(default_factory=list)

    # Optional metadata
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MCPServerConfig":
        """Build a config from a graph document / JSON config entry."""
        if "name" not in data or "transport" not in data:
            raise ValueError("MCP server config requires 'name' and 'transport'")
        if data["transport"] not in ("stdio", "http"):
            raise ValueError(f"Unsupported transport: {data['transport']}")
        return cls(
            name=data["name"],
            transport=data["transport"],
            command=data.get("command"),
            args=list(data.get("args", [])),
            env=dict(data.get("env", {})),
            cwd=data.get("cwd"),
            url=data.get("url"),
            headers=dict(data.get("headers", {})),
            timeout_seconds=float(data.get("timeoutSeconds", data.get("timeout_seconds", 30.0))),
            tools=list(data.get("tools", [])),
            description=data.get("description", ""),
        )


@dataclass
class MCPTool:
    """Tool metadata as advertised by a server's ``tools/list``."""

    name: str
    description: str
    input_schema: dict[str, Any]
    server_name: str


class MCPClient:
    """
    Connection to a single MCP server.

    Tools are discovered once on connect and cached. The client is async-native:
    connect and disconnect must happen in the same task (the STDIO transport
    runs inside anyio task groups).

    Example:
        config = MCPServerConfig(name="fs", transport="stdio", command="mcp-fs")
        async with MCPClient(config) as client:
            tools = await client.list_tools()
            result = await client.call_tool("read_file", {"path": "a.txt"})
    """

    def __init__(
        self,
        config: MCPServerConfig,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            config: Server configuration
            http_transport: Optional httpx transport (tests inject MockTransport)
        """
        self.config = config
        self._http_transport = http_transport
        self._exit_stack: AsyncExitStack | None = None
        self._session = None
        self._http_client: httpx.AsyncClient | None = None
        self._tools: dict[str, MCPTool] = {}
        self._connected = False
        self._request_id = 0

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect to the MCP server and discover its tools."""
        if self._connected:
            return

        if self.config.transport == "stdio":
            await self._connect_stdio()
        elif self.config.transport == "http":
            await self._connect_http()
        else:
            raise ToolInvocationError(f"Unsupported transport: {self.config.transport}")

        self._connected = True
        try:
            await self._discover_tools()
        except ToolInvocationError:
            await self.disconnect()
            raise

    async def _connect_stdio(self) -> None:
        """Spawn the server process and open a persistent MCP session over its stdio."""
        if not self.config.command:
            raise ToolInvocationError("command is required for STDIO transport")

        from mcp import ClientSession, StdioServerParameters
        from mcp.client.stdio import stdio_client

        # Always inherit parent environment and merge with any custom env vars
        merged_env = {**os.environ, **(self.config.env or {})}
        server_params = StdioServerParameters(
            command=self.config.command,
            args=self.config.args,
            env=merged_env,
            cwd=self.config.cwd,
        )

        stack = AsyncExitStack()
        try:
            read_stream, write_stream = await stack.enter_async_context(
                stdio_client(server_params)
            )
            session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            await session.initialize()
        except Exception as e:
            await stack.aclose()
            raise ToolInvocationError(
                f"Failed to connect to MCP server '{self.config.name}': {e}"
            ) from e

        self._exit_stack = stack
        self._session = session
        logger.info(f"Connected to MCP server '{self.config.name}' via STDIO")

    async def _connect_http(self) -> None:
        """Open an HTTP client against the server's JSON-RPC endpoint."""
        if not self.config.url:
            raise ToolInvocationError("url is required for HTTP transport")

        self._http_client = httpx.AsyncClient(
            base_url=self.config.url,
            headers=self.config.headers,
            timeout=self.config.timeout_seconds,
            transport=self._http_transport,
        )
        logger.info(f"Connected to MCP server '{self.config.name}' via HTTP at {self.config.url}")

    async def _discover_tools(self) -> None:
        """Populate the tool cache from ``tools/list``."""
        if self.config.transport == "stdio":
            tools_list = await self._list_tools_stdio()
        else:
            tools_list = await self._list_tools_http()

        self._tools = {}
        for tool_data in tools_list:
            if not isinstance(tool_data, dict) or "name" not in tool_data:
                raise ToolInvocationError(
                    f"Malformed tool listing from '{self.config.name}': {tool_data!r}"
                )
            tool = MCPTool(
                name=tool_data["name"],
                description=tool_data.get("description") or "",
                input_schema=tool_data.get("inputSchema") or {},
                server_name=self.config.name,
            )
            self._tools[tool.name] = tool

        logger.info(
            f"Discovered {len(self._tools)} tools from '{self.config.name}': {list(self._tools)}"
        )

    async def _list_tools_stdio(self) -> list[dict]:
        if not self._session:
            raise ToolInvocationError("STDIO session not initialized")
        try:
            response = await self._session.list_tools()
        except Exception as e:
            raise ToolInvocationError(f"Failed to list tools via STDIO: {e}") from e

        return [
            {"name": tool.name, "description": tool.description, "inputSchema": tool.inputSchema}
            for tool in response.tools
        ]

    async def _rpc(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Send one JSON-RPC request over HTTP and return its ``result``."""
        if not self._http_client:
            raise ToolInvocationError("HTTP client not initialized")

        self._request_id += 1
        try:
            response = await self._http_client.post(
                "/mcp/v1",
                json={
                    "jsonrpc": "2.0",
                    "id": self._request_id,
                    "method": method,
                    "params": params,
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ToolInvocationError(f"MCP HTTP request '{method}' failed: {e}") from e
        except ValueError as e:
            raise ToolInvocationError(f"MCP server returned invalid JSON for '{method}'") from e

        if not isinstance(data, dict):
            raise ToolInvocationError(f"Malformed MCP response for '{method}': {data!r}")
        if "error" in data:
            raise ToolInvocationError(f"MCP error: {data['error']}")
        result = data.get("result", {})
        if not isinstance(result, dict):
            raise ToolInvocationError(f"Malformed MCP result for '{method}': {result!r}")
        return result

    async def _list_tools_http(self) -> list[dict]:
        result = await self._rpc("tools/list", {})
        tools = result.get("tools", [])
        if not isinstance(tools, list):
            raise ToolInvocationError(f"Malformed tool listing from '{self.config.name}'")
        return tools

    async def list_tools(self) -> list[MCPTool]:
        """Tools advertised by the server, connecting first if needed."""
        if not self._connected:
            await self.connect()

        return list(self._tools.values())

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """
        Call one tool and unwrap its result.

        Args:
            tool_name: Name of the tool to invoke
            arguments: Tool arguments

        Returns:
            Tool result (text of the first content item when available)

        Raises:
            ToolInvocationError: on transport failure or a tool-side error
        """
        if not self._connected:
            await self.connect()

        if tool_name not in self._tools:
            raise ToolInvocationError(f"Unknown tool: {tool_name}", tool_name=tool_name)

        if self.config.transport == "stdio":
            return await self._call_tool_stdio(tool_name, arguments)
        return await self._call_tool_http(tool_name, arguments)

    async def _call_tool_stdio(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        if not self._session:
            raise ToolInvocationError("STDIO session not initialized", tool_name=tool_name)

        try:
            result = await self._session.call_tool(tool_name, arguments=arguments)
        except Exception as e:
            raise ToolInvocationError(
                f"MCP tool '{tool_name}' call failed: {e}", tool_name=tool_name
            ) from e

        # Check for server-side errors (validation failures, tool exceptions, etc.)
        if getattr(result, "isError", False):
            error_text = ""
            if result.content and hasattr(result.content[0], "text"):
                error_text = result.content[0].text
            raise ToolInvocationError(
                f"MCP tool '{tool_name}' failed: {error_text}", tool_name=tool_name
            )

        if result.content:
            content_item = result.content[0]
            if hasattr(content_item, "text"):
                return content_item.text
            if hasattr(content_item, "data"):
                return content_item.data
            return result.content

        return None

    async def _call_tool_http(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        try:
            result = await self._rpc("tools/call", {"name": tool_name, "arguments": arguments})
        except ToolInvocationError as e:
            raise ToolInvocationError(str(e), tool_name=tool_name) from e

        content = result.get("content", [])
        if result.get("isError"):
            text = ""
            if content and isinstance(content[0], dict):
                text = content[0].get("text", "")
            raise ToolInvocationError(f"MCP tool '{tool_name}' failed: {text}", tool_name=tool_name)

        # MCP tools return a content array; unwrap the first text item
        if isinstance(content, list) and content:
            first = content[0]
            if isinstance(first, dict) and "text" in first:
                return first["text"]
            return first
        return content or None

    async def disconnect(self) -> None:
        """Close the session (or HTTP client) and forget the cached tools."""
        if self._exit_stack is not None:
            # Session closes before the stdio context: it depends on its streams.
            try:
                await self._exit_stack.aclose()
            except Exception as e:
                logger.warning(f"Error closing MCP session '{self.config.name}': {e}")
            finally:
                self._exit_stack = None
                self._session = None

        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

        if self._connected:
            logger.info(f"Disconnected from MCP server '{self.config.name}'")
        self._connected = False

    async def __aenter__(self) -> "MCPClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
