"""Tool invocation layer: local functions and MCP servers."""

from nodeflow.runner.mcp_client import MCPClient, MCPServerConfig, MCPTool
from nodeflow.runner.tool_registry import ToolDescriptor, ToolRegistry, ToolResolver, tool

__all__ = [
    "MCPClient",
    "MCPServerConfig",
    "MCPTool",
    "ToolDescriptor",
    "ToolRegistry",
    "ToolResolver",
    "tool",
]
