"""
nodeflow - a graph interpreter for agentic workflows.

Load a declarative node/edge document, then execute it:

    from nodeflow import ExecutionRequest, GraphExecutor
    from nodeflow.llm.litellm import LiteLLMProvider

    executor = GraphExecutor(providers=LiteLLMProvider(model="openai/gpt-4o-mini"))
    graph = executor.load("support_flow.json")
    response = await executor.execute(graph, ExecutionRequest(input={"question": "..."}))
"""

from nodeflow.errors import (
    ConfigurationError,
    NodeExecutionError,
    NodeflowError,
    ProviderError,
    ToolInvocationError,
    ValidationError,
)
from nodeflow.graph.context import ExecutionRequest, RunContext, StreamChunk
from nodeflow.graph.edge import EdgeSpec, GraphSpec
from nodeflow.graph.executor import GraphExecutor
from nodeflow.graph.loader import GraphLoader
from nodeflow.graph.node import NodeResult, NodeSpec, NodeStatus, TokenUsage
from nodeflow.graph.planner import ExecutionPlanner
from nodeflow.handlers import HandlerRegistry, NodeHandler, default_registry
from nodeflow.memory import MemoryManager, MemoryWindow, Turn
from nodeflow.runner.tool_registry import ToolRegistry, ToolResolver, tool
from nodeflow.runtime.assembler import ExecutionResponse
from nodeflow.secrets import EnvSecretResolver, SecretResolver

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "NodeExecutionError",
    "NodeflowError",
    "ProviderError",
    "ToolInvocationError",
    "ValidationError",
    "ExecutionRequest",
    "RunContext",
    "StreamChunk",
    "EdgeSpec",
    "GraphSpec",
    "GraphExecutor",
    "GraphLoader",
    "NodeResult",
    "NodeSpec",
    "NodeStatus",
    "TokenUsage",
    "ExecutionPlanner",
    "HandlerRegistry",
    "NodeHandler",
    "default_registry",
    "MemoryManager",
    "MemoryWindow",
    "Turn",
    "ToolRegistry",
    "ToolResolver",
    "tool",
    "ExecutionResponse",
    "EnvSecretResolver",
    "SecretResolver",
]
