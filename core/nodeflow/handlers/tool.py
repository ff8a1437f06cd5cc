"""Tool node: invokes one tool with templated arguments."""

import logging
from typing import Any

from pydantic import Field

from nodeflow.errors import ConfigurationError
from nodeflow.graph.node import NodeResult, NodeSpec
from nodeflow.graph.template import render_value
from nodeflow.handlers.base import HandlerConfig, NodeHandler

logger = logging.getLogger(__name__)


class ToolConfig(HandlerConfig):
    tool: str = Field(min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolHandler(NodeHandler):
    """Payload is whatever the tool returns; ToolInvocationError fails the node."""

    config_model = ToolConfig

    def validate_run(self, ctx, node: NodeSpec) -> None:
        config: ToolConfig = ctx.config_for(node.id)
        if not ctx.tools.has_tool(config.tool):
            raise ConfigurationError(
                f"Tool node '{node.id}' references unknown tool '{config.tool}'", node_id=node.id
            )

    async def execute(self, ctx, node: NodeSpec) -> NodeResult:
        config: ToolConfig = ctx.config_for(node.id)
        arguments = render_value(config.arguments, ctx.scope())
        ctx.record_io(node.id, request={"tool": config.tool, "arguments": arguments})

        logger.info(f"Invoking tool '{config.tool}'", extra={"event": "tool_call"})
        result = await ctx.tools.invoke(config.tool, arguments)

        ctx.record_io(node.id, response=result)
        return NodeResult.success(node.id, result)
