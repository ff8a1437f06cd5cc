"""Input node: exposes the execution request's input as a payload."""

from typing import Any

from pydantic import Field

from nodeflow.errors import NodeExecutionError
from nodeflow.graph.node import NodeResult, NodeSpec
from nodeflow.handlers.base import HandlerConfig, NodeHandler


class InputConfig(HandlerConfig):
    required: list[str] = Field(default_factory=list, description="Keys the input must carry")
    defaults: dict[str, Any] = Field(default_factory=dict, description="Values for absent keys")


class InputHandler(NodeHandler):
    config_model = InputConfig

    async def execute(self, ctx, node: NodeSpec) -> NodeResult:
        config: InputConfig = ctx.config_for(node.id)
        payload = {**config.defaults, **ctx.request.input}

        missing = [key for key in config.required if key not in payload]
        if missing:
            raise NodeExecutionError(f"Missing required input: {', '.join(missing)}")

        return NodeResult.success(node.id, payload)
