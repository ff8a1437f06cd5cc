"""Output node: names a value that belongs in the execution response."""

from typing import Any

from nodeflow.graph.node import NodeResult, NodeSpec, NodeStatus
from nodeflow.graph.template import render_value
from nodeflow.handlers.base import HandlerConfig, NodeHandler


class OutputConfig(HandlerConfig):
    value: Any = None


class OutputHandler(NodeHandler):
    """
    Payload is, in order of preference:

    1. the rendered ``value`` parameter
    2. the payload of the single predecessor that ran
    3. a dict of predecessor id -> payload when several did
    """

    config_model = OutputConfig

    async def execute(self, ctx, node: NodeSpec) -> NodeResult:
        config: OutputConfig = ctx.config_for(node.id)
        if config.value is not None:
            payload = render_value(config.value, ctx.scope())
            ctx.record_io(node.id, request={"value": config.value}, response=payload)
            return NodeResult.success(node.id, payload)

        live: dict[str, Any] = {}
        for predecessor in ctx.graph.predecessors(node.id):
            result = ctx.get_result(predecessor)
            if result is not None and result.status != NodeStatus.SKIPPED:
                live[predecessor] = result.payload

        payload = next(iter(live.values())) if len(live) == 1 else live
        return NodeResult.success(node.id, payload)
