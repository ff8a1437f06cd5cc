"""Builds the execution response from a finished RunContext."""

import logging
from typing import Any

from pydantic import Field

from nodeflow.graph.context import RunContext
from nodeflow.graph.node import CamelModel, ErrorInfo, NodeStatus, TokenUsage
from nodeflow.runtime.trace import TraceEntry

logger = logging.getLogger(__name__)

OUTPUT_NODE_TYPE = "output"


class ExecutionResponse(CamelModel):
    """
    Result of one graph run, serialised as camelCase JSON.

    ``outputs`` maps each succeeded output node to its payload. ``error``
    names the node that halted the run (absent when nothing halted it) and
    ``errors`` lists every failed node, including those that were tolerated
    through ``continueOnError``.
    """

    outputs: dict[str, Any] = Field(default_factory=dict)
    trace: list[TraceEntry] | None = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    duration_ms: int = 0
    error: ErrorInfo | None = None
    errors: list[ErrorInfo] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ResponseAssembler:
    """Collects outputs, usage, errors and the trace from a run."""

    def assemble(self, ctx: RunContext) -> ExecutionResponse:
        results = ctx.results()

        outputs = {
            result.node_id: result.payload
            for result in results
            if result.status == NodeStatus.SUCCEEDED
            and ctx.graph.nodes[result.node_id].type == OUTPUT_NODE_TYPE
        }
        errors = [result.error for result in results if result.error is not None]

        error = None
        if ctx.halted_by is not None:
            halted = ctx.get_result(ctx.halted_by)
            error = halted.error if halted is not None else None

        response = ExecutionResponse(
            outputs=outputs,
            trace=ctx.trace.entries() if ctx.trace.enabled else None,
            token_usage=ctx.token_usage,
            duration_ms=ctx.duration_ms,
            error=error,
            errors=errors,
        )
        logger.info(
            f"Run finished in {response.duration_ms}ms: {len(outputs)} output(s), "
            f"{len(errors)} failed node(s)",
            extra={"event": "run_complete", "tokens_used": response.token_usage.total},
        )
        return response
