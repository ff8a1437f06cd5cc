"""
Chat nodes: render a prompt, call the chat capability, run the tool loop.

The tool loop:

1. send prompt + memory + tools to the chat capability
2. if the model requested tool calls, invoke them through the run's
   ToolRegistry and send the results back as a new exchange
3. repeat until the model answers without tool calls, or fail after
   ``maxToolRounds`` rounds of tool use

A ToolInvocationError is reported to the model as an error tool result so
it can recover; set ``escalateToolErrors`` to fail the node instead.

``streaming_chat`` behaves identically but forwards text deltas to the
run's chunk sink as they arrive. Downstream nodes only ever see the final
aggregated content. Once a chunk has reached the sink the node is no longer
retried, so the streamed text never repeats.
"""

import json
import logging
from typing import Any

from pydantic import Field

from nodeflow.errors import (
    ConfigurationError,
    NodeExecutionError,
    ProviderError,
    ToolInvocationError,
)
from nodeflow.graph.node import NodeResult, NodeSpec, TokenUsage
from nodeflow.graph.template import render
from nodeflow.handlers.base import HandlerConfig, NodeHandler
from nodeflow.llm.provider import ChatProvider, ChatResponse, ToolCall, ToolExchange, ToolResult
from nodeflow.llm.stream_events import (
    FinishEvent,
    StreamErrorEvent,
    TextDeltaEvent,
    TextEndEvent,
    ToolCallEvent,
)
from nodeflow.memory import Turn
from nodeflow.runner.tool_registry import ToolDescriptor

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 5


class MemoryConfig(HandlerConfig):
    scope: str | None = Field(default=None, description="Share memory across nodes by name")
    max_messages: int = Field(default=20, ge=1)


class ChatConfig(HandlerConfig):
    prompt: str = Field(min_length=1)
    system: str = ""
    provider: str | None = None
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0)
    max_tokens: int | None = Field(default=None, gt=0)
    tools: list[str] = Field(default_factory=list)
    max_tool_rounds: int = Field(default=DEFAULT_MAX_TOOL_ROUNDS, ge=0)
    escalate_tool_errors: bool = False
    memory: MemoryConfig | None = None

    def options(self) -> dict[str, Any]:
        options = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        return {k: v for k, v in options.items() if v is not None}


def _stringify_tool_output(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


class ChatHandler(NodeHandler):
    config_model = ChatConfig

    def validate_run(self, ctx, node: NodeSpec) -> None:
        config: ChatConfig = ctx.config_for(node.id)
        unknown = [name for name in config.tools if not ctx.tools.has_tool(name)]
        if unknown:
            raise ConfigurationError(
                f"Chat node '{node.id}' references unknown tools: {', '.join(unknown)}",
                node_id=node.id,
            )
        try:
            ctx.provider(config.provider)
        except ConfigurationError as e:
            raise ConfigurationError(f"Chat node '{node.id}': {e}", node_id=node.id) from e

    async def execute(self, ctx, node: NodeSpec) -> NodeResult:
        config: ChatConfig = ctx.config_for(node.id)
        scope = ctx.scope()
        prompt = render(config.prompt, scope)
        system = render(config.system, scope) if config.system else ""
        provider = ctx.provider(config.provider)
        tools = ctx.tools.descriptors(config.tools)

        ctx.record_io(
            node.id,
            request={
                "prompt": prompt,
                "system": system,
                "tools": [t.name for t in tools],
                "options": config.options(),
            },
        )

        if config.memory is None:
            content, usage, rounds = await self._converse(
                ctx, node, config, provider, prompt, system, tools, []
            )
        else:
            scope_key = ctx.memory.scope_key(ctx.request.session_id, node.id, config.memory.scope)
            async with ctx.memory.lock(scope_key):
                window = await ctx.memory.window(scope_key, config.memory.max_messages)
                ctx.session_memory[scope_key] = window
                content, usage, rounds = await self._converse(
                    ctx, node, config, provider, prompt, system, tools, window.snapshot()
                )
                window.extend([Turn("user", prompt), Turn("assistant", content)])
                await ctx.memory.persist(scope_key)

        ctx.record_io(node.id, response={"content": content, "toolRounds": rounds})
        logger.info(
            f"Chat node '{node.id}' finished after {rounds} tool round(s)",
            extra={"tokens_used": usage.total},
        )
        return NodeResult.success(node.id, content, usage)

    async def _converse(
        self,
        ctx,
        node: NodeSpec,
        config: ChatConfig,
        provider: ChatProvider,
        prompt: str,
        system: str,
        tools: list[ToolDescriptor],
        history: list[Turn],
    ) -> tuple[str, TokenUsage, int]:
        exchanges: list[ToolExchange] = []
        usage = TokenUsage()

        while True:
            response = await self._call(
                ctx, node, provider, prompt, tools, history, system, exchanges, config.options()
            )
            usage = usage + response.token_usage
            if not response.tool_calls:
                return response.content, usage, len(exchanges)

            if len(exchanges) >= config.max_tool_rounds:
                raise NodeExecutionError(
                    f"Model still requested tools after {config.max_tool_rounds} tool rounds"
                )

            allowed = {t.name for t in tools}
            results = [
                await self._run_tool(ctx, config, call, allowed) for call in response.tool_calls
            ]
            exchanges.append(
                ToolExchange(calls=response.tool_calls, results=results, content=response.content)
            )

    async def _call(
        self,
        ctx,
        node: NodeSpec,
        provider: ChatProvider,
        prompt: str,
        tools: list[ToolDescriptor],
        history: list[Turn],
        system: str,
        exchanges: list[ToolExchange],
        options: dict[str, Any],
    ) -> ChatResponse:
        return await provider.send(
            prompt, tools, history, system=system, exchanges=list(exchanges), options=options
        )

    async def _run_tool(
        self, ctx, config: ChatConfig, call: ToolCall, allowed: set[str]
    ) -> ToolResult:
        if call.name not in allowed:
            error = ToolInvocationError(f"Tool '{call.name}' is not available", tool_name=call.name)
        else:
            try:
                output = await ctx.tools.invoke(call.name, call.arguments)
                return ToolResult(tool_call_id=call.id, content=_stringify_tool_output(output))
            except ToolInvocationError as e:
                error = e

        if config.escalate_tool_errors:
            raise error
        logger.warning(f"Tool call '{call.name}' failed: {error}", extra={"event": "tool_error"})
        return ToolResult(tool_call_id=call.id, content=str(error), is_error=True)


class StreamingChatHandler(ChatHandler):
    """Chat node that forwards text deltas to the run's chunk sink."""

    async def _call(
        self,
        ctx,
        node: NodeSpec,
        provider: ChatProvider,
        prompt: str,
        tools: list[ToolDescriptor],
        history: list[Turn],
        system: str,
        exchanges: list[ToolExchange],
        options: dict[str, Any],
    ) -> ChatResponse:
        text = ""
        tool_calls: list[ToolCall] = []
        usage = TokenUsage()
        stop_reason = ""
        model = ""

        try:
            async for event in provider.stream(
                prompt, tools, history, system=system, exchanges=list(exchanges), options=options
            ):
                if isinstance(event, TextDeltaEvent):
                    text += event.content
                    ctx.emit_chunk(node.id, event.content)
                elif isinstance(event, TextEndEvent):
                    text = event.full_text or text
                elif isinstance(event, ToolCallEvent):
                    call = ToolCall(
                        id=event.tool_call_id, name=event.tool_name, arguments=event.tool_input
                    )
                    tool_calls.append(call)
                elif isinstance(event, FinishEvent):
                    usage = TokenUsage.of(event.prompt_tokens, event.completion_tokens)
                    stop_reason = event.stop_reason
                    model = event.model
                elif isinstance(event, StreamErrorEvent):
                    raise ProviderError(event.error, retryable=event.recoverable)
        except NodeExecutionError as e:
            # A rerun would stream the same text a second time
            if e.retryable and ctx.has_streamed(node.id):
                raise ProviderError(
                    f"{e} (failed after partial output was streamed)", retryable=False
                ) from e
            raise

        return ChatResponse(
            content=text,
            token_usage=usage,
            tool_calls=tool_calls,
            model=model,
            stop_reason=stop_reason,
        )
