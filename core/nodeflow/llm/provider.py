"""Chat capability abstraction for pluggable LLM backends."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from nodeflow.graph.node import TokenUsage
from nodeflow.memory import Turn
from nodeflow.runner.tool_registry import ToolDescriptor


@dataclass
class ToolCall:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Result of executing a tool call, fed back to the model."""

    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass
class ToolExchange:
    """One round of the tool-use loop: what the model asked for and what it got."""

    calls: list[ToolCall]
    results: list[ToolResult]
    content: str = ""  # assistant text that accompanied the calls


@dataclass
class ChatResponse:
    """Response from a chat capability call."""

    content: str
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: str = ""
    stop_reason: str = ""
    raw_response: Any = None


class ChatProvider(ABC):
    """
    Abstract chat capability - plug in any LLM backend.

    Implementations should handle:
    - API authentication
    - Request/response formatting for their vendor
    - Token counting
    - Converting vendor failures into ProviderError
    """

    @abstractmethod
    async def send(
        self,
        prompt: str,
        tools: list[ToolDescriptor],
        memory: list[Turn],
        *,
        system: str = "",
        exchanges: list[ToolExchange] | None = None,
        options: dict[str, Any] | None = None,
    ) -> ChatResponse:
        """
        Generate a response for a rendered prompt.

        Args:
            prompt: The rendered user prompt for this turn
            tools: Tools the model may call
            memory: Prior conversation turns, oldest first
            system: System prompt
            exchanges: Tool-use rounds already completed for this prompt
            options: Vendor options (model, temperature, max_tokens, ...)

        Returns:
            ChatResponse with content, usage and any requested tool calls

        Raises:
            ProviderError: when the backend fails
        """

    async def stream(
        self,
        prompt: str,
        tools: list[ToolDescriptor],
        memory: list[Turn],
        *,
        system: str = "",
        exchanges: list[ToolExchange] | None = None,
        options: dict[str, Any] | None = None,
    ) -> AsyncIterator["StreamEvent"]:
        """
        Stream a response as an async iterator of StreamEvents.

        Default implementation wraps send() with synthetic events.
        Subclasses SHOULD override for true streaming.

        Tool orchestration is the CALLER's responsibility:
        - Caller detects ToolCallEvent, executes the tool, adds an exchange,
          calls stream() again.
        """
        from nodeflow.llm.stream_events import (
            FinishEvent,
            TextDeltaEvent,
            TextEndEvent,
            ToolCallEvent,
        )

        response = await self.send(
            prompt,
            tools,
            memory,
            system=system,
            exchanges=exchanges,
            options=options,
        )
        if response.content:
            yield TextDeltaEvent(content=response.content, snapshot=response.content)
        yield TextEndEvent(full_text=response.content)
        for call in response.tool_calls:
            yield ToolCallEvent(
                tool_call_id=call.id, tool_name=call.name, tool_input=call.arguments
            )
        yield FinishEvent(
            stop_reason=response.stop_reason,
            prompt_tokens=response.token_usage.prompt,
            completion_tokens=response.token_usage.completion,
            model=response.model,
        )


# Deferred import target for type annotation
from nodeflow.llm.stream_events import StreamEvent as StreamEvent  # noqa: E402, F401
