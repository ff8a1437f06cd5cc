"""Scripted chat capability for tests and offline graph runs."""

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from nodeflow.errors import ProviderError
from nodeflow.graph.node import TokenUsage
from nodeflow.llm.provider import ChatProvider, ChatResponse, ToolExchange
from nodeflow.llm.stream_events import FinishEvent, TextDeltaEvent, TextEndEvent, ToolCallEvent
from nodeflow.memory import Turn
from nodeflow.runner.tool_registry import ToolDescriptor

Script = ChatResponse | str | BaseException


@dataclass
class RecordedCall:
    prompt: str
    tool_names: list[str]
    memory: list[Turn]
    system: str
    exchanges: list[ToolExchange]
    options: dict[str, Any] = field(default_factory=dict)


class MockChatProvider(ChatProvider):
    """
    Chat capability that replays scripted responses.

    ``responses`` is consumed in order, one per send(); the last entry repeats
    once the script runs out. Entries may be ChatResponse objects, plain
    strings (usage reported as zero) or exceptions to raise. Alternatively pass
    ``respond``, a callable receiving the RecordedCall and returning a Script.

    Example:
        provider = MockChatProvider(
            [ChatResponse(content="hello", token_usage=TokenUsage.of(1, 1))]
        )
    """

    def __init__(
        self,
        responses: list[Script] | None = None,
        respond: Callable[[RecordedCall], Script] | None = None,
        delay: float = 0.0,
        chunk_size: int = 4,
    ):
        if not responses and respond is None:
            responses = ["mock response"]
        self._responses = list(responses or [])
        self._respond = respond
        self._delay = delay
        self._chunk_size = chunk_size
        self.calls: list[RecordedCall] = []

    def _next(self, call: RecordedCall) -> ChatResponse:
        if self._respond is not None:
            scripted = self._respond(call)
        else:
            index = min(len(self.calls) - 1, len(self._responses) - 1)
            scripted = self._responses[index]

        if isinstance(scripted, BaseException):
            raise scripted
        if isinstance(scripted, str):
            return ChatResponse(content=scripted, model="mock")
        return scripted

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
        call = RecordedCall(
            prompt=prompt,
            tool_names=[t.name for t in tools],
            memory=list(memory),
            system=system,
            exchanges=list(exchanges or []),
            options=dict(options or {}),
        )
        self.calls.append(call)
        if self._delay:
            await asyncio.sleep(self._delay)
        try:
            return self._next(call)
        except ProviderError:
            raise
        except (TimeoutError, ConnectionError) as e:
            raise ProviderError(f"{type(e).__name__}: {e}") from e

    async def stream(
        self,
        prompt: str,
        tools: list[ToolDescriptor],
        memory: list[Turn],
        *,
        system: str = "",
        exchanges: list[ToolExchange] | None = None,
        options: dict[str, Any] | None = None,
    ) -> AsyncIterator:
        response = await self.send(
            prompt, tools, memory, system=system, exchanges=exchanges, options=options
        )
        snapshot = ""
        text = response.content
        for start in range(0, len(text), self._chunk_size):
            chunk = text[start : start + self._chunk_size]
            snapshot += chunk
            yield TextDeltaEvent(content=chunk, snapshot=snapshot)
        yield TextEndEvent(full_text=text)
        for call in response.tool_calls:
            yield ToolCallEvent(
                tool_call_id=call.id, tool_name=call.name, tool_input=call.arguments
            )
        usage = response.token_usage or TokenUsage()
        yield FinishEvent(
            stop_reason=response.stop_reason or "stop",
            prompt_tokens=usage.prompt,
            completion_tokens=usage.completion,
            model=response.model or "mock",
        )
