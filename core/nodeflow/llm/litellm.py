"""LiteLLM-backed chat capability.

One adapter for every vendor LiteLLM supports (OpenAI, Anthropic, Azure,
Bedrock, Ollama, ...). Vendor selection is part of the model string, e.g.
``anthropic/claude-sonnet-4-20250514``; credentials come from the vendor's
usual environment variables unless ``api_key`` is given.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import litellm

from nodeflow.errors import ProviderError
from nodeflow.graph.node import TokenUsage
from nodeflow.llm.provider import ChatProvider, ChatResponse, ToolCall, ToolExchange
from nodeflow.llm.stream_events import (
    FinishEvent,
    StreamEvent,
    TextDeltaEvent,
    TextEndEvent,
    ToolCallEvent,
)
from nodeflow.memory import Turn
from nodeflow.runner.tool_registry import ToolDescriptor

logger = logging.getLogger(__name__)

_RETRYABLE_ERRORS = (
    litellm.RateLimitError,
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)


def _tool_schema(tool: ToolDescriptor) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.input_schema or {"type": "object", "properties": {}},
        },
    }


def build_messages(
    prompt: str,
    memory: list[Turn],
    system: str = "",
    exchanges: list[ToolExchange] | None = None,
) -> list[dict[str, Any]]:
    """Assemble OpenAI-format messages: system, memory, prompt, then tool rounds."""
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.extend(turn.to_llm_dict() for turn in memory)
    messages.append({"role": "user", "content": prompt})

    for exchange in exchanges or []:
        messages.append(
            {
                "role": "assistant",
                "content": exchange.content or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                    }
                    for call in exchange.calls
                ],
            }
        )
        for result in exchange.results:
            content = f"ERROR: {result.content}" if result.is_error else result.content
            messages.append(
                {"role": "tool", "tool_call_id": result.tool_call_id, "content": content}
            )
    return messages


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {"_raw": raw}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


class LiteLLMProvider(ChatProvider):
    """
    Chat capability using LiteLLM.

    Example:
        provider = LiteLLMProvider(model="openai/gpt-4o-mini", temperature=0.2)
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **extra: Any,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.extra = extra

    def _request_kwargs(
        self, tools: list[ToolDescriptor], options: dict[str, Any] | None
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": self.model, **self.extra}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens
        kwargs.update({k: v for k, v in (options or {}).items() if v is not None})
        if tools:
            kwargs["tools"] = [_tool_schema(t) for t in tools]
        return kwargs

    @staticmethod
    def _provider_error(e: Exception) -> ProviderError:
        return ProviderError(
            f"{type(e).__name__}: {e}", retryable=isinstance(e, _RETRYABLE_ERRORS)
        )

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
        kwargs = self._request_kwargs(tools, options)
        messages = build_messages(prompt, memory, system, exchanges)
        try:
            response = await litellm.acompletion(messages=messages, **kwargs)
        except Exception as e:
            raise self._provider_error(e) from e

        try:
            choice = response.choices[0]
            message = choice.message
        except (AttributeError, IndexError) as e:
            raise ProviderError(f"Malformed response from {kwargs['model']}", retryable=True) from e

        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=_parse_arguments(tc.function.arguments),
            )
            for tc in (getattr(message, "tool_calls", None) or [])
        ]

        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0

        return ChatResponse(
            content=message.content or "",
            token_usage=TokenUsage.of(prompt_tokens, completion_tokens),
            tool_calls=tool_calls,
            model=getattr(response, "model", "") or kwargs["model"],
            stop_reason=getattr(choice, "finish_reason", "") or "",
            raw_response=response,
        )

    async def stream(
        self,
        prompt: str,
        tools: list[ToolDescriptor],
        memory: list[Turn],
        *,
        system: str = "",
        exchanges: list[ToolExchange] | None = None,
        options: dict[str, Any] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        kwargs = self._request_kwargs(tools, options)
        messages = build_messages(prompt, memory, system, exchanges)

        snapshot = ""
        stop_reason = ""
        prompt_tokens = 0
        completion_tokens = 0
        # Tool call fragments arrive keyed by index and are concatenated
        partial_calls: dict[int, dict[str, str]] = {}

        try:
            response = await litellm.acompletion(
                messages=messages,
                stream=True,
                stream_options={"include_usage": True},
                **kwargs,
            )
            async for chunk in response:
                usage = getattr(chunk, "usage", None)
                if usage:
                    prompt_tokens = getattr(usage, "prompt_tokens", 0) or prompt_tokens
                    completion_tokens = getattr(usage, "completion_tokens", 0) or completion_tokens

                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason:
                    stop_reason = choice.finish_reason

                delta = choice.delta
                if delta is None:
                    continue
                if delta.content:
                    snapshot += delta.content
                    yield TextDeltaEvent(content=delta.content, snapshot=snapshot)
                for tc in getattr(delta, "tool_calls", None) or []:
                    slot = partial_calls.setdefault(tc.index, {"id": "", "name": "", "args": ""})
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function and tc.function.name:
                        slot["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        slot["args"] += tc.function.arguments
        except Exception as e:
            raise self._provider_error(e) from e

        yield TextEndEvent(full_text=snapshot)
        for index in sorted(partial_calls):
            slot = partial_calls[index]
            yield ToolCallEvent(
                tool_call_id=slot["id"] or f"call_{index}",
                tool_name=slot["name"],
                tool_input=_parse_arguments(slot["args"]),
            )
        yield FinishEvent(
            stop_reason=stop_reason,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            model=kwargs["model"],
        )
