"""Events yielded by ``ChatProvider.stream``.

A stream is a sequence of text deltas and tool calls closed by one
``FinishEvent``. The streaming chat handler forwards deltas to the run's
chunk sink and aggregates the rest into a ChatResponse.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class TextDeltaEvent:
    """New text from the model; ``snapshot`` is everything streamed so far."""

    type: Literal["text_delta"] = "text_delta"
    content: str = ""
    snapshot: str = ""


@dataclass(frozen=True)
class TextEndEvent:
    type: Literal["text_end"] = "text_end"
    full_text: str = ""


@dataclass(frozen=True)
class ToolCallEvent:
    """One complete tool call requested by the model."""

    type: Literal["tool_call"] = "tool_call"
    tool_call_id: str = ""
    tool_name: str = ""
    tool_input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FinishEvent:
    """Last event of a stream, with the token usage of the whole call."""

    type: Literal["finish"] = "finish"
    stop_reason: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str = ""


@dataclass(frozen=True)
class StreamErrorEvent:
    """The provider failed mid-stream; ``recoverable`` maps to a retryable failure."""

    type: Literal["error"] = "error"
    error: str = ""
    recoverable: bool = False


StreamEvent = TextDeltaEvent | TextEndEvent | ToolCallEvent | FinishEvent | StreamErrorEvent
