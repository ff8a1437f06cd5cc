"""Chat capability abstraction.

The LiteLLM adapter lives in ``nodeflow.llm.litellm`` and is imported on
demand, so loading the engine does not pull in every vendor SDK.
"""

from nodeflow.llm.mock import MockChatProvider
from nodeflow.llm.provider import ChatProvider, ChatResponse, ToolCall, ToolExchange, ToolResult
from nodeflow.llm.stream_events import (
    FinishEvent,
    StreamErrorEvent,
    StreamEvent,
    TextDeltaEvent,
    TextEndEvent,
    ToolCallEvent,
)

__all__ = [
    "ChatProvider",
    "ChatResponse",
    "ToolCall",
    "ToolResult",
    "ToolExchange",
    "MockChatProvider",
    "StreamEvent",
    "TextDeltaEvent",
    "TextEndEvent",
    "ToolCallEvent",
    "FinishEvent",
    "StreamErrorEvent",
]
