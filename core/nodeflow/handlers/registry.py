"""Explicit registry mapping node type strings to handlers."""

import logging

import httpx

from nodeflow.errors import ConfigurationError
from nodeflow.handlers.base import NodeHandler

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """
    Maps node ``type`` strings to NodeHandler instances.

    Example:
        registry = default_registry()
        registry.register("summarize", SummarizeHandler())
    """

    def __init__(self):
        self._handlers: dict[str, NodeHandler] = {}

    def register(self, node_type: str, handler: NodeHandler) -> None:
        if node_type in self._handlers:
            logger.info(f"Replacing handler for node type '{node_type}'")
        self._handlers[node_type] = handler

    def get(self, node_type: str) -> NodeHandler:
        """
        Raises:
            ConfigurationError: no handler registered for ``node_type``
        """
        handler = self._handlers.get(node_type)
        if handler is None:
            known = ", ".join(sorted(self._handlers)) or "none"
            raise ConfigurationError(f"Unknown node type '{node_type}' (registered: {known})")
        return handler

    def types(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._handlers


def default_registry(webhook_transport: httpx.AsyncBaseTransport | None = None) -> HandlerRegistry:
    """Registry with every built-in node type."""
    from nodeflow.handlers.chat import ChatHandler, StreamingChatHandler
    from nodeflow.handlers.condition import ConditionHandler
    from nodeflow.handlers.input import InputHandler
    from nodeflow.handlers.output import OutputHandler
    from nodeflow.handlers.tool import ToolHandler
    from nodeflow.handlers.webhook import WebhookHandler

    registry = HandlerRegistry()
    registry.register("input", InputHandler())
    registry.register("chat", ChatHandler())
    registry.register("streaming_chat", StreamingChatHandler())
    registry.register("tool", ToolHandler())
    registry.register("webhook", WebhookHandler(transport=webhook_transport))
    registry.register("condition", ConditionHandler())
    registry.register("output", OutputHandler())
    return registry
