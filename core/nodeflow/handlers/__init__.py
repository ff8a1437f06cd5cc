"""Built-in node handlers."""

from nodeflow.handlers.base import HandlerConfig, NodeHandler
from nodeflow.handlers.registry import HandlerRegistry, default_registry

__all__ = ["HandlerConfig", "NodeHandler", "HandlerRegistry", "default_registry"]
