"""
Observability for graph runs.

- Run context (run_id, graph_id, node_id) propagated through ContextVar
- JSON logging for production, colourised logging for development
- Plain ``logger.info()`` calls pick the context up automatically
"""

from nodeflow.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
]
