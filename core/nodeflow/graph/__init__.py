"""Graph model, loading, planning and execution."""

from nodeflow.graph.edge import EdgeSpec, GraphSpec
from nodeflow.graph.node import ErrorInfo, NodeResult, NodeSpec, NodeStatus, TokenUsage

__all__ = [
    "NodeSpec",
    "NodeResult",
    "NodeStatus",
    "ErrorInfo",
    "TokenUsage",
    "EdgeSpec",
    "GraphSpec",
]
