"""Shared fixtures for nodeflow tests.

Graphs are written as plain documents (the same JSON shape users author)
and loaded through the real GraphLoader; chat calls go to MockChatProvider.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from nodeflow.config import EngineConfig
from nodeflow.errors import NodeExecutionError
from nodeflow.graph.executor import GraphExecutor
from nodeflow.graph.node import NodeResult, NodeSpec
from nodeflow.handlers.base import HandlerConfig, NodeHandler
from nodeflow.handlers.registry import HandlerRegistry, default_registry
from nodeflow.observability import clear_trace_context


def graph_doc(nodes: list[dict], edges: list[tuple] | None = None, **extra: Any) -> dict:
    """Build a graph document; edges are (source, target) or (source, target, label)."""
    edge_docs = []
    for edge in edges or []:
        doc = {"source": edge[0], "target": edge[1]}
        if len(edge) > 2:
            doc["conditionLabel"] = edge[2]
        edge_docs.append(doc)
    return {"schemaVersion": "1", "nodes": nodes, "edges": edge_docs, **extra}


class StubConfig(HandlerConfig):
    delay: float = 0.0
    payload: Any = None
    fail_times: int = 0  # fail this many attempts, then succeed; -1 fails forever
    retryable: bool = False


class StubHandler(NodeHandler):
    """Test handler: sleeps, fails on demand and records what ran."""

    config_model = StubConfig

    def __init__(self):
        self.calls: list[str] = []
        self.attempts: dict[str, int] = {}
        self.active = 0
        self.max_active = 0

    async def execute(self, ctx, node: NodeSpec) -> NodeResult:
        config: StubConfig = ctx.config_for(node.id)
        self.calls.append(node.id)
        self.attempts[node.id] = self.attempts.get(node.id, 0) + 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if config.delay:
                await asyncio.sleep(config.delay)
        finally:
            self.active -= 1

        if config.fail_times < 0 or self.attempts[node.id] <= config.fail_times:
            raise NodeExecutionError(f"stub {node.id} failed", retryable=config.retryable)
        return NodeResult.success(node.id, node.id if config.payload is None else config.payload)


@pytest.fixture(autouse=True)
def _reset_trace_context():
    yield
    clear_trace_context()


@pytest.fixture
def restore_root_logger():
    """configure_logging replaces root handlers; put the originals back."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        model="mock",
        api_key=None,
        max_concurrency=8,
        run_timeout_seconds=5.0,
    )


@pytest.fixture
def stub() -> StubHandler:
    return StubHandler()


@pytest.fixture
def registry(stub: StubHandler) -> HandlerRegistry:
    registry = default_registry()
    registry.register("stub", stub)
    return registry


@pytest.fixture
def make_executor(registry: HandlerRegistry, engine_config: EngineConfig):
    def factory(**kwargs: Any) -> GraphExecutor:
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("config", engine_config)
        return GraphExecutor(**kwargs)

    return factory
