"""
Run context - the per-request state shared by the nodes of one run.

A RunContext is created for every execution request and never shared across
requests. Node tasks read it freely; the mutations they perform are limited
to:

- ``set_result``: each node's NodeResult is written exactly once
- ``record_io``: request/response payloads kept for the trace
- memory windows, guarded by the MemoryManager's per-scope locks
- ``emit_chunk``: streaming output forwarded to the caller's sink
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from nodeflow.errors import ConfigurationError
from nodeflow.graph.edge import GraphSpec
from nodeflow.graph.node import CamelModel, NodeResult, NodeStatus, TokenUsage
from nodeflow.graph.template import build_scope
from nodeflow.llm.provider import ChatProvider
from nodeflow.memory import MemoryManager, MemoryWindow
from nodeflow.runner.tool_registry import ToolRegistry
from nodeflow.runtime.trace import TraceRecorder

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "default"


class ExecutionRequest(CamelModel):
    """
    One request to execute a graph.

    Example:
        ExecutionRequest(input={"text": "hello"}, trace=True, session_id="user-42")
    """

    input: dict[str, Any] = Field(default_factory=dict)
    trace: bool = False
    debug: bool = False
    session_id: str | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)


@dataclass(frozen=True)
class StreamChunk:
    """A piece of streamed content produced by a node."""

    node_id: str
    content: str


ChunkSink = Callable[[StreamChunk], None]


class RunContext:
    """Mutable state of a single graph run."""

    def __init__(
        self,
        graph: GraphSpec,
        request: ExecutionRequest,
        *,
        run_id: str,
        configs: dict[str, BaseModel],
        tools: ToolRegistry,
        memory: MemoryManager,
        providers: dict[str, ChatProvider] | None = None,
        trace: TraceRecorder | None = None,
        chunk_sink: ChunkSink | None = None,
    ):
        self.graph = graph
        self.request = request
        self.run_id = run_id
        self.tools = tools
        self.memory = memory
        self.providers = dict(providers or {})
        self.trace = trace or TraceRecorder(enabled=request.trace, debug=request.debug)
        self.chunk_sink = chunk_sink

        self.session_memory: dict[str, MemoryWindow] = {}
        self.halted_by: str | None = None
        self.started_at = time.time()
        self.finished_at: float | None = None

        self._configs = configs
        self._outputs: dict[str, NodeResult] = {}
        self._io: dict[str, dict[str, Any]] = {}
        self._streamed: set[str] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Node results
    # ------------------------------------------------------------------

    def set_result(self, result: NodeResult) -> None:
        """Store a node's result. Each node is written exactly once."""
        with self._lock:
            if result.node_id in self._outputs:
                raise RuntimeError(f"Result for node '{result.node_id}' already recorded")
            self._outputs[result.node_id] = result

    def get_result(self, node_id: str) -> NodeResult | None:
        return self._outputs.get(node_id)

    @property
    def outputs(self) -> dict[str, NodeResult]:
        """Results recorded so far, keyed by node id (read-only copy)."""
        return dict(self._outputs)

    def results(self) -> list[NodeResult]:
        """Results in node declaration order."""
        return [self._outputs[n] for n in self.graph.nodes if n in self._outputs]

    def payloads(self) -> dict[str, Any]:
        """Payloads of succeeded nodes, keyed by node id."""
        return {
            node_id: result.payload
            for node_id, result in self._outputs.items()
            if result.status == NodeStatus.SUCCEEDED
        }

    def scope(self) -> dict[str, Any]:
        """Variable namespace for templates and condition expressions."""
        return build_scope(self.request.input, self.payloads())

    @property
    def token_usage(self) -> TokenUsage:
        total = TokenUsage()
        for result in self.results():
            if result.token_usage is not None:
                total = total + result.token_usage
        return total

    # ------------------------------------------------------------------
    # Handler support
    # ------------------------------------------------------------------

    def config_for(self, node_id: str) -> Any:
        """Parsed handler configuration (secrets already resolved)."""
        try:
            return self._configs[node_id]
        except KeyError:
            raise ConfigurationError(f"No configuration for node '{node_id}'", node_id) from None

    def provider(self, name: str | None = None) -> ChatProvider:
        """Look up a chat capability by name, falling back to the default one."""
        if name:
            if name not in self.providers:
                raise ConfigurationError(f"Unknown chat provider '{name}'")
            return self.providers[name]
        if DEFAULT_PROVIDER in self.providers:
            return self.providers[DEFAULT_PROVIDER]
        if len(self.providers) == 1:
            return next(iter(self.providers.values()))
        raise ConfigurationError("No default chat provider configured")

    def record_io(self, node_id: str, request: Any = None, response: Any = None) -> None:
        """Keep a node's request/response for the trace. Later calls overwrite per key."""
        with self._lock:
            entry = self._io.setdefault(node_id, {})
            if request is not None:
                entry["request"] = request
            if response is not None:
                entry["response"] = response

    def io_for(self, node_id: str) -> dict[str, Any]:
        return dict(self._io.get(node_id, {}))

    def emit_chunk(self, node_id: str, content: str) -> None:
        if self.chunk_sink is not None and content:
            self._streamed.add(node_id)
            self.chunk_sink(StreamChunk(node_id=node_id, content=content))

    def has_streamed(self, node_id: str) -> bool:
        """True once any chunk of this node has reached the chunk sink."""
        return node_id in self._streamed

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def finish(self) -> None:
        self.finished_at = time.time()

    @property
    def duration_ms(self) -> int:
        end = self.finished_at if self.finished_at is not None else time.time()
        return int((end - self.started_at) * 1000)
