"""Per-run execution trace.

One TraceEntry per node, appended by concurrently running node tasks. The
recorder orders entries by (batch index, position in batch), never by wall
clock, so the same graph and input always produce the same trace order.
Request/response payloads are attached only when a node's logging flags,
the request's debug flag, or a failure asks for them.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Any

from pydantic import Field

from nodeflow.graph.node import CamelModel, ErrorInfo, NodeResult, NodeSpec, TokenUsage

logger = logging.getLogger(__name__)

# Nodes resolved without running (skips, dependency failures) sort after
# the nodes that ran in the same batch.
RESOLVED_POSITION_OFFSET = 10_000


class TraceEntry(CamelModel):
    """What happened to one node during a run."""

    node_id: str
    type: str
    status: str
    duration_ms: int = 0
    started_at: str | None = None
    attempts: int | None = None
    error: ErrorInfo | None = None
    token_usage: TokenUsage | None = None
    request: Any = None
    response: Any = None
    order: tuple[int, int] = Field(default=(0, 0), exclude=True)


class TraceRecorder:
    """Collects TraceEntries for a run.

    Thread-safe: node tasks of one batch append concurrently.

    Args:
        enabled: when False, record() is a no-op and entries() is empty
        debug: attach request/response payloads for every node
    """

    def __init__(self, enabled: bool = False, debug: bool = False) -> None:
        self.enabled = enabled or debug
        self.debug = debug
        self._entries: list[TraceEntry] = []
        self._lock = threading.Lock()

    def _wants_io(self, node: NodeSpec, result: NodeResult) -> tuple[bool, bool]:
        always = self.debug or node.debug or result.failed
        return always or node.log_requests, always or node.log_responses

    def record(
        self,
        node: NodeSpec,
        result: NodeResult,
        order: tuple[int, int],
        io: dict[str, Any] | None = None,
    ) -> TraceEntry | None:
        if not self.enabled:
            return None

        io = io or {}
        want_request, want_response = self._wants_io(node, result)
        entry = TraceEntry(
            node_id=node.id,
            type=node.type,
            status=str(result.status),
            duration_ms=result.duration_ms,
            started_at=(
                datetime.fromtimestamp(result.started_at, UTC).isoformat() if result.ran else None
            ),
            attempts=result.attempts or None,
            error=result.error,
            token_usage=result.token_usage,
            request=io.get("request") if want_request else None,
            response=io.get("response") if want_response else None,
            order=order,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self) -> list[TraceEntry]:
        """All entries in deterministic (batch, position) order."""
        with self._lock:
            return sorted(self._entries, key=lambda e: e.order)

    def __len__(self) -> int:
        return len(self._entries)
