"""
Execution planner - decides which nodes may run next.

Kahn-style progression over the validated DAG. Every node keeps a counter of
unresolved incoming edges; when a node completes each of its outgoing edges
is resolved as *live* or *pruned*:

- source succeeded              -> live, except that a condition node's
                                   labelled edges are live only for the
                                   selected label(s)
- source failed, continueOnError -> live (unlabelled edges only)
- source skipped                -> pruned

Once all incoming edges of a node are resolved the node is ready if at
least one of them is live, otherwise it is skipped and the skip propagates
downstream.

Ready nodes are handed out in batches. Inside a batch, nodes are ordered by
the declaration index of their earliest incoming edge (the entry node
first), then by node declaration order, so the same graph always yields the
same schedule.
"""

import logging
from collections.abc import Iterator
from typing import Any

from nodeflow.graph.edge import CONDITION_NODE_TYPE, GraphSpec
from nodeflow.graph.node import NodeResult, NodeStatus

logger = logging.getLogger(__name__)


def selected_labels(payload: Any) -> set[str]:
    """Branch labels selected by a condition node's payload."""
    if payload is None:
        return set()
    if isinstance(payload, bool):
        return {"true" if payload else "false"}
    if isinstance(payload, str):
        return {payload}
    if isinstance(payload, list | tuple | set | frozenset):
        return {str(label) for label in payload}
    return {str(payload)}


class ExecutionPlanner:
    """
    Tracks readiness of nodes for one run.

    Usage:
        planner = ExecutionPlanner(graph)
        while planner.has_ready():
            for node_id in planner.next_batch():
                result = await run(node_id)
                planner.complete(node_id, result)
    """

    def __init__(self, graph: GraphSpec):
        self.graph = graph
        self._declaration = {node_id: i for i, node_id in enumerate(graph.nodes)}
        self._incoming: dict[str, list[int]] = {node_id: [] for node_id in graph.nodes}
        self._outgoing: dict[str, list[int]] = {node_id: [] for node_id in graph.nodes}
        for index, edge in enumerate(graph.edges):
            self._outgoing[edge.source].append(index)
            self._incoming[edge.target].append(index)

        self._unresolved = {node_id: len(edges) for node_id, edges in self._incoming.items()}
        self._live = dict.fromkeys(graph.nodes, 0)
        self._ready: list[str] = [graph.entry_node]
        self._started: set[str] = set()
        self._status: dict[str, NodeStatus] = {}
        self.batch_count = 0

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def _priority(self, node_id: str) -> tuple[int, int]:
        incoming = self._incoming[node_id]
        earliest = min(incoming) if incoming else -1
        return earliest, self._declaration[node_id]

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------

    def has_ready(self) -> bool:
        return bool(self._ready)

    def next_batch(self) -> list[str]:
        """Take every currently ready node, in deterministic order."""
        batch = sorted(self._ready, key=self._priority)
        self._ready = []
        self._started.update(batch)
        if batch:
            self.batch_count += 1
        return batch

    def batches(self) -> Iterator[list[str]]:
        """Lazily yield batches; each batch must be completed before the next is drawn."""
        while self._ready:
            yield self.next_batch()

    def complete(self, node_id: str, result: NodeResult) -> list[str]:
        """
        Record a started node's result and resolve its outgoing edges.

        A failed node without ``continueOnError`` resolves nothing: the caller
        is expected to ``halt()`` the run.

        Returns:
            Nodes that became skipped as a consequence, in resolution order
        """
        if node_id not in self._started:
            raise ValueError(f"Node '{node_id}' was never started")
        if node_id in self._status:
            raise ValueError(f"Node '{node_id}' already completed")

        self._status[node_id] = result.status
        node = self.graph.nodes[node_id]
        skipped: list[str] = []

        if result.status == NodeStatus.FAILED and not node.continue_on_error:
            return skipped

        labels = None
        if node.type == CONDITION_NODE_TYPE and result.status == NodeStatus.SUCCEEDED:
            labels = selected_labels(result.payload)

        for index in self._outgoing[node_id]:
            edge = self.graph.edges[index]
            if result.status == NodeStatus.SUCCEEDED:
                live = labels is None or edge.is_live_for(labels)
            elif result.status == NodeStatus.FAILED:
                live = edge.condition_label is None
            else:
                live = False
            self._resolve(edge.target, live, skipped)

        return skipped

    def _resolve(self, target: str, live: bool, skipped: list[str]) -> None:
        self._unresolved[target] -= 1
        if live:
            self._live[target] += 1
        if self._unresolved[target] > 0:
            return
        if self._live[target] > 0:
            self._ready.append(target)
        else:
            self._skip(target, skipped)

    def _skip(self, node_id: str, skipped: list[str]) -> None:
        self._status[node_id] = NodeStatus.SKIPPED
        skipped.append(node_id)
        logger.debug(f"Node '{node_id}' skipped: no live incoming edge")
        for index in self._outgoing[node_id]:
            self._resolve(self.graph.edges[index].target, False, skipped)

    def halt(self, failed_nodes: list[str] | None = None) -> dict[str, NodeResult]:
        """
        Stop the run: nothing not yet started will execute.

        Unstarted descendants of ``failed_nodes`` become failed with kind
        DependencyFailed; every other unstarted node is skipped.

        Returns:
            Results for the newly resolved nodes, in declaration order
        """
        failed_nodes = failed_nodes or []
        blamed: dict[str, str] = {}
        for failed in failed_nodes:
            for descendant in self.graph.descendants(failed):
                blamed.setdefault(descendant, failed)

        self._ready = []
        resolved: dict[str, NodeResult] = {}
        for node_id in self.graph.nodes:
            if node_id in self._started or node_id in self._status:
                continue
            if node_id in blamed:
                result = NodeResult.dependency_failed(node_id, blamed[node_id])
            else:
                result = NodeResult.skipped(node_id)
            self._status[node_id] = result.status
            resolved[node_id] = result
        return resolved

    # ------------------------------------------------------------------
    # Status queries
    # ------------------------------------------------------------------

    def status(self, node_id: str) -> NodeStatus | None:
        return self._status.get(node_id)

    def is_started(self, node_id: str) -> bool:
        return node_id in self._started

    def pending(self) -> list[str]:
        """Nodes that are neither started nor resolved, in declaration order."""
        return [n for n in self.graph.nodes if n not in self._started and n not in self._status]

    @property
    def finished(self) -> bool:
        return not self._ready and all(n in self._status for n in self.graph.nodes)

    # ------------------------------------------------------------------
    # Static inspection
    # ------------------------------------------------------------------

    def static_batches(self) -> list[list[str]]:
        """Batches obtained when every node succeeds and every edge is live."""
        remaining = {node_id: len(edges) for node_id, edges in self._incoming.items()}
        ready = [self.graph.entry_node]
        batches: list[list[str]] = []
        while ready:
            batch = sorted(ready, key=self._priority)
            batches.append(batch)
            ready = []
            for node_id in batch:
                for index in self._outgoing[node_id]:
                    target = self.graph.edges[index].target
                    remaining[target] -= 1
                    if remaining[target] == 0:
                        ready.append(target)
        return batches

    def topological_order(self) -> list[str]:
        """A deterministic topological order of all nodes."""
        return [node_id for batch in self.static_batches() for node_id in batch]
