"""
Edge Protocol - How nodes connect in a graph.

Edges define:
1. Source and target nodes
2. An optional condition label for branching

An edge leaving a ``condition`` node may carry a label. When the condition
node completes, its payload names the selected label(s); labelled edges whose
label was not selected are pruned for that run. Unlabelled edges are always
live once their source has completed.

Edge declaration order is significant: it breaks ties between nodes that
become ready at the same time.
"""

from typing import Any

from pydantic import ConfigDict, Field

from nodeflow.graph.node import CamelModel, NodeSpec

SUPPORTED_SCHEMA_VERSIONS = frozenset({"1", "1.0"})
CONDITION_NODE_TYPE = "condition"
INPUT_NODE_TYPE = "input"


class EdgeSpec(CamelModel):
    """
    Specification for an edge between nodes.

    Examples:
        # Plain data-flow dependency
        EdgeSpec(source="input", target="summarize")

        # Branch taken only when the condition node selects "refund"
        EdgeSpec(source="router", target="refund_agent", condition_label="refund")
    """

    model_config = ConfigDict(frozen=True)

    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")
    condition_label: str | None = Field(
        default=None,
        description="Branch label selected by the source condition node",
    )

    @property
    def id(self) -> str:
        if self.condition_label:
            return f"{self.source}->{self.target}[{self.condition_label}]"
        return f"{self.source}->{self.target}"

    def is_live_for(self, selected_labels: set[str]) -> bool:
        """Whether this edge survives a condition node's branch selection."""
        if self.condition_label is None:
            return True
        return self.condition_label in selected_labels


class GraphSpec(CamelModel):
    """
    Complete, validated specification of a workflow graph.

    Build with GraphLoader rather than directly: the loader enforces the
    structural invariants (unique ids, referential integrity, single entry
    node, acyclicity) that the planner relies on.
    """

    model_config = ConfigDict(frozen=True)

    id: str = "graph"
    name: str = ""
    schema_version: str = "1.0"
    entry_node: str = Field(description="ID of the first node to execute")
    nodes: dict[str, NodeSpec] = Field(description="All nodes keyed by id, declaration order")
    edges: tuple[EdgeSpec, ...] = Field(default=(), description="All edges, declaration order")
    tool_servers: tuple[dict[str, Any], ...] = Field(
        default=(), description="MCP server configurations available to this graph"
    )

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        return self.nodes.get(node_id)

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges leaving a node, in declaration order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges entering a node, in declaration order."""
        return [e for e in self.edges if e.target == node_id]

    def predecessors(self, node_id: str) -> list[str]:
        seen: list[str] = []
        for edge in self.get_incoming_edges(node_id):
            if edge.source not in seen:
                seen.append(edge.source)
        return seen

    def descendants(self, node_id: str) -> set[str]:
        """All nodes reachable from ``node_id`` (excluding itself)."""
        found: set[str] = set()
        to_visit = [e.target for e in self.get_outgoing_edges(node_id)]
        while to_visit:
            current = to_visit.pop()
            if current in found:
                continue
            found.add(current)
            to_visit.extend(e.target for e in self.get_outgoing_edges(current))
        return found

    def nodes_of_type(self, node_type: str) -> list[NodeSpec]:
        return [n for n in self.nodes.values() if n.type == node_type]
