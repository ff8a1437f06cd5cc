"""
Graph loader - turns a graph document into a validated GraphSpec.

Accepts a dict, a JSON string or a path to a JSON file. Either a fully
validated GraphSpec comes back or an error is raised; no partial graph is
ever returned.

Structural problems raise ValidationError:
- unsupported ``schemaVersion``
- duplicate node ids, missing edge endpoints
- condition labels on edges that do not leave a condition node
- zero or several entry nodes, an entry node with incoming edges
- cycles, nodes unreachable from the entry node
- malformed tool server entries

Handler problems raise ConfigurationError:
- a node ``type`` without a registered handler
- node parameters rejected by the handler's schema
"""

import json
import logging
from pathlib import Path
from typing import Any

import pydantic

from nodeflow.errors import ConfigurationError, ValidationError
from nodeflow.graph.edge import (
    CONDITION_NODE_TYPE,
    INPUT_NODE_TYPE,
    SUPPORTED_SCHEMA_VERSIONS,
    EdgeSpec,
    GraphSpec,
)
from nodeflow.graph.node import NodeSpec
from nodeflow.handlers.registry import HandlerRegistry, default_registry
from nodeflow.runner.mcp_client import MCPServerConfig

logger = logging.getLogger(__name__)

GraphDocument = dict[str, Any] | str | Path


def _describe(error: pydantic.ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in error.errors()
    )


class GraphLoader:
    """
    Parses and validates graph documents against a handler registry.

    Example:
        loader = GraphLoader(default_registry())
        graph = loader.load({"schemaVersion": "1", "nodes": [...], "edges": [...]})
    """

    def __init__(self, registry: HandlerRegistry | None = None):
        self.registry = registry or default_registry()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def load(self, document: GraphDocument) -> GraphSpec:
        """
        Load a graph from a dict, a JSON string or a file path.

        Raises:
            ValidationError: the document is malformed or structurally invalid
            ConfigurationError: unknown node type or invalid node parameters
        """
        if isinstance(document, Path):
            return self.load_file(document)
        if isinstance(document, str):
            if document.lstrip().startswith("{"):
                return self.load_dict(self._parse_json(document, "<string>"))
            return self.load_file(document)
        return self.load_dict(document)

    def load_file(self, path: str | Path) -> GraphSpec:
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ValidationError(f"Cannot read graph file {path}: {e}") from e
        return self.load_dict(self._parse_json(text, str(path)))

    @staticmethod
    def _parse_json(text: str, origin: str) -> dict[str, Any]:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Graph document {origin} is not valid JSON: {e}") from e

    def load_dict(self, document: dict[str, Any]) -> GraphSpec:
        if not isinstance(document, dict):
            raise ValidationError(
                f"Graph document must be a JSON object, got {type(document).__name__}"
            )

        schema_version = self._check_schema_version(document)
        nodes = self._parse_nodes(document.get("nodes"))
        edges = self._parse_edges(document.get("edges", []), nodes)
        tool_servers = self._parse_tool_servers(document.get("toolServers", []))

        self._check_acyclic(nodes, edges)
        entry_node = self._find_entry_node(document.get("entryNode"), nodes, edges)
        self._check_reachable(entry_node, nodes, edges)
        self._check_handlers(nodes)

        graph = GraphSpec(
            id=str(document.get("id") or "graph"),
            name=str(document.get("name") or ""),
            schema_version=schema_version,
            entry_node=entry_node,
            nodes=nodes,
            edges=tuple(edges),
            tool_servers=tuple(tool_servers),
        )
        logger.info(
            f"Loaded graph '{graph.id}': {len(nodes)} nodes, {len(edges)} edges, "
            f"entry '{entry_node}'"
        )
        return graph

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _check_schema_version(document: dict[str, Any]) -> str:
        raw = document.get("schemaVersion")
        if raw is None:
            raise ValidationError("Graph document is missing 'schemaVersion'")
        if isinstance(raw, bool) or not isinstance(raw, str | int | float):
            raise ValidationError(f"Invalid schemaVersion: {raw!r}")
        version = str(raw)
        if version not in SUPPORTED_SCHEMA_VERSIONS:
            supported = ", ".join(sorted(SUPPORTED_SCHEMA_VERSIONS))
            raise ValidationError(
                f"Unsupported schemaVersion '{version}' (supported: {supported})"
            )
        return version

    @staticmethod
    def _parse_nodes(raw_nodes: Any) -> dict[str, NodeSpec]:
        if not isinstance(raw_nodes, list) or not raw_nodes:
            raise ValidationError("Graph document must declare a non-empty 'nodes' list")

        nodes: dict[str, NodeSpec] = {}
        for position, raw in enumerate(raw_nodes):
            node_id = raw.get("id") if isinstance(raw, dict) else None
            try:
                node = NodeSpec.model_validate(raw)
            except pydantic.ValidationError as e:
                label = f"'{node_id}'" if node_id else f"#{position}"
                raise ValidationError(
                    f"Invalid node {label}: {_describe(e)}", node_id=node_id
                ) from e
            if node.id in nodes:
                raise ValidationError(f"Duplicate node id '{node.id}'", node_id=node.id)
            nodes[node.id] = node
        return nodes

    @staticmethod
    def _parse_edges(raw_edges: Any, nodes: dict[str, NodeSpec]) -> list[EdgeSpec]:
        if not isinstance(raw_edges, list):
            raise ValidationError("'edges' must be a list")

        edges: list[EdgeSpec] = []
        for position, raw in enumerate(raw_edges):
            try:
                edge = EdgeSpec.model_validate(raw)
            except pydantic.ValidationError as e:
                raise ValidationError(
                    f"Invalid edge #{position}: {_describe(e)}", edge_id=f"#{position}"
                ) from e

            for endpoint in (edge.source, edge.target):
                if endpoint not in nodes:
                    raise ValidationError(
                        f"Edge '{edge.id}' references missing node '{endpoint}'",
                        node_id=endpoint,
                        edge_id=edge.id,
                    )
            if edge.condition_label is not None and nodes[edge.source].type != CONDITION_NODE_TYPE:
                raise ValidationError(
                    f"Edge '{edge.id}' has a conditionLabel but its source "
                    f"'{edge.source}' is not a {CONDITION_NODE_TYPE} node",
                    edge_id=edge.id,
                )
            edges.append(edge)
        return edges

    @staticmethod
    def _parse_tool_servers(raw_servers: Any) -> list[dict[str, Any]]:
        if not isinstance(raw_servers, list):
            raise ValidationError("'toolServers' must be a list")
        for position, server in enumerate(raw_servers):
            if not isinstance(server, dict):
                raise ValidationError(f"Tool server #{position} must be an object")
            try:
                MCPServerConfig.from_dict(server)
            except (ValueError, TypeError) as e:
                raise ValidationError(f"Invalid tool server #{position}: {e}") from e
        return [dict(server) for server in raw_servers]

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @staticmethod
    def _check_acyclic(nodes: dict[str, NodeSpec], edges: list[EdgeSpec]) -> None:
        """Depth-first search with an explicit recursion stack."""
        adjacency: dict[str, list[str]] = {node_id: [] for node_id in nodes}
        for edge in edges:
            adjacency[edge.source].append(edge.target)

        visited: set[str] = set()
        on_stack: set[str] = set()

        for root in nodes:
            if root in visited:
                continue
            visited.add(root)
            on_stack.add(root)
            stack = [(root, iter(adjacency[root]))]
            while stack:
                node_id, children = stack[-1]
                child = next(children, None)
                if child is None:
                    on_stack.discard(node_id)
                    stack.pop()
                    continue
                if child in on_stack:
                    raise ValidationError(
                        f"Graph contains a cycle through node '{child}'", node_id=child
                    )
                if child not in visited:
                    visited.add(child)
                    on_stack.add(child)
                    stack.append((child, iter(adjacency[child])))

    @staticmethod
    def _find_entry_node(
        declared: Any, nodes: dict[str, NodeSpec], edges: list[EdgeSpec]
    ) -> str:
        has_incoming = {edge.target for edge in edges}

        if declared is not None:
            if not isinstance(declared, str) or declared not in nodes:
                raise ValidationError(f"Entry node '{declared}' not found", node_id=str(declared))
            entry = declared
        else:
            input_nodes = [n.id for n in nodes.values() if n.type == INPUT_NODE_TYPE]
            roots = [node_id for node_id in nodes if node_id not in has_incoming]
            if len(input_nodes) == 1:
                entry = input_nodes[0]
            elif len(input_nodes) > 1:
                raise ValidationError(
                    f"Several input nodes ({', '.join(input_nodes)}); set 'entryNode'"
                )
            elif len(roots) == 1:
                entry = roots[0]
            else:
                raise ValidationError(
                    f"Cannot determine the entry node: {len(roots)} nodes have no incoming edges"
                )

        if entry in has_incoming:
            raise ValidationError(f"Entry node '{entry}' has incoming edges", node_id=entry)
        return entry

    @staticmethod
    def _check_reachable(entry: str, nodes: dict[str, NodeSpec], edges: list[EdgeSpec]) -> None:
        adjacency: dict[str, list[str]] = {node_id: [] for node_id in nodes}
        for edge in edges:
            adjacency[edge.source].append(edge.target)

        reachable = {entry}
        to_visit = [entry]
        while to_visit:
            for target in adjacency[to_visit.pop()]:
                if target not in reachable:
                    reachable.add(target)
                    to_visit.append(target)

        unreachable = [node_id for node_id in nodes if node_id not in reachable]
        if unreachable:
            raise ValidationError(
                f"Nodes unreachable from entry '{entry}': {', '.join(unreachable)}",
                node_id=unreachable[0],
            )

    def _check_handlers(self, nodes: dict[str, NodeSpec]) -> None:
        for node in nodes.values():
            if node.type not in self.registry:
                known = ", ".join(self.registry.types())
                raise ConfigurationError(
                    f"Node '{node.id}' has unknown type '{node.type}' (registered: {known})",
                    node_id=node.id,
                )
            self.registry.get(node.type).parse_config(node)
