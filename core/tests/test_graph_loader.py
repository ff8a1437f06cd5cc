"""Tests for GraphLoader validation."""

import json

import pytest
from conftest import graph_doc

from nodeflow.errors import ConfigurationError, ValidationError
from nodeflow.graph.loader import GraphLoader


@pytest.fixture
def loader(registry) -> GraphLoader:
    return GraphLoader(registry)


def _chat_graph(**extra) -> dict:
    return graph_doc(
        [
            {"id": "in", "type": "input"},
            {"id": "chat", "type": "chat", "parameters": {"prompt": "{{input.q}}"}},
            {"id": "out", "type": "output"},
        ],
        [("in", "chat"), ("chat", "out")],
        **extra,
    )


# ---- Valid documents ----


class TestLoad:
    def test_loads_nodes_and_edges_in_declaration_order(self, loader):
        graph = loader.load(_chat_graph(id="support", name="Support bot"))

        assert graph.id == "support"
        assert graph.name == "Support bot"
        assert list(graph.nodes) == ["in", "chat", "out"]
        assert [e.id for e in graph.edges] == ["in->chat", "chat->out"]
        assert graph.entry_node == "in"
        assert graph.nodes["chat"].parameters == {"prompt": "{{input.q}}"}

    def test_node_flags_use_camel_case(self, loader):
        doc = _chat_graph()
        doc["nodes"][1].update(
            {"continueOnError": True, "maxRetries": 2, "logResponses": True}
        )

        node = loader.load(doc).nodes["chat"]

        assert node.continue_on_error is True
        assert node.max_retries == 2
        assert node.log_responses is True
        assert node.log_requests is False

    def test_numeric_schema_version_is_accepted(self, loader):
        graph = loader.load({**_chat_graph(), "schemaVersion": 1})
        assert graph.schema_version == "1"

    def test_loads_json_string(self, loader):
        graph = loader.load(json.dumps(_chat_graph()))
        assert list(graph.nodes) == ["in", "chat", "out"]

    def test_loads_file_path(self, loader, tmp_path):
        path = tmp_path / "graph.json"
        path.write_text(json.dumps(_chat_graph()), encoding="utf-8")

        assert loader.load(path).entry_node == "in"
        assert loader.load(str(path)).entry_node == "in"

    def test_entry_defaults_to_single_root_without_input_node(self, loader):
        graph = loader.load(
            graph_doc(
                [{"id": "start", "type": "stub"}, {"id": "end", "type": "output"}],
                [("start", "end")],
            )
        )
        assert graph.entry_node == "start"

    def test_explicit_entry_node(self, loader):
        graph = loader.load(
            graph_doc(
                [
                    {"id": "a", "type": "input"},
                    {"id": "b", "type": "input"},
                    {"id": "out", "type": "output"},
                ],
                [("a", "b"), ("b", "out")],
                entryNode="a",
            )
        )
        assert graph.entry_node == "a"

    def test_labelled_edges_from_condition_node(self, loader):
        graph = loader.load(
            graph_doc(
                [
                    {"id": "in", "type": "input"},
                    {"id": "route", "type": "condition", "parameters": {"expression": "true"}},
                    {"id": "yes", "type": "output"},
                ],
                [("in", "route"), ("route", "yes", "true")],
            )
        )
        assert graph.edges[1].condition_label == "true"
        assert graph.edges[1].id == "route->yes[true]"

    def test_tool_servers_are_kept(self, loader):
        server = {"name": "crm", "transport": "http", "url": "http://crm.test"}
        graph = loader.load(_chat_graph(toolServers=[server]))
        assert graph.tool_servers == (server,)


# ---- Structural errors ----


class TestStructure:
    def test_missing_schema_version(self, loader):
        doc = _chat_graph()
        del doc["schemaVersion"]
        with pytest.raises(ValidationError, match="schemaVersion"):
            loader.load(doc)

    def test_unsupported_schema_version(self, loader):
        with pytest.raises(ValidationError, match="Unsupported schemaVersion '2'"):
            loader.load({**_chat_graph(), "schemaVersion": "2"})

    def test_empty_nodes(self, loader):
        with pytest.raises(ValidationError, match="non-empty"):
            loader.load(graph_doc([]))

    def test_node_without_type(self, loader):
        with pytest.raises(ValidationError) as exc_info:
            loader.load(graph_doc([{"id": "in"}]))
        assert exc_info.value.node_id == "in"

    def test_duplicate_node_id(self, loader):
        doc = graph_doc(
            [
                {"id": "in", "type": "input"},
                {"id": "dup", "type": "output"},
                {"id": "dup", "type": "output"},
            ],
            [("in", "dup")],
        )
        with pytest.raises(ValidationError) as exc_info:
            loader.load(doc)
        assert exc_info.value.node_id == "dup"
        assert exc_info.value.kind == "ValidationError"

    def test_edge_to_missing_node(self, loader):
        doc = graph_doc(
            [{"id": "in", "type": "input"}, {"id": "out", "type": "output"}],
            [("in", "out"), ("out", "ghost")],
        )
        with pytest.raises(ValidationError) as exc_info:
            loader.load(doc)
        assert exc_info.value.node_id == "ghost"
        assert exc_info.value.edge_id == "out->ghost"

    def test_label_on_edge_from_non_condition_node(self, loader):
        doc = graph_doc(
            [{"id": "in", "type": "input"}, {"id": "out", "type": "output"}],
            [("in", "out", "yes")],
        )
        with pytest.raises(ValidationError, match="conditionLabel"):
            loader.load(doc)

    def test_cycle(self, loader):
        doc = graph_doc(
            [
                {"id": "in", "type": "input"},
                {"id": "a", "type": "stub"},
                {"id": "b", "type": "stub"},
            ],
            [("in", "a"), ("a", "b"), ("b", "a")],
        )
        with pytest.raises(ValidationError, match="cycle"):
            loader.load(doc)

    def test_self_loop(self, loader):
        doc = graph_doc(
            [{"id": "in", "type": "input"}, {"id": "a", "type": "stub"}],
            [("in", "a"), ("a", "a")],
        )
        with pytest.raises(ValidationError, match="cycle through node 'a'"):
            loader.load(doc)

    def test_several_roots_without_input_node(self, loader):
        doc = graph_doc(
            [
                {"id": "a", "type": "stub"},
                {"id": "b", "type": "stub"},
                {"id": "out", "type": "output"},
            ],
            [("a", "out"), ("b", "out")],
        )
        with pytest.raises(ValidationError, match="entry node"):
            loader.load(doc)

    def test_entry_node_with_incoming_edges(self, loader):
        doc = graph_doc(
            [{"id": "a", "type": "stub"}, {"id": "b", "type": "stub"}],
            [("a", "b")],
            entryNode="b",
        )
        with pytest.raises(ValidationError, match="incoming"):
            loader.load(doc)

    def test_unknown_entry_node(self, loader):
        with pytest.raises(ValidationError, match="not found"):
            loader.load(_chat_graph(entryNode="nowhere"))

    def test_unreachable_node(self, loader):
        doc = graph_doc(
            [
                {"id": "in", "type": "input"},
                {"id": "out", "type": "output"},
                {"id": "island", "type": "stub"},
                {"id": "island_out", "type": "output"},
            ],
            [("in", "out"), ("island", "island_out")],
        )
        with pytest.raises(ValidationError) as exc_info:
            loader.load(doc)
        assert exc_info.value.node_id == "island"

    def test_invalid_tool_server(self, loader):
        with pytest.raises(ValidationError, match="tool server"):
            loader.load(_chat_graph(toolServers=[{"name": "crm", "transport": "carrier-pigeon"}]))

    def test_invalid_json_string(self, loader):
        with pytest.raises(ValidationError, match="not valid JSON"):
            loader.load('{"schemaVersion": "1", ')

    def test_missing_file(self, loader, tmp_path):
        with pytest.raises(ValidationError, match="Cannot read"):
            loader.load(tmp_path / "missing.json")


# ---- Handler configuration ----


class TestHandlers:
    def test_unknown_node_type(self, loader):
        doc = graph_doc(
            [{"id": "in", "type": "input"}, {"id": "x", "type": "teleport"}],
            [("in", "x")],
        )
        with pytest.raises(ConfigurationError) as exc_info:
            loader.load(doc)
        assert exc_info.value.node_id == "x"
        assert "teleport" in str(exc_info.value)

    def test_chat_without_prompt(self, loader):
        doc = _chat_graph()
        doc["nodes"][1]["parameters"] = {}
        with pytest.raises(ConfigurationError, match="prompt") as exc_info:
            loader.load(doc)
        assert exc_info.value.node_id == "chat"

    def test_unknown_parameter_is_rejected(self, loader):
        doc = _chat_graph()
        doc["nodes"][1]["parameters"]["promt"] = "typo"
        with pytest.raises(ConfigurationError, match="promt"):
            loader.load(doc)

    def test_condition_needs_exactly_one_mode(self, loader):
        doc = graph_doc(
            [
                {"id": "in", "type": "input"},
                {
                    "id": "route",
                    "type": "condition",
                    "parameters": {"expression": "true", "value": "{{input.x}}"},
                },
            ],
            [("in", "route")],
        )
        with pytest.raises(ConfigurationError, match="exactly one"):
            loader.load(doc)

    def test_condition_expression_syntax_is_checked(self, loader):
        doc = graph_doc(
            [
                {"id": "in", "type": "input"},
                {"id": "route", "type": "condition", "parameters": {"expression": "a >"}},
            ],
            [("in", "route")],
        )
        with pytest.raises(ConfigurationError, match="invalid expression"):
            loader.load(doc)

    def test_secret_markers_pass_load_time_validation(self, loader):
        doc = graph_doc(
            [
                {"id": "in", "type": "input"},
                {
                    "id": "hook",
                    "type": "webhook",
                    "parameters": {"url": "${CRM_URL}", "headers": {"X-Key": "${CRM_KEY}"}},
                },
            ],
            [("in", "hook")],
        )
        assert loader.load(doc).nodes["hook"].parameters["url"] == "${CRM_URL}"
