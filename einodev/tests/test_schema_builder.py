"""Tests for projecting graphs into GraphSchema / CanvasInfo."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from langchain_core.language_models import FakeListChatModel

from einodev.compose import END, START, Graph, GraphBranch, Lambda, NodeOptions
from einodev.graph.options import GraphOption, NodeUnmarshalInput
from einodev.graph.schema_builder import (
    INFER_INPUT_EXTRA_KEY,
    branch_node_key,
    build_canvas,
    build_graph_schema,
    parallel_node_key,
)
from einodev.models.graph_schema import CANVAS_VERSION, ComponentSource, JsonType, NodeType

from einodev.tests.conftest import build_chain_graph, build_keyed_graph


@dataclass
class Envelope:
    title: str
    payload: Any = None


def _identity(input_type=Any):
    return Lambda(lambda v: v, input_type=input_type, output_type=input_type)


def _edge_pairs(schema):
    return {(e.source_node_key, e.target_node_key) for e in schema.edges}


class TestNodesAndEdges:
    """Test the basic projection."""

    def test_chain(self):
        info = build_chain_graph().compile("chain").graph_info
        schema = build_graph_schema(info, graph_id="g1")

        assert schema.id == "g1"
        assert schema.name == "chain"
        assert [n.key for n in schema.nodes] == [START, END, "node_1", "node_2", "node_3"]
        assert _edge_pairs(schema) == {
            (START, "node_1"),
            ("node_1", "node_2"),
            ("node_2", "node_3"),
            ("node_3", END),
        }
        assert schema.edges[0].name == "start_to_node_1"

    def test_operability(self):
        """START and real nodes are operable when their input can be decoded; END never is."""
        schema = build_graph_schema(build_chain_graph().compile().graph_info)

        assert schema.node(START).allow_operate
        assert schema.node("node_2").allow_operate
        assert not schema.node(END).allow_operate

    def test_start_carries_inferred_input(self):
        schema = build_graph_schema(build_keyed_graph().compile().graph_info)
        inferred = schema.node(START).extra[INFER_INPUT_EXTRA_KEY]

        assert inferred["type"] == "object"
        assert inferred["propertyOrder"] == ["A"]

    def test_unmarshal_override_makes_node_operable(self):
        g = Graph(Any, Any)
        g.add_lambda_node("a", _identity())
        g.add_edge(START, "a")
        g.add_edge("a", END)
        info = g.compile().graph_info

        assert not build_graph_schema(info).node("a").allow_operate
        option = GraphOption(node_input_unmarshal=(NodeUnmarshalInput("a", lambda raw: raw),))
        assert build_graph_schema(info, option).node("a").allow_operate

    def test_node_option_and_keyed_io_schema(self):
        g = Graph(dict[str, Any], dict[str, Any])
        g.add_lambda_node("a", _identity(int), NodeOptions(name="Alpha", input_key="in", output_key="out"))
        g.add_edge(START, "a")
        g.add_edge("a", END)
        node = build_graph_schema(g.compile().graph_info).node("a")

        assert node.name == "Alpha"
        assert node.node_option.input_key == "in"
        input_schema = node.component_schema.input_type
        assert input_schema.type == JsonType.object
        assert input_schema.properties["in"].type == JsonType.number

    def test_start_and_end_schemas_skip_interface_fields(self):
        """START, END and the nodes behind them describe the same struct the same way."""
        g = Graph(Envelope, Envelope)
        g.add_lambda_node("a", _identity(Envelope))
        g.add_edge(START, "a")
        g.add_edge("a", END)
        schema = build_graph_schema(g.compile().graph_info)

        start = schema.node(START).component_schema
        node = schema.node("a").component_schema
        assert list(start.input_type.properties) == ["title"]
        assert start.input_type == node.input_type
        assert start.output_type == node.input_type
        assert schema.node(END).component_schema.input_type == node.output_type
        assert schema.input_type == node.input_type

    def test_official_component_source(self):
        g = Graph(Any, Any)
        g.add_chat_model_node("model", FakeListChatModel(responses=["x"]))
        g.add_edge(START, "model")
        g.add_edge("model", END)
        component = build_graph_schema(g.compile().graph_info).node("model").component_schema

        assert component.component == "ChatModel"
        assert component.component_source == ComponentSource.official
        assert component.identifier.endswith("FakeListChatModel")


class TestFanOut:
    """Test synthesized junction nodes."""

    def test_parallel_junction(self):
        """N > 1 edge targets go through exactly one parallel node."""
        g = Graph(dict[str, Any], dict[str, Any])
        g.add_passthrough_node("a")
        for key in ("b", "c", "d"):
            g.add_passthrough_node(key, output_key=key)
            g.add_edge("a", key)
            g.add_edge(key, END)
        g.add_edge(START, "a")
        schema = build_graph_schema(g.compile().graph_info)

        junctions = [n for n in schema.nodes if n.type == NodeType.parallel.value]
        assert [n.key for n in junctions] == [parallel_node_key("a")]
        pairs = _edge_pairs(schema)
        assert ("a", "a:parallel") in pairs
        assert {t for s, t in pairs if s == "a:parallel"} == {"b", "c", "d"}
        assert not any(s == "a" and t in ("b", "c", "d") for s, t in pairs)

    def test_single_target_has_no_junction(self):
        schema = build_graph_schema(build_chain_graph().compile().graph_info)
        assert not any(n.type == NodeType.parallel.value for n in schema.nodes)

    def test_branch_junctions(self):
        """Each branch gets its own junction linking to all its targets."""
        g = Graph(int, Any)
        g.add_passthrough_node("route")
        for key in ("x", "y", "z"):
            g.add_passthrough_node(key)
            g.add_edge(key, END)
        g.add_edge(START, "route")
        g.add_branch("route", GraphBranch(lambda v: "x", ["x", "y"], input_type=int))
        g.add_branch("route", GraphBranch(lambda v: "z", ["z"]))
        schema = build_graph_schema(g.compile().graph_info)

        keys = [n.key for n in schema.nodes if n.type == NodeType.branch.value]
        assert keys == [branch_node_key("route", 0), branch_node_key("route", 1)]
        pairs = _edge_pairs(schema)
        assert {("route:branch:0", "x"), ("route:branch:0", "y"), ("route:branch:1", "z")} <= pairs
        assert len(schema.branches) == 2
        assert schema.branches[0].target_node_keys == ["x", "y"]
        assert schema.branches[0].condition.input_type.type == JsonType.number


class TestNestedGraphs:
    """Test subgraph schemas."""

    def test_nested_nodes_are_not_operable(self):
        outer = Graph(str, list[str])
        outer.add_graph_node("sub", build_chain_graph())
        outer.add_edge(START, "sub")
        outer.add_edge("sub", END)
        schema = build_graph_schema(outer.compile().graph_info)

        sub = schema.node("sub")
        assert sub.allow_operate
        assert sub.type == "Graph"
        assert sub.graph_schema is not None
        assert all(not n.allow_operate for n in sub.graph_schema.nodes)


class TestCanvas:
    """Test the versioned canvas."""

    def test_canvas(self):
        info = build_chain_graph().compile("chain").graph_info
        canvas = build_canvas(info, graph_id="g1")

        assert canvas.version == CANVAS_VERSION
        assert canvas.id == "g1"
        data = canvas.to_dict()
        assert data["node_trigger_mode"] == "AnyPredecessor"
        assert data["input_type"]["type"] == "string"

    def test_local_state_is_described(self):
        g = Graph(str, str, gen_local_state=lambda: {}, state_type=dict[str, int])
        g.add_passthrough_node("a")
        g.add_edge(START, "a")
        g.add_edge("a", END)
        canvas = build_canvas(g.compile().graph_info)

        assert canvas.gen_local_state.is_set
        assert canvas.gen_local_state.output_type.type == JsonType.object
