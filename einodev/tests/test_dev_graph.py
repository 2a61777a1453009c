"""Tests for rebuilding a graph from an arbitrary starting node."""

from __future__ import annotations

import json
from typing import Any

import pytest

from einodev.compose import END, START, Graph, GraphBranch, Lambda
from einodev.errors import GraphStructureError
from einodev.graph.dev_graph import build_dev_graph
from einodev.graph.inference import infer_input_type
from einodev.graph.options import GraphOption
from einodev.reflect.types import type_string
from einodev.reflect.unmarshal import envelope, unmarshal_json

from einodev.tests.conftest import MockInput, build_chain_graph, build_keyed_graph


class TestBuildDevGraph:
    """Test reconstruction and invocation of partial graphs."""

    def setup_method(self):
        """Compile the reference chain graph once per test."""
        self.info = build_chain_graph().compile("chain").graph_info

    def test_from_start(self):
        """Starting at START reproduces the whole graph."""
        dev = build_dev_graph(self.info, START)
        compiled = dev.compile(global_callbacks=False)

        inferred, _ = infer_input_type(self.info, START)
        value = inferred.unmarshal_json('"mock_input"')

        assert set(dev.nodes) == {"node_1", "node_2", "node_3"}
        assert compiled.invoke(value) == ["mock_input", "out_lambda_1", "out_lambda_2", "out_lambda_3"]

    def test_from_middle_node(self):
        """Upstream nodes are dropped and START is wired to the chosen node."""
        dev = build_dev_graph(self.info, "node_2")
        compiled = dev.compile(global_callbacks=False)

        inferred, supported = infer_input_type(self.info, "node_2")
        assert supported
        value = inferred.unmarshal_json('["from_node_2"]')

        assert set(dev.nodes) == {"node_2", "node_3"}
        assert dev.edges[START] == ["node_2"]
        assert json.dumps(compiled.invoke(value)) == '["from_node_2", "out_lambda_2", "out_lambda_3"]'

    def test_cannot_start_at_end(self):
        with pytest.raises(GraphStructureError, match="end node"):
            build_dev_graph(self.info, END)

    def test_unknown_node(self):
        with pytest.raises(GraphStructureError, match="not found"):
            build_dev_graph(self.info, "node_9")

    def test_keyed_graph_with_envelope(self, registry):
        """Interface-typed dict input decodes registered types from their envelope."""
        info = build_keyed_graph().compile("keyed").graph_info
        compiled = build_dev_graph(info, START).compile(global_callbacks=False)
        registry.register(MockInput)

        user_input = json.dumps({
            "A": envelope(type_string(MockInput), {"input": "mock_input_3", "array": ["mock_input_1", "mock_input_2"]}),
        })
        value = unmarshal_json(user_input, info.input_type, registry=registry)

        assert compiled.invoke(value) == ["mock_input_1", "mock_input_2", "mock_input_3", "out_A", "out_B", "out_C"]

    def test_branch_targets_are_kept(self):
        g = Graph(int, str)
        g.add_passthrough_node("pre")
        g.add_passthrough_node("route")
        g.add_lambda_node("small", Lambda(lambda n: "small", input_type=int, output_type=str))
        g.add_lambda_node("big", Lambda(lambda n: "big", input_type=int, output_type=str))
        g.add_edge(START, "pre")
        g.add_edge("pre", "route")
        g.add_branch("route", GraphBranch(lambda n: "big" if n > 10 else "small", ["small", "big"]))
        g.add_edge("small", END)
        g.add_edge("big", END)
        info = g.compile().graph_info

        dev = build_dev_graph(info, "route")
        assert set(dev.nodes) == {"route", "small", "big"}
        assert dev.compile(global_callbacks=False).invoke(42) == "big"

    def test_gen_state_override(self):
        seen: list[Any] = []

        def pre(value, state):
            seen.append(state)
            return value

        g = Graph(str, str, gen_local_state=lambda: "original")
        g.add_passthrough_node("a", state_pre_handler=pre)
        g.add_edge(START, "a")
        g.add_edge("a", END)
        info = g.compile().graph_info

        dev = build_dev_graph(info, "a", GraphOption(gen_state=lambda: "override"))
        dev.compile(global_callbacks=False).invoke("x")

        assert seen == ["override"]
