"""Shared graphs and fixtures for the einodev test suite."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from einodev import sdk
from einodev.compose import END, START, Graph, Lambda, NodeOptions
from einodev.reflect.registry import BUILTIN_TYPES, TypeRegistry


@dataclass
class MockInput:
    """input of the keyed start node."""

    input: str
    array: list[str] = field(default_factory=list)


def lambda_1(value: str) -> list[str]:
    return [value, "out_lambda_1"]


def lambda_2(value: list[str]) -> list[str]:
    return [*value, "out_lambda_2"]


def lambda_3(value: list[str]) -> list[str]:
    return [*value, "out_lambda_3"]


def build_chain_graph() -> Graph:
    """START -> node_1 -> node_2 -> node_3 -> END over strings."""
    g = Graph(str, list[str])
    g.add_lambda_node("node_1", Lambda(lambda_1))
    g.add_lambda_node("node_2", Lambda(lambda_2))
    g.add_lambda_node("node_3", Lambda(lambda_3))
    g.add_edge(START, "node_1")
    g.add_edge("node_1", "node_2")
    g.add_edge("node_2", "node_3")
    g.add_edge("node_3", END)
    return g


def mock_input_node(value: MockInput) -> list[str]:
    return [*value.array, value.input, "out_A"]


def build_keyed_graph() -> Graph:
    """dict input whose "A" entry feeds a struct-typed node."""
    g = Graph(dict[str, Any], list[str])
    g.add_lambda_node("A", Lambda(mock_input_node), NodeOptions(input_key="A"))
    g.add_lambda_node("B", Lambda(lambda v: [*v, "out_B"], input_type=list[str], output_type=list[str]))
    g.add_lambda_node("C", Lambda(lambda v: [*v, "out_C"], input_type=list[str], output_type=list[str]))
    g.add_edge(START, "A")
    g.add_edge("A", "B")
    g.add_edge("B", "C")
    g.add_edge("C", END)
    return g


@pytest.fixture
def registry() -> TypeRegistry:
    return TypeRegistry(BUILTIN_TYPES)


@pytest.fixture
def chain_graph() -> Graph:
    return build_chain_graph()


@pytest.fixture(autouse=True)
def reset_sdk():
    """Each test starts without an initialized SDK or global compile callbacks."""
    yield
    sdk.shutdown()
