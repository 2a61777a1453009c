"""Graph schema projection, input inference and partial-graph reconstruction."""

from einodev.graph.dev_graph import build_dev_graph
from einodev.graph.inference import GraphInferType, infer_input_type
from einodev.graph.options import DevGraphInfo, GraphOption, NodeUnmarshalInput
from einodev.graph.schema_builder import GraphSchemaBuilder, build_canvas, build_graph_schema

__all__ = [
    "DevGraphInfo",
    "GraphInferType",
    "GraphOption",
    "GraphSchemaBuilder",
    "NodeUnmarshalInput",
    "build_canvas",
    "build_dev_graph",
    "build_graph_schema",
    "infer_input_type",
]
