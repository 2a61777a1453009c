"""A small DAG orchestration layer over langchain_core components."""

from einodev.compose.callbacks import (
    GraphCompileCallback,
    add_global_compile_callback,
    remove_global_compile_callback,
)
from einodev.compose.components import Lambda, ToolsNode
from einodev.compose.graph import (
    COMPONENT_METADATA_KEY,
    NODE_METADATA_KEY,
    CompiledGraph,
    Graph,
)
from einodev.compose.types import (
    END,
    START,
    ComponentKind,
    GraphBranch,
    GraphInfo,
    GraphNodeInfo,
    NodeOptions,
)

__all__ = [
    "COMPONENT_METADATA_KEY",
    "END",
    "NODE_METADATA_KEY",
    "START",
    "CompiledGraph",
    "ComponentKind",
    "Graph",
    "GraphBranch",
    "GraphCompileCallback",
    "GraphInfo",
    "GraphNodeInfo",
    "Lambda",
    "NodeOptions",
    "ToolsNode",
    "add_global_compile_callback",
    "remove_global_compile_callback",
]
