"""Serializable data contracts produced by the devops engine."""

from einodev.models.debug_run import (
    DebugRunMeta,
    DebugThread,
    ErrorType,
    GraphMeta,
    NodeDebugMetrics,
    NodeDebugState,
)
from einodev.models.graph_schema import (
    Branch,
    CanvasInfo,
    ComponentSchema,
    ComponentSource,
    Condition,
    Edge,
    GenLocalState,
    GraphSchema,
    JsonSchema,
    JsonType,
    Node,
    NodeOption,
    NodeTriggerMode,
    NodeType,
)

__all__ = [
    "Branch",
    "CanvasInfo",
    "ComponentSchema",
    "ComponentSource",
    "Condition",
    "DebugRunMeta",
    "DebugThread",
    "Edge",
    "ErrorType",
    "GenLocalState",
    "GraphMeta",
    "GraphSchema",
    "JsonSchema",
    "JsonType",
    "Node",
    "NodeDebugMetrics",
    "NodeDebugState",
    "NodeOption",
    "NodeTriggerMode",
    "NodeType",
]
