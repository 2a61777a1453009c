"""Data model for debug threads, debug runs and per-node results."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class ErrorType(str, Enum):
    """who failed: the node's own logic or the debug machinery."""

    node_error = "NodeError"
    system_error = "SystemError"


class NodeDebugMetrics(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    invoke_time_ms: int = 0  # epoch millis when the node started
    completion_time_ms: int = 0  # epoch millis when the node finished


class NodeDebugState(BaseModel):
    """the result of one node inside one debug run."""

    node_key: str
    input: str = ""
    output: str = ""
    error: str = ""
    error_type: ErrorType | None = None
    metrics: NodeDebugMetrics = Field(default_factory=NodeDebugMetrics)


class DebugRunMeta(BaseModel):
    """a request to run a graph once, starting at from_node."""

    graph_id: str
    thread_id: str
    from_node: str


class DebugThread(BaseModel):
    """a debug session for one graph; runs are grouped under it."""

    id: str
    graph_id: str
    created_at: int


class GraphMeta(BaseModel):
    """a registered graph as listed to clients."""

    id: str
    name: str
