"""Descriptors of a compiled graph.

GraphInfo is what compile callbacks receive: the node table with declared
input/output types, edges, branches and nested graph infos. Everything the
devops engine knows about a graph comes from here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from einodev.errors import GraphRunError

START = "start"
END = "end"
RESERVED_KEYS = frozenset({START, END})


class ComponentKind(str, Enum):
    """what kind of component backs a node."""

    chat_model = "ChatModel"
    embedding = "Embedding"
    retriever = "Retriever"
    indexer = "Indexer"
    prompt = "ChatTemplate"
    document_transformer = "DocumentTransformer"
    tools_node = "ToolsNode"
    lambda_ = "Lambda"
    passthrough = "Passthrough"
    graph = "Graph"


@dataclass(frozen=True)
class NodeOptions:
    """per-node options given when the node is added."""

    name: str | None = None
    input_key: str | None = None
    output_key: str | None = None
    # (input, state) -> input, run before the node
    state_pre_handler: Callable[[Any, Any], Any] | None = None
    # (output, state) -> output, run after the node
    state_post_handler: Callable[[Any, Any], Any] | None = None


class GraphBranch:
    """A runtime choice between a fixed set of successor nodes.

    ``condition`` receives the source node's output and returns the key of
    the node to continue with; it must be one of ``end_nodes``.
    """

    def __init__(
        self,
        condition: Callable[[Any], str],
        end_nodes: Iterable[str],
        *,
        input_type: Any = Any,
    ) -> None:
        self.condition = condition
        # de-duplicated, declaration order kept
        self.end_nodes: tuple[str, ...] = tuple(dict.fromkeys(end_nodes))
        self.input_type = input_type
        if not self.end_nodes:
            raise ValueError("branch needs at least one end node")

    @property
    def method(self) -> str:
        return getattr(self.condition, "__qualname__", type(self.condition).__name__)

    def choose(self, value: Any) -> str:
        chosen = self.condition(value)
        if chosen not in self.end_nodes:
            raise GraphRunError(
                f"branch {self.method} chose {chosen!r}, expected one of {list(self.end_nodes)}"
            )
        return chosen

    def __repr__(self) -> str:
        return f"GraphBranch({self.method}, end_nodes={list(self.end_nodes)})"


@dataclass
class GraphNodeInfo:
    """one node as the host framework recorded it."""

    component: ComponentKind
    instance: Any
    input_type: Any
    output_type: Any
    options: NodeOptions = field(default_factory=NodeOptions)
    # set when the node is itself a graph
    graph_info: GraphInfo | None = None

    @property
    def name(self) -> str | None:
        return self.options.name

    @property
    def input_key(self) -> str | None:
        return self.options.input_key

    @property
    def output_key(self) -> str | None:
        return self.options.output_key


@dataclass(frozen=True)
class CompileOptions:
    name: str | None = None
    global_callbacks: bool = True


@dataclass
class GraphInfo:
    """A compiled graph's structure.

    ``key`` identifies the compile call site ("file.function:line") and is
    the fallback display name for graphs compiled without a name.
    """

    name: str
    key: str
    input_type: Any
    output_type: Any
    nodes: dict[str, GraphNodeInfo] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)
    branches: dict[str, list[GraphBranch]] = field(default_factory=dict)
    gen_local_state: Callable[[], Any] | None = None
    state_type: Any = None
    node_trigger_mode: str = "AnyPredecessor"
    compile_options: CompileOptions = field(default_factory=CompileOptions)

    def successors(self, key: str) -> list[str]:
        """Edge targets then branch targets of ``key``, without duplicates."""
        out = list(self.edges.get(key, ()))
        for branch in self.branches.get(key, ()):
            out.extend(branch.end_nodes)
        return list(dict.fromkeys(out))
