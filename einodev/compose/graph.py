"""Graph builder and compiled graph runnable.

``Graph.compile`` builds a langgraph ``StateGraph`` from the definition.
Every node key becomes a langgraph node. Values travel through one
``inbox:{key}`` topic channel per node (``inbox:end`` collects the graph
output), plain edges become langgraph edges, and the branches of a node
become one conditional edge that follows the targets the node chose and
recorded in its ``route:{key}`` channel.

Inside each langgraph node the component runs as a child run carrying the
metadata keys ``graph_node`` and ``graph_component``, so ordinary callback
handlers can observe node boundaries.

Nodes are triggered by any predecessor: a node runs in the superstep after
a predecessor delivered to it, with every value delivered in that step
merged into its input.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import replace
from types import FrameType
from typing import Annotated, Any, Callable, Sequence, TypedDict

from langchain_core.documents import BaseDocumentTransformer, Document
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AnyMessage, ToolMessage, message_chunk_to_message
from langchain_core.prompts import BasePromptTemplate
from langchain_core.retrievers import BaseRetriever
from langchain_core.runnables import Runnable, RunnableConfig, RunnableLambda
from langchain_core.runnables.config import ensure_config, patch_config
from langchain_core.vectorstores import VectorStore
from langgraph.channels import LastValue, Topic
from langgraph.graph import END as LG_END
from langgraph.graph import START as LG_START
from langgraph.graph import StateGraph
from langgraph.graph.state import CompiledStateGraph

from einodev.compose.callbacks import (
    GraphCompileCallback,
    global_compile_callbacks,
    notify_compiled,
)
from einodev.compose.components import Lambda, ToolsNode
from einodev.compose.types import (
    END,
    RESERVED_KEYS,
    START,
    CompileOptions,
    ComponentKind,
    GraphBranch,
    GraphInfo,
    GraphNodeInfo,
    NodeOptions,
)
from einodev.errors import GraphRunError, GraphStructureError
from einodev.utils.log import get_logger

logger = get_logger(__name__)

NODE_METADATA_KEY = "graph_node"
COMPONENT_METADATA_KEY = "graph_component"
# set in ``configurable`` to make chat model nodes stream
STREAM_CONFIG_KEY = "einodev_stream"

LOCAL_STATE_CHANNEL = "state:local"
# langgraph reserves these in node names
_RESERVED_CHARACTERS = ("|", ":")

_INSTANCE_TYPES: dict[ComponentKind, tuple[type, ...]] = {
    ComponentKind.chat_model: (BaseChatModel,),
    ComponentKind.embedding: (Embeddings,),
    ComponentKind.retriever: (BaseRetriever,),
    ComponentKind.indexer: (VectorStore,),
    ComponentKind.prompt: (BasePromptTemplate,),
    ComponentKind.document_transformer: (BaseDocumentTransformer,),
    ComponentKind.tools_node: (ToolsNode,),
    ComponentKind.lambda_: (Lambda,),
}


def inbox_channel(key: str) -> str:
    return f"inbox:{key}"


def route_channel(key: str) -> str:
    return f"route:{key}"


def _lg_key(key: str) -> str:
    if key == START:
        return LG_START
    if key == END:
        return LG_END
    return key


def caller_site(frame: FrameType | None) -> str:
    """``file.function:line`` of ``frame``, used to name unnamed graphs."""
    if frame is None:
        return "unknown"
    filename = os.path.splitext(os.path.basename(frame.f_code.co_filename))[0]
    return f"{filename}.{frame.f_code.co_name}:{frame.f_lineno}"


class Graph:
    """A mutable graph definition; call ``compile`` to get a runnable."""

    def __init__(
        self,
        input_type: Any = Any,
        output_type: Any = Any,
        *,
        gen_local_state: Callable[[], Any] | None = None,
        state_type: Any = None,
    ) -> None:
        self.input_type = input_type
        self.output_type = output_type
        self.gen_local_state = gen_local_state
        self.state_type = state_type
        self.nodes: dict[str, GraphNodeInfo] = {}
        self.edges: dict[str, list[str]] = {}
        self.branches: dict[str, list[GraphBranch]] = {}

    # --- nodes ---

    def _add_node(
        self,
        key: str,
        kind: ComponentKind,
        instance: Any,
        input_type: Any,
        output_type: Any,
        options: NodeOptions | None,
        option_kwargs: dict[str, Any],
    ) -> None:
        if not key:
            raise GraphStructureError("node key must not be empty")
        if key in RESERVED_KEYS:
            raise GraphStructureError(f"node key {key!r} is reserved")
        for character in _RESERVED_CHARACTERS:
            if character in key:
                raise GraphStructureError(f"node key {key!r} must not contain {character!r}")
        if key in self.nodes:
            raise GraphStructureError(f"node {key!r} already exists")
        expected = _INSTANCE_TYPES.get(kind)
        if expected is not None and not isinstance(instance, expected):
            raise GraphStructureError(
                f"component is {kind.value}, but got unexpected instance={type(instance).__name__}"
            )
        if options is None:
            options = NodeOptions(**option_kwargs)
        elif option_kwargs:
            options = replace(options, **option_kwargs)
        self.nodes[key] = GraphNodeInfo(
            component=kind,
            instance=instance,
            input_type=input_type,
            output_type=output_type,
            options=options,
        )

    def add_chat_model_node(self, key: str, model: BaseChatModel, options: NodeOptions | None = None, **kwargs: Any) -> None:
        self._add_node(key, ComponentKind.chat_model, model, list[AnyMessage], AIMessage, options, kwargs)

    def add_embedding_node(self, key: str, embedder: Embeddings, options: NodeOptions | None = None, **kwargs: Any) -> None:
        self._add_node(key, ComponentKind.embedding, embedder, list[str], list[list[float]], options, kwargs)

    def add_retriever_node(self, key: str, retriever: BaseRetriever, options: NodeOptions | None = None, **kwargs: Any) -> None:
        self._add_node(key, ComponentKind.retriever, retriever, str, list[Document], options, kwargs)

    def add_indexer_node(self, key: str, store: VectorStore, options: NodeOptions | None = None, **kwargs: Any) -> None:
        self._add_node(key, ComponentKind.indexer, store, list[Document], list[str], options, kwargs)

    def add_prompt_node(self, key: str, template: BasePromptTemplate, options: NodeOptions | None = None, **kwargs: Any) -> None:
        self._add_node(key, ComponentKind.prompt, template, dict[str, Any], list[AnyMessage], options, kwargs)

    def add_document_transformer_node(
        self, key: str, transformer: BaseDocumentTransformer, options: NodeOptions | None = None, **kwargs: Any
    ) -> None:
        self._add_node(
            key, ComponentKind.document_transformer, transformer, list[Document], list[Document], options, kwargs
        )

    def add_tools_node(self, key: str, tools: ToolsNode, options: NodeOptions | None = None, **kwargs: Any) -> None:
        self._add_node(key, ComponentKind.tools_node, tools, AIMessage, list[ToolMessage], options, kwargs)

    def add_lambda_node(self, key: str, node: Lambda, options: NodeOptions | None = None, **kwargs: Any) -> None:
        if not isinstance(node, Lambda):
            raise GraphStructureError(
                f"component is {ComponentKind.lambda_.value}, but got unexpected instance={type(node).__name__}"
            )
        self._add_node(key, ComponentKind.lambda_, node, node.input_type, node.output_type, options, kwargs)

    def add_passthrough_node(self, key: str, options: NodeOptions | None = None, **kwargs: Any) -> None:
        self._add_node(key, ComponentKind.passthrough, None, Any, Any, options, kwargs)

    def add_graph_node(self, key: str, graph: Graph, options: NodeOptions | None = None, **kwargs: Any) -> None:
        if not isinstance(graph, Graph):
            raise GraphStructureError(
                f"component is {ComponentKind.graph.value}, but got unexpected instance={type(graph).__name__}"
            )
        self._add_node(key, ComponentKind.graph, graph, graph.input_type, graph.output_type, options, kwargs)

    def add_node_from_info(self, key: str, info: GraphNodeInfo) -> None:
        """Re-add a node recorded in another graph's GraphInfo."""
        kind = info.component
        if kind == ComponentKind.passthrough:
            self.add_passthrough_node(key, info.options)
            return
        if kind == ComponentKind.graph:
            self.add_graph_node(key, info.instance, info.options)
            return
        if kind == ComponentKind.lambda_:
            self.add_lambda_node(key, info.instance, info.options)
            return
        if kind not in _INSTANCE_TYPES:
            raise GraphStructureError(f"unsupported component={kind}")
        # the recorded types are kept as-is
        self._add_node(key, kind, info.instance, info.input_type, info.output_type, info.options, {})

    # --- wiring ---

    def _check_source(self, key: str) -> None:
        if key == END:
            raise GraphStructureError("END cannot be the start of an edge or branch")
        if key != START and key not in self.nodes:
            raise GraphStructureError(f"node {key!r} not found")

    def _check_target(self, key: str) -> None:
        if key == START:
            raise GraphStructureError("START cannot be the target of an edge or branch")
        if key != END and key not in self.nodes:
            raise GraphStructureError(f"node {key!r} not found")

    def add_edge(self, start: str, end: str) -> None:
        self._check_source(start)
        self._check_target(end)
        targets = self.edges.setdefault(start, [])
        if end in targets:
            raise GraphStructureError(f"edge {start!r} -> {end!r} already exists")
        targets.append(end)

    def add_branch(self, start: str, branch: GraphBranch) -> None:
        self._check_source(start)
        for end in branch.end_nodes:
            self._check_target(end)
        self.branches.setdefault(start, []).append(branch)

    # --- compile ---

    def state_schema(self) -> type:
        """The TypedDict whose fields are the channels of the compiled graph."""
        fields: dict[str, Any] = {inbox_channel(key): Annotated[list, Topic(object)] for key in self.nodes}
        fields[inbox_channel(END)] = Annotated[list, Topic(object, accumulate=True)]
        for source in self.branches:
            fields[route_channel(source)] = Annotated[list, LastValue(list)]
        fields[LOCAL_STATE_CHANNEL] = Annotated[Any, LastValue(object)]
        return TypedDict("GraphState", fields, total=False)

    def build_info(self, name: str, key: str, options: CompileOptions | None = None) -> GraphInfo:
        """Snapshot this definition, nested graphs included."""
        nodes: dict[str, GraphNodeInfo] = {}
        for node_key, info in self.nodes.items():
            if info.component == ComponentKind.graph:
                sub: Graph = info.instance
                info = replace(info, graph_info=sub.build_info(info.name or node_key, key))
            nodes[node_key] = info
        return GraphInfo(
            name=name,
            key=key,
            input_type=self.input_type,
            output_type=self.output_type,
            nodes=nodes,
            edges={source: list(targets) for source, targets in self.edges.items()},
            branches={source: list(branches) for source, branches in self.branches.items()},
            gen_local_state=self.gen_local_state,
            state_type=self.state_type,
            compile_options=options or CompileOptions(name=name),
        )

    def compile(
        self,
        name: str | None = None,
        *,
        callbacks: Sequence[GraphCompileCallback] = (),
        global_callbacks: bool = True,
    ) -> CompiledGraph:
        """Validate the graph and return a runnable for it.

        Compile callbacks (the ones given here, plus the process-wide ones
        unless ``global_callbacks`` is False) receive the GraphInfo.
        """
        key = caller_site(sys._getframe(1))
        compiled = self._compile(name, key, CompileOptions(name=name, global_callbacks=global_callbacks))

        observers = list(callbacks)
        if global_callbacks:
            observers.extend(cb for cb in global_compile_callbacks() if cb not in observers)
        notify_compiled(compiled.graph_info, observers)
        return compiled

    def _compile(self, name: str | None, key: str, options: CompileOptions) -> CompiledGraph:
        info = self.build_info(name or key, key, options)
        _validate(info)

        builder = StateGraph(self.state_schema())
        for node_key, node in info.nodes.items():
            builder.add_node(
                node_key,
                _node_action(node_key, node, _node_runnable(node_key, node, key), info),
                metadata={"label": node.name or node_key, COMPONENT_METADATA_KEY: node.component.value},
            )
        for source, targets in info.edges.items():
            for target in targets:
                builder.add_edge(_lg_key(source), _lg_key(target))
        for source, branches in info.branches.items():
            path_map = {target: _lg_key(target) for branch in branches for target in branch.end_nodes}
            builder.add_conditional_edges(_lg_key(source), _route_reader(source), path_map)

        logger.debug("graph_built", graph=info.name, nodes=len(info.nodes), branches=len(info.branches))
        return CompiledGraph(info, builder.compile(name=info.name))


def _validate(info: GraphInfo) -> None:
    if not info.successors(START):
        raise GraphStructureError("start node has no successor")
    if not any(END in info.successors(key) for key in [START, *info.nodes]):
        raise GraphStructureError("end node has no predecessor")

    reached = {START}
    pending = [START]
    while pending:
        for target in info.successors(pending.pop()):
            if target not in reached:
                reached.add(target)
                pending.append(target)
    unreachable = [key for key in info.nodes if key not in reached]
    if unreachable:
        raise GraphStructureError(f"nodes unreachable from start: {sorted(unreachable)}")


def _route_reader(source: str) -> Callable[[Mapping[str, Any]], list[str]]:
    channel = route_channel(source)

    def route(state):
        return state.get(channel) or []

    return route


def _streaming(config: RunnableConfig) -> bool:
    return bool(config.get("configurable", {}).get(STREAM_CONFIG_KEY))


def _join_chunks(chunks: Iterable[Any]) -> Any:
    output = None
    for chunk in chunks:
        output = chunk if output is None else output + chunk
    return output


def _node_runnable(key: str, node: GraphNodeInfo, parent_site: str) -> Runnable:
    """The runnable executed for one node, named after the node key."""
    kind = node.component
    instance = node.instance

    if kind == ComponentKind.graph:
        sub = instance._compile(node.name or key, parent_site, CompileOptions(name=node.name or key))

        def run(value: Any, config: RunnableConfig) -> Any:
            return sub.invoke(value, config)

    elif kind == ComponentKind.chat_model:

        def run(value: Any, config: RunnableConfig) -> Any:
            if _streaming(config):
                return message_chunk_to_message(_join_chunks(instance.stream(value, config)))
            return instance.invoke(value, config)

    elif kind == ComponentKind.retriever:

        def run(value: Any, config: RunnableConfig) -> Any:
            return instance.invoke(value, config)

    elif kind == ComponentKind.prompt:

        def run(value: Any, config: RunnableConfig) -> Any:
            return instance.invoke(value, config).to_messages()

    elif kind == ComponentKind.embedding:

        def run(value: Any, config: RunnableConfig) -> Any:
            return instance.embed_documents(list(value))

    elif kind == ComponentKind.indexer:

        def run(value: Any, config: RunnableConfig) -> Any:
            return instance.add_documents(list(value))

    elif kind == ComponentKind.document_transformer:

        def run(value: Any, config: RunnableConfig) -> Any:
            return list(instance.transform_documents(list(value)))

    elif kind == ComponentKind.tools_node or kind == ComponentKind.lambda_:

        def run(value: Any, config: RunnableConfig) -> Any:
            return instance.invoke(value, config)

    elif kind == ComponentKind.passthrough:

        def run(value: Any, config: RunnableConfig) -> Any:
            return value

    else:
        raise GraphStructureError(f"unsupported component={kind}")

    return RunnableLambda(run, name=key)


def _merge_inputs(key: str, values: list[Any]) -> Any:
    if len(values) == 1:
        return values[0]
    if not all(isinstance(v, Mapping) for v in values):
        raise GraphRunError(
            f"node {key!r} received {len(values)} inputs that are not all mappings and cannot be merged"
        )
    merged: dict[Any, Any] = {}
    for value in values:
        for k, v in value.items():
            if k in merged:
                raise GraphRunError(f"node {key!r} received duplicate input key {k!r} while merging")
            merged[k] = v
    return merged


def _deliver(source: str, value: Any, info: GraphInfo) -> dict[str, Any]:
    """Channel writes carrying ``value`` from ``source`` to its successors.

    Every write is a list; topic channels take its items one by one, so a
    list-valued output stays a single delivery.
    """
    writes: dict[str, list[Any]] = {}
    for target in info.edges.get(source, ()):
        writes.setdefault(inbox_channel(target), []).append(value)
    branches = info.branches.get(source)
    if branches:
        chosen = [branch.choose(value) for branch in branches]
        for target in chosen:
            writes.setdefault(inbox_channel(target), []).append(value)
        writes[route_channel(source)] = chosen
    return writes


def _node_action(key: str, node: GraphNodeInfo, runner: Runnable, info: GraphInfo) -> Callable[..., dict[str, Any]]:
    options = node.options

    def run_node(state: dict[str, Any], config: RunnableConfig) -> dict[str, Any]:
        values = state.get(inbox_channel(key)) or []
        if not values:
            return {}
        value = _merge_inputs(key, list(values))
        local_state = state.get(LOCAL_STATE_CHANNEL)

        if options.input_key:
            if not isinstance(value, Mapping) or options.input_key not in value:
                raise GraphRunError(f"node {key!r} expects input key {options.input_key!r}")
            value = value[options.input_key]
        if options.state_pre_handler is not None:
            value = options.state_pre_handler(value, local_state)

        node_config = patch_config(config, run_name=key)
        node_config["metadata"] = {
            **node_config.get("metadata", {}),
            NODE_METADATA_KEY: key,
            COMPONENT_METADATA_KEY: node.component.value,
        }
        output = runner.invoke(value, node_config)

        if options.state_post_handler is not None:
            output = options.state_post_handler(output, local_state)
        if options.output_key:
            output = {options.output_key: output}
        return _deliver(key, output, info)

    return run_node


class CompiledGraph(Runnable[Any, Any]):
    """An executable graph backed by a compiled langgraph StateGraph.

    ``graph`` is the langgraph graph; its ``builder`` and ``get_graph()``
    describe the wiring like those of any other langgraph application.
    """

    def __init__(self, graph_info: GraphInfo, graph: CompiledStateGraph) -> None:
        self.graph_info = graph_info
        self.graph = graph
        self.name = graph_info.name

    def _initial_state(self, input: Any) -> dict[str, Any]:
        info = self.graph_info
        state = _deliver(START, input, info)
        if info.gen_local_state is not None:
            state[LOCAL_STATE_CHANNEL] = info.gen_local_state()
        return state

    def _output(self, values: Mapping[str, Any]) -> Any:
        delivered = values.get(inbox_channel(END)) or []
        if not delivered:
            raise GraphRunError(f"graph {self.name!r} finished without output reaching end")
        return _merge_inputs(END, list(delivered))

    def invoke(self, input: Any, config: RunnableConfig | None = None, **kwargs: Any) -> Any:
        config = ensure_config(config)
        if not config.get("run_name"):
            config["run_name"] = self.name
        return self._output(self.graph.invoke(self._initial_state(input), config))

    def stream(self, input: Any, config: RunnableConfig | None = None, **kwargs: Any) -> Iterator[Any]:
        """Run with chat model nodes streaming their responses.

        Each response is assembled from its chunks before it moves on to the
        next node; the graph output is yielded once the run ends.
        """
        config = ensure_config(config)
        config["configurable"] = {**config.get("configurable", {}), STREAM_CONFIG_KEY: True}
        yield self.invoke(input, config)
