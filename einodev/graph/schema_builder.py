"""Project a GraphInfo into the GraphSchema the visual editor renders.

The editor only understands binary edges, so fan-out is made explicit:
a source with several edge targets gets one synthesized ``parallel`` node,
and every branch gets its own synthesized ``branch`` node that links to
all of the branch's possible targets.
"""

from __future__ import annotations

from typing import Any


from einodev.compose.types import END, START, ComponentKind, GraphInfo, GraphNodeInfo
from einodev.graph.inference import KEYED_INPUT_TYPE, infer_input_type
from einodev.graph.options import GraphOption
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
from einodev.reflect.type_schema import reflect
from einodev.reflect.types import type_string
from einodev.utils.identifiers import generate_edge_id, generate_graph_id
from einodev.utils.log import get_logger

logger = get_logger(__name__)

INFER_INPUT_EXTRA_KEY = "infer_input"

# component packages whose implementations count as official
_OFFICIAL_PREFIXES = ("langchain_", "langchain.")


def edge_name(source: str, target: str) -> str:
    return f"{source}_to_{target}"


def parallel_node_key(source: str) -> str:
    return f"{source}:parallel"


def branch_node_key(source: str, index: int) -> str:
    return f"{source}:branch:{index}"


def _edge(source: str, target: str) -> Edge:
    return Edge(
        id=generate_edge_id(),
        name=edge_name(source, target),
        source_node_key=source,
        target_node_key=target,
    )


def _keyed_schema(schema: JsonSchema, key: str | None) -> JsonSchema:
    """Nodes with an input/output key see one field of a shared dict."""
    if not key:
        return schema
    return JsonSchema(
        type=JsonType.object,
        title=type_string(KEYED_INPUT_TYPE),
        properties={key: schema},
        property_order=[key],
        required=[key],
    )


def _io_schema(tp: Any, key: str | None) -> JsonSchema:
    return _keyed_schema(reflect(tp, skip_interface_fields=True), key)


def _component_schema(key: str, node: GraphNodeInfo) -> ComponentSchema:
    identifier = None
    source = ComponentSource.custom
    if node.instance is not None and node.component != ComponentKind.graph:
        cls = type(node.instance)
        identifier = f"{cls.__module__}.{cls.__qualname__}"
        if cls.__module__.startswith(_OFFICIAL_PREFIXES):
            source = ComponentSource.official
    return ComponentSchema(
        name=node.name or key,
        component=node.component.value,
        component_source=source,
        identifier=identifier,
        input_type=_io_schema(node.input_type, node.input_key),
        output_type=_io_schema(node.output_type, node.output_key),
    )


class GraphSchemaBuilder:
    """Builds the schema of one graph; nested graphs get their own builder."""

    def __init__(self, info: GraphInfo, option: GraphOption | None = None, *, operable: bool = True) -> None:
        self.info = info
        self.option = option or GraphOption()
        # nodes of nested graphs can only be started through their parent node
        self.operable = operable

    def build(self, graph_id: str | None = None) -> GraphSchema:
        nodes = self._build_nodes()
        edges, junctions = self._build_edges()
        branch_edges, branch_junctions, branches = self._build_branches()

        info = self.info
        gen_local_state = None
        if info.gen_local_state is not None:
            gen_local_state = GenLocalState(
                is_set=True,
                output_type=reflect(info.state_type) if info.state_type is not None else None,
            )

        schema = GraphSchema(
            id=graph_id or generate_graph_id(),
            name=info.name,
            component=ComponentKind.graph.value,
            nodes=[*nodes, *junctions, *branch_junctions],
            edges=[*edges, *branch_edges],
            branches=branches,
            node_trigger_mode=NodeTriggerMode(info.node_trigger_mode),
            gen_local_state=gen_local_state,
            input_type=_io_schema(info.input_type, None),
            output_type=_io_schema(info.output_type, None),
        )
        logger.debug(
            "graph_schema_built",
            graph=info.name,
            nodes=len(schema.nodes),
            edges=len(schema.edges),
            branches=len(schema.branches),
        )
        return schema

    def _allow_operate(self, key: str, supported: bool) -> bool:
        if not self.operable:
            return False
        return supported or self.option.unmarshaler_for(key) is not None

    def _build_nodes(self) -> list[Node]:
        info = self.info
        inferred, supported = infer_input_type(info, START)
        start = Node(
            key=START,
            name=START,
            type=NodeType.start.value,
            component_schema=ComponentSchema(
                name=START,
                component=NodeType.start.value,
                input_type=_io_schema(info.input_type, None),
                output_type=_io_schema(info.input_type, None),
            ),
            allow_operate=self._allow_operate(START, supported),
            extra={INFER_INPUT_EXTRA_KEY: inferred.json_schema().to_dict()},
        )
        end = Node(
            key=END,
            name=END,
            type=NodeType.end.value,
            component_schema=ComponentSchema(
                name=END,
                component=NodeType.end.value,
                input_type=_io_schema(info.output_type, None),
                output_type=_io_schema(info.output_type, None),
            ),
            allow_operate=False,
        )

        nodes = [start, end]
        for key, node in info.nodes.items():
            _, node_supported = infer_input_type(info, key)
            sub_schema = None
            if node.graph_info is not None:
                sub_schema = GraphSchemaBuilder(node.graph_info, operable=False).build()
            nodes.append(Node(
                key=key,
                name=node.name or key,
                type=node.component.value,
                component_schema=_component_schema(key, node),
                graph_schema=sub_schema,
                node_option=NodeOption(
                    input_key=node.input_key,
                    output_key=node.output_key,
                    used_state_pre_handler=node.options.state_pre_handler is not None,
                    used_state_post_handler=node.options.state_post_handler is not None,
                ),
                allow_operate=self._allow_operate(key, node_supported),
            ))
        return nodes

    def _build_edges(self) -> tuple[list[Edge], list[Node]]:
        edges: list[Edge] = []
        junctions: list[Node] = []
        for source, targets in self.info.edges.items():
            if not targets:
                continue
            if len(targets) == 1:
                edges.append(_edge(source, targets[0]))
                continue

            junction = Node(
                key=parallel_node_key(source),
                name=NodeType.parallel.value,
                type=NodeType.parallel.value,
            )
            junctions.append(junction)
            edges.append(_edge(source, junction.key))
            edges.extend(_edge(junction.key, target) for target in targets)
        return edges, junctions

    def _build_branches(self) -> tuple[list[Edge], list[Node], list[Branch]]:
        edges: list[Edge] = []
        junctions: list[Node] = []
        branches: list[Branch] = []
        for source, source_branches in self.info.branches.items():
            for index, branch in enumerate(source_branches):
                junction = Node(
                    key=branch_node_key(source, index),
                    name=NodeType.branch.value,
                    type=NodeType.branch.value,
                )
                junctions.append(junction)
                edges.append(_edge(source, junction.key))
                edges.extend(_edge(junction.key, target) for target in branch.end_nodes)
                branches.append(Branch(
                    id=generate_edge_id(),
                    condition=Condition(method=branch.method, input_type=reflect(branch.input_type)),
                    source_node_key=source,
                    target_node_keys=list(branch.end_nodes),
                ))
        return edges, junctions, branches


def build_graph_schema(
    info: GraphInfo,
    option: GraphOption | None = None,
    *,
    graph_id: str | None = None,
) -> GraphSchema:
    return GraphSchemaBuilder(info, option).build(graph_id)


def build_canvas(info: GraphInfo, option: GraphOption | None = None, *, graph_id: str | None = None) -> CanvasInfo:
    """The versioned top-level schema served to the editor."""
    schema = build_graph_schema(info, option, graph_id=graph_id)
    return CanvasInfo(**dict(schema))
