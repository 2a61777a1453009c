"""Infer what user input a graph accepts when a debug run starts at a node.

Starting at START is the interesting case. When the graph's own input type
is concrete and decodable it is used as is. When it is ``Any`` or a dict,
the nodes fed directly by START decide:

- none of them declares an input key: they must all take the same
  decodable type, which becomes the input type;
- some declare input keys: every plain start node must declare one, each
  key becomes one property of a dict-shaped input, and nested graphs are
  inlined (a keyed subgraph contributes its own inference under its key, an
  unkeyed one merges its keyed entry nodes into the same dict).

Inference is a best-effort probe: failing to find a shape returns
``supported=False`` rather than raising.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


from einodev.compose.types import END, START, GraphInfo, GraphNodeInfo
from einodev.errors import GraphStructureError, UnmarshalError
from einodev.models.graph_schema import JsonSchema, JsonType
from einodev.reflect.registry import TypeRegistry
from einodev.reflect.type_schema import reflect
from einodev.reflect.types import Kind, is_supported_input, kind_of, pointer_elem, type_string
from einodev.reflect.unmarshal import TaggedDecoder, unmarshal_json
from einodev.utils.log import get_logger

logger = get_logger(__name__)

# the runtime type of a keyed input
KEYED_INPUT_TYPE = dict[str, Any]

_UNSET = object()


@dataclass
class GraphInferType:
    """The inferred input shape at one starting position.

    Either ``input_type`` alone (the whole input goes to the start nodes),
    or ``input_types`` mapping input keys to types. ``nested`` holds, per
    input key, the keyed inference of a subgraph reached through that key.
    """

    input_type: Any = None
    input_types: dict[str, Any] = field(default_factory=dict)
    nested: dict[str, GraphInferType] = field(default_factory=dict)

    @property
    def keyed(self) -> bool:
        return bool(self.input_types)

    def unmarshal_json(self, raw: str | bytes, *, registry: TypeRegistry | None = None) -> Any:
        """Decode user JSON into the value the reconstructed graph is invoked with."""
        if not self.keyed:
            return unmarshal_json(raw, self.input_type, registry=registry)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise UnmarshalError(f"unmarshal failed, err={e}, str={raw!s}") from e
        return self._decode_keyed(data, TaggedDecoder(registry))

    def _decode_keyed(self, data: Any, decoder: TaggedDecoder) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise UnmarshalError(
                f"unmarshal failed, keyed input must be an object, str={json.dumps(data)}"
            )
        out: dict[str, Any] = {}
        for key, value in data.items():
            if key not in self.input_types:
                continue
            sub = self.nested.get(key)
            if sub is not None:
                out[key] = sub._decode_keyed(value, decoder)
            else:
                out[key] = decoder.decode(value, self.input_types[key])
        return out

    def json_schema(self) -> JsonSchema:
        """The shape a UI should offer for this input."""
        if not self.keyed:
            return reflect(self.input_type)
        properties = {}
        for key, tp in self.input_types.items():
            sub = self.nested.get(key)
            properties[key] = sub.json_schema() if sub is not None else reflect(tp)
        keys = list(self.input_types)
        return JsonSchema(
            type=JsonType.object,
            title=type_string(KEYED_INPUT_TYPE),
            properties=properties,
            property_order=keys,
            required=keys,
        )


def infer_input_type(info: GraphInfo, node_key: str) -> tuple[GraphInferType, bool]:
    """Inferred input shape for a debug run starting at ``node_key``.

    Raises GraphStructureError for END and for unknown nodes.
    """
    if node_key == END:
        raise GraphStructureError("cannot infer input type for end node")
    if node_key == START:
        return _infer_graph_input(info)

    node = info.nodes.get(node_key)
    if node is None:
        raise GraphStructureError(f"node={node_key} not found")

    if node.graph_info is not None:
        inferred, supported = _infer_graph_input(node.graph_info)
        if not node.input_key:
            return inferred, supported
        return _wrap_under_key(node.input_key, inferred), supported

    if is_supported_input(node.input_type):
        if not node.input_key:
            return GraphInferType(input_type=node.input_type), True
        return GraphInferType(input_types={node.input_key: node.input_type}), True

    return GraphInferType(input_type=node.input_type), False


def _wrap_under_key(input_key: str, inferred: GraphInferType) -> GraphInferType:
    if not inferred.keyed:
        return GraphInferType(input_types={input_key: inferred.input_type})
    return GraphInferType(
        input_types={input_key: KEYED_INPUT_TYPE},
        nested={input_key: inferred},
    )


def _infer_graph_input(info: GraphInfo) -> tuple[GraphInferType, bool]:
    if is_supported_input(info.input_type):
        return GraphInferType(input_type=info.input_type), True

    graph_type = info.input_type
    while kind_of(graph_type) == Kind.pointer:
        graph_type = pointer_elem(graph_type)

    if kind_of(graph_type) in (Kind.interface, Kind.dict):
        return _infer_from_start_nodes(info)
    return GraphInferType(input_type=info.input_type), False


def _start_nodes(info: GraphInfo) -> dict[str, GraphNodeInfo]:
    return {key: info.nodes[key] for key in info.successors(START) if key != END}


def _infer_from_start_nodes(info: GraphInfo) -> tuple[GraphInferType, bool]:
    unsupported = GraphInferType(input_type=info.input_type), False
    start_nodes = _start_nodes(info)
    if not start_nodes:
        return unsupported

    keyed = {key: node for key, node in start_nodes.items() if node.input_key}
    if keyed:
        # partial adoption: a plain node without an input key cannot share a keyed input
        if any(not node.input_key and node.graph_info is None for node in start_nodes.values()):
            logger.debug("infer_partial_input_keys", graph=info.name)
            return unsupported
        return _infer_keyed(info, start_nodes, keyed)

    if kind_of(info.input_type) == Kind.dict:
        return unsupported
    return _infer_common_type(info, start_nodes)


def _infer_keyed(
    info: GraphInfo,
    start_nodes: dict[str, GraphNodeInfo],
    keyed: dict[str, GraphNodeInfo],
) -> tuple[GraphInferType, bool]:
    unsupported = GraphInferType(input_type=info.input_type), False
    result = GraphInferType()

    for node in keyed.values():
        if node.graph_info is None:
            if not is_supported_input(node.input_type):
                return unsupported
            result.input_types[node.input_key] = node.input_type
            continue

        sub, ok = _infer_graph_input(node.graph_info)
        if not ok:
            return unsupported
        wrapped = _wrap_under_key(node.input_key, sub)
        result.input_types.update(wrapped.input_types)
        result.nested.update(wrapped.nested)

    # unkeyed subgraphs read the same dict; their own entry nodes must be keyed
    for key, node in start_nodes.items():
        if node.graph_info is None or key in keyed:
            continue
        sub, ok = _infer_graph_input(node.graph_info)
        if not ok or not sub.keyed:
            return unsupported
        result.input_types.update(sub.input_types)
        result.nested.update(sub.nested)

    return result, True


def _infer_common_type(
    info: GraphInfo,
    start_nodes: dict[str, GraphNodeInfo],
) -> tuple[GraphInferType, bool]:
    unsupported = GraphInferType(input_type=info.input_type), False
    common: Any = _UNSET

    for node in start_nodes.values():
        node_type = node.input_type
        if node.graph_info is not None:
            sub, ok = _infer_graph_input(node.graph_info)
            if not ok or sub.keyed:
                return unsupported
            node_type = sub.input_type

        if common is _UNSET:
            if not is_supported_input(node_type):
                return unsupported
            common = node_type
        elif common != node_type:
            return unsupported

    return GraphInferType(input_type=common), True
