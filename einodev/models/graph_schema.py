"""Data model for the graph schema handed to the visual editor.

A GraphSchema is a read-only projection of a compiled graph: real nodes,
synthesized START/END and junction nodes, binary edges and branch
descriptors, with nested schemas for subgraph nodes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

CANVAS_VERSION = "1.0.0"


class JsonType(str, Enum):
    """json value kinds a schema node can describe."""

    boolean = "boolean"
    string = "string"
    number = "number"
    object = "object"
    array = "array"
    null = "null"


class JsonSchema(BaseModel):
    """recursive shape descriptor of a type."""

    model_config = ConfigDict(populate_by_name=True)

    type: JsonType | None = None
    title: str | None = None
    description: str = ""
    items: JsonSchema | None = None
    properties: dict[str, JsonSchema] | None = None
    any_of: list[JsonSchema] | None = Field(default=None, alias="anyOf")
    additional_properties: JsonSchema | None = Field(default=None, alias="additionalProperties")
    required: list[str] | None = None
    enum: list[Any] | None = None
    property_order: list[str] | None = Field(default=None, alias="propertyOrder")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NodeType(str, Enum):
    """kinds of synthesized schema nodes; real nodes use their component kind."""

    start = "start"
    end = "end"
    branch = "branch"
    parallel = "parallel"


class NodeTriggerMode(str, Enum):
    any_predecessor = "AnyPredecessor"
    all_predecessor = "AllPredecessor"


class ComponentSource(str, Enum):
    custom = "custom"
    official = "official"


class ComponentSchema(BaseModel):
    """what component implementation backs a node."""

    name: str
    component: str
    component_source: ComponentSource = ComponentSource.custom
    identifier: str | None = None  # e.g. langchain_openai.ChatOpenAI
    input_type: JsonSchema | None = None
    output_type: JsonSchema | None = None


class NodeOption(BaseModel):
    input_key: str | None = None
    output_key: str | None = None
    used_state_pre_handler: bool = False
    used_state_post_handler: bool = False


class Node(BaseModel):
    """a node in the schema, real or synthesized."""

    key: str
    name: str
    type: str  # NodeType value or component kind
    component_schema: ComponentSchema | None = None
    graph_schema: GraphSchema | None = None
    node_option: NodeOption | None = None
    allow_operate: bool = False
    extra: dict[str, Any] | None = None


class Edge(BaseModel):
    """a directed binary edge between two schema nodes."""

    id: str
    name: str
    source_node_key: str
    target_node_key: str


class Condition(BaseModel):
    method: str
    is_stream: bool = False
    input_type: JsonSchema | None = None


class Branch(BaseModel):
    """a conditional fan-out and every target it can statically reach."""

    id: str
    condition: Condition
    source_node_key: str
    target_node_keys: list[str]


class GenLocalState(BaseModel):
    is_set: bool
    output_type: JsonSchema | None = None


class GraphSchema(BaseModel):
    """the full graph structure as rendered by the editor."""

    id: str
    name: str
    component: str
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    branches: list[Branch] = Field(default_factory=list)
    node_trigger_mode: NodeTriggerMode = NodeTriggerMode.any_predecessor
    gen_local_state: GenLocalState | None = None
    input_type: JsonSchema | None = None
    output_type: JsonSchema | None = None

    def node(self, key: str) -> Node | None:
        return next((n for n in self.nodes if n.key == key), None)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CanvasInfo(GraphSchema):
    """a versioned top-level graph schema."""

    version: str = CANVAS_VERSION


Node.model_rebuild()
