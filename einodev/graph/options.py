"""Per-graph debug options and the GraphInfo wrapper that carries them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from einodev.compose.types import GraphInfo

# raw JSON text -> node input value
UnmarshalInput = Callable[[str], Any]


@dataclass(frozen=True)
class NodeUnmarshalInput:
    """custom decoding of user input for one node, bypassing inference."""

    node_key: str
    unmarshal: UnmarshalInput


@dataclass(frozen=True)
class GraphOption:
    node_input_unmarshal: tuple[NodeUnmarshalInput, ...] = ()
    # replaces the graph's own local state constructor in debug runs
    gen_state: Callable[[], Any] | None = None

    def unmarshaler_for(self, node_key: str) -> UnmarshalInput | None:
        for entry in self.node_input_unmarshal:
            if entry.node_key == node_key:
                return entry.unmarshal
        return None


@dataclass
class DevGraphInfo:
    """a registered graph's structure plus its debug options."""

    info: GraphInfo
    option: GraphOption = field(default_factory=GraphOption)
