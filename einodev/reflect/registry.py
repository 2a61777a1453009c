"""Registry of concrete types that may appear behind an interface.

Interface-typed JSON values arrive as ``{"_eino_go_type": id, "_value": ...}``
envelopes; ``id`` is looked up here to find the concrete annotation the
payload is decoded into.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Optional

from langchain_core.documents import Document
from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    BaseMessage,
    ChatMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from einodev.models.graph_schema import JsonSchema
from einodev.reflect.type_schema import reflect
from einodev.reflect.types import type_string
from einodev.utils.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RegisteredType:
    """identifier -> annotation, with its schema computed once."""

    identifier: str
    type: Any
    schema: JsonSchema


BUILTIN_TYPES: tuple[Any, ...] = (
    dict[str, Any],
    HumanMessage,
    Optional[HumanMessage],
    AIMessage,
    Optional[AIMessage],
    SystemMessage,
    ToolMessage,
    ChatMessage,
    list[BaseMessage],
    list[AnyMessage],
    Document,
    Optional[Document],
    list[Document],
    str,
    Optional[str],
    int,
    Optional[int],
    float,
    Optional[float],
    bool,
    Optional[bool],
    list[str],
    list[int],
    list[float],
    list[list[float]],
    list[Any],
    dict[str, str],
    dict[str, int],
    dict[str, float],
)


class TypeRegistry:
    """Thread-safe table of registered types.

    Newest registrations are listed first by ``all()``; registering an
    identifier that is already present changes nothing.
    """

    def __init__(self, types: tuple[Any, ...] = ()) -> None:
        self._lock = threading.RLock()
        self._entries: list[RegisteredType] = []
        self._by_id: dict[str, RegisteredType] = {}
        # seed in declaration order so the first builtin ends up first
        for tp in reversed(types):
            self.register(tp)

    def register(self, tp: Any) -> bool:
        """Register ``tp``. Returns False when it was already known."""
        identifier = type_string(tp)
        with self._lock:
            if identifier in self._by_id:
                return False
            entry = RegisteredType(identifier=identifier, type=tp, schema=reflect(tp))
            self._by_id[identifier] = entry
            self._entries.insert(0, entry)
        logger.debug("type_registered", identifier=identifier)
        return True

    def lookup(self, identifier: str) -> RegisteredType | None:
        with self._lock:
            return self._by_id.get(identifier)

    def all(self) -> list[RegisteredType]:
        with self._lock:
            return list(self._entries)

    def all_schemas(self) -> list[JsonSchema]:
        return [entry.schema for entry in self.all()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._by_id


# process-wide registry used when callers do not inject their own
_default_registry: TypeRegistry | None = None
_default_lock = threading.Lock()


def default_registry() -> TypeRegistry:
    """The process-wide registry, seeded with BUILTIN_TYPES on first use."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = TypeRegistry(BUILTIN_TYPES)
        return _default_registry


def register_type(tp: Any) -> bool:
    """Register ``tp`` with the process-wide registry."""
    return default_registry().register(tp)
