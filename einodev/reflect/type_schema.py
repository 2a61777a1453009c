"""Reflect a type annotation into a JsonSchema.

The walk is a pure function of the annotation. Self-referential structs
terminate because a struct already being expanded on the current path is
replaced by the ``dict[str, Any]`` placeholder schema.
"""

from __future__ import annotations

from typing import Any

from einodev.models.graph_schema import JsonSchema, JsonType
from einodev.reflect.types import (
    Kind,
    dict_key_value,
    kind_of,
    list_elem,
    literal_values,
    pointer_elem,
    struct_class,
    struct_fields,
    type_string,
    union_members,
)

_SCALAR_JSON_TYPES = {
    Kind.string: JsonType.string,
    Kind.bool: JsonType.boolean,
    Kind.int: JsonType.number,
    Kind.float: JsonType.number,
}

# placeholder for structs that recurse into themselves
_GENERIC_OBJECT = dict[str, Any]


def interface_schema() -> JsonSchema:
    """What any value could be when the static type says nothing."""
    return JsonSchema(any_of=[
        JsonSchema(type=JsonType.boolean),
        JsonSchema(type=JsonType.string),
        JsonSchema(type=JsonType.number),
        JsonSchema(type=JsonType.array),
        JsonSchema(type=JsonType.object),
    ])


def _literal_json_type(values: tuple[Any, ...]) -> JsonType | None:
    if values and all(isinstance(v, bool) for v in values):
        return JsonType.boolean
    if values and all(isinstance(v, str) for v in values):
        return JsonType.string
    if values and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        return JsonType.number
    return None


class TypeSchemaReflector:
    """One reflection walk. Not reusable across threads."""

    def __init__(self, *, skip_interface_fields: bool = False) -> None:
        self.skip_interface_fields = skip_interface_fields
        self._in_progress: set[type] = set()

    def reflect(self, tp: Any) -> JsonSchema:
        kind = kind_of(tp)

        if kind == Kind.pointer:
            return self.reflect(pointer_elem(tp))
        if kind == Kind.struct:
            return self._reflect_struct(tp)
        if kind == Kind.interface:
            return interface_schema()

        title = type_string(tp)
        if kind in _SCALAR_JSON_TYPES:
            return JsonSchema(type=_SCALAR_JSON_TYPES[kind], title=title)
        if kind == Kind.dict:
            _, value_tp = dict_key_value(tp)
            return JsonSchema(
                type=JsonType.object,
                title=title,
                additional_properties=self.reflect(value_tp),
            )
        if kind == Kind.list:
            return JsonSchema(type=JsonType.array, title=title, items=self.reflect(list_elem(tp)))
        if kind == Kind.union:
            return JsonSchema(title=title, any_of=[self.reflect(m) for m in union_members(tp)])
        if kind == Kind.literal:
            values = literal_values(tp)
            return JsonSchema(type=_literal_json_type(values), title=title, enum=list(values))
        if kind == Kind.none:
            return JsonSchema(type=JsonType.null, title=title)

        # unsupported kinds keep only their name
        return JsonSchema(title=title)

    def _reflect_struct(self, tp: Any) -> JsonSchema:
        cls = struct_class(tp)
        if cls in self._in_progress:
            return self.reflect(_GENERIC_OBJECT)

        self._in_progress.add(cls)
        try:
            properties: dict[str, JsonSchema] = {}
            order: list[str] = []
            required: list[str] = []
            cache: dict[Any, JsonSchema] = {}

            for field in struct_fields(cls):
                if self.skip_interface_fields and kind_of(field.annotation) == Kind.interface:
                    continue

                schema = self._cached_field_schema(cache, field.annotation)
                if field.description:
                    schema = schema.model_copy(update={"description": field.description})

                properties[field.json_name] = schema
                order.append(field.json_name)
                if field.required:
                    required.append(field.json_name)
        finally:
            self._in_progress.discard(cls)

        return JsonSchema(
            type=JsonType.object,
            title=type_string(tp),
            description=(cls.__doc__ or "").strip() if _has_own_doc(cls) else "",
            properties=properties,
            property_order=order,
            required=required,
        )

    def _cached_field_schema(self, cache: dict[Any, JsonSchema], annotation: Any) -> JsonSchema:
        try:
            cached = cache.get(annotation)
        except TypeError:
            # unhashable annotation (e.g. Literal of a list); no caching
            return self.reflect(annotation)
        if cached is None:
            cached = self.reflect(annotation)
            cache[annotation] = cached
        return cached


def _has_own_doc(cls: type) -> bool:
    doc = cls.__dict__.get("__doc__")
    if not doc:
        return False
    # dataclasses synthesize "Name(field: type, ...)" docstrings
    return not doc.startswith(f"{cls.__name__}(")


def reflect(tp: Any, *, skip_interface_fields: bool = False) -> JsonSchema:
    """Reflect ``tp`` into a JsonSchema."""
    return TypeSchemaReflector(skip_interface_fields=skip_interface_fields).reflect(tp)
