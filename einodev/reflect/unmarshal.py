"""Decode untyped JSON into values of a given type annotation.

The walk mirrors the annotation, not the JSON: scalars must match their
JSON kind, lists and dicts recurse into their element types, structs read
their fields by JSON name, and interface-typed positions require the
tagged envelope::

    {"_eino_go_type": "<registered identifier>", "_value": <payload>}

Every error carries the offending JSON fragment.
"""

from __future__ import annotations

import collections
import enum
import json
from typing import Any, get_origin

import pydantic
from langchain_core.messages import AnyMessage, BaseMessage

from einodev.errors import UnmarshalError
from einodev.reflect.registry import TypeRegistry, default_registry
from einodev.reflect.types import (
    Kind,
    build_struct,
    dict_key_value,
    kind_of,
    list_elem,
    literal_values,
    pointer_elem,
    strip,
    struct_class,
    struct_fields,
    type_string,
    union_discriminator,
    union_members,
    zero_value,
)

ENVELOPE_TYPE_KEY = "_eino_go_type"
ENVELOPE_VALUE_KEY = "_value"

_KEY_TRUE = "true"
_KEY_FALSE = "false"


def _fragment(data: Any) -> str:
    try:
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return repr(data)


def envelope(identifier: str, value: Any) -> dict[str, Any]:
    """Build the tagged JSON form of an interface-typed value."""
    return {ENVELOPE_TYPE_KEY: identifier, ENVELOPE_VALUE_KEY: value}


class TaggedDecoder:
    """Decodes parsed JSON against annotations, resolving envelopes via a registry."""

    def __init__(self, registry: TypeRegistry | None = None) -> None:
        self.registry = registry if registry is not None else default_registry()
        # id(annotation) -> (annotation, adapter) for discriminated unions
        self._adapters: dict[int, tuple[Any, pydantic.TypeAdapter]] = {}

    def decode(self, data: Any, tp: Any) -> Any:
        kind = kind_of(tp)

        if kind in (Kind.string, Kind.bool, Kind.int, Kind.float):
            return self._decode_scalar(data, tp, kind)
        if kind == Kind.pointer:
            if data is None:
                return None
            return self.decode(data, pointer_elem(tp))
        if kind == Kind.list:
            return self._decode_list(data, tp)
        if kind == Kind.dict:
            return self._decode_dict(data, tp)
        if kind == Kind.struct:
            return self._decode_struct(data, tp)
        if kind == Kind.interface:
            return self._decode_interface(data)
        if kind == Kind.union:
            return self._decode_union(data, tp)
        if kind == Kind.literal:
            return self._decode_literal(data, tp)
        if kind == Kind.none:
            if data is not None:
                raise UnmarshalError(f"expected null, str={_fragment(data)}")
            return None

        raise UnmarshalError(f"unsupported type={type_string(tp)}, str={_fragment(data)}")

    def _decode_scalar(self, data: Any, tp: Any, kind: Kind) -> Any:
        if data is None:
            # json null leaves a scalar at its zero value
            return zero_value(tp)
        if kind == Kind.string and isinstance(data, str):
            return data
        if kind == Kind.bool and isinstance(data, bool):
            return data
        if kind == Kind.int and isinstance(data, int) and not isinstance(data, bool):
            return data
        if kind == Kind.float and isinstance(data, (int, float)) and not isinstance(data, bool):
            return float(data)
        raise UnmarshalError(
            f"unmarshal failed, cannot decode into {type_string(tp)}, str={_fragment(data)}"
        )

    def _decode_list(self, data: Any, tp: Any) -> Any:
        if data is None:
            return zero_value(tp)
        if not isinstance(data, list):
            raise UnmarshalError(
                f"unmarshal failed, expected array for {type_string(tp)}, str={_fragment(data)}"
            )
        elem_tp = list_elem(tp)
        items = [self.decode(item, elem_tp) for item in data]

        origin = get_origin(strip(tp)) or strip(tp)
        if origin in (tuple, set, frozenset, collections.deque):
            return origin(items)
        return items

    def _decode_dict(self, data: Any, tp: Any) -> dict[Any, Any]:
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise UnmarshalError(
                f"unmarshal failed, expected object for {type_string(tp)}, str={_fragment(data)}"
            )
        key_tp, value_tp = dict_key_value(tp)
        out: dict[Any, Any] = {}
        for raw_key, raw_value in data.items():
            if raw_key == "":
                continue
            out[self._decode_key(raw_key, key_tp)] = self.decode(raw_value, value_tp)

        if (get_origin(strip(tp)) or strip(tp)) is collections.OrderedDict:
            return collections.OrderedDict(out)
        return out

    def _decode_key(self, raw_key: str, key_tp: Any) -> Any:
        kind = kind_of(key_tp)
        if kind == Kind.pointer:
            return self._decode_key(raw_key, pointer_elem(key_tp))
        if kind in (Kind.string, Kind.interface):
            return raw_key
        try:
            if kind == Kind.int:
                return int(raw_key)
            if kind == Kind.float:
                return float(raw_key)
        except ValueError as e:
            raise UnmarshalError(
                f"map key {raw_key!r} is not a valid {type_string(key_tp)}"
            ) from e
        if kind == Kind.bool and raw_key in (_KEY_TRUE, _KEY_FALSE):
            return raw_key == _KEY_TRUE
        if kind == Kind.literal:
            for value in literal_values(key_tp):
                if str(value) == raw_key:
                    return self._literal_result(key_tp, value)
        raise UnmarshalError(f"map key {raw_key!r} cannot be decoded as {type_string(key_tp)}")

    def _decode_struct(self, data: Any, tp: Any) -> Any:
        if struct_class(tp) is BaseMessage:
            # the concrete message class comes from the "type" field
            return self._decode_discriminated(data, AnyMessage)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise UnmarshalError(
                f"unmarshal failed, expected object for {type_string(tp)}, str={_fragment(data)}"
            )

        values: dict[str, Any] = {}
        for field in struct_fields(tp):
            if field.json_name not in data:
                if field.required:
                    values[field.init_key] = zero_value(field.annotation)
                continue
            values[field.init_key] = self.decode(data[field.json_name], field.annotation)

        try:
            return build_struct(tp, values)
        except (pydantic.ValidationError, TypeError, ValueError) as e:
            raise UnmarshalError(
                f"cannot build {type_string(tp)}: {e}, str={_fragment(data)}"
            ) from e

    def _decode_interface(self, data: Any) -> Any:
        if data is None:
            return None
        if not isinstance(data, dict):
            raise UnmarshalError(
                f"unmarshal failed, interface value must be a tagged object, str={_fragment(data)}"
            )
        if ENVELOPE_TYPE_KEY not in data:
            raise UnmarshalError(
                f"key '{ENVELOPE_TYPE_KEY}' for interface not found, str={_fragment(data)}"
            )

        tag = data[ENVELOPE_TYPE_KEY]
        if not isinstance(tag, str):
            raise UnmarshalError(
                f"unmarshal failed, '{ENVELOPE_TYPE_KEY}' must be a string, str={_fragment(data)}"
            )

        entry = self.registry.lookup(tag)
        if entry is None:
            raise UnmarshalError(f"unregistered type `{tag}` for interface, str={_fragment(data)}")

        registered_name = type_string(entry.type)
        if registered_name != tag:
            raise UnmarshalError(
                f"the registered type={registered_name} is inconsistent with the "
                f"{ENVELOPE_TYPE_KEY}={tag}, str={_fragment(data)}"
            )

        if ENVELOPE_VALUE_KEY not in data:
            raise UnmarshalError(
                f"key '{ENVELOPE_VALUE_KEY}' for interface not found, str={_fragment(data)}"
            )
        return self.decode(data[ENVELOPE_VALUE_KEY], entry.type)

    def _adapter(self, tp: Any) -> pydantic.TypeAdapter:
        cached = self._adapters.get(id(tp))
        if cached is None or cached[0] is not tp:
            cached = (tp, pydantic.TypeAdapter(tp))
            self._adapters[id(tp)] = cached
        return cached[1]

    def _decode_discriminated(self, data: Any, tp: Any) -> Any:
        try:
            return self._adapter(tp).validate_python(data)
        except pydantic.ValidationError as e:
            (first, *_) = e.errors(include_url=False)
            location = ".".join(str(part) for part in first["loc"])
            raise UnmarshalError(
                f"no member of {type_string(tp)} accepts the value ({location}: {first['msg']}), "
                f"str={_fragment(data)}"
            ) from e

    def _decode_union(self, data: Any, tp: Any) -> Any:
        if union_discriminator(tp) is not None:
            return self._decode_discriminated(data, tp)
        failures = []
        for member in union_members(tp):
            try:
                return self.decode(data, member)
            except UnmarshalError as e:
                failures.append(f"{type_string(member)}: {e}")
        raise UnmarshalError(
            f"no member of {type_string(tp)} accepts the value ({'; '.join(failures)}), "
            f"str={_fragment(data)}"
        )

    def _decode_literal(self, data: Any, tp: Any) -> Any:
        for value in literal_values(tp):
            if type(value) is type(data) and value == data:
                return self._literal_result(tp, value)
        raise UnmarshalError(
            f"value is not one of {type_string(tp)}, str={_fragment(data)}"
        )

    @staticmethod
    def _literal_result(tp: Any, value: Any) -> Any:
        cls = strip(tp)
        if isinstance(cls, type) and issubclass(cls, enum.Enum):
            return cls(value)
        return value


def unmarshal_value(data: Any, tp: Any, *, registry: TypeRegistry | None = None) -> Any:
    """Decode already-parsed JSON ``data`` into a value of ``tp``."""
    return TaggedDecoder(registry).decode(data, tp)


def unmarshal_json(raw: str | bytes, tp: Any, *, registry: TypeRegistry | None = None) -> Any:
    """Parse ``raw`` and decode it into a value of ``tp``."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        raise UnmarshalError(f"unmarshal failed, err={e}, str={text}") from e
    return unmarshal_value(data, tp, registry=registry)
