"""Introspection over Python type annotations.

Every other part of the engine talks about "types" as plain annotation
objects (``str``, ``list[int]``, ``Optional[Doc]``, a dataclass, a
pydantic model, ``Any`` ...). This module classifies them into a small
set of kinds and exposes the few facts the reflector, the deserializer
and the inference code need: element types, struct fields, canonical
names and zero values.
"""

from __future__ import annotations

import collections
import collections.abc
import dataclasses
import enum
import inspect
import types
import typing
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Literal, TypeVar, Union, get_args, get_origin

from pydantic import BaseModel


class Kind(str, enum.Enum):
    """coarse shape of a type annotation."""

    string = "string"
    bool = "bool"
    int = "int"
    float = "float"
    pointer = "pointer"
    list = "list"
    dict = "dict"
    struct = "struct"
    interface = "interface"
    union = "union"
    literal = "literal"
    none = "none"
    unsupported = "unsupported"


COMFORTABLE_KINDS = frozenset({Kind.string, Kind.bool, Kind.int, Kind.float})

NoneType = type(None)

_SCALARS: dict[type, Kind] = {
    bool: Kind.bool,
    str: Kind.string,
    int: Kind.int,
    float: Kind.float,
}

_LIST_ORIGINS = frozenset({
    list,
    set,
    frozenset,
    collections.deque,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.MutableSet,
    collections.abc.Collection,
    collections.abc.Iterable,
})

_DICT_ORIGINS = frozenset({
    dict,
    collections.OrderedDict,
    collections.defaultdict,
    collections.abc.Mapping,
    collections.abc.MutableMapping,
})

_WRAPPER_ORIGINS = tuple(
    w for w in (
        getattr(typing, "Required", None),
        getattr(typing, "NotRequired", None),
        getattr(typing, "ReadOnly", None),
    ) if w is not None
)


def strip(tp: Any) -> Any:
    """Remove annotation-only wrappers (Annotated, Required, NewType ...)."""
    while True:
        origin = get_origin(tp)
        if origin is typing.Annotated:
            tp = get_args(tp)[0]
        elif origin is not None and origin in _WRAPPER_ORIGINS:
            tp = get_args(tp)[0]
        elif hasattr(tp, "__supertype__"):
            tp = tp.__supertype__
        else:
            return tp


def _is_union(origin: Any) -> bool:
    return origin is Union or origin is types.UnionType


def is_struct_class(tp: Any) -> bool:
    if not isinstance(tp, type):
        return False
    if typing.is_typeddict(tp):
        return True
    if issubclass(tp, BaseModel):
        return True
    return dataclasses.is_dataclass(tp)


def _is_interface_class(tp: type) -> bool:
    if getattr(tp, "_is_protocol", False):
        return True
    return inspect.isabstract(tp)


def kind_of(tp: Any) -> Kind:
    """Classify an annotation."""
    tp = strip(tp)
    if tp is None or tp is NoneType:
        return Kind.none
    if tp is Any or tp is object or isinstance(tp, TypeVar):
        return Kind.interface

    origin = get_origin(tp)
    if origin is not None:
        if _is_union(origin):
            return Kind.pointer if NoneType in get_args(tp) else Kind.union
        if origin is Literal:
            return Kind.literal
        if origin in _LIST_ORIGINS:
            return Kind.list
        if origin is tuple:
            args = get_args(tp)
            if not args or (len(args) == 2 and args[1] is Ellipsis):
                return Kind.list
            return Kind.unsupported
        if origin in _DICT_ORIGINS:
            return Kind.dict
        if origin is type or origin is collections.abc.Callable:
            return Kind.unsupported
        # parametrized user generics, e.g. a generic dataclass Box[int]
        return kind_of(origin)

    if not isinstance(tp, type):
        return Kind.unsupported
    if tp in _SCALARS:
        return _SCALARS[tp]
    if issubclass(tp, enum.Enum):
        return Kind.literal
    if tp in (list, tuple, set, frozenset):
        return Kind.list
    if tp is dict:
        return Kind.dict
    if is_struct_class(tp):
        return Kind.struct
    if _is_interface_class(tp):
        return Kind.interface
    return Kind.unsupported


def is_comfortable(tp: Any) -> bool:
    return kind_of(tp) in COMFORTABLE_KINDS


def pointer_elem(tp: Any) -> Any:
    """The non-None part of an Optional annotation."""
    args = [a for a in get_args(strip(tp)) if a is not NoneType]
    if len(args) == 1:
        return args[0]
    return Union[tuple(args)]


def union_members(tp: Any) -> tuple[Any, ...]:
    return get_args(strip(tp))


def union_discriminator(tp: Any) -> Any:
    """The pydantic discriminator declared on a union annotation, if any.

    ``langchain_core.messages.AnyMessage`` is such a union: its members are
    told apart by their ``type`` field.
    """
    while get_origin(tp) is typing.Annotated:
        for meta in getattr(tp, "__metadata__", ()):
            discriminator = getattr(meta, "discriminator", None)
            if discriminator is not None:
                return discriminator
        tp = get_args(tp)[0]
    return None


def literal_values(tp: Any) -> tuple[Any, ...]:
    tp = strip(tp)
    if isinstance(tp, type) and issubclass(tp, enum.Enum):
        return tuple(member.value for member in tp)
    return get_args(tp)


def list_elem(tp: Any) -> Any:
    args = get_args(strip(tp))
    return args[0] if args else Any


def dict_key_value(tp: Any) -> tuple[Any, Any]:
    args = get_args(strip(tp))
    if len(args) == 2:
        return args[0], args[1]
    return Any, Any


def struct_class(tp: Any) -> type:
    """The class behind a struct annotation (drops generic parameters)."""
    tp = strip(tp)
    origin = get_origin(tp)
    return origin if origin is not None else tp


# ---------------------------------------------------------------------------
# struct fields
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StructField:
    """one exported, serializable field of a struct type."""

    name: str
    json_name: str
    annotation: Any
    required: bool
    # keyword used when constructing the owner (pydantic may want the alias)
    init_key: str
    description: str = ""


def _binding_required(metadata: typing.Mapping[str, Any]) -> bool:
    binding = metadata.get("binding", "")
    return "required" in [part.strip() for part in str(binding).split(",")]


def _resolved_hints(cls: type) -> dict[str, Any]:
    try:
        return typing.get_type_hints(cls, include_extras=True)
    except NameError:
        # unresolvable forward references degrade to Any
        raw = getattr(cls, "__annotations__", {})
        return {name: Any if isinstance(ann, str) else ann for name, ann in raw.items()}


def _dataclass_fields(cls: type) -> list[StructField]:
    hints = _resolved_hints(cls)
    out = []
    for f in dataclasses.fields(cls):
        if f.name.startswith("_") or not f.init:
            continue
        json_name = f.metadata.get("json", f.name)
        if json_name == "-":
            continue
        no_default = f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
        out.append(StructField(
            name=f.name,
            json_name=json_name,
            annotation=hints.get(f.name, Any),
            required=no_default or _binding_required(f.metadata),
            init_key=f.name,
        ))
    return out


def _pydantic_fields(cls: type[BaseModel]) -> list[StructField]:
    out = []
    for name, info in cls.model_fields.items():
        if name.startswith("_") or info.exclude:
            continue
        json_name = info.serialization_alias or info.alias or name
        validation_alias = info.validation_alias if isinstance(info.validation_alias, str) else None
        out.append(StructField(
            name=name,
            json_name=json_name,
            annotation=info.annotation if info.annotation is not None else Any,
            required=info.is_required(),
            init_key=validation_alias or info.alias or name,
            description=info.description or "",
        ))
    return out


def _typeddict_fields(cls: type) -> list[StructField]:
    hints = _resolved_hints(cls)
    required_keys = getattr(cls, "__required_keys__", frozenset(hints))
    return [
        StructField(
            name=name,
            json_name=name,
            annotation=annotation,
            required=name in required_keys,
            init_key=name,
        )
        for name, annotation in hints.items()
        if not name.startswith("_")
    ]


@lru_cache(maxsize=1024)
def _struct_fields_cached(cls: type) -> tuple[StructField, ...]:
    if typing.is_typeddict(cls):
        return tuple(_typeddict_fields(cls))
    if issubclass(cls, BaseModel):
        return tuple(_pydantic_fields(cls))
    return tuple(_dataclass_fields(cls))


def struct_fields(tp: Any) -> tuple[StructField, ...]:
    """Exported fields of a dataclass, pydantic model or TypedDict."""
    return _struct_fields_cached(struct_class(tp))


def build_struct(tp: Any, values: dict[str, Any]) -> Any:
    """Instantiate a struct type from ``init_key -> value`` pairs."""
    cls = struct_class(tp)
    if typing.is_typeddict(cls):
        return dict(values)
    if issubclass(cls, BaseModel):
        return cls.model_validate(values)
    return cls(**values)


# ---------------------------------------------------------------------------
# naming
# ---------------------------------------------------------------------------


def _class_name(cls: type) -> str:
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


def type_string(tp: Any) -> str:
    """Canonical identifier of an annotation.

    This is the value carried in the ``_eino_go_type`` envelope tag, so it
    must be stable for a given annotation: builtins by bare name, classes
    by ``module.QualName``, generics with their parameters.
    """
    tp = strip(tp)
    if tp is None or tp is NoneType:
        return "None"
    if tp is Any:
        return "Any"
    if tp is Ellipsis:
        return "..."
    if isinstance(tp, TypeVar):
        return tp.__name__

    origin = get_origin(tp)
    if origin is not None:
        args = get_args(tp)
        if _is_union(origin):
            rest = [a for a in args if a is not NoneType]
            if len(rest) < len(args):
                inner = type_string(rest[0]) if len(rest) == 1 else \
                    f"Union[{', '.join(type_string(a) for a in rest)}]"
                return f"Optional[{inner}]"
            return f"Union[{', '.join(type_string(a) for a in args)}]"
        if origin is Literal:
            return f"Literal[{', '.join(repr(a) for a in args)}]"
        base = _class_name(origin) if isinstance(origin, type) else str(origin)
        if origin.__module__ in ("collections.abc", "collections"):
            base = origin.__qualname__
        if not args:
            return base
        return f"{base}[{', '.join(type_string(a) for a in args)}]"

    if isinstance(tp, type):
        return _class_name(tp)
    return repr(tp)


# ---------------------------------------------------------------------------
# zero values
# ---------------------------------------------------------------------------


def zero_value(tp: Any, _seen: frozenset = frozenset()) -> Any:
    """The value a field holds when its JSON fragment is absent."""
    kind = kind_of(tp)
    if kind == Kind.string:
        return ""
    if kind == Kind.bool:
        return False
    if kind == Kind.int:
        return 0
    if kind == Kind.float:
        return 0.0
    if kind == Kind.list:
        origin = get_origin(strip(tp)) or strip(tp)
        if origin in (tuple, set, frozenset):
            return origin()
        return []
    if kind == Kind.dict:
        return {}
    if kind == Kind.literal:
        cls = strip(tp)
        values = literal_values(tp)
        if isinstance(cls, type) and issubclass(cls, enum.Enum):
            return next(iter(cls))
        return values[0] if values else None
    if kind == Kind.union:
        return zero_value(union_members(tp)[0], _seen)
    if kind == Kind.struct:
        cls = struct_class(tp)
        if cls in _seen:
            return None
        seen = _seen | {cls}
        values = {
            f.init_key: zero_value(f.annotation, seen)
            for f in struct_fields(cls)
            if f.required
        }
        return build_struct(cls, values)
    return None


# ---------------------------------------------------------------------------
# support validation
# ---------------------------------------------------------------------------


def is_supported_input(tp: Any, _visiting: frozenset = frozenset()) -> bool:
    """Whether user supplied JSON can be turned into a value of ``tp``.

    Optional is unwrapped. Scalars pass. Lists need a supported element,
    dicts a supported key and value. A struct passes when ANY one of its
    exported fields is supported, so structs carrying some opaque fields
    stay debuggable. Interfaces never pass on their own.
    """
    kind = kind_of(tp)
    if kind == Kind.pointer:
        return is_supported_input(pointer_elem(tp), _visiting)
    if kind in COMFORTABLE_KINDS:
        return True
    if kind == Kind.dict:
        key_tp, value_tp = dict_key_value(tp)
        return is_supported_input(key_tp, _visiting) and is_supported_input(value_tp, _visiting)
    if kind == Kind.list:
        return is_supported_input(list_elem(tp), _visiting)
    if kind == Kind.union:
        return any(is_supported_input(m, _visiting) for m in union_members(tp))
    if kind == Kind.literal:
        return all(isinstance(v, (str, int, float, bool)) for v in literal_values(tp))
    if kind == Kind.struct:
        cls = struct_class(tp)
        if cls in _visiting:
            return False
        visiting = _visiting | {cls}
        return any(is_supported_input(f.annotation, visiting) for f in struct_fields(cls))
    return False
