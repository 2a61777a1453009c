"""Type reflection: schemas, the type registry and tagged JSON decoding."""

from einodev.reflect.registry import (
    BUILTIN_TYPES,
    RegisteredType,
    TypeRegistry,
    default_registry,
    register_type,
)
from einodev.reflect.type_schema import TypeSchemaReflector, reflect
from einodev.reflect.types import Kind, is_supported_input, kind_of, type_string
from einodev.reflect.unmarshal import (
    ENVELOPE_TYPE_KEY,
    ENVELOPE_VALUE_KEY,
    TaggedDecoder,
    envelope,
    unmarshal_json,
    unmarshal_value,
)

__all__ = [
    "BUILTIN_TYPES",
    "ENVELOPE_TYPE_KEY",
    "ENVELOPE_VALUE_KEY",
    "Kind",
    "RegisteredType",
    "TaggedDecoder",
    "TypeRegistry",
    "TypeSchemaReflector",
    "default_registry",
    "envelope",
    "is_supported_input",
    "kind_of",
    "reflect",
    "register_type",
    "type_string",
    "unmarshal_json",
    "unmarshal_value",
]
