"""Tests for reflecting annotations into JsonSchema."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

from einodev.models.graph_schema import JsonType
from einodev.reflect.type_schema import interface_schema, reflect


@dataclass
class Address:
    """where someone lives."""

    city: str
    zip_code: int = 0


@dataclass
class Person:
    name: str
    address: Optional[Address] = None
    tags: list[str] | None = None
    extra: Any = None


@dataclass
class TreeNode:
    value: int
    children: list[TreeNode] | None = None
    parent: Optional[TreeNode] = None


class TestScalarsAndContainers:
    """Test reflection of non-struct annotations."""

    def test_scalar_titles(self):
        schema = reflect(int)
        assert schema.type == JsonType.number
        assert schema.title == "int"

    def test_optional_unwraps_without_changing_title(self):
        assert reflect(Optional[str]).title == "str"

    def test_list_items(self):
        schema = reflect(list[bool])
        assert schema.type == JsonType.array
        assert schema.items.type == JsonType.boolean

    def test_dict_additional_properties(self):
        schema = reflect(dict[str, float])
        assert schema.type == JsonType.object
        assert schema.additional_properties.type == JsonType.number

    def test_literal_enum(self):
        schema = reflect(Literal["a", "b"])
        assert schema.type == JsonType.string
        assert schema.enum == ["a", "b"]

    def test_interface_is_any_of_json_kinds(self):
        schema = reflect(Any)
        assert [s.type for s in schema.any_of] == [
            JsonType.boolean,
            JsonType.string,
            JsonType.number,
            JsonType.array,
            JsonType.object,
        ]
        assert schema == interface_schema()


class TestStructs:
    """Test struct reflection."""

    def test_properties_order_and_required(self):
        """Fields keep declaration order; only fields without defaults are required."""
        schema = reflect(Person)

        assert schema.type == JsonType.object
        assert schema.property_order == ["name", "address", "tags", "extra"]
        assert schema.required == ["name"]
        assert schema.properties["address"].properties["city"].type == JsonType.string

    def test_own_docstring_becomes_description(self):
        assert reflect(Address).description == "where someone lives."
        assert reflect(Person).description == ""

    def test_skip_interface_fields(self):
        schema = reflect(Person, skip_interface_fields=True)
        assert "extra" not in schema.properties

    def test_self_reference_terminates(self):
        """The recursive branch becomes a generic object placeholder."""
        schema = reflect(TreeNode)

        children = schema.properties["children"]
        assert children.type == JsonType.array
        assert children.items.title == "dict[str, Any]"
        assert children.items.additional_properties == interface_schema()
        assert schema.properties["parent"].title == "dict[str, Any]"

    def test_struct_as_dict_value(self):
        schema = reflect(dict[str, Address])
        assert schema.additional_properties.properties["zip_code"].type == JsonType.number

    def test_to_dict_uses_aliases(self):
        data = reflect(Person).to_dict()
        assert data["propertyOrder"] == ["name", "address", "tags", "extra"]
        assert "anyOf" in data["properties"]["extra"]
