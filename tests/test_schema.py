"""Tests for refson field schema resolution and the type registry."""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Annotated, Any, Mapping, Optional, Sequence, Union

import pytest

from refson import (
    SchemaError,
    UnknownTypeError,
    alias,
    ignore,
    lookup_type,
    register_type,
    resolve,
    serializable,
)
from refson.schema import (
    ANY_MAPPING,
    OPAQUE,
    ValueSpec,
    is_serializable,
    registered_types,
    value_spec,
)

from records import (
    Circle,
    Company,
    Department,
    NotSerializable,
    Ordered,
    Person,
    Shape,
    Slotted,
    Tagged,
    TreeNode,
    WithClassVar,
)


class TestResolve:
    """Test building and caching descriptors."""

    def test_resolve_is_cached(self):
        assert resolve(Person) is resolve(Person)

    def test_not_serializable(self):
        with pytest.raises(SchemaError):
            resolve(NotSerializable)

    def test_marker_is_not_inherited(self):
        class Unmarked(TreeNode):
            pass

        assert not is_serializable(Unmarked)
        with pytest.raises(SchemaError):
            resolve(Unmarked)

    def test_alias_and_declared_names(self):
        descriptor = resolve(Person)
        keys = {f.name: f.key for f in descriptor.fields}
        assert keys["name"] == "full_name"
        assert keys["age"] == "age"

        node_keys = [f.key for f in resolve(TreeNode).fields]
        assert node_keys == ["label", "child", "parent", "children"]

    def test_ignored_fields_are_separate(self):
        descriptor = resolve(Person)
        assert "password" not in [f.name for f in descriptor.fields]
        assert [f.name for f in descriptor.ignored] == ["password"]
        assert descriptor.ignored[0].inclusion == "never"
        assert not descriptor.ignored[0].included

    def test_required_flag(self):
        descriptor = resolve(Person)
        assert descriptor.field_named("name").required is True
        assert descriptor.field_named("age").required is False

    def test_order_then_declaration(self):
        assert [f.key for f in resolve(Ordered).fields] == ["z", "a", "b", "c"]

    def test_company_order(self):
        assert [f.key for f in resolve(Company).fields] == [
            "company_name",
            "address",
            "employees",
            "departments",
            "founded_year",
            "ceo",
        ]

    def test_class_var_skipped(self):
        assert [f.name for f in resolve(WithClassVar).fields] == ["value"]

    def test_include_nulls_flag(self):
        assert resolve(Company).include_nulls is True
        assert resolve(Department).include_nulls is False

    def test_comment_kept(self):
        assert resolve(Company).comment == "Company with staff and departments"

    def test_inherited_fields_come_first(self):
        assert [f.name for f in resolve(Circle).fields] == ["name", "radius"]

    def test_field_kinds(self):
        descriptor = resolve(Company)
        assert descriptor.field_named("name").kind == "primitive"
        assert descriptor.field_named("employees").kind == "array"
        assert descriptor.field_named("ceo").kind == "record"

    def test_defaults(self):
        descriptor = resolve(TreeNode)
        children = descriptor.field_named("children").default
        assert children() == []
        assert children() is not children()
        assert descriptor.field_named("label").default() == ""
        assert resolve(Person).field_named("age").default() == 0

    def test_slot_descriptors_are_not_defaults(self):
        descriptor = resolve(Slotted)
        assert descriptor.field_named("label").default() is None
        assert descriptor.field_named("weight").default() is None

    def test_class_level_defaults_are_copied(self):
        tags = resolve(Tagged).field_named("tags").default
        assert tags() == []
        assert tags() is not tags()
        assert tags() is not Tagged.tags

    def test_duplicate_document_key(self):
        @serializable
        class Clash:
            first: Annotated[int, alias("x")] = 0
            second: Annotated[int, alias("x")] = 0

        with pytest.raises(SchemaError, match="both use the document key"):
            resolve(Clash)

    def test_reserved_key(self):
        @serializable
        class Reserved:
            ident: Annotated[int, alias("$id")] = 0

        with pytest.raises(SchemaError, match="reserved"):
            resolve(Reserved)

    def test_ignore_beats_required(self):
        @serializable
        class Both:
            secret: Annotated[str, alias("s", required=True), ignore()] = ""

        descriptor = resolve(Both)
        assert descriptor.fields == ()
        assert descriptor.ignored[0].required is False

    def test_concurrent_first_resolution(self):
        @serializable
        @dataclass
        class Fresh:
            value: int = 0

        barrier = threading.Barrier(8)

        def work(_):
            barrier.wait()
            return resolve(Fresh)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(work, range(8)))

        assert all(r is results[0] for r in results)
        assert results[0] is resolve(Fresh)


class TestValueSpec:
    """Test mapping of annotations to value specs."""

    def test_primitives(self):
        for annotation in (int, float, bool, str):
            spec = value_spec(annotation)
            assert spec.kind == "primitive"
            assert spec.python_type is annotation

    def test_optional_unwraps(self):
        assert value_spec(Optional[int]) == value_spec(int)
        assert value_spec(Optional[Person]).python_type is Person
        assert value_spec(int | None) == value_spec(int)

    def test_int_or_float(self):
        assert value_spec(Union[int, float]).python_type is float

    def test_arrays(self):
        spec = value_spec(list[Person])
        assert spec.kind == "array"
        assert spec.container is list
        assert spec.element.python_type is Person

        assert value_spec(tuple[int, ...]).container is tuple
        assert value_spec(tuple[int, ...]).element.python_type is int
        assert value_spec(set[str]).container is set
        assert value_spec(Sequence[str]).container is list
        assert value_spec(list).element == OPAQUE

    def test_mappings(self):
        spec = value_spec(dict[str, Person])
        assert spec.kind == "mapping"
        assert spec.container is dict
        assert spec.element.python_type is Person

        assert value_spec(Mapping[str, int]).element == value_spec(int)
        assert value_spec(dict) == ANY_MAPPING
        assert value_spec(dict[str, Any]).element == OPAQUE

    def test_mapping_keys_must_be_strings(self):
        with pytest.raises(SchemaError, match="keys must be str"):
            value_spec(dict[int, str])

    def test_heterogeneous_tuple_is_opaque_inside(self):
        assert value_spec(tuple[int, str]).element == OPAQUE

    def test_opaque(self):
        assert value_spec(Any) == OPAQUE
        assert value_spec(object) == OPAQUE
        assert value_spec(Union[int, str]) == OPAQUE
        assert value_spec(NotSerializable) == OPAQUE

    def test_annotated_metadata_ignored_for_shape(self):
        assert value_spec(Annotated[int, alias("x")]) == ValueSpec(
            kind="primitive", python_type=int
        )

    def test_describe(self):
        assert value_spec(list[int]).describe() == "list[int]"
        assert value_spec(Shape).describe() == "records.Shape"
        assert OPAQUE.describe() == "any"
        assert value_spec(dict[str, int]).describe() == "dict[str, int]"


class TestRegistry:
    """Test the type-name registry."""

    def test_default_name(self):
        assert lookup_type("records.Person") is Person

    def test_custom_name(self):
        assert lookup_type("shapes.Circle") is Circle

    def test_snapshot(self):
        snapshot = registered_types()
        assert snapshot["shapes.Circle"] is Circle
        snapshot.clear()
        assert lookup_type("shapes.Circle") is Circle

    def test_unknown_name(self):
        with pytest.raises(UnknownTypeError) as info:
            lookup_type("no.such.Type")
        assert info.value.name == "no.such.Type"

    def test_extra_name(self):
        register_type("people.Person", Person)
        assert lookup_type("people.Person") is Person

    def test_conflicting_name(self):
        with pytest.raises(SchemaError):
            register_type("records.Person", Company)

    def test_decorator_with_taken_name(self):
        with pytest.raises(SchemaError):

            @serializable(name="shapes.Circle")
            class Impostor:
                pass
