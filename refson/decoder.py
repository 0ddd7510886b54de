"""
Graph Builder for the refson library.

Rebuilds a value graph from a parsed Value Node tree. Construction is
depth-first and pre-order:

1. For an object node, select the class (declared, or from "$type") and
   allocate a blank instance with ``cls.__new__``; every field starts at
   its zero/default value.
2. Register the instance under its "$id" BEFORE its fields are populated,
   so references back to it from inside its own subtree resolve.
3. Decode each schema field present in the node and assign it. A "$ref"
   resolves against the reference table, or, if its target has not been
   built yet, is queued as a back-patch.
4. Keys that are not in the schema are dropped.

Once the whole tree is built the back-patch queue is drained. A queued
reference whose id never appeared raises DanglingReferenceError. Immutable
containers (tuple, set, frozenset) holding back-patched elements are built
after the queue drains, as are sets built while any back-patch is queued.

Objects in a dict[str, X] slot, and objects without "$type" or "$id" in an
untyped slot, decode to dicts. The walk runs on refson.walk.drive, so
document depth is not bounded by the interpreter recursion limit.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable

from refson.errors import (
    DanglingReferenceError,
    MissingRequiredFieldError,
    TypeMismatchError,
)
from refson.nodes import (
    ID_KEY,
    REF_KEY,
    RESERVED_KEYS,
    TYPE_KEY,
    ArrayNode,
    BooleanNode,
    NumberNode,
    ObjectNode,
    StringNode,
    ValueNode,
)
from refson.schema import (
    ANY_ARRAY,
    ANY_MAPPING,
    OPAQUE,
    ValueSpec,
    lookup_type,
    resolve,
    value_spec,
)
from refson.tracking import UNRESOLVED, ReferenceTable
from refson.walk import Walk, drive

logger = logging.getLogger(__name__)


# =============================================================================
# Deferred Values
# =============================================================================


@dataclass
class _ForwardReference:
    """A "$ref" whose target was not registered when it was read."""

    ref_id: int
    spec: ValueSpec
    position: int


@dataclass
class _PendingCollection:
    """Elements of an immutable container still waiting for back-patches."""

    items: list
    container: type


@dataclass
class _BackPatch:
    ref_id: int
    spec: ValueSpec
    position: int
    apply: Callable[[Any], None]


_Deferred = (_ForwardReference, _PendingCollection)


def _set_field(instance: Any, name: str, value: Any) -> None:
    # object.__setattr__ also works for frozen dataclasses
    object.__setattr__(instance, name, value)


def _type_label(cls: type | None) -> str:
    return cls.__qualname__ if cls is not None else "object"


# =============================================================================
# Graph Builder
# =============================================================================


class GraphBuilder:
    """
    Builds one value graph from a Value Node tree. Create one per pass.

    Attributes:
        table: Reference table of the pass, filled as records are allocated.
    """

    def __init__(self):
        self.table = ReferenceTable()
        self._patches: list[_BackPatch] = []
        self._finalizers: list[Callable[[], None]] = []

    def build(self, node: ValueNode, target: Any = None) -> Any:
        """
        Build the value described by a node tree.

        Args:
            node: Root of the parsed document.
            target: The expected type: a record class, a primitive type, or
                an annotation such as ``list[Person]`` or
                ``dict[str, Person]``. If None, the root object's "$type"
                field selects the class.

        Returns:
            The reconstructed value.

        Raises:
            SchemaError: If the target class is not serializable.
            UnknownTypeError: If a "$type" name is not registered.
            MissingRequiredFieldError: If a required key is absent.
            TypeMismatchError: If a node does not match its declared kind.
            DanglingReferenceError: If a "$ref" target never appears.
            DuplicateIdError: If two objects declare the same "$id".
        """
        if target is None:
            spec = OPAQUE
            if isinstance(node, ObjectNode) and REF_KEY not in node and TYPE_KEY not in node:
                raise TypeMismatchError(
                    f"object with '{TYPE_KEY}'", "untyped object", node.position
                )
        else:
            spec = value_spec(target)
            if spec.kind == "opaque" and isinstance(target, type) and target is not object:
                # Raises SchemaError for classes missing @serializable
                resolve(target)

        result: list[Any] = [None]
        value = drive(self._decode(node, spec))
        self._assign(value, functools.partial(result.__setitem__, 0))
        self._drain()
        return result[0]

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _decode(self, node: ValueNode, spec: ValueSpec) -> Walk:
        if node.kind == "null":
            return None

        if isinstance(node, ObjectNode) and REF_KEY in node:
            return self._reference(node, spec)

        if spec.kind == "primitive":
            return self._primitive(node, spec)
        if spec.kind == "array":
            return (yield from self._array(node, spec))
        if spec.kind == "mapping":
            return (yield from self._mapping(node, spec))
        if spec.kind == "record":
            return (yield from self._record(node, spec.python_type))
        return (yield from self._opaque(node))

    def _assign(self, value: Any, setter: Callable[[Any], None]) -> None:
        if isinstance(value, _ForwardReference):
            self._patches.append(
                _BackPatch(value.ref_id, value.spec, value.position, setter)
            )
        elif isinstance(value, _PendingCollection):
            self._finalizers.append(
                lambda: setter(value.container(value.items))
            )
        else:
            setter(value)

    # -------------------------------------------------------------------------
    # Node Kinds
    # -------------------------------------------------------------------------

    def _primitive(self, node: ValueNode, spec: ValueSpec) -> Any:
        expected = spec.python_type

        if expected is bool and isinstance(node, BooleanNode):
            return node.value
        if expected is int and isinstance(node, NumberNode) and node.is_integer:
            return node.value
        if expected is float and isinstance(node, NumberNode):
            try:
                return float(node.value)
            except OverflowError:
                raise TypeMismatchError(
                    "float", "integer out of float range", node.position
                ) from None
        if expected is str and isinstance(node, StringNode):
            return node.value

        raise TypeMismatchError(expected.__name__, node.kind, node.position)

    def _opaque(self, node: ValueNode) -> Walk:
        if isinstance(node, (BooleanNode, NumberNode, StringNode)):
            return node.value
        if isinstance(node, ArrayNode):
            return (yield from self._array(node, ANY_ARRAY))
        if TYPE_KEY in node or ID_KEY in node:
            return (yield from self._record(node, None))
        return (yield from self._mapping(node, ANY_MAPPING))

    def _array(self, node: ValueNode, spec: ValueSpec) -> Walk:
        if not isinstance(node, ArrayNode):
            raise TypeMismatchError("array", node.kind, node.position)

        element = spec.element or OPAQUE
        items: list[Any] = []
        pending = False
        for index, child in enumerate(node.items):
            value = yield self._decode(child, element)
            items.append(None)
            if isinstance(value, _Deferred):
                pending = True
            self._assign(value, functools.partial(items.__setitem__, index))

        if spec.container is list:
            return items
        # Queued back-patches may still change the hash of a member
        hashed = spec.container in (set, frozenset) and bool(self._patches)
        if pending or hashed:
            return _PendingCollection(items, spec.container)
        return spec.container(items)

    def _mapping(self, node: ValueNode, spec: ValueSpec) -> Walk:
        if not isinstance(node, ObjectNode):
            raise TypeMismatchError("object", node.kind, node.position)

        element = spec.element or OPAQUE
        result: dict[str, Any] = {}
        for key, child in node.entries.items():
            if key.startswith("$"):
                raise TypeMismatchError("mapping key", repr(key), child.position)
            value = yield self._decode(child, element)
            result[key] = None
            self._assign(value, functools.partial(result.__setitem__, key))
        return result

    def _record(self, node: ValueNode, declared: type | None) -> Walk:
        if not isinstance(node, ObjectNode):
            raise TypeMismatchError(_type_label(declared), node.kind, node.position)

        cls = self._select_class(node, declared)
        descriptor = resolve(cls)

        instance = cls.__new__(cls)
        for field in descriptor.fields + descriptor.ignored:
            _set_field(instance, field.name, field.default())

        id_node = node.get(ID_KEY)
        if id_node is not None:
            self.table.register(self._id_value(id_node), instance)

        for field in descriptor.fields:
            child = node.get(field.key)
            if child is None:
                if field.required:
                    raise MissingRequiredFieldError(descriptor.type_name, field.key)
                continue
            value = yield self._decode(child, field.spec)
            self._assign(value, functools.partial(_set_field, instance, field.name))

        known = descriptor.known_keys
        dropped = [k for k in node.entries if k not in known and k not in RESERVED_KEYS]
        if dropped:
            logger.debug("Dropped unknown keys %s of %s", dropped, descriptor.type_name)

        return instance

    def _select_class(self, node: ObjectNode, declared: type | None) -> type:
        type_node = node.get(TYPE_KEY)
        if type_node is None:
            if declared is None:
                raise TypeMismatchError(
                    f"object with '{TYPE_KEY}'", "untyped object", node.position
                )
            return declared

        if not isinstance(type_node, StringNode):
            raise TypeMismatchError("type name", type_node.kind, type_node.position)

        cls = lookup_type(type_node.value)
        if declared is not None and not issubclass(cls, declared):
            raise TypeMismatchError(
                _type_label(declared), _type_label(cls), type_node.position
            )
        return cls

    # -------------------------------------------------------------------------
    # References
    # -------------------------------------------------------------------------

    def _id_value(self, node: ValueNode) -> int:
        if not isinstance(node, NumberNode) or not node.is_integer:
            raise TypeMismatchError("integer id", node.kind, node.position)
        return node.value

    def _reference(self, node: ObjectNode, spec: ValueSpec) -> Any:
        ref_id = self._id_value(node.get(REF_KEY))

        target = self.table.resolve(ref_id)
        if target is UNRESOLVED:
            return _ForwardReference(ref_id, spec, node.position)

        self._check_target(target, spec, node.position)
        return target

    def _check_target(self, target: Any, spec: ValueSpec, position: int) -> None:
        if spec.kind == "opaque":
            return
        if spec.kind == "record" and isinstance(target, spec.python_type):
            return
        raise TypeMismatchError(spec.describe(), _type_label(type(target)), position)

    def _drain(self) -> None:
        for patch in self._patches:
            target = self.table.resolve(patch.ref_id)
            if target is UNRESOLVED:
                raise DanglingReferenceError(patch.ref_id)
            self._check_target(target, patch.spec, patch.position)
            patch.apply(target)

        for finalize in self._finalizers:
            finalize()

        if self._patches:
            logger.debug("Applied %d back-patches", len(self._patches))
