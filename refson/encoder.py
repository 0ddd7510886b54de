"""
Encoder for the refson library.

Walks a value graph and produces a JSON-compatible tree of dicts, lists and
scalars, ready to be rendered as text:

- Primitives (None, bool, int, float, str) are emitted as they are.
- Arrays (list, tuple, set, frozenset) become lists; every element goes
  through the same tracker, so repeated records inside them compact to
  reference markers.
- Dicts with string keys become JSON objects. Keys starting with "$" are
  reserved for reference metadata and rejected.
- Records are expanded once, as ``{"$id": n, <fields in schema order>}``.
  Every later encounter emits ``{"$ref": n}``.
- A record whose class differs from the declared class of its slot (a
  subclass, or any record in an untyped slot) also carries ``"$type"``.

The input graph is never mutated. The walk runs on refson.walk.drive, so
graph depth is not bounded by the interpreter recursion limit.
"""

from __future__ import annotations

import math
from typing import Any, Union

from refson.errors import TypeMismatchError
from refson.nodes import ID_KEY, REF_KEY, TYPE_KEY
from refson.schema import OPAQUE, ValueSpec, lookup_type, resolve
from refson.tracking import AlreadySeen, ReferenceTracker
from refson.walk import Walk, drive

# JSON-compatible output tree
PlainJSON = Union[None, bool, int, float, str, list["PlainJSON"], dict[str, "PlainJSON"]]


class Encoder:
    """
    Encodes one value graph. Create a new Encoder for every pass.

    Attributes:
        tracker: The ReferenceTracker used for this pass. Its statistics
            describe the pass once encode() returns.
    """

    def __init__(self, tracker: ReferenceTracker | None = None):
        self.tracker = tracker if tracker is not None else ReferenceTracker()

    def encode(self, value: Any) -> PlainJSON:
        """
        Encode a value whose type the decoding side knows statically.

        The root record is emitted without "$type".
        """
        return drive(self._encode(value, None))

    def encode_by_type_name(self, type_name: str, value: Any) -> PlainJSON:
        """
        Encode a record under a registered type name.

        The root object carries "$type" so it can be decoded without
        naming its class.

        Raises:
            UnknownTypeError: If the type name is not registered.
            TypeMismatchError: If the value is not an instance of that type.
        """
        cls = lookup_type(type_name)
        if not isinstance(value, cls):
            raise TypeMismatchError(type_name, type(value).__qualname__)
        return drive(self._encode_record(value, declared=None))

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _encode(self, value: Any, spec: ValueSpec | None) -> Walk:
        if value is None or isinstance(value, (bool, int, str)):
            return value

        if isinstance(value, float):
            if not math.isfinite(value):
                raise TypeMismatchError("finite number", repr(value))
            return value

        if isinstance(value, (list, tuple, set, frozenset)):
            element = spec.element if spec is not None and spec.kind == "array" else None
            return (yield from self._encode_array(value, element or OPAQUE))

        if isinstance(value, dict):
            element = spec.element if spec is not None and spec.kind == "mapping" else None
            return (yield from self._encode_mapping(value, element or OPAQUE))

        # The root slot is declared as the value's own class
        if spec is None:
            declared = type(value)
        elif spec.kind == "record":
            declared = spec.python_type
        else:
            declared = None
        return (yield from self._encode_record(value, declared))

    def _encode_array(self, value, element: ValueSpec) -> Walk:
        items: list[PlainJSON] = []
        with self.tracker.visit_container(value):
            for item in value:
                items.append((yield self._encode(item, element)))
        return items

    def _encode_mapping(self, value: dict, element: ValueSpec) -> Walk:
        document: dict[str, PlainJSON] = {}
        with self.tracker.visit_container(value):
            for key, item in value.items():
                if not isinstance(key, str):
                    raise TypeMismatchError("string key", type(key).__name__)
                if key.startswith("$"):
                    raise TypeMismatchError("non-reserved key", repr(key))
                document[key] = yield self._encode(item, element)
        return document

    def _encode_record(self, value: Any, declared: type | None) -> Walk:
        # resolve() first so that unserializable values fail before tracking
        descriptor = resolve(type(value))

        visit = self.tracker.track(value)
        if isinstance(visit, AlreadySeen):
            return {REF_KEY: visit.id}

        document: dict[str, PlainJSON] = {}
        if declared is not type(value):
            document[TYPE_KEY] = descriptor.type_name
        document[ID_KEY] = visit.id

        with self.tracker.expanding(value):
            for field in descriptor.fields:
                item = getattr(value, field.name, None)
                if item is None and not descriptor.include_nulls:
                    continue
                document[field.key] = yield self._encode(item, field.spec)

        return document
