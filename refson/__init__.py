"""
refson - reference-preserving JSON serialization of typed record graphs.

This library converts graphs of configured Python records to JSON text and
back, preserving object identity:

- Shared references: an object reachable through several paths is written
  once (``{"$id": 3, ...}``) and referenced afterwards (``{"$ref": 3}``)
- Cycles: back edges become reference markers, and decoding restores them
- Per-field configuration: renaming, exclusion, required keys and ordering
- Polymorphism: records in untyped or base-class slots carry ``"$type"``

Basic Usage:
    >>> from typing import Annotated, Optional
    >>> from refson import serializable, alias, ignore, serialize, deserialize
    >>>
    >>> @serializable
    ... class Person:
    ...     name: Annotated[str, alias("full_name", required=True)]
    ...     password: Annotated[Optional[str], ignore()] = None
    ...     friend: Optional["Person"] = None
    >>>
    >>> alice, bob = Person(), Person()
    >>> alice.name, bob.name = "Alice", "Bob"
    >>> alice.friend, bob.friend = bob, alice
    >>>
    >>> text = serialize(alice)
    >>> text
    '{"$id":1,"full_name":"Alice","friend":{"$id":2,"full_name":"Bob","friend":{"$ref":1}}}'
    >>> restored = deserialize(text, Person)
    >>> restored.friend.friend is restored
    True

Decoding by type name:
    >>> text = serialize_by_type_name("app.Person", alice)
    >>> restored = deserialize(text)  # class read from the "$type" field

Strict mode (reject cycles instead of compacting them):
    >>> serialize(alice, strict=True)
    CircularReferenceError: Circular reference detected in object of type Person

Statistics of the most recent encode pass in the current thread:
    >>> last_statistics()
    TrackerStatistics(total_visited=3, unique_ids=2, shared_count=0, cyclic_count=1)
"""

from __future__ import annotations

import threading
from typing import Any

from refson.errors import (
    CircularReferenceError,
    DanglingReferenceError,
    DuplicateIdError,
    MissingRequiredFieldError,
    ParseError,
    RefsonError,
    SchemaError,
    TypeMismatchError,
    UnknownTypeError,
)
from refson.schema import (
    FieldDescriptor,
    RecordTypeDescriptor,
    alias,
    ignore,
    lookup_type,
    register_type,
    resolve,
    serializable,
)
from refson.serialize import Serializer, SerializerOptions
from refson.tracking import TrackerStatistics

_local = threading.local()


def _run(pretty: bool, strict: bool) -> Serializer:
    serializer = Serializer(SerializerOptions(pretty=pretty, strict=strict))
    _local.serializer = serializer
    return serializer


def serialize(value: Any, *, pretty: bool = False, strict: bool = False) -> str:
    """
    Serialize a value graph to JSON text.

    Args:
        value: A record, array or primitive. Records must be @serializable.
        pretty: Indent the output. Presentation only.
        strict: Raise CircularReferenceError on cycles instead of writing
            reference markers.

    Returns:
        The document text.

    Example:
        >>> serialize([1, "two", None])
        '[1,"two",null]'
    """
    return _run(pretty, strict).serialize(value)


def serialize_by_type_name(
    type_name: str, value: Any, *, pretty: bool = False, strict: bool = False
) -> str:
    """
    Serialize a record under a registered type name.

    The type name is embedded in the root object as "$type", so the
    document can be decoded with deserialize(text) alone.
    """
    return _run(pretty, strict).serialize_by_type_name(type_name, value)


def deserialize(text: str | bytes, cls: Any = None) -> Any:
    """
    Deserialize JSON text back to a value graph.

    Args:
        text: A document produced by serialize() (or written by hand).
        cls: Expected root type. If None, the root object's "$type" field
            selects the class.

    Returns:
        The reconstructed value. Objects that were shared or cyclic in the
        original graph are shared or cyclic again.

    Example:
        >>> restored = deserialize(serialize(company), Company)
        >>> restored.ceo is restored.employees[0]
        True
    """
    return Serializer().deserialize(text, cls)


def deserialize_by_type_name(text: str | bytes, type_name: str) -> Any:
    """Deserialize a document into the class registered under type_name."""
    return Serializer().deserialize_by_type_name(text, type_name)


def last_statistics() -> TrackerStatistics | None:
    """
    Tracker statistics of the most recent module-level encode call made in
    the current thread, or None if there was none.
    """
    serializer = getattr(_local, "serializer", None)
    return serializer.statistics if serializer is not None else None


__all__ = [
    # Core API
    "serialize",
    "serialize_by_type_name",
    "deserialize",
    "deserialize_by_type_name",
    "last_statistics",
    "Serializer",
    "SerializerOptions",
    "TrackerStatistics",
    # Record configuration
    "serializable",
    "alias",
    "ignore",
    "register_type",
    "lookup_type",
    "resolve",
    "FieldDescriptor",
    "RecordTypeDescriptor",
    # Errors
    "RefsonError",
    "SchemaError",
    "MissingRequiredFieldError",
    "UnknownTypeError",
    "ParseError",
    "TypeMismatchError",
    "DanglingReferenceError",
    "CircularReferenceError",
    "DuplicateIdError",
]
