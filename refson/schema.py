"""
Record configuration and field schema resolution for the refson library.

A record type opts into serialization with the @serializable decorator. Its
fields are the class annotations (base classes first, then declaration
order), configured per field through ``typing.Annotated`` metadata:

    >>> from typing import Annotated, Optional
    >>> from refson import serializable, alias, ignore
    >>>
    >>> @serializable(include_nulls=False)
    ... class Person:
    ...     name: Annotated[str, alias("full_name", required=True, order=1)]
    ...     age: int = 0
    ...     password: Annotated[Optional[str], ignore(reason="secret")] = None

resolve() turns a decorated class into an immutable RecordTypeDescriptor.
Descriptors are built lazily on first use and cached for the lifetime of the
process, so forward references to records declared later in a module work.

The module also holds the type registry that maps type names to record
classes. It backs the "$type" field used when a document is decoded without
a statically known target type.
"""

from __future__ import annotations

import collections.abc
import copy
import dataclasses
import logging
import threading
import types
import typing
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, ClassVar, Literal, Union

from refson.errors import SchemaError, UnknownTypeError

logger = logging.getLogger(__name__)


# =============================================================================
# Type Aliases
# =============================================================================

PRIMITIVE_TYPES: tuple[type, ...] = (bool, int, float, str, type(None))

# Containers that map to a JSON array
ARRAY_CONTAINERS: tuple[type, ...] = (list, tuple, set, frozenset)

FieldKind = Literal["primitive", "record", "array", "mapping", "opaque"]

Inclusion = Literal["always", "never"]

# Class attribute holding a record's RecordConfig
CONFIG_ATTRIBUTE = "__refson_config__"


# =============================================================================
# Configuration Records
# =============================================================================


@dataclass(frozen=True)
class RecordConfig:
    """
    Type-level configuration attached to a class by @serializable.

    Attributes:
        include_nulls: Whether fields holding None are written to documents.
        name: The name the type is registered under.
        comment: Free-form description of the record, for documentation.
    """

    include_nulls: bool = True
    name: str = ""
    comment: str = ""


@dataclass(frozen=True)
class Alias:
    """Field metadata renaming a field in documents. Created by alias()."""

    name: str
    required: bool = False
    order: int = 0


@dataclass(frozen=True)
class Ignore:
    """Field metadata excluding a field from documents. Created by ignore()."""

    reason: str = "Excluded from serialization"


def alias(name: str, required: bool = False, order: int = 0) -> Alias:
    """
    Configure the document key, required-ness and emission order of a field.

    Args:
        name: Key used for the field in documents.
        required: If True, decoding fails when the key is absent.
        order: Sort key for encode output; lower keys come first. Fields
            with equal keys keep their declaration order.
    """
    return Alias(name=name, required=required, order=order)


def ignore(reason: str = "Excluded from serialization") -> Ignore:
    """Exclude a field from both encoding and decoding."""
    return Ignore(reason=reason)


def serializable(
    cls: type | None = None,
    *,
    include_nulls: bool = True,
    name: str | None = None,
    comment: str = "",
):
    """
    Mark a class as a serializable record and register its type name.

    Usable bare (``@serializable``) or with arguments
    (``@serializable(include_nulls=False)``). The marker is not inherited:
    subclasses that should be serialized need their own decorator.

    Args:
        cls: The class being decorated (when used without arguments).
        include_nulls: Whether None-valued fields are emitted.
        name: Registered type name. Defaults to "<module>.<qualname>".
        comment: Optional description kept on the record's configuration.

    Raises:
        SchemaError: If the name is already registered to another class.
    """

    def wrap(cls: type) -> type:
        config = RecordConfig(
            include_nulls=include_nulls,
            name=name or _default_type_name(cls),
            comment=comment,
        )
        setattr(cls, CONFIG_ATTRIBUTE, config)
        register_type(config.name, cls)
        return cls

    if cls is None:
        return wrap
    return wrap(cls)


def is_serializable(cls: Any) -> bool:
    return isinstance(cls, type) and CONFIG_ATTRIBUTE in cls.__dict__


def record_config(cls: type) -> RecordConfig:
    if not is_serializable(cls):
        raise SchemaError(
            f"Type {_qualified_name(cls)} is not marked @serializable",
            type_name=_qualified_name(cls),
        )
    return cls.__dict__[CONFIG_ATTRIBUTE]


def _default_type_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def _qualified_name(cls: Any) -> str:
    if isinstance(cls, type):
        return _default_type_name(cls)
    return repr(cls)


# =============================================================================
# Type Registry
# =============================================================================

# Registry mapping type names to record classes.
# Used for deserialization by type name and for embedded "$type" fields.
_TYPE_REGISTRY: dict[str, type] = {}
_REGISTRY_LOCK = threading.Lock()


def register_type(name: str, cls: type) -> None:
    """
    Register a record class under a type name.

    A class may be registered under several names. Registering a name that
    already belongs to a different class fails, unless the new class is a
    redefinition of the old one (same module and qualified name, as happens
    on module reload).

    Raises:
        SchemaError: If the name is taken by an unrelated class.
    """
    with _REGISTRY_LOCK:
        existing = _TYPE_REGISTRY.get(name)
        if existing is not None and existing is not cls:
            if _default_type_name(existing) != _default_type_name(cls):
                raise SchemaError(
                    f"Type name '{name}' is already registered to "
                    f"{_default_type_name(existing)}",
                    type_name=name,
                )
            logger.debug("Replacing redefined type %s", name)
        _TYPE_REGISTRY[name] = cls


def lookup_type(name: str) -> type:
    """
    Return the record class registered under a name.

    Raises:
        UnknownTypeError: If nothing is registered under the name.
    """
    try:
        return _TYPE_REGISTRY[name]
    except KeyError:
        raise UnknownTypeError(name) from None


def registered_types() -> dict[str, type]:
    """Snapshot of the type registry."""
    return dict(_TYPE_REGISTRY)


# =============================================================================
# Value Specs
# =============================================================================


@dataclass(frozen=True)
class ValueSpec:
    """
    The declared shape of a value, derived from a type annotation.

    Attributes:
        kind: One of "primitive", "record", "array", "mapping" or "opaque".
        python_type: The primitive type or record class. None otherwise.
        element: Spec of the elements of an array or the values of a mapping.
        container: Python container built for arrays and mappings on decode.
    """

    kind: FieldKind
    python_type: type | None = None
    element: ValueSpec | None = None
    container: type = list

    def describe(self) -> str:
        if self.kind == "array":
            inner = self.element.describe() if self.element else "any"
            return f"{self.container.__name__}[{inner}]"
        if self.kind == "mapping":
            inner = self.element.describe() if self.element else "any"
            return f"dict[str, {inner}]"
        if self.python_type is not None:
            if self.kind == "record":
                return record_config(self.python_type).name
            return self.python_type.__name__
        return "any"


OPAQUE = ValueSpec(kind="opaque")

ANY_ARRAY = ValueSpec(kind="array", element=OPAQUE)

ANY_MAPPING = ValueSpec(kind="mapping", element=OPAQUE, container=dict)

_SEQUENCE_ORIGINS = (
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Iterable,
    collections.abc.Collection,
)

_SET_ORIGINS = (collections.abc.Set, collections.abc.MutableSet)

_MAPPING_ORIGINS = (dict, collections.abc.Mapping, collections.abc.MutableMapping)


def value_spec(annotation: Any) -> ValueSpec:
    """
    Map a type annotation to the ValueSpec the encoder and decoder follow.

    Optional[X] maps to the spec of X (null is always accepted). dict[str, X]
    and Mapping[str, X] map to a mapping whose values follow the spec of X.
    Unions of several non-null types, Any, object and unrecognized
    annotations map to the opaque spec, whose shape is decided at run time.

    Raises:
        SchemaError: If a mapping annotation declares keys other than str.
    """
    origin = typing.get_origin(annotation)

    if origin is Annotated:
        return value_spec(typing.get_args(annotation)[0])

    if annotation is None or annotation is type(None):
        return ValueSpec(kind="primitive", python_type=type(None))

    if origin is Union or origin is types.UnionType:
        options = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(options) == 1:
            return value_spec(options[0])
        if set(options) == {int, float}:
            return ValueSpec(kind="primitive", python_type=float)
        return OPAQUE

    if annotation in PRIMITIVE_TYPES:
        return ValueSpec(kind="primitive", python_type=annotation)

    if annotation is dict:
        return ANY_MAPPING

    if origin in _MAPPING_ORIGINS:
        args = typing.get_args(annotation)
        if not args:
            return ANY_MAPPING
        if args[0] is not str and args[0] is not Any:
            raise SchemaError(f"Mapping keys must be str, not {args[0]!r}")
        return ValueSpec(kind="mapping", element=value_spec(args[1]), container=dict)

    if annotation in ARRAY_CONTAINERS:
        return ValueSpec(kind="array", element=OPAQUE, container=annotation)

    if origin in ARRAY_CONTAINERS or origin in _SEQUENCE_ORIGINS or origin in _SET_ORIGINS:
        args = typing.get_args(annotation)
        if origin in ARRAY_CONTAINERS:
            container = origin
        elif origin in _SET_ORIGINS:
            container = set
        else:
            container = list

        if origin is tuple:
            # Only homogeneous tuples carry a usable element type
            if len(args) == 2 and args[1] is Ellipsis:
                element = value_spec(args[0])
            elif args and all(a == args[0] for a in args):
                element = value_spec(args[0])
            else:
                element = OPAQUE
        else:
            element = value_spec(args[0]) if args else OPAQUE
        return ValueSpec(kind="array", element=element, container=container)

    if is_serializable(annotation):
        return ValueSpec(kind="record", python_type=annotation)

    return OPAQUE


# =============================================================================
# Descriptors
# =============================================================================


def _none() -> None:
    return None


@dataclass(frozen=True)
class FieldDescriptor:
    """
    Resolved description of one record field.

    Attributes:
        name: Attribute name on the record.
        key: Key used in documents (alias or attribute name).
        spec: Declared value shape.
        inclusion: "always" for serialized fields, "never" for ignored ones.
        required: Whether the key must be present on decode.
        order: Primary sort key for encode output.
        index: Declaration index, the secondary sort key.
        default: Factory for the zero/default value of the field.
    """

    name: str
    key: str
    spec: ValueSpec
    inclusion: Inclusion = "always"
    required: bool = False
    order: int = 0
    index: int = 0
    default: Callable[[], Any] = field(default=_none, compare=False, repr=False)

    @property
    def kind(self) -> FieldKind:
        return self.spec.kind

    @property
    def included(self) -> bool:
        return self.inclusion == "always"


@dataclass(frozen=True)
class RecordTypeDescriptor:
    """
    Resolved, immutable schema of a record type.

    Attributes:
        cls: The record class.
        type_name: Name the class is registered under.
        fields: Serialized fields, sorted by (order, declaration index).
        ignored: Fields excluded from documents, in declaration order.
        include_nulls: Whether None-valued fields are emitted.
        comment: The record's documentation comment.
    """

    cls: type
    type_name: str
    fields: tuple[FieldDescriptor, ...]
    ignored: tuple[FieldDescriptor, ...] = ()
    include_nulls: bool = True
    comment: str = ""

    @property
    def known_keys(self) -> frozenset[str]:
        return frozenset(f.key for f in self.fields + self.ignored)

    def field_named(self, name: str) -> FieldDescriptor:
        for descriptor in self.fields + self.ignored:
            if descriptor.name == name:
                return descriptor
        raise KeyError(name)


def _default_factory(cls: type, name: str) -> Callable[[], Any]:
    """Find the zero/default value factory for a field."""
    if dataclasses.is_dataclass(cls):
        for f in dataclasses.fields(cls):
            if f.name != name:
                continue
            if f.default_factory is not dataclasses.MISSING:
                return f.default_factory
            if f.default is not dataclasses.MISSING:
                return _copying(f.default)
            return _none

    for klass in cls.__mro__:
        if name in klass.__dict__:
            value = klass.__dict__[name]
            # __slots__ members and properties are not defaults
            if isinstance(value, _DESCRIPTOR_TYPES):
                return _none
            return _copying(value)
    return _none


_DESCRIPTOR_TYPES = (types.MemberDescriptorType, types.GetSetDescriptorType, property)


def _copying(value: Any) -> Callable[[], Any]:
    """Return a factory handing each instance its own shallow copy of value."""
    return lambda: copy.copy(value)


def _is_class_var(hint: Any) -> bool:
    if typing.get_origin(hint) is Annotated:
        hint = typing.get_args(hint)[0]
    return hint is ClassVar or typing.get_origin(hint) is ClassVar


def _field_metadata(hint: Any) -> list[Any]:
    if typing.get_origin(hint) is Annotated:
        return list(hint.__metadata__)
    return []


def _build_descriptor(cls: type) -> RecordTypeDescriptor:
    config = record_config(cls)

    try:
        hints = typing.get_type_hints(cls, include_extras=True)
    except Exception as exc:
        raise SchemaError(
            f"Cannot resolve field annotations of {config.name}: {exc}",
            type_name=config.name,
        ) from exc

    included: list[FieldDescriptor] = []
    ignored: list[FieldDescriptor] = []
    keys: dict[str, str] = {}

    for index, (name, hint) in enumerate(hints.items()):
        if _is_class_var(hint) or isinstance(hint, dataclasses.InitVar):
            continue

        metadata = _field_metadata(hint)
        skip = any(isinstance(m, Ignore) for m in metadata)
        configured = [m for m in metadata if isinstance(m, Alias)]
        field_alias = configured[-1] if configured else None

        descriptor = FieldDescriptor(
            name=name,
            key=field_alias.name if field_alias else name,
            spec=value_spec(hint),
            inclusion="never" if skip else "always",
            required=bool(field_alias and field_alias.required) and not skip,
            order=field_alias.order if field_alias else 0,
            index=index,
            default=_default_factory(cls, name),
        )

        if skip:
            ignored.append(descriptor)
            continue

        if descriptor.key in keys:
            raise SchemaError(
                f"Fields '{keys[descriptor.key]}' and '{name}' of {config.name} "
                f"both use the document key '{descriptor.key}'",
                type_name=config.name,
            )
        if descriptor.key.startswith("$"):
            raise SchemaError(
                f"Document key '{descriptor.key}' of {config.name} is reserved",
                type_name=config.name,
            )
        keys[descriptor.key] = name
        included.append(descriptor)

    # sorted() is stable, the index tiebreak just makes it explicit
    included.sort(key=lambda f: (f.order, f.index))

    return RecordTypeDescriptor(
        cls=cls,
        type_name=config.name,
        fields=tuple(included),
        ignored=tuple(ignored),
        include_nulls=config.include_nulls,
        comment=config.comment,
    )


# =============================================================================
# Resolver Cache
# =============================================================================

# Process-wide descriptor cache. Reads are lock-free; population takes the
# lock and keeps whichever descriptor was stored first.
_SCHEMA_CACHE: dict[type, RecordTypeDescriptor] = {}
_CACHE_LOCK = threading.Lock()


def resolve(cls: type) -> RecordTypeDescriptor:
    """
    Return the cached descriptor of a record type, building it on first use.

    Args:
        cls: A class decorated with @serializable.

    Returns:
        The type's RecordTypeDescriptor. Repeated calls return the same object.

    Raises:
        SchemaError: If the class is not serializable or its fields cannot
            be described.
    """
    descriptor = _SCHEMA_CACHE.get(cls)
    if descriptor is not None:
        return descriptor

    descriptor = _build_descriptor(cls)
    with _CACHE_LOCK:
        descriptor = _SCHEMA_CACHE.setdefault(cls, descriptor)
    logger.debug(
        "Resolved schema for %s: %s",
        descriptor.type_name,
        [f.key for f in descriptor.fields],
    )
    return descriptor
