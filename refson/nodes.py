"""
Value Node definitions for the refson library.

A parsed document is a tree of Value Nodes, the decoder-side intermediate
between text and reconstructed records. Each node kind is a Pydantic model
with a literal ``kind`` discriminator:

- NullNode: the null literal
- BooleanNode: true / false
- NumberNode: integer or floating point literal
- StringNode: quoted text
- ArrayNode: ordered sequence of nodes
- ObjectNode: mapping of key to node, in document order

Nodes have no identity beyond their place in the tree. Each one records the
character offset where it starts so later stages can report positions.

The reserved object keys of the document format are defined here as well.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Reserved Keys
# =============================================================================

# Identifier of the first occurrence of a record
ID_KEY = "$id"

# Reference marker standing in for an already-emitted record
REF_KEY = "$ref"

# Registered type name of a record, for polymorphic and by-name decoding
TYPE_KEY = "$type"

RESERVED_KEYS = frozenset({ID_KEY, REF_KEY, TYPE_KEY})


# =============================================================================
# Base Class
# =============================================================================


class ValueNode(BaseModel):
    """
    Abstract base class for parsed document nodes.

    Attributes:
        kind: Literal discriminator naming the node kind.
        position: Character offset of the node in the source text.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["node"]
    position: int = Field(default=0, exclude=True)


# =============================================================================
# Scalar Nodes
# =============================================================================


class NullNode(ValueNode):
    kind: Literal["null"] = "null"


class BooleanNode(ValueNode):
    kind: Literal["boolean"] = "boolean"
    value: bool


class NumberNode(ValueNode):
    """
    Numeric literal. Literals without a fraction or exponent are kept as int.
    """

    kind: Literal["number"] = "number"
    value: Union[int, float]

    @property
    def is_integer(self) -> bool:
        return isinstance(self.value, int)


class StringNode(ValueNode):
    kind: Literal["string"] = "string"
    value: str


# =============================================================================
# Composite Nodes
# =============================================================================


class ArrayNode(ValueNode):
    kind: Literal["array"] = "array"
    items: list[Node]


class ObjectNode(ValueNode):
    """
    Object literal. Keys keep the order in which they appear in the document.
    """

    kind: Literal["object"] = "object"
    entries: dict[str, Node]

    def get(self, key: str) -> ValueNode | None:
        return self.entries.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self.entries


# =============================================================================
# Discriminated Union
# =============================================================================

Node = Annotated[
    Union[NullNode, BooleanNode, NumberNode, StringNode, ArrayNode, ObjectNode],
    Field(discriminator="kind"),
]

ArrayNode.model_rebuild()
ObjectNode.model_rebuild()
