"""
Serializer façade for the refson library.

This module ties the pieces of a pass together:
- SerializerOptions holds presentation and strictness settings
- Serializer runs encode passes (Encoder + ReferenceTracker, then rendering
  with refson.render) and decode passes (parser, then GraphBuilder)

Every call creates its own tracker or reference table, so one Serializer
can be shared between threads. Only the statistics of the most recent
encode pass are kept on the instance.

Strict Mode:
    With ``strict=True`` a cycle (an object reachable from itself) raises
    CircularReferenceError instead of being written as a "$ref" marker.
    Shared references that are not cycles are still compacted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from refson.decoder import GraphBuilder
from refson.encoder import Encoder, PlainJSON
from refson.parser import parse
from refson.render import render
from refson.schema import lookup_type
from refson.tracking import ReferenceTracker, TrackerStatistics

logger = logging.getLogger(__name__)


@dataclass
class SerializerOptions:
    """
    Configuration for a Serializer.

    Attributes:
        pretty: If True, documents are indented and split over lines.
            Presentation only; the value model is unchanged.
        indent: Spaces per nesting level when pretty is set.
        strict: If True, cycles raise CircularReferenceError instead of
            being compacted to reference markers.

    Example:
        >>> options = SerializerOptions(pretty=True, strict=True)
        >>> text = Serializer(options).serialize(company)
    """

    pretty: bool = False
    indent: int = 2
    strict: bool = False


class Serializer:
    """
    Runs encode and decode passes with a fixed set of options.

    Example:
        >>> serializer = Serializer(SerializerOptions(pretty=True))
        >>> text = serializer.serialize(company)
        >>> serializer.statistics.shared_count
        2
        >>> restored = serializer.deserialize(text, Company)
    """

    def __init__(self, options: SerializerOptions | None = None):
        self.options = options or SerializerOptions()
        self._statistics: TrackerStatistics | None = None

    @property
    def statistics(self) -> TrackerStatistics | None:
        """Tracker statistics of the most recent encode pass, if any."""
        return self._statistics

    # -------------------------------------------------------------------------
    # Encode
    # -------------------------------------------------------------------------

    def serialize(self, value: Any) -> str:
        """
        Encode a value graph to document text.

        Raises:
            SchemaError: If the graph holds a value of an unserializable type.
            CircularReferenceError: In strict mode, if the graph has a cycle.
            TypeMismatchError: If a float is not finite.
        """
        encoder = self._encoder()
        return self._finish(encoder, encoder.encode(value))

    def serialize_by_type_name(self, type_name: str, value: Any) -> str:
        """
        Encode a record under a registered type name, embedding the name in
        the document so it can be decoded without naming the class.

        Raises:
            UnknownTypeError: If the type name is not registered.
            TypeMismatchError: If the value is not an instance of the type.
        """
        encoder = self._encoder()
        return self._finish(encoder, encoder.encode_by_type_name(type_name, value))

    def _encoder(self) -> Encoder:
        return Encoder(ReferenceTracker(strict=self.options.strict))

    def _finish(self, encoder: Encoder, document: PlainJSON) -> str:
        self._statistics = encoder.tracker.statistics
        logger.debug("Encode pass finished: %s", self._statistics)
        return self.render(document)

    def render(self, document: PlainJSON) -> str:
        indent = self.options.indent if self.options.pretty else None
        return render(document, indent)

    # -------------------------------------------------------------------------
    # Decode
    # -------------------------------------------------------------------------

    def deserialize(self, text: str | bytes, cls: Any = None) -> Any:
        """
        Rebuild a value graph from document text.

        Args:
            text: The document.
            cls: Expected type of the root value (a record class, primitive
                type or array annotation). If None, the root object must
                carry "$type".

        Raises:
            ParseError: If the text is malformed.
            SchemaError, UnknownTypeError, MissingRequiredFieldError,
            TypeMismatchError, DanglingReferenceError, DuplicateIdError:
                See GraphBuilder.build().
        """
        node = parse(text)
        builder = GraphBuilder()
        result = builder.build(node, cls)
        logger.debug("Decode pass finished: %d objects", len(builder.table))
        return result

    def deserialize_by_type_name(self, text: str | bytes, type_name: str) -> Any:
        """
        Rebuild a record whose class is looked up by registered type name.

        Raises:
            UnknownTypeError: If the type name is not registered.
        """
        return self.deserialize(text, lookup_type(type_name))
