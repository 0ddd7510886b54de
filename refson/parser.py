"""
Document parser for the refson library.

Turns document text into a tree of Value Nodes (see refson.nodes). The
grammar is JSON: objects, arrays, strings with the standard escapes
(including surrogate pairs), numbers, true, false and null, separated by
optional whitespace.

Malformed input raises ParseError with the offset of the problem, plus line
and column in the message. Duplicate keys within one object are rejected so
that an object can never carry two "$id" or "$ref" values. Byte input must
be valid UTF-8. Nesting depth is limited only by memory.
"""

from __future__ import annotations

import math
import re

from refson.errors import ParseError
from refson.nodes import (
    ArrayNode,
    BooleanNode,
    NullNode,
    NumberNode,
    ObjectNode,
    StringNode,
    ValueNode,
)
from refson.walk import Walk, drive


_WHITESPACE_RE = re.compile(r"[ \t\n\r]*")
_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(\.\d+)?([eE][-+]?\d+)?")
# Run of characters that need no special handling inside a string
_STRING_CHUNK_RE = re.compile(r'[^"\\\x00-\x1f]*')

_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}

_LITERALS = (
    ("true", lambda position: BooleanNode(value=True, position=position)),
    ("false", lambda position: BooleanNode(value=False, position=position)),
    ("null", lambda position: NullNode(position=position)),
)


class _Parser:
    """Recursive descent parser over one document, driven by refson.walk."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _fail(self, reason: str, position: int | None = None):
        raise ParseError(
            self.pos if position is None else position, reason, self.text
        )

    def _skip_whitespace(self) -> None:
        self.pos = _WHITESPACE_RE.match(self.text, self.pos).end()

    def _at_end(self) -> bool:
        return self.pos >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.pos]

    # -------------------------------------------------------------------------
    # Grammar
    # -------------------------------------------------------------------------

    def parse(self) -> ValueNode:
        self._skip_whitespace()
        if self._at_end():
            self._fail("Empty document")

        node = drive(self._value())

        self._skip_whitespace()
        if not self._at_end():
            if self._peek() in "]}":
                self._fail(f"Unbalanced brackets: unexpected {self._peek()!r}")
            self._fail("Unexpected data after the document")
        return node

    def _value(self) -> Walk:
        if self._at_end():
            self._fail("Unexpected end of document")

        ch = self._peek()
        if ch == "{":
            return (yield from self._object())
        if ch == "[":
            return (yield from self._array())
        if ch == '"':
            start = self.pos
            return StringNode(value=self._string(), position=start)
        if ch == "-" or ch.isdigit():
            return self._number()

        for literal, make in _LITERALS:
            if self.text.startswith(literal, self.pos):
                start = self.pos
                self.pos += len(literal)
                return make(start)

        if ch in "]}":
            self._fail(f"Unbalanced brackets: unexpected {ch!r}")
        self._fail(f"Unexpected character {ch!r}")

    def _object(self) -> Walk:
        start = self.pos
        self.pos += 1
        entries: dict[str, ValueNode] = {}

        self._skip_whitespace()
        if not self._at_end() and self._peek() == "}":
            self.pos += 1
            return ObjectNode(entries=entries, position=start)

        while True:
            self._skip_whitespace()
            if self._at_end():
                self._fail(f"Unbalanced brackets: object opened at char {start} is never closed")
            if self._peek() != '"':
                self._fail("Expected a quoted object key")

            key_position = self.pos
            key = self._string()
            if key in entries:
                self._fail(f"Duplicate object key {key!r}", key_position)

            self._skip_whitespace()
            if self._at_end() or self._peek() != ":":
                self._fail("Expected ':' after object key")
            self.pos += 1
            self._skip_whitespace()

            entries[key] = yield self._value()

            self._skip_whitespace()
            if self._at_end():
                self._fail(f"Unbalanced brackets: object opened at char {start} is never closed")
            ch = self._peek()
            self.pos += 1
            if ch == ",":
                continue
            if ch == "}":
                return ObjectNode(entries=entries, position=start)
            self._fail("Expected ',' or '}' in object", self.pos - 1)

    def _array(self) -> Walk:
        start = self.pos
        self.pos += 1
        items: list[ValueNode] = []

        self._skip_whitespace()
        if not self._at_end() and self._peek() == "]":
            self.pos += 1
            return ArrayNode(items=items, position=start)

        while True:
            self._skip_whitespace()
            if self._at_end():
                self._fail(f"Unbalanced brackets: array opened at char {start} is never closed")
            items.append((yield self._value()))

            self._skip_whitespace()
            if self._at_end():
                self._fail(f"Unbalanced brackets: array opened at char {start} is never closed")
            ch = self._peek()
            self.pos += 1
            if ch == ",":
                continue
            if ch == "]":
                return ArrayNode(items=items, position=start)
            self._fail("Expected ',' or ']' in array", self.pos - 1)

    def _number(self) -> NumberNode:
        start = self.pos
        match = _NUMBER_RE.match(self.text, self.pos)
        if match is None:
            self._fail("Invalid number")
        self.pos = match.end()

        literal = match.group(0)
        if match.group(1) or match.group(2):
            value = float(literal)
            if math.isinf(value):
                self._fail("Number out of range", start)
        else:
            try:
                value = int(literal)
            except ValueError:
                # Longer than the interpreter's int conversion limit
                self._fail("Integer literal too long", start)
        return NumberNode(value=value, position=start)

    def _string(self) -> str:
        start = self.pos
        self.pos += 1
        chunks: list[str] = []

        while True:
            chunk = _STRING_CHUNK_RE.match(self.text, self.pos)
            chunks.append(chunk.group(0))
            self.pos = chunk.end()

            if self._at_end():
                self._fail("Unterminated string", start)

            ch = self._peek()
            if ch == '"':
                self.pos += 1
                return "".join(chunks)
            if ch != "\\":
                self._fail(f"Invalid control character {ch!r} in string")

            self.pos += 1
            if self._at_end():
                self._fail("Unterminated string", start)
            escape = self._peek()
            if escape == "u":
                chunks.append(self._unicode_escape())
                continue
            if escape not in _ESCAPES:
                self._fail(f"Invalid escape '\\{escape}'", self.pos - 1)
            chunks.append(_ESCAPES[escape])
            self.pos += 1

    def _hex4(self) -> int:
        # self.pos is on the 'u' of a \uXXXX escape
        digits = self.text[self.pos + 1:self.pos + 5]
        if len(digits) != 4 or not all(c in "0123456789abcdefABCDEF" for c in digits):
            self._fail("Invalid \\u escape", self.pos - 1)
        self.pos += 5
        return int(digits, 16)

    def _unicode_escape(self) -> str:
        code = self._hex4()
        if 0xD800 <= code <= 0xDBFF and self.text.startswith("\\u", self.pos):
            saved = self.pos
            self.pos += 1
            low = self._hex4()
            if 0xDC00 <= low <= 0xDFFF:
                return chr(0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00))
            self.pos = saved
        return chr(code)


def parse(text: str | bytes) -> ValueNode:
    """
    Parse document text into a Value Node tree.

    Args:
        text: The document, as str or UTF-8 encoded bytes.

    Returns:
        The root node.

    Raises:
        ParseError: If the text is not a well-formed document.
    """
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(exc.start, "Invalid UTF-8") from exc
    return _Parser(text).parse()
