"""
Exception taxonomy for the refson library.

Every error raised by an encode or decode pass derives from RefsonError and
carries its diagnostic fields as attributes, so callers can present them
however they like:

- SchemaError: a type is not configured for serialization
- MissingRequiredFieldError: a required key is absent from a document
- UnknownTypeError: a type name is not in the registry
- ParseError: the document text is not well-formed
- TypeMismatchError: a node's shape does not match the declared kind
- DanglingReferenceError: a "$ref" points at an id that never appears
- CircularReferenceError: a cycle was found in strict mode
- DuplicateIdError: two objects in one document claim the same "$id"
"""

from __future__ import annotations


class RefsonError(Exception):
    """Base class for all serialization and deserialization errors."""


class SchemaError(RefsonError):
    """Raised when a type cannot be described for serialization."""

    def __init__(self, message: str, type_name: str | None = None):
        super().__init__(message)
        self.type_name = type_name


class MissingRequiredFieldError(RefsonError):
    def __init__(self, type_name: str, field: str):
        super().__init__(
            f"Required field '{field}' is missing from the document "
            f"(type: {type_name})"
        )
        self.type_name = type_name
        self.field = field


class UnknownTypeError(RefsonError):
    def __init__(self, name: str):
        super().__init__(f"Unknown type name '{name}'")
        self.name = name


class ParseError(RefsonError):
    """
    Raised when document text is malformed.

    Attributes:
        position: Zero-based character offset of the offending input.
        reason: Short description of what was wrong.
        line: One-based line number of the position.
        column: One-based column number of the position.
    """

    def __init__(self, position: int, reason: str, text: str | None = None):
        self.position = position
        self.reason = reason
        if text is not None:
            self.line = text.count("\n", 0, position) + 1
            self.column = position - (text.rfind("\n", 0, position) + 1) + 1
            where = f"line {self.line} column {self.column} (char {position})"
        else:
            self.line = None
            self.column = None
            where = f"char {position}"
        super().__init__(f"{reason}: {where}")


class TypeMismatchError(RefsonError):
    def __init__(self, expected: str, found: str, position: int | None = None):
        message = f"Expected {expected}, found {found}"
        if position is not None:
            message += f" (char {position})"
        super().__init__(message)
        self.expected = expected
        self.found = found
        self.position = position


class DanglingReferenceError(RefsonError):
    def __init__(self, ref_id: int):
        super().__init__(f"Reference to id {ref_id} never resolved")
        self.ref_id = ref_id


class CircularReferenceError(RefsonError):
    def __init__(self, type_name: str):
        super().__init__(f"Circular reference detected in object of type {type_name}")
        self.type_name = type_name


class DuplicateIdError(RefsonError):
    def __init__(self, ref_id: int):
        super().__init__(f"Id {ref_id} is declared by more than one object")
        self.ref_id = ref_id
