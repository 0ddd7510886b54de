"""
Text rendering of encoded documents for the refson library.

The encoder produces a plain tree of dicts, lists and scalars. render()
writes that tree as JSON text with an explicit work stack, so documents
nest as deeply as the graphs they describe. Scalars and keys are written
by pydantic_core, which owns escaping and number formatting.

    >>> render({"$id": 1, "tags": ["a", "b"]})
    '{"$id":1,"tags":["a","b"]}'
    >>> print(render({"$id": 1, "tags": []}, indent=2))
    {
      "$id": 1,
      "tags": []
    }
"""

from __future__ import annotations

from typing import Any

from pydantic_core import to_json


def _scalar(value: Any) -> str:
    return to_json(value).decode("utf-8")


def render(document: Any, indent: int | None = None) -> str:
    """
    Render a JSON-compatible tree as text.

    Args:
        document: Tree of dicts with string keys, lists and scalars.
        indent: Spaces per nesting level, or None for compact output.

    Returns:
        The document text.
    """
    parts: list[str] = []
    # Entries are literal text (str) or a (value, depth) pair still to write
    stack: list[Any] = [(document, 0)]

    while stack:
        entry = stack.pop()
        if isinstance(entry, str):
            parts.append(entry)
            continue

        value, depth = entry
        if isinstance(value, dict):
            items = list(value.items())
            opener, closer = "{", "}"
        elif isinstance(value, list):
            items = list(enumerate(value))
            opener, closer = "[", "]"
        else:
            parts.append(_scalar(value))
            continue

        if not items:
            parts.append(opener + closer)
            continue

        if indent is None:
            inner, outer, colon = "", "", ":"
        else:
            inner = "\n" + " " * (indent * (depth + 1))
            outer = "\n" + " " * (indent * depth)
            colon = ": "

        parts.append(opener)
        stack.append(outer + closer)
        # Pushed in reverse so the first entry is written first
        for position in range(len(items) - 1, -1, -1):
            key, item = items[position]
            prefix = inner if position == 0 else "," + inner
            if opener == "{":
                prefix += _scalar(key) + colon
            stack.append((item, depth + 1))
            stack.append(prefix)

    return "".join(parts)
