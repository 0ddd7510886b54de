"""
Stack-independent tree walks for the refson library.

Documents and record graphs can nest far deeper than the interpreter's
recursion limit (a linked list of a few thousand records is an ordinary
input). The encoder, parser and graph builder are therefore written as
generator frames: a frame that needs the value of a subtree yields a
generator for that subtree and is resumed with its result.

    >>> def count(node):
    ...     total = 1
    ...     for child in node.children:
    ...         total += yield count(child)
    ...     return total
    >>> drive(count(root))

drive() keeps the suspended frames on a list, so depth costs heap memory
rather than interpreter stack.
"""

from __future__ import annotations

from typing import Any, Generator

# A generator frame: yields child frames, receives their results, returns
# its own result
Walk = Generator["Walk", Any, Any]


def drive(root: Walk) -> Any:
    """
    Run a tree of generator frames to completion.

    Exceptions raised in a child frame are thrown into its parent at the
    point where the parent yielded, so try/with blocks of suspended frames
    unwind exactly as they would in plain recursion.

    Returns:
        The value returned by the root frame.
    """
    stack: list[Walk] = [root]
    value: Any = None
    error: BaseException | None = None

    while stack:
        frame = stack[-1]
        try:
            if error is not None:
                pending, error = error, None
                child = frame.throw(pending)
            else:
                child = frame.send(value)
        except StopIteration as stop:
            stack.pop()
            value = stop.value
            continue
        except BaseException as exc:
            stack.pop()
            if not stack:
                raise
            error = exc
            continue

        stack.append(child)
        value = None

    return value
