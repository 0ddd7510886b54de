"""
Reference tracking for the refson library.

Encode side, ReferenceTracker assigns document ids to records and decides,
on every later encounter of the same object, whether the encoder emits a
reference marker for a cycle or for a shared (diamond) reference:

    >>> tracker = ReferenceTracker()
    >>> tracker.track(a)
    FirstVisit(id=1)
    >>> tracker.track(a)
    AlreadySeen(id=1, cyclic=False)

Identity is object identity, never equality. Tracked objects are interned in
an arena whose slot index gives the id, and the arena keeps them alive for
the whole pass so that Python cannot hand out the same id() to a new object.

Decode side, ReferenceTable maps document ids to already constructed
instances. Both are scoped to a single pass.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Union

from pydantic import BaseModel, ConfigDict

from refson.errors import CircularReferenceError, DuplicateIdError


# =============================================================================
# Visit Results
# =============================================================================


@dataclass(frozen=True)
class FirstVisit:
    """The value was seen for the first time and received a new id."""

    id: int


@dataclass(frozen=True)
class AlreadySeen:
    """
    The value was tracked earlier in the pass.

    Attributes:
        id: The id assigned on the first visit.
        cyclic: True if the value is an ancestor of the current node
            (a back edge), False for a shared reference reached through
            another path.
    """

    id: int
    cyclic: bool


Visit = Union[FirstVisit, AlreadySeen]


class TrackerStatistics(BaseModel):
    """
    Read-only snapshot of a tracker's counters.

    Attributes:
        total_visited: Composite values encountered, repeats included.
        unique_ids: Distinct ids issued.
        shared_count: Repeat visits to values not on the active path.
        cyclic_count: Repeat visits to values on the active path.
    """

    model_config = ConfigDict(frozen=True)

    total_visited: int = 0
    unique_ids: int = 0
    shared_count: int = 0
    cyclic_count: int = 0


# =============================================================================
# Encode Side
# =============================================================================


class ReferenceTracker:
    """
    Assigns ids to records during one encode pass.

    Attributes:
        strict: If True, a back edge raises CircularReferenceError instead of
            being compacted to a reference marker.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        # Arena of interned values; a value's id is its slot index + 1
        self._slots: list[Any] = []
        self._index: dict[int, int] = {}
        # id() of every value whose expansion is in progress
        self._active: set[int] = set()
        self._total = 0
        self._shared = 0
        self._cyclic = 0

    def track(self, value: Any) -> Visit:
        """
        Record an encounter with a record.

        Returns:
            FirstVisit with a fresh id, or AlreadySeen with the existing one.

        Raises:
            CircularReferenceError: In strict mode, when the value is on the
                active expansion path.
        """
        self._total += 1
        key = id(value)

        slot = self._index.get(key)
        if slot is not None:
            cyclic = key in self._active
            if cyclic:
                if self.strict:
                    raise CircularReferenceError(type(value).__name__)
                self._cyclic += 1
            else:
                self._shared += 1
            return AlreadySeen(id=slot + 1, cyclic=cyclic)

        self._slots.append(value)
        self._index[key] = len(self._slots) - 1
        return FirstVisit(id=len(self._slots))

    def id_of(self, value: Any) -> int:
        """Return the id of a tracked value."""
        slot = self._index.get(id(value))
        if slot is None or self._slots[slot] is not value:
            raise KeyError(f"{type(value).__name__} object is not tracked")
        return slot + 1

    def is_tracked(self, value: Any) -> bool:
        slot = self._index.get(id(value))
        return slot is not None and self._slots[slot] is value

    @contextmanager
    def expanding(self, value: Any) -> Iterator[None]:
        """
        Mark a composite as being expanded for the duration of the block.

        Raises:
            CircularReferenceError: If the value is already being expanded.
                Records never get here twice (track() reports them first),
                so this only fires for arrays and mappings that contain themselves.
        """
        key = id(value)
        if key in self._active:
            raise CircularReferenceError(type(value).__name__)
        self._active.add(key)
        try:
            yield
        finally:
            self._active.discard(key)

    def visit_container(self, value: Any):
        """Count an array or mapping encounter and mark it as being expanded."""
        self._total += 1
        return self.expanding(value)

    @property
    def statistics(self) -> TrackerStatistics:
        return TrackerStatistics(
            total_visited=self._total,
            unique_ids=len(self._slots),
            shared_count=self._shared,
            cyclic_count=self._cyclic,
        )


# =============================================================================
# Decode Side
# =============================================================================


class _Unresolved:
    def __repr__(self) -> str:
        return "UNRESOLVED"


# Returned by ReferenceTable.resolve() for ids not registered yet
UNRESOLVED: Any = _Unresolved()


class ReferenceTable:
    """Maps document ids to the instances built for them in one decode pass."""

    def __init__(self):
        self._instances: dict[int, Any] = {}

    def register(self, ref_id: int, instance: Any) -> None:
        """
        Raises:
            DuplicateIdError: If the id was already registered.
        """
        if ref_id in self._instances:
            raise DuplicateIdError(ref_id)
        self._instances[ref_id] = instance

    def resolve(self, ref_id: int) -> Any:
        return self._instances.get(ref_id, UNRESOLVED)

    def __contains__(self, ref_id: int) -> bool:
        return ref_id in self._instances

    def __len__(self) -> int:
        return len(self._instances)
