"""Data anchor — plain records that hold all reactive state of one store.

Atoms are thin descriptors; everything a store knows about an atom lives
in its Record. Records are keyed by atom identity in a weak-keyed map, so
a record goes away with its atom. Atoms with listeners are pinned until
their last listener leaves.
"""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Callable

from atomx.result import Status

if TYPE_CHECKING:
    import asyncio

    from atomx.atom import Atom

UNSET = object()


class Listener:
    """Subscription handle. One per subscribe() call, even for the same callback."""

    __slots__ = ("callback", "active")

    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.active = True

    def __call__(self) -> None:
        if self.active:
            self.callback()


class Record:
    __slots__ = (
        "value",
        "error",
        "future",
        "write_future",
        "generation",
        "stale",
        "dependencies",
        "dependents",
        "listeners",
    )

    def __init__(self) -> None:
        self.value: object = UNSET
        self.error: BaseException | None = None
        self.future: asyncio.Future | None = None
        self.write_future: asyncio.Future | None = None
        # Bumped on every evaluation or assignment; async settlements
        # carrying an older generation are dropped.
        self.generation = 0
        self.stale = True
        self.dependencies: set[Atom] = set()
        self.dependents: weakref.WeakSet[Atom] = weakref.WeakSet()
        self.listeners: dict[Listener, None] = {}

    @property
    def status(self) -> Status:
        if self.error is not None:
            return Status.ERRORED
        if self.future is not None:
            return Status.PENDING_READ
        if self.write_future is not None:
            return Status.PENDING_WRITE
        return Status.SETTLED


class Anchor:
    """Record arena for one store."""

    __slots__ = ("records", "pinned")

    def __init__(self) -> None:
        self.records: weakref.WeakKeyDictionary[Atom, Record] = weakref.WeakKeyDictionary()
        self.pinned: set[Atom] = set()

    def record(self, atom: Atom) -> Record:
        record = self.records.get(atom)
        if record is None:
            record = self.records[atom] = Record()
        return record

    def peek(self, atom: Atom) -> Record | None:
        return self.records.get(atom)

    def pin(self, atom: Atom) -> None:
        self.pinned.add(atom)

    def unpin(self, atom: Atom) -> None:
        self.pinned.discard(atom)

    def __len__(self) -> int:
        return len(self.records)
