"""Exceptions raised by the store.

NotWritable and CyclicDependency are engine failures and always reach the
caller. AtomPending is not an error: it is how a pending value unwinds a
read function, the way a suspense-aware caller expects it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    import asyncio

    from atomx.atom import Atom


class AtomError(Exception):
    """Base class for store failures."""


class NotWritable(AtomError, TypeError):
    """Write attempted on an atom without a write function."""

    def __init__(self, atom: Atom) -> None:
        super().__init__(f"{atom!r} is not writable")
        self.atom = atom


class CyclicDependency(AtomError, RuntimeError):
    """An atom read itself, directly or transitively, while being evaluated."""

    def __init__(self, path: Sequence[Atom]) -> None:
        self.path = tuple(path)
        chain = " -> ".join(repr(a) for a in self.path)
        super().__init__(f"cyclic dependency: {chain}")


class PendingDependency(AtomError):
    """A pending atom was read inside a coroutine.

    Raised in place of AtomPending once evaluation has moved into an
    asyncio task, so the task fails normally instead of tearing down the
    event loop. The store waits on ``future`` and re-evaluates.
    """

    def __init__(self, future: asyncio.Future) -> None:
        super().__init__("dependency is still pending")
        self.future = future


class AtomPending(BaseException):
    """Signal that a value is not available yet.

    Derives from BaseException so ``except Exception`` inside a read
    function does not swallow it.
    """

    def __init__(self, future: asyncio.Future, *, write: bool = False) -> None:
        super().__init__(future)
        self.future = future
        self.write = write
