"""Dependency tracking engine — evaluation stack, batching and the listener queue.

The evaluation stack lives in a contextvar, so each asyncio task only sees
the evaluations it started itself. An atom found on its own stack is a
cycle.

Batching: every set() inside an outermost write, Store.batch() or @action
adds its atom to the changed set. When the outermost scope exits the store
runs one propagation pass over all of them, and every listener the pass
reaches is queued once until the next flush.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

from atomx.errors import CyclicDependency

if TYPE_CHECKING:
    from atomx._anchor import Listener
    from atomx.atom import Atom

# (store id, atom) pairs of the evaluations currently running in this context.
_evaluating: contextvars.ContextVar[tuple[tuple[int, Atom], ...]] = contextvars.ContextVar(
    "atomx_evaluating", default=()
)


@contextmanager
def evaluating(owner: int, atom: Atom) -> Iterator[None]:
    """Push atom onto the evaluation stack. Raises CyclicDependency if already there."""
    stack = _evaluating.get()
    key = (owner, atom)
    if key in stack:
        path = [a for o, a in stack if o == owner]
        raise CyclicDependency(path[path.index(atom):] + [atom])
    token = _evaluating.set(stack + (key,))
    try:
        yield
    finally:
        _evaluating.reset(token)


def detached_context() -> contextvars.Context:
    """Copy of the current context with an empty evaluation stack.

    Done callbacks and tasks run in a snapshot of the context they were
    created in; created mid-evaluation, they would otherwise carry the
    stack along and see cycles that are not there.
    """
    ctx = contextvars.copy_context()
    ctx.run(_evaluating.set, ())
    return ctx


class Tracker:
    """Batch depth, changed atoms and queued listeners for one store."""

    __slots__ = ("depth", "changed", "pending")

    def __init__(self) -> None:
        self.depth = 0
        self.changed: dict[Atom, None] = {}
        self.pending: dict[Listener, None] = {}

    def begin_batch(self) -> None:
        """Enter a batching scope. Nested batches are supported."""
        self.depth += 1

    def end_batch(self) -> bool:
        """Exit a batching scope. True when the outermost scope exited."""
        self.depth -= 1
        return self.depth == 0

    def mark_changed(self, atom: Atom) -> None:
        self.changed[atom] = None

    def take_changed(self) -> list[Atom]:
        changed = list(self.changed)
        self.changed.clear()
        return changed

    def schedule(self, listener: Listener) -> None:
        self.pending[listener] = None

    def pop_pending(self) -> Listener:
        listener = next(iter(self.pending))
        del self.pending[listener]
        return listener

    def discard(self, listener: Listener) -> None:
        self.pending.pop(listener, None)
