"""Store — evaluates, caches and propagates changes through a graph of atoms.

A Store owns the state of every atom it touches, so independent stores
never interfere even when they share atom definitions.

    price = atom(10)
    doubled = atom(lambda get: get(price) * 2)

    store = Store()
    store.get(doubled)       # 20
    store.write(price, 25)
    store.get(doubled)       # 50

Reads are lazy: a derived atom is evaluated on first read and again only
after something it read has changed. Writes are the only way state
changes; each outermost write (or Store.batch() scope) runs one
propagation pass that marks every downstream atom stale and queues each
reachable listener once.

Thread safety: call set_scheduler() from the thread that owns the store.
After that, write() from any other thread is handed to the scheduler.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from atomx import _tracking
from atomx._anchor import UNSET, Anchor, Listener, Record
from atomx.atom import Atom, PrimitiveAtom, ReadonlyAtom, is_writable
from atomx.errors import AtomPending, CyclicDependency, NotWritable, PendingDependency
from atomx.result import Errored, Pending, Result, Settled, Status

logger = logging.getLogger("atomx.store")

Unsubscribe = Callable[[], None]


async def _run_detached(coro):
    """Await coro, turning AtomPending into an ordinary exception for the task."""
    try:
        return await coro
    except AtomPending as pending:
        raise PendingDependency(pending.future) from None


def _as_future(awaitable) -> asyncio.Future:
    if asyncio.isfuture(awaitable):
        return awaitable
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise
    if asyncio.iscoroutine(awaitable):
        awaitable = _run_detached(awaitable)
    return _tracking.detached_context().run(asyncio.ensure_future, awaitable, loop=loop)


def _on_done(future: asyncio.Future, callback: Callable, *args) -> None:
    future.add_done_callback(
        functools.partial(callback, *args), context=_tracking.detached_context()
    )


class Store:
    """Records plus the read, write and notify machinery for a set of atoms."""

    def __init__(self, *, auto_flush: bool = True, scheduler: Callable | None = None) -> None:
        self._anchor = Anchor()
        self._tracker = _tracking.Tracker()
        self._flushing = False
        self.auto_flush = auto_flush
        self._scheduler: Callable | None = None
        self._scheduler_thread: threading.Thread | None = None
        if scheduler is not None:
            self.set_scheduler(scheduler)

    def set_scheduler(self, scheduler: Callable[[Callable[[], None]], Any]) -> None:
        """Marshal writes from other threads onto the calling thread.

        Call once from the thread that owns the store:
            store.set_scheduler(app.call_from_thread)
        """
        self._scheduler = scheduler
        self._scheduler_thread = threading.current_thread()

    # ─── Read engine ─────────────────────────────────────────────────────

    def read(self, atom: Atom) -> Result:
        """Current value of atom as Settled, Pending or Errored."""
        record = self._read_record(atom)
        if record.error is not None:
            return Errored(record.error)
        if record.future is not None:
            return Pending(record.future)
        if record.write_future is not None:
            return Pending(record.write_future, write=True)
        return Settled(record.value)

    def get(self, atom: Atom) -> Any:
        """Read and unwrap: raises AtomPending or the stored error."""
        return self.read(atom).unwrap()

    def _read_record(self, atom: Atom) -> Record:
        record = self._anchor.record(atom)
        if not record.stale:
            return record
        if isinstance(atom, PrimitiveAtom):
            self._assign(atom, record, atom.initial)
        elif isinstance(atom, ReadonlyAtom):
            self._evaluate(atom, record)
        else:
            raise TypeError(f"not an atom: {atom!r}")
        return record

    def _evaluate(self, atom: ReadonlyAtom, record: Record) -> None:
        with _tracking.evaluating(id(self), atom):
            record.generation += 1
            generation = record.generation
            self._clear_dependencies(atom, record)
            logger.debug("Evaluating %r (generation %d)", atom, generation)
            try:
                value = atom.read(self._tracked_getter(atom, record, generation))
            except CyclicDependency:
                raise
            except AtomPending as pending:
                self._wait_for_dependency(atom, record, generation, pending.future)
                return
            except (Exception, asyncio.CancelledError) as exc:
                record.error = exc
                record.future = None
                record.stale = False
                return
        self._assign(atom, record, value)

    def _tracked_getter(self, atom: Atom, record: Record, generation: int) -> Callable[[Atom], Any]:
        def get(target: Atom) -> Any:
            if target is atom:
                # Own previous value: last settled one, never the in-flight future.
                return atom.initial if record.value is UNSET else record.value
            target_record = self._read_record(target)
            # Late reads from a superseded evaluation add no edges.
            if record.generation == generation:
                record.dependencies.add(target)
                target_record.dependents.add(atom)
            return self._unwrap(target_record)

        return get

    def _untracked_get(self, atom: Atom) -> Any:
        return self._unwrap(self._read_record(atom))

    @staticmethod
    def _unwrap(record: Record) -> Any:
        if record.error is not None:
            raise record.error
        if record.future is not None:
            raise AtomPending(record.future)
        return record.value

    def _clear_dependencies(self, atom: Atom, record: Record) -> None:
        for dep in record.dependencies:
            dep_record = self._anchor.peek(dep)
            if dep_record is not None:
                dep_record.dependents.discard(atom)
        record.dependencies = set()

    def _assign(self, atom: Atom, record: Record, value: Any, *, supersede: bool = False) -> None:
        # Leaves the record untouched if the awaitable cannot be scheduled.
        future = _as_future(value) if inspect.isawaitable(value) else None
        if supersede:
            record.generation += 1
        record.error = None
        record.stale = False
        record.future = future
        if future is None:
            record.value = value
        else:
            _on_done(future, self._settle, atom, record.generation)

    # ─── Async resolution ────────────────────────────────────────────────

    def _settle(self, atom: Atom, generation: int, future: asyncio.Future) -> None:
        record = self._anchor.peek(atom)
        if record is None or record.generation != generation or record.future is not future:
            logger.debug("Discarding superseded settlement of %r (generation %d)", atom, generation)
            return
        record.future = None
        if future.cancelled():
            record.error = asyncio.CancelledError()
        else:
            exc = future.exception()
            if isinstance(exc, PendingDependency):
                self._wait_for_dependency(atom, record, generation, exc.future)
                return
            if exc is not None:
                record.error = exc
            else:
                record.value = future.result()
        logger.debug("Settled %r as %s", atom, record.status.value)
        self._commit(atom)

    def _wait_for_dependency(
        self, atom: Atom, record: Record, generation: int, future: asyncio.Future
    ) -> None:
        record.error = None
        record.stale = False
        record.future = future
        _on_done(future, self._dependency_settled, atom, generation)

    def _dependency_settled(self, atom: Atom, generation: int, future: asyncio.Future) -> None:
        record = self._anchor.peek(atom)
        if record is None or record.generation != generation or record.future is not future:
            return
        record.future = None
        if record.stale:
            # The dependency's own settlement already invalidated this atom.
            return
        record.stale = True
        self._commit(atom)

    def _track_write(self, atom: Atom, awaitable) -> asyncio.Future:
        future = _as_future(awaitable)
        self._anchor.record(atom).write_future = future
        self._tracker.mark_changed(atom)
        _on_done(future, self._write_settled, atom)
        return future

    def _write_settled(self, atom: Atom, future: asyncio.Future) -> None:
        record = self._anchor.peek(atom)
        if record is None or record.write_future is not future:
            return
        record.write_future = None
        self._commit(atom)

    # ─── Write engine ────────────────────────────────────────────────────

    def write(self, atom: Atom, update: Any) -> asyncio.Future | None:
        """Apply atom's write function. Returns a future when the write is async."""
        if self._scheduler is not None and threading.current_thread() is not self._scheduler_thread:
            self._scheduler(functools.partial(self._write_direct, atom, update))
            return None
        return self._write_direct(atom, update)

    def _write_direct(self, atom: Atom, update: Any) -> asyncio.Future | None:
        with self.batch():
            return self._write(atom, update)

    def _write(self, atom: Atom, update: Any) -> asyncio.Future | None:
        if not is_writable(atom):
            raise NotWritable(atom)
        result = atom.write(self._untracked_get, functools.partial(self._set, atom), update)
        if inspect.isawaitable(result):
            return self._track_write(atom, result)
        return None

    def _set(self, writer: Atom, target: Atom, value: Any) -> None:
        with self.batch():
            if target is not writer:
                self._write(target, value)
                return
            record = self._anchor.record(target)
            if not record.stale and record.error is None and record.future is None:
                old = record.value
                if old is value or old == value:
                    return
            self._assign(target, record, value, supersede=True)
            self._tracker.mark_changed(target)

    # ─── Notifier ────────────────────────────────────────────────────────

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Coalesce every change inside the block into one propagation pass."""
        self._tracker.begin_batch()
        try:
            yield
        finally:
            if self._tracker.end_batch():
                self._propagate()
                if self.auto_flush:
                    self.flush_pending()

    def _commit(self, atom: Atom) -> None:
        with self.batch():
            self._tracker.mark_changed(atom)

    def _propagate(self) -> None:
        changed = self._tracker.take_changed()
        if not changed:
            return
        sources = set(changed)
        visited: set[Atom] = set()
        reached: list[Record] = []
        stack = list(changed)
        while stack:
            atom = stack.pop()
            if atom in visited:
                continue
            visited.add(atom)
            record = self._anchor.peek(atom)
            if record is None:
                continue
            if atom not in sources:
                record.stale = True
            reached.append(record)
            stack.extend(record.dependents)
        # Queue only after marking, so listeners never see a half-invalidated graph.
        for record in reached:
            for listener in record.listeners:
                self._tracker.schedule(listener)
        logger.debug("Propagated %d change(s) to %d atom(s)", len(changed), len(reached))

    def flush_pending(self) -> None:
        """Call every queued listener once. A no-op when nothing is queued."""
        if self._flushing:
            return
        self._flushing = True
        try:
            while self._tracker.pending:
                self._tracker.pop_pending()()
        finally:
            self._flushing = False

    def subscribe(self, atom: Atom, callback: Callable[[], None]) -> Unsubscribe:
        """Call callback after any change that reaches atom.

        Reads atom first so its dependency edges exist. Returns a function
        that removes the listener; calling it again does nothing.
        """
        record = self._read_record(atom)
        listener = Listener(callback)
        record.listeners[listener] = None
        self._anchor.pin(atom)

        def unsubscribe() -> None:
            if not listener.active:
                return
            listener.active = False
            record.listeners.pop(listener, None)
            self._tracker.discard(listener)
            if not record.listeners:
                self._anchor.unpin(atom)

        return unsubscribe

    # ─── Inspection ──────────────────────────────────────────────────────

    def status(self, atom: Atom) -> Status | None:
        """Status of atom's record, or None if this store never touched it."""
        record = self._anchor.peek(atom)
        return record.status if record is not None else None

    def dependencies(self, atom: Atom) -> frozenset[Atom]:
        record = self._anchor.peek(atom)
        return frozenset(record.dependencies) if record is not None else frozenset()

    def dependents(self, atom: Atom) -> frozenset[Atom]:
        record = self._anchor.peek(atom)
        return frozenset(record.dependents) if record is not None else frozenset()

    def listener_count(self, atom: Atom) -> int:
        record = self._anchor.peek(atom)
        return len(record.listeners) if record is not None else 0

    def pending_count(self) -> int:
        """Number of listeners waiting for flush_pending(). Useful for testing."""
        return len(self._tracker.pending)

    def __repr__(self) -> str:
        return f"Store({len(self._anchor)} records, {len(self._anchor.pinned)} subscribed)"
