"""Reactions — side effects driven by atom changes.

A reaction is a store subscriber that re-reads its atom on every
notification. Two flavors:
- autorun(store, fn): runs fn(get) immediately and again whenever any atom
  it read changes.
- reaction(store, source, effect_fn): calls effect_fn with the source's new
  value, only when that value changes.

Pending values are skipped; the reaction runs again when they settle.
"""

from __future__ import annotations

from typing import Any, Callable

from atomx.atom import Atom, Getter, ReadonlyAtom
from atomx.result import Errored, Pending
from atomx.store import Store


class Reaction:
    """A subscription that re-reads its atom and runs an effect.

    Errors from the atom are raised out of the notifying write unless
    on_error is given.
    """

    __slots__ = (
        "_store",
        "_atom",
        "_effect_fn",
        "_on_error",
        "_last_value",
        "_initialized",
        "_unsubscribe",
        "_disposed",
    )

    def __init__(
        self,
        store: Store,
        atom: Atom,
        effect_fn: Callable[[Any], None] | None = None,
        *,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self._store = store
        self._atom = atom
        self._effect_fn = effect_fn
        self._on_error = on_error
        self._last_value = None
        self._initialized = False
        self._unsubscribe: Callable[[], None] | None = None
        self._disposed = False

    def start(self, *, fire_immediately: bool = True) -> Reaction:
        """Subscribe. Without fire_immediately the current value is recorded silently."""
        self._unsubscribe = self._store.subscribe(self._atom, self._notify)
        if fire_immediately:
            self._run()
        else:
            result = self._store.read(self._atom)
            if not isinstance(result, (Pending, Errored)):
                self._last_value = result.value
                self._initialized = True
        return self

    def _notify(self) -> None:
        self._run()

    def _run(self) -> None:
        if self._disposed:
            return
        result = self._store.read(self._atom)
        if isinstance(result, Pending):
            return
        if isinstance(result, Errored):
            if self._on_error is None:
                result.unwrap()
            self._on_error(result.error)
            return
        if self._effect_fn is None:
            return
        value = result.value
        if not self._initialized or value != self._last_value:
            self._last_value = value
            self._initialized = True
            self._effect_fn(value)

    def dispose(self) -> None:
        """Stop this reaction. Unsubscribes from its atom."""
        self._disposed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"Reaction({self._atom!r}, {state})"


def _as_atom(source: Atom | Callable[[Getter], Any]) -> Atom:
    return source if isinstance(source, Atom) else ReadonlyAtom(source)


def autorun(
    store: Store,
    fn: Callable[[Getter], None],
    *,
    on_error: Callable[[BaseException], None] | None = None,
) -> Reaction:
    """Run fn(get) immediately, then again whenever an atom it read changes.

    Returns the Reaction (call .dispose() to stop).

    Usage:
        counter = atom(0)
        log = []

        r = autorun(store, lambda get: log.append(get(counter)))
        # log == [0] — ran immediately

        store.write(counter, 1)
        # log == [0, 1] — re-ran because counter changed

        r.dispose()
        store.write(counter, 2)
        # log == [0, 1] — stopped
    """
    return Reaction(store, ReadonlyAtom(fn), on_error=on_error).start()


def reaction(
    store: Store,
    source: Atom | Callable[[Getter], Any],
    effect_fn: Callable[[Any], None],
    *,
    fire_immediately: bool = False,
    on_error: Callable[[BaseException], None] | None = None,
) -> Reaction:
    """Call effect_fn whenever the value of source changes.

    source is an atom or a read function. Unlike autorun, effect_fn only
    fires when the value differs from the last one it saw.

    Usage:
        first = atom("Alice")
        last = atom("Smith")

        effects = []
        r = reaction(
            store,
            lambda get: f"{get(first)} {get(last)}",
            effects.append,
        )
        # effects == [] — source was read, but the effect doesn't fire yet

        store.write(first, "Bob")
        # effects == ["Bob Smith"]
    """
    r = Reaction(store, _as_atom(source), effect_fn, on_error=on_error)
    return r.start(fire_immediately=fire_immediately)
