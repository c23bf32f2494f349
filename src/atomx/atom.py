"""Atoms — identity-keyed cell definitions.

An atom holds no state. It describes how a cell is read and written; the
values live in whichever Store reads it, keyed by the atom's identity.
Two atoms built from the same functions are still two different cells.

Three variants:
- PrimitiveAtom: a settable value, starting at ``initial``.
- ReadonlyAtom: derived from other atoms by ``read(get)``.
- WritableAtom: derived, plus ``write(get, set, update)``.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Generic, TypeVar

from atomx.errors import AtomPending

T = TypeVar("T")

Getter = Callable[["Atom"], Any]
Setter = Callable[["Atom", Any], None]
ReadFn = Callable[[Getter], Any]
WriteFn = Callable[[Getter, Setter, Any], "Awaitable[None] | None"]


class _Reset:
    __slots__ = ()

    def __repr__(self) -> str:
        return "RESET"


# Passed as an update to mean "back to the initial state".
RESET = _Reset()


class Atom(Generic[T]):
    """Base descriptor. Hashed and compared by identity."""

    __slots__ = ("_initial", "_label", "__weakref__")

    def __init__(self, initial: T | None = None, *, label: str | None = None) -> None:
        self._initial = initial
        self._label = label

    @property
    def initial(self) -> T | None:
        return self._initial

    @property
    def label(self) -> str | None:
        return self._label

    def __repr__(self) -> str:
        name = self.label or f"0x{id(self):x}"
        return f"{type(self).__name__}({name})"


class PrimitiveAtom(Atom[T]):
    """A settable cell. Never recomputed; its value is whatever was last set."""

    __slots__ = ()

    def __init__(self, initial: T, *, label: str | None = None) -> None:
        super().__init__(initial, label=label)

    def write(self, get: Getter, set: Setter, update: Any) -> Awaitable[None] | None:
        """Set the next value. A callable update receives the current value."""
        if not callable(update):
            set(self, update)
            return None
        try:
            current = get(self)
        except AtomPending as pending:
            return self._deferred_update(pending.future, set, update)
        set(self, update(current))
        return None

    async def _deferred_update(self, future, set: Setter, update: Callable) -> None:
        set(self, update(await future))


class ReadonlyAtom(Atom[T]):
    """A derived cell computed from the atoms its read function gets.

    With no read function the atom reads its own value, which starts at
    ``initial`` and changes only when its write function sets it.
    """

    __slots__ = ("_read",)

    def __init__(
        self,
        read: ReadFn | None = None,
        *,
        initial: T | None = None,
        label: str | None = None,
    ) -> None:
        if label is None and read is not None:
            name = getattr(read, "__name__", None)
            if name and name != "<lambda>":
                label = name
        super().__init__(initial, label=label)
        self._read = read

    def read(self, get: Getter) -> Any:
        if self._read is None:
            return get(self)
        return self._read(get)


class WritableAtom(ReadonlyAtom[T]):
    """A derived cell that can also be written."""

    __slots__ = ("_write",)

    def __init__(
        self,
        read: ReadFn | None,
        write: WriteFn,
        *,
        initial: T | None = None,
        label: str | None = None,
    ) -> None:
        super().__init__(read, initial=initial, label=label)
        self._write = write

    def write(self, get: Getter, set: Setter, update: Any) -> Awaitable[None] | None:
        return self._write(get, set, update)


def is_writable(atom: Atom) -> bool:
    return isinstance(atom, (PrimitiveAtom, WritableAtom))


def atom(read_or_initial=None, write: WriteFn | None = None, *, label: str | None = None) -> Atom:
    """Create an atom.

    A callable first argument is a read function and makes a derived atom;
    anything else is the initial value of a primitive atom. Passing
    ``write`` makes the atom writable. To hold a function as a primitive
    value, construct PrimitiveAtom directly.

    Usage:
        price = atom(10)
        doubled = atom(lambda get: get(price) * 2)
        discount = atom(
            lambda get: get(price),
            lambda get, set, pct: set(price, get(price) * (100 - pct) // 100),
        )
    """
    if callable(read_or_initial):
        if write is None:
            return ReadonlyAtom(read_or_initial, label=label)
        return WritableAtom(read_or_initial, write, label=label)
    if write is None:
        return PrimitiveAtom(read_or_initial, label=label)
    return WritableAtom(None, write, initial=read_or_initial, label=label)


def derived(fn: ReadFn) -> ReadonlyAtom:
    """Decorator/factory to create a read-only atom from a read function.

    Usage:
        price = atom(10)

        @derived
        def doubled(get):
            return get(price) * 2
    """
    return ReadonlyAtom(fn)
