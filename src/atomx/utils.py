"""Utility atoms built on the core store.

These are ordinary atoms; the store has no special knowledge of them.
Resettable atoms treat the RESET sentinel as "back to the initial state"
rather than as a value to store.
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from atomx.atom import RESET, Atom, Getter, PrimitiveAtom, ReadonlyAtom, Setter, WritableAtom
from atomx.errors import AtomPending
from atomx.result import Errored, Pending, Settled

T = TypeVar("T")
U = TypeVar("U")

_EMPTY = object()


def atom_with_reset(initial: T, *, label: str | None = None) -> WritableAtom[T]:
    """A settable atom that returns to ``initial`` when written RESET.

    Usage:
        count = atom_with_reset(0)
        store.write(count, 5)
        store.write(count, RESET)
        store.get(count)  # 0
    """

    def write(get: Getter, set: Setter, update: Any) -> None:
        if update is RESET:
            set(cell, initial)
        elif callable(update):
            set(cell, update(get(cell)))
        else:
            set(cell, update)

    cell: WritableAtom[T] = WritableAtom(None, write, initial=initial, label=label)
    return cell


def atom_with_default(get_default: Callable[[Getter], T], *, label: str | None = None) -> WritableAtom[T]:
    """A writable atom that is derived until written, and derived again after RESET.

    Usage:
        base = atom(1)
        value = atom_with_default(lambda get: get(base) * 10)
        store.get(value)          # 10
        store.write(value, 3)     # overrides the default
        store.write(value, RESET) # follows base again
    """
    overwritten = PrimitiveAtom(_EMPTY, label=f"{label}.overwritten" if label else None)

    def read(get: Getter) -> T:
        value = get(overwritten)
        if value is _EMPTY:
            return get_default(get)
        return value

    def write(get: Getter, set: Setter, update: Any) -> None:
        if update is RESET:
            set(overwritten, _EMPTY)
            return
        value = update(get(cell)) if callable(update) else update
        # Wrapped so a callable value is stored, not applied.
        set(overwritten, lambda _: value)

    cell: WritableAtom[T] = WritableAtom(read, write, label=label)
    return cell


def loadable(source: Atom) -> ReadonlyAtom:
    """Expose source's state as data: a Settled, Pending or Errored value.

    A loadable atom never suspends or raises, so readers can render a
    loading or error state themselves.
    """

    def read(get: Getter):
        try:
            return Settled(get(source))
        except AtomPending as pending:
            return Pending(pending.future)
        except Exception as exc:
            return Errored(exc)

    label = f"loadable({source.label})" if source.label else None
    return ReadonlyAtom(read, label=label)


def select_atom(source: Atom, selector: Callable[[Any], U], *, label: str | None = None) -> ReadonlyAtom[U]:
    """A read-only atom holding ``selector(value of source)``."""
    return ReadonlyAtom(lambda get: selector(get(source)), label=label)
