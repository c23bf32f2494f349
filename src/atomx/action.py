"""Actions and transactions — batched writes.

Wrapping writes in an @action or `with transaction()` defers propagation
until the outermost scope exits. Listeners see every change at once, never
an intermediate state where some atoms are updated and others are not.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, ParamSpec, TypeVar

if TYPE_CHECKING:
    from atomx.store import Store

P = ParamSpec("P")
R = TypeVar("R")


def action(store: Store) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator: batch all writes to store made inside the function.

    Listeners only fire after the function returns, not during.

    Usage:
        first = atom("Alice")
        last = atom("Smith")

        @action(store)
        def rename(a, b):
            store.write(first, a)
            store.write(last, b)
            # listeners see both changes at once
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with store.batch():
                return fn(*args, **kwargs)

        return wrapper

    return decorator


@contextmanager
def transaction(store: Store):
    """Context manager for batching writes.

    Usage:
        with transaction(store):
            store.write(a, 1)
            store.write(b, 2)
            # listeners fire here, after both are set
    """
    with store.batch():
        yield
