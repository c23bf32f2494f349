"""Textual integration for atomx. Opt-in — requires textual.

Binds widget effects to atoms: each binding subscribes to an atom, reads
it when notified, applies the effect, then flushes the store's pending
notifications once the effect has committed. Pending atoms are skipped
until they settle; error states go to on_error.

Guard + NoMatches + thread-marshal are enforced here, not at callsites,
so core atomx stays unaware of Textual.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable

from textual.css.query import NoMatches

from atomx.atom import Atom, Getter, ReadonlyAtom, is_writable
from atomx.errors import NotWritable
from atomx.reaction import Reaction, _as_atom
from atomx.store import Store

logger = logging.getLogger("atomx.textual")

# Module-owned pause state — keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend bindings during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


class AppReaction(Reaction):
    """Reaction that only runs while its app is safe to query.

    A skipped notification leaves the atom stale with its dependencies
    intact, so the next notification after the pause still arrives.
    """

    __slots__ = ("_app", "_main")

    def __init__(self, app, store: Store, atom: Atom, effect_fn=None, *, on_error=None) -> None:
        super().__init__(store, atom, effect_fn, on_error=on_error)
        self._app = app
        self._main = threading.get_ident()

    def start(self, *, fire_immediately: bool = True) -> AppReaction:
        """Subscribe; the first run goes through the same guard as later ones.

        An autorun learns its dependencies by running, so one started while
        the app is unsafe subscribes to nothing and stays idle.
        """
        if self._effect_fn is None and not is_safe(self._app):
            logger.debug("Not starting %r: app is not safe to query", self)
            return self
        if not fire_immediately:
            super().start(fire_immediately=False)
            return self
        self._unsubscribe = self._store.subscribe(self._atom, self._notify)
        self._notify()
        return self

    def _notify(self) -> None:
        if not is_safe(self._app):
            logger.debug("Skipping %r: app is not safe to query", self)
            return
        if threading.get_ident() != self._main:
            self._app.call_from_thread(self._commit)
        else:
            self._commit()

    def _commit(self) -> None:
        try:
            self._run()
        except NoMatches as exc:
            logger.debug("Ignoring %r in %r", exc, self)
        self._store.flush_pending()


def reaction(
    app,
    store: Store,
    source: Atom | Callable[[Getter], Any],
    effect_fn: Callable[[Any], None],
    *,
    fire_immediately: bool = False,
    on_error: Callable[[BaseException], None] | None = None,
) -> AppReaction:
    """reaction() that safely bridges an atom to Textual widgets."""
    r = AppReaction(app, store, _as_atom(source), effect_fn, on_error=on_error)
    return r.start(fire_immediately=fire_immediately)


def autorun(app, store: Store, fn: Callable[[Getter], None]) -> AppReaction:
    """autorun() that safely bridges to Textual widgets.

    NoMatches raised by fn is stored as the atom's error and swallowed
    when the binding reads it; other errors propagate.
    """

    def _on_error(exc: BaseException) -> None:
        if not isinstance(exc, NoMatches):
            raise exc

    return AppReaction(app, store, ReadonlyAtom(fn), on_error=_on_error).start()


def setter(store: Store, atom: Atom) -> Callable[[Any], Any]:
    """Return a callable that writes updates to atom.

    Raises NotWritable when called for a read-only atom.
    """

    def _set(update: Any):
        if not is_writable(atom):
            raise NotWritable(atom)
        return store.write(atom, update)

    return _set
