"""atomx: atom-based reactive state for Python."""

from importlib.metadata import version as _version

__version__ = _version("atomx")

from atomx.atom import RESET, Atom, PrimitiveAtom, ReadonlyAtom, WritableAtom, atom, derived, is_writable
from atomx.errors import AtomError, AtomPending, CyclicDependency, NotWritable, PendingDependency
from atomx.result import Errored, Pending, Result, Settled, Status
from atomx.store import Store
from atomx.action import action, transaction
from atomx.reaction import Reaction, autorun, reaction
# textual NOT auto-imported — opt-in only

__all__ = [
    "Atom",
    "PrimitiveAtom",
    "ReadonlyAtom",
    "WritableAtom",
    "atom",
    "derived",
    "is_writable",
    "RESET",
    "Store",
    "Result",
    "Settled",
    "Pending",
    "Errored",
    "Status",
    "AtomError",
    "AtomPending",
    "CyclicDependency",
    "NotWritable",
    "PendingDependency",
    "action",
    "transaction",
    "Reaction",
    "autorun",
    "reaction",
]
