"""Tagged read results.

Store.read() never raises for pending or failed atoms. It returns one of
Settled, Pending or Errored, and the caller decides what to do. unwrap()
turns the result back into a value or an exception for callers that want
suspense-style control flow.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from atomx.errors import AtomPending

T = TypeVar("T")


class Status(enum.Enum):
    SETTLED = "settled"
    PENDING_READ = "pending-read"
    PENDING_WRITE = "pending-write"
    ERRORED = "errored"


@dataclass(frozen=True)
class Settled(Generic[T]):
    value: T

    status = Status.SETTLED

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Pending:
    """Value not known yet. ``write`` is True when a write is in flight."""

    future: asyncio.Future
    write: bool = False

    @property
    def status(self) -> Status:
        return Status.PENDING_WRITE if self.write else Status.PENDING_READ

    def unwrap(self):
        raise AtomPending(self.future, write=self.write)


@dataclass(frozen=True)
class Errored:
    error: BaseException

    status = Status.ERRORED

    def unwrap(self):
        raise self.error


Result = Union[Settled, Pending, Errored]
