"""Active semaphore list: processes blocked on semaphores."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pandos.pcb import MAX_PROC, Pcb, ProcQueue


@dataclass(eq=False)
class Semaphore:
    """A semaphore cell; its identity is its key in the ASL."""

    value: int = 0


class AslError(Exception):
    """A process could not be blocked on a semaphore."""


class AlreadyBlockedError(AslError):
    """The process is already blocked on some semaphore."""


class AslFullError(AslError):
    """No free semaphore descriptor is left."""


class ActiveSemaphoreList:
    """Maps semaphores to the queues of processes blocked on them."""

    def __init__(self, capacity: int = MAX_PROC) -> None:
        self.capacity = capacity
        self._active: dict[Semaphore, ProcQueue] = {}

    def insert_blocked(self, sem: Semaphore, p: Pcb) -> None:
        """Block p at the tail of the queue of sem."""
        if sem is None:
            raise AslError("no semaphore given")
        if p is None:
            raise AslError("no process given")
        if p.sem_add is not None:
            raise AlreadyBlockedError("process is already blocked")
        queue = self._active.get(sem)
        if queue is None:
            if len(self._active) >= self.capacity:
                raise AslFullError("no free semaphore descriptor")
            queue = self._active[sem] = ProcQueue()
        queue.insert(p)
        p.sem_add = sem

    def out_blocked(self, p: Optional[Pcb]) -> Optional[Pcb]:
        """Unblock p from its semaphore; None when p is not blocked."""
        if p is None or p.sem_add is None:
            return None
        sem = p.sem_add
        queue = self._active.get(sem)
        if queue is None or p not in queue:
            return None
        queue.out(p)
        p.sem_add = None
        if queue.is_empty():
            del self._active[sem]
        return p

    def head_blocked(self, sem: Semaphore) -> Optional[Pcb]:
        """First process blocked on sem, or None."""
        queue = self._active.get(sem) if sem is not None else None
        return None if queue is None else queue.head()

    def remove_blocked(self, sem: Semaphore) -> Optional[Pcb]:
        """Unblock and return the first process blocked on sem."""
        return self.out_blocked(self.head_blocked(sem))

    def blocked_on(self, sem: Semaphore) -> list:
        """Processes blocked on sem, in order."""
        queue = self._active.get(sem)
        return [] if queue is None else list(queue)

    def __contains__(self, sem: object) -> bool:
        return sem in self._active

    def __len__(self) -> int:
        return len(self._active)