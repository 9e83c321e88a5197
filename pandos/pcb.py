"""Process control blocks, process queues and process trees."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

MAX_PROC = 20
NULL_PID = 0
STATE_GPR_LEN = 29
STATUS_UNINSTALLED = 0


class _Register:
    """Named alias for one general purpose register of a ProcessState."""

    def __init__(self, index: int) -> None:
        self.index = index

    def __get__(self, obj: Optional["ProcessState"], owner: type) -> Any:
        if obj is None:
            return self
        return obj.gpr[self.index]

    def __set__(self, obj: "ProcessState", value: int) -> None:
        obj.gpr[self.index] = value


@dataclass
class ProcessState:
    """Saved processor state of a process."""

    entry_hi: int = 0
    cause: int = 0
    status: int = STATUS_UNINSTALLED
    pc_epc: int = 0
    hi: int = 0
    lo: int = 0
    gpr: list = field(default_factory=lambda: [0] * STATE_GPR_LEN)

    reg_at = _Register(0)
    reg_v0 = _Register(1)
    reg_v1 = _Register(2)
    reg_a0 = _Register(3)
    reg_a1 = _Register(4)
    reg_a2 = _Register(5)
    reg_a3 = _Register(6)
    reg_t9 = _Register(24)
    reg_gp = _Register(25)
    reg_sp = _Register(26)
    reg_fp = _Register(27)
    reg_ra = _Register(28)

    def reset(self) -> None:
        """Clear every register."""
        self.entry_hi = 0
        self.cause = 0
        self.status = STATUS_UNINSTALLED
        self.pc_epc = 0
        self.hi = 0
        self.lo = 0
        self.gpr = [0] * STATE_GPR_LEN

    def copy(self) -> "ProcessState":
        """Return an independent copy of this state."""
        return ProcessState(
            entry_hi=self.entry_hi,
            cause=self.cause,
            status=self.status,
            pc_epc=self.pc_epc,
            hi=self.hi,
            lo=self.lo,
            gpr=list(self.gpr),
        )


@dataclass(eq=False)
class Pcb:
    """A process control block; identity is the process."""

    slot: int = 0
    queue: Optional["ProcQueue"] = field(default=None, repr=False)
    parent: Optional["Pcb"] = field(default=None, repr=False)
    children: list = field(default_factory=list, repr=False)
    time: int = 0
    sem_add: Any = field(default=None, repr=False)
    state: ProcessState = field(default_factory=ProcessState, repr=False)
    support: Any = field(default=None, repr=False)
    prio: bool = False
    pid: int = NULL_PID


def _null_pcb(p: Pcb) -> Pcb:
    p.queue = None
    p.children = []
    p.parent = None
    p.time = 0
    p.sem_add = None
    p.state.reset()
    p.support = None
    p.prio = False
    p.pid = NULL_PID
    return p


class ProcQueue:
    """FIFO queue of process control blocks; a pcb sits in at most one queue."""

    def __init__(self) -> None:
        self._items: list[Pcb] = []

    def _discard(self, p: Pcb) -> None:
        self._items.remove(p)
        p.queue = None

    def _push_front(self, p: Pcb) -> None:
        if p.queue is not None:
            p.queue._discard(p)
        self._items.insert(0, p)
        p.queue = self

    def insert(self, p: Pcb) -> None:
        """Append p at the tail, taking it out of any queue it was in."""
        if p is None:
            return
        if p.queue is not None:
            p.queue._discard(p)
        self._items.append(p)
        p.queue = self

    def head(self) -> Optional[Pcb]:
        """Return the first pcb without removing it, or None."""
        return self._items[0] if self._items else None

    def remove(self) -> Optional[Pcb]:
        """Remove and return the first pcb, or None when empty."""
        first = self.head()
        return None if first is None else self.out(first)

    def out(self, p: Optional[Pcb]) -> Optional[Pcb]:
        """Remove p from this queue; None when p is not in it."""
        if p is None or p.queue is not self:
            return None
        self._discard(p)
        return p

    def is_empty(self) -> bool:
        return not self._items

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, p: object) -> bool:
        return isinstance(p, Pcb) and p.queue is self

    def __iter__(self) -> Iterator[Pcb]:
        return iter(list(self._items))


class PcbTable:
    """Fixed pool of pcbs with a free list."""

    def __init__(self, size: int = MAX_PROC) -> None:
        self._table = [Pcb(slot=i) for i in range(size)]
        self._free = ProcQueue()
        for p in self._table:
            self._free._push_front(p)
            p.pid = NULL_PID

    def alloc(self) -> Optional[Pcb]:
        """Take a pcb from the free list and clear it; None if none is free."""
        first = self._free.head()
        if first is None:
            return None
        self._free._discard(first)
        return _null_pcb(first)

    def free(self, p: Optional[Pcb]) -> None:
        """Return p to the free list, removing it from any queue."""
        if p is None or p in self._free:
            return
        p.pid = NULL_PID
        if p.queue is not None:
            p.queue._discard(p)
        self._free._push_front(p)

    def index_of(self, p: Pcb) -> int:
        """Return the slot of p in this table."""
        if 0 <= p.slot < len(self._table) and self._table[p.slot] is p:
            return p.slot
        raise ValueError("pcb does not belong to this table")

    def __getitem__(self, index: int) -> Pcb:
        return self._table[index]

    def __len__(self) -> int:
        return len(self._table)


def empty_child(p: Optional[Pcb]) -> bool:
    """True when p has no children."""
    return p is None or not p.children


def insert_child(parent: Optional[Pcb], p: Optional[Pcb]) -> None:
    """Make p the last child of parent, unless p already has a parent."""
    if parent is None or p is None or p.parent is not None or p in parent.children:
        return
    p.parent = parent
    parent.children.append(p)


def remove_child(p: Optional[Pcb]) -> Optional[Pcb]:
    """Detach and return the first child of p, or None."""
    if p is None or not p.children:
        return None
    return out_child(p.children[0])


def out_child(p: Optional[Pcb]) -> Optional[Pcb]:
    """Detach p from its parent; None when p has no parent."""
    if p is None or p.parent is None or p not in p.parent.children:
        return None
    p.parent.children.remove(p)
    p.parent = None
    return p