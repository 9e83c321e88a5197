"""Process scheduling, process lifetime and the pass up or die policy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NoReturn, Optional

from pandos.asl import ActiveSemaphoreList
from pandos.fmt import format_message
from pandos.pcb import (
    MAX_PROC,
    NULL_PID,
    Pcb,
    PcbTable,
    ProcessState,
    ProcQueue,
    out_child,
    remove_child,
)
from pandos.processor import (
    IT_INTERVAL,
    PLT_INTERVAL,
    Machine,
    il_on_all,
    interrupts_on_nucleus,
    interrupts_on_process,
    kernel_mode_on_nucleus,
    local_timer_on,
)

PID_INDEX_BITS = 8
_PID_INDEX_MASK = (1 << PID_INDEX_BITS) - 1
_PID_RECYCLE_LIMIT = (1 << (31 - PID_INDEX_BITS)) - 1

DEFAULT_RAMTOP = 0x20020000


def make_pid(index: int, recycle: int) -> int:
    """Build a non-null pid from a table slot and a creation counter."""
    if not 0 <= index <= _PID_INDEX_MASK:
        raise ValueError(f"pcb index {index} out of range")
    if recycle < 0:
        raise ValueError("recycle counter must be non-negative")
    return (((recycle % _PID_RECYCLE_LIMIT) + 1) << PID_INDEX_BITS) | index


def mask_pid_id(pid: int) -> int:
    """The table slot encoded in a pid."""
    return pid & _PID_INDEX_MASK


@dataclass(frozen=True)
class Control:
    """What the scheduler should do once the kernel is done with an event."""

    pcb: Optional[Pcb] = None
    enqueue: bool = False

    @classmethod
    def preserve(cls, pcb: Optional[Pcb]) -> "Control":
        """Hand the processor straight back to pcb."""
        return cls(pcb, False)

    @classmethod
    def reschedule(cls, pcb: Optional[Pcb]) -> "Control":
        """Put pcb back on its ready queue and pick the next process."""
        return cls(pcb, True)


CONTROL_BLOCK = Control(None, False)


@dataclass
class Context:
    """A minimal processor context: stack pointer, status and program counter."""

    stack_ptr: int = 0
    status: int = 0
    pc: int = 0


@dataclass(eq=False)
class SupportStruct:
    """Per-process support level exception handlers and saved states."""

    asid: int = 0
    except_state: list = field(default_factory=lambda: [ProcessState(), ProcessState()])
    except_context: list = field(default_factory=lambda: [Context(), Context()])


class KillError(Exception):
    """A process could not be terminated."""


class Scheduler:
    """Ready queues, process bookkeeping and processor hand-over."""

    def __init__(self, machine: Optional[Machine] = None, max_proc: int = MAX_PROC) -> None:
        self.machine = machine if machine is not None else Machine()
        self.max_proc = max_proc
        self.ramtop = DEFAULT_RAMTOP
        self.reset()

    def reset(self) -> None:
        """Empty every queue and table and restart the timers."""
        self.pcbs = PcbTable(self.max_proc)
        self.asl = ActiveSemaphoreList(self.max_proc)
        self.process_count = 0
        self.softblock_count = 0
        self.ready_hi = ProcQueue()
        self.ready_lo = ProcQueue()
        self.active: Optional[Pcb] = None
        self.yield_process: Optional[Pcb] = None
        self.start_tod = self.machine.store_tod()
        self.recycle_count = 0
        self.reset_timer()
        self.reset_local_timer()

    def reset_timer(self) -> None:
        self.machine.load_interval_timer(IT_INTERVAL)

    def reset_local_timer(self) -> None:
        self.machine.load_local_timer(PLT_INTERVAL)

    def boot(self, init_pc: int) -> Pcb:
        """Reset everything and create the first process, starting at init_pc."""
        self.reset()
        p = self.spawn(False)
        if p is None:
            self.panic("Cannot create the first process")
        p.state.reg_sp = self.ramtop
        p.state.pc_epc = init_pc
        p.state.reg_t9 = init_pc
        p.state.status = kernel_mode_on_nucleus(interrupts_on_process(p.state.status))
        return p

    def queue_for(self, p: Pcb) -> ProcQueue:
        """The ready queue matching the priority of p."""
        return self.ready_hi if p.prio else self.ready_lo

    def enqueue(self, p: Optional[Pcb]) -> None:
        if p is None:
            return
        self.queue_for(p).insert(p)

    def dequeue(self, p: Optional[Pcb]) -> Optional[Pcb]:
        if p is None:
            return None
        return self.queue_for(p).out(p)

    def find_process(self, pid: int) -> Optional[Pcb]:
        """The live process with this pid, or None."""
        index = mask_pid_id(pid)
        if not 0 <= index < len(self.pcbs) or self.pcbs[index].pid != pid:
            return None
        return self.pcbs[index]

    def spawn(self, priority: bool) -> Optional[Pcb]:
        """Create a ready process; None when priority is not a bool or no pcb is free."""
        if not isinstance(priority, bool):
            return None
        p = self.pcbs.alloc()
        if p is None:
            return None
        self.process_count += 1
        p.pid = make_pid(self.pcbs.index_of(p), self.recycle_count)
        self.recycle_count += 1
        p.prio = priority
        self.enqueue(p)
        return p

    def kill_process(self, p: Optional[Pcb]) -> None:
        """Terminate p alone, detaching it from its parent and any queue."""
        if p is None:
            raise KillError("no process given")
        if p.parent is not None and out_child(p) is not p:
            raise KillError("process could not be detached from its parent")
        self.process_count -= 1
        if p.queue is not None:
            if p.sem_add is not None and self.asl.out_blocked(p) is p:
                self.softblock_count -= 1
            else:
                self.dequeue(p)
        self.pcbs.free(p)

    def kill_progeny(self, p: Optional[Pcb]) -> None:
        """Terminate p and all of its descendants."""
        while (child := remove_child(p)) is not None:
            self.kill_progeny(child)
        self.kill_process(p)

    def schedule(self, pcb: Optional[Pcb] = None, enqueue: bool = False) -> None:
        """Pick the next process and give it the processor."""
        if enqueue and pcb is not None:
            self.enqueue(pcb)

        if pcb is not None and not enqueue:
            self.active = pcb
        elif not self.ready_hi.is_empty():
            self.active = self.ready_hi.remove()
        elif not self.ready_lo.is_empty():
            self.active = self.ready_lo.remove()
        elif self.yield_process is not None:
            self.active = self.yield_process
            self.yield_process = None
        else:
            self._wait_or_die()

        if self.yield_process is not None:
            self.queue_for(self.yield_process).insert(self.yield_process)
            self.yield_process = None

        if self.active is not None:
            self._takeover()

    def _wait_or_die(self) -> None:
        if not self.process_count:
            self.machine.halt()
        elif self.softblock_count:
            self._wait()
        else:
            self.panic("Deadlock detected\n")

    def _wait(self) -> None:
        """Idle with interrupts on until a device or timer wakes the kernel."""
        self.active = None
        self.reset_timer()
        self.machine.status = il_on_all(interrupts_on_nucleus(self.machine.status))
        self.machine.wait()

    def _takeover(self) -> None:
        state = self.active.state
        state.status = interrupts_on_process(state.status)
        self.reset_local_timer()
        if self.active.prio:
            state.status = local_timer_on(state.status)
        self.start_tod = self.machine.store_tod()
        self.machine.load_state(state)

    def panic(self, fmt: str, *args: object) -> NoReturn:
        """Stop the kernel with a formatted message."""
        self.machine.panic(format_message(fmt, *args))
        raise AssertionError("machine did not stop on panic")

    def pass_up_or_die(self, kind: int, saved_state: Optional[ProcessState] = None) -> Control:
        """Hand an exception to the support level, or kill the process tree."""
        p = self.active
        if p is None:
            return CONTROL_BLOCK
        if p.support is not None:
            state = saved_state if saved_state is not None else p.state
            p.support.except_state[kind] = state.copy()
            self.machine.load_context(p.support.except_context[kind])
        else:
            self.kill_progeny(p)
        return CONTROL_BLOCK