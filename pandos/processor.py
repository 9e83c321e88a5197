"""Simulated processor: status and cause bit helpers, clocks and control."""

from __future__ import annotations

from typing import Any, Optional

from pandos.pcb import ProcessState

_WORD_MASK = 0xFFFFFFFF

STATUS_IEc = 0x00000001
STATUS_KUc = 0x00000002
STATUS_IEp = 0x00000004
STATUS_KUp = 0x00000008
STATUS_IM_MASK = 0x0000FF00
STATUS_TE = 0x08000000

IL_IPI = 0
IL_CPUTIMER = 1
IL_TIMER = 2
IL_DISK = 3
IL_FLASH = 4
IL_ETHERNET = 5
IL_PRINTER = 6
IL_TERMINAL = 7

CAUSE_EXCCODE_MASK = 0x0000007C
CAUSESHIFT = 2
CLEAREXECCODE = 0xFFFFFF00
EXC_RI = 10

PGFAULTEXCEPT = 0
GENERALEXCEPT = 1
WORD_SIZE = 4

IT_INTERVAL = 100000
PLT_INTERVAL = 5000


def STATUS_IM(line: int) -> int:
    """Interrupt mask bit of a status word for an interrupt line."""
    return 1 << (line + 8)


def CAUSE_IP(line: int) -> int:
    """Interrupt pending bit of a cause word for an interrupt line."""
    return 1 << (line + 8)


class KernelPanic(Exception):
    """The kernel stopped on an unrecoverable error."""


class MachineHalted(Exception):
    """The machine was halted normally."""


class Machine:
    """The processor state the kernel drives: clocks, timers and loaded states."""

    def __init__(self) -> None:
        self.tod = 0
        self.timescale = 1
        self.interval_timer = 0
        self.local_timer = 0
        self.status = 0
        self.cause = 0
        self.current_state: Optional[ProcessState] = None
        self.waiting = False
        self.halted = False
        self.loads = 0

    def tick(self, amount: int = 1) -> int:
        """Advance the time of day and count down both timers."""
        if amount < 0:
            raise ValueError("time cannot run backwards")
        self.tod += amount
        self.interval_timer -= amount
        self.local_timer -= amount
        return self.tod

    def store_tod(self) -> int:
        """Read the time of day clock."""
        return self.tod

    def load_interval_timer(self, value: int) -> None:
        self.interval_timer = value

    def load_local_timer(self, value: int) -> None:
        self.local_timer = value * self.timescale

    def load_state(self, state: ProcessState) -> None:
        """Hand the processor to a saved state."""
        self.current_state = state.copy()
        self.waiting = False
        self.loads += 1

    def load_context(self, context: Any) -> None:
        """Hand the processor to a context of stack pointer, status and pc."""
        state = ProcessState(status=context.status, pc_epc=context.pc)
        state.reg_sp = context.stack_ptr
        state.reg_t9 = context.pc
        self.load_state(state)

    def halt(self) -> None:
        self.halted = True
        raise MachineHalted()

    def panic(self, message: str = "") -> None:
        raise KernelPanic(message)

    def wait(self) -> None:
        """Idle until the interval timer expires."""
        self.waiting = True
        self.current_state = None
        if self.interval_timer > 0:
            self.tick(self.interval_timer)


def is_user_mode(status: int) -> bool:
    """True when the previous kernel/user bit says user mode."""
    return bool(status & STATUS_KUp)


def interrupts_on_nucleus(status: int) -> int:
    return (status | STATUS_IEc) & _WORD_MASK


def interrupts_off_nucleus(status: int) -> int:
    return status & ~STATUS_IEc & _WORD_MASK


def interrupts_on_process(status: int) -> int:
    return (status | STATUS_IEp) & _WORD_MASK


def local_timer_toggle(status: int) -> int:
    return (status ^ STATUS_TE) & _WORD_MASK


def local_timer_on(status: int) -> int:
    return (status | STATUS_TE | STATUS_IM(IL_TIMER)) & _WORD_MASK


def local_timer_off(status: int) -> int:
    return status & ~(STATUS_TE | STATUS_IM(IL_TIMER)) & _WORD_MASK


def kernel_mode_on_nucleus(status: int) -> int:
    return status & ~STATUS_KUc & _WORD_MASK


def kernel_mode_off_nucleus(status: int) -> int:
    return (status | STATUS_KUc) & _WORD_MASK


def kernel_mode_on_process(status: int) -> int:
    return status & ~STATUS_KUp & _WORD_MASK


def il_on_all(status: int) -> int:
    return (status | STATUS_IM_MASK) & _WORD_MASK


def il_on(status: int, line: int) -> int:
    return (status | STATUS_IM(line)) & _WORD_MASK


def cause_clean(cause: int) -> int:
    return cause & CLEAREXECCODE


def cause_reserved_instruction(cause: int) -> int:
    return (cause | (EXC_RI << CAUSESHIFT)) & _WORD_MASK


def cause_exc_code(cause: int) -> int:
    return (cause & CAUSE_EXCCODE_MASK) >> CAUSESHIFT