"""P and V operations and the device semaphore table."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

from pandos.asl import AslError, Semaphore
from pandos.pcb import Pcb
from pandos.processor import IL_DISK, IL_TERMINAL, KernelPanic
from pandos.scheduler import CONTROL_BLOCK, Control, Scheduler

DEVINTNUM = 5
DEVPERINT = 8
SEMAPHORES_NUM = (DEVINTNUM + 1) * DEVPERINT + 1

DEV_REG_START = 0x10000054
DEV_REG_SIZE = 0x10
TERM_TRANSM_COMMAND_OFFSET = 12


def passeren(scheduler: Scheduler, sem: Optional[Semaphore], p: Optional[Pcb]) -> Control:
    """P on sem for p: block p at zero, otherwise wake a waiter or decrement."""
    if sem is None or p is None:
        return Control.reschedule(scheduler.active)
    if sem.value == 0:
        if p.queue is not None:
            scheduler.dequeue(p)
        try:
            scheduler.asl.insert_blocked(sem, p)
        except AslError as exc:
            scheduler.panic("PASSEREN failed %s\n", exc)
        scheduler.softblock_count += 1
        return CONTROL_BLOCK
    t = scheduler.asl.remove_blocked(sem)
    if t is not None:
        scheduler.enqueue(t)
        scheduler.softblock_count -= 1
        return Control.reschedule(scheduler.active)
    sem.value -= 1
    return Control.reschedule(scheduler.active)


def verhogen(scheduler: Scheduler, sem: Optional[Semaphore]) -> Optional[Pcb]:
    """V on sem: block the caller at one, otherwise wake a waiter or increment.

    Returns the process woken up, the active process after an increment,
    or None when the caller was blocked.
    """
    if sem is None:
        return None
    if sem.value == 1:
        active = scheduler.active
        if active is not None and active.sem_add is None:
            if active.queue is not None:
                scheduler.dequeue(active)
            scheduler.softblock_count += 1
            try:
                scheduler.asl.insert_blocked(sem, active)
            except AslError:
                scheduler.panic("VERHOGEN failed\n")
        return None
    p = scheduler.asl.remove_blocked(sem)
    if p is not None:
        scheduler.softblock_count -= 1
        scheduler.enqueue(p)
        return p
    sem.value += 1
    return scheduler.active


@dataclass
class IoDevice:
    """The semaphore and interrupt line behind a device command register."""

    semaphore: Semaphore
    interrupt_line: int


class DeviceSemaphores:
    """One semaphore per device (two per terminal) plus the interval timer."""

    def __init__(self) -> None:
        self._sems = [Semaphore() for _ in range(SEMAPHORES_NUM)]

    def reset(self) -> None:
        """Set every semaphore back to zero."""
        for sem in self._sems:
            sem.value = 0

    def get(self, line: int, device: int, is_write: bool = False) -> Semaphore:
        """The semaphore of a device; terminals have a read and a write one."""
        if line > IL_TERMINAL or line < IL_DISK:
            raise KernelPanic("Semaphore not found\n")
        if not 0 <= device < DEVPERINT:
            raise ValueError(f"device number {device} out of range")
        index = (line - IL_DISK) * DEVPERINT
        if line == IL_TERMINAL:
            index += 2 * device + (1 if is_write else 0)
        else:
            index += device
        return self._sems[index]

    def timer(self) -> Semaphore:
        """The pseudo-clock semaphore."""
        return self._sems[SEMAPHORES_NUM - 1]

    def __len__(self) -> int:
        return len(self._sems)

    def __iter__(self) -> Iterator[Semaphore]:
        return iter(self._sems)


def is_in_line(device: int, line: int) -> bool:
    """True when a device register number falls at or below the given line."""
    if line == IL_TERMINAL:
        line *= 2
    return device < (line + 1 - IL_DISK) * DEVPERINT


def get_iodev(semaphores: DeviceSemaphores, cmd_addr: int) -> IoDevice:
    """Find the semaphore and interrupt line for a device command address."""
    if cmd_addr < DEV_REG_START:
        raise KernelPanic("Semaphore not found\n")
    dev_n = (cmd_addr - DEV_REG_START) // DEV_REG_SIZE
    line = next(
        (il for il in range(IL_DISK, IL_TERMINAL + 1) if is_in_line(dev_n, il)), -1
    )
    base = DEV_REG_SIZE * dev_n + DEV_REG_START
    is_write = cmd_addr == base + TERM_TRANSM_COMMAND_OFFSET
    return IoDevice(semaphores.get(line, dev_n % DEVPERINT, is_write), line)