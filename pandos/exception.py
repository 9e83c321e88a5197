"""Exception entry point: interrupts, traps and system calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pandos.pcb import Pcb, ProcessState
from pandos.processor import (
    CAUSE_IP,
    GENERALEXCEPT,
    IL_CPUTIMER,
    IL_DISK,
    IL_ETHERNET,
    IL_FLASH,
    IL_IPI,
    IL_PRINTER,
    IL_TERMINAL,
    IL_TIMER,
    PGFAULTEXCEPT,
    WORD_SIZE,
    cause_exc_code,
)
from pandos.scheduler import Control
from pandos.semaphores import DEVPERINT, verhogen
from pandos.syscall import Kernel

N_DEV_PER_IL = 8
TERMSTATMASK = 0xFF
DEV_STATUS_NOTINSTALLED = 0
DEV_STATUS_READY = 1
DEV_STATUS_TERMINAL_OK = 5
DEV_C_ACK = 1

EXC_INT = 0
EXC_TLB_CODES = (1, 2, 3)
EXC_SYS = 8

_WORD_MASK = 0xFFFFFFFF


def find_device_number(bitmap: int) -> int:
    """Number of the device flagged in an interrupt line bitmap (highest bit)."""
    device_n = 0
    val = bitmap & _WORD_MASK
    while val > 1 and device_n < N_DEV_PER_IL:
        device_n += 1
        val >>= 1
    return device_n


@dataclass(eq=False)
class DeviceRegister:
    """A device register; terminals view the same words as receiver and transmitter."""

    status: int = DEV_STATUS_NOTINSTALLED
    command: int = 0
    data0: int = 0
    data1: int = 0

    @property
    def recv_status(self) -> int:
        return self.status

    @recv_status.setter
    def recv_status(self, value: int) -> None:
        self.status = value

    @property
    def recv_command(self) -> int:
        return self.command

    @recv_command.setter
    def recv_command(self, value: int) -> None:
        self.command = value

    @property
    def transm_status(self) -> int:
        return self.data0

    @transm_status.setter
    def transm_status(self, value: int) -> None:
        self.data0 = value

    @property
    def transm_command(self) -> int:
        return self.data1

    @transm_command.setter
    def transm_command(self, value: int) -> None:
        self.data1 = value


class ExceptionHandler:
    """Dispatches every exception to the matching kernel handler, then schedules."""

    def __init__(self, kernel: Kernel) -> None:
        self.kernel = kernel
        self.scheduler = kernel.scheduler
        self.machine = kernel.machine
        lines = range(IL_DISK, IL_TERMINAL + 1)
        self.registers: dict[tuple[int, int], DeviceRegister] = {
            (line, dev): DeviceRegister() for line in lines for dev in range(DEVPERINT)
        }
        self.bitmaps: dict[int, int] = {line: 0 for line in lines}

    @staticmethod
    def _check(line: int, device: int) -> None:
        if not IL_DISK <= line <= IL_TERMINAL:
            raise ValueError(f"interrupt line {line} has no devices")
        if not 0 <= device < DEVPERINT:
            raise ValueError(f"device number {device} out of range")

    def set_device(self, line: int, device: int, register: DeviceRegister) -> None:
        """Install the register of a device."""
        self._check(line, device)
        self.registers[(line, device)] = register

    def raise_interrupt(self, line: int, device: int) -> int:
        """Flag a device as interrupting; return the matching cause word."""
        self._check(line, device)
        self.bitmaps[line] |= 1 << device
        return CAUSE_IP(line)

    def _clear_pending(self, line: int, device: int) -> None:
        self.bitmaps[line] &= ~(1 << device)

    def _return_status(self, p: Optional[Pcb], status: int) -> Control:
        active = self.scheduler.active
        if p is active:
            if active is None:
                self.scheduler.panic("No active process (Interrupt Generic)\n")
            active.state.reg_v0 = status
            return Control.reschedule(active)
        if p is None:
            self.scheduler.panic("No process to receive the device status\n")
        p.state.reg_v0 = status
        return Control.preserve(active)

    def _interrupt_ipi(self) -> Control:
        return Control.preserve(self.scheduler.active)

    def _interrupt_local_timer(self) -> Control:
        self.scheduler.reset_local_timer()
        return Control.reschedule(self.scheduler.active)

    def _interrupt_timer(self) -> Control:
        self.scheduler.reset_timer()
        timer = self.kernel.semaphores.timer()
        while timer.value != 1:
            verhogen(self.scheduler, timer)
        return Control.preserve(self.scheduler.active)

    def _interrupt_generic(self, cause: int) -> Control:
        il = next(
            (i for i in range(IL_DISK, IL_PRINTER + 1) if cause & CAUSE_IP(i)), IL_DISK
        )
        device = find_device_number(self.bitmaps[il])
        sem = self.kernel.semaphores.get(il, device, False)
        reg = self.registers[(il, device)]
        status = reg.status
        if status & TERMSTATMASK == DEV_STATUS_NOTINSTALLED:
            self.scheduler.panic("Device is not installed!\n")
        p = verhogen(self.scheduler, sem)
        ctrl = self._return_status(p, status)
        reg.command = DEV_C_ACK
        reg.status = DEV_STATUS_READY
        self._clear_pending(il, device)
        return ctrl

    def _interrupt_terminal(self) -> Control:
        device = find_device_number(self.bitmaps[IL_TERMINAL])
        reg = self.registers[(IL_TERMINAL, device)]
        semaphores = self.kernel.semaphores
        channels = (
            ("transm", semaphores.get(IL_TERMINAL, device, True)),
            ("recv", semaphores.get(IL_TERMINAL, device, False)),
        )
        for name, sem in channels:
            status = getattr(reg, f"{name}_status")
            if status & TERMSTATMASK == DEV_STATUS_NOTINSTALLED:
                self.scheduler.panic("Device is not installed!\n")
            if status & TERMSTATMASK != DEV_STATUS_TERMINAL_OK:
                continue
            p = verhogen(self.scheduler, sem)
            active = self.scheduler.active
            if p is None or p is active:
                if active is None:
                    self.scheduler.panic("No active process (Interrupt Terminal)\n")
                active.state.reg_v0 = status
                ctrl = Control.reschedule(active)
            else:
                p.state.reg_v0 = status
                ctrl = Control.preserve(active)
            setattr(reg, f"{name}_command", DEV_C_ACK)
            setattr(reg, f"{name}_status", DEV_STATUS_READY)
            if all(
                s & TERMSTATMASK != DEV_STATUS_TERMINAL_OK
                for s in (reg.transm_status, reg.recv_status)
            ):
                self._clear_pending(IL_TERMINAL, device)
            return ctrl
        self.scheduler.panic("Unexpected interrupt from terminal device %d\n", device)

    def interrupt_handler(self, cause: int) -> Control:
        """Serve the most urgent pending interrupt named in cause."""
        if cause & CAUSE_IP(IL_IPI):
            return self._interrupt_ipi()
        if cause & CAUSE_IP(IL_CPUTIMER):
            return self._interrupt_local_timer()
        if cause & CAUSE_IP(IL_TIMER):
            return self._interrupt_timer()
        generic = (
            CAUSE_IP(IL_DISK) | CAUSE_IP(IL_FLASH) | CAUSE_IP(IL_ETHERNET) | CAUSE_IP(IL_PRINTER)
        )
        if cause & generic:
            return self._interrupt_generic(cause)
        if cause & CAUSE_IP(IL_TERMINAL):
            return self._interrupt_terminal()
        return Control.reschedule(self.scheduler.active)

    def handle(self, cause: int, saved_state: Optional[ProcessState] = None) -> Control:
        """Handle one exception, then give the processor to the next process.

        When the exception is passed up to a support level handler the
        processor is already handed over and no scheduling takes place.
        """
        scheduler = self.scheduler
        self.machine.cause = cause
        active = scheduler.active
        if active is not None:
            active.time += self.machine.store_tod() - scheduler.start_tod
            if saved_state is not None:
                active.state = saved_state.copy()

        loads = self.machine.loads
        code = cause_exc_code(cause)
        if code == EXC_INT:
            ctrl = self.interrupt_handler(cause)
        elif code in EXC_TLB_CODES:
            ctrl = scheduler.pass_up_or_die(PGFAULTEXCEPT)
        elif code == EXC_SYS:
            if active is None:
                scheduler.panic("A syscall happened while active_process was NULL\n")
            scheduler.start_tod = self.machine.store_tod()
            ctrl = self.kernel.syscall_handler()
            if self.machine.loads != loads:
                return ctrl
            active.time += self.machine.store_tod() - scheduler.start_tod
            active.state.pc_epc += WORD_SIZE
            active.state.reg_t9 += WORD_SIZE
        else:
            ctrl = scheduler.pass_up_or_die(GENERALEXCEPT)

        if self.machine.loads != loads:
            return ctrl
        scheduler.schedule(ctrl.pcb, ctrl.enqueue)
        return ctrl