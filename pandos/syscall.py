"""The kernel system call services and their dispatcher."""

from __future__ import annotations

from enum import IntEnum
from typing import Callable, Optional

from pandos.pcb import MAX_PROC, NULL_PID, Pcb, insert_child
from pandos.processor import (
    GENERALEXCEPT,
    Machine,
    cause_clean,
    cause_reserved_instruction,
    il_on,
    il_on_all,
    is_user_mode,
)
from pandos.scheduler import CONTROL_BLOCK, Control, KillError, Scheduler
from pandos.semaphores import DeviceSemaphores, get_iodev, passeren, verhogen

PROCESS_PRIO_LOW = 0
PROCESS_PRIO_HIGH = 1


class Syscall(IntEnum):
    """Numbers of the kernel services, passed in register a0."""

    CREATEPROCESS = -1
    TERMPROCESS = -2
    PASSEREN = -3
    VERHOGEN = -4
    DOIO = -5
    GETTIME = -6
    CLOCKWAIT = -7
    GETSUPPORTPTR = -8
    GETPROCESSID = -9
    YIELD = -10


class Kernel:
    """The nucleus: scheduler, device semaphores and system call services.

    Arguments are read from registers a1 to a3 of the active process and
    results are left in its register v0.
    """

    def __init__(self, machine: Optional[Machine] = None, max_proc: int = MAX_PROC) -> None:
        self.scheduler = Scheduler(machine, max_proc)
        self.machine = self.scheduler.machine
        self.semaphores = DeviceSemaphores()
        self.device_memory: dict[int, int] = {}
        self._services: dict[Syscall, Callable[[], Control]] = {
            Syscall.CREATEPROCESS: self._create_process,
            Syscall.TERMPROCESS: self._terminate_process,
            Syscall.PASSEREN: self._passeren,
            Syscall.VERHOGEN: self._verhogen,
            Syscall.DOIO: self._do_io,
            Syscall.GETTIME: self._get_cpu_time,
            Syscall.CLOCKWAIT: self._wait_for_clock,
            Syscall.GETSUPPORTPTR: self._get_support_data,
            Syscall.GETPROCESSID: self._get_process_id,
            Syscall.YIELD: self._yield,
        }

    @property
    def active(self) -> Optional[Pcb]:
        """The process currently owning the processor."""
        return self.scheduler.active

    def boot(self, init_pc: int) -> Pcb:
        """Reset the kernel and create the first process at init_pc."""
        self.semaphores.reset()
        self.device_memory.clear()
        return self.scheduler.boot(init_pc)

    def write_device(self, cmd_addr: int, value: int) -> None:
        """Store a command word into a device register."""
        self.device_memory[cmd_addr] = value

    def syscall_handler(self) -> Control:
        """Run the service requested by the active process."""
        p = self.scheduler.active
        if p is None:
            self.scheduler.panic("Syscall recieved while active_process was NULL")
        number = p.state.reg_a0
        if number <= 0 and is_user_mode(p.state.status):
            p.state.cause = cause_reserved_instruction(cause_clean(p.state.cause))
            return self._pass_up()
        try:
            service = self._services[Syscall(number)]
        except ValueError:
            return self._pass_up()
        return service()

    def _pass_up(self) -> Control:
        return self.scheduler.pass_up_or_die(GENERALEXCEPT)

    def _create_process(self) -> Control:
        parent = self.scheduler.active
        state = parent.state.reg_a1
        prio = parent.state.reg_a2
        support = parent.state.reg_a3
        if prio not in (PROCESS_PRIO_LOW, PROCESS_PRIO_HIGH) or state is None:
            return self._pass_up()
        child = self.scheduler.spawn(bool(prio))
        if child is None:
            parent.state.reg_v0 = NULL_PID
        else:
            child.support = support
            child.state = state.copy()
            insert_child(parent, child)
            parent.state.reg_v0 = child.pid
        return Control.preserve(parent)

    def _terminate_process(self) -> Control:
        active = self.scheduler.active
        pid = active.state.reg_a1
        if not pid:
            return self._pass_up()
        target = self.scheduler.find_process(pid)
        if target is None:
            return self._pass_up()
        try:
            self.scheduler.kill_progeny(target)
        except KillError:
            self.scheduler.panic("Kill progeny failed!")
        if active.pid == NULL_PID:
            return CONTROL_BLOCK
        return Control.reschedule(active)

    def _passeren(self) -> Control:
        active = self.scheduler.active
        sem = active.state.reg_a1
        if sem is None:
            return self._pass_up()
        return passeren(self.scheduler, sem, active)

    def _verhogen(self) -> Control:
        active = self.scheduler.active
        sem = active.state.reg_a1
        if sem is None:
            return self._pass_up()
        if verhogen(self.scheduler, sem) is None:
            return CONTROL_BLOCK
        return Control.reschedule(self.scheduler.active)

    def _do_io(self) -> Control:
        active = self.scheduler.active
        cmd_addr = active.state.reg_a1
        cmd_value = active.state.reg_a2
        if not cmd_addr:
            return self._pass_up()
        dev = get_iodev(self.semaphores, cmd_addr)
        if dev.semaphore is None or self.scheduler.asl.head_blocked(dev.semaphore) is not None:
            return self._pass_up()
        if dev.semaphore.value > 0:
            self.scheduler.panic("A device syncronization semaphore has a value > 0")
        ctrl = passeren(self.scheduler, dev.semaphore, active)
        if active.prio:
            active.state.status = il_on(active.state.status, dev.interrupt_line)
        else:
            active.state.status = il_on_all(active.state.status)
        self.write_device(cmd_addr, cmd_value)
        return ctrl

    def _get_cpu_time(self) -> Control:
        active = self.scheduler.active
        active.state.reg_v0 = active.time
        return Control.reschedule(active)

    def _wait_for_clock(self) -> Control:
        return passeren(self.scheduler, self.semaphores.timer(), self.scheduler.active)

    def _get_support_data(self) -> Control:
        active = self.scheduler.active
        active.state.reg_v0 = active.support
        return Control.reschedule(active)

    def _get_process_id(self) -> Control:
        active = self.scheduler.active
        if not active.state.reg_a1:
            active.state.reg_v0 = active.pid
        elif active.parent is not None:
            active.state.reg_v0 = active.parent.pid
        else:
            active.state.reg_v0 = 0
        return Control.reschedule(active)

    def _yield(self) -> Control:
        self.scheduler.yield_process = self.scheduler.active
        return CONTROL_BLOCK