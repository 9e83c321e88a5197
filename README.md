# pandos

`pandos` is a model of a small teaching kernel, written in plain Python.
It gives you the kernel's data structures and policies as ordinary objects,
so you can drive them from tests, notebooks or your own simulations:

- **process control blocks** (`pandos.pcb`): a fixed-size `PcbTable`, FIFO
  `ProcQueue`s, the saved `ProcessState` of each `Pcb`, and process trees
  (`insert_child`, `remove_child`, `out_child`, `empty_child`);
- **the active semaphore list** (`pandos.asl`): `ActiveSemaphoreList`
  keeps the processes blocked on each `Semaphore`, with a bounded number of
  descriptors;
- **formatted output** (`pandos.fmt`): a minimal `printf` with `%s %c %d %p
  %b %%` (`format_message`, `snprintf`, `itoa`, `binary`, `pow_int`) and a
  wrap-around `MemoryConsole`;
- **the processor** (`pandos.processor`): a simulated `Machine` with a
  time-of-day clock, interval and local timers, and helpers for the bits of
  the status and cause words;
- **scheduling** (`pandos.scheduler`): a `Scheduler` with a high and a low
  priority ready queue, process ids (`make_pid`, `mask_pid_id`),
  termination of whole process trees and pass-up-or-die to a
  `SupportStruct`;
- **semaphores and devices** (`pandos.semaphores`): `passeren`,
  `verhogen`, the per-device `DeviceSemaphores` and `get_iodev`, which maps a
  device command address to its semaphore and interrupt line;
- **system calls** (`pandos.syscall`): a `Kernel` that serves the
  `Syscall` numbers found in the registers of the active process;
- **exceptions and interrupts** (`pandos.exception`): an
  `ExceptionHandler` that routes interrupts, TLB traps, program traps and
  system calls and then hands the processor to the next process.

## Installing

```
pip install .
```

To run the tests as well:

```
pip install .[test]
pytest
```

## Process queues and trees

```python
from pandos.pcb import PcbTable, ProcQueue, insert_child, remove_child

table = PcbTable(20)
queue = ProcQueue()

first = table.alloc()
second = table.alloc()
queue.insert(first)
queue.insert(second)

assert queue.head() is first
assert queue.remove() is first
assert len(queue) == 1

insert_child(first, second)
assert remove_child(first) is second

table.free(first)
```

`PcbTable.alloc()` returns `None` once every block is in use. A pcb sits in
at most one queue: inserting it into a queue takes it out of the one it was
in.

## Blocking on semaphores

```python
from pandos.asl import ActiveSemaphoreList, Semaphore
from pandos.pcb import PcbTable

table = PcbTable(20)
asl = ActiveSemaphoreList(20)
sem = Semaphore()

p = table.alloc()
asl.insert_blocked(sem, p)
assert asl.head_blocked(sem) is p
assert asl.remove_blocked(sem) is p
assert sem not in asl
```

Blocking a process that already waits on a semaphore raises
`AlreadyBlockedError`; running out of descriptors raises `AslFullError`.
Both derive from `AslError`. A semaphore's descriptor is released as soon
as its last process is unblocked.

## Formatted output

```python
from pandos.fmt import MemoryConsole, format_message, snprintf

format_message("pid %d at %p", 3, 0x1F)   # 'pid 3 at 0x1f'
snprintf(5, "%d", 123456)                 # '1234'

console = MemoryConsole(lines=4, line_length=16)
console.printf("hello %s\n", "kernel")
print(console.text())
```

## Running a kernel

A `Kernel` ties together the simulated `Machine`, the `Scheduler` and the
device semaphores. `boot` creates the first process at the given program
counter and `scheduler.schedule()` gives it the processor. A process asks for
a service by putting a `Syscall` number in register `a0` and its arguments
in `a1` to `a3`; the result is left in `v0`.

```python
from pandos.exception import ExceptionHandler
from pandos.processor import Machine
from pandos.syscall import Kernel, Syscall

machine = Machine()
kernel = Kernel(machine, 20)
first = kernel.boot(0x2000_0000)
kernel.scheduler.schedule()
assert kernel.active is first

first.state.reg_a0 = Syscall.GETPROCESSID
first.state.reg_a1 = 0
handler = ExceptionHandler(kernel)
handler.handle(8 << 2)            # cause word of a system call
assert first.state.reg_v0 == first.pid
```

`ExceptionHandler.handle` charges CPU time to the active process, serves
the exception, moves the program counter past a system call and then
schedules the next process. Device interrupts are simulated with
`set_device` (to install a `DeviceRegister`) and `raise_interrupt`, whose
return value is the cause word to pass to `handle`.

When no process is left the machine halts (`MachineHalted`); a deadlock or
an inconsistent kernel state raises `KernelPanic`.

## What it does not do

The `Machine` does not execute instructions: processes never run code of
their own. You play the part of the running process by setting registers
and calling `Kernel.syscall_handler` or `ExceptionHandler.handle`. Device
commands are only recorded in `Kernel.device_memory`; no device ever
completes work by itself. There is no command-line program, no virtual
memory or TLB handling beyond passing the trap to a `SupportStruct`, and no
support level above the kernel.