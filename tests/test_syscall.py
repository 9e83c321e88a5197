import pytest

from pandos.asl import Semaphore
from pandos.pcb import NULL_PID, ProcessState, insert_child
from pandos.processor import (
    EXC_RI,
    GENERALEXCEPT,
    IL_DISK,
    IL_TERMINAL,
    STATUS_IM,
    STATUS_IM_MASK,
    STATUS_KUp,
    KernelPanic,
    cause_exc_code,
)
from pandos.scheduler import CONTROL_BLOCK, Context, Control, SupportStruct, make_pid
from pandos.syscall import PROCESS_PRIO_HIGH, PROCESS_PRIO_LOW, Kernel, Syscall

TERM0_TRANSM_COMMAND = 0x10000254 + 12


@pytest.fixture
def kernel():
    k = Kernel()
    k.boot(0x1000)
    k.scheduler.schedule()
    return k


def call(kernel, number, a1=0, a2=0, a3=0):
    state = kernel.scheduler.active.state
    state.reg_a0 = number
    state.reg_a1 = a1
    state.reg_a2 = a2
    state.reg_a3 = a3
    return kernel.syscall_handler()


def run(kernel, p):
    kernel.scheduler.dequeue(p)
    kernel.scheduler.schedule(p, False)


def test_create_process_returns_child_pid(kernel):
    p1 = kernel.active
    result = call(kernel, Syscall.CREATEPROCESS, ProcessState(pc_epc=0x2000), PROCESS_PRIO_LOW)
    child = kernel.scheduler.ready_lo.head()
    assert result == Control.preserve(p1)
    assert p1.state.reg_v0 == child.pid
    assert child.parent is p1
    assert child.state.pc_epc == 0x2000
    assert kernel.scheduler.process_count == 2


def test_create_high_priority_goes_to_high_queue(kernel):
    call(kernel, Syscall.CREATEPROCESS, ProcessState(), PROCESS_PRIO_HIGH)
    child = kernel.scheduler.ready_hi.head()
    assert child.prio is True
    assert kernel.active.state.reg_v0 == child.pid


def test_create_with_bad_priority_kills_caller(kernel):
    p1 = kernel.active
    result = call(kernel, Syscall.CREATEPROCESS, ProcessState(), 2)
    assert result == CONTROL_BLOCK
    assert p1.pid == NULL_PID
    assert kernel.scheduler.process_count == 0


def test_create_without_state_kills_caller(kernel):
    p1 = kernel.active
    call(kernel, Syscall.CREATEPROCESS, None, PROCESS_PRIO_LOW)
    assert p1.pid == NULL_PID


def test_create_when_table_full_returns_null_pid():
    k = Kernel(max_proc=2)
    k.boot(0x1000)
    k.scheduler.schedule()
    call(k, Syscall.CREATEPROCESS, ProcessState(), PROCESS_PRIO_LOW)
    assert k.active.state.reg_v0 != NULL_PID and k.scheduler.process_count == 2
    call(k, Syscall.CREATEPROCESS, ProcessState(), PROCESS_PRIO_LOW)
    assert k.active.state.reg_v0 == NULL_PID
    assert k.scheduler.process_count == 2


def test_get_process_id_self_and_parent(kernel):
    p1 = kernel.active
    call(kernel, Syscall.CREATEPROCESS, ProcessState(), PROCESS_PRIO_LOW)
    child_pid = p1.state.reg_v0
    call(kernel, Syscall.GETPROCESSID, 1)
    assert p1.state.reg_v0 == 0
    child = kernel.scheduler.find_process(child_pid)
    run(kernel, child)
    call(kernel, Syscall.GETPROCESSID, 0)
    assert child.state.reg_v0 == child_pid
    call(kernel, Syscall.GETPROCESSID, 1)
    assert child.state.reg_v0 == p1.pid


def test_v_then_p_pairs_leave_zero(kernel):
    sems = [Semaphore(0) for _ in range(21)]
    for sem in sems:
        assert call(kernel, Syscall.VERHOGEN, sem) == Control.reschedule(kernel.active)
        assert sem.value == 1
        assert call(kernel, Syscall.PASSEREN, sem) == Control.reschedule(kernel.active)
        assert sem.value == 0
    assert kernel.scheduler.softblock_count == 0


def test_blocking_v_on_binary_semaphore(kernel):
    p1 = kernel.active
    sem = Semaphore(1)
    assert call(kernel, Syscall.VERHOGEN, sem) == CONTROL_BLOCK
    assert kernel.scheduler.asl.head_blocked(sem) is p1
    assert kernel.scheduler.softblock_count == 1


def test_p_unblocks_process_waiting_on_v(kernel):
    p1 = kernel.active
    p2 = kernel.scheduler.spawn(False)
    sem = Semaphore(1)
    ctrl = call(kernel, Syscall.VERHOGEN, sem)
    kernel.scheduler.schedule(ctrl.pcb, ctrl.enqueue)
    assert kernel.active is p2
    result = call(kernel, Syscall.PASSEREN, sem)
    assert result == Control.reschedule(p2)
    assert p1 in kernel.scheduler.ready_lo
    assert kernel.scheduler.softblock_count == 0
    assert sem.value == 1


def test_p_on_zero_blocks(kernel):
    p1 = kernel.active
    sem = Semaphore(0)
    assert call(kernel, Syscall.PASSEREN, sem) == CONTROL_BLOCK
    assert kernel.scheduler.asl.blocked_on(sem) == [p1]
    assert p1.sem_add is sem


def test_p_and_v_without_semaphore_kill_caller(kernel):
    p1 = kernel.active
    call(kernel, Syscall.PASSEREN, None)
    assert p1.pid == NULL_PID


def test_terminate_self_kills_children(kernel):
    p1 = kernel.active
    call(kernel, Syscall.CREATEPROCESS, ProcessState(), PROCESS_PRIO_LOW)
    result = call(kernel, Syscall.TERMPROCESS, 0)
    assert result == CONTROL_BLOCK
    assert p1.pid == NULL_PID
    assert kernel.scheduler.process_count == 0
    assert kernel.scheduler.ready_lo.is_empty()


def test_terminate_parent_kills_caller_too(kernel):
    p1 = kernel.active
    p9 = kernel.scheduler.spawn(False)
    insert_child(p1, p9)
    p10 = kernel.scheduler.spawn(False)
    insert_child(p9, p10)
    run(kernel, p10)
    call(kernel, Syscall.GETPROCESSID, 1)
    ppid = p10.state.reg_v0
    assert ppid == p9.pid
    result = call(kernel, Syscall.TERMPROCESS, ppid)
    assert result == CONTROL_BLOCK
    assert p9.pid == NULL_PID and p10.pid == NULL_PID
    assert p1.children == []
    assert kernel.scheduler.process_count == 1


def test_terminate_other_process_reschedules(kernel):
    p1 = kernel.active
    q = kernel.scheduler.spawn(False)
    insert_child(p1, q)
    result = call(kernel, Syscall.TERMPROCESS, q.pid)
    assert result == Control.reschedule(p1)
    assert q.pid == NULL_PID
    assert kernel.scheduler.process_count == 1


def test_terminate_unknown_pid_kills_caller(kernel):
    p1 = kernel.active
    call(kernel, Syscall.TERMPROCESS, make_pid(5, 99))
    assert p1.pid == NULL_PID


def test_terminate_subtree_with_blocked_leaves(kernel):
    sched = kernel.scheduler
    root = sched.spawn(False)
    children = [sched.spawn(False) for _ in range(2)]
    leaves = [sched.spawn(False) for _ in range(4)]
    for c in children:
        insert_child(root, c)
    for i, leaf in enumerate(leaves):
        insert_child(children[i // 2], leaf)
    blk = Semaphore(0)
    for p in children + leaves:
        run(kernel, p)
        assert call(kernel, Syscall.PASSEREN, blk) == CONTROL_BLOCK
    assert sched.softblock_count == 6
    run(kernel, root)
    before = sched.process_count
    assert call(kernel, Syscall.TERMPROCESS, 0) == CONTROL_BLOCK
    assert sched.process_count == before - 7
    assert sched.softblock_count == 0
    assert blk not in sched.asl
    assert all(p.pid == NULL_PID for p in [root] + children + leaves)


def test_get_time(kernel):
    kernel.active.time = 1234
    assert call(kernel, Syscall.GETTIME) == Control.reschedule(kernel.active)
    assert kernel.active.state.reg_v0 == 1234


def test_get_support_pointer(kernel):
    support = SupportStruct()
    call(kernel, Syscall.CREATEPROCESS, ProcessState(), PROCESS_PRIO_LOW, support)
    child = kernel.scheduler.find_process(kernel.active.state.reg_v0)
    run(kernel, child)
    call(kernel, Syscall.GETSUPPORTPTR)
    assert child.state.reg_v0 is support


def test_clock_wait_blocks_on_timer(kernel):
    p1 = kernel.active
    assert call(kernel, Syscall.CLOCKWAIT) == CONTROL_BLOCK
    assert kernel.scheduler.asl.head_blocked(kernel.semaphores.timer()) is p1
    assert kernel.scheduler.softblock_count == 1


def test_yield_lets_other_process_run(kernel):
    p1 = kernel.active
    other = kernel.scheduler.spawn(False)
    ctrl = call(kernel, Syscall.YIELD)
    assert ctrl == CONTROL_BLOCK
    assert kernel.scheduler.yield_process is p1
    kernel.scheduler.schedule(ctrl.pcb, ctrl.enqueue)
    assert kernel.active is other
    assert p1 in kernel.scheduler.ready_lo


def test_yield_alone_runs_again(kernel):
    p1 = kernel.active
    ctrl = call(kernel, Syscall.YIELD)
    kernel.scheduler.schedule(ctrl.pcb, ctrl.enqueue)
    assert kernel.active is p1
    assert kernel.scheduler.yield_process is None


def test_do_io_writes_and_blocks(kernel):
    p1 = kernel.active
    value = 2 | (ord("p") << 8)
    result = call(kernel, Syscall.DOIO, TERM0_TRANSM_COMMAND, value)
    sem = kernel.semaphores.get(IL_TERMINAL, 0, True)
    assert result == CONTROL_BLOCK
    assert kernel.device_memory[TERM0_TRANSM_COMMAND] == value
    assert kernel.scheduler.asl.head_blocked(sem) is p1
    assert p1.state.status & STATUS_IM_MASK == STATUS_IM_MASK


def test_do_io_high_priority_enables_only_its_line(kernel):
    h = kernel.scheduler.spawn(True)
    run(kernel, h)
    result = call(kernel, Syscall.DOIO, TERM0_TRANSM_COMMAND, 5)
    assert result == CONTROL_BLOCK
    assert kernel.scheduler.asl.head_blocked(kernel.semaphores.get(IL_TERMINAL, 0, True)) is h
    assert kernel.device_memory[TERM0_TRANSM_COMMAND] == 5
    assert h.state.status & STATUS_IM(IL_TERMINAL) == STATUS_IM(IL_TERMINAL)
    assert h.state.status & STATUS_IM(IL_DISK) == 0


def test_do_io_on_busy_device_kills_caller(kernel):
    p1 = kernel.active
    other = kernel.scheduler.spawn(False)
    kernel.scheduler.dequeue(other)
    kernel.scheduler.asl.insert_blocked(kernel.semaphores.get(IL_TERMINAL, 0, True), other)
    call(kernel, Syscall.DOIO, TERM0_TRANSM_COMMAND, 5)
    assert p1.pid == NULL_PID
    assert TERM0_TRANSM_COMMAND not in kernel.device_memory


def test_do_io_without_address_kills_caller(kernel):
    p1 = kernel.active
    call(kernel, Syscall.DOIO, 0, 5)
    assert p1.pid == NULL_PID


def test_do_io_positive_semaphore_panics(kernel):
    kernel.semaphores.get(IL_TERMINAL, 0, True).value = 1
    with pytest.raises(KernelPanic):
        call(kernel, Syscall.DOIO, TERM0_TRANSM_COMMAND, 5)


def test_user_mode_syscall_is_passed_up_as_reserved_instruction(kernel):
    p1 = kernel.active
    support = SupportStruct()
    support.except_context[GENERALEXCEPT] = Context(stack_ptr=0x3000, status=0, pc=0x4000)
    p1.support = support
    p1.state.status |= STATUS_KUp
    result = call(kernel, Syscall.CREATEPROCESS, ProcessState(), PROCESS_PRIO_LOW)
    assert result == CONTROL_BLOCK
    assert cause_exc_code(support.except_state[GENERALEXCEPT].cause) == EXC_RI
    assert kernel.machine.current_state.pc_epc == 0x4000
    assert kernel.scheduler.process_count == 1
    assert p1.pid != NULL_PID


def test_unknown_syscall_without_support_kills_caller(kernel):
    p1 = kernel.active
    assert call(kernel, 1) == CONTROL_BLOCK
    assert p1.pid == NULL_PID


def test_unknown_syscall_with_support_is_passed_up(kernel):
    p1 = kernel.active
    support = SupportStruct()
    support.except_context[GENERALEXCEPT] = Context(stack_ptr=0x3000, status=0, pc=0x5000)
    p1.support = support
    call(kernel, 1)
    assert kernel.machine.current_state.pc_epc == 0x5000
    assert support.except_state[GENERALEXCEPT].reg_a0 == 1
    assert p1.pid != NULL_PID


def test_syscall_without_active_process_panics():
    k = Kernel()
    with pytest.raises(KernelPanic):
        k.syscall_handler()