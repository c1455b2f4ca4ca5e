import pytest
from z3 import Not, sat, unknown, unsat

from zevm.config import ConfigSource
from zevm.exceptions import (
    AlreadyHalted,
    AppliedOutcomeNotOffered,
    SolverUnknown,
    StorageError,
)
from zevm.outcomes import ADVANCE, Halt, HaltReason, Jump, Run
from zevm.program import (
    OP_JUMPDEST,
    OP_JUMPI,
    OP_PUSH0,
    OP_PUSH1,
    OP_SLOAD,
    OP_SSTORE,
    OP_STOP,
    Instruction,
    Program,
)
from zevm.sevm import Builder, build
from zevm.storage import InMemoryStorage, Storage
from zevm.utils import con, int_or_none

# PUSH0 SLOAD PUSH1 6 JUMPI STOP JUMPDEST STOP
#   0     1     2      4    5     6       7
branching = [
    OP_PUSH0,
    OP_SLOAD,
    Instruction(OP_PUSH1, 6),
    OP_JUMPI,
    OP_STOP,
    OP_JUMPDEST,
    OP_STOP,
]


class FailingStorage(Storage):
    def read(self, key):
        raise StorageError("read failed")

    def write(self, key, value):
        raise StorageError("write failed")

    def copy(self):
        return self


class ReadOnlyStorage(InMemoryStorage):
    error_kind = PermissionError

    def write(self, key, value):
        raise self.error_kind("storage is read-only")

    def copy(self):
        return ReadOnlyStorage(self.array)


def run_to_halt(evm, eid=0):
    """Applies the only outcome offered at each step, until the execution halts."""
    while not evm.execution(eid).is_halted():
        outcomes = evm.outcomes(eid)
        assert len(outcomes) == 1, outcomes
        evm.apply(eid, outcomes[0])
    return evm.execution(eid)


@pytest.fixture
def jumpi_evm(mk_evm, condition, destination):
    evm = mk_evm([OP_JUMPI, OP_STOP, OP_JUMPDEST])
    evm.execution().stack.push(condition)
    evm.execution().stack.push(destination)
    return evm


def test_builder_defaults(args):
    evm = Builder([OP_STOP]).build()

    assert len(evm.executions) == 1
    ex = evm.execution()
    assert ex.pc == 0
    assert len(ex.stack) == 0
    assert ex.stack.limit == args.stack_limit
    assert not ex.is_halted()
    # symbolic gas
    assert int_or_none(ex.gas_remaining) is None


def test_build_with_initial_gas():
    evm = build(Program([OP_STOP]), initial_gas=100)
    assert int_or_none(evm.execution().gas_remaining) == 100


def test_builder_gas_from_config(args):
    options = args.with_overrides(ConfigSource.command_line, gas=42)
    evm = Builder([OP_STOP], options).build()
    assert int_or_none(evm.execution().gas_remaining) == 42


def test_step_enumerates_every_live_execution(jumpi_evm):
    eid = jumpi_evm.fork(0)
    assert eid == 1

    step = jumpi_evm.step()

    assert [e for e, _ in step] == [0] * 4 + [1] * 4
    assert [o for e, o in step if e == 0] == [o for e, o in step if e == 1]


def test_step_is_deterministic(mk_evm, condition, destination):
    def outcomes():
        evm = mk_evm([OP_JUMPI, OP_JUMPDEST, OP_JUMPDEST])
        evm.execution().stack.push(condition)
        evm.execution().stack.push(destination)
        return evm.step()

    assert outcomes() == outcomes()


def test_fork_isolation(jumpi_evm, condition):
    jumpi_evm.step()
    sibling = jumpi_evm.fork(0)

    jumpi_evm.apply(0, Run(Jump(2)))
    jumpi_evm.apply(sibling, Run(ADVANCE))

    jumped = jumpi_evm.execution(0)
    advanced = jumpi_evm.execution(sibling)

    assert jumped.path.solver is not advanced.path.solver
    assert (jumped.pc, advanced.pc) == (2, 1)

    eq_zero = condition == con(0)
    assert jumped.check(eq_zero) == unsat
    assert advanced.check(eq_zero) == sat
    assert advanced.check(Not(eq_zero)) == unsat


def test_fork_copies_stack(jumpi_evm):
    sibling = jumpi_evm.fork(0)
    jumpi_evm.execution(sibling).stack.pop()

    assert len(jumpi_evm.execution(0).stack) == 2
    assert len(jumpi_evm.execution(sibling).stack) == 1


def test_apply_replaces_execution(jumpi_evm):
    before = jumpi_evm.execution()

    jumpi_evm.step()
    jumpi_evm.apply(0, Run(ADVANCE))

    assert jumpi_evm.execution() is not before
    assert before.pc == 0
    assert len(before.stack) == 2


def test_apply_without_step(jumpi_evm):
    with pytest.raises(AppliedOutcomeNotOffered):
        jumpi_evm.apply(0, Run(ADVANCE))


def test_apply_outcome_not_offered(mk_evm):
    evm = mk_evm([OP_JUMPI], gas=10)
    evm.execution().stack.push_any(0)
    evm.execution().stack.push_any(29)

    assert evm.step() == [(0, Run(ADVANCE))]

    with pytest.raises(AppliedOutcomeNotOffered) as exc_info:
        evm.apply(0, Run(Jump(29)))

    assert exc_info.value.offered == [Run(ADVANCE)]
    assert evm.execution().pc == 0


def test_apply_twice_in_one_step(jumpi_evm):
    jumpi_evm.step()
    jumpi_evm.apply(0, Run(ADVANCE))

    # the offered outcomes are consumed by the first apply
    with pytest.raises(AppliedOutcomeNotOffered):
        jumpi_evm.apply(0, Run(Jump(2)))


def test_already_halted(mk_evm):
    evm = mk_evm([OP_STOP])

    assert evm.step() == [(0, Halt(HaltReason.STOP))]
    evm.apply(0, Halt(HaltReason.STOP))

    assert evm.execution().halted == HaltReason.STOP
    assert evm.step() == []

    with pytest.raises(AlreadyHalted):
        evm.outcomes(0)

    with pytest.raises(AlreadyHalted):
        evm.apply(0, Halt(HaltReason.STOP))

    with pytest.raises(AlreadyHalted):
        evm.fork(0)


def test_implicit_stop(mk_evm):
    evm = mk_evm([OP_PUSH0], gas=10)
    ex = run_to_halt(evm)

    assert ex.halted == HaltReason.STOP
    assert ex.pc == 1


def test_solver_unknown_raises(jumpi_evm, monkeypatch):
    solver = jumpi_evm.execution().path.solver
    real_check = solver.check

    # inconclusive only inside the speculative scope
    def check(*assumptions):
        return unknown if solver.num_scopes() > 0 else real_check(*assumptions)

    monkeypatch.setattr(solver, "check", check)
    monkeypatch.setattr(solver, "reason_unknown", lambda: "timeout")

    with pytest.raises(SolverUnknown) as exc_info:
        jumpi_evm.step()

    assert exc_info.value.reason == "timeout"
    assert solver.num_scopes() == 0
    assert jumpi_evm.offered == {}


def test_solver_unknown_step_publishes_nothing(jumpi_evm, monkeypatch):
    sibling = jumpi_evm.fork(0)
    solver = jumpi_evm.execution(sibling).path.solver
    monkeypatch.setattr(solver, "check", lambda *assumptions: unknown)
    monkeypatch.setattr(solver, "reason_unknown", lambda: "timeout")

    # execution 0 is enumerated successfully before the sibling fails
    with pytest.raises(SolverUnknown):
        jumpi_evm.step()

    assert jumpi_evm.offered == {}

    with pytest.raises(AppliedOutcomeNotOffered):
        jumpi_evm.apply(0, Run(ADVANCE))


def test_storage_error_leaves_execution_unchanged(args):
    code = [Instruction(OP_PUSH1, 42), Instruction(OP_PUSH1, 7), OP_SSTORE]
    evm = Builder(code, args).set_gas(1000).set_storage(FailingStorage()).build()

    for _ in range(2):
        evm.apply(0, evm.outcomes(0)[0])

    before = evm.execution()
    assertions = len(before.path.solver.assertions())
    assert evm.outcomes(0) == [Run(ADVANCE)]

    with pytest.raises(StorageError):
        evm.apply(0, Run(ADVANCE))

    ex = evm.execution()
    assert ex is before
    assert ex.pc == 4
    assert len(ex.stack) == 2
    assert int_or_none(ex.gas_remaining) == 1000 - 3 - 3
    assert len(ex.path.solver.assertions()) == assertions


def test_backend_error_kind_propagates(args):
    code = [Instruction(OP_PUSH1, 42), Instruction(OP_PUSH1, 7), OP_SSTORE, OP_STOP]
    storage = ReadOnlyStorage()
    evm = Builder(code, args).set_gas(1000).set_storage(storage).build()

    for _ in range(2):
        evm.apply(0, evm.outcomes(0)[0])

    before = evm.execution()

    with pytest.raises(storage.error_kind) as exc_info:
        evm.apply(0, Run(ADVANCE))

    # raised as is, not wrapped into the default kind
    assert type(exc_info.value) is PermissionError
    assert not isinstance(exc_info.value, StorageError)
    assert evm.execution() is before
    assert evm.execution().pc == 4


def test_sstore_then_sload(mk_evm):
    code = [
        Instruction(OP_PUSH1, 42),
        Instruction(OP_PUSH1, 7),
        OP_SSTORE,
        Instruction(OP_PUSH1, 7),
        OP_SLOAD,
    ]
    ex = run_to_halt(mk_evm(code, gas=1000))

    assert ex.halted == HaltReason.STOP
    assert int_or_none(ex.stack.peek()) == 42
    assert int_or_none(ex.gas_remaining) == 1000 - 3 - 3 - 100 - 3 - 100


def test_explore(mk_evm):
    halted = list(mk_evm(branching, gas=1000).explore())

    assert [ex.halted for ex in halted] == [HaltReason.STOP] * 2
    # the jump is explored first
    assert [ex.pc for ex in halted] == [7, 5]
    assert [int_or_none(ex.gas_remaining) for ex in halted] == [884, 885]


def test_explore_symbolic_gas(mk_evm):
    halted = list(mk_evm(branching).explore())
    reasons = [ex.halted for ex in halted]

    assert len(halted) == 7
    assert reasons.count(HaltReason.OUT_OF_GAS) == 5
    assert reasons.count(HaltReason.STOP) == 2


def test_explore_width(mk_evm):
    halted = list(mk_evm(branching, gas=1000, width=1).explore())
    assert [ex.pc for ex in halted] == [7]


def test_explore_depth(mk_evm):
    # the jump path needs 6 steps, the fall-through path 5
    halted = list(mk_evm(branching, gas=1000, depth=5).explore())
    assert [ex.pc for ex in halted] == [5]
