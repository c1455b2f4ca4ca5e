# SPDX-License-Identifier: AGPL-3.0

"""
Symbolic opcode semantics.

Every opcode implements the same two-phase protocol:

- `outcomes(ex)` enumerates the outcomes that are currently satisfiable for the
  execution. It is speculative: any solver scope it opens is closed before it
  returns, and it never asserts a permanent constraint.
- `execute(ex, outcome)` commits one of those outcomes. It trusts that the
  outcome is feasible, asserts the matching constraint on the execution's path,
  and applies the concrete effects (stack, pc, gas).

The set of opcodes is closed: `symbolic_op()` maps every byte to one of the
singletons below, with unsupported bytes mapped to `INVALID`.
"""

from abc import ABC, abstractmethod
from typing import ClassVar

from z3 import And, BoolRef, BoolVal, Not

from zevm.execution import Execution
from zevm.outcomes import ADVANCE, Advance, Halt, HaltReason, Jump, Outcome, Run
from zevm.program import (
    OP_JUMP,
    OP_JUMPDEST,
    OP_JUMPI,
    OP_POP,
    OP_PUSH0,
    OP_SLOAD,
    OP_SSTORE,
    OP_STOP,
    is_push,
)
from zevm.utils import Word, con

ZERO = con(0)


class SymbolicOp(ABC):
    cost: ClassVar[int] = 0

    @abstractmethod
    def outcomes(self, ex: Execution) -> list[Outcome]:
        """Returns the feasible outcomes for the current state of ex."""
        ...

    @abstractmethod
    def commit(self, ex: Execution, outcome: Outcome) -> None:
        """Applies the effects of an outcome after the gas has been charged."""
        ...

    def execute(self, ex: Execution, outcome: Outcome) -> None:
        match outcome:
            case Halt(HaltReason.STACK_UNDERFLOW) | Halt(HaltReason.STACK_OVERFLOW):
                # decided by the stack depth alone, before any gas or stack mutation
                ex.halt(outcome.reason)
                return

            case Halt(HaltReason.OUT_OF_GAS):
                ex.path.append(Not(ex.covers_cost(self.cost)), branching=True)
                ex.halt(HaltReason.OUT_OF_GAS)
                return

        if self.cost:
            ex.path.append(ex.covers_cost(self.cost), branching=True)
            ex.charge(self.cost)

        self.commit(ex, outcome)

    def check_gas(self, ex: Execution, outcomes: list[Outcome]) -> bool:
        """
        Offers OUT_OF_GAS if the gas may not cover the cost; returns whether it may cover it.

        The two are independent hypotheses over symbolic gas, so both can hold.
        """

        covers_cost = ex.covers_cost(self.cost)

        if ex.is_sat(Not(covers_cost)):
            outcomes.append(Halt(HaltReason.OUT_OF_GAS))

        return ex.is_sat(covers_cost)

    def __str__(self) -> str:
        return type(self).__name__.upper().removesuffix("OP")

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def unexpected(op: SymbolicOp, outcome: Outcome) -> ValueError:
    return ValueError(f"{op} cannot commit {outcome}")


def jump_outcomes(ex: Execution, dest: Word) -> list[Outcome]:
    """
    Enumerates the valid jump destinations that dest can take, plus INVALID_JUMP_DEST if it can take none.

    Must be called inside a solver scope that assumes the jump is taken.
    """

    outcomes = []
    cannot_jump = []

    # is it possible for dest to be each JUMPDEST offset? (ascending)
    for offset in ex.pgm.valid_jumpdests():
        can_jump = dest == con(offset)
        if ex.is_sat(can_jump):
            outcomes.append(Run(Jump(offset)))
            cannot_jump.append(Not(can_jump))

    # is it possible for dest to not be a JUMPDEST offset?
    if ex.is_sat(*cannot_jump):
        outcomes.append(Halt(HaltReason.INVALID_JUMP_DEST))

    return outcomes


def invalid_dest(ex: Execution, dest: Word) -> BoolRef:
    conds = [dest != con(offset) for offset in ex.pgm.valid_jumpdests()]
    return And(*conds) if conds else BoolVal(True)


class Stop(SymbolicOp):
    def outcomes(self, ex: Execution) -> list[Outcome]:
        return [Halt(HaltReason.STOP)]

    def commit(self, ex: Execution, outcome: Outcome) -> None:
        if outcome != Halt(HaltReason.STOP):
            raise unexpected(self, outcome)
        ex.halt(HaltReason.STOP)


class Invalid(SymbolicOp):
    def outcomes(self, ex: Execution) -> list[Outcome]:
        return [Halt(HaltReason.INVALID_OPCODE)]

    def commit(self, ex: Execution, outcome: Outcome) -> None:
        if outcome != Halt(HaltReason.INVALID_OPCODE):
            raise unexpected(self, outcome)
        ex.halt(HaltReason.INVALID_OPCODE)


class Straight(SymbolicOp):
    """
    Base class for ops that only fall through: pops `pops` words, pushes `pushes` words.
    """

    pops: ClassVar[int] = 0
    pushes: ClassVar[int] = 0

    def outcomes(self, ex: Execution) -> list[Outcome]:
        stack = ex.stack

        if not stack.has(self.pops):
            return [Halt(HaltReason.STACK_UNDERFLOW)]

        if not stack.has_room(self.pushes - self.pops):
            return [Halt(HaltReason.STACK_OVERFLOW)]

        outcomes = []
        if self.check_gas(ex, outcomes):
            outcomes.append(Run(ADVANCE))

        return outcomes

    def commit(self, ex: Execution, outcome: Outcome) -> None:
        if outcome != Run(ADVANCE):
            raise unexpected(self, outcome)

        self.effect(ex)
        ex.advance()

    @abstractmethod
    def effect(self, ex: Execution) -> None: ...


class JumpDest(Straight):
    cost = 1

    def effect(self, ex: Execution) -> None:
        pass


class Pop(Straight):
    cost = 2
    pops = 1

    def effect(self, ex: Execution) -> None:
        ex.stack.pop()


class Push(Straight):
    cost = 3
    pushes = 1

    def effect(self, ex: Execution) -> None:
        ex.stack.push(con(ex.insn.operand))


class Push0(Push):
    cost = 2


class SLoad(Straight):
    cost = 100
    pops = 1
    pushes = 1

    def effect(self, ex: Execution) -> None:
        key = ex.stack.pop()
        ex.stack.push(ex.storage.read(key))


class SStore(Straight):
    cost = 100
    pops = 2

    def effect(self, ex: Execution) -> None:
        key = ex.stack.pop()
        value = ex.stack.pop()
        ex.storage.write(key, value)


class JumpOp(SymbolicOp):
    """
    Unconditional jump. Stack: destination (top).
    """

    cost = 8

    def outcomes(self, ex: Execution) -> list[Outcome]:
        if not ex.stack.has(1):
            return [Halt(HaltReason.STACK_UNDERFLOW)]

        outcomes = []
        if not self.check_gas(ex, outcomes):
            return outcomes

        dest = ex.stack.peek(1)

        with ex.path.scope(ex.covers_cost(self.cost)):
            outcomes.extend(jump_outcomes(ex, dest))

        return outcomes

    def commit(self, ex: Execution, outcome: Outcome) -> None:
        dest = ex.stack.pop()

        match outcome:
            case Run(Jump(target)):
                ex.path.append(dest == con(target), branching=True)
                ex.advance(pc=target)

            case Halt(HaltReason.INVALID_JUMP_DEST):
                ex.path.append(invalid_dest(ex, dest), branching=True)
                ex.halt(HaltReason.INVALID_JUMP_DEST)

            case _:
                raise unexpected(self, outcome)


class JumpI(SymbolicOp):
    """
    Conditional jump. Stack: destination (top), condition.

    Outcomes, each offered only if satisfiable:

    - OUT_OF_GAS, if the gas may not cover the cost;
    - Jump(offset) for every JUMPDEST offset the destination can take while the condition is non-zero;
    - INVALID_JUMP_DEST, if the destination can miss every such offset while the condition is non-zero;
    - ADVANCE, if the condition can be zero.
    """

    cost = 10

    def outcomes(self, ex: Execution) -> list[Outcome]:
        # are there enough stack elements?
        if not ex.stack.has(2):
            return [Halt(HaltReason.STACK_UNDERFLOW)]

        outcomes = []
        if not self.check_gas(ex, outcomes):
            return outcomes

        covers_cost = ex.covers_cost(self.cost)
        dest = ex.stack.peek(1)
        advance = ex.stack.peek(2) == ZERO

        # assume this instruction jumps, instead of falling through
        with ex.path.scope(covers_cost, Not(advance)):
            if ex.is_sat():
                outcomes.extend(jump_outcomes(ex, dest))

        # is it possible to fall through?
        if ex.is_sat(covers_cost, advance):
            outcomes.append(Run(ADVANCE))

        return outcomes

    def commit(self, ex: Execution, outcome: Outcome) -> None:
        dest = ex.stack.pop()
        cond = ex.stack.pop()

        will_advance = cond == ZERO

        match outcome:
            case Run(Jump(target)):
                ex.path.append(Not(will_advance), branching=True)
                ex.path.append(dest == con(target), branching=True)
                ex.advance(pc=target)

            case Run(Advance()):
                ex.path.append(will_advance, branching=True)
                ex.advance()

            case Halt(HaltReason.INVALID_JUMP_DEST):
                ex.path.append(Not(will_advance), branching=True)
                ex.path.append(invalid_dest(ex, dest), branching=True)
                ex.halt(HaltReason.INVALID_JUMP_DEST)

            case _:
                raise unexpected(self, outcome)


STOP = Stop()
INVALID = Invalid()
JUMPDEST = JumpDest()
POP = Pop()
PUSH = Push()
PUSH0 = Push0()
SLOAD = SLoad()
SSTORE = SStore()
JUMP = JumpOp()
JUMPI = JumpI()


def symbolic_op(opcode: int) -> SymbolicOp:
    if opcode == OP_JUMPI:
        return JUMPI
    elif opcode == OP_JUMP:
        return JUMP
    elif opcode == OP_JUMPDEST:
        return JUMPDEST
    elif is_push(opcode):
        return PUSH
    elif opcode == OP_PUSH0:
        return PUSH0
    elif opcode == OP_POP:
        return POP
    elif opcode == OP_SLOAD:
        return SLOAD
    elif opcode == OP_SSTORE:
        return SSTORE
    elif opcode == OP_STOP:
        return STOP
    else:
        # INVALID, and any opcode outside the supported set
        return INVALID
