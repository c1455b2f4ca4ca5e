# SPDX-License-Identifier: AGPL-3.0

from z3 import (
    BoolRef,
    CheckSatResult,
    Solver,
    is_bv,
    is_false,
    is_true,
    sat,
    simplify,
    unknown,
)

from zevm.exceptions import SolverUnknown, StackOverflowError, StackUnderflowError
from zevm.logs import INTERNAL_ERROR, SOLVER_UNKNOWN, warn_code
from zevm.outcomes import HaltReason
from zevm.program import Instruction, Program, mnemonic
from zevm.storage import Storage
from zevm.utils import WORD_BITS, Gas, Offset, Word, con, hexify

MAX_STACK_DEPTH = 1024


class Stack:
    """Bounded stack of 256-bit words; the top of the stack is the end of the list."""

    __slots__ = ("items", "limit")

    def __init__(self, items: list[Word] | None = None, limit: int = MAX_STACK_DEPTH):
        self.items = items if items is not None else []
        self.limit = limit

    def __len__(self) -> int:
        return len(self.items)

    def __str__(self) -> str:
        return f"Stack: {str(list(reversed(self.items)))}"

    def copy(self) -> "Stack":
        # words are immutable z3 terms, a shallow copy is enough
        return Stack(self.items.copy(), self.limit)

    def push(self, v: Word) -> None:
        if not (is_bv(v) and v.size() == WORD_BITS):
            raise ValueError(f"not a {WORD_BITS}-bit word: {v}")

        if len(self.items) >= self.limit:
            raise StackOverflowError()

        self.items.append(v)

    def push_any(self, v: int | Word) -> None:
        self.push(con(v) if isinstance(v, int) else v)

    def pop(self) -> Word:
        try:
            return self.items.pop()
        except IndexError as e:
            raise StackUnderflowError() from e

    def peek(self, n: int = 1) -> Word:
        """
        Returns the n-th element from the top (1-based) without popping it.
        """

        if n < 1:
            raise ValueError(n)

        try:
            return self.items[-n]
        except IndexError as e:
            raise StackUnderflowError() from e

    def has(self, n: int) -> bool:
        return len(self.items) >= n

    def has_room(self, n: int = 1) -> bool:
        return len(self.items) + n <= self.limit


class Path:
    """
    A Path holds the conditions of one execution path, mirrored into a z3 solver it exclusively owns.

    `conditions` maps each asserted condition to whether it was an explicit branching condition.
    Forking a path replays the conditions into a fresh solver, so sibling paths never observe each other's
    later assertions.
    """

    solver: Solver
    conditions: dict  # cond -> bool (true if explicit branching conditions)
    pending: list | None  # conditions not yet added to the solver, if staged

    def __init__(self, solver: Solver):
        self.solver = solver
        self.conditions = {}
        self.pending = None

    def __deepcopy__(self, memo):
        raise NotImplementedError("use the fork() method instead of deepcopy()")

    def __str__(self) -> str:
        return (
            "".join(
                [
                    f"- {cond}\n"
                    for cond in self.conditions
                    if self.conditions[cond] and not is_true(cond)
                ]
            )
            or "- (empty path condition)"
        )

    def check(self, *assumptions: BoolRef) -> CheckSatResult:
        result = self.solver.check(*assumptions)

        if result == unknown:
            reason = self.solver.reason_unknown()
            warn_code(SOLVER_UNKNOWN, f"solver returned unknown: {reason}")
            raise SolverUnknown(reason, assumptions)

        return result

    def is_sat(self, *assumptions: BoolRef) -> bool:
        return self.check(*assumptions) == sat

    def scope(self, *assumptions: BoolRef) -> "SolverScope":
        return SolverScope(self.solver, *assumptions)

    def fork(self, solver: Solver) -> "Path":
        if solver is self.solver:
            raise ValueError("a forked path needs its own solver")

        if self.pending is not None:
            raise ValueError("forking a staged path", self)

        path = Path(solver)

        # shallow copy because existing conditions won't change
        path.conditions = self.conditions.copy()
        for cond in path.conditions:
            solver.add(cond)

        return path

    def stage(self) -> "Path":
        """
        Returns a path sharing this solver that buffers new conditions until `activate()` is called.

        Discarding a staged path leaves the solver untouched.
        """

        path = Path(self.solver)
        path.conditions = self.conditions.copy()
        path.pending = []
        return path

    def is_activated(self) -> bool:
        return self.pending is None

    def activate(self):
        if self.pending is None:
            raise ValueError("path is already active", self)

        for cond in self.pending:
            self.solver.add(cond)
        self.pending = None

    def append(self, cond: BoolRef, branching=False):
        cond = simplify(cond)

        if is_true(cond):
            return

        if is_false(cond):
            # false shouldn't have been committed; the outcome must have been offered as feasible
            warn_code(INTERNAL_ERROR, "path.append(false)")

        if cond in self.conditions:
            return

        self.conditions[cond] = branching

        if self.pending is not None:
            self.pending.append(cond)
        else:
            self.solver.add(cond)


class SolverScope:
    """
    Context manager for a speculative solver frame.

    The frame holds the given assumptions and is popped on every exit path, including exceptions raised by
    queries made inside it.
    """

    def __init__(self, solver: Solver, *assumptions: BoolRef):
        self.solver = solver
        self.assumptions = assumptions

    def __enter__(self):
        self.solver.push()
        for assumption in self.assumptions:
            self.solver.add(assumption)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.solver.pop()


class Execution:  # an execution path
    # program (shared, read-only)
    pgm: Program

    # vm state
    pc: Offset
    insn: Instruction
    gas_remaining: Gas
    stack: Stack
    storage: Storage

    # path
    path: Path  # path conditions
    halted: HaltReason | None

    def __init__(self, **kwargs) -> None:
        self.pgm = kwargs["pgm"]
        self.pc = kwargs.get("pc") or 0
        self.insn = self.pgm.decode_instruction(self.pc)
        self.gas_remaining = kwargs["gas_remaining"]
        # an empty stack is falsey, so test for None explicitly
        stack = kwargs.get("stack")
        self.stack = stack if stack is not None else Stack()
        self.storage = kwargs["storage"]
        #
        self.path = kwargs["path"]
        self.halted = kwargs.get("halted")

    def __str__(self) -> str:
        return self.dump()

    def dump(self) -> str:
        status = f"halted ({self.halted})" if self.halted else "running"
        return hexify(
            "".join(
                [
                    f"PC: {self.pc} {mnemonic(self.current_opcode())} [{status}]\n",
                    f"{self.stack}\n",
                    f"Gas: {self.gas_remaining}\n",
                    f"Storage: {self.storage}\n",
                    f"Path:\n{self.path}",
                ]
            )
        )

    def current_opcode(self) -> int:
        return self.insn.opcode

    def is_halted(self) -> bool:
        return self.halted is not None

    def halt(self, reason: HaltReason) -> None:
        self.halted = reason

    def advance(self, pc: Offset | None = None) -> None:
        next_pc = self.insn.next_pc if pc is None else pc
        self.pc = next_pc
        self.insn = self.pgm.decode_instruction(next_pc)

    def charge(self, cost: int) -> None:
        self.gas_remaining = simplify(self.gas_remaining - cost)

    def covers_cost(self, cost: int) -> BoolRef:
        return self.gas_remaining >= cost

    def check(self, *assumptions: BoolRef) -> CheckSatResult:
        return self.path.check(*assumptions)

    def is_sat(self, *assumptions: BoolRef) -> bool:
        return self.path.is_sat(*assumptions)

    def clone(self, path: Path) -> "Execution":
        return Execution(
            pgm=self.pgm,  # immutable, shared
            pc=self.pc,
            gas_remaining=self.gas_remaining,
            stack=self.stack.copy(),
            storage=self.storage.copy(),
            #
            path=path,
            halted=self.halted,
        )
