# SPDX-License-Identifier: AGPL-3.0

from collections.abc import Iterable, Iterator
from typing import TypeAlias

from z3 import Int, Solver

from zevm.config import Config, default_config
from zevm.exceptions import AlreadyHalted, AppliedOutcomeNotOffered
from zevm.execution import Execution, Path, Stack
from zevm.logs import DEPTH_BOUND, WIDTH_BOUND, debug, warn_code
from zevm.ops import symbolic_op
from zevm.outcomes import Outcome, sorted_outcomes
from zevm.program import Instruction, Program, mnemonic
from zevm.storage import InMemoryStorage, Storage
from zevm.utils import create_solver, gas

ExecutionId: TypeAlias = int
Step: TypeAlias = list[tuple[ExecutionId, Outcome]]


class Worklist:
    def __init__(self):
        self.stack: list[ExecutionId] = []
        self.completed_paths = 0

    def push(self, eid: ExecutionId):
        self.stack.append(eid)

    def pop(self) -> ExecutionId | None:
        try:
            return self.stack.pop()
        except IndexError:
            return None

    def __len__(self) -> int:
        return len(self.stack)


class ZEvm:
    """
    Symbolic executor driven one instruction at a time by the caller.

    `step()` enumerates the feasible outcomes of the current instruction of every live execution,
    `apply()` commits one of them, and `fork()` duplicates an execution (including its solver)
    so that sibling outcomes can be committed independently.
    """

    options: Config
    program: Program
    executions: list[Execution]

    # outcomes offered by the last enumeration, per execution; removed once one is applied
    offered: dict[ExecutionId, list[Outcome]]

    def __init__(
        self, options: Config, program: Program, executions: list[Execution]
    ) -> None:
        self.options = options
        self.program = program
        self.executions = executions
        self.offered = {}

    def mk_solver(self) -> Solver:
        return create_solver(
            timeout=self.options.solver_timeout_branching,
            max_memory=self.options.solver_max_memory,
        )

    def execution(self, eid: ExecutionId = 0) -> Execution:
        return self.executions[eid]

    def live(self) -> list[ExecutionId]:
        return [eid for eid, ex in enumerate(self.executions) if not ex.is_halted()]

    def outcomes(self, eid: ExecutionId) -> list[Outcome]:
        """
        Enumerates the feasible outcomes of the current instruction of one execution.

        Outcomes are in canonical order: halts, then jumps by ascending offset, then advance.
        Raises SolverUnknown if a feasibility query is inconclusive.
        """

        ex = self.execution(eid)
        if ex.is_halted():
            raise AlreadyHalted(eid, ex.halted)

        outcomes = self._enumerate(ex)

        self.offered[eid] = outcomes
        return outcomes

    def _enumerate(self, ex: Execution) -> list[Outcome]:
        op = symbolic_op(ex.current_opcode())
        return sorted_outcomes(op.outcomes(ex))

    def step(self) -> Step:
        """
        Enumerates the outcomes of every live execution, in execution id order.

        If any enumeration fails, no offered outcomes are published.
        """

        offered = {eid: self._enumerate(self.execution(eid)) for eid in self.live()}

        self.offered.update(offered)
        return [(eid, outcome) for eid, outcomes in offered.items() for outcome in outcomes]

    def apply(self, eid: ExecutionId, outcome: Outcome) -> "ZEvm":
        """
        Commits an offered outcome to an execution.

        The execution is replaced by a new object only if the commit succeeds;
        on failure (including storage errors) it is left as it was.
        """

        ex = self.execution(eid)
        if ex.is_halted():
            raise AlreadyHalted(eid, ex.halted)

        offered = self.offered.get(eid, [])
        if outcome not in offered:
            raise AppliedOutcomeNotOffered(eid, outcome, offered)

        op = symbolic_op(ex.current_opcode())

        new_ex = ex.clone(ex.path.stage())
        op.execute(new_ex, outcome)
        new_ex.path.activate()

        self.executions[eid] = new_ex
        del self.offered[eid]

        debug(f"[{eid}] pc={ex.pc} {mnemonic(ex.current_opcode())}: {outcome}")

        return self

    def fork(self, eid: ExecutionId) -> ExecutionId:
        """
        Duplicates an execution and its solver assertions; returns the id of the copy.

        The copy inherits the outcomes offered to `eid`.
        """

        ex = self.execution(eid)
        if ex.is_halted():
            raise AlreadyHalted(eid, ex.halted)

        new_ex = ex.clone(ex.path.fork(self.mk_solver()))
        self.executions.append(new_ex)
        new_eid = len(self.executions) - 1

        if eid in self.offered:
            self.offered[new_eid] = list(self.offered[eid])

        return new_eid

    def explore(self) -> Iterator[Execution]:
        """
        Depth-first exploration of every outcome, in enumeration order; yields executions as they halt.

        Paths longer than `--depth` steps are dropped, and exploration stops after `--width` halted paths.
        """

        # cache config options out of the loop
        max_depth = self.options.depth
        max_width = self.options.width
        print_steps = self.options.print_steps

        stack = Worklist()
        depth: dict[ExecutionId, int] = {}

        for eid in reversed(range(len(self.executions))):
            stack.push(eid)
            depth[eid] = 0

        while (eid := stack.pop()) is not None:
            ex = self.execution(eid)

            if ex.is_halted():
                stack.completed_paths += 1
                yield ex

                # 0 width is unlimited
                if max_width and stack.completed_paths >= max_width:
                    if len(stack):
                        warn_code(
                            WIDTH_BOUND,
                            f"incomplete execution due to the specified limit: --width {max_width}",
                            allow_duplicate=False,
                        )
                    return

                continue

            if max_depth and depth[eid] >= max_depth:
                warn_code(
                    DEPTH_BOUND,
                    f"incomplete execution due to the specified limit: --depth {max_depth}",
                    allow_duplicate=False,
                )
                continue

            if print_steps:
                print(ex.dump())

            outcomes = self.outcomes(eid)
            if not outcomes:
                # the path condition itself is unsatisfiable
                debug(f"[{eid}] no feasible outcome at pc={ex.pc}")
                continue

            # fork before applying, apply() moves eid forward
            siblings = [eid] + [self.fork(eid) for _ in outcomes[1:]]
            next_depth = depth[eid] + 1
            for sibling, outcome in zip(siblings, outcomes, strict=True):
                self.apply(sibling, outcome)
                depth[sibling] = next_depth

            for sibling in reversed(siblings):
                stack.push(sibling)


class Builder:
    """
    Builds a ZEvm with a single execution at pc 0 and an empty stack.
    """

    def __init__(
        self,
        program: Program | Iterable[Instruction | int],
        options: Config | None = None,
    ) -> None:
        self.program = program if isinstance(program, Program) else Program(program)
        self.options = options or default_config()
        self.gas = self.options.gas
        self.storage = None

    def set_gas(self, gas: int | None) -> "Builder":
        self.gas = gas
        return self

    def set_storage(self, storage: Storage) -> "Builder":
        self.storage = storage
        return self

    def build(self) -> ZEvm:
        evm = ZEvm(self.options, self.program, [])
        evm.executions.append(self.mk_exec(Path(evm.mk_solver())))
        return evm

    def mk_exec(self, path: Path) -> Execution:
        return Execution(
            pgm=self.program,
            pc=0,
            gas_remaining=Int("gas") if self.gas is None else gas(self.gas),
            stack=Stack(limit=self.options.stack_limit),
            storage=self.storage if self.storage is not None else InMemoryStorage(),
            #
            path=path,
        )


def build(
    program: Program | Iterable[Instruction | int],
    initial_gas: int | None = None,
    options: Config | None = None,
) -> ZEvm:
    builder = Builder(program, options)
    if initial_gas is not None:
        builder.set_gas(initial_gas)
    return builder.build()
