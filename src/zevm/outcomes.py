# SPDX-License-Identifier: AGPL-3.0

"""
Outcomes of attempting one instruction.

An outcome is either `Halt(reason)`, a terminal state of the modeled machine,
or `Run(kind)` where kind is `ADVANCE` (fall through to the next instruction)
or `Jump(offset)`. Halts are data, never exceptions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TypeAlias

from zevm.utils import Offset


class HaltReason(Enum):
    # declaration order is the order in which halts are reported
    STACK_UNDERFLOW = "stack underflow"
    STACK_OVERFLOW = "stack overflow"
    OUT_OF_GAS = "out of gas"
    INVALID_JUMP_DEST = "invalid jump destination"
    INVALID_OPCODE = "invalid opcode"
    STOP = "stop"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class Advance:
    def __str__(self) -> str:
        return "Advance"


@dataclass(frozen=True, slots=True)
class Jump:
    target: Offset

    def __str__(self) -> str:
        return f"Jump({self.target})"


RunKind: TypeAlias = Advance | Jump

ADVANCE = Advance()


@dataclass(frozen=True, slots=True)
class Run:
    kind: RunKind

    def __str__(self) -> str:
        return f"Run({self.kind})"


@dataclass(frozen=True, slots=True)
class Halt:
    reason: HaltReason

    def __str__(self) -> str:
        return f"Halt({self.reason.name})"


Outcome: TypeAlias = Run | Halt

_HALT_ORDER = {reason: idx for idx, reason in enumerate(HaltReason)}


def outcome_order(outcome: Outcome) -> tuple:
    """
    Sort key for the canonical order: halts, then jumps by ascending offset, then advance.
    """
    match outcome:
        case Halt(reason):
            return (0, _HALT_ORDER[reason])
        case Run(Jump(target)):
            return (1, target)
        case Run(Advance()):
            return (2, 0)

    raise TypeError(f"not an outcome: {outcome!r}")


def sorted_outcomes(outcomes) -> list[Outcome]:
    return sorted(outcomes, key=outcome_order)
