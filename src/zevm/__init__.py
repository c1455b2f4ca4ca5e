# SPDX-License-Identifier: AGPL-3.0

from zevm.exceptions import (
    AlreadyHalted,
    AppliedOutcomeNotOffered,
    SolverUnknown,
    StorageError,
    UsageError,
    ZEvmException,
)
from zevm.outcomes import ADVANCE, Advance, Halt, HaltReason, Jump, Outcome, Run
from zevm.program import Instruction, Program
from zevm.sevm import Builder, ZEvm, build
from zevm.storage import InMemoryStorage, Storage

__all__ = [
    "ADVANCE",
    "Advance",
    "AlreadyHalted",
    "AppliedOutcomeNotOffered",
    "Builder",
    "Halt",
    "HaltReason",
    "InMemoryStorage",
    "Instruction",
    "Jump",
    "Outcome",
    "Program",
    "Run",
    "SolverUnknown",
    "Storage",
    "StorageError",
    "UsageError",
    "ZEvm",
    "ZEvmException",
    "build",
]
