# SPDX-License-Identifier: AGPL-3.0

import re
from typing import Any, TypeAlias

from z3 import (
    ArithRef,
    BitVecRef,
    BitVecSort,
    BitVecVal,
    IntVal,
    Solver,
    is_bv_value,
    is_int_value,
)

Offset: TypeAlias = int  # byte position in the program
Word: TypeAlias = BitVecRef  # uint256
Gas: TypeAlias = ArithRef  # unbounded integer

WORD_BITS = 256

BitVecSort256 = BitVecSort(WORD_BITS)


def con(n: int, size_bits=WORD_BITS) -> Word:
    return BitVecVal(n, BitVecSort(size_bits))


def gas(n: int) -> Gas:
    return IntVal(n)


def int_or_none(x: Any) -> int | None:
    """
    Returns the concrete value of int-like objects, None if x is symbolic
    """
    if isinstance(x, int):
        return x

    if is_bv_value(x) or is_int_value(x):
        return x.as_long()

    return None


def create_solver(timeout=0, max_memory=0) -> Solver:
    # no fixed logic: gas is an unbounded integer next to 256-bit words
    solver = Solver()

    # set timeout
    solver.set(timeout=timeout)

    # set memory limit
    if max_memory > 0:
        solver.set(max_memory=max_memory)

    return solver


def stripped(hexstring: str) -> str:
    """Remove 0x prefix from hexstring"""
    return hexstring[2:] if hexstring.startswith("0x") else hexstring


def hexify(x):
    if isinstance(x, str):
        return re.sub(r"\b(\d+)\b", lambda match: hex(int(match.group(1))), x)
    elif isinstance(x, int):
        return f"0x{x:02x}"
    elif is_bv_value(x):
        return f"0x{x.as_long():02x}"
    else:
        return hexify(str(x))
