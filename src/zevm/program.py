# SPDX-License-Identifier: AGPL-3.0

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import ClassVar

from zevm.utils import Offset, hexify, stripped

OP_STOP = 0x00
OP_POP = 0x50
OP_SLOAD = 0x54
OP_SSTORE = 0x55
OP_JUMP = 0x56
OP_JUMPI = 0x57
OP_JUMPDEST = 0x5B
OP_PUSH0 = 0x5F
OP_PUSH1 = 0x60
OP_PUSH32 = 0x7F
OP_INVALID = 0xFE

str_opcode: dict[int, str] = {
    OP_STOP: "STOP",
    OP_POP: "POP",
    OP_SLOAD: "SLOAD",
    OP_SSTORE: "SSTORE",
    OP_JUMP: "JUMP",
    OP_JUMPI: "JUMPI",
    OP_JUMPDEST: "JUMPDEST",
    OP_PUSH0: "PUSH0",
    **{op: f"PUSH{op - OP_PUSH0}" for op in range(OP_PUSH1, OP_PUSH32 + 1)},
    OP_INVALID: "INVALID",
}


def is_push(opcode: int) -> bool:
    return OP_PUSH1 <= opcode <= OP_PUSH32


def insn_len(opcode: int) -> int:
    return 1 + (opcode - OP_PUSH0) * is_push(opcode)


def mnemonic(opcode: int) -> str:
    return str_opcode.get(opcode, hex(opcode))


@dataclass(frozen=True, slots=True, eq=True, order=False)
class Instruction:
    """A decoded opcode, placed at a byte offset once it is part of a Program."""

    opcode: int
    operand: int | None = None
    pc: Offset = -1
    next_pc: Offset = -1

    STOP: ClassVar["Instruction"] = None

    def __str__(self) -> str:
        operand_str = ""
        if self.operand is not None:
            operand_str = f" {hexify(self.operand)}"
        return f"{mnemonic(self.opcode)}{operand_str}"

    def __repr__(self) -> str:
        return f"Instruction({mnemonic(self.opcode)}, pc={self.pc}, operand={self.operand!r})"

    def __len__(self) -> int:
        return insn_len(self.opcode)

    def placed(self, pc: Offset) -> "Instruction":
        return Instruction(self.opcode, self.operand, pc=pc, next_pc=pc + len(self))


# Initialize the STOP singleton
Instruction.STOP = Instruction(OP_STOP)


class Program:
    """
    An immutable sequence of decoded instructions with byte offsets.

    The jump-destination table is derived once, on construction, and is shared
    read-only by every execution of the program.
    """

    _insns: tuple[Instruction, ...]
    _by_pc: dict[Offset, Instruction]
    _jumpdests: tuple[Offset, ...]
    _size: int

    def __init__(self, code: Iterable[Instruction | int] = ()) -> None:
        insns = []
        pc = 0
        for item in code:
            insn = item if isinstance(item, Instruction) else Instruction(item)
            if insn.opcode == OP_PUSH0 and insn.operand is None:
                insn = Instruction(OP_PUSH0, 0)
            if is_push(insn.opcode) or insn.opcode == OP_PUSH0:
                if insn.operand is None:
                    raise ValueError(f"missing operand for {mnemonic(insn.opcode)}")
                if insn.operand >> (8 * (len(insn) - 1)):
                    raise ValueError(f"operand too large for {insn}")
            insn = insn.placed(pc)
            insns.append(insn)
            pc = insn.next_pc

        self._insns = tuple(insns)
        self._by_pc = {insn.pc: insn for insn in insns}
        self._size = pc
        self._jumpdests = tuple(
            insn.pc for insn in self._insns if insn.opcode == OP_JUMPDEST
        )

    def __deepcopy__(self, memo):
        # immutable, so it can be shared across all executions
        return self

    @staticmethod
    def from_bytes(bytecode: bytes) -> "Program":
        insns = []
        pc = 0
        N = len(bytecode)
        while pc < N:
            opcode = bytecode[pc]
            length = insn_len(opcode)
            if length > 1:
                # the EVM reads missing push data past the end of the code as zeroes
                data = bytecode[pc + 1 : pc + length].ljust(length - 1, b"\x00")
                insns.append(Instruction(opcode, int.from_bytes(data, "big")))
            elif opcode == OP_PUSH0:
                insns.append(Instruction(opcode, 0))
            else:
                insns.append(Instruction(opcode))
            pc += length

        return Program(insns)

    @staticmethod
    def from_hexcode(hexcode: str) -> "Program":
        """Create a program from a hexcode string, e.g. "6001600157" """
        if not isinstance(hexcode, str):
            raise ValueError(hexcode)

        hexcode = stripped(hexcode.strip())
        if len(hexcode) % 2 != 0:
            raise ValueError(hexcode)

        try:
            return Program.from_bytes(bytes.fromhex(hexcode))
        except ValueError as e:
            raise ValueError(f"{e} (hexcode={hexcode})") from e

    def decode_instruction(self, pc: Offset) -> Instruction:
        """Returns the instruction at pc; implicit STOP past the end of the code"""
        if pc < 0:
            raise ValueError(f"invalid {pc=}")

        if (insn := self._by_pc.get(pc)) is not None:
            return insn

        if pc >= self._size:
            return Instruction.STOP.placed(pc)

        raise ValueError(f"{pc=} is not at an instruction boundary")

    def next_pc(self, pc: Offset) -> Offset:
        return self.decode_instruction(pc).next_pc

    def valid_jumpdests(self) -> tuple[Offset, ...]:
        """Returns the valid jump destinations in ascending order."""
        return self._jumpdests

    def is_jumpdest(self, pc: Offset) -> bool:
        insn = self._by_pc.get(pc)
        return insn is not None and insn.opcode == OP_JUMPDEST

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self._insns)

    def __len__(self) -> int:
        """Returns the length of the bytecode in bytes."""
        return self._size

    def __str__(self) -> str:
        return "\n".join(f"{insn.pc:04x}: {insn}" for insn in self._insns)
