# SPDX-License-Identifier: AGPL-3.0

from abc import ABC, abstractmethod

from z3 import Array, ArrayRef, Select, Store, eq, is_bv_value

from zevm.exceptions import StorageError
from zevm.utils import BitVecSort256, Word


class Storage(ABC):
    """
    Symbolic key-value storage consumed by SLOAD and SSTORE.

    Backends report failures by raising `error_kind`; the driver propagates them
    unchanged and leaves the execution as it was before the failed `apply`.
    """

    error_kind: type[Exception] = StorageError

    @abstractmethod
    def read(self, key: Word) -> Word: ...

    @abstractmethod
    def write(self, key: Word, value: Word) -> None: ...

    @abstractmethod
    def copy(self) -> "Storage":
        """Returns an independent copy for a forked execution."""
        ...


class InMemoryStorage(Storage):
    """
    Storage as a z3 array from words to words, initially unconstrained.
    """

    array: ArrayRef

    def __init__(self, array: ArrayRef | None = None, name: str = "storage") -> None:
        self.array = (
            array if array is not None else Array(name, BitVecSort256, BitVecSort256)
        )

    def __str__(self) -> str:
        return str(self.array)

    def read(self, key: Word) -> Word:
        return self.select(self.array, key)

    def write(self, key: Word, value: Word) -> None:
        self.array = Store(self.array, key, value)

    def copy(self) -> "InMemoryStorage":
        # z3 terms are immutable, so sharing the array is enough
        return InMemoryStorage(self.array)

    @classmethod
    def select(cls, array: ArrayRef, key: Word) -> Word:
        # skip stores whose key is provably different without asking the solver
        if array.decl().name() == "store" and array.num_args() == 3:
            base = array.arg(0)
            key0 = array.arg(1)
            val0 = array.arg(2)
            if eq(key, key0):  # structural equality
                return val0
            if is_bv_value(key) and is_bv_value(key0):
                return cls.select(base, key)
        return Select(array, key)
