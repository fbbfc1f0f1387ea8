"""Encrypted value types understood by the ledgers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class FheType(str, Enum):
    EBOOL = "ebool"
    EUINT64 = "euint64"
    EUINT128 = "euint128"

    @property
    def bits(self) -> int:
        return {"ebool": 1, "euint64": 64, "euint128": 128}[self.value]

    @property
    def is_boolean(self) -> bool:
        return self is FheType.EBOOL

    def wrap(self, value: int | bool) -> int:
        """Reduce ``value`` into the type's domain (unsigned types wrap)."""

        if self.is_boolean:
            return 1 if value else 0
        return int(value) % (1 << self.bits)

    @property
    def max_value(self) -> int:
        return (1 << self.bits) - 1


@dataclass(slots=True)
class EncryptedInput:
    """Handles produced by a client together with the proof binding them to a caller."""

    contract: str
    user: str
    handles: list[str] = field(default_factory=list)
    proof: str = ""

    def __getitem__(self, index: int) -> str:
        return self.handles[index]


__all__ = ["EncryptedInput", "FheType"]
