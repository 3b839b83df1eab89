"""
Register bank + flags.

Register model:
  r0..r15 — general registers, each empty or holding one scalar value
            (I32 I64 F32 F64 Char String Bool). A slot takes the type of
            whatever was last written to it; registers are not type-locked.

Flags (recomputed after every arithmetic instruction):
  Z  zero          — result == 0
  P  positive      — result > 0
  N  negative      — result < 0
  E  equal         — left operand == right operand
  L  less_than     — left operand <  right operand
  G  greater_than  — left operand >  right operand
A NaN result clears Z/P/N; NaN operands clear E/L/G.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import FaultKind, VMFault
from .values import Value, SCALAR_TYPES

__all__ = ['REGISTER_COUNT', 'RegisterBank', 'Flags']

REGISTER_COUNT = 16


@dataclass
class Flags:
    zero: bool = False
    positive: bool = False
    negative: bool = False
    equal: bool = False
    less_than: bool = False
    greater_than: bool = False

    def reset(self):
        self.zero = self.positive = self.negative = False
        self.equal = self.less_than = self.greater_than = False

    def copy(self) -> Flags:
        return Flags(self.zero, self.positive, self.negative,
                     self.equal, self.less_than, self.greater_than)

    def display(self) -> str:
        """Flag string, e.g. ``.P..L.``: set flags by letter, clear flags as '.'"""
        bits = (self.zero, self.positive, self.negative,
                self.equal, self.less_than, self.greater_than)
        return ''.join(c if b else '.' for c, b in zip('ZPNELG', bits))


class RegisterBank:
    """Fixed-size bank of optional scalar registers."""

    __slots__ = ('_slots',)

    def __init__(self, count: int = REGISTER_COUNT):
        self._slots: List[Optional[Value]] = [None] * count

    def __len__(self) -> int:
        return len(self._slots)

    def _check(self, index) -> int:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(self._slots):
            raise VMFault(FaultKind.INVALID_REGISTER_INDEX,
                          f"invalid register: {index!r} (bank has {len(self._slots)})")
        return index

    def get(self, index: int) -> Optional[Value]:
        return self._slots[self._check(index)]

    def set(self, index: int, value: Value):
        index = self._check(index)
        if not isinstance(value, SCALAR_TYPES):
            raise VMFault(FaultKind.TYPE_MISMATCH,
                          f"cannot store {type(value).__name__} in register r{index}")
        self._slots[index] = value

    def clear(self):
        for i in range(len(self._slots)):
            self._slots[i] = None

    def snapshot(self) -> Tuple[Optional[Value], ...]:
        return tuple(self._slots)
