"""
Value model for the stack VM.

Every value the machine touches is one of a closed set of immutable
variants. Two values are equal only if they are the same variant AND
carry the same payload, so ``I32(1) != I64(1)``.

  I32 / I64   — signed integers, range-checked at construction
  F32 / F64   — IEEE-754 floats (F32 payloads rounded to single precision)
  Char        — exactly one character
  String      — text
  Bool        — true / false
  Symbol      — reference to another value (indirection)
  Address     — program-store index, or None for an unresolved forward ref

Arithmetic only ever combines two values of the same numeric variant;
there is no implicit widening between I32/I64 or F32/F64.
"""

from __future__ import annotations
import math
import struct
from dataclasses import dataclass
from typing import Optional

__all__ = [
    'Value', 'I32', 'I64', 'F32', 'F64', 'Char', 'String', 'Bool',
    'Symbol', 'Address', 'NUMERIC_TYPES', 'SCALAR_TYPES',
    'I32_MIN', 'I32_MAX', 'I64_MIN', 'I64_MAX', 'to_f32',
]


# ──────────────────────────────────────────────
# Integer ranges
# ──────────────────────────────────────────────

I32_MIN = -(1 << 31)
I32_MAX = (1 << 31) - 1
I64_MIN = -(1 << 63)
I64_MAX = (1 << 63) - 1


def to_f32(x: float) -> float:
    """Round a Python float to the nearest IEEE-754 single.

    Finite values too large for single precision round to +/-inf,
    matching what a 32-bit FPU would produce.
    """
    try:
        return struct.unpack('<f', struct.pack('<f', x))[0]
    except OverflowError:
        return math.copysign(math.inf, x)


def _check_int(name: str, value, lo: int, hi: int):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} payload must be int, got {type(value).__name__}")
    if not lo <= value <= hi:
        raise ValueError(f"{name} payload {value} out of range [{lo}, {hi}]")


# ──────────────────────────────────────────────
# Variants
# ──────────────────────────────────────────────

class Value:
    """Base class for every machine value."""
    __slots__ = ()

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.value!r})"


@dataclass(frozen=True)
class I32(Value):
    value: int

    def __post_init__(self):
        _check_int('I32', self.value, I32_MIN, I32_MAX)


@dataclass(frozen=True)
class I64(Value):
    value: int

    def __post_init__(self):
        _check_int('I64', self.value, I64_MIN, I64_MAX)


@dataclass(frozen=True)
class F32(Value):
    value: float

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise TypeError(f"F32 payload must be a number, got {type(self.value).__name__}")
        object.__setattr__(self, 'value', to_f32(float(self.value)))


@dataclass(frozen=True)
class F64(Value):
    value: float

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise TypeError(f"F64 payload must be a number, got {type(self.value).__name__}")
        object.__setattr__(self, 'value', float(self.value))


@dataclass(frozen=True)
class Char(Value):
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str) or len(self.value) != 1:
            raise ValueError(f"Char payload must be a single character, got {self.value!r}")


@dataclass(frozen=True)
class String(Value):
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str):
            raise TypeError(f"String payload must be str, got {type(self.value).__name__}")


@dataclass(frozen=True)
class Bool(Value):
    value: bool

    def __post_init__(self):
        if not isinstance(self.value, bool):
            raise TypeError(f"Bool payload must be bool, got {type(self.value).__name__}")


@dataclass(frozen=True)
class Symbol(Value):
    """A value that refers to another value."""
    target: Value

    def __post_init__(self):
        if not isinstance(self.target, Value):
            raise TypeError("Symbol must reference a Value")

    def __str__(self) -> str:
        return f"Symbol({self.target})"


@dataclass(frozen=True)
class Address(Value):
    """Program-store index. ``Address(None)`` is a not-yet-patched jump target."""
    target: Optional[int] = None

    def __post_init__(self):
        if self.target is None:
            return
        if isinstance(self.target, bool) or not isinstance(self.target, int) or self.target < 0:
            raise ValueError(f"Address must be None or a non-negative int, got {self.target!r}")

    @property
    def resolved(self) -> bool:
        return self.target is not None

    def __str__(self) -> str:
        return f"Address({self.target})"


NUMERIC_TYPES = (I32, I64, F32, F64)

# Values a register slot may hold
SCALAR_TYPES = NUMERIC_TYPES + (Char, String, Bool)
