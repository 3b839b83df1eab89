"""
ALU — typed arithmetic over same-variant numeric values.

Each operation takes (left, right) and returns (result, flags). The
caller (engine) installs the flags and pushes the result.

Rules:
  - both operands must be the SAME variant, and numeric (I32 I64 F32 F64)
  - integer results outside the variant's range fault INTEGER_OVERFLOW
    (no silent wrap-around)
  - integer division truncates toward zero; divide by zero faults
  - float division by zero follows IEEE-754 (±inf, NaN) unless strict
  - F32 results are rounded back to single precision
"""

from __future__ import annotations
import math
import operator
from typing import Callable, Dict, Tuple

from .errors import FaultKind, VMFault
from .regs import Flags
from .values import (
    Value, I32, I64, F32, F64, NUMERIC_TYPES,
    I32_MIN, I32_MAX, I64_MIN, I64_MAX,
)

__all__ = ['add', 'sub', 'mul', 'div', 'compute_flags', 'OPERATIONS']

_INT_RANGES = {
    I32: (I32_MIN, I32_MAX),
    I64: (I64_MIN, I64_MAX),
}


def compute_flags(result: Value, left: Value, right: Value) -> Flags:
    """Z/P/N from the result against zero, E/L/G from left vs right.

    NaN compares false against everything, so a NaN clears the
    corresponding group without special-casing.
    """
    r = result.value
    a, b = left.value, right.value
    return Flags(
        zero=r == 0,
        positive=r > 0,
        negative=r < 0,
        equal=a == b,
        less_than=a < b,
        greater_than=a > b,
    )


def _check_operands(op: str, left: Value, right: Value):
    if type(left) is not type(right):
        raise VMFault(FaultKind.TYPE_MISMATCH,
                      f"{op}: cannot combine {type(left).__name__} with {type(right).__name__}")
    if not isinstance(left, NUMERIC_TYPES):
        raise VMFault(FaultKind.TYPE_MISMATCH,
                      f"{op}: {type(left).__name__} is not a numeric type")


def _int_result(op: str, cls, value: int) -> Value:
    lo, hi = _INT_RANGES[cls]
    if not lo <= value <= hi:
        raise VMFault(FaultKind.INTEGER_OVERFLOW,
                      f"{op}: {cls.__name__} result {value} out of range")
    return cls(value)


def _apply(op: str, left: Value, right: Value,
           int_fn: Callable, float_fn: Callable) -> Tuple[Value, Flags]:
    _check_operands(op, left, right)
    cls = type(left)
    if cls in _INT_RANGES:
        result = _int_result(op, cls, int_fn(left.value, right.value))
    else:
        # F32's constructor rounds to single precision
        result = cls(float_fn(left.value, right.value))
    return result, compute_flags(result, left, right)


def _int_div(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    if b == 0:
        raise VMFault(FaultKind.DIVISION_BY_ZERO, "Div: integer division by zero")
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def _float_div(a: float, b: float, strict: bool = False) -> float:
    if b == 0.0:
        if strict:
            raise VMFault(FaultKind.DIVISION_BY_ZERO, "Div: float division by zero")
        if a == 0.0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def add(left: Value, right: Value) -> Tuple[Value, Flags]:
    return _apply('Add', left, right, operator.add, operator.add)


def sub(left: Value, right: Value) -> Tuple[Value, Flags]:
    return _apply('Sub', left, right, operator.sub, operator.sub)


def mul(left: Value, right: Value) -> Tuple[Value, Flags]:
    return _apply('Mul', left, right, operator.mul, operator.mul)


def div(left: Value, right: Value, strict: bool = False) -> Tuple[Value, Flags]:
    return _apply('Div', left, right, _int_div,
                  lambda a, b: _float_div(a, b, strict))


OPERATIONS: Dict[str, Callable] = {
    'add': add,
    'sub': sub,
    'mul': mul,
    'div': div,
}
