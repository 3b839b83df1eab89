"""
Value model and ALU tests.

Covers variant construction rules, same-variant arithmetic, flag
computation, integer range faults and division semantics.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import math
import pytest
from stackvm import alu
from stackvm.errors import FaultKind, VMFault
from stackvm.values import (
    I32, I64, F32, F64, Char, String, Bool, Symbol, Address,
    I32_MAX, I32_MIN, I64_MAX, to_f32,
)


class TestValues:
    """Construction and equality of value variants."""

    def test_variants_are_distinct(self):
        """Same payload, different variant: not equal."""
        assert I32(1) != I64(1)
        assert F32(1.0) != F64(1.0)
        assert I32(1) == I32(1)

    def test_int_range_checked(self):
        """I32 rejects payloads outside 32-bit signed range."""
        with pytest.raises(ValueError):
            I32(I32_MAX + 1)
        with pytest.raises(ValueError):
            I32(I32_MIN - 1)
        assert I64(I32_MAX + 1).value == I32_MAX + 1

    def test_int_rejects_bool_and_float(self):
        with pytest.raises(TypeError):
            I32(True)
        with pytest.raises(TypeError):
            I64(1.5)

    def test_f32_rounds_to_single(self):
        """F32 payload is stored at single precision."""
        assert F32(0.1).value == to_f32(0.1)
        assert F32(0.1).value != 0.1

    def test_f32_overflow_is_inf(self):
        assert F32(1e300).value == math.inf

    def test_char_single_character(self):
        with pytest.raises(ValueError):
            Char("ab")
        assert Char("x").value == "x"

    def test_address_unresolved(self):
        assert not Address(None).resolved
        assert Address(3).resolved
        with pytest.raises(ValueError):
            Address(-1)

    def test_symbol_wraps_value(self):
        sym = Symbol(String("loop"))
        assert sym.target == String("loop")
        with pytest.raises(TypeError):
            Symbol("loop")

    def test_str_form(self):
        assert str(I32(42)) == "I32(42)"
        assert str(Bool(True)) == "Bool(True)"


class TestArithmetic:
    """Same-variant arithmetic results."""

    def test_add_i32(self):
        result, _ = alu.add(I32(21), I32(21))
        assert result == I32(42)

    def test_sub_i64(self):
        result, _ = alu.sub(I64(10), I64(15))
        assert result == I64(-5)

    def test_mul_f64(self):
        result, _ = alu.mul(F64(1.5), F64(4.0))
        assert result == F64(6.0)

    def test_add_f32_stays_single(self):
        """F32 results are rounded back to single precision."""
        result, _ = alu.add(F32(0.1), F32(0.2))
        assert isinstance(result, F32)
        assert result.value == to_f32(to_f32(0.1) + to_f32(0.2))

    def test_mixed_variants_fault(self):
        """Every mixed-variant pair faults TYPE_MISMATCH."""
        pairs = [
            (I32(1), I64(1)),
            (F32(1.0), F64(1.0)),
            (I32(1), F64(1.0)),
            (I64(2), F32(2.0)),
        ]
        for op in (alu.add, alu.sub, alu.mul, alu.div):
            for left, right in pairs:
                with pytest.raises(VMFault) as exc:
                    op(left, right)
                assert exc.value.kind is FaultKind.TYPE_MISMATCH

    def test_non_numeric_fault(self):
        with pytest.raises(VMFault) as exc:
            alu.add(String("a"), String("b"))
        assert exc.value.kind is FaultKind.TYPE_MISMATCH

    def test_i32_overflow_faults(self):
        """No silent wrap-around."""
        with pytest.raises(VMFault) as exc:
            alu.add(I32(I32_MAX), I32(1))
        assert exc.value.kind is FaultKind.INTEGER_OVERFLOW

    def test_i64_overflow_faults(self):
        with pytest.raises(VMFault) as exc:
            alu.mul(I64(I64_MAX), I64(2))
        assert exc.value.kind is FaultKind.INTEGER_OVERFLOW


class TestDivision:
    """Integer truncation, zero divisors, IEEE float division."""

    def test_int_div_truncates_toward_zero(self):
        assert alu.div(I32(7), I32(2))[0] == I32(3)
        assert alu.div(I32(-7), I32(2))[0] == I32(-3)
        assert alu.div(I32(7), I32(-2))[0] == I32(-3)
        assert alu.div(I64(-7), I64(-2))[0] == I64(3)

    def test_int_div_by_zero(self):
        for zero in (I32(0), I64(0)):
            with pytest.raises(VMFault) as exc:
                alu.div(type(zero)(5), zero)
            assert exc.value.kind is FaultKind.DIVISION_BY_ZERO

    def test_i32_min_div_minus_one_overflows(self):
        with pytest.raises(VMFault) as exc:
            alu.div(I32(I32_MIN), I32(-1))
        assert exc.value.kind is FaultKind.INTEGER_OVERFLOW

    def test_float_div_by_zero_ieee(self):
        assert alu.div(F64(1.0), F64(0.0))[0].value == math.inf
        assert alu.div(F64(-1.0), F64(0.0))[0].value == -math.inf
        assert math.isnan(alu.div(F64(0.0), F64(0.0))[0].value)
        assert alu.div(F32(2.0), F32(0.0))[0] == F32(math.inf)

    def test_float_div_by_zero_strict(self):
        with pytest.raises(VMFault) as exc:
            alu.div(F64(1.0), F64(0.0), strict=True)
        assert exc.value.kind is FaultKind.DIVISION_BY_ZERO


class TestFlags:
    """Z/P/N from the result, E/L/G from the operands."""

    def test_negative_result(self):
        _, flags = alu.sub(I32(3), I32(5))
        assert flags.negative and flags.less_than
        assert not (flags.zero or flags.positive or flags.equal or flags.greater_than)
        assert flags.display() == "..N.L."

    def test_zero_result(self):
        _, flags = alu.sub(I32(4), I32(4))
        assert flags.zero and flags.equal
        assert flags.display() == "Z..E.."

    def test_positive_result(self):
        _, flags = alu.add(F64(2.0), F64(1.0))
        assert flags.positive and flags.greater_than

    def test_nan_clears_result_flags(self):
        _, flags = alu.div(F64(0.0), F64(0.0))
        assert not (flags.zero or flags.positive or flags.negative)
        assert flags.equal
