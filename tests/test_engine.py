"""
Execution engine tests.

Programs are placed straight into a Program store so the engine is
exercised without the builder.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import math
import pytest
from stackvm.channel import Message, MessageChannel, QueueChannel
from stackvm.config import EngineConfig, PROFILES, get_profile
from stackvm.engine import Engine, EngineState, StopReason
from stackvm.errors import ChannelError, FaultKind, StackVMError
from stackvm.instructions import (
    Nop, Push, Pop, Add, Sub, Mul, Div, Jmp, Halt, Out, Dump, Movi, Movr,
    MetaData, EMPTY,
)
from stackvm.program import Program
from stackvm.values import I32, I64, F64, Char, String, Address, Symbol, I32_MAX


def run(cells, **kwargs):
    """Run a list of cells on a fresh engine and return (engine, result)."""
    engine = Engine(Program(cells), **kwargs)
    return engine, engine.run()


class TestExecution:
    """Fetch/decode/execute of the basic instruction set."""

    def test_push_add_halt(self):
        """push 21; push 21; add; halt → [I32(42)]."""
        engine, result = run([Push(I32(21)), Push(I32(21)), Add(), Halt()])
        assert result.reason is StopReason.HALT
        assert result.ok
        assert result.stack == (I32(42),)
        assert engine.results() == [I32(42)]
        assert result.steps == 4

    def test_halt_leaves_pc_on_halt(self):
        engine, result = run([Nop(), Nop(), Halt()])
        assert result.pc == 2
        assert engine.state is EngineState.HALTED

    def test_operand_order(self):
        """Right operand is popped first: 10 - 3, not 3 - 10."""
        _, result = run([Push(I32(10)), Push(I32(3)), Sub(), Halt()])
        assert result.stack == (I32(7),)
        _, result = run([Push(F64(1.0)), Push(F64(4.0)), Div(), Halt()])
        assert result.stack == (F64(0.25),)

    def test_mul_and_pop(self):
        _, result = run([Push(I64(6)), Push(I64(7)), Mul(), Push(I32(1)), Pop(), Halt()])
        assert result.stack == (I64(42),)

    def test_jmp_skips_cells(self):
        cells = [Jmp(Address(2)), Push(I32(1)), Push(I32(2)), Halt()]
        _, result = run(cells)
        assert result.stack == (I32(2),)

    def test_flags_after_arithmetic(self):
        engine, _ = run([Push(I32(3)), Push(I32(5)), Sub(), Halt()])
        assert engine.flags.negative
        assert engine.flags.less_than
        assert not engine.flags.zero

    def test_push_non_scalar_values(self):
        """Any Value may sit on the stack; only arithmetic is typed."""
        sym = Symbol(String("x"))
        _, result = run([Push(sym), Push(Char("c")), Halt()])
        assert result.stack == (sym, Char("c"))


class TestFaults:
    """Every fault halts the engine and is reported in the result."""

    def test_type_mismatch(self):
        _, result = run([Push(I32(1)), Push(I64(1)), Add(), Halt()])
        assert result.reason is StopReason.FAULT
        assert result.fault_kind is FaultKind.TYPE_MISMATCH
        assert result.pc == 2
        assert isinstance(result.fault.instruction, Add)

    def test_stack_underflow_pop(self):
        _, result = run([Pop(), Halt()])
        assert result.fault_kind is FaultKind.STACK_UNDERFLOW

    def test_stack_underflow_arith(self):
        _, result = run([Push(I32(1)), Add(), Halt()])
        assert result.fault_kind is FaultKind.STACK_UNDERFLOW

    def test_run_off_end(self):
        """Falling off the end of the store is an invalid cell."""
        _, result = run([Push(I32(1))])
        assert result.fault_kind is FaultKind.INVALID_MEMORY_CELL
        assert result.pc == 1

    def test_execute_data_cells(self):
        for cell in (I32(5), MetaData("note"), EMPTY):
            _, result = run([cell])
            assert result.fault_kind is FaultKind.INVALID_MEMORY_CELL

    def test_unresolved_jump(self):
        _, result = run([Jmp(Address(None)), Halt()])
        assert result.fault_kind is FaultKind.UNRESOLVED_JUMP

    def test_jump_out_of_range(self):
        _, result = run([Jmp(Address(99))])
        assert result.fault_kind is FaultKind.INVALID_MEMORY_CELL
        assert result.pc == 99

    def test_malformed_jump(self):
        _, result = run([Jmp(I32(0))])
        assert result.fault_kind is FaultKind.MALFORMED_INSTRUCTION

    def test_integer_overflow(self):
        _, result = run([Push(I32(I32_MAX)), Push(I32(1)), Add(), Halt()])
        assert result.fault_kind is FaultKind.INTEGER_OVERFLOW

    def test_integer_division_by_zero(self):
        _, result = run([Push(I32(1)), Push(I32(0)), Div(), Halt()])
        assert result.fault_kind is FaultKind.DIVISION_BY_ZERO

    def test_float_division_by_zero(self):
        """IEEE by default, fault under strict_float_division."""
        _, result = run([Push(F64(1.0)), Push(F64(0.0)), Div(), Halt()])
        assert result.ok
        assert result.stack[0].value == math.inf

        cfg = EngineConfig(strict_float_division=True)
        _, result = run([Push(F64(1.0)), Push(F64(0.0)), Div(), Halt()], config=cfg)
        assert result.fault_kind is FaultKind.DIVISION_BY_ZERO

    def test_fault_takes_snapshot(self):
        snaps = []
        engine, result = run([Push(I32(7)), Pop(), Pop()], on_dump=snaps.append)
        assert len(engine.dumps) == 1
        assert snaps == engine.dumps
        assert snaps[0].pc == 2

    def test_fault_without_dump(self):
        engine, result = run([Pop()], config=EngineConfig(dump_on_fault=False))
        assert result.fault_kind is FaultKind.STACK_UNDERFLOW
        assert engine.dumps == []

    def test_fault_logged(self, caplog):
        with caplog.at_level("ERROR", logger="stackvm.engine"):
            run([Pop()])
        assert "StackUnderflow" in caplog.text


class TestRegisters:
    """MOVI / MOVR semantics."""

    def test_movi_movr(self):
        engine, result = run([Movi(0, I32(5)), Movr(3, 0), Halt()])
        assert result.ok
        assert engine.registers.get(0) == I32(5)
        assert engine.registers.get(3) == I32(5)

    def test_registers_untyped(self):
        engine, _ = run([Movi(1, I32(5)), Movi(1, String("now text")), Halt()])
        assert engine.registers.get(1) == String("now text")

    def test_invalid_register(self):
        _, result = run([Movi(16, I32(1)), Halt()])
        assert result.fault_kind is FaultKind.INVALID_REGISTER_INDEX
        _, result = run([Movr(0, -1), Halt()])
        assert result.fault_kind is FaultKind.INVALID_REGISTER_INDEX

    def test_register_count_configurable(self):
        _, result = run([Movi(20, I32(1)), Halt()], config=EngineConfig(register_count=32))
        assert result.ok

    def test_movr_empty_source(self):
        _, result = run([Movr(1, 0), Halt()])
        assert result.fault_kind is FaultKind.TYPE_MISMATCH

    def test_movi_rejects_address(self):
        _, result = run([Movi(0, Address(1)), Halt()])
        assert result.fault_kind is FaultKind.TYPE_MISMATCH


class TestChannel:
    """OUT goes through the supplied channel only."""

    def test_out_sends(self):
        ch = QueueChannel()
        msg = Message(0, 2, String("hi"))
        _, result = run([Out(2, msg), Halt()], channel=ch)
        assert result.ok
        assert ch.sent == [(2, msg)]
        assert ch.output(2) == ["hi"]

    def test_out_without_channel(self):
        _, result = run([Out(1, Message(0, 1, I32(1))), Halt()])
        assert result.fault_kind is FaultKind.NO_CHANNEL_CONFIGURED

    def test_out_malformed_message(self):
        _, result = run([Out(1, I32(1)), Halt()], channel=QueueChannel())
        assert result.fault_kind is FaultKind.MALFORMED_INSTRUCTION

    def test_channel_failure(self):
        class Broken(MessageChannel):
            def send(self, port, message):
                raise ChannelError("line down")

            def receive(self, port):
                return None

        _, result = run([Out(1, Message(0, 1, I32(1))), Halt()], channel=Broken())
        assert result.fault_kind is FaultKind.CHANNEL_FAILURE
        assert "line down" in str(result.fault)

    def test_reset_swaps_channel(self):
        first, second = QueueChannel(), QueueChannel()
        engine = Engine(Program([Out(1, Message(0, 1, I32(1))), Halt()]), channel=first)
        engine.reset(channel=second)
        engine.run()
        assert first.sent == []
        assert len(second.sent) == 1


class TestLifecycle:
    """reset/step/run state machine, step ceiling, dumps, trace."""

    def test_step_requires_reset(self):
        engine = Engine(Program([Halt()]))
        with pytest.raises(StackVMError):
            engine.step()

    def test_single_stepping(self):
        engine = Engine(Program([Push(I32(1)), Push(I32(2)), Add(), Halt()]))
        engine.reset()
        assert engine.step() is None
        assert engine.stack == [I32(1)]
        assert engine.step() is None
        assert engine.step() is None
        assert engine.step() is StopReason.HALT
        # halted engines stay halted
        assert engine.step() is StopReason.HALT
        assert engine.steps == 4

    def test_rerun_resets_state(self):
        engine = Engine(Program([Push(I32(1)), Halt()]))
        engine.run()
        result = engine.run()
        assert result.stack == (I32(1),)

    def test_step_limit(self):
        engine, result = run([Jmp(Address(0))], config=EngineConfig(max_steps=5))
        assert result.reason is StopReason.STEP_LIMIT
        assert result.fault_kind is FaultKind.STEP_LIMIT_EXCEEDED
        assert result.steps == 5

    def test_dump_instruction(self):
        snaps = []
        engine, result = run([Push(I32(9)), Movi(2, Char("z")), Dump(), Halt()],
                             on_dump=snaps.append)
        assert result.ok
        assert len(snaps) == 1
        snap = snaps[0]
        assert snap.pc == 2
        assert snap.stack == (I32(9),)
        assert snap.registers[2] == Char("z")
        assert "r2=Char('z')" in snap.display()

    def test_dump_callback_error_logged(self, caplog):
        """A failing on_dump callback neither stops the run nor escapes it."""
        def broken(snap):
            raise RuntimeError("viewer crashed")

        with caplog.at_level("ERROR", logger="stackvm.engine"):
            engine, result = run([Dump(), Push(I32(1)), Halt()], on_dump=broken)
        assert result.ok
        assert result.stack == (I32(1),)
        assert len(engine.dumps) == 1
        assert "on_dump callback failed" in caplog.text

    def test_dump_callback_error_on_fault(self):
        def broken(snap):
            raise RuntimeError("viewer crashed")

        engine, result = run([Pop()], on_dump=broken)
        assert result.fault_kind is FaultKind.STACK_UNDERFLOW
        assert engine.state is EngineState.HALTED

    def test_trace(self):
        engine, _ = run([Push(I32(1)), Halt()], config=EngineConfig(trace=True))
        assert len(engine.trace_output) == 2
        assert engine.trace_output[0].startswith("0000: push I32(1)")

    def test_load_requires_reset(self):
        engine = Engine(Program([Halt()]))
        engine.run()
        engine.load(Program([Push(I32(3)), Halt()]))
        assert engine.state is EngineState.IDLE
        assert engine.run().stack == (I32(3),)


class TestConfig:
    """EngineConfig validation and named profiles."""

    def test_defaults(self):
        cfg = EngineConfig()
        assert cfg.register_count == 16
        assert cfg.max_steps is None
        assert not cfg.strict_float_division

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            EngineConfig(register_count=0)
        with pytest.raises(ValueError):
            EngineConfig(max_steps=0)

    def test_profiles(self):
        assert set(PROFILES) == {"default", "strict", "sandbox"}
        strict = get_profile("strict")
        assert strict.strict_float_division
        assert strict.max_steps == 1_000_000
        assert get_profile("sandbox").trace

    def test_profile_overrides(self):
        cfg = get_profile("sandbox", max_steps=50, trace=None)
        assert cfg.max_steps == 50
        assert cfg.trace

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            get_profile("turbo")
