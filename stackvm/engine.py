"""
Execution engine — fetch/decode/execute state machine.

States:
  IDLE     — constructed, not yet reset
  RUNNING  — reset() done, step()/run() execute instructions
  HALTED   — terminal: reached via HALT, a fault, or the step ceiling

Execution model (one step):
  1. Fetch the cell at pc. It must be an Instruction, otherwise
     INVALID_MEMORY_CELL (also when pc is outside the store)
  2. Decode: look up the handler for the instruction's class
  3. Execute: the handler advances pc by one, assigns pc (JMP) or
     leaves RUNNING (HALT)

Faults are raised by handlers as VMFault and caught in step(). The
engine records the fault with its pc and instruction, takes a snapshot
(same as DUMP), logs it and halts. Nothing propagates to the caller;
run() returns a RunResult saying how the machine stopped.

Usage:
    engine = Engine(program, channel=QueueChannel())
    engine.reset()
    result = engine.run()
    print(result.reason, engine.results())
"""

from __future__ import annotations
import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from . import alu
from .channel import Message, MessageChannel
from .config import EngineConfig
from .errors import ChannelError, FaultKind, StackVMError, VMFault
from .instructions import (
    Instruction, Nop, Push, Pop, Add, Sub, Mul, Div, Jmp, Halt, Out, Dump,
    Movi, Movr, describe_cell,
)
from .program import Program
from .regs import Flags, RegisterBank
from .values import Value, Address

__all__ = ['Engine', 'EngineState', 'StopReason', 'EngineSnapshot', 'RunResult']

log = logging.getLogger('stackvm.engine')


class EngineState(Enum):
    IDLE = 'IDLE'
    RUNNING = 'RUNNING'
    HALTED = 'HALTED'


class StopReason(Enum):
    HALT = 'HALT'
    FAULT = 'FAULT'
    STEP_LIMIT = 'STEP_LIMIT'


@dataclass(frozen=True)
class EngineSnapshot:
    """Full engine state at one instant."""
    pc: int
    state: EngineState
    steps: int
    stack: Tuple[Value, ...]
    registers: Tuple[Optional[Value], ...]
    flags: Flags

    def display(self) -> str:
        lines = [
            f"pc={self.pc:04d} state={self.state.value} steps={self.steps} "
            f"flags=[{self.flags.display()}]",
            f"stack ({len(self.stack)}): " + (', '.join(str(v) for v in self.stack) or '<empty>'),
        ]
        regs = [f"r{i}={v}" for i, v in enumerate(self.registers) if v is not None]
        lines.append("registers: " + (' '.join(regs) or '<all empty>'))
        return '\n'.join(lines)


@dataclass(frozen=True)
class RunResult:
    """How a run ended."""
    reason: StopReason
    pc: int
    steps: int
    stack: Tuple[Value, ...]
    fault: Optional[VMFault] = None
    snapshot: Optional[EngineSnapshot] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.reason is StopReason.HALT

    @property
    def fault_kind(self) -> Optional[FaultKind]:
        return self.fault.kind if self.fault is not None else None


class Engine:
    """Stack VM execution engine.

    The program store is read-only to the engine. Stack, registers,
    flags and pc belong to this instance alone. The message channel is
    supplied by the caller; without one, OUT faults NO_CHANNEL_CONFIGURED.
    """

    def __init__(self, program: Optional[Program] = None,
                 channel: Optional[MessageChannel] = None,
                 config: Optional[EngineConfig] = None,
                 on_dump: Optional[Callable[[EngineSnapshot], None]] = None):
        self.program = program if program is not None else Program()
        self.channel = channel
        self.config = config or EngineConfig()
        self.on_dump = on_dump

        self.pc: int = 0
        self.stack: List[Value] = []
        self.registers = RegisterBank(self.config.register_count)
        self.flags = Flags()
        self.state = EngineState.IDLE
        self.steps: int = 0
        self.fault: Optional[VMFault] = None

        # Snapshots from DUMP and from faults, oldest first
        self.dumps: List[EngineSnapshot] = []
        self.trace_output: List[str] = []

        # Instruction dispatch table (built in _build_dispatch)
        self._dispatch = self._build_dispatch()

    # ══════════════════════════════════════════════
    # Lifecycle
    # ══════════════════════════════════════════════

    def load(self, program: Program):
        """Swap in a different program. The engine must be reset before running it."""
        self.program = program
        self.state = EngineState.IDLE

    def reset(self, channel: Optional[MessageChannel] = None):
        """Clear all mutable state and enter RUNNING at pc=0.

        A channel passed here replaces the one given at construction.
        """
        if channel is not None:
            self.channel = channel
        self.pc = 0
        self.stack = []
        self.registers.clear()
        self.flags.reset()
        self.steps = 0
        self.fault = None
        self.dumps = []
        self.trace_output = []
        self.state = EngineState.RUNNING

    @property
    def running(self) -> bool:
        return self.state is EngineState.RUNNING

    # ══════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════

    def step(self) -> Optional[StopReason]:
        """Execute one instruction. Returns StopReason if stopped, else None."""
        if self.state is EngineState.IDLE:
            raise StackVMError("engine not reset; call reset() before step()")
        if self.state is EngineState.HALTED:
            return self._stop_reason()

        pc = self.pc
        instruction = None

        if self.config.max_steps is not None and self.steps >= self.config.max_steps:
            self._fault(VMFault(FaultKind.STEP_LIMIT_EXCEEDED,
                                f"step ceiling of {self.config.max_steps} reached"), pc, None)
            return StopReason.STEP_LIMIT

        try:
            instruction = self._fetch(pc)
            handler = self._dispatch.get(type(instruction))
            if handler is None:
                raise VMFault(FaultKind.MALFORMED_INSTRUCTION,
                              f"no handler for {type(instruction).__name__}")
            if self.config.trace:
                self._trace(pc, instruction)
            handler(instruction)
        except VMFault as fault:
            self._fault(fault, pc, instruction)
            return StopReason.FAULT

        self.steps += 1
        if self.state is EngineState.HALTED:
            return StopReason.HALT
        return None

    def run(self) -> RunResult:
        """Run until HALT, a fault, or the step ceiling.

        An engine that is IDLE or already HALTED is reset first.
        """
        if self.state is not EngineState.RUNNING:
            self.reset()

        while True:
            reason = self.step()
            if reason is not None:
                break

        if reason is StopReason.HALT:
            log.info("halted at pc=%d after %d steps", self.pc, self.steps)
        return self.result()

    def result(self) -> RunResult:
        return RunResult(
            reason=self._stop_reason(),
            pc=self.pc,
            steps=self.steps,
            stack=tuple(self.stack),
            fault=self.fault,
            snapshot=self.snapshot(),
        )

    def results(self) -> List[Value]:
        """Current stack contents, bottom first."""
        return list(self.stack)

    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            pc=self.pc,
            state=self.state,
            steps=self.steps,
            stack=tuple(self.stack),
            registers=self.registers.snapshot(),
            flags=self.flags.copy(),
        )

    def _stop_reason(self) -> Optional[StopReason]:
        if self.state is not EngineState.HALTED:
            return None
        if self.fault is None:
            return StopReason.HALT
        if self.fault.kind is FaultKind.STEP_LIMIT_EXCEEDED:
            return StopReason.STEP_LIMIT
        return StopReason.FAULT

    def _fetch(self, pc: int) -> Instruction:
        if not 0 <= pc < len(self.program):
            raise VMFault(FaultKind.INVALID_MEMORY_CELL,
                          f"no memory cell at {pc} (program has {len(self.program)})")
        cell = self.program[pc]
        if not isinstance(cell, Instruction):
            raise VMFault(FaultKind.INVALID_MEMORY_CELL,
                          f"cell at {pc} is not an instruction: {describe_cell(cell)}")
        return cell

    def _fault(self, fault: VMFault, pc: int, instruction):
        fault.pc = pc
        fault.instruction = instruction
        self.fault = fault
        self.state = EngineState.HALTED
        if self.config.dump_on_fault:
            snap = self.snapshot()
            self.dumps.append(snap)
            log.error("Exception: %s\n%s", fault, snap.display())
            self._notify_dump(snap)
        else:
            log.error("Exception: %s", fault)

    def _notify_dump(self, snap: EngineSnapshot):
        """Hand a snapshot to the on_dump callback. Callback errors are logged, not raised."""
        if self.on_dump is None:
            return
        try:
            self.on_dump(snap)
        except Exception:
            log.exception("on_dump callback failed at pc=%d", snap.pc)

    def _trace(self, pc: int, instruction: Instruction):
        line = f"{pc:04d}: {str(instruction):28s} stack={len(self.stack)} [{self.flags.display()}]"
        self.trace_output.append(line)
        log.debug(line)

    # ══════════════════════════════════════════════
    # Instruction handlers
    # ══════════════════════════════════════════════
    # Handler signature: handler(instruction)

    def _build_dispatch(self) -> Dict[type, Callable]:
        """Build instruction class → handler dispatch table."""
        return {
            # ── Stack ──
            Nop:  self._op_nop,
            Push: self._op_push,
            Pop:  self._op_pop,

            # ── Arithmetic ──
            Add:  functools.partial(self._op_arith, alu.add),
            Sub:  functools.partial(self._op_arith, alu.sub),
            Mul:  functools.partial(self._op_arith, alu.mul),
            Div:  self._op_div,

            # ── Control ──
            Jmp:  self._op_jmp,
            Halt: self._op_halt,

            # ── Registers ──
            Movi: self._op_movi,
            Movr: self._op_movr,

            # ── System ──
            Out:  self._op_out,
            Dump: self._op_dump,
        }

    def _op_nop(self, ins):
        self.pc += 1

    def _op_push(self, ins):
        if not isinstance(ins.value, Value):
            raise VMFault(FaultKind.MALFORMED_INSTRUCTION,
                          f"push operand is not a value: {ins.value!r}")
        self.stack.append(ins.value)
        self.pc += 1

    def _op_pop(self, ins):
        if not self.stack:
            raise VMFault(FaultKind.STACK_UNDERFLOW, "pop from empty stack")
        self.stack.pop()
        self.pc += 1

    def _op_arith(self, operation, ins):
        if len(self.stack) < 2:
            raise VMFault(FaultKind.STACK_UNDERFLOW,
                          f"{ins.mnemonic} needs two operands, stack holds {len(self.stack)}")
        right = self.stack.pop()
        left = self.stack.pop()
        result, self.flags = operation(left, right)
        self.stack.append(result)
        self.pc += 1

    def _op_div(self, ins):
        self._op_arith(
            functools.partial(alu.div, strict=self.config.strict_float_division), ins)

    def _op_jmp(self, ins):
        target = ins.target
        if not isinstance(target, Address):
            raise VMFault(FaultKind.MALFORMED_INSTRUCTION,
                          f"jmp operand is not an address: {target}")
        if target.target is None:
            raise VMFault(FaultKind.UNRESOLVED_JUMP, "jmp target was never resolved")
        self.pc = target.target

    def _op_halt(self, ins):
        self.state = EngineState.HALTED

    def _op_movi(self, ins):
        self.registers.set(ins.register, ins.value)
        self.pc += 1

    def _op_movr(self, ins):
        value = self.registers.get(ins.src)
        if value is None:
            raise VMFault(FaultKind.TYPE_MISMATCH,
                          f"cannot move empty register: r{ins.src} is empty at this point")
        self.registers.set(ins.dest, value)
        self.pc += 1

    def _op_out(self, ins):
        if self.channel is None:
            raise VMFault(FaultKind.NO_CHANNEL_CONFIGURED,
                          f"out to port {ins.port} with no message channel installed")
        if not isinstance(ins.message, Message):
            raise VMFault(FaultKind.MALFORMED_INSTRUCTION,
                          f"out operand is not a message: {ins.message!r}")
        try:
            self.channel.send(ins.port, ins.message)
        except ChannelError as e:
            raise VMFault(FaultKind.CHANNEL_FAILURE, str(e)) from e
        self.pc += 1

    def _op_dump(self, ins):
        snap = self.snapshot()
        self.dumps.append(snap)
        log.info("---------- Dump ----------\n%s\n---------- End Dump ----------",
                 snap.display())
        self._notify_dump(snap)
        self.pc += 1
