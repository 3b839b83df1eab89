"""
Program builder with two-pass label resolution.

How the two passes work:
  Pass 1: the caller's chain of emission calls. Each call appends one
          cell and advances pc. label() binds a name to the current pc.
          jump() to a bound label emits a resolved JMP; jump() to an
          unbound label emits JMP Address(None) and records a pending
          reference.
  Pass 2: build() sweeps the pending references in emission order and
          patches each placeholder in place. References that cannot be
          resolved are recorded and logged; the sweep never stops early.

Label re-definition: a reference resolves against the definition
visible when it is emitted. A backward jump binds to the label's current
address at once; a forward jump binds to the first definition of that
label emitted after it. Re-binding a label later never moves a jump that
is already bound.

Usage:
    result = (ProgramBuilder()
              .push(I32(21))
              .push(I32(21))
              .add()
              .halt()
              .build()
              .run())
    assert result.stack == (I32(42),)
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from .channel import Message, MessageChannel
from .config import EngineConfig
from .engine import Engine, EngineSnapshot, RunResult
from .errors import BuilderError, LabelResolutionError, NotBuiltError, ResolutionFailure
from .instructions import (
    Nop, Push, Pop, Add, Sub, Mul, Div, Jmp, Halt, Out, Dump, Movi, Movr,
    MetaData, EMPTY, MemoryCell,
)
from .program import Program
from .values import Value, Address

__all__ = ['ProgramBuilder', 'PendingRef']

log = logging.getLogger('stackvm.builder')


@dataclass
class PendingRef:
    """A JMP emitted before its label was defined."""
    label: str
    index: int                      # address of the placeholder JMP
    address: Optional[int] = None   # filled in by the next label() of that name


class ProgramBuilder:
    """Fluent program builder. Every emitter returns the builder."""

    def __init__(self, channel: Optional[MessageChannel] = None,
                 config: Optional[EngineConfig] = None,
                 on_dump: Optional[Callable[[EngineSnapshot], None]] = None):
        self.config = config or EngineConfig()
        self._program = Program()
        self.engine = Engine(self._program, channel=channel, config=self.config,
                             on_dump=on_dump)
        self.pc: int = 0                          # address the next cell will occupy
        self.symbols: Dict[str, int] = {}         # label -> address
        self.unresolved: List[PendingRef] = []    # forward references awaiting build()
        self.errors: List[ResolutionFailure] = [] # failures from the last build()
        self.is_built = False

    @property
    def program(self) -> Program:
        return self._program

    # ══════════════════════════════════════════════
    # Emission (pass 1)
    # ══════════════════════════════════════════════

    def _check_open(self):
        if self.is_built:
            raise BuilderError("program already built; no further emission allowed")

    def _emit(self, cell: MemoryCell) -> ProgramBuilder:
        self._check_open()
        self._program.append(cell)
        self.pc += 1
        return self

    def label(self, name: str) -> ProgramBuilder:
        """Bind ``name`` to the address of the next emitted cell."""
        self._check_open()
        if not isinstance(name, str) or not name:
            raise BuilderError(f"label name must be a non-empty string, got {name!r}")
        old = self.symbols.get(name)
        if old is not None and old != self.pc:
            log.debug("label '%s' rebound from %d to %d", name, old, self.pc)
        self.symbols[name] = self.pc
        for ref in self.unresolved:
            if ref.label == name and ref.address is None:
                ref.address = self.pc
        return self

    def nop(self) -> ProgramBuilder:
        return self._emit(Nop())

    def push(self, value: Value) -> ProgramBuilder:
        return self._emit(Push(value))

    def pop(self) -> ProgramBuilder:
        return self._emit(Pop())

    def add(self) -> ProgramBuilder:
        return self._emit(Add())

    def sub(self) -> ProgramBuilder:
        return self._emit(Sub())

    def mul(self) -> ProgramBuilder:
        return self._emit(Mul())

    def div(self) -> ProgramBuilder:
        return self._emit(Div())

    def halt(self) -> ProgramBuilder:
        return self._emit(Halt())

    def dump(self) -> ProgramBuilder:
        return self._emit(Dump())

    def jump(self, label: str) -> ProgramBuilder:
        """Unconditional jump to ``label``, defined before or after this call."""
        self._check_open()
        address = self.symbols.get(label)
        if address is not None:
            return self._emit(Jmp(Address(address)))
        self.unresolved.append(PendingRef(label, self.pc))
        return self._emit(Jmp(Address(None)))

    jmp = jump

    def movi(self, register: int, value: Value) -> ProgramBuilder:
        """Load an immediate into a register. Index is checked at run time."""
        return self._emit(Movi(register, value))

    def movr(self, dest: int, src: int) -> ProgramBuilder:
        """Copy register ``src`` into ``dest``. Indices are checked at run time."""
        return self._emit(Movr(dest, src))

    def out(self, port: int, message: Union[Message, Value]) -> ProgramBuilder:
        """Send to ``port``. A bare Value is wrapped as a Message from config.port."""
        if isinstance(message, Value):
            message = Message(self.config.port, port, message)
        return self._emit(Out(port, message))

    # ── Data cells ──

    def data(self, value: Value) -> ProgramBuilder:
        """Place a data literal in the store. Executing it faults."""
        return self._emit(value)

    def tag(self, text: str) -> ProgramBuilder:
        """Place a non-executable annotation in the store."""
        return self._emit(MetaData(text))

    def reserve(self, count: int) -> ProgramBuilder:
        """Place ``count`` empty cells."""
        if count < 0:
            raise BuilderError(f"reserve count must be >= 0, got {count}")
        for _ in range(count):
            self._emit(EMPTY)
        return self

    # ══════════════════════════════════════════════
    # Resolution (pass 2)
    # ══════════════════════════════════════════════

    def build(self, strict: bool = False) -> ProgramBuilder:
        """Patch every pending forward reference, then freeze the program.

        Failures are recorded in ``errors`` and logged. With ``strict``
        a LabelResolutionError is raised after the full sweep.
        """
        remaining: List[PendingRef] = []
        failures: List[ResolutionFailure] = []

        for ref in self.unresolved:
            failure = self._resolve(ref)
            if failure is None:
                continue
            log.error("Invalid instruction at %d: %s", ref.index, failure)
            failures.append(failure)
            remaining.append(ref)

        self.unresolved = remaining
        self.errors = failures
        self.is_built = True
        self._program.freeze()

        if strict and failures:
            raise LabelResolutionError(failures)
        return self

    def _resolve(self, ref: PendingRef) -> Optional[ResolutionFailure]:
        if ref.address is None:
            return ResolutionFailure(ref.label, ref.index, "label never defined")
        if not 0 <= ref.index < len(self._program) or not isinstance(self._program[ref.index], Jmp):
            return ResolutionFailure(ref.label, ref.index, "target cell is not a jmp")
        self._program.patch(ref.index, Jmp(Address(ref.address)))
        return None

    # ══════════════════════════════════════════════
    # Running
    # ══════════════════════════════════════════════

    def run(self) -> RunResult:
        """Reset the engine and run the built program to completion."""
        if not self.is_built:
            log.error("You must call build() before calling run()")
            raise NotBuiltError("build() must be called before run()")
        self.engine.reset()
        return self.engine.run()

    start = run

    def results(self) -> List[Value]:
        return self.engine.results()

    def listing(self) -> str:
        return self._program.listing(self.symbols)
