"""
stackvm — a small stack virtual machine with a fluent program builder.

Architecture:
    ProgramBuilder (builder.py) → Program (program.py) → Engine (engine.py)
          ↑                                                  ↓
    Assembler (assembler.py)                        MessageChannel (channel.py,
                                                    serial_channel.py)

Usage:
    from stackvm import ProgramBuilder, I32

    result = (ProgramBuilder()
              .push(I32(21)).push(I32(21)).add().halt()
              .build()
              .run())
    print(result.stack)             # (I32(value=42),)

    # or from assembly text
    from stackvm import run_source
    result = run_source("push 21\\npush 21\\nadd\\nhalt")
"""

from .values import (
    Value, I32, I64, F32, F64, Char, String, Bool, Symbol, Address,
)
from .errors import (
    FaultKind, StackVMError, VMFault, BuilderError, NotBuiltError,
    ResolutionFailure, LabelResolutionError, AssemblySyntaxError, ChannelError,
)
from .channel import Message, MessageChannel, QueueChannel, StreamChannel, render_value
from .instructions import (
    Instruction, Nop, Push, Pop, Add, Sub, Mul, Div, Jmp, Halt, Out, Dump,
    Movi, Movr, MetaData, Empty, EMPTY,
)
from .program import Program
from .regs import Flags, RegisterBank
from .config import EngineConfig, PROFILES, get_profile
from .engine import Engine, EngineState, StopReason, EngineSnapshot, RunResult
from .builder import ProgramBuilder
from .assembler import Assembler, assemble, assemble_file

__version__ = "0.1.0"


def run_source(source: str, channel=None, config=None, strict: bool = False) -> RunResult:
    """Assemble, build and run source text in one call."""
    builder = assemble(source, channel=channel, config=config)
    return builder.build(strict=strict).run()
