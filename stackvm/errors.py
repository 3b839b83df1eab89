"""
Error taxonomy for the stack VM.

Engine faults are raised internally as VMFault and caught by the step
loop, which halts the machine and reports a structured result. Builder
and assembler errors are ordinary exceptions raised to the caller.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

__all__ = [
    'FaultKind', 'StackVMError', 'VMFault', 'BuilderError', 'NotBuiltError',
    'ResolutionFailure', 'LabelResolutionError', 'AssemblySyntaxError',
    'ChannelError',
]


class FaultKind(Enum):
    INVALID_MEMORY_CELL = 'InvalidMemoryCell'
    TYPE_MISMATCH = 'TypeMismatch'
    STACK_UNDERFLOW = 'StackUnderflow'
    UNRESOLVED_JUMP = 'UnresolvedJump'
    INVALID_REGISTER_INDEX = 'InvalidRegisterIndex'
    NO_CHANNEL_CONFIGURED = 'NoChannelConfigured'
    DIVISION_BY_ZERO = 'DivisionByZero'
    INTEGER_OVERFLOW = 'IntegerOverflow'
    MALFORMED_INSTRUCTION = 'MalformedInstruction'
    CHANNEL_FAILURE = 'ChannelFailure'
    STEP_LIMIT_EXCEEDED = 'StepLimitExceeded'


class StackVMError(Exception):
    """Base class for all stackvm errors."""


class VMFault(StackVMError):
    """Execution-time fault. ``pc`` and ``instruction`` are filled in by the engine."""

    def __init__(self, kind: FaultKind, message: str):
        self.kind = kind
        self.message = message
        self.pc: Optional[int] = None
        self.instruction = None
        super().__init__(message)

    def __str__(self) -> str:
        where = f" at pc={self.pc}" if self.pc is not None else ""
        return f"{self.kind.value}{where}: {self.message}"


class BuilderError(StackVMError):
    """Misuse of the program builder."""


class NotBuiltError(BuilderError):
    """run()/start() called before build()."""


@dataclass(frozen=True)
class ResolutionFailure:
    """One forward reference build() could not patch."""
    label: str
    index: int
    reason: str

    def __str__(self) -> str:
        return f"cannot resolve '{self.label}' for jump at {self.index}: {self.reason}"


class LabelResolutionError(BuilderError):
    """Raised by a strict build() when any forward reference is unresolved."""

    def __init__(self, failures: List[ResolutionFailure]):
        self.failures = list(failures)
        super().__init__("Label resolution errors:\n" + "\n".join(str(f) for f in self.failures))


class AssemblySyntaxError(StackVMError):
    """Raised on malformed assembly source."""

    def __init__(self, message: str, line_num: int = 0, line_text: str = ""):
        self.line_num = line_num
        self.line_text = line_text
        super().__init__(f"Line {line_num}: {message}" if line_num else message)


class ChannelError(StackVMError):
    """Transport failure inside a message channel."""
