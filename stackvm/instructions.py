"""
Instruction set and memory-cell kinds.

The instruction set is closed; the engine dispatches on the concrete
class of each instruction:

  Stack      NOP PUSH POP
  Arithmetic ADD SUB MUL DIV       (pop right, pop left, push result)
  Control    JMP HALT
  Registers  MOVI (immediate → reg), MOVR (reg → reg)
  System     OUT (send to port), DUMP (engine snapshot)

A program-store cell is one of: an Instruction, a Value (data literal),
MetaData (non-executable annotation) or Empty (reserved space). Only
Instruction cells are executable.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from typing import ClassVar, Union

from .values import Value, Address
from .channel import Message

__all__ = [
    'Instruction', 'Nop', 'Push', 'Pop', 'Add', 'Sub', 'Mul', 'Div', 'Jmp',
    'Halt', 'Out', 'Dump', 'Movi', 'Movr', 'MetaData', 'Empty', 'EMPTY',
    'MemoryCell', 'describe_cell',
]


class Instruction:
    """Base class for every opcode."""
    __slots__ = ()
    mnemonic: ClassVar[str] = '?'

    def __str__(self) -> str:
        operands = ', '.join(str(getattr(self, f.name)) for f in fields(self))
        return f"{self.mnemonic} {operands}" if operands else self.mnemonic


# ── Stack ──

@dataclass(frozen=True)
class Nop(Instruction):
    mnemonic: ClassVar[str] = 'nop'


@dataclass(frozen=True)
class Push(Instruction):
    mnemonic: ClassVar[str] = 'push'
    value: Value


@dataclass(frozen=True)
class Pop(Instruction):
    mnemonic: ClassVar[str] = 'pop'


# ── Arithmetic ──

@dataclass(frozen=True)
class Add(Instruction):
    mnemonic: ClassVar[str] = 'add'


@dataclass(frozen=True)
class Sub(Instruction):
    mnemonic: ClassVar[str] = 'sub'


@dataclass(frozen=True)
class Mul(Instruction):
    mnemonic: ClassVar[str] = 'mul'


@dataclass(frozen=True)
class Div(Instruction):
    mnemonic: ClassVar[str] = 'div'


# ── Control ──

@dataclass(frozen=True)
class Jmp(Instruction):
    """Unconditional jump. ``target`` is Address(None) until build() patches it."""
    mnemonic: ClassVar[str] = 'jmp'
    target: Value = Address(None)


@dataclass(frozen=True)
class Halt(Instruction):
    mnemonic: ClassVar[str] = 'halt'


# ── Registers ──

@dataclass(frozen=True)
class Movi(Instruction):
    mnemonic: ClassVar[str] = 'movi'
    register: int
    value: Value

    def __str__(self) -> str:
        return f"movi r{self.register}, {self.value}"


@dataclass(frozen=True)
class Movr(Instruction):
    mnemonic: ClassVar[str] = 'movr'
    dest: int
    src: int

    def __str__(self) -> str:
        return f"movr r{self.dest}, r{self.src}"


# ── System ──

@dataclass(frozen=True)
class Out(Instruction):
    mnemonic: ClassVar[str] = 'out'
    port: int
    message: Message

    def __str__(self) -> str:
        return f"out {self.port}, {self.message.value}"


@dataclass(frozen=True)
class Dump(Instruction):
    mnemonic: ClassVar[str] = 'dump'


# ──────────────────────────────────────────────
# Non-executable cells
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class MetaData:
    tag: str


@dataclass(frozen=True)
class Empty:
    pass


EMPTY = Empty()

MemoryCell = Union[Instruction, Value, MetaData, Empty]


def describe_cell(cell) -> str:
    """One-line text for a program-store cell (listings, dumps, faults)."""
    if isinstance(cell, Instruction):
        return str(cell)
    if isinstance(cell, Value):
        return f".data {cell}"
    if isinstance(cell, MetaData):
        return f".tag {cell.tag}"
    if isinstance(cell, Empty):
        return ".empty"
    return f"<invalid cell {cell!r}>"
