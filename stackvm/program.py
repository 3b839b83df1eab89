"""
Program store — the ordered, address-indexed arena of memory cells.

Append-only while the builder is emitting. The only in-place mutation
is patch(), used by build() to fill in forward jump targets. After
freeze() the store is read-only; the engine never writes to it.
"""

from __future__ import annotations
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from .errors import BuilderError
from .instructions import MemoryCell, describe_cell

__all__ = ['Program']


class Program:
    """Program store.

    Usage:
        prog = Program()
        addr = prog.append(Push(I32(1)))
        prog.patch(addr, Push(I32(2)))
        prog.freeze()
    """

    def __init__(self, cells: Optional[List[MemoryCell]] = None):
        self._cells: List[MemoryCell] = list(cells) if cells else []
        self._frozen = False

    def append(self, cell: MemoryCell) -> int:
        """Append a cell and return its address."""
        if self._frozen:
            raise BuilderError("program store is frozen")
        self._cells.append(cell)
        return len(self._cells) - 1

    def patch(self, index: int, cell: MemoryCell):
        if self._frozen:
            raise BuilderError("program store is frozen")
        if not 0 <= index < len(self._cells):
            raise IndexError(f"no cell at {index}")
        self._cells[index] = cell

    def freeze(self):
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def cells(self) -> Tuple[MemoryCell, ...]:
        return tuple(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __getitem__(self, index: int) -> MemoryCell:
        return self._cells[index]

    def __iter__(self) -> Iterator[MemoryCell]:
        return iter(self._cells)

    def listing(self, symbols: Optional[Mapping[str, int]] = None) -> str:
        """Address-annotated listing. Labels print on their own line above their cell."""
        labels: Dict[int, List[str]] = {}
        for name, addr in (symbols or {}).items():
            labels.setdefault(addr, []).append(name)

        lines = []
        for addr, cell in enumerate(self._cells):
            for name in labels.get(addr, ()):
                lines.append(f"{name}:")
            lines.append(f"  {addr:04d}  {describe_cell(cell)}")
        # labels bound past the last cell
        for addr in sorted(a for a in labels if a >= len(self._cells)):
            for name in labels[addr]:
                lines.append(f"{name}:")
        return '\n'.join(lines)
