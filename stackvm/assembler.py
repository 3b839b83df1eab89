"""
Text assembler for the stack VM.

Turns assembly source into ProgramBuilder calls, so label resolution is
still the builder's two-pass algorithm.

Syntax (one statement per line, ';' starts a comment outside quotes):

    start:                      ; label on its own line
            push 10             ; I32
            push i64:10         ; explicit variant prefix: i32: i64: f32: f64:
            push 2.5            ; F64
    loop:   movi r0, 'x'        ; label before a statement
            movr r1, r0
            out 1, "hello"      ; port, value
            jmp loop
            halt
            .data $FF           ; data cell (hex $ / 0x, binary %)
            .tag entry-point    ; metadata cell
            .reserve 4          ; four empty cells

Literals: integers → I32, numbers with '.' or an exponent → F64,
'c' → Char, "text" → String, true/false → Bool, @name → Symbol(String(name)).
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .builder import ProgramBuilder
from .errors import AssemblySyntaxError
from .values import Value, I32, I64, F32, F64, Char, String, Bool, Symbol

__all__ = ['Assembler', 'AsmLine', 'assemble', 'assemble_file', 'parse_literal']


# ──────────────────────────────────────────────
# Line Parser
# ──────────────────────────────────────────────

@dataclass
class AsmLine:
    """Parsed assembly source line."""
    label: Optional[str] = None
    mnemonic: Optional[str] = None
    operand: Optional[str] = None
    comment: Optional[str] = None
    line_num: int = 0
    raw: str = ""


_LABEL_NAME = r'[A-Za-z_.][\w.\-]*'
_LABEL_RE = re.compile(rf'^({_LABEL_NAME}):')
_LABEL_NAME_RE = re.compile(_LABEL_NAME)


def _strip_comment(text: str):
    """Split off a ';' comment, ignoring semicolons inside quotes."""
    quote = None
    escaped = False
    for i, ch in enumerate(text):
        if quote:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == quote:
                quote = None
        elif ch in ('"', "'"):
            quote = ch
        elif ch == ';':
            return text[:i], text[i + 1:].strip()
    return text, None


def _parse_line(line: str, line_num: int) -> AsmLine:
    """Parse one line of assembly into label, mnemonic, operand, comment."""
    result = AsmLine(line_num=line_num, raw=line)

    text, result.comment = _strip_comment(line)
    text = text.strip()
    if not text:
        return result

    m = _LABEL_RE.match(text)
    if m:
        result.label = m.group(1)
        text = text[m.end():].strip()
        if not text:
            return result

    parts = text.split(None, 1)
    result.mnemonic = parts[0].lower()
    if len(parts) > 1:
        result.operand = parts[1].strip()
    return result


def _split_operands(operand: Optional[str]) -> List[str]:
    """Split on commas outside quotes."""
    if operand is None:
        return []
    parts, current, quote = [], [], None
    escaped = False
    for ch in operand:
        if quote:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == quote:
                quote = None
        elif ch in ('"', "'"):
            quote = ch
        elif ch == ',':
            parts.append(''.join(current).strip())
            current = []
            continue
        current.append(ch)
    parts.append(''.join(current).strip())
    return parts


# ──────────────────────────────────────────────
# Operand Analysis
# ──────────────────────────────────────────────

_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '0': '\0', '\\': '\\', "'": "'", '"': '"'}

_FLOAT_RE = re.compile(r'^[-+]?(\d+\.\d*|\.\d+|\d+(\.\d*)?[eE][-+]?\d+|\d+\.\d*[eE][-+]?\d+)$')
_TYPE_PREFIX_RE = re.compile(r'^(i32|i64|f32|f64):(.+)$', re.IGNORECASE)


def _unescape(text: str, line_num: int) -> str:
    out = []
    chars = iter(text)
    for ch in chars:
        if ch != '\\':
            out.append(ch)
            continue
        esc = next(chars, None)
        if esc not in _ESCAPES:
            raise AssemblySyntaxError(f"bad escape sequence '\\{esc or ''}'", line_num)
        out.append(_ESCAPES[esc])
    return ''.join(out)


def _parse_int(text: str) -> Optional[int]:
    """Parse $FF / 0xFF (hex), %1010 (binary) or decimal. None if not an integer."""
    text = text.strip()
    neg = text.startswith('-')
    body = text[1:] if neg else text
    try:
        if body.startswith('$'):
            val = int(body[1:], 16)
        elif body[:2].lower() == '0x':
            val = int(body, 16)
        elif body.startswith('%'):
            val = int(body[1:], 2)
        elif body.isdigit():
            val = int(body)
        else:
            return None
    except ValueError:
        return None
    return -val if neg else val


def _parse_number(text: str, line_num: int) -> Union[int, float]:
    val = _parse_int(text)
    if val is not None:
        return val
    low = text.lower().lstrip('+-')
    if _FLOAT_RE.match(text) or low in ('inf', 'nan'):
        return float(text)
    raise AssemblySyntaxError(f"invalid number: '{text}'", line_num)


def parse_literal(text: str, line_num: int = 0) -> Value:
    """Parse one operand literal into a Value."""
    text = text.strip()
    if not text:
        raise AssemblySyntaxError("missing value", line_num)

    try:
        m = _TYPE_PREFIX_RE.match(text)
        if m:
            kind, body = m.group(1).lower(), m.group(2).strip()
            num = _parse_number(body, line_num)
            if kind in ('i32', 'i64'):
                if not isinstance(num, int):
                    raise AssemblySyntaxError(f"{kind} needs an integer, got '{body}'", line_num)
                return I32(num) if kind == 'i32' else I64(num)
            return F32(num) if kind == 'f32' else F64(num)

        if len(text) >= 2 and text[0] == text[-1] == '"':
            return String(_unescape(text[1:-1], line_num))
        if len(text) >= 3 and text[0] == text[-1] == "'":
            return Char(_unescape(text[1:-1], line_num))
        if text.lower() in ('true', 'false'):
            return Bool(text.lower() == 'true')
        if text.startswith('@') and len(text) > 1:
            return Symbol(String(text[1:]))

        num = _parse_number(text, line_num)
        return I32(num) if isinstance(num, int) else F64(num)
    except (ValueError, TypeError) as e:
        # out-of-range payloads, multi-char 'chars'
        raise AssemblySyntaxError(str(e), line_num) from e


def _parse_register(text: str, line_num: int) -> int:
    """r0..rN. The index is range-checked by the engine, not here."""
    text = text.strip()
    if len(text) < 2 or text[0] not in 'rR' or not text[1:].isdigit():
        raise AssemblySyntaxError(f"expected register (r0, r1, ...), got '{text}'", line_num)
    return int(text[1:])


# ──────────────────────────────────────────────
# The Assembler
# ──────────────────────────────────────────────

# mnemonic -> operand count
_ARITY = {
    'nop': 0, 'pop': 0, 'add': 0, 'sub': 0, 'mul': 0, 'div': 0,
    'halt': 0, 'dump': 0,
    'push': 1, 'jmp': 1, '.data': 1, '.tag': 1, '.reserve': 1,
    'movi': 2, 'movr': 2, 'out': 2,
}


class Assembler:
    """Source-to-builder translator.

    Usage:
        asm = Assembler()
        builder = asm.assemble(source_text)
        result = builder.build().run()

    Every line is checked; all errors are reported together.
    """

    def __init__(self, builder: Optional[ProgramBuilder] = None, **builder_kwargs):
        self.builder = builder if builder is not None else ProgramBuilder(**builder_kwargs)
        self.errors: List[str] = []
        self._lines: List[AsmLine] = []

    def assemble(self, source: str) -> ProgramBuilder:
        self.errors = []
        self._lines = [_parse_line(line, i) for i, line in enumerate(source.split('\n'), 1)]

        for line in self._lines:
            try:
                self._emit_line(line)
            except AssemblySyntaxError as e:
                self.errors.append(str(e))

        if self.errors:
            err = AssemblySyntaxError("Assembly errors:\n" + "\n".join(self.errors))
            err.errors = list(self.errors)
            raise err
        return self.builder

    def _emit_line(self, line: AsmLine):
        b = self.builder
        if line.label:
            b.label(line.label)

        mnem = line.mnemonic
        if mnem is None:
            return

        if mnem not in _ARITY:
            raise AssemblySyntaxError(f"Unknown mnemonic: {mnem}", line.line_num, line.raw)

        ops = _split_operands(line.operand)
        if len(ops) != _ARITY[mnem]:
            raise AssemblySyntaxError(
                f"{mnem}: expected {_ARITY[mnem]} operand(s), got {len(ops)}",
                line.line_num, line.raw)
        n = line.line_num

        # ── Directives ──
        if mnem == '.data':
            b.data(parse_literal(ops[0], n))
        elif mnem == '.tag':
            b.tag(ops[0])
        elif mnem == '.reserve':
            count = _parse_int(ops[0])
            if count is None or count < 0:
                raise AssemblySyntaxError(f".reserve: bad count '{ops[0]}'", n)
            b.reserve(count)

        # ── Instructions ──
        elif mnem == 'push':
            b.push(parse_literal(ops[0], n))
        elif mnem == 'jmp':
            if not _LABEL_NAME_RE.fullmatch(ops[0]):
                raise AssemblySyntaxError(f"jmp: bad label '{ops[0]}'", n)
            b.jump(ops[0])
        elif mnem == 'movi':
            b.movi(_parse_register(ops[0], n), parse_literal(ops[1], n))
        elif mnem == 'movr':
            b.movr(_parse_register(ops[0], n), _parse_register(ops[1], n))
        elif mnem == 'out':
            port = _parse_int(ops[0])
            if port is None:
                raise AssemblySyntaxError(f"out: bad port '{ops[0]}'", n)
            b.out(port, parse_literal(ops[1], n))
        else:
            getattr(b, mnem)()


def assemble(source: str, **builder_kwargs) -> ProgramBuilder:
    """Assemble source text into a fresh ProgramBuilder (not yet built)."""
    return Assembler(**builder_kwargs).assemble(source)


def assemble_file(path: Union[str, Path], **builder_kwargs) -> ProgramBuilder:
    return assemble(Path(path).read_text(encoding='utf-8'), **builder_kwargs)
