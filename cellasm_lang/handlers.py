"""Opcode table shared by the loader (decoding) and the assembler (encoding).

Each entry is a mnemonic, its opcode prefix bits and a list of operand
fields. A field reads its operand from a cursor and writes it back into an
``Encoding``; lookup is by longest matching prefix.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from .cell import Cell, CellBuilder, CellSlice
from .debug import DbgNode
from .exceptions import DecodeError
from .models import (
    Bitstring,
    CellRef,
    CodeRef,
    ControlRegister,
    Instruction,
    InstructionParameter,
    Integer,
    StackRegister,
)
from .writer import Fragment

if TYPE_CHECKING:
    from .loader import Loader


def _uint_bits(value: int, n: int) -> str:
    if not 0 <= value < 1 << n:
        raise ValueError(f"{value} is out of range for {n} unsigned bits")
    return format(value, f"0{n}b") if n else ""


def _int_bits(value: int, n: int) -> str:
    if not -(1 << (n - 1)) <= value < 1 << (n - 1):
        raise ValueError(f"{value} is out of range for {n} signed bits")
    return format(value & ((1 << n) - 1), f"0{n}b")


class Encoding:
    """Bits, child subtrees and debug spans of one encoded instruction."""

    def __init__(self):
        self.bits = ""
        self.refs: List[CellBuilder] = []
        self.dbg = DbgNode()

    def add_bits(self, bits: str) -> None:
        self.bits += bits

    def add_ref(self, fragment: Fragment) -> None:
        self.refs.append(fragment.builder)
        self.dbg.append_node(fragment.dbg)

    def add_inline(self, fragment: Fragment) -> None:
        offset = len(self.bits)
        self.bits += fragment.builder.bits
        for ref in fragment.builder.refs:
            self.refs.append(CellBuilder().store_slice(ref.as_slice()))
        self.dbg.inline_node(offset, fragment.dbg)


class Field(ABC):
    @abstractmethod
    def decode(self, cs: CellSlice, loader: "Loader") -> InstructionParameter: ...

    @abstractmethod
    def encode(self, value: InstructionParameter, enc: Encoding) -> None: ...


def _expect(value, kind, what: str):
    if not isinstance(value, kind):
        raise ValueError(f"expected {what}")
    return value


class Stack(Field):
    def __init__(self, bits: int = 4):
        self.bits = bits

    def decode(self, cs, loader):
        return StackRegister(cs.load_uint(self.bits))

    def encode(self, value, enc):
        enc.add_bits(_uint_bits(_expect(value, StackRegister, "a stack register").index, self.bits))


class Ctrl(Field):
    def __init__(self, bits: int = 4):
        self.bits = bits

    def decode(self, cs, loader):
        return ControlRegister(cs.load_uint(self.bits))

    def encode(self, value, enc):
        enc.add_bits(_uint_bits(_expect(value, ControlRegister, "a control register").index, self.bits))


class UInt(Field):
    def __init__(self, bits: int, bias: int = 0):
        self.bits = bits
        self.bias = bias

    def decode(self, cs, loader):
        return Integer(cs.load_uint(self.bits) + self.bias)

    def encode(self, value, enc):
        enc.add_bits(_uint_bits(_expect(value, Integer, "an integer").value - self.bias, self.bits))


class SInt(Field):
    def __init__(self, bits: int):
        self.bits = bits

    def decode(self, cs, loader):
        return Integer(cs.load_int(self.bits))

    def encode(self, value, enc):
        enc.add_bits(_int_bits(_expect(value, Integer, "an integer").value, self.bits))


class TinyInt(Field):
    """4-bit immediate covering -5..10."""

    def decode(self, cs, loader):
        return Integer(((cs.load_uint(4) + 5) & 15) - 5)

    def encode(self, value, enc):
        v = _expect(value, Integer, "an integer").value
        if not -5 <= v <= 10:
            raise ValueError(f"{v} is out of range -5..10")
        enc.add_bits(format(v & 15, "04b"))


class CodeField(Field):
    def decode(self, cs, loader):
        cell = cs.load_ref()
        return CodeRef(loader.load_cell_code(cell), cell)

    def encode(self, value, enc):
        enc.add_ref(_expect(value, Fragment, "a code block"))


class CellField(Field):
    def decode(self, cs, loader):
        return CellRef(cs.load_ref())

    def encode(self, value, enc):
        enc.add_ref(_expect(value, Fragment, "a cell"))


class InlineCode(Field):
    """Continuation stored in the instruction bits: 4-bit byte count, then data."""

    def decode(self, cs, loader):
        length = cs.load_uint(4)
        body = Cell(cs.load_bits(8 * length))
        return CodeRef(loader.load_inline_code(body))

    def encode(self, value, enc):
        fragment = _expect(value, Fragment, "a code block")
        builder = fragment.builder
        if builder.size_refs or builder.size_bits % 8 or builder.size_bits > 8 * 15:
            raise ValueError("short inline continuation needs at most 15 whole bytes and no references")
        enc.add_bits(_uint_bits(builder.size_bits // 8, 4))
        enc.add_inline(fragment)


class LongInlineCode(Field):
    """2-bit reference count, 7-bit byte count, then data and references."""

    def decode(self, cs, loader):
        refs_count = cs.load_uint(2)
        length = cs.load_uint(7)
        bits = cs.load_bits(8 * length)
        refs = [cs.load_ref() for _ in range(refs_count)]
        return CodeRef(loader.load_inline_code(Cell(bits, refs)))

    def encode(self, value, enc):
        fragment = _expect(value, Fragment, "a code block")
        builder = fragment.builder
        if builder.size_refs > 3 or builder.size_bits % 8 or builder.size_bits > 8 * 127:
            raise ValueError("inline continuation needs whole bytes and at most 3 references")
        enc.add_bits(_uint_bits(builder.size_refs, 2) + _uint_bits(builder.size_bits // 8, 7))
        enc.add_inline(fragment)


class ShortSlice(Field):
    """4-bit length x, then 8x+4 data bits closed by a completion tag."""

    def decode(self, cs, loader):
        length = cs.load_uint(4)
        raw = cs.load_bits(8 * length + 4).rstrip("0")
        if not raw:
            raise DecodeError(f"slice constant lacks a completion tag at bit {cs.offset_bits}")
        return Bitstring(raw[:-1])

    def encode(self, value, enc):
        bits = _expect(value, Bitstring, "a bitstring").bits
        length = max(0, (len(bits) + 1 - 4 + 7) // 8)
        if length > 15:
            raise ValueError(f"slice of {len(bits)} bits is too long for an inline constant")
        total = 8 * length + 4
        enc.add_bits(_uint_bits(length, 4) + bits + "1" + "0" * (total - len(bits) - 1))


@dataclass(frozen=True)
class Handler:
    name: str
    prefix: str
    fields: Tuple[Field, ...] = ()

    def decode(self, cs: CellSlice, loader: "Loader") -> Instruction:
        cs.skip_bits(len(self.prefix))
        return Instruction(self.name, [f.decode(cs, loader) for f in self.fields])

    def encode(self, operands: List[InstructionParameter]) -> Encoding:
        if len(operands) != len(self.fields):
            raise ValueError(
                f"{self.name} takes {len(self.fields)} operand(s), got {len(operands)}"
            )
        enc = Encoding()
        enc.add_bits(self.prefix)
        for f, value in zip(self.fields, operands):
            f.encode(value, enc)
        return enc


def op(name: str, opcode: str, *fields: Field, bits: Optional[int] = None) -> Handler:
    prefix = "".join(f"{int(ch, 16):04b}" for ch in opcode)
    return Handler(name, prefix[:bits] if bits is not None else prefix, tuple(fields))


class OpcodeTable:
    def __init__(self, handlers: List[Handler]):
        self._by_prefix: Dict[str, Handler] = {}
        self._by_name: Dict[str, List[Handler]] = {}
        for handler in handlers:
            if handler.prefix in self._by_prefix:
                raise ValueError(
                    f"{handler.name} reuses the opcode of {self._by_prefix[handler.prefix].name}"
                )
            self._by_prefix[handler.prefix] = handler
            self._by_name.setdefault(handler.name, []).append(handler)
        self._lengths = sorted({len(p) for p in self._by_prefix}, reverse=True)

    def match(self, cs: CellSlice) -> Optional[Handler]:
        remaining = cs.remaining_bits
        for length in self._lengths:
            if length <= remaining:
                handler = self._by_prefix.get(cs.preload_bits(length))
                if handler is not None:
                    return handler
        return None

    def candidates(self, name: str) -> List[Handler]:
        return self._by_name.get(name, [])

    def shadowing(self, handler: Handler, bits: str) -> Optional[Handler]:
        """Return the handler a decoder would pick for ``bits`` instead of ``handler``.

        ``PUSH s0`` shares its bits with ``DUP``; such operand values have no
        encoding of their own.
        """
        for length in self._lengths:
            if len(handler.prefix) < length <= len(bits):
                other = self._by_prefix.get(bits[:length])
                if other is not None:
                    return other
        return None

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._by_prefix)


OPCODES = OpcodeTable([
    # stack
    op("NOP", "00"),
    op("SWAP", "01"),
    op("XCHG0", "0", Stack()),
    op("XCHG", "10", Stack(), Stack()),
    op("DUP", "20"),
    op("OVER", "21"),
    op("PUSH", "2", Stack()),
    op("DROP", "30"),
    op("NIP", "31"),
    op("POP", "3", Stack()),
    op("ROT", "58"),
    op("ROTREV", "59"),
    op("PUSHNULL", "6D"),
    op("ISNULL", "6E"),
    # constants
    op("PUSHINT", "7", TinyInt()),
    op("PUSHINT", "80", SInt(8)),
    op("PUSHINT", "81", SInt(16)),
    op("PUSHREF", "88", CellField()),
    op("PUSHREFSLICE", "89", CellField()),
    op("PUSHREFCONT", "8A", CodeField()),
    op("PUSHSLICE", "8B", ShortSlice()),
    op("PUSHCONT", "9", InlineCode()),
    op("PUSHCONT", "8E", LongInlineCode(), bits=7),
    # arithmetic
    op("ADD", "A0"),
    op("SUB", "A1"),
    op("SUBR", "A2"),
    op("NEGATE", "A3"),
    op("INC", "A4"),
    op("DEC", "A5"),
    op("ADDCONST", "A6", SInt(8)),
    op("MULCONST", "A7", SInt(8)),
    op("MUL", "A8"),
    op("DIV", "A904"),
    op("MOD", "A908"),
    op("AND", "B0"),
    op("OR", "B1"),
    op("XOR", "B2"),
    op("NOT", "B3"),
    op("LESS", "B9"),
    op("EQUAL", "BA"),
    op("LEQ", "BB"),
    op("GREATER", "BC"),
    op("NEQ", "BD"),
    op("GEQ", "BE"),
    op("EQINT", "C0", SInt(8)),
    # cells
    op("NEWC", "C8"),
    op("ENDC", "C9"),
    op("STI", "CA", UInt(8, bias=1)),
    op("STU", "CB", UInt(8, bias=1)),
    op("STREF", "CC"),
    op("STSLICE", "CE"),
    op("CTOS", "D0"),
    op("ENDS", "D1"),
    op("LDI", "D2", UInt(8, bias=1)),
    op("LDU", "D3", UInt(8, bias=1)),
    op("LDREF", "D4"),
    # control flow
    op("EXECUTE", "D8"),
    op("JMPX", "D9"),
    op("RET", "DB30"),
    op("RETALT", "DB31"),
    op("CALLREF", "DB3C", CodeField()),
    op("JMPREF", "DB3D", CodeField()),
    op("IFRET", "DC"),
    op("IFNOTRET", "DD"),
    op("IF", "DE"),
    op("IFNOT", "DF"),
    op("IFJMP", "E0"),
    op("IFNOTJMP", "E1"),
    op("IFELSE", "E2"),
    op("IFREF", "E300", CodeField()),
    op("IFNOTREF", "E301", CodeField()),
    op("IFJMPREF", "E302", CodeField()),
    op("IFNOTJMPREF", "E303", CodeField()),
    op("IFREFELSEREF", "E30F", CodeField(), CodeField()),
    op("REPEAT", "E4"),
    op("UNTIL", "E6"),
    op("WHILE", "E8"),
    op("PUSHCTR", "ED4", Ctrl()),
    op("POPCTR", "ED5", Ctrl()),
    # exceptions
    op("THROW", "F20", UInt(6), bits=10),
    op("THROWIF", "F24", UInt(6), bits=10),
    op("THROWIFNOT", "F28", UInt(6), bits=10),
    # dictionaries
    op("DICTIGETJMP", "F4A0"),
    op("DICTUGETJMP", "F4A1"),
    op("DICTIGETEXEC", "F4A2"),
    op("DICTUGETEXEC", "F4A3"),
    op("DICTPUSHCONST", "F4A4", UInt(10), CellField(), bits=14),
    op("PFXDICTSWITCH", "F4AC", UInt(10), CellField(), bits=14),
    op("DICTIGETJMPZ", "F4BC"),
    op("DICTUGETJMPZ", "F4BD"),
    op("DICTIGETEXECZ", "F4BE"),
    op("DICTUGETEXECZ", "F4BF"),
    # misc
    op("ACCEPT", "F800"),
    op("SETCP0", "FF00"),
    op("SETCP", "FF", UInt(8)),
])
