"""Immutable capacity-bounded cells, read cursors and builders.

Bits are kept as strings of ``'0'``/``'1'``; a cell holds at most
``MAX_BITS`` bits and ``MAX_REFS`` references and is identified by the
SHA-256 representation hash of its content.
"""

import hashlib
from typing import Optional, Sequence, Tuple

from .exceptions import CellError, CellOverflow, CellUnderflow

MAX_BITS = 1023
MAX_REFS = 4


def bits_to_bytes(bits: str) -> bytes:
    if not bits:
        return b""
    padded = bits + "0" * (-len(bits) % 8)
    return int(padded, 2).to_bytes(len(padded) // 8, "big")


def bytes_to_bits(data: bytes, bit_count: Optional[int] = None) -> str:
    bits = "".join(f"{b:08b}" for b in data)
    if bit_count is None:
        return bits
    if bit_count < 0 or bit_count > len(bits):
        raise CellError(f"cannot take {bit_count} bits out of {len(data)} bytes")
    return bits[:bit_count]


def augment_bits(bits: str) -> bytes:
    """Pad to a byte boundary with a single 1 followed by zeros."""
    if len(bits) % 8:
        bits = bits + "1" + "0" * (-(len(bits) + 1) % 8)
    return bits_to_bytes(bits)


def bits_to_hex(bits: str) -> str:
    if len(bits) % 4 == 0:
        return "".join(f"{int(bits[i:i + 4], 2):X}" for i in range(0, len(bits), 4))
    padded = bits + "1" + "0" * (-(len(bits) + 1) % 4)
    return bits_to_hex(padded) + "_"


def parse_hex_bits(text: str) -> str:
    """Parse ``x{ABC_}``, ``xABC_`` or ``ABC_`` into a bitstring."""
    s = text.strip()
    if s[:1] in ("x", "X"):
        s = s[1:]
    if s.startswith("{") and s.endswith("}"):
        s = s[1:-1]
    tagged = s.endswith("_")
    if tagged:
        s = s[:-1]
    try:
        bits = "".join(f"{int(ch, 16):04b}" for ch in s)
    except ValueError:
        raise CellError(f"invalid hex bitstring: {text!r}")
    if tagged:
        bits = bits.rstrip("0")
        if not bits:
            raise CellError(f"completion tag without a terminating bit: {text!r}")
        bits = bits[:-1]
    return bits


class Cell:
    __slots__ = ("_bits", "_refs", "_depth", "_hash")

    def __init__(self, bits: str = "", refs: Sequence["Cell"] = ()):
        if len(bits) > MAX_BITS:
            raise CellOverflow(f"cell data is {len(bits)} bits, limit is {MAX_BITS}")
        if len(refs) > MAX_REFS:
            raise CellOverflow(f"cell has {len(refs)} references, limit is {MAX_REFS}")
        self._bits = bits
        self._refs: Tuple[Cell, ...] = tuple(refs)
        self._depth = 1 + max(r.depth for r in self._refs) if self._refs else 0
        # children are hashed on construction, so this never recurses
        b = len(bits)
        h = hashlib.sha256()
        h.update(bytes([len(self._refs), b // 8 + (b + 7) // 8]))
        h.update(augment_bits(bits))
        for ref in self._refs:
            h.update(ref.depth.to_bytes(2, "big"))
        for ref in self._refs:
            h.update(ref.repr_hash())
        self._hash = h.digest()

    @property
    def bits(self) -> str:
        return self._bits

    @property
    def refs(self) -> Tuple["Cell", ...]:
        return self._refs

    @property
    def bit_length(self) -> int:
        return len(self._bits)

    @property
    def ref_count(self) -> int:
        return len(self._refs)

    @property
    def depth(self) -> int:
        return self._depth

    def reference(self, index: int) -> "Cell":
        if index < 0 or index >= len(self._refs):
            raise CellUnderflow(f"cell has no reference #{index}")
        return self._refs[index]

    def repr_hash(self) -> bytes:
        return self._hash

    def hash_hex(self) -> str:
        return self.repr_hash().hex()

    def as_slice(self) -> "CellSlice":
        return CellSlice(self)

    def to_hex(self) -> str:
        return bits_to_hex(self._bits)

    def __eq__(self, other):
        return isinstance(other, Cell) and self.repr_hash() == other.repr_hash()

    def __hash__(self):
        return hash(self.repr_hash())

    def __repr__(self) -> str:
        return f"Cell(x{{{self.to_hex()}}}, refs={len(self._refs)})"


class CellSlice:
    """Read cursor over a window of a cell's bits and references."""

    __slots__ = ("cell", "_bit_pos", "_bit_end", "_ref_pos", "_ref_end")

    def __init__(
        self,
        cell: Cell,
        bit_start: int = 0,
        bit_end: Optional[int] = None,
        ref_start: int = 0,
        ref_end: Optional[int] = None,
    ):
        self.cell = cell
        self._bit_pos = bit_start
        self._bit_end = cell.bit_length if bit_end is None else bit_end
        self._ref_pos = ref_start
        self._ref_end = cell.ref_count if ref_end is None else ref_end

    @property
    def remaining_bits(self) -> int:
        return self._bit_end - self._bit_pos

    @property
    def remaining_refs(self) -> int:
        return self._ref_end - self._ref_pos

    @property
    def offset_bits(self) -> int:
        return self._bit_pos

    def _require_bits(self, n: int) -> None:
        if n < 0 or n > self.remaining_bits:
            raise CellUnderflow(
                f"cannot read {n} bits at offset {self._bit_pos}, {self.remaining_bits} remaining"
            )

    def preload_bits(self, n: int) -> str:
        self._require_bits(n)
        return self.cell.bits[self._bit_pos:self._bit_pos + n]

    def load_bits(self, n: int) -> str:
        bits = self.preload_bits(n)
        self._bit_pos += n
        return bits

    def skip_bits(self, n: int) -> None:
        self._require_bits(n)
        self._bit_pos += n

    def load_bit(self) -> int:
        return 1 if self.load_bits(1) == "1" else 0

    def preload_uint(self, n: int) -> int:
        bits = self.preload_bits(n)
        return int(bits, 2) if bits else 0

    def load_uint(self, n: int) -> int:
        value = self.preload_uint(n)
        self._bit_pos += n
        return value

    def load_int(self, n: int) -> int:
        value = self.load_uint(n)
        if n and value >= 1 << (n - 1):
            value -= 1 << n
        return value

    def get_reference(self, index: int) -> Cell:
        if index < 0 or index >= self.remaining_refs:
            raise CellUnderflow(f"no reference #{index}, {self.remaining_refs} remaining")
        return self.cell.reference(self._ref_pos + index)

    def load_ref(self) -> Cell:
        cell = self.get_reference(0)
        self._ref_pos += 1
        return cell

    def data(self) -> str:
        return self.cell.bits[self._bit_pos:self._bit_end]

    def refs(self) -> Tuple[Cell, ...]:
        return self.cell.refs[self._ref_pos:self._ref_end]

    def load_prefix(self, bits: int, refs: int) -> "CellSlice":
        self._require_bits(bits)
        if refs < 0 or refs > self.remaining_refs:
            raise CellUnderflow(f"cannot take {refs} references, {self.remaining_refs} remaining")
        prefix = CellSlice(
            self.cell, self._bit_pos, self._bit_pos + bits, self._ref_pos, self._ref_pos + refs
        )
        self._bit_pos += bits
        self._ref_pos += refs
        return prefix

    def to_cell(self) -> Cell:
        return Cell(self.data(), self.refs())

    def copy(self) -> "CellSlice":
        return CellSlice(self.cell, self._bit_pos, self._bit_end, self._ref_pos, self._ref_end)

    def lex_equal(self, other: "CellSlice") -> bool:
        return self.data() == other.data()

    def refs_equal(self, other: "CellSlice") -> bool:
        if self.remaining_refs != other.remaining_refs:
            return False
        return all(
            self.get_reference(i).repr_hash() == other.get_reference(i).repr_hash()
            for i in range(self.remaining_refs)
        )

    def to_hex(self) -> str:
        return bits_to_hex(self.data())

    def __repr__(self) -> str:
        return f"CellSlice(x{{{self.to_hex()}}}, refs={self.remaining_refs})"


class CellBuilder:
    """Mutable accumulator for a new cell; writes that do not fit change nothing."""

    __slots__ = ("_bits", "_refs")

    def __init__(self):
        self._bits = ""
        self._refs: list = []

    @classmethod
    def from_raw(cls, data: bytes, bit_count: int) -> "CellBuilder":
        return cls().store_raw(data, bit_count)

    @property
    def bits(self) -> str:
        return self._bits

    @property
    def refs(self) -> Tuple[Cell, ...]:
        return tuple(self._refs)

    @property
    def size_bits(self) -> int:
        return len(self._bits)

    @property
    def size_refs(self) -> int:
        return len(self._refs)

    @property
    def spare_bits(self) -> int:
        return MAX_BITS - len(self._bits)

    @property
    def spare_refs(self) -> int:
        return MAX_REFS - len(self._refs)

    def _check(self, bits: int, refs: int) -> None:
        if bits > self.spare_bits:
            raise CellOverflow(f"cannot store {bits} bits, {self.spare_bits} spare")
        if refs > self.spare_refs:
            raise CellOverflow(f"cannot store {refs} references, {self.spare_refs} spare")

    def store_bits(self, bits: str) -> "CellBuilder":
        self._check(len(bits), 0)
        self._bits += bits
        return self

    def store_bit(self, bit: int) -> "CellBuilder":
        return self.store_bits("1" if bit else "0")

    def store_uint(self, value: int, n: int) -> "CellBuilder":
        if value < 0 or value >= 1 << n:
            raise CellError(f"{value} does not fit into {n} unsigned bits")
        return self.store_bits(format(value, f"0{n}b") if n else "")

    def store_int(self, value: int, n: int) -> "CellBuilder":
        if n == 0 or not -(1 << (n - 1)) <= value < 1 << (n - 1):
            raise CellError(f"{value} does not fit into {n} signed bits")
        return self.store_uint(value & ((1 << n) - 1), n)

    def store_raw(self, data: bytes, bit_count: int) -> "CellBuilder":
        return self.store_bits(bytes_to_bits(data, bit_count))

    def store_ref(self, cell: Cell) -> "CellBuilder":
        self._check(0, 1)
        self._refs.append(cell)
        return self

    def store_slice(self, cs: CellSlice) -> "CellBuilder":
        self._check(cs.remaining_bits, cs.remaining_refs)
        self._bits += cs.data()
        self._refs.extend(cs.refs())
        return self

    def build(self) -> Cell:
        return Cell(self._bits, self._refs)

    def copy(self) -> "CellBuilder":
        clone = CellBuilder()
        clone._bits = self._bits
        clone._refs = list(self._refs)
        return clone

    def __repr__(self) -> str:
        return f"CellBuilder({self.size_bits} bits, {self.size_refs} refs)"
