"""Bag-of-cells container: a root list plus a pool of deduplicated cells."""

from typing import Dict, List, Sequence

from .cell import Cell, augment_bits, bytes_to_bits
from .exceptions import BocError

BOC_MAGIC = b"\xb5\xee\x9c\x72"


def _make_crc32c_table() -> List[int]:
    table = []
    for n in range(256):
        c = n
        for _ in range(8):
            c = (c >> 1) ^ 0x82F63B78 if c & 1 else c >> 1
        table.append(c)
    return table


_CRC32C_TABLE = _make_crc32c_table()


def crc32c(data: bytes) -> int:
    crc = 0xFFFFFFFF
    for b in data:
        crc = _CRC32C_TABLE[(crc ^ b) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF


def _byte_width(value: int) -> int:
    width = 1
    while value >= 1 << (8 * width):
        width += 1
    return width


def _topological_order(roots: Sequence[Cell]) -> List[Cell]:
    # Reverse DFS post-order puts every parent before its children.
    order: List[Cell] = []
    seen = set()
    for root in roots:
        if root.repr_hash() in seen:
            continue
        seen.add(root.repr_hash())
        stack = [(root, iter(root.refs))]
        while stack:
            cell, pending = stack[-1]
            for ref in pending:
                if ref.repr_hash() not in seen:
                    seen.add(ref.repr_hash())
                    stack.append((ref, iter(ref.refs)))
                    break
            else:
                stack.pop()
                order.append(cell)
    order.reverse()
    return order


def count_unique_cells(cell: Cell) -> int:
    queue = [cell]
    seen = set()
    while queue:
        current = queue.pop()
        key = current.repr_hash()
        if key in seen:
            continue
        seen.add(key)
        queue.extend(current.refs)
    return len(seen)


def serialize_boc(roots: Sequence[Cell], crc: bool = True) -> bytes:
    if not roots:
        raise BocError("cannot serialize an empty root list")
    cells = _topological_order(roots)
    index: Dict[bytes, int] = {c.repr_hash(): i for i, c in enumerate(cells)}
    size = _byte_width(len(cells))

    payload = bytearray()
    for cell in cells:
        b = cell.bit_length
        payload.append(cell.ref_count)
        payload.append(b // 8 + (b + 7) // 8)
        payload.extend(augment_bits(cell.bits))
        for ref in cell.refs:
            payload.extend(index[ref.repr_hash()].to_bytes(size, "big"))

    off_bytes = _byte_width(len(payload))
    out = bytearray(BOC_MAGIC)
    out.append((0x40 if crc else 0) | size)
    out.append(off_bytes)
    out.extend(len(cells).to_bytes(size, "big"))
    out.extend(len(roots).to_bytes(size, "big"))
    out.extend((0).to_bytes(size, "big"))
    out.extend(len(payload).to_bytes(off_bytes, "big"))
    for root in roots:
        out.extend(index[root.repr_hash()].to_bytes(size, "big"))
    out.extend(payload)
    if crc:
        out.extend(crc32c(bytes(out)).to_bytes(4, "little"))
    return bytes(out)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise BocError(f"unexpected end of container at byte {self.pos}")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def uint(self, n: int) -> int:
        return int.from_bytes(self.take(n), "big")


def deserialize_boc(data: bytes) -> List[Cell]:
    r = _Reader(data)
    if r.take(4) != BOC_MAGIC:
        raise BocError("bad container magic")
    flags = r.uint(1)
    has_idx = bool(flags & 0x80)
    has_crc = bool(flags & 0x40)
    size = flags & 0x07
    if not 1 <= size <= 4:
        raise BocError(f"invalid reference size {size}")
    off_bytes = r.uint(1)
    if not 1 <= off_bytes <= 8:
        raise BocError(f"invalid offset size {off_bytes}")
    cell_count = r.uint(size)
    root_count = r.uint(size)
    absent = r.uint(size)
    if absent:
        raise BocError("absent cells are not supported")
    r.uint(off_bytes)
    root_indices = [r.uint(size) for _ in range(root_count)]
    if has_idx:
        r.take(cell_count * off_bytes)

    raw = []
    for _ in range(cell_count):
        d1 = r.uint(1)
        d2 = r.uint(1)
        if d1 & 0x08:
            raise BocError("exotic cells are not supported")
        refs_count = d1 & 0x07
        if refs_count > 4:
            raise BocError(f"cell declares {refs_count} references")
        data_bytes = r.take((d2 + 1) // 2)
        bits = bytes_to_bits(data_bytes)
        if d2 & 1:
            bits = bits.rstrip("0")
            if not bits:
                raise BocError("augmented cell data without a terminating bit")
            bits = bits[:-1]
        refs = [r.uint(size) for _ in range(refs_count)]
        raw.append((bits, refs))

    if has_crc:
        body_end = r.pos
        expected = int.from_bytes(r.take(4), "little")
        if crc32c(data[:body_end]) != expected:
            raise BocError("crc32c mismatch")

    cells: List[Cell] = [None] * cell_count  # type: ignore[list-item]
    for i in range(cell_count - 1, -1, -1):
        bits, refs = raw[i]
        for ref in refs:
            if ref <= i or ref >= cell_count:
                raise BocError(f"cell {i} references cell {ref} out of order")
        cells[i] = Cell(bits, [cells[ref] for ref in refs])

    roots = []
    for idx in root_indices:
        if idx >= cell_count:
            raise BocError(f"root index {idx} out of range")
        roots.append(cells[idx])
    return roots
