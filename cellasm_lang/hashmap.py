"""Fixed-key-width prefix-tree dictionaries stored as nested cells.

A node is a label followed either by the leaf value (when the label used up
the remaining key bits) or by two child references for the next key bit.
"""

import os
from typing import Iterator, Mapping, Optional, Tuple, Union

from .cell import Cell, CellBuilder, CellSlice
from .exceptions import CellError

ValueLike = Union[Cell, CellSlice, str]


def _len_bits(m: int) -> int:
    # ceil(log2(m + 1))
    return m.bit_length()


def load_label(cs: CellSlice, m: int) -> str:
    if cs.load_bit() == 0:
        n = 0
        while cs.load_bit() == 1:
            n += 1
        if n > m:
            raise CellError(f"short label of {n} bits exceeds {m} remaining key bits")
        return cs.load_bits(n)
    if cs.load_bit() == 0:
        n = cs.load_uint(_len_bits(m))
        if n > m:
            raise CellError(f"long label of {n} bits exceeds {m} remaining key bits")
        return cs.load_bits(n)
    bit = str(cs.load_bit())
    n = cs.load_uint(_len_bits(m))
    if n > m:
        raise CellError(f"same label of {n} bits exceeds {m} remaining key bits")
    return bit * n


def encode_label(label: str, m: int) -> str:
    n = len(label)
    width = _len_bits(m)
    length = format(n, f"0{width}b") if width else ""
    options = ["0" + "1" * n + "0" + label, "10" + length + label]
    if n and label == label[0] * n:
        options.append("11" + label[0] + length)
    return min(options, key=len)


def _leftmost(cell: Cell, m: int, prefix: str) -> Tuple[str, CellSlice]:
    while True:
        cs = cell.as_slice()
        label = load_label(cs, m)
        prefix += label
        m -= len(label)
        if m == 0:
            return prefix, cs
        cell = cs.get_reference(0)
        prefix += "0"
        m -= 1


def _next(cell: Cell, m: int, key: str, prefix: str) -> Optional[Tuple[str, CellSlice]]:
    cs = cell.as_slice()
    label = load_label(cs, m)
    head = key[:len(label)]
    if label > head:
        rest = m - len(label)
        if rest == 0:
            return prefix + label, cs
        return _leftmost(cs.get_reference(0), rest - 1, prefix + label + "0")
    if label < head:
        return None
    prefix += label
    m -= len(label)
    key = key[len(label):]
    if m == 0:
        return None
    if key[0] == "0":
        found = _next(cs.get_reference(0), m - 1, key[1:], prefix + "0")
        if found is not None:
            return found
        return _leftmost(cs.get_reference(1), m - 1, prefix + "1")
    return _next(cs.get_reference(1), m - 1, key[1:], prefix + "1")


def dict_find_min(root: Optional[Cell], key_size: int) -> Optional[Tuple[int, CellSlice]]:
    if root is None:
        return None
    prefix, value = _leftmost(root, key_size, "")
    return int(prefix, 2) if prefix else 0, value


def dict_find_next(
    root: Optional[Cell], key_size: int, key: int
) -> Optional[Tuple[int, CellSlice]]:
    """Return the entry with the smallest key strictly greater than ``key``."""
    if root is None:
        return None
    found = _next(root, key_size, format(key, f"0{key_size}b") if key_size else "", "")
    if found is None:
        return None
    prefix, value = found
    return int(prefix, 2) if prefix else 0, value


def dict_items(root: Optional[Cell], key_size: int) -> Iterator[Tuple[int, CellSlice]]:
    entry = dict_find_min(root, key_size)
    while entry is not None:
        yield entry
        entry = dict_find_next(root, key_size, entry[0])


def _as_slice(value: ValueLike) -> CellSlice:
    if isinstance(value, CellSlice):
        return value.copy()
    if isinstance(value, Cell):
        return value.as_slice()
    return Cell(value).as_slice()


def _build_node(entries, m: int) -> Cell:
    keys = [k for k, _ in entries]
    label = keys[0] if len(entries) == 1 else os.path.commonprefix(keys)
    builder = CellBuilder().store_bits(encode_label(label, m))
    if len(entries) == 1:
        builder.store_slice(entries[0][1])
        return builder.build()
    split = len(label)
    left = [(k[split + 1:], v) for k, v in entries if k[split] == "0"]
    right = [(k[split + 1:], v) for k, v in entries if k[split] == "1"]
    rest = m - split - 1
    builder.store_ref(_build_node(left, rest))
    builder.store_ref(_build_node(right, rest))
    return builder.build()


def build_dict(items: Mapping[int, ValueLike], key_size: int) -> Optional[Cell]:
    if not items:
        return None
    entries = []
    for key, value in items.items():
        if key < 0 or key >= 1 << key_size:
            raise CellError(f"key {key} does not fit into {key_size} bits")
        entries.append((format(key, f"0{key_size}b") if key_size else "", _as_slice(value)))
    entries.sort(key=lambda e: e[0])
    return _build_node(entries, key_size)
