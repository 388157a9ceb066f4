"""Decode entry points: containers, fragments and reference extraction."""

import logging

from .boc import deserialize_boc, serialize_boc
from .cell import Cell, CellSlice, parse_hex_bits
from .exceptions import BocError, CellError
from .fmt import Printer
from .loader import Loader, elaborate_dictpushconst_dictugetjmp

log = logging.getLogger(__name__)


def disassemble(cs: CellSlice, collapse: bool = False) -> str:
    """Decode, mark jump-table dictionaries and render the listing.

    Dictionary resolution errors abort the whole listing.
    """
    code = Loader(collapse).load(cs)
    marked = elaborate_dictpushconst_dictugetjmp(code)
    if marked:
        log.debug("%d jump-table dictionaries found", marked)
    return Printer(collapse).print_code(code)


def disassemble_fragment(hex_bitstring: str) -> str:
    return disassemble(Cell(parse_hex_bits(hex_bitstring)).as_slice())


def _single_root(data: bytes, root: int = 0) -> Cell:
    roots = deserialize_boc(data)
    if len(roots) > 1:
        log.warning("container has %d roots, using root %d", len(roots), root)
    if not 0 <= root < len(roots):
        raise BocError(f"container has no root #{root}")
    return roots[root]


def extract_reference(boc_bytes: bytes, index: int, root: int = 0) -> bytes:
    """Serialize reference ``index`` of the chosen root as a standalone container."""
    cell = _single_root(boc_bytes, root)
    try:
        child = cell.reference(index)
    except CellError as exc:
        raise BocError(f"root #{root} has no reference #{index}") from exc
    return serialize_boc([child])


def disassemble_boc(data: bytes, stateinit: bool = False, collapse: bool = True) -> str:
    cell = _single_root(data)
    if stateinit:
        try:
            cell = cell.reference(0)
        except CellError as exc:
            raise BocError("state init has no code reference") from exc
    return disassemble(cell.as_slice(), collapse)
