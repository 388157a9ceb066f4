"""Decoding cells into instruction trees."""

import logging
from typing import Callable, Dict, List, Tuple

from .cell import Cell, CellSlice
from .exceptions import CellError, DecodeError
from .handlers import OPCODES, OpcodeTable
from .models import Code, CodeDictMarker, CodeRef, Instruction

log = logging.getLogger(__name__)

DICT_CONSTANTS = ("DICTPUSHCONST", "PFXDICTSWITCH")
DICT_JUMPS = ("DICTUGETJMP", "DICTUGETJMPZ")


class Loader:
    """Decodes code cells; with ``collapse`` on, identical cells share one Code.

    Nested continuations are returned as empty Code objects and filled from
    a work stack once the enclosing code is done, so nesting depth is not
    bounded by the interpreter's recursion limit.
    """

    def __init__(self, collapse: bool = False, table: OpcodeTable = OPCODES):
        self.collapse = collapse
        self.table = table
        self._history: Dict[bytes, Code] = {}
        self._pending: List[Tuple[Code, CellSlice]] = []

    def load(self, cs: CellSlice) -> Code:
        code = Code()
        self._pending = [(code, cs)]
        while self._pending:
            target, body = self._pending.pop()
            self._decode_into(target, body)
        return code

    def _decode_into(self, code: Code, cs: CellSlice) -> None:
        while True:
            if cs.remaining_bits == 0:
                if cs.remaining_refs == 0:
                    return
                if cs.remaining_refs == 1:
                    # Implicit jump: decoding continues in the only reference.
                    cs = cs.load_ref().as_slice()
                    continue
                raise DecodeError(
                    f"cell #{cs.cell.hash_hex()[:8]} ends with {cs.remaining_refs} "
                    "unconsumed references"
                )
            handler = self.table.match(cs)
            if handler is None:
                raise DecodeError(
                    f"unknown opcode at cell #{cs.cell.hash_hex()[:8]} "
                    f"bit {cs.offset_bits}: x{{{cs.to_hex()}}}"
                )
            try:
                code.append(handler.decode(cs, self))
            except CellError as exc:
                raise DecodeError(
                    f"truncated {handler.name} at cell #{cs.cell.hash_hex()[:8]}: {exc}"
                ) from exc

    def _defer(self, cell: Cell) -> Code:
        code = Code()
        self._pending.append((code, cell.as_slice()))
        return code

    def load_cell_code(self, cell: Cell) -> Code:
        if not self.collapse:
            return self._defer(cell)
        key = cell.repr_hash()
        cached = self._history.get(key)
        if cached is None:
            cached = self._defer(cell)
            self._history[key] = cached
        else:
            log.debug("reusing decoded cell #%s", cell.hash_hex()[:8])
        return cached

    def load_inline_code(self, cell: Cell) -> Code:
        return self._defer(cell)


def load(cs: CellSlice, collapse_identical: bool = False) -> Code:
    return Loader(collapse_identical).load(cs)


def traverse_code_tree(code: Code, process: Callable[[Code], None]) -> None:
    """Call ``process`` once on every distinct Code object reachable from ``code``."""
    stack = [code]
    visited = set()
    while stack:
        current = stack.pop()
        if id(current) in visited:
            continue
        visited.add(id(current))
        process(current)
        for insn in current:
            for param in insn.params:
                if isinstance(param, CodeRef):
                    stack.append(param.code)


def _is_dict_switch(first: Instruction, second: Instruction) -> bool:
    return first.name in DICT_CONSTANTS and second.name in DICT_JUMPS


def elaborate_dictpushconst_dictugetjmp(code: Code) -> int:
    """Mark every constant dictionary that is immediately used as a jump table.

    Returns the number of instructions marked.
    """
    marked = 0

    def process(current: Code) -> None:
        nonlocal marked
        for first, second in zip(current, current[1:]):
            if _is_dict_switch(first, second) and not first.has_dict_marker():
                first.params.append(CodeDictMarker())
                marked += 1

    traverse_code_tree(code, process)
    return marked
