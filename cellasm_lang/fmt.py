"""Text rendering of decoded code and raw cell trees."""

from typing import Set

from .cell import Cell, bits_to_hex
from .codedict import DelimitedHashmapE
from .models import (
    Bitstring,
    CellRef,
    Code,
    CodeDictMarker,
    CodeRef,
    ControlRegister,
    Instruction,
    Integer,
    StackRegister,
)

INDENT = "  "


def format_param(param) -> str:
    if isinstance(param, Integer):
        return str(param.value)
    if isinstance(param, StackRegister):
        return f"s{param.index}"
    if isinstance(param, ControlRegister):
        return f"c{param.index}"
    if isinstance(param, Bitstring):
        return f"x{{{bits_to_hex(param.bits)}}}"
    raise TypeError(f"{type(param).__name__} has no inline form")


class Printer:
    """Renders code listings; with ``collapse`` on, a cell hash is printed in full once.

    Output is produced from an explicit stack of text pieces and pending
    ``("code" | "insn" | "block", value, indent)`` tasks.
    """

    def __init__(self, collapse: bool = False):
        self.collapse = collapse
        self._rendered: Set[str] = set()

    def print_code(self, code: Code, indent: str = "") -> str:
        return self._render(("code", code, indent))

    def print_instruction(self, insn: Instruction, indent: str = "") -> str:
        return self._render(("insn", insn, indent))

    def _render(self, task) -> str:
        out = []
        stack = [task]
        while stack:
            item = stack.pop()
            if isinstance(item, str):
                out.append(item)
                continue
            kind, value, indent = item
            if kind == "code":
                stack.extend(("insn", insn, indent) for insn in reversed(value))
            elif kind == "insn":
                stack.extend(reversed(self._instruction_parts(value, indent)))
            else:
                stack.extend(reversed(self._block_parts(value, indent)))
        return "".join(out)

    def _instruction_parts(self, insn: Instruction, indent: str) -> list:
        inline = [
            format_param(p)
            for p in insn.params
            if not isinstance(p, (CellRef, CodeRef, CodeDictMarker))
        ]
        cells = [p for p in insn.params if isinstance(p, CellRef)]
        blocks = [p for p in insn.params if isinstance(p, CodeRef)]

        head = indent + insn.name
        operands = inline + [self._print_cell_param(insn, ref, indent) for ref in cells]
        if operands:
            head += " " + ", ".join(operands)
        return [head] + [("block", block, indent) for block in blocks] + ["\n"]

    def _block_parts(self, block: CodeRef, indent: str) -> list:
        body = ("code", block.code, indent + INDENT)
        if block.cell is None:
            return [" {\n", body, indent + "}"]
        cell_hash = block.cell.hash_hex()
        if self.collapse and cell_hash in self._rendered:
            return [f" {{ ;; #{cell_hash} (collapsed)\n{indent}}}"]
        self._rendered.add(cell_hash)
        return [f" {{ ;; #{cell_hash}\n", body, indent + "}"]

    def _print_cell_param(self, insn: Instruction, ref: CellRef, indent: str) -> str:
        if insn.has_dict_marker():
            key_size = next(p.value for p in insn.params if isinstance(p, Integer))
            hashmap = DelimitedHashmapE(ref.cell, key_size)
            hashmap.mark()
            text = hashmap.print(indent, self)
        else:
            text = self.print_cell(ref.cell, indent)
        # Drop the leading indent and trailing newline: the cell continues the operand list.
        return text[len(indent):].rstrip("\n")

    def print_cell(self, cell: Cell, indent: str = "") -> str:
        out = []
        stack = [(cell, indent)]
        while stack:
            item = stack.pop()
            if isinstance(item, str):
                out.append(item)
                continue
            current, pad = item
            inner = pad + INDENT
            out.append(f"{pad}.cell {{ ;; #{current.hash_hex()}\n")
            if current.bit_length:
                out.append(f"{inner}.blob x{{{current.to_hex()}}}\n")
            stack.append(f"{pad}}}\n")
            stack.extend((ref, inner) for ref in reversed(current.refs))
        return "".join(out)


def print_tree_of_cells(cell: Cell, indent: str = "") -> str:
    out = []
    stack = [(cell, indent)]
    while stack:
        current, pad = stack.pop()
        out.append(f"{pad}x{{{current.to_hex()}}}\n")
        for ref in reversed(current.refs):
            stack.append((ref, pad + INDENT))
    return "".join(out)
