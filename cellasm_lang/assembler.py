"""Text assembler: listings in the printer's syntax back into cells."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from lark import Lark, v_args
from lark.exceptions import UnexpectedInput, VisitError
from lark.visitors import Transformer_NonRecursive

from .cell import MAX_BITS, Cell, CellBuilder, bits_to_bytes, parse_hex_bits
from .debug import DbgInfo, DbgNode, DbgPos
from .exceptions import AssemblyError, CellasmError, CellError
from .grammar import ASM_GRAMMAR
from .handlers import OPCODES, Encoding
from .hashmap import build_dict
from .models import Bitstring, ControlRegister, Integer, StackRegister
from .writer import Fragment, Units

log = logging.getLogger(__name__)

_PARSER: Optional[Lark] = None


def get_parser() -> Lark:
    global _PARSER
    if _PARSER is None:
        _PARSER = Lark(ASM_GRAMMAR, parser="lalr", propagate_positions=True)
    return _PARSER


@dataclass
class _Blob:
    bits: str
    pos: DbgPos


@dataclass
class _Command:
    name: str
    enc: Encoding
    pos: DbgPos


@dataclass
class _CellCode:
    items: list


@dataclass
class _DictLiteral:
    entries: List[Tuple[int, Fragment]]
    line: int


def _write_items(units: Units, items) -> None:
    for item in items:
        if isinstance(item, _Blob):
            units.write_command_bitstring(
                bits_to_bytes(item.bits), len(item.bits), DbgNode.from_pos(item.pos)
            )
            continue
        dbg = DbgNode.from_pos(item.pos)
        dbg.inline_node(0, item.enc.dbg)
        data = bits_to_bytes(item.enc.bits)
        if item.enc.refs:
            units.write_composite_command(data, item.enc.refs, dbg, bits=len(item.enc.bits))
        else:
            units.write_command_bitstring(data, len(item.enc.bits), dbg)


def _assemble_items(items) -> Fragment:
    units = Units()
    _write_items(units, items)
    return units.finalize_fragment()


class CellasmToCells(Transformer_NonRecursive):
    def __init__(self, filename: str = "<input>"):
        super().__init__()
        self.filename = filename

    def _pos(self, meta) -> DbgPos:
        return DbgPos(self.filename, int(getattr(meta, "line", 1) or 1))

    def start(self, items):
        return _assemble_items(items)

    # --- Operands ---
    def integer(self, items):
        return Integer(int(items[0]))

    def stack_register(self, items):
        return StackRegister(int(items[0][1:]))

    def control_register(self, items):
        return ControlRegister(int(items[0][1:]))

    def bitstring(self, items):
        return Bitstring(parse_hex_bits(str(items[0])))

    def operands(self, items):
        return list(items)

    def code_block(self, items):
        return _assemble_items(items)

    # --- Literal cells ---
    @v_args(meta=True)
    def blob(self, meta, items):
        return _Blob(parse_hex_bits(str(items[0])), self._pos(meta))

    def cell_code(self, items):
        return _CellCode(list(items))

    @v_args(meta=True)
    def cell_block(self, meta, items):
        blobs = [item for item in items if isinstance(item, _Blob)]
        code = [item for item in items if isinstance(item, _CellCode)]
        if code:
            return _assemble_items(blobs + code[0].items)
        builder = CellBuilder()
        dbg = DbgNode()
        try:
            for blob in blobs:
                dbg.offsets.append((builder.size_bits, blob.pos))
                builder.store_bits(blob.bits)
            for child in items:
                if isinstance(child, Fragment):
                    builder.store_ref(child.builder.build())
                    dbg.append_node(child.dbg)
        except CellError as exc:
            raise AssemblyError(str(exc), meta.line) from exc
        return Fragment(builder, dbg)

    def dict_entry(self, items):
        return int(items[0]), items[1]

    @v_args(meta=True)
    def dict_block(self, meta, items):
        return _DictLiteral(list(items), meta.line)

    # --- Instructions ---
    def _build_dict(self, literal: _DictLiteral, operands) -> Fragment:
        key_size = next((op.value for op in operands if isinstance(op, Integer)), None)
        if key_size is None:
            raise AssemblyError("dictionary needs a key width operand", literal.line)
        if not 0 <= key_size <= MAX_BITS:
            raise AssemblyError(f"key width {key_size} is out of range", literal.line)
        if not literal.entries:
            raise AssemblyError("empty dictionary", literal.line)
        values = {}
        for key, fragment in literal.entries:
            if key in values:
                raise AssemblyError(f"duplicate dictionary key {key}", literal.line)
            values[key] = fragment.builder.build()
        try:
            root = build_dict(values, key_size)
        except CellError as exc:
            raise AssemblyError(str(exc), literal.line) from exc
        log.debug("assembled dictionary of %d entries, key width %d", len(values), key_size)
        return Fragment(CellBuilder().store_slice(root.as_slice()), DbgNode())

    @v_args(meta=True)
    def instruction(self, meta, items):
        name = str(items[0])
        operands = []
        for item in items[1:]:
            if isinstance(item, list):
                operands.extend(item)
            else:
                operands.append(item)
        operands = [
            self._build_dict(op, operands) if isinstance(op, _DictLiteral) else op
            for op in operands
        ]

        handlers = OPCODES.candidates(name)
        if not handlers:
            raise AssemblyError(f"unknown mnemonic {name}", meta.line)
        reason = ""
        for handler in handlers:
            try:
                enc = handler.encode(operands)
            except ValueError as exc:
                reason = str(exc)
                continue
            other = OPCODES.shadowing(handler, enc.bits)
            if other is not None:
                reason = f"these operands encode as {other.name}"
                continue
            return _Command(name, enc, self._pos(meta))
        raise AssemblyError(f"{name}: {reason}", meta.line)


def assemble_fragment(source: str, filename: str = "<input>") -> Fragment:
    try:
        tree = get_parser().parse(source)
    except UnexpectedInput as exc:
        raise AssemblyError(f"syntax error: {exc}", getattr(exc, "line", None)) from exc
    try:
        return CellasmToCells(filename).transform(tree)
    except VisitError as exc:
        if isinstance(exc.orig_exc, CellasmError):
            raise exc.orig_exc from None
        raise


def assemble(source: str, filename: str = "<input>") -> Tuple[Cell, DbgInfo]:
    """Assemble a listing into a root cell and the debug map of its offsets."""
    return assemble_fragment(source, filename).build()
