"""Greedy packing of encoded commands into a chain of cells."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .cell import Cell, CellBuilder
from .debug import DbgInfo, DbgNode
from .exceptions import CellOverflow, PackError

log = logging.getLogger(__name__)


@dataclass
class Fragment:
    """A finalized builder together with its debug tree."""

    builder: CellBuilder
    dbg: DbgNode

    def build(self) -> Tuple[Cell, DbgInfo]:
        cell = self.builder.build()
        return cell, DbgInfo.from_cell(cell, self.dbg)


@dataclass
class Unit:
    builder: CellBuilder = field(default_factory=CellBuilder)
    dbg: DbgNode = field(default_factory=DbgNode)

    def finalize(self) -> Tuple[Cell, DbgInfo]:
        cell = self.builder.build()
        return cell, DbgInfo.from_cell(cell, self.dbg)


def _store_payload(builder: CellBuilder, command: bytes, bits: int, refs: Sequence[Cell]) -> bool:
    try:
        builder.store_raw(command, bits)
        for ref in refs:
            builder.store_ref(ref)
    except CellOverflow:
        return False
    return True


class Units:
    """Stack of cells under construction; never empty."""

    def __init__(self):
        self.units: List[Unit] = [Unit()]

    def write_unit(self, unit: Unit) -> None:
        self.units.append(unit)

    def write_command(self, command: bytes, dbg: DbgNode) -> None:
        self.write_command_bitstring(command, len(command) * 8, dbg)

    def write_command_bitstring(self, command: bytes, bits: int, dbg: DbgNode) -> None:
        last = self.units[-1]
        orig_offset = last.builder.size_bits
        try:
            last.builder.store_raw(command, bits)
        except CellOverflow:
            pass
        else:
            last.dbg.inline_node(orig_offset, dbg)
            return
        try:
            builder = CellBuilder.from_raw(command, bits)
        except CellOverflow:
            raise PackError(f"payload does not fit in a cell: {bits} bits")
        log.debug("sealed cell #%d at %d bits", len(self.units), orig_offset)
        self.units.append(Unit(builder, dbg))

    def write_composite_command(
        self,
        command: bytes,
        references: Sequence[CellBuilder],
        dbg: DbgNode,
        bits: Optional[int] = None,
    ) -> None:
        if len(references) != len(dbg.children):
            raise ValueError(
                f"{len(references)} references but {len(dbg.children)} debug children"
            )
        bit_count = len(command) * 8 if bits is None else bits
        refs = [reference.build() for reference in references]

        last = self.units[-1]
        # One reference slot stays free for linking cells in finalize().
        if last.builder.spare_refs > len(refs):
            candidate = last.builder.copy()
            orig_offset = candidate.size_bits
            if _store_payload(candidate, command, bit_count, refs):
                last.builder = candidate
                last.dbg.inline_node(orig_offset, dbg)
                return

        fresh = CellBuilder()
        if fresh.spare_refs > len(refs) and _store_payload(fresh, command, bit_count, refs):
            log.debug("sealed cell #%d at %d bits", len(self.units), last.builder.size_bits)
            self.units.append(Unit(fresh, dbg))
            return
        raise PackError(
            f"payload does not fit in a cell: {bit_count} bits, {len(refs)} references"
        )

    def finalize(self) -> Tuple[CellBuilder, DbgNode]:
        """Collapse the stack tail-to-head into a single root builder."""
        units, self.units = self.units, [Unit()]
        cursor = units.pop()
        while units:
            destination = units.pop()
            orig_offset = destination.builder.size_bits
            cell = cursor.builder.build()
            try:
                destination.builder.store_slice(cell.as_slice())
            except CellOverflow:
                destination.builder.store_ref(cell)
                destination.dbg.append_node(cursor.dbg)
            else:
                destination.dbg.inline_node(orig_offset, cursor.dbg)
            cursor = destination
        return cursor.builder, cursor.dbg

    def finalize_fragment(self) -> Fragment:
        builder, dbg = self.finalize()
        return Fragment(builder, dbg)
