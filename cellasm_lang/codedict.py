"""Recovery of jump-table dictionaries embedded in code.

A dictionary value is a slice somewhere inside the dictionary's own cell
tree. ``DelimitedHashmapE`` finds, for every key, the cell and bit offset
where that value physically starts so the tree can be printed with method
bodies disassembled in place.
"""

import logging
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from .cell import Cell, CellSlice, bits_to_hex
from .exceptions import CellError, DictionaryResolutionError
from .hashmap import dict_items
from .loader import Loader
from .models import Code

if TYPE_CHECKING:
    from .fmt import Printer

log = logging.getLogger(__name__)

Path = Tuple[int, ...]


class DelimitedHashmapE:
    def __init__(self, cell: Cell, key_size: int):
        self.cell = cell
        self.key_size = key_size
        self.map: Dict[Path, Tuple[int, int, Code]] = {}

    @staticmethod
    def _search(cs: CellSlice, target: CellSlice, path: Path) -> Optional[Tuple[Path, int]]:
        if cs.refs_equal(target):
            data = cs.data()
            wanted = target.data()
            for start in range(len(data) - len(wanted) + 1):
                if data[start:] == wanted:
                    return path, cs.offset_bits + start
        for i in range(cs.remaining_refs):
            found = DelimitedHashmapE._search(
                cs.get_reference(i).as_slice(), target, path + (i,)
            )
            if found is not None:
                return found
        return None

    @staticmethod
    def locate(cs: CellSlice, target: CellSlice, path: Path = ()) -> Tuple[Path, int]:
        """Return the reference path and bit offset where ``target`` is stored.

        References are compared before any data: a value's references have
        to sit in the same cell as its bits.
        """
        found = DelimitedHashmapE._search(cs, target, path)
        if found is None:
            raise DictionaryResolutionError("not found", f"value x{{{target.to_hex()}}}")
        return found

    def mark(self) -> None:
        try:
            entries = list(dict_items(self.cell, self.key_size))
        except CellError as exc:
            raise DictionaryResolutionError("not found", str(exc)) from exc
        for key, value in entries:
            path, offset = self.locate(self.cell.as_slice(), value)
            if path in self.map:
                raise DictionaryResolutionError(
                    "non-unique path",
                    f"keys {self.map[path][0]} and {key} share path {list(path)}",
                )
            code = Loader(False).load(value.copy())
            log.debug("method %d located at path %s offset %d", key, list(path), offset)
            self.map[path] = (key, offset, code)

    def print(self, indent: str = "", printer: Optional["Printer"] = None) -> str:
        if printer is None:
            from .fmt import Printer

            printer = Printer()
        return self._print_node(self.cell, (), indent, printer)

    def _print_node(self, cell: Cell, path: Path, indent: str, printer: "Printer") -> str:
        inner = indent + "  "
        out = f"{indent}.cell {{ ;; #{cell.hash_hex()}\n"
        resolved = self.map.get(path)
        if resolved is not None:
            key, offset, code = resolved
            if offset:
                out += f"{inner}.blob x{{{bits_to_hex(cell.bits[:offset])}}}\n"
            out += f"{inner}{{ ;; method {key}\n"
            out += printer.print_code(code, inner + "  ")
            out += f"{inner}}}\n"
        else:
            if cell.bit_length:
                out += f"{inner}.blob x{{{cell.to_hex()}}}\n"
            for i, ref in enumerate(cell.refs):
                out += self._print_node(ref, path + (i,), inner, printer)
        return out + f"{indent}}}\n"
