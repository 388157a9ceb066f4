"""Source positions attached to bit offsets of assembled cells."""

import json
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .cell import Cell
from .exceptions import CellasmError


@dataclass(frozen=True)
class DbgPos:
    filename: str
    line: int

    def __str__(self) -> str:
        return f"{self.filename}:{self.line}"

    @classmethod
    def parse(cls, text: str) -> "DbgPos":
        filename, _, line = text.rpartition(":")
        if not filename or not line.isdigit():
            raise CellasmError(f"malformed debug position: {text!r}")
        return cls(filename, int(line))


@dataclass
class DbgNode:
    """Debug spans of one cell; ``children`` follow the cell's references."""

    offsets: List[Tuple[int, DbgPos]] = field(default_factory=list)
    children: List["DbgNode"] = field(default_factory=list)

    @classmethod
    def from_pos(cls, pos: DbgPos) -> "DbgNode":
        return cls([(0, pos)])

    def inline_node(self, offset: int, node: "DbgNode") -> None:
        for pos_offset, pos in node.offsets:
            self.offsets.append((pos_offset + offset, pos))
        self.children.extend(node.children)

    def append_node(self, node: "DbgNode") -> None:
        self.children.append(node)


class DbgInfo:
    """Mapping of cell hash -> bit offset -> source position."""

    def __init__(self):
        self._map: Dict[str, Dict[int, DbgPos]] = {}

    @classmethod
    def from_cell(cls, cell: Cell, node: DbgNode) -> "DbgInfo":
        info = cls()
        stack = [(cell, node)]
        while stack:
            current, current_node = stack.pop()
            if len(current_node.children) > current.ref_count:
                raise CellasmError(
                    f"debug tree has {len(current_node.children)} children "
                    f"but cell #{current.hash_hex()[:8]} has {current.ref_count} references"
                )
            if current_node.offsets:
                entry = info._map.setdefault(current.hash_hex(), {})
                entry.update(current_node.offsets)
            for i, child in enumerate(current_node.children):
                stack.append((current.reference(i), child))
        return info

    def get(self, cell_hash: str, offset: int) -> Optional[DbgPos]:
        return self._map.get(cell_hash, {}).get(offset)

    def lookup(self, cell_hash: str, offset: int) -> Optional[DbgPos]:
        """Return the position of the last span starting at or before ``offset``."""
        entry = self._map.get(cell_hash)
        if not entry:
            return None
        starts = [o for o in entry if o <= offset]
        if not starts:
            return None
        return entry[max(starts)]

    def offsets(self, cell_hash: str) -> Dict[int, DbgPos]:
        return dict(self._map.get(cell_hash, {}))

    def __len__(self) -> int:
        return len(self._map)

    def __iter__(self) -> Iterator[str]:
        return iter(self._map)

    def to_json(self) -> str:
        data = {
            h: {str(o): str(pos) for o, pos in sorted(entry.items())}
            for h, entry in sorted(self._map.items())
        }
        return json.dumps(data, indent=2)

    @classmethod
    def from_json(cls, text: str) -> "DbgInfo":
        info = cls()
        for h, entry in json.loads(text).items():
            info._map[h] = {int(o): DbgPos.parse(pos) for o, pos in entry.items()}
        return info
