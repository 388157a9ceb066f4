from dataclasses import dataclass, field
from typing import List, Optional, Union

from .cell import Cell


@dataclass(frozen=True)
class Integer:
    value: int


@dataclass(frozen=True)
class StackRegister:
    index: int


@dataclass(frozen=True)
class ControlRegister:
    index: int


@dataclass(frozen=True)
class Bitstring:
    bits: str


@dataclass(frozen=True)
class CellRef:
    """A reference kept opaque: printed as a cell tree, never decoded."""

    cell: Cell


@dataclass(eq=False)
class CodeRef:
    """Nested code decoded from a reference (``cell`` set) or from inline bits."""

    code: "Code"
    cell: Optional[Cell] = None

    def __eq__(self, other):
        return isinstance(other, CodeRef) and self.code == other.code

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True)
class CodeDictMarker:
    """Marks a constant dictionary as a jump table of method bodies."""

    pass


InstructionParameter = Union[
    Integer, StackRegister, ControlRegister, Bitstring, CellRef, CodeRef, CodeDictMarker
]


@dataclass
class Instruction:
    name: str
    params: List[InstructionParameter] = field(default_factory=list)

    def has_dict_marker(self) -> bool:
        return any(isinstance(p, CodeDictMarker) for p in self.params)

    def nested_code(self) -> List["Code"]:
        return [p.code for p in self.params if isinstance(p, CodeRef)]


class Code(list):
    """Ordered, mutable sequence of instructions."""

    def names(self) -> List[str]:
        return [insn.name for insn in self]
