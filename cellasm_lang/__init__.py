from .grammar import ASM_GRAMMAR
from .exceptions import (
    AssemblyError,
    BocError,
    CellasmError,
    CellError,
    CellOverflow,
    CellUnderflow,
    DecodeError,
    DictionaryResolutionError,
    PackError,
)
from .cell import Cell, CellBuilder, CellSlice, bits_to_hex, parse_hex_bits
from .boc import count_unique_cells, deserialize_boc, serialize_boc
from .hashmap import build_dict, dict_find_min, dict_find_next, dict_items
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
from .debug import DbgInfo, DbgNode, DbgPos
from .writer import Fragment, Unit, Units
from .handlers import OPCODES, OpcodeTable
from .loader import Loader, elaborate_dictpushconst_dictugetjmp, load, traverse_code_tree
from .codedict import DelimitedHashmapE
from .fmt import Printer, print_tree_of_cells
from .assembler import assemble, assemble_fragment
from .disasm import disassemble, disassemble_boc, disassemble_fragment, extract_reference
from .config import Settings, load_settings

__all__ = [
    "ASM_GRAMMAR",
    "CellasmError",
    "CellError",
    "CellUnderflow",
    "CellOverflow",
    "BocError",
    "DecodeError",
    "DictionaryResolutionError",
    "PackError",
    "AssemblyError",
    "Cell",
    "CellSlice",
    "CellBuilder",
    "bits_to_hex",
    "parse_hex_bits",
    "serialize_boc",
    "deserialize_boc",
    "count_unique_cells",
    "build_dict",
    "dict_find_min",
    "dict_find_next",
    "dict_items",
    "Integer",
    "StackRegister",
    "ControlRegister",
    "Bitstring",
    "CellRef",
    "CodeRef",
    "CodeDictMarker",
    "Instruction",
    "Code",
    "DbgPos",
    "DbgNode",
    "DbgInfo",
    "Fragment",
    "Unit",
    "Units",
    "OPCODES",
    "OpcodeTable",
    "Loader",
    "load",
    "traverse_code_tree",
    "elaborate_dictpushconst_dictugetjmp",
    "DelimitedHashmapE",
    "Printer",
    "print_tree_of_cells",
    "assemble",
    "assemble_fragment",
    "disassemble",
    "disassemble_fragment",
    "disassemble_boc",
    "extract_reference",
    "Settings",
    "load_settings",
]
