from __future__ import annotations
import unittest

from cellasm_lang import (
    CellBuilder,
    CellRef,
    DbgInfo,
    DbgNode,
    DbgPos,
    PackError,
    Unit,
    Units,
    load,
)
from cellasm_lang.cell import bits_to_bytes

POS_A = DbgPos("a.asm", 1)
POS_B = DbgPos("a.asm", 2)
POS_C = DbgPos("a.asm", 3)


def walk(cell):
    stack, seen = [cell], []
    while stack:
        current = stack.pop()
        seen.append(current)
        stack.extend(current.refs)
    return seen


class UnitsTests(unittest.TestCase):
    def test_starts_with_one_empty_unit(self) -> None:
        units = Units()
        self.assertEqual(len(units.units), 1)
        builder, dbg = units.finalize()
        self.assertEqual(builder.size_bits, 0)
        self.assertEqual(dbg.offsets, [])
        self.assertEqual(len(units.units), 1)

    def test_bitstrings_fill_then_spill(self) -> None:
        units = Units()
        for line in range(100):
            units.write_command(b"\x81\x03\xe8", DbgNode.from_pos(DbgPos("a.asm", line)))
        self.assertEqual(len(units.units), 3)  # 42 + 42 + 16 commands
        self.assertEqual(units.units[0].builder.size_bits, 42 * 24)
        self.assertEqual(units.units[1].dbg.offsets[0], (0, DbgPos("a.asm", 42)))
        cell, info = units.finalize_fragment().build()
        for c in walk(cell):
            self.assertLessEqual(c.bit_length, 1023)
            self.assertLessEqual(c.ref_count, 4)
        code = load(cell.as_slice())
        self.assertEqual(len(code), 100)
        self.assertEqual({insn.params[0].value for insn in code}, {1000})
        self.assertEqual(info.get(cell.hash_hex(), 24), DbgPos("a.asm", 1))

    def test_long_program_builds_deep_chain(self) -> None:
        units = Units()
        for _ in range(42000):
            units.write_command(b"\x81\x03\xe8", DbgNode())
        cell, info = units.finalize_fragment().build()
        self.assertGreaterEqual(cell.depth, 999)
        self.assertEqual(len(info), 0)
        self.assertEqual(len(load(cell.as_slice())), 42000)

    def test_sub_byte_commands(self) -> None:
        units = Units()
        units.write_command_bitstring(b"\xe0", 3, DbgNode.from_pos(POS_A))
        units.write_command_bitstring(b"\x80", 1, DbgNode.from_pos(POS_B))
        builder, dbg = units.finalize()
        self.assertEqual(builder.bits, "1111")
        self.assertEqual(dbg.offsets, [(0, POS_A), (3, POS_B)])

    def test_oversized_command(self) -> None:
        units = Units()
        with self.assertRaises(PackError):
            units.write_command_bitstring(bytes(128), 1024, DbgNode())
        self.assertEqual(units.units[0].builder.size_bits, 0)

    def test_composite_keeps_a_free_reference_slot(self) -> None:
        units = Units()
        refs = []
        for i in range(10):
            child = CellBuilder().store_uint(i, 8)
            refs.append(child.build())
            units.write_composite_command(b"\x88", [child], DbgNode([(0, POS_A)], [DbgNode()]))
        self.assertEqual([u.builder.size_refs for u in units.units], [3, 3, 3, 1])
        cell, _ = units.finalize_fragment().build()
        for c in walk(cell):
            self.assertLessEqual(c.bit_length, 1023)
            self.assertLessEqual(c.ref_count, 4)
        code = load(cell.as_slice())
        self.assertEqual(code.names(), ["PUSHREF"] * 10)
        self.assertEqual([insn.params[0] for insn in code], [CellRef(r) for r in refs])

    def test_composite_moves_to_fresh_cell_when_bits_run_out(self) -> None:
        units = Units()
        units.write_command_bitstring(bytes(127), 1016, DbgNode())
        units.write_composite_command(b"\x88", [CellBuilder()], DbgNode([(0, POS_B)], [DbgNode()]))
        self.assertEqual(len(units.units), 2)
        self.assertEqual(units.units[1].builder.size_refs, 1)
        self.assertEqual(units.units[1].dbg.offsets, [(0, POS_B)])

    def test_composite_payload_too_large(self) -> None:
        units = Units()
        children = [CellBuilder() for _ in range(4)]
        with self.assertRaises(PackError):
            units.write_composite_command(b"\xe3\x0f", children, DbgNode([], [DbgNode() for _ in children]))

    def test_composite_debug_children_must_match(self) -> None:
        with self.assertRaises(ValueError):
            Units().write_composite_command(b"\x88", [CellBuilder()], DbgNode())

    def test_explicit_bit_count(self) -> None:
        units = Units()
        bits = "1111" + "0100" + "1010" + "01" + "0000010011"
        units.write_composite_command(
            bits_to_bytes(bits), [CellBuilder()], DbgNode([], [DbgNode()]), bits=len(bits)
        )
        self.assertEqual(units.units[0].builder.bits, bits)


class FinalizeTests(unittest.TestCase):
    def test_inlined_debug_offsets_are_shifted(self) -> None:
        units = Units()
        head = units.units[0]
        head.builder.store_bits("1" * 100)
        head.dbg.offsets.append((0, POS_A))
        units.write_unit(Unit(CellBuilder().store_bits("0" * 40), DbgNode([(0, POS_B), (16, POS_C)])))
        builder, dbg = units.finalize()
        self.assertEqual(builder.size_bits, 140)
        self.assertEqual(builder.size_refs, 0)
        self.assertEqual(dbg.offsets, [(0, POS_A), (100, POS_B), (116, POS_C)])
        self.assertEqual(dbg.children, [])

    def test_attached_debug_offsets_are_kept(self) -> None:
        units = Units()
        head = units.units[0]
        head.builder.store_bits("1" * 1000)
        head.dbg.offsets.append((0, POS_A))
        tail = DbgNode([(0, POS_B), (16, POS_C)])
        units.write_unit(Unit(CellBuilder().store_bits("0" * 40), tail))
        builder, dbg = units.finalize()
        self.assertEqual(builder.size_bits, 1000)
        self.assertEqual(builder.size_refs, 1)
        self.assertEqual(dbg.offsets, [(0, POS_A)])
        self.assertEqual(dbg.children[0].offsets, [(0, POS_B), (16, POS_C)])

        cell = builder.build()
        info = DbgInfo.from_cell(cell, dbg)
        self.assertEqual(info.get(cell.reference(0).hash_hex(), 16), POS_C)
        self.assertEqual(info.lookup(cell.reference(0).hash_hex(), 30), POS_C)
        self.assertIsNone(info.get(cell.hash_hex(), 100))

    def test_inlining_carries_references(self) -> None:
        units = Units()
        units.units[0].builder.store_bits("1" * 8)
        child = CellBuilder().store_bits("1").build()
        units.write_unit(Unit(CellBuilder().store_bits("0" * 8).store_ref(child), DbgNode([], [DbgNode([(0, POS_C)])])))
        builder, dbg = units.finalize()
        self.assertEqual(builder.bits, "1" * 8 + "0" * 8)
        self.assertEqual(builder.refs, (child,))
        self.assertEqual(dbg.children[0].offsets, [(0, POS_C)])


class DebugInfoTests(unittest.TestCase):
    def test_json_round_trip(self) -> None:
        units = Units()
        units.write_command(b"\xa0", DbgNode.from_pos(POS_A))
        units.write_command(b"\xa4", DbgNode.from_pos(POS_B))
        cell, info = units.finalize_fragment().build()
        restored = DbgInfo.from_json(info.to_json())
        self.assertEqual(restored.offsets(cell.hash_hex()), {0: POS_A, 8: POS_B})
        self.assertEqual(list(restored), [cell.hash_hex()])
        self.assertEqual(len(restored), 1)

    def test_position_parsing(self) -> None:
        self.assertEqual(DbgPos.parse("dir/a:b.asm:12"), DbgPos("dir/a:b.asm", 12))
        self.assertEqual(str(POS_B), "a.asm:2")
        from cellasm_lang import CellasmError

        with self.assertRaises(CellasmError):
            DbgPos.parse("nowhere")


if __name__ == "__main__":
    unittest.main(verbosity=2)
