from __future__ import annotations
import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

# We import the entrypoint script specifically to test it
import cellasm
import cellasm_lang
from cellasm_lang import Settings, deserialize_boc, load_settings, serialize_boc
from cellasm_lang.boc import BOC_MAGIC


class SettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(load_settings(td, environ={}), Settings())

    def test_file_then_environment(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with open(os.path.join(td, "cellasm.toml"), "w") as f:
                f.write('[cellasm]\ncollapse = false\nlog_level = "debug"\ndebug_map = true\n')
            settings = load_settings(td, environ={})
            self.assertEqual(settings, Settings(collapse=False, log_level="DEBUG", debug_map=True))
            settings = load_settings(td, environ={"CELLASM_COLLAPSE": "yes", "CELLASM_LOG_LEVEL": "error"})
            self.assertTrue(settings.collapse)
            self.assertEqual(settings.log_level, "ERROR")

    def test_invalid_values(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(cellasm_lang.CellasmError):
                load_settings(td, environ={"CELLASM_COLLAPSE": "maybe"})
            with self.assertRaises(cellasm_lang.CellasmError):
                load_settings(td, environ={"CELLASM_LOG_LEVEL": "LOUD"})
            with open(os.path.join(td, "cellasm.toml"), "w") as f:
                f.write("[cellasm]\ntruncate = 3\n")
            with self.assertRaises(cellasm_lang.CellasmError):
                load_settings(td, environ={})

    def test_malformed_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with open(os.path.join(td, "cellasm.toml"), "w") as f:
                f.write("[cellasm\n")
            with self.assertRaises(cellasm_lang.CellasmError):
                load_settings(td, environ={})


class EntrypointTests(unittest.TestCase):
    def _run(self, *argv: str) -> tuple[int, str]:
        buf = io.StringIO()
        with patch.dict(os.environ, {}, clear=False), redirect_stdout(buf):
            os.environ.pop("CELLASM_COLLAPSE", None)
            os.environ.pop("CELLASM_LOG_LEVEL", None)
            code = cellasm.main(list(argv))
        return code, buf.getvalue()

    def _assemble(self, td: str, source: str) -> str:
        src = os.path.join(td, "prog.asm")
        with open(src, "w") as f:
            f.write(source)
        out = os.path.join(td, "prog.boc")
        code, _ = self._run("assemble", src, "-o", out, "--dbgmap", out + ".json")
        self.assertEqual(code, 0)
        return out

    def test_assemble_then_text(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            out = self._assemble(td, "SETCP0\nCALLREF { INC }\nCALLREF { INC }\n")
            with open(out + ".json") as f:
                dbgmap = json.load(f)
            root = deserialize_boc(open(out, "rb").read())[0]
            self.assertEqual(dbgmap[root.hash_hex()]["0"], "prog.asm:1")

            code, text = self._run("text", out)
            self.assertEqual(code, 0)
            self.assertIn("(collapsed)", text)
            code, text = self._run("text", out, "--full")
            self.assertNotIn("(collapsed)", text)
            self.assertEqual(text.count("INC"), 2)

    def test_stateinit(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            code_cell, _ = cellasm_lang.assemble("ACCEPT\n")
            state = cellasm_lang.Cell("00110", [code_cell, cellasm_lang.Cell()])
            path = os.path.join(td, "state.boc")
            with open(path, "wb") as f:
                f.write(serialize_boc([state]))
            code, text = self._run("text", path, "--stateinit")
            self.assertEqual((code, text), (0, "ACCEPT\n"))

    def test_extract_and_dump(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            out = self._assemble(td, "CALLREF { INC }\n")
            part = os.path.join(td, "part.boc")
            code, _ = self._run("extract", "0", out, part)
            self.assertEqual(code, 0)
            [child] = deserialize_boc(open(part, "rb").read())
            self.assertEqual(child.to_hex(), "A4")

            code, text = self._run("dump", out)
            self.assertEqual(code, 0)
            self.assertEqual(text, "1 root in total\nroot 0: (2 unique):\nx{DB3C}\n  x{A4}\n")

    def test_empty_container(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "empty.boc")
            with open(path, "wb") as f:
                f.write(BOC_MAGIC + bytes([0x01, 0x01, 0, 0, 0, 0]))
            self.assertEqual(self._run("dump", path), (0, "empty\n"))
            self.assertEqual(self._run("text", path), (0, "boc is empty\n"))

    def test_dump_counts_roots(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "two.boc")
            with open(path, "wb") as f:
                f.write(serialize_boc([cellasm_lang.Cell("1"), cellasm_lang.Cell("0")]))
            code, text = self._run("dump", path)
            self.assertEqual(code, 0)
            self.assertEqual(text, "2 roots in total\nroot 0: (1 unique):\nx{C_}\nroot 1: (1 unique):\nx{4_}\n")

    def test_deeply_nested_text(self) -> None:
        cell = cellasm_lang.Cell(cellasm_lang.parse_hex_bits("A4"))
        for _ in range(300):
            cell = cellasm_lang.Cell(cellasm_lang.parse_hex_bits("DB3C"), [cell])
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "deep.boc")
            with open(path, "wb") as f:
                f.write(serialize_boc([cell]))
            code, text = self._run("text", path)
            self.assertEqual(code, 0)
            self.assertEqual(text.count("CALLREF"), 300)

    def test_fragment(self) -> None:
        self.assertEqual(self._run("fragment", "x{7172}"), (0, "PUSHINT 1\nPUSHINT 2\n"))

    def test_failures_are_reported(self) -> None:
        code, text = self._run("fragment", "x{FE}")
        self.assertEqual(code, 1)
        self.assertIn("FATAL ERROR", text)
        self.assertIn("unknown opcode", text)
        with tempfile.TemporaryDirectory() as td:
            code, text = self._run("extract", "3", self._assemble(td, "NOP\n"), os.path.join(td, "x"))
            self.assertEqual(code, 1)
            code, text = self._run("text", os.path.join(td, "missing.boc"))
            self.assertEqual(code, 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
