"""cellasm entrypoint module exposing the public API and CLI."""

import argparse
import logging
import os
import sys

from cellasm_lang import (
    CellasmError,
    assemble,
    count_unique_cells,
    deserialize_boc,
    disassemble_boc,
    disassemble_fragment,
    extract_reference,
    load_settings,
    print_tree_of_cells,
    serialize_boc,
)

log = logging.getLogger("cellasm")


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _write_bytes(path: str, data: bytes) -> None:
    with open(path, "wb") as f:
        f.write(data)


def cmd_dump(args, settings) -> None:
    roots = deserialize_boc(_read_bytes(args.boc))
    if not roots:
        print("empty")
        return
    print(f"{len(roots)} {'roots' if len(roots) > 1 else 'root'} in total")
    for i, root in enumerate(roots):
        print(f"root {i}: ({count_unique_cells(root)} unique):")
        sys.stdout.write(print_tree_of_cells(root))


def cmd_extract(args, settings) -> None:
    data = extract_reference(_read_bytes(args.boc), args.index, args.root)
    _write_bytes(args.output, data)
    log.info("reference %d of root %d written to %s", args.index, args.root, args.output)


def cmd_fragment(args, settings) -> None:
    sys.stdout.write(disassemble_fragment(args.bitstring))


def cmd_text(args, settings) -> None:
    data = _read_bytes(args.boc)
    if not deserialize_boc(data):
        print("boc is empty")
        return
    collapse = settings.collapse and not args.full
    sys.stdout.write(disassemble_boc(data, args.stateinit, collapse))


def cmd_assemble(args, settings) -> None:
    with open(args.source, "r", encoding="utf-8") as f:
        source = f.read()
    cell, dbg = assemble(source, os.path.basename(args.source))
    _write_bytes(args.output, serialize_boc([cell]))
    dbgmap = args.dbgmap
    if dbgmap is None and settings.debug_map:
        dbgmap = args.output + ".dbg.json"
    if dbgmap is not None:
        with open(dbgmap, "w", encoding="utf-8") as f:
            f.write(dbg.to_json())
    log.info("assembled %s into %s (cell #%s)", args.source, args.output, cell.hash_hex()[:8])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cell-tree bytecode assembler and disassembler")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("dump", help="Print a container as a tree of bitstrings")
    p.add_argument("boc")
    p.set_defaults(func=cmd_dump)

    p = sub.add_parser("extract", help="Save one reference of a root as a new container")
    p.add_argument("index", type=int)
    p.add_argument("boc")
    p.add_argument("output")
    p.add_argument("--root", type=int, default=0)
    p.set_defaults(func=cmd_extract)

    p = sub.add_parser("fragment", help="Disassemble a hex bitstring")
    p.add_argument("bitstring")
    p.set_defaults(func=cmd_fragment)

    p = sub.add_parser("text", help="Disassemble the code in a container")
    p.add_argument("boc")
    p.add_argument("--stateinit", action="store_true", help="Take the code from reference 0")
    p.add_argument("--full", action="store_true", help="Print identical cells every time")
    p.set_defaults(func=cmd_text)

    p = sub.add_parser("assemble", help="Assemble a listing into a container")
    p.add_argument("source")
    p.add_argument("-o", "--output", required=True)
    p.add_argument("--dbgmap", default=None, help="Write the debug map as JSON")
    p.set_defaults(func=cmd_assemble)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(os.getcwd())
        logging.basicConfig(
            format="%(asctime)s %(levelname)s %(message)s",
            level=logging.DEBUG if args.verbose else settings.log_level,
        )
        args.func(args, settings)
    except (CellasmError, OSError) as e:
        print(f"FATAL ERROR\n{e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
