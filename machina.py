"""Machina entry point: load a .mc program and run its entry function."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from interpreter import DEFAULT_ENTRY, DEFAULT_MAX_DEPTH, Interpreter, TracebackFormatter
from lexer import ParseError
from values import MachinaRuntimeError

__version__ = "0.1.0"


def _positive_int(text: str) -> int:
    value = int(text)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {text}")
    return value


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Machina reference interpreter")
    parser.add_argument("program", nargs="?", help="Source file path")
    parser.add_argument("--entry", default=DEFAULT_ENTRY, help="Entry function (default: %(default)s)")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit variable snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--max-depth", type=_positive_int, default=DEFAULT_MAX_DEPTH, help="Maximum call depth (default: %(default)s)")
    parser.add_argument("--max-steps", type=_positive_int, default=None, help="Abort after this many executed instructions")
    parser.add_argument("--version", action="version", version=f"Machina v{__version__}")
    args = parser.parse_args(argv)

    if args.program is None:
        print(f"Machina v{__version__}")
        print("Use 'machina <file name>' to execute a file")
        return 0

    filename = args.program
    try:
        with open(filename, "r", encoding="utf-8") as handle:
            source_text = handle.read()
    except OSError as exc:
        print(f"Failed to read {filename}: {exc}", file=sys.stderr)
        return 1

    interpreter = Interpreter(
        source=source_text,
        filename=filename,
        verbose=args.verbose,
        entry=args.entry,
        max_depth=args.max_depth,
        max_steps=args.max_steps,
    )
    try:
        interpreter.run()
    except ParseError as error:
        print(f"{error.__class__.__name__}: {error}", file=sys.stderr)
        return 1
    except MachinaRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
