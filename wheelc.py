#!/usr/bin/env python3
"""
wheelc - Wheel compiler CLI

Usage:
    wheelc <input.wheel> [-o a.out] [--mode ge|gb|ll] [--emit asm|ir]
                         [--extern SIG]... [--link OBJ]... [--verbose]

Modes:
    ge  x86-64 ELF executable (GNU as + ld)
    gb  flat binary (ge image passed through objcopy -O binary)
    ll  native executable through LLVM IR and clang

Examples:
    wheelc hello.wheel -o hello
    wheelc hello.wheel -o hello --mode ll
    wheelc hello.wheel --emit asm            # print assembly, run no tools
    wheelc game.wheel --extern "beep(int) -> int" --link beep.o
"""

import argparse
import logging
import sys
from pathlib import Path

from rich.logging import RichHandler

from wheel_compiler import (
    OUTPUT_MODES,
    __version__,
    compile_file,
    compile_source,
    tokenize,
)
from wheel_compiler.errors import EmitError
from wheel_compiler.externs import ExternError, ExternRegistry
from wheel_compiler.lexer import LexError
from wheel_compiler.parser import ParseError, Parser
from wheel_compiler.resolver import FoldError, ResolveError
from wheel_compiler.toolchain import Toolchain, ToolchainError

log = logging.getLogger("wheelc")


def setup_logging(verbose: int = 0, log_file: str = None):
    """Console logging through rich, plus an optional full log file."""
    console_level = logging.WARNING
    if verbose == 1:
        console_level = logging.INFO
    elif verbose >= 2:
        console_level = logging.DEBUG

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    ch = RichHandler(
        level=console_level,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    ch.setLevel(console_level)
    root.addHandler(ch)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        root.addHandler(fh)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wheelc",
        description="Ahead-of-time compiler for the Wheel language",
        epilog="Modes: " + ", ".join(f"{m} ({p['description']})"
                                      for m, p in OUTPUT_MODES.items()),
    )
    parser.add_argument("input", help="Input .wheel source file")
    parser.add_argument("-o", "--out", default="a.out",
                        help="Output file (default: a.out)")
    parser.add_argument("--mode", default="ge", choices=list(OUTPUT_MODES.keys()),
                        help="Output mode (default: ge)")
    parser.add_argument("--emit", choices=["asm", "ir"], default=None,
                        help="Print assembly or LLVM IR instead of building (no tools run)")
    parser.add_argument("--tokens", action="store_true",
                        help="Dump token stream and exit (debug)")
    parser.add_argument("--ast", action="store_true",
                        help="Dump AST and exit (debug)")
    parser.add_argument("--extern", action="append", default=[], metavar="SIG",
                        help="Declare a foreign function, e.g. 'beep(int) -> int' (repeatable)")
    parser.add_argument("--link", action="append", default=[], metavar="OBJ",
                        help="Extra object or library to link (repeatable)")
    parser.add_argument("--keep-temps", metavar="DIR", default=None,
                        help="Copy intermediate files (.s/.o/.ll) into DIR")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Seconds each external tool may run")
    parser.add_argument("--triple", default=None,
                        help="Target triple for the LLVM module (default: host)")
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="Increase verbosity (-v, -vv)")
    parser.add_argument("--log-file", default=None,
                        help="Write a full debug log to this file")
    parser.add_argument("--version", action="version",
                        version=f"wheelc {__version__}")
    return parser


def main(argv=None):
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    source_path = Path(args.input)
    try:
        source = source_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: File not found: {args.input}", file=sys.stderr)
        sys.exit(1)
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error reading {args.input}: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        externs = ExternRegistry.with_stdlib()
        for sig in args.extern:
            externs.declare(sig)

        # Token dump mode
        if args.tokens:
            for tok in tokenize(source):
                print(tok)
            sys.exit(0)

        # AST dump mode
        if args.ast:
            _print_ast(Parser(tokenize(source)).parse())
            sys.exit(0)

        if args.emit:
            backend = "native" if args.emit == "asm" else "ir"
            print(compile_source(source, backend=backend, base_dir=source_path.parent,
                                 externs=externs, triple=args.triple))
            sys.exit(0)

        toolchain = Toolchain.from_env()
        toolchain.link_objects.extend(args.link)
        if args.timeout is not None:
            toolchain.timeout = args.timeout
        log.info("Input:  %s", source_path)
        log.info("Mode:   %s (%s)", args.mode, OUTPUT_MODES[args.mode]["description"])
        log.debug("Tools:  %s", toolchain.describe())

        out = compile_file(source_path, args.out, args.mode, toolchain=toolchain,
                           externs=externs, triple=args.triple, source=source,
                           keep_temps=Path(args.keep_temps) if args.keep_temps else None)
        log.info("Output: %s", out)

    except LexError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    except ParseError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    except (ResolveError, FoldError, ExternError) as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    except EmitError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    except ToolchainError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Internal compiler error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(2)


def _print_ast(node, indent=0):
    """Pretty-print an AST node tree (debug helper)."""
    prefix = "  " * indent
    if hasattr(node, '__dataclass_fields__'):
        print(f"{prefix}{type(node).__name__}:")
        for fname in node.__dataclass_fields__:
            if fname in ("line", "col"):
                continue
            val = getattr(node, fname)
            if isinstance(val, list):
                print(f"{prefix}  {fname}:")
                for item in val:
                    _print_ast(item, indent + 2)
            elif hasattr(val, '__dataclass_fields__') and not isinstance(val, type):
                print(f"{prefix}  {fname}:")
                _print_ast(val, indent + 2)
            elif val is not None:
                print(f"{prefix}  {fname}: {val}")
    else:
        print(f"{prefix}{node}")


if __name__ == "__main__":
    main()
