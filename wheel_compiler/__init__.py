"""
wheelc - ahead-of-time compiler for the Wheel language
=======================================================
Compiles Wheel source to a native x86-64 Linux executable, either directly
through GNU assembly or through an LLVM IR module.

Architecture:
    ┌─────────┐   ┌───────┐   ┌────────┐   ┌──────────┐   ┌──────────────┐   ┌───────────┐
    │ .wheel  │──>│ Lexer │──>│ Parser │──>│ Resolver │──>│ x86-64 / LLVM│──>│ Toolchain │
    │ source  │   │tokens │   │ (AST)  │   │ + folding│   │   backend    │   │ as/ld/cc  │
    └─────────┘   └───────┘   └────────┘   └──────────┘   └──────────────┘   └───────────┘

    Each stage is independent:
    - lexer.py:        lazy hand-written scanner
    - parser.py:       recursive descent, one token of lookahead
    - imports.py:      splices ``import "file";`` before resolution
    - resolver.py:     slots, string table, constant folding, value kinds
    - codegen_x86.py:  tree-walk emitter for GNU as (Intel syntax)
    - codegen_llvm.py: llvmlite IR builder
    - toolchain.py:    external assembler / linker / clang invocation
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import Iterable, Optional, Union

__version__ = "0.4.0"

from .errors import CompileError, EmitError
from .lexer import Lexer, LexError, Token, TokenType, tokenize
from .ast_nodes import *
from .parser import Parser, ParseError, parse
from .externs import ExternFunction, ExternRegistry, ExternError, parse_signature
from .resolver import FoldError, ResolveError, ResolvedProgram, Resolver, resolve
from .imports import process_imports
from .codegen_x86 import X86CodeGenerator, generate_x86
from .codegen_llvm import LLVMCodeGenerator, generate_llvm
from .toolchain import Toolchain, ToolchainError, build_ir, build_native

log = logging.getLogger(__name__)

OUTPUT_MODES = {
    "ge": {
        "backend": "native",
        "description": "x86-64 ELF executable via GNU as + ld",
    },
    "gb": {
        "backend": "native",
        "description": "flat binary stripped from the ELF image with objcopy",
    },
    "ll": {
        "backend": "ir",
        "description": "native executable via LLVM IR and clang",
    },
}

BACKENDS = ("native", "ir")

Externs = Union[ExternRegistry, Iterable[str], None]


def _registry(externs: Externs) -> ExternRegistry:
    if isinstance(externs, ExternRegistry):
        return externs
    registry = ExternRegistry.with_stdlib()
    for sig in externs or ():
        registry.declare(sig)
    return registry


def analyze(source: str, *, base_dir: Optional[Path] = None,
            externs: Externs = None) -> ResolvedProgram:
    """Front end: lex, parse, splice imports and resolve *source*."""
    program = Parser(tokenize(source)).parse()
    process_imports(program, Path(base_dir) if base_dir is not None else Path.cwd())
    return Resolver(_registry(externs)).resolve(program)


def compile_source(source: str, *, backend: str = "native",
                   base_dir: Optional[Path] = None, externs: Externs = None,
                   triple: Optional[str] = None) -> str:
    """Compile Wheel source to x86-64 assembly text or LLVM IR text.

    Args:
        source: Wheel source code.
        backend: 'native' (GNU assembly) or 'ir' (LLVM IR).
        base_dir: directory that ``import`` paths are relative to.
        externs: an ExternRegistry, or extra signature strings added to the
            standard-library declarations.
        triple: target triple for the IR module (host default).
    """
    if backend not in BACKENDS:
        raise ValueError(f"unknown backend {backend!r}, expected one of {BACKENDS}")
    resolved = analyze(source, base_dir=base_dir, externs=externs)
    if backend == "native":
        return generate_x86(resolved)
    return generate_llvm(resolved, triple)


def compile_file(source_path: Union[str, Path], output_path: Union[str, Path],
                 mode: str = "ge", *, toolchain: Optional[Toolchain] = None,
                 externs: Externs = None, keep_temps: Optional[Path] = None,
                 triple: Optional[str] = None, source: Optional[str] = None) -> Path:
    """Compile a .wheel file into a finished artifact.

    Every compile-time error is raised before any external tool runs.
    ``source`` skips reading *source_path* when the caller already has the
    text; the path still anchors relative imports.
    """
    if mode not in OUTPUT_MODES:
        raise ValueError(f"unknown mode {mode!r}, expected one of {sorted(OUTPUT_MODES)}")
    source_path = Path(source_path)
    if source is None:
        try:
            source = source_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise LexError(f"{source_path} is not valid UTF-8 "
                           f"(byte 0x{e.object[e.start]:02x} at offset {e.start})") from None
    backend = OUTPUT_MODES[mode]["backend"]
    log.debug("Compiling %s (mode %s, %s backend)", source_path, mode, backend)

    text = compile_source(source, backend=backend, base_dir=source_path.parent,
                          externs=externs, triple=triple)

    if backend == "native":
        return build_native(text, Path(output_path), flat=(mode == "gb"),
                            toolchain=toolchain, keep_temps=keep_temps)
    return build_ir(text, Path(output_path), toolchain=toolchain, keep_temps=keep_temps)
