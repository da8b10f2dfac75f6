"""
Import splicing for the Wheel compiler.

``import "name";`` loads ``name.wheel`` (the suffix is added when missing)
relative to the directory of the importing file, parses it, and places its
statements ahead of the importing program's own statements. Each file is
spliced at most once per compilation, which also makes import cycles safe.
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import List, Optional, Set

from .ast_nodes import Import, Program, Statement
from .lexer import tokenize
from .parser import Parser
from .resolver import ResolveError

log = logging.getLogger(__name__)

SOURCE_SUFFIX = ".wheel"


def _import_path(base_dir: Path, name: str) -> Path:
    if not name.endswith(SOURCE_SUFFIX):
        name += SOURCE_SUFFIX
    return (base_dir / name).resolve()


def process_imports(program: Program, base_dir: Path,
                    seen: Optional[Set[Path]] = None) -> Program:
    """Replace top-level Import statements of *program* with the imported code."""
    if seen is None:
        seen = set()

    imported: List[Statement] = []
    remaining: List[Statement] = []

    for stmt in program.statements:
        if not isinstance(stmt, Import):
            remaining.append(stmt)
            continue

        path = _import_path(base_dir, stmt.path)
        if path in seen:
            log.debug("Skipping already imported %s", path)
            continue
        seen.add(path)

        try:
            source = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ResolveError(f"cannot import {stmt.path!r}: {e.strerror or e}",
                               stmt.line, stmt.col) from e

        log.debug("Importing %s", path)
        sub = Parser(tokenize(source)).parse()
        process_imports(sub, path.parent, seen)
        imported.extend(sub.statements)

    program.statements = imported + remaining
    return program
