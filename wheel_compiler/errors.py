"""
Common error base for the Wheel compiler.

Every pipeline stage defines its own exception class next to the code that
raises it (LexError in lexer.py, ParseError in parser.py, ...). They all
derive from CompileError so callers can catch one type for "the program is
not valid" while still telling stages apart.
"""

from __future__ import annotations
from typing import Optional


class CompileError(Exception):
    """Base class for all user-facing compilation errors."""

    stage = "Compile"

    def __init__(self, message: str, line: Optional[int] = None,
                 col: Optional[int] = None):
        self.message = message
        self.line = line
        self.col = col
        if line is not None:
            loc = f"L{line}:{col}" if col is not None else f"L{line}"
            text = f"{self.stage} error at {loc}: {message}"
        else:
            text = f"{self.stage} error: {message}"
        super().__init__(text)


class EmitError(CompileError):
    """Raised by either backend for a node it cannot lower."""

    stage = "Code generation"
