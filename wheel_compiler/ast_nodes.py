"""
AST Node definitions for the Wheel compiler.

Defines the Abstract Syntax Tree produced by the parser, annotated in place
by the resolver, and consumed read-only by both code generators. The node
set is closed: every backend dispatches over exactly these classes.

Resolver annotations (filled in after parsing, ``None`` before):
  - ``slot``    frame-relative storage index of a variable
  - ``kind``    value kind of an expression or binding (int / str)
  - ``label``   String Table label of a string literal
  - ``extern``  bound foreign signature of a call
  - ``input_site`` per-call-site buffer index of an ``input()`` call
"""

from __future__ import annotations
import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .externs import ExternFunction


class ValueKind(enum.Enum):
    INT = "int"
    STR = "str"


# ──────────────────────────────────────────────
# Base AST nodes
# ──────────────────────────────────────────────

@dataclass
class ASTNode:
    """Base class for all AST nodes."""
    line: int = 0
    col: int = 0


@dataclass
class Statement(ASTNode):
    pass


@dataclass
class Expression(ASTNode):
    kind: Optional[ValueKind] = None


# ──────────────────────────────────────────────
# Blocks
# ──────────────────────────────────────────────

@dataclass
class Block(ASTNode):
    """Ordered sequence of statements."""
    statements: List[Statement] = field(default_factory=list)


@dataclass
class Program(Block):
    """Root block of a compilation unit."""
    pass


# ──────────────────────────────────────────────
# Statements
# ──────────────────────────────────────────────

@dataclass
class Let(Statement):
    """``let name = value;`` declares (or re-binds) a variable."""
    name: str = ""
    value: Optional[Expression] = None
    slot: Optional[int] = None
    kind: Optional[ValueKind] = None


@dataclass
class Assign(Statement):
    """``name = value;`` stores into an already declared variable."""
    name: str = ""
    value: Optional[Expression] = None
    slot: Optional[int] = None
    kind: Optional[ValueKind] = None


@dataclass
class Print(Statement):
    expr: Optional[Expression] = None


@dataclass
class If(Statement):
    condition: Optional[Expression] = None
    then_block: Block = field(default_factory=Block)
    else_block: Optional[Block] = None


@dataclass
class While(Statement):
    condition: Optional[Expression] = None
    body: Block = field(default_factory=Block)


@dataclass
class ForRange(Statement):
    """``for var in range(start, end) { ... }`` over the half-open [start, end)."""
    var: str = ""
    start: Optional[Expression] = None
    end: Optional[Expression] = None
    body: Block = field(default_factory=Block)
    slot: Optional[int] = None
    end_slot: Optional[int] = None      # hidden slot holding the evaluated bound


@dataclass
class ExprStmt(Statement):
    expr: Optional[Expression] = None


@dataclass
class Import(Statement):
    """``import "path";`` - spliced away before resolution."""
    path: str = ""


# ──────────────────────────────────────────────
# Expressions
# ──────────────────────────────────────────────

@dataclass
class IntLiteral(Expression):
    value: int = 0


@dataclass
class StringLiteral(Expression):
    value: str = ""
    label: Optional[str] = None


@dataclass
class Identifier(Expression):
    name: str = ""
    slot: Optional[int] = None


@dataclass
class BinaryOp(Expression):
    op: str = ""                    # + - * / % < > <= >= == !=
    left: Optional[Expression] = None
    right: Optional[Expression] = None


@dataclass
class Call(Expression):
    """``name(args)``. ``input()`` is a Call with name ``input``."""
    name: str = ""
    args: List[Expression] = field(default_factory=list)
    extern: Optional[ExternFunction] = None
    input_site: Optional[int] = None


COMPARISON_OPS = ("<", ">", "<=", ">=", "==", "!=")
