"""
Symbol resolution and constant folding for the Wheel compiler.

Single pass over the AST in program order. The resolver:

  - assigns every variable a frame-relative slot (monotonic, never recycled)
  - interns string literals into a content-addressed String Table
  - folds constant integer sub-expressions with 64-bit wrap-around
  - replaces identifiers whose value is known by their literal
  - decides the value kind (int / str) of every expression and binding
  - numbers ``input()`` call sites and binds extern calls to signatures

The AST is annotated in place; afterwards it is read-only for the backends.

Fold context rules:
  - loops: every name assigned inside the body (and the loop variable) is
    unknown while resolving the condition and body, and after the loop
  - if/else: each branch starts from a copy of the context; after the join
    only names with the same known value in both branches stay known
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Union

from .errors import CompileError
from .ast_nodes import *
from .externs import ExternFunction, ExternRegistry

log = logging.getLogger(__name__)

INT64_MASK = (1 << 64) - 1
INT64_SIGN = 1 << 63


class ResolveError(CompileError):
    stage = "Resolve"


class FoldError(CompileError):
    stage = "Fold"


# ──────────────────────────────────────────────
# 64-bit integer semantics
# ──────────────────────────────────────────────

def wrap_i64(value: int) -> int:
    """Reduce *value* to a signed 64-bit two's complement integer."""
    value &= INT64_MASK
    return value - (1 << 64) if value & INT64_SIGN else value


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return -q if (a < 0) != (b < 0) else q


def fold_binary(op: str, a: int, b: int) -> int:
    """Evaluate ``a op b`` the way the generated code does at run time."""
    if op == "+":
        return wrap_i64(a + b)
    if op == "-":
        return wrap_i64(a - b)
    if op == "*":
        return wrap_i64(a * b)
    if op == "/":
        return wrap_i64(_trunc_div(a, b))
    if op == "%":
        # sign follows the dividend
        return wrap_i64(a - b * _trunc_div(a, b))
    if op == "<":
        return int(a < b)
    if op == ">":
        return int(a > b)
    if op == "<=":
        return int(a <= b)
    if op == ">=":
        return int(a >= b)
    if op == "==":
        return int(a == b)
    if op == "!=":
        return int(a != b)
    raise ValueError(f"unknown operator {op!r}")


# ──────────────────────────────────────────────
# Symbol / string tables
# ──────────────────────────────────────────────

@dataclass
class Symbol:
    name: str
    slot: int
    kind: Optional[ValueKind] = None
    pending: Optional[_PendingInput] = None


class SymbolTable:
    """Single-scope name -> Symbol map with a monotonic slot counter."""

    def __init__(self):
        self._symbols: Dict[str, Symbol] = {}
        self._next_slot = 0

    def _allocate(self) -> int:
        slot = self._next_slot
        self._next_slot += 1
        return slot

    def declare(self, name: str) -> Symbol:
        """Return the symbol for *name*, allocating a slot on first declaration."""
        sym = self._symbols.get(name)
        if sym is None:
            sym = Symbol(name, self._allocate())
            self._symbols[name] = sym
        return sym

    def lookup(self, name: str) -> Optional[Symbol]:
        return self._symbols.get(name)

    def allocate_temp(self) -> int:
        """Reserve a hidden slot no source name refers to."""
        return self._allocate()

    @property
    def slot_count(self) -> int:
        return self._next_slot

    def __iter__(self):
        return iter(self._symbols.values())

    def __len__(self) -> int:
        return len(self._symbols)


class StringTable:
    """Content-addressed string pool shared by both backends."""

    def __init__(self):
        self._labels: Dict[bytes, str] = {}
        self._entries: List[Tuple[str, bytes]] = []

    def intern(self, value: str) -> str:
        data = value.encode("utf-8")
        label = self._labels.get(data)
        if label is None:
            label = f"str_{len(self._entries)}"
            self._labels[data] = label
            self._entries.append((label, data))
        return label

    def entries(self) -> List[Tuple[str, bytes]]:
        """(label, UTF-8 bytes) pairs in first-use order."""
        return list(self._entries)

    def data(self, label: str) -> bytes:
        for lbl, data in self._entries:
            if lbl == label:
                return data
        raise KeyError(label)

    def __len__(self) -> int:
        return len(self._entries)


# ──────────────────────────────────────────────
# Deferred input() kinds
# ──────────────────────────────────────────────

class _PendingInput:
    """Kind of an input() value that no use has decided yet.

    Every node and binding that carries the value joins the group; the first
    use in an int or str context decides the kind for all of them.
    """

    def __init__(self):
        self.nodes: List[ASTNode] = []
        self.symbols: List[Symbol] = []
        self.kind: Optional[ValueKind] = None

    def decide(self, kind: ValueKind):
        self.kind = kind
        for node in self.nodes:
            node.kind = kind
        for sym in self.symbols:
            sym.kind = kind
            sym.pending = None

    def absorb(self, other: _PendingInput):
        if other is self:
            return
        self.nodes.extend(other.nodes)
        for sym in other.symbols:
            sym.pending = self
        self.symbols.extend(other.symbols)
        other.nodes, other.symbols = [], []


KindInfo = Union[ValueKind, _PendingInput]


# ──────────────────────────────────────────────
# Resolver
# ──────────────────────────────────────────────

@dataclass
class ResolvedProgram:
    program: Program
    symbols: SymbolTable
    strings: StringTable
    externs: List[ExternFunction] = field(default_factory=list)
    input_sites: List[Call] = field(default_factory=list)

    @property
    def frame_slots(self) -> int:
        return self.symbols.slot_count


def _assigned_names(block: Block, out: Optional[Set[str]] = None) -> Set[str]:
    """Every name a Let, Assign or for-loop inside *block* may write."""
    if out is None:
        out = set()
    for stmt in block.statements:
        if isinstance(stmt, (Let, Assign)):
            out.add(stmt.name)
        elif isinstance(stmt, If):
            _assigned_names(stmt.then_block, out)
            if stmt.else_block is not None:
                _assigned_names(stmt.else_block, out)
        elif isinstance(stmt, While):
            _assigned_names(stmt.body, out)
        elif isinstance(stmt, ForRange):
            out.add(stmt.var)
            _assigned_names(stmt.body, out)
    return out


class Resolver:
    """Annotates a parsed Program for code generation."""

    def __init__(self, externs: Optional[ExternRegistry] = None):
        self.externs = externs if externs is not None else ExternRegistry.with_stdlib()
        self.symbols = SymbolTable()
        self.strings = StringTable()
        self._consts: Dict[str, int] = {}
        self._pending: List[_PendingInput] = []
        self._input_sites: List[Call] = []
        self._externs_used: Dict[str, ExternFunction] = {}

    def resolve(self, program: Program) -> ResolvedProgram:
        self._resolve_block(program)
        for group in self._pending:
            if group.kind is None:
                group.decide(ValueKind.STR)
        log.debug("Resolved %d symbols in %d slots, %d strings, %d input sites",
                  len(self.symbols), self.symbols.slot_count, len(self.strings),
                  len(self._input_sites))
        return ResolvedProgram(program=program, symbols=self.symbols,
                               strings=self.strings,
                               externs=list(self._externs_used.values()),
                               input_sites=list(self._input_sites))

    # ── Kind bookkeeping ────────────────────

    def _settle(self, info: KindInfo, kind: ValueKind, node: ASTNode, what: str):
        if isinstance(info, _PendingInput):
            if info.kind is None:
                info.decide(kind)
                return
            info = info.kind
        if info is not kind:
            raise ResolveError(f"{what} must be {kind.value}, found {info.value}",
                               node.line, node.col)

    def _tag(self, node: ASTNode, info: KindInfo):
        if isinstance(info, _PendingInput):
            node.kind = None
            info.nodes.append(node)
        else:
            node.kind = info

    def _bind(self, sym: Symbol, info: KindInfo, node: ASTNode):
        """Attach the kind of a new value to the binding *sym*."""
        if sym.kind is not None:
            self._settle(info, sym.kind, node, f"value assigned to {sym.name!r}")
            node.kind = sym.kind
            return
        if sym.pending is not None:
            if isinstance(info, _PendingInput):
                sym.pending.absorb(info)
            else:
                sym.pending.decide(info)
            self._tag(node, sym.pending if sym.kind is None else sym.kind)
            return
        if isinstance(info, _PendingInput):
            sym.pending = info
            info.symbols.append(sym)
        else:
            sym.kind = info
        self._tag(node, info)

    # ── Statements ──────────────────────────

    def _resolve_block(self, block: Block):
        for stmt in block.statements:
            self._resolve_statement(stmt)

    def _resolve_statement(self, stmt: Statement):
        if isinstance(stmt, Let):
            stmt.value, info = self._resolve_expr(stmt.value)
            sym = self.symbols.declare(stmt.name)
            stmt.slot = sym.slot
            self._bind(sym, info, stmt)
            self._record_constant(stmt.name, stmt.value)

        elif isinstance(stmt, Assign):
            sym = self.symbols.lookup(stmt.name)
            if sym is None:
                raise ResolveError(f"assignment to undeclared variable {stmt.name!r}",
                                   stmt.line, stmt.col)
            stmt.value, info = self._resolve_expr(stmt.value)
            stmt.slot = sym.slot
            self._bind(sym, info, stmt)
            self._record_constant(stmt.name, stmt.value)

        elif isinstance(stmt, Print):
            stmt.expr, info = self._resolve_expr(stmt.expr)
            if isinstance(info, _PendingInput):
                info.decide(ValueKind.STR)

        elif isinstance(stmt, ExprStmt):
            stmt.expr, _ = self._resolve_expr(stmt.expr)

        elif isinstance(stmt, If):
            stmt.condition, info = self._resolve_expr(stmt.condition)
            self._settle(info, ValueKind.INT, stmt.condition, "if condition")
            before = dict(self._consts)
            self._resolve_block(stmt.then_block)
            after_then = self._consts
            self._consts = dict(before)
            if stmt.else_block is not None:
                self._resolve_block(stmt.else_block)
            after_else = self._consts
            self._consts = {name: value for name, value in after_then.items()
                            if after_else.get(name, value + 1) == value}

        elif isinstance(stmt, While):
            written = _assigned_names(stmt.body)
            self._forget(written)
            stmt.condition, info = self._resolve_expr(stmt.condition)
            self._settle(info, ValueKind.INT, stmt.condition, "while condition")
            self._resolve_block(stmt.body)
            self._forget(written)

        elif isinstance(stmt, ForRange):
            stmt.start, info = self._resolve_expr(stmt.start)
            self._settle(info, ValueKind.INT, stmt.start, "range start")
            stmt.end, info = self._resolve_expr(stmt.end)
            self._settle(info, ValueKind.INT, stmt.end, "range end")
            sym = self.symbols.declare(stmt.var)
            stmt.slot = sym.slot
            stmt.end_slot = self.symbols.allocate_temp()
            if sym.kind is None and sym.pending is None:
                sym.kind = ValueKind.INT
            else:
                self._settle(sym.kind or sym.pending, ValueKind.INT, stmt,
                             f"loop variable {stmt.var!r}")
            written = _assigned_names(stmt.body) | {stmt.var}
            self._forget(written)
            self._resolve_block(stmt.body)
            self._forget(written)

        elif isinstance(stmt, Import):
            raise ResolveError("import is only allowed at the top level of a file",
                               stmt.line, stmt.col)

        else:
            raise ResolveError(f"unsupported statement {type(stmt).__name__}",
                               stmt.line, stmt.col)

    def _record_constant(self, name: str, value: Expression):
        if isinstance(value, IntLiteral):
            self._consts[name] = value.value
        else:
            self._consts.pop(name, None)

    def _forget(self, names: Set[str]):
        for name in names:
            self._consts.pop(name, None)

    # ── Expressions ─────────────────────────

    def _resolve_expr(self, expr: Expression) -> Tuple[Expression, KindInfo]:
        """Resolve and fold *expr*; return the (possibly replaced) node and its kind."""
        if isinstance(expr, IntLiteral):
            expr.kind = ValueKind.INT
            return expr, ValueKind.INT

        if isinstance(expr, StringLiteral):
            expr.label = self.strings.intern(expr.value)
            expr.kind = ValueKind.STR
            return expr, ValueKind.STR

        if isinstance(expr, Identifier):
            sym = self.symbols.lookup(expr.name)
            if sym is None:
                raise ResolveError(f"undeclared identifier {expr.name!r}",
                                   expr.line, expr.col)
            if expr.name in self._consts:
                return IntLiteral(line=expr.line, col=expr.col, kind=ValueKind.INT,
                                  value=self._consts[expr.name]), ValueKind.INT
            expr.slot = sym.slot
            info = sym.pending if sym.kind is None else sym.kind
            self._tag(expr, info)
            return expr, info

        if isinstance(expr, BinaryOp):
            return self._resolve_binary(expr)

        if isinstance(expr, Call):
            return self._resolve_call(expr)

        raise ResolveError(f"unsupported expression {type(expr).__name__}",
                           expr.line, expr.col)

    def _resolve_binary(self, expr: BinaryOp) -> Tuple[Expression, KindInfo]:
        expr.left, left_info = self._resolve_expr(expr.left)
        self._settle(left_info, ValueKind.INT, expr.left, f"left operand of {expr.op!r}")
        expr.right, right_info = self._resolve_expr(expr.right)
        self._settle(right_info, ValueKind.INT, expr.right, f"right operand of {expr.op!r}")
        expr.kind = ValueKind.INT

        right_const = isinstance(expr.right, IntLiteral)
        if expr.op in ("/", "%") and right_const and expr.right.value == 0:
            raise FoldError("division by constant zero", expr.line, expr.col)

        if isinstance(expr.left, IntLiteral) and right_const:
            value = fold_binary(expr.op, expr.left.value, expr.right.value)
            return IntLiteral(line=expr.line, col=expr.col, kind=ValueKind.INT,
                              value=value), ValueKind.INT
        return expr, ValueKind.INT

    def _resolve_call(self, call: Call) -> Tuple[Expression, KindInfo]:
        if call.name == "input":
            if call.args:
                raise ResolveError("input() takes no arguments", call.line, call.col)
            call.input_site = len(self._input_sites)
            self._input_sites.append(call)
            group = _PendingInput()
            self._pending.append(group)
            self._tag(call, group)
            return call, group

        fn = self.externs.lookup(call.name)
        if fn is None:
            raise ResolveError(f"call to undeclared function {call.name!r}",
                               call.line, call.col)
        if len(call.args) != len(fn.params):
            raise ResolveError(f"{call.name}() takes {len(fn.params)} argument(s), "
                               f"{len(call.args)} given", call.line, call.col)
        for i, param_kind in enumerate(fn.params):
            call.args[i], info = self._resolve_expr(call.args[i])
            self._settle(info, param_kind, call.args[i],
                         f"argument {i + 1} of {call.name}()")
        call.extern = fn
        call.kind = fn.returns
        self._externs_used.setdefault(fn.name, fn)
        return call, fn.returns


def resolve(program: Program, externs: Optional[ExternRegistry] = None) -> ResolvedProgram:
    return Resolver(externs).resolve(program)
