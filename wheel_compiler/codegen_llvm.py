"""
LLVM IR Code Generator for the Wheel compiler.

Builds an LLVM module from a resolved AST with llvmlite's IR builder and
returns its textual form, which the toolchain hands to clang.

Module layout:
  - ``str_N``      one internal constant per String Table entry (same labels
                   as the native backend)
  - ``fmt_int`` / ``fmt_str``  printf formats; every print ends with a newline
  - ``wheel_main`` (i64 ()) the program body
  - ``main``       (i32 ()) calls wheel_main and returns 0
  - ``wheel_read_line``  emitted only when the program calls input()

Values: every slot is an i64 alloca zeroed at entry. Strings travel as i8*
and are stored in slots with ptrtoint. Each input() call site owns a
256-byte buffer malloc'ed at entry of wheel_main and freed before it returns.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Optional

from llvmlite import binding, ir

from .ast_nodes import *
from .errors import EmitError
from .externs import ExternFunction
from .resolver import ResolvedProgram

log = logging.getLogger(__name__)

I8 = ir.IntType(8)
I32 = ir.IntType(32)
I64 = ir.IntType(64)
I8P = I8.as_pointer()

INPUT_BUFFER_SIZE = 256


def _llvm_type(kind: ValueKind) -> ir.Type:
    return I8P if kind is ValueKind.STR else I64


class LLVMCodeGenerator:
    """Generates a textual LLVM IR module from a resolved AST."""

    def __init__(self, resolved: ResolvedProgram, triple: Optional[str] = None):
        self.resolved = resolved
        self.module = ir.Module(name="wheel_module")
        self.module.triple = triple or binding.get_default_triple()
        self.builder: Optional[ir.IRBuilder] = None
        self.function: Optional[ir.Function] = None

        self._strings: Dict[str, ir.GlobalVariable] = {}
        self._slots: List[ir.AllocaInstr] = []
        self._buffers: Dict[int, ir.Value] = {}
        self._block_counter = 0

    # ── Declarations ──────────────────────────

    def _declare(self, name: str, fnty: ir.FunctionType) -> ir.Function:
        existing = self.module.globals.get(name)
        if existing is not None:
            if not isinstance(existing, ir.Function) or existing.ftype != fnty:
                raise EmitError(f"symbol {name!r} is already declared as {existing.type}, "
                                f"cannot redeclare it as {fnty}")
            return existing
        return ir.Function(self.module, fnty, name=name)

    def _global_string(self, name: str, data: bytes) -> ir.GlobalVariable:
        raw = bytearray(data + b"\0")
        str_ty = ir.ArrayType(I8, len(raw))
        gvar = ir.GlobalVariable(self.module, str_ty, name=name)
        gvar.linkage = "internal"
        gvar.global_constant = True
        gvar.initializer = ir.Constant(str_ty, raw)
        return gvar

    def _declare_runtime(self):
        self.printf = self._declare("printf", ir.FunctionType(I32, [I8P], var_arg=True))
        self.atol = self._declare("atol", ir.FunctionType(I64, [I8P]))
        self.fmt_int = self._global_string("fmt_int", b"%ld\n")
        self.fmt_str = self._global_string("fmt_str", b"%s\n")
        for label, data in self.resolved.strings.entries():
            self._strings[label] = self._global_string(label, data)

        if self.resolved.input_sites:
            self.malloc = self._declare("malloc", ir.FunctionType(I8P, [I64]))
            self.free = self._declare("free", ir.FunctionType(ir.VoidType(), [I8P]))
            self.read_line = self._build_read_line()

    def _extern(self, fn: ExternFunction) -> ir.Function:
        fnty = ir.FunctionType(_llvm_type(fn.returns),
                               [_llvm_type(p) for p in fn.params])
        return self._declare(fn.symbol, fnty)

    def _build_read_line(self) -> ir.Function:
        """i8* wheel_read_line(i8* buf): one line from stdin, newline dropped."""
        read = self._declare("read", ir.FunctionType(I64, [I32, I8P, I64]))
        fflush = self._declare("fflush", ir.FunctionType(I32, [I8P]))

        fn = ir.Function(self.module, ir.FunctionType(I8P, [I8P]), name="wheel_read_line")
        fn.linkage = "internal"
        buf = fn.args[0]
        buf.name = "buf"

        entry = fn.append_basic_block("entry")
        cond = fn.append_basic_block("cond")
        do_read = fn.append_basic_block("read")
        check = fn.append_basic_block("check")
        step = fn.append_basic_block("next")
        done = fn.append_basic_block("done")

        b = ir.IRBuilder(entry)
        length = b.alloca(I64, name="len")
        b.store(ir.Constant(I64, 0), length)
        # prompts printed so far must reach the terminal before blocking
        b.call(fflush, [ir.Constant(I8P, None)])
        b.branch(cond)

        b.position_at_end(cond)
        n = b.load(length, name="n")
        full = b.icmp_signed(">=", n, ir.Constant(I64, INPUT_BUFFER_SIZE - 1))
        b.cbranch(full, done, do_read)

        b.position_at_end(do_read)
        p = b.gep(buf, [n], name="p")
        got = b.call(read, [ir.Constant(I32, 0), p, ir.Constant(I64, 1)])
        b.cbranch(b.icmp_signed("!=", got, ir.Constant(I64, 1)), done, check)

        b.position_at_end(check)
        ch = b.load(p, name="ch")
        b.cbranch(b.icmp_signed("==", ch, ir.Constant(I8, 10)), done, step)

        b.position_at_end(step)
        b.store(b.add(n, ir.Constant(I64, 1)), length)
        b.branch(cond)

        b.position_at_end(done)
        end = b.gep(buf, [b.load(length)])
        b.store(ir.Constant(I8, 0), end)
        b.ret(buf)
        return fn

    # ── Main generation entry point ───────────

    def generate(self) -> str:
        self._declare_runtime()

        self.function = ir.Function(self.module, ir.FunctionType(I64, []), name="wheel_main")
        entry = self.function.append_basic_block("entry")
        self.builder = ir.IRBuilder(entry)

        for slot in range(self.resolved.frame_slots):
            ptr = self.builder.alloca(I64, name=f"slot{slot}")
            self.builder.store(ir.Constant(I64, 0), ptr)
            self._slots.append(ptr)

        for call in self.resolved.input_sites:
            self._buffers[call.input_site] = self.builder.call(
                self.malloc, [ir.Constant(I64, INPUT_BUFFER_SIZE)],
                name=f"input_buf_{call.input_site}")

        for stmt in self.resolved.program.statements:
            self._gen_statement(stmt)

        for buf in self._buffers.values():
            self.builder.call(self.free, [buf])
        self.builder.ret(ir.Constant(I64, 0))

        main = ir.Function(self.module, ir.FunctionType(I32, []), name="main")
        b = ir.IRBuilder(main.append_basic_block("entry"))
        b.call(self.function, [])
        b.ret(ir.Constant(I32, 0))

        text = str(self.module)
        log.debug("LLVM backend: %d globals, %d slots", len(self.module.globals),
                  len(self._slots))
        return text

    def _new_blocks(self, *names: str) -> List[ir.Block]:
        self._block_counter += 1
        return [self.function.append_basic_block(f"{name}.{self._block_counter}")
                for name in names]

    # ── Statement generation ──────────────────

    def _gen_statement(self, stmt: Statement):
        if isinstance(stmt, (Let, Assign)):
            self._store(stmt.slot, self._gen_expr(stmt.value))
        elif isinstance(stmt, Print):
            self._gen_print(stmt)
        elif isinstance(stmt, If):
            self._gen_if(stmt)
        elif isinstance(stmt, While):
            self._gen_while(stmt)
        elif isinstance(stmt, ForRange):
            self._gen_for(stmt)
        elif isinstance(stmt, ExprStmt):
            self._gen_expr(stmt.expr)
        else:
            raise EmitError(f"cannot generate code for {type(stmt).__name__}",
                            stmt.line, stmt.col)

    def _gen_block(self, block: Block):
        for stmt in block.statements:
            self._gen_statement(stmt)

    def _store(self, slot: int, value: ir.Value):
        if isinstance(value.type, ir.PointerType):
            value = self.builder.ptrtoint(value, I64)
        self.builder.store(value, self._slots[slot])

    def _gen_print(self, stmt: Print):
        value = self._gen_expr(stmt.expr)
        if stmt.expr.kind is ValueKind.STR:
            fmt = self.fmt_str
        else:
            fmt = self.fmt_int
        self.builder.call(self.printf, [self._string_ptr(fmt), value])

    def _string_ptr(self, gvar: ir.GlobalVariable) -> ir.Value:
        zero = ir.Constant(I32, 0)
        return self.builder.gep(gvar, [zero, zero], inbounds=True)

    def _condition(self, expr: Expression) -> ir.Value:
        value = self._gen_expr(expr)
        return self.builder.icmp_signed("!=", value, ir.Constant(I64, 0))

    def _gen_if(self, stmt: If):
        then_bb, else_bb, end_bb = self._new_blocks("if.then", "if.else", "if.end")
        self.builder.cbranch(self._condition(stmt.condition), then_bb, else_bb)

        self.builder.position_at_end(then_bb)
        self._gen_block(stmt.then_block)
        self.builder.branch(end_bb)

        self.builder.position_at_end(else_bb)
        if stmt.else_block is not None:
            self._gen_block(stmt.else_block)
        self.builder.branch(end_bb)

        self.builder.position_at_end(end_bb)

    def _gen_while(self, stmt: While):
        cond_bb, body_bb, end_bb = self._new_blocks("while.cond", "while.body", "while.end")
        self.builder.branch(cond_bb)

        self.builder.position_at_end(cond_bb)
        self.builder.cbranch(self._condition(stmt.condition), body_bb, end_bb)

        self.builder.position_at_end(body_bb)
        self._gen_block(stmt.body)
        self.builder.branch(cond_bb)

        self.builder.position_at_end(end_bb)

    def _gen_for(self, stmt: ForRange):
        var, bound = self._slots[stmt.slot], self._slots[stmt.end_slot]
        self.builder.store(self._gen_expr(stmt.start), var)
        self.builder.store(self._gen_expr(stmt.end), bound)
        cond_bb, body_bb, end_bb = self._new_blocks("for.cond", "for.body", "for.end")
        self.builder.branch(cond_bb)

        self.builder.position_at_end(cond_bb)
        in_range = self.builder.icmp_signed("<", self.builder.load(var),
                                            self.builder.load(bound))
        self.builder.cbranch(in_range, body_bb, end_bb)

        self.builder.position_at_end(body_bb)
        self._gen_block(stmt.body)
        step = self.builder.add(self.builder.load(var), ir.Constant(I64, 1))
        self.builder.store(step, var)
        self.builder.branch(cond_bb)

        self.builder.position_at_end(end_bb)

    # ── Expression generation ─────────────────

    def _gen_expr(self, expr: Expression) -> ir.Value:
        if isinstance(expr, IntLiteral):
            return ir.Constant(I64, expr.value)

        if isinstance(expr, StringLiteral):
            return self._string_ptr(self._strings[expr.label])

        if isinstance(expr, Identifier):
            value = self.builder.load(self._slots[expr.slot], name=expr.name)
            if expr.kind is ValueKind.STR:
                return self.builder.inttoptr(value, I8P)
            return value

        if isinstance(expr, BinaryOp):
            return self._gen_binary(expr)

        if isinstance(expr, Call):
            if expr.input_site is not None:
                line = self.builder.call(self.read_line, [self._buffers[expr.input_site]])
                if expr.kind is ValueKind.INT:
                    return self.builder.call(self.atol, [line])
                return line
            if expr.extern is None:
                raise EmitError(f"call to unresolved function {expr.name!r}",
                                expr.line, expr.col)
            args = [self._gen_expr(arg) for arg in expr.args]
            return self.builder.call(self._extern(expr.extern), args)

        raise EmitError(f"cannot generate code for {type(expr).__name__}",
                        expr.line, expr.col)

    def _gen_binary(self, expr: BinaryOp) -> ir.Value:
        lhs = self._gen_expr(expr.left)
        rhs = self._gen_expr(expr.right)
        op = expr.op
        if op == "+":
            return self.builder.add(lhs, rhs)
        if op == "-":
            return self.builder.sub(lhs, rhs)
        if op == "*":
            return self.builder.mul(lhs, rhs)
        if op == "/":
            return self.builder.sdiv(lhs, rhs)
        if op == "%":
            return self.builder.srem(lhs, rhs)
        if op in COMPARISON_OPS:
            return self.builder.zext(self.builder.icmp_signed(op, lhs, rhs), I64)
        raise EmitError(f"unknown operator {op!r}", expr.line, expr.col)


def generate_llvm(resolved: ResolvedProgram, triple: Optional[str] = None) -> str:
    return LLVMCodeGenerator(resolved, triple).generate()
