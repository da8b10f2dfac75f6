"""
x86-64 Code Generator for the Wheel compiler.

Translates a resolved AST into GNU assembler text (Intel syntax) for a
freestanding Linux executable: no C library, system calls only.

Register usage convention:
  - rax: expression result
  - rcx: right operand of a binary operator
  - rdx: remainder after idiv, length argument of write
  - rbx: saved stack pointer around extern calls (callee-saved)
  - rbp: frame base; slot i lives at [rbp - 8*(i+1)]

Evaluation of ``a op b``: a -> rax, push; b -> rax, mov rcx, rax; pop rax.

Memory layout:
  - .rodata: interned strings (NUL-terminated byte lists), newline byte
  - .bss:    one 256-byte line buffer per input() call site
  - .text:   _start, then runtime helpers that the program actually uses

Extern calls follow the System V AMD64 convention: integer/pointer arguments
in rdi, rsi, rdx, rcx, r8, r9, result in rax, stack aligned to 16 bytes at
the call instruction.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Set

from .ast_nodes import *
from .errors import EmitError
from .resolver import ResolvedProgram

log = logging.getLogger(__name__)

ARG_REGISTERS = ["rdi", "rsi", "rdx", "rcx", "r8", "r9"]

INPUT_BUFFER_SIZE = 256

SYS_READ = 0
SYS_WRITE = 1
SYS_EXIT = 60

SETCC = {
    "<": "setl",
    ">": "setg",
    "<=": "setle",
    ">=": "setge",
    "==": "sete",
    "!=": "setne",
}


# ──────────────────────────────────────────────
# Runtime helpers (emitted on demand)
# ──────────────────────────────────────────────

HELPER_DEPENDS = {
    "__wheel_print_cstr": ["__wheel_print_str"],
}

HELPERS: Dict[str, List[str]] = {
    # rsi = bytes, rdx = length; writes them followed by a newline
    "__wheel_print_str": [
        f"mov eax, {SYS_WRITE}",
        "mov edi, 1",
        "syscall",
        "lea rsi, [rip + __wheel_newline]",
        "mov edx, 1",
        f"mov eax, {SYS_WRITE}",
        "mov edi, 1",
        "syscall",
        "ret",
    ],
    # rdi = NUL-terminated string
    "__wheel_print_cstr": [
        "mov rsi, rdi",
        "xor edx, edx",
        ".Lstrlen_loop:",
        "cmp byte ptr [rsi + rdx], 0",
        "je .Lstrlen_done",
        "inc rdx",
        "jmp .Lstrlen_loop",
        ".Lstrlen_done:",
        "jmp __wheel_print_str",
    ],
    # rax = signed value; writes decimal digits and a newline
    "__wheel_print_int": [
        "push rbp",
        "mov rbp, rsp",
        "sub rsp, 32",
        "lea rsi, [rbp - 1]",
        "mov byte ptr [rsi], 10",
        "mov r8, rax",
        "test rax, rax",
        "jns .Lpint_digits",
        "neg rax",                      # INT64_MIN stays put; read as unsigned below
        ".Lpint_digits:",
        "mov rcx, 10",
        ".Lpint_loop:",
        "xor edx, edx",
        "div rcx",
        "add dl, 48",
        "dec rsi",
        "mov byte ptr [rsi], dl",
        "test rax, rax",
        "jnz .Lpint_loop",
        "test r8, r8",
        "jns .Lpint_write",
        "dec rsi",
        "mov byte ptr [rsi], 45",
        ".Lpint_write:",
        "mov rdx, rbp",
        "sub rdx, rsi",
        f"mov eax, {SYS_WRITE}",
        "mov edi, 1",
        "syscall",
        "leave",
        "ret",
    ],
    # rdi = buffer; reads one line (newline dropped, at most 255 bytes),
    # NUL-terminates it and returns the buffer in rax
    "__wheel_read_line": [
        "push rbx",
        "push r12",
        "mov rbx, rdi",
        "xor r12d, r12d",
        ".Lrl_next:",
        f"cmp r12, {INPUT_BUFFER_SIZE - 1}",
        "jge .Lrl_done",
        f"mov eax, {SYS_READ}",
        "xor edi, edi",
        "lea rsi, [rbx + r12]",
        "mov edx, 1",
        "syscall",
        "cmp rax, 1",
        "jne .Lrl_done",
        "cmp byte ptr [rbx + r12], 10",
        "je .Lrl_done",
        "inc r12",
        "jmp .Lrl_next",
        ".Lrl_done:",
        "mov byte ptr [rbx + r12], 0",
        "mov rax, rbx",
        "pop r12",
        "pop rbx",
        "ret",
    ],
    # rdi = text; leading blanks, optional sign, decimal digits -> rax
    "__wheel_atoi": [
        "xor eax, eax",
        "xor ecx, ecx",
        ".Latoi_space:",
        "movzx edx, byte ptr [rdi]",
        "cmp dl, 32",
        "je .Latoi_skip",
        "cmp dl, 9",
        "jb .Latoi_sign",
        "cmp dl, 13",
        "ja .Latoi_sign",
        ".Latoi_skip:",
        "inc rdi",
        "jmp .Latoi_space",
        ".Latoi_sign:",
        "cmp dl, 45",
        "jne .Latoi_plus",
        "mov ecx, 1",
        "inc rdi",
        "jmp .Latoi_digit",
        ".Latoi_plus:",
        "cmp dl, 43",
        "jne .Latoi_digit",
        "inc rdi",
        ".Latoi_digit:",
        "movzx edx, byte ptr [rdi]",
        "sub edx, 48",
        "cmp edx, 9",
        "ja .Latoi_end",
        "imul rax, rax, 10",
        "add rax, rdx",
        "inc rdi",
        "jmp .Latoi_digit",
        ".Latoi_end:",
        "test ecx, ecx",
        "jz .Latoi_ret",
        "neg rax",
        ".Latoi_ret:",
        "ret",
    ],
}


def _slot_addr(slot: int) -> str:
    return f"qword ptr [rbp - {8 * (slot + 1)}]"


def _input_buffer(site: int) -> str:
    return f"input_buf_{site}"


class X86CodeGenerator:
    """Generates x86-64 GNU assembly from a resolved AST."""

    def __init__(self, resolved: ResolvedProgram):
        self.resolved = resolved

        # Output sections
        self._header_lines: List[str] = []
        self._rodata_lines: List[str] = []
        self._bss_lines: List[str] = []
        self._code_lines: List[str] = []
        self._helper_lines: List[str] = []

        # State
        self._label_counter = 0
        self._helpers_used: Set[str] = set()

    # ── Label generation ──────────────────────

    def _label(self, prefix: str = "L") -> str:
        self._label_counter += 1
        return f".L{prefix}{self._label_counter}"

    # ── Output helpers ────────────────────────

    def _emit(self, line: str):
        self._code_lines.append(f"        {line}")

    def _emit_label(self, label: str):
        self._code_lines.append(f"{label}:")

    def _emit_comment(self, text: str):
        self._code_lines.append(f"        # {text}")

    def _call_helper(self, name: str):
        self._helpers_used.add(name)
        self._helpers_used.update(HELPER_DEPENDS.get(name, []))
        self._emit(f"call {name}")

    # ── Main generation entry point ───────────

    def generate(self) -> str:
        """Generate the complete assembly file."""
        self._generate_header()
        self._gen_string_data()
        self._gen_input_buffers()

        frame = (self.resolved.frame_slots * 8 + 15) & ~15
        self._emit_label("_start")
        self._emit("push rbp")
        self._emit("mov rbp, rsp")
        if frame:
            self._emit(f"sub rsp, {frame}")
        for slot in range(self.resolved.frame_slots):
            self._emit(f"mov {_slot_addr(slot)}, 0")

        for stmt in self.resolved.program.statements:
            self._gen_statement(stmt)

        self._emit_comment("exit(0)")
        self._emit(f"mov eax, {SYS_EXIT}")
        self._emit("xor edi, edi")
        self._emit("syscall")

        self._gen_helpers()
        log.debug("x86-64 backend: %d code lines, frame %d bytes, helpers %s",
                  len(self._code_lines), frame, sorted(self._helpers_used))
        return self._assemble_output()

    def _generate_header(self):
        self._header_lines = [
            "# ════════════════════════════════════════════",
            "# wheelc x86-64 output (GNU as, Intel syntax)",
            "# ════════════════════════════════════════════",
            "        .intel_syntax noprefix",
        ]
        for fn in self.resolved.externs:
            self._header_lines.append(f"        .extern {fn.symbol}")
        self._header_lines.append("")

    def _assemble_output(self) -> str:
        sections = list(self._header_lines)
        sections.append("        .section .rodata")
        sections.extend(self._rodata_lines)
        sections.append("")
        if self._bss_lines:
            sections.append("        .section .bss")
            sections.extend(self._bss_lines)
            sections.append("")
        sections.append("        .text")
        sections.append("        .globl _start")
        sections.extend(self._code_lines)
        if self._helper_lines:
            sections.append("")
            sections.append("# ── Runtime helpers ──")
            sections.extend(self._helper_lines)
        sections.append("")
        return "\n".join(sections)

    def _gen_string_data(self):
        for label, data in self.resolved.strings.entries():
            self._rodata_lines.append(f"{label}:")
            bytes_str = ", ".join(str(b) for b in data + b"\0")
            self._rodata_lines.append(f"        .byte {bytes_str}")
        self._rodata_lines.append("__wheel_newline:")
        self._rodata_lines.append("        .byte 10")

    def _gen_input_buffers(self):
        for call in self.resolved.input_sites:
            self._bss_lines.append(f"{_input_buffer(call.input_site)}:")
            self._bss_lines.append(f"        .zero {INPUT_BUFFER_SIZE}")

    def _gen_helpers(self):
        for name in HELPERS:
            if name not in self._helpers_used:
                continue
            self._helper_lines.append("")
            self._helper_lines.append(f"{name}:")
            for line in HELPERS[name]:
                if line.endswith(":"):
                    self._helper_lines.append(line)
                else:
                    self._helper_lines.append(f"        {line}")

    # ── Statement generation ──────────────────

    def _gen_statement(self, stmt: Statement):
        if isinstance(stmt, (Let, Assign)):
            self._emit_comment(f"L{stmt.line}: {stmt.name} = ...")
            self._gen_expr(stmt.value)
            self._emit(f"mov {_slot_addr(stmt.slot)}, rax")
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

    def _gen_print(self, stmt: Print):
        expr = stmt.expr
        self._emit_comment(f"L{stmt.line}: print")
        if isinstance(expr, StringLiteral):
            length = len(self.resolved.strings.data(expr.label))
            self._emit(f"lea rsi, [rip + {expr.label}]")
            self._emit(f"mov edx, {length}")
            self._call_helper("__wheel_print_str")
        elif expr.kind is ValueKind.STR:
            self._gen_expr(expr)
            self._emit("mov rdi, rax")
            self._call_helper("__wheel_print_cstr")
        else:
            self._gen_expr(expr)
            self._call_helper("__wheel_print_int")

    def _gen_if(self, stmt: If):
        else_label = self._label("else")
        end_label = self._label("endif")
        self._gen_expr(stmt.condition)
        self._emit("test rax, rax")
        self._emit(f"je {else_label}")
        self._gen_block(stmt.then_block)
        self._emit(f"jmp {end_label}")
        self._emit_label(else_label)
        if stmt.else_block is not None:
            self._gen_block(stmt.else_block)
        self._emit_label(end_label)

    def _gen_while(self, stmt: While):
        top_label = self._label("while")
        end_label = self._label("endwhile")
        self._emit_label(top_label)
        self._gen_expr(stmt.condition)
        self._emit("test rax, rax")
        self._emit(f"je {end_label}")
        self._gen_block(stmt.body)
        self._emit(f"jmp {top_label}")
        self._emit_label(end_label)

    def _gen_for(self, stmt: ForRange):
        check_label = self._label("for")
        end_label = self._label("endfor")
        var, bound = _slot_addr(stmt.slot), _slot_addr(stmt.end_slot)
        self._emit_comment(f"L{stmt.line}: for {stmt.var} in range(...)")
        self._gen_expr(stmt.start)
        self._emit(f"mov {var}, rax")
        self._gen_expr(stmt.end)
        self._emit(f"mov {bound}, rax")
        self._emit_label(check_label)
        self._emit(f"mov rax, {var}")
        self._emit(f"cmp rax, {bound}")
        self._emit(f"jge {end_label}")
        self._gen_block(stmt.body)
        self._emit(f"add {var}, 1")
        self._emit(f"jmp {check_label}")
        self._emit_label(end_label)

    # ── Expression generation (result in rax) ──

    def _gen_expr(self, expr: Expression):
        if isinstance(expr, IntLiteral):
            self._emit(f"mov rax, {expr.value}")
        elif isinstance(expr, StringLiteral):
            self._emit(f"lea rax, [rip + {expr.label}]")
        elif isinstance(expr, Identifier):
            self._emit(f"mov rax, {_slot_addr(expr.slot)}")
        elif isinstance(expr, BinaryOp):
            self._gen_binary(expr)
        elif isinstance(expr, Call):
            if expr.input_site is not None:
                self._gen_input(expr)
            else:
                self._gen_extern_call(expr)
        else:
            raise EmitError(f"cannot generate code for {type(expr).__name__}",
                            expr.line, expr.col)

    def _gen_binary(self, expr: BinaryOp):
        self._gen_expr(expr.left)
        self._emit("push rax")
        self._gen_expr(expr.right)
        self._emit("mov rcx, rax")
        self._emit("pop rax")

        op = expr.op
        if op == "+":
            self._emit("add rax, rcx")
        elif op == "-":
            self._emit("sub rax, rcx")
        elif op == "*":
            self._emit("imul rax, rcx")
        elif op in ("/", "%"):
            self._emit("cqo")
            self._emit("idiv rcx")
            if op == "%":
                self._emit("mov rax, rdx")
        elif op in SETCC:
            self._emit("cmp rax, rcx")
            self._emit(f"{SETCC[op]} al")
            self._emit("movzx eax, al")
        else:
            raise EmitError(f"unknown operator {op!r}", expr.line, expr.col)

    def _gen_input(self, call: Call):
        self._emit(f"lea rdi, [rip + {_input_buffer(call.input_site)}]")
        self._call_helper("__wheel_read_line")
        if call.kind is ValueKind.INT:
            self._emit("mov rdi, rax")
            self._call_helper("__wheel_atoi")

    def _gen_extern_call(self, call: Call):
        fn = call.extern
        if fn is None:
            raise EmitError(f"call to unresolved function {call.name!r}",
                            call.line, call.col)
        for arg in call.args:
            self._gen_expr(arg)
            self._emit("push rax")
        for reg in reversed(ARG_REGISTERS[:len(call.args)]):
            self._emit(f"pop {reg}")
        self._emit("mov rbx, rsp")
        self._emit("and rsp, -16")
        self._emit(f"call {fn.symbol}")
        self._emit("mov rsp, rbx")


def generate_x86(resolved: ResolvedProgram) -> str:
    return X86CodeGenerator(resolved).generate()
