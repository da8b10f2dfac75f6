"""
Foreign function declarations for the Wheel compiler.

A Wheel program may call native routines (the standard-library shims, or
any object passed to the linker) through a declared signature. Only the
declaration and the call site are the compiler's business: the shim code
itself is linked in from outside.

Signatures can be written as text::

    sleep(int) -> int = wheel_sleep
    process_create(str) -> int

``= symbol`` names the link-level symbol when it differs from the Wheel name.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional, Tuple

from .ast_nodes import ValueKind
from .errors import CompileError

# System V AMD64 integer argument registers
MAX_EXTERN_PARAMS = 6

_SIGNATURE_RE = re.compile(
    r"^\s*(?P<name>[A-Za-z_]\w*)\s*\((?P<params>[^)]*)\)\s*"
    r"(?:->\s*(?P<ret>\w+))?\s*(?:=\s*(?P<symbol>[A-Za-z_.$][\w.$]*))?\s*$"
)

# Symbols the backends define or call themselves
RESERVED_SYMBOLS = frozenset({
    "_start", "main", "wheel_main", "wheel_read_line",
    "fmt_int", "fmt_str",
    "printf", "atol", "malloc", "free", "read", "fflush",
})
_RESERVED_SYMBOL_RE = re.compile(r"^(?:str_\d+|input_buf_\d+|__wheel_\w*|\.L.*)$")


def is_reserved_symbol(symbol: str) -> bool:
    return symbol in RESERVED_SYMBOLS or _RESERVED_SYMBOL_RE.match(symbol) is not None


class ExternError(CompileError):
    stage = "Extern"


@dataclass(frozen=True)
class ExternFunction:
    name: str                           # name used in Wheel source
    symbol: str                         # name emitted in call instructions
    returns: ValueKind = ValueKind.INT
    params: Tuple[ValueKind, ...] = ()

    def __post_init__(self):
        if len(self.params) > MAX_EXTERN_PARAMS:
            raise ExternError(f"extern {self.name} takes {len(self.params)} "
                              f"parameters, at most {MAX_EXTERN_PARAMS} are supported")
        if is_reserved_symbol(self.symbol):
            raise ExternError(f"extern {self.name}: symbol {self.symbol!r} is reserved "
                              f"by the compiler, bind it with '= other_symbol'")

    def __str__(self) -> str:
        params = ", ".join(p.value for p in self.params)
        text = f"{self.name}({params}) -> {self.returns.value}"
        if self.symbol != self.name:
            text += f" = {self.symbol}"
        return text


def _kind(text: str, signature: str) -> ValueKind:
    try:
        return ValueKind(text.strip())
    except ValueError:
        raise ExternError(f"unknown type {text.strip()!r} in signature {signature!r}") from None


def parse_signature(signature: str) -> ExternFunction:
    """Parse ``name(type, ...) [-> type] [= symbol]`` into an ExternFunction."""
    m = _SIGNATURE_RE.match(signature)
    if not m:
        raise ExternError(f"malformed extern signature {signature!r}")
    params_text = m.group("params").strip()
    params = tuple(_kind(p, signature) for p in params_text.split(",")) if params_text else ()
    returns = _kind(m.group("ret"), signature) if m.group("ret") else ValueKind.INT
    name = m.group("name")
    return ExternFunction(name=name, symbol=m.group("symbol") or name,
                          returns=returns, params=params)


# ──────────────────────────────────────────────
# Standard-library shims
# ──────────────────────────────────────────────

STDLIB_SIGNATURES = [
    "getpid() -> int = wheel_getpid",
    "sleep(int) -> int = wheel_sleep",
    "time_now() -> int = wheel_time_now",
    "luck_random(int) -> int",
    "luck_random_range(int, int) -> int",
    "mem_alloc(int) -> int",
    "mem_free(int) -> int",
    "mem_get_used() -> int",
    "mem_get_free() -> int",
    "io_read_port(int) -> int",
    "io_write_port(int, int) -> int",
    "process_create(str) -> int",
    "process_wait(int) -> int",
]


class ExternRegistry:
    """Name -> ExternFunction table consulted by the resolver."""

    def __init__(self, functions: Iterable[ExternFunction] = ()):
        self._functions: Dict[str, ExternFunction] = {}
        for fn in functions:
            self.declare(fn)

    @classmethod
    def with_stdlib(cls) -> ExternRegistry:
        return cls(parse_signature(s) for s in STDLIB_SIGNATURES)

    def declare(self, fn: ExternFunction | str) -> ExternFunction:
        if isinstance(fn, str):
            fn = parse_signature(fn)
        if fn.name == "input":
            raise ExternError("'input' is a builtin and cannot be redeclared")
        self._functions[fn.name] = fn
        return fn

    def lookup(self, name: str) -> Optional[ExternFunction]:
        return self._functions.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __iter__(self) -> Iterator[ExternFunction]:
        return iter(self._functions.values())

    def __len__(self) -> int:
        return len(self._functions)
