"""
Lexer / Tokenizer for the Wheel compiler.

Converts Wheel source text into a lazy stream of tokens for the parser.
Handles keywords, ASCII identifiers, decimal integer literals, double-quoted
string literals with a small escape set, operators, punctuation and
``//`` line comments.

The stream is produced on demand: ``tokenize()`` returns an iterator that
yields one Token at a time and always ends with a single EOF token.
"""

from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List

from .errors import CompileError

log = logging.getLogger(__name__)

INT64_MAX = 2**63 - 1


# ──────────────────────────────────────────────
# Token types
# ──────────────────────────────────────────────

class TokenType(enum.Enum):
    # Literals
    INT_LITERAL = "INT_LITERAL"
    STRING_LITERAL = "STRING_LITERAL"

    # Identifier
    IDENT = "IDENT"

    # Keywords
    KW_LET = "let"
    KW_PRINT = "print"
    KW_IF = "if"
    KW_ELSE = "else"
    KW_WHILE = "while"
    KW_FOR = "for"
    KW_IN = "in"
    KW_RANGE = "range"
    KW_FUNC = "func"
    KW_RETURN = "return"
    KW_IMPORT = "import"
    KW_INPUT = "input"

    # Operators
    PLUS = "+"
    MINUS = "-"
    STAR = "*"
    SLASH = "/"
    PERCENT = "%"
    ASSIGN = "="
    EQ = "=="
    NEQ = "!="
    LT = "<"
    GT = ">"
    LE = "<="
    GE = ">="

    # Punctuation
    LPAREN = "("
    RPAREN = ")"
    LBRACE = "{"
    RBRACE = "}"
    SEMI = ";"
    COMMA = ","

    # Special
    EOF = "EOF"


# ──────────────────────────────────────────────
# Token data class
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str | int
    line: int
    col: int

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, L{self.line}:{self.col})"


# ──────────────────────────────────────────────
# Keyword and operator tables
# ──────────────────────────────────────────────

KEYWORDS: Dict[str, TokenType] = {
    "let": TokenType.KW_LET,
    "print": TokenType.KW_PRINT,
    "if": TokenType.KW_IF,
    "else": TokenType.KW_ELSE,
    "while": TokenType.KW_WHILE,
    "for": TokenType.KW_FOR,
    "in": TokenType.KW_IN,
    "range": TokenType.KW_RANGE,
    "func": TokenType.KW_FUNC,
    "return": TokenType.KW_RETURN,
    "import": TokenType.KW_IMPORT,
    "input": TokenType.KW_INPUT,
}

# Longest match first
MULTI_CHAR_OPS = [
    ("<=", TokenType.LE),
    (">=", TokenType.GE),
    ("==", TokenType.EQ),
    ("!=", TokenType.NEQ),
]

SINGLE_CHAR_OPS: Dict[str, TokenType] = {
    "+": TokenType.PLUS,
    "-": TokenType.MINUS,
    "*": TokenType.STAR,
    "/": TokenType.SLASH,
    "%": TokenType.PERCENT,
    "=": TokenType.ASSIGN,
    "<": TokenType.LT,
    ">": TokenType.GT,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    ";": TokenType.SEMI,
    ",": TokenType.COMMA,
}

STRING_ESCAPES: Dict[str, str] = {"n": "\n", "t": "\t", '"': '"', "\\": "\\"}


# ──────────────────────────────────────────────
# Lexer
# ──────────────────────────────────────────────

class LexError(CompileError):
    stage = "Lexer"


def _is_ident_start(ch: str) -> bool:
    return ch.isascii() and (ch.isalpha() or ch == "_")


def _is_ident_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == "_")


class Lexer:
    """Tokenizes Wheel source into a lazy stream of Tokens."""

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.line = 1
        self.col = 1

    def _peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.source[i] if i < len(self.source) else "\0"

    def _at_end(self) -> bool:
        return self.pos >= len(self.source)

    def _advance(self) -> str:
        ch = self.source[self.pos]
        self.pos += 1
        if ch == "\n":
            self.line += 1
            self.col = 1
        else:
            self.col += 1
        return ch

    def _skip_whitespace(self):
        while not self._at_end() and self.source[self.pos] in " \t\r\n":
            self._advance()

    def _skip_line_comment(self):
        while not self._at_end() and self.source[self.pos] != "\n":
            self._advance()

    def _read_number(self) -> Token:
        start_line, start_col = self.line, self.col
        start_pos = self.pos
        while not self._at_end() and self.source[self.pos].isascii() and self.source[self.pos].isdigit():
            self._advance()
        text = self.source[start_pos:self.pos]
        value = int(text)
        if value > INT64_MAX:
            raise LexError(f"Integer literal {text} does not fit in 64 bits",
                           start_line, start_col)
        return Token(TokenType.INT_LITERAL, value, start_line, start_col)

    def _read_string_literal(self) -> Token:
        start_line, start_col = self.line, self.col
        self._advance()  # opening "
        chars: List[str] = []
        while not self._at_end() and self._peek() != '"':
            if self._peek() == "\\":
                esc_line, esc_col = self.line, self.col
                self._advance()
                if self._at_end():
                    break
                esc = self._advance()
                if esc not in STRING_ESCAPES:
                    raise LexError(f"Unknown escape sequence \\{esc}", esc_line, esc_col)
                chars.append(STRING_ESCAPES[esc])
            else:
                chars.append(self._advance())
        if self._at_end():
            raise LexError("Unterminated string literal", start_line, start_col)
        self._advance()  # closing "
        return Token(TokenType.STRING_LITERAL, "".join(chars), start_line, start_col)

    def _read_identifier_or_keyword(self) -> Token:
        start_line, start_col = self.line, self.col
        start_pos = self.pos
        while not self._at_end() and _is_ident_char(self.source[self.pos]):
            self._advance()
        text = self.source[start_pos:self.pos]
        if text in KEYWORDS:
            return Token(KEYWORDS[text], text, start_line, start_col)
        return Token(TokenType.IDENT, text, start_line, start_col)

    def tokens(self) -> Iterator[Token]:
        """Yield tokens one at a time, ending with EOF."""
        while True:
            self._skip_whitespace()
            if self._at_end():
                break

            ch = self._peek()

            if ch == "/" and self._peek(1) == "/":
                self._skip_line_comment()
                continue

            if ch.isascii() and ch.isdigit():
                yield self._read_number()
                continue

            if ch == '"':
                yield self._read_string_literal()
                continue

            if _is_ident_start(ch):
                yield self._read_identifier_or_keyword()
                continue

            matched = None
            for op_str, op_type in MULTI_CHAR_OPS:
                if self.source.startswith(op_str, self.pos):
                    matched = Token(op_type, op_str, self.line, self.col)
                    for _ in op_str:
                        self._advance()
                    break
            if matched is not None:
                yield matched
                continue

            if ch in SINGLE_CHAR_OPS:
                tok = Token(SINGLE_CHAR_OPS[ch], ch, self.line, self.col)
                self._advance()
                yield tok
                continue

            # Non-ASCII outside a string literal is dropped, splitting any
            # identifier it sits in.
            if not ch.isascii():
                log.warning("Ignoring non-ASCII character %r at L%d:%d",
                            ch, self.line, self.col)
                self._advance()
                continue

            raise LexError(f"Unexpected character: {ch!r}", self.line, self.col)

        yield Token(TokenType.EOF, "", self.line, self.col)


def tokenize(source: str) -> Iterator[Token]:
    """Return a lazy token iterator over *source*."""
    return Lexer(source).tokens()
