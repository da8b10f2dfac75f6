"""
Lexer tests for the Wheel compiler.

Tests cover:
  - Keywords, identifiers, operators
  - Integer literals (including the 64-bit limit)
  - String escapes and unterminated strings
  - Comments and source positions
  - Laziness of the token stream
"""

import pytest
from wheel_compiler.lexer import LexError, Lexer, Token, TokenType, tokenize


def _types(source: str) -> list:
    return [t.type for t in tokenize(source)]


def _values(source: str) -> list:
    return [t.value for t in tokenize(source) if t.type != TokenType.EOF]


# ─── Basic tokens ─────────────────────────

class TestBasicTokens:
    def test_let_statement(self):
        assert _types("let x = 42;") == [
            TokenType.KW_LET, TokenType.IDENT, TokenType.ASSIGN,
            TokenType.INT_LITERAL, TokenType.SEMI, TokenType.EOF,
        ]

    def test_all_keywords(self):
        src = "let print if else while for in range func return import input"
        types = _types(src)[:-1]
        assert all(t.name.startswith("KW_") for t in types)
        assert len(types) == 12

    def test_keyword_prefix_is_identifier(self):
        tok = next(tokenize("letter"))
        assert tok.type == TokenType.IDENT
        assert tok.value == "letter"

    def test_two_char_operators(self):
        assert _values("<= >= == != < > =") == ["<=", ">=", "==", "!=", "<", ">", "="]

    def test_arithmetic_and_punctuation(self):
        assert _values("+-*/%(){};,") == list("+-*/%(){};,")

    def test_empty_source_is_just_eof(self):
        toks = list(tokenize(""))
        assert len(toks) == 1
        assert toks[0].type == TokenType.EOF


# ─── Integer literals ─────────────────────

class TestIntegers:
    def test_decimal_value(self):
        tok = next(tokenize("12345"))
        assert tok.type == TokenType.INT_LITERAL
        assert tok.value == 12345

    def test_int64_max_accepted(self):
        assert next(tokenize("9223372036854775807")).value == 2**63 - 1

    def test_too_large_rejected(self):
        with pytest.raises(LexError):
            list(tokenize("9223372036854775808"))

    def test_minus_is_separate_token(self):
        assert _types("-5")[:2] == [TokenType.MINUS, TokenType.INT_LITERAL]


# ─── Strings ──────────────────────────────

class TestStrings:
    def test_plain_string(self):
        assert _values('"hello world"') == ["hello world"]

    def test_escapes(self):
        assert _values(r'"a\nb\tc\"d\\e"') == ['a\nb\tc"d\\e']

    def test_unknown_escape_rejected(self):
        with pytest.raises(LexError):
            list(tokenize(r'"bad\q"'))

    def test_unterminated_reports_opening_quote(self):
        src = 'let a = 1;\nlet b = 2;\nprint("oops);\n'
        with pytest.raises(LexError) as exc:
            list(tokenize(src))
        assert exc.value.line == 3
        assert exc.value.col == 7

    def test_unicode_inside_string_kept(self):
        assert _values('"héllo"') == ["héllo"]


# ─── Comments, positions, errors ──────────

class TestMisc:
    def test_line_comment_skipped(self):
        assert _values("let // comment here\nx") == ["let", "x"]

    def test_positions(self):
        toks = list(tokenize("let x\n  = 1;"))
        assert (toks[0].line, toks[0].col) == (1, 1)
        assert (toks[1].line, toks[1].col) == (1, 5)
        assert (toks[2].line, toks[2].col) == (2, 3)

    def test_unknown_ascii_character(self):
        with pytest.raises(LexError) as exc:
            list(tokenize("let x = 1 @ 2;"))
        assert exc.value.col == 11

    def test_lone_bang_rejected(self):
        with pytest.raises(LexError):
            list(tokenize("!x"))

    def test_non_ascii_splits_identifier(self):
        assert _values("cafébar") == ["caf", "bar"]

    def test_tokens_are_immutable(self):
        tok = Token(TokenType.IDENT, "x", 1, 1)
        with pytest.raises(AttributeError):
            tok.value = "y"

    def test_stream_is_lazy(self):
        # the error sits after the first token, so the first one still arrives
        stream = Lexer("let @").tokens()
        assert next(stream).type == TokenType.KW_LET
        with pytest.raises(LexError):
            next(stream)
