"""
Parser tests for the Wheel compiler.

Tests cover:
  - Every statement form
  - Operator precedence and associativity
  - range() desugaring, unary minus, else-if chains
  - Error reporting (expected / found / position)
"""

import pytest
from wheel_compiler.lexer import tokenize
from wheel_compiler.parser import ParseError, Parser
from wheel_compiler.ast_nodes import *


def _parse(code: str) -> Program:
    return Parser(tokenize(code)).parse()


def _expr(code: str) -> Expression:
    stmt = _parse(f"let _ = {code};").statements[0]
    return stmt.value


# ─── Statements ───────────────────────────

class TestStatements:
    def test_let(self):
        stmt = _parse("let x = 5;").statements[0]
        assert isinstance(stmt, Let)
        assert stmt.name == "x"
        assert isinstance(stmt.value, IntLiteral) and stmt.value.value == 5

    def test_print(self):
        stmt = _parse('print("hi");').statements[0]
        assert isinstance(stmt, Print)
        assert isinstance(stmt.expr, StringLiteral)

    def test_if_else(self):
        stmt = _parse("if (1) { print(1); } else { print(2); }").statements[0]
        assert isinstance(stmt, If)
        assert len(stmt.then_block.statements) == 1
        assert len(stmt.else_block.statements) == 1

    def test_if_without_else(self):
        stmt = _parse("if (1) { }").statements[0]
        assert stmt.else_block is None

    def test_else_if_chain(self):
        stmt = _parse("if (1) { } else if (2) { } else { print(3); }").statements[0]
        nested = stmt.else_block.statements[0]
        assert isinstance(nested, If)
        assert nested.else_block is not None

    def test_while(self):
        stmt = _parse("while (x < 3) { x = x + 1; }").statements[0]
        assert isinstance(stmt, While)
        assert isinstance(stmt.body.statements[0], Assign)

    def test_for_two_args(self):
        stmt = _parse("for i in range(2, 7) { print(i); }").statements[0]
        assert isinstance(stmt, ForRange)
        assert stmt.var == "i"
        assert stmt.start.value == 2
        assert stmt.end.value == 7

    def test_for_one_arg_starts_at_zero(self):
        stmt = _parse("for i in range(10) { }").statements[0]
        assert stmt.start.value == 0
        assert stmt.end.value == 10

    def test_assignment(self):
        stmt = _parse("x = 3;").statements[0]
        assert isinstance(stmt, Assign)
        assert stmt.name == "x"

    def test_expression_statement(self):
        stmt = _parse("sleep(1);").statements[0]
        assert isinstance(stmt, ExprStmt)
        assert isinstance(stmt.expr, Call)
        assert stmt.expr.name == "sleep"

    def test_import(self):
        stmt = _parse('import "lib";').statements[0]
        assert isinstance(stmt, Import)
        assert stmt.path == "lib"

    def test_input_call(self):
        call = _expr("input()")
        assert isinstance(call, Call)
        assert call.name == "input"
        assert call.args == []


# ─── Expressions ──────────────────────────

class TestExpressions:
    def test_precedence(self):
        e = _expr("2 + 3 * 4")
        assert e.op == "+"
        assert e.right.op == "*"

    def test_left_associative(self):
        e = _expr("10 - 4 - 3")
        assert e.op == "-"
        assert e.left.op == "-"
        assert e.right.value == 3

    def test_parentheses(self):
        e = _expr("(2 + 3) * 4")
        assert e.op == "*"
        assert e.left.op == "+"

    def test_comparison_lowest(self):
        e = _expr("1 + 2 < 3 * 4")
        assert e.op == "<"

    def test_negative_literal(self):
        e = _expr("-7")
        assert isinstance(e, IntLiteral)
        assert e.value == -7

    def test_negated_identifier(self):
        e = _expr("-x")
        assert isinstance(e, BinaryOp)
        assert e.op == "-"
        assert e.left.value == 0
        assert e.right.name == "x"

    def test_call_with_args(self):
        e = _expr("luck_random_range(1, 6)")
        assert isinstance(e, Call)
        assert len(e.args) == 2


# ─── Errors ───────────────────────────────

class TestErrors:
    def test_missing_semicolon(self):
        with pytest.raises(ParseError) as exc:
            _parse("let x = 5")
        assert "';'" in exc.value.expected
        assert exc.value.position == (1, 10)

    def test_chained_comparison_rejected(self):
        with pytest.raises(ParseError):
            _parse("let x = 1 < 2 < 3;")

    def test_func_reserved(self):
        with pytest.raises(ParseError) as exc:
            _parse("func f() { }")
        assert "not supported" in str(exc.value)

    def test_unclosed_block(self):
        with pytest.raises(ParseError) as exc:
            _parse("while (1) { print(1);")
        assert "'}'" in exc.value.expected

    def test_let_requires_identifier(self):
        with pytest.raises(ParseError):
            _parse("let 5 = 5;")

    def test_input_takes_no_arguments(self):
        with pytest.raises(ParseError):
            _parse("let x = input(1);")

    def test_assign_to_expression_rejected(self):
        with pytest.raises(ParseError):
            _parse("x + 1 = 2;")
