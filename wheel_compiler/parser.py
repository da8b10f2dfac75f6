"""
Recursive-descent parser for the Wheel compiler.

Parses a lazy token stream from the Lexer into an AST defined in ast_nodes.
One token of lookahead, no backtracking; parsing stops at the first error.

Grammar:

  Program    := Stmt*
  Stmt       := "let" Ident "=" Expr ";"
              | "print" "(" Expr ")" ";"
              | "if" "(" Expr ")" Block ("else" (Block | IfStmt))?
              | "while" "(" Expr ")" Block
              | "for" Ident "in" "range" "(" Expr ("," Expr)? ")" Block
              | "import" StringLit ";"
              | Ident "=" Expr ";"
              | Expr ";"
  Block      := "{" Stmt* "}"
  Expr       := Additive (CmpOp Additive)?          (non-associative)
  Additive   := Multiplicative (("+" | "-") Multiplicative)*
  Multiplicative := Unary (("*" | "/" | "%") Unary)*
  Unary      := "-"? Atom
  Atom       := IntLit | StringLit | Ident ("(" Args? ")")?
              | "input" "(" ")" | "(" Expr ")"
"""

from __future__ import annotations
from typing import Iterable, Iterator, List, Optional

from .errors import CompileError
from .lexer import Token, TokenType
from .ast_nodes import *


class ParseError(CompileError):
    stage = "Parse"

    def __init__(self, expected: str, found: Token):
        self.expected = expected
        self.found = found
        self.position = (found.line, found.col)
        shown = "end of input" if found.type == TokenType.EOF else repr(found.value)
        super().__init__(f"expected {expected}, found {shown}", found.line, found.col)


COMPARISON_TOKENS = {
    TokenType.LT: "<",
    TokenType.GT: ">",
    TokenType.LE: "<=",
    TokenType.GE: ">=",
    TokenType.EQ: "==",
    TokenType.NEQ: "!=",
}


class Parser:
    """Recursive descent parser producing an AST from a token stream."""

    def __init__(self, tokens: Iterable[Token]):
        self._tokens: Iterator[Token] = iter(tokens)
        self._current: Token = next(self._tokens)

    # ── Helpers ─────────────────────────────

    def _cur(self) -> Token:
        return self._current

    def _at(self, *types: TokenType) -> bool:
        return self._current.type in types

    def _advance(self) -> Token:
        tok = self._current
        if tok.type != TokenType.EOF:
            self._current = next(self._tokens)
        return tok

    def _expect(self, ttype: TokenType, expected: str = "") -> Token:
        if self._current.type != ttype:
            raise ParseError(expected or repr(ttype.value), self._current)
        return self._advance()

    def _match(self, *types: TokenType) -> Optional[Token]:
        if self._current.type in types:
            return self._advance()
        return None

    # ── Top level ───────────────────────────

    def parse(self) -> Program:
        """Parse the full token stream into a Program AST."""
        prog = Program(line=1, col=1)
        while not self._at(TokenType.EOF):
            prog.statements.append(self._parse_statement())
        return prog

    def _parse_block(self) -> Block:
        lbrace = self._expect(TokenType.LBRACE)
        block = Block(line=lbrace.line, col=lbrace.col)
        while not self._at(TokenType.RBRACE):
            if self._at(TokenType.EOF):
                raise ParseError("'}'", self._cur())
            block.statements.append(self._parse_statement())
        self._advance()
        return block

    # ── Statements ──────────────────────────

    def _parse_statement(self) -> Statement:
        tok = self._cur()

        if tok.type == TokenType.KW_LET:
            return self._parse_let()
        if tok.type == TokenType.KW_PRINT:
            return self._parse_print()
        if tok.type == TokenType.KW_IF:
            return self._parse_if()
        if tok.type == TokenType.KW_WHILE:
            return self._parse_while()
        if tok.type == TokenType.KW_FOR:
            return self._parse_for()
        if tok.type == TokenType.KW_IMPORT:
            return self._parse_import()
        if tok.type in (TokenType.KW_FUNC, TokenType.KW_RETURN):
            raise ParseError("a statement (user-defined functions are not supported)", tok)

        expr = self._parse_expr()
        if isinstance(expr, Identifier) and self._match(TokenType.ASSIGN):
            value = self._parse_expr()
            self._expect(TokenType.SEMI)
            return Assign(line=tok.line, col=tok.col, name=expr.name, value=value)
        self._expect(TokenType.SEMI)
        return ExprStmt(line=tok.line, col=tok.col, expr=expr)

    def _parse_let(self) -> Let:
        kw = self._advance()
        name = self._expect(TokenType.IDENT, "identifier")
        self._expect(TokenType.ASSIGN)
        value = self._parse_expr()
        self._expect(TokenType.SEMI)
        return Let(line=kw.line, col=kw.col, name=name.value, value=value)

    def _parse_print(self) -> Print:
        kw = self._advance()
        self._expect(TokenType.LPAREN)
        expr = self._parse_expr()
        self._expect(TokenType.RPAREN)
        self._expect(TokenType.SEMI)
        return Print(line=kw.line, col=kw.col, expr=expr)

    def _parse_if(self) -> If:
        kw = self._advance()
        self._expect(TokenType.LPAREN)
        cond = self._parse_expr()
        self._expect(TokenType.RPAREN)
        then_block = self._parse_block()
        else_block = None
        if self._match(TokenType.KW_ELSE):
            if self._at(TokenType.KW_IF):
                nested = self._parse_if()
                else_block = Block(line=nested.line, col=nested.col, statements=[nested])
            else:
                else_block = self._parse_block()
        return If(line=kw.line, col=kw.col, condition=cond,
                  then_block=then_block, else_block=else_block)

    def _parse_while(self) -> While:
        kw = self._advance()
        self._expect(TokenType.LPAREN)
        cond = self._parse_expr()
        self._expect(TokenType.RPAREN)
        body = self._parse_block()
        return While(line=kw.line, col=kw.col, condition=cond, body=body)

    def _parse_for(self) -> ForRange:
        kw = self._advance()
        var = self._expect(TokenType.IDENT, "loop variable")
        self._expect(TokenType.KW_IN, "'in'")
        self._expect(TokenType.KW_RANGE, "'range'")
        self._expect(TokenType.LPAREN)
        first = self._parse_expr()
        if self._match(TokenType.COMMA):
            start, end = first, self._parse_expr()
        else:
            # range(n) is range(0, n)
            start, end = IntLiteral(line=first.line, col=first.col, value=0), first
        self._expect(TokenType.RPAREN)
        body = self._parse_block()
        return ForRange(line=kw.line, col=kw.col, var=var.value,
                        start=start, end=end, body=body)

    def _parse_import(self) -> Import:
        kw = self._advance()
        path = self._expect(TokenType.STRING_LITERAL, "import path string")
        self._expect(TokenType.SEMI)
        return Import(line=kw.line, col=kw.col, path=path.value)

    # ── Expressions ─────────────────────────

    def _parse_expr(self) -> Expression:
        left = self._parse_additive()
        tok = self._cur()
        if tok.type in COMPARISON_TOKENS:
            self._advance()
            right = self._parse_additive()
            left = BinaryOp(line=tok.line, col=tok.col, op=COMPARISON_TOKENS[tok.type],
                            left=left, right=right)
            if self._at(*COMPARISON_TOKENS):
                raise ParseError("';' or ')' (comparisons do not chain)", self._cur())
        return left

    def _parse_additive(self) -> Expression:
        left = self._parse_multiplicative()
        while self._at(TokenType.PLUS, TokenType.MINUS):
            op = self._advance()
            right = self._parse_multiplicative()
            left = BinaryOp(line=op.line, col=op.col, op=op.value, left=left, right=right)
        return left

    def _parse_multiplicative(self) -> Expression:
        left = self._parse_unary()
        while self._at(TokenType.STAR, TokenType.SLASH, TokenType.PERCENT):
            op = self._advance()
            right = self._parse_unary()
            left = BinaryOp(line=op.line, col=op.col, op=op.value, left=left, right=right)
        return left

    def _parse_unary(self) -> Expression:
        minus = self._match(TokenType.MINUS)
        atom = self._parse_atom()
        if minus is None:
            return atom
        if isinstance(atom, IntLiteral):
            return IntLiteral(line=minus.line, col=minus.col, value=-atom.value)
        zero = IntLiteral(line=minus.line, col=minus.col, value=0)
        return BinaryOp(line=minus.line, col=minus.col, op="-", left=zero, right=atom)

    def _parse_atom(self) -> Expression:
        tok = self._cur()

        if tok.type == TokenType.INT_LITERAL:
            self._advance()
            return IntLiteral(line=tok.line, col=tok.col, value=tok.value)

        if tok.type == TokenType.STRING_LITERAL:
            self._advance()
            return StringLiteral(line=tok.line, col=tok.col, value=tok.value)

        if tok.type == TokenType.KW_INPUT:
            self._advance()
            self._expect(TokenType.LPAREN)
            self._expect(TokenType.RPAREN, "')' (input takes no arguments)")
            return Call(line=tok.line, col=tok.col, name="input")

        if tok.type == TokenType.IDENT:
            self._advance()
            if self._match(TokenType.LPAREN):
                args = self._parse_args()
                return Call(line=tok.line, col=tok.col, name=tok.value, args=args)
            return Identifier(line=tok.line, col=tok.col, name=tok.value)

        if tok.type == TokenType.LPAREN:
            self._advance()
            expr = self._parse_expr()
            self._expect(TokenType.RPAREN)
            return expr

        raise ParseError("expression", tok)

    def _parse_args(self) -> List[Expression]:
        args: List[Expression] = []
        if self._match(TokenType.RPAREN):
            return args
        args.append(self._parse_expr())
        while self._match(TokenType.COMMA):
            args.append(self._parse_expr())
        self._expect(TokenType.RPAREN, "',' or ')'")
        return args


def parse(tokens: Iterable[Token]) -> Program:
    return Parser(tokens).parse()
