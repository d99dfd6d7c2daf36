"""csafe Parser — recursive-descent parser with error recovery.

Parses a token list into a ``Program``. On an unexpected token the parser
reports a syntax diagnostic, skips to the next statement boundary (``;`` or
``}``) and carries on, so one pass reports every independent error.
"""

from __future__ import annotations

import logging
from typing import Optional

from csafe.lexer import Token, TokenType, tokenize
from csafe.ast_nodes import (
    Program, TopLevel, ModuleDecl, ImportDecl, FuncDecl, ClassDecl, FieldDecl,
    TestDecl, Param, TypeAnnotation,
    Statement, Block, VarDecl, AssignStmt, ExprStmt, ReturnStmt, YieldStmt,
    IfStmt, WhileStmt, ForStmt, MatchStmt, MatchArm, AssertStmt, BreakStmt,
    ContinueStmt,
    Pattern, LiteralPattern, TypePattern, VariantPattern,
    Expr, Argument, IntLiteral, FloatLiteral, StringLiteral, BoolLiteral,
    Identifier, BinaryOp, UnaryOp, DerefExpr, AwaitExpr, Call, NamedArg,
    MemberAccess, IndexExpr, SliceExpr, RangeExpr, ListLiteral, WrapExpr,
    ResultExpr, SpawnExpr,
)
from csafe.errors import Diagnostics, Span

logger = logging.getLogger(__name__)


class _Unwind(Exception):
    """Internal: abandons the current statement after a syntax error was reported."""


# Tokens that begin a statement; the parser resynchronises on them.
_STATEMENT_STARTS = frozenset({
    TokenType.LET, TokenType.CONST, TokenType.FUNC, TokenType.RETURN,
    TokenType.IF, TokenType.FOR, TokenType.WHILE, TokenType.MATCH,
    TokenType.YIELD, TokenType.TEST, TokenType.ASSERT, TokenType.IMPORT,
    TokenType.EXPORT, TokenType.MODULE, TokenType.ASYNC, TokenType.CLASS,
    TokenType.BREAK, TokenType.CONTINUE,
})

_COMPARISON_OPS = (TokenType.LT, TokenType.GT, TokenType.LTE, TokenType.GTE,
                   TokenType.EQ, TokenType.NEQ)

_TYPE_NAME_TOKENS = (TokenType.IDENT, TokenType.SAFE, TokenType.SHARED)


class Parser:
    """Recursive-descent parser for csafe."""

    def __init__(self, tokens: list[Token], filename: str = "<stdin>",
                 diagnostics: Optional[Diagnostics] = None):
        if not tokens or tokens[-1].type != TokenType.EOF:
            tokens = list(tokens) + [Token(TokenType.EOF, "", Span(filename))]
        self.tokens = tokens
        self.pos = 0
        self.filename = filename
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics(filename)
        self._previous: Token = tokens[0]

    # -------------------------------------------------------------------
    # Token helpers
    # -------------------------------------------------------------------

    def _current(self) -> Token:
        return self.tokens[self.pos]

    def _peek(self, offset: int = 0) -> TokenType:
        idx = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[idx].type

    def _advance(self) -> Token:
        tok = self._current()
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        self._previous = tok
        return tok

    def _match(self, tt: TokenType) -> Optional[Token]:
        if self._peek() == tt:
            return self._advance()
        return None

    def _expect(self, tt: TokenType, what: Optional[str] = None) -> Token:
        if self._peek() == tt:
            return self._advance()
        self._fail(f"Expected {what or tt.name}, got {self._describe(self._current())}")

    def _describe(self, tok: Token) -> str:
        if tok.type == TokenType.EOF:
            return "end of input"
        return f"'{tok.value}'"

    def _fail(self, message: str) -> None:
        tok = self._current()
        # Lexical errors were already reported by the lexer.
        if tok.type != TokenType.ERROR:
            self.diagnostics.syntax_error(message, tok.span)
        raise _Unwind()

    def _span(self, start: Token) -> Span:
        return start.span.cover(self._previous.span)

    def _synchronize(self, top_level: bool = False) -> None:
        # At top level a broken declaration header skips its whole body.
        depth = 0
        while self._peek() != TokenType.EOF:
            tt = self._peek()
            if tt == TokenType.LBRACE and top_level:
                depth += 1
            elif tt == TokenType.RBRACE:
                if depth == 0 and not top_level:
                    return
                self._advance()
                depth = max(depth - 1, 0)
                if depth == 0:
                    return
                continue
            elif depth == 0:
                if tt == TokenType.SEMICOLON:
                    self._advance()
                    return
                if tt in _STATEMENT_STARTS:
                    return
            self._advance()

    # -------------------------------------------------------------------
    # Top-level
    # -------------------------------------------------------------------

    def parse(self) -> Program:
        decls: list[TopLevel] = []
        first = self._current()
        while self._peek() != TokenType.EOF:
            before = self.pos
            try:
                decls.append(self._parse_top_level())
            except _Unwind:
                self._synchronize(top_level=True)
                if self.pos == before:
                    self._advance()
        span = first.span.cover(self._previous.span) if decls else first.span
        logger.debug("parsed %s: %d declarations", self.filename, len(decls))
        return Program(declarations=tuple(decls), filename=self.filename, span=span)

    def _parse_top_level(self) -> TopLevel:
        tt = self._peek()
        if tt == TokenType.MODULE:
            start = self._advance()
            name = self._expect(TokenType.IDENT, "module name").value
            self._expect(TokenType.SEMICOLON, "';'")
            return ModuleDecl(name=name, span=self._span(start))
        if tt == TokenType.IMPORT:
            start = self._advance()
            name = self._expect(TokenType.IDENT, "module name").value
            self._expect(TokenType.SEMICOLON, "';'")
            return ImportDecl(name=name, span=self._span(start))
        if tt == TokenType.TEST:
            return self._parse_test()

        start = self._current()
        exported = bool(self._match(TokenType.EXPORT))
        tt = self._peek()
        if tt in (TokenType.LET, TokenType.CONST):
            return self._parse_var_decl(start, exported)
        if tt in (TokenType.FUNC, TokenType.ASYNC):
            return self._parse_func(start, exported)
        if tt == TokenType.CLASS:
            return self._parse_class(start, exported)
        self._fail(
            f"Expected a declaration ('let', 'const', 'func', 'class', 'test', "
            f"'import' or 'module'), got {self._describe(self._current())}"
        )

    def _parse_test(self) -> TestDecl:
        start = self._expect(TokenType.TEST)
        name = self._expect(TokenType.STRING_LIT, "test name string").value
        body = self._parse_block()
        return TestDecl(name=name, body=body, span=self._span(start))

    # -------------------------------------------------------------------
    # Type annotations
    # -------------------------------------------------------------------

    def _parse_type(self) -> TypeAnnotation:
        start = self._current()
        if self._peek() not in _TYPE_NAME_TOKENS:
            self._fail(f"Expected a type, got {self._describe(start)}")
        name = self._advance().value
        args: list[TypeAnnotation] = []
        if self._match(TokenType.LT):
            args.append(self._parse_type())
            while self._match(TokenType.COMMA):
                args.append(self._parse_type())
            self._expect(TokenType.GT, "'>'")
        return TypeAnnotation(name=name, args=tuple(args), span=self._span(start))

    # -------------------------------------------------------------------
    # Functions and classes
    # -------------------------------------------------------------------

    def _parse_func(self, start: Token, exported: bool = False) -> FuncDecl:
        is_async = bool(self._match(TokenType.ASYNC))
        self._expect(TokenType.FUNC, "'func'")
        name = self._expect(TokenType.IDENT, "function name").value
        self._expect(TokenType.LPAREN, "'('")
        params: list[Param] = []
        if self._peek() != TokenType.RPAREN:
            params.append(self._parse_param())
            while self._match(TokenType.COMMA):
                params.append(self._parse_param())
        self._expect(TokenType.RPAREN, "')'")

        return_type: Optional[TypeAnnotation] = None
        if self._match(TokenType.COLON):
            return_type = self._parse_type()

        body = self._parse_block()
        return FuncDecl(
            name=name, params=tuple(params), return_type=return_type, body=body,
            is_async=is_async, exported=exported, span=self._span(start),
        )

    def _parse_param(self) -> Param:
        start = self._current()
        name = self._expect(TokenType.IDENT, "parameter name").value
        self._expect(TokenType.COLON, "':'")
        type_ann = self._parse_type()
        default: Optional[Expr] = None
        if self._match(TokenType.ASSIGN):
            default = self._parse_expression()
        return Param(name=name, type_annotation=type_ann, default=default, span=self._span(start))

    def _parse_class(self, start: Token, exported: bool) -> ClassDecl:
        self._expect(TokenType.CLASS)
        name = self._expect(TokenType.IDENT, "class name").value
        self._expect(TokenType.LBRACE, "'{'")
        fields: list[FieldDecl] = []
        methods: list[FuncDecl] = []
        while self._peek() not in (TokenType.RBRACE, TokenType.EOF):
            member_start = self._current()
            before = self.pos
            try:
                if self._peek() in (TokenType.FUNC, TokenType.ASYNC):
                    methods.append(self._parse_func(member_start))
                else:
                    fname = self._expect(TokenType.IDENT, "field name").value
                    self._expect(TokenType.COLON, "':'")
                    ftype = self._parse_type()
                    default: Optional[Expr] = None
                    if self._match(TokenType.ASSIGN):
                        default = self._parse_expression()
                    self._expect(TokenType.SEMICOLON, "';'")
                    fields.append(FieldDecl(name=fname, type_annotation=ftype, default=default,
                                            span=self._span(member_start)))
            except _Unwind:
                self._synchronize()
                if self.pos == before:
                    self._advance()
        self._expect(TokenType.RBRACE, "'}'")
        return ClassDecl(name=name, fields=tuple(fields), methods=tuple(methods),
                         exported=exported, span=self._span(start))

    # -------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------

    def _parse_block(self) -> Block:
        start = self._expect(TokenType.LBRACE, "'{'")
        stmts: list[Statement] = []
        while self._peek() not in (TokenType.RBRACE, TokenType.EOF):
            before = self.pos
            try:
                stmts.append(self._parse_statement())
            except _Unwind:
                self._synchronize()
                if self.pos == before:
                    self._advance()
        self._expect(TokenType.RBRACE, "'}'")
        return Block(statements=tuple(stmts), span=self._span(start))

    def _parse_statement(self) -> Statement:
        tt = self._peek()
        start = self._current()

        if tt in (TokenType.LET, TokenType.CONST):
            return self._parse_var_decl(start, exported=False)
        if tt == TokenType.RETURN:
            self._advance()
            value: Optional[Expr] = None
            if self._peek() != TokenType.SEMICOLON:
                value = self._parse_expression()
            self._expect(TokenType.SEMICOLON, "';'")
            return ReturnStmt(value=value, span=self._span(start))
        if tt == TokenType.YIELD:
            self._advance()
            value = self._parse_expression()
            self._expect(TokenType.SEMICOLON, "';'")
            return YieldStmt(value=value, span=self._span(start))
        if tt == TokenType.IF:
            return self._parse_if()
        if tt == TokenType.WHILE:
            self._advance()
            condition = self._parse_paren_expr()
            body = self._parse_block()
            return WhileStmt(condition=condition, body=body, span=self._span(start))
        if tt == TokenType.FOR:
            return self._parse_for()
        if tt == TokenType.MATCH:
            return self._parse_match()
        if tt == TokenType.ASSERT:
            return self._parse_assert()
        if tt == TokenType.BREAK:
            self._advance()
            self._expect(TokenType.SEMICOLON, "';'")
            return BreakStmt(span=self._span(start))
        if tt == TokenType.CONTINUE:
            self._advance()
            self._expect(TokenType.SEMICOLON, "';'")
            return ContinueStmt(span=self._span(start))
        if tt == TokenType.LBRACE:
            return self._parse_block()
        return self._parse_expr_or_assign_stmt()

    def _parse_var_decl(self, start: Token, exported: bool) -> VarDecl:
        is_const = self._advance().type == TokenType.CONST
        name = self._expect(TokenType.IDENT, "variable name").value
        type_ann: Optional[TypeAnnotation] = None
        if self._match(TokenType.COLON):
            type_ann = self._parse_type()
        value: Optional[Expr] = None
        if self._match(TokenType.ASSIGN):
            value = self._parse_expression()
        self._expect(TokenType.SEMICOLON, "';'")
        return VarDecl(name=name, type_annotation=type_ann, value=value, is_const=is_const,
                       exported=exported, span=self._span(start))

    def _parse_paren_expr(self) -> Expr:
        self._expect(TokenType.LPAREN, "'('")
        expr = self._parse_expression()
        self._expect(TokenType.RPAREN, "')'")
        return expr

    def _parse_if(self) -> IfStmt:
        start = self._expect(TokenType.IF)
        condition = self._parse_paren_expr()
        then_body = self._parse_block()
        else_body: Optional[Statement] = None
        if self._match(TokenType.ELSE):
            if self._peek() == TokenType.IF:
                else_body = self._parse_if()
            else:
                else_body = self._parse_block()
        return IfStmt(condition=condition, then_body=then_body, else_body=else_body,
                      span=self._span(start))

    def _parse_for(self) -> ForStmt:
        start = self._expect(TokenType.FOR)
        self._expect(TokenType.LPAREN, "'('")
        var_name = self._expect(TokenType.IDENT, "loop variable").value
        self._expect(TokenType.IN, "'in'")
        iterable = self._parse_expression()
        self._expect(TokenType.RPAREN, "')'")
        body = self._parse_block()
        return ForStmt(var_name=var_name, iterable=iterable, body=body, span=self._span(start))

    def _parse_match(self) -> MatchStmt:
        start = self._expect(TokenType.MATCH)
        subject = self._parse_paren_expr()
        self._expect(TokenType.LBRACE, "'{'")
        arms: list[MatchArm] = []
        default: Optional[Block] = None
        while self._peek() not in (TokenType.RBRACE, TokenType.EOF):
            if self._peek() == TokenType.CASE:
                arm_start = self._advance()
                if default is not None:
                    self.diagnostics.syntax_error("'case' after 'default_case'", arm_start.span)
                pattern = self._parse_pattern()
                body = self._parse_block()
                arms.append(MatchArm(pattern=pattern, body=body, span=self._span(arm_start)))
            elif self._peek() == TokenType.DEFAULT_CASE:
                dflt = self._advance()
                if default is not None:
                    self.diagnostics.syntax_error("Duplicate 'default_case'", dflt.span)
                default = self._parse_block()
            else:
                self._fail(f"Expected 'case' or 'default_case', got {self._describe(self._current())}")
        self._expect(TokenType.RBRACE, "'}'")
        return MatchStmt(subject=subject, arms=tuple(arms), default=default, span=self._span(start))

    def _parse_pattern(self) -> Pattern:
        start = self._current()
        tt = self._peek()
        if tt == TokenType.LPAREN:
            self._advance()
            type_ann = self._parse_type()
            name = self._expect(TokenType.IDENT, "binding name").value
            self._expect(TokenType.RPAREN, "')'")
            return TypePattern(type_annotation=type_ann, name=name, span=self._span(start))
        if tt in (TokenType.OK, TokenType.ERR):
            variant = self._advance().value
            self._expect(TokenType.LPAREN, "'('")
            name = self._expect(TokenType.IDENT, "binding name").value
            self._expect(TokenType.RPAREN, "')'")
            return VariantPattern(variant=variant, name=name, span=self._span(start))
        negative = bool(self._match(TokenType.MINUS))
        tt = self._peek()
        if tt == TokenType.INT_LIT:
            value = int(self._advance().value)
            lit: Expr = IntLiteral(value=-value if negative else value, span=self._span(start))
        elif tt == TokenType.FLOAT_LIT:
            fvalue = float(self._advance().value)
            lit = FloatLiteral(value=-fvalue if negative else fvalue, span=self._span(start))
        elif tt == TokenType.STRING_LIT and not negative:
            lit = StringLiteral(value=self._advance().value, span=self._span(start))
        elif tt in (TokenType.TRUE, TokenType.FALSE) and not negative:
            lit = BoolLiteral(value=self._advance().type == TokenType.TRUE, span=self._span(start))
        else:
            self._fail(f"Expected a case pattern, got {self._describe(self._current())}")
        return LiteralPattern(value=lit, span=self._span(start))

    def _parse_assert(self) -> AssertStmt:
        start = self._expect(TokenType.ASSERT)
        self._expect(TokenType.LPAREN, "'('")
        condition = self._parse_expression()
        message: Optional[str] = None
        if self._match(TokenType.COMMA):
            message = self._expect(TokenType.STRING_LIT, "assertion message string").value
        self._expect(TokenType.RPAREN, "')'")
        self._expect(TokenType.SEMICOLON, "';'")
        return AssertStmt(condition=condition, message=message, span=self._span(start))

    def _parse_expr_or_assign_stmt(self) -> Statement:
        start = self._current()
        expr = self._parse_expression()
        if self._match(TokenType.ASSIGN):
            value = self._parse_expression()
            self._expect(TokenType.SEMICOLON, "';'")
            return AssignStmt(target=expr, value=value, span=self._span(start))
        self._expect(TokenType.SEMICOLON, "';'")
        return ExprStmt(expr=expr, span=self._span(start))

    # -------------------------------------------------------------------
    # Expressions (precedence climbing)
    # -------------------------------------------------------------------

    def _parse_expression(self) -> Expr:
        return self._parse_or()

    def _binary(self, start: Token, op: str, left: Expr, right: Expr) -> BinaryOp:
        return BinaryOp(op=op, left=left, right=right, span=self._span(start))

    def _parse_or(self) -> Expr:
        start = self._current()
        left = self._parse_and()
        while self._peek() == TokenType.OR:
            self._advance()
            left = self._binary(start, "||", left, self._parse_and())
        return left

    def _parse_and(self) -> Expr:
        start = self._current()
        left = self._parse_comparison()
        while self._peek() == TokenType.AND:
            self._advance()
            left = self._binary(start, "&&", left, self._parse_comparison())
        return left

    def _parse_comparison(self) -> Expr:
        start = self._current()
        left = self._parse_additive()
        while self._peek() in _COMPARISON_OPS:
            op = self._advance().value
            left = self._binary(start, op, left, self._parse_additive())
        return left

    def _parse_additive(self) -> Expr:
        start = self._current()
        left = self._parse_multiplicative()
        while self._peek() in (TokenType.PLUS, TokenType.MINUS):
            op = self._advance().value
            left = self._binary(start, op, left, self._parse_multiplicative())
        return left

    def _parse_multiplicative(self) -> Expr:
        start = self._current()
        left = self._parse_unary()
        while self._peek() in (TokenType.STAR, TokenType.SLASH, TokenType.PERCENT):
            op = self._advance().value
            left = self._binary(start, op, left, self._parse_unary())
        return left

    def _parse_unary(self) -> Expr:
        start = self._current()
        tt = self._peek()
        if tt in (TokenType.MINUS, TokenType.NOT):
            op = self._advance().value
            operand = self._parse_unary()
            return UnaryOp(op=op, operand=operand, span=self._span(start))
        if tt == TokenType.STAR:
            self._advance()
            operand = self._parse_unary()
            return DerefExpr(operand=operand, span=self._span(start))
        if tt == TokenType.AWAIT:
            self._advance()
            operand = self._parse_unary()
            return AwaitExpr(operand=operand, span=self._span(start))
        return self._parse_postfix()

    def _parse_postfix(self) -> Expr:
        start = self._current()
        expr = self._parse_primary()
        while True:
            if self._match(TokenType.LPAREN):
                args = self._parse_arguments()
                expr = Call(callee=expr, args=args, span=self._span(start))
            elif self._match(TokenType.DOT):
                name = self._expect(TokenType.IDENT, "member name").value
                expr = MemberAccess(obj=expr, name=name, span=self._span(start))
            elif self._match(TokenType.LBRACKET):
                expr = self._parse_index_or_slice(expr, start)
            else:
                break
        return expr

    def _parse_arguments(self) -> tuple[Argument, ...]:
        args: list[Argument] = []
        if self._peek() != TokenType.RPAREN:
            args.append(self._parse_argument())
            while self._match(TokenType.COMMA):
                args.append(self._parse_argument())
        self._expect(TokenType.RPAREN, "')'")
        return tuple(args)

    def _parse_argument(self) -> Argument:
        if self._peek() == TokenType.IDENT and self._peek(1) == TokenType.ASSIGN:
            start = self._advance()
            self._advance()
            value = self._parse_expression()
            return NamedArg(name=start.value, value=value, span=self._span(start))
        return self._parse_expression()

    def _parse_index_or_slice(self, obj: Expr, start: Token) -> Expr:
        lower: Optional[Expr] = None
        if self._peek() != TokenType.COLON:
            lower = self._parse_expression()
        if self._match(TokenType.COLON):
            upper: Optional[Expr] = None
            if self._peek() != TokenType.RBRACKET:
                upper = self._parse_expression()
            self._expect(TokenType.RBRACKET, "']'")
            return SliceExpr(obj=obj, start=lower, end=upper, span=self._span(start))
        self._expect(TokenType.RBRACKET, "']'")
        return IndexExpr(obj=obj, index=lower, span=self._span(start))

    def _parse_primary(self) -> Expr:
        tt = self._peek()
        start = self._current()

        if tt == TokenType.INT_LIT:
            return IntLiteral(value=int(self._advance().value), span=start.span)
        if tt == TokenType.FLOAT_LIT:
            return FloatLiteral(value=float(self._advance().value), span=start.span)
        if tt == TokenType.STRING_LIT:
            return StringLiteral(value=self._advance().value, span=start.span)
        if tt in (TokenType.TRUE, TokenType.FALSE):
            self._advance()
            return BoolLiteral(value=tt == TokenType.TRUE, span=start.span)

        if tt == TokenType.IDENT:
            tok = self._advance()
            if tok.value == "range" and self._peek() == TokenType.LPAREN:
                self._advance()
                args: list[Expr] = []
                if self._peek() != TokenType.RPAREN:
                    args.append(self._parse_expression())
                    while self._match(TokenType.COMMA):
                        args.append(self._parse_expression())
                self._expect(TokenType.RPAREN, "')'")
                return RangeExpr(args=tuple(args), span=self._span(start))
            return Identifier(name=tok.value, span=tok.span)

        if tt in (TokenType.SAFE, TokenType.SHARED):
            kind = self._advance().value
            self._expect(TokenType.LT, "'<'")
            type_ann = self._parse_type()
            self._expect(TokenType.GT, "'>'")
            self._expect(TokenType.LPAREN, "'('")
            value: Optional[Expr] = None
            if self._peek() != TokenType.RPAREN:
                value = self._parse_expression()
            self._expect(TokenType.RPAREN, "')'")
            return WrapExpr(kind=kind, type_annotation=type_ann, value=value, span=self._span(start))

        if tt in (TokenType.OK, TokenType.ERR):
            variant = self._advance().value
            self._expect(TokenType.LPAREN, "'('")
            value = self._parse_expression()
            self._expect(TokenType.RPAREN, "')'")
            return ResultExpr(variant=variant, value=value, span=self._span(start))

        if tt == TokenType.SPAWN:
            self._advance()
            body = self._parse_block()
            return SpawnExpr(body=body, span=self._span(start))

        if tt == TokenType.LPAREN:
            self._advance()
            expr = self._parse_expression()
            self._expect(TokenType.RPAREN, "')'")
            return expr

        if tt == TokenType.LBRACKET:
            self._advance()
            elements: list[Expr] = []
            if self._peek() != TokenType.RBRACKET:
                elements.append(self._parse_expression())
                while self._match(TokenType.COMMA):
                    elements.append(self._parse_expression())
            self._expect(TokenType.RBRACKET, "']'")
            return ListLiteral(elements=tuple(elements), span=self._span(start))

        self._fail(f"Unexpected token {self._describe(start)}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse(source: str, filename: str = "<stdin>",
          diagnostics: Optional[Diagnostics] = None) -> Program:
    """Parse csafe source code into an AST. Problems go to ``diagnostics``."""
    diagnostics = diagnostics if diagnostics is not None else Diagnostics(filename)
    tokens = tokenize(source, filename, diagnostics)
    return Parser(tokens, filename, diagnostics).parse()
