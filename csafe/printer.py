"""csafe pretty printer — AST back to canonical source text.

Output re-parses to a structurally equal tree: parentheses are inserted
only where the parser's precedence would otherwise regroup an expression,
floats are written in plain positional notation (the lexer has no
exponent form) and strings use the lexer's escape set.
"""

from __future__ import annotations

from decimal import Decimal

from csafe.ast_nodes import (
    Node, Program, ModuleDecl, ImportDecl, FuncDecl, ClassDecl, FieldDecl, TestDecl, Param,
    TypeAnnotation, Statement, Block, VarDecl, AssignStmt, ExprStmt, ReturnStmt, YieldStmt,
    IfStmt, WhileStmt, ForStmt, MatchStmt, MatchArm, AssertStmt, BreakStmt, ContinueStmt,
    Pattern, LiteralPattern, TypePattern, VariantPattern, Expr, IntLiteral, FloatLiteral,
    StringLiteral, BoolLiteral, Identifier, BinaryOp, UnaryOp, DerefExpr, AwaitExpr, Call,
    NamedArg, MemberAccess, IndexExpr, SliceExpr, RangeExpr, ListLiteral, WrapExpr,
    ResultExpr, SpawnExpr,
)

INDENT = "    "

_BINARY_PREC = {
    "||": 1,
    "&&": 2,
    "==": 3, "!=": 3, "<": 3, "<=": 3, ">": 3, ">=": 3,
    "+": 4, "-": 4,
    "*": 5, "/": 5, "%": 5,
}
_UNARY_PREC = 6
_POSTFIX_PREC = 7
_PRIMARY_PREC = 8

_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\t": "\\t", "\0": "\\0"}


def format_string(value: str) -> str:
    return '"' + "".join(_ESCAPES.get(ch, ch) for ch in value) + '"'


def format_float(value: float) -> str:
    """Positional notation that reads back to the same double."""
    text = repr(abs(value))
    if "e" in text or "E" in text:
        text = format(Decimal(abs(value)), "f")
    if "." not in text:
        text += ".0"
    return "-" + text if value < 0 or (value == 0 and str(value).startswith("-")) else text


def format_type(t: TypeAnnotation) -> str:
    if not t.args:
        return t.name
    return f"{t.name}<{', '.join(format_type(a) for a in t.args)}>"


def _precedence(expr: Expr) -> int:
    if isinstance(expr, BinaryOp):
        return _BINARY_PREC.get(expr.op, 0)
    if isinstance(expr, (UnaryOp, DerefExpr, AwaitExpr)):
        return _UNARY_PREC
    if isinstance(expr, (Call, MemberAccess, IndexExpr, SliceExpr)):
        return _POSTFIX_PREC
    if isinstance(expr, (IntLiteral, FloatLiteral)) and expr.value < 0:
        return _UNARY_PREC
    return _PRIMARY_PREC


class Printer:
    """Renders one tree; ``print_node`` accepts any node."""

    def __init__(self, indent: str = INDENT):
        self.indent = indent

    def print_node(self, node: Node) -> str:
        if isinstance(node, Program):
            return self.print_program(node)
        if isinstance(node, Expr):
            return self.expr(node)
        if isinstance(node, TypeAnnotation):
            return format_type(node)
        if isinstance(node, Pattern):
            return self.pattern(node)
        if isinstance(node, (ModuleDecl, ImportDecl, FuncDecl, ClassDecl, TestDecl)):
            return "\n".join(self.declaration(node, 0))
        return "\n".join(self.statement(node, 0))

    def print_program(self, program: Program) -> str:
        chunks = ["\n".join(self.declaration(decl, 0)) for decl in program.declarations]
        return "\n\n".join(chunks) + "\n" if chunks else ""

    # -------------------------------------------------------------------
    # Declarations
    # -------------------------------------------------------------------

    def declaration(self, decl: Node, depth: int) -> list[str]:
        pad = self.indent * depth
        if isinstance(decl, ModuleDecl):
            return [f"{pad}module {decl.name};"]
        if isinstance(decl, ImportDecl):
            return [f"{pad}import {decl.name};"]
        if isinstance(decl, TestDecl):
            return self._with_block(f"{pad}test {format_string(decl.name)}", decl.body, depth)
        if isinstance(decl, FuncDecl):
            return self.function(decl, depth)
        if isinstance(decl, ClassDecl):
            head = f"{pad}{'export ' if decl.exported else ''}class {decl.name} {{"
            lines = [head]
            for fdecl in decl.fields:
                lines.append(self.indent * (depth + 1) + self.field(fdecl))
            for method in decl.methods:
                lines.extend(self.function(method, depth + 1))
            lines.append(pad + "}")
            return lines
        return self.statement(decl, depth)

    def function(self, decl: FuncDecl, depth: int) -> list[str]:
        prefix = ("export " if decl.exported else "") + ("async " if decl.is_async else "")
        params = ", ".join(self.param(p) for p in decl.params)
        ret = f": {format_type(decl.return_type)}" if decl.return_type is not None else ""
        head = f"{self.indent * depth}{prefix}func {decl.name}({params}){ret}"
        return self._with_block(head, decl.body, depth)

    def param(self, param: Param) -> str:
        text = f"{param.name}: {format_type(param.type_annotation)}"
        if param.default is not None:
            text += f" = {self.expr(param.default)}"
        return text

    def field(self, fdecl: FieldDecl) -> str:
        text = f"{fdecl.name}: {format_type(fdecl.type_annotation)}"
        if fdecl.default is not None:
            text += f" = {self.expr(fdecl.default)}"
        return text + ";"

    # -------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------

    def _with_block(self, head: str, block: Block, depth: int) -> list[str]:
        body = self.block_lines(block, depth)
        return [f"{head} {body[0]}", *body[1:]]

    def block_lines(self, block: Block, depth: int) -> list[str]:
        if not block.statements:
            return ["{}"]
        lines = ["{"]
        for stmt in block.statements:
            lines.extend(self.statement(stmt, depth + 1))
        lines.append(self.indent * depth + "}")
        return lines

    def statement(self, stmt: Statement, depth: int) -> list[str]:
        pad = self.indent * depth
        if isinstance(stmt, VarDecl):
            text = ("export " if stmt.exported else "") + ("const " if stmt.is_const else "let ") + stmt.name
            if stmt.type_annotation is not None:
                text += f": {format_type(stmt.type_annotation)}"
            if stmt.value is not None:
                text += f" = {self.expr(stmt.value)}"
            return [f"{pad}{text};"]
        if isinstance(stmt, AssignStmt):
            return [f"{pad}{self.expr(stmt.target)} = {self.expr(stmt.value)};"]
        if isinstance(stmt, ExprStmt):
            return [f"{pad}{self.expr(stmt.expr)};"]
        if isinstance(stmt, ReturnStmt):
            if stmt.value is None:
                return [f"{pad}return;"]
            return [f"{pad}return {self.expr(stmt.value)};"]
        if isinstance(stmt, YieldStmt):
            return [f"{pad}yield {self.expr(stmt.value)};"]
        if isinstance(stmt, BreakStmt):
            return [f"{pad}break;"]
        if isinstance(stmt, ContinueStmt):
            return [f"{pad}continue;"]
        if isinstance(stmt, AssertStmt):
            message = f", {format_string(stmt.message)}" if stmt.message is not None else ""
            return [f"{pad}assert({self.expr(stmt.condition)}{message});"]
        if isinstance(stmt, Block):
            lines = self.block_lines(stmt, depth)
            return [pad + lines[0], *lines[1:]]
        if isinstance(stmt, IfStmt):
            return self._if(stmt, depth, pad)
        if isinstance(stmt, WhileStmt):
            return self._with_block(f"{pad}while ({self.expr(stmt.condition)})", stmt.body, depth)
        if isinstance(stmt, ForStmt):
            head = f"{pad}for ({stmt.var_name} in {self.expr(stmt.iterable)})"
            return self._with_block(head, stmt.body, depth)
        if isinstance(stmt, MatchStmt):
            return self._match(stmt, depth, pad)
        raise TypeError(f"cannot print {type(stmt).__name__}")

    def _if(self, stmt: IfStmt, depth: int, pad: str) -> list[str]:
        lines = self._with_block(f"{pad}if ({self.expr(stmt.condition)})", stmt.then_body, depth)
        if stmt.else_body is None:
            return lines
        if isinstance(stmt.else_body, IfStmt):
            chained = self._if(stmt.else_body, depth, pad)
            lines[-1] += " else " + chained[0][len(pad):]
            lines.extend(chained[1:])
        else:
            body = self.block_lines(stmt.else_body, depth)
            lines[-1] += " else " + body[0]
            lines.extend(body[1:])
        return lines

    def _match(self, stmt: MatchStmt, depth: int, pad: str) -> list[str]:
        inner = self.indent * (depth + 1)
        lines = [f"{pad}match ({self.expr(stmt.subject)}) {{"]
        for arm in stmt.arms:
            lines.extend(self._with_block(f"{inner}case {self.pattern(arm.pattern)}", arm.body, depth + 1))
        if stmt.default is not None:
            lines.extend(self._with_block(f"{inner}default_case", stmt.default, depth + 1))
        lines.append(pad + "}")
        return lines

    def pattern(self, pattern: Pattern) -> str:
        if isinstance(pattern, TypePattern):
            return f"({format_type(pattern.type_annotation)} {pattern.name})"
        if isinstance(pattern, VariantPattern):
            return f"{pattern.variant}({pattern.name})"
        if isinstance(pattern, LiteralPattern):
            return self._literal(pattern.value)
        raise TypeError(f"cannot print {type(pattern).__name__}")

    # -------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------

    def _literal(self, expr: Expr) -> str:
        if isinstance(expr, IntLiteral):
            return str(expr.value)
        if isinstance(expr, FloatLiteral):
            return format_float(expr.value)
        if isinstance(expr, StringLiteral):
            return format_string(expr.value)
        if isinstance(expr, BoolLiteral):
            return "true" if expr.value else "false"
        raise TypeError(f"cannot print {type(expr).__name__} as a literal")

    def _operand(self, expr: Expr, minimum: int) -> str:
        text = self.expr(expr)
        return f"({text})" if _precedence(expr) < minimum else text

    def _args(self, args) -> str:
        parts = []
        for arg in args:
            if isinstance(arg, NamedArg):
                parts.append(f"{arg.name} = {self.expr(arg.value)}")
            else:
                parts.append(self.expr(arg))
        return ", ".join(parts)

    def expr(self, expr: Expr) -> str:
        if isinstance(expr, (IntLiteral, FloatLiteral, StringLiteral, BoolLiteral)):
            return self._literal(expr)
        if isinstance(expr, Identifier):
            return expr.name
        if isinstance(expr, BinaryOp):
            prec = _BINARY_PREC[expr.op]
            # left-associative: an equal-precedence right operand needs parentheses
            return f"{self._operand(expr.left, prec)} {expr.op} {self._operand(expr.right, prec + 1)}"
        if isinstance(expr, UnaryOp):
            return expr.op + self._operand(expr.operand, _UNARY_PREC)
        if isinstance(expr, DerefExpr):
            return "*" + self._operand(expr.operand, _UNARY_PREC)
        if isinstance(expr, AwaitExpr):
            return "await " + self._operand(expr.operand, _UNARY_PREC)
        if isinstance(expr, Call):
            return f"{self._operand(expr.callee, _POSTFIX_PREC)}({self._args(expr.args)})"
        if isinstance(expr, MemberAccess):
            return f"{self._operand(expr.obj, _POSTFIX_PREC)}.{expr.name}"
        if isinstance(expr, IndexExpr):
            return f"{self._operand(expr.obj, _POSTFIX_PREC)}[{self.expr(expr.index)}]"
        if isinstance(expr, SliceExpr):
            start = self.expr(expr.start) if expr.start is not None else ""
            end = self.expr(expr.end) if expr.end is not None else ""
            return f"{self._operand(expr.obj, _POSTFIX_PREC)}[{start}:{end}]"
        if isinstance(expr, RangeExpr):
            return f"range({', '.join(self.expr(a) for a in expr.args)})"
        if isinstance(expr, ListLiteral):
            return f"[{', '.join(self.expr(e) for e in expr.elements)}]"
        if isinstance(expr, WrapExpr):
            value = self.expr(expr.value) if expr.value is not None else ""
            return f"{expr.kind}<{format_type(expr.type_annotation)}>({value})"
        if isinstance(expr, ResultExpr):
            return f"{expr.variant}({self.expr(expr.value)})"
        if isinstance(expr, SpawnExpr):
            return "spawn " + " ".join(line.strip() for line in self.block_lines(expr.body, 0))
        raise TypeError(f"cannot print {type(expr).__name__}")


def print_source(node: Node, indent: str = INDENT) -> str:
    """Render ``node`` (usually a ``Program``) as csafe source."""
    return Printer(indent).print_node(node)
