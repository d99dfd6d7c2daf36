"""csafe AST node definitions.

Nodes are frozen: once the parser builds a node nothing mutates it, and the
lowering pass creates fresh target nodes instead of rewriting these. Children
are held in tuples and owned by exactly one parent. Spans take no part in
equality, so two trees compare equal when they have the same structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from csafe.errors import Span


@dataclass(frozen=True)
class Node:
    span: Optional[Span] = field(default=None, compare=False, repr=False)


# ---------------------------------------------------------------------------
# Type Annotations (in source)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TypeAnnotation(Node):
    name: str = ""
    args: tuple[TypeAnnotation, ...] = ()

    def __str__(self) -> str:
        if self.args:
            return f"{self.name}<{', '.join(str(a) for a in self.args)}>"
        return self.name


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Expr(Node):
    pass


@dataclass(frozen=True)
class IntLiteral(Expr):
    value: int = 0


@dataclass(frozen=True)
class FloatLiteral(Expr):
    value: float = 0.0


@dataclass(frozen=True)
class StringLiteral(Expr):
    value: str = ""


@dataclass(frozen=True)
class BoolLiteral(Expr):
    value: bool = False


@dataclass(frozen=True)
class Identifier(Expr):
    name: str = ""


@dataclass(frozen=True)
class BinaryOp(Expr):
    op: str = ""
    left: Expr = field(default_factory=Expr)
    right: Expr = field(default_factory=Expr)


@dataclass(frozen=True)
class UnaryOp(Expr):
    """Arithmetic negation ``-x`` or logical not ``!x``."""
    op: str = ""
    operand: Expr = field(default_factory=Expr)


@dataclass(frozen=True)
class DerefExpr(Expr):
    """Borrowing read through an ownership wrapper: ``*p``."""
    operand: Expr = field(default_factory=Expr)


@dataclass(frozen=True)
class AwaitExpr(Expr):
    operand: Expr = field(default_factory=Expr)


@dataclass(frozen=True)
class NamedArg(Node):
    """``name = value`` inside a call's argument list."""
    name: str = ""
    value: Expr = field(default_factory=Expr)


Argument = Union[Expr, NamedArg]


@dataclass(frozen=True)
class Call(Expr):
    callee: Expr = field(default_factory=Expr)
    args: tuple[Argument, ...] = ()


@dataclass(frozen=True)
class MemberAccess(Expr):
    obj: Expr = field(default_factory=Expr)
    name: str = ""


@dataclass(frozen=True)
class IndexExpr(Expr):
    obj: Expr = field(default_factory=Expr)
    index: Expr = field(default_factory=Expr)


@dataclass(frozen=True)
class SliceExpr(Expr):
    """``seq[start:end]``; either bound may be omitted."""
    obj: Expr = field(default_factory=Expr)
    start: Optional[Expr] = None
    end: Optional[Expr] = None


@dataclass(frozen=True)
class RangeExpr(Expr):
    """``range(start, end[, step])``. Arity is validated by the resolver."""
    args: tuple[Expr, ...] = ()

    @property
    def start(self) -> Optional[Expr]:
        return self.args[0] if len(self.args) > 0 else None

    @property
    def end(self) -> Optional[Expr]:
        return self.args[1] if len(self.args) > 1 else None

    @property
    def step(self) -> Optional[Expr]:
        return self.args[2] if len(self.args) > 2 else None


@dataclass(frozen=True)
class ListLiteral(Expr):
    elements: tuple[Expr, ...] = ()


@dataclass(frozen=True)
class WrapExpr(Expr):
    """Ownership-wrapper construction: ``safe<T>(v)`` or ``shared<T>(v)``."""
    kind: str = "safe"
    type_annotation: TypeAnnotation = field(default_factory=TypeAnnotation)
    value: Optional[Expr] = None


@dataclass(frozen=True)
class ResultExpr(Expr):
    """``ok(v)`` or ``err(e)``."""
    variant: str = "ok"
    value: Expr = field(default_factory=Expr)


@dataclass(frozen=True)
class SpawnExpr(Expr):
    body: Block = field(default_factory=lambda: Block())


# ---------------------------------------------------------------------------
# Patterns (for match statements)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Pattern(Node):
    pass


@dataclass(frozen=True)
class LiteralPattern(Pattern):
    value: Expr = field(default_factory=Expr)


@dataclass(frozen=True)
class TypePattern(Pattern):
    """``(Type name)``: matches by type tag and binds the payload."""
    type_annotation: TypeAnnotation = field(default_factory=TypeAnnotation)
    name: str = ""


@dataclass(frozen=True)
class VariantPattern(Pattern):
    """``ok(name)`` or ``err(name)`` over a Result."""
    variant: str = "ok"
    name: str = ""


@dataclass(frozen=True)
class MatchArm(Node):
    pattern: Pattern = field(default_factory=Pattern)
    body: Block = field(default_factory=lambda: Block())


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Statement(Node):
    pass


@dataclass(frozen=True)
class Block(Statement):
    statements: tuple[Statement, ...] = ()


@dataclass(frozen=True)
class VarDecl(Statement):
    """``let`` / ``const`` binding; also valid at top level."""
    name: str = ""
    type_annotation: Optional[TypeAnnotation] = None
    value: Optional[Expr] = None
    is_const: bool = False
    exported: bool = False


@dataclass(frozen=True)
class AssignStmt(Statement):
    target: Expr = field(default_factory=Expr)
    value: Expr = field(default_factory=Expr)


@dataclass(frozen=True)
class ExprStmt(Statement):
    expr: Expr = field(default_factory=Expr)


@dataclass(frozen=True)
class ReturnStmt(Statement):
    value: Optional[Expr] = None


@dataclass(frozen=True)
class YieldStmt(Statement):
    value: Expr = field(default_factory=Expr)


@dataclass(frozen=True)
class IfStmt(Statement):
    condition: Expr = field(default_factory=Expr)
    then_body: Block = field(default_factory=Block)
    else_body: Optional[Statement] = None  # Block or IfStmt


@dataclass(frozen=True)
class WhileStmt(Statement):
    condition: Expr = field(default_factory=Expr)
    body: Block = field(default_factory=Block)


@dataclass(frozen=True)
class ForStmt(Statement):
    """for (x in iterable) { ... }"""
    var_name: str = ""
    iterable: Expr = field(default_factory=Expr)
    body: Block = field(default_factory=Block)


@dataclass(frozen=True)
class MatchStmt(Statement):
    subject: Expr = field(default_factory=Expr)
    arms: tuple[MatchArm, ...] = ()
    default: Optional[Block] = None


@dataclass(frozen=True)
class AssertStmt(Statement):
    condition: Expr = field(default_factory=Expr)
    message: Optional[str] = None


@dataclass(frozen=True)
class BreakStmt(Statement):
    pass


@dataclass(frozen=True)
class ContinueStmt(Statement):
    pass


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Param(Node):
    name: str = ""
    type_annotation: TypeAnnotation = field(default_factory=TypeAnnotation)
    default: Optional[Expr] = None


@dataclass(frozen=True)
class Declaration(Node):
    pass


@dataclass(frozen=True)
class ModuleDecl(Declaration):
    name: str = ""


@dataclass(frozen=True)
class ImportDecl(Declaration):
    name: str = ""


@dataclass(frozen=True)
class FuncDecl(Declaration):
    name: str = ""
    params: tuple[Param, ...] = ()
    return_type: Optional[TypeAnnotation] = None
    body: Block = field(default_factory=Block)
    is_async: bool = False
    exported: bool = False


@dataclass(frozen=True)
class FieldDecl(Node):
    name: str = ""
    type_annotation: TypeAnnotation = field(default_factory=TypeAnnotation)
    default: Optional[Expr] = None


@dataclass(frozen=True)
class ClassDecl(Declaration):
    name: str = ""
    fields: tuple[FieldDecl, ...] = ()
    methods: tuple[FuncDecl, ...] = ()
    exported: bool = False


@dataclass(frozen=True)
class TestDecl(Declaration):
    name: str = ""
    body: Block = field(default_factory=Block)


TopLevel = Union[Declaration, VarDecl]


@dataclass(frozen=True)
class Program(Node):
    declarations: tuple[TopLevel, ...] = ()
    filename: str = field(default="<stdin>", compare=False)

    @property
    def module_name(self) -> Optional[str]:
        for decl in self.declarations:
            if isinstance(decl, ModuleDecl):
                return decl.name
        return None

    @property
    def imports(self) -> list[str]:
        return [d.name for d in self.declarations if isinstance(d, ImportDecl)]
