"""C++ target AST and its renderer.

Lowering builds these nodes instead of concatenating strings so that
parenthesisation and indentation are decided in one place. Types are kept
as already-spelled C++ strings. Rendering is a pure function of the tree,
which keeps output byte-identical across runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CExpr:
    pass


@dataclass(frozen=True)
class CName(CExpr):
    name: str = ""


@dataclass(frozen=True)
class CLit(CExpr):
    text: str = ""


@dataclass(frozen=True)
class CCall(CExpr):
    func: CExpr = field(default_factory=CExpr)
    args: tuple[CExpr, ...] = ()


@dataclass(frozen=True)
class CBraceInit(CExpr):
    """``Type{a, b}``"""
    type: str = ""
    args: tuple[CExpr, ...] = ()


@dataclass(frozen=True)
class CBinary(CExpr):
    op: str = ""
    left: CExpr = field(default_factory=CExpr)
    right: CExpr = field(default_factory=CExpr)


@dataclass(frozen=True)
class CUnary(CExpr):
    op: str = ""
    operand: CExpr = field(default_factory=CExpr)


@dataclass(frozen=True)
class CMember(CExpr):
    obj: CExpr = field(default_factory=CExpr)
    name: str = ""
    arrow: bool = False


@dataclass(frozen=True)
class CIndex(CExpr):
    obj: CExpr = field(default_factory=CExpr)
    index: CExpr = field(default_factory=CExpr)


@dataclass(frozen=True)
class CLambda(CExpr):
    captures: tuple[str, ...] = ()
    body: tuple[CStmt, ...] = ()
    mutable: bool = False
    return_type: Optional[str] = None


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CStmt:
    pass


@dataclass(frozen=True)
class CExprStmt(CStmt):
    expr: CExpr = field(default_factory=CExpr)


@dataclass(frozen=True)
class CDecl(CStmt):
    """``type name = init;`` or ``type name{};`` when there is no initialiser."""
    type: str = ""
    name: str = ""
    init: Optional[CExpr] = None
    prefix: str = ""


@dataclass(frozen=True)
class CAssign(CStmt):
    target: CExpr = field(default_factory=CExpr)
    value: CExpr = field(default_factory=CExpr)


@dataclass(frozen=True)
class CReturn(CStmt):
    value: Optional[CExpr] = None


@dataclass(frozen=True)
class CBlock(CStmt):
    body: tuple[CStmt, ...] = ()


@dataclass(frozen=True)
class CIf(CStmt):
    cond: CExpr = field(default_factory=CExpr)
    then: tuple[CStmt, ...] = ()
    orelse: Union[tuple[CStmt, ...], CIf, None] = None


@dataclass(frozen=True)
class CWhile(CStmt):
    cond: CExpr = field(default_factory=CExpr)
    body: tuple[CStmt, ...] = ()


@dataclass(frozen=True)
class CFor(CStmt):
    """Classic three-clause loop; clauses are expressions over existing variables."""
    init: Optional[CExpr] = None
    cond: Optional[CExpr] = None
    step: Optional[CExpr] = None
    body: tuple[CStmt, ...] = ()


@dataclass(frozen=True)
class CRangeFor(CStmt):
    decl: str = ""
    iterable: CExpr = field(default_factory=CExpr)
    body: tuple[CStmt, ...] = ()


@dataclass(frozen=True)
class CCase:
    """One switch label group; an empty ``labels`` tuple is ``default:``."""
    labels: tuple[str, ...] = ()
    body: tuple[CStmt, ...] = ()


@dataclass(frozen=True)
class CSwitch(CStmt):
    subject: CExpr = field(default_factory=CExpr)
    cases: tuple[CCase, ...] = ()


@dataclass(frozen=True)
class CBreak(CStmt):
    pass


@dataclass(frozen=True)
class CContinue(CStmt):
    pass


@dataclass(frozen=True)
class CGoto(CStmt):
    label: str = ""


@dataclass(frozen=True)
class CLabel(CStmt):
    label: str = ""


@dataclass(frozen=True)
class CRaw(CStmt):
    """A verbatim line, e.g. a preprocessor directive or a comment."""
    text: str = ""


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CExtern(CStmt):
    """``extern type name;``"""
    type: str = ""
    name: str = ""


@dataclass(frozen=True)
class CParam:
    type: str
    name: str


@dataclass(frozen=True)
class CFunction(CStmt):
    """A definition, or a prototype when ``body`` is None."""
    return_type: str = "void"
    name: str = ""
    params: tuple[CParam, ...] = ()
    body: Optional[tuple[CStmt, ...]] = None
    prefix: str = ""


@dataclass(frozen=True)
class CField(CStmt):
    type: str = ""
    name: str = ""
    init: Optional[CExpr] = None


@dataclass(frozen=True)
class CStruct(CStmt):
    name: str = ""
    members: tuple[CStmt, ...] = ()
    forward: bool = False


@dataclass(frozen=True)
class CNamespace(CStmt):
    name: str = ""
    body: tuple[CStmt, ...] = ()


@dataclass(frozen=True)
class CUnit:
    items: tuple[CStmt, ...] = ()


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

# Lower number binds tighter, following the C++ operator table.
_BINARY_PREC = {
    "*": 5, "/": 5, "%": 5,
    "+": 6, "-": 6,
    "<": 9, ">": 9, "<=": 9, ">=": 9,
    "==": 10, "!=": 10,
    "&&": 14, "||": 15,
    "=": 16,
}
_POSTFIX = 2
_UNARY = 3
_PRIMARY = 0
_LAMBDA = 16


def precedence(expr: CExpr) -> int:
    if isinstance(expr, CBinary):
        return _BINARY_PREC[expr.op]
    if isinstance(expr, CUnary):
        return _UNARY
    if isinstance(expr, (CCall, CMember, CIndex, CBraceInit)):
        return _POSTFIX
    if isinstance(expr, CLambda):
        return _LAMBDA
    return _PRIMARY


class CppRenderer:
    """Renders a ``CUnit`` to C++17 source text."""

    INDENT = "    "

    def __init__(self):
        self._lines: list[str] = []
        self._depth = 0

    def render(self, unit: CUnit) -> str:
        self._lines = []
        self._depth = 0
        for item in unit.items:
            self._stmt(item)
        return "\n".join(self._lines) + "\n"

    def _emit(self, text: str) -> None:
        self._lines.append(f"{self.INDENT * self._depth}{text}" if text else "")

    # -- expressions ---------------------------------------------------

    def expr(self, e: CExpr) -> str:
        if isinstance(e, CName):
            return e.name
        if isinstance(e, CLit):
            return e.text
        if isinstance(e, CCall):
            return f"{self._operand(e.func, _POSTFIX)}({', '.join(self.expr(a) for a in e.args)})"
        if isinstance(e, CBraceInit):
            return f"{e.type}{{{', '.join(self.expr(a) for a in e.args)}}}"
        if isinstance(e, CMember):
            sep = "->" if e.arrow else "."
            return f"{self._operand(e.obj, _POSTFIX)}{sep}{e.name}"
        if isinstance(e, CIndex):
            return f"{self._operand(e.obj, _POSTFIX)}[{self.expr(e.index)}]"
        if isinstance(e, CUnary):
            inner = self._operand(e.operand, _UNARY)
            # keep "- -x" from lexing as "--x"
            if e.op in ("-", "+") and inner.startswith(e.op):
                inner = f"({inner})"
            return f"{e.op}{inner}"
        if isinstance(e, CBinary):
            prec = _BINARY_PREC[e.op]
            left = self._operand(e.left, prec)
            right = self._operand(e.right, prec - 1)
            return f"{left} {e.op} {right}"
        if isinstance(e, CLambda):
            return self._lambda(e)
        raise TypeError(f"cannot render {type(e).__name__}")

    def _operand(self, e: CExpr, limit: int) -> str:
        text = self.expr(e)
        if precedence(e) > limit:
            return f"({text})"
        return text

    def _lambda(self, e: CLambda) -> str:
        head = f"[{', '.join(e.captures)}]()"
        if e.mutable:
            head += " mutable"
        if e.return_type:
            head += f" -> {e.return_type}"
        if not e.body:
            return head + " {}"
        saved, saved_depth = self._lines, self._depth
        self._lines, self._depth = [], saved_depth + 1
        for s in e.body:
            self._stmt(s)
        body = self._lines
        self._lines, self._depth = saved, saved_depth
        closing = self.INDENT * saved_depth + "}"
        return head + " {\n" + "\n".join(body) + "\n" + closing

    # -- statements ----------------------------------------------------

    def _body(self, stmts: tuple[CStmt, ...]) -> None:
        self._depth += 1
        for s in stmts:
            self._stmt(s)
        self._depth -= 1

    def _stmt(self, s: CStmt) -> None:
        if isinstance(s, CExprStmt):
            self._emit(f"{self.expr(s.expr)};")
        elif isinstance(s, CDecl):
            prefix = f"{s.prefix} " if s.prefix else ""
            if s.init is None:
                self._emit(f"{prefix}{s.type} {s.name}{{}};")
            else:
                self._emit(f"{prefix}{s.type} {s.name} = {self.expr(s.init)};")
        elif isinstance(s, CAssign):
            self._emit(f"{self.expr(s.target)} = {self.expr(s.value)};")
        elif isinstance(s, CReturn):
            self._emit("return;" if s.value is None else f"return {self.expr(s.value)};")
        elif isinstance(s, CBlock):
            self._emit("{")
            self._body(s.body)
            self._emit("}")
        elif isinstance(s, CIf):
            self._if(s, "if")
        elif isinstance(s, CWhile):
            self._emit(f"while ({self.expr(s.cond)}) {{")
            self._body(s.body)
            self._emit("}")
        elif isinstance(s, CFor):
            parts = [self.expr(p) if p is not None else "" for p in (s.init, s.cond, s.step)]
            self._emit(f"for ({parts[0]}; {parts[1]}; {parts[2]}) {{")
            self._body(s.body)
            self._emit("}")
        elif isinstance(s, CRangeFor):
            self._emit(f"for ({s.decl} : {self.expr(s.iterable)}) {{")
            self._body(s.body)
            self._emit("}")
        elif isinstance(s, CSwitch):
            self._emit(f"switch ({self.expr(s.subject)}) {{")
            self._depth += 1
            for case in s.cases:
                if case.labels:
                    for label in case.labels[:-1]:
                        self._emit(f"case {label}:")
                    self._emit(f"case {case.labels[-1]}: {{")
                else:
                    self._emit("default: {")
                self._body(case.body)
                self._emit("}")
            self._depth -= 1
            self._emit("}")
        elif isinstance(s, CBreak):
            self._emit("break;")
        elif isinstance(s, CContinue):
            self._emit("continue;")
        elif isinstance(s, CGoto):
            self._emit(f"goto {s.label};")
        elif isinstance(s, CLabel):
            self._emit(f"{s.label}:;")
        elif isinstance(s, CRaw):
            self._lines.append(s.text if s.text.startswith("#") else f"{self.INDENT * self._depth}{s.text}")
        elif isinstance(s, CExtern):
            self._emit(f"extern {s.type} {s.name};")
        elif isinstance(s, CFunction):
            self._function(s)
        elif isinstance(s, CField):
            if s.init is None:
                self._emit(f"{s.type} {s.name}{{}};")
            else:
                self._emit(f"{s.type} {s.name} = {self.expr(s.init)};")
        elif isinstance(s, CStruct):
            if s.forward:
                self._emit(f"struct {s.name};")
                return
            self._emit(f"struct {s.name} {{")
            self._body(s.members)
            self._emit("};")
        elif isinstance(s, CNamespace):
            self._emit(f"namespace {s.name} {{")
            for item in s.body:
                self._stmt(item)
            self._emit(f"}}  // namespace {s.name}")
        else:
            raise TypeError(f"cannot render {type(s).__name__}")

    def _if(self, s: CIf, keyword: str) -> None:
        self._emit(f"{keyword} ({self.expr(s.cond)}) {{")
        self._body(s.then)
        if isinstance(s.orelse, CIf):
            self._emit_else_if(s.orelse)
            return
        if s.orelse:
            self._emit("} else {")
            self._body(s.orelse)
        self._emit("}")

    def _emit_else_if(self, s: CIf) -> None:
        self._emit(f"}} else if ({self.expr(s.cond)}) {{")
        self._body(s.then)
        if isinstance(s.orelse, CIf):
            self._emit_else_if(s.orelse)
            return
        if s.orelse:
            self._emit("} else {")
            self._body(s.orelse)
        self._emit("}")

    def _function(self, f: CFunction) -> None:
        prefix = f"{f.prefix} " if f.prefix else ""
        params = ", ".join(f"{p.type} {p.name}" for p in f.params)
        head = f"{prefix}{f.return_type} {f.name}({params})"
        if f.body is None:
            self._emit(f"{head};")
            return
        self._emit(f"{head} {{")
        self._body(f.body)
        self._emit("}")


def render(unit: CUnit) -> str:
    return CppRenderer().render(unit)
