"""csafe Pass 2 — Lower.

Checked AST → C++ target AST → C++17 text.

Lowering trusts the resolver: every reference has a symbol, every call a
positional plan, every match a strategy. A missing side-table entry means
the two passes disagree and raises ``InternalLoweringError``; it is never
patched over. The output is a pure function of the ``Resolution``, so the
same unit always lowers to the same bytes.

Type mapping:
    int → std::int64_t, float → double, string → std::string, bool → bool
    safe<T> → std::unique_ptr<T>, shared<T> → std::shared_ptr<T>
    Result<S, E> → csafe::Result<S, E>, coroutine<T> → csafe::Generator<T>
    seq<T> → std::vector<T>, task<T> → std::future<T>, thread → csafe::Thread
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from csafe.ast_nodes import (
    FuncDecl, ClassDecl, TestDecl, Statement, Block, VarDecl, AssignStmt, ExprStmt,
    ReturnStmt, YieldStmt, IfStmt, WhileStmt, ForStmt, MatchStmt, AssertStmt, BreakStmt,
    ContinueStmt, Expr, IntLiteral, FloatLiteral, StringLiteral, BoolLiteral, Identifier,
    BinaryOp, UnaryOp, DerefExpr, AwaitExpr, Call, MemberAccess, IndexExpr, SliceExpr,
    RangeExpr, ListLiteral, WrapExpr, ResultExpr, SpawnExpr, LiteralPattern, MatchArm,
)
from csafe.coroutines import CoroutineFrame
from csafe.cpp_ast import (
    CExpr, CName, CLit, CCall, CBraceInit, CBinary, CUnary, CMember, CLambda,
    CStmt, CExprStmt, CDecl, CAssign, CReturn, CBlock, CIf, CWhile, CFor, CRangeFor,
    CCase, CSwitch, CBreak, CContinue, CGoto, CLabel, CRaw, CExtern, CParam, CFunction,
    CField, CStruct, CNamespace, CUnit, render,
)
from csafe.errors import InternalLoweringError, Span
from csafe.pass1_resolve import ArmInfo, FunctionInfo, MatchInfo, Resolution, _terminates
from csafe.runtime import HARNESS_MACRO, HEADER_NAME, PRELUDE, harness_main
from csafe.symbols import ClassInfo, Symbol, SymbolKind
from csafe.types import (
    CsafeType, PrimitiveType, OwnedType, ResultType, CoroutineType, SequenceType,
    TaskType, ThreadType, FunctionType, ClassType,
    INT, FLOAT, STRING, BOOL, VOID, is_move_only,
)

logger = logging.getLogger(__name__)

PRELUDE_MODES = ("inline", "include")

CPP_KEYWORDS = frozenset("""
    alignas alignof and and_eq asm auto bitand bitor bool break case catch char char8_t
    char16_t char32_t class compl concept const consteval constexpr constinit const_cast
    continue co_await co_return co_yield decltype default delete do double dynamic_cast
    else enum explicit export extern false float for friend goto if inline int long
    mutable namespace new noexcept not not_eq nullptr operator or or_eq private
    protected public register reinterpret_cast requires return short signed sizeof
    static static_assert static_cast struct switch template this thread_local throw
    true try typedef typeid typename union unsigned using virtual void volatile
    wchar_t while xor xor_eq std csafe
""".split())

_PRIMITIVES = {
    "int": "std::int64_t",
    "float": "double",
    "string": "std::string",
    "bool": "bool",
    "void": "void",
}

_STRING_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\t": "\\t", "\r": "\\r"}


# ---------------------------------------------------------------------------
# Names, types and literals
# ---------------------------------------------------------------------------

def cpp_name(name: str) -> str:
    """Dialect identifier → C++ identifier that cannot clash with keywords or generated names."""
    if name in CPP_KEYWORDS or name.startswith("csafe_") or name.startswith("_"):
        return f"{name}_"
    return name


def cpp_type(t: CsafeType, home: str = "") -> str:
    """C++ spelling of ``t`` as seen from inside namespace ``home``."""
    if isinstance(t, PrimitiveType):
        return _PRIMITIVES[t.name]
    if isinstance(t, OwnedType):
        pointer = "std::shared_ptr" if t.shared else "std::unique_ptr"
        return f"{pointer}<{cpp_type(t.inner, home)}>"
    if isinstance(t, ResultType):
        return f"csafe::Result<{cpp_type(t.ok, home)}, {cpp_type(t.err, home)}>"
    if isinstance(t, CoroutineType):
        return f"csafe::Generator<{cpp_type(t.elem, home)}>"
    if isinstance(t, SequenceType):
        return f"std::vector<{cpp_type(t.elem, home)}>"
    if isinstance(t, TaskType):
        return f"std::future<{cpp_type(t.result, home)}>"
    if isinstance(t, ThreadType):
        return "csafe::Thread"
    if isinstance(t, ClassType):
        if t.module and t.module != home:
            return f"{cpp_name(t.module)}::{cpp_name(t.name)}"
        return cpp_name(t.name)
    raise InternalLoweringError(f"type '{t}' has no C++ representation")


def int_literal(value: int) -> str:
    if value == -2 ** 63:
        return "(-9223372036854775807LL - 1)"
    text = str(value)
    if not -2 ** 31 <= value < 2 ** 31:
        text += "LL"
    return text


def float_literal(value: float) -> str:
    text = repr(value)
    if "." not in text and "e" not in text:
        text += ".0"
    return text


def string_literal(value: str) -> str:
    out = []
    for ch in value:
        if ch in _STRING_ESCAPES:
            out.append(_STRING_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\{ord(ch):03o}")
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


def _std_move(e: CExpr) -> CExpr:
    return CCall(CName("std::move"), (e,))


def _runtime(name: str, *args: CExpr) -> CCall:
    return CCall(CName(f"csafe::{name}"), tuple(args))


def _where(span: Optional[Span]) -> CLit:
    return CLit(string_literal(str(span) if span else "<unknown>"))


@dataclass
class _Loop:
    """A loop being lowered; ``label`` is set once a ``break`` must jump out of a switch."""
    label: str = ""
    switch_depth: int = 0


# ---------------------------------------------------------------------------
# Lowerer
# ---------------------------------------------------------------------------

class Lowerer:
    """Lowers one resolved unit to a ``CUnit``."""

    def __init__(self, res: Resolution, test_harness: bool = False, prelude: str = "inline"):
        if prelude not in PRELUDE_MODES:
            raise ValueError(f"prelude must be one of {PRELUDE_MODES}, got {prelude!r}")
        self.res = res
        self.home = res.module_name
        self.test_harness = test_harness
        self.prelude = prelude
        self.frame: Optional[CoroutineFrame] = None
        self._loops: list[_Loop] = []
        self._counter = 0
        self._tests = 0
        self._in_function = False
        self._void_main = False
        self._return_type: CsafeType = VOID
        self._yield_type: Optional[CsafeType] = None

    # -------------------------------------------------------------------
    # Unit
    # -------------------------------------------------------------------

    def lower(self) -> CUnit:
        if self.res.diagnostics.has_errors:
            raise InternalLoweringError("lowering requested for a unit with errors")
        program = self.res.program
        items: list[CStmt] = [CRaw(f"// Generated by csafe from {program.filename}. Do not edit.")]
        if self.prelude == "inline":
            items.append(CRaw(PRELUDE.rstrip("\n")))
        else:
            items.append(CRaw(f'#include "{HEADER_NAME}"'))
        items.append(CRaw(""))

        items.extend(self._foreign_declarations())
        body = self._unit_body()
        if self.home:
            items.append(CNamespace(cpp_name(self.home), tuple(body)))
        else:
            items.extend(body)
        if self.test_harness:
            items.append(CRaw(""))
            items.append(CRaw(harness_main().rstrip("\n")))
        logger.debug("lowered %s", program.filename)
        return CUnit(tuple(items))

    def _unit_body(self) -> list[CStmt]:
        program = self.res.program
        body: list[CStmt] = []

        own = [(self.home, name) for name in self.res.class_order]
        if own:
            for _, name in own:
                body.append(CStruct(cpp_name(name), forward=True))
            for key in self._struct_order(own):
                body.append(CRaw(""))
                body.append(self._struct(self.res.classes[key[1]], self.home))
            body.append(CRaw(""))

        functions = [d for d in program.declarations if isinstance(d, FuncDecl)]
        prototypes = [self._prototype(f) for f in functions
                      if not (f.name == "main" and not self.home)]
        if prototypes:
            body.extend(prototypes)
            body.append(CRaw(""))

        globals_ = [d for d in program.declarations if isinstance(d, VarDecl)]
        if globals_:
            body.extend(self._global(g) for g in globals_)
            body.append(CRaw(""))

        for decl in program.declarations:
            if isinstance(decl, FuncDecl):
                lowered = self._function(decl)
                if decl.name == "main" and not self.home and self.test_harness:
                    lowered = [CRaw(f"#ifndef {HARNESS_MACRO}"), *lowered, CRaw("#endif")]
                body.extend(lowered)
                body.append(CRaw(""))
            elif isinstance(decl, ClassDecl):
                if self.res.classes.get(decl.name) is None:
                    raise InternalLoweringError(f"class '{decl.name}' was not registered", decl.span)
                for method in decl.methods:
                    body.extend(self._function(method, class_name=decl.name))
                    body.append(CRaw(""))
            elif isinstance(decl, TestDecl):
                body.append(self._test(decl))
                body.append(CRaw(""))

        while body and body[-1] == CRaw(""):
            body.pop()
        return body

    # -------------------------------------------------------------------
    # Classes
    # -------------------------------------------------------------------

    def _class_info(self, t: ClassType) -> Optional[ClassInfo]:
        if t.module == self.home:
            return self.res.classes.get(t.name)
        return self.res.foreign_classes.get((t.module, t.name))

    def _value_deps(self, t: CsafeType) -> list[tuple[str, str]]:
        """Classes that must be complete before a member of type ``t`` is declared."""
        if isinstance(t, ClassType):
            return [(t.module, t.name)]
        if isinstance(t, ResultType):
            return self._value_deps(t.ok) + self._value_deps(t.err)
        if isinstance(t, SequenceType):
            return self._value_deps(t.elem)
        return []

    def _struct_order(self, keys: list[tuple[str, str]]) -> list[tuple[str, str]]:
        wanted = set(keys)
        order: list[tuple[str, str]] = []
        visiting: set[tuple[str, str]] = set()

        def visit(key: tuple[str, str]) -> None:
            if key in order or key in visiting or key not in wanted:
                return
            visiting.add(key)
            info = self._class_info(ClassType(key[1], key[0]))
            if info is not None:
                for ftype in info.fields.values():
                    for dep in self._value_deps(ftype):
                        visit(dep)
            visiting.discard(key)
            order.append(key)

        for key in keys:
            visit(key)
        return order

    def _struct(self, info: ClassInfo, home: str) -> CStruct:
        members: list[CStmt] = []
        for fname, ftype in info.fields.items():
            default = info.field_defaults.get(fname)
            init = self._expr(default, expected=ftype) if default is not None else None
            members.append(CField(cpp_type(ftype, home), cpp_name(fname), init))
        for mname, mtype in info.methods.items():
            members.append(self._signature(cpp_name(mname), mtype, home))
        return CStruct(cpp_name(info.name), tuple(members))

    # -------------------------------------------------------------------
    # Imports
    # -------------------------------------------------------------------

    def _foreign_declarations(self) -> list[CStmt]:
        items: list[CStmt] = []
        keys = sorted(self.res.foreign_classes)
        modules = sorted({module for module, _ in keys})
        for module in modules:
            forwards = tuple(CStruct(cpp_name(name), forward=True) for m, name in keys if m == module)
            items.append(CNamespace(cpp_name(module), forwards))

        group: list[CStmt] = []
        group_module = None
        for module, name in self._struct_order(keys):
            if module != group_module and group:
                items.append(CNamespace(cpp_name(group_module), tuple(group)))
                group = []
            group_module = module
            group.append(self._struct(self.res.foreign_classes[(module, name)], module))
        if group:
            items.append(CNamespace(cpp_name(group_module), tuple(group)))

        for module in sorted(self.res.imports):
            exports = self.res.imports[module]
            decls: list[CStmt] = []
            for name in sorted(exports.symbols):
                exported = exports.symbols[name]
                if exported.kind == SymbolKind.FUNCTION and isinstance(exported.type, FunctionType):
                    decls.append(self._signature(cpp_name(name), exported.type, module))
                elif exported.kind in (SymbolKind.VARIABLE, SymbolKind.CONSTANT):
                    ctype = cpp_type(exported.type, module)
                    if exported.kind == SymbolKind.CONSTANT and not is_move_only(exported.type, self._field_types):
                        ctype = f"const {ctype}"
                    decls.append(CExtern(ctype, cpp_name(name)))
            if decls:
                items.append(CNamespace(cpp_name(module), tuple(decls)))
        if items:
            items.append(CRaw(""))
        return items

    # -------------------------------------------------------------------
    # Declarations
    # -------------------------------------------------------------------

    def _params(self, ftype: FunctionType, home: str) -> tuple[CParam, ...]:
        return tuple(CParam(cpp_type(p.type, home), cpp_name(p.name)) for p in ftype.params)

    def _return_spelling(self, ftype: FunctionType, home: str) -> str:
        if ftype.is_async:
            return cpp_type(TaskType(ftype.return_type), home)
        return cpp_type(ftype.return_type, home)

    def _signature(self, name: str, ftype: FunctionType, home: str) -> CFunction:
        return CFunction(self._return_spelling(ftype, home), name, self._params(ftype, home))

    def _function_info(self, decl: FuncDecl) -> FunctionInfo:
        info = self.res.functions.get(id(decl))
        if info is None:
            raise InternalLoweringError(f"function '{decl.name}' was not checked", decl.span)
        return info

    def _prototype(self, decl: FuncDecl) -> CFunction:
        return self._signature(cpp_name(decl.name), self._function_info(decl).type, self.home)

    def _field_types(self, t: ClassType) -> Optional[Iterable[CsafeType]]:
        info = self._class_info(t)
        return None if info is None else info.fields.values()

    def _declared_const(self, t: CsafeType) -> bool:
        return not is_move_only(t, self._field_types) and not isinstance(t, CoroutineType)

    def _global(self, decl: VarDecl) -> CDecl:
        symbol = self._decl_symbol(decl)
        t = symbol.type
        init = self._expr_as(decl.value, t) if decl.value is not None else None
        prefix = ""
        if decl.is_const and self._declared_const(t):
            prefix = "extern const" if decl.exported else "const"
        return CDecl(cpp_type(t, self.home), cpp_name(decl.name), init, prefix)

    def _begin_function(self, return_type: CsafeType) -> None:
        self._loops = []
        self._counter = 0
        self._in_function = True
        self._void_main = False
        self._return_type = return_type
        self._yield_type = None

    def _end_function(self) -> None:
        self._in_function = False
        self._void_main = False
        self.frame = None

    def _function(self, decl: FuncDecl, class_name: str = "") -> list[CStmt]:
        info = self._function_info(decl)
        ftype = info.type
        self._begin_function(ftype.return_type)
        try:
            if info.is_coroutine:
                return self._coroutine(decl, info)
            if decl.name == "main" and not class_name and not self.home:
                return [self._main(decl, ftype)]
            name = cpp_name(decl.name)
            if class_name:
                name = f"{cpp_name(class_name)}::{name}"
            body = self._block_body(decl.body)
            if ftype.is_async:
                captures = [f"{cpp_name(p.name)} = std::move({cpp_name(p.name)})" for p in ftype.params]
                if class_name:
                    captures.append("this")
                task = CLambda(tuple(captures), tuple(body), mutable=True,
                               return_type=cpp_type(ftype.return_type, self.home))
                body = [CReturn(CCall(CName("std::async"), (CName("std::launch::async"), task)))]
            return [CFunction(self._return_spelling(ftype, self.home), name,
                              self._params(ftype, self.home), tuple(body))]
        finally:
            self._end_function()

    def _main(self, decl: FuncDecl, ftype: FunctionType) -> CFunction:
        self._void_main = ftype.return_type != INT
        body = self._block_body(decl.body)
        if self._void_main and not _terminates(decl.body):
            body.append(CReturn(CLit("0")))
        return CFunction("int", "main", (), tuple(body))

    def _coroutine(self, decl: FuncDecl, info: FunctionInfo) -> list[CStmt]:
        elem = info.coroutine_elem
        frame = CoroutineFrame(cpp_name(decl.name), cpp_type(elem, self.home))
        for param in decl.params:
            symbol = self._decl_symbol(param)
            frame.add_param(symbol, cpp_name(param.name), cpp_type(symbol.type, self.home))
        self.frame = frame
        self._yield_type = elem
        body = self._block_body(decl.body)
        struct = frame.build_struct(body)
        args = []
        for p in info.type.params:
            arg: CExpr = CName(cpp_name(p.name))
            if not isinstance(p.type, PrimitiveType):
                arg = _std_move(arg)
            args.append(arg)
        factory = frame.build_factory(cpp_type(info.type.return_type, self.home),
                                      self._params(info.type, self.home), tuple(args))
        return [struct, CRaw(""), factory]

    def _test(self, decl: TestDecl) -> CDecl:
        self._begin_function(VOID)
        try:
            body = self._block_body(decl.body)
        finally:
            self._end_function()
        name = f"csafe_test_{self._tests}"
        self._tests += 1
        case = CCall(CName("csafe::TestCase"), (CLit(string_literal(decl.name)), CLambda((), tuple(body))))
        return CDecl("csafe::TestCase", name, case, "static const")

    # -------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------

    def _decl_symbol(self, node) -> Symbol:
        symbol = self.res.decls.get(id(node))
        if symbol is None:
            raise InternalLoweringError("declaration has no symbol", node.span)
        return symbol

    def _fresh(self, prefix: str) -> str:
        name = f"csafe_{prefix}{self._counter}"
        self._counter += 1
        return name

    def _block_body(self, block: Block) -> list[CStmt]:
        out: list[CStmt] = []
        for stmt in block.statements:
            out.extend(self._stmt(stmt))
        return out

    def _stmt(self, stmt: Statement) -> list[CStmt]:
        if isinstance(stmt, VarDecl):
            return self._var_decl(stmt)
        if isinstance(stmt, AssignStmt):
            target_type = self.res.type_of(stmt.target)
            return [CAssign(self._target(stmt.target), self._expr_as(stmt.value, target_type))]
        if isinstance(stmt, ExprStmt):
            return self._expr_stmt(stmt)
        if isinstance(stmt, ReturnStmt):
            return self._return(stmt)
        if isinstance(stmt, YieldStmt):
            if self.frame is None:
                raise InternalLoweringError("'yield' outside a coroutine", stmt.span)
            return self.frame.yield_value(self._expr_as(stmt.value, self._yield_type))
        if isinstance(stmt, IfStmt):
            return [self._if(stmt)]
        if isinstance(stmt, WhileStmt):
            return self._while(stmt)
        if isinstance(stmt, ForStmt):
            return self._for(stmt)
        if isinstance(stmt, MatchStmt):
            return self._match(stmt)
        if isinstance(stmt, AssertStmt):
            message = CLit(string_literal(stmt.message)) if stmt.message is not None else CName("nullptr")
            check = _runtime("check", self._expr(stmt.condition), message, _where(stmt.span))
            return [CExprStmt(check)]
        if isinstance(stmt, BreakStmt):
            return [self._break(stmt)]
        if isinstance(stmt, ContinueStmt):
            return [CContinue()]
        if isinstance(stmt, Block):
            body = self._block_body(stmt)
            return body if self.frame is not None else [CBlock(tuple(body))]
        raise InternalLoweringError(f"cannot lower {type(stmt).__name__}", stmt.span)

    def _var_decl(self, stmt: VarDecl) -> list[CStmt]:
        symbol = self._decl_symbol(stmt)
        t = symbol.type
        ctype = cpp_type(t, self.home)
        if self.frame is not None:
            member = self.frame.hoist(symbol, cpp_name(stmt.name), ctype)
            value = self._expr_as(stmt.value, t) if stmt.value is not None else CBraceInit(ctype, ())
            return [CAssign(CName(member), value)]
        init = self._expr_as(stmt.value, t) if stmt.value is not None else None
        prefix = "const" if stmt.is_const and self._declared_const(t) else ""
        return [CDecl(ctype, cpp_name(stmt.name), init, prefix)]

    def _expr_stmt(self, stmt: ExprStmt) -> list[CStmt]:
        expr = stmt.expr
        if isinstance(expr, SpawnExpr) and id(expr) in self.res.discarded_spawns:
            return [CExprStmt(CCall(CMember(self._spawn(expr), "detach"), ()))]
        return [CExprStmt(self._expr(expr))]

    def _return(self, stmt: ReturnStmt) -> list[CStmt]:
        if self.frame is not None:
            return self.frame.finish()
        if stmt.value is None:
            return [CReturn(CLit("0") if self._void_main else None)]
        return [CReturn(self._expr_as(stmt.value, self._return_type))]

    def _if(self, stmt: IfStmt) -> CIf:
        cond = self._expr(stmt.condition)
        then = tuple(self._block_body(stmt.then_body))
        orelse = None
        if isinstance(stmt.else_body, IfStmt):
            orelse = self._if(stmt.else_body)
        elif isinstance(stmt.else_body, Block):
            orelse = tuple(self._block_body(stmt.else_body))
        return CIf(cond, then, orelse)

    def _enter_loop(self) -> _Loop:
        loop = _Loop()
        self._loops.append(loop)
        return loop

    def _exit_loop(self, loop: _Loop, out: list[CStmt]) -> list[CStmt]:
        self._loops.pop()
        if loop.label:
            out.append(CLabel(loop.label))
        return out

    def _break(self, stmt: BreakStmt) -> CStmt:
        if not self._loops:
            raise InternalLoweringError("'break' outside a loop", stmt.span)
        loop = self._loops[-1]
        if loop.switch_depth == 0:
            return CBreak()
        # a plain break would only leave the enclosing switch
        if not loop.label:
            loop.label = self._fresh("break")
        return CGoto(loop.label)

    def _while(self, stmt: WhileStmt) -> list[CStmt]:
        cond = self._expr(stmt.condition)
        loop = self._enter_loop()
        body = self._block_body(stmt.body)
        return self._exit_loop(loop, [CWhile(cond, tuple(body))])

    def _for(self, stmt: ForStmt) -> list[CStmt]:
        symbol = self._decl_symbol(stmt)
        iter_type = self.res.type_of(stmt.iterable)
        iterable = self._expr(stmt.iterable)
        elem = cpp_type(symbol.type, self.home)

        if self.frame is None:
            if iter_type == STRING:
                iterable = _runtime("chars", iterable)
            loop = self._enter_loop()
            body = self._block_body(stmt.body)
            decl = f"const {elem}& {cpp_name(stmt.var_name)}"
            return self._exit_loop(loop, [CRangeFor(decl, iterable, tuple(body))])

        var = CName(self.frame.hoist(symbol, cpp_name(stmt.var_name), elem))
        if isinstance(iter_type, CoroutineType):
            gen = CName(self.frame.temp("gen", cpp_type(iter_type, self.home)))
            loop = self._enter_loop()
            body = self._block_body(stmt.body)
            step = CCall(CMember(gen, "next"), (var,))
            return self._exit_loop(loop, [CAssign(gen, iterable), CWhile(step, tuple(body))])

        seq = CName(self.frame.temp("seq", cpp_type(iter_type, self.home)))
        index = CName(self.frame.temp("i", "std::int64_t"))
        loop = self._enter_loop()
        body = [CAssign(var, _runtime("at", seq, index)), *self._block_body(stmt.body)]
        counted = CFor(CBinary("=", index, CLit("0")),
                       CBinary("<", index, _runtime("len", seq)),
                       CUnary("++", index), tuple(body))
        return self._exit_loop(loop, [CAssign(seq, iterable), counted])

    # -------------------------------------------------------------------
    # Match
    # -------------------------------------------------------------------

    def _match(self, stmt: MatchStmt) -> list[CStmt]:
        info = self.res.matches.get(id(stmt))
        if info is None or len(info.arms) != len(stmt.arms):
            raise InternalLoweringError("match was not classified", stmt.span)
        subject_value = self._expr(stmt.subject)
        if self.frame is not None:
            subject = CName(self.frame.temp("m", cpp_type(info.subject_type, self.home)))
            head: list[CStmt] = [CAssign(subject, subject_value)]
        else:
            subject = CName(self._fresh("m"))
            head = [CDecl("auto&&", subject.name, subject_value)]

        arms = [(arm, ai) for arm, ai in zip(stmt.arms, info.arms) if ai.reachable]
        if info.strategy == "chain":
            lowered = self._match_chain(stmt, info, arms, subject)
        else:
            if self._loops:
                self._loops[-1].switch_depth += 1
            try:
                lowered = self._match_switch(stmt, info, arms, subject)
            finally:
                if self._loops:
                    self._loops[-1].switch_depth -= 1

        if self.frame is not None:
            return [*head, lowered]
        return [CBlock((*head, lowered))]

    def _fallback(self, stmt: MatchStmt, arms: list[tuple[MatchArm, ArmInfo]], subject: CName,
                  in_switch: bool) -> tuple[CStmt, ...]:
        """Body for values no literal/variant arm takes: a binding arm, default_case or a trap."""
        for arm, ai in arms:
            if ai.tag == "bind":
                return self._arm_body(arm, ai, subject, in_switch)
        if stmt.default is not None:
            body = self._block_body(stmt.default)
            if in_switch and not _terminates(stmt.default):
                body.append(CBreak())
            return tuple(body)
        return (CExprStmt(_runtime("unreachable", _where(stmt.span))),)

    def _arm_body(self, arm: MatchArm, ai: ArmInfo, subject: CName, in_switch: bool) -> tuple[CStmt, ...]:
        out: list[CStmt] = []
        if ai.binding is not None:
            if ai.tag in ("ok", "err"):
                value: CExpr = CMember(CCall(CName(f"std::get<{ai.index}>"), (subject,)), "value")
            else:
                value = subject
            if self.frame is not None:
                member = self.frame.hoist(ai.binding, cpp_name(ai.binding.name),
                                          cpp_type(ai.binding.type, self.home))
                out.append(CAssign(CName(member), _std_move(value)))
            else:
                out.append(CDecl("auto&", cpp_name(ai.binding.name), value))
        out.extend(self._block_body(arm.body))
        if in_switch and not _terminates(arm.body):
            out.append(CBreak())
        return tuple(out)

    def _match_switch(self, stmt: MatchStmt, info: MatchInfo, arms: list[tuple[MatchArm, ArmInfo]],
                      subject: CName) -> CSwitch:
        cases: list[CCase] = []
        for arm, ai in arms:
            if ai.tag == "bind":
                break
            if ai.tag in ("ok", "err"):
                label = str(ai.index)
            else:
                label = self._case_label(arm)
            cases.append(CCase((label,), self._arm_body(arm, ai, subject, True)))
        cases.append(CCase((), self._fallback(stmt, arms, subject, True)))
        selector: CExpr = CCall(CMember(subject, "index"), ()) if info.strategy == "variant" else subject
        return CSwitch(selector, tuple(cases))

    def _case_label(self, arm: MatchArm) -> str:
        pattern = arm.pattern
        if not isinstance(pattern, LiteralPattern):
            raise InternalLoweringError("switch arm without a literal pattern", arm.span)
        value = pattern.value
        if isinstance(value, BoolLiteral):
            return "true" if value.value else "false"
        if isinstance(value, IntLiteral):
            return int_literal(value.value)
        raise InternalLoweringError("switch label must be an int or bool literal", arm.span)

    def _match_chain(self, stmt: MatchStmt, info: MatchInfo, arms: list[tuple[MatchArm, ArmInfo]],
                     subject: CName) -> CStmt:
        tests: list[tuple[CExpr, tuple[CStmt, ...]]] = []
        for arm, ai in arms:
            if ai.tag == "bind":
                break
            if not isinstance(arm.pattern, LiteralPattern):
                raise InternalLoweringError("chain arm without a literal pattern", arm.span)
            literal = self._expr_as(arm.pattern.value, info.subject_type)
            tests.append((CBinary("==", subject, literal), self._arm_body(arm, ai, subject, False)))
        fallback = self._fallback(stmt, arms, subject, False)
        if not tests:
            return CBlock(fallback)
        chain: Optional[CIf] = None
        for cond, body in reversed(tests):
            chain = CIf(cond, body, chain if chain is not None else fallback)
        return chain

    # -------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------

    def _expr_as(self, expr: Expr, target: Optional[CsafeType]) -> CExpr:
        """Lower ``expr`` where a value of ``target`` is expected; int widens explicitly to float."""
        lowered = self._expr(expr, expected=target)
        if target == FLOAT and self.res.type_of(expr) == INT:
            return CCall(CName("static_cast<double>"), (lowered,))
        return lowered

    def _name_of(self, symbol: Symbol) -> str:
        if self.frame is not None:
            member = self.frame.name_of(symbol)
            if member is not None:
                return member
        if symbol.origin and symbol.kind != SymbolKind.MODULE:
            return f"{cpp_name(symbol.origin)}::{cpp_name(symbol.name)}"
        return cpp_name(symbol.name)

    def _target(self, expr: Expr) -> CExpr:
        if isinstance(expr, Identifier):
            symbol = self.res.refs.get(id(expr))
            if symbol is None:
                raise InternalLoweringError(f"unresolved name '{expr.name}'", expr.span)
            return CName(self._name_of(symbol))
        return self._expr(expr)

    def _expr(self, expr: Expr, expected: Optional[CsafeType] = None) -> CExpr:
        if isinstance(expr, IntLiteral):
            return CLit(int_literal(expr.value))
        if isinstance(expr, FloatLiteral):
            return CLit(float_literal(expr.value))
        if isinstance(expr, StringLiteral):
            return CCall(CName("std::string"), (CLit(string_literal(expr.value)),))
        if isinstance(expr, BoolLiteral):
            return CLit("true" if expr.value else "false")
        if isinstance(expr, Identifier):
            name = self._target(expr)
            return _std_move(name) if id(expr) in self.res.moves else name
        if isinstance(expr, BinaryOp):
            return CBinary(expr.op, self._expr(expr.left), self._expr(expr.right))
        if isinstance(expr, UnaryOp):
            return CUnary(expr.op, self._expr(expr.operand))
        if isinstance(expr, DerefExpr):
            return CUnary("*", self._expr(expr.operand))
        if isinstance(expr, AwaitExpr):
            return CCall(CMember(self._expr(expr.operand), "get"), ())
        if isinstance(expr, Call):
            return self._call(expr)
        if isinstance(expr, MemberAccess):
            return self._member(expr)
        if isinstance(expr, IndexExpr):
            return _runtime("at", self._expr(expr.obj), self._expr(expr.index))
        if isinstance(expr, SliceExpr):
            args = [self._expr(expr.obj), self._expr(expr.start) if expr.start is not None else CLit("0")]
            if expr.end is not None:
                args.append(self._expr(expr.end))
            return _runtime("slice", *args)
        if isinstance(expr, RangeExpr):
            return _runtime("range", *(self._expr(a) for a in expr.args))
        if isinstance(expr, ListLiteral):
            return self._list(expr, expected)
        if isinstance(expr, WrapExpr):
            return self._wrap(expr)
        if isinstance(expr, ResultExpr):
            return self._result(expr)
        if isinstance(expr, SpawnExpr):
            return self._spawn(expr)
        raise InternalLoweringError(f"cannot lower {type(expr).__name__}", expr.span)

    def _member(self, expr: MemberAccess) -> CExpr:
        member = self.res.members.get(id(expr))
        if member is None:
            raise InternalLoweringError(f"unresolved member '{expr.name}'", expr.span)
        if member.kind == "module":
            return CName(f"{cpp_name(member.module)}::{cpp_name(expr.name)}")
        if member.kind != "field":
            raise InternalLoweringError(f"'{expr.name}' is not a value", expr.span)
        return CMember(self._expr(expr.obj), cpp_name(expr.name), member.through_pointer)

    def _call(self, expr: Call) -> CExpr:
        plan = self.res.calls.get(id(expr))
        if plan is None:
            raise InternalLoweringError("call has no resolved plan", expr.span)
        if plan.kind == "builtin":
            return _runtime(plan.callee, *(self._expr(a) for a in plan.args))
        if plan.kind == "join":
            callee = expr.callee
            member = self.res.members.get(id(callee))
            if not isinstance(callee, MemberAccess) or member is None:
                raise InternalLoweringError("'join' without a thread", expr.span)
            return CCall(CMember(self._expr(callee.obj), "join", member.through_pointer), ())

        if plan.func_type is None or len(plan.args) != len(plan.func_type.params):
            raise InternalLoweringError(f"call plan for '{plan.callee}' does not match its signature",
                                        expr.span)
        args = tuple(self._expr_as(a, p.type) for a, p in zip(plan.args, plan.func_type.params))
        if plan.kind == "constructor":
            return CBraceInit(cpp_type(plan.class_type, self.home), args)
        if plan.kind == "method":
            if isinstance(expr.callee, MemberAccess):
                member = self.res.members.get(id(expr.callee))
                if member is None:
                    raise InternalLoweringError(f"unresolved method '{plan.callee}'", expr.span)
                obj = self._expr(expr.callee.obj)
                return CCall(CMember(obj, cpp_name(plan.callee), member.through_pointer), args)
            return CCall(CName(cpp_name(plan.callee)), args)
        name = cpp_name(plan.callee)
        if plan.module:
            name = f"{cpp_name(plan.module)}::{name}"
        return CCall(CName(name), args)

    def _list(self, expr: ListLiteral, expected: Optional[CsafeType]) -> CExpr:
        t = self.res.type_of(expr)
        if not isinstance(t, SequenceType):
            t = expected
        if not isinstance(t, SequenceType):
            raise InternalLoweringError("list literal without a sequence type", expr.span)
        if not expr.elements:
            return CBraceInit(cpp_type(t, self.home), ())
        elems = tuple(self._expr_as(e, t.elem) for e in expr.elements)
        return CCall(CName(f"csafe::seq_of<{cpp_type(t.elem, self.home)}>"), elems)

    def _wrap(self, expr: WrapExpr) -> CExpr:
        t = self.res.type_of(expr)
        if not isinstance(t, OwnedType):
            raise InternalLoweringError(f"{expr.kind}<...> without an ownership type", expr.span)
        maker = "std::make_shared" if t.shared else "std::make_unique"
        args = (self._expr_as(expr.value, t.inner),) if expr.value is not None else ()
        return CCall(CName(f"{maker}<{cpp_type(t.inner, self.home)}>"), args)

    def _result(self, expr: ResultExpr) -> CExpr:
        t = self.res.type_of(expr)
        if not isinstance(t, ResultType):
            raise InternalLoweringError(f"'{expr.variant}' without a Result type", expr.span)
        if expr.variant == "ok":
            payload_type, tag = t.ok, "Ok"
        else:
            payload_type, tag = t.err, "Err"
        payload = CBraceInit(f"csafe::{tag}<{cpp_type(payload_type, self.home)}>",
                             (self._expr_as(expr.value, payload_type),))
        return CCall(CName(cpp_type(t, self.home)), (payload,))

    def _spawn(self, expr: SpawnExpr) -> CExpr:
        moved = self.res.spawn_captures.get(id(expr))
        if moved is None:
            raise InternalLoweringError("spawn was not checked", expr.span)
        captures = ["="] if self._in_function else []
        for symbol in moved:
            name = self._name_of(symbol)
            captures.append(f"{name} = std::move({name})")
        saved = self._loops
        self._loops = []
        try:
            body = self._block_body(expr.body)
        finally:
            self._loops = saved
        return _runtime("spawn", CLambda(tuple(captures), tuple(body), mutable=True))


def lower(res: Resolution, test_harness: bool = False, prelude: str = "inline") -> CUnit:
    """Lower a resolved, error-free unit to the C++ target AST."""
    return Lowerer(res, test_harness=test_harness, prelude=prelude).lower()


def lower_to_cpp(res: Resolution, test_harness: bool = False, prelude: str = "inline") -> str:
    return render(lower(res, test_harness=test_harness, prelude=prelude))
