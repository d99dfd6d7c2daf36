"""csafe Pass 1 — Resolve.

Name resolution + type checking + ownership checking + match exhaustiveness.
Runs in two phases over one compilation unit: the register phase declares
imports, classes, function signatures and globals so bodies may refer to
them in any order; the check phase walks every body.

Nothing is rewritten. Everything lowering needs is recorded in side tables
of the returned ``Resolution``, keyed by ``id(node)``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

from csafe.ast_nodes import (
    Program, FuncDecl, ClassDecl, TestDecl, ModuleDecl, ImportDecl,
    Statement, Block, VarDecl, AssignStmt, ExprStmt, ReturnStmt, YieldStmt, IfStmt,
    WhileStmt, ForStmt, MatchStmt, AssertStmt, BreakStmt, ContinueStmt,
    Expr, IntLiteral, FloatLiteral, StringLiteral, BoolLiteral, Identifier, BinaryOp,
    UnaryOp, DerefExpr, AwaitExpr, NamedArg, Call, MemberAccess, IndexExpr, SliceExpr,
    RangeExpr, ListLiteral, WrapExpr, ResultExpr, SpawnExpr,
    LiteralPattern, TypePattern, VariantPattern, MatchArm, Node,
)
from csafe.constraints import Binding, ConstraintChecker
from csafe.errors import Diagnostics, Span
from csafe.modules import ExportedSymbol, ModuleExports, ModuleIndex
from csafe.ownership import OwnershipChecker
from csafe.symbols import ClassInfo, Scope, Symbol, SymbolKind
from csafe.types import (
    CsafeType, PrimitiveType, OwnedType, ResultType, CoroutineType, SequenceType,
    TaskType, ThreadType, FunctionType, ClassType, ModuleType, ParamInfo,
    INT, FLOAT, STRING, BOOL, VOID, UNKNOWN, THREAD,
    is_move_only, is_unknown, is_numeric, numeric_join, resolve_type_annotation,
)

logger = logging.getLogger(__name__)

RESERVED_NAMES = frozenset({"range"})
PRINTABLE = (INT, FLOAT, STRING, BOOL)
_PLACE_NAMES = {IndexExpr: "sequence element", MemberAccess: "field", DerefExpr: "dereference"}
INT_MIN, INT_MAX = -2 ** 63, 2 ** 63 - 1


# ---------------------------------------------------------------------------
# Resolution results
# ---------------------------------------------------------------------------

@dataclass
class CallPlan:
    """A call with its arguments in declared parameter order, defaults filled in."""
    kind: str  # "function", "constructor", "method", "builtin", "join"
    callee: str
    args: tuple[Expr, ...] = ()
    func_type: Optional[FunctionType] = None
    module: str = ""
    class_type: Optional[ClassType] = None


@dataclass
class ArmInfo:
    tag: str  # "ok", "err", "literal" or "bind"
    index: Optional[int] = None
    binding: Optional[Symbol] = None
    reachable: bool = True


@dataclass
class MatchInfo:
    subject_type: CsafeType
    strategy: str  # "variant", "switch" or "chain"
    arms: list[ArmInfo] = field(default_factory=list)
    exhaustive: bool = False


@dataclass
class MemberInfo:
    kind: str  # "module", "field", "method" or "join"
    through_pointer: bool = False
    module: str = ""
    symbol: Optional[Symbol] = None
    class_type: Optional[ClassType] = None


@dataclass
class FunctionInfo:
    name: str
    type: FunctionType
    is_coroutine: bool = False
    coroutine_elem: Optional[CsafeType] = None
    class_name: str = ""


class Resolution:
    """Symbol tables and side tables for one checked unit."""

    def __init__(self, program: Program, diagnostics: Diagnostics):
        self.program = program
        self.diagnostics = diagnostics
        self.module_name = ""
        self.types: dict[int, CsafeType] = {}
        self.refs: dict[int, Symbol] = {}
        self.decls: dict[int, Symbol] = {}
        self.calls: dict[int, CallPlan] = {}
        self.matches: dict[int, MatchInfo] = {}
        self.members: dict[int, MemberInfo] = {}
        self.moves: set[int] = set()
        self.functions: dict[int, FunctionInfo] = {}
        self.classes: dict[str, ClassInfo] = {}
        self.class_order: list[str] = []
        self.imports: dict[str, ModuleExports] = {}
        self.foreign_classes: dict[tuple[str, str], ClassInfo] = {}
        self.spawn_captures: dict[int, list[Symbol]] = {}
        self.discarded_spawns: set[int] = set()
        self.exports: Optional[ModuleExports] = None

    def type_of(self, node: Node) -> CsafeType:
        return self.types.get(id(node), UNKNOWN)

    def symbol_of(self, node: Node) -> Optional[Symbol]:
        return self.refs.get(id(node)) or self.decls.get(id(node))


@dataclass
class _Context:
    """The innermost function-like body being checked."""
    kind: str  # "function", "method", "test", "spawn", "global"
    name: str = ""
    return_type: CsafeType = VOID
    coroutine_elem: Optional[CsafeType] = None
    is_async: bool = False
    loop_depth: int = 0
    defined: set = field(default_factory=set)
    captures: list = field(default_factory=list)
    result_locals: list = field(default_factory=list)
    break_states: list = field(default_factory=list)


def is_constant_expr(expr: Expr) -> bool:
    """Literals and operators over literals; allowed as parameter/field defaults."""
    if isinstance(expr, (IntLiteral, FloatLiteral, StringLiteral, BoolLiteral)):
        return True
    if isinstance(expr, UnaryOp):
        return is_constant_expr(expr.operand)
    if isinstance(expr, BinaryOp):
        return is_constant_expr(expr.left) and is_constant_expr(expr.right)
    if isinstance(expr, ListLiteral):
        return all(is_constant_expr(e) for e in expr.elements)
    return False


def _terminates(stmt: Statement) -> bool:
    """True if control never falls through ``stmt``."""
    if isinstance(stmt, (ReturnStmt, BreakStmt, ContinueStmt)):
        return True
    if isinstance(stmt, Block):
        return bool(stmt.statements) and _terminates(stmt.statements[-1])
    if isinstance(stmt, IfStmt):
        return stmt.else_body is not None and _terminates(stmt.then_body) and _terminates(stmt.else_body)
    return False


def _always_returns(stmt: Statement, matches: dict[int, MatchInfo]) -> bool:
    if isinstance(stmt, ReturnStmt):
        return True
    if isinstance(stmt, Block):
        return any(_always_returns(s, matches) for s in stmt.statements)
    if isinstance(stmt, IfStmt):
        return (stmt.else_body is not None and _always_returns(stmt.then_body, matches)
                and _always_returns(stmt.else_body, matches))
    if isinstance(stmt, WhileStmt):
        return (isinstance(stmt.condition, BoolLiteral) and stmt.condition.value
                and not any(isinstance(s, BreakStmt) for s in _loop_level_statements(stmt.body)))
    if isinstance(stmt, MatchStmt):
        info = matches.get(id(stmt))
        if stmt.default is not None:
            covered = _always_returns(stmt.default, matches)
        else:
            covered = info is not None and info.exhaustive
        return covered and all(_always_returns(arm.body, matches) for arm in stmt.arms)
    return False


def _loop_level_statements(block: Block):
    """Statements of a loop body, not descending into nested loops."""
    for stmt in block.statements:
        yield stmt
        if isinstance(stmt, Block):
            yield from _loop_level_statements(stmt)
        elif isinstance(stmt, IfStmt):
            yield from _loop_level_statements(stmt.then_body)
            if isinstance(stmt.else_body, Block):
                yield from _loop_level_statements(stmt.else_body)
            elif isinstance(stmt.else_body, IfStmt):
                yield from _loop_level_statements(Block(statements=(stmt.else_body,)))
        elif isinstance(stmt, MatchStmt):
            for arm in stmt.arms:
                yield from _loop_level_statements(arm.body)
            if stmt.default is not None:
                yield from _loop_level_statements(stmt.default)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class Resolver:
    """Resolves names and checks types for one compilation unit."""

    def __init__(self, diagnostics: Diagnostics, index: Optional[ModuleIndex] = None):
        self.diagnostics = diagnostics
        self.index = index if index is not None else ModuleIndex()
        self.ownership = OwnershipChecker(diagnostics)
        self.constraints = ConstraintChecker(self._binding_for)
        self.program_scope = Scope(kind="program")
        self.scope = self.program_scope
        self.contexts: list[_Context] = [_Context(kind="global")]
        self.res: Optional[Resolution] = None
        self._reads: set[Symbol] = set()
        self._register_builtins()

    # -------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------

    def resolve_program(self, program: Program) -> Resolution:
        self.res = Resolution(program, self.diagnostics)
        self.scope = self.program_scope.child("module", program)

        self._register_module(program)
        self._register_imports(program)
        self._register_classes(program)
        self._register_functions(program)
        self._register_globals(program)
        self._check_class_cycles()

        for decl in program.declarations:
            if isinstance(decl, FuncDecl):
                self._check_function(decl)
            elif isinstance(decl, ClassDecl):
                for method in decl.methods:
                    self._check_function(method, class_name=decl.name)
            elif isinstance(decl, TestDecl):
                self._check_test(decl)

        self.res.exports = self._build_exports(program)
        logger.debug("resolved %s: %d diagnostics", program.filename, len(self.diagnostics))
        return self.res

    # -------------------------------------------------------------------
    # Register phase
    # -------------------------------------------------------------------

    def _register_builtins(self) -> None:
        self.program_scope.define(Symbol("print", FunctionType((), VOID), SymbolKind.BUILTIN))
        self.program_scope.define(Symbol("len", FunctionType((ParamInfo("value", UNKNOWN),), INT),
                                         SymbolKind.BUILTIN))

    @property
    def ctx(self) -> _Context:
        return self.contexts[-1]

    def _define(self, name: str, type_: CsafeType, kind: SymbolKind, node: Node,
                mutable: bool = False, exported: bool = False, span: Optional[Span] = None) -> Symbol:
        if name in RESERVED_NAMES:
            self.diagnostics.type_error(f"'{name}' is reserved and cannot be redefined",
                                        span or node.span, name=name)
        existing = self.scope.lookup_local(name)
        if existing is not None:
            self.diagnostics.name_error(name, span or node.span,
                                        f"Name '{name}' is already defined in this scope")
        symbol = Symbol(name, type_, kind, mutable=mutable, node=node, exported=exported,
                        origin="")
        self.scope.define(symbol)
        self.res.decls[id(node)] = symbol
        self.ctx.defined.add(symbol)
        return symbol

    def _resolve_type(self, annotation) -> CsafeType:
        return resolve_type_annotation(annotation, self.diagnostics, self._lookup_class)

    def _lookup_class(self, name: str) -> Optional[CsafeType]:
        info = self.res.classes.get(name)
        if info is not None:
            return ClassType(name, self.res.module_name)
        found = [exports for exports in self.res.imports.values() if name in exports.classes]
        if len(found) > 1:
            modules = ", ".join(sorted(e.name for e in found))
            self.diagnostics.name_error(name, None, f"Class '{name}' is ambiguous between modules {modules}")
        if found:
            return ClassType(name, found[0].name)
        return None

    def _class_info(self, ctype: ClassType) -> Optional[ClassInfo]:
        if ctype.module == self.res.module_name:
            return self.res.classes.get(ctype.name)
        exports = self.res.imports.get(ctype.module) or self.index.get(ctype.module)
        if exports is None:
            return None
        info = exports.classes.get(ctype.name)
        if info is not None:
            self.res.foreign_classes[(ctype.module, ctype.name)] = info
        return info

    def _register_module(self, program: Program) -> None:
        modules = [d for d in program.declarations if isinstance(d, ModuleDecl)]
        if modules:
            self.res.module_name = modules[0].name
            for extra in modules[1:]:
                self.diagnostics.type_error(
                    f"Unit already declares module '{modules[0].name}'", extra.span, module=extra.name)

    def _register_imports(self, program: Program) -> None:
        for decl in program.declarations:
            if not isinstance(decl, ImportDecl):
                continue
            if decl.name == self.res.module_name:
                self.diagnostics.name_error(decl.name, decl.span, f"Module '{decl.name}' cannot import itself")
                continue
            if decl.name in self.res.imports:
                self.diagnostics.warning(f"Module '{decl.name}' is imported more than once", decl.span)
                continue
            exports = self.index.get(decl.name)
            if exports is None:
                self.diagnostics.name_error(decl.name, decl.span, f"Unresolved import '{decl.name}'")
                continue
            self.res.imports[decl.name] = exports
            symbol = self._define(decl.name, ModuleType(decl.name), SymbolKind.MODULE, decl)
            symbol.origin = decl.name
            for exported in exports.symbols.values():
                self._note_foreign_classes(exported.type)

    def _note_foreign_classes(self, t: CsafeType) -> None:
        if isinstance(t, ClassType):
            if (t.module, t.name) not in self.res.foreign_classes and t.module != self.res.module_name:
                info = self._class_info(t)
                if info is not None:
                    for ftype in info.fields.values():
                        self._note_foreign_classes(ftype)
                    for mtype in info.methods.values():
                        self._note_foreign_classes(mtype)
        elif isinstance(t, FunctionType):
            for p in t.params:
                self._note_foreign_classes(p.type)
            self._note_foreign_classes(t.return_type)
        elif isinstance(t, OwnedType):
            self._note_foreign_classes(t.inner)
        elif isinstance(t, ResultType):
            self._note_foreign_classes(t.ok)
            self._note_foreign_classes(t.err)
        elif isinstance(t, (SequenceType, CoroutineType)):
            self._note_foreign_classes(t.elem)
        elif isinstance(t, TaskType):
            self._note_foreign_classes(t.result)

    def _register_classes(self, program: Program) -> None:
        decls = [d for d in program.declarations if isinstance(d, ClassDecl)]
        for decl in decls:
            if decl.name in self.res.classes:
                self.diagnostics.name_error(decl.name, decl.span, f"Class '{decl.name}' is already defined")
                continue
            self.res.classes[decl.name] = ClassInfo(name=decl.name, node=decl, origin=self.res.module_name)
            self._define(decl.name, ClassType(decl.name, self.res.module_name), SymbolKind.CLASS, decl,
                         exported=decl.exported)
        for decl in decls:
            info = self.res.classes[decl.name]
            if info.node is not decl:
                continue
            for fdecl in decl.fields:
                if fdecl.name in info.fields:
                    self.diagnostics.name_error(fdecl.name, fdecl.span,
                                                f"Field '{fdecl.name}' is already defined in class '{decl.name}'")
                    continue
                ftype = self._resolve_type(fdecl.type_annotation)
                if ftype == VOID:
                    self.diagnostics.type_error(f"Field '{fdecl.name}' cannot have type 'void'", fdecl.span)
                info.fields[fdecl.name] = ftype
                if fdecl.default is not None:
                    if self._check_default(fdecl.default, ftype, f"field '{fdecl.name}'"):
                        info.field_defaults[fdecl.name] = fdecl.default
            for method in decl.methods:
                if method.name in info.fields or method.name in info.methods:
                    self.diagnostics.name_error(method.name, method.span,
                                                f"Member '{method.name}' is already defined in class '{decl.name}'")
                    continue
                ftype = self._function_type(method, is_method=True)
                info.methods[method.name] = ftype
                info.method_defaults[method.name] = tuple(p.default for p in method.params)
        self.res.class_order = [d.name for d in decls if self.res.classes.get(d.name) and
                                self.res.classes[d.name].node is d]

    def _check_class_cycles(self) -> None:
        """Classes may not contain themselves by value; also fixes definition order."""
        order: list[str] = []
        state: dict[str, int] = {}

        def visit(name: str, path: list[str]) -> None:
            if state.get(name) == 2:
                return
            if state.get(name) == 1:
                info = self.res.classes[name]
                self.diagnostics.type_error(
                    f"Class '{name}' contains itself by value ({' -> '.join(path + [name])})",
                    info.node.span if info.node else None, class_name=name)
                return
            state[name] = 1
            for ftype in self.res.classes[name].fields.values():
                if (isinstance(ftype, ClassType) and ftype.module == self.res.module_name
                        and ftype.name in self.res.classes):
                    visit(ftype.name, path + [name])
            state[name] = 2
            order.append(name)

        for name in self.res.class_order:
            visit(name, [])
        self.res.class_order = order

    def _check_default(self, default: Expr, expected: CsafeType, what: str) -> bool:
        if not is_constant_expr(default):
            self.diagnostics.type_error(f"Default value of {what} must be a constant expression",
                                        default.span)
            return False
        actual = self._check_expr(default, expected)
        if not expected.is_assignable_from(actual):
            self.diagnostics.type_mismatch(expected, actual, default.span, f"Default value of {what}")
            return False
        return True

    def _function_type(self, func: FuncDecl, is_method: bool = False) -> FunctionType:
        params: list[ParamInfo] = []
        seen: set[str] = set()
        for param in func.params:
            ptype = self._resolve_type(param.type_annotation)
            if param.name in seen:
                self.diagnostics.name_error(param.name, param.span,
                                            f"Duplicate parameter '{param.name}' in '{func.name}'")
            seen.add(param.name)
            if ptype == VOID:
                self.diagnostics.type_error(f"Parameter '{param.name}' cannot have type 'void'", param.span)
            has_default = False
            if param.default is not None:
                has_default = self._check_default(param.default, ptype, f"parameter '{param.name}'")
            elif any(p.has_default for p in params):
                self.diagnostics.type_error(
                    f"Parameter '{param.name}' without a default follows a defaulted parameter",
                    param.span, parameter=param.name)
            params.append(ParamInfo(param.name, ptype, has_default))
        ret = self._resolve_type(func.return_type) if func.return_type else VOID
        if isinstance(ret, CoroutineType) and func.is_async:
            self.diagnostics.type_error(f"Coroutine '{func.name}' cannot be async", func.span)
        if is_method and isinstance(ret, CoroutineType):
            self.diagnostics.type_error(f"Method '{func.name}' cannot be a coroutine", func.span)
        return FunctionType(tuple(params), ret, func.is_async)

    def _register_functions(self, program: Program) -> None:
        for decl in program.declarations:
            if not isinstance(decl, FuncDecl):
                continue
            ftype = self._function_type(decl)
            self._define(decl.name, ftype, SymbolKind.FUNCTION, decl, exported=decl.exported)
            if decl.name == "main":
                self._check_main(decl, ftype)

    def _check_main(self, decl: FuncDecl, ftype: FunctionType) -> None:
        if self.res.module_name:
            self.diagnostics.type_error(
                f"'main' cannot be declared inside module '{self.res.module_name}'", decl.span)
        if ftype.params:
            self.diagnostics.type_error("'main' takes no parameters", decl.span)
        if ftype.is_async or ftype.return_type not in (INT, VOID, UNKNOWN):
            self.diagnostics.type_error("'main' must return 'int' or nothing", decl.span)

    def _register_globals(self, program: Program) -> None:
        for decl in program.declarations:
            if isinstance(decl, VarDecl):
                self._check_var_decl(decl, is_global=True)

    # -------------------------------------------------------------------
    # Exports
    # -------------------------------------------------------------------

    def _build_exports(self, program: Program) -> Optional[ModuleExports]:
        exported = [d for d in program.declarations
                    if isinstance(d, (FuncDecl, ClassDecl, VarDecl)) and d.exported]
        if not self.res.module_name:
            for decl in exported:
                self.diagnostics.type_error(
                    f"'{decl.name}' is exported but the unit declares no module", decl.span)
            return None
        symbols: dict[str, ExportedSymbol] = {}
        classes: dict[str, ClassInfo] = {}
        for decl in exported:
            symbol = self.res.decls.get(id(decl))
            if symbol is None:
                continue
            self._check_exported_signature(decl.name, symbol.type, decl.span)
            defaults: tuple = ()
            if isinstance(decl, FuncDecl):
                defaults = tuple(p.default for p in decl.params)
            symbols[decl.name] = ExportedSymbol(decl.name, symbol.type, symbol.kind, defaults)
            if isinstance(decl, ClassDecl):
                info = self.res.classes[decl.name]
                classes[decl.name] = info
                for ftype in info.fields.values():
                    self._check_exported_signature(decl.name, ftype, decl.span)
                for mtype in info.methods.values():
                    self._check_exported_signature(decl.name, mtype, decl.span)
        return ModuleExports.build(self.res.module_name, program.filename, symbols, classes)

    def _check_exported_signature(self, name: str, t: CsafeType, span: Optional[Span]) -> None:
        if isinstance(t, ClassType):
            if t.module == self.res.module_name and t.name in self.res.classes:
                node = self.res.classes[t.name].node
                if isinstance(node, ClassDecl) and not node.exported:
                    self.diagnostics.type_error(
                        f"Exported '{name}' uses class '{t.name}', which is not exported", span)
        elif isinstance(t, FunctionType):
            for p in t.params:
                self._check_exported_signature(name, p.type, span)
            self._check_exported_signature(name, t.return_type, span)
        elif isinstance(t, OwnedType):
            self._check_exported_signature(name, t.inner, span)
        elif isinstance(t, ResultType):
            self._check_exported_signature(name, t.ok, span)
            self._check_exported_signature(name, t.err, span)
        elif isinstance(t, (SequenceType, CoroutineType)):
            self._check_exported_signature(name, t.elem, span)
        elif isinstance(t, TaskType):
            self._check_exported_signature(name, t.result, span)

    # -------------------------------------------------------------------
    # Bodies
    # -------------------------------------------------------------------

    def _push_scope(self, kind: str = "block", owner: Optional[Node] = None) -> None:
        self.scope = self.scope.child(kind, owner)

    def _pop_scope(self) -> None:
        self.scope = self.scope.parent

    def _check_function(self, func: FuncDecl, class_name: str = "") -> None:
        symbol = self.res.decls.get(id(func))
        if class_name:
            info = self.res.classes.get(class_name)
            ftype = info.methods.get(func.name) if info else None
        else:
            ftype = symbol.type if symbol else None
        if not isinstance(ftype, FunctionType):
            return

        is_coroutine = isinstance(ftype.return_type, CoroutineType)
        elem = ftype.return_type.elem if is_coroutine else None
        self.res.functions[id(func)] = FunctionInfo(func.name, ftype, is_coroutine, elem, class_name)

        outer = self.scope
        if class_name:
            self.scope = self._class_scope(class_name)
        self.ownership.reset()
        self._reads = set()
        self.contexts.append(_Context(
            kind="method" if class_name else "function", name=func.name,
            return_type=ftype.return_type, coroutine_elem=elem, is_async=ftype.is_async,
        ))
        self._push_scope("function", func)
        for param, info in zip(func.params, ftype.params):
            sym = self._define(param.name, info.type, SymbolKind.PARAMETER, param)
            self._track(sym)
        self._check_block_statements(func.body)

        needs_value = not is_coroutine and ftype.return_type not in (VOID, UNKNOWN)
        if needs_value and not _always_returns(func.body, self.res.matches):
            self.diagnostics.type_error(
                f"Function '{func.name}' may finish without returning a value", func.span,
                function=func.name)
        self._report_unhandled_results()
        self._pop_scope()
        self.contexts.pop()
        self.scope = outer

    def _class_scope(self, class_name: str) -> Scope:
        info = self.res.classes[class_name]
        scope = self.scope.child("class", info.node)
        for fname, ftype in info.fields.items():
            scope.define(Symbol(fname, ftype, SymbolKind.FIELD, mutable=True, node=info.node))
        for mname, mtype in info.methods.items():
            scope.define(Symbol(mname, mtype, SymbolKind.FUNCTION, node=info.node))
        return scope

    def _check_test(self, decl: TestDecl) -> None:
        self.ownership.reset()
        self._reads = set()
        self.contexts.append(_Context(kind="test", name=decl.name))
        self._push_scope("function", decl)
        self._check_block_statements(decl.body)
        self._report_unhandled_results()
        self._pop_scope()
        self.contexts.pop()

    def _report_unhandled_results(self) -> None:
        for symbol in self.ctx.result_locals:
            if symbol not in self._reads:
                self.diagnostics.type_error(
                    f"Result bound to '{symbol.name}' is never handled", symbol.node.span,
                    variable=symbol.name)

    def _track(self, symbol: Symbol) -> None:
        if is_move_only(symbol.type, self._field_types):
            self.ownership.define(symbol)

    def _field_types(self, ctype: ClassType) -> Optional[Iterable[CsafeType]]:
        info = self._class_info(ctype)
        return None if info is None else info.fields.values()

    # -------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------

    def _check_block(self, block: Block) -> None:
        self._push_scope("block", block)
        self._check_block_statements(block)
        self._pop_scope()

    def _check_block_statements(self, block: Block) -> None:
        for stmt in block.statements:
            self._check_statement(stmt)

    def _check_statement(self, stmt: Statement) -> None:
        if isinstance(stmt, VarDecl):
            self._check_var_decl(stmt)
        elif isinstance(stmt, AssignStmt):
            self._check_assign(stmt)
        elif isinstance(stmt, ExprStmt):
            self._check_expr_stmt(stmt)
        elif isinstance(stmt, ReturnStmt):
            self._check_return(stmt)
        elif isinstance(stmt, YieldStmt):
            self._check_yield(stmt)
        elif isinstance(stmt, IfStmt):
            self._check_if(stmt)
        elif isinstance(stmt, WhileStmt):
            self._check_while(stmt)
        elif isinstance(stmt, ForStmt):
            self._check_for(stmt)
        elif isinstance(stmt, MatchStmt):
            self._check_match(stmt)
        elif isinstance(stmt, AssertStmt):
            self._check_assert(stmt)
        elif isinstance(stmt, (BreakStmt, ContinueStmt)):
            self._check_loop_control(stmt)
        elif isinstance(stmt, Block):
            self._check_block(stmt)

    def _check_var_decl(self, stmt: VarDecl, is_global: bool = False) -> None:
        declared: Optional[CsafeType] = None
        if stmt.type_annotation is not None:
            declared = self._resolve_type(stmt.type_annotation)
            if declared == VOID:
                self.diagnostics.type_error(f"Variable '{stmt.name}' cannot have type 'void'", stmt.span)
                declared = UNKNOWN

        actual: Optional[CsafeType] = None
        if stmt.value is not None:
            actual = self._check_value(stmt.value, declared)
            if actual == VOID:
                self.diagnostics.type_error(f"Cannot bind the result of a void expression to '{stmt.name}'",
                                            stmt.value.span)
                actual = UNKNOWN
            elif isinstance(actual, (FunctionType, ModuleType)):
                self.diagnostics.type_error(f"'{stmt.name}' cannot hold a {actual}", stmt.value.span)
                actual = UNKNOWN
            if declared is not None and not declared.is_assignable_from(actual):
                self.diagnostics.type_mismatch(declared, actual, stmt.value.span,
                                               f"Initializer of '{stmt.name}'")
        elif stmt.is_const:
            self.diagnostics.type_error(f"Constant '{stmt.name}' must be initialized", stmt.span,
                                        variable=stmt.name)
        elif declared is None:
            self.diagnostics.type_error(
                f"Cannot infer the type of '{stmt.name}' without a type annotation or initializer",
                stmt.span, variable=stmt.name)

        var_type = declared if declared is not None else (actual if actual is not None else UNKNOWN)
        kind = SymbolKind.CONSTANT if stmt.is_const else SymbolKind.VARIABLE
        symbol = self._define(stmt.name, var_type, kind, stmt, mutable=not stmt.is_const,
                              exported=stmt.exported)
        self.res.types[id(stmt)] = var_type
        if not is_global:
            self._track(symbol)
            if isinstance(var_type, ResultType):
                self.ctx.result_locals.append(symbol)

    def _check_assign(self, stmt: AssignStmt) -> None:
        target = stmt.target
        target_type = UNKNOWN
        revived: Optional[Symbol] = None

        if isinstance(target, Identifier):
            symbol = self._lookup(target)
            if symbol is not None:
                target_type = symbol.type
                self._check_assignable_symbol(symbol, target.span)
                self.res.types[id(target)] = target_type
                revived = symbol
        elif isinstance(target, IndexExpr):
            obj_type = self._check_expr(target.obj)
            self._check_int(target.index, "Index")
            if obj_type == STRING:
                self.diagnostics.type_error("Strings are immutable; cannot assign to a character",
                                            target.span)
            elif isinstance(obj_type, SequenceType):
                target_type = obj_type.elem
                self._check_mutable_base(target.obj)
            elif not is_unknown(obj_type):
                self.diagnostics.type_error(f"Cannot index into a value of type '{obj_type}'", target.span)
            self.res.types[id(target)] = target_type
        elif isinstance(target, MemberAccess):
            target_type = self._check_member(target)
            member = self.res.members.get(id(target))
            if member is not None and member.kind != "field":
                self.diagnostics.type_error(f"Cannot assign to '{target.name}'", target.span)
            elif member is not None and not member.through_pointer:
                self._check_mutable_base(target.obj)
        elif isinstance(target, DerefExpr):
            target_type = self._check_expr(target)
        else:
            self._check_expr(target)
            self.diagnostics.type_error("Invalid assignment target", target.span)

        value_type = self._check_value(stmt.value, target_type)
        if not target_type.is_assignable_from(value_type):
            self.diagnostics.type_mismatch(target_type, value_type, stmt.value.span, "Assignment")
        if revived is not None:
            self.ownership.check_assign(revived)

    def _check_assignable_symbol(self, symbol: Symbol, span: Optional[Span]) -> None:
        if symbol.kind == SymbolKind.CONSTANT:
            self.diagnostics.type_error(f"Cannot assign to constant '{symbol.name}'", span, variable=symbol.name)
        elif symbol.kind == SymbolKind.PARAMETER:
            self.diagnostics.type_error(f"Cannot assign to parameter '{symbol.name}'", span, variable=symbol.name)
        elif symbol.kind == SymbolKind.LOOP_VARIABLE:
            self.diagnostics.type_error(f"Cannot assign to loop variable '{symbol.name}'", span,
                                        variable=symbol.name)
        elif symbol.kind in (SymbolKind.FUNCTION, SymbolKind.CLASS, SymbolKind.MODULE, SymbolKind.BUILTIN):
            self.diagnostics.type_error(f"Cannot assign to {symbol.kind.value} '{symbol.name}'", span,
                                        variable=symbol.name)
        elif not symbol.mutable:
            self.diagnostics.type_error(f"Cannot assign to '{symbol.name}'", span, variable=symbol.name)
        elif self.ctx.kind == "spawn" and symbol not in self.ctx.defined and symbol.kind != SymbolKind.FIELD \
                and symbol.scope is not None and symbol.scope.kind not in ("module", "program"):
            self.diagnostics.type_error(
                f"Cannot assign to captured variable '{symbol.name}' inside spawn", span,
                variable=symbol.name)

    def _check_mutable_base(self, obj: Expr) -> None:
        """Element and field writes need a mutable root binding."""
        root = obj
        while isinstance(root, (MemberAccess, IndexExpr)):
            member = self.res.members.get(id(root))
            if member is not None and member.through_pointer:
                return
            root = root.obj
        if isinstance(root, Identifier):
            symbol = self.res.refs.get(id(root))
            if symbol is not None:
                self._check_assignable_symbol(symbol, obj.span)
        elif not isinstance(root, DerefExpr):
            self.diagnostics.type_error("Invalid assignment target: the value is a temporary", obj.span)

    def _check_expr_stmt(self, stmt: ExprStmt) -> None:
        expr = stmt.expr
        t = self._check_expr(expr)
        if isinstance(t, ResultType):
            self.diagnostics.type_error(
                f"Result value of type '{t}' is discarded; match it to handle both 'ok' and 'err'",
                expr.span, actual_type=str(t))
        elif isinstance(expr, SpawnExpr):
            self.res.discarded_spawns.add(id(expr))
            self.diagnostics.warning("Spawned thread handle is discarded; the thread will be detached",
                                     expr.span)
        elif isinstance(t, TaskType):
            self.diagnostics.warning("Task is discarded without 'await'; the call blocks until it finishes",
                                     expr.span)

    def _check_return(self, stmt: ReturnStmt) -> None:
        ctx = self.ctx
        if ctx.kind == "spawn":
            self.diagnostics.type_error("'return' is not allowed inside 'spawn'", stmt.span)
            if stmt.value is not None:
                self._check_expr(stmt.value)
            return
        if ctx.coroutine_elem is not None:
            if stmt.value is not None:
                self.diagnostics.type_error("Coroutines cannot return a value; use 'yield'", stmt.span)
                self._check_expr(stmt.value)
            return
        expected = ctx.return_type
        if stmt.value is None:
            if expected not in (VOID, UNKNOWN):
                self.diagnostics.type_error(f"Missing return value of type '{expected}'", stmt.span,
                                            expected_type=str(expected))
            return
        actual = self._check_value(stmt.value, expected)
        if expected == VOID:
            self.diagnostics.type_error(f"'{ctx.name or 'test'}' does not return a value", stmt.value.span)
        elif not expected.is_assignable_from(actual):
            self.diagnostics.type_mismatch(expected, actual, stmt.value.span, "Return value")

    def _check_yield(self, stmt: YieldStmt) -> None:
        ctx = self.ctx
        if ctx.coroutine_elem is None:
            where = "inside 'spawn'" if ctx.kind == "spawn" else "outside a coroutine"
            self.diagnostics.type_error(
                f"'yield' {where}; declare the function as returning coroutine<T>", stmt.span)
            self._check_expr(stmt.value)
            return
        actual = self._check_value(stmt.value, ctx.coroutine_elem)
        if not ctx.coroutine_elem.is_assignable_from(actual):
            self.diagnostics.type_mismatch(ctx.coroutine_elem, actual, stmt.value.span, "Yielded value")

    def _check_condition(self, expr: Expr, what: str) -> None:
        t = self._check_expr(expr)
        if t != BOOL and not is_unknown(t):
            self.diagnostics.type_mismatch(BOOL, t, expr.span, f"{what} condition")

    def _check_if(self, stmt: IfStmt) -> None:
        self._check_condition(stmt.condition, "'if'")
        before = self.ownership.snapshot()
        self._check_block(stmt.then_body)
        ends = []
        if not _terminates(stmt.then_body):
            ends.append(self.ownership.snapshot())
        self.ownership.restore(before)
        if stmt.else_body is not None:
            self._check_statement(stmt.else_body)
            if not _terminates(stmt.else_body):
                ends.append(self.ownership.snapshot())
        else:
            ends.append(before)
        if ends:
            self.ownership.merge(*ends)

    def _enter_loop(self):
        self.ctx.loop_depth += 1
        self.ctx.break_states.append([])
        return self.ownership.enter_loop()

    def _exit_loop(self, before, body: Block) -> None:
        breaks = self.ctx.break_states.pop()
        self.ctx.loop_depth -= 1
        falls_through = not _terminates(body)
        self.ownership.exit_loop(before, report=falls_through)
        ends = [before] + breaks
        if falls_through:
            ends.append(self.ownership.snapshot())
        self.ownership.merge(*ends)

    def _check_while(self, stmt: WhileStmt) -> None:
        self._check_condition(stmt.condition, "'while'")
        before = self._enter_loop()
        self._check_block(stmt.body)
        self._exit_loop(before, stmt.body)

    def _check_for(self, stmt: ForStmt) -> None:
        iter_type = self._check_expr(stmt.iterable)
        if isinstance(iter_type, (SequenceType, CoroutineType)):
            elem = iter_type.elem
        elif iter_type == STRING:
            elem = STRING
        else:
            if not is_unknown(iter_type):
                self.diagnostics.type_error(
                    f"Cannot iterate over a value of type '{iter_type}'", stmt.iterable.span,
                    actual_type=str(iter_type))
            elem = UNKNOWN
        if self.ctx.coroutine_elem is not None and isinstance(iter_type, SequenceType) \
                and is_move_only(elem, self._field_types):
            self.diagnostics.type_error(
                "Cannot iterate over a sequence of move-only values inside a coroutine",
                stmt.iterable.span, actual_type=str(iter_type))
        before = self._enter_loop()
        self._push_scope("block", stmt)
        self._define(stmt.var_name, elem, SymbolKind.LOOP_VARIABLE, stmt)
        self._check_block(stmt.body)
        self._pop_scope()
        self._exit_loop(before, stmt.body)

    def _check_loop_control(self, stmt: Statement) -> None:
        word = "break" if isinstance(stmt, BreakStmt) else "continue"
        if self.ctx.loop_depth == 0:
            where = "inside 'spawn'" if self.ctx.kind == "spawn" else "outside a loop"
            self.diagnostics.type_error(f"'{word}' {where}", stmt.span)
        elif isinstance(stmt, BreakStmt):
            self.ctx.break_states[-1].append(self.ownership.snapshot())

    def _check_assert(self, stmt: AssertStmt) -> None:
        self._check_condition(stmt.condition, "Assertion")
        if self.constraints.always_false(stmt.condition):
            self.diagnostics.warning("Assertion always fails", stmt.condition.span)

    # -------------------------------------------------------------------
    # Match
    # -------------------------------------------------------------------

    def _check_match(self, stmt: MatchStmt) -> None:
        if self.ctx.coroutine_elem is not None:
            # coroutine frames keep their own copy of the subject
            subject = self._check_value(stmt.subject)
        else:
            subject = self._check_expr(stmt.subject)
        if isinstance(subject, ResultType):
            strategy = "variant"
        elif subject in (INT, BOOL):
            strategy = "switch"
        else:
            strategy = "chain"
        info = MatchInfo(subject_type=subject, strategy=strategy)
        self.res.matches[id(stmt)] = info

        covered: set[str] = set()
        seen_keys: set = set()
        catch_all = False
        before = self.ownership.snapshot()
        ends = []

        for arm in stmt.arms:
            arm_info, key = self._classify_pattern(arm, subject)
            unreachable = catch_all or (strategy == "variant" and {"ok", "err"} <= covered) \
                or (subject == BOOL and {True, False} <= covered)
            if unreachable:
                arm_info.reachable = False
                self.diagnostics.warning("Unreachable case arm: earlier arms already match every value",
                                         arm.span)
            elif key is not None and key in seen_keys:
                arm_info.reachable = False
                self.diagnostics.warning("Duplicate case pattern; only the first matching arm runs",
                                         arm.pattern.span)
            if key is not None:
                seen_keys.add(key)
                if arm_info.tag in ("ok", "err"):
                    covered.add(arm_info.tag)
                elif arm_info.tag == "literal" and subject == BOOL:
                    covered.add(key[1])
            if arm_info.tag == "bind":
                catch_all = True
            info.arms.append(arm_info)

            self.ownership.restore(before)
            self._push_scope("block", arm)
            if arm_info.binding is not None:
                self.scope.define(arm_info.binding)
                self.ctx.defined.add(arm_info.binding)
                self._track(arm_info.binding)
            self._check_block(arm.body)
            self._pop_scope()
            if not _terminates(arm.body):
                ends.append(self.ownership.snapshot())

        if strategy == "variant":
            exhaustive = catch_all or {"ok", "err"} <= covered
        elif subject == BOOL:
            exhaustive = catch_all or {True, False} <= covered
        else:
            exhaustive = catch_all
        info.exhaustive = exhaustive

        if stmt.default is not None:
            self.ownership.restore(before)
            self._check_block(stmt.default)
            if not _terminates(stmt.default):
                ends.append(self.ownership.snapshot())
        elif not exhaustive and not is_unknown(subject):
            self._report_non_exhaustive(stmt, subject, covered)

        self.ownership.restore(before)
        if ends:
            self.ownership.merge(*ends)

    def _report_non_exhaustive(self, stmt: MatchStmt, subject: CsafeType, covered: set) -> None:
        if isinstance(subject, ResultType):
            missing = [tag for tag in ("ok", "err") if tag not in covered]
            self.diagnostics.type_error(
                f"Non-exhaustive match over '{subject}': missing {' and '.join(repr(m) for m in missing)} "
                f"arm; add it or a 'default_case'",
                stmt.span, missing=missing, subject_type=str(subject))
        elif subject == BOOL:
            missing = [str(v).lower() for v in (True, False) if v not in covered]
            self.diagnostics.type_error(
                f"Non-exhaustive match over 'bool': missing {' and '.join(missing)}; add a 'default_case'",
                stmt.span, missing=missing, subject_type="bool")
        else:
            self.diagnostics.type_error(
                f"Non-exhaustive match over '{subject}': add a 'default_case'",
                stmt.span, missing=["default_case"], subject_type=str(subject))

    def _classify_pattern(self, arm: MatchArm, subject: CsafeType) -> tuple[ArmInfo, Optional[tuple]]:
        """Give the arm a concrete tag; returns the tag info and a duplicate-detection key."""
        pattern = arm.pattern
        bad = ArmInfo(tag="literal")

        if isinstance(pattern, VariantPattern):
            if not isinstance(subject, ResultType):
                if not is_unknown(subject):
                    self.diagnostics.type_error(
                        f"'{pattern.variant}(...)' pattern needs a Result, not '{subject}'", pattern.span)
                return bad, None
            index = 0 if pattern.variant == "ok" else 1
            payload = subject.ok if index == 0 else subject.err
            binding = self._pattern_binding(pattern.name, payload, pattern)
            return ArmInfo(tag=pattern.variant, index=index, binding=binding), ("variant", index)

        if isinstance(pattern, TypePattern):
            ptype = self._resolve_type(pattern.type_annotation)
            if is_unknown(ptype) or is_unknown(subject):
                binding = self._pattern_binding(pattern.name, ptype, pattern)
                return ArmInfo(tag="bind", binding=binding), None
            if isinstance(subject, ResultType) and ptype != subject:
                fits_ok = subject.ok == ptype
                fits_err = subject.err == ptype
                if fits_ok and fits_err:
                    self.diagnostics.type_error(
                        f"Type pattern '{ptype}' is ambiguous for '{subject}'; use ok({pattern.name}) "
                        f"or err({pattern.name})", pattern.span)
                    return bad, None
                if fits_ok or fits_err:
                    index = 0 if fits_ok else 1
                    binding = self._pattern_binding(pattern.name, ptype, pattern)
                    tag = "ok" if fits_ok else "err"
                    return ArmInfo(tag=tag, index=index, binding=binding), ("variant", index)
                self.diagnostics.type_error(
                    f"Type pattern '{ptype}' can never match a value of type '{subject}'", pattern.span,
                    expected_type=str(subject), actual_type=str(ptype))
                return bad, None
            if ptype != subject:
                self.diagnostics.type_error(
                    f"Type pattern '{ptype}' can never match a value of type '{subject}'", pattern.span,
                    expected_type=str(subject), actual_type=str(ptype))
                return bad, None
            binding = self._pattern_binding(pattern.name, ptype, pattern)
            return ArmInfo(tag="bind", binding=binding), ("bind",)

        if isinstance(pattern, LiteralPattern):
            lit_type = self._check_expr(pattern.value)
            if isinstance(subject, PrimitiveType) and subject in PRINTABLE:
                if not subject.is_assignable_from(lit_type):
                    self.diagnostics.type_mismatch(subject, lit_type, pattern.span, "Case pattern")
                    return bad, None
                value = pattern.value.value
                key = ("literal", float(value) if subject == FLOAT else value)
                return ArmInfo(tag="literal"), key
            if not is_unknown(subject):
                self.diagnostics.type_error(
                    f"Literal pattern cannot match a value of type '{subject}'", pattern.span,
                    actual_type=str(subject))
            return bad, None

        return bad, None

    def _pattern_binding(self, name: str, type_: CsafeType, node: Node) -> Symbol:
        symbol = Symbol(name, type_, SymbolKind.VARIABLE, mutable=False, node=node)
        self.res.decls[id(node)] = symbol
        return symbol

    # -------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------

    def _check_value(self, expr: Expr, expected: Optional[CsafeType] = None) -> CsafeType:
        """Check an expression whose whole value is transferred (moves a move-only binding)."""
        t = self._check_expr(expr, expected)
        if not is_move_only(t, self._field_types):
            return t
        if isinstance(expr, Identifier):
            symbol = self.res.refs.get(id(expr))
            if symbol is not None:
                self._move(symbol, expr)
        elif isinstance(expr, (IndexExpr, MemberAccess, DerefExpr)):
            self.diagnostics.type_error(
                f"Cannot move a move-only value of type '{t}' out of a {_PLACE_NAMES[type(expr)]}",
                expr.span, actual_type=str(t))
        return t

    def _move(self, symbol: Symbol, expr: Expr) -> None:
        if symbol.kind == SymbolKind.LOOP_VARIABLE:
            self.diagnostics.type_error(f"Cannot move loop variable '{symbol.name}' out of its sequence",
                                        expr.span, variable=symbol.name)
            return
        if symbol.kind == SymbolKind.FIELD:
            self.diagnostics.type_error(f"Cannot move out of field '{symbol.name}'", expr.span,
                                        variable=symbol.name)
            return
        if symbol.scope is not None and symbol.scope.kind == "module":
            self.diagnostics.type_error(f"Cannot move out of global '{symbol.name}'", expr.span,
                                        variable=symbol.name)
            return
        self.ownership.check_move(symbol, expr.span)
        self.res.moves.add(id(expr))

    def _check_expr(self, expr: Expr, expected: Optional[CsafeType] = None) -> CsafeType:
        t = self._infer_type(expr, expected)
        self.res.types[id(expr)] = t
        return t

    def _check_int(self, expr: Optional[Expr], what: str) -> None:
        if expr is None:
            return
        t = self._check_expr(expr)
        if t != INT and not is_unknown(t):
            self.diagnostics.type_mismatch(INT, t, expr.span, what)

    def _lookup(self, ident: Identifier) -> Optional[Symbol]:
        symbol = self.scope.lookup(ident.name)
        if symbol is None:
            self.diagnostics.name_error(ident.name, ident.span)
            return None
        self.res.refs[id(ident)] = symbol
        return symbol

    def _infer_type(self, expr: Expr, expected: Optional[CsafeType]) -> CsafeType:
        if isinstance(expr, IntLiteral):
            if not INT_MIN <= expr.value <= INT_MAX:
                self.diagnostics.type_error(f"Integer literal {expr.value} does not fit in 64 bits", expr.span)
            return INT
        if isinstance(expr, FloatLiteral):
            if math.isinf(expr.value):
                self.diagnostics.type_error("Float literal is out of range", expr.span)
            return FLOAT
        if isinstance(expr, StringLiteral):
            return STRING
        if isinstance(expr, BoolLiteral):
            return BOOL
        if isinstance(expr, Identifier):
            return self._infer_identifier(expr)
        if isinstance(expr, BinaryOp):
            return self._infer_binary(expr)
        if isinstance(expr, UnaryOp):
            return self._infer_unary(expr)
        if isinstance(expr, DerefExpr):
            return self._infer_deref(expr)
        if isinstance(expr, AwaitExpr):
            return self._infer_await(expr)
        if isinstance(expr, Call):
            return self._infer_call(expr)
        if isinstance(expr, MemberAccess):
            return self._check_member(expr)
        if isinstance(expr, IndexExpr):
            return self._infer_index(expr)
        if isinstance(expr, SliceExpr):
            return self._infer_slice(expr)
        if isinstance(expr, RangeExpr):
            return self._infer_range(expr)
        if isinstance(expr, ListLiteral):
            return self._infer_list(expr, expected)
        if isinstance(expr, WrapExpr):
            return self._infer_wrap(expr)
        if isinstance(expr, ResultExpr):
            return self._infer_result(expr, expected)
        if isinstance(expr, SpawnExpr):
            return self._infer_spawn(expr)
        self.diagnostics.type_error("Unsupported expression", expr.span)
        return UNKNOWN

    def _infer_identifier(self, expr: Identifier) -> CsafeType:
        symbol = self._lookup(expr)
        if symbol is None:
            return UNKNOWN
        self._reads.add(symbol)
        self.ownership.check_use(symbol, expr.span)
        ctx = self.ctx
        if (ctx.kind == "spawn" and symbol not in ctx.defined
                and symbol.kind in (SymbolKind.VARIABLE, SymbolKind.CONSTANT, SymbolKind.PARAMETER,
                                    SymbolKind.LOOP_VARIABLE)
                and symbol.scope is not None and symbol.scope.kind not in ("module", "program")
                and symbol not in ctx.captures):
            ctx.captures.append(symbol)
        if symbol.kind == SymbolKind.CLASS:
            self.diagnostics.type_error(f"Class '{symbol.name}' must be called to construct a value",
                                        expr.span)
            return UNKNOWN
        return symbol.type

    def _infer_binary(self, expr: BinaryOp) -> CsafeType:
        left = self._check_expr(expr.left)
        right = self._check_expr(expr.right)
        op = expr.op
        if is_unknown(left) or is_unknown(right):
            if op in ("&&", "||", "==", "!=", "<", ">", "<=", ">="):
                return BOOL
            return UNKNOWN

        if op in ("&&", "||"):
            if left == BOOL and right == BOOL:
                return BOOL
        elif op in ("==", "!="):
            if (is_numeric(left) and is_numeric(right)) or (left == right and left in PRINTABLE):
                return BOOL
        elif op in ("<", ">", "<=", ">="):
            if (is_numeric(left) and is_numeric(right)) or (left == right == STRING):
                return BOOL
        elif op == "+" and left == right == STRING:
            return STRING
        elif op == "%":
            if left == right == INT:
                self._check_divisor(expr)
                return INT
        elif op in ("+", "-", "*", "/"):
            if is_numeric(left) and is_numeric(right):
                if op == "/":
                    self._check_divisor(expr)
                return numeric_join(left, right)

        self.diagnostics.type_error(
            f"Operator '{op}' is not supported for '{left}' and '{right}'", expr.span,
            operator=op, left_type=str(left), right_type=str(right))
        return UNKNOWN

    def _check_divisor(self, expr: BinaryOp) -> None:
        if self.constraints.always_zero(expr.right):
            self.diagnostics.type_error("Division by zero", expr.right.span)

    def _infer_unary(self, expr: UnaryOp) -> CsafeType:
        operand = self._check_expr(expr.operand)
        if is_unknown(operand):
            return UNKNOWN
        if expr.op == "-" and is_numeric(operand):
            return operand
        if expr.op == "!" and operand == BOOL:
            return BOOL
        self.diagnostics.type_error(f"Operator '{expr.op}' is not supported for '{operand}'", expr.span,
                                    operator=expr.op)
        return UNKNOWN

    def _infer_deref(self, expr: DerefExpr) -> CsafeType:
        operand = self._check_expr(expr.operand)
        if isinstance(operand, OwnedType):
            return operand.inner
        if not is_unknown(operand):
            self.diagnostics.type_error(f"Cannot dereference a value of type '{operand}'", expr.span)
        return UNKNOWN

    def _infer_await(self, expr: AwaitExpr) -> CsafeType:
        ctx = self.ctx
        if not ctx.is_async:
            where = "inside 'spawn'" if ctx.kind == "spawn" else "outside an async function"
            self.diagnostics.type_error(f"'await' {where}", expr.span)
        operand = self._check_expr(expr.operand)
        if isinstance(expr.operand, Identifier) and isinstance(operand, TaskType):
            symbol = self.res.refs.get(id(expr.operand))
            if symbol is not None:
                self.ownership.check_move(symbol, expr.operand.span)
        if isinstance(operand, TaskType):
            return operand.result
        if not is_unknown(operand):
            self.diagnostics.type_error(f"'await' needs a task, got '{operand}'", expr.span,
                                        actual_type=str(operand))
        return UNKNOWN

    def _infer_index(self, expr: IndexExpr) -> CsafeType:
        obj = self._check_expr(expr.obj)
        self._check_int(expr.index, "Index")
        if self.constraints.always_negative(expr.index):
            self.diagnostics.type_error("Index is always negative", expr.index.span)
        if isinstance(obj, SequenceType):
            return obj.elem
        if obj == STRING:
            return STRING
        if not is_unknown(obj):
            self.diagnostics.type_error(f"Cannot index into a value of type '{obj}'", expr.span,
                                        actual_type=str(obj))
        return UNKNOWN

    def _infer_slice(self, expr: SliceExpr) -> CsafeType:
        obj = self._check_expr(expr.obj)
        self._check_int(expr.start, "Slice start")
        self._check_int(expr.end, "Slice end")
        for bound in (expr.start, expr.end):
            if self.constraints.always_negative(bound):
                self.diagnostics.type_error("Slice bound is always negative", bound.span)
        if expr.start is not None and expr.end is not None \
                and self.constraints.always_inverted(expr.start, expr.end):
            self.diagnostics.type_error("Slice start is always greater than its end", expr.span)
        if isinstance(obj, SequenceType) and is_move_only(obj.elem, self._field_types):
            self.diagnostics.type_error(f"Cannot slice a sequence of move-only values of type '{obj.elem}'",
                                        expr.span, actual_type=str(obj))
        if isinstance(obj, SequenceType) or obj == STRING:
            return obj
        if not is_unknown(obj):
            self.diagnostics.type_error(f"Cannot slice a value of type '{obj}'", expr.span,
                                        actual_type=str(obj))
        return UNKNOWN

    def _infer_range(self, expr: RangeExpr) -> CsafeType:
        if len(expr.args) not in (2, 3):
            self.diagnostics.type_error(f"range takes 2 or 3 arguments, got {len(expr.args)}", expr.span,
                                        arity=len(expr.args))
            for arg in expr.args:
                self._check_expr(arg)
            return SequenceType(INT)
        for i, arg in enumerate(expr.args):
            self._check_int(arg, ("range start", "range end", "range step")[i])
        if expr.step is not None:
            if self.constraints.step_always_zero(expr.step):
                self.diagnostics.type_error("range step cannot be zero", expr.step.span)
            elif self.constraints.negative_step_without_descent(expr.start, expr.end, expr.step):
                self.diagnostics.type_error("A negative range step requires start > end", expr.span)
        return SequenceType(INT)

    def _infer_list(self, expr: ListLiteral, expected: Optional[CsafeType]) -> CsafeType:
        elem_expected = expected.elem if isinstance(expected, SequenceType) else None
        if not expr.elements:
            if elem_expected is None:
                self.diagnostics.type_error("Cannot infer the element type of an empty list; add a type annotation",
                                            expr.span)
                return UNKNOWN
            return SequenceType(elem_expected)
        types = [self._check_value(e, elem_expected) for e in expr.elements]
        elem = elem_expected
        if elem is None:
            elem = types[0]
            if all(is_numeric(t) for t in types):
                for t in types[1:]:
                    elem = numeric_join(elem, t)
        for element, t in zip(expr.elements, types):
            if not elem.is_assignable_from(t):
                self.diagnostics.type_mismatch(elem, t, element.span, "List element")
        if elem == VOID:
            self.diagnostics.type_error("List elements cannot be void", expr.span)
            return UNKNOWN
        return SequenceType(elem)

    def _infer_wrap(self, expr: WrapExpr) -> CsafeType:
        inner = self._resolve_type(expr.type_annotation)
        if inner == VOID:
            self.diagnostics.type_error(f"{expr.kind}<void> is not a valid type", expr.span)
            inner = UNKNOWN
        if expr.value is not None:
            actual = self._check_value(expr.value, inner)
            if not inner.is_assignable_from(actual):
                self.diagnostics.type_mismatch(inner, actual, expr.value.span, f"{expr.kind}<{inner}> value")
        elif isinstance(inner, ClassType):
            info = self._class_info(inner)
            required = [p.name for p in info.constructor().required] if info else []
            if required:
                self.diagnostics.type_error(
                    f"{expr.kind}<{inner}>() needs a value; '{inner}' has required fields", expr.span)
        return OwnedType(inner, shared=expr.kind == "shared")

    def _infer_result(self, expr: ResultExpr, expected: Optional[CsafeType]) -> CsafeType:
        if not isinstance(expected, ResultType):
            self._check_expr(expr.value)
            if expected is None or not is_unknown(expected):
                self.diagnostics.type_error(
                    f"Cannot infer the Result type of '{expr.variant}(...)'; add a type annotation", expr.span)
            return UNKNOWN
        payload = expected.ok if expr.variant == "ok" else expected.err
        actual = self._check_value(expr.value, payload)
        if not payload.is_assignable_from(actual):
            self.diagnostics.type_mismatch(payload, actual, expr.value.span, f"'{expr.variant}' payload")
        return expected

    def _infer_spawn(self, expr: SpawnExpr) -> CsafeType:
        outer = self.ctx
        if outer.coroutine_elem is not None:
            self.diagnostics.type_error("'spawn' is not supported inside a coroutine", expr.span)
        ctx = _Context(kind="spawn", name=outer.name)
        before = self.ownership.snapshot()
        self.contexts.append(ctx)
        self._push_scope("function", expr)
        self._check_block_statements(expr.body)
        self._pop_scope()
        self.contexts.pop()
        self.ownership.restore(before)
        outer.result_locals.extend(ctx.result_locals)
        # propagate captures through nested spawns
        if outer.kind == "spawn":
            for symbol in ctx.captures:
                if symbol not in outer.defined and symbol not in outer.captures:
                    outer.captures.append(symbol)
        moved = [s for s in ctx.captures if is_move_only(s.type, self._field_types)]
        for symbol in moved:
            if symbol.kind == SymbolKind.LOOP_VARIABLE:
                self.diagnostics.type_error(f"Cannot move loop variable '{symbol.name}' into 'spawn'",
                                            expr.span, variable=symbol.name)
            else:
                self.ownership.check_move(symbol, expr.span)
        self.res.spawn_captures[id(expr)] = moved
        return THREAD

    # -------------------------------------------------------------------
    # Members and calls
    # -------------------------------------------------------------------

    def _check_member(self, expr: MemberAccess, as_callee: bool = False) -> CsafeType:
        t = self._infer_member(expr, as_callee)
        self.res.types[id(expr)] = t
        return t

    def _infer_member(self, expr: MemberAccess, as_callee: bool) -> CsafeType:
        obj = expr.obj
        if isinstance(obj, Identifier):
            symbol = self.scope.lookup(obj.name)
            if symbol is not None and symbol.kind == SymbolKind.MODULE:
                self.res.refs[id(obj)] = symbol
                return self._infer_module_member(expr, symbol.name, as_callee)

        obj_type = self._check_expr(obj)
        through_pointer = False
        target = obj_type
        if isinstance(obj_type, OwnedType):
            target = obj_type.inner
            through_pointer = True

        if isinstance(target, ThreadType) and expr.name == "join":
            if not as_callee:
                self.diagnostics.type_error("'join' must be called", expr.span)
            self.res.members[id(expr)] = MemberInfo(kind="join", through_pointer=through_pointer)
            return FunctionType((), VOID)

        if isinstance(target, ClassType):
            info = self._class_info(target)
            if info is not None:
                if expr.name in info.fields:
                    self.res.members[id(expr)] = MemberInfo(kind="field", through_pointer=through_pointer,
                                                            class_type=target)
                    return info.fields[expr.name]
                if expr.name in info.methods:
                    if not as_callee:
                        self.diagnostics.type_error(f"Method '{expr.name}' must be called", expr.span)
                    self.res.members[id(expr)] = MemberInfo(kind="method", through_pointer=through_pointer,
                                                            class_type=target)
                    return info.methods[expr.name]
            self.diagnostics.name_error(expr.name, expr.span, f"'{target}' has no member '{expr.name}'")
            return UNKNOWN

        if not is_unknown(target):
            self.diagnostics.name_error(expr.name, expr.span, f"'{obj_type}' has no member '{expr.name}'")
        return UNKNOWN

    def _infer_module_member(self, expr: MemberAccess, module: str, as_callee: bool) -> CsafeType:
        exports = self.res.imports.get(module)
        exported = exports.lookup(expr.name) if exports else None
        if exported is None:
            self.diagnostics.name_error(expr.name, expr.span,
                                        f"Module '{module}' does not export '{expr.name}'")
            return UNKNOWN
        if exported.kind in (SymbolKind.CLASS, SymbolKind.FUNCTION) and not as_callee:
            self.diagnostics.type_error(f"'{module}.{expr.name}' must be called", expr.span)
        symbol = Symbol(exported.name, exported.type, exported.kind, origin=module)
        self.res.members[id(expr)] = MemberInfo(kind="module", module=module, symbol=symbol)
        self._note_foreign_classes(exported.type)
        return exported.type

    def _infer_call(self, expr: Call) -> CsafeType:
        callee = expr.callee
        if isinstance(callee, Identifier):
            symbol = self.scope.lookup(callee.name)
            if symbol is None:
                self.diagnostics.name_error(callee.name, callee.span)
                self._check_args_loosely(expr)
                return UNKNOWN
            self.res.refs[id(callee)] = symbol
            self._reads.add(symbol)
            self.res.types[id(callee)] = symbol.type
            if symbol.kind == SymbolKind.BUILTIN:
                return self._infer_builtin(expr, symbol.name)
            if symbol.kind == SymbolKind.CLASS:
                info = self._class_info(symbol.type)
                if info is None:
                    return UNKNOWN
                return self._bind_call(expr, "constructor", symbol.name, info.constructor(),
                                       tuple(info.field_defaults.get(n) for n in info.fields),
                                       class_type=symbol.type)
            if isinstance(symbol.type, FunctionType):
                defaults = tuple(p.default for p in symbol.node.params) \
                    if isinstance(symbol.node, FuncDecl) else ()
                if symbol.kind == SymbolKind.FUNCTION and isinstance(symbol.node, ClassDecl):
                    info = self.res.classes.get(symbol.node.name)
                    defaults = info.method_defaults.get(symbol.name, ()) if info else ()
                    return self._bind_call(expr, "method", symbol.name, symbol.type, defaults)
                return self._bind_call(expr, "function", symbol.name, symbol.type, defaults)
            if not is_unknown(symbol.type):
                self.diagnostics.type_error(f"'{callee.name}' is not callable", callee.span)
            self._check_args_loosely(expr)
            return UNKNOWN

        if isinstance(callee, MemberAccess):
            ftype = self._check_member(callee, as_callee=True)
            member = self.res.members.get(id(callee))
            if member is None:
                self._check_args_loosely(expr)
                return UNKNOWN
            if member.kind == "join":
                if expr.args:
                    self.diagnostics.type_error("'join' takes no arguments", expr.span)
                    self._check_args_loosely(expr)
                self.res.calls[id(expr)] = CallPlan(kind="join", callee="join")
                return VOID
            if member.kind == "method":
                info = self._class_info(member.class_type)
                defaults = info.method_defaults.get(callee.name, ()) if info else ()
                return self._bind_call(expr, "method", callee.name, ftype, defaults)
            if member.kind == "module":
                exported = self.res.imports[member.module].lookup(callee.name)
                if exported.kind == SymbolKind.CLASS:
                    info = self._class_info(exported.type)
                    if info is None:
                        return UNKNOWN
                    return self._bind_call(expr, "constructor", callee.name, info.constructor(),
                                           tuple(info.field_defaults.get(n) for n in info.fields),
                                           module=member.module, class_type=exported.type)
                if isinstance(exported.type, FunctionType):
                    return self._bind_call(expr, "function", callee.name, exported.type,
                                           exported.defaults, module=member.module)
            self.diagnostics.type_error(f"'{callee.name}' is not callable", callee.span)
            self._check_args_loosely(expr)
            return UNKNOWN

        callee_type = self._check_expr(callee)
        if not is_unknown(callee_type):
            self.diagnostics.type_error("Expression is not callable", callee.span)
        self._check_args_loosely(expr)
        return UNKNOWN

    def _check_args_loosely(self, expr: Call) -> None:
        for arg in expr.args:
            self._check_expr(arg.value if isinstance(arg, NamedArg) else arg)

    def _infer_builtin(self, expr: Call, name: str) -> CsafeType:
        values: list[Expr] = []
        for arg in expr.args:
            if isinstance(arg, NamedArg):
                self.diagnostics.type_error(f"'{name}' does not take named arguments", arg.span,
                                            argument=arg.name)
                self._check_expr(arg.value)
            else:
                values.append(arg)
        self.res.calls[id(expr)] = CallPlan(kind="builtin", callee=name, args=tuple(values))

        if name == "print":
            for value in values:
                t = self._check_expr(value)
                if t not in PRINTABLE and not is_unknown(t):
                    self.diagnostics.type_error(f"Cannot print a value of type '{t}'", value.span,
                                                actual_type=str(t))
            return VOID

        # len
        if len(values) != 1:
            self.diagnostics.type_error(f"len takes exactly 1 argument, got {len(values)}", expr.span,
                                        arity=len(values))
            for value in values:
                self._check_expr(value)
            return INT
        t = self._check_expr(values[0])
        if not isinstance(t, SequenceType) and t != STRING and not is_unknown(t):
            self.diagnostics.type_error(f"len needs a sequence or string, got '{t}'", values[0].span,
                                        actual_type=str(t))
        return INT

    def _bind_call(self, expr: Call, kind: str, name: str, ftype: FunctionType,
                   defaults: tuple, module: str = "", class_type: Optional[ClassType] = None) -> CsafeType:
        """Match arguments to parameters and record the positional call plan."""
        params = ftype.params
        slots: list[Optional[Expr]] = [None] * len(params)
        seen_named = False
        unknown_name = False
        positional = 0
        failed = False

        for arg in expr.args:
            if isinstance(arg, NamedArg):
                seen_named = True
                idx = ftype.param_index(arg.name)
                if idx is None:
                    self.diagnostics.type_error(
                        f"Unknown parameter '{arg.name}' in call to '{name}'", arg.span,
                        argument=arg.name, function=name)
                    self._check_expr(arg.value)
                    unknown_name = failed = True
                    continue
                if slots[idx] is not None:
                    self.diagnostics.type_error(
                        f"Parameter '{arg.name}' is given more than once in call to '{name}'", arg.span,
                        argument=arg.name, function=name)
                    self._check_expr(arg.value)
                    failed = True
                    continue
                slots[idx] = arg.value
            else:
                if seen_named:
                    self.diagnostics.type_error(
                        f"Positional argument follows a named argument in call to '{name}'", arg.span,
                        function=name)
                    self._check_expr(arg)
                    failed = True
                    continue
                if positional >= len(params):
                    self.diagnostics.type_error(
                        f"Too many arguments in call to '{name}': expected at most {len(params)}", arg.span,
                        function=name)
                    self._check_expr(arg)
                    failed = True
                    continue
                slots[positional] = arg
                positional += 1

        if not unknown_name:
            for param, slot in zip(params, slots):
                if slot is None and not param.has_default:
                    self.diagnostics.type_error(
                        f"Missing required argument '{param.name}' in call to '{name}'", expr.span,
                        argument=param.name, function=name)
                    failed = True

        # type-check supplied values in source order
        supplied = {id(v): i for i, v in enumerate(slots) if v is not None}
        for arg in expr.args:
            value = arg.value if isinstance(arg, NamedArg) else arg
            i = supplied.get(id(value))
            if i is None:
                continue
            ptype = params[i].type
            actual = self._check_value(value, ptype)
            if not ptype.is_assignable_from(actual):
                self.diagnostics.type_mismatch(ptype, actual, value.span,
                                               f"Argument '{params[i].name}' of '{name}'")

        if not failed:
            ordered: list[Expr] = []
            for i, (param, slot) in enumerate(zip(params, slots)):
                if slot is None:
                    default = defaults[i] if i < len(defaults) else None
                    if default is None:
                        failed = True
                        break
                    if id(default) not in self.res.types:
                        self._check_expr(default, param.type)
                    slot = default
                ordered.append(slot)
            if not failed:
                self.res.calls[id(expr)] = CallPlan(kind=kind, callee=name, args=tuple(ordered),
                                                    func_type=ftype, module=module, class_type=class_type)

        if kind == "constructor":
            return class_type if class_type is not None else UNKNOWN
        if ftype.is_async:
            return TaskType(ftype.return_type)
        return ftype.return_type

    # -------------------------------------------------------------------
    # Constraint bindings
    # -------------------------------------------------------------------

    def _binding_for(self, ident: Identifier) -> Optional[Binding]:
        symbol = self.res.refs.get(id(ident))
        if symbol is None or symbol.type not in (INT, BOOL):
            return None
        kind = "int" if symbol.type == INT else "bool"
        constant = None
        if symbol.kind == SymbolKind.CONSTANT and isinstance(symbol.node, VarDecl):
            constant = symbol.node.value
        return Binding(f"{symbol.name}@{id(symbol):x}", kind, constant)


def resolve(program: Program, diagnostics: Optional[Diagnostics] = None,
            index: Optional[ModuleIndex] = None) -> Resolution:
    """Run pass 1 over ``program``. Problems are reported to ``diagnostics``."""
    diagnostics = diagnostics if diagnostics is not None else Diagnostics(program.filename)
    return Resolver(diagnostics, index).resolve_program(program)
