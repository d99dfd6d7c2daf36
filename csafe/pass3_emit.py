"""csafe Pass 3 — Emit.

Resolved AST → LLVM IR via llvmlite, for the scalar subset of the dialect:
int/float/bool/void functions, ``let``/``const``/assignment, ``if``,
``while``, ``for`` over ``range``, calls (named arguments are already
positional in the resolver's call plans), arithmetic, comparisons, logic,
``assert`` and ``print``. Anything outside the subset is reported as an
``unsupported_construct`` diagnostic and no IR is returned.

Locals live in entry-block allocas; LLVM's mem2reg turns them into SSA
values. ``for (i in range(a, b, s))`` keeps the runtime contract of
``csafe::range``: a zero step, or a negative step with ``a <= b``, traps.
"""

from __future__ import annotations

import ctypes
import logging
from typing import Any, Optional

from csafe.ast_nodes import (
    FuncDecl, ClassDecl, TestDecl, VarDecl, Statement, Block, AssignStmt, ExprStmt, ReturnStmt,
    IfStmt, WhileStmt, ForStmt, AssertStmt, BreakStmt, ContinueStmt, Expr, IntLiteral,
    FloatLiteral, StringLiteral, BoolLiteral, Identifier, BinaryOp, UnaryOp, Call, MemberAccess,
    RangeExpr,
)
from csafe.errors import Diagnostics, InternalLoweringError, Span, Stage
from csafe.pass1_resolve import Resolution, is_constant_expr
from csafe.symbols import Symbol, SymbolKind
from csafe.types import CsafeType, FunctionType, INT, FLOAT, BOOL, VOID, STRING

try:
    from llvmlite import ir as llvm_ir
    from llvmlite import binding as llvm_binding
    HAS_LLVMLITE = True
except ImportError:
    HAS_LLVMLITE = False

logger = logging.getLogger(__name__)

TARGET = "llvm"


class _Unsupported(Exception):
    def __init__(self, construct: str, span: Optional[Span]):
        super().__init__(construct)
        self.construct = construct
        self.span = span


def _llvm_type(t: CsafeType, span: Optional[Span] = None) -> Any:
    if t == INT:
        return llvm_ir.IntType(64)
    if t == FLOAT:
        return llvm_ir.DoubleType()
    if t == BOOL:
        return llvm_ir.IntType(1)
    if t == VOID:
        return llvm_ir.VoidType()
    raise _Unsupported(f"Type '{t}'", span)


def symbol_name(name: str, module: str = "") -> str:
    """Link name of a function or global; module members are prefixed with their module."""
    return f"{module}.{name}" if module else name


class LLVMEmitter:
    """Emits LLVM IR for one resolved unit."""

    def __init__(self, res: Resolution, diagnostics: Optional[Diagnostics] = None):
        if not HAS_LLVMLITE:
            raise RuntimeError("llvmlite is required for the 'llvm' target. Install with: pip install llvmlite")
        self.res = res
        self.diagnostics = diagnostics if diagnostics is not None else res.diagnostics
        self.module: Optional[Any] = None
        self._builder: Optional[Any] = None
        self._func: Optional[Any] = None
        self._slots: dict[Symbol, Any] = {}
        self._globals: dict[Symbol, Any] = {}
        self._loops: list[tuple[Any, Any]] = []
        self._return_type: CsafeType = VOID
        self._is_main = False
        self._strings = 0
        self._failed = False

    # -------------------------------------------------------------------
    # Module
    # -------------------------------------------------------------------

    def emit_module(self) -> Optional[str]:
        """Return LLVM IR text, or None when something could not be emitted."""
        if self.res.diagnostics.has_errors:
            raise InternalLoweringError("emission requested for a unit with errors")
        program = self.res.program
        self.module = llvm_ir.Module(name=self.res.module_name or program.filename)
        self.module.triple = llvm_binding.get_default_triple()

        functions: list[tuple[FuncDecl, Any]] = []
        for decl in program.declarations:
            try:
                if isinstance(decl, ClassDecl):
                    raise _Unsupported("Class", decl.span)
                if isinstance(decl, TestDecl):
                    self.diagnostics.warning(f"Test '{decl.name}' is not emitted for the '{TARGET}' target",
                                             decl.span, stage=Stage.LOWERING)
                elif isinstance(decl, VarDecl):
                    self._emit_global(decl)
                elif isinstance(decl, FuncDecl):
                    functions.append((decl, self._declare_function(decl)))
            except _Unsupported as exc:
                self._unsupported(exc)

        for decl, func in functions:
            if func is None:
                continue
            try:
                self._emit_function(decl, func)
            except _Unsupported as exc:
                self._unsupported(exc)

        if self._failed:
            return None
        return str(self.module)

    def _unsupported(self, exc: _Unsupported) -> None:
        self._failed = True
        self.diagnostics.unsupported(exc.construct, TARGET, exc.span)

    def _emit_global(self, decl: VarDecl) -> None:
        symbol = self.res.decls[id(decl)]
        ltype = _llvm_type(symbol.type, decl.span)
        gv = llvm_ir.GlobalVariable(self.module, ltype, name=symbol_name(decl.name, self.res.module_name))
        if decl.value is None:
            gv.initializer = llvm_ir.Constant(ltype, 0)
        elif is_constant_expr(decl.value):
            gv.initializer = self._constant(decl.value, symbol.type)
        else:
            raise _Unsupported("Global with a non-constant initializer", decl.value.span)
        gv.global_constant = decl.is_const
        if not decl.exported and self.res.module_name:
            gv.linkage = "internal"
        self._globals[symbol] = gv

    def _constant(self, expr: Expr, t: CsafeType) -> Any:
        value = _fold(expr)
        if t == FLOAT:
            return llvm_ir.Constant(llvm_ir.DoubleType(), float(value))
        if t == BOOL:
            return llvm_ir.Constant(llvm_ir.IntType(1), 1 if value else 0)
        if t == INT and isinstance(value, int):
            return llvm_ir.Constant(llvm_ir.IntType(64), value)
        raise _Unsupported(f"Constant of type '{t}'", expr.span)

    # -------------------------------------------------------------------
    # Functions
    # -------------------------------------------------------------------

    def _function_type(self, ftype: FunctionType, span: Optional[Span]) -> Any:
        params = [_llvm_type(p.type, span) for p in ftype.params]
        return llvm_ir.FunctionType(_llvm_type(ftype.return_type, span), params)

    def _declare_function(self, decl: FuncDecl) -> Any:
        info = self.res.functions.get(id(decl))
        if info is None:
            raise InternalLoweringError(f"function '{decl.name}' was not checked", decl.span)
        if info.is_coroutine:
            raise _Unsupported("Coroutine", decl.span)
        if info.type.is_async:
            raise _Unsupported("Async function", decl.span)
        if decl.name == "main" and not self.res.module_name:
            fn_type = llvm_ir.FunctionType(llvm_ir.IntType(32), [])
            return llvm_ir.Function(self.module, fn_type, name="main")
        fn_type = self._function_type(info.type, decl.span)
        func = llvm_ir.Function(self.module, fn_type, name=symbol_name(decl.name, self.res.module_name))
        if not decl.exported and self.res.module_name:
            func.linkage = "internal"
        return func

    def _emit_function(self, decl: FuncDecl, func: Any) -> None:
        info = self.res.functions[id(decl)]
        self._func = func
        self._return_type = info.type.return_type
        self._is_main = func.name == "main" and not self.res.module_name
        self._slots = {}
        self._loops = []

        entry = func.append_basic_block(name="entry")
        self._builder = llvm_ir.IRBuilder(entry)
        for arg, param in zip(func.args, decl.params):
            arg.name = param.name
            symbol = self.res.decls[id(param)]
            slot = self._alloca(symbol)
            self._builder.store(arg, slot)

        self._emit_block(decl.body)

        if not self._builder.block.is_terminated:
            if self._is_main:
                self._builder.ret(llvm_ir.Constant(llvm_ir.IntType(32), 0))
            elif info.type.return_type == VOID:
                self._builder.ret_void()
            else:
                self._builder.unreachable()

    def _alloca(self, symbol: Symbol) -> Any:
        ltype = _llvm_type(symbol.type, symbol.node.span if symbol.node else None)
        entry = self._func.entry_basic_block
        builder = llvm_ir.IRBuilder(entry)
        builder.position_at_start(entry)
        slot = builder.alloca(ltype, name=symbol.name)
        self._slots[symbol] = slot
        return slot

    def _trap(self) -> None:
        trap = self.module.globals.get("llvm.trap")
        if trap is None:
            trap = llvm_ir.Function(self.module, llvm_ir.FunctionType(llvm_ir.VoidType(), []), name="llvm.trap")
        self._builder.call(trap, [])
        self._builder.unreachable()

    def _trap_if(self, condition: Any) -> None:
        with self._builder.if_then(condition, likely=False):
            self._trap()

    # -------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------

    def _emit_block(self, block: Block) -> None:
        for stmt in block.statements:
            if self._builder.block.is_terminated:
                # code after return/break/continue is never reached
                self._builder.position_at_end(self._func.append_basic_block(name="dead"))
            self._emit_statement(stmt)

    def _emit_statement(self, stmt: Statement) -> None:
        if isinstance(stmt, VarDecl):
            symbol = self.res.decls[id(stmt)]
            slot = self._alloca(symbol)
            if stmt.value is not None:
                value = self._emit_value(stmt.value, symbol.type)
            else:
                value = llvm_ir.Constant(_llvm_type(symbol.type, stmt.span), 0)
            self._builder.store(value, slot)
        elif isinstance(stmt, AssignStmt):
            if not isinstance(stmt.target, Identifier):
                raise _Unsupported("Assignment to an element or field", stmt.target.span)
            symbol = self.res.refs[id(stmt.target)]
            value = self._emit_value(stmt.value, symbol.type)
            self._builder.store(value, self._address(symbol, stmt.target.span))
        elif isinstance(stmt, ExprStmt):
            self._emit_expr(stmt.expr)
        elif isinstance(stmt, ReturnStmt):
            self._emit_return(stmt)
        elif isinstance(stmt, IfStmt):
            self._emit_if(stmt)
        elif isinstance(stmt, WhileStmt):
            self._emit_while(stmt)
        elif isinstance(stmt, ForStmt):
            self._emit_for(stmt)
        elif isinstance(stmt, AssertStmt):
            cond = self._emit_expr(stmt.condition)
            self._trap_if(self._builder.not_(cond))
        elif isinstance(stmt, BreakStmt):
            self._builder.branch(self._loops[-1][1])
        elif isinstance(stmt, ContinueStmt):
            self._builder.branch(self._loops[-1][0])
        elif isinstance(stmt, Block):
            self._emit_block(stmt)
        else:
            raise _Unsupported(type(stmt).__name__.replace("Stmt", " statement"), stmt.span)

    def _emit_return(self, stmt: ReturnStmt) -> None:
        if self._is_main:
            if stmt.value is None:
                self._builder.ret(llvm_ir.Constant(llvm_ir.IntType(32), 0))
            else:
                value = self._emit_value(stmt.value, INT)
                self._builder.ret(self._builder.trunc(value, llvm_ir.IntType(32)))
        elif stmt.value is None:
            self._builder.ret_void()
        else:
            self._builder.ret(self._emit_value(stmt.value, self._return_type))

    def _emit_if(self, stmt: IfStmt) -> None:
        cond = self._emit_expr(stmt.condition)
        then_bb = self._func.append_basic_block(name="if.then")
        else_bb = self._func.append_basic_block(name="if.else") if stmt.else_body is not None else None
        merge_bb = self._func.append_basic_block(name="if.end")
        self._builder.cbranch(cond, then_bb, else_bb or merge_bb)

        self._builder.position_at_end(then_bb)
        self._emit_block(stmt.then_body)
        if not self._builder.block.is_terminated:
            self._builder.branch(merge_bb)

        if else_bb is not None:
            self._builder.position_at_end(else_bb)
            self._emit_statement(stmt.else_body)
            if not self._builder.block.is_terminated:
                self._builder.branch(merge_bb)
        self._builder.position_at_end(merge_bb)

    def _emit_while(self, stmt: WhileStmt) -> None:
        cond_bb = self._func.append_basic_block(name="while.cond")
        body_bb = self._func.append_basic_block(name="while.body")
        end_bb = self._func.append_basic_block(name="while.end")
        self._builder.branch(cond_bb)

        self._builder.position_at_end(cond_bb)
        self._builder.cbranch(self._emit_expr(stmt.condition), body_bb, end_bb)

        self._builder.position_at_end(body_bb)
        self._loops.append((cond_bb, end_bb))
        self._emit_block(stmt.body)
        self._loops.pop()
        if not self._builder.block.is_terminated:
            self._builder.branch(cond_bb)
        self._builder.position_at_end(end_bb)

    def _emit_for(self, stmt: ForStmt) -> None:
        if not isinstance(stmt.iterable, RangeExpr):
            raise _Unsupported("'for' over anything but range(...)", stmt.iterable.span)
        rng = stmt.iterable
        i64 = llvm_ir.IntType(64)
        zero = llvm_ir.Constant(i64, 0)
        start = self._emit_value(rng.start, INT)
        end = self._emit_value(rng.end, INT)
        if rng.step is None:
            step = llvm_ir.Constant(i64, 1)
        else:
            step = self._emit_value(rng.step, INT)
            self._trap_if(self._builder.icmp_signed("==", step, zero))
            descending = self._builder.icmp_signed("<", step, zero)
            self._trap_if(self._builder.and_(descending, self._builder.icmp_signed("<=", start, end)))

        symbol = self.res.decls[id(stmt)]
        slot = self._alloca(symbol)
        self._builder.store(start, slot)

        cond_bb = self._func.append_basic_block(name="for.cond")
        body_bb = self._func.append_basic_block(name="for.body")
        step_bb = self._func.append_basic_block(name="for.step")
        end_bb = self._func.append_basic_block(name="for.end")
        self._builder.branch(cond_bb)

        self._builder.position_at_end(cond_bb)
        current = self._builder.load(slot)
        ascending = self._builder.icmp_signed(">", step, zero)
        below = self._builder.icmp_signed("<", current, end)
        above = self._builder.icmp_signed(">", current, end)
        self._builder.cbranch(self._builder.select(ascending, below, above), body_bb, end_bb)

        self._builder.position_at_end(body_bb)
        self._loops.append((step_bb, end_bb))
        self._emit_block(stmt.body)
        self._loops.pop()
        if not self._builder.block.is_terminated:
            self._builder.branch(step_bb)

        self._builder.position_at_end(step_bb)
        self._builder.store(self._builder.add(self._builder.load(slot), step), slot)
        self._builder.branch(cond_bb)
        self._builder.position_at_end(end_bb)

    # -------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------

    def _emit_value(self, expr: Expr, target: CsafeType) -> Any:
        value = self._emit_expr(expr)
        if target == FLOAT and isinstance(value.type, llvm_ir.IntType):
            return self._builder.sitofp(value, llvm_ir.DoubleType())
        return value

    def _address(self, symbol: Symbol, span: Optional[Span]) -> Any:
        slot = self._slots.get(symbol)
        if slot is None:
            slot = self._globals.get(symbol)
        if slot is None:
            raise _Unsupported(f"Reference to '{symbol.name}'", span)
        return slot

    def _emit_expr(self, expr: Expr) -> Any:
        if isinstance(expr, IntLiteral):
            return llvm_ir.Constant(llvm_ir.IntType(64), expr.value)
        if isinstance(expr, FloatLiteral):
            return llvm_ir.Constant(llvm_ir.DoubleType(), expr.value)
        if isinstance(expr, BoolLiteral):
            return llvm_ir.Constant(llvm_ir.IntType(1), 1 if expr.value else 0)
        if isinstance(expr, Identifier):
            symbol = self.res.refs[id(expr)]
            return self._builder.load(self._address(symbol, expr.span), name=expr.name)
        if isinstance(expr, MemberAccess):
            return self._emit_module_member(expr)
        if isinstance(expr, BinaryOp):
            if expr.op in ("&&", "||"):
                return self._emit_logical(expr)
            return self._emit_binary(expr)
        if isinstance(expr, UnaryOp):
            operand = self._emit_expr(expr.operand)
            if expr.op == "!":
                return self._builder.not_(operand)
            if isinstance(operand.type, llvm_ir.DoubleType):
                return self._builder.fsub(llvm_ir.Constant(llvm_ir.DoubleType(), -0.0), operand)
            return self._builder.neg(operand)
        if isinstance(expr, Call):
            return self._emit_call(expr)
        raise _Unsupported(type(expr).__name__, expr.span)

    def _emit_module_member(self, expr: MemberAccess) -> Any:
        member = self.res.members.get(id(expr))
        if member is None or member.kind != "module" or member.symbol is None:
            raise _Unsupported("Member access", expr.span)
        symbol = member.symbol
        name = symbol_name(symbol.name, member.module)
        gv = self.module.globals.get(name)
        if gv is None:
            gv = llvm_ir.GlobalVariable(self.module, _llvm_type(symbol.type, expr.span), name=name)
            gv.global_constant = symbol.kind == SymbolKind.CONSTANT
        return self._builder.load(gv, name=expr.name)

    def _emit_binary(self, expr: BinaryOp) -> Any:
        left = self._emit_expr(expr.left)
        right = self._emit_expr(expr.right)
        is_float = isinstance(left.type, llvm_ir.DoubleType) or isinstance(right.type, llvm_ir.DoubleType)
        if is_float:
            left = self._coerce(left, llvm_ir.DoubleType())
            right = self._coerce(right, llvm_ir.DoubleType())
        b = self._builder
        op = expr.op
        if op in ("==", "!=", "<", ">", "<=", ">="):
            if is_float:
                if op == "!=":
                    return b.fcmp_unordered(op, left, right)
                return b.fcmp_ordered(op, left, right)
            return b.icmp_signed(op, left, right)
        if op == "+":
            return b.fadd(left, right) if is_float else b.add(left, right)
        if op == "-":
            return b.fsub(left, right) if is_float else b.sub(left, right)
        if op == "*":
            return b.fmul(left, right) if is_float else b.mul(left, right)
        if op == "/":
            if is_float:
                return b.fdiv(left, right)
            self._trap_if(b.icmp_signed("==", right, llvm_ir.Constant(right.type, 0)))
            return b.sdiv(left, right)
        if op == "%":
            self._trap_if(b.icmp_signed("==", right, llvm_ir.Constant(right.type, 0)))
            return b.srem(left, right)
        raise _Unsupported(f"Operator '{op}'", expr.span)

    def _emit_logical(self, expr: BinaryOp) -> Any:
        """Short-circuit ``&&`` / ``||`` through a phi node."""
        left = self._emit_expr(expr.left)
        left_bb = self._builder.block
        rhs_bb = self._func.append_basic_block(name="logic.rhs")
        end_bb = self._func.append_basic_block(name="logic.end")
        if expr.op == "&&":
            self._builder.cbranch(left, rhs_bb, end_bb)
        else:
            self._builder.cbranch(left, end_bb, rhs_bb)
        self._builder.position_at_end(rhs_bb)
        right = self._emit_expr(expr.right)
        right_bb = self._builder.block
        self._builder.branch(end_bb)

        self._builder.position_at_end(end_bb)
        phi = self._builder.phi(llvm_ir.IntType(1))
        phi.add_incoming(llvm_ir.Constant(llvm_ir.IntType(1), 0 if expr.op == "&&" else 1), left_bb)
        phi.add_incoming(right, right_bb)
        return phi

    def _emit_call(self, expr: Call) -> Any:
        plan = self.res.calls.get(id(expr))
        if plan is None:
            raise InternalLoweringError("call has no resolved plan", expr.span)
        if plan.kind == "builtin" and plan.callee == "print":
            return self._emit_print(plan.args, expr.span)
        if plan.kind != "function":
            raise _Unsupported(f"Call to {plan.kind} '{plan.callee}'", expr.span)
        ftype = plan.func_type
        name = symbol_name(plan.callee, plan.module or self.res.module_name)
        callee = self.module.globals.get(name)
        if callee is None:
            if not plan.module:
                raise _Unsupported(f"Call to '{plan.callee}'", expr.span)
            callee = llvm_ir.Function(self.module, self._function_type(ftype, expr.span), name=name)
        args = [self._emit_value(a, p.type) for a, p in zip(plan.args, ftype.params)]
        return self._builder.call(callee, args)

    def _emit_print(self, args: tuple[Expr, ...], span: Optional[Span]) -> Any:
        printf = self.module.globals.get("printf")
        if printf is None:
            fn_type = llvm_ir.FunctionType(llvm_ir.IntType(32), [llvm_ir.IntType(8).as_pointer()], var_arg=True)
            printf = llvm_ir.Function(self.module, fn_type, name="printf")
        parts: list[str] = []
        values: list[Any] = []
        for arg in args:
            t = self.res.type_of(arg)
            if isinstance(arg, StringLiteral):
                parts.append(arg.value.replace("%", "%%"))
            elif t == INT:
                parts.append("%lld")
                values.append(self._emit_expr(arg))
            elif t == FLOAT:
                parts.append("%g")
                values.append(self._emit_expr(arg))
            elif t == BOOL:
                parts.append("%s")
                flag = self._emit_expr(arg)
                values.append(self._builder.select(flag, self._cstring("true"), self._cstring("false")))
            else:
                raise _Unsupported(f"Printing a value of type '{t}'" if t != STRING else "String value",
                                   arg.span or span)
        fmt = self._cstring(" ".join(parts) + "\n")
        return self._builder.call(printf, [fmt, *values])

    def _cstring(self, text: str) -> Any:
        data = bytearray((text + "\0").encode("utf-8"))
        str_type = llvm_ir.ArrayType(llvm_ir.IntType(8), len(data))
        gv = llvm_ir.GlobalVariable(self.module, str_type, name=f".str.{self._strings}")
        self._strings += 1
        gv.initializer = llvm_ir.Constant(str_type, data)
        gv.global_constant = True
        gv.linkage = "private"
        return self._builder.bitcast(gv, llvm_ir.IntType(8).as_pointer())

    def _coerce(self, val: Any, target_type: Any) -> Any:
        if val.type == target_type:
            return val
        if isinstance(val.type, llvm_ir.IntType) and isinstance(target_type, llvm_ir.DoubleType):
            return self._builder.sitofp(val, target_type)
        return val


def _fold(expr: Expr) -> Any:
    """Evaluate a constant expression (literals and operators over them)."""
    if isinstance(expr, (IntLiteral, FloatLiteral, BoolLiteral)):
        return expr.value
    if isinstance(expr, UnaryOp):
        value = _fold(expr.operand)
        return (not value) if expr.op == "!" else -value
    if isinstance(expr, BinaryOp):
        left, right = _fold(expr.left), _fold(expr.right)
        op = expr.op
        if op == "&&":
            return left and right
        if op == "||":
            return left or right
        if op in ("/", "%") and right == 0:
            raise _Unsupported("Division by zero in a constant", expr.span)
        if op == "/" and isinstance(left, int) and isinstance(right, int):
            quotient = abs(left) // abs(right)
            return quotient if (left < 0) == (right < 0) else -quotient
        if op == "%" and isinstance(left, int) and isinstance(right, int):
            return left - right * _fold(BinaryOp(op="/", left=expr.left, right=expr.right))
        return {
            "+": lambda: left + right, "-": lambda: left - right, "*": lambda: left * right,
            "/": lambda: left / right, "==": lambda: left == right, "!=": lambda: left != right,
            "<": lambda: left < right, ">": lambda: left > right,
            "<=": lambda: left <= right, ">=": lambda: left >= right,
        }[op]()
    raise _Unsupported(type(expr).__name__, expr.span)


# ---------------------------------------------------------------------------
# Compilation to object file / JIT
# ---------------------------------------------------------------------------

def _initialize_llvm() -> None:
    """Initialize LLVM target machinery."""
    if not HAS_LLVMLITE:
        return
    llvm_binding.initialize_native_target()
    llvm_binding.initialize_native_asmprinter()


def compile_to_object(llvm_ir_str: str) -> bytes:
    """Compile LLVM IR string to native object code."""
    if not HAS_LLVMLITE:
        raise RuntimeError("llvmlite required")

    _initialize_llvm()
    mod = llvm_binding.parse_assembly(llvm_ir_str)
    mod.verify()

    target = llvm_binding.Target.from_default_triple()
    target_machine = target.create_target_machine()
    return target_machine.emit_object(mod)


class JitModule:
    """Executes emitted IR in-process with MCJIT; keep it alive while calling its functions."""

    def __init__(self, llvm_ir_str: str):
        if not HAS_LLVMLITE:
            raise RuntimeError("llvmlite required")
        _initialize_llvm()
        target = llvm_binding.Target.from_default_triple()
        self._target_machine = target.create_target_machine()
        self._engine = llvm_binding.create_mcjit_compiler(llvm_binding.parse_assembly(""),
                                                          self._target_machine)
        mod = llvm_binding.parse_assembly(llvm_ir_str)
        mod.verify()
        self._engine.add_module(mod)
        self._engine.finalize_object()
        self._engine.run_static_constructors()

    def function(self, name: str, restype: Any, *argtypes: Any) -> Any:
        """A ctypes callable for the emitted function ``name``."""
        address = self._engine.get_function_address(name)
        if not address:
            raise KeyError(f"no function named '{name}' in the JIT module")
        return ctypes.CFUNCTYPE(restype, *argtypes)(address)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def emit(res: Resolution, diagnostics: Optional[Diagnostics] = None) -> Optional[str]:
    """Run Pass 3: emit LLVM IR for a resolved unit, or None if it leaves the scalar subset."""
    return LLVMEmitter(res, diagnostics).emit_module()
