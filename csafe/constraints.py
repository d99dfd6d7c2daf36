"""Static range, slice and assertion facts via the Z3 SMT solver.

Integer expressions are translated to Z3 terms. Literals and ``const``
bindings with constant initialisers become concrete values; every other
``int`` binding becomes a free variable, so a fact is only reported when it
holds for every possible value. Expressions with calls or other effects are
opaque and never produce a fact. Anything that cannot be decided here is
left to the runtime contract (``csafe::range`` / ``csafe::slice``).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from csafe.ast_nodes import BinaryOp, BoolLiteral, Expr, Identifier, IntLiteral, UnaryOp

try:
    import z3
    HAS_Z3 = True
except ImportError:
    z3 = None
    HAS_Z3 = False

logger = logging.getLogger(__name__)

# Milliseconds per query; an undecided query is treated as "not provable".
SOLVER_TIMEOUT_MS = 2000

_ARITH = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
}
_COMPARE = {
    "<": lambda a, b: a < b,
    ">": lambda a, b: a > b,
    "<=": lambda a, b: a <= b,
    ">=": lambda a, b: a >= b,
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
}


class Binding:
    """What the fact checker knows about a name: a constant term or a free variable."""

    def __init__(self, key: str, kind: str, constant: Optional[Expr] = None):
        self.key = key
        self.kind = kind  # "int" or "bool"
        self.constant = constant


class ConstraintChecker:
    """Decides ``always(...)`` facts over dialect expressions.

    ``lookup`` maps an identifier node to a ``Binding`` (or None when the
    name is not an int/bool value); the resolver supplies it because only
    the resolver knows which symbol an identifier refers to.
    """

    def __init__(self, lookup: Callable[[Identifier], Optional[Binding]], enabled: bool = True):
        self.lookup = lookup
        self.enabled = enabled and HAS_Z3
        self._vars: dict[str, Any] = {}
        self._expanding: set[str] = set()

    # -------------------------------------------------------------------
    # Translation
    # -------------------------------------------------------------------

    def _var(self, binding: Binding) -> Any:
        var = self._vars.get(binding.key)
        if var is None:
            var = z3.Int(binding.key) if binding.kind == "int" else z3.Bool(binding.key)
            self._vars[binding.key] = var
        return var

    def to_int(self, expr: Optional[Expr]) -> Any:
        if expr is None or not self.enabled:
            return None
        if isinstance(expr, IntLiteral):
            return z3.IntVal(expr.value)
        if isinstance(expr, Identifier):
            return self._name(expr, "int")
        if isinstance(expr, UnaryOp) and expr.op == "-":
            inner = self.to_int(expr.operand)
            return None if inner is None else -inner
        if isinstance(expr, BinaryOp) and expr.op in _ARITH:
            left = self.to_int(expr.left)
            right = self.to_int(expr.right)
            if left is None or right is None:
                return None
            return _ARITH[expr.op](left, right)
        return None

    def to_bool(self, expr: Optional[Expr]) -> Any:
        if expr is None or not self.enabled:
            return None
        if isinstance(expr, BoolLiteral):
            return z3.BoolVal(expr.value)
        if isinstance(expr, Identifier):
            return self._name(expr, "bool")
        if isinstance(expr, UnaryOp) and expr.op == "!":
            inner = self.to_bool(expr.operand)
            return None if inner is None else z3.Not(inner)
        if isinstance(expr, BinaryOp):
            if expr.op in ("&&", "||"):
                left = self.to_bool(expr.left)
                right = self.to_bool(expr.right)
                if left is None or right is None:
                    return None
                return z3.And(left, right) if expr.op == "&&" else z3.Or(left, right)
            if expr.op in _COMPARE:
                left = self.to_int(expr.left)
                right = self.to_int(expr.right)
                if left is None or right is None:
                    return None
                return _COMPARE[expr.op](left, right)
        return None

    def _name(self, ident: Identifier, kind: str) -> Any:
        binding = self.lookup(ident)
        if binding is None or binding.kind != kind:
            return None
        if binding.constant is not None and binding.key not in self._expanding:
            self._expanding.add(binding.key)
            try:
                term = self.to_int(binding.constant) if kind == "int" else self.to_bool(binding.constant)
            finally:
                self._expanding.discard(binding.key)
            if term is not None:
                return term
        return self._var(binding)

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def always(self, fact: Any) -> bool:
        """True iff ``fact`` holds for every assignment of the free variables."""
        if fact is None or not self.enabled:
            return False
        solver = z3.Solver()
        solver.set("timeout", SOLVER_TIMEOUT_MS)
        solver.add(z3.Not(fact))
        result = solver.check()
        if result == z3.unknown:
            logger.debug("solver gave up on %s", fact)
        return result == z3.unsat

    def _always_int(self, expr: Optional[Expr], predicate: Callable[[Any], Any]) -> bool:
        term = self.to_int(expr)
        return term is not None and self.always(predicate(term))

    def step_always_zero(self, step: Optional[Expr]) -> bool:
        return self._always_int(step, lambda s: s == 0)

    def negative_step_without_descent(self, start: Optional[Expr], end: Optional[Expr],
                                      step: Optional[Expr]) -> bool:
        """Step is always negative while ``start <= end`` always holds."""
        s, a, b = self.to_int(step), self.to_int(start), self.to_int(end)
        if s is None or a is None or b is None:
            return False
        return self.always(s < 0) and self.always(a <= b)

    def always_inverted(self, start: Optional[Expr], end: Optional[Expr]) -> bool:
        a, b = self.to_int(start), self.to_int(end)
        if a is None or b is None:
            return False
        return self.always(a > b)

    def always_negative(self, expr: Optional[Expr]) -> bool:
        return self._always_int(expr, lambda v: v < 0)

    def always_zero(self, expr: Optional[Expr]) -> bool:
        return self._always_int(expr, lambda v: v == 0)

    def always_false(self, condition: Expr) -> bool:
        term = self.to_bool(condition)
        return term is not None and self.always(z3.Not(term))
