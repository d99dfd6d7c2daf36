"""Ownership checker for move-only values.

Single-owner model: a ``safe<T>`` binding (and any other move-only value,
such as a task or thread handle) may be borrowed any number of times but
moved only once. Moves happen when the whole binding is passed as a call
argument, returned, used as an initialiser or assignment source, wrapped,
yielded, awaited, or captured by ``spawn``. Assigning a new value revives the
binding. ``shared<T>`` values are reference counted and never tracked.

The checker does not walk the AST itself; the resolver drives it in
evaluation order and tells it about each use, move and definition.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from csafe.errors import Diagnostics, Span
from csafe.symbols import Symbol


class OwnerState(Enum):
    OWNED = auto()
    MOVED = auto()


@dataclass
class VarOwnership:
    symbol: Symbol
    state: OwnerState = OwnerState.OWNED
    moved_at: Optional[Span] = None
    loop_depth: int = 0


class OwnershipChecker:
    """Tracks the moved flag of every move-only binding in one function body."""

    def __init__(self, diagnostics: Diagnostics):
        self.diagnostics = diagnostics
        self.vars: dict[Symbol, VarOwnership] = {}
        self.loop_depth = 0

    def reset(self) -> None:
        self.vars = {}
        self.loop_depth = 0

    def define(self, symbol: Symbol) -> None:
        self.vars[symbol] = VarOwnership(symbol=symbol, loop_depth=self.loop_depth)

    def _report(self, var: VarOwnership, violation: str, span: Optional[Span]) -> None:
        moved = f" (moved at {var.moved_at})" if var.moved_at else ""
        self.diagnostics.type_error(
            f"{violation} of '{var.symbol.name}'{moved}",
            span, variable=var.symbol.name, violation=violation,
        )

    def check_use(self, symbol: Symbol, span: Optional[Span]) -> None:
        var = self.vars.get(symbol)
        if var is not None and var.state == OwnerState.MOVED:
            self._report(var, "Use after move", span)

    def check_move(self, symbol: Symbol, span: Optional[Span]) -> None:
        """Mark ``symbol`` moved. Every move is preceded by ``check_use``, which reports a second move."""
        var = self.vars.get(symbol)
        if var is None or var.state == OwnerState.MOVED:
            return
        var.state = OwnerState.MOVED
        var.moved_at = span

    def check_assign(self, symbol: Symbol) -> None:
        """A fresh value makes a moved binding usable again."""
        var = self.vars.get(symbol)
        if var is not None:
            var.state = OwnerState.OWNED
            var.moved_at = None

    # -------------------------------------------------------------------
    # Control flow
    # -------------------------------------------------------------------

    def snapshot(self) -> dict[Symbol, tuple[OwnerState, Optional[Span]]]:
        return {sym: (v.state, v.moved_at) for sym, v in self.vars.items()}

    def restore(self, snap: dict[Symbol, tuple[OwnerState, Optional[Span]]]) -> None:
        for sym, (state, moved_at) in snap.items():
            var = self.vars.get(sym)
            if var is not None:
                var.state = state
                var.moved_at = moved_at

    def merge(self, *branches: dict[Symbol, tuple[OwnerState, Optional[Span]]]) -> None:
        """Join branch end states: moved on any path means moved afterwards."""
        for sym, var in self.vars.items():
            for branch in branches:
                state, moved_at = branch.get(sym, (OwnerState.OWNED, None))
                if state == OwnerState.MOVED:
                    var.state = OwnerState.MOVED
                    var.moved_at = moved_at
                    break
            else:
                var.state = OwnerState.OWNED
                var.moved_at = None

    def enter_loop(self) -> dict[Symbol, tuple[OwnerState, Optional[Span]]]:
        self.loop_depth += 1
        return self.snapshot()

    def exit_loop(self, before: dict[Symbol, tuple[OwnerState, Optional[Span]]],
                  report: bool = True) -> None:
        """Report bindings from outside the loop that one iteration leaves moved."""
        self.loop_depth -= 1
        if not report:
            return
        for sym, var in self.vars.items():
            if var.loop_depth > self.loop_depth:
                continue
            was, _ = before.get(sym, (OwnerState.OWNED, None))
            if was == OwnerState.OWNED and var.state == OwnerState.MOVED:
                self.diagnostics.type_error(
                    f"'{sym.name}' is moved inside a loop and used again on the next iteration",
                    var.moved_at, variable=sym.name, violation="Move in loop",
                )
