"""Coroutine frames: ``coroutine<T>`` functions as resumable state machines.

A coroutine body is lowered into the ``next`` member of a state struct. Its
parameters and every local become members (renamed where two locals share
a name), so nothing lives on the C++ stack between resumptions. Each
``yield`` stores the value, records a resume point and returns; the next
call jumps back through a dispatch switch at the top of ``next``:

    struct countUpTo_state {
        std::int64_t n{};
        int csafe_state = 0;
        std::int64_t i{};
        bool next(std::int64_t& csafe_out) {
            switch (csafe_state) { case 0: {break;} case 1: {goto csafe_resume_1;} ... }
            ...
            csafe_out = i; csafe_state = 1; return true; csafe_resume_1:;
            ...
            csafe_state = -1; return false;
        }
    };

The lowering pass drives the frame; this module only owns the frame's
members, names and resume points.
"""

from __future__ import annotations

from typing import Optional

from csafe.cpp_ast import (
    CAssign, CBreak, CCase, CExpr, CField, CFunction, CGoto, CLabel, CLit, CName,
    CParam, CReturn, CStmt, CStruct, CSwitch, CBraceInit, CCall,
)
from csafe.symbols import Symbol

STATE = "csafe_state"
OUT = "csafe_out"
FINISHED = -1


class CoroutineFrame:
    """Members and resume points of one coroutine's state struct."""

    def __init__(self, name: str, elem_type: str):
        self.name = name
        self.struct_name = f"{name}_state"
        self.elem_type = elem_type
        self.params: list[CField] = []
        self.locals: list[CField] = []
        self.renames: dict[Symbol, str] = {}
        self._used: set[str] = {STATE, OUT}
        self._resume_points = 0
        self._temps = 0

    def _unique(self, base: str) -> str:
        name = base
        n = 1
        while name in self._used:
            name = f"{base}_{n}"
            n += 1
        self._used.add(name)
        return name

    def add_param(self, symbol: Symbol, name: str, cpp_type: str) -> str:
        member = self._unique(name)
        self.renames[symbol] = member
        self.params.append(CField(cpp_type, member))
        return member

    def hoist(self, symbol: Symbol, name: str, cpp_type: str) -> str:
        """Give a local its own member; repeated hoists of one symbol are no-ops."""
        member = self.renames.get(symbol)
        if member is None:
            member = self._unique(name)
            self.renames[symbol] = member
            self.locals.append(CField(cpp_type, member))
        return member

    def temp(self, prefix: str, cpp_type: str) -> str:
        member = self._unique(f"csafe_{prefix}{self._temps}")
        self._temps += 1
        self.locals.append(CField(cpp_type, member))
        return member

    def name_of(self, symbol: Symbol) -> Optional[str]:
        return self.renames.get(symbol)

    # -------------------------------------------------------------------
    # Control transfer
    # -------------------------------------------------------------------

    def yield_value(self, value: CExpr) -> list[CStmt]:
        self._resume_points += 1
        point = self._resume_points
        return [
            CAssign(CName(OUT), value),
            CAssign(CName(STATE), CLit(str(point))),
            CReturn(CLit("true")),
            CLabel(_resume_label(point)),
        ]

    def finish(self) -> list[CStmt]:
        return [CAssign(CName(STATE), CLit(str(FINISHED))), CReturn(CLit("false"))]

    def _dispatch(self) -> CSwitch:
        cases = [CCase(("0",), (CBreak(),))]
        for point in range(1, self._resume_points + 1):
            cases.append(CCase((str(point),), (CGoto(_resume_label(point)),)))
        cases.append(CCase((), (CReturn(CLit("false")),)))
        return CSwitch(CName(STATE), tuple(cases))

    # -------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------

    def build_struct(self, body: list[CStmt]) -> CStruct:
        next_body = (self._dispatch(), *body, *self.finish())
        members = (
            *self.params,
            CField("int", STATE, CLit("0")),
            *self.locals,
            CFunction("bool", "next", (CParam(f"{self.elem_type}&", OUT),), next_body),
        )
        return CStruct(self.struct_name, members)

    def build_factory(self, return_type: str, params: tuple[CParam, ...],
                      args: tuple[CExpr, ...]) -> CFunction:
        """The user-visible function: packs its arguments into a fresh frame."""
        frame = CBraceInit(self.struct_name, args)
        body = (CReturn(CCall(CName(return_type), (frame,))),)
        return CFunction(return_type, self.name, params, body)


def _resume_label(point: int) -> str:
    return f"csafe_resume_{point}"
