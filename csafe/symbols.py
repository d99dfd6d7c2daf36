"""Symbols and lexical scopes.

Scopes nest program → module → function → block. Lookup walks outward from
the innermost scope, so an inner binding shadows an outer one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from csafe.ast_nodes import Expr, Node
from csafe.types import ClassType, CsafeType, FunctionType, ParamInfo


class SymbolKind(Enum):
    VARIABLE = "variable"
    CONSTANT = "constant"
    FUNCTION = "function"
    PARAMETER = "parameter"
    MODULE = "module"
    CLASS = "class"
    FIELD = "field"
    LOOP_VARIABLE = "loop_variable"
    BUILTIN = "builtin"


@dataclass(eq=False)
class Symbol:
    name: str
    type: CsafeType
    kind: SymbolKind
    mutable: bool = False
    scope: Optional[Scope] = field(default=None, repr=False)
    node: Optional[Node] = field(default=None, repr=False)
    exported: bool = False
    # Module that owns an imported symbol; empty for local ones.
    origin: str = ""


@dataclass
class ClassInfo:
    """Members of a class, kept beside its ``ClassType``."""
    name: str
    fields: dict[str, CsafeType] = field(default_factory=dict)
    # Constant default values of fields that have one.
    field_defaults: dict[str, Expr] = field(default_factory=dict)
    methods: dict[str, FunctionType] = field(default_factory=dict)
    method_defaults: dict[str, tuple[Optional[Expr], ...]] = field(default_factory=dict)
    node: Optional[Node] = None
    origin: str = ""

    def constructor(self) -> FunctionType:
        params = tuple(
            ParamInfo(name, ftype, name in self.field_defaults)
            for name, ftype in self.fields.items()
        )
        return FunctionType(params=params, return_type=ClassType(self.name, self.origin))


class Scope:
    """A single lexical scope."""

    def __init__(self, parent: Optional[Scope] = None, kind: str = "block",
                 owner: Optional[Node] = None):
        self.parent = parent
        self.kind = kind
        self.owner = owner
        self.symbols: dict[str, Symbol] = {}

    def define(self, symbol: Symbol) -> Symbol:
        symbol.scope = self
        self.symbols[symbol.name] = symbol
        return symbol

    def lookup_local(self, name: str) -> Optional[Symbol]:
        return self.symbols.get(name)

    def lookup(self, name: str) -> Optional[Symbol]:
        scope: Optional[Scope] = self
        while scope is not None:
            found = scope.symbols.get(name)
            if found is not None:
                return found
            scope = scope.parent
        return None

    def child(self, kind: str = "block", owner: Optional[Node] = None) -> Scope:
        return Scope(parent=self, kind=kind, owner=owner)

    def __repr__(self) -> str:
        return f"Scope({self.kind}, {sorted(self.symbols)})"
