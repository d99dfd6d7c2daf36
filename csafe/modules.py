"""Cross-module export index.

After a unit passes the resolver its exported symbols are frozen into a
``ModuleExports`` table and registered in the shared ``ModuleIndex``. Later
units resolve ``import name`` against the index. Tables are immutable once
built; registration takes a short lock, lookups never block.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from csafe.ast_nodes import Expr
from csafe.symbols import ClassInfo, SymbolKind
from csafe.types import CsafeType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportedSymbol:
    name: str
    type: CsafeType
    kind: SymbolKind
    # Parameter default values of exported functions, in declaration order.
    defaults: tuple[Optional[Expr], ...] = ()


@dataclass(frozen=True)
class ModuleExports:
    name: str
    filename: str = "<stdin>"
    symbols: Mapping[str, ExportedSymbol] = field(default_factory=lambda: MappingProxyType({}))
    classes: Mapping[str, ClassInfo] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def build(cls, name: str, filename: str, symbols: dict[str, ExportedSymbol],
              classes: dict[str, ClassInfo]) -> ModuleExports:
        return cls(name=name, filename=filename,
                   symbols=MappingProxyType(dict(symbols)),
                   classes=MappingProxyType(dict(classes)))

    def lookup(self, name: str) -> Optional[ExportedSymbol]:
        return self.symbols.get(name)


class DuplicateModuleError(Exception):
    def __init__(self, name: str, first: str, second: str):
        self.name = name
        self.first = first
        self.second = second
        super().__init__(f"Module '{name}' is defined by both {first} and {second}")


class ModuleIndex:
    """Shared, append-only registry of module export tables."""

    def __init__(self):
        self._lock = threading.Lock()
        self._modules: dict[str, ModuleExports] = {}

    def register(self, exports: ModuleExports) -> None:
        with self._lock:
            existing = self._modules.get(exports.name)
            if existing is not None:
                raise DuplicateModuleError(exports.name, existing.filename, exports.filename)
            self._modules[exports.name] = exports
        logger.debug("registered module %s (%d exports)", exports.name, len(exports.symbols))

    def get(self, name: str) -> Optional[ModuleExports]:
        return self._modules.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._modules

    def names(self) -> list[str]:
        return sorted(self._modules)
