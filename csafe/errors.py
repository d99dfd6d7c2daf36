"""Structured diagnostics for the csafe compiler.

Every stage reports into a per-unit ``Diagnostics`` sink instead of raising.
Each diagnostic is machine-readable (``to_dict`` / ``to_json``) and carries
the stage that produced it. Only ``CompileError`` is ever raised, and only by
callers that explicitly ask for strict behaviour.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


class ErrorKind(Enum):
    LEXICAL_ERROR = "lexical_error"
    SYNTAX_ERROR = "syntax_error"
    NAME_ERROR = "name_error"
    TYPE_ERROR = "type_error"
    INTERNAL_ERROR = "internal_error"
    UNSUPPORTED = "unsupported_construct"
    WARNING = "warning"


class Stage(Enum):
    LEXER = "lexer"
    PARSER = "parser"
    RESOLVER = "resolver"
    LOWERING = "lowering"
    DRIVER = "driver"


@dataclass(frozen=True)
class Span:
    """A half-open byte range in one source file, with its 1-based start position."""
    file: str = "<stdin>"
    line: int = 1
    column: int = 1
    offset: int = 0
    length: int = 0

    @property
    def end(self) -> int:
        return self.offset + self.length

    def cover(self, other: Optional[Span]) -> Span:
        """Smallest span enclosing both ``self`` and ``other``."""
        if other is None:
            return self
        first = self if self.offset <= other.offset else other
        end = max(self.end, other.end)
        return Span(first.file, first.line, first.column, first.offset, end - first.offset)

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


@dataclass
class Diagnostic:
    kind: ErrorKind
    message: str
    span: Optional[Span] = None
    stage: Stage = Stage.DRIVER
    severity: Severity = Severity.ERROR
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "severity": self.severity.value,
            "kind": self.kind.value,
            "stage": self.stage.value,
            "message": self.message,
        }
        if self.span:
            d["file"] = self.span.file
            d["line"] = self.span.line
            d["column"] = self.span.column
        if self.details:
            d["details"] = self.details
        return d

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def __str__(self) -> str:
        loc = f"{self.span}: " if self.span else ""
        return f"{loc}{self.severity.value}[{self.kind.value}]: {self.message}"


class Diagnostics:
    """Ordered diagnostics sink for one compilation unit.

    Reporting never alters control flow; the pipeline asks ``has_errors`` once
    a stage finishes to decide whether output may be produced.
    """

    def __init__(self, filename: str = "<stdin>"):
        self.filename = filename
        self._items: list[Diagnostic] = []

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def report(self, kind: ErrorKind, message: str, span: Optional[Span],
               stage: Stage, severity: Severity = Severity.ERROR,
               details: Optional[dict[str, Any]] = None) -> Diagnostic:
        diag = Diagnostic(kind=kind, message=message, span=span, stage=stage,
                          severity=severity, details=details or {})
        self._items.append(diag)
        return diag

    def lexical_error(self, message: str, span: Span) -> Diagnostic:
        return self.report(ErrorKind.LEXICAL_ERROR, message, span, Stage.LEXER)

    def syntax_error(self, message: str, span: Optional[Span]) -> Diagnostic:
        return self.report(ErrorKind.SYNTAX_ERROR, message, span, Stage.PARSER)

    def name_error(self, name: str, span: Optional[Span], message: Optional[str] = None) -> Diagnostic:
        return self.report(
            ErrorKind.NAME_ERROR,
            message or f"Undefined name '{name}'",
            span, Stage.RESOLVER, details={"name": name},
        )

    def type_error(self, message: str, span: Optional[Span], **details: Any) -> Diagnostic:
        return self.report(ErrorKind.TYPE_ERROR, message, span, Stage.RESOLVER, details=details)

    def type_mismatch(self, expected: Any, actual: Any, span: Optional[Span],
                      context: str = "") -> Diagnostic:
        prefix = f"{context}: " if context else ""
        return self.type_error(
            f"{prefix}expected type '{expected}', got '{actual}'",
            span, expected_type=str(expected), actual_type=str(actual),
        )

    def warning(self, message: str, span: Optional[Span], stage: Stage = Stage.RESOLVER,
                **details: Any) -> Diagnostic:
        return self.report(ErrorKind.WARNING, message, span, stage,
                           severity=Severity.WARNING, details=details)

    def internal_error(self, message: str, span: Optional[Span]) -> Diagnostic:
        return self.report(ErrorKind.INTERNAL_ERROR, f"internal compiler error: {message}",
                           span, Stage.LOWERING)

    def unsupported(self, construct: str, target: str, span: Optional[Span]) -> Diagnostic:
        return self.report(
            ErrorKind.UNSUPPORTED,
            f"{construct} is not supported by the '{target}' target",
            span, Stage.LOWERING, details={"construct": construct, "target": target},
        )

    def promote_warnings(self) -> None:
        """Treat every warning as an error (``--werror``)."""
        for diag in self._items:
            diag.severity = Severity.ERROR

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self._items if d.is_error]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self._items if d.severity == Severity.WARNING]

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self._items)

    @property
    def ok(self) -> bool:
        return not self.has_errors

    def of_kind(self, kind: ErrorKind) -> list[Diagnostic]:
        return [d for d in self._items if d.kind == kind]

    def to_list(self) -> list[dict[str, Any]]:
        return [d.to_dict() for d in self._items]

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_list(), indent=indent)

    def format_pretty(self) -> str:
        return "\n".join(str(d) for d in self._items)


class CompileError(Exception):
    """Exception wrapping one or more error diagnostics."""

    def __init__(self, errors: list[Diagnostic] | Diagnostic):
        if isinstance(errors, Diagnostic):
            errors = [errors]
        self.errors = errors
        super().__init__(self._format())

    def _format(self) -> str:
        return "\n".join(str(e) for e in self.errors)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps([e.to_dict() for e in self.errors], indent=indent)


class InternalLoweringError(Exception):
    """A Resolver/Lowering contract violation. Always a compiler defect."""

    def __init__(self, message: str, span: Optional[Span] = None):
        self.span = span
        super().__init__(message)
