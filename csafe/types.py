"""csafe type system.

Primitive types: int, float, string, bool, void
Ownership wrappers: safe<T> (single owner, moved on transfer) and
shared<T> (reference counted, copied freely)
Generic types: Result<S, E>, coroutine<T>, seq<T>, task<T>
Handles: thread (joinable result of ``spawn``)
``UNKNOWN`` is the error sentinel: it is assignable to and from every type
so one bad expression does not cascade into a wall of diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from csafe.ast_nodes import TypeAnnotation
from csafe.errors import Diagnostics


# ---------------------------------------------------------------------------
# Type Representations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CsafeType:
    """Base type."""
    def __str__(self) -> str:
        return "?"

    def is_assignable_from(self, other: CsafeType) -> bool:
        if isinstance(other, UnknownType):
            return True
        return self == other


@dataclass(frozen=True)
class UnknownType(CsafeType):
    def __str__(self) -> str:
        return "<unknown>"

    def is_assignable_from(self, other: CsafeType) -> bool:
        return True


@dataclass(frozen=True)
class PrimitiveType(CsafeType):
    name: str = ""

    def __str__(self) -> str:
        return self.name

    def is_assignable_from(self, other: CsafeType) -> bool:
        if isinstance(other, UnknownType):
            return True
        # int widens implicitly to float
        if self.name == "float" and other == INT:
            return True
        return self == other


@dataclass(frozen=True)
class OwnedType(CsafeType):
    """``safe<T>`` when ``shared`` is False, ``shared<T>`` otherwise."""
    inner: CsafeType = field(default_factory=CsafeType)
    shared: bool = False

    def __str__(self) -> str:
        return f"{'shared' if self.shared else 'safe'}<{self.inner}>"

    @property
    def move_only(self) -> bool:
        return not self.shared

    def is_assignable_from(self, other: CsafeType) -> bool:
        if isinstance(other, UnknownType):
            return True
        return (isinstance(other, OwnedType) and self.shared == other.shared
                and _same(self.inner, other.inner))


@dataclass(frozen=True)
class ResultType(CsafeType):
    ok: CsafeType = field(default_factory=CsafeType)
    err: CsafeType = field(default_factory=CsafeType)

    def __str__(self) -> str:
        return f"Result<{self.ok}, {self.err}>"

    def is_assignable_from(self, other: CsafeType) -> bool:
        if isinstance(other, UnknownType):
            return True
        return isinstance(other, ResultType) and _same(self.ok, other.ok) and _same(self.err, other.err)


@dataclass(frozen=True)
class CoroutineType(CsafeType):
    elem: CsafeType = field(default_factory=CsafeType)

    def __str__(self) -> str:
        return f"coroutine<{self.elem}>"

    def is_assignable_from(self, other: CsafeType) -> bool:
        if isinstance(other, UnknownType):
            return True
        return isinstance(other, CoroutineType) and _same(self.elem, other.elem)


@dataclass(frozen=True)
class SequenceType(CsafeType):
    elem: CsafeType = field(default_factory=CsafeType)

    def __str__(self) -> str:
        return f"seq<{self.elem}>"

    def is_assignable_from(self, other: CsafeType) -> bool:
        if isinstance(other, UnknownType):
            return True
        return isinstance(other, SequenceType) and _same(self.elem, other.elem)


@dataclass(frozen=True)
class TaskType(CsafeType):
    """Pending result of calling an ``async func``; consumed by ``await``."""
    result: CsafeType = field(default_factory=CsafeType)

    def __str__(self) -> str:
        return f"task<{self.result}>"

    def is_assignable_from(self, other: CsafeType) -> bool:
        if isinstance(other, UnknownType):
            return True
        return isinstance(other, TaskType) and _same(self.result, other.result)


@dataclass(frozen=True)
class ThreadType(CsafeType):
    """Joinable handle returned by ``spawn``."""
    def __str__(self) -> str:
        return "thread"


@dataclass(frozen=True)
class ParamInfo:
    name: str
    type: CsafeType
    has_default: bool = False


@dataclass(frozen=True)
class FunctionType(CsafeType):
    params: tuple[ParamInfo, ...] = ()
    return_type: CsafeType = field(default_factory=CsafeType)
    is_async: bool = False

    def __str__(self) -> str:
        params = ", ".join(f"{p.name}: {p.type}" for p in self.params)
        prefix = "async func" if self.is_async else "func"
        return f"{prefix}({params}): {self.return_type}"

    @property
    def required(self) -> tuple[ParamInfo, ...]:
        return tuple(p for p in self.params if not p.has_default)

    def param_index(self, name: str) -> Optional[int]:
        for i, p in enumerate(self.params):
            if p.name == name:
                return i
        return None


@dataclass(frozen=True)
class ClassType(CsafeType):
    name: str = ""
    module: str = ""

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ModuleType(CsafeType):
    name: str = ""

    def __str__(self) -> str:
        return f"module {self.name}"


def _same(expected: CsafeType, actual: CsafeType) -> bool:
    """Invariant type-argument check that still lets UNKNOWN through."""
    if isinstance(expected, UnknownType) or isinstance(actual, UnknownType):
        return True
    if type(expected) is not type(actual):
        return False
    if isinstance(expected, PrimitiveType):
        return expected == actual
    return expected.is_assignable_from(actual) and actual.is_assignable_from(expected)


# ---------------------------------------------------------------------------
# Built-in Types
# ---------------------------------------------------------------------------

INT = PrimitiveType("int")
FLOAT = PrimitiveType("float")
STRING = PrimitiveType("string")
BOOL = PrimitiveType("bool")
VOID = PrimitiveType("void")
UNKNOWN = UnknownType()
THREAD = ThreadType()

BUILTIN_TYPES: dict[str, CsafeType] = {
    "int": INT,
    "float": FLOAT,
    "string": STRING,
    "bool": BOOL,
    "void": VOID,
    "thread": THREAD,
}

# Generic constructors and their arity.
GENERIC_ARITY: dict[str, int] = {
    "safe": 1,
    "shared": 1,
    "Result": 2,
    "coroutine": 1,
    "seq": 1,
    "task": 1,
}

NUMERIC = (INT, FLOAT)


def is_unknown(t: CsafeType) -> bool:
    return isinstance(t, UnknownType)


def is_numeric(t: CsafeType) -> bool:
    return t in NUMERIC


def is_move_only(t: CsafeType,
                 class_fields: Callable[[ClassType], Optional[Iterable[CsafeType]]] = lambda c: None,
                 _seen: Optional[set] = None) -> bool:
    """Values of ``t`` have a single owner and are moved, never copied.

    ``safe<T>``, task and thread handles are move-only, and so is any
    sequence, Result or class holding one. ``class_fields`` gives the field
    types of a class, or None when the class is not known.
    """
    if isinstance(t, OwnedType):
        return t.move_only
    if isinstance(t, (TaskType, ThreadType)):
        return True
    if isinstance(t, SequenceType):
        return is_move_only(t.elem, class_fields, _seen)
    if isinstance(t, ResultType):
        return is_move_only(t.ok, class_fields, _seen) or is_move_only(t.err, class_fields, _seen)
    if isinstance(t, ClassType):
        seen = _seen if _seen is not None else set()
        if t in seen:
            return False
        seen.add(t)
        fields = class_fields(t)
        return fields is not None and any(is_move_only(f, class_fields, seen) for f in fields)
    return False


def numeric_join(a: CsafeType, b: CsafeType) -> CsafeType:
    if a == FLOAT or b == FLOAT:
        return FLOAT
    return INT


def resolve_type_annotation(
    annotation: TypeAnnotation,
    diagnostics: Diagnostics,
    lookup_class: Callable[[str], Optional[CsafeType]] = lambda name: None,
) -> CsafeType:
    """Resolve a ``TypeAnnotation`` to a type, reporting unknown names and bad arity."""
    name = annotation.name
    args = annotation.args

    if name in GENERIC_ARITY:
        arity = GENERIC_ARITY[name]
        if len(args) != arity:
            diagnostics.type_error(
                f"Type '{name}' takes {arity} type argument(s), got {len(args)}",
                annotation.span, type_name=name,
            )
            return UNKNOWN
        resolved = [resolve_type_annotation(a, diagnostics, lookup_class) for a in args]
        for arg_ann, arg in zip(args, resolved):
            if arg == VOID and name != "task":
                diagnostics.type_error(f"'void' is not a valid type argument of '{name}'",
                                       arg_ann.span, type_name=name)
                return UNKNOWN
        if name == "safe":
            return OwnedType(resolved[0], shared=False)
        if name == "shared":
            return OwnedType(resolved[0], shared=True)
        if name == "Result":
            return ResultType(resolved[0], resolved[1])
        if name == "coroutine":
            return CoroutineType(resolved[0])
        if name == "seq":
            return SequenceType(resolved[0])
        return TaskType(resolved[0])

    if args:
        diagnostics.type_error(f"Type '{name}' does not take type arguments",
                               annotation.span, type_name=name)
        return UNKNOWN

    builtin = BUILTIN_TYPES.get(name)
    if builtin is not None:
        return builtin

    found = lookup_class(name)
    if found is not None:
        return found

    diagnostics.name_error(name, annotation.span, f"Unknown type '{name}'")
    return UNKNOWN
