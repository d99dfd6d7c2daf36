"""csafe Resolver Tests.

Name resolution, inference, match exhaustiveness, coroutine and async
typing, and the module rules of pass 1.
"""

import pytest

from csafe.errors import Diagnostics, ErrorKind, Severity
from csafe.modules import ModuleIndex
from csafe.parser import parse
from csafe.pass1_resolve import resolve
from csafe.types import FLOAT, INT, SequenceType


def _check(source, index=None):
    diagnostics = Diagnostics("test.csafe")
    program = parse(source, "test.csafe", diagnostics)
    res = resolve(program, diagnostics, index)
    return res, diagnostics


def _messages(diagnostics, kind=None):
    return [d.message for d in diagnostics if kind is None or d.kind == kind]


class TestInference:
    """let-binding inference and annotations."""

    def test_globals_infer_and_accept_annotation(self):
        res, diagnostics = _check("let x = 42; let y: float = 3.14;")
        assert len(diagnostics) == 0
        x, y = res.program.declarations
        assert res.symbol_of(x).type == INT
        assert res.symbol_of(y).type == FLOAT

    def test_int_widens_to_float(self):
        _, diagnostics = _check("let y: float = 3;")
        assert diagnostics.ok

    def test_annotation_mismatch(self):
        _, diagnostics = _check('let n: int = "three";')
        [diag] = diagnostics.errors
        assert diag.kind == ErrorKind.TYPE_ERROR
        assert diag.details["expected_type"] == "int"
        assert diag.details["actual_type"] == "string"

    def test_let_without_type_or_value(self):
        _, diagnostics = _check("func f() { let x; }")
        assert _messages(diagnostics) == [
            "Cannot infer the type of 'x' without a type annotation or initializer"]

    def test_list_literal(self):
        res, diagnostics = _check("func f() { let nums = [1, 2, 3]; print(len(nums)); }")
        assert diagnostics.ok
        decl = res.program.declarations[0].body.statements[0]
        assert res.symbol_of(decl).type == SequenceType(INT)

    def test_assign_to_constant_and_parameter(self):
        source = "const k = 1; func f(p: int) { k = 2; p = 3; }"
        _, diagnostics = _check(source)
        assert _messages(diagnostics) == [
            "Cannot assign to constant 'k'", "Cannot assign to parameter 'p'"]


class TestNames:
    """Unknown names get one NameError and then stay quiet."""

    def test_undefined_name(self):
        _, diagnostics = _check("func f(): int { return missing + 1; }")
        [diag] = diagnostics.errors
        assert diag.kind == ErrorKind.NAME_ERROR
        assert diag.details["name"] == "missing"

    def test_unknown_type(self):
        _, diagnostics = _check("func f(p: Widget) { }")
        assert _messages(diagnostics) == ["Unknown type 'Widget'"]

    def test_functions_may_be_used_before_declaration(self):
        _, diagnostics = _check("func a(): int { return b(); } func b(): int { return 1; }")
        assert diagnostics.ok

    def test_missing_return(self):
        _, diagnostics = _check("func f(n: int): int { if (n > 0) { return 1; } }")
        assert _messages(diagnostics) == ["Function 'f' may finish without returning a value"]


class TestMatch:
    """Exhaustiveness, tags, and duplicate / unreachable arms."""

    def test_result_match_without_err_arm(self):
        source = """
func handle(result: Result<int, string>) {
    match (result) {
        case (int s) { }
    }
}
"""
        _, diagnostics = _check(source)
        [diag] = diagnostics.errors
        assert diag.kind == ErrorKind.TYPE_ERROR
        assert "Non-exhaustive match" in diag.message
        assert diag.details["missing"] == ["err"]

    def test_result_match_with_both_arms(self):
        source = """
func handle(result: Result<int, string>): int {
    match (result) {
        case ok(v) { return v; }
        case err(e) { return 0; }
    }
}
"""
        res, diagnostics = _check(source)
        assert diagnostics.ok, diagnostics.format_pretty()
        [info] = res.matches.values()
        assert info.strategy == "variant"
        assert [a.tag for a in info.arms] == ["ok", "err"]
        assert [a.index for a in info.arms] == [0, 1]
        assert info.exhaustive

    def test_default_case_makes_match_exhaustive(self):
        source = """
func handle(result: Result<int, string>) {
    match (result) {
        case ok(v) { print(v); }
        default_case { }
    }
}
"""
        _, diagnostics = _check(source)
        assert diagnostics.ok

    def test_int_match_needs_default(self):
        _, diagnostics = _check("func f(n: int) { match (n) { case 1 { } case 2 { } } }")
        assert _messages(diagnostics) == ["Non-exhaustive match over 'int': add a 'default_case'"]

    def test_bool_match_with_both_literals(self):
        res, diagnostics = _check("func f(b: bool) { match (b) { case true { } case false { } } }")
        assert diagnostics.ok
        [info] = res.matches.values()
        assert info.strategy == "switch"
        assert [a.tag for a in info.arms] == ["literal", "literal"]

    def test_binding_pattern_is_catch_all(self):
        source = 'func f(s: string) { match (s) { case "a" { } case (string other) { print(other); } } }'
        res, diagnostics = _check(source)
        assert diagnostics.ok
        [info] = res.matches.values()
        assert info.strategy == "chain"
        assert [a.tag for a in info.arms] == ["literal", "bind"]

    def test_duplicate_pattern_warns(self):
        source = "func f(n: int) { match (n) { case 1 { } case 1 { } default_case { } } }"
        res, diagnostics = _check(source)
        assert diagnostics.ok
        [warning] = diagnostics.warnings
        assert warning.message == "Duplicate case pattern; only the first matching arm runs"
        [info] = res.matches.values()
        assert [a.reachable for a in info.arms] == [True, False]

    def test_arm_after_catch_all_is_unreachable(self):
        source = "func f(n: int) { match (n) { case (int any) { } case 3 { } } }"
        _, diagnostics = _check(source)
        assert diagnostics.ok
        assert _messages(diagnostics, ErrorKind.WARNING) == [
            "Unreachable case arm: earlier arms already match every value"]

    def test_type_pattern_that_never_matches(self):
        _, diagnostics = _check("func f(n: int) { match (n) { case (string s) { } default_case { } } }")
        assert _messages(diagnostics) == ["Type pattern 'string' can never match a value of type 'int'"]


class TestResultHandling:
    """Result values must be matched."""

    def test_discarded_result(self):
        source = """
func parse_num(s: string): Result<int, string> { return ok(1); }
func main() { parse_num("1"); }
"""
        _, diagnostics = _check(source)
        [diag] = diagnostics.errors
        assert "is discarded" in diag.message

    def test_result_local_never_read(self):
        source = """
func parse_num(s: string): Result<int, string> { return err("bad"); }
func main() { let r = parse_num("1"); }
"""
        _, diagnostics = _check(source)
        assert _messages(diagnostics) == ["Result bound to 'r' is never handled"]


class TestCoroutinesAndAsync:
    """coroutine<T>, async func, task<T> and spawn typing."""

    def test_coroutine(self):
        source = """
func countUpTo(max: int): coroutine<int> {
    let i = 0;
    while (i < max) { yield i; i = i + 1; }
}
func main() { for (n in countUpTo(3)) { print(n); } }
"""
        res, diagnostics = _check(source)
        assert diagnostics.ok, diagnostics.format_pretty()
        info = next(i for i in res.functions.values() if i.name == "countUpTo")
        assert info.is_coroutine and info.coroutine_elem == INT

    def test_yield_type_mismatch(self):
        _, diagnostics = _check('func gen(): coroutine<int> { yield "no"; }')
        [diag] = diagnostics.errors
        assert diag.message.startswith("Yielded value")

    def test_yield_outside_coroutine(self):
        _, diagnostics = _check("func f() { yield 1; }")
        assert _messages(diagnostics) == [
            "'yield' outside a coroutine; declare the function as returning coroutine<T>"]

    def test_return_value_in_coroutine(self):
        _, diagnostics = _check("func gen(): coroutine<int> { yield 1; return 2; }")
        assert "Coroutines cannot return a value; use 'yield'" in _messages(diagnostics)

    def test_await_in_async_function(self):
        source = """
async func fetch(id: int): int { return id * 2; }
async func run(): int { let t = fetch(4); return await t; }
"""
        _, diagnostics = _check(source)
        assert diagnostics.ok, diagnostics.format_pretty()

    def test_await_outside_async(self):
        source = """
async func fetch(): int { return 1; }
func run(): int { let t = fetch(); return await t; }
"""
        _, diagnostics = _check(source)
        assert _messages(diagnostics) == ["'await' outside an async function"]

    def test_discarded_spawn_warns(self):
        res, diagnostics = _check("func main() { spawn { print(1); }; }")
        assert diagnostics.ok
        assert [w.severity for w in diagnostics.warnings] == [Severity.WARNING]
        assert len(res.discarded_spawns) == 1

    def test_join_is_the_only_thread_member(self):
        _, diagnostics = _check("func main() { let t = spawn { }; t.cancel(); }")
        assert _messages(diagnostics, ErrorKind.NAME_ERROR) == ["'thread' has no member 'cancel'"]


class TestBuiltins:
    """print and len."""

    def test_print_is_variadic(self):
        _, diagnostics = _check('func main() { print("n =", 1, 2.5, true); }')
        assert diagnostics.ok

    def test_print_rejects_sequences(self):
        _, diagnostics = _check("func main() { print([1, 2]); }")
        assert _messages(diagnostics) == ["Cannot print a value of type 'seq<int>'"]

    def test_len_of_int(self):
        _, diagnostics = _check("func main() { print(len(3)); }")
        assert _messages(diagnostics) == ["len needs a sequence or string, got 'int'"]


class TestModules:
    """import / export against a shared ModuleIndex."""

    def test_unresolved_import(self):
        _, diagnostics = _check("import nowhere; func main() { }")
        [diag] = diagnostics.errors
        assert diag.kind == ErrorKind.NAME_ERROR
        assert diag.message == "Unresolved import 'nowhere'"

    def test_exports_and_member_access(self):
        index = ModuleIndex()
        lib, diagnostics = _check("module geo; export func area(w: int, h: int = 1): int { return w * h; }",
                                  index)
        assert diagnostics.ok
        index.register(lib.exports)
        assert lib.exports.lookup("area") is not None

        res, diagnostics = _check("import geo; func main() { print(geo.area(w = 3)); }", index)
        assert diagnostics.ok, diagnostics.format_pretty()
        [plan] = [p for p in res.calls.values() if p.kind == "function"]
        assert plan.module == "geo"
        assert len(plan.args) == 2

    def test_unexported_member(self):
        index = ModuleIndex()
        lib, _ = _check("module geo; func hidden(): int { return 1; }", index)
        index.register(lib.exports)
        _, diagnostics = _check("import geo; func main() { print(geo.hidden()); }", index)
        assert _messages(diagnostics) == ["Module 'geo' does not export 'hidden'"]

    def test_export_without_module(self):
        _, diagnostics = _check("export func f() { }")
        assert _messages(diagnostics) == ["'f' is exported but the unit declares no module"]


@pytest.mark.parametrize("source", [
    "func f() { let s: string = 1 + 2; }",
    "func f() { let b = !3; }",
    'func f() { let n = "a" - "b"; }',
])
def test_operator_type_errors(source):
    _, diagnostics = _check(source)
    assert len(diagnostics.errors) == 1
    assert diagnostics.errors[0].kind == ErrorKind.TYPE_ERROR
