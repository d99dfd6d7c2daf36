"""csafe Call Binding Tests.

Named and positional arguments are bound to parameters once, in the
resolver, and recorded as a positional call plan for the back ends.
"""

from csafe.ast_nodes import IntLiteral
from csafe.errors import Diagnostics, ErrorKind
from csafe.parser import parse
from csafe.pass1_resolve import resolve

ADD = "func add(a: int, b: int): int { return a - b; }\n"


def _check(source):
    diagnostics = Diagnostics("test.csafe")
    program = parse(source, "test.csafe", diagnostics)
    res = resolve(program, diagnostics)
    return res, diagnostics


def _plans(res, kind="function"):
    return [p for p in res.calls.values() if p.kind == kind]


def _messages(diagnostics):
    return [d.message for d in diagnostics.errors]


class TestBinding:
    """Arguments land in parameter order."""

    def test_named_arguments_reorder(self):
        res, diagnostics = _check(ADD + "func main() { print(add(b = 2, a = 3)); }")
        assert diagnostics.ok
        [plan] = _plans(res)
        assert plan.callee == "add"
        assert plan.args == (IntLiteral(value=3), IntLiteral(value=2))

    def test_positional_then_named(self):
        res, diagnostics = _check(ADD + "func main() { print(add(7, b = 1)); }")
        assert diagnostics.ok
        [plan] = _plans(res)
        assert [a.value for a in plan.args] == [7, 1]

    def test_defaults_fill_missing_arguments(self):
        source = """
func scale(x: int, by: int = 10, plus: int = 1): int { return x * by + plus; }
func main() { print(scale(2, plus = 5)); }
"""
        res, diagnostics = _check(source)
        assert diagnostics.ok
        [plan] = _plans(res)
        assert [a.value for a in plan.args] == [2, 10, 5]

    def test_constructor_takes_named_fields(self):
        source = """
class Point { x: int; y: int; }
func main() { let p = Point(y = 2, x = 1); print(p.x); }
"""
        res, diagnostics = _check(source)
        assert diagnostics.ok
        [plan] = _plans(res, "constructor")
        assert [a.value for a in plan.args] == [1, 2]


class TestBindingErrors:
    """Each mistake is reported once and no plan is recorded."""

    def test_unknown_parameter_name(self):
        res, diagnostics = _check(ADD + "func main() { print(add(a = 1, c = 2)); }")
        assert _messages(diagnostics) == ["Unknown parameter 'c' in call to 'add'"]
        assert diagnostics.errors[0].kind == ErrorKind.TYPE_ERROR
        assert _plans(res) == []

    def test_parameter_given_twice(self):
        _, diagnostics = _check(ADD + "func main() { print(add(a = 1, a = 2)); }")
        assert _messages(diagnostics) == [
            "Parameter 'a' is given more than once in call to 'add'",
            "Missing required argument 'b' in call to 'add'",
        ]

    def test_positional_after_named(self):
        _, diagnostics = _check(ADD + "func main() { print(add(a = 1, 2)); }")
        assert "Positional argument follows a named argument in call to 'add'" in _messages(diagnostics)

    def test_too_many_arguments(self):
        _, diagnostics = _check(ADD + "func main() { print(add(1, 2, 3)); }")
        assert _messages(diagnostics) == ["Too many arguments in call to 'add': expected at most 2"]

    def test_missing_required_argument(self):
        res, diagnostics = _check(ADD + "func main() { print(add(b = 4)); }")
        assert _messages(diagnostics) == ["Missing required argument 'a' in call to 'add'"]
        assert _plans(res) == []

    def test_argument_type_mismatch(self):
        _, diagnostics = _check(ADD + 'func main() { print(add(1, b = "two")); }')
        [diag] = diagnostics.errors
        assert diag.message == "Argument 'b' of 'add': expected type 'int', got 'string'"

    def test_builtins_take_no_named_arguments(self):
        _, diagnostics = _check("func main() { print(x = 1); }")
        assert _messages(diagnostics) == ["'print' does not take named arguments"]


class TestParameterDefaults:
    """Default values are constants and come last."""

    def test_default_must_be_constant(self):
        source = "func seed(): int { return 4; }\nfunc f(a: int = seed()) { }"
        _, diagnostics = _check(source)
        assert _messages(diagnostics) == ["Default value of parameter 'a' must be a constant expression"]

    def test_constant_arithmetic_is_allowed(self):
        _, diagnostics = _check("func f(a: int = 2 * 3 + 1, s: string = \"x\") { }")
        assert diagnostics.ok

    def test_required_after_default(self):
        _, diagnostics = _check("func f(a: int = 1, b: int) { }")
        assert _messages(diagnostics) == ["Parameter 'b' without a default follows a defaulted parameter"]
