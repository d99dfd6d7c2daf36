"""csafe Constraint Tests.

Static range, slice, division and assertion facts decided by Z3. Facts
that depend on unknown values are left to the runtime checks.
"""

import pytest

from csafe.constraints import HAS_Z3
from csafe.errors import Diagnostics, Severity
from csafe.parser import parse
from csafe.pass1_resolve import resolve

needs_z3 = pytest.mark.skipif(not HAS_Z3, reason="z3-solver not installed")


def _check(body, prelude=""):
    source = f"{prelude}\nfunc f(n: int, nums: seq<int>) {{ {body} }}"
    diagnostics = Diagnostics("test.csafe")
    program = parse(source, "test.csafe", diagnostics)
    resolve(program, diagnostics)
    return diagnostics


def _messages(diagnostics):
    return [d.message for d in diagnostics]


class TestRangeArity:
    """range has a two- and a three-argument form only."""

    def test_one_argument(self):
        diagnostics = _check("for (i in range(5)) { }")
        assert _messages(diagnostics) == ["range takes 2 or 3 arguments, got 1"]

    def test_four_arguments(self):
        diagnostics = _check("for (i in range(0, 5, 1, 2)) { }")
        assert _messages(diagnostics) == ["range takes 2 or 3 arguments, got 4"]

    def test_float_bound(self):
        diagnostics = _check("for (i in range(0, 2.5)) { }")
        assert _messages(diagnostics) == ["range end: expected type 'int', got 'float'"]


@needs_z3
class TestRangeStep:
    """Zero steps are rejected; negative steps need a descending range."""

    def test_zero_step(self):
        diagnostics = _check("for (i in range(0, 10, 0)) { }")
        assert _messages(diagnostics) == ["range step cannot be zero"]

    def test_constant_zero_step(self):
        diagnostics = _check("for (i in range(0, 10, STEP)) { }", prelude="const STEP = 1 - 1;")
        assert _messages(diagnostics) == ["range step cannot be zero"]

    def test_negative_step_ascending(self):
        diagnostics = _check("for (i in range(0, 10, -1)) { }")
        assert _messages(diagnostics) == ["A negative range step requires start > end"]

    def test_negative_step_descending(self):
        diagnostics = _check("for (i in range(10, 0, -1)) { }")
        assert diagnostics.ok

    def test_unknown_step_is_left_to_runtime(self):
        diagnostics = _check("for (i in range(0, 10, n)) { }")
        assert diagnostics.ok

    def test_step_that_is_zero_for_every_n(self):
        diagnostics = _check("for (i in range(0, 10, n - n)) { }")
        assert _messages(diagnostics) == ["range step cannot be zero"]

    def test_relative_bounds(self):
        diagnostics = _check("for (i in range(n, n + 1, -2)) { }")
        assert _messages(diagnostics) == ["A negative range step requires start > end"]


@needs_z3
class TestSlicesAndIndexes:
    """Slice bounds and indexes that are wrong for every value."""

    def test_half_open_slice(self):
        diagnostics = _check("let mid = nums[1:4]; print(len(mid));")
        assert diagnostics.ok

    def test_inverted_slice(self):
        diagnostics = _check("let mid = nums[4:1]; print(len(mid));")
        assert _messages(diagnostics) == ["Slice start is always greater than its end"]

    def test_inverted_relative_slice(self):
        diagnostics = _check("let mid = nums[n + 1:n]; print(len(mid));")
        assert _messages(diagnostics) == ["Slice start is always greater than its end"]

    def test_negative_index(self):
        diagnostics = _check("print(nums[-1]);")
        assert _messages(diagnostics) == ["Index is always negative"]

    def test_negative_slice_bound(self):
        diagnostics = _check("let tail = nums[-2:]; print(len(tail));")
        assert _messages(diagnostics) == ["Slice bound is always negative"]

    def test_unknown_index_is_left_to_runtime(self):
        diagnostics = _check("print(nums[n]);")
        assert diagnostics.ok


@needs_z3
class TestArithmeticAndAssertions:
    """Division by zero and assertions that can never hold."""

    def test_division_by_literal_zero(self):
        diagnostics = _check("print(10 / 0);")
        assert _messages(diagnostics) == ["Division by zero"]

    def test_modulo_by_constant_zero(self):
        diagnostics = _check("print(n % NONE);", prelude="const NONE = 0;")
        assert _messages(diagnostics) == ["Division by zero"]

    def test_division_by_parameter(self):
        diagnostics = _check("print(10 / n);")
        assert diagnostics.ok

    def test_assertion_always_fails(self):
        diagnostics = _check("assert(1 > 2);")
        [warning] = diagnostics.warnings
        assert warning.message == "Assertion always fails"
        assert warning.severity == Severity.WARNING
        assert diagnostics.ok

    def test_contradiction_over_a_variable(self):
        diagnostics = _check("assert(n > 0 && n < 0);")
        assert _messages(diagnostics) == ["Assertion always fails"]

    def test_satisfiable_assertion(self):
        diagnostics = _check("assert(n > 0);")
        assert len(diagnostics) == 0
