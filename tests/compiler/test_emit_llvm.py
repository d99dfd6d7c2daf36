"""csafe LLVM Emission Tests.

The scalar subset compiles to LLVM IR through llvmlite and runs under
MCJIT; everything else is reported as unsupported.
"""

import ctypes

import pytest

from csafe.errors import ErrorKind
from csafe.pass3_emit import HAS_LLVMLITE
from csafe.pipeline import compile_source

pytestmark = pytest.mark.skipif(not HAS_LLVMLITE, reason="llvmlite not installed")


def _ir(source):
    result = compile_source(source, filename="test.csafe", emit="llvm")
    assert result.ok, result.diagnostics.format_pretty()
    return result.output


def _jit(source):
    from csafe.pass3_emit import JitModule
    return JitModule(_ir(source))


class TestEmission:
    """IR text for functions and globals."""

    def test_function_signature(self):
        ir = _ir("func add(a: int, b: int): int { return a + b; }")
        assert 'define i64 @"add"(i64 %"a", i64 %"b")' in ir

    def test_main_returns_i32(self):
        ir = _ir("func main() { }")
        assert 'define i32 @"main"()' in ir

    def test_module_members_are_prefixed(self):
        ir = _ir("module geo; export func area(w: int, h: int): int { return w * h; }")
        assert '@"geo.area"' in ir


class TestExecution:
    """Emitted code computes what the source says."""

    def test_named_arguments(self):
        source = """
func sub(a: int, b: int): int { return a - b; }
func compute(): int { return sub(b = 2, a = 30); }
"""
        jit = _jit(source)
        compute = jit.function("compute", ctypes.c_int64)
        assert compute() == 28

    def test_default_argument(self):
        source = """
func scale(x: int, by: int = 10): int { return x * by; }
func compute(): int { return scale(4); }
"""
        jit = _jit(source)
        assert jit.function("compute", ctypes.c_int64)() == 40

    def test_range_loop(self):
        source = """
func sum_to(n: int): int {
    let total = 0;
    for (i in range(0, n)) {
        total = total + i;
    }
    return total;
}
"""
        jit = _jit(source)
        sum_to = jit.function("sum_to", ctypes.c_int64, ctypes.c_int64)
        assert sum_to(5) == 10
        assert sum_to(0) == 0

    def test_descending_range_with_break(self):
        source = """
func first_below(limit: int): int {
    let found = -1;
    for (i in range(10, 0, -1)) {
        if (i < limit) {
            found = i;
            break;
        }
    }
    return found;
}
"""
        jit = _jit(source)
        first_below = jit.function("first_below", ctypes.c_int64, ctypes.c_int64)
        assert first_below(4) == 3
        assert first_below(0) == -1

    def test_float_arithmetic(self):
        jit = _jit("func half(x: float): float { return x / 2; }")
        half = jit.function("half", ctypes.c_double, ctypes.c_double)
        assert half(3.0) == 1.5

    def test_short_circuit(self):
        source = """
func in_range(x: int, lo: int, hi: int): bool { return x >= lo && x < hi; }
func check(): int { if (in_range(5, 0, 10) || false) { return 1; } return 0; }
"""
        jit = _jit(source)
        assert jit.function("check", ctypes.c_int64)() == 1

    def test_main_exit_code(self):
        jit = _jit("func main(): int { return 3; }")
        assert jit.function("main", ctypes.c_int32)() == 3


class TestUnsupported:
    """Constructs outside the scalar subset."""

    def test_class_is_unsupported(self):
        result = compile_source("class Point { x: int; }", filename="test.csafe", emit="llvm")
        assert result.output is None
        [diag] = result.diagnostics.of_kind(ErrorKind.UNSUPPORTED)
        assert diag.message == "Class is not supported by the 'llvm' target"

    def test_strings_are_unsupported(self):
        result = compile_source('func greet(): string { return "hi"; }', filename="test.csafe", emit="llvm")
        assert result.output is None
        assert result.diagnostics.of_kind(ErrorKind.UNSUPPORTED)

    def test_tests_are_skipped_with_a_warning(self):
        result = compile_source('test "t" { assert(true); }\nfunc main() { }',
                                filename="test.csafe", emit="llvm")
        assert result.ok
        assert result.output is not None
        [warning] = result.diagnostics.warnings
        assert "Test 't'" in warning.message
