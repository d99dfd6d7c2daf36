"""csafe Lowering Tests.

Shape of the generated C++ for the dialect's constructs. When a C++17
compiler is on PATH the interesting programs are also built and run.
"""

import shutil
import subprocess

import pytest

from csafe.errors import Diagnostics, InternalLoweringError
from csafe.parser import parse
from csafe.pass1_resolve import resolve
from csafe.pass2_lower import lower_to_cpp
from csafe.pipeline import compile_source
from csafe.runtime import HARNESS_MACRO

CXX = shutil.which("g++") or shutil.which("clang++")
needs_cxx = pytest.mark.skipif(CXX is None, reason="no C++ compiler on PATH")


def _lower(source, test=False):
    result = compile_source(source, filename="test.csafe", test=test)
    assert result.ok, result.diagnostics.format_pretty()
    return result.output


def _run(source, tmp_path, test=False):
    """Compile ``source`` to C++, build it and return (exit code, stdout)."""
    cpp = tmp_path / "prog.cpp"
    exe = tmp_path / "prog"
    cpp.write_text(_lower(source, test=test), encoding="utf-8")
    cmd = [CXX, "-std=c++17", "-pthread", str(cpp), "-o", str(exe)]
    if test:
        cmd.insert(1, f"-D{HARNESS_MACRO}")
    build = subprocess.run(cmd, capture_output=True, text=True)
    assert build.returncode == 0, build.stderr
    run = subprocess.run([str(exe)], capture_output=True, text=True, timeout=30)
    return run.returncode, run.stdout


COUNT_UP = """
func countUpTo(max: int): coroutine<int> {
    yield 0;
}

func main() {
    for (n in countUpTo(3)) {
        print(n);
    }
}
"""

SLICES = """
func add(a: int, b: int): int { return a + b; }

func main() {
    let nums = [10, 20, 30, 40, 50];
    let mid = nums[1:4];
    for (x in mid) {
        print(x);
    }
    print(add(b = 2, a = 3));
}
"""

RESULTS = """
func safe_div(a: int, b: int): Result<int, string> {
    if (b == 0) {
        return err("division by zero");
    }
    return ok(a / b);
}

func main() {
    match (safe_div(10, 2)) {
        case ok(v) { print(v); }
        case err(e) { print(e); }
    }
    match (safe_div(1, 0)) {
        case ok(v) { print(v); }
        case err(e) { print(e); }
    }
}
"""


class TestTypesAndDeclarations:
    """Globals, functions and main."""

    def test_globals(self):
        out = _lower('let x = 42; let y: float = 3.14; const name = "csafe";')
        assert "std::int64_t x = 42;" in out
        assert "double y = 3.14;" in out
        assert 'const std::string name = std::string("csafe");' in out

    def test_void_main_returns_zero(self):
        out = _lower('func main() { print("hi"); }')
        assert "int main() {" in out
        assert "return 0;" in out

    def test_prelude_include(self):
        diagnostics = Diagnostics("test.csafe")
        program = parse("func main() { }", "test.csafe", diagnostics)
        res = resolve(program, diagnostics)
        out = lower_to_cpp(res, prelude="include")
        assert '#include "csafe_runtime.hpp"' in out
        assert "namespace csafe {" not in out

    def test_output_is_deterministic(self):
        assert _lower(SLICES) == _lower(SLICES)

    def test_unit_with_errors_is_never_lowered(self):
        diagnostics = Diagnostics("test.csafe")
        program = parse("func main() { print(missing); }", "test.csafe", diagnostics)
        res = resolve(program, diagnostics)
        with pytest.raises(InternalLoweringError):
            lower_to_cpp(res)


class TestCallsAndSequences:
    """Named calls, slices and list literals."""

    def test_named_call_becomes_positional(self):
        out = _lower(SLICES)
        assert "add(3, 2)" in out

    def test_slice_and_list(self):
        out = _lower(SLICES)
        assert "csafe::seq_of<std::int64_t>(10, 20, 30, 40, 50)" in out
        assert "csafe::slice(nums, 1, 4)" in out
        assert "for (const std::int64_t& x : mid) {" in out

    def test_constructor(self):
        out = _lower("class Point { x: int; y: int; } func main() { let p = Point(y = 2, x = 1); print(p.x); }")
        assert "struct Point {" in out
        assert "Point{1, 2}" in out


class TestCoroutines:
    """coroutine<T> functions become state structs."""

    def test_state_struct_and_factory(self):
        out = _lower(COUNT_UP)
        assert "struct countUpTo_state {" in out
        assert "int csafe_state = 0;" in out
        assert "bool next(std::int64_t& csafe_out) {" in out
        assert "csafe::Generator<std::int64_t> countUpTo(std::int64_t max) {" in out
        assert "csafe_resume_1" in out


class TestMatchAndOwnership:
    """Result matches switch on the variant; safe<T> is a unique_ptr."""

    def test_result_match(self):
        out = _lower(RESULTS)
        assert "auto&& csafe_m0 = safe_div(10, 2);" in out
        assert "switch (csafe_m0.index()) {" in out
        assert "auto& v = std::get<0>(csafe_m0).value;" in out
        assert "csafe::Err<std::string>{std::string(\"division by zero\")}" in out

    def test_int_match_uses_switch_labels(self):
        out = _lower("func f(n: int) { match (n) { case 1 { print(1); } default_case { print(0); } } }")
        assert "case 1: {" in out
        assert "default: {" in out

    def test_moves(self):
        source = """
func consume(p: safe<int>) { print(*p); }
func main() { let p = safe<int>(5); consume(p); }
"""
        out = _lower(source)
        assert "std::unique_ptr<std::int64_t> p = std::make_unique<std::int64_t>(5);" in out
        assert "consume(std::move(p));" in out


class TestTestsAndModules:
    """Inline tests register themselves; modules become namespaces."""

    def test_test_registry(self):
        out = _lower('test "adds" { assert(1 + 1 == 2, "math"); }', test=True)
        assert 'static const csafe::TestCase csafe_test_0 = csafe::TestCase("adds", []() {' in out
        assert f"#ifdef {HARNESS_MACRO}" in out
        assert "return csafe::run_tests();" in out

    def test_harness_only_on_request(self):
        out = _lower('test "adds" { assert(true); }')
        assert "csafe::run_tests();" not in out

    def test_module_namespace(self):
        out = _lower("module geo; export func area(w: int, h: int): int { return w * h; }")
        assert "namespace geo {" in out
        assert "std::int64_t area(std::int64_t w, std::int64_t h) {" in out


@needs_cxx
class TestCompiledPrograms:
    """Generated C++ builds and behaves as the source says."""

    def test_coroutine_yields_once(self, tmp_path):
        code, out = _run(COUNT_UP, tmp_path)
        assert code == 0
        assert out == "0\n"

    def test_slices_and_named_calls(self, tmp_path):
        code, out = _run(SLICES, tmp_path)
        assert code == 0
        assert out.split() == ["20", "30", "40", "5"]

    def test_result_match(self, tmp_path):
        code, out = _run(RESULTS, tmp_path)
        assert code == 0
        assert out.splitlines() == ["5", "division by zero"]

    def test_spawn_and_join(self, tmp_path):
        source = """
func main() {
    let p = safe<int>(41);
    let t = spawn { print(*p + 1); };
    t.join();
}
"""
        code, out = _run(source, tmp_path)
        assert code == 0
        assert out == "42\n"

    def test_async_task(self, tmp_path):
        source = """
async func double_it(n: int): int { return n * 2; }
async func report(): int {
    let t = double_it(21);
    let v = await t;
    print("v =", v);
    return v;
}
func main() { report(); }
"""
        code, out = _run(source, tmp_path)
        assert code == 0
        assert out == "v = 42\n"

    def test_inline_tests(self, tmp_path):
        source = """
func square(n: int): int { return n * n; }
test "square works" { assert(square(3) == 9, "three squared"); }
test "square is wrong" { assert(square(2) == 5); }
"""
        code, out = _run(source, tmp_path, test=True)
        assert code == 1
        lines = out.splitlines()
        assert lines[0] == "PASS square works"
        assert lines[1].startswith("FAIL square is wrong")
        assert lines[-1] == "1 passed, 1 failed"

    def test_range_with_negative_step(self, tmp_path):
        source = "func main() { for (i in range(3, 0, -1)) { print(i); } }"
        code, out = _run(source, tmp_path)
        assert code == 0
        assert out.split() == ["3", "2", "1"]
