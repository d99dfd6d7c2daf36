"""csafe Ownership Tests.

safe<T> bindings move on transfer and cannot be used afterwards; shared<T>
bindings are reference counted and copy freely.
"""

from csafe.errors import Diagnostics
from csafe.types import (
    INT, THREAD, ClassType, OwnedType, ResultType, SequenceType, TaskType, is_move_only,
)
from csafe.parser import parse
from csafe.pass1_resolve import resolve

CONSUME = "func consume(p: safe<int>) { print(*p); }\n"


def _check(source):
    diagnostics = Diagnostics("test.csafe")
    program = parse(CONSUME + source, "test.csafe", diagnostics)
    res = resolve(program, diagnostics)
    return res, diagnostics


def _messages(diagnostics):
    return [d.message for d in diagnostics.errors]


class TestMoves:
    """Straight-line moves."""

    def test_second_move_is_use_after_move(self):
        _, diagnostics = _check("func main() { let p = safe<int>(5); consume(p); consume(p); }")
        [diag] = diagnostics.errors
        assert diag.message.startswith("Use after move of 'p' (moved at test.csafe:2:")
        assert diag.details["variable"] == "p"

    def test_borrowing_does_not_move(self):
        _, diagnostics = _check("func main() { let p = safe<int>(5); print(*p); print(*p); consume(p); }")
        assert diagnostics.ok

    def test_assignment_revives_a_moved_binding(self):
        source = "func main() { let p = safe<int>(1); consume(p); p = safe<int>(2); consume(p); }"
        _, diagnostics = _check(source)
        assert diagnostics.ok

    def test_shared_values_copy(self):
        source = """
func keep(s: shared<int>) { print(*s); }
func main() { let s = shared<int>(1); keep(s); keep(s); print(*s); }
"""
        _, diagnostics = _check(source)
        assert diagnostics.ok

    def test_initializer_moves(self):
        _, diagnostics = _check("func main() { let p = safe<int>(5); let q = p; print(*p); }")
        assert len(diagnostics.errors) == 1
        assert "Use after move of 'p'" in diagnostics.errors[0].message


class TestControlFlow:
    """Moves on one path count afterwards; moves in loops are reported."""

    def test_move_in_one_branch(self):
        source = "func main() { let p = safe<int>(1); let c = true; if (c) { consume(p); } print(*p); }"
        _, diagnostics = _check(source)
        [diag] = diagnostics.errors
        assert diag.message.startswith("Use after move of 'p'")

    def test_move_in_both_branches_then_nothing(self):
        source = """
func main() {
    let p = safe<int>(1);
    let c = true;
    if (c) { consume(p); } else { consume(p); }
}
"""
        _, diagnostics = _check(source)
        assert diagnostics.ok

    def test_branch_that_returns_does_not_leak_its_move(self):
        source = """
func main() {
    let p = safe<int>(1);
    let c = true;
    if (c) { consume(p); return; }
    consume(p);
}
"""
        _, diagnostics = _check(source)
        assert diagnostics.ok

    def test_move_inside_loop(self):
        source = "func main() { let p = safe<int>(1); let c = true; while (c) { consume(p); } }"
        _, diagnostics = _check(source)
        assert _messages(diagnostics) == [
            "'p' is moved inside a loop and used again on the next iteration"]

    def test_binding_declared_inside_loop(self):
        source = "func main() { for (i in range(0, 3)) { let p = safe<int>(i); consume(p); } }"
        _, diagnostics = _check(source)
        assert diagnostics.ok


class TestSpawnCaptures:
    """spawn moves the move-only values it captures."""

    def test_capture_moves_into_thread(self):
        source = """
func main() {
    let p = safe<int>(41);
    let t = spawn { print(*p + 1); };
    t.join();
    print(*p);
}
"""
        res, diagnostics = _check(source)
        [diag] = diagnostics.errors
        assert diag.message.startswith("Use after move of 'p'")
        [captured] = list(res.spawn_captures.values())
        assert [s.name for s in captured] == ["p"]

    def test_plain_values_are_copied(self):
        source = "func main() { let n = 3; let t = spawn { print(n); }; t.join(); print(n); }"
        res, diagnostics = _check(source)
        assert diagnostics.ok
        assert list(res.spawn_captures.values()) == [[]]

    def test_assigning_a_capture(self):
        source = "func main() { let n = 0; let t = spawn { n = 1; }; t.join(); }"
        _, diagnostics = _check(source)
        assert _messages(diagnostics) == ["Cannot assign to captured variable 'n' inside spawn"]

    def test_thread_handles_move_too(self):
        source = """
func wait(t: thread) { t.join(); }
func main() { let t = spawn { }; wait(t); t.join(); }
"""
        _, diagnostics = _check(source)
        [diag] = diagnostics.errors
        assert diag.message.startswith("Use after move of 't'")


class TestMoveOnlyTypes:
    """Which types are moved rather than copied."""

    def test_wrappers_and_handles(self):
        assert is_move_only(OwnedType(inner=INT))
        assert not is_move_only(OwnedType(inner=INT, shared=True))
        assert is_move_only(TaskType(result=INT))
        assert is_move_only(THREAD)
        assert not is_move_only(INT)

    def test_containers_of_move_only_values(self):
        assert is_move_only(SequenceType(elem=OwnedType(inner=INT)))
        assert is_move_only(ResultType(ok=INT, err=OwnedType(inner=INT)))
        assert not is_move_only(SequenceType(elem=INT))

    def test_classes_use_their_fields(self):
        holder = ClassType(name="Holder")
        fields = {holder: [INT, OwnedType(inner=INT)]}
        assert is_move_only(holder, fields.get)
        assert not is_move_only(holder)

    def test_self_referencing_class_terminates(self):
        node = ClassType(name="Node")
        fields = {node: [SequenceType(elem=node)]}
        assert not is_move_only(node, fields.get)

    def test_class_with_a_safe_field_moves(self):
        source = """
class Holder { p: safe<int>; }
func take(h: Holder) { }
func main() { let h = Holder(p = safe<int>(1)); take(h); take(h); }
"""
        _, diagnostics = _check(source)
        [diag] = diagnostics.errors
        assert diag.message.startswith("Use after move of 'h'")
