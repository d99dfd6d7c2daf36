"""Property-Based Tests for the csafe pretty printer.

For any expression tree the parser can produce, printing it and parsing
the text again gives back the same tree: the printer adds exactly the
parentheses precedence requires, and literals are written in a form the
lexer reads back to the same value.
"""

from __future__ import annotations

import pytest

try:
    from hypothesis import given, settings
    from hypothesis import strategies as st
    HAS_HYPOTHESIS = True
except ImportError:
    HAS_HYPOTHESIS = False
    given = settings = st = None  # type: ignore

from csafe.ast_nodes import (
    BinaryOp, Block, BoolLiteral, Call, FloatLiteral, FuncDecl, Identifier, IntLiteral,
    NamedArg, Program, StringLiteral, UnaryOp, VarDecl,
)
from csafe.errors import Diagnostics
from csafe.lexer import KEYWORDS
from csafe.parser import parse
from csafe.printer import format_float, print_source

BINARY_OPS = ["||", "&&", "==", "!=", "<", "<=", ">", ">=", "+", "-", "*", "/", "%"]


def _reparse(text):
    diagnostics = Diagnostics("roundtrip.csafe")
    program = parse(text, "roundtrip.csafe", diagnostics)
    assert diagnostics.ok, f"{diagnostics.format_pretty()}\n---\n{text}"
    return program


def _wrap(expr):
    """``func f() { let v = <expr>; }`` as a tree."""
    body = Block(statements=(VarDecl(name="v", value=expr),))
    return Program(declarations=(FuncDecl(name="f", body=body),))


# ---------------------------------------------------------------------------
# Hypothesis strategies, only defined when hypothesis is available
# ---------------------------------------------------------------------------

if HAS_HYPOTHESIS:
    identifiers = st.from_regex(r"[a-z][a-z0-9_]{0,6}", fullmatch=True).filter(
        lambda name: name not in KEYWORDS and name != "range")

    literals = st.one_of(
        st.integers(min_value=0, max_value=2 ** 62).map(lambda v: IntLiteral(value=v)),
        st.floats(min_value=0.0, max_value=1e6, allow_nan=False, allow_infinity=False)
        .map(lambda v: FloatLiteral(value=abs(v))),
        st.text(alphabet=st.sampled_from(list("abcxyz \"\\\n\t")), max_size=8)
        .map(lambda v: StringLiteral(value=v)),
        st.booleans().map(lambda v: BoolLiteral(value=v)),
        identifiers.map(lambda name: Identifier(name=name)),
    )

    def _extend(children):
        args = st.one_of(
            children,
            st.builds(lambda name, value: NamedArg(name=name, value=value), identifiers, children),
        )
        return st.one_of(
            st.builds(lambda op, left, right: BinaryOp(op=op, left=left, right=right),
                      st.sampled_from(BINARY_OPS), children, children),
            st.builds(lambda op, operand: UnaryOp(op=op, operand=operand),
                      st.sampled_from(["-", "!"]), children),
            st.builds(lambda name, a: Call(callee=Identifier(name=name), args=tuple(a)),
                      identifiers, st.lists(args, max_size=3)),
        )

    expressions = st.recursive(literals, _extend, max_leaves=12)


@pytest.mark.skipif(not HAS_HYPOTHESIS, reason="hypothesis not installed")
class TestExpressionRoundTrip:

    @given(expressions)
    @settings(max_examples=200, deadline=None)
    def test_print_then_parse(self, expr):
        program = _wrap(expr)
        assert _reparse(print_source(program)) == program

    @given(st.floats(min_value=0.0, max_value=1e6, allow_nan=False, allow_infinity=False))
    @settings(max_examples=200, deadline=None)
    def test_floats_read_back_exactly(self, value):
        text = format_float(value)
        assert "e" not in text.lower()
        assert float(text) == value


class TestProgramRoundTrip:
    """A whole program, every construct at least once."""

    SOURCE = """
module shapes;

import util;

export const LIMIT: int = 10;

export class Box {
    w: int;
    h: int = 1;
    func area(): int {
        return w * h;
    }
}

async func fetch(id: int, retries: int = 3): Result<int, string> {
    if (id < 0) {
        return err("negative");
    } else if (id == 0) {
        return ok(0);
    }
    return ok(id * retries);
}

func counter(n: int): coroutine<int> {
    let i = 0;
    while (i < n) {
        yield i;
        i = i + 1;
    }
}

func run(items: seq<int>) {
    let p = safe<int>(5);
    let s = shared<Box>(Box(w = 2));
    let t = spawn {
        print(*p);
    };
    t.join();
    for (x in range(0, 10, 2)) {
        if (x > 4) {
            break;
        }
        continue;
    }
    let mid = items[1:3];
    let first = items[0];
    match (first) {
        case -1 {
            print("minus one");
        }
        case (int other) {
            print(other, s.w);
        }
        default_case {
        }
    }
    assert(len(mid) <= 2, "two at most");
}

test "limit" {
    assert(LIMIT == 10);
}
"""

    def test_reprint_is_stable(self):
        program = _reparse(self.SOURCE)
        printed = print_source(program)
        again = _reparse(printed)
        assert again == program
        assert print_source(again) == printed
