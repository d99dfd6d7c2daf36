"""Property-Based Tests for csafe token spans.

Over any input the lexer yields tokens whose spans are in source order,
never overlap, stay inside the text and agree with the line/column they
report. Characters outside ASCII are only legal inside string literals and
comments; anywhere else each one becomes an ERROR token and one lexical
diagnostic, and the scan carries on.
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

from csafe.errors import Diagnostics, ErrorKind
from csafe.lexer import KEYWORDS, TokenType, tokenize

NON_ASCII = ["²", "٣", "é", "λ", "→", "中", "\u00a0"]
OPERATORS = ["+", "-", "*", "%", "==", "!=", "<", "<=", ">", ">=", "&&", "||", "!", "=",
             ".", ",", ";", ":", "(", ")", "{", "}", "[", "]"]


def _scan(source):
    diagnostics = Diagnostics("spans.csafe")
    return tokenize(source, "spans.csafe", diagnostics), diagnostics


def _position(source, offset):
    line = source.count("\n", 0, offset) + 1
    column = offset - source.rfind("\n", 0, offset)
    return line, column


# ---------------------------------------------------------------------------
# Hypothesis strategies, only defined when hypothesis is available
# ---------------------------------------------------------------------------

if HAS_HYPOTHESIS:
    identifiers = st.from_regex(r"[A-Za-z_][A-Za-z0-9_]{0,6}", fullmatch=True)
    numbers = st.one_of(
        st.integers(min_value=0, max_value=10 ** 12).map(str),
        st.tuples(st.integers(0, 999), st.integers(0, 999)).map(lambda p: f"{p[0]}.{p[1]}"),
    )
    strings = st.text(
        alphabet=st.sampled_from(list("abc xyz") + NON_ASCII), max_size=6,
    ).map(lambda body: f'"{body}"')
    comments = st.text(
        alphabet=st.sampled_from(list("ab ") + NON_ASCII), max_size=6,
    ).map(lambda body: f"/* {body} */")

    clean_fragments = st.one_of(
        identifiers, numbers, strings, comments, st.sampled_from(OPERATORS),
    )
    fragments = st.one_of(clean_fragments, st.sampled_from(NON_ASCII))
    separators = st.sampled_from([" ", "\n", "\t", "  \n "])

    @st.composite
    def sources(draw, parts=fragments):
        pieces = draw(st.lists(parts, max_size=25))
        out = []
        for piece in pieces:
            out.append(piece)
            out.append(draw(separators))
        return "".join(out)


@pytest.mark.skipif(not HAS_HYPOTHESIS, reason="hypothesis not installed")
class TestSpanLaws:

    @given(st.text(max_size=60))
    @settings(max_examples=300, deadline=None)
    def test_arbitrary_text_never_raises(self, source):
        tokens, _ = _scan(source)
        assert tokens[-1].type == TokenType.EOF
        assert [t.type for t in tokens].count(TokenType.EOF) == 1
        assert tokens[-1].span.offset == len(source)

    @given(st.one_of(sources(), st.text(max_size=60)))
    @settings(max_examples=300, deadline=None)
    def test_spans_are_ordered_and_disjoint(self, source):
        tokens, _ = _scan(source)
        for before, after in zip(tokens, tokens[1:]):
            assert before.span.end <= after.span.offset
        for tok in tokens:
            assert 0 <= tok.span.offset <= tok.span.end <= len(source)

    @given(sources())
    @settings(max_examples=300, deadline=None)
    def test_spans_match_reported_positions(self, source):
        tokens, _ = _scan(source)
        for tok in tokens:
            assert (tok.span.line, tok.span.column) == _position(source, tok.span.offset)

    @given(sources())
    @settings(max_examples=300, deadline=None)
    def test_span_covers_the_lexeme(self, source):
        tokens, _ = _scan(source)
        for tok in tokens:
            if tok.type in (TokenType.STRING_LIT, TokenType.EOF):
                continue
            text = source[tok.span.offset:tok.span.end]
            assert text == tok.value


@pytest.mark.skipif(not HAS_HYPOTHESIS, reason="hypothesis not installed")
class TestNonAsciiInput:

    @given(sources(clean_fragments))
    @settings(max_examples=300, deadline=None)
    def test_allowed_inside_strings_and_comments(self, source):
        tokens, diagnostics = _scan(source)
        assert diagnostics.ok
        assert TokenType.ERROR not in [t.type for t in tokens]

    @given(sources())
    @settings(max_examples=300, deadline=None)
    def test_each_stray_character_is_one_lexical_error(self, source):
        tokens, diagnostics = _scan(source)
        errors = [t for t in tokens if t.type == TokenType.ERROR]
        assert all(t.value in NON_ASCII for t in errors)
        assert len(diagnostics.errors) == len(errors)
        assert all(d.kind == ErrorKind.LEXICAL_ERROR for d in diagnostics.errors)
        assert {d.span.offset for d in diagnostics.errors} == {t.span.offset for t in errors}

    @given(st.sampled_from(NON_ASCII), identifiers)
    @settings(max_examples=100, deadline=None)
    def test_scan_continues_after_a_stray_character(self, stray, name):
        tokens, _ = _scan(f"{stray}{name}")
        assert tokens[0].type == TokenType.ERROR
        assert tokens[1].value == name
        assert tokens[1].type == KEYWORDS.get(name, TokenType.IDENT)
