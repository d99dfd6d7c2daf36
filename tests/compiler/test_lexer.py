"""csafe Lexer Tests.

Token stream shape, escapes, comments, restartable iteration and the
lexical-error recovery contract (ERROR token + diagnostic, scan continues).
"""

from csafe.errors import Diagnostics, ErrorKind
from csafe.lexer import Lexer, TokenType, tokenize
from csafe.pipeline import compile_source


def _types(source):
    return [t.type for t in tokenize(source)]


class TestTokens:
    """Keywords, identifiers, literals and operators."""

    def test_let_statement(self):
        assert _types("let x = 42;") == [
            TokenType.LET, TokenType.IDENT, TokenType.ASSIGN, TokenType.INT_LIT,
            TokenType.SEMICOLON, TokenType.EOF,
        ]

    def test_float_and_int_literals(self):
        tokens = tokenize("3.14 7 1.")
        assert tokens[0].type == TokenType.FLOAT_LIT and tokens[0].value == "3.14"
        assert tokens[1].type == TokenType.INT_LIT and tokens[1].value == "7"
        # a dot with no digit after it is member access, not a float
        assert tokens[2].type == TokenType.INT_LIT
        assert tokens[3].type == TokenType.DOT

    def test_two_character_operators_win(self):
        assert _types("a <= b && c != d || !e") == [
            TokenType.IDENT, TokenType.LTE, TokenType.IDENT, TokenType.AND,
            TokenType.IDENT, TokenType.NEQ, TokenType.IDENT, TokenType.OR,
            TokenType.NOT, TokenType.IDENT, TokenType.EOF,
        ]

    def test_dialect_keywords(self):
        source = "match case default_case spawn async await yield safe shared ok err"
        types = _types(source)[:-1]
        assert TokenType.IDENT not in types
        assert types[2] == TokenType.DEFAULT_CASE

    def test_range_is_an_identifier(self):
        assert tokenize("range")[0].type == TokenType.IDENT

    def test_string_escapes(self):
        tok = tokenize(r'"a\n\t\\\"b"')[0]
        assert tok.type == TokenType.STRING_LIT
        assert tok.value == 'a\n\t\\"b'

    def test_comments_are_skipped(self):
        source = "let // line comment\n/* block\ncomment */ x;"
        assert _types(source) == [TokenType.LET, TokenType.IDENT, TokenType.SEMICOLON, TokenType.EOF]

    def test_positions_are_one_based(self):
        tokens = tokenize("let\n  x")
        assert (tokens[0].span.line, tokens[0].span.column) == (1, 1)
        assert (tokens[1].span.line, tokens[1].span.column) == (2, 3)


class TestLexerIteration:
    """The lexer is a lazy, restartable iterable."""

    def test_every_iteration_rescans(self):
        lexer = Lexer("func f() { return 1; }")
        first = list(lexer)
        second = list(lexer)
        assert first == second
        assert first[-1].type == TokenType.EOF

    def test_restart_does_not_duplicate_diagnostics(self):
        diagnostics = Diagnostics()
        lexer = Lexer("let x = @;", diagnostics=diagnostics)
        list(lexer)
        list(lexer)
        assert len(diagnostics.errors) == 1

    def test_interleaved_iterations_are_independent(self):
        lexer = Lexer("let a = 1; let b = 2;")
        first, second = iter(lexer), iter(lexer)
        pairs = list(zip(first, second))
        assert all(a == b for a, b in pairs)
        assert [a.value for a, _ in pairs[:4]] == ["let", "a", "=", "1"]
        assert pairs[-1][0].type == TokenType.EOF


class TestLexicalErrors:
    """Bad input becomes an ERROR token plus a lexical_error diagnostic."""

    def test_unknown_character(self):
        diagnostics = Diagnostics()
        tokens = tokenize("let x = 1 @ 2;", diagnostics=diagnostics)
        assert TokenType.ERROR in [t.type for t in tokens]
        [diag] = diagnostics.errors
        assert diag.kind == ErrorKind.LEXICAL_ERROR
        assert "'@'" in diag.message
        # scanning continues after the bad character
        assert tokens[-2].type == TokenType.SEMICOLON

    def test_unterminated_string(self):
        diagnostics = Diagnostics()
        tokens = tokenize('let s = "open\nlet t = 1;', diagnostics=diagnostics)
        assert diagnostics.errors[0].message == "Unterminated string literal"
        assert tokens[-1].type == TokenType.EOF

    def test_unterminated_block_comment(self):
        diagnostics = Diagnostics()
        tokenize("let x; /* never closed", diagnostics=diagnostics)
        assert [d.message for d in diagnostics.errors] == ["Unterminated block comment"]

    def test_non_ascii_digit_after_a_number(self):
        diagnostics = Diagnostics()
        tokens = tokenize("let x = 1²;", diagnostics=diagnostics)
        assert [(t.type, t.value) for t in tokens[3:5]] == [
            (TokenType.INT_LIT, "1"), (TokenType.ERROR, "²")]
        [diag] = diagnostics.errors
        assert diag.kind == ErrorKind.LEXICAL_ERROR
        assert diag.message == "Unexpected character '²'"

    def test_non_ascii_digit_alone(self):
        diagnostics = Diagnostics()
        tokens = tokenize("let y = ٣;", diagnostics=diagnostics)
        assert tokens[3].type == TokenType.ERROR
        assert [d.kind for d in diagnostics.errors] == [ErrorKind.LEXICAL_ERROR]

    def test_identifiers_are_ascii(self):
        diagnostics = Diagnostics()
        tokens = tokenize("café", diagnostics=diagnostics)
        assert [(t.type, t.value) for t in tokens] == [
            (TokenType.IDENT, "caf"), (TokenType.ERROR, "é"), (TokenType.EOF, "")]

    def test_unicode_digits_never_reach_the_parser(self):
        result = compile_source("let x = 1²;")
        assert not result.ok
        assert result.diagnostics.of_kind(ErrorKind.LEXICAL_ERROR)
        assert result.output is None
