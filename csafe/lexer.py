"""csafe Lexer — tokenizer with line/column/offset tracking.

Produces a lazy stream of tokens from csafe source. Iterating a ``Lexer``
again restarts the scan from the beginning. The final token is always EOF.
Bad input never aborts the scan: it yields an ERROR token and reports a
lexical diagnostic.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, Optional

from csafe.errors import Diagnostics, Span


class TokenType(Enum):
    # Keywords
    LET = auto()
    CONST = auto()
    FUNC = auto()
    RETURN = auto()
    IF = auto()
    ELSE = auto()
    FOR = auto()
    IN = auto()
    WHILE = auto()
    MATCH = auto()
    CASE = auto()
    DEFAULT_CASE = auto()
    ASYNC = auto()
    AWAIT = auto()
    SPAWN = auto()
    YIELD = auto()
    TEST = auto()
    ASSERT = auto()
    IMPORT = auto()
    EXPORT = auto()
    MODULE = auto()
    TRUE = auto()
    FALSE = auto()
    BREAK = auto()
    CONTINUE = auto()
    CLASS = auto()
    SAFE = auto()
    SHARED = auto()
    OK = auto()
    ERR = auto()

    # Literals
    INT_LIT = auto()
    FLOAT_LIT = auto()
    STRING_LIT = auto()

    # Identifier
    IDENT = auto()

    # Operators
    PLUS = auto()
    MINUS = auto()
    STAR = auto()
    SLASH = auto()
    PERCENT = auto()
    EQ = auto()
    NEQ = auto()
    GTE = auto()
    LTE = auto()
    GT = auto()
    LT = auto()
    AND = auto()
    OR = auto()
    NOT = auto()
    ASSIGN = auto()
    DOT = auto()

    # Delimiters
    LBRACE = auto()
    RBRACE = auto()
    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    COLON = auto()
    COMMA = auto()
    SEMICOLON = auto()

    # Special
    ERROR = auto()
    EOF = auto()


KEYWORDS: dict[str, TokenType] = {
    "let": TokenType.LET,
    "const": TokenType.CONST,
    "func": TokenType.FUNC,
    "return": TokenType.RETURN,
    "if": TokenType.IF,
    "else": TokenType.ELSE,
    "for": TokenType.FOR,
    "in": TokenType.IN,
    "while": TokenType.WHILE,
    "match": TokenType.MATCH,
    "case": TokenType.CASE,
    "default_case": TokenType.DEFAULT_CASE,
    "async": TokenType.ASYNC,
    "await": TokenType.AWAIT,
    "spawn": TokenType.SPAWN,
    "yield": TokenType.YIELD,
    "test": TokenType.TEST,
    "assert": TokenType.ASSERT,
    "import": TokenType.IMPORT,
    "export": TokenType.EXPORT,
    "module": TokenType.MODULE,
    "true": TokenType.TRUE,
    "false": TokenType.FALSE,
    "break": TokenType.BREAK,
    "continue": TokenType.CONTINUE,
    "class": TokenType.CLASS,
    "safe": TokenType.SAFE,
    "shared": TokenType.SHARED,
    "ok": TokenType.OK,
    "err": TokenType.ERR,
}

# Two-character operators are tried before single characters.
_DOUBLE_OPS: dict[str, TokenType] = {
    "==": TokenType.EQ,
    "!=": TokenType.NEQ,
    ">=": TokenType.GTE,
    "<=": TokenType.LTE,
    "&&": TokenType.AND,
    "||": TokenType.OR,
}

_SINGLE_OPS: dict[str, TokenType] = {
    "+": TokenType.PLUS,
    "-": TokenType.MINUS,
    "*": TokenType.STAR,
    "/": TokenType.SLASH,
    "%": TokenType.PERCENT,
    ">": TokenType.GT,
    "<": TokenType.LT,
    "!": TokenType.NOT,
    "=": TokenType.ASSIGN,
    ".": TokenType.DOT,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    ":": TokenType.COLON,
    ",": TokenType.COMMA,
    ";": TokenType.SEMICOLON,
}

_ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", '"': '"', "0": "\0"}


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str
    span: Span

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, {self.span})"


def _is_digit(ch: Optional[str]) -> bool:
    return ch is not None and "0" <= ch <= "9"


def _is_ident_start(ch: str) -> bool:
    return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def _is_ident_char(ch: str) -> bool:
    return _is_ident_start(ch) or _is_digit(ch)


class Lexer:
    """Tokenizer for csafe source code.

    Every iteration gets its own cursor, so several scans of one lexer can
    be live at once.
    """

    def __init__(self, source: str, filename: str = "<stdin>",
                 diagnostics: Optional[Diagnostics] = None):
        self.source = source
        self.filename = filename
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics(filename)
        self._reported: set[int] = set()

    def __iter__(self) -> Iterator[Token]:
        return self.tokens()

    def report(self, message: str, span: Span) -> None:
        # A restarted scan must not report the same problem twice.
        if span.offset in self._reported:
            return
        self._reported.add(span.offset)
        self.diagnostics.lexical_error(message, span)

    def tokens(self) -> Iterator[Token]:
        """Lazily scan the whole input from the start."""
        return _Scan(self).tokens()

    def tokenize(self) -> list[Token]:
        return list(self.tokens())


class _Scan:
    """One pass over a lexer's source, with its own position."""

    def __init__(self, lexer: Lexer):
        self.lexer = lexer
        self.source = lexer.source
        self.filename = lexer.filename
        self.pos = 0
        self.line = 1
        self.column = 1

    def _peek(self, offset: int = 0) -> Optional[str]:
        idx = self.pos + offset
        if idx < len(self.source):
            return self.source[idx]
        return None

    def _advance(self) -> str:
        ch = self.source[self.pos]
        self.pos += 1
        if ch == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return ch

    def _mark(self) -> tuple[int, int, int]:
        return self.pos, self.line, self.column

    def _token(self, tt: TokenType, value: str, mark: tuple[int, int, int]) -> Token:
        offset, line, column = mark
        return Token(tt, value, Span(self.filename, line, column, offset, self.pos - offset))

    def _skip_whitespace_and_comments(self) -> None:
        while self.pos < len(self.source):
            ch = self.source[self.pos]
            if ch in (" ", "\t", "\r", "\n"):
                self._advance()
            elif ch == "/" and self._peek(1) == "/":
                while self.pos < len(self.source) and self.source[self.pos] != "\n":
                    self._advance()
            elif ch == "/" and self._peek(1) == "*":
                mark = self._mark()
                self._advance()
                self._advance()
                closed = False
                while self.pos < len(self.source):
                    if self.source[self.pos] == "*" and self._peek(1) == "/":
                        self._advance()
                        self._advance()
                        closed = True
                        break
                    self._advance()
                if not closed:
                    self.lexer.report(
                        "Unterminated block comment",
                        self._token(TokenType.ERROR, "", mark).span,
                    )
            else:
                break

    def _read_string(self) -> Token:
        mark = self._mark()
        self._advance()  # opening quote
        value = ""
        while self.pos < len(self.source):
            ch = self.source[self.pos]
            if ch == "\n":
                break
            self._advance()
            if ch == '"':
                return self._token(TokenType.STRING_LIT, value, mark)
            if ch == "\\" and self.pos < len(self.source):
                next_ch = self._advance()
                value += _ESCAPES.get(next_ch, next_ch)
            else:
                value += ch
        tok = self._token(TokenType.ERROR, value, mark)
        self.lexer.report("Unterminated string literal", tok.span)
        return tok

    def _read_number(self) -> Token:
        mark = self._mark()
        value = ""
        is_float = False
        while _is_digit(self._peek()) or self._peek() == ".":
            if self.source[self.pos] == ".":
                if is_float or not _is_digit(self._peek(1)):
                    break
                is_float = True
            value += self._advance()
        token_type = TokenType.FLOAT_LIT if is_float else TokenType.INT_LIT
        return self._token(token_type, value, mark)

    def _read_identifier(self) -> Token:
        mark = self._mark()
        value = ""
        while self.pos < len(self.source) and _is_ident_char(self.source[self.pos]):
            value += self._advance()
        token_type = KEYWORDS.get(value, TokenType.IDENT)
        return self._token(token_type, value, mark)

    def tokens(self) -> Iterator[Token]:
        while True:
            self._skip_whitespace_and_comments()
            if self.pos >= len(self.source):
                break

            ch = self.source[self.pos]
            mark = self._mark()

            if ch == '"':
                yield self._read_string()
            elif _is_digit(ch):
                yield self._read_number()
            elif _is_ident_start(ch):
                yield self._read_identifier()
            elif self.source[self.pos:self.pos + 2] in _DOUBLE_OPS:
                op = self._advance() + self._advance()
                yield self._token(_DOUBLE_OPS[op], op, mark)
            elif ch in _SINGLE_OPS:
                self._advance()
                yield self._token(_SINGLE_OPS[ch], ch, mark)
            else:
                self._advance()
                tok = self._token(TokenType.ERROR, ch, mark)
                self.lexer.report(f"Unexpected character '{ch}'", tok.span)
                yield tok

        yield Token(TokenType.EOF, "", Span(self.filename, self.line, self.column, self.pos, 0))


def tokenize(source: str, filename: str = "<stdin>",
             diagnostics: Optional[Diagnostics] = None) -> list[Token]:
    """Convenience function to tokenize csafe source code."""
    return Lexer(source, filename, diagnostics).tokenize()
