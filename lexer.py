from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple, Union


class BasicError(Exception):
    """Base class for interpreter errors."""


class BasicLexError(BasicError):
    """Raised when a line cannot be tokenized."""


class BasicSyntaxError(BasicError):
    """Raised when a token stream does not fit the grammar."""


class TokenKind(Enum):
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    IDENT = "ident"

    PLUS = "+"
    MINUS = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    MODULO = "%"
    EXPONENT = "^"

    ASSIGN = "="
    EQ = "=="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="

    LPAREN = "("
    RPAREN = ")"
    LBRACKET = "["
    RBRACKET = "]"
    COMMA = ","
    SEMICOLON = ";"
    COLON = ":"

    EOL = "eol"
    EOS = "eos"

    PRINT = "PRINT"
    INPUT = "INPUT"
    LET = "LET"
    IF = "IF"
    THEN = "THEN"
    FOR = "FOR"
    TO = "TO"
    STEP = "STEP"
    NEXT = "NEXT"
    GOTO = "GOTO"
    GOSUB = "GOSUB"
    RETURN = "RETURN"
    READ = "READ"
    DATA = "DATA"
    RESTORE = "RESTORE"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    END = "END"
    STOP = "STOP"
    REM = "REM"


TokenValue = Union[None, int, float, str]


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: TokenValue = None
    column: int = field(default=0, compare=False)

    def __str__(self) -> str:
        if self.value is None:
            return f"<{self.kind.name}>"
        return f"<{self.kind.name}: {self.value}>"


RESERVED = (
    "PRINT", "INPUT", "LET", "IF", "THEN", "FOR", "TO", "STEP", "NEXT", "END",
    "STOP", "REM", "GOTO", "GOSUB", "RETURN", "READ", "DATA", "RESTORE", "AND",
    "OR", "NOT",
)

SYMBOLS = {
    "+": TokenKind.PLUS,
    "-": TokenKind.MINUS,
    "*": TokenKind.MULTIPLY,
    "/": TokenKind.DIVIDE,
    "%": TokenKind.MODULO,
    "^": TokenKind.EXPONENT,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    "[": TokenKind.LBRACKET,
    "]": TokenKind.RBRACKET,
    ",": TokenKind.COMMA,
    ";": TokenKind.SEMICOLON,
    ":": TokenKind.COLON,
}

# Two-character forms are tried before the one-character ones.
COMPARISONS = {
    "==": TokenKind.EQ,
    "!=": TokenKind.NE,
    "<=": TokenKind.LE,
    ">=": TokenKind.GE,
    "=": TokenKind.ASSIGN,
    "<": TokenKind.LT,
    ">": TokenKind.GT,
}

# After one of these a '-' is always the subtraction operator.
VALUE_KINDS = frozenset({
    TokenKind.INTEGER,
    TokenKind.FLOAT,
    TokenKind.STRING,
    TokenKind.IDENT,
    TokenKind.RPAREN,
    TokenKind.RBRACKET,
})

DIGITS = "0123456789"

LITERAL_KINDS = frozenset({TokenKind.INTEGER, TokenKind.FLOAT, TokenKind.STRING})


class Lexer:
    """Tokenizes one line of BASIC at a time.

    Tokens are produced on demand. ``peek`` looks at the next token without
    consuming it, so callers can back out of a choice by simply not calling
    ``next``.
    """

    def __init__(self, *, reserved: Optional[Iterable[str]] = None) -> None:
        self.reserved = frozenset(reserved if reserved is not None else RESERVED)
        unknown = self.reserved.difference(RESERVED)
        if unknown:
            raise ValueError(f"Not a BASIC keyword: {', '.join(sorted(unknown))}")
        self.text: Optional[str] = None
        self.index = 0
        self._previous: Optional[TokenKind] = None
        self._peeked: Optional[Tuple[Token, int]] = None

    def feed(self, text: str) -> "Lexer":
        self.text = text
        self.index = 0
        self._previous = None
        self._peeked = None
        return self

    @property
    def remaining(self) -> str:
        if self.text is None:
            return ""
        return self.text[self.index:]

    def peek(self) -> Token:
        if self._peeked is None:
            self._peeked = self._scan()
        return self._peeked[0]

    def peek_kind(self) -> TokenKind:
        return self.peek().kind

    def next(self) -> Token:
        token = self.peek()
        self.skip()
        return token

    def skip(self) -> None:
        token = self.peek()
        assert self._peeked is not None
        self.index = self._peeked[1]
        self._peeked = None
        if token.kind is not TokenKind.EOS:
            self._previous = token.kind

    def expect(self, kinds: Iterable[TokenKind]) -> Token:
        allowed = tuple(kinds)
        token = self.peek()
        if token.kind not in allowed:
            names = ", ".join(kind.name for kind in allowed)
            raise BasicSyntaxError(
                f"Unexpected {token} at column {token.column} in '{self.remaining}'. (Valid: {names})"
            )
        return self.next()

    def collect_data(self) -> List[TokenValue]:
        """Consume a comma separated list of literals."""
        items: List[TokenValue] = []
        while True:
            token = self.next()
            if token.kind in (TokenKind.EOS, TokenKind.EOL):
                break
            if token.kind not in LITERAL_KINDS:
                raise BasicSyntaxError(f"Unexpected {token} at column {token.column} in DATA. (Valid: INTEGER, FLOAT, STRING)")
            items.append(token.value)
            separator = self.expect((TokenKind.COMMA, TokenKind.EOL, TokenKind.EOS))
            if separator.kind is not TokenKind.COMMA:
                break
        return items

    # ---- scanning ----

    def _scan(self) -> Tuple[Token, int]:
        if self.text is None:
            raise BasicLexError("No input specified")
        text = self.text
        n = len(text)
        i = self.index
        while i < n and text[i] in " \t":
            i += 1
        if i >= n:
            return Token(TokenKind.EOS, column=i + 1), i

        ch = text[i]
        if ch in "\r\n":
            j = i
            while j < n and text[j] in "\r\n":
                j += 1
            return Token(TokenKind.EOL, column=i + 1), j
        if ch in ('"', "'"):
            return self._consume_string(i)
        if ch in DIGITS or ch == ".":
            return self._consume_number(i, i)
        if self._is_identifier_part(ch):
            return self._consume_identifier(i)
        two = text[i:i + 2]
        if two in COMPARISONS:
            return Token(COMPARISONS[two], column=i + 1), i + 2
        if ch in COMPARISONS:
            return Token(COMPARISONS[ch], column=i + 1), i + 1
        if ch == "-" and i + 1 < n and text[i + 1] in DIGITS and self._previous not in VALUE_KINDS:
            return self._consume_number(i, i + 1)
        if ch in SYMBOLS:
            return Token(SYMBOLS[ch], column=i + 1), i + 1
        raise BasicLexError(f"Unrecognised: '{text[i:]}'")

    def _consume_string(self, start: int) -> Tuple[Token, int]:
        text = self.text
        assert text is not None
        opening = text[start]
        end = text.find(opening, start + 1)
        if end == -1:
            raise BasicLexError(f"Unterminated string encountered: {text[start:]}")
        return Token(TokenKind.STRING, text[start + 1:end], column=start + 1), end + 1

    def _consume_number(self, start: int, digits_from: int) -> Tuple[Token, int]:
        text = self.text
        assert text is not None
        n = len(text)
        j = digits_from
        while j < n and (text[j] in DIGITS or text[j] == "."):
            j += 1
        literal = text[start:j]
        dots = literal.count(".")
        if dots > 1:
            raise BasicLexError(f"Invalid number encountered: {literal}")
        if literal.lstrip("-") == ".":
            raise BasicLexError(f"Invalid number encountered: {literal}")
        if dots:
            return Token(TokenKind.FLOAT, float(literal), column=start + 1), j
        return Token(TokenKind.INTEGER, int(literal), column=start + 1), j

    def _consume_identifier(self, start: int) -> Tuple[Token, int]:
        text = self.text
        assert text is not None
        n = len(text)
        j = start
        while j < n and self._is_identifier_part(text[j]):
            j += 1
        word = text[start:j]
        if word in self.reserved:
            return Token(TokenKind(word), column=start + 1), j
        return Token(TokenKind.IDENT, word, column=start + 1), j

    def _is_identifier_part(self, ch: str) -> bool:
        return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z") or ch in DIGITS
