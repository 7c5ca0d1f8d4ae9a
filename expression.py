from __future__ import annotations
import math
from typing import Callable, Dict, Optional, Union

from lexer import LITERAL_KINDS, BasicError, BasicSyntaxError, Lexer, TokenKind


Number = Union[int, float]
Value = Union[int, float, str]
FunctionImpl = Callable[[Number], Number]


class BasicRuntimeError(BasicError):
    """Raised for runtime faults."""

    def __init__(self, message: str, *, line_index: Optional[int] = None, label: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.line_index = line_index
        self.label = label
        self.step_index: Optional[int] = None


class BasicArithmeticError(BasicError, ArithmeticError):
    """Raised when a numeric operation has no real result."""


def as_number(value: Value, rule: str) -> Number:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise BasicRuntimeError(f"TYPE MISMATCH: {rule} expects a number, got {value!r}")
    return value


def _round_half_away(value: Number) -> int:
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


ROUND_FUNCTIONS: Dict[str, FunctionImpl] = {
    "ABS": abs,
    "CEIL": math.ceil,
    "FLOOR": math.floor,
    "ROUND": _round_half_away,
}

MATH_FUNCTIONS: Dict[str, FunctionImpl] = {
    "COS": math.cos,
    "SIN": math.sin,
    "TAN": math.tan,
    "ACOS": math.acos,
    "ASIN": math.asin,
    "ATAN": math.atan,
    "SQR": math.sqrt,
    "LOG": math.log,
    "LOG10": math.log10,
    "EXP": math.exp,
}

ADDITIVE = (TokenKind.PLUS, TokenKind.MINUS)
MULTIPLICATIVE = (TokenKind.MULTIPLY, TokenKind.DIVIDE, TokenKind.MODULO)
COMPARISON_KINDS = (
    TokenKind.ASSIGN,
    TokenKind.EQ,
    TokenKind.NE,
    TokenKind.GT,
    TokenKind.GE,
    TokenKind.LT,
    TokenKind.LE,
)
TERM_KINDS = (
    TokenKind.LPAREN,
    TokenKind.INTEGER,
    TokenKind.FLOAT,
    TokenKind.STRING,
    TokenKind.IDENT,
    TokenKind.MINUS,
)


class ExpressionEvaluator:
    """Recursive-descent evaluator reading straight from a ``Lexer``.

    Expressions are computed while they are parsed; nothing is built. The
    lexer is left on the first token after the expression, so statement code
    can carry on from there.

    ``lookup`` resolves variable names. ``functions`` holds extra one-argument
    functions (registered by extensions), keyed by upper-case name.
    """

    def __init__(
        self,
        lexer: Lexer,
        lookup: Callable[[str], Value],
        functions: Optional[Dict[str, FunctionImpl]] = None,
    ) -> None:
        self.lexer = lexer
        self.lookup = lookup
        self.functions: Dict[str, FunctionImpl] = dict(functions or {})

    def evaluate(self) -> Value:
        value = self._factor()
        kind = self.lexer.peek_kind()
        while kind in ADDITIVE:
            self.lexer.skip()
            rhs = self._factor()
            value = self._binary(kind, value, rhs)
            kind = self.lexer.peek_kind()
        return value

    def inequality(self) -> bool:
        negate = False
        if self.lexer.peek_kind() is TokenKind.NOT:
            self.lexer.skip()
            negate = True

        lhs = self.evaluate()
        cmp = self.lexer.expect(COMPARISON_KINDS).kind
        rhs = self.evaluate()
        try:
            if cmp is TokenKind.ASSIGN or cmp is TokenKind.EQ:
                truth = lhs == rhs
            elif cmp is TokenKind.NE:
                truth = lhs != rhs
            elif cmp is TokenKind.GT:
                truth = lhs > rhs  # type: ignore[operator]
            elif cmp is TokenKind.GE:
                truth = lhs >= rhs  # type: ignore[operator]
            elif cmp is TokenKind.LT:
                truth = lhs < rhs  # type: ignore[operator]
            else:
                truth = lhs <= rhs  # type: ignore[operator]
        except TypeError:
            raise BasicRuntimeError(f"TYPE MISMATCH comparing {lhs!r} with {rhs!r}")
        return not truth if negate else truth

    def condition(self) -> bool:
        """Inequalities joined by AND/OR, left to right, equal precedence."""
        result = self.inequality()
        kind = self.lexer.peek_kind()
        while kind in (TokenKind.AND, TokenKind.OR):
            self.lexer.skip()
            # Always parsed so the lexer ends up past the whole condition.
            rhs = self.inequality()
            result = (result and rhs) if kind is TokenKind.AND else (result or rhs)
            kind = self.lexer.peek_kind()
        return result

    def _factor(self) -> Value:
        value = self._term()
        kind = self.lexer.peek_kind()
        while kind in MULTIPLICATIVE:
            self.lexer.skip()
            rhs = self._term()
            value = self._binary(kind, value, rhs)
            kind = self.lexer.peek_kind()
        return value

    def _term(self) -> Value:
        token = self.lexer.expect(TERM_KINDS)
        kind = token.kind
        if kind is TokenKind.LPAREN:
            value = self._bracketed(opened=True)
        elif kind in LITERAL_KINDS:
            value = token.value  # type: ignore[assignment]
        elif kind is TokenKind.MINUS:
            value = self._negate(self._term())
        else:
            value = self._identifier(str(token.value))

        if self.lexer.peek_kind() is TokenKind.EXPONENT:
            self.lexer.skip()
            value = self._power(value, self._term())
        return value  # type: ignore[return-value]

    def _bracketed(self, opened: bool = False) -> Value:
        if not opened:
            self.lexer.expect((TokenKind.LPAREN,))
        value = self.evaluate()
        self.lexer.expect((TokenKind.RPAREN,))
        return value

    def _identifier(self, name: str) -> Value:
        if self.lexer.peek_kind() is not TokenKind.LPAREN:
            return self.lookup(name)

        fname = name.upper()
        impl = ROUND_FUNCTIONS.get(fname) or MATH_FUNCTIONS.get(fname) or self.functions.get(fname)
        if impl is None:
            raise BasicSyntaxError(f"UNKNOWN FUNCTION {name}")
        argument = as_number(self._bracketed(), fname)
        try:
            return impl(argument)
        except (ValueError, OverflowError) as exc:
            raise BasicArithmeticError(f"{fname}({argument}): {exc}")

    def _binary(self, kind: TokenKind, lhs: Value, rhs: Value) -> Value:
        if kind is TokenKind.PLUS:
            if isinstance(lhs, str) and isinstance(rhs, str):
                return lhs + rhs
            return as_number(lhs, "+") + as_number(rhs, "+")
        a = as_number(lhs, kind.value)
        b = as_number(rhs, kind.value)
        if kind is TokenKind.MINUS:
            return a - b
        if kind is TokenKind.MULTIPLY:
            return a * b
        if kind is TokenKind.DIVIDE:
            if isinstance(a, int) and isinstance(b, int):
                return a // b
            return a / b
        return a % b

    def _power(self, base: Value, exponent: Value) -> Number:
        a = as_number(base, "^")
        b = as_number(exponent, "^")
        result = a ** b
        if isinstance(result, complex):
            raise BasicArithmeticError(f"{a} ^ {b} has no real result")
        return result

    def _negate(self, value: Value) -> Number:
        return -as_number(value, "-")
