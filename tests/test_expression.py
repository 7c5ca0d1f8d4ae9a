import math

import pytest

from expression import BasicArithmeticError, BasicRuntimeError, ExpressionEvaluator
from lexer import BasicSyntaxError, Lexer, TokenKind


VARIABLES = {"A1": 10, "A2": 20, "A3": 30, "E": math.e, "S": "text"}


def make(text, functions=None):
    lexer = Lexer().feed(text)
    return ExpressionEvaluator(lexer, lambda name: VARIABLES.get(name, 0), functions)


def evaluate(text, functions=None):
    return make(text, functions).evaluate()


def condition(text):
    return make(text).condition()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("25", 25),
        ("25.5", 25.5),
        ("A1", 10),
        ("UNSET", 0),
        ("'abc'", "abc"),
        ("2 + 5", 7),
        ("10 - 6", 4),
        ("2 * 5", 10),
        ("20 / 5", 4),
        ("15 % 7", 1),
        ("2 ^ 10", 1024),
        ("A1 + A2 +A3", 60),
        ("A3 * A1", 300),
        ("A3 / 3", 10),
        ("A1 + A2 - A3", 0),
        ("A1 - A3", -20),
        ("(7+8)", 15),
        ("(8 - 7)", 1),
        ("(56 / 7.0)", 8),
        ("10 *(7+8)", 150),
        ("A3* (A2+8)", 840),
    ],
)
def test_values(text, expected):
    assert evaluate(text) == expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2 + 3 * 5", 17),
        ("3 * 2 + 3 * 5", 21),
        ("2 ^ 10", 1024),
        ("(2 ^ 10) ^ 2", 1048576),
        ("2 * 3 ^ 2", 18),
        ("10 - 2 - 3", 5),
        ("2 ^ 3 ^ 2", 512),
    ],
)
def test_precedence(text, expected):
    assert evaluate(text) == expected


def test_non_integer_exponent():
    assert evaluate("9 ^ 0.5") == pytest.approx(3)


def test_function_composition():
    assert evaluate("COS(1)^2 + SIN(1)^2") == pytest.approx(1.0, abs=1e-6)


def test_unary_minus():
    assert evaluate("-A1") == -10
    assert evaluate("-(2 + 3)") == -5
    assert evaluate("4 - -2") == 6


def test_integer_division_floors():
    assert evaluate("7 / 2") == 3
    assert evaluate("-7 / 2") == -4
    assert evaluate("7.0 / 2") == 3.5


def test_modulo_takes_the_sign_of_the_divisor():
    assert evaluate("-7 % 3") == 2
    assert evaluate("7 % -3") == -2


def test_string_concatenation():
    assert evaluate("'abc' + \"def\"") == "abcdef"
    assert evaluate("S + '!'") == "text!"


@pytest.mark.parametrize("text", ["'a' - 1", "S * 2", "'a' + 1", "-S", "ABS('x')"])
def test_type_mismatch(text):
    with pytest.raises(BasicRuntimeError, match="TYPE MISMATCH"):
        evaluate(text)


def test_division_by_zero_is_arithmetic():
    with pytest.raises(ZeroDivisionError):
        evaluate("1 / 0")


def test_negative_base_with_fractional_exponent():
    with pytest.raises(BasicArithmeticError):
        evaluate("(-8) ^ 0.5")


def test_math_domain_error_is_arithmetic():
    with pytest.raises(BasicArithmeticError):
        evaluate("SQR(-1)")
    with pytest.raises(ArithmeticError):
        evaluate("LOG(0)")


@pytest.mark.parametrize(
    "text, expected",
    [
        ("COS(1.047198)", 0.5),
        ("SIN(0.523599)", 0.5),
        ("TAN(0.785398)", 1.0),
        ("ACOS(0.5)", 1.047198),
        ("ASIN(0.5)", 0.523599),
        ("ATAN(1)", 0.785398),
        ("ABS(2)", 2.0),
        ("ABS(-2)", 2.0),
        ("CEIL(2.5)", 3.0),
        ("FLOOR(2.5)", 2.0),
        ("ROUND(2.49)", 2.0),
        ("ROUND(2.51)", 3.0),
        ("ROUND(2.5)", 3.0),
        ("ROUND(-2.5)", -3.0),
        ("SQR(9)", 3.0),
        ("LOG(E)", 1.0),
        ("LOG10(100)", 2.0),
        ("EXP(1)", math.e),
    ],
)
def test_functions(text, expected):
    assert evaluate(text) == pytest.approx(expected, abs=1e-6)


def test_function_names_fold_to_upper_case():
    assert evaluate("abs(-3)") == 3
    assert evaluate("Sqr(16)") == pytest.approx(4.0)


def test_identifier_without_bracket_is_a_variable():
    assert evaluate("ABS") == 0


def test_unknown_function_is_an_error():
    with pytest.raises(BasicSyntaxError, match="UNKNOWN FUNCTION"):
        evaluate("FOO(1)")


def test_extension_function():
    assert evaluate("TWICE(A1)", {"TWICE": lambda x: x * 2}) == 20


def test_missing_close_bracket():
    with pytest.raises(BasicSyntaxError):
        evaluate("(1 + 2")


def test_missing_operand():
    with pytest.raises(BasicSyntaxError):
        evaluate("1 +")


def test_lexer_is_left_after_the_expression():
    evaluator = make("1 + 2 TO 10")
    assert evaluator.evaluate() == 3
    assert evaluator.lexer.peek_kind() is TokenKind.TO


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1 = 1", True),
        ("1 == 1", True),
        ("1 = 2", False),
        ("1 != 2", True),
        ("1 != 1", False),
        ("2 > 1", True),
        ("1 > 2", False),
        ("2 >= 2", True),
        ("1 >= 2", False),
        ("1 < 2", True),
        ("2 < 1", False),
        ("2 <= 2", True),
        ("3 <= 2", False),
        ("A1 + A2 = A3", True),
        ("'a' < 'b'", True),
        ("NOT 1 = 1", False),
        ("NOT 1 = 2", True),
    ],
)
def test_inequality(text, expected):
    assert make(text).inequality() is expected


def test_inequality_needs_a_comparison():
    with pytest.raises(BasicSyntaxError):
        make("1 + 2").inequality()


def test_comparing_string_with_number():
    with pytest.raises(BasicRuntimeError, match="TYPE MISMATCH"):
        make("'a' < 1").inequality()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1 = 1 AND 2 = 2", True),
        ("1 = 1 AND 2 = 3", False),
        ("1 = 2 OR 2 = 2", True),
        ("1 = 2 OR 2 = 3", False),
        ("1 = 2 AND 2 = 2 OR 3 = 3", True),
        ("1 = 1 OR 2 = 2 AND 3 = 4", False),
        ("NOT 1 = 2 AND NOT 2 = 3", True),
    ],
)
def test_condition(text, expected):
    assert condition(text) is expected


def test_condition_consumes_every_clause():
    evaluator = make("1 = 1 OR 2 = 2 THEN")
    assert evaluator.condition() is True
    assert evaluator.lexer.peek_kind() is TokenKind.THEN
