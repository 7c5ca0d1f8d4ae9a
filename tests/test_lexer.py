import pytest

from lexer import BasicLexError, BasicSyntaxError, Lexer, Token, TokenKind


@pytest.fixture
def lexer():
    return Lexer()


def kinds(text):
    lexer = Lexer().feed(text)
    out = []
    while True:
        token = lexer.next()
        out.append(token.kind)
        if token.kind is TokenKind.EOS:
            return out


def test_tokens_before_feed_are_an_error(lexer):
    with pytest.raises(BasicLexError):
        lexer.next()


def test_feed_keeps_the_text(lexer):
    lexer.feed("12345 text")
    assert lexer.remaining == "12345 text"


@pytest.mark.parametrize(
    "text, expected",
    [
        ('"dq string"', Token(TokenKind.STRING, "dq string")),
        ("'sq string'", Token(TokenKind.STRING, "sq string")),
        ('""', Token(TokenKind.STRING, "")),
        ("12345", Token(TokenKind.INTEGER, 12345)),
        ("-12345", Token(TokenKind.INTEGER, -12345)),
        ("123.45", Token(TokenKind.FLOAT, 123.45)),
        ("-5", Token(TokenKind.INTEGER, -5)),
        ("VAR", Token(TokenKind.IDENT, "VAR")),
        ("var1", Token(TokenKind.IDENT, "var1")),
        ("Var_2", Token(TokenKind.IDENT, "Var_2")),
        ("print", Token(TokenKind.IDENT, "print")),
        ("PRINT", Token(TokenKind.PRINT)),
        ("=", Token(TokenKind.ASSIGN)),
    ],
)
def test_single_lexemes(lexer, text, expected):
    token = lexer.feed(text).next()
    assert token == expected
    assert type(token.value) is type(expected.value)


def test_unterminated_string(lexer):
    lexer.feed("'sq string")
    with pytest.raises(BasicLexError):
        lexer.next()


def test_two_decimal_points(lexer):
    lexer.feed("1.2.3")
    with pytest.raises(BasicLexError):
        lexer.next()


def test_lone_dot_is_not_a_number(lexer):
    with pytest.raises(BasicLexError):
        lexer.feed(". ").next()


def test_unrecognised_character(lexer):
    lexer.feed("A = 1 @ 2")
    lexer.next()
    lexer.next()
    lexer.next()
    with pytest.raises(BasicLexError):
        lexer.next()


def test_bang_without_equals_is_rejected(lexer):
    with pytest.raises(BasicLexError):
        lexer.feed("!").next()


@pytest.mark.parametrize(
    "text, kind",
    [
        ("==", TokenKind.EQ),
        ("!=", TokenKind.NE),
        ("<", TokenKind.LT),
        ("<=", TokenKind.LE),
        (">", TokenKind.GT),
        (">=", TokenKind.GE),
    ],
)
def test_comparisons(lexer, text, kind):
    lexer.feed(text)
    assert lexer.next() == Token(kind)
    assert lexer.next() == Token(TokenKind.EOS)


def test_operators_and_punctuation():
    assert kinds("+ - * / % ^ ( ) [ ] , ; :") == [
        TokenKind.PLUS,
        TokenKind.MINUS,
        TokenKind.MULTIPLY,
        TokenKind.DIVIDE,
        TokenKind.MODULO,
        TokenKind.EXPONENT,
        TokenKind.LPAREN,
        TokenKind.RPAREN,
        TokenKind.LBRACKET,
        TokenKind.RBRACKET,
        TokenKind.COMMA,
        TokenKind.SEMICOLON,
        TokenKind.COLON,
        TokenKind.EOS,
    ]


def test_line_endings_collapse_to_one_token():
    assert kinds("A\r\n\n") == [TokenKind.IDENT, TokenKind.EOL, TokenKind.EOS]


def test_minus_after_a_value_is_an_operator():
    lexer = Lexer().feed("A-5")
    assert lexer.next() == Token(TokenKind.IDENT, "A")
    assert lexer.next() == Token(TokenKind.MINUS)
    assert lexer.next() == Token(TokenKind.INTEGER, 5)


def test_minus_after_a_close_bracket_is_an_operator():
    assert kinds("(2)-1") == [
        TokenKind.LPAREN,
        TokenKind.INTEGER,
        TokenKind.RPAREN,
        TokenKind.MINUS,
        TokenKind.INTEGER,
        TokenKind.EOS,
    ]


def test_minus_after_an_operator_folds_into_the_literal():
    lexer = Lexer().feed("2 * -3")
    lexer.next()
    lexer.next()
    assert lexer.next() == Token(TokenKind.INTEGER, -3)


def test_peek_is_repeatable_and_does_not_consume(lexer):
    lexer.feed('"dq string"')
    assert lexer.peek() == Token(TokenKind.STRING, "dq string")
    assert lexer.remaining == '"dq string"'
    assert lexer.peek() == Token(TokenKind.STRING, "dq string")
    assert lexer.remaining == '"dq string"'
    assert lexer.next() == Token(TokenKind.STRING, "dq string")
    assert lexer.remaining == ""


def test_whole_assignment(lexer):
    lexer.feed("A1 = -1")
    assert lexer.peek() == Token(TokenKind.IDENT, "A1")
    assert lexer.next() == Token(TokenKind.IDENT, "A1")
    assert lexer.peek() == Token(TokenKind.ASSIGN)
    assert lexer.next() == Token(TokenKind.ASSIGN)
    assert lexer.peek() == Token(TokenKind.INTEGER, -1)
    assert lexer.next() == Token(TokenKind.INTEGER, -1)


def test_end_of_stream_repeats_forever(lexer):
    lexer.feed("  ")
    for _ in range(3):
        assert lexer.next() == Token(TokenKind.EOS)


def test_skip_discards_the_peeked_token(lexer):
    lexer.feed("A B")
    lexer.peek()
    lexer.skip()
    assert lexer.next() == Token(TokenKind.IDENT, "B")


def test_expect_returns_an_allowed_token(lexer):
    lexer.feed("FOR I")
    assert lexer.expect([TokenKind.FOR]) == Token(TokenKind.FOR)


def test_expect_reports_token_text_and_choices(lexer):
    lexer.feed("LET INPUT = 1")
    lexer.next()
    with pytest.raises(BasicSyntaxError) as info:
        lexer.expect([TokenKind.IDENT])
    message = str(info.value)
    assert "INPUT" in message
    assert "at column 5" in message
    assert "= 1" in message
    assert "IDENT" in message


def test_feed_discards_previous_state(lexer):
    lexer.feed("A")
    lexer.peek()
    lexer.feed("B")
    assert lexer.next() == Token(TokenKind.IDENT, "B")


def test_token_equality_ignores_column():
    assert Token(TokenKind.IDENT, "A", column=1) == Token(TokenKind.IDENT, "A", column=9)
    assert Token(TokenKind.INTEGER, 1) != Token(TokenKind.INTEGER, 2)


def test_collect_data(lexer):
    lexer.feed("10, 2.5, 'x', -3")
    assert lexer.collect_data() == [10, 2.5, "x", -3]


def test_collect_data_rejects_identifiers(lexer):
    lexer.feed("10, A")
    with pytest.raises(BasicSyntaxError, match="at column 5"):
        lexer.collect_data()


def test_reserved_words_can_be_narrowed():
    lexer = Lexer(reserved=["PRINT"]).feed("PRINT LET")
    assert lexer.next() == Token(TokenKind.PRINT)
    assert lexer.next() == Token(TokenKind.IDENT, "LET")


def test_unknown_reserved_word_is_refused():
    with pytest.raises(ValueError):
        Lexer(reserved=["PRINT", "WHILE"])
