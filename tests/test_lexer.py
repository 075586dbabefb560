import pytest

from tdsp_errors import LexError
from tdsp_lexer import (
    CLOSE_BRACKET, COLON, COMMA, DOUBLE_PIPE, EOF, EOL, IDENTIFIER, LABEL, META,
    NUMERIC, OPEN_BRACKET, SIZE_BIG, SIZE_NONE, SIZE_SMALL, Lexer, get_line,
    token_str, tokenize,
)


def kinds(text):
    return [t.kind for t in tokenize(text)]


def test_memory_operand_line():
    toks = tokenize("mov [0x100], a1")
    assert [t.kind for t in toks] == [
        IDENTIFIER, OPEN_BRACKET, NUMERIC, CLOSE_BRACKET, COMMA, IDENTIFIER,
    ]
    assert toks[0].value == "mov"
    assert toks[2].value == 0x100
    assert toks[5].value == "a1"


def test_whitespace_and_comment_skipped():
    toks = tokenize(" \t nop\r ; всё остальное комментарий [ ] ,")
    assert [(t.kind, t.value) for t in toks] == [(IDENTIFIER, "nop")]


def test_empty_and_comment_only_lines():
    assert tokenize("") == []
    assert tokenize("   ; только комментарий") == []


def test_byte_offsets():
    toks = tokenize("mov  a0")
    assert toks[0].pos == 0
    assert toks[1].pos == 5


@pytest.mark.parametrize("text, value", [
    ("5", 5),
    ("0", 0),
    ("0x1F", 0x1F),
    ("0xff", 0xFF),
    ("0b101", 5),
    ("0x", 0),
    ("-5", -5),
    ("+7", 7),
    ("- 5", -5),
    ("-0x10", -16),
])
def test_numeric_values(text, value):
    (tok,) = tokenize(text)
    assert tok.kind == NUMERIC
    assert tok.value == value
    assert tok.had_value


def test_sign_is_recorded():
    neg, pos, plain = tokenize("-1 +1 1")
    assert neg.had_sign and neg.negative
    assert pos.had_sign and not pos.negative
    assert not plain.had_sign and not plain.negative


def test_bare_sign_without_digits():
    plus, s = tokenize("+s")
    assert plus.kind == NUMERIC
    assert plus.had_sign and not plus.had_value
    assert s.kind == IDENTIFIER and s.value == "s"

    (minus,) = tokenize("-")
    assert minus.negative and not minus.had_value


def test_size_markers():
    small, big, plain = tokenize("#5 ##0x10 7")
    assert (small.size, small.value) == (SIZE_SMALL, 5)
    assert (big.size, big.value) == (SIZE_BIG, 0x10)
    assert plain.size == SIZE_NONE

    (signed,) = tokenize("+#3")
    assert (signed.size, signed.value, signed.had_sign) == (SIZE_SMALL, 3, True)


def test_double_size_marker_is_error():
    with pytest.raises(LexError):
        tokenize("#-#5")


def test_labels_and_meta():
    plain, small, big, meta = tokenize("$loop #$a ##$b .org")
    assert (plain.kind, plain.value, plain.size) == (LABEL, "loop", SIZE_NONE)
    assert (small.kind, small.value, small.size) == (LABEL, "a", SIZE_SMALL)
    assert (big.kind, big.value, big.size) == (LABEL, "b", SIZE_BIG)
    assert (meta.kind, meta.value) == (META, "org")


def test_punctuation():
    assert kinds("[ ] : , ||") == [OPEN_BRACKET, CLOSE_BRACKET, COLON, COMMA, DOUBLE_PIPE]
    assert kinds("a||b") == [IDENTIFIER, DOUBLE_PIPE, IDENTIFIER]


def test_underscore_is_identifier():
    (tok,) = tokenize("_")
    assert (tok.kind, tok.value) == (IDENTIFIER, "_")


def test_identifier_stops_at_sign():
    reg, step = tokenize("r3+1")
    assert reg.value == "r3"
    assert step.value == 1 and step.had_sign


@pytest.mark.parametrize("text", ["a | b", "mov @", "#x", "mov a0 ?"])
def test_unrecognized_input_fails_line(text):
    with pytest.raises(LexError):
        tokenize(text)


def test_error_reports_position():
    with pytest.raises(LexError) as e:
        tokenize("mov ?")
    assert e.value.line == 1
    assert e.value.column == 5


def test_get_line_resumes_after_error():
    lexer = Lexer("mov ? a0\nnop\n")
    with pytest.raises(LexError):
        get_line(lexer)
    assert [t.value for t in get_line(lexer)] == ["nop"]
    assert lexer.at_eof


def test_lone_pipe_at_end_of_line_keeps_next_line():
    lexer = Lexer("add |\nnop\n")
    with pytest.raises(LexError) as e:
        get_line(lexer)
    assert "'|'" in e.value.message
    assert (e.value.line, e.value.column) == (1, 5)
    assert [t.value for t in get_line(lexer)] == ["nop"]
    assert lexer.at_eof


def test_error_names_the_character():
    with pytest.raises(LexError) as e:
        tokenize("mov ж")
    assert "'ж'" in e.value.message


def test_offsets_count_utf8_bytes():
    lexer = Lexer("; жж\nmov a0")
    assert get_line(lexer) == []
    mov, a0 = get_line(lexer)
    assert mov.pos == len("; жж\n".encode("utf-8"))
    assert a0.pos == mov.pos + 4
    assert lexer.position_of(mov) == (2, 1)
    assert lexer.position_of(a0) == (2, 5)


def test_get_line_splits_lines():
    lexer = Lexer("nop\n  mov a0\n")
    assert [t.value for t in get_line(lexer)] == ["nop"]
    mov, a0 = get_line(lexer)
    assert lexer.position_of(mov) == (2, 3)
    assert lexer.position_of(a0) == (2, 7)
    assert get_line(lexer) == []
    assert lexer.at_eof


def test_peek_does_not_consume():
    lexer = Lexer("nop")
    assert lexer.peek_token().value == "nop"
    assert lexer.peek_token().value == "nop"
    assert lexer.next_token().value == "nop"
    assert lexer.next_token().kind == EOF
    assert lexer.next_token().kind == EOF


def test_newline_token():
    lexer = Lexer("\n")
    assert lexer.next_token().kind == EOL
    assert lexer.next_token().kind == EOF


def test_token_str():
    toks = tokenize("mov #5 ##$foo .org , +")
    assert [token_str(t) for t in toks] == [
        "Identifier mov", "Numeric #5", "Label ##$foo", "MetaStatement org",
        "Comma", "Numeric +",
    ]
