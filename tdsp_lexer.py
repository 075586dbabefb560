from bisect import bisect_right
from dataclasses import dataclass

from tdsp_errors import LexError

# Виды токенов строки исходника.
ERROR = "error"
EOL = "eol"
EOF = "eof"
OPEN_BRACKET = "["
CLOSE_BRACKET = "]"
DOUBLE_PIPE = "||"
COLON = ":"
COMMA = ","
NUMERIC = "numeric"
IDENTIFIER = "identifier"
LABEL = "label"
META = "meta"

# Маркер размера перед числом или меткой: нет, "#" или "##".
SIZE_NONE = "none"
SIZE_SMALL = "small"
SIZE_BIG = "big"

PUNCTUATION = {"[": OPEN_BRACKET, "]": CLOSE_BRACKET, ",": COMMA, ":": COLON}


@dataclass(frozen=True)
class Token:
    kind: str
    # смещение в байтах UTF-8 от начала текста
    pos: int
    # str для identifier/label/meta и непонятный символ для error, int для numeric
    value: object = None
    size: str = SIZE_NONE
    had_sign: bool = False
    negative: bool = False
    # False, если после знака не было цифр ("+s" даёт "+" без значения)
    had_value: bool = True


def token_str(tok: Token) -> str:
    marks = {SIZE_NONE: "", SIZE_SMALL: "#", SIZE_BIG: "##"}
    if tok.kind == NUMERIC:
        if not tok.had_value:
            return "Numeric " + ("-" if tok.negative else "+")
        return f"Numeric {marks[tok.size]}{tok.value}"
    if tok.kind == IDENTIFIER:
        return f"Identifier {tok.value}"
    if tok.kind == LABEL:
        return f"Label {marks[tok.size]}${tok.value}"
    if tok.kind == META:
        return f"MetaStatement {tok.value}"
    names = {
        ERROR: "Error", EOL: "EndOfLine", EOF: "EndOfFile",
        OPEN_BRACKET: "OpenBracket", CLOSE_BRACKET: "CloseBracket",
        DOUBLE_PIPE: "DoublePipe", COLON: "Colon", COMMA: "Comma",
    }
    return names[tok.kind]


def _is_digit(ch: str) -> bool:
    return "0" <= ch <= "9"


def _is_alpha(ch: str) -> bool:
    return ("a" <= ch <= "z") or ("A" <= ch <= "Z")


class Lexer:
    # Лексер работает над всем текстом сразу, но выдаёт токены по одному,
    # с просмотром на один токен вперёд (peek_token).

    def __init__(self, text: str):
        self.text = text
        self.i = 0
        # Смещение в байтах UTF-8: pos токена считается в байтах исходника
        self.offset = 0
        self._current = None
        # Байтовые смещения начал строк, нужны для position_of
        self._line_starts = [0]
        offset = 0
        for ch in text:
            offset += len(ch.encode("utf-8"))
            if ch == "\n":
                self._line_starts.append(offset)

    def _peek(self) -> str:
        # Пустая строка означает конец текста
        return self.text[self.i] if self.i < len(self.text) else ""

    def _get(self) -> str:
        ch = self._peek()
        if ch:
            self.i += 1
            self.offset += len(ch.encode("utf-8"))
        return ch

    def _skip_whitespace(self):
        while self._peek() in (" ", "\t", "\r"):
            self._get()
        # Комментарий до конца строки
        if self._peek() == ";":
            while self._peek() not in ("\n", ""):
                self._get()

    @property
    def at_eof(self) -> bool:
        return self.peek_token().kind == EOF

    def peek_token(self) -> Token:
        if self._current is None:
            self._current = self.next_token()
        return self._current

    def next_token(self) -> Token:
        if self._current is not None:
            tok, self._current = self._current, None
            return tok

        self._skip_whitespace()
        pos = self.offset
        ch = self._peek()

        if ch == "\n":
            self._get()
            return Token(EOL, pos)
        if ch == "":
            return Token(EOF, pos)
        if _is_alpha(ch):
            return Token(IDENTIFIER, pos, self._lex_id())
        if ch == "#":
            self._get()
            size = SIZE_SMALL
            if self._peek() == "#":
                self._get()
                size = SIZE_BIG
            if self._peek() == "$":
                self._get()
                return Token(LABEL, pos, self._lex_id(), size=size)
            if _is_digit(self._peek()) or self._peek() in ("+", "-"):
                tok = self._lex_numeric(pos)
                # "#-#5": маркер размера дважды
                if tok.size != SIZE_NONE:
                    return Token(ERROR, pos, "#")
                return Token(NUMERIC, pos, tok.value, size, tok.had_sign,
                             tok.negative, tok.had_value)
            return Token(ERROR, pos, "#")
        if _is_digit(ch) or ch in ("+", "-"):
            return self._lex_numeric(pos)
        if ch == "$":
            self._get()
            return Token(LABEL, pos, self._lex_id())
        if ch == ".":
            self._get()
            return Token(META, pos, self._lex_id())
        if ch in PUNCTUATION:
            self._get()
            return Token(PUNCTUATION[ch], pos)
        if ch == "|":
            self._get()
            # Одиночная "|" ошибка; следующий символ (и перевод строки) не трогаем
            if self._peek() == "|":
                self._get()
                return Token(DOUBLE_PIPE, pos)
            return Token(ERROR, pos, "|")
        if ch == "_":
            self._get()
            return Token(IDENTIFIER, pos, "_")

        self._get()
        return Token(ERROR, pos, ch)

    def _lex_id(self) -> str:
        out = []
        while _is_digit(self._peek()) or _is_alpha(self._peek()):
            out.append(self._get())
        return "".join(out)

    def _lex_numeric(self, pos: int) -> Token:
        had_sign = negative = False
        size = SIZE_NONE

        if self._peek() in ("+", "-"):
            negative = self._get() == "-"
            had_sign = True
            self._skip_whitespace()

        if self._peek() == "#":
            self._get()
            size = SIZE_SMALL
            if self._peek() == "#":
                self._get()
                size = SIZE_BIG
            self._skip_whitespace()

        if not _is_digit(self._peek()):
            return Token(NUMERIC, pos, 0, size, had_sign, negative, had_value=False)

        base, digits = 10, "0123456789"
        if self._peek() == "0":
            self._get()
            if self._peek() == "x":
                self._get()
                base, digits = 16, "0123456789abcdefABCDEF"
            elif self._peek() == "b":
                self._get()
                base, digits = 2, "01"

        value = 0
        while self._peek() and self._peek() in digits:
            value = value * base + int(self._get(), 16)

        if negative:
            value = -value
        return Token(NUMERIC, pos, value, size, had_sign, negative)

    def position_of(self, tok: Token) -> tuple[int, int]:
        # (строка, столбец), обе с единицы
        line = bisect_right(self._line_starts, tok.pos)
        return line, tok.pos - self._line_starts[line - 1] + 1


def get_line(lexer: Lexer) -> list[Token]:
    # Собирает токены одной строки. При ошибке дочитывает строку до конца,
    # чтобы следующий вызов начинался со следующей строки, и бросает LexError.
    tokens = []
    while True:
        tok = lexer.next_token()
        if tok.kind in (EOL, EOF):
            return tokens
        if tok.kind == ERROR:
            while lexer.next_token().kind not in (EOL, EOF):
                pass
            line, column = lexer.position_of(tok)
            raise LexError(f"непонятный символ {tok.value!r}", line, column)
        tokens.append(tok)


def tokenize(text: str) -> list[Token]:
    # Разбор одной строки из обычной str
    return get_line(Lexer(text))
