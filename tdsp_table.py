import logging
from dataclasses import dataclass
from functools import lru_cache

from tdsp_errors import TableBuildError
from tdsp_match import Row, Table
from tdsp_parts import (
    AX, AXL, PUNCT_KINDS, R01, R0123, R04, R0425, R45, R4567, RN, TOKEN,
    STEP_CODES, VOCABULARIES, PartArena, address18, const, flags, imm,
    literal, mem, punct, step, swap, vocab,
)

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())

# Таблица команд: одна строка на команду.
#
#   КОДh мнемоника поле поле ...
#
# КОД это 4 шестнадцатеричные цифры (заглавные), общие биты команды.
# Поле это синтаксический литерал (строчными), "," "_" (двоеточие) "||",
# либо тип поля с позицией младшего бита: Ax@8, Ax@not8 (значение хранится
# инвертированным), Address18@16andN (старшие 2 бита адреса на позицию N).
# Порядок строк это приоритет: побеждает первая подошедшая.
INSTRUCTION_TABLE = """\
; управление
0000h nop
0020h trap
4380h eint
43C0h dint
0E00h cntx s , Bogus r
0E01h cntx r

; переходы
4180h br Address18@16and4 , Cond@0
41C0h call Address18@16and4 , Cond@0
5000h brr RelAddr7@4 , Cond@0
1000h callr RelAddr7@4 , Cond@0
4580h ret Cond@0
45C0h reti Cond@0

; циклы
0C00h rep Imm8u@0
0D00h rep Register@0
5C00h bkrep Imm8u@0 , Address16@16

; загрузка служебных полей
0400h load Imm8u@0 , page
0A00h load Imm9u@0 , modi
DB80h load Imm7s@0 , stepi
4D80h load Imm2u@0 , ps
4D40h load Imm4u@0 , movpd
8E80h load Imm5u@0 , ps01
8F00h load Imm4@0 , ext

; банки и обмен аккумуляторов
4B80h banke BankFlags6@0
4980h swap SwapTypes4@0

; модификация адресных регистров
0080h modr Rn@0 modrstepZIDS@3
00A0h modr Rn@0 modrstepI2
00A8h modr Rn@0 modrstepD2
00E0h modr Rn@0 modrstepII2D2S0@3

; пересылки
D4FBh mov MemImm16@16 , Ax@8
D4BBh mov Ax@8 , MemImm16@16
5E20h mov Imm16@16 , RegisterP0@0
5800h mov Register@5 , RegisterP0@0
2000h mov Ablh@9 , MemImm8@0
1800h mov MemRn@0 stepZIDS@3 , Ab@5
1C00h mov Ab@5 , MemRn@0 stepZIDS@3
D490h mov MemR0425@0 offsZIDZ@2 , Abl@8
D600h mov MemR04@1 offsZI@0 , Axh@2
D700h mov MemR45@0 offsI , Bx@1
D2C0h mov MemR0 offsZIDZ@3 , Ax@0
D3C0h mov MemSp , Ab@0
D880h mov MemR7Imm7s@0 , Ax@8
D4DCh mov MemR7Imm16@16 , Ab@0
8E00h mov Imm5s@0 , Bx@5
9000h mov ArArpSttMod@0 , Abh@4
9100h mov SttMod@0 , Axl@3
9180h mov ArArp@0 , Bxl@3
9200h mov Imm16@16 , Ar@0
9240h mov Imm16@16 , Arp@0
9F00h mov Abe@0 , Rn@2
9F80h movp Px@0 , Ab@1
0040h movpdw ProgMemAx@0 , Unused1@1
0060h movp ProgMemRn@0 , Ax@3
00C0h movp ProgMemR45@0 , Px@1
D7C0h movp ProgMemAxl@5 , Register@0
9E00h movr R0425@0 , Abh@2
9E40h movr R04@0 , Axh@1
9E80h movr R45@0 , Axl@1
8A60h movr R0stepZIDS@3 , Ax@8
0E40h movd R0123@0 _ R45@2
D580h push R0123457y0@0
D5C0h pop R0123457y0@0

; арифметика
8800h add Imm8s@0 , Ax@8
8A00h add Imm8u@0 , Ax@8
8C00h add Imm16@16 , Ax@8
5D80h add Bx@1 , Ax@0 || clr Ab@2
2400h and Imm8@0 , Ax@8
2600h or Imm8@0 , Ax@8
6000h clr Ab@10 , Cond@0
6000h clr Ab@10 Implied
6A00h inc Ax@8 Const1
6A40h dec Ax@8 Const1
6C00h clrr Ax@8 ConstZero
6E00h shl4 Ax@8 Const4
6E40h rnd Ax@8 Const8000h
8000h shfi Ab@10 , Ab@7 , Imm6s@0
8400h tstb Rn@0 , Imm4bitno@3
94C0h norm Ax@not8 , Rn@0 stepZIDS@3
9C00h exp Bx@0 , Ax@8
9C40h exp Ab@0 NoReverse , Ax@8
9C80h mov Bxh@0 , Axh@1

; умножение
E000h mpy MemR0123@0 stepII2D2S@4 , MemR4567@2 stepD2S@6
E080h sqr MemR01@0 stepII2@1
E0C0h mpys MemR0123@0 stepII2D2S0@2
"""

# Операнды памяти: ключевое слово -> конструктор по позиции
MEMORY_OPERANDS = {
    "MemR01": lambda pos: mem(pos, R01),
    "MemR0123": lambda pos: mem(pos, R0123),
    "MemR04": lambda pos: mem(pos, R04),
    "MemR0425": lambda pos: mem(pos, R0425),
    "MemR45": lambda pos: mem(pos, R45),
    "MemR4567": lambda pos: mem(pos, R4567),
    "MemRn": lambda pos: mem(pos, RN),
    "ProgMemRn": lambda pos: mem(pos, RN, prefix=("code", ":", "movpd", ":")),
    "ProgMemR45": lambda pos: mem(pos, R45, prefix=("code", ":", "movpd", ":")),
    "ProgMemAxl": lambda pos: mem(pos, AXL, prefix=("code", ":", "movpd", ":")),
    "ProgMemAx": lambda pos: mem(pos, AX, prefix=("code", ":")),
    "MemImm8": lambda pos: mem(pos, prefix=("page", ":"), width=8),
    "MemImm16": lambda pos: mem(pos, width=16),
    "MemR7Imm7s": lambda pos: mem(pos, prefix=("r7",), width=7, signed=True),
    "MemR7Imm16": lambda pos: mem(pos, prefix=("r7",), width=16),
}

# Операнды памяти без позиции: в них нет ни одного бита
FIXED_MEMORY_OPERANDS = {
    "MemSp": ("sp",),
    "MemR0": ("r0",),
}

# Числа: ключевое слово -> (ширина, со знаком)
IMMEDIATES = {
    "Imm2u": (2, False),
    "Imm4": (4, False),
    "Imm4u": (4, False),
    "Imm4bitno": (4, False),
    "Imm5s": (5, True),
    "Imm5u": (5, False),
    "Imm6s": (6, True),
    "Imm7s": (7, True),
    "Imm8": (8, False),
    "Imm8s": (8, True),
    "Imm8u": (8, False),
    "Imm9u": (9, False),
    "Imm16": (16, False),
    "Address16": (16, False),
    "RelAddr7": (7, True),
}

CONSTANTS = {
    "ConstZero": 0,
    "Const1": 1,
    "Const4": 4,
    "Const8000h": 0x8000,
}

# Смещения не добавляют новую часть, а присоединяются к предыдущей
OFFSETS = ("offsZI", "offsI", "offsZIDZ")
# offsI всегда +1 и битов не занимает, поэтому пишется без @;
# то же для шагов modr с единственной формой
OFFSETS_WITHOUT_POSITION = ("offsI",)
STEPS_WITHOUT_POSITION = ("modrstepI2", "modrstepD2")

# Виды токенов текста таблицы
HEX = "hex"
WORD = "word"
AT = "at"
NUMBER = "number"
EOL = "eol"
EOF = "eof"
ERROR = "error"


@dataclass(frozen=True)
class TableToken:
    type: str
    text: str
    line: int


class TableLexer:
    def __init__(self, text: str):
        self.text = text
        self.i = 0
        self.line = 1
        self._start_of_line = True
        self._current = None

    def _peek(self) -> str:
        return self.text[self.i] if self.i < len(self.text) else ""

    def _get(self) -> str:
        ch = self._peek()
        if ch:
            self.i += 1
        return ch

    def _skip_whitespace(self):
        while self._peek() in (" ", "\t", "\r"):
            self._get()
        if self._peek() == ";":
            while self._peek() not in ("\n", ""):
                self._get()

    def peek_token(self) -> TableToken:
        if self._current is None:
            self._current = self.next_token()
        return self._current

    def next_token(self) -> TableToken:
        if self._current is not None:
            tok, self._current = self._current, None
            return tok

        self._skip_whitespace()
        line = self.line
        ch = self._peek()

        if ch == "\n":
            self._get()
            self.line += 1
            self._start_of_line = True
            return TableToken(EOL, "", line)
        if ch == "":
            return TableToken(EOF, "", line)
        if self._start_of_line:
            self._start_of_line = False
            return self._lex_hex(line)
        if ch.isascii() and ch.isalpha():
            return TableToken(WORD, self._lex_while(str.isalnum), line)
        if ch.isascii() and ch.isdigit():
            return TableToken(NUMBER, self._lex_while(str.isdigit), line)
        if ch == "@":
            self._get()
            return TableToken(AT, "@", line)
        if ch in (",", "_"):
            self._get()
            return TableToken(WORD, ch, line)
        if ch == "|":
            self._get()
            if self._peek() == "|":
                self._get()
                return TableToken(WORD, "||", line)
            return TableToken(ERROR, "|", line)

        self._get()
        return TableToken(ERROR, ch, line)

    def _lex_while(self, pred) -> str:
        out = []
        while self._peek() and self._peek().isascii() and pred(self._peek()):
            out.append(self._get())
        return "".join(out)

    def _lex_hex(self, line: int) -> TableToken:
        # Код операции: ровно 4 цифры 0-9A-F и буква h
        digits = "".join(self._get() for _ in range(4))
        if len(digits) != 4 or any(c not in "0123456789ABCDEF" for c in digits):
            return TableToken(ERROR, digits, line)
        if self._get() != "h":
            return TableToken(ERROR, digits, line)
        return TableToken(HEX, digits, line)


class RowBuilder:
    # Собирает части одной строки таблицы. Лексер стоит сразу после кода
    # операции; build() дочитывает строку до конца.

    def __init__(self, lexer: TableLexer, arena: PartArena, line: int):
        self.lexer = lexer
        self.arena = arena
        self.line = line
        self.parts = []
        self.invert = False
        self.wide = False

    def fail(self, message: str):
        raise TableBuildError(message, self.line)

    def build(self) -> list:
        while self.lexer.peek_token().type not in (EOL, EOF):
            tok = self.lexer.next_token()
            if tok.type != WORD:
                self.fail(f"ожидалось поле, а не {tok.text!r}")
            self.invert = False
            self.field(tok.text)
        return self.parts

    def bit_pos(self, keyword: str) -> int:
        if self.lexer.next_token().type != AT:
            self.fail(f"после {keyword} ожидалась позиция @N")
        tok = self.lexer.next_token()
        if tok.type == WORD and tok.text.startswith("not") and tok.text[3:].isdigit():
            self.invert = True
            return int(tok.text[3:])
        if tok.type != NUMBER:
            self.fail(f"неверная позиция у {keyword}: {tok.text!r}")
        return int(tok.text)

    def add(self, part):
        index = self.arena.add(part)
        mask = self.arena.mask(index)
        if mask > 0xFFFFFFFF:
            self.fail("поле не помещается в 32 бита")
        # Второе слово одно, поэтому широкое поле в строке не больше одного
        if mask & 0xFFFF0000:
            if self.wide:
                self.fail("второе широкое поле в строке")
            self.wide = True
        self.parts.append(index)

    def drop_comma(self) -> bool:
        # Поле без синтаксиса не должно требовать запятой в исходнике:
        # убираем следующую запятую таблицы или уже добавленную часть-запятую
        if self.lexer.peek_token().text == ",":
            self.lexer.next_token()
            return True
        if self.parts:
            last = self.arena[self.parts[-1]]
            if last.kind == TOKEN and last.text == PUNCT_KINDS[","]:
                self.parts.pop()
                return True
        return False

    def combine(self, keyword: str, pos: int):
        if self.invert:
            self.fail(f"{keyword} нельзя инвертировать")
        if not self.parts:
            self.fail(f"{keyword} не к чему присоединить")
        try:
            self.arena.combine_with(self.parts[-1], self.arena.add(step(keyword, pos)))
        except TableBuildError as e:
            raise TableBuildError(e.message, self.line) from e

    def field(self, w: str):
        if w in ("Implied", "Not"):
            return
        if w == "NoReverse":
            if self.lexer.next_token().text != ",":
                self.fail("после NoReverse ожидалась запятая")
            return
        if w.startswith("Unused"):
            self.bit_pos(w)
            self.drop_comma()
            return
        if w == "Bogus":
            while (self.lexer.peek_token().text not in ("||", ",")
                   and self.lexer.peek_token().type not in (EOL, EOF)):
                self.lexer.next_token()
            self.drop_comma()
            return

        if w in PUNCT_KINDS:
            self.add(punct(PUNCT_KINDS[w]))
        elif w in CONSTANTS:
            self.add(const(CONSTANTS[w]))
        elif w in FIXED_MEMORY_OPERANDS:
            self.add(mem(prefix=FIXED_MEMORY_OPERANDS[w]))
        elif w in MEMORY_OPERANDS:
            self.add(MEMORY_OPERANDS[w](self.bit_pos(w)))
        elif w in IMMEDIATES:
            width, signed = IMMEDIATES[w]
            self.add(imm(width, self.bit_pos(w), signed))
        elif w == "Address18":
            self.address18()
        elif w == "BankFlags6":
            self.add(flags(self.bit_pos(w)))
        elif w == "SwapTypes4":
            self.add(swap(self.bit_pos(w)))
        elif w in OFFSETS_WITHOUT_POSITION:
            self.combine(w, 0)
        elif w in OFFSETS:
            self.combine(w, self.bit_pos(w))
        elif w == "R0stepZIDS":
            self.add(literal("r0"))
            self.add(step("stepZIDS", self.bit_pos(w)))
        elif w in STEPS_WITHOUT_POSITION:
            self.add(step(w))
        elif w in STEP_CODES:
            self.add(step(w, self.bit_pos(w)))
        elif w in VOCABULARIES:
            self.add(vocab(VOCABULARIES[w], self.bit_pos(w)))
        elif "a" <= w[0] <= "z":
            self.add(literal(w))
        else:
            self.fail(f"неизвестное поле {w}")

        if self.invert:
            self.parts[-1] = self.arena.wrap_invert(self.parts[-1])

    def address18(self):
        # Address18@16andN: младшие 16 бит адреса всегда во втором слове,
        # поэтому допустима только позиция 16; N это место старших 2 бит
        if self.bit_pos("Address18") != 16 or self.invert:
            self.fail("Address18 пишется только как Address18@16andN")
        tok = self.lexer.next_token()
        if tok.type != WORD or not tok.text.startswith("and") or not tok.text[3:].isdigit():
            self.fail("после Address18@16 ожидалось andN")
        self.add(address18(int(tok.text[3:])))


def build_table(text=None) -> Table:
    # Разбор текста таблицы. Вызывается один раз при старте; любая ошибка
    # в таблице фатальна.
    if text is None:
        text = INSTRUCTION_TABLE
    lines = text.splitlines()
    lexer = TableLexer(text)
    arena = PartArena()
    rows = []

    while True:
        while lexer.peek_token().type == EOL:
            lexer.next_token()
        if lexer.peek_token().type == EOF:
            break

        head = lexer.next_token()
        if head.type != HEX:
            raise TableBuildError(f"ожидался код операции вида 0000h, а не {head.text!r}", head.line)
        parts = RowBuilder(lexer, arena, head.line).build()
        row = Row(int(head.text, 16), tuple(parts), lines[head.line - 1].strip(), head.line)
        log.debug("строка %d: %s", row.line, row.source)
        rows.append(row)

    log.info("таблица команд: %d строк, %d частей", len(rows), len(arena))
    return Table(arena, rows)


def load_table(path) -> Table:
    with open(path, "r", encoding="utf-8") as f:
        return build_table(f.read())


@lru_cache(maxsize=None)
def default_table() -> Table:
    # Встроенная таблица собирается один раз на процесс
    return build_table()
