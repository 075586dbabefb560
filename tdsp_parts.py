from dataclasses import dataclass, replace
from typing import Optional

from tdsp_errors import TableBuildError
from tdsp_lexer import (
    CLOSE_BRACKET, COLON, COMMA, DOUBLE_PIPE, IDENTIFIER, NUMERIC, OPEN_BRACKET,
)

# Части (parts) команды: каждая часть откусывает префикс токенов строки
# и возвращает пару Bits(bits, mask), где mask это биты, которыми часть
# владеет. Инвариант: bits & ~mask == 0.
#
# Набор видов частей закрыт (KINDS), каждая часть это неизменяемый Part с
# настройками своего вида. Части живут в PartArena и ссылаются друг на друга
# по индексу (child), так combine_with не создаёт циклов между объектами.


@dataclass(frozen=True)
class Bits:
    bits: int = 0
    mask: int = 0


def ones(n: int) -> int:
    return (1 << n) - 1


def width_for(count: int) -> int:
    # ceil(log2(count)): сколько бит нужно под индекс словаря
    return (count - 1).bit_length() if count > 1 else 0


# Словари операндов. Индекс в кортеже это код в команде. None это
# зарезервированная позиция, её нельзя написать в исходнике.
RN = ("r0", "r1", "r2", "r3", "r4", "r5", "r6", "r7")
AX = ("a0", "a1")
AXL = ("a0l", "a1l")
AXH = ("a0h", "a1h")
BX = ("b0", "b1")
BXL = ("b0l", "b1l")
BXH = ("b0h", "b1h")
AB = ("b0", "b1", "a0", "a1")
ABL = ("b0l", "b1l", "a0l", "a1l")
ABH = ("b0h", "b1h", "a0h", "a1h")
ABE = ("b0e", "b1e", "a0e", "a1e")
PX = ("p0", "p1")
ABLH = ("b0l", "b0h", "b1l", "b1h", "a0l", "a0h", "a1l", "a1h")
COND = ("true", "eq", "neq", "gt", "ge", "lt", "le", "nn",
        "c", "v", "e", "l", "nr", "niu0", "iu0", "iu1")
REGISTER = ("r0", "r1", "r2", "r3", "r4", "r5", "r7", "y0",
            "st0", "st1", "st2", "p", "pc", "sp", "cfgi", "cfgj",
            "b0h", "b1h", "b0l", "b1l", "ext0", "ext1", "ext2", "ext3",
            "a0", "a1", "a0l", "a1l", "a0h", "a1h", "lc", "sv")
REGISTER_P0 = tuple("p0" if r == "p" else r for r in REGISTER)
R0123457Y0 = ("r0", "r1", "r2", "r3", "r4", "r5", "r7", "y0")
R01 = ("r0", "r1")
R04 = ("r0", "r4")
R45 = ("r4", "r5")
R0123 = ("r0", "r1", "r2", "r3")
R0425 = ("r0", "r4", "r2", "r5")
R4567 = ("r4", "r5", "r6", "r7")
AR_ARP_STT_MOD = ("ar0", "ar1", "arp0", "arp1", "arp2", "arp3", None, None,
                  "stt0", "stt1", "stt2", None, "mod0", "mod1", "mod2", "mod3")
AR_ARP = ("ar0", "ar1", "arp0", "arp1", "arp2", "arp3", None, None)
STT_MOD = ("stt0", "stt1", "stt2", None, "mod0", "mod1", "mod2", "mod3")
AR = ("ar0", "ar1")
ARP = ("arp0", "arp1", "arp2", "arp3")

VOCABULARIES = {
    "Rn": RN, "Ax": AX, "Axl": AXL, "Axh": AXH, "Bx": BX, "Bxl": BXL,
    "Bxh": BXH, "Ab": AB, "Abl": ABL, "Abh": ABH, "Abe": ABE, "Px": PX,
    "Ablh": ABLH, "Cond": COND, "Register": REGISTER,
    "RegisterP0": REGISTER_P0, "R0123457y0": R0123457Y0, "R01": R01,
    "R04": R04, "R45": R45, "R0123": R0123, "R0425": R0425, "R4567": R4567,
    "ArArpSttMod": AR_ARP_STT_MOD, "ArArp": AR_ARP, "SttMod": STT_MOD,
    "Ar": AR, "Arp": ARP,
}

# Флаги banke в обязательном порядке; бит флага = позиция в кортеже.
BANK_FLAGS = ("r0", "r1", "r4", "cfgi", "r7", "cfgj")

# Варианты swap; код это номер варианта.
SWAP_TYPES = tuple(tuple(s.split()) for s in (
    "a0 , b0", "a0 , b1", "a1 , b0", "a1 , b1",
    "a0 , b0 , a1 , b1", "a0 , b1 , a1 , b0",
    "a0 , b0 , a1", "a0 , b1 , a1", "a1 , b0 , a0", "a1 , b1 , a0",
    "b0 , a0 , b1", "b0 , a1 , b1", "b1 , a0 , b0", "b1 , a1 , b0",
))

# Шаги и смещения адресных регистров: форма записи -> код.
# Формы: "0", "+1", "-1", "+2", "-2", "s", "s0"; None значит "ничего не написано".
STEP_CODES = {
    "stepZIDS": {None: 0, "0": 0, "+1": 1, "-1": 2, "s": 3},
    "modrstepZIDS": {"0": 0, "+1": 1, "-1": 2, "s": 3},
    "stepII2D2S": {"+1": 0, "+2": 1, "-2": 2, "s": 3},
    "stepII2D2S0": {"+1": 0, "+2": 1, "-2": 2, "s0": 3},
    "modrstepII2D2S0": {"+1": 0, "+2": 1, "-2": 2, "s0": 3},
    "stepD2S": {"-2": 0, "s": 1},
    "stepII2": {"+1": 0, "+2": 1},
    "modrstepI2": {"+2": 0},
    "modrstepD2": {"-2": 0},
    "offsZI": {None: 0, "0": 0, "+1": 1},
    "offsI": {"+1": 0},
    "offsZIDZ": {None: 0, "0": 0, "+1": 1, "-1": 2},
}

# Виды частей
LITERAL = "literal"
TOKEN = "token"
VOCAB = "vocab"
CONST = "const"
MEMORY = "memory"
IMMEDIATE = "immediate"
ADDRESS18 = "address18"
STEP = "step"
SWAP = "swap"
FLAGS = "flags"
INVERT = "invert"

KINDS = (LITERAL, TOKEN, VOCAB, CONST, MEMORY, IMMEDIATE, ADDRESS18,
         STEP, SWAP, FLAGS, INVERT)


@dataclass(frozen=True)
class Part:
    kind: str
    pos: int = 0
    # LITERAL: слово; TOKEN: вид токена; STEP: ключ в STEP_CODES
    text: Optional[str] = None
    # VOCAB, FLAGS, MEMORY: словарь регистров/флагов
    vocab: Optional[tuple] = None
    # IMMEDIATE и числовой MEMORY: ширина и знаковость
    width: int = 0
    signed: bool = False
    # MEMORY: что стоит внутри скобок перед операндом ("code", ":", ...)
    prefix: tuple = ()
    invert: bool = False
    value: int = 0
    # MEMORY: присоединённое смещение; INVERT: обёрнутая часть
    child: Optional[int] = None


# Конструкторы частей


def literal(word: str) -> Part:
    return Part(LITERAL, text=word)


def punct(kind: str) -> Part:
    return Part(TOKEN, text=kind)


def vocab(words: tuple, pos: int, invert: bool = False) -> Part:
    return Part(VOCAB, pos, vocab=words, invert=invert)


def const(value: int) -> Part:
    return Part(CONST, value=value)


def imm(width: int, pos: int, signed: bool = False) -> Part:
    return Part(IMMEDIATE, pos, width=width, signed=signed)


def address18(pos: int) -> Part:
    # Старшие 2 бита адреса идут в первое слово на позицию pos,
    # младшие 16 всегда во второе слово (биты 16..31)
    return Part(ADDRESS18, pos, width=18)


def mem(pos: int = 0, words: Optional[tuple] = None, prefix: tuple = (),
        width: int = 0, signed: bool = False) -> Part:
    # [prefix... operand смещение], operand это регистр из words,
    # число ширины width или ничего (например [sp])
    return Part(MEMORY, pos, vocab=words, prefix=prefix, width=width, signed=signed)


def step(name: str, pos: int = 0) -> Part:
    if name not in STEP_CODES:
        raise TableBuildError(f"неизвестный шаг {name}")
    return Part(STEP, pos, text=name)


def swap(pos: int) -> Part:
    return Part(SWAP, pos, vocab=SWAP_TYPES)


def flags(pos: int, words: tuple = BANK_FLAGS) -> Part:
    return Part(FLAGS, pos, vocab=words)


class PartArena:
    # Хранилище частей таблицы. Заполняется один раз при сборке таблицы,
    # потом только читается.

    def __init__(self):
        self.parts: list[Part] = []

    def __len__(self):
        return len(self.parts)

    def __getitem__(self, index: int) -> Part:
        return self.parts[index]

    def add(self, part: Part) -> int:
        if part.kind not in KINDS:
            raise TableBuildError(f"неизвестный вид части {part.kind}")
        self.parts.append(part)
        return len(self.parts) - 1

    def wrap_invert(self, index: int) -> int:
        return self.add(Part(INVERT, child=index))

    def combine_with(self, parent: int, child: int):
        # Присоединить смещение к операнду памяти: оно разбирается
        # перед закрывающей скобкой и дописывает свои биты к операнду
        base = self.parts[parent]
        if base.kind != MEMORY:
            raise TableBuildError(f"часть {base.kind} не принимает смещение")
        if base.child is not None:
            raise TableBuildError("у операнда памяти уже есть смещение")
        if self.mask(parent) & self.mask(child):
            raise TableBuildError("смещение перекрывает биты операнда памяти")
        self.parts[parent] = replace(base, child=child)

    def mask(self, index: int) -> int:
        part = self.parts[index]
        kind = part.kind
        if kind in (VOCAB, FLAGS, SWAP):
            n = len(part.vocab) if kind == FLAGS else width_for(len(part.vocab))
            return ones(n) << part.pos
        if kind == IMMEDIATE:
            return ones(part.width) << part.pos
        if kind == ADDRESS18:
            return 0xFFFF0000 | (0b11 << part.pos)
        if kind == STEP:
            return ones(width_for(max(STEP_CODES[part.text].values()) + 1)) << part.pos
        if kind == MEMORY:
            if part.vocab is not None:
                own = ones(width_for(len(part.vocab))) << part.pos
            else:
                own = ones(part.width) << part.pos
            if part.child is not None:
                own |= self.mask(part.child)
            return own
        if kind == INVERT:
            return self.mask(part.child)
        # LITERAL, TOKEN, CONST
        return 0

    def parse(self, index: int, tokens) -> Optional[Bits]:
        # tokens это deque, части снимают токены слева. При неудаче уже
        # снятые токены не возвращаются: вся строка таблицы всё равно отброшена.
        part = self.parts[index]
        bits = _PARSERS[part.kind](self, part, tokens)
        if bits is None:
            return None
        mask = self.mask(index)
        assert bits & ~mask == 0, f"{part.kind}: биты {bits:#x} вне маски {mask:#x}"
        return Bits(bits, mask)


# Разбор отдельных токенов


def _take(tokens, kind):
    if tokens and tokens[0].kind == kind:
        return tokens.popleft()
    return None


def _take_word(tokens, word: str) -> bool:
    tok = _take(tokens, IDENTIFIER)
    return tok is not None and tok.value == word


def _take_index(tokens, words: tuple) -> Optional[int]:
    tok = _take(tokens, IDENTIFIER)
    if tok is None:
        return None
    for i, w in enumerate(words):
        if w == tok.value:
            return i
    return None


def _take_number(tokens, width: int, signed: bool) -> Optional[int]:
    # Число вне диапазона это обычное несовпадение, а не отдельная ошибка
    tok = _take(tokens, NUMERIC)
    if tok is None or not tok.had_value:
        return None
    v = tok.value
    if signed:
        if not -(1 << (width - 1)) <= v < (1 << (width - 1)):
            return None
        return v & ones(width)
    if not 0 <= v < (1 << width):
        return None
    return v


def _take_step_form(tokens):
    # Возвращает форму шага ("0", "+1", "-2", "s", ...), None если шага нет
    # (ничего не снято) и "?" если написано что-то не то.
    if not tokens:
        return None
    tok = tokens[0]
    if tok.kind == NUMERIC and tok.had_value:
        tokens.popleft()
        if tok.value == 0:
            return "0"
        if not tok.had_sign:
            return "?"
        return f"{tok.value:+d}"
    if tok.kind == NUMERIC and tok.had_sign and not tok.negative:
        # "+s" / "+s0": знак без цифр и за ним имя шага
        if len(tokens) > 1 and tokens[1].kind == IDENTIFIER and tokens[1].value in ("s", "s0"):
            tokens.popleft()
            return tokens.popleft().value
        return None
    if tok.kind == IDENTIFIER and tok.value in ("s", "s0"):
        return tokens.popleft().value
    return None


# Разбор по видам частей; каждая функция возвращает bits или None


def _parse_literal(arena, part, tokens):
    return 0 if _take_word(tokens, part.text) else None


def _parse_token(arena, part, tokens):
    return 0 if _take(tokens, part.text) is not None else None


def _parse_vocab(arena, part, tokens):
    i = _take_index(tokens, part.vocab)
    if i is None:
        return None
    bits = i << part.pos
    if part.invert:
        bits ^= ones(width_for(len(part.vocab))) << part.pos
    return bits


def _parse_const(arena, part, tokens):
    # Константа ничего не читает. Поле нулевой ширины, так что value
    # хранится только для справки и в биты не попадает.
    return 0


def _parse_immediate(arena, part, tokens):
    v = _take_number(tokens, part.width, part.signed)
    return None if v is None else v << part.pos


def _parse_address18(arena, part, tokens):
    v = _take_number(tokens, 18, False)
    if v is None:
        return None
    return ((v & 0xFFFF) << 16) | ((v >> 16) << part.pos)


def _parse_memory(arena, part, tokens):
    if _take(tokens, OPEN_BRACKET) is None:
        return None
    for item in part.prefix:
        if item == ":":
            if _take(tokens, COLON) is None:
                return None
        elif not _take_word(tokens, item):
            return None

    bits = 0
    if part.vocab is not None:
        i = _take_index(tokens, part.vocab)
        if i is None:
            return None
        bits = i << part.pos
    elif part.width:
        v = _take_number(tokens, part.width, part.signed)
        if v is None:
            return None
        bits = v << part.pos

    if part.child is not None:
        offset = arena.parse(part.child, tokens)
        if offset is None:
            return None
        bits |= offset.bits

    if _take(tokens, CLOSE_BRACKET) is None:
        return None
    return bits


def _parse_step(arena, part, tokens):
    codes = STEP_CODES[part.text]
    form = _take_step_form(tokens)
    if form not in codes:
        return None
    return codes[form] << part.pos


def _parse_swap(arena, part, tokens):
    # Вариант должен совпасть целиком и съесть все оставшиеся токены;
    # варианты пробуются по порядку, код это номер первого подошедшего
    for code, pattern in enumerate(part.vocab):
        if len(pattern) != len(tokens):
            continue
        for want, tok in zip(pattern, tokens):
            if want == ",":
                if tok.kind != COMMA:
                    break
            elif tok.kind != IDENTIFIER or tok.value != want:
                break
        else:
            tokens.clear()
            return code << part.pos
    return None


def _parse_flags(arena, part, tokens):
    # Список флагов через запятую в порядке словаря, без повторов.
    # Пустой список допустим и даёт 0.
    bits = 0
    last = -1
    while tokens and tokens[0].kind == IDENTIFIER and tokens[0].value in part.vocab:
        i = part.vocab.index(tokens.popleft().value)
        if i <= last:
            return None
        last = i
        bits |= 1 << (part.pos + i)
        # Запятая принадлежит списку, только если за ней ещё один флаг
        if (len(tokens) > 1 and tokens[0].kind == COMMA
                and tokens[1].kind == IDENTIFIER and tokens[1].value in part.vocab):
            tokens.popleft()
        else:
            break
    return bits


def _parse_invert(arena, part, tokens):
    inner = arena.parse(part.child, tokens)
    if inner is None:
        return None
    return inner.bits ^ inner.mask


_PARSERS = {
    LITERAL: _parse_literal,
    TOKEN: _parse_token,
    VOCAB: _parse_vocab,
    CONST: _parse_const,
    MEMORY: _parse_memory,
    IMMEDIATE: _parse_immediate,
    ADDRESS18: _parse_address18,
    STEP: _parse_step,
    SWAP: _parse_swap,
    FLAGS: _parse_flags,
    INVERT: _parse_invert,
}

# Для разбора таблицы: какие знаки препинания строят TOKEN-части
PUNCT_KINDS = {",": COMMA, "_": COLON, "||": DOUBLE_PIPE}
