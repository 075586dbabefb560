import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

from tdsp_parts import Bits, PartArena

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())


@dataclass(frozen=True)
class Row:
    # Одна строка таблицы: биты кода операции и части по порядку
    # (индексы в PartArena). source и line нужны только для отладки.
    base_bits: int
    parts: tuple
    source: str = ""
    line: int = 0


def merge(results) -> Optional[Bits]:
    # Склеиваем вклады частей слева направо. Если две части пишут в общие
    # биты разные значения, строка таблицы не подходит.
    bits = mask = 0
    for r in results:
        assert r.bits & ~r.mask == 0
        overlap = r.mask & mask
        if (r.bits & overlap) != (bits & overlap):
            return None
        bits |= r.bits
        mask |= r.mask
    return Bits(bits, mask)


def process_parts(arena: PartArena, parts, tokens) -> Optional[Bits]:
    # Каждая попытка работает со своей копией токенов строки
    tl = deque(tokens)
    results = []
    for index in parts:
        r = arena.parse(index, tl)
        if r is None:
            return None
        results.append(r)
    # Лишние токены в конце строки: не совпало
    if tl:
        return None
    return merge(results)


def to_words(base_bits: int, merged: Bits) -> list[int]:
    # Первое слово: код операции и узкие поля. Второе появляется только если
    # маска задевает биты 16..31 (широкий адрес или Imm16@16).
    words = [(merged.bits & 0xFFFF) | base_bits]
    if merged.mask & 0xFFFF0000:
        words.append((merged.bits >> 16) & 0xFFFF)
    return words


class Table:
    # Упорядоченный список строк; порядок строк это приоритет совпадения.
    # После сборки не меняется.

    def __init__(self, arena: PartArena, rows):
        self.arena = arena
        self.rows = tuple(rows)

    def __len__(self):
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def try_parse(self, row: Row, tokens) -> Optional[list[int]]:
        merged = process_parts(self.arena, row.parts, tokens)
        if merged is None:
            return None
        return to_words(row.base_bits, merged)

    def find(self, tokens):
        # Первая подошедшая строка по порядку объявления -> (row, words)
        for row in self.rows:
            words = self.try_parse(row, tokens)
            if words is not None:
                if log.isEnabledFor(logging.DEBUG):
                    log.debug("строка таблицы %d (%s) -> %s", row.line, row.source,
                              " ".join(f"{w:04x}" for w in words))
                return row, words
        return None

    def lookup(self, tokens) -> Optional[list[int]]:
        found = self.find(tokens)
        return None if found is None else found[1]
