from collections import deque

import pytest

from tdsp_errors import TableBuildError
from tdsp_lexer import COMMA, tokenize
from tdsp_parts import (
    AX, R0425, RN, Bits, PartArena, address18, const, flags, imm, literal,
    mem, punct, step, swap, vocab, width_for,
)


def run(arena, index, text):
    tl = deque(tokenize(text))
    return arena.parse(index, tl), [t.value for t in tl]


def one(part):
    arena = PartArena()
    return arena, arena.add(part)


@pytest.mark.parametrize("count, width", [(1, 0), (2, 1), (3, 2), (4, 2), (8, 3), (14, 4), (16, 4), (32, 5)])
def test_width_for(count, width):
    assert width_for(count) == width


def test_literal():
    arena, i = one(literal("mov"))
    assert run(arena, i, "mov a0") == (Bits(0, 0), ["a0"])
    assert run(arena, i, "add")[0] is None
    assert arena.mask(i) == 0


def test_punctuation_kind():
    arena, i = one(punct(COMMA))
    assert run(arena, i, ", a0") == (Bits(0, 0), ["a0"])
    assert run(arena, i, "a0")[0] is None


def test_vocabulary_index():
    arena, i = one(vocab(RN, 4))
    assert run(arena, i, "r3")[0] == Bits(3 << 4, 0b111 << 4)
    assert run(arena, i, "a0")[0] is None
    assert run(arena, i, "5")[0] is None


def test_vocabulary_inverted():
    arena, i = one(vocab(AX, 8, invert=True))
    assert run(arena, i, "a0")[0] == Bits(0x100, 0x100)
    assert run(arena, i, "a1")[0] == Bits(0, 0x100)


def test_constant_consumes_nothing():
    arena, i = one(const(0x8000))
    assert run(arena, i, "a0") == (Bits(0, 0), ["a0"])


@pytest.mark.parametrize("text, ok", [("0", True), ("255", True), ("-1", False), ("256", False)])
def test_unsigned_8_bit_range(text, ok):
    arena, i = one(imm(8, 0))
    result = run(arena, i, text)[0]
    if ok:
        assert result == Bits(int(text), 0xFF)
    else:
        assert result is None


@pytest.mark.parametrize("text, bits", [("-64", 0x40), ("63", 0x3F), ("-1", 0x7F), ("-65", None), ("64", None)])
def test_signed_7_bit_range(text, bits):
    arena, i = one(imm(7, 0, signed=True))
    result = run(arena, i, text)[0]
    assert (result.bits if result else None) == bits


def test_immediate_needs_digits():
    arena, i = one(imm(8, 0))
    assert run(arena, i, "+")[0] is None
    assert run(arena, i, "a0")[0] is None


def test_address18_splits_across_words():
    arena, i = one(address18(4))
    assert arena.mask(i) == 0xFFFF0030
    assert run(arena, i, "0x3ABCD")[0] == Bits(0xABCD0030, 0xFFFF0030)
    assert run(arena, i, "0x100")[0] == Bits(0x01000000, 0xFFFF0030)
    assert run(arena, i, "0x40000")[0] is None


def test_memory_immediate_16():
    arena, i = one(mem(16, width=16))
    assert run(arena, i, "[0x100]")[0] == Bits(0x01000000, 0xFFFF0000)
    assert run(arena, i, "[0x10000]")[0] is None
    assert run(arena, i, "0x100")[0] is None


def test_memory_with_prefix():
    arena, i = one(mem(0, RN, prefix=("code", ":", "movpd", ":")))
    assert run(arena, i, "[code:movpd:r5]")[0] == Bits(5, 7)
    assert run(arena, i, "[code:r5]")[0] is None
    assert run(arena, i, "[code:movpd:r5")[0] is None


def test_memory_fixed_register():
    arena, i = one(mem(prefix=("sp",)))
    assert run(arena, i, "[sp]")[0] == Bits(0, 0)
    assert run(arena, i, "[r0]")[0] is None


def test_memory_signed_offset():
    arena, i = one(mem(0, prefix=("r7",), width=7, signed=True))
    assert run(arena, i, "[r7-5]")[0] == Bits(0x7B, 0x7F)
    assert run(arena, i, "[r7+63]")[0] == Bits(63, 0x7F)
    assert run(arena, i, "[r7+64]")[0] is None


def test_combined_offset():
    arena = PartArena()
    m = arena.add(mem(0, R0425))
    arena.combine_with(m, arena.add(step("offsZIDZ", 2)))
    assert arena.mask(m) == 0xF
    assert run(arena, m, "[r4-1]")[0] == Bits(1 | (2 << 2), 0xF)
    assert run(arena, m, "[r4+1]")[0] == Bits(1 | (1 << 2), 0xF)
    assert run(arena, m, "[r4]")[0] == Bits(1, 0xF)
    assert run(arena, m, "[r4+2]")[0] is None


def test_combine_rejected_on_non_memory():
    arena = PartArena()
    r = arena.add(vocab(RN, 0))
    with pytest.raises(TableBuildError):
        arena.combine_with(r, arena.add(step("offsZI", 3)))


def test_combine_rejects_overlap():
    arena = PartArena()
    m = arena.add(mem(0, RN))
    with pytest.raises(TableBuildError):
        arena.combine_with(m, arena.add(step("offsZI", 1)))


def test_combine_only_once():
    arena = PartArena()
    m = arena.add(mem(0, RN))
    arena.combine_with(m, arena.add(step("offsZI", 3)))
    with pytest.raises(TableBuildError):
        arena.combine_with(m, arena.add(step("offsZI", 4)))


@pytest.mark.parametrize("text, code, rest", [
    ("", 0, []),
    ("0", 0, []),
    ("+1", 1, []),
    ("-1", 2, []),
    ("+s", 3, []),
    ("s", 3, []),
    (", a0", 0, [None, "a0"]),
])
def test_step_zids(text, code, rest):
    arena, i = one(step("stepZIDS", 3))
    bits, left = run(arena, i, text)
    assert bits == Bits(code << 3, 0b11 << 3)
    assert left == rest


@pytest.mark.parametrize("text", ["+2", "-2", "1", "s0"])
def test_step_zids_rejects(text):
    arena, i = one(step("stepZIDS", 3))
    assert run(arena, i, text)[0] is None


def test_step_ii2d2s():
    arena, i = one(step("stepII2D2S", 0))
    assert [run(arena, i, t)[0].bits for t in ("+1", "+2", "-2", "s")] == [0, 1, 2, 3]
    assert run(arena, i, "")[0] is None
    assert run(arena, i, "-1")[0] is None


def test_step_s0_variant():
    arena, i = one(step("stepII2D2S0", 0))
    assert run(arena, i, "s0")[0] == Bits(3, 3)
    assert run(arena, i, "+s0")[0] == Bits(3, 3)
    assert run(arena, i, "s")[0] is None


def test_single_value_steps():
    arena = PartArena()
    i2 = arena.add(step("modrstepI2"))
    d2 = arena.add(step("modrstepD2"))
    assert run(arena, i2, "+2")[0] == Bits(0, 0)
    assert run(arena, i2, "-2")[0] is None
    assert run(arena, i2, "")[0] is None
    assert run(arena, d2, "-2")[0] == Bits(0, 0)


def test_modr_step_must_be_written():
    arena, i = one(step("modrstepZIDS", 3))
    assert run(arena, i, "")[0] is None
    assert run(arena, i, "0")[0] == Bits(0, 0x18)


def test_unknown_step():
    with pytest.raises(TableBuildError):
        step("stepXYZ")


@pytest.mark.parametrize("text, code", [
    ("a0, b0", 0),
    ("a0, b1", 1),
    ("a1, b1", 3),
    ("a0, b0, a1, b1", 4),
    ("a0, b0, a1", 6),
    ("b1, a1, b0", 13),
])
def test_swap_patterns(text, code):
    arena, i = one(swap(0))
    bits, rest = run(arena, i, text)
    assert bits == Bits(code, 0xF)
    assert rest == []


@pytest.mark.parametrize("text", ["a0, b0, a0", "a0 b0", "a0,", "b0, b1", ""])
def test_swap_rejects(text):
    arena, i = one(swap(0))
    assert run(arena, i, text)[0] is None


@pytest.mark.parametrize("text, bits", [
    ("", 0),
    ("r0", 0b1),
    ("r7", 0b10000),
    ("r0, r4, cfgj", 0b100101),
    ("r0, r1, r4, cfgi, r7, cfgj", 0b111111),
])
def test_flag_set(text, bits):
    arena, i = one(flags(0))
    assert run(arena, i, text) == (Bits(bits, 0x3F), [])


@pytest.mark.parametrize("text", ["r0, r0", "r1, r0", "cfgj, r0"])
def test_flag_set_rejects_repeat_and_order(text):
    arena, i = one(flags(0))
    assert run(arena, i, text)[0] is None


def test_flag_set_leaves_trailing_comma():
    arena, i = one(flags(0))
    bits, rest = run(arena, i, "r0, a0")
    assert bits == Bits(1, 0x3F)
    assert rest == [None, "a0"]


def test_invert_adapter():
    arena = PartArena()
    n = arena.wrap_invert(arena.add(vocab(RN, 0)))
    assert arena.mask(n) == 7
    assert run(arena, n, "r2")[0] == Bits(5, 7)
    assert run(arena, n, "a0")[0] is None
