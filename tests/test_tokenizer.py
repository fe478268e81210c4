"""Tests for line trimming, tokenizing and unsigned-integer tokens."""

from __future__ import annotations

import pytest

from ctp.tokenizer import UINT64_MAX, to_uint, tokenize, trim


def test_trim_and_tokenize_collapse_whitespace():
    assert trim("  \tMTVX FT0  \n") == "MTVX FT0"
    assert tokenize("  a\t b   c ") == ["a", "b", "c"]
    assert tokenize("   ") == []


@pytest.mark.parametrize(
    ("token", "expected"),
    [("0", 0), ("42", 42), ("0x1f", 31), ("0X10", 16), ("0b101", 5), (str(UINT64_MAX), UINT64_MAX)],
)
def test_to_uint_accepts_decimal_hex_binary(token: str, expected: int):
    assert to_uint(token) == expected


@pytest.mark.parametrize("token", ["", "-1", "+3", "abc", "12x", "0xZZ", "1.5"])
def test_to_uint_rejects_garbage_and_signs(token: str):
    with pytest.raises(ValueError):
        to_uint(token)


def test_to_uint_width():
    with pytest.raises(ValueError):
        to_uint(str(UINT64_MAX + 1))
    with pytest.raises(ValueError):
        to_uint("4294967296", bits=32)
    assert to_uint("4294967295", bits=32) == 0xFFFF_FFFF


@pytest.mark.parametrize("token", ["1_000", "0x_ff", "0b1_0", "١٢", "0x+5", "0x-5", "0x"])
def test_to_uint_rejects_separators_unicode_digits_and_prefixed_signs(token: str):
    with pytest.raises(ValueError):
        to_uint(token)
