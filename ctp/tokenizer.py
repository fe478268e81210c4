from __future__ import annotations

from typing import List

UINT64_MAX = (1 << 64) - 1


def trim(line: str) -> str:
    return line.strip()


def tokenize(line: str) -> List[str]:
    """Split on runs of whitespace; never yields empty tokens."""
    return line.split()


def to_uint(token: str, *, bits: int = 64) -> int:
    """
    Parse an unsigned integer token: decimal, 0x-hex or 0b-binary.
    Raises ValueError for signs, digit separators, non-ASCII digits, garbage,
    or values wider than `bits`.
    """
    tok = token.strip()
    if not tok or tok[0] in "+-" or "_" in tok or not tok.isascii():
        raise ValueError(f"not an unsigned integer: {token!r}")
    base = {"0x": 16, "0b": 2}.get(tok[:2].lower(), 10)
    digits = tok if base == 10 else tok[2:]
    if not digits.isalnum():
        raise ValueError(f"not an unsigned integer: {token!r}")
    value = int(digits, base)
    if value >> bits:
        raise ValueError(f"value {token!r} does not fit in {bits} bits")
    return value
