from __future__ import annotations

from typing import Union

BytesLike = Union[str, bytes]


def _as_bytes(value: BytesLike) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def constant_time_equals(supplied: BytesLike, expected: BytesLike) -> bool:
    """Compare two secrets without a data-dependent early exit.

    Inputs of different length are rejected immediately; that branch depends
    only on the lengths. Equal-length inputs are compared by OR-accumulating
    the XOR of every byte pair, so the loop always visits every position.
    """
    left = _as_bytes(supplied)
    right = _as_bytes(expected)
    if len(left) != len(right):
        return False
    result = 0
    for a, b in zip(left, right):
        result |= a ^ b
    return result == 0
