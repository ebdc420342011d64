from __future__ import annotations


def is_alignment_mask(n: int) -> bool:
    """
    Check whether `n` is a stack-alignment mask such as 0xfffffff0 or 0xffffffffffffffe0.
    """
    for bits in (32, 64):
        full = (1 << bits) - 1
        for align in (4, 8, 16, 32, 64):
            if n == full ^ (align - 1):
                return True
    return False


def mask(bits: int) -> int:
    return (1 << bits) - 1


def to_signed(value: int, bits: int) -> int:
    value &= mask(bits)
    if value >> (bits - 1):
        return value - (1 << bits)
    return value
