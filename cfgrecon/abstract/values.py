from __future__ import annotations
from itertools import product

from ..errors import WidthMismatchError
from ..utils.constants import is_alignment_mask, mask, to_signed


class AbsValue:
    """
    The base class of abstract values. Every abstract value carries its width in bits.
    """

    __slots__ = ("bits",)

    def __init__(self, bits: int):
        self.bits = bits


class TopValue(AbsValue):
    """
    Any value.
    """

    __slots__ = ()

    def __eq__(self, other):
        return type(other) is TopValue and self.bits == other.bits

    def __hash__(self):
        return hash((TopValue, self.bits))

    def __repr__(self):
        return "<Top>"


class FinSet(AbsValue):
    """
    One of finitely many concrete values.
    """

    __slots__ = ("values",)

    def __init__(self, bits: int, values):
        super().__init__(bits)
        m = mask(bits)
        self.values = frozenset(v & m for v in values)

    def __eq__(self, other):
        return type(other) is FinSet and self.bits == other.bits and self.values == other.values

    def __hash__(self):
        return hash((FinSet, self.bits, self.values))

    def __repr__(self):
        return "{" + ", ".join(f"{v:#x}" for v in sorted(self.values)) + "}"


class StackOffset(AbsValue):
    """
    The stack pointer of the function starting at `base` at entry, plus one of finitely many signed offsets.
    """

    __slots__ = ("base", "offsets")

    def __init__(self, bits: int, base: int, offsets):
        super().__init__(bits)
        self.base = base
        self.offsets = frozenset(to_signed(o, bits) for o in offsets)

    def __eq__(self, other):
        return (
            type(other) is StackOffset
            and self.bits == other.bits
            and self.base == other.base
            and self.offsets == other.offsets
        )

    def __hash__(self):
        return hash((StackOffset, self.bits, self.base, self.offsets))

    def __repr__(self):
        return f"stack_{self.base:#x}" + "{" + ", ".join(f"{o:+#x}" for o in sorted(self.offsets)) + "}"

    def single_offset(self) -> int | None:
        if len(self.offsets) == 1:
            return next(iter(self.offsets))
        return None


class ReturnAddr(AbsValue):
    """
    The return address of the current function.
    """

    __slots__ = ()

    def __eq__(self, other):
        return type(other) is ReturnAddr and self.bits == other.bits

    def __hash__(self):
        return hash((ReturnAddr, self.bits))

    def __repr__(self):
        return "<ReturnAddr>"


def top(bits: int) -> TopValue:
    return TopValue(bits)


def const(bits: int, value: int) -> FinSet:
    return FinSet(bits, (value,))


def is_top(v: AbsValue) -> bool:
    return type(v) is TopValue


def as_concrete_singleton(v: AbsValue) -> int | None:
    """
    Return the only concrete value `v` can take, or None.
    """
    if type(v) is FinSet and len(v.values) == 1:
        return next(iter(v.values))
    return None


def _check_width(a: AbsValue, b: AbsValue, what: str = "abstract value"):
    if a.bits != b.bits:
        raise WidthMismatchError(a.bits, b.bits, what)


#
# Lattice operations
#


def join(a: AbsValue, b: AbsValue, max_set_size: int = 5) -> AbsValue:
    """
    Least upper bound of two values. Sets growing beyond `max_set_size` elements become top.
    """
    _check_width(a, b)
    if a == b:
        return a
    if type(a) is TopValue or type(b) is TopValue:
        return top(a.bits)
    if type(a) is FinSet and type(b) is FinSet:
        values = a.values | b.values
        if len(values) > max_set_size:
            return top(a.bits)
        return FinSet(a.bits, values)
    if type(a) is StackOffset and type(b) is StackOffset and a.base == b.base:
        offsets = a.offsets | b.offsets
        if len(offsets) > max_set_size:
            return top(a.bits)
        return StackOffset(a.bits, a.base, offsets)
    return top(a.bits)


def leq(a: AbsValue, b: AbsValue) -> bool:
    """
    Whether every concrete value of `a` is also a value of `b`.
    """
    if type(b) is TopValue:
        return True
    if type(a) is FinSet and type(b) is FinSet:
        return a.values <= b.values
    if type(a) is StackOffset and type(b) is StackOffset:
        return a.base == b.base and a.offsets <= b.offsets
    return a == b


def widen(old: AbsValue, new: AbsValue) -> AbsValue:
    """
    Widening: keep `old` if it already covers `new`, otherwise give up and go to top.
    """
    _check_width(old, new)
    if leq(new, old):
        return old
    return top(old.bits)


#
# Arithmetic
#


def _set_op(a: FinSet, b: FinSet, op, max_set_size: int) -> AbsValue:
    values = {op(x, y) & mask(a.bits) for x, y in product(a.values, b.values)}
    if len(values) > max_set_size:
        return top(a.bits)
    return FinSet(a.bits, values)


def abs_add(a: AbsValue, b: AbsValue, max_set_size: int = 5) -> AbsValue:
    _check_width(a, b, "operand of add")
    if type(a) is FinSet and type(b) is StackOffset:
        a, b = b, a
    if type(a) is FinSet and type(b) is FinSet:
        return _set_op(a, b, lambda x, y: x + y, max_set_size)
    if type(a) is StackOffset and type(b) is FinSet:
        offsets = {o + v for o, v in product(a.offsets, b.values)}
        if len(offsets) > max_set_size:
            return top(a.bits)
        return StackOffset(a.bits, a.base, offsets)
    return top(a.bits)


def abs_sub(a: AbsValue, b: AbsValue, max_set_size: int = 5) -> AbsValue:
    _check_width(a, b, "operand of sub")
    if type(b) is FinSet:
        neg = FinSet(b.bits, (-v for v in b.values))
        if type(a) in (FinSet, StackOffset):
            return abs_add(a, neg, max_set_size)
    if type(a) is StackOffset and type(b) is StackOffset and a.base == b.base:
        return _set_op(
            FinSet(a.bits, a.offsets), FinSet(b.bits, b.offsets), lambda x, y: x - y, max_set_size
        )
    return top(a.bits)


def abs_mul(a: AbsValue, b: AbsValue, max_set_size: int = 5) -> AbsValue:
    _check_width(a, b, "operand of mul")
    if type(a) is FinSet and type(b) is FinSet:
        return _set_op(a, b, lambda x, y: x * y, max_set_size)
    return top(a.bits)


def abs_and(a: AbsValue, b: AbsValue, max_set_size: int = 5) -> AbsValue:
    _check_width(a, b, "operand of and")
    if type(a) is FinSet and type(b) is StackOffset:
        a, b = b, a
    if type(a) is FinSet and type(b) is FinSet:
        return _set_op(a, b, lambda x, y: x & y, max_set_size)
    if type(a) is StackOffset and type(b) is FinSet:
        m = as_concrete_singleton(b)
        if m is not None and is_alignment_mask(m):
            # stack alignment keeps the frame layout we track
            return a
    return top(a.bits)


def abs_resize(v: AbsValue, bits: int, signed: bool = False) -> AbsValue:
    """
    Zero- or sign-extend, or truncate, a value to `bits` bits.
    """
    if v.bits == bits:
        return v
    if type(v) is FinSet:
        if signed and bits > v.bits:
            return FinSet(bits, (to_signed(x, v.bits) for x in v.values))
        return FinSet(bits, v.values)
    return top(bits)
