from __future__ import annotations

from ..errors import WidthMismatchError
from ..utils.constants import mask, to_signed


class Value:
    """
    The base class of all values in the discovery IR. Every value carries its width in bits.
    """

    __slots__ = ("bits",)

    def __init__(self, bits: int):
        self.bits = bits

    def as_app(self) -> App | None:
        """
        Return the operation that computes this value, if it is computed by one.
        """
        return None


def checked_cast(value: Value, bits: int, what: str = "value") -> Value:
    """
    Assert that `value` is `bits` wide and return it.

    :raises WidthMismatchError: If the widths differ.
    """
    if value.bits != bits:
        raise WidthMismatchError(bits, value.bits, what)
    return value


class BVValue(Value):
    """
    A constant bit vector. The stored value is always in [0, 2**bits).
    """

    __slots__ = ("value",)

    def __init__(self, bits: int, value: int):
        super().__init__(bits)
        self.value = value & mask(bits)

    def __eq__(self, other):
        return type(other) is BVValue and self.bits == other.bits and self.value == other.value

    def __hash__(self):
        return hash((BVValue, self.bits, self.value))

    def __repr__(self):
        return f"{self.value:#x}:[{self.bits}]"

    @property
    def signed(self) -> int:
        return to_signed(self.value, self.bits)


class Initial(Value):
    """
    The value a register holds when the block starts executing.
    """

    __slots__ = ("reg",)

    def __init__(self, reg: str, bits: int):
        super().__init__(bits)
        self.reg = reg

    def __eq__(self, other):
        return type(other) is Initial and self.reg == other.reg

    def __hash__(self):
        return hash((Initial, self.reg))

    def __repr__(self):
        return self.reg


class AssignedValue(Value):
    """
    The value produced by an assignment statement.
    """

    __slots__ = ("assignment",)

    def __init__(self, assignment: Assignment):
        super().__init__(assignment.rhs.bits)
        self.assignment = assignment

    def __eq__(self, other):
        return type(other) is AssignedValue and self.assignment.assign_id == other.assignment.assign_id

    def __hash__(self):
        return hash((AssignedValue, self.assignment.assign_id))

    def __repr__(self):
        return f"r{self.assignment.assign_id}"


class App(Value):
    """
    A side-effect free operation over other values. Apps compare structurally.
    """

    __slots__ = ("op", "args", "_hash")

    def __init__(self, op: str, args: tuple[Value, ...], bits: int):
        super().__init__(bits)
        self.op = op
        self.args = tuple(args)
        self._hash = None

    def __eq__(self, other):
        return type(other) is App and self.op == other.op and self.bits == other.bits and self.args == other.args

    def __hash__(self):
        if self._hash is None:
            self._hash = hash((App, self.op, self.bits, self.args))
        return self._hash

    def __repr__(self):
        return f"{self.op}({', '.join(repr(a) for a in self.args)})"

    def as_app(self) -> App:
        return self


class AppOp:
    """
    Operation names of App values.
    """

    Add = "bv_add"
    Mul = "bv_mul"
    And = "bv_and"
    Or = "bv_or"
    Xor = "bv_xor"
    Shl = "bv_shl"
    Shr = "bv_shr"
    Sar = "bv_sar"
    Not = "bv_complement"
    Eq = "eq"
    Ne = "ne"
    Ult = "bv_ult"
    Ule = "bv_ule"
    Slt = "bv_slt"
    Sle = "bv_sle"
    UExt = "uext"
    SExt = "sext"
    Trunc = "trunc"
    Ite = "mux"


#
# Assignments
#


class AssignRhs:
    __slots__ = ("bits",)

    def __init__(self, bits: int):
        self.bits = bits


class ReadMem(AssignRhs):
    """
    Read `bits` bits of memory at `addr`.
    """

    __slots__ = ("addr",)

    def __init__(self, addr: Value, bits: int):
        super().__init__(bits)
        self.addr = addr

    def __repr__(self):
        return f"read_mem({self.addr!r}, {self.bits})"


class EvalArchFn(AssignRhs):
    """
    An architecture-specific computation, such as a flag helper or an unmodelled register slice.
    """

    __slots__ = ("name", "args")

    def __init__(self, name: str, args: tuple[Value, ...], bits: int):
        super().__init__(bits)
        self.name = name
        self.args = tuple(args)

    def __repr__(self):
        return f"{self.name}({', '.join(repr(a) for a in self.args)})"


class Assignment:
    __slots__ = ("assign_id", "rhs")

    def __init__(self, assign_id: int, rhs: AssignRhs):
        self.assign_id = assign_id
        self.rhs = rhs

    def __eq__(self, other):
        return isinstance(other, Assignment) and self.assign_id == other.assign_id

    def __hash__(self):
        return hash((Assignment, self.assign_id))

    def __repr__(self):
        return f"r{self.assign_id} := {self.rhs!r}"


#
# Smart constructors. These fold constants and keep additions in the (base + constant) shape that the discovery
# heuristics match on.
#


def _check_same(a: Value, b: Value, op: str):
    if a.bits != b.bits:
        raise WidthMismatchError(a.bits, b.bits, f"operand of {op}")


def bv_add(a: Value, b: Value) -> Value:
    _check_same(a, b, AppOp.Add)
    bits = a.bits
    if isinstance(a, BVValue) and not isinstance(b, BVValue):
        a, b = b, a
    if isinstance(b, BVValue):
        if isinstance(a, BVValue):
            return BVValue(bits, a.value + b.value)
        if b.value == 0:
            return a
        app = a.as_app()
        if app is not None and app.op == AppOp.Add and isinstance(app.args[1], BVValue):
            return bv_add(app.args[0], BVValue(bits, app.args[1].value + b.value))
    return App(AppOp.Add, (a, b), bits)


def bv_sub(a: Value, b: Value) -> Value:
    _check_same(a, b, "bv_sub")
    if isinstance(b, BVValue):
        return bv_add(a, BVValue(b.bits, -b.value))
    return bv_add(a, bv_mul(BVValue(b.bits, -1), b))


def bv_mul(a: Value, b: Value) -> Value:
    _check_same(a, b, AppOp.Mul)
    bits = a.bits
    if isinstance(b, BVValue) and not isinstance(a, BVValue):
        a, b = b, a
    if isinstance(a, BVValue):
        if isinstance(b, BVValue):
            return BVValue(bits, a.value * b.value)
        if a.value == 1:
            return b
    return App(AppOp.Mul, (a, b), bits)


def bv_shl(a: Value, amount: Value) -> Value:
    """
    Left shifts by constants are expressed as multiplications, which is the shape jump table indexing is matched in.
    """
    if isinstance(amount, BVValue):
        return bv_mul(BVValue(a.bits, 1 << amount.value), a)
    return App(AppOp.Shl, (a, amount), a.bits)


def bv_bitop(op: str, a: Value, b: Value) -> Value:
    _check_same(a, b, op)
    if isinstance(a, BVValue) and isinstance(b, BVValue):
        if op == AppOp.And:
            return BVValue(a.bits, a.value & b.value)
        if op == AppOp.Or:
            return BVValue(a.bits, a.value | b.value)
        if op == AppOp.Xor:
            return BVValue(a.bits, a.value ^ b.value)
    if op == AppOp.Xor and a == b:
        return BVValue(a.bits, 0)
    return App(op, (a, b), a.bits)


def uext(v: Value, bits: int) -> Value:
    if bits == v.bits:
        return v
    if isinstance(v, BVValue):
        return BVValue(bits, v.value)
    return App(AppOp.UExt, (v,), bits)


def sext(v: Value, bits: int) -> Value:
    if bits == v.bits:
        return v
    if isinstance(v, BVValue):
        return BVValue(bits, v.signed)
    return App(AppOp.SExt, (v,), bits)


def trunc(v: Value, bits: int) -> Value:
    if bits == v.bits:
        return v
    if isinstance(v, BVValue):
        return BVValue(bits, v.value)
    sub = v.as_app()
    if sub is not None and sub.op == AppOp.UExt and sub.args[0].bits == bits:
        return sub.args[0]
    return App(AppOp.Trunc, (v,), bits)


def as_base_offset(v: Value) -> tuple[Value, int]:
    """
    Split `v` into a base value and a constant offset. Values that are not of the form (base + constant) are their
    own base with a zero offset.
    """
    a = v.as_app()
    if a is not None and a.op == AppOp.Add and isinstance(a.args[1], BVValue):
        return a.args[0], a.args[1].value
    return v, 0
