from __future__ import annotations

from .values import Assignment, AssignedValue, Value


class Statement:
    """
    The base class of discovery IR statements.
    """

    __slots__ = ()


class AssignStmt(Statement):
    """
    Bind the result of an assignment. Later statements refer to it through :attr:`value`.
    """

    __slots__ = ("assignment",)

    def __init__(self, assignment: Assignment):
        self.assignment = assignment

    @property
    def value(self) -> AssignedValue:
        return AssignedValue(self.assignment)

    def __eq__(self, other):
        return type(other) is AssignStmt and self.assignment == other.assignment

    def __hash__(self):
        return hash((AssignStmt, self.assignment))

    def __repr__(self):
        return repr(self.assignment)


class WriteMem(Statement):
    __slots__ = ("addr", "value")

    def __init__(self, addr: Value, value: Value):
        self.addr = addr
        self.value = value

    def __eq__(self, other):
        return type(other) is WriteMem and self.addr == other.addr and self.value == other.value

    def __hash__(self):
        return hash((WriteMem, self.addr, self.value))

    def __repr__(self):
        return f"*{self.addr!r} := {self.value!r}"


class ExecArchStmt(Statement):
    """
    An architecture-specific side effect that discovery does not model, e.g. a helper call, a compare-and-swap, or a
    guarded load.
    """

    __slots__ = ("desc",)

    def __init__(self, desc: str):
        self.desc = desc

    def __eq__(self, other):
        return type(other) is ExecArchStmt and self.desc == other.desc

    def __hash__(self):
        return hash((ExecArchStmt, self.desc))

    def __repr__(self):
        return f"exec_arch {self.desc}"


class Comment(Statement):
    __slots__ = ("text",)

    def __init__(self, text: str):
        self.text = text

    def __eq__(self, other):
        return type(other) is Comment and self.text == other.text

    def __hash__(self):
        return hash((Comment, self.text))

    def __repr__(self):
        return f"# {self.text}"
