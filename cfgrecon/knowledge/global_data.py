from __future__ import annotations


class GlobalDataInfo:
    """
    What a data address referenced by code was found to be.
    """

    __slots__ = ()


class JumpTable(GlobalDataInfo):
    """
    A jump table. `end` is the address of the first entry that was rejected, if enumeration stopped before the end of
    memory.
    """

    __slots__ = ("end",)

    def __init__(self, end: int | None = None):
        self.end = end

    def __eq__(self, other):
        return type(other) is JumpTable and self.end == other.end

    def __hash__(self):
        return hash((JumpTable, self.end))

    def __repr__(self):
        return "<JumpTable>" if self.end is None else f"<JumpTable ends at {self.end:#x}>"


class ReferencedValue(GlobalDataInfo):
    """
    A value referenced by code that is not known to be anything more specific.
    """

    __slots__ = ()

    def __eq__(self, other):
        return type(other) is ReferencedValue

    def __hash__(self):
        return hash(ReferencedValue)

    def __repr__(self):
        return "<ReferencedValue>"
