from __future__ import annotations
import enum

from ..ir import BlockLabel


class ReasonKind(enum.Enum):
    IN_INITIAL_DATA = "in initial data"
    IN_WRITE = "written by"
    RETURN_ADDRESS = "return address of"
    NEXT_IP = "next ip of"
    START_ADDR = "start address"
    BLOCK_SPLIT = "block split"


class FrontierReason:
    """
    Why an address was put on a frontier. Reasons are kept for diagnostics only; they never affect exploration.
    """

    __slots__ = ("kind", "label")

    def __init__(self, kind: ReasonKind, label: BlockLabel | None = None):
        self.kind = kind
        self.label = label

    def __eq__(self, other):
        return isinstance(other, FrontierReason) and self.kind is other.kind and self.label == other.label

    def __hash__(self):
        return hash((FrontierReason, self.kind, self.label))

    def __repr__(self):
        if self.label is None:
            return f"<{self.kind.value}>"
        return f"<{self.kind.value} {self.label!r}>"

    @classmethod
    def in_initial_data(cls):
        return cls(ReasonKind.IN_INITIAL_DATA)

    @classmethod
    def in_write(cls, label: BlockLabel):
        return cls(ReasonKind.IN_WRITE, label)

    @classmethod
    def return_address(cls, label: BlockLabel):
        return cls(ReasonKind.RETURN_ADDRESS, label)

    @classmethod
    def next_ip(cls, label: BlockLabel):
        return cls(ReasonKind.NEXT_IP, label)

    @classmethod
    def start_addr(cls):
        return cls(ReasonKind.START_ADDR)

    @classmethod
    def block_split(cls):
        return cls(ReasonKind.BLOCK_SPLIT)
