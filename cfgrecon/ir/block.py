from __future__ import annotations
from functools import total_ordering
from collections.abc import Iterator

from .values import BVValue, Initial, Value, checked_cast
from .stmts import Statement


@total_ordering
class BlockLabel:
    """
    Identifies a block by the start address of its region and its index within that region.
    """

    __slots__ = ("addr", "index")

    def __init__(self, addr: int, index: int = 0):
        self.addr = addr
        self.index = index

    def __eq__(self, other):
        return type(other) is BlockLabel and self.addr == other.addr and self.index == other.index

    def __lt__(self, other):
        return (self.addr, self.index) < (other.addr, other.index)

    def __hash__(self):
        return hash((BlockLabel, self.addr, self.index))

    def __repr__(self):
        return f"{self.addr:#x}.{self.index}" if self.index else f"{self.addr:#x}"

    def child(self, index: int) -> BlockLabel:
        return BlockLabel(self.addr, index)


class RegState:
    """
    Register values at a point in a block. Registers that were never written hold their :class:`Initial` value.
    """

    __slots__ = ("widths", "_regs")

    def __init__(self, widths: dict[str, int], regs: dict[str, Value] | None = None):
        self.widths = widths
        self._regs: dict[str, Value] = {}
        if regs:
            for reg, value in regs.items():
                self[reg] = value

    def __getitem__(self, reg: str) -> Value:
        try:
            return self._regs[reg]
        except KeyError:
            return Initial(reg, self.widths[reg])

    def __setitem__(self, reg: str, value: Value):
        checked_cast(value, self.widths[reg], f"value for register {reg}")
        if isinstance(value, Initial) and value.reg == reg:
            self._regs.pop(reg, None)
        else:
            self._regs[reg] = value

    def __contains__(self, reg: str) -> bool:
        return reg in self.widths

    def __eq__(self, other):
        return isinstance(other, RegState) and self._regs == other._regs

    def __repr__(self):
        return "{" + ", ".join(f"{k}: {v!r}" for k, v in sorted(self._regs.items())) + "}"

    def modified(self) -> Iterator[tuple[str, Value]]:
        """
        Iterate over the registers that no longer hold their initial value.
        """
        yield from self._regs.items()

    def copy(self) -> RegState:
        r = RegState(self.widths)
        r._regs = dict(self._regs)
        return r

    def update(self, **regs: Value) -> RegState:
        """
        Return a copy with the given registers replaced.
        """
        r = self.copy()
        for reg, value in regs.items():
            r[reg] = value
        return r


#
# Terminators
#


class Terminator:
    __slots__ = ()


class FetchAndExecute(Terminator):
    """
    Continue at the address held by the instruction pointer in `regs`.
    """

    __slots__ = ("regs",)

    def __init__(self, regs: RegState):
        self.regs = regs

    def __repr__(self):
        return f"fetch_and_execute {self.regs!r}"


class Branch(Terminator):
    __slots__ = ("cond", "true_label", "false_label")

    def __init__(self, cond: Value, true_label: BlockLabel, false_label: BlockLabel):
        checked_cast(cond, 1, "branch condition")
        self.cond = cond
        self.true_label = true_label
        self.false_label = false_label

    def __repr__(self):
        return f"branch {self.cond!r} {self.true_label!r} {self.false_label!r}"


class Syscall(Terminator):
    """
    Enter the kernel. The instruction pointer in `regs` is the address execution resumes at.
    """

    __slots__ = ("regs",)

    def __init__(self, regs: RegState):
        self.regs = regs

    def __repr__(self):
        return f"syscall {self.regs!r}"


class Block:
    """
    A straight-line sequence of statements ending in a terminator.

    :ivar label:                The label of the block.
    :ivar stmts:                The statements of the block.
    :ivar term:                 The terminator.
    :ivar instruction_addrs:    Addresses of the machine instructions that contributed to the block.
    :ivar jumpkind:             The lifter's own opinion of what the final transfer is (e.g. "Ijk_Call"), if any.
    """

    __slots__ = ("label", "stmts", "term", "instruction_addrs", "jumpkind")

    def __init__(
        self,
        label: BlockLabel,
        stmts: list[Statement],
        term: Terminator,
        instruction_addrs: tuple[int, ...] = (),
        jumpkind: str | None = None,
    ):
        self.label = label
        self.stmts = list(stmts)
        self.term = term
        self.instruction_addrs = tuple(instruction_addrs)
        self.jumpkind = jumpkind

    def __repr__(self):
        return f"<Block {self.label!r}: {len(self.stmts)} stmts, {self.term!r}>"

    def pp(self) -> str:
        lines = [f"block {self.label!r}"]
        lines.extend(f"  {stmt!r}" for stmt in self.stmts)
        lines.append(f"  {self.term!r}")
        return "\n".join(lines)


def concrete_ip(regs: RegState, ip_reg: str) -> int | None:
    ip = regs[ip_reg]
    if isinstance(ip, BVValue):
        return ip.value
    return None
