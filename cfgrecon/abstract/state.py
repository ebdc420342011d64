from __future__ import annotations
from typing import TYPE_CHECKING

from .values import AbsValue, ReturnAddr, StackOffset, TopValue, abs_add, const, join, top, widen

if TYPE_CHECKING:
    from ..architecture import ArchitectureInfo


def _dict_merge(d1: dict, d2: dict, merge) -> dict:
    """
    Merge two maps in which missing entries mean top. Only keys present in both survive, and merged entries that
    became top are dropped.
    """
    merged = {}
    for k in d1.keys() & d2.keys():
        v = merge(d1[k], d2[k])
        if type(v) is not TopValue:
            merged[k] = v
    return merged


class AbsBlockState:
    """
    The abstract machine state at the start of a block: abstract register values and the abstract contents of stack
    slots, keyed by their signed offset from the entry stack pointer of the enclosing function. Registers and slots
    without an entry are top.
    """

    __slots__ = ("arch", "regs", "stack")

    def __init__(
        self,
        arch: ArchitectureInfo,
        regs: dict[str, AbsValue] | None = None,
        stack: dict[int, AbsValue] | None = None,
    ):
        self.arch = arch
        self.regs: dict[str, AbsValue] = {}
        self.stack: dict[int, AbsValue] = {}
        if regs:
            for reg, v in regs.items():
                self.set_reg(reg, v)
        if stack:
            for off, v in stack.items():
                if type(v) is not TopValue:
                    self.stack[off] = v

    def __eq__(self, other):
        return isinstance(other, AbsBlockState) and self.regs == other.regs and self.stack == other.stack

    def __hash__(self):
        return hash((AbsBlockState, frozenset(self.regs.items()), frozenset(self.stack.items())))

    def __repr__(self):
        return f"<AbsBlockState regs={self.pp_regs()} stack={self.pp_stack()}>"

    def pp_regs(self) -> str:
        return "{" + ", ".join(f"{k}: {v!r}" for k, v in sorted(self.regs.items())) + "}"

    def pp_stack(self) -> str:
        return "{" + ", ".join(f"{k:+#x}: {v!r}" for k, v in sorted(self.stack.items())) + "}"

    def copy(self) -> AbsBlockState:
        s = AbsBlockState(self.arch)
        s.regs = dict(self.regs)
        s.stack = dict(self.stack)
        return s

    def reg(self, name: str) -> AbsValue:
        try:
            return self.regs[name]
        except KeyError:
            return top(self.arch.register_width(name))

    def set_reg(self, name: str, value: AbsValue):
        width = self.arch.register_width(name)
        if value.bits != width:
            value = top(width)
        if type(value) is TopValue:
            self.regs.pop(name, None)
        else:
            self.regs[name] = value

    @property
    def ip(self) -> AbsValue:
        return self.reg(self.arch.ip_reg)

    @property
    def sp(self) -> AbsValue:
        return self.reg(self.arch.sp_reg)

    #
    # Lattice
    #

    def join(self, other: AbsBlockState, max_set_size: int = 5) -> AbsBlockState:
        s = AbsBlockState(self.arch)
        s.regs = _dict_merge(self.regs, other.regs, lambda a, b: join(a, b, max_set_size))
        s.stack = _dict_merge(self.stack, other.stack, lambda a, b: join(a, b, max_set_size))
        return s

    def widen(self, other: AbsBlockState) -> AbsBlockState:
        s = AbsBlockState(self.arch)
        s.regs = _dict_merge(self.regs, other.regs, widen)
        s.stack = _dict_merge(self.stack, other.stack, widen)
        return s

    def leq(self, other: AbsBlockState) -> bool:
        return self.join(other, max_set_size=1 << 30) == other

    #
    # Well-known states
    #

    @classmethod
    def fn_entry_state(cls, arch: ArchitectureInfo, addr: int) -> AbsBlockState:
        """
        The state at the entry of the function at `addr`: the stack pointer is the function's frame base and the
        return address sits on top of the stack.
        """
        return cls(
            arch,
            regs={
                arch.ip_reg: const(arch.bits, addr),
                arch.sp_reg: StackOffset(arch.bits, addr, (0,)),
            },
            stack={0: ReturnAddr(arch.bits)},
        )

    def with_ip(self, addr: int) -> AbsBlockState:
        s = self.copy()
        s.set_reg(self.arch.ip_reg, const(self.arch.bits, addr))
        return s

    def post_call_state(self, return_addr: int) -> AbsBlockState:
        """
        The state at the return address of a call, given the state right before the call transfers control.
        Callee-saved registers survive, the stack pointer pops the return address, and slots below the new stack
        pointer are forgotten.
        """
        arch = self.arch
        s = AbsBlockState(arch)
        for reg in arch.callee_saved_regs:
            if reg in self.regs:
                s.regs[reg] = self.regs[reg]

        new_sp = abs_add(self.sp, const(arch.bits, arch.stack_delta))
        s.set_reg(arch.sp_reg, new_sp)
        if type(new_sp) is StackOffset:
            low = min(new_sp.offsets)
            s.stack = {off: v for off, v in self.stack.items() if off >= low}
        s.set_reg(arch.ip_reg, const(arch.bits, return_addr))
        return s

    def post_syscall_state(self, next_addr: int, result_regs: tuple[str, ...]) -> AbsBlockState:
        s = self.copy()
        for reg in (*result_regs, *self.arch.syscall_clobbered_regs):
            s.regs.pop(reg, None)
        s.set_reg(self.arch.ip_reg, const(self.arch.bits, next_addr))
        return s

