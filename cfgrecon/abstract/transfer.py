from __future__ import annotations
import logging
from typing import TYPE_CHECKING

from ..errors import MemoryAccessError
from ..ir import (
    App,
    AppOp,
    AssignStmt,
    AssignedValue,
    BVValue,
    Initial,
    ReadMem,
    RegState,
    Statement,
    Value,
    WriteMem,
)
from .state import AbsBlockState
from .values import (
    AbsValue,
    FinSet,
    StackOffset,
    TopValue,
    abs_add,
    abs_and,
    abs_mul,
    abs_resize,
    as_concrete_singleton,
    const,
    join,
    top,
)

if TYPE_CHECKING:
    from ..memory import Memory

l = logging.getLogger(name=__name__)


class AbsBlockEvaluator:
    """
    Evaluates the statements of a block over the abstract domain, starting from the abstract state at the start of the
    block's region.

    Evaluators are cheap to copy, so that the sub-blocks following a branch can be evaluated independently.
    """

    __slots__ = ("arch", "memory", "entry", "max_set_size", "assignments", "stack")

    def __init__(self, arch, memory: Memory, entry: AbsBlockState, max_set_size: int = 5):
        self.arch = arch
        self.memory = memory
        self.entry = entry
        self.max_set_size = max_set_size
        self.assignments: dict[int, AbsValue] = {}
        self.stack: dict[int, AbsValue] = dict(entry.stack)

    def copy(self) -> AbsBlockEvaluator:
        o = AbsBlockEvaluator(self.arch, self.memory, self.entry, max_set_size=self.max_set_size)
        o.assignments = dict(self.assignments)
        o.stack = dict(self.stack)
        return o

    #
    # Values
    #

    def eval(self, value: Value) -> AbsValue:
        if isinstance(value, BVValue):
            return const(value.bits, value.value)
        if isinstance(value, Initial):
            return self.entry.reg(value.reg)
        if isinstance(value, AssignedValue):
            return self.assignments.get(value.assignment.assign_id, top(value.bits))
        if isinstance(value, App):
            return self._eval_app(value)
        return top(value.bits)

    def _eval_app(self, a: App) -> AbsValue:
        n = self.max_set_size
        if a.op == AppOp.Add:
            return abs_add(self.eval(a.args[0]), self.eval(a.args[1]), n)
        if a.op == AppOp.Mul:
            return abs_mul(self.eval(a.args[0]), self.eval(a.args[1]), n)
        if a.op == AppOp.And:
            return abs_and(self.eval(a.args[0]), self.eval(a.args[1]), n)
        if a.op in (AppOp.UExt, AppOp.Trunc):
            return abs_resize(self.eval(a.args[0]), a.bits)
        if a.op == AppOp.SExt:
            return abs_resize(self.eval(a.args[0]), a.bits, signed=True)
        return top(a.bits)

    #
    # Statements
    #

    def exec_stmt(self, stmt: Statement):
        if isinstance(stmt, AssignStmt):
            rhs = stmt.assignment.rhs
            if isinstance(rhs, ReadMem):
                v = self._read_mem(self.eval(rhs.addr), rhs.bits)
            else:
                v = top(rhs.bits)
            if type(v) is not TopValue:
                self.assignments[stmt.assignment.assign_id] = v
        elif isinstance(stmt, WriteMem):
            self._write_mem(self.eval(stmt.addr), self.eval(stmt.value))

    def exec_stmts(self, stmts):
        for stmt in stmts:
            self.exec_stmt(stmt)

    def _read_mem(self, addr: AbsValue, bits: int) -> AbsValue:
        if type(addr) is StackOffset:
            off = addr.single_offset()
            if off is not None:
                v = self.stack.get(off)
                if v is not None and v.bits == bits:
                    return v
            return top(bits)

        concrete = as_concrete_singleton(addr)
        if concrete is not None and self.memory.is_readonly_addr(concrete):
            try:
                return const(bits, self.memory.read_word(concrete, bits // 8))
            except MemoryAccessError:
                return top(bits)
        return top(bits)

    def _write_mem(self, addr: AbsValue, value: AbsValue):
        if type(addr) is not StackOffset:
            return
        size = value.bits // 8
        off = addr.single_offset()
        if off is not None:
            self._clobber(off, size)
            if type(value) is not TopValue:
                self.stack[off] = value
            return
        # weak update
        for o in addr.offsets:
            old = self.stack.get(o)
            self._clobber(o, size)
            if old is not None and old.bits == value.bits:
                merged = join(old, value, self.max_set_size)
                if type(merged) is not TopValue:
                    self.stack[o] = merged

    def _clobber(self, off: int, size: int):
        for o in [o for o, v in self.stack.items() if o < off + size and off < o + v.bits // 8]:
            del self.stack[o]

    #
    # Results
    #

    def final_state(self, regs: RegState) -> AbsBlockState:
        """
        The abstract state described by the terminal register state `regs`.
        """
        s = AbsBlockState(self.arch, stack=self.stack)
        names = set(self.entry.regs)
        names.update(reg for reg, _ in regs.modified())
        for reg in names:
            s.set_reg(reg, self.eval(regs[reg]))
        return s

    def concrete_values(self, value: Value) -> frozenset[int] | None:
        v = self.eval(value)
        if type(v) is FinSet:
            return v.values
        return None
