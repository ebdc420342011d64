from __future__ import annotations
import logging
from typing import NamedTuple, TYPE_CHECKING
from collections.abc import Iterator

from ..errors import MemoryAccessError
from ..ir import AppOp, AssignedValue, BlockLabel, BVValue, ReadMem, Value

if TYPE_CHECKING:
    from ..knowledge import DiscoveryInfo

l = logging.getLogger(name=__name__)


class JumpTableMatch(NamedTuple):
    """
    An indirect jump through a table.

    :ivar index:    The symbolic index into the table.
    :ivar targets:  Targets read from the table, in table order.
    :ivar base:     Address of the table.
    :ivar end:      Address of the first entry that was not accepted.
    """

    index: Value
    targets: tuple[int, ...]
    base: int
    end: int


def _split_const(v: Value, op: str) -> tuple[int, Value] | None:
    """
    Match `v` against (constant `op` other) with the constant on either side.
    """
    a = v.as_app()
    if a is None or a.op != op or len(a.args) != 2:
        return None
    x, y = a.args
    if isinstance(y, BVValue) and not isinstance(x, BVValue):
        return y.value, x
    if isinstance(x, BVValue) and not isinstance(y, BVValue):
        return x.value, y
    return None


def _table_entries(info: DiscoveryInfo, base: int, enclosing: int) -> Iterator[tuple[int, int]]:
    """
    Yield (entry address, code pointer) pairs of a jump table until an entry is not a read-only code pointer into the
    enclosing function.
    """
    mem = info.memory
    size = info.arch_info.jump_table_entry_size
    tbl = base
    while mem.is_readonly_addr(tbl):
        try:
            ptr = mem.read_word(tbl, size)
        except MemoryAccessError:
            return
        if not mem.is_code_addr(ptr) or info.function_entry_point_or_none(ptr) != enclosing:
            return
        yield tbl, ptr
        tbl += size


def identify_jump_table(info: DiscoveryInfo, label: BlockLabel, ip_value: Value) -> JumpTableMatch | None:
    """
    Recognize an instruction pointer read from `base + entry_size * index` with `base` in read-only memory, and
    enumerate the table.

    Enumeration stops at the first entry that is not a read-only code pointer into the same function as the jumping
    block, so the target list may be shorter than the real table.
    """
    if not isinstance(ip_value, AssignedValue):
        return None
    rhs = ip_value.assignment.rhs
    if not isinstance(rhs, ReadMem):
        return None

    m = _split_const(rhs.addr, AppOp.Add)
    if m is None:
        return None
    base, offset = m

    m = _split_const(offset, AppOp.Mul)
    if m is None:
        return None
    mult, idx = m

    entry_size = info.arch_info.jump_table_entry_size
    if mult != entry_size or not info.memory.is_readonly_addr(base):
        return None

    enclosing = info.function_entry_point(label.addr)
    end = base
    targets = []
    for tbl, ptr in _table_entries(info, base, enclosing):
        targets.append(ptr)
        end = tbl + entry_size

    l.debug("Jump table at %#x used by %r has %d entries.", base, label, len(targets))
    return JumpTableMatch(idx, tuple(targets), base, end)
