from __future__ import annotations
import logging
from typing import TYPE_CHECKING

from ..ir import (
    Assignment,
    AssignedValue,
    BVValue,
    ExecArchStmt,
    ReadMem,
    RegState,
    Statement,
    Value,
    WriteMem,
    as_base_offset,
)
from ..utils.constants import mask

if TYPE_CHECKING:
    from ..architecture import ArchitectureInfo
    from ..memory import Memory

l = logging.getLogger(name=__name__)


def is_code_addr_write_to(memory: Memory, stmt: Statement, addr: Value, bits: int) -> int | None:
    """
    Check whether `stmt` writes a constant code address of width `bits` to `addr`.

    :return: The code address, or None.
    """
    if (
        type(stmt) is WriteMem
        and stmt.addr == addr
        and isinstance(stmt.value, BVValue)
        and stmt.value.bits == bits
        and memory.is_code_addr(stmt.value.value)
    ):
        return stmt.value.value
    return None


def identify_call(
    memory: Memory, stmts: list[Statement], regs: RegState, arch_info: ArchitectureInfo
) -> tuple[list[Statement], int] | None:
    """
    Recognize a call by the push of its return address.

    Statements are scanned backwards from the end of the block for a write of a code address to the final stack
    pointer. Scanning gives up at the first architecture-specific statement, whose effects are unknown.

    :return: The statements preceding the push and the return address, or None if the block does not end in a call.
    """
    next_sp = regs[arch_info.sp_reg]
    for i in range(len(stmts) - 1, -1, -1):
        stmt = stmts[i]
        ret = is_code_addr_write_to(memory, stmt, next_sp, arch_info.bits)
        if ret is not None:
            return stmts[:i], ret
        if type(stmt) is ExecArchStmt:
            return None
    return None


def identify_return(regs: RegState, arch_info: ArchitectureInfo) -> Assignment | None:
    """
    Recognize a return: the instruction pointer was loaded from the slot a call pushed the return address to, i.e.
    `stack_delta` bytes below the final stack pointer, relative to the same base.

    :return: The assignment loading the instruction pointer, or None.
    """
    next_ip = regs[arch_info.ip_reg]
    if not isinstance(next_ip, AssignedValue) or not isinstance(next_ip.assignment.rhs, ReadMem):
        return None

    ip_base, ip_off = as_base_offset(next_ip.assignment.rhs.addr)
    sp_base, sp_off = as_base_offset(regs[arch_info.sp_reg])
    if ip_base == sp_base and (ip_off + arch_info.stack_delta) & mask(arch_info.bits) == sp_off:
        return next_ip.assignment
    return None
