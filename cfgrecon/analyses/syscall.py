from __future__ import annotations
import logging
from typing import TYPE_CHECKING

from ..abstract import as_concrete_singleton
from ..errors import ClassificationError, UnsupportedSyscallArgError
from ..ir import BVValue, Initial
from ..syscalls import SyscallArgType
from .parsed_term import ParsedSyscall

if TYPE_CHECKING:
    from ..ir import Block
    from ..knowledge import DiscoveryInfo

l = logging.getLogger(name=__name__)


def _resolve_number(block: Block, info: DiscoveryInfo) -> int | None:
    """
    Find the syscall number, first in the final registers of the block, then in the abstract state recorded at the
    start of its region when the number register was never written.
    """
    arch = info.arch_info
    if arch.syscall_num_reg is None:
        return None
    value = block.term.regs[arch.syscall_num_reg]
    if isinstance(value, BVValue):
        return value.value
    if isinstance(value, Initial):
        state = info.abs_state.get(block.label.addr)
        if state is not None:
            return as_concrete_singleton(state.reg(value.reg))
    return None


def classify_syscall(block: Block, info: DiscoveryInfo) -> ParsedSyscall:
    """
    Classify a block ending in a syscall.

    :raises UnsupportedSyscallArgError: If the syscall takes an argument that is not a machine word.
    :raises ClassificationError:        If the address execution resumes at is not concrete.
    """
    arch = info.arch_info
    sysp = info.syscall_personality
    regs = block.term.regs

    next_ip = regs[arch.ip_reg]
    if not isinstance(next_ip, BVValue):
        raise ClassificationError(f"Syscall in block {block.label!r} does not resume at a concrete address")
    next_addr = next_ip.value

    number = _resolve_number(block, info)
    type_info = sysp.lookup(number) if number is not None else None
    if type_info is None:
        l.warning(
            "Unknown syscall in block %r, syscall number is %r.",
            block.label,
            regs[arch.syscall_num_reg] if arch.syscall_num_reg is not None else None,
        )
        return ParsedSyscall(
            regs, next_addr, 0, sysp.name, "unknown", arch.syscall_arg_regs, sysp.result_registers
        )

    if any(t is not SyscallArgType.WORD for t in type_info.arg_types):
        raise UnsupportedSyscallArgError(f"Syscall {type_info.name} takes a non-word argument")
    if len(type_info.arg_types) > len(arch.syscall_arg_regs):
        l.warning("Got more than register args calling %s in block %r.", type_info.name, block.label)

    return ParsedSyscall(
        regs,
        next_addr,
        number,
        sysp.name,
        type_info.name,
        arch.syscall_arg_regs[: len(type_info.arg_types)],
        sysp.result_registers,
    )
