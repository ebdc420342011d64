from __future__ import annotations
import logging
from typing import TYPE_CHECKING

from ..errors import ClassificationError
from ..ir import AssignStmt, Branch, BVValue, FetchAndExecute, Syscall, concrete_ip
from .call_return import identify_call, identify_return
from .jump_table import identify_jump_table
from .parsed_term import ParsedBranch, ParsedCall, ParsedJump, ParsedLookupTable, ParsedReturn, ParsedTerm
from .syscall import classify_syscall

if TYPE_CHECKING:
    from ..ir import Block
    from ..knowledge import DiscoveryInfo

l = logging.getLogger(name=__name__)


def _match_branch(block: Block, info: DiscoveryInfo):
    term = block.term
    if isinstance(term, Branch):
        return ParsedBranch(term.cond, term.true_label, term.false_label)
    return None


def _match_call(block: Block, info: DiscoveryInfo):
    regs = block.term.regs
    r = identify_call(info.memory, block.stmts, regs, info.arch_info)
    if r is None:
        return None
    prev_stmts, ret_addr = r
    ip = regs[info.arch_info.ip_reg]
    target = ip.value if isinstance(ip, BVValue) else ip
    return ParsedCall(regs, prev_stmts, target, ret_addr)


def _match_local_jump(block: Block, info: DiscoveryInfo):
    tgt = concrete_ip(block.term.regs, info.arch_info.ip_reg)
    if tgt is not None and info.in_same_function(block.label.addr, tgt):
        return ParsedJump(block.term.regs, tgt)
    return None


def _match_return(block: Block, info: DiscoveryInfo):
    regs = block.term.regs
    asgn = identify_return(regs, info.arch_info)
    if asgn is None:
        return None
    stmts = [s for s in block.stmts if not (isinstance(s, AssignStmt) and s.assignment == asgn)]
    return ParsedReturn(regs, stmts)


def _match_tail_call(block: Block, info: DiscoveryInfo):
    tgt = concrete_ip(block.term.regs, info.arch_info.ip_reg)
    if tgt is not None:
        return ParsedCall(block.term.regs, block.stmts, tgt, None)
    return None


def _match_jump_table(block: Block, info: DiscoveryInfo):
    regs = block.term.regs
    m = identify_jump_table(info, block.label, regs[info.arch_info.ip_reg])
    if m is None:
        return None
    return ParsedLookupTable(regs, m.index, m.targets, m.base)


def _match_indirect_tail_call(block: Block, info: DiscoveryInfo):
    regs = block.term.regs
    return ParsedCall(regs, block.stmts, regs[info.arch_info.ip_reg], None, fallback=True)


# Evaluated in order; the first matcher returning a ParsedTerm wins.
CLASSIFICATION_RULES = (
    ("branch", _match_branch),
    ("call", _match_call),
    ("local_jump", _match_local_jump),
    ("return", _match_return),
    ("tail_call", _match_tail_call),
    ("jump_table", _match_jump_table),
    ("indirect_tail_call", _match_indirect_tail_call),
)


def classify_block(block: Block, info: DiscoveryInfo) -> ParsedTerm:
    """
    Determine the high-level control transfer `block` ends with.

    Syscalls are classified by :func:`classify_syscall`. Every other block is matched against CLASSIFICATION_RULES.

    :raises ClassificationError: If the terminator is of an unknown kind.
    """
    term = block.term
    if isinstance(term, Syscall):
        return classify_syscall(block, info)
    if not isinstance(term, (Branch, FetchAndExecute)):
        raise ClassificationError(f"Block {block.label!r} has an unsupported terminator {term!r}")

    for name, matcher in CLASSIFICATION_RULES:
        parsed = matcher(block, info)
        if parsed is not None:
            l.debug("Block %r classified by rule %s: %r", block.label, name, parsed)
            return parsed

    raise ClassificationError(f"No classification rule matched block {block.label!r}")
