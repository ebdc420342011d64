from __future__ import annotations
import logging
from typing import TYPE_CHECKING

from ..errors import CfgReconError, MemoryAccessError
from ..utils.formatting import fmt_addr

if TYPE_CHECKING:
    from ..knowledge import DiscoveryInfo

l = logging.getLogger(name=__name__)


class Gap:
    """
    A range of addresses that no discovered region covers. `end` is None for the range after the last region.
    """

    __slots__ = ("start", "end")

    def __init__(self, start: int, end: int | None):
        self.start = start
        self.end = end

    def __eq__(self, other):
        return isinstance(other, Gap) and self.start == other.start and self.end == other.end

    def __hash__(self):
        return hash((Gap, self.start, self.end))

    def __repr__(self):
        return f"[{self.start:#x}..{fmt_addr(self.end)})"

    @property
    def size(self) -> int | None:
        return None if self.end is None else self.end - self.start


def _raw_gaps(spans: list[tuple[int, int]]) -> list[Gap]:
    """
    Sweep the (start, end) spans of the regions in start order. A gap opens where the covered range stops and closes
    at the next start.
    """
    gaps = []
    covered = None
    for start, end in sorted(spans):
        if covered is not None and start > covered:
            gaps.append(Gap(covered, start))
        covered = end if covered is None else max(covered, end)
    if covered is not None:
        gaps.append(Gap(covered, None))
    return gaps


def _is_nop(insn) -> bool:
    if insn.mnemonic == "nop":
        return True
    if insn.mnemonic == "xchg":
        operands = [op.strip() for op in insn.op_str.split(",")]
        return len(operands) == 2 and operands[0] == operands[1]
    return False


def is_interesting_code(info: DiscoveryInfo, gap: Gap) -> bool:
    """
    Whether the gap holds anything but padding. Gaps that do not decode are not interesting; the open-ended last gap
    always is.
    """
    if gap.end is None:
        return True
    try:
        data = info.memory.load(gap.start, gap.end - gap.start)
    except MemoryAccessError:
        return False

    cs = info.arch_info.arch.capstone
    addr = gap.start
    for insn in cs.disasm(data, gap.start):
        if not _is_nop(insn):
            return True
        addr = insn.address + insn.size
    if addr < gap.end:
        l.debug("Gap %r does not decode past %#x.", gap, addr)
    return False


def find_gaps(info: DiscoveryInfo, interesting_only: bool = True) -> list[Gap]:
    """
    Find the address ranges between discovered regions.

    :param info:                A finished discovery.
    :param interesting_only:    Drop gaps that only contain nops.
    """
    if not info.is_complete:
        raise CfgReconError("Discovery results can only be consumed after discovery finished")
    if interesting_only and info.arch_info.arch is None:
        raise CfgReconError("Finding interesting gaps requires an ArchitectureInfo backed by an archinfo.Arch")

    gaps = _raw_gaps([(addr, region.end) for addr, region in info.regions()])
    if interesting_only:
        gaps = [gap for gap in gaps if is_interesting_code(info, gap)]
    return gaps
