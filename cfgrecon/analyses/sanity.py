from __future__ import annotations
import logging
from typing import NamedTuple, TYPE_CHECKING

from ..errors import CfgReconError
from ..ir import FetchAndExecute
from .classify import classify_block
from .parsed_term import ParsedCall, ParsedReturn

if TYPE_CHECKING:
    from ..knowledge import DiscoveryInfo

l = logging.getLogger(name=__name__)


class TerminatorIssue(NamedTuple):
    """
    A disagreement between the classification of a region and the lifter's jumpkind.

    :ivar problem:  "UNEXPECTED" if only the classifier saw the construct, "MISSING" if only the lifter did.
    :ivar what:     "call" or "return".
    :ivar addr:     Start address of the region.
    """

    problem: str
    what: str
    addr: int

    def __str__(self):
        return f"{self.problem} {self.what} Block {self.addr:#x}"


def check_terminators(info: DiscoveryInfo) -> list[TerminatorIssue]:
    """
    Compare call and return classifications with the jumpkinds reported by the lifter, for every region made of
    a single block.
    """
    if not info.is_complete:
        raise CfgReconError("Discovery results can only be consumed after discovery finished")

    issues = []
    for addr, region in info.regions():
        block = region.entry
        if len(region) != 1 or not isinstance(block.term, FetchAndExecute):
            continue
        parsed = classify_block(block, info)

        is_call = isinstance(parsed, ParsedCall) and parsed.return_addr is not None
        is_ret = isinstance(parsed, ParsedReturn)
        for what, ours, theirs in (
            ("return", is_ret, block.jumpkind == "Ijk_Ret"),
            ("call", is_call, block.jumpkind == "Ijk_Call"),
        ):
            if ours and not theirs:
                issues.append(TerminatorIssue("UNEXPECTED", what, addr))
            elif theirs and not ours:
                issues.append(TerminatorIssue("MISSING", what, addr))

    for issue in issues:
        l.warning("%s", issue)
    return issues
