from __future__ import annotations
import logging
from collections import defaultdict
from typing import TYPE_CHECKING

import networkx

from ..abstract import AbsBlockEvaluator
from ..errors import CfgReconError
from ..ir import BlockLabel
from .classify import classify_block
from .parsed_term import ParsedBranch, ParsedCall, ParsedJump, ParsedLookupTable, ParsedSyscall

if TYPE_CHECKING:
    from ..ir import Block
    from ..knowledge import DiscoveryInfo

l = logging.getLogger(name=__name__)


def _require_complete(info: DiscoveryInfo):
    if not info.is_complete:
        raise CfgReconError("Discovery results can only be consumed after discovery finished")


def block_evaluator(info: DiscoveryInfo, block: Block) -> AbsBlockEvaluator:
    """
    Evaluate the statements leading to the end of `block` over the abstract state of its region.

    Sub-blocks of a region only carry statements on the fall-through path, so evaluating the blocks with lower indices
    in order yields the effects of the path to `block`.
    """
    region = info.blocks[block.label.addr]
    evaluator = AbsBlockEvaluator(info.arch_info, info.memory, info.lookup_abs_block(block.label.addr))
    for index in range(block.label.index + 1):
        evaluator.exec_stmts(region.blocks[index].stmts)
    return evaluator


def build_call_graph(info: DiscoveryInfo) -> networkx.DiGraph:
    """
    Build the call graph of a finished discovery.

    Nodes are function entries. Edges are typed "call" and "tail_call" for statically known targets, and "indirect"
    for targets the abstract state resolved.
    """
    _require_complete(info)

    graph = networkx.DiGraph()
    for entry in info.function_entries:
        graph.add_node(entry, name=info.symbol_names.get(entry))

    for block in info.all_blocks():
        parsed = classify_block(block, info)
        if not isinstance(parsed, ParsedCall):
            continue
        caller = info.function_entry_point_or_none(block.label.addr)
        if caller is None:
            continue

        if parsed.target_addr is not None:
            if parsed.target_addr in info.function_entries:
                graph.add_edge(caller, parsed.target_addr, type=parsed.kind)
            continue

        targets = block_evaluator(info, block).concrete_values(parsed.target) or ()
        for target in targets:
            if target in info.function_entries:
                graph.add_edge(caller, target, type="indirect")

    return graph


def function_blocks(info: DiscoveryInfo) -> dict[int, list[BlockLabel]]:
    """
    Map each function entry to the labels of the blocks it owns.
    """
    _require_complete(info)

    owned = defaultdict(list)
    for addr, region in info.regions():
        owner = info.function_entry_point_or_none(addr)
        if owner is None:
            continue
        owned[owner].extend(block.label for block in region)
    return dict(owned)


def function_graph(info: DiscoveryInfo, entry: int) -> networkx.DiGraph:
    """
    Build the intra-procedural control flow graph of the function at `entry`. Nodes are block labels with the parsed
    terminator attached; edges are typed by the transfer that produces them.
    """
    _require_complete(info)
    if entry not in info.function_entries:
        raise CfgReconError(f"{entry:#x} is not a function entry")

    graph = networkx.DiGraph()
    for label in function_blocks(info).get(entry, []):
        block = info.lookup_block(label)
        parsed = classify_block(block, info)
        graph.add_node(label, term=parsed)

        if isinstance(parsed, ParsedBranch):
            graph.add_edge(label, parsed.true_label, type="branch_true")
            graph.add_edge(label, parsed.false_label, type="branch_false")
            continue

        if isinstance(parsed, ParsedJump):
            succs = [(parsed.target, "jump")]
        elif isinstance(parsed, ParsedLookupTable):
            succs = [(t, "table") for t in parsed.targets]
        elif isinstance(parsed, ParsedCall) and parsed.return_addr is not None:
            succs = [(parsed.return_addr, "call_return")]
        elif isinstance(parsed, ParsedSyscall):
            succs = [(parsed.next_addr, "syscall_return")]
        else:
            succs = []

        for target, kind in succs:
            if target in info.blocks and info.blocks[target] is not None:
                graph.add_edge(label, BlockLabel(target, 0), type=kind)

    return graph
