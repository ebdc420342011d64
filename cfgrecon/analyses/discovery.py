from __future__ import annotations
import logging
from collections import defaultdict
from typing import TYPE_CHECKING
from collections.abc import Iterable

from ..abstract import AbsBlockEvaluator, AbsBlockState
from ..errors import DecodeError
from ..ir import AssignStmt, BVValue, ReadMem, WriteMem
from ..knowledge import BlockRegion, DiscoveryInfo, FrontierReason, JumpTable, ReferencedValue
from ..memory import Permission
from .classify import classify_block
from .discovery_options import DiscoveryOptions
from .parsed_term import (
    ParsedBranch,
    ParsedCall,
    ParsedJump,
    ParsedLookupTable,
    ParsedReturn,
    ParsedSyscall,
)

if TYPE_CHECKING:
    from ..architecture import ArchitectureInfo
    from ..ir import Block, Statement
    from ..lifter import Disassembler
    from ..memory import Memory
    from ..syscalls import SyscallPersonality

l = logging.getLogger(name=__name__)


class CodeDiscovery:
    """
    Explores machine code from a set of function entries until both frontiers are empty.

    Each popped block address is disassembled (splitting an existing region if the address falls inside one), its
    blocks are evaluated over the abstract state recorded for the address, and the terminator of every block is
    classified. The classification decides which addresses receive a successor state; an address whose state changes
    is put back on the block frontier. Function entries live on a separate frontier that is only consulted once the
    block frontier is empty.
    """

    def __init__(self, info: DiscoveryInfo, disassembler: Disassembler, options: DiscoveryOptions | None = None):
        self.info = info
        self.disassembler = disassembler
        self.options = options if options is not None else DiscoveryOptions(info.arch_info.name)

        self._join_counts: defaultdict[int, int] = defaultdict(int)
        # function frontier entries that still need to be confirmed when popped
        self._candidates: set[int] = set()

    def __repr__(self):
        return f"<CodeDiscovery {self.info!r}>"

    #
    # Main loop
    #

    def explore(self, entries: Iterable[int]) -> DiscoveryInfo:
        """
        Run discovery from `entries` to a fixpoint and freeze the result.
        """
        for addr in entries:
            self._add_function_entry(addr, FrontierReason.start_addr())

        if self.options.scan_data_for_code_pointers:
            self._scan_data_for_code_pointers()

        descending = self.options.descending
        info = self.info
        while True:
            if info.frontier:
                addr, reason = info.pop_frontier(descending)
                self._explore_block(addr, reason)
            elif info.function_frontier:
                addr, reason = info.pop_function_frontier(descending)
                self._explore_function(addr, reason)
            else:
                break

        info.finalize()
        l.info(
            "Discovery finished: %d functions, %d regions, %d decode failures.",
            len(info.function_entries),
            len(info.blocks) - len(info.decode_failures()),
            len(info.decode_failures()),
        )
        return info

    def _explore_function(self, addr: int, reason: FrontierReason):
        if addr in self._candidates:
            self._candidates.discard(addr)
            if addr in self.info.abs_state:
                l.debug("Candidate function %#x was reached from other code. Skipping.", addr)
                return
            self.info.add_function_entry(addr)

        l.debug("Exploring function %#x (%r).", addr, reason)
        self._merge(addr, AbsBlockState.fn_entry_state(self.info.arch_info, addr), reason, None)

    def _explore_block(self, addr: int, reason: FrontierReason):
        l.debug("Exploring block %#x (%r).", addr, reason)
        state = self.info.lookup_abs_block(addr)
        region = self._region_at(addr)
        if region is None:
            return

        evaluator = AbsBlockEvaluator(
            self.info.arch_info, self.info.memory, state, max_set_size=self.options.max_set_size
        )
        pending = [(region.entry, evaluator)]
        while pending:
            block, evaluator = pending.pop()
            evaluator.exec_stmts(block.stmts)
            parsed = classify_block(block, self.info)
            if isinstance(parsed, ParsedBranch):
                for label in (parsed.false_label, parsed.true_label):
                    pending.append((region.blocks[label.index], evaluator.copy()))
            else:
                self._handle_term(block, parsed, region, evaluator)

    #
    # Regions
    #

    def _region_at(self, addr: int) -> BlockRegion | None:
        info = self.info
        if addr in info.blocks:
            return info.blocks[addr]

        containing = info.region_containing(addr)
        if containing is not None and any(addr in b.instruction_addrs for b in containing[1]):
            parent_addr, _ = containing
            l.debug("Splitting region %#x at %#x.", parent_addr, addr)
            self._disassemble(parent_addr, addr)
            info.push_frontier(parent_addr, FrontierReason.block_split())

        return self._disassemble(addr)

    def _first_known_start(self, addr: int, blocks: list[Block]) -> int | None:
        """
        The lowest instruction address past `addr` at which a disassembled region already starts.
        """
        starts = [
            a for block in blocks for a in block.instruction_addrs if a > addr and self.info.blocks.get(a) is not None
        ]
        return min(starts) if starts else None

    def _disassemble(self, addr: int, limit: int | None = None) -> BlockRegion | None:
        """
        Disassemble the region at `addr`. Without a `limit`, the region stops at the first of its instruction
        boundaries that starts a known region.
        """
        max_bytes = self.options.max_block_size
        if limit is not None:
            max_bytes = min(max_bytes, limit - addr)
        try:
            blocks, end = self.disassembler.disassemble(addr, max_bytes, self.info)
            if limit is None:
                stop = self._first_known_start(addr, blocks)
                if stop is not None:
                    l.debug("Region %#x runs into region %#x.", addr, stop)
                    blocks, end = self.disassembler.disassemble(addr, stop - addr, self.info)
        except DecodeError as ex:
            l.debug("Decode failure at %#x: %s", addr, ex)
            self.info.set_region(addr, None)
            return None

        region = BlockRegion(end, blocks)
        self.info.set_region(addr, region)
        return region

    #
    # Successors
    #

    def _handle_term(self, block: Block, parsed, region: BlockRegion, evaluator: AbsBlockEvaluator):
        label = block.label
        src = label.addr
        final = evaluator.final_state(block.term.regs)
        stmts = block.stmts

        if isinstance(parsed, ParsedCall):
            stmts = parsed.stmts
            if parsed.target_addr is not None:
                self._add_function_entry(parsed.target_addr, FrontierReason.next_ip(label))
            elif not parsed.fallback:
                for target in evaluator.concrete_values(parsed.target) or ():
                    self._add_function_entry(target, FrontierReason.next_ip(label))

            if parsed.return_addr is not None:
                ret = parsed.return_addr
                self._merge(ret, final.post_call_state(ret), FrontierReason.return_address(label), src)
            elif self.options.explore_tail_call_fallthrough and label.index == len(region) - 1:
                # only the last block of a region falls through to its end
                self._add_candidate(region.end, FrontierReason.next_ip(label))

        elif isinstance(parsed, ParsedJump):
            self._merge(parsed.target, final.with_ip(parsed.target), FrontierReason.next_ip(label), src)

        elif isinstance(parsed, ParsedLookupTable):
            end = parsed.table_addr + len(parsed.targets) * self.info.arch_info.jump_table_entry_size
            self.info.set_global_data(parsed.table_addr, JumpTable(end))
            for target in parsed.targets:
                self._merge(target, final.with_ip(target), FrontierReason.next_ip(label), src)

        elif isinstance(parsed, ParsedReturn):
            stmts = parsed.stmts

        elif isinstance(parsed, ParsedSyscall):
            nxt = parsed.next_addr
            self._merge(
                nxt, final.post_syscall_state(nxt, parsed.result_regs), FrontierReason.next_ip(label), src
            )

        if self.options.explore_written_code_pointers:
            self._find_written_code_pointers(label, stmts)
        if self.options.record_data_references:
            self._record_data_references(stmts, evaluator)

    def _merge(self, addr: int, state: AbsBlockState, reason: FrontierReason, src: int | None):
        """
        Merge `state` into the state recorded for `addr`, and queue `addr` if it changed.
        """
        info = self.info
        if not info.memory.is_code_addr(addr):
            l.debug("Ignoring successor %#x outside of code.", addr)
            return
        if src is not None:
            info.add_reverse_edge(src, addr)

        old = info.abs_state.get(addr)
        if old is None:
            new = state
        else:
            self._join_counts[addr] += 1
            if self._join_counts[addr] > self.options.widen_after:
                new = old.widen(state)
            else:
                new = old.join(state, self.options.max_set_size)
            if new == old:
                return

        info.set_abs_state(addr, new)
        info.push_frontier(addr, reason)

    #
    # Function entries
    #

    def _add_function_entry(self, addr: int, reason: FrontierReason):
        if not self.info.memory.is_code_addr(addr):
            l.debug("Ignoring function entry %#x outside of code.", addr)
            return
        self._candidates.discard(addr)
        if self.info.add_function_entry(addr):
            self.info.push_function_frontier(addr, reason)

    def _add_candidate(self, addr: int, reason: FrontierReason):
        info = self.info
        if addr in info.function_entries or addr in info.abs_state or addr in info.function_frontier:
            return
        if not info.memory.is_code_addr(addr):
            return
        self._candidates.add(addr)
        info.push_function_frontier(addr, reason)

    def _find_written_code_pointers(self, label, stmts: list[Statement]):
        bits = self.info.arch_info.bits
        for stmt in stmts:
            if (
                type(stmt) is WriteMem
                and isinstance(stmt.value, BVValue)
                and stmt.value.bits == bits
                and self.info.memory.is_code_addr(stmt.value.value)
            ):
                self._add_candidate(stmt.value.value, FrontierReason.in_write(label))

    def _record_data_references(self, stmts: list[Statement], evaluator: AbsBlockEvaluator):
        info = self.info
        for stmt in stmts:
            if type(stmt) is not AssignStmt or not isinstance(stmt.assignment.rhs, ReadMem):
                continue
            for addr in evaluator.concrete_values(stmt.assignment.rhs.addr) or ():
                if addr not in info.global_data_map and addr in info.memory and not info.memory.is_code_addr(addr):
                    info.set_global_data(addr, ReferencedValue())

    def _scan_data_for_code_pointers(self):
        mem = self.info.memory
        size = self.info.arch_info.pointer_size
        for seg in mem.segments:
            if seg.permissions & Permission.EXEC or not seg.permissions & Permission.READ:
                continue
            start = seg.start + (-seg.start % size)
            for addr in range(start, seg.end - size + 1, size):
                ptr = mem.read_word(addr, size)
                if mem.is_code_addr(ptr):
                    self._add_candidate(ptr, FrontierReason.in_initial_data())


def discover(
    memory: Memory,
    arch_info: ArchitectureInfo,
    entries: Iterable[int],
    disassembler: Disassembler | None = None,
    syscall_personality: SyscallPersonality | None = None,
    symbol_names: dict[int, str] | None = None,
    **options,
) -> DiscoveryInfo:
    """
    Discover the code reachable from `entries`.

    :param memory:              The memory image.
    :param arch_info:           The architecture.
    :param entries:             Function entry points to start from.
    :param disassembler:        The disassembler. Defaults to a VEXDisassembler.
    :param syscall_personality: The syscall table. Defaults to the one of the architecture.
    :param symbol_names:        Known names of addresses.
    :param options:             Values of DiscoveryOptions.
    :return:                    The finalized DiscoveryInfo.
    """
    opts = DiscoveryOptions(arch_info.name, **options)
    if disassembler is None:
        from ..lifter import VEXDisassembler  # pylint:disable=import-outside-toplevel

        disassembler = VEXDisassembler(arch_info, memory, opt_level=opts.vex_opt_level)

    info = DiscoveryInfo(memory, arch_info, syscall_personality=syscall_personality, symbol_names=symbol_names)
    return CodeDiscovery(info, disassembler, options=opts).explore(entries)
