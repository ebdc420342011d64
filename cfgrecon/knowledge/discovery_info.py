from __future__ import annotations
import logging
from collections import defaultdict
from typing import TYPE_CHECKING
from collections.abc import Iterator

from sortedcontainers import SortedDict, SortedSet

from ..errors import CfgReconError, DiscoveryError, DiscoveryInvariantError
from ..syscalls import personality_for
from .block_region import BlockRegion
from .frontier import FrontierReason
from .global_data import GlobalDataInfo

if TYPE_CHECKING:
    from ..abstract import AbsBlockState
    from ..architecture import ArchitectureInfo
    from ..ir import Block, BlockLabel
    from ..memory import Memory
    from ..syscalls import SyscallPersonality

l = logging.getLogger(name=__name__)


class DiscoveryInfo:
    """
    Everything code discovery knows about a program.

    A DiscoveryInfo is created once per memory image, updated only through the methods below while discovery runs, and
    frozen by :meth:`finalize` once both frontiers are empty. Consumers must only read finalized instances.

    :ivar memory:               The memory image.
    :ivar symbol_names:         Known names of addresses.
    :ivar syscall_personality:  The syscall table used to classify syscalls.
    :ivar arch_info:            The architecture.
    :ivar blocks:               Map from region start address to the BlockRegion disassembled there, or None if
                                disassembly failed.
    :ivar function_entries:     Sorted set of function entry addresses.
    :ivar reverse_edges:        Map from block address to the addresses of blocks that contributed to its state.
    :ivar global_data_map:      Map from data address to what it was found to be.
    :ivar frontier:             Block addresses waiting to be explored, with the reason they were added.
    :ivar function_frontier:    Candidate function entries waiting to be explored, with the reason they were added.
    :ivar abs_state:            Map from block address to the abstract state at its start.
    """

    def __init__(
        self,
        memory: Memory,
        arch_info: ArchitectureInfo,
        syscall_personality: SyscallPersonality | None = None,
        symbol_names: dict[int, str] | None = None,
    ):
        self.memory = memory
        self.arch_info = arch_info
        self.syscall_personality = (
            syscall_personality if syscall_personality is not None else personality_for(arch_info)
        )
        self.symbol_names: dict[int, str] = dict(symbol_names) if symbol_names else {}

        self.blocks: SortedDict = SortedDict()
        self.function_entries: SortedSet = SortedSet()
        self.reverse_edges: defaultdict[int, set[int]] = defaultdict(set)
        self.global_data_map: dict[int, GlobalDataInfo] = {}
        self.frontier: SortedDict = SortedDict()
        self.function_frontier: SortedDict = SortedDict()
        self.abs_state: dict[int, AbsBlockState] = {}

        self._next_assign_id = 0
        self._finalized = False

    def __repr__(self):
        return (
            f"<DiscoveryInfo: {len(self.function_entries)} functions, {len(self.blocks)} regions"
            f"{'' if self._finalized else ', in progress'}>"
        )

    #
    # Lifecycle
    #

    @property
    def is_complete(self) -> bool:
        return self._finalized

    def finalize(self):
        """
        Freeze this instance. Both frontiers must be empty.
        """
        if self.frontier or self.function_frontier:
            raise DiscoveryError("Cannot finalize discovery while frontiers are not empty")
        self._finalized = True

    def _check_mutable(self):
        if self._finalized:
            raise CfgReconError("Discovery results are frozen")

    #
    # Updates
    #

    def next_assign_id(self) -> int:
        self._check_mutable()
        i = self._next_assign_id
        self._next_assign_id += 1
        return i

    def set_region(self, addr: int, region: BlockRegion | None):
        self._check_mutable()
        self.blocks[addr] = region

    def add_function_entry(self, addr: int) -> bool:
        """
        Record a function entry. Returns True if it was not known before.
        """
        self._check_mutable()
        if addr in self.function_entries:
            return False
        self.function_entries.add(addr)
        return True

    def push_frontier(self, addr: int, reason: FrontierReason):
        self._check_mutable()
        self.frontier[addr] = reason

    def pop_frontier(self, descending: bool = False) -> tuple[int, FrontierReason]:
        self._check_mutable()
        return self.frontier.popitem(-1 if descending else 0)

    def push_function_frontier(self, addr: int, reason: FrontierReason):
        self._check_mutable()
        self.function_frontier.setdefault(addr, reason)

    def pop_function_frontier(self, descending: bool = False) -> tuple[int, FrontierReason]:
        self._check_mutable()
        return self.function_frontier.popitem(-1 if descending else 0)

    def set_abs_state(self, addr: int, state: AbsBlockState):
        self._check_mutable()
        self.abs_state[addr] = state

    def add_reverse_edge(self, src: int, dst: int):
        self._check_mutable()
        self.reverse_edges[dst].add(src)

    def set_global_data(self, addr: int, data: GlobalDataInfo):
        self._check_mutable()
        self.global_data_map[addr] = data

    #
    # Queries
    #

    def lookup_abs_block(self, addr: int) -> AbsBlockState:
        """
        The abstract state at the start of the block at `addr`, which must exist.

        :raises DiscoveryInvariantError: If no state was recorded.
        """
        try:
            return self.abs_state[addr]
        except KeyError:
            raise DiscoveryInvariantError(f"Could not find the abstract state of block {addr:#x}.") from None

    def lookup_block(self, label: BlockLabel) -> Block | None:
        region = self.blocks.get(label.addr)
        if region is None:
            return None
        return region.blocks.get(label.index)

    def regions(self) -> Iterator[tuple[int, BlockRegion]]:
        for addr, region in self.blocks.items():
            if region is not None:
                yield addr, region

    def all_blocks(self) -> Iterator[Block]:
        for _, region in self.regions():
            yield from region

    def decode_failures(self) -> list[int]:
        return [addr for addr, region in self.blocks.items() if region is None]

    def region_containing(self, addr: int) -> tuple[int, BlockRegion] | None:
        """
        The region whose instructions cover `addr`, if any.
        """
        for start in self.blocks.irange(maximum=addr, reverse=True):
            region = self.blocks[start]
            if region is None:
                continue
            if region.contains(addr):
                return start, region
            break
        return None

    def function_entry_point_or_none(self, addr: int) -> int | None:
        for entry in self.function_entries.irange(maximum=addr, reverse=True):
            return entry
        return None

    def function_entry_point(self, addr: int) -> int:
        """
        The function owning `addr`: the greatest function entry not above it.

        :raises DiscoveryInvariantError: If no function entry precedes `addr`.
        """
        entry = self.function_entry_point_or_none(addr)
        if entry is None:
            raise DiscoveryInvariantError(f"Could not find the function containing {addr:#x}.")
        return entry

    def in_same_function(self, x: int, y: int) -> bool:
        fx = self.function_entry_point_or_none(x)
        return fx is not None and fx == self.function_entry_point_or_none(y)

    def get_classify_block(self, label: BlockLabel):
        """
        Look up a block and classify its terminator.

        :return: A tuple of the block and its ParsedTerm, or None if the block is unknown.
        """
        from ..analyses.classify import classify_block  # pylint:disable=import-outside-toplevel

        block = self.lookup_block(label)
        if block is None:
            return None
        return block, classify_block(block, self)
