from __future__ import annotations
from collections.abc import Iterator

from ..errors import CfgReconValueError
from ..ir import Block


class BlockRegion:
    """
    The blocks produced by disassembling from one start address.

    :ivar end:      Address right after the last instruction of the region.
    :ivar blocks:   Map from block index to block. Indices are dense and start at 0.
    """

    __slots__ = ("end", "blocks")

    def __init__(self, end: int, blocks: list[Block]):
        self.end = end
        self.blocks: dict[int, Block] = {}
        for i, block in enumerate(sorted(blocks, key=lambda b: b.label.index)):
            if block.label.index != i:
                raise CfgReconValueError(f"Block indices of region ending at {end:#x} are not dense")
            self.blocks[i] = block

    def __repr__(self):
        start = self.start
        return f"<BlockRegion {start:#x}-{self.end:#x}, {len(self.blocks)} blocks>"

    def __iter__(self) -> Iterator[Block]:
        return iter(self.blocks.values())

    def __len__(self):
        return len(self.blocks)

    @property
    def start(self) -> int:
        return self.blocks[0].label.addr

    @property
    def entry(self) -> Block:
        return self.blocks[0]

    def contains(self, addr: int) -> bool:
        return self.start <= addr < self.end
