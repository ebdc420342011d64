from __future__ import annotations
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..ir import Block
    from ..knowledge import DiscoveryInfo


class Disassembler(ABC):
    """
    Turns the bytes at an address into a region of discovery IR blocks.
    """

    @abstractmethod
    def disassemble(self, addr: int, max_bytes: int, info: DiscoveryInfo) -> tuple[list[Block], int]:
        """
        Disassemble a straight-line run of instructions starting at `addr`.

        The run stops at the first unconditional control transfer, after at most `max_bytes` bytes, or right before an
        instruction that cannot be decoded. Conditional exits split the run into sub-blocks of one region, labelled
        with consecutive indices starting at 0.

        :param addr:        Start address.
        :param max_bytes:   Maximum number of bytes to decode.
        :param info:        The discovery state, which hands out assignment identifiers.
        :return:            The blocks of the region and the address right after its last instruction.
        :raises DecodeError: If not even the first instruction can be decoded.
        """
        raise NotImplementedError()
