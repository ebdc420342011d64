#!/usr/bin/env python3
# pylint: disable=missing-class-docstring,no-self-use
from __future__ import annotations

__package__ = __package__ or "tests.analyses"  # pylint:disable=redefined-builtin

import unittest
from collections import namedtuple

from cfgrecon.analyses import discover, find_gaps
from cfgrecon.analyses.gaps import Gap, _is_nop, _raw_gaps, is_interesting_code
from cfgrecon.errors import CfgReconError
from cfgrecon.knowledge import DiscoveryInfo

from ..common import ScriptedDisassembler, amd64, jump_block, make_memory, ret_block


Insn = namedtuple("Insn", ("mnemonic", "op_str"))


def gapped_program(arch, filler: bytes):
    # jmp 0x401010; <filler up to 0x401010>; ret
    code = b"\xe9\x0b\x00\x00\x00" + filler.ljust(11, b"\x90") + b"\xc3"
    d = ScriptedDisassembler()
    d.add(0x401000, [jump_block(arch, 0x401000, 0x401010)], 0x401005)
    d.add(0x401010, [ret_block(arch, 0x401010)], 0x401011)
    return discover(make_memory(code=code), arch, [0x401000], disassembler=d)


class TestRawGaps(unittest.TestCase):
    def test_simple(self):
        assert _raw_gaps([(0x10, 0x18), (0x20, 0x30)]) == [Gap(0x18, 0x20), Gap(0x30, None)]

    def test_adjacent_regions(self):
        assert _raw_gaps([(0x18, 0x30), (0x10, 0x18)]) == [Gap(0x30, None)]

    def test_overlapping_regions(self):
        assert _raw_gaps([(0x10, 0x20), (0x14, 0x24), (0x40, 0x50)]) == [Gap(0x24, 0x40), Gap(0x50, None)]

    def test_empty(self):
        assert _raw_gaps([]) == []

    def test_gap(self):
        assert Gap(0x10, 0x18).size == 8
        assert Gap(0x10, None).size is None
        assert repr(Gap(0x10, 0x18)) == "[0x10..0x18)"


class TestNops(unittest.TestCase):
    def test_is_nop(self):
        assert _is_nop(Insn("nop", ""))
        assert _is_nop(Insn("nop", "dword ptr [rax]"))
        assert _is_nop(Insn("xchg", "ax, ax"))
        assert not _is_nop(Insn("xchg", "eax, ebx"))
        assert not _is_nop(Insn("xor", "eax, eax"))


class TestFindGaps(unittest.TestCase):
    def setUp(self):
        self.arch = amd64()

    def test_padding_is_not_interesting(self):
        info = gapped_program(self.arch, b"")
        assert find_gaps(info, interesting_only=False) == [Gap(0x401005, 0x401010), Gap(0x401011, None)]
        assert not is_interesting_code(info, Gap(0x401005, 0x401010))
        assert find_gaps(info) == [Gap(0x401011, None)]

    def test_code_is_interesting(self):
        # xor eax, eax
        info = gapped_program(self.arch, b"\x31\xc0")
        assert find_gaps(info) == [Gap(0x401005, 0x401010), Gap(0x401011, None)]

    def test_unmapped_gap(self):
        info = gapped_program(self.arch, b"")
        assert not is_interesting_code(info, Gap(0x1000, 0x1010))

    def test_unfinished_discovery(self):
        with self.assertRaises(CfgReconError):
            find_gaps(DiscoveryInfo(make_memory(), self.arch))


if __name__ == "__main__":
    unittest.main()
