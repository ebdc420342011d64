#!/usr/bin/env python3
# pylint: disable=missing-class-docstring,no-self-use
from __future__ import annotations

__package__ = __package__ or "tests.analyses"  # pylint:disable=redefined-builtin

import unittest

from cfgrecon.analyses import check_terminators, discover
from cfgrecon.analyses.sanity import TerminatorIssue

from ..common import BlockBuilder, ScriptedDisassembler, amd64, call_block, make_memory, ret_block


class TestCheckTerminators(unittest.TestCase):
    def setUp(self):
        self.arch = amd64()

    def test_agreeing_jumpkinds(self):
        d = ScriptedDisassembler()
        d.add(0x401000, [call_block(self.arch, 0x401000, 0x401100, 0x401005)], 0x401005)
        d.add(0x401005, [ret_block(self.arch, 0x401005)], 0x401006)
        d.add(0x401100, [ret_block(self.arch, 0x401100)], 0x401101)
        info = discover(make_memory(), self.arch, [0x401000], disassembler=d)
        assert check_terminators(info) == []

    def test_disagreeing_jumpkinds(self):
        d = ScriptedDisassembler()
        d.add(0x401000, [call_block(self.arch, 0x401000, 0x401100, 0x401005)], 0x401005)

        # a local jump the lifter calls a call
        b = BlockBuilder(self.arch, 0x401005)
        d.add(0x401005, [b.jump(0x401010, jumpkind="Ijk_Call")], 0x40100A)

        # a return the lifter calls a jump
        b = BlockBuilder(self.arch, 0x401010)
        ip = b.read(b.reg("rsp"))
        b.set("rsp", b.sp_plus(8))
        d.add(0x401010, [b.jump(ip, jumpkind="Ijk_Boring")], 0x401011)

        d.add(0x401100, [ret_block(self.arch, 0x401100)], 0x401101)
        info = discover(make_memory(), self.arch, [0x401000], disassembler=d, explore_tail_call_fallthrough=False)

        with self.assertLogs("cfgrecon.analyses.sanity", "WARNING") as cm:
            issues = check_terminators(info)
        assert issues == [
            TerminatorIssue("MISSING", "call", 0x401005),
            TerminatorIssue("UNEXPECTED", "return", 0x401010),
        ]
        assert str(issues[0]) == "MISSING call Block 0x401005"
        assert len(cm.output) == 2


if __name__ == "__main__":
    unittest.main()
