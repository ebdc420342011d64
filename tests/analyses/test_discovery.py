#!/usr/bin/env python3
# pylint: disable=missing-class-docstring,no-self-use
from __future__ import annotations

__package__ = __package__ or "tests.analyses"  # pylint:disable=redefined-builtin

import unittest
from collections import defaultdict

from cfgrecon.abstract import FinSet, ReturnAddr, StackOffset, const
from cfgrecon.analyses import CodeDiscovery, DiscoveryOptions, discover
from cfgrecon.errors import CfgReconError, DiscoveryInvariantError
from cfgrecon.ir import App, AppOp, BVValue
from cfgrecon.knowledge import DiscoveryInfo, JumpTable, ReferencedValue

from ..common import (
    BlockBuilder,
    DATA_BASE,
    RODATA_BASE,
    ScriptedDisassembler,
    amd64,
    call_block,
    jump_block,
    make_memory,
    qword_table,
    ret_block,
    syscall_block,
)


class RecordingInfo(DiscoveryInfo):
    """
    Keeps every abstract state ever recorded for an address.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.history = defaultdict(list)

    def set_abs_state(self, addr, state):
        self.history[addr].append(state)
        super().set_abs_state(addr, state)


def branchy_program(arch) -> ScriptedDisassembler:
    """
    0x401000: call 0x401100
    0x401005: if rax == 0 goto 0x401020 else (rbx = 7; goto 0x401010)
    0x401010: rbx = 9; goto 0x401020
    0x401020: ret
    0x401100: rax = 0; ret
    """
    d = ScriptedDisassembler()
    d.add(0x401000, [call_block(arch, 0x401000, 0x401100, 0x401005)], 0x401005)

    b0 = BlockBuilder(arch, 0x401005)
    cond = App(AppOp.Eq, (b0.reg("rax"), b0.const(0)), 1)
    b2 = BlockBuilder(arch, 0x401005, 2)
    b2.set("rbx", b2.const(7))
    d.add(
        0x401005,
        [b0.branch(cond, 1, 2), BlockBuilder(arch, 0x401005, 1).jump(0x401020), b2.jump(0x401010)],
        0x401010,
    )

    b = BlockBuilder(arch, 0x401010)
    b.set("rbx", b.const(9))
    d.add(0x401010, [b.jump(0x401020)], 0x401015)

    d.add(0x401020, [ret_block(arch, 0x401020)], 0x401021)

    b = BlockBuilder(arch, 0x401100)
    ip = b.read(b.reg("rsp"))
    b.set("rsp", b.sp_plus(8))
    b.set("rax", b.const(0))
    d.add(0x401100, [b.jump(ip, jumpkind="Ijk_Ret")], 0x401106)
    return d


class TestCodeDiscovery(unittest.TestCase):
    def setUp(self):
        self.arch = amd64()
        self.memory = make_memory()

    def _discover(self, disassembler, entries=(0x401000,), memory=None, **options):
        return discover(
            memory if memory is not None else self.memory, self.arch, entries, disassembler=disassembler, **options
        )

    def test_call_and_return(self):
        d = ScriptedDisassembler()
        d.add(0x401000, [call_block(self.arch, 0x401000, 0x401100, 0x401005)], 0x401005)
        d.add(0x401005, [syscall_block(self.arch, 0x401005, 60, 0x401007)], 0x401007)
        d.add(0x401007, [ret_block(self.arch, 0x401007)], 0x401008)
        d.add(0x401100, [ret_block(self.arch, 0x401100)], 0x401101)

        info = self._discover(d)

        assert info.is_complete
        assert list(info.function_entries) == [0x401000, 0x401100]
        assert list(info.blocks) == [0x401000, 0x401005, 0x401007, 0x401100]
        assert info.decode_failures() == []

        after_call = info.abs_state[0x401005]
        assert after_call.sp == StackOffset(64, 0x401000, (0,))
        assert after_call.ip == const(64, 0x401005)
        assert after_call.stack == {0: ReturnAddr(64)}

        callee = info.abs_state[0x401100]
        assert callee.sp == StackOffset(64, 0x401100, (0,))
        assert callee.stack == {0: ReturnAddr(64)}

        assert info.reverse_edges[0x401005] == {0x401000}
        assert info.reverse_edges[0x401007] == {0x401005}

    def test_syscall_clobbers_result_registers(self):
        d = ScriptedDisassembler()
        b = BlockBuilder(self.arch, 0x401000)
        b.set("rax", b.const(39))
        b.set("rbx", b.const(1))
        b.set("rcx", b.const(2))
        d.add(0x401000, [b.syscall(0x401002)], 0x401002)
        d.add(0x401002, [ret_block(self.arch, 0x401002)], 0x401003)

        info = self._discover(d)
        state = info.abs_state[0x401002]
        assert "rax" not in state.regs
        assert "rcx" not in state.regs
        assert state.regs["rbx"] == const(64, 1)
        assert state.ip == const(64, 0x401002)

    def test_decode_failure_is_not_fatal(self):
        d = ScriptedDisassembler()
        d.add(0x401000, [call_block(self.arch, 0x401000, 0x401800, 0x401005)], 0x401005)
        d.add(0x401005, [ret_block(self.arch, 0x401005)], 0x401006)

        info = self._discover(d)
        assert info.decode_failures() == [0x401800]
        assert info.blocks[0x401800] is None
        assert 0x401800 in info.function_entries
        assert 0x401005 in info.blocks

    def test_split_at_instruction_boundary(self):
        arch = self.arch
        d = ScriptedDisassembler()
        parent = BlockBuilder(arch, 0x401000)
        parent.insns = [0x401000, 0x401004, 0x401008]
        d.add(0x401000, [parent.jump(0x401010)], 0x40100C)
        d.add((0x401000, 4), [jump_block(arch, 0x401000, 0x401004)], 0x401004)
        d.add(0x401010, [jump_block(arch, 0x401010, 0x401004)], 0x401014)
        d.add(0x401004, [ret_block(arch, 0x401004)], 0x40100C)

        info = self._discover(d)

        assert (0x401000, 4) in d.calls
        assert list(info.blocks) == [0x401000, 0x401004, 0x401010]
        assert info.blocks[0x401000].end == 0x401004
        assert info.reverse_edges[0x401004] == {0x401000, 0x401010}
        regions = list(info.regions())
        for (_, prev), (start, _) in zip(regions, regions[1:]):
            assert prev.end <= start

    def test_no_split_inside_an_instruction(self):
        arch = self.arch
        d = ScriptedDisassembler()
        parent = BlockBuilder(arch, 0x401000)
        parent.insns = [0x401000, 0x401004]
        d.add(0x401000, [parent.jump(0x401010)], 0x401008)
        d.add(0x401010, [jump_block(arch, 0x401010, 0x401002)], 0x401014)
        d.add(0x401002, [ret_block(arch, 0x401002)], 0x401008)

        info = self._discover(d)
        assert info.blocks[0x401000].end == 0x401008
        assert 0x401002 in info.blocks
        assert [call for call in d.calls if call[0] == 0x401000] == [(0x401000, 400)]

    def test_region_stops_at_known_region_start(self):
        arch = self.arch
        d = ScriptedDisassembler()
        full = BlockBuilder(arch, 0x401000)
        full.insns = [0x401000, 0x401004, 0x401010]
        d.add(0x401000, [full.jump(0x401011)], 0x401011)
        short = BlockBuilder(arch, 0x401000)
        short.insns = [0x401000, 0x401004]
        d.add((0x401000, 0x10), [short.jump(0x401010)], 0x401010)
        d.add(0x401010, [ret_block(arch, 0x401010)], 0x401011)

        # 0x401004 fails to decode on its own, which does not shorten the region at 0x401000
        info = self._discover(d, entries=(0x401000, 0x401004, 0x401010), frontier_order="descending")

        assert [call for call in d.calls if call[0] == 0x401000] == [(0x401000, 400), (0x401000, 0x10)]
        assert info.blocks[0x401000].end == 0x401010
        assert info.decode_failures() == [0x401004]

    def test_states_only_grow(self):
        arch = self.arch
        d = ScriptedDisassembler()
        b = BlockBuilder(arch, 0x401000)
        b.set("rax", b.const(1))
        d.add(0x401000, [b.jump(0x401010)], 0x401005)
        b = BlockBuilder(arch, 0x401010)
        b.set("rax", App(AppOp.Add, (b.reg("rax"), b.const(1)), 64))
        d.add(0x401010, [b.jump(0x401010)], 0x401014)

        info = RecordingInfo(self.memory, arch)
        CodeDiscovery(info, d, DiscoveryOptions(arch.name)).explore([0x401000])

        history = info.history[0x401010]
        assert len(history) > 2
        assert history[0].regs["rax"] == const(64, 1)
        assert history[1].regs["rax"] == FinSet(64, (1, 2))
        for prev, cur in zip(history, history[1:]):
            assert prev.leq(cur)
        # widening gave up on the counter
        assert "rax" not in info.abs_state[0x401010].regs
        assert info.abs_state[0x401010].ip == const(64, 0x401010)

    def test_frontier_order_does_not_change_the_result(self):
        asc = self._discover(branchy_program(self.arch), frontier_order="ascending")
        desc = self._discover(branchy_program(self.arch), frontier_order="descending")

        assert list(asc.function_entries) == list(desc.function_entries) == [0x401000, 0x401100]
        assert list(asc.blocks) == list(desc.blocks)
        assert asc.abs_state == desc.abs_state
        assert asc.abs_state[0x401010].regs["rbx"] == const(64, 7)
        assert "rbx" not in asc.abs_state[0x401020].regs

    def test_function_entries_partition_code(self):
        info = self._discover(branchy_program(self.arch))
        entries = list(info.function_entries)
        for addr, region in info.regions():
            owner = info.function_entry_point(addr)
            assert owner in entries
            assert owner <= addr
            assert not any(owner < e <= addr for e in entries)
        regions = list(info.regions())
        for (_, prev), (start, _) in zip(regions, regions[1:]):
            assert prev.end <= start

    def test_results_are_frozen(self):
        info = self._discover(branchy_program(self.arch))
        with self.assertRaises(CfgReconError):
            info.push_frontier(0x401000, None)
        with self.assertRaises(CfgReconError):
            info.add_function_entry(0x401234)

    def test_tail_call_fallthrough_becomes_a_function(self):
        d = ScriptedDisassembler()
        d.add(0x401000, [jump_block(self.arch, 0x401000, 0x401800)], 0x401005)
        d.add(0x401005, [ret_block(self.arch, 0x401005)], 0x401006)
        d.add(0x401800, [ret_block(self.arch, 0x401800)], 0x401801)

        info = self._discover(d, entries=(0x401000, 0x401800))
        assert list(info.function_entries) == [0x401000, 0x401005, 0x401800]

        d.calls.clear()
        info = self._discover(d, entries=(0x401000, 0x401800), explore_tail_call_fallthrough=False)
        assert list(info.function_entries) == [0x401000, 0x401800]
        assert 0x401005 not in info.blocks

    def test_reached_candidate_is_not_a_function(self):
        arch = self.arch
        d = ScriptedDisassembler()
        b0 = BlockBuilder(arch, 0x401000)
        cond = App(AppOp.Eq, (b0.reg("rax"), b0.const(0)), 1)
        d.add(
            0x401000,
            [
                b0.branch(cond, 1, 2),
                BlockBuilder(arch, 0x401000, 1).jump(0x401005),
                BlockBuilder(arch, 0x401000, 2).jump(0x401800),
            ],
            0x401005,
        )
        d.add(0x401005, [ret_block(arch, 0x401005)], 0x401006)
        d.add(0x401800, [ret_block(arch, 0x401800)], 0x401801)

        info = self._discover(d, entries=(0x401000, 0x401800))
        assert list(info.function_entries) == [0x401000, 0x401800]
        assert 0x401005 in info.abs_state

    def test_conditional_tail_call_has_no_fallthrough(self):
        arch = self.arch
        d = ScriptedDisassembler()
        b0 = BlockBuilder(arch, 0x401000)
        cond = App(AppOp.Eq, (b0.reg("rax"), b0.const(0)), 1)
        b2 = BlockBuilder(arch, 0x401000, 2)
        ip = b2.read(b2.reg("rsp"))
        b2.set("rsp", b2.sp_plus(8))
        d.add(
            0x401000,
            [b0.branch(cond, 1, 2), BlockBuilder(arch, 0x401000, 1).jump(0x401800), b2.jump(ip, jumpkind="Ijk_Ret")],
            0x401008,
        )
        d.add(0x401800, [ret_block(arch, 0x401800)], 0x401801)

        info = self._discover(d, entries=(0x401000, 0x401800))
        assert list(info.function_entries) == [0x401000, 0x401800]
        assert 0x401008 not in info.blocks
        assert info.decode_failures() == []

    def test_written_code_pointer_becomes_a_function(self):
        d = ScriptedDisassembler()
        b = BlockBuilder(self.arch, 0x401000)
        b.write(b.const(DATA_BASE), b.const(0x401300))
        ip = b.read(b.reg("rsp"))
        b.set("rsp", b.sp_plus(8))
        d.add(0x401000, [b.jump(ip, jumpkind="Ijk_Ret")], 0x401010)
        d.add(0x401300, [ret_block(self.arch, 0x401300)], 0x401301)

        info = self._discover(d)
        assert list(info.function_entries) == [0x401000, 0x401300]

        info = self._discover(d, explore_written_code_pointers=False)
        assert list(info.function_entries) == [0x401000]

    def test_code_pointers_in_data(self):
        memory = make_memory(data=qword_table(0, 0x401200))
        d = ScriptedDisassembler()
        d.add(0x401000, [ret_block(self.arch, 0x401000)], 0x401001)
        d.add(0x401200, [ret_block(self.arch, 0x401200)], 0x401201)

        info = self._discover(d, memory=memory)
        assert list(info.function_entries) == [0x401000]

        info = self._discover(d, memory=memory, scan_data_for_code_pointers=True)
        assert list(info.function_entries) == [0x401000, 0x401200]

    def test_jump_table_targets_are_explored(self):
        arch = self.arch
        targets = (0x401010, 0x401020, 0x401030)
        memory = make_memory(rodata=qword_table(*targets, 0))
        d = ScriptedDisassembler()
        b = BlockBuilder(arch, 0x401000)
        ip = b.read(App(AppOp.Add, (App(AppOp.Mul, (BVValue(64, 8), b.reg("rdi")), 64), BVValue(64, RODATA_BASE)), 64))
        d.add(0x401000, [b.jump(ip)], 0x401008)
        for t in targets:
            d.add(t, [ret_block(arch, t)], t + 1)

        info = self._discover(d, memory=memory)
        assert list(info.blocks) == [0x401000, *targets]
        assert info.global_data_map[RODATA_BASE] == JumpTable(RODATA_BASE + 3 * 8)
        for t in targets:
            assert info.reverse_edges[t] == {0x401000}
            assert info.abs_state[t].ip == const(64, t)

    def test_data_references_are_recorded(self):
        d = ScriptedDisassembler()
        b = BlockBuilder(self.arch, 0x401000)
        b.set("rax", b.read(b.const(RODATA_BASE + 0x100)))
        ip = b.read(b.reg("rsp"))
        b.set("rsp", b.sp_plus(8))
        d.add(0x401000, [b.jump(ip, jumpkind="Ijk_Ret")], 0x401010)

        info = self._discover(d)
        assert info.global_data_map[RODATA_BASE + 0x100] == ReferencedValue()

        info = self._discover(d, record_data_references=False)
        assert info.global_data_map == {}

    def test_missing_state_is_an_invariant_violation(self):
        info = DiscoveryInfo(self.memory, self.arch)
        with self.assertRaises(DiscoveryInvariantError):
            info.lookup_abs_block(0x401000)


if __name__ == "__main__":
    unittest.main()
