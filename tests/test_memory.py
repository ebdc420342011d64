#!/usr/bin/env python3
# pylint: disable=missing-class-docstring,no-self-use
from __future__ import annotations

__package__ = __package__ or "tests"  # pylint:disable=redefined-builtin

import unittest

from cfgrecon.architecture import ArchitectureInfo
from cfgrecon.errors import CfgReconError, CfgReconValueError, MemoryAccessError, WidthMismatchError
from cfgrecon.memory import Memory, Permission

from .common import CODE_BASE, DATA_BASE, RODATA_BASE, amd64, make_memory, qword_table


class TestMemory(unittest.TestCase):
    def test_permissions(self):
        mem = make_memory()
        assert mem.is_code_addr(CODE_BASE)
        assert mem.is_code_addr(CODE_BASE + 0xFFF)
        assert not mem.is_code_addr(RODATA_BASE)
        assert mem.is_readonly_addr(RODATA_BASE)
        assert not mem.is_readonly_addr(DATA_BASE)
        assert mem.is_readonly_addr(CODE_BASE)
        assert mem.permissions(0x1000) == Permission.NONE
        assert 0x1000 not in mem
        assert DATA_BASE in mem
        assert [seg.name for seg in mem.executable_segments()] == [".text"]

    def test_load(self):
        mem = make_memory(rodata=qword_table(0x1122334455667788))
        assert mem.read_word(RODATA_BASE) == 0x1122334455667788
        assert mem.read_word(RODATA_BASE, 4) == 0x55667788
        assert mem.load(RODATA_BASE, 2) == b"\x88\x77"

    def test_load_errors(self):
        mem = make_memory()
        with self.assertRaises(MemoryAccessError):
            mem.load(0x1000, 1)
        # reads do not cross segments
        with self.assertRaises(MemoryAccessError):
            mem.load(RODATA_BASE - 4, 8)
        with self.assertRaises(MemoryAccessError):
            mem.load(RODATA_BASE, 1, required=Permission.EXEC)

    def test_load_up_to(self):
        mem = make_memory(code=b"\x90\xc3")
        assert mem.load_up_to(RODATA_BASE - 2, 100) == b"\xcc\xcc"
        assert mem.load_up_to(CODE_BASE, 2, required=Permission.EXEC) == b"\x90\xc3"

    def test_overlapping_segments(self):
        mem = Memory(bits=64)
        mem.add_segment(0x1000, b"\x00" * 0x100, Permission.READ)
        with self.assertRaises(CfgReconValueError):
            mem.add_segment(0x10F0, b"\x00" * 0x20, Permission.READ)
        with self.assertRaises(CfgReconValueError):
            mem.add_segment(0xFF0, b"\x00" * 0x20, Permission.READ)
        mem.add_segment(0x1100, b"\x00" * 0x20, Permission.READ)
        assert len(mem.segments) == 2


class TestArchitectureInfo(unittest.TestCase):
    def test_amd64(self):
        arch = amd64()
        assert arch.name == "AMD64"
        assert arch.bits == 64
        assert arch.ip_reg == "rip"
        assert arch.sp_reg == "rsp"
        assert arch.stack_delta == 8
        assert arch.jump_table_entry_size == 8
        assert arch.syscall_num_reg == "rax"
        assert arch.syscall_arg_regs == ("rdi", "rsi", "rdx", "r10", "r8", "r9")
        assert arch.register_width("rax") == 64
        assert arch.pointer_size == 8
        assert arch.addr_mask == 0xFFFFFFFFFFFFFFFF

    def test_copy(self):
        arch = amd64().copy(syscall_arg_regs=("rdi",))
        assert arch.syscall_arg_regs == ("rdi",)
        assert arch.name == "AMD64"

    def test_errors(self):
        arch = amd64()
        with self.assertRaises(CfgReconError):
            arch.register_width("nope")
        with self.assertRaises(WidthMismatchError):
            arch.check_addr_width(32)
        with self.assertRaises(CfgReconError):
            ArchitectureInfo("toy", 16, "pc", "sp", {"pc": 16})


if __name__ == "__main__":
    unittest.main()
