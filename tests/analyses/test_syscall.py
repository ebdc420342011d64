#!/usr/bin/env python3
# pylint: disable=missing-class-docstring,no-self-use
from __future__ import annotations

__package__ = __package__ or "tests.analyses"  # pylint:disable=redefined-builtin

import unittest

from cfgrecon.abstract import AbsBlockState, const, top
from cfgrecon.analyses import ParsedSyscall, classify_block, classify_syscall
from cfgrecon.errors import ClassificationError, UnsupportedSyscallArgError
from cfgrecon.syscalls import LINUX_AMD64, SyscallArgType, SyscallPersonality, SyscallTypeInfo, personality_for

from ..common import BlockBuilder, amd64, make_info, syscall_block


class TestSyscallClassification(unittest.TestCase):
    def setUp(self):
        self.arch = amd64()

    def test_exit_with_one_argument_register(self):
        arch = self.arch.copy(syscall_arg_regs=("rdi",))
        info = make_info(arch=arch, function_entries=[0x401000])
        block = syscall_block(arch, 0x401000, 60, 0x401007)

        parsed = classify_block(block, info)
        assert isinstance(parsed, ParsedSyscall)
        assert parsed.kind == "syscall"
        assert parsed.name == "exit"
        assert parsed.number == 60
        assert parsed.personality_name == "linux"
        assert parsed.arg_regs == ("rdi",)
        assert parsed.result_regs == ("rax",)
        assert parsed.next_addr == 0x401007

    def test_arguments_use_leading_registers(self):
        info = make_info(arch=self.arch, function_entries=[0x401000])
        parsed = classify_syscall(syscall_block(self.arch, 0x401000, 1, 0x401007), info)
        assert parsed.name == "write"
        assert parsed.arg_regs == ("rdi", "rsi", "rdx")

    def test_number_from_abstract_state(self):
        info = make_info(arch=self.arch, function_entries=[0x401000])
        info.set_abs_state(0x401000, AbsBlockState(self.arch, regs={"rax": const(64, 39)}))
        # rax is not written by the block itself
        block = syscall_block(self.arch, 0x401000, None, 0x401002)

        parsed = classify_syscall(block, info)
        assert parsed.name == "getpid"
        assert parsed.number == 39
        assert parsed.arg_regs == ()

    def test_number_from_abstract_state_must_be_a_singleton(self):
        info = make_info(arch=self.arch, function_entries=[0x401000])
        info.set_abs_state(0x401000, AbsBlockState(self.arch, regs={"rax": top(64)}))
        block = syscall_block(self.arch, 0x401000, None, 0x401002)

        with self.assertLogs("cfgrecon.analyses.syscall", level="WARNING"):
            parsed = classify_syscall(block, info)
        assert parsed.name == "unknown"

    def test_unknown_number(self):
        info = make_info(arch=self.arch, function_entries=[0x401000])
        block = syscall_block(self.arch, 0x401000, 9999, 0x401002)

        with self.assertLogs("cfgrecon.analyses.syscall", level="WARNING") as cm:
            parsed = classify_syscall(block, info)
        assert "Unknown syscall" in cm.output[0]
        assert parsed.name == "unknown"
        assert parsed.number == 0
        assert parsed.arg_regs == self.arch.syscall_arg_regs

    def test_non_constant_number(self):
        info = make_info(arch=self.arch, function_entries=[0x401000])
        b = BlockBuilder(self.arch, 0x401000)
        b.set("rax", b.read(b.reg("rsp")))
        block = b.syscall(0x401002)

        with self.assertLogs("cfgrecon.analyses.syscall", level="WARNING"):
            parsed = classify_syscall(block, info)
        assert parsed.name == "unknown"

    def test_more_arguments_than_registers(self):
        arch = self.arch.copy(syscall_arg_regs=("rdi",))
        info = make_info(arch=arch, function_entries=[0x401000])
        block = syscall_block(arch, 0x401000, 1, 0x401002)

        with self.assertLogs("cfgrecon.analyses.syscall", level="WARNING") as cm:
            parsed = classify_syscall(block, info)
        assert "more than register args" in cm.output[0]
        assert parsed.name == "write"
        assert parsed.arg_regs == ("rdi",)

    def test_non_word_argument(self):
        sysp = SyscallPersonality(
            "test",
            {
                1: SyscallTypeInfo("odd", SyscallArgType.WORD, (SyscallArgType.WORD, SyscallArgType.VOID)),
            },
            ("rax",),
        )
        info = make_info(arch=self.arch, function_entries=[0x401000], syscall_personality=sysp)
        with self.assertRaises(UnsupportedSyscallArgError):
            classify_syscall(syscall_block(self.arch, 0x401000, 1, 0x401002), info)

    def test_non_word_argument_is_checked_before_arity(self):
        arch = self.arch.copy(syscall_arg_regs=())
        sysp = SyscallPersonality(
            "test", {1: SyscallTypeInfo("odd", SyscallArgType.WORD, (SyscallArgType.VOID,))}, ("rax",)
        )
        info = make_info(arch=arch, function_entries=[0x401000], syscall_personality=sysp)
        with self.assertRaises(UnsupportedSyscallArgError):
            classify_syscall(syscall_block(arch, 0x401000, 1, 0x401002), info)

    def test_resume_address_must_be_concrete(self):
        info = make_info(arch=self.arch, function_entries=[0x401000])
        b = BlockBuilder(self.arch, 0x401000)
        b.set("rax", b.const(60))
        block = b.syscall(b.reg("rcx"))

        with self.assertRaises(ClassificationError):
            classify_block(block, info)


class TestSyscallPersonality(unittest.TestCase):
    def test_linux_amd64(self):
        assert personality_for(amd64()) is LINUX_AMD64
        exit_info = LINUX_AMD64.lookup(60)
        assert exit_info.name == "exit"
        assert exit_info.return_type is SyscallArgType.VOID
        assert exit_info.arg_types == (SyscallArgType.WORD,)
        assert LINUX_AMD64.lookup(100000) is None

    def test_unknown_architecture(self):
        arch = amd64().copy(name="MADEUP")
        with self.assertLogs("cfgrecon.syscalls", level="WARNING"):
            sysp = personality_for(arch)
        assert sysp.lookup(60) is None
        assert sysp.result_registers == ("rax",)


if __name__ == "__main__":
    unittest.main()
