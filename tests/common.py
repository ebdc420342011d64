from __future__ import annotations
import itertools
import logging

from cfgrecon.architecture import ArchitectureInfo
from cfgrecon.errors import DecodeError
from cfgrecon.ir import (
    Assignment,
    AssignStmt,
    AssignedValue,
    Block,
    BlockLabel,
    Branch,
    BVValue,
    ExecArchStmt,
    FetchAndExecute,
    Initial,
    ReadMem,
    RegState,
    Syscall,
    WriteMem,
    bv_add,
)
from cfgrecon.knowledge import DiscoveryInfo
from cfgrecon.lifter import Disassembler
from cfgrecon.memory import Memory, Permission

l = logging.getLogger("cfgrecon.tests.common")

CODE_BASE = 0x401000
RODATA_BASE = 0x402000
DATA_BASE = 0x403000
SEGMENT_SIZE = 0x1000

_assign_ids = itertools.count(1000)


def amd64() -> ArchitectureInfo:
    return ArchitectureInfo.from_archinfo("AMD64")


def make_memory(code: bytes = b"", rodata: bytes = b"", data: bytes = b"") -> Memory:
    """
    A three-segment image: executable code, read-only data and writable data, each SEGMENT_SIZE bytes.
    """
    mem = Memory(bits=64)
    mem.add_segment(CODE_BASE, code.ljust(SEGMENT_SIZE, b"\xcc"), Permission.READ | Permission.EXEC, name=".text")
    mem.add_segment(RODATA_BASE, rodata.ljust(SEGMENT_SIZE, b"\x00"), Permission.READ, name=".rodata")
    mem.add_segment(DATA_BASE, data.ljust(SEGMENT_SIZE, b"\x00"), Permission.READ | Permission.WRITE, name=".data")
    return mem


def make_info(memory=None, arch=None, function_entries=(), **kwargs) -> DiscoveryInfo:
    info = DiscoveryInfo(memory if memory is not None else make_memory(), arch if arch is not None else amd64(), **kwargs)
    for entry in function_entries:
        info.add_function_entry(entry)
    return info


def qword_table(*values: int) -> bytes:
    return b"".join(v.to_bytes(8, "little") for v in values)


class BlockBuilder:
    """
    Builds discovery IR blocks by hand, the way the lifter would emit them.
    """

    def __init__(self, arch: ArchitectureInfo, addr: int, index: int = 0):
        self.arch = arch
        self.label = BlockLabel(addr, index)
        self.regs = RegState(arch.register_widths)
        self.stmts = []
        self.insns = [addr]

    def reg(self, name: str) -> Initial:
        return Initial(name, self.arch.register_width(name))

    def const(self, value: int, bits: int = 64) -> BVValue:
        return BVValue(bits, value)

    def read(self, addr, bits: int = 64) -> AssignedValue:
        asgn = Assignment(next(_assign_ids), ReadMem(addr, bits))
        self.stmts.append(AssignStmt(asgn))
        return AssignedValue(asgn)

    def write(self, addr, value):
        self.stmts.append(WriteMem(addr, value))

    def arch_stmt(self, desc: str = "dirty"):
        self.stmts.append(ExecArchStmt(desc))

    def set(self, reg: str, value):
        self.regs[reg] = value

    def sp_plus(self, offset: int):
        return bv_add(self.reg(self.arch.sp_reg), self.const(offset))

    def jump(self, ip, jumpkind: str | None = "Ijk_Boring") -> Block:
        if isinstance(ip, int):
            ip = self.const(ip)
        self.regs[self.arch.ip_reg] = ip
        return Block(self.label, self.stmts, FetchAndExecute(self.regs), instruction_addrs=self.insns, jumpkind=jumpkind)

    def branch(self, cond, true_index: int, false_index: int) -> Block:
        term = Branch(cond, self.label.child(true_index), self.label.child(false_index))
        return Block(self.label, self.stmts, term, instruction_addrs=self.insns)

    def syscall(self, next_addr) -> Block:
        if isinstance(next_addr, int):
            next_addr = self.const(next_addr)
        self.regs[self.arch.ip_reg] = next_addr
        return Block(self.label, self.stmts, Syscall(self.regs), instruction_addrs=self.insns, jumpkind="Ijk_Sys_syscall")


def call_block(arch: ArchitectureInfo, addr: int, target, return_addr: int) -> Block:
    """
    push return_addr; jmp target
    """
    b = BlockBuilder(arch, addr)
    new_sp = b.sp_plus(-arch.stack_delta)
    b.write(new_sp, b.const(return_addr))
    b.set(arch.sp_reg, new_sp)
    return b.jump(target, jumpkind="Ijk_Call")


def ret_block(arch: ArchitectureInfo, addr: int) -> Block:
    """
    pop rip
    """
    b = BlockBuilder(arch, addr)
    ip = b.read(b.reg(arch.sp_reg))
    b.set(arch.sp_reg, b.sp_plus(arch.stack_delta))
    return b.jump(ip, jumpkind="Ijk_Ret")


def jump_block(arch: ArchitectureInfo, addr: int, target: int) -> Block:
    return BlockBuilder(arch, addr).jump(target)


def syscall_block(arch: ArchitectureInfo, addr: int, number: int | None, next_addr: int) -> Block:
    b = BlockBuilder(arch, addr)
    if number is not None:
        b.set(arch.syscall_num_reg, b.const(number))
    return b.syscall(next_addr)


class ScriptedDisassembler(Disassembler):
    """
    Returns prepared regions instead of decoding bytes.

    Regions are looked up by (address, max_bytes) first, then by address alone. Any other address fails to decode.
    """

    def __init__(self, regions=None):
        self.regions = dict(regions) if regions else {}
        self.calls = []

    def add(self, key, blocks, end: int):
        self.regions[key] = (list(blocks), end)

    def disassemble(self, addr, max_bytes, info):
        self.calls.append((addr, max_bytes))
        entry = self.regions.get((addr, max_bytes))
        if entry is None:
            entry = self.regions.get(addr)
        if entry is None:
            raise DecodeError(addr)
        blocks, end = entry
        return list(blocks), end
