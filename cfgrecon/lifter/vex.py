from __future__ import annotations
import re
import logging
from typing import TYPE_CHECKING

import pyvex
from sortedcontainers import SortedDict

from ..errors import CfgReconError, DecodeError, MemoryAccessError
from ..ir import (
    App,
    AppOp,
    Assignment,
    AssignStmt,
    AssignedValue,
    Block,
    BlockLabel,
    Branch,
    BVValue,
    Comment,
    EvalArchFn,
    ExecArchStmt,
    FetchAndExecute,
    ReadMem,
    RegState,
    Syscall,
    Value,
    WriteMem,
    bv_add,
    bv_bitop,
    bv_mul,
    bv_shl,
    bv_sub,
    sext,
    trunc,
    uext,
)
from ..memory import Permission
from .base import Disassembler

if TYPE_CHECKING:
    from ..architecture import ArchitectureInfo
    from ..knowledge import DiscoveryInfo
    from ..memory import Memory

l = logging.getLogger(name=__name__)


IROP_CONVERT_REGEX = re.compile(r"^Iop_(\d+)([US]?)to(\d+)$")
IROP_INT_REGEX = re.compile(r"^Iop_([A-Za-z]+?)(8|16|32|64)([US]?)$")

_BITOPS = {
    "And": AppOp.And,
    "Or": AppOp.Or,
    "Xor": AppOp.Xor,
}

_CMPOPS = {
    ("CmpEQ", ""): AppOp.Eq,
    ("CmpNE", ""): AppOp.Ne,
    ("CasCmpEQ", ""): AppOp.Eq,
    ("CasCmpNE", ""): AppOp.Ne,
    ("ExpCmpNE", ""): AppOp.Ne,
    ("CmpLT", "U"): AppOp.Ult,
    ("CmpLE", "U"): AppOp.Ule,
    ("CmpLT", "S"): AppOp.Slt,
    ("CmpLE", "S"): AppOp.Sle,
}


class VEXDisassembler(Disassembler):
    """
    Lifts machine code with pyvex and translates each IRSB into discovery IR blocks.

    VEX temporaries are substituted into the expressions that use them, register accesses are resolved against the
    architecture's register file, memory loads become ReadMem assignments, and each conditional exit ends a sub-block
    with a Branch.
    """

    def __init__(self, arch_info: ArchitectureInfo, memory: Memory, opt_level: int = 1):
        if arch_info.arch is None:
            raise CfgReconError("VEXDisassembler requires an ArchitectureInfo backed by an archinfo.Arch")
        self.arch_info = arch_info
        self.memory = memory
        self.opt_level = opt_level

        # VEX register offset -> (register name, width in bits)
        self._reg_offsets = SortedDict()
        for reg in arch_info.arch.register_list:
            if reg.vex_offset is None or reg.name not in arch_info.register_widths:
                continue
            self._reg_offsets[reg.vex_offset] = (reg.name, reg.size * arch_info.arch.byte_width)

        self._stmt_handlers = {
            "Ist_IMark": self._handle_stmt_IMark,
            "Ist_WrTmp": self._handle_stmt_WrTmp,
            "Ist_Put": self._handle_stmt_Put,
            "Ist_PutI": self._handle_stmt_NoOp,
            "Ist_Store": self._handle_stmt_Store,
            "Ist_StoreG": self._handle_stmt_StoreG,
            "Ist_LoadG": self._handle_stmt_LoadG,
            "Ist_CAS": self._handle_stmt_CAS,
            "Ist_LLSC": self._handle_stmt_LLSC,
            "Ist_Dirty": self._handle_stmt_Dirty,
            "Ist_Exit": self._handle_stmt_Exit,
            "Ist_MBE": self._handle_stmt_NoOp,
            "Ist_NoOp": self._handle_stmt_NoOp,
            "Ist_AbiHint": self._handle_stmt_NoOp,
        }
        self._expr_handlers = {
            "RdTmp": self._handle_expr_RdTmp,
            "Get": self._handle_expr_Get,
            "GetI": self._handle_expr_GetI,
            "Load": self._handle_expr_Load,
            "Const": self._handle_expr_Const,
            "ITE": self._handle_expr_ITE,
            "Unop": self._handle_expr_Unop,
            "Binop": self._handle_expr_Binop,
            "CCall": self._handle_expr_CCall,
        }

    def __repr__(self):
        return f"<VEXDisassembler {self.arch_info.name}>"

    def lift(self, addr: int, max_bytes: int) -> pyvex.IRSB:
        if not self.memory.is_code_addr(addr):
            raise DecodeError(addr, f"Address {addr:#x} is not executable")
        try:
            data = self.memory.load_up_to(addr, max_bytes, required=Permission.EXEC)
        except MemoryAccessError as ex:
            raise DecodeError(addr) from ex
        if not data:
            raise DecodeError(addr)

        l.debug("Lifting %d bytes at %#x", len(data), addr)
        try:
            irsb = pyvex.lift(data, addr, self.arch_info.arch, max_bytes=len(data), opt_level=self.opt_level)
        except pyvex.PyVEXError as ex:
            raise DecodeError(addr, f"pyvex failed to lift {addr:#x}: {ex}") from ex

        if irsb.jumpkind == "Ijk_NoDecode" and not irsb.instruction_addresses:
            raise DecodeError(addr)
        return irsb

    def disassemble(self, addr: int, max_bytes: int, info: DiscoveryInfo) -> tuple[list[Block], int]:
        irsb = self.lift(addr, max_bytes)

        self.info = info
        self.tyenv = irsb.tyenv
        self.addr = addr
        self.tmps: dict[int, Value] = {}
        self.regs = RegState(self.arch_info.register_widths)
        self.stmts = []
        self.insns = []
        self.blocks = []
        self.index = 0
        self.end = addr

        for stmt in irsb.statements:
            self._stmt_handlers[stmt.tag](stmt)

        regs = self.regs.copy()
        regs[self.arch_info.ip_reg] = self._expr(irsb.next)
        if irsb.jumpkind.startswith("Ijk_Sys"):
            term = Syscall(regs)
        else:
            term = FetchAndExecute(regs)
        self._close(term, irsb.jumpkind)

        blocks, end = self.blocks, self.end
        del self.info
        del self.tyenv
        del self.tmps
        del self.regs
        del self.stmts
        del self.insns
        del self.blocks
        return blocks, end

    #
    # Helpers
    #

    def _close(self, term, jumpkind: str | None):
        label = BlockLabel(self.addr, self.index)
        self.blocks.append(Block(label, self.stmts, term, instruction_addrs=tuple(self.insns), jumpkind=jumpkind))
        self.stmts = []
        self.insns = []

    def _assign(self, rhs) -> AssignedValue:
        asgn = Assignment(self.info.next_assign_id(), rhs)
        self.stmts.append(AssignStmt(asgn))
        return AssignedValue(asgn)

    def _size(self, ty: str) -> int:
        return pyvex.get_type_size(ty)

    def _tmp_bits(self, tmp: int) -> int:
        return self._size(self.tyenv.lookup(tmp))

    def _find_reg(self, offset: int) -> tuple[int, str, int] | None:
        try:
            start = next(self._reg_offsets.irange(maximum=offset, reverse=True))
        except StopIteration:
            return None
        name, bits = self._reg_offsets[start]
        if offset >= start + bits // 8:
            return None
        return start, name, bits

    #
    # Statements
    #

    def _handle_stmt_IMark(self, stmt):
        self.insns.append(stmt.addr)
        self.end = max(self.end, stmt.addr + stmt.len)
        self.stmts.append(Comment(f"{stmt.addr:#x}: {stmt.len} bytes"))

    def _handle_stmt_WrTmp(self, stmt):
        self.tmps[stmt.tmp] = self._expr(stmt.data)

    def _handle_stmt_Put(self, stmt):
        value = self._expr(stmt.data)
        found = self._find_reg(stmt.offset)
        if found is None:
            return
        start, name, bits = found
        if start == stmt.offset and value.bits == bits:
            self.regs[name] = value
        else:
            self.regs[name] = App(f"insert_{stmt.offset - start}", (self.regs[name], value), bits)

    def _handle_stmt_Store(self, stmt):
        self.stmts.append(WriteMem(self._expr(stmt.addr), self._expr(stmt.data)))

    def _handle_stmt_StoreG(self, stmt):
        self.stmts.append(ExecArchStmt("store_guarded"))

    def _handle_stmt_LoadG(self, stmt):
        self.stmts.append(ExecArchStmt("load_guarded"))
        self.tmps[stmt.dst] = self._assign(EvalArchFn("load_guarded", (), self._tmp_bits(stmt.dst)))

    def _handle_stmt_CAS(self, stmt):
        self.stmts.append(ExecArchStmt("cas"))
        for tmp in (stmt.oldLo, stmt.oldHi):
            if tmp not in (-1, 0xFFFFFFFF):
                self.tmps[tmp] = self._assign(EvalArchFn("cas_old", (), self._tmp_bits(tmp)))

    def _handle_stmt_LLSC(self, stmt):
        self.stmts.append(ExecArchStmt("llsc"))
        self.tmps[stmt.result] = self._assign(EvalArchFn("llsc", (), self._tmp_bits(stmt.result)))

    def _handle_stmt_Dirty(self, stmt):
        self.stmts.append(ExecArchStmt(stmt.cee.name))
        if stmt.tmp not in (-1, 0xFFFFFFFF):
            self.tmps[stmt.tmp] = self._assign(EvalArchFn(stmt.cee.name, (), self._tmp_bits(stmt.tmp)))

    def _handle_stmt_Exit(self, stmt):
        cond = self._expr(stmt.guard)
        taken = BlockLabel(self.addr, self.index + 1)
        fallthrough = BlockLabel(self.addr, self.index + 2)
        self._close(Branch(cond, taken, fallthrough), None)

        regs = self.regs.copy()
        regs[self.arch_info.ip_reg] = BVValue(self.arch_info.bits, stmt.dst.value)
        self.blocks.append(Block(taken, [], FetchAndExecute(regs), jumpkind=stmt.jumpkind))
        self.index += 2

    def _handle_stmt_NoOp(self, stmt):
        pass

    #
    # Expressions
    #

    def _expr(self, expr) -> Value:
        handler = self._expr_handlers.get(type(expr).__name__)
        if handler is not None:
            return handler(expr)
        bits = self._size(expr.result_type(self.tyenv))
        return App(type(expr).__name__.lower(), (), bits)

    def _handle_expr_RdTmp(self, expr):
        return self.tmps[expr.tmp]

    def _handle_expr_Get(self, expr):
        bits = self._size(expr.ty)
        found = self._find_reg(expr.offset)
        if found is None:
            return App(f"get_{expr.offset}", (), bits)
        start, name, reg_bits = found
        value = self.regs[name]
        if start == expr.offset and bits == reg_bits:
            return value
        if start == expr.offset and bits < reg_bits:
            return trunc(value, bits)
        return App(f"extract_{expr.offset - start}", (value,), bits)

    def _handle_expr_GetI(self, expr):
        return self._assign(EvalArchFn("get_indexed", (), self._size(expr.result_type(self.tyenv))))

    def _handle_expr_Load(self, expr):
        return self._assign(ReadMem(self._expr(expr.addr), self._size(expr.ty)))

    def _handle_expr_Const(self, expr):
        bits = self._size(expr.result_type(self.tyenv))
        value = expr.con.value
        if isinstance(value, int):
            return BVValue(bits, value)
        return App("float_const", (), bits)

    def _handle_expr_ITE(self, expr):
        iftrue = self._expr(expr.iftrue)
        iffalse = self._expr(expr.iffalse)
        if iftrue == iffalse:
            return iftrue
        return App(AppOp.Ite, (self._expr(expr.cond), iftrue, iffalse), iftrue.bits)

    def _handle_expr_Unop(self, expr):
        bits = self._size(expr.result_type(self.tyenv))
        arg = self._expr(expr.args[0])

        m = IROP_CONVERT_REGEX.match(expr.op)
        if m is not None and int(m.group(1)) == arg.bits:
            to_bits = int(m.group(3))
            if to_bits < arg.bits:
                return trunc(arg, to_bits)
            if m.group(2) == "S":
                return sext(arg, to_bits)
            return uext(arg, to_bits)

        if expr.op in ("Iop_Not8", "Iop_Not16", "Iop_Not32", "Iop_Not64"):
            return App(AppOp.Not, (arg,), bits)
        return App(expr.op[4:], (arg,), bits)

    def _handle_expr_Binop(self, expr):
        bits = self._size(expr.result_type(self.tyenv))
        a = self._expr(expr.args[0])
        b = self._expr(expr.args[1])

        m = IROP_INT_REGEX.match(expr.op)
        if m is not None:
            op, sign = m.group(1), m.group(3)
            if op == "Add":
                return bv_add(a, b)
            if op == "Sub":
                return bv_sub(a, b)
            if op == "Mul" and sign == "":
                return bv_mul(a, b)
            if op == "Shl":
                return bv_shl(a, b)
            if op in _BITOPS:
                return bv_bitop(_BITOPS[op], a, b)
            if (op, sign) in _CMPOPS:
                return App(_CMPOPS[(op, sign)], (a, b), bits)

        return App(expr.op[4:], (a, b), bits)

    def _handle_expr_CCall(self, expr):
        bits = self._size(expr.result_type(self.tyenv))
        return App(expr.cee.name, tuple(self._expr(arg) for arg in expr.args), bits)
