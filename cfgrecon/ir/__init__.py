from .values import (
    Value,
    BVValue,
    Initial,
    AssignedValue,
    App,
    AppOp,
    Assignment,
    AssignRhs,
    ReadMem,
    EvalArchFn,
    checked_cast,
    bv_add,
    bv_sub,
    bv_mul,
    bv_shl,
    bv_bitop,
    uext,
    sext,
    trunc,
    as_base_offset,
)
from .stmts import Statement, AssignStmt, WriteMem, ExecArchStmt, Comment
from .block import BlockLabel, RegState, Terminator, FetchAndExecute, Branch, Syscall, Block, concrete_ip
