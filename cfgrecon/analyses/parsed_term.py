from __future__ import annotations

from ..ir import BlockLabel, RegState, Statement, Value
from ..utils.formatting import fmt_addr


class ParsedTerm:
    """
    The high-level control transfer a block ends with.
    """

    __slots__ = ()

    kind = "term"


class ParsedCall(ParsedTerm):
    """
    A call, or a tail call when `return_addr` is None.

    :ivar regs:         Registers at the transfer.
    :ivar stmts:        Statements of the block, without the push of the return address.
    :ivar target:       The callee: an address if it is statically known, otherwise the value it is computed from.
    :ivar return_addr:  Where the call returns to, or None for tail calls.
    :ivar fallback:     True when nothing more specific could be said about an indirect transfer.
    """

    __slots__ = ("regs", "stmts", "target", "return_addr", "fallback")

    def __init__(
        self,
        regs: RegState,
        stmts: list[Statement],
        target: int | Value,
        return_addr: int | None,
        fallback: bool = False,
    ):
        self.regs = regs
        self.stmts = list(stmts)
        self.target = target
        self.return_addr = return_addr
        self.fallback = fallback

    @property
    def kind(self):
        if self.fallback:
            return "indirect_tail_call"
        return "call" if self.return_addr is not None else "tail_call"

    @property
    def is_tail_call(self) -> bool:
        return self.return_addr is None

    @property
    def target_addr(self) -> int | None:
        return self.target if isinstance(self.target, int) else None

    def __repr__(self):
        target = fmt_addr(self.target) if isinstance(self.target, int) else repr(self.target)
        if self.return_addr is None:
            return f"<{self.kind} {target}>"
        return f"<call {target} returns to {self.return_addr:#x}>"


class ParsedJump(ParsedTerm):
    __slots__ = ("regs", "target")

    kind = "jump"

    def __init__(self, regs: RegState, target: int):
        self.regs = regs
        self.target = target

    def __repr__(self):
        return f"<jump {self.target:#x}>"


class ParsedLookupTable(ParsedTerm):
    """
    An indirect jump through a jump table.
    """

    __slots__ = ("regs", "index", "targets", "table_addr")

    kind = "lookup_table"

    def __init__(self, regs: RegState, index: Value, targets: tuple[int, ...], table_addr: int):
        self.regs = regs
        self.index = index
        self.targets = tuple(targets)
        self.table_addr = table_addr

    def __repr__(self):
        return f"<lookup table {self.table_addr:#x}[{self.index!r}]: {', '.join(map(hex, self.targets))}>"


class ParsedReturn(ParsedTerm):
    __slots__ = ("regs", "stmts")

    kind = "return"

    def __init__(self, regs: RegState, stmts: list[Statement]):
        self.regs = regs
        self.stmts = list(stmts)

    def __repr__(self):
        return "<return>"


class ParsedBranch(ParsedTerm):
    __slots__ = ("cond", "true_label", "false_label")

    kind = "branch"

    def __init__(self, cond: Value, true_label: BlockLabel, false_label: BlockLabel):
        self.cond = cond
        self.true_label = true_label
        self.false_label = false_label

    def __repr__(self):
        return f"<branch {self.cond!r} {self.true_label!r} {self.false_label!r}>"


class ParsedSyscall(ParsedTerm):
    """
    A system call.

    :ivar regs:             Registers at the syscall.
    :ivar next_addr:        Where execution resumes.
    :ivar number:           The syscall number, 0 if it is unknown.
    :ivar personality_name: Name of the syscall personality the syscall was looked up in.
    :ivar name:             Name of the syscall, or "unknown".
    :ivar arg_regs:         Registers carrying the arguments.
    :ivar result_regs:      Registers the kernel writes results to.
    """

    __slots__ = ("regs", "next_addr", "number", "personality_name", "name", "arg_regs", "result_regs")

    kind = "syscall"

    def __init__(
        self,
        regs: RegState,
        next_addr: int,
        number: int,
        personality_name: str,
        name: str,
        arg_regs: tuple[str, ...],
        result_regs: tuple[str, ...],
    ):
        self.regs = regs
        self.next_addr = next_addr
        self.number = number
        self.personality_name = personality_name
        self.name = name
        self.arg_regs = tuple(arg_regs)
        self.result_regs = tuple(result_regs)

    def __repr__(self):
        return f"<syscall {self.personality_name}:{self.name}({', '.join(self.arg_regs)}), next {self.next_addr:#x}>"
