from __future__ import annotations
import logging

import archinfo

from .errors import CfgReconError, WidthMismatchError

l = logging.getLogger(name=__name__)


# Syscall conventions per archinfo architecture name:
# (syscall number register, argument registers, registers clobbered by the kernel)
SYSCALL_REGISTERS = {
    "AMD64": ("rax", ("rdi", "rsi", "rdx", "r10", "r8", "r9"), ("rcx", "r11")),
    "X86": ("eax", ("ebx", "ecx", "edx", "esi", "edi", "ebp"), ()),
}

CALLEE_SAVED_REGISTERS = {
    "AMD64": ("rbx", "rbp", "r12", "r13", "r14", "r15"),
    "X86": ("ebx", "esi", "edi", "ebp"),
}


class ArchitectureInfo:
    """
    Architecture-specific information needed by code discovery.

    Discovery is parametric in exactly one ArchitectureInfo at a time. Instances are usually built from an
    archinfo.Arch with :meth:`from_archinfo`, but every field can be given explicitly so that analyses can be
    exercised against synthetic architectures.

    :ivar name:                 Name of the architecture.
    :ivar bits:                 Width of addresses, in bits.
    :ivar ip_reg:               Name of the instruction pointer register.
    :ivar sp_reg:               Name of the stack pointer register.
    :ivar stack_delta:          Bytes a call moves the stack pointer by when pushing the return address. A return is
                                recognized when the instruction pointer is loaded from `stack_delta` bytes below the
                                final stack pointer.
    :ivar jump_table_entry_size: Stride of jump table entries, in bytes.
    :ivar syscall_num_reg:      Register holding the syscall number.
    :ivar syscall_arg_regs:     Ordered registers carrying syscall arguments.
    :ivar syscall_clobbered_regs: Registers the kernel overwrites besides the result registers.
    :ivar callee_saved_regs:    Registers preserved across calls.
    :ivar register_widths:      Map from register name to width in bits.
    :ivar arch:                 The backing archinfo.Arch, if any.
    """

    __slots__ = (
        "name",
        "bits",
        "ip_reg",
        "sp_reg",
        "stack_delta",
        "jump_table_entry_size",
        "syscall_num_reg",
        "syscall_arg_regs",
        "syscall_clobbered_regs",
        "callee_saved_regs",
        "register_widths",
        "arch",
    )

    def __init__(
        self,
        name: str,
        bits: int,
        ip_reg: str,
        sp_reg: str,
        register_widths: dict[str, int],
        stack_delta: int | None = None,
        jump_table_entry_size: int | None = None,
        syscall_num_reg: str | None = None,
        syscall_arg_regs: tuple[str, ...] = (),
        syscall_clobbered_regs: tuple[str, ...] = (),
        callee_saved_regs: tuple[str, ...] = (),
        arch: archinfo.Arch | None = None,
    ):
        self.name = name
        self.bits = bits
        self.ip_reg = ip_reg
        self.sp_reg = sp_reg
        self.register_widths = dict(register_widths)
        self.stack_delta = stack_delta if stack_delta is not None else self.pointer_size
        self.jump_table_entry_size = jump_table_entry_size if jump_table_entry_size is not None else self.pointer_size
        self.syscall_num_reg = syscall_num_reg
        self.syscall_arg_regs = tuple(syscall_arg_regs)
        self.syscall_clobbered_regs = tuple(syscall_clobbered_regs)
        self.callee_saved_regs = tuple(callee_saved_regs)
        self.arch = arch

        for reg in (ip_reg, sp_reg, syscall_num_reg, *self.syscall_arg_regs, *self.callee_saved_regs):
            if reg is not None and reg not in self.register_widths:
                raise CfgReconError(f"Register {reg} is not described by architecture {name}")

    def __repr__(self):
        return f"<ArchitectureInfo {self.name} ({self.bits} bits)>"

    @classmethod
    def from_archinfo(cls, arch: archinfo.Arch | str, **overrides) -> ArchitectureInfo:
        """
        Build an ArchitectureInfo from an archinfo.Arch (or an architecture name understood by archinfo).

        :param arch:        The archinfo architecture.
        :param overrides:   Field values taking precedence over the ones derived from `arch`.
        """
        if isinstance(arch, str):
            arch = archinfo.arch_from_id(arch)

        widths = {name: size * arch.byte_width for name, (_, size) in arch.registers.items()}

        syscall_num_reg, syscall_arg_regs, clobbered = SYSCALL_REGISTERS.get(arch.name, (None, (), ()))
        if syscall_num_reg is None:
            l.warning("No syscall convention is known for %s. Syscalls will be classified as unknown.", arch.name)

        kwargs = {
            "name": arch.name,
            "bits": arch.bits,
            "ip_reg": arch.register_names[arch.ip_offset],
            "sp_reg": arch.register_names[arch.sp_offset],
            "register_widths": widths,
            "stack_delta": -arch.call_sp_fix if arch.call_pushes_ret else 0,
            "jump_table_entry_size": arch.bytes,
            "syscall_num_reg": syscall_num_reg,
            "syscall_arg_regs": syscall_arg_regs,
            "syscall_clobbered_regs": clobbered,
            "callee_saved_regs": CALLEE_SAVED_REGISTERS.get(arch.name, ()),
            "arch": arch,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    def copy(self, **overrides) -> ArchitectureInfo:
        kwargs = {k: getattr(self, k) for k in self.__slots__}
        kwargs.update(overrides)
        return ArchitectureInfo(**kwargs)

    @property
    def pointer_size(self) -> int:
        return self.bits // 8

    @property
    def addr_mask(self) -> int:
        return (1 << self.bits) - 1

    def register_width(self, reg: str) -> int:
        try:
            return self.register_widths[reg]
        except KeyError as err:
            raise CfgReconError(f"Unknown register {reg} on {self.name}") from err

    def check_addr_width(self, bits: int, what: str = "address"):
        if bits != self.bits:
            raise WidthMismatchError(self.bits, bits, what)
