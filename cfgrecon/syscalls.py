from __future__ import annotations
import enum
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .architecture import ArchitectureInfo

l = logging.getLogger(name=__name__)


class SyscallArgType(enum.Enum):
    WORD = "word"
    VOID = "void"


class SyscallTypeInfo:
    """
    The name, return type and ordered argument types of one system call.
    """

    __slots__ = ("name", "return_type", "arg_types")

    def __init__(self, name: str, return_type: SyscallArgType, arg_types: tuple[SyscallArgType, ...]):
        self.name = name
        self.return_type = return_type
        self.arg_types = tuple(arg_types)

    def __repr__(self):
        return f"<SyscallTypeInfo {self.name}/{len(self.arg_types)}>"


class SyscallPersonality:
    """
    Maps syscall numbers of one OS/ABI to their types.

    :ivar name:             Name of the personality.
    :ivar type_info:        Map from syscall number to SyscallTypeInfo.
    :ivar result_registers: Registers the kernel writes results to.
    """

    __slots__ = ("name", "type_info", "result_registers")

    def __init__(self, name: str, type_info: dict[int, SyscallTypeInfo], result_registers: tuple[str, ...]):
        self.name = name
        self.type_info = dict(type_info)
        self.result_registers = tuple(result_registers)

    def __repr__(self):
        return f"<SyscallPersonality {self.name} ({len(self.type_info)} syscalls)>"

    def lookup(self, number: int) -> SyscallTypeInfo | None:
        return self.type_info.get(number)


def _table(entries) -> dict[int, SyscallTypeInfo]:
    table = {}
    for number, name, nargs, *rest in entries:
        ret = rest[0] if rest else SyscallArgType.WORD
        table[number] = SyscallTypeInfo(name, ret, (SyscallArgType.WORD,) * nargs)
    return table


VOID = SyscallArgType.VOID

LINUX_AMD64 = SyscallPersonality(
    "linux",
    _table(
        [
            (0, "read", 3),
            (1, "write", 3),
            (2, "open", 3),
            (3, "close", 1),
            (4, "stat", 2),
            (5, "fstat", 2),
            (6, "lstat", 2),
            (7, "poll", 3),
            (8, "lseek", 3),
            (9, "mmap", 6),
            (10, "mprotect", 3),
            (11, "munmap", 2),
            (12, "brk", 1),
            (13, "rt_sigaction", 4),
            (14, "rt_sigprocmask", 4),
            (15, "rt_sigreturn", 0),
            (16, "ioctl", 3),
            (17, "pread64", 4),
            (18, "pwrite64", 4),
            (19, "readv", 3),
            (20, "writev", 3),
            (21, "access", 2),
            (22, "pipe", 1),
            (23, "select", 5),
            (24, "sched_yield", 0),
            (25, "mremap", 5),
            (26, "msync", 3),
            (27, "mincore", 3),
            (28, "madvise", 3),
            (32, "dup", 1),
            (33, "dup2", 2),
            (34, "pause", 0),
            (35, "nanosleep", 2),
            (37, "alarm", 1),
            (39, "getpid", 0),
            (41, "socket", 3),
            (42, "connect", 3),
            (43, "accept", 3),
            (44, "sendto", 6),
            (45, "recvfrom", 6),
            (49, "bind", 3),
            (50, "listen", 2),
            (56, "clone", 5),
            (57, "fork", 0),
            (58, "vfork", 0),
            (59, "execve", 3),
            (60, "exit", 1, VOID),
            (61, "wait4", 4),
            (62, "kill", 2),
            (63, "uname", 1),
            (72, "fcntl", 3),
            (74, "fsync", 1),
            (77, "ftruncate", 2),
            (78, "getdents", 3),
            (79, "getcwd", 2),
            (80, "chdir", 1),
            (82, "rename", 2),
            (83, "mkdir", 2),
            (84, "rmdir", 1),
            (87, "unlink", 1),
            (89, "readlink", 3),
            (96, "gettimeofday", 2),
            (97, "getrlimit", 2),
            (102, "getuid", 0),
            (104, "getgid", 0),
            (107, "geteuid", 0),
            (108, "getegid", 0),
            (110, "getppid", 0),
            (158, "arch_prctl", 2),
            (186, "gettid", 0),
            (200, "tkill", 2),
            (201, "time", 1),
            (202, "futex", 6),
            (218, "set_tid_address", 1),
            (228, "clock_gettime", 2),
            (231, "exit_group", 1, VOID),
            (234, "tgkill", 3),
            (257, "openat", 4),
            (262, "newfstatat", 4),
            (273, "set_robust_list", 2),
            (302, "prlimit64", 4),
            (318, "getrandom", 3),
        ]
    ),
    ("rax",),
)

PERSONALITIES = {
    "AMD64": LINUX_AMD64,
}


def personality_for(arch_info: ArchitectureInfo) -> SyscallPersonality:
    """
    Return the Linux syscall personality of an architecture. Architectures without a table get an empty personality,
    so that all of their syscalls are classified as unknown.
    """
    try:
        return PERSONALITIES[arch_info.name]
    except KeyError:
        l.warning("No syscall table is known for %s.", arch_info.name)
        return SyscallPersonality("linux", {}, (arch_info.syscall_num_reg,) if arch_info.syscall_num_reg else ())
