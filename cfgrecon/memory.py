from __future__ import annotations
import enum
import logging
from typing import TYPE_CHECKING
from collections.abc import Iterator

from sortedcontainers import SortedDict

from .errors import CfgReconValueError, MemoryAccessError

if TYPE_CHECKING:
    import cle

l = logging.getLogger(name=__name__)


class Permission(enum.Flag):
    """
    Permissions of a byte in the memory image.
    """

    NONE = 0
    READ = 1
    WRITE = 2
    EXEC = 4

    def __str__(self):
        return "".join(
            c if self & p else "-" for c, p in (("r", Permission.READ), ("w", Permission.WRITE), ("x", Permission.EXEC))
        )


class MemorySegment:
    """
    A contiguous run of bytes sharing one set of permissions.
    """

    __slots__ = ("start", "data", "permissions", "name")

    def __init__(self, start: int, data: bytes, permissions: Permission, name: str | None = None):
        self.start = start
        self.data = bytes(data)
        self.permissions = permissions
        self.name = name

    def __repr__(self):
        name = f" {self.name}" if self.name else ""
        return f"<MemorySegment{name} [{self.start:#x}-{self.end:#x}) {self.permissions}>"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def end(self) -> int:
        return self.start + len(self.data)

    def contains(self, addr: int) -> bool:
        return self.start <= addr < self.end


class Memory:
    """
    An immutable, byte-addressable view of a loaded executable.

    Segments are kept in a SortedDict keyed by their start address, so that finding the segment of an address is a
    floor query.
    """

    def __init__(self, bits: int = 64, segments: list[MemorySegment] | None = None):
        self.bits = bits
        self._segments: SortedDict = SortedDict()
        if segments:
            for seg in segments:
                self._add(seg)

    def __repr__(self):
        return f"<Memory with {len(self._segments)} segments>"

    def __contains__(self, addr: int) -> bool:
        return self.find_segment(addr) is not None

    #
    # Construction
    #

    def _add(self, seg: MemorySegment):
        if seg.size == 0:
            return
        prev = self.find_segment(seg.start)
        if prev is not None:
            raise CfgReconValueError(f"Segment {seg!r} overlaps {prev!r}")
        try:
            next_start = next(self._segments.irange(minimum=seg.start))
        except StopIteration:
            next_start = None
        if next_start is not None and next_start < seg.end:
            raise CfgReconValueError(f"Segment {seg!r} overlaps {self._segments[next_start]!r}")
        self._segments[seg.start] = seg

    def add_segment(self, start: int, data: bytes, permissions: Permission, name: str | None = None) -> MemorySegment:
        """
        Map `data` at `start`. Only meant to be used while building the image.
        """
        seg = MemorySegment(start, data, permissions, name=name)
        self._add(seg)
        return seg

    @classmethod
    def from_cle(cls, loader: cle.Loader, load_style: str = "sections") -> Memory:
        """
        Build the memory image of the main object of a cle loader.

        :param loader:      The cle loader.
        :param load_style:  "sections" to map allocated sections (the default), or "segments" to map program segments.
        """
        obj = loader.main_object
        mem = cls(bits=obj.arch.bits)

        if load_style == "sections" and obj.sections:
            regions = [sec for sec in obj.sections if sec.occupies_memory and sec.memsize > 0]
        elif load_style in ("sections", "segments"):
            regions = [seg for seg in obj.segments if seg.memsize > 0]
        else:
            raise CfgReconValueError(f'Unsupported load style "{load_style}"')

        for region in regions:
            perms = Permission.NONE
            if getattr(region, "is_readable", True):
                perms |= Permission.READ
            if region.is_writable:
                perms |= Permission.WRITE
            if region.is_executable:
                perms |= Permission.EXEC

            try:
                data = loader.memory.load(region.vaddr, region.memsize)
            except KeyError:
                l.debug("Region at %#x has no backing bytes. Mapping zeros.", region.vaddr)
                data = b"\x00" * region.memsize
            data = bytes(data).ljust(region.memsize, b"\x00")

            try:
                mem.add_segment(region.vaddr, data, perms, name=getattr(region, "name", None))
            except CfgReconValueError:
                # e.g. .tbss shares its addresses with the sections following it
                l.debug("Skipping overlapping region %r.", region)

        return mem

    #
    # Queries
    #

    @property
    def segments(self) -> list[MemorySegment]:
        return list(self._segments.values())

    def executable_segments(self) -> Iterator[MemorySegment]:
        for seg in self._segments.values():
            if seg.permissions & Permission.EXEC:
                yield seg

    def find_segment(self, addr: int) -> MemorySegment | None:
        try:
            start = next(self._segments.irange(maximum=addr, reverse=True))
        except StopIteration:
            return None
        seg = self._segments[start]
        return seg if seg.contains(addr) else None

    def permissions(self, addr: int) -> Permission:
        seg = self.find_segment(addr)
        return Permission.NONE if seg is None else seg.permissions

    def is_code_addr(self, addr: int) -> bool:
        """
        Whether `addr` lies in an executable segment, i.e. may be a branch target.
        """
        return bool(self.permissions(addr) & Permission.EXEC)

    def is_readonly_addr(self, addr: int) -> bool:
        perms = self.permissions(addr)
        return bool(perms & Permission.READ) and not perms & Permission.WRITE

    def load(self, addr: int, size: int, required: Permission = Permission.READ) -> bytes:
        """
        Read `size` bytes starting at `addr`. The bytes must lie in a single segment carrying `required`.

        :raises MemoryAccessError: If any byte is unmapped or lacks the permission.
        """
        seg = self.find_segment(addr)
        if seg is None:
            raise MemoryAccessError(addr)
        if required & seg.permissions != required:
            raise MemoryAccessError(addr, f"Memory at {addr:#x} is not {required}")
        if addr + size > seg.end:
            raise MemoryAccessError(addr, f"Reading {size} bytes at {addr:#x} runs past the end of {seg!r}")
        off = addr - seg.start
        return seg.data[off : off + size]

    def load_up_to(self, addr: int, max_size: int, required: Permission = Permission.READ) -> bytes:
        """
        Read at most `max_size` bytes starting at `addr`, stopping at the end of the segment.
        """
        seg = self.find_segment(addr)
        if seg is None or required & seg.permissions != required:
            raise MemoryAccessError(addr)
        off = addr - seg.start
        return seg.data[off : off + max_size]

    def read_word(self, addr: int, size: int | None = None, required: Permission = Permission.READ) -> int:
        """
        Read a little-endian word. `size` defaults to the pointer size.
        """
        if size is None:
            size = self.bits // 8
        return int.from_bytes(self.load(addr, size, required=required), "little")
