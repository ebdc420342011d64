from __future__ import annotations


class CfgReconError(Exception):
    pass


class CfgReconValueError(CfgReconError, ValueError):
    pass


class WidthMismatchError(CfgReconValueError):
    """
    Raised when two values that must share a bit width do not.
    """

    def __init__(self, expected: int, actual: int, what: str = "value"):
        super().__init__(f"Expected a {expected}-bit {what}, got {actual} bits")
        self.expected = expected
        self.actual = actual


class OptionError(CfgReconError, KeyError):
    pass


class CfgReconLoaderError(CfgReconError):
    pass


class MemoryAccessError(CfgReconError):
    """
    Raised when reading an address that is unmapped or lacks the required permission.
    """

    def __init__(self, addr: int, msg: str | None = None):
        super().__init__(msg if msg is not None else f"Cannot read memory at {addr:#x}")
        self.addr = addr


#
# Lifting
#


class DecodeError(CfgReconError):
    """
    The bytes at an address cannot be decoded. Discovery treats this as non-fatal.
    """

    def __init__(self, addr: int, msg: str | None = None):
        super().__init__(msg if msg is not None else f"Cannot decode instruction at {addr:#x}")
        self.addr = addr


#
# Discovery errors. These signal violated internal assumptions and abort discovery.
#


class DiscoveryError(CfgReconError):
    pass


class DiscoveryInvariantError(DiscoveryError):
    pass


class ClassificationError(DiscoveryError):
    pass


class UnsupportedSyscallArgError(DiscoveryError):
    pass
