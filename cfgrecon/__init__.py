# pylint: disable=wrong-import-position
from __future__ import annotations

__version__ = "0.1.0"

from .utils.formatting import setup_terminal

setup_terminal()
del setup_terminal

# let's set up some bootstrap logging
import logging

logging.getLogger("cfgrecon").addHandler(logging.NullHandler())
from .misc.loggers import Loggers

loggers = Loggers()
del Loggers
del logging

from .errors import (
    CfgReconError,
    CfgReconValueError,
    WidthMismatchError,
    OptionError,
    CfgReconLoaderError,
    MemoryAccessError,
    DecodeError,
    DiscoveryError,
    DiscoveryInvariantError,
    ClassificationError,
    UnsupportedSyscallArgError,
)
from .architecture import ArchitectureInfo
from .memory import Memory, MemorySegment, Permission
from .syscalls import SyscallPersonality, personality_for
from .knowledge import DiscoveryInfo, FrontierReason, BlockRegion
from .analyses import (
    DiscoveryOptions,
    CodeDiscovery,
    discover,
    classify_block,
    build_call_graph,
    function_graph,
    find_gaps,
    check_terminators,
)
from .project import Project
