from __future__ import annotations
import logging
import os
from pathlib import Path

import cle

from .analyses import discover
from .architecture import ArchitectureInfo
from .errors import CfgReconLoaderError
from .knowledge import DiscoveryInfo
from .memory import Memory

l = logging.getLogger(name=__name__)


class Project:
    """
    A statically linked executable loaded for code discovery.

    :param thing:       The path to the executable, or a cle Loader object.
    :param load_style:  "sections" to build the memory image from allocated sections, "segments" to build it from
                        program segments.
    :param load_options: Extra options passed to cle.Loader.

    :ivar loader:       The cle loader.
    :ivar arch_info:    The architecture of the main object.
    :ivar memory:       The memory image of the main object.
    :ivar entry:        The entry point of the main object.
    :ivar symbol_names: Map from function address to name, from the symbol table if there is one.
    """

    def __init__(self, thing, load_style: str = "sections", load_options: dict | None = None, **kwargs):
        if load_options is None:
            load_options = {}
        load_options.update(kwargs)

        if isinstance(thing, cle.Loader):
            if load_options:
                l.debug("Ignoring loader options for a completed cle.Loader object.")
            self.loader = thing
            self.filename = self.loader.main_object.binary
        elif not isinstance(thing, (str, Path)) or not os.path.isfile(thing):
            raise CfgReconLoaderError(f"Not a valid binary file: {thing!r}")
        elif os.path.getsize(thing) == 0:
            raise CfgReconLoaderError(f"Empty file: {thing}")
        else:
            l.info("Loading binary %s", thing)
            self.filename = str(thing)
            load_options.setdefault("auto_load_libs", False)
            try:
                self.loader = cle.Loader(self.filename, **load_options)
            except (cle.CLEError, ValueError) as ex:
                # some backends reject unreadable input with a ValueError
                raise CfgReconLoaderError(f"Failed to load {self.filename}: {ex}") from ex

        obj = self.loader.main_object
        if getattr(obj, "deps", None):
            raise CfgReconLoaderError(
                "Dynamically linked executables are not supported (depends on %s)." % ", ".join(obj.deps)
            )
        if getattr(obj, "pic", False):
            raise CfgReconLoaderError("Position-independent executables are not supported.")

        self.arch_info = ArchitectureInfo.from_archinfo(obj.arch)
        self.memory = Memory.from_cle(self.loader, load_style=load_style)
        self.entry = obj.entry
        self.symbol_names = {
            sym.rebased_addr: sym.name for sym in obj.symbols if sym.is_function and sym.name and sym.rebased_addr
        }

    def __repr__(self):
        return f"<Project {self.filename}>"

    def discover(self, entry_points=None, seed_symbols: bool = False, **options) -> DiscoveryInfo:
        """
        Run code discovery.

        :param entry_points:    Function entries to start from. Defaults to the entry point of the executable.
        :param seed_symbols:    Also start from every function symbol.
        :param options:         Values of DiscoveryOptions.
        """
        entries = [self.entry] if entry_points is None else list(entry_points)
        if seed_symbols:
            entries.extend(sorted(self.symbol_names))
        return discover(self.memory, self.arch_info, entries, symbol_names=self.symbol_names, **options)
