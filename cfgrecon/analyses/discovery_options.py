from __future__ import annotations

from ..errors import CfgReconValueError, OptionError


class DiscoveryOptions:
    """
    Stores the options of code discovery, as well as the detailed explanation of those options.

    Suppose `do` is the DiscoveryOptions object, and there is an option called `max_block_size`, you can access it by
    `do.max_block_size` and set its value via `do.max_block_size = 200`.

    :ivar dict OPTIONS:         All options with their types and default values.
    :ivar dict ARCH_DEFAULTS:   Default values that differ per architecture.
    :ivar dict _options:        Values of all options.
    """

    # option name: (option value type, default option value)

    OPTIONS = {
        # Maximum number of bytes disassembled from one start address
        "max_block_size": (int, 400),
        # Maximum number of elements of a finite set in the abstract domain before it becomes top
        "max_set_size": (int, 5),
        # Number of joins into the state of one address before widening is used instead
        "widen_after": (int, 4),
        # Order in which frontier addresses are popped, "ascending" or "descending"
        "frontier_order": (str, "ascending"),
        # Whether the address after a tail call is a candidate function entry
        "explore_tail_call_fallthrough": (bool, True),
        # Whether code pointers written to memory are candidate function entries
        "explore_written_code_pointers": (bool, True),
        # Whether code pointers found in writable or read-only data are candidate function entries
        "scan_data_for_code_pointers": (bool, False),
        # Whether concrete non-code addresses read by blocks are recorded in the global data map
        "record_data_references": (bool, True),
        # Optimization level passed to pyvex
        "vex_opt_level": (int, 1),
    }

    ARCH_DEFAULTS = {
        "X86": {
            "max_block_size": 300,
        },
    }

    _CHOICES = {
        "frontier_order": ("ascending", "descending"),
        "vex_opt_level": (0, 1, 2),
    }

    _options = {}

    def __init__(self, arch_name: str | None = None, **options):
        """
        :param arch_name:   Name of the architecture, used to pick architecture-specific defaults.
        :param options:     Option values overriding the defaults.
        """
        self._options = {k: default for k, (_, default) in self.OPTIONS.items()}
        if arch_name in self.ARCH_DEFAULTS:
            self._options.update(self.ARCH_DEFAULTS[arch_name])

        # make sure options are valid
        for k in options:
            if k not in self.OPTIONS:
                raise OptionError(f'Unsupported discovery option "{k}".')

        for k, v in options.items():
            self.__setattr__(k, v)

    def __repr__(self):
        return "<DiscoveryOptions " + ", ".join(f"{k}={v!r}" for k, v in self._options.items()) + ">"

    def __getattr__(self, option_name):
        if option_name in self._options:
            return self._options[option_name]

        return self.__getattribute__(option_name)

    def __setattr__(self, option_name, option_value):
        if option_name in self._options:
            # Type checking
            sort = self.OPTIONS[option_name][0]
            if not isinstance(option_value, sort) or (sort is int and isinstance(option_value, bool)):
                raise CfgReconValueError(f'Value for option "{option_name}" must be of type {sort.__name__}')
            if option_name in self._CHOICES and option_value not in self._CHOICES[option_name]:
                raise CfgReconValueError(
                    f'Value for option "{option_name}" must be one of {", ".join(map(str, self._CHOICES[option_name]))}'
                )
            if sort is int and option_name != "vex_opt_level" and option_value < 1:
                raise CfgReconValueError(f'Value for option "{option_name}" must be positive')
            self._options[option_name] = option_value

        elif option_name == "_options":
            super().__setattr__(option_name, option_value)

        else:
            raise OptionError(f'Unsupported discovery option "{option_name}".')

    @property
    def descending(self) -> bool:
        return self.frontier_order == "descending"
