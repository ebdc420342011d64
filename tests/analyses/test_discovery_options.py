#!/usr/bin/env python3
# pylint: disable=missing-class-docstring,no-self-use
from __future__ import annotations

__package__ = __package__ or "tests.analyses"  # pylint:disable=redefined-builtin

import unittest

from cfgrecon.analyses import DiscoveryOptions
from cfgrecon.errors import CfgReconValueError, OptionError


class TestDiscoveryOptions(unittest.TestCase):
    def test_defaults(self):
        o = DiscoveryOptions("AMD64")
        assert o.max_block_size == 400
        assert o.max_set_size == 5
        assert o.widen_after == 4
        assert o.frontier_order == "ascending"
        assert not o.descending
        assert o.explore_tail_call_fallthrough is True
        assert o.scan_data_for_code_pointers is False
        assert o.vex_opt_level == 1

    def test_arch_defaults(self):
        assert DiscoveryOptions("X86").max_block_size == 300
        assert DiscoveryOptions("X86", max_block_size=100).max_block_size == 100

    def test_set(self):
        o = DiscoveryOptions(frontier_order="descending")
        assert o.descending
        o.widen_after = 10
        assert o.widen_after == 10

    def test_unknown_option(self):
        with self.assertRaises(OptionError):
            DiscoveryOptions(no_such_option=1)
        o = DiscoveryOptions()
        with self.assertRaises(KeyError):
            o.no_such_option = 1

    def test_type_checks(self):
        with self.assertRaises(CfgReconValueError):
            DiscoveryOptions(max_block_size="400")
        with self.assertRaises(CfgReconValueError):
            DiscoveryOptions(max_block_size=True)
        with self.assertRaises(CfgReconValueError):
            DiscoveryOptions(explore_tail_call_fallthrough=1)

    def test_value_checks(self):
        with self.assertRaises(ValueError):
            DiscoveryOptions(frontier_order="random")
        with self.assertRaises(CfgReconValueError):
            DiscoveryOptions(vex_opt_level=3)
        with self.assertRaises(CfgReconValueError):
            DiscoveryOptions(max_set_size=0)
        assert DiscoveryOptions(vex_opt_level=0).vex_opt_level == 0


if __name__ == "__main__":
    unittest.main()
