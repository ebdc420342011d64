from __future__ import annotations
import sys


def detect_test_env():
    """
    Walk up the call stack looking for a test runner. Discovery logging stays quiet under one.
    """
    i = 0
    while True:
        i += 1
        try:
            frame_module = sys._getframe(i).f_globals.get("__name__")
        except ValueError:
            return False

        if frame_module in ("__main__", "__console__"):
            return False
        if frame_module is not None and frame_module.startswith(("_pytest.", "pytest", "unittest.")):
            return True


is_testing = detect_test_env()
