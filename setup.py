# pylint: disable=missing-class-docstring
from __future__ import annotations

from setuptools import find_packages, setup


setup(
    name="cfgrecon",
    version="0.1.0",
    description="Control flow discovery for statically linked machine code",
    python_requires=">=3.10",
    packages=find_packages(include=["cfgrecon", "cfgrecon.*"]),
    install_requires=[
        "archinfo",
        "capstone",
        "cle",
        "networkx",
        "pyvex",
        "sortedcontainers",
        'colorama; sys_platform=="win32"',
    ],
    extras_require={
        "testing": ["pytest"],
    },
    entry_points={
        "console_scripts": ["cfgrecon = cfgrecon.__main__:main"],
    },
)
