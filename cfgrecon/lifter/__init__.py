from .base import Disassembler
from .vex import VEXDisassembler
