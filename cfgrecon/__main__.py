from __future__ import annotations

import argparse
import logging

import cfgrecon
from cfgrecon.analyses import build_call_graph, check_terminators, classify_block, find_gaps
from cfgrecon.errors import MemoryAccessError
from cfgrecon.utils.formatting import fmt_addr


log = logging.getLogger(__name__)


def _load(args) -> cfgrecon.Project:
    return cfgrecon.Project(args.binary, load_style=args.load_style)


def _discover(args, proj: cfgrecon.Project):
    options = {}
    if args.frontier_order is not None:
        options["frontier_order"] = args.frontier_order
    return proj.discover(seed_symbols=args.seed_symbols, **options)


def _function_header(info, addr: int) -> str:
    name = info.symbol_names.get(addr)
    if name is None:
        return f"function {addr:#x}"
    return f"function {addr:#x} <{name}>"


def cfg(args, show_abs_state: bool = False):
    """
    Print the discovered regions with their classified terminators.
    """
    proj = _load(args)
    info = _discover(args, proj)

    for addr, region in info.regions():
        if addr in info.function_entries:
            print(_function_header(info, addr))
        print(f"  region {addr:#x}..{fmt_addr(region.end)}")
        if show_abs_state and addr in info.abs_state:
            state = info.abs_state[addr]
            print(f"    regs:  {state.pp_regs()}")
            print(f"    stack: {state.pp_stack()}")
        for block in region:
            if args.verbose:
                for line in block.pp().splitlines():
                    print("    " + line)
            print(f"    {block.label!r}: {classify_block(block, info)!r}")

    failures = info.decode_failures()
    if failures:
        print("decode failures: " + ", ".join(f"{addr:#x}" for addr in failures))

    for issue in check_terminators(info):
        print(str(issue))


def ai(args):
    """
    Print the discovered regions with the abstract state at the start of each.
    """
    cfg(args, show_abs_state=True)


def gaps(args):
    """
    Print the address ranges between discovered regions that hold code.
    """
    proj = _load(args)
    info = _discover(args, proj)
    for gap in find_gaps(info, interesting_only=not args.all):
        print(repr(gap))


def callgraph(args):
    """
    Print the call graph.
    """
    proj = _load(args)
    info = _discover(args, proj)
    graph = build_call_graph(info)
    for src, dst, data in sorted(graph.edges(data=True)):
        print(f"{src:#x} -> {dst:#x} [{data['type']}]")


def disassemble(args):
    """
    Disassemble the discovered regions.
    """
    proj = _load(args)
    info = _discover(args, proj)
    cs = proj.arch_info.arch.capstone

    for addr, region in info.regions():
        if addr in info.function_entries:
            print(_function_header(info, addr))
        try:
            data = info.memory.load(addr, region.end - addr)
        except MemoryAccessError as ex:
            log.error("Cannot read region %#x: %s", addr, ex)
            continue
        for insn in cs.disasm(data, addr):
            print(f"  {insn.address:#x}:\t{insn.mnemonic}\t{insn.op_str}")


def main():
    parser = argparse.ArgumentParser(description="Discover the control flow of statically linked executables.")
    parser.add_argument("binary", help="The path to the executable to analyze.")
    load_group = parser.add_mutually_exclusive_group()
    load_group.add_argument(
        "--load-sections",
        help="Build the memory image from the allocated sections of the executable (default).",
        dest="load_style",
        action="store_const",
        const="sections",
    )
    load_group.add_argument(
        "--load-segments",
        help="Build the memory image from the program segments of the executable.",
        dest="load_style",
        action="store_const",
        const="segments",
    )
    parser.set_defaults(load_style="sections")
    parser.add_argument(
        "--seed-symbols",
        help="Start discovery from every function symbol in addition to the entry point.",
        action="store_true",
        default=False,
    )
    parser.add_argument(
        "--frontier-order",
        help="The order in which the frontiers are processed.",
        choices=("ascending", "descending"),
        default=None,
    )
    parser.add_argument("-v", "--verbose", help="Print the statements of every block.", action="store_true")
    parser.add_argument("--debug", help="Enable debug logging.", action="store_true")
    subparsers = parser.add_subparsers(metavar="command", required=True)

    cfg_cmd_parser = subparsers.add_parser("cfg", help=cfg.__doc__)
    cfg_cmd_parser.set_defaults(func=cfg)

    ai_cmd_parser = subparsers.add_parser("ai", help=ai.__doc__)
    ai_cmd_parser.set_defaults(func=ai)

    gaps_cmd_parser = subparsers.add_parser("gaps", help=gaps.__doc__)
    gaps_cmd_parser.set_defaults(func=gaps)
    gaps_cmd_parser.add_argument("--all", help="Also print gaps that only hold padding.", action="store_true")

    callgraph_cmd_parser = subparsers.add_parser("callgraph", aliases=["cg"], help=callgraph.__doc__)
    callgraph_cmd_parser.set_defaults(func=callgraph)

    disassemble_cmd_parser = subparsers.add_parser("disassemble", aliases=["dis"], help=disassemble.__doc__)
    disassemble_cmd_parser.set_defaults(func=disassemble)

    args = parser.parse_args()
    if args.debug:
        cfgrecon.loggers.set_level(logging.DEBUG)
    args.func(args)


if __name__ == "__main__":
    main()
