from .discovery_options import DiscoveryOptions
from .parsed_term import (
    ParsedTerm,
    ParsedCall,
    ParsedJump,
    ParsedLookupTable,
    ParsedReturn,
    ParsedBranch,
    ParsedSyscall,
)
from .call_return import identify_call, identify_return, is_code_addr_write_to
from .jump_table import identify_jump_table, JumpTableMatch
from .syscall import classify_syscall
from .classify import classify_block, CLASSIFICATION_RULES
from .discovery import CodeDiscovery, discover
from .callgraph import build_call_graph, function_blocks, function_graph, block_evaluator
from .gaps import Gap, find_gaps, is_interesting_code
from .sanity import TerminatorIssue, check_terminators
