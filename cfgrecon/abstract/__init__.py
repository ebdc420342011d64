from .values import (
    AbsValue,
    TopValue,
    FinSet,
    StackOffset,
    ReturnAddr,
    top,
    const,
    is_top,
    as_concrete_singleton,
    join,
    leq,
    widen,
    abs_add,
    abs_sub,
    abs_mul,
    abs_and,
    abs_resize,
)
from .state import AbsBlockState
from .transfer import AbsBlockEvaluator
