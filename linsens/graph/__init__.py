"""Matrix expression graph used for symbolic differentiation."""

from linsens.graph.expressions import (
    MX,
    SolveProvider,
    symbol,
    zeros,
    constant,
    is_zero,
    add,
    sub,
    neg,
    transpose,
    mul,
    horzcat,
    horzsplit,
    solve,
)
from linsens.graph.evaluation import evaluate, count_ops, symbols

__all__ = [
    "MX",
    "SolveProvider",
    "symbol",
    "zeros",
    "constant",
    "is_zero",
    "add",
    "sub",
    "neg",
    "transpose",
    "mul",
    "horzcat",
    "horzsplit",
    "solve",
    "evaluate",
    "count_ops",
    "symbols",
]
