"""Forward and adjoint sensitivities of the linear solve."""

from linsens.sensitivity.numeric import (
    ForwardSeed,
    AdjointDirection,
    NumericResult,
    evaluate_direct,
    evaluate_batched,
)
from linsens.sensitivity.symbolic import (
    SymbolicForwardSeed,
    SymbolicAdjoint,
    SymbolicResult,
    evaluate_symbolic,
)

__all__ = [
    "ForwardSeed",
    "AdjointDirection",
    "NumericResult",
    "evaluate_direct",
    "evaluate_batched",
    "SymbolicForwardSeed",
    "SymbolicAdjoint",
    "SymbolicResult",
    "evaluate_symbolic",
]
