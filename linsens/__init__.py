"""
linsens: differentiable, sparsity-aware linear solves.

Treats X = A^{-1} B (or A^{-T} B) as a primitive with:
- Structural validation (square, structurally nonsingular)
- Pluggable factorization backends behind prepare() / solve()
- Batched forward and adjoint sensitivities sharing one factorization
- Symbolic sensitivities emitted as expression graphs
- Structural dependency propagation on bit masks
"""

import logging

__version__ = "0.1.0"

from linsens.core.errors import (
    LinearSolverError,
    ShapeError,
    StructuralSingularityError,
    StructuralError,
    UnsupportedDerivativeRequestError,
    FactorizationFailureError,
    PreconditionViolationError,
    ConvergenceError,
)
from linsens.core.options import BackendKind, PropagationMode, SolverOptions
from linsens.core.pattern import SparsityPattern
from linsens.core.system import LinearSystem
from linsens.sensitivity.numeric import ForwardSeed, AdjointDirection
from linsens.sensitivity.symbolic import SymbolicForwardSeed, SymbolicAdjoint
from linsens.sparsity.bitmask import BitMask
from linsens.interface import LinearSolver

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "LinearSolverError",
    "ShapeError",
    "StructuralSingularityError",
    "StructuralError",
    "UnsupportedDerivativeRequestError",
    "FactorizationFailureError",
    "PreconditionViolationError",
    "ConvergenceError",
    "BackendKind",
    "PropagationMode",
    "SolverOptions",
    "SparsityPattern",
    "LinearSystem",
    "ForwardSeed",
    "AdjointDirection",
    "SymbolicForwardSeed",
    "SymbolicAdjoint",
    "BitMask",
    "LinearSolver",
]
