"""Core abstractions: patterns, structure, system descriptor, options."""

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
from linsens.core.pattern import SparsityPattern
from linsens.core.structure import (
    BlockDecomposition,
    dulmage_mendelsohn,
    structural_rank,
    is_structurally_singular,
)
from linsens.core.system import LinearSystem, SystemBuffers, as_pattern
from linsens.core.options import BackendKind, PropagationMode, SolverOptions

__all__ = [
    "LinearSolverError",
    "ShapeError",
    "StructuralSingularityError",
    "StructuralError",
    "UnsupportedDerivativeRequestError",
    "FactorizationFailureError",
    "PreconditionViolationError",
    "ConvergenceError",
    "SparsityPattern",
    "BlockDecomposition",
    "dulmage_mendelsohn",
    "structural_rank",
    "is_structurally_singular",
    "LinearSystem",
    "SystemBuffers",
    "as_pattern",
    "BackendKind",
    "PropagationMode",
    "SolverOptions",
]
