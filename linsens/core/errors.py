"""Exceptions raised by the linear solve primitive."""

from typing import Optional


class LinearSolverError(Exception):
    """Base class for every failure surfaced by linsens."""


class ShapeError(LinearSolverError, ValueError):
    """Sparsity pattern (or a buffer) does not have the required shape."""

    def __init__(self, message: str, shape: Optional[tuple[int, ...]] = None):
        super().__init__(message)
        self.shape = shape


class StructuralSingularityError(LinearSolverError):
    """Structural rank of the pattern is below its dimension."""

    def __init__(self, rank: int, required: int):
        super().__init__(
            "the matrix is structurally rank-deficient. "
            f"sprank(A)={rank} (instead of {required})"
        )
        self.rank = rank
        self.required = required


# Short name used by callers that only care about structural failures
StructuralError = StructuralSingularityError


class UnsupportedDerivativeRequestError(LinearSolverError):
    """Directional derivatives were requested through the direct path."""

    def __init__(self, nfwd: int, nadj: int):
        super().__init__(
            "Directional derivatives are not supported by the direct "
            f"evaluation path (got nfwd={nfwd}, nadj={nadj}). "
            "Use the batched sensitivity entry point instead."
        )
        self.nfwd = nfwd
        self.nadj = nadj


class FactorizationFailureError(LinearSolverError):
    """The backend failed to factorize the current matrix values."""

    def __init__(self, backend: str, reason: Optional[str] = None):
        message = f"Preparation failed for backend '{backend}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.backend = backend
        self.reason = reason


class PreconditionViolationError(LinearSolverError, RuntimeError):
    """solve() was called without a successful prepare()."""


class ConvergenceError(LinearSolverError, RuntimeError):
    """An iterative solve stopped before reaching its tolerance."""

    def __init__(self, backend: str, column: int, info: int):
        super().__init__(
            f"{backend}: right-hand side {column} did not converge (info={info})"
        )
        self.backend = backend
        self.column = column
        self.info = info
