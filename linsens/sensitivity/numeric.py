"""
Numeric evaluation of X = A^{-1} B with forward and adjoint sensitivities.

Differentiating A X = B:
    Ȧ X + A Ẋ = Ḃ            ->  Ẋ = A^{-1} (Ḃ - Ȧ X)
    λ = A^{-T} X̄              ->  B̄ += λ,   Ā -= λ X^T  (on A's pattern)

and for the transposed system A^T X = B:
    Ẋ = A^{-T} (Ḃ - Ȧ^T X),   λ = A^{-1} X̄,   B̄ += λ,   Ā -= X λ^T

Every solve reuses the single factorization computed at the start of an
evaluation.
"""

from dataclasses import dataclass, field
import logging
from typing import Optional, Sequence
import numpy as np
from numpy.typing import NDArray

from linsens.algebra.protocols import SolverBackend
from linsens.core.errors import (
    FactorizationFailureError,
    ShapeError,
    UnsupportedDerivativeRequestError,
)
from linsens.core.system import LinearSystem

logger = logging.getLogger(__name__)


@dataclass
class ForwardSeed:
    """Tangent direction (Ḃ, Ȧ)."""

    B_dot: NDArray                  # (n, nrhs)
    A_dot: Optional[NDArray] = None # (nnz,) values over A's pattern, None = 0


@dataclass
class AdjointDirection:
    """
    Adjoint seed X̄ and the sensitivities it is propagated to.

    The seed is consumed (cleared) by the evaluation. With ``same_slot`` the
    seed slot itself receives the B-adjoint, overwriting it; otherwise the
    B-adjoint is accumulated into ``B_bar``.
    """

    X_bar: NDArray                  # (n, nrhs) seed
    A_bar: Optional[NDArray] = None # (nnz,) accumulated
    B_bar: Optional[NDArray] = None # (n, nrhs) accumulated
    same_slot: bool = False


@dataclass
class NumericResult:
    """Primal solution and sensitivities of one batched evaluation."""

    X: NDArray
    fwd_sens: list[NDArray] = field(default_factory=list)
    adj: list[AdjointDirection] = field(default_factory=list)


def evaluate_direct(
    backend: SolverBackend,
    system: LinearSystem,
    A: NDArray,
    B: NDArray,
    X: Optional[NDArray] = None,
    transpose: bool = False,
    nfwd: int = 0,
    nadj: int = 0,
) -> NDArray:
    """
    Non-differentiated solve.

    Directional derivatives cannot be requested here; they must go through
    evaluate_batched so that all directions share one factorization.
    """
    if nfwd != 0 or nadj != 0:
        raise UnsupportedDerivativeRequestError(nfwd, nadj)

    B = system.check_rhs(B)
    if X is None:
        X = np.empty(B.shape)
    elif X.shape != B.shape:
        raise ShapeError(f"X has shape {X.shape}, B has {B.shape}", shape=X.shape)

    _prepare(backend, A)
    if X is not B:
        X[...] = B
    backend.solve(X, X.shape[1], transpose)
    return X


def evaluate_batched(
    backend: SolverBackend,
    system: LinearSystem,
    A: NDArray,
    B: NDArray,
    fwd_seeds: Sequence[ForwardSeed] = (),
    adj_dirs: Sequence[AdjointDirection] = (),
    transpose: bool = False,
    X: Optional[NDArray] = None,
) -> NumericResult:
    """
    Primal solve plus all forward and adjoint sensitivities.

    Args:
        backend: Factorization backend bound to ``system``
        system: System descriptor
        A: (nnz,) values of A
        B: (n, nrhs) right-hand sides
        fwd_seeds: Tangent directions
        adj_dirs: Adjoint seeds and their sensitivity slots (updated in place)
        transpose: Solve A^T X = B instead of A X = B
        X: Optional output buffer; may be B itself

    Returns:
        NumericResult with X, one Ẋ per forward seed and the adjoint slots

    Raises:
        FactorizationFailureError: A could not be factorized; no sensitivity
            has been computed and no adjoint slot was modified
        ShapeError: a seed, slot or X does not match the system; raised
            before any buffer is written
        TypeError: an adjoint slot is not a writable floating-point array
    """
    pattern = system.sparsity
    B = system.check_rhs(B)
    nrhs = B.shape[1]
    logger.debug(
        "batched evaluation: n=%d nrhs=%d nfwd=%d nadj=%d transpose=%s",
        system.n, nrhs, len(fwd_seeds), len(adj_dirs), transpose,
    )

    # Validate every direction before touching any buffer
    for d, seed in enumerate(fwd_seeds):
        _check_same_shape(seed.B_dot, B.shape, f"fwd_seeds[{d}].B_dot")
        if seed.A_dot is not None:
            _check_same_shape(seed.A_dot, (system.nnz,), f"fwd_seeds[{d}].A_dot")
    for d, adj in enumerate(adj_dirs):
        _check_slot(adj.X_bar, B.shape, f"adj_dirs[{d}].X_bar")
        if adj.A_bar is not None:
            _check_slot(adj.A_bar, (system.nnz,), f"adj_dirs[{d}].A_bar")
        if adj.B_bar is not None and not adj.same_slot:
            _check_slot(adj.B_bar, B.shape, f"adj_dirs[{d}].B_bar")
    if X is not None:
        _check_same_shape(X, B.shape, "X")

    # Factorize once
    _prepare(backend, A)

    # Nondifferentiated output
    if X is None:
        X = np.empty(B.shape)
    if X is not B:
        X[...] = B
    backend.solve(X, nrhs, transpose)

    # Forward sensitivities
    fwd_sens: list[NDArray] = []
    for seed in fwd_seeds:
        rhs = np.negative(seed.B_dot, dtype=float)
        if seed.A_dot is not None:
            A_dot = pattern.to_scipy(seed.A_dot)
            if transpose:
                A_dot = A_dot.T
            rhs += A_dot @ X
        np.negative(rhs, out=rhs)
        backend.solve(rhs, nrhs, transpose)
        fwd_sens.append(rhs)

    # Adjoint sensitivities
    for adj in adj_dirs:
        # Solve transposed; lam holds -λ
        lam = np.negative(adj.X_bar, dtype=float)
        backend.solve(lam, nrhs, not transpose)

        # Propagate to A
        if adj.A_bar is None:
            adj.A_bar = np.zeros(system.nnz)
        if not transpose:
            adj.A_bar += pattern.project_product(lam, X)
        else:
            adj.A_bar += pattern.project_product(X, lam)

        # Propagate to B
        if adj.same_slot:
            np.negative(lam, out=adj.X_bar)
            adj.B_bar = adj.X_bar
        else:
            if adj.B_bar is None:
                adj.B_bar = np.zeros(B.shape)
            adj.B_bar -= lam
            adj.X_bar.fill(0.0)

    return NumericResult(X=X, fwd_sens=fwd_sens, adj=list(adj_dirs))


def _prepare(backend: SolverBackend, A: NDArray) -> None:
    if not backend.prepare(A):
        raise FactorizationFailureError(backend.name, backend.last_error)


def _check_same_shape(array: NDArray, shape: tuple[int, ...], name: str) -> None:
    if np.shape(array) != tuple(shape):
        raise ShapeError(
            f"{name} has shape {np.shape(array)}, expected {tuple(shape)}",
            shape=np.shape(array),
        )


def _check_slot(array: NDArray, shape: tuple[int, ...], name: str) -> None:
    """Adjoint slots are updated in place."""
    _check_same_shape(array, shape, name)
    if not isinstance(array, np.ndarray) or not np.issubdtype(array.dtype, np.floating):
        raise TypeError(f"{name} must be a floating-point ndarray")
    if not array.flags.writeable:
        raise TypeError(f"{name} is read-only")
