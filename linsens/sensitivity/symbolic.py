"""
Symbolic sensitivities of X = A^{-1} B as expression graphs.

Same mathematics as the numeric engine, but every solve is a graph node.
All non-zero forward directions are stacked into one right-hand side and
solved by a single node; the adjoint directions likewise share one node
solved against the transposed system.
"""

from dataclasses import dataclass, field
import logging
from typing import Optional, Sequence

from linsens.graph import expressions as mx
from linsens.graph.expressions import MX, SolveProvider

logger = logging.getLogger(__name__)


@dataclass
class SymbolicForwardSeed:
    """Tangent direction (Ḃ, Ȧ) as expressions."""

    B_dot: MX
    A_dot: Optional[MX] = None


@dataclass
class SymbolicAdjoint:
    """
    Graph slots of one adjoint direction.

    ``X_bar`` is consumed: after evaluation it holds a zero expression,
    unless ``same_slot`` is set, in which case the seed slot is the B-adjoint
    slot and holds the B-adjoint.
    """

    X_bar: MX
    A_bar: Optional[MX] = None
    B_bar: Optional[MX] = None
    same_slot: bool = False


@dataclass
class SymbolicResult:
    X: MX
    fwd_sens: list[MX] = field(default_factory=list)
    adj: list[SymbolicAdjoint] = field(default_factory=list)


def evaluate_symbolic(
    solver: SolveProvider,
    A: MX,
    B: MX,
    fwd_seeds: Sequence[SymbolicForwardSeed] = (),
    adj_dirs: Sequence[SymbolicAdjoint] = (),
    transpose: bool = False,
    X: Optional[MX] = None,
) -> SymbolicResult:
    """
    Build the primal solve and its sensitivities.

    Args:
        solver: Evaluates the emitted solve nodes
        A: (n, n) coefficient expression
        B: (n, nrhs) right-hand side expression
        fwd_seeds: Tangent directions
        adj_dirs: Adjoint slots, updated in place
        transpose: Build A^{-T} B instead of A^{-1} B
        X: Already known primal output; skips building it

    Returns:
        SymbolicResult with X, one Ẋ per forward seed and the adjoint slots
    """
    # Nondifferentiated output
    if X is None:
        if mx.is_zero(B):
            X = mx.zeros(B.shape)
        else:
            X = mx.solve(A, B, transpose, solver)

    # Forward sensitivities, collect the right hand sides
    fwd_sens: list[Optional[MX]] = [None] * len(fwd_seeds)
    rhs: list[MX] = []
    rhs_ind: list[int] = []
    offsets = [0]
    for d, seed in enumerate(fwd_seeds):
        rhs_d = seed.B_dot
        if seed.A_dot is not None:
            A_dot = mx.transpose(seed.A_dot) if transpose else seed.A_dot
            rhs_d = rhs_d - mx.mul(A_dot, X)

        if mx.is_zero(rhs_d):
            fwd_sens[d] = mx.zeros(rhs_d.shape)
        else:
            rhs.append(rhs_d)
            rhs_ind.append(d)
            offsets.append(offsets[-1] + rhs_d.shape[1])

    nfwd_solved = len(rhs)
    if rhs:
        # Solve for all directions at once
        parts = mx.horzsplit(mx.solve(A, mx.horzcat(rhs), transpose, solver), offsets)
        for d, part in zip(rhs_ind, parts):
            fwd_sens[d] = part

    # Adjoint sensitivities, collect right hand sides
    rhs, rhs_ind, offsets = [], [], [0]
    for d, adj in enumerate(adj_dirs):
        X_bar = adj.X_bar
        if mx.is_zero(X_bar):
            adj.X_bar = mx.zeros(X_bar.shape)
            if adj.same_slot:
                adj.B_bar = adj.X_bar
        else:
            rhs.append(X_bar)
            rhs_ind.append(d)
            offsets.append(offsets[-1] + X_bar.shape[1])
            # Delete seed
            adj.X_bar = mx.zeros(X_bar.shape)

    if rhs:
        # Solve for all directions at once
        parts = mx.horzsplit(
            mx.solve(A, mx.horzcat(rhs), not transpose, solver), offsets
        )
        for d, lam in zip(rhs_ind, parts):
            adj = adj_dirs[d]

            # Propagate to A
            if adj.A_bar is None:
                adj.A_bar = mx.zeros(A.shape)
            if not transpose:
                adj.A_bar = adj.A_bar - mx.mul(lam, mx.transpose(X), A.sparsity)
            else:
                adj.A_bar = adj.A_bar - mx.mul(X, mx.transpose(lam), A.sparsity)

            # Propagate to B
            if adj.same_slot:
                adj.B_bar = lam
                adj.X_bar = lam
            elif adj.B_bar is None:
                adj.B_bar = lam
            else:
                adj.B_bar = adj.B_bar + lam

    logger.debug(
        "symbolic evaluation: %d/%d forward and %d/%d adjoint directions need a solve",
        nfwd_solved,
        len(fwd_seeds),
        len(rhs),
        len(adj_dirs),
    )
    return SymbolicResult(X=X, fwd_sens=fwd_sens, adj=list(adj_dirs))
