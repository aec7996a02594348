"""LinearSolver: one solver instance per distinct sparsity pattern."""

import logging
from typing import Any, Optional, Sequence, Union
import numpy as np
import scipy.sparse
from numpy.typing import NDArray

from linsens.algebra.factory import create_backend
from linsens.algebra.protocols import SolverBackend
from linsens.core.errors import ShapeError
from linsens.core.options import BackendKind, SolverOptions
from linsens.core.pattern import SparsityPattern
from linsens.core.system import LinearSystem, as_pattern
from linsens.graph import expressions as mx
from linsens.graph.expressions import MX
from linsens.sensitivity.numeric import (
    AdjointDirection,
    ForwardSeed,
    NumericResult,
    evaluate_batched,
    evaluate_direct,
)
from linsens.sensitivity.symbolic import (
    SymbolicAdjoint,
    SymbolicForwardSeed,
    SymbolicResult,
    evaluate_symbolic,
)
from linsens.sparsity.bitmask import BitMask
from linsens.sparsity.propagation import propagate_forward, propagate_reverse

logger = logging.getLogger(__name__)


class LinearSolver:
    """
    Differentiable solve of A X = B (or A^T X = B) over a fixed pattern.

    Provides the primal solve, batched numeric and symbolic sensitivities,
    and structural dependency propagation.
    """

    def __init__(
        self,
        sparsity: Any,
        nrhs: int = 1,
        options: Optional[SolverOptions] = None,
        backend: Union[SolverBackend, BackendKind, str, None] = None,
        **overrides: Any,
    ):
        """
        Initialize the solver.

        Args:
            sparsity: SparsityPattern, dense mask or scipy sparse matrix of A
            nrhs: Number of right-hand sides (columns of B)
            options: Solver options (defaults if not provided)
            backend: Backend kind (BackendKind or its name), or a prebuilt
                backend bound to the same pattern
            **overrides: Individual options, e.g. ``backend="sparse_lu"``

        Raises:
            ShapeError: Pattern not square
            StructuralSingularityError: Pattern structurally rank-deficient
            ValueError: Prebuilt backend is bound to a different pattern
        """
        if isinstance(backend, (str, BackendKind)):
            overrides["backend"] = backend
            backend = None
        self.options = (options or SolverOptions()).with_overrides(**overrides)
        self.system = LinearSystem(as_pattern(sparsity), nrhs)
        bound = getattr(backend, "system", None)
        if bound is not None and bound.sparsity != self.system.sparsity:
            raise ValueError(
                f"backend is bound to a {bound.sparsity.dim_string} pattern that "
                f"differs from the solver's {self.system.sparsity.dim_string} pattern"
            )
        self._buffers = self.system.allocate()
        self.backend = backend if backend is not None else create_backend(
            self.system, self.options
        )

        logger.info(
            "linear solver: %s, nrhs=%d, backend=%s, %d structural block(s)",
            self.system.sparsity.dim_string,
            nrhs,
            self.backend.name,
            self.system.decomposition.nblocks,
        )

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------

    @property
    def sparsity(self) -> SparsityPattern:
        return self.system.sparsity

    @property
    def n(self) -> int:
        return self.system.n

    @property
    def nrhs(self) -> int:
        return self.system.nrhs

    @property
    def A(self) -> NDArray:
        """Nonzero values of A (read-only view)."""
        return _readonly(self._buffers.A)

    @property
    def B(self) -> NDArray:
        return _readonly(self._buffers.B)

    @property
    def X(self) -> NDArray:
        return _readonly(self._buffers.X)

    @property
    def prepared(self) -> bool:
        return self.backend.prepared

    @property
    def prepare_count(self) -> int:
        """Number of prepare() calls made on the backend."""
        return getattr(self.backend, "prepare_count", 0)

    def set_a(self, A: Any) -> None:
        """Write A (nonzero values, dense matrix or scipy sparse); forces refactorization."""
        self._buffers.A[...] = self.coerce_values(A)
        self.backend.invalidate()

    def set_b(self, B: Any) -> None:
        B = np.asarray(B, dtype=float)
        if B.ndim == 1:
            B = B.reshape(-1, 1)
        if B.shape != self.system.rhs_shape:
            raise ShapeError(
                f"B must have shape {self.system.rhs_shape}, got {B.shape}",
                shape=B.shape,
            )
        self._buffers.B[...] = B

    def coerce_values(self, A: Any) -> NDArray:
        """Nonzero values of A on the pattern from any supported representation."""
        pattern = self.system.sparsity
        if scipy.sparse.issparse(A):
            A = A.toarray()
        A = np.asarray(A, dtype=float)
        if A.shape == (pattern.nnz,):
            return A.copy()
        if A.shape != pattern.shape:
            raise ShapeError(
                f"A must have {pattern.nnz} nonzeros or shape {pattern.shape}, "
                f"got {A.shape}",
                shape=A.shape,
            )
        outside = A[~pattern.to_mask()]
        if np.any(outside != 0):
            raise ValueError("A has nonzero entries outside the sparsity pattern")
        return pattern.project(A)

    # ------------------------------------------------------------------
    # Numeric evaluation
    # ------------------------------------------------------------------

    def evaluate(self, nfwd: int = 0, nadj: int = 0, transpose: bool = False) -> NDArray:
        """
        Solve with the stored A and B into X.

        Raises:
            UnsupportedDerivativeRequestError: nfwd or nadj is non-zero
            FactorizationFailureError: A could not be factorized
        """
        evaluate_direct(
            self.backend,
            self.system,
            self._buffers.A,
            self._buffers.B,
            X=self._buffers.X,
            transpose=transpose,
            nfwd=nfwd,
            nadj=nadj,
        )
        return self.X

    def solve_numeric(self, A: Any, B: Any, transpose: bool = False) -> NDArray:
        """Solve for given A and B without touching the stored buffers."""
        values = self.coerce_values(A)
        B = self.system.check_rhs(np.asarray(B, dtype=float))
        X = np.empty(B.shape)
        return evaluate_direct(
            self.backend, self.system, values, B, X=X, transpose=transpose
        )

    def evaluate_batched(
        self,
        fwd_seeds: Sequence[ForwardSeed] = (),
        adj_dirs: Sequence[AdjointDirection] = (),
        transpose: bool = False,
        A: Any = None,
        B: Any = None,
    ) -> NumericResult:
        """
        Primal solve plus sensitivities sharing one factorization.

        Uses the stored A and B unless given; the primal solution is also
        stored in X.
        """
        values = self._buffers.A if A is None else self.coerce_values(A)
        if B is None:
            B = self._buffers.B
            X = self._buffers.X
        else:
            B = self.system.check_rhs(np.asarray(B, dtype=float))
            X = None
        result = evaluate_batched(
            self.backend,
            self.system,
            values,
            B,
            fwd_seeds=fwd_seeds,
            adj_dirs=adj_dirs,
            transpose=transpose,
            X=X,
        )
        if X is not None:
            result.X = self.X
        return result

    # ------------------------------------------------------------------
    # Symbolic evaluation
    # ------------------------------------------------------------------

    def symbol_a(self, name: str = "A") -> MX:
        """Symbol of A with the solver's pattern."""
        return mx.symbol(name, self.system.sparsity.shape, self.system.sparsity)

    def symbol_b(self, name: str = "B", ncol: Optional[int] = None) -> MX:
        return mx.symbol(name, (self.n, self.nrhs if ncol is None else ncol))

    def solve_mx(self, A: MX, B: MX, transpose: bool = False) -> MX:
        """Solve node bound to this solver."""
        return mx.solve(A, B, transpose, self)

    def evaluate_symbolic(
        self,
        A: MX,
        B: MX,
        fwd_seeds: Sequence[SymbolicForwardSeed] = (),
        adj_dirs: Sequence[SymbolicAdjoint] = (),
        transpose: bool = False,
        X: Optional[MX] = None,
    ) -> SymbolicResult:
        """Expression graph of the solve and its sensitivities."""
        if A.shape != self.system.sparsity.shape:
            raise ShapeError(
                f"A has shape {A.shape}, expected {self.system.sparsity.shape}",
                shape=A.shape,
            )
        if np.any(A.sparsity & ~self.system.sparsity.to_mask()):
            raise ValueError("A has structural nonzeros outside the solver's pattern")
        return evaluate_symbolic(
            self, A, B, fwd_seeds, adj_dirs, transpose=transpose, X=X
        )

    # ------------------------------------------------------------------
    # Structural analysis
    # ------------------------------------------------------------------

    def propagate_sparsity(
        self,
        A_dep: BitMask,
        B_dep: BitMask,
        X_dep: Optional[BitMask] = None,
        fwd: bool = True,
        transpose: bool = False,
    ) -> Optional[BitMask]:
        """
        Dependency pass with the configured propagation mode.

        Forward returns the marks of X. Reverse consumes ``X_dep`` and
        updates ``A_dep`` and ``B_dep`` in place.
        """
        mode = self.options.propagation
        if fwd:
            return propagate_forward(self.system, A_dep, B_dep, transpose, mode)
        if X_dep is None:
            raise ValueError("reverse propagation needs X_dep")
        propagate_reverse(self.system, X_dep, A_dep, B_dep, transpose, mode)
        return None


def _readonly(array: NDArray) -> NDArray:
    view = array.view()
    view.setflags(write=False)
    return view
