"""Sparse direct backend using SuperLU."""

from dataclasses import dataclass
from typing import Any, Optional
import numpy as np
import scipy.sparse
import scipy.sparse.linalg
from numpy.typing import NDArray

from linsens.algebra.base import BaseBackend
from linsens.core.system import LinearSystem


@dataclass
class SparseFactors:
    """SuperLU object plus the block permutation it was computed under."""

    lu: Any
    row_perm: Optional[NDArray] = None
    col_perm: Optional[NDArray] = None


class SparseLUBackend(BaseBackend):
    """
    scipy.sparse.linalg.splu on CSC storage.

    With ``use_block_permutation`` the matrix is first permuted to block
    upper triangular form, P A Q, using the structural decomposition:
        A x = b   ->  (PAQ) y = P b,      x = Q y
        A^T x = b ->  (PAQ)^T z = Q^T b,  x = P^T z
    """

    name = "sparse_lu"

    def __init__(
        self,
        system: LinearSystem,
        reuse_factorization: bool = False,
        permc_spec: str = "COLAMD",
        use_block_permutation: bool = False,
    ):
        super().__init__(system, reuse_factorization)
        self.permc_spec = permc_spec
        self.use_block_permutation = use_block_permutation

    def _factorize(self, matrix: Any) -> SparseFactors:
        row_perm = col_perm = None
        if self.use_block_permutation:
            decomposition = self.system.decomposition
            row_perm = decomposition.row_perm
            col_perm = decomposition.col_perm
            matrix = matrix[row_perm][:, col_perm]
        lu = scipy.sparse.linalg.splu(
            scipy.sparse.csc_matrix(matrix), permc_spec=self.permc_spec
        )
        diag = np.abs(lu.U.diagonal())
        if np.any(diag == 0.0):
            raise RuntimeError("Factor is exactly singular")
        return SparseFactors(lu=lu, row_perm=row_perm, col_perm=col_perm)

    def _solve(self, factors: SparseFactors, rhs: NDArray, transpose: bool) -> NDArray:
        lu = factors.lu
        rhs = np.ascontiguousarray(rhs, dtype=float)
        if factors.row_perm is None:
            return lu.solve(rhs, trans="T" if transpose else "N")

        n = rhs.shape[0]
        if transpose:
            z = lu.solve(rhs[factors.col_perm], trans="T")
            x = np.empty_like(z)
            x[factors.row_perm] = z
            return x
        y = lu.solve(rhs[factors.row_perm], trans="N")
        x = np.empty((n, rhs.shape[1]))
        x[factors.col_perm] = y
        return x
