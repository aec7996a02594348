"""Iterative backend: ILU-preconditioned GMRES."""

from dataclasses import dataclass
from typing import Any, Optional
import numpy as np
import scipy.sparse
import scipy.sparse.linalg
from numpy.typing import NDArray

from linsens.algebra.base import BaseBackend
from linsens.core.errors import ConvergenceError
from linsens.core.system import LinearSystem


@dataclass
class IterativeFactors:
    """Matrix kept for the Krylov iterations plus its incomplete LU."""

    matrix: scipy.sparse.csc_matrix
    ilu: Any


class IterativeBackend(BaseBackend):
    """
    GMRES preconditioned with scipy.sparse.linalg.spilu.

    prepare() computes the incomplete factorization; solve() runs GMRES for
    every right-hand side. The transposed system reuses the same ILU through
    its transposed solve.
    """

    name = "iterative_gmres"

    def __init__(
        self,
        system: LinearSystem,
        reuse_factorization: bool = False,
        tol: float = 1e-10,
        maxiter: Optional[int] = None,
        drop_tol: float = 1e-4,
        fill_factor: float = 10.0,
        restart: Optional[int] = None,
    ):
        super().__init__(system, reuse_factorization)
        self.tol = tol
        self.maxiter = maxiter
        self.drop_tol = drop_tol
        self.fill_factor = fill_factor
        self.restart = restart

    def _factorize(self, matrix: Any) -> IterativeFactors:
        matrix = scipy.sparse.csc_matrix(matrix)
        ilu = scipy.sparse.linalg.spilu(
            matrix, drop_tol=self.drop_tol, fill_factor=self.fill_factor
        )
        return IterativeFactors(matrix=matrix, ilu=ilu)

    def _solve(
        self, factors: IterativeFactors, rhs: NDArray, transpose: bool
    ) -> NDArray:
        n = self.system.n
        op = factors.matrix.T if transpose else factors.matrix
        trans = "T" if transpose else "N"
        M = scipy.sparse.linalg.LinearOperator(
            (n, n), matvec=lambda v: factors.ilu.solve(v, trans=trans)
        )

        out = np.empty((n, rhs.shape[1]))
        for j in range(rhs.shape[1]):
            x, info = scipy.sparse.linalg.gmres(
                op,
                rhs[:, j],
                M=M,
                rtol=self.tol,
                atol=0.0,
                restart=self.restart or min(n, 50),
                maxiter=self.maxiter,
            )
            if info != 0:
                raise ConvergenceError(self.name, j, info)
            out[:, j] = x
        return out
