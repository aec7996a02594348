"""Dense backends using SciPy."""

from typing import Any, Tuple
import warnings
import numpy as np
import scipy.linalg
from numpy.typing import NDArray

from linsens.algebra.base import BaseBackend
from linsens.core.system import LinearSystem


class DenseLUBackend(BaseBackend):
    """LU with partial pivoting on the densified matrix."""

    name = "dense_lu"

    def _factorize(self, matrix: Any) -> Tuple[NDArray, NDArray]:
        """
        Compute LU factorization using scipy.

        Returns:
            (lu, piv) tuple from scipy.linalg.lu_factor
        """
        # Singular input is reported through the zero pivot check below
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", scipy.linalg.LinAlgWarning)
            lu, piv = scipy.linalg.lu_factor(matrix.toarray(), check_finite=False)
        diag = np.abs(np.diag(lu))
        if np.any(diag == 0.0):
            k = int(np.flatnonzero(diag == 0.0)[0])
            raise np.linalg.LinAlgError(
                f"matrix is numerically singular (U[{k},{k}] == 0)"
            )
        return lu, piv

    def _solve(
        self,
        factors: Tuple[NDArray, NDArray],
        rhs: NDArray,
        transpose: bool,
    ) -> NDArray:
        """trans=0 for Ax=b, trans=1 for A^T x=b."""
        return scipy.linalg.lu_solve(
            factors, rhs, trans=1 if transpose else 0, check_finite=False
        )


class DenseQRBackend(BaseBackend):
    """
    Householder QR, A = QR.

    A x = b   ->  x = R^{-1} Q^T b
    A^T x = b ->  x = Q R^{-T} b
    """

    name = "dense_qr"

    def __init__(
        self,
        system: LinearSystem,
        reuse_factorization: bool = False,
        rcond: float = 1e-14,
    ):
        super().__init__(system, reuse_factorization)
        self.rcond = rcond

    def _factorize(self, matrix: Any) -> Tuple[NDArray, NDArray]:
        Q, R = scipy.linalg.qr(matrix.toarray(), check_finite=False)
        diag = np.abs(np.diag(R))
        if diag.size and diag.min() <= self.rcond * diag.max():
            raise np.linalg.LinAlgError(
                f"matrix is numerically singular (min |R_ii| = {diag.min():.3e})"
            )
        return Q, R

    def _solve(
        self,
        factors: Tuple[NDArray, NDArray],
        rhs: NDArray,
        transpose: bool,
    ) -> NDArray:
        Q, R = factors
        if transpose:
            y = scipy.linalg.solve_triangular(R, rhs, trans="T", check_finite=False)
            return Q @ y
        return scipy.linalg.solve_triangular(R, Q.T @ rhs, check_finite=False)
