"""Compressed-row sparsity patterns."""

from dataclasses import dataclass
from functools import cached_property
from typing import Any, Sequence
import numpy as np
import scipy.sparse
from numpy.typing import NDArray


@dataclass(frozen=True, eq=False)
class SparsityPattern:
    """
    Structural nonzeros of a matrix in CSR form.

    Column indices are sorted within each row. Numeric values living on a
    pattern are flat vectors of length ``nnz`` in this order.
    """

    nrow: int
    ncol: int
    indptr: NDArray   # (nrow + 1,) row offsets
    indices: NDArray  # (nnz,) column of each nonzero

    def __post_init__(self) -> None:
        indptr = np.asarray(self.indptr, dtype=np.int64)
        indices = np.asarray(self.indices, dtype=np.int64)
        if indptr.shape != (self.nrow + 1,):
            raise ValueError(
                f"indptr must have length {self.nrow + 1}, got {indptr.shape}"
            )
        if indices.size != indptr[-1]:
            raise ValueError("indices length does not match indptr[-1]")
        if indices.size and (indices.min() < 0 or indices.max() >= self.ncol):
            raise ValueError("column index out of range")
        indptr.setflags(write=False)
        indices.setflags(write=False)
        object.__setattr__(self, "indptr", indptr)
        object.__setattr__(self, "indices", indices)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_dense(cls, mask: Any) -> "SparsityPattern":
        """Pattern of the nonzero (or True) entries of a 2D array."""
        mask = np.asarray(mask)
        if mask.ndim != 2:
            raise ValueError(f"expected a 2D array, got ndim={mask.ndim}")
        return cls.from_scipy(scipy.sparse.csr_matrix(mask != 0))

    @classmethod
    def from_triplets(
        cls,
        nrow: int,
        ncol: int,
        rows: Sequence[int],
        cols: Sequence[int],
    ) -> "SparsityPattern":
        """Pattern from (row, col) coordinates; duplicates are merged."""
        rows = np.asarray(rows, dtype=np.int64)
        cols = np.asarray(cols, dtype=np.int64)
        ones = np.ones(rows.size, dtype=np.int8)
        coo = scipy.sparse.coo_matrix((ones, (rows, cols)), shape=(nrow, ncol))
        return cls.from_scipy(coo)

    @classmethod
    def from_scipy(cls, matrix: Any) -> "SparsityPattern":
        """Pattern of a scipy sparse matrix (explicit zeros are kept)."""
        csr = scipy.sparse.csr_matrix(matrix, copy=True)
        csr.sum_duplicates()
        csr.sort_indices()
        return cls(
            nrow=csr.shape[0],
            ncol=csr.shape[1],
            indptr=csr.indptr,
            indices=csr.indices,
        )

    @classmethod
    def dense(cls, nrow: int, ncol: int) -> "SparsityPattern":
        """Fully populated pattern."""
        return cls.from_dense(np.ones((nrow, ncol), dtype=bool))

    @classmethod
    def empty(cls, nrow: int, ncol: int) -> "SparsityPattern":
        """Pattern without any nonzero."""
        return cls(nrow, ncol, np.zeros(nrow + 1), np.zeros(0))

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def shape(self) -> tuple[int, int]:
        return (self.nrow, self.ncol)

    @property
    def nnz(self) -> int:
        return int(self.indptr[-1])

    @property
    def is_square(self) -> bool:
        return self.nrow == self.ncol

    @property
    def dim_string(self) -> str:
        """Human readable dimensions, e.g. ``3-by-3 (7/9 nz)``."""
        return f"{self.nrow}-by-{self.ncol} ({self.nnz}/{self.nrow * self.ncol} nz)"

    @cached_property
    def rows(self) -> NDArray:
        """Row index of every nonzero."""
        return np.repeat(np.arange(self.nrow), np.diff(self.indptr))

    def to_mask(self) -> NDArray:
        """Dense boolean mask of the structural nonzeros."""
        mask = np.zeros(self.shape, dtype=bool)
        mask[self.rows, self.indices] = True
        return mask

    def to_scipy(self, values: Any = None) -> scipy.sparse.csr_matrix:
        """CSR matrix over this pattern, carrying ``values`` (ones if None)."""
        if values is None:
            values = np.ones(self.nnz)
        values = self._check_values(values)
        return scipy.sparse.csr_matrix(
            (values, self.indices.copy(), self.indptr.copy()), shape=self.shape
        )

    def to_dense(self, values: Any) -> NDArray:
        """Dense matrix carrying ``values`` on the pattern."""
        values = self._check_values(values)
        out = np.zeros(self.shape, dtype=values.dtype)
        out[self.rows, self.indices] = values
        return out

    def project(self, dense: NDArray) -> NDArray:
        """Entries of ``dense`` lying on the pattern, in nonzero order."""
        dense = np.asarray(dense)
        if dense.shape != self.shape:
            raise ValueError(
                f"cannot project a {dense.shape} matrix onto {self.dim_string}"
            )
        return dense[self.rows, self.indices]

    def project_product(self, left: NDArray, right: NDArray) -> NDArray:
        """
        Nonzero values of ``left @ right.T`` restricted to the pattern.

        Only the entries on the pattern are formed, so the dense n x n
        product is never allocated.

        Args:
            left: (nrow, k)
            right: (ncol, k)
        """
        left = np.asarray(left)
        right = np.asarray(right)
        if left.shape[0] != self.nrow or right.shape[0] != self.ncol:
            raise ValueError(
                f"operands {left.shape} and {right.shape} do not match "
                + self.dim_string
            )
        return np.einsum("kr,kr->k", left[self.rows], right[self.indices])

    def transpose(self) -> tuple["SparsityPattern", NDArray]:
        """
        Transposed pattern.

        Returns:
            pattern_t: Pattern of the transpose
            mapping: ``mapping[k]`` is the nonzero of this pattern holding
                the k-th nonzero of the transpose
        """
        order = np.lexsort((self.rows, self.indices))
        counts = np.bincount(self.indices, minlength=self.ncol)
        indptr = np.concatenate([[0], np.cumsum(counts)])
        pattern_t = SparsityPattern(
            nrow=self.ncol,
            ncol=self.nrow,
            indptr=indptr,
            indices=self.rows[order],
        )
        return pattern_t, order

    def _check_values(self, values: Any) -> NDArray:
        values = np.asarray(values)
        if values.shape != (self.nnz,):
            raise ValueError(
                f"expected {self.nnz} nonzero values for {self.dim_string}, "
                f"got shape {values.shape}"
            )
        return values

    # Structural identity, so solvers can be keyed per distinct pattern
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SparsityPattern):
            return NotImplemented
        return (
            self.shape == other.shape
            and np.array_equal(self.indptr, other.indptr)
            and np.array_equal(self.indices, other.indices)
        )

    def __hash__(self) -> int:
        return hash((self.shape, self.indptr.tobytes(), self.indices.tobytes()))

    def __repr__(self) -> str:
        return f"SparsityPattern({self.dim_string})"
