"""Linear system descriptor and its structural validation."""

from dataclasses import dataclass, field
from typing import Any
import numpy as np
from numpy.typing import NDArray

from linsens.core.errors import ShapeError, StructuralSingularityError
from linsens.core.pattern import SparsityPattern
from linsens.core.structure import BlockDecomposition, dulmage_mendelsohn


@dataclass
class SystemBuffers:
    """Numeric storage for one solver instance."""

    A: NDArray  # (nnz,) values over the pattern
    B: NDArray  # (n, nrhs) right-hand sides, one per column
    X: NDArray  # (n, nrhs) solution, same shape as B


@dataclass(frozen=True)
class LinearSystem:
    """
    Shape/sparsity contract of ``A X = B``.

    Construction fails unless the pattern is square and structurally
    nonsingular. No numeric buffer exists before validation succeeds.
    """

    sparsity: SparsityPattern
    nrhs: int = 1
    decomposition: BlockDecomposition = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        sparsity = self.sparsity
        if sparsity is None:
            raise ShapeError("sparsity pattern must not be None")
        if not isinstance(sparsity, SparsityPattern):
            sparsity = as_pattern(sparsity)
            object.__setattr__(self, "sparsity", sparsity)

        if not sparsity.is_square:
            raise ShapeError(
                "the matrix must be square but got " + sparsity.dim_string,
                shape=sparsity.shape,
            )
        if self.nrhs < 1:
            raise ShapeError(
                f"nrhs must be at least 1, got {self.nrhs}",
                shape=(sparsity.nrow, self.nrhs),
            )

        decomposition = dulmage_mendelsohn(sparsity)
        if decomposition.structural_rank < sparsity.nrow:
            raise StructuralSingularityError(
                decomposition.structural_rank, sparsity.nrow
            )
        object.__setattr__(self, "decomposition", decomposition)

    @property
    def n(self) -> int:
        """System dimension."""
        return self.sparsity.nrow

    @property
    def nnz(self) -> int:
        return self.sparsity.nnz

    @property
    def rhs_shape(self) -> tuple[int, int]:
        return (self.n, self.nrhs)

    def allocate(self) -> SystemBuffers:
        """Zero-initialized A, B and X."""
        return SystemBuffers(
            A=np.zeros(self.nnz),
            B=np.zeros(self.rhs_shape),
            X=np.zeros(self.rhs_shape),
        )

    def check_rhs(self, buffer: NDArray, name: str = "B") -> NDArray:
        """Validate a right-hand-side shaped buffer (any number of columns)."""
        buffer = np.asarray(buffer)
        if buffer.ndim == 1:
            buffer = buffer.reshape(-1, 1)
        if buffer.ndim != 2 or buffer.shape[0] != self.n:
            raise ShapeError(
                f"{name} must have {self.n} rows, got shape {buffer.shape}",
                shape=buffer.shape,
            )
        return buffer


def as_pattern(obj: Any) -> SparsityPattern:
    """Coerce a dense mask or scipy sparse matrix to a SparsityPattern."""
    if isinstance(obj, SparsityPattern):
        return obj
    if hasattr(obj, "tocsr"):
        return SparsityPattern.from_scipy(obj)
    return SparsityPattern.from_dense(obj)
