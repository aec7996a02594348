"""Solver backend protocol."""

from typing import Protocol, Optional, runtime_checkable
from numpy.typing import NDArray


@runtime_checkable
class SolverBackend(Protocol):
    """
    Protocol for factorization kernels.
    Allows swapping between dense, sparse and custom factorizations.
    """

    name: str
    last_error: Optional[str]

    @property
    def prepared(self) -> bool:
        """True while a valid factorization is cached."""
        ...

    def prepare(self, values: NDArray) -> bool:
        """
        Factorize A from its nonzero values.

        Args:
            values: Nonzeros of A, in the order of the system's pattern

        Returns:
            True on success. Failures are reported, never raised.
        """
        ...

    def solve(self, buffer: NDArray, nrhs: int, transpose: bool = False) -> None:
        """
        Overwrite ``buffer`` with the solution of A x = b (or A^T x = b).

        Args:
            buffer: (n, nrhs) right-hand sides, one per column
            nrhs: Number of right-hand sides in buffer
            transpose: Solve with A^T instead of A
        """
        ...

    def invalidate(self) -> None:
        """Mark A as changed; the next solve needs a new prepare()."""
        ...
