"""Base backend implementing the prepare/solve state machine."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import Any, Optional
import numpy as np
from numpy.typing import NDArray

from linsens.core.errors import PreconditionViolationError, ShapeError
from linsens.core.system import LinearSystem

logger = logging.getLogger(__name__)


@dataclass
class FactorizationCache:
    """Factorization kept between prepare() and solve()."""

    factors: Any
    values_hash: Optional[int] = None


class BaseBackend(ABC):
    """
    Wraps a factorization kernel behind prepare() / solve().

    Unprepared --prepare ok--> Prepared
    Prepared --prepare failure--> Unprepared
    Prepared --invalidate()--> Unprepared
    """

    name = "base"

    def __init__(self, system: LinearSystem, reuse_factorization: bool = False):
        self.system = system
        self.reuse_factorization = reuse_factorization
        self.last_error: Optional[str] = None
        self.factorization_count = 0
        self.prepare_count = 0
        self._cache: Optional[FactorizationCache] = None
        self._prepared = False

    @property
    def prepared(self) -> bool:
        return self._prepared

    def invalidate(self) -> None:
        """Mark A as changed; the next solve needs a new prepare()."""
        self._prepared = False

    def prepare(self, values: NDArray) -> bool:
        """Factorize A; returns False (with last_error set) on failure."""
        self.prepare_count += 1
        values = np.asarray(values, dtype=float)
        if values.shape != (self.system.nnz,):
            self._fail(
                f"expected {self.system.nnz} nonzero values, got shape {values.shape}"
            )
            return False

        values_hash = hash(values.tobytes()) if self.reuse_factorization else None
        if (
            values_hash is not None
            and self._cache is not None
            and self._cache.values_hash == values_hash
        ):
            logger.debug("%s: values unchanged, reusing factorization", self.name)
            self._prepared = True
            self.last_error = None
            return True

        self._cache = None
        self._prepared = False
        if not np.all(np.isfinite(values)):
            self._fail("matrix contains non-finite values")
            return False

        try:
            factors = self._factorize(self.system.sparsity.to_scipy(values))
        except (np.linalg.LinAlgError, RuntimeError, ValueError) as exc:
            self._fail(str(exc))
            return False

        self._cache = FactorizationCache(factors=factors, values_hash=values_hash)
        self._prepared = True
        self.factorization_count += 1
        self.last_error = None
        logger.debug(
            "%s: factorized %s", self.name, self.system.sparsity.dim_string
        )
        return True

    def solve(self, buffer: NDArray, nrhs: int, transpose: bool = False) -> None:
        """Overwrite buffer (n, nrhs) with the solution, using the cached factors."""
        if not self._prepared or self._cache is None:
            raise PreconditionViolationError(
                f"{self.name}: solve() called before a successful prepare()"
            )
        if buffer.shape != (self.system.n, nrhs):
            raise ShapeError(
                f"{self.name}: expected buffer of shape {(self.system.n, nrhs)}, "
                f"got {buffer.shape}",
                shape=buffer.shape,
            )
        if nrhs == 0:
            return
        buffer[...] = self._solve(self._cache.factors, buffer, transpose)

    def _fail(self, reason: str) -> None:
        self._cache = None
        self._prepared = False
        self.last_error = reason
        logger.warning("%s: preparation failed: %s", self.name, reason)

    @abstractmethod
    def _factorize(self, matrix: Any) -> Any:
        """
        Factorize A.

        Args:
            matrix: A as a scipy CSR matrix

        Returns:
            Factorization object (implementation-specific)

        Raises:
            LinAlgError, RuntimeError or ValueError when A cannot be factorized
        """
        ...

    @abstractmethod
    def _solve(self, factors: Any, rhs: NDArray, transpose: bool) -> NDArray:
        """Solve with precomputed factors; returns a new (n, nrhs) array."""
        ...
