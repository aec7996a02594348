"""Solver configuration."""

from dataclasses import dataclass, fields, replace
from enum import Enum, auto
from typing import Any, Mapping, Optional


class BackendKind(Enum):
    """Factorization kernel behind the solver."""
    DENSE_LU = auto()   # scipy.linalg LU with partial pivoting
    DENSE_QR = auto()   # scipy.linalg Householder QR
    SPARSE_LU = auto()  # SuperLU through scipy.sparse.linalg.splu
    ITERATIVE_GMRES = auto()  # GMRES with an incomplete LU preconditioner


class PropagationMode(Enum):
    """Structural dependency propagation algorithm."""
    BROADCAST = auto()  # single pass, every X depends on all of A
    PRECISE = auto()    # fixed point through the sparsity graph, <= n rounds


@dataclass(frozen=True)
class SolverOptions:
    """Options fixed when a solver instance is constructed."""

    backend: BackendKind = BackendKind.DENSE_LU
    propagation: PropagationMode = PropagationMode.BROADCAST

    # Skip refactorization when A's values are bitwise unchanged
    reuse_factorization: bool = False

    # Sparse backend
    permc_spec: str = "COLAMD"
    use_block_permutation: bool = False

    # Dense QR: |R_ii| <= rcond * max|R_jj| is treated as singular
    rcond: float = 1e-14

    # Iterative backend
    tol: float = 1e-10
    maxiter: Optional[int] = None
    drop_tol: float = 1e-4
    fill_factor: float = 10.0
    restart: Optional[int] = None  # Krylov dimension per cycle, min(n, 50) if None

    def __post_init__(self) -> None:
        object.__setattr__(self, "backend", _coerce(BackendKind, self.backend))
        object.__setattr__(
            self, "propagation", _coerce(PropagationMode, self.propagation)
        )
        if self.rcond < 0:
            raise ValueError(f"rcond must be non-negative, got {self.rcond}")
        if self.tol <= 0:
            raise ValueError(f"tol must be positive, got {self.tol}")

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> "SolverOptions":
        """Build options from plain values, e.g. ``{"backend": "sparse_lu"}``."""
        known = {f.name for f in fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            raise ValueError(
                f"Unknown solver option(s): {', '.join(sorted(unknown))}"
            )
        return cls(**dict(mapping))

    def with_overrides(self, **overrides: Any) -> "SolverOptions":
        """Copy with some options replaced."""
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(
                f"Unknown solver option(s): {', '.join(sorted(unknown))}"
            )
        return replace(self, **overrides)


def _coerce(enum_type: type[Enum], value: Any) -> Any:
    if isinstance(value, enum_type):
        return value
    if isinstance(value, str):
        try:
            return enum_type[value.upper()]
        except KeyError:
            choices = ", ".join(m.name.lower() for m in enum_type)
            raise ValueError(
                f"Invalid {enum_type.__name__} '{value}'; expected one of {choices}"
            ) from None
    raise TypeError(f"Expected {enum_type.__name__} or str, got {type(value).__name__}")
