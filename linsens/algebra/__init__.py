"""Factorization backends behind prepare() / solve()."""

from linsens.algebra.protocols import SolverBackend
from linsens.algebra.base import BaseBackend, FactorizationCache
from linsens.algebra.dense import DenseLUBackend, DenseQRBackend
from linsens.algebra.sparse import SparseLUBackend
from linsens.algebra.iterative import IterativeBackend
from linsens.algebra.factory import create_backend

__all__ = [
    "SolverBackend",
    "BaseBackend",
    "FactorizationCache",
    "DenseLUBackend",
    "DenseQRBackend",
    "SparseLUBackend",
    "IterativeBackend",
    "create_backend",
]
