"""Backend factory and dispatch logic."""

import logging

from linsens.algebra.base import BaseBackend
from linsens.algebra.dense import DenseLUBackend, DenseQRBackend
from linsens.algebra.iterative import IterativeBackend
from linsens.algebra.sparse import SparseLUBackend
from linsens.core.options import BackendKind, SolverOptions
from linsens.core.system import LinearSystem

logger = logging.getLogger(__name__)


def create_backend(system: LinearSystem, options: SolverOptions) -> BaseBackend:
    """
    Select the factorization kernel from the configured BackendKind.

    Args:
        system: Validated system descriptor
        options: Solver options

    Returns:
        Unprepared backend bound to the system
    """
    kind = options.backend
    logger.debug("creating %s backend for %s", kind.name, system.sparsity.dim_string)

    if kind == BackendKind.DENSE_LU:
        return DenseLUBackend(system, options.reuse_factorization)

    if kind == BackendKind.DENSE_QR:
        return DenseQRBackend(
            system, options.reuse_factorization, rcond=options.rcond
        )

    if kind == BackendKind.SPARSE_LU:
        return SparseLUBackend(
            system,
            options.reuse_factorization,
            permc_spec=options.permc_spec,
            use_block_permutation=options.use_block_permutation,
        )

    if kind == BackendKind.ITERATIVE_GMRES:
        return IterativeBackend(
            system,
            options.reuse_factorization,
            tol=options.tol,
            maxiter=options.maxiter,
            drop_tol=options.drop_tol,
            fill_factor=options.fill_factor,
            restart=options.restart,
        )

    raise ValueError(f"Unsupported backend kind: {kind!r}")
