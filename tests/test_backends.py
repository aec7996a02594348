"""Tests for factorization backends and their prepare/solve contract."""

import numpy as np
import pytest

from linsens.algebra import (
    DenseLUBackend,
    DenseQRBackend,
    IterativeBackend,
    SolverBackend,
    SparseLUBackend,
    create_backend,
)
from linsens.core.errors import (
    ConvergenceError,
    PreconditionViolationError,
    ShapeError,
)
from linsens.core.options import BackendKind, SolverOptions
from linsens.core.system import LinearSystem

DIRECT_KINDS = [BackendKind.DENSE_LU, BackendKind.DENSE_QR, BackendKind.SPARSE_LU]
ALL_KINDS = DIRECT_KINDS + [BackendKind.ITERATIVE_GMRES]


def random_system(n=6, nrhs=3, density=0.3, seed=0):
    """Random structurally nonsingular pattern with diagonally dominant values."""
    rng = np.random.default_rng(seed)
    mask = rng.random((n, n)) < density
    mask[np.arange(n), np.arange(n)] = True
    system = LinearSystem(mask, nrhs=nrhs)
    values = rng.standard_normal(system.nnz)
    diag = system.sparsity.rows == system.sparsity.indices
    values[diag] += 2.0 * n
    return system, values, rng


@pytest.mark.parametrize("kind", ALL_KINDS)
def test_solve_correctness(kind):
    """A @ solve(A, B) ≈ B and A^T @ solve(A, B, transpose) ≈ B."""
    system, values, rng = random_system()
    backend = create_backend(system, SolverOptions(backend=kind))
    A = system.sparsity.to_dense(values)
    B = rng.standard_normal(system.rhs_shape)

    assert backend.prepare(values)

    X = B.copy()
    backend.solve(X, system.nrhs, transpose=False)
    assert np.allclose(A @ X, B)

    X_t = B.copy()
    backend.solve(X_t, system.nrhs, transpose=True)
    assert np.allclose(A.T @ X_t, B)


@pytest.mark.parametrize("seed", range(5))
def test_sparse_block_permutation_matches_dense(seed):
    """Factoring the block triangular permutation gives the same solution."""
    system, values, rng = random_system(n=9, nrhs=2, density=0.2, seed=seed)
    B = rng.standard_normal(system.rhs_shape)
    dense = DenseLUBackend(system)
    sparse = SparseLUBackend(system, use_block_permutation=True)

    assert dense.prepare(values) and sparse.prepare(values)
    for transpose in (False, True):
        X_dense, X_sparse = B.copy(), B.copy()
        dense.solve(X_dense, 2, transpose)
        sparse.solve(X_sparse, 2, transpose)
        assert np.allclose(X_dense, X_sparse)


def test_factory_dispatch():
    system, _, _ = random_system()

    assert isinstance(create_backend(system, SolverOptions()), DenseLUBackend)
    assert isinstance(
        create_backend(system, SolverOptions(backend="dense_qr")), DenseQRBackend
    )
    sparse = create_backend(
        system, SolverOptions(backend="sparse_lu", permc_spec="NATURAL")
    )
    assert isinstance(sparse, SparseLUBackend)
    assert sparse.permc_spec == "NATURAL"


@pytest.mark.parametrize("kind", ALL_KINDS)
def test_backends_satisfy_protocol(kind):
    system, _, _ = random_system()
    assert isinstance(create_backend(system, SolverOptions(backend=kind)), SolverBackend)


@pytest.mark.parametrize("kind", ALL_KINDS)
def test_solve_before_prepare_is_precondition_violation(kind):
    system, _, _ = random_system()
    backend = create_backend(system, SolverOptions(backend=kind))

    assert not backend.prepared
    with pytest.raises(PreconditionViolationError):
        backend.solve(np.zeros(system.rhs_shape), system.nrhs)


@pytest.mark.parametrize("kind", DIRECT_KINDS)
def test_numerically_singular_prepare_fails_without_raising(kind):
    """Structurally fine but numerically singular: prepare() returns False."""
    system = LinearSystem(np.ones((2, 2)), nrhs=1)
    backend = create_backend(system, SolverOptions(backend=kind))

    assert backend.prepare(np.array([1.0, 1.0, 1.0, 1.0])) is False
    assert not backend.prepared
    assert backend.last_error
    with pytest.raises(PreconditionViolationError):
        backend.solve(np.ones((2, 1)), 1)


@pytest.mark.filterwarnings("error")
def test_dense_lu_singular_prepare_under_warnings_as_errors():
    """Singular input must not leak a LinAlgWarning out of prepare()."""
    system = LinearSystem(np.ones((2, 2)), nrhs=1)
    backend = DenseLUBackend(system)

    assert backend.prepare(np.ones(4)) is False
    assert "singular" in backend.last_error


def test_prepare_failure_after_success_returns_to_unprepared():
    system = LinearSystem(np.ones((2, 2)), nrhs=1)
    backend = DenseLUBackend(system)

    assert backend.prepare(np.array([2.0, 1.0, 1.0, 2.0]))
    assert backend.prepared
    assert not backend.prepare(np.array([1.0, 1.0, 1.0, 1.0]))
    assert not backend.prepared


def test_non_finite_values_rejected():
    system = LinearSystem(np.eye(2), nrhs=1)
    backend = DenseLUBackend(system)

    assert not backend.prepare(np.array([1.0, np.nan]))
    assert "non-finite" in backend.last_error


def test_wrong_number_of_values_rejected():
    system = LinearSystem(np.eye(2), nrhs=1)
    backend = DenseLUBackend(system)

    assert not backend.prepare(np.ones(3))


def test_invalidate_requires_new_prepare():
    system, values, _ = random_system()
    backend = DenseLUBackend(system)
    backend.prepare(values)

    backend.invalidate()

    assert not backend.prepared
    with pytest.raises(PreconditionViolationError):
        backend.solve(np.zeros(system.rhs_shape), system.nrhs)


def test_invalidate_keeps_reuse_cache():
    """invalidate() only marks A as changed; unchanged values skip the LU."""
    system, values, rng = random_system()
    backend = DenseLUBackend(system, reuse_factorization=True)
    assert backend.prepare(values)

    backend.invalidate()
    assert backend.prepare(values.copy())

    assert backend.factorization_count == 1
    X = rng.standard_normal(system.rhs_shape)
    B = X.copy()
    backend.solve(X, system.nrhs)
    assert np.allclose(system.sparsity.to_dense(values) @ X, B)


def test_solve_checks_buffer_shape():
    system, values, _ = random_system()
    backend = DenseLUBackend(system)
    backend.prepare(values)

    with pytest.raises(ShapeError):
        backend.solve(np.zeros((system.n, 2)), system.nrhs)


def test_many_solves_share_one_factorization():
    """Repeated solves with different buffers and flags reuse the factors."""
    system, values, rng = random_system()
    backend = SparseLUBackend(system)
    backend.prepare(values)
    A = system.sparsity.to_dense(values)

    for k in range(4):
        B = rng.standard_normal((system.n, k + 1))
        X = B.copy()
        backend.solve(X, k + 1, transpose=bool(k % 2))
        assert np.allclose((A.T if k % 2 else A) @ X, B)

    assert backend.factorization_count == 1


@pytest.mark.parametrize("kind", ALL_KINDS)
def test_reuse_factorization_gives_identical_results(kind):
    """The opt-in cache skips refactorization without changing results."""
    system, values, rng = random_system()
    B = rng.standard_normal(system.rhs_shape)
    cached = create_backend(system, SolverOptions(backend=kind, reuse_factorization=True))
    plain = create_backend(system, SolverOptions(backend=kind))

    for backend in (cached, plain):
        for _ in range(3):
            backend.invalidate()
            assert backend.prepare(values.copy())

    assert cached.factorization_count == 1
    assert plain.factorization_count == 3
    assert cached.prepare_count == plain.prepare_count == 3

    X_cached, X_plain = B.copy(), B.copy()
    cached.solve(X_cached, system.nrhs)
    plain.solve(X_plain, system.nrhs)
    assert np.array_equal(X_cached, X_plain)

    # Changed values are refactorized
    values2 = values.copy()
    values2[0] += 1.0
    assert cached.prepare(values2)
    assert cached.factorization_count == 2


def test_factory_builds_iterative_backend():
    system, _, _ = random_system()
    backend = create_backend(
        system, SolverOptions(backend="iterative_gmres", tol=1e-8, restart=4)
    )

    assert isinstance(backend, IterativeBackend)
    assert backend.tol == 1e-8
    assert backend.restart == 4


def test_iterative_matches_direct_on_larger_system():
    system, values, rng = random_system(n=30, nrhs=2, density=0.1, seed=4)
    B = rng.standard_normal(system.rhs_shape)
    direct = SparseLUBackend(system)
    iterative = IterativeBackend(system)

    assert direct.prepare(values) and iterative.prepare(values)
    for transpose in (False, True):
        X_direct, X_iterative = B.copy(), B.copy()
        direct.solve(X_direct, 2, transpose)
        iterative.solve(X_iterative, 2, transpose)
        assert np.allclose(X_direct, X_iterative)


def test_iterative_non_convergence_raises():
    """One Arnoldi step with a crude preconditioner cannot reach the tolerance."""
    n = 12
    rng = np.random.default_rng(11)
    system = LinearSystem(np.ones((n, n)), nrhs=1)
    values = rng.standard_normal((n, n)) + 3.0 * n * np.eye(n)
    backend = IterativeBackend(
        system, tol=1e-14, maxiter=1, restart=1, drop_tol=0.9, fill_factor=1.0
    )

    assert backend.prepare(system.sparsity.project(values))
    with pytest.raises(ConvergenceError) as info:
        backend.solve(rng.standard_normal((n, 1)), 1)
    assert info.value.column == 0
    assert info.value.backend == "iterative_gmres"
