"""Tests for structural dependency propagation."""

import numpy as np
import pytest

from linsens.core.errors import ShapeError
from linsens.core.options import PropagationMode
from linsens.core.system import LinearSystem
from linsens.sparsity.bitmask import BitMask, bits_of
from linsens.sparsity.propagation import propagate_forward, propagate_reverse

MODES = [PropagationMode.BROADCAST, PropagationMode.PRECISE]


def random_system(n, nrhs, density, seed):
    rng = np.random.default_rng(seed)
    mask = rng.random((n, n)) < density
    mask[np.arange(n), rng.permutation(n)] = True
    system = LinearSystem(mask, nrhs=nrhs)
    return system, rng


def well_conditioned_values(system, rng):
    """Random values on the pattern; retried until A is comfortably invertible."""
    pattern = system.sparsity
    for _ in range(100):
        values = rng.uniform(0.5, 2.0, pattern.nnz) * rng.choice([-1.0, 1.0], pattern.nnz)
        if np.linalg.cond(pattern.to_dense(values)) < 1e4:
            return values
    pytest.skip("could not draw a well-conditioned matrix")


def numeric_dependencies(system, values, B, transpose):
    """
    True dependencies by perturbation.

    Returns:
        on_A: (nnz, n, nrhs) bool, X changes when A's k-th nonzero changes
        on_B: (n, nrhs, n, nrhs) bool, X changes when B[i, r] changes
    """
    pattern = system.sparsity

    def solve(v, rhs):
        dense = pattern.to_dense(v)
        return np.linalg.solve(dense.T if transpose else dense, rhs)

    X0 = solve(values, B)
    tol = 1e-6 * (1.0 + np.abs(X0).max())
    on_A = np.zeros((pattern.nnz,) + B.shape, dtype=bool)
    for k in range(pattern.nnz):
        v = values.copy()
        v[k] += 0.37
        on_A[k] = np.abs(solve(v, B) - X0) > tol

    on_B = np.zeros(B.shape + B.shape, dtype=bool)
    for i in range(B.shape[0]):
        for r in range(B.shape[1]):
            b = B.copy()
            b[i, r] += 0.37
            on_B[i, r] = np.abs(solve(values, b) - X0) > tol
    return on_A, on_B


def test_bitmask_basics():
    mask = BitMask.seed((2, 3), (1, 2), 5)

    assert mask.any_bits()
    assert mask.bits.dtype == np.uint64
    assert bits_of(mask.bits[1, 2]) == [5]
    assert mask.depends_on(5)[1, 2]
    assert not mask.depends_on(4).any()

    other = BitMask.seed((2, 3), (0, 0), 63)
    mask |= other
    assert bits_of(mask.reduce()) == [5, 63]

    mask.clear()
    assert not mask.any_bits()


def test_bitmask_rejects_out_of_range_bit():
    with pytest.raises(ValueError):
        BitMask.seed((2,), 0, 64)


def test_broadcast_forward_rule():
    """Each column of X gets all of A plus its own column of B."""
    system = LinearSystem(np.eye(3), nrhs=2)
    A_dep = BitMask(np.array([1, 0, 2]))
    B_dep = BitMask(np.array([[4, 0], [0, 8], [0, 0]]))

    X_dep = propagate_forward(system, A_dep, B_dep)

    assert np.array_equal(X_dep.bits, np.array([[7, 11]] * 3, dtype=np.uint64))


def test_broadcast_reverse_rule():
    """X marks are consumed and pushed to their column of B and all of A."""
    system = LinearSystem(np.eye(3), nrhs=2)
    X_dep = BitMask(np.array([[1, 0], [2, 0], [0, 4]]))
    A_dep = BitMask(np.array([8, 0, 0]))
    B_dep = BitMask(np.array([[0, 16], [0, 0], [0, 0]]))

    propagate_reverse(system, X_dep, A_dep, B_dep)

    assert not X_dep.any_bits()
    assert np.array_equal(B_dep.bits, np.array([[3, 20], [3, 4], [3, 4]], dtype=np.uint64))
    assert np.array_equal(A_dep.bits, np.array([15, 7, 7], dtype=np.uint64))


@pytest.mark.parametrize("mode", MODES)
@pytest.mark.parametrize("transpose", [False, True])
@pytest.mark.parametrize("seed", range(6))
def test_forward_soundness(mode, transpose, seed):
    """Every true numeric dependency is reported (no false negatives)."""
    system, rng = random_system(n=5, nrhs=2, density=0.3, seed=seed)
    pattern = system.sparsity
    values = well_conditioned_values(system, rng)
    B = rng.standard_normal(system.rhs_shape)
    on_A, on_B = numeric_dependencies(system, values, B, transpose)

    # One source bit per scalar: A's nonzeros first, then B's entries
    A_dep = BitMask(np.uint64(1) << np.arange(pattern.nnz, dtype=np.uint64))
    assert pattern.nnz + B.size <= 64
    B_bits = pattern.nnz + np.arange(B.size, dtype=np.uint64).reshape(B.shape)
    B_dep = BitMask(np.uint64(1) << B_bits)

    X_dep = propagate_forward(system, A_dep, B_dep, transpose=transpose, mode=mode)

    for k in range(pattern.nnz):
        assert np.all(X_dep.depends_on(k)[on_A[k]])
    for i in range(B.shape[0]):
        for r in range(B.shape[1]):
            bit = pattern.nnz + i * B.shape[1] + r
            assert np.all(X_dep.depends_on(bit)[on_B[i, r]])


@pytest.mark.parametrize("mode", MODES)
@pytest.mark.parametrize("transpose", [False, True])
@pytest.mark.parametrize("seed", range(6))
def test_reverse_soundness(mode, transpose, seed):
    """Every input that numerically influences a live X is marked."""
    system, rng = random_system(n=5, nrhs=2, density=0.3, seed=seed)
    pattern = system.sparsity
    values = well_conditioned_values(system, rng)
    B = rng.standard_normal(system.rhs_shape)
    on_A, on_B = numeric_dependencies(system, values, B, transpose)

    # One source bit per scalar of X
    X_bits = np.arange(B.size, dtype=np.uint64).reshape(B.shape)
    X_dep = BitMask(np.uint64(1) << X_bits)
    A_dep = BitMask.zeros(pattern.nnz)
    B_dep = BitMask.zeros(B.shape)

    propagate_reverse(system, X_dep, A_dep, B_dep, transpose=transpose, mode=mode)

    assert not X_dep.any_bits()
    for j in range(B.shape[0]):
        for s in range(B.shape[1]):
            bit = j * B.shape[1] + s
            assert np.all(A_dep.depends_on(bit)[on_A[:, j, s]])
            assert np.all(B_dep.depends_on(bit)[on_B[:, :, j, s]])


@pytest.mark.parametrize("transpose", [False, True])
@pytest.mark.parametrize("seed", range(6))
def test_precise_is_subset_of_broadcast(transpose, seed):
    system, rng = random_system(n=7, nrhs=3, density=0.25, seed=seed)
    A_dep = BitMask(rng.integers(0, 2**20, system.nnz))
    B_dep = BitMask(rng.integers(0, 2**20, system.rhs_shape))

    broad = propagate_forward(system, A_dep, B_dep, transpose, PropagationMode.BROADCAST)
    precise = propagate_forward(system, A_dep, B_dep, transpose, PropagationMode.PRECISE)

    assert np.all(precise.bits & ~broad.bits == 0)


def test_precise_lower_bidiagonal_dependencies():
    """x_i only depends on b_0..b_i and on rows 0..i of A."""
    n = 4
    mask = np.eye(n, dtype=bool) | np.eye(n, k=-1, dtype=bool)
    system = LinearSystem(mask, nrhs=1)
    pattern = system.sparsity
    A_dep = BitMask(np.uint64(1) << pattern.rows.astype(np.uint64))
    B_dep = BitMask((np.uint64(1) << np.arange(n, dtype=np.uint64) + np.uint64(8)).reshape(n, 1))

    X_dep = propagate_forward(system, A_dep, B_dep, mode=PropagationMode.PRECISE)

    for i in range(n):
        expected = list(range(i + 1)) + [8 + j for j in range(i + 1)]
        assert bits_of(X_dep.bits[i, 0]) == expected

    # Transposed system is upper bidiagonal: x_i depends on b_i..b_{n-1}
    X_dep_t = propagate_forward(
        system, A_dep, B_dep, transpose=True, mode=PropagationMode.PRECISE
    )
    assert bits_of(X_dep_t.bits[n - 1, 0]) == [n - 1, 8 + n - 1]


def test_precise_reverse_lower_bidiagonal():
    """Only x_0 live: b_0 and a_00 are its only influences."""
    n = 4
    mask = np.eye(n, dtype=bool) | np.eye(n, k=-1, dtype=bool)
    system = LinearSystem(mask, nrhs=1)
    X_dep = BitMask.zeros((n, 1))
    X_dep.set_bit((0, 0), 0)
    A_dep = BitMask.zeros(system.nnz)
    B_dep = BitMask.zeros((n, 1))

    propagate_reverse(system, X_dep, A_dep, B_dep, mode=PropagationMode.PRECISE)

    # x_0 only depends on b_0 and a_00
    assert bits_of(B_dep.bits[0, 0]) == [0]
    assert not B_dep.bits[1:].any()
    assert bits_of(A_dep.bits[0]) == [0]
    assert not A_dep.bits[1:].any()


def test_propagation_validates_shapes():
    system = LinearSystem(np.eye(3), nrhs=1)
    with pytest.raises(ShapeError):
        propagate_forward(system, BitMask.zeros(2), BitMask.zeros((3, 1)))
    with pytest.raises(ShapeError):
        propagate_forward(system, BitMask.zeros(3), BitMask.zeros((2, 1)))
    with pytest.raises(ShapeError):
        propagate_reverse(
            system, BitMask.zeros((3, 1)), BitMask.zeros(3), BitMask.zeros((3, 2))
        )
