"""
Structural dependency propagation through X = A^{-1} B.

Forward: given which sources every scalar of A and B depends on, mark the
sources every scalar of X may depend on. Reverse: given which scalars of X
are live, mark the scalars of A and B that may influence them (consuming the
X marks). Both directions over-approximate and never miss a dependency.

BROADCAST assumes every unknown depends on every entry of A and on the
whole right-hand side column it belongs to. PRECISE follows the directed
graph of the matched matrix: with rows matched to columns, x_{c(i)} can only
depend on b_j and on row j of A when j is reachable from i.
"""

from dataclasses import dataclass
from functools import lru_cache
import logging
import numpy as np
from numpy.typing import NDArray

from linsens.core.errors import ShapeError
from linsens.core.options import PropagationMode
from linsens.core.structure import matching
from linsens.core.system import LinearSystem
from linsens.sparsity.bitmask import BitMask

logger = logging.getLogger(__name__)


def propagate_forward(
    system: LinearSystem,
    A_dep: BitMask,
    B_dep: BitMask,
    transpose: bool = False,
    mode: PropagationMode = PropagationMode.BROADCAST,
) -> BitMask:
    """
    Dependencies of X from those of A and B.

    Args:
        system: System descriptor
        A_dep: (nnz,) dependency words of A's nonzeros
        B_dep: (n, m) dependency words of the right-hand sides
        transpose: Propagate through A^T X = B
        mode: BROADCAST (single pass) or PRECISE (bounded fixed point)

    Returns:
        (n, m) dependency words of X
    """
    A_dep, B_dep = _as_mask(A_dep), _as_mask(B_dep)
    _check_shapes(system, A_dep, B_dep, "B_dep")

    if mode == PropagationMode.PRECISE:
        return _forward_precise(system, A_dep, B_dep, transpose)

    # Get dependencies of all A elements
    A_all = A_dep.reduce()

    # One right hand side at a time: add dependencies on its column of B
    columns = B_dep.reduce(axis=0) | A_all
    return BitMask(np.broadcast_to(columns, B_dep.shape).copy())


def propagate_reverse(
    system: LinearSystem,
    X_dep: BitMask,
    A_dep: BitMask,
    B_dep: BitMask,
    transpose: bool = False,
    mode: PropagationMode = PropagationMode.BROADCAST,
) -> None:
    """
    Push the marks of X back to A and B, in place.

    The marks on X are consumed (cleared); the marks on A and B are OR-ed
    with everything that may influence a marked X.
    """
    X_dep, A_dep, B_dep = _as_mask(X_dep), _as_mask(A_dep), _as_mask(B_dep)
    _check_shapes(system, A_dep, X_dep, "X_dep")
    if B_dep.shape != X_dep.shape:
        raise ShapeError(
            f"B_dep has shape {B_dep.shape}, X_dep has {X_dep.shape}",
            shape=B_dep.shape,
        )

    if mode == PropagationMode.PRECISE:
        _reverse_precise(system, X_dep, A_dep, B_dep, transpose)
        return

    # Everything that depends on each column of X
    columns = X_dep.reduce(axis=0)
    X_dep.clear()

    # Propagate to B
    B_dep.bits |= columns[np.newaxis, :]

    # Propagate to A
    A_dep.bits |= np.bitwise_or.reduce(columns, axis=None)


# ----------------------------------------------------------------------
# Fixed point through the sparsity graph
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class _DependencyGraph:
    """Directed graph of the matched (possibly transposed) matrix."""

    match: NDArray     # (n,) column matched to each row
    src: NDArray       # edge sources
    dst: NDArray       # edge targets
    rows: NDArray      # (nnz,) row of each nonzero of the effective matrix
    values: NDArray    # (nnz,) nonzero of A holding each effective nonzero


@lru_cache(maxsize=32)
def _dependency_graph(system: LinearSystem, transpose: bool) -> _DependencyGraph:
    pattern = system.sparsity
    values = np.arange(pattern.nnz)
    if transpose:
        pattern, values = pattern.transpose()

    match = matching(pattern)
    row_of_col = np.empty(pattern.nrow, dtype=np.int64)
    row_of_col[match] = np.arange(pattern.nrow)

    # Edge i -> k when row i touches the column matched to row k
    targets = row_of_col[pattern.indices]
    keep = targets != pattern.rows
    return _DependencyGraph(
        match=match,
        src=pattern.rows[keep],
        dst=targets[keep],
        rows=pattern.rows,
        values=values,
    )


def _fixed_point(words: NDArray, src: NDArray, dst: NDArray) -> NDArray:
    """OR words[dst] into words[src] until stable; at most n rounds."""
    n = words.shape[0]
    for iteration in range(n):
        updated = words.copy()
        np.bitwise_or.at(updated, src, words[dst])
        if np.array_equal(updated, words):
            logger.debug("dependency fixed point reached after %d rounds", iteration)
            break
        words = updated
    return words


def _forward_precise(
    system: LinearSystem, A_dep: BitMask, B_dep: BitMask, transpose: bool
) -> BitMask:
    graph = _dependency_graph(system, transpose)
    n = system.n

    # Seed every matched unknown with its own equation's dependencies
    row_A = np.zeros(n, dtype=np.uint64)
    np.bitwise_or.at(row_A, graph.rows, A_dep.bits[graph.values])
    words = B_dep.bits | row_A[:, np.newaxis]

    # Propagate interdependencies
    words = _fixed_point(words, graph.src, graph.dst)

    X_bits = np.empty_like(words)
    X_bits[graph.match] = words
    return BitMask(X_bits)


def _reverse_precise(
    system: LinearSystem,
    X_dep: BitMask,
    A_dep: BitMask,
    B_dep: BitMask,
    transpose: bool,
) -> None:
    graph = _dependency_graph(system, transpose)

    # Seeds in equation order, then everything reachable from them
    words = X_dep.bits[graph.match].copy()
    X_dep.clear()
    words = _fixed_point(words, graph.dst, graph.src)

    # Propagate to B
    B_dep.bits |= words

    # Propagate to A: each nonzero influences the unknowns reaching its row
    row_words = np.bitwise_or.reduce(words, axis=1)
    np.bitwise_or.at(A_dep.bits, graph.values, row_words[graph.rows])


def _as_mask(obj: object) -> BitMask:
    return obj if isinstance(obj, BitMask) else BitMask(obj)


def _check_shapes(
    system: LinearSystem, A_dep: BitMask, rhs: BitMask, name: str
) -> None:
    if A_dep.shape != (system.nnz,):
        raise ShapeError(
            f"A_dep must have shape {(system.nnz,)}, got {A_dep.shape}",
            shape=A_dep.shape,
        )
    if len(rhs.shape) != 2 or rhs.shape[0] != system.n:
        raise ShapeError(
            f"{name} must have {system.n} rows, got shape {rhs.shape}",
            shape=rhs.shape,
        )
