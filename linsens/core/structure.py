"""
Structural-rank oracle.

Computes a maximum bipartite matching between rows and columns of a
sparsity pattern and, for square structurally nonsingular patterns, the
block upper triangular form (fine Dulmage-Mendelsohn decomposition).
"""

from dataclasses import dataclass
import heapq
import numpy as np
import scipy.sparse
from scipy.sparse.csgraph import connected_components, maximum_bipartite_matching
from numpy.typing import NDArray

from linsens.core.pattern import SparsityPattern


@dataclass(frozen=True)
class BlockDecomposition:
    """Permutations and diagonal blocks of a pattern."""

    row_perm: NDArray    # (nrow,) original row at each permuted position
    col_perm: NDArray    # (ncol,) original column at each permuted position
    row_blocks: NDArray  # (nblocks + 1,) block offsets in permuted rows
    col_blocks: NDArray  # (nblocks + 1,) block offsets in permuted columns
    structural_rank: int

    @property
    def nblocks(self) -> int:
        return len(self.row_blocks) - 1


def matching(pattern: SparsityPattern) -> NDArray:
    """
    Maximum matching of rows to columns.

    Returns:
        ``match[i]`` is the column matched to row ``i``, or -1
    """
    if pattern.nnz == 0:
        return np.full(pattern.nrow, -1, dtype=np.int64)
    graph = pattern.to_scipy().tocsr()
    match = maximum_bipartite_matching(graph, perm_type="column")
    return np.asarray(match, dtype=np.int64)


def structural_rank(pattern: SparsityPattern) -> int:
    """Size of a maximum row/column matching."""
    return int(np.count_nonzero(matching(pattern) >= 0))


def is_structurally_singular(pattern: SparsityPattern) -> bool:
    """True unless the pattern is square with full structural rank."""
    if not pattern.is_square:
        return True
    return structural_rank(pattern) < pattern.nrow


def dulmage_mendelsohn(pattern: SparsityPattern) -> BlockDecomposition:
    """
    Block triangular decomposition of a pattern.

    For square patterns of full structural rank, ``A[row_perm][:, col_perm]``
    is block upper triangular with irreducible diagonal blocks. Otherwise
    the permutations are the identity, the pattern is reported as a single
    block, and only ``structural_rank`` is meaningful.
    """
    match = matching(pattern)
    rank = int(np.count_nonzero(match >= 0))
    n = pattern.nrow

    if not pattern.is_square or rank < n or n == 0:
        return BlockDecomposition(
            row_perm=np.arange(pattern.nrow),
            col_perm=np.arange(pattern.ncol),
            row_blocks=np.array([0, pattern.nrow]),
            col_blocks=np.array([0, pattern.ncol]),
            structural_rank=rank,
        )

    # Column-permuted matrix with the matching on its diagonal; its directed
    # graph has edge i -> k whenever row i touches the column matched to row k
    row_of_col = np.empty(n, dtype=np.int64)
    row_of_col[match] = np.arange(n)
    targets = row_of_col[pattern.indices]
    graph = scipy.sparse.csr_matrix(
        (np.ones(pattern.nnz, dtype=np.int8), (pattern.rows, targets)),
        shape=(n, n),
    )

    nblocks, labels = connected_components(
        graph, directed=True, connection="strong"
    )
    order = _topological_block_order(graph, labels, nblocks)

    rank_of_block = np.empty(nblocks, dtype=np.int64)
    rank_of_block[order] = np.arange(nblocks)
    row_perm = np.argsort(rank_of_block[labels], kind="stable")
    col_perm = match[row_perm]
    sizes = np.bincount(labels, minlength=nblocks)[order]
    blocks = np.concatenate([[0], np.cumsum(sizes)])

    return BlockDecomposition(
        row_perm=row_perm,
        col_perm=col_perm,
        row_blocks=blocks,
        col_blocks=blocks.copy(),
        structural_rank=rank,
    )


def _topological_block_order(
    graph: scipy.sparse.csr_matrix, labels: NDArray, nblocks: int
) -> NDArray:
    """Order strongly connected components so every edge points forward."""
    coo = graph.tocoo()
    src, dst = labels[coo.row], labels[coo.col]
    keep = src != dst
    condensed = scipy.sparse.csr_matrix(
        (np.ones(np.count_nonzero(keep), dtype=np.int8), (src[keep], dst[keep])),
        shape=(nblocks, nblocks),
    )
    condensed.sum_duplicates()

    # Kahn's algorithm, smallest label first for a deterministic order
    indegree = np.asarray((condensed != 0).sum(axis=0)).ravel()
    ready = np.flatnonzero(indegree == 0).tolist()
    heapq.heapify(ready)
    order: list[int] = []
    while ready:
        b = heapq.heappop(ready)
        order.append(b)
        for c in condensed.indices[condensed.indptr[b]:condensed.indptr[b + 1]]:
            indegree[c] -= 1
            if indegree[c] == 0:
                heapq.heappush(ready, int(c))
    return np.asarray(order, dtype=np.int64)
