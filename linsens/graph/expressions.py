"""
Matrix expression graph with structural sparsity.

Every node carries its shape and a boolean mask of the entries that can be
nonzero. Constructors simplify away structural zeros, so an expression that
cannot be nonzero is always represented by a ``zeros`` node.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence
import numpy as np
from numpy.typing import NDArray

from linsens.core.pattern import SparsityPattern


class SolveProvider(Protocol):
    """Object able to evaluate a solve node numerically."""

    def solve_numeric(self, A: Any, B: NDArray, transpose: bool = False) -> NDArray:
        ...


@dataclass(frozen=True, eq=False)
class MX:
    """Node of the expression graph. Identity defines equality."""

    op: str
    shape: tuple[int, int]
    sparsity: NDArray           # (rows, cols) bool, structural nonzeros
    args: tuple["MX", ...] = ()
    data: Any = None

    def __post_init__(self) -> None:
        mask = np.asarray(self.sparsity, dtype=bool)
        if mask.shape != self.shape:
            raise ValueError(f"sparsity {mask.shape} does not match shape {self.shape}")
        mask.setflags(write=False)
        object.__setattr__(self, "sparsity", mask)

    @property
    def nnz(self) -> int:
        return int(np.count_nonzero(self.sparsity))

    @property
    def T(self) -> "MX":
        return transpose(self)

    def __add__(self, other: "MX") -> "MX":
        return add(self, other)

    def __sub__(self, other: "MX") -> "MX":
        return sub(self, other)

    def __neg__(self) -> "MX":
        return neg(self)

    def __matmul__(self, other: "MX") -> "MX":
        return mul(self, other)

    def __repr__(self) -> str:
        if self.op == "symbol":
            return f"MX({self.data}, {self.shape[0]}x{self.shape[1]})"
        return f"MX<{self.op}>({self.shape[0]}x{self.shape[1]}, nnz={self.nnz})"


# ----------------------------------------------------------------------
# Leaves
# ----------------------------------------------------------------------

def symbol(name: str, shape: tuple[int, int], sparsity: Any = None) -> MX:
    """Free variable, dense unless a pattern or mask is given."""
    shape = (int(shape[0]), int(shape[1]))
    if sparsity is None:
        mask = np.ones(shape, dtype=bool)
    elif isinstance(sparsity, SparsityPattern):
        mask = sparsity.to_mask()
    else:
        mask = np.asarray(sparsity, dtype=bool)
    return MX("symbol", shape, mask, data=name)


def zeros(shape: tuple[int, int]) -> MX:
    """Structurally zero matrix."""
    shape = (int(shape[0]), int(shape[1]))
    return MX("zeros", shape, np.zeros(shape, dtype=bool))


def constant(value: Any) -> MX:
    """Numeric constant; its nonzeros define its sparsity."""
    value = np.atleast_2d(np.asarray(value, dtype=float))
    if not value.any():
        return zeros(value.shape)
    value = value.copy()
    value.setflags(write=False)
    return MX("constant", value.shape, value != 0, data=value)


def is_zero(x: Optional[MX]) -> bool:
    """True if x cannot hold a nonzero (an empty slot counts as zero)."""
    return x is None or x.op == "zeros" or not x.sparsity.any()


# ----------------------------------------------------------------------
# Operations
# ----------------------------------------------------------------------

def add(x: MX, y: MX) -> MX:
    _check_same_shape(x, y, "+")
    if is_zero(y):
        return x
    if is_zero(x):
        return y
    return MX("add", x.shape, x.sparsity | y.sparsity, (x, y))


def sub(x: MX, y: MX) -> MX:
    _check_same_shape(x, y, "-")
    if is_zero(y):
        return x
    if is_zero(x):
        return neg(y)
    return MX("sub", x.shape, x.sparsity | y.sparsity, (x, y))


def neg(x: MX) -> MX:
    if is_zero(x):
        return zeros(x.shape)
    if x.op == "neg":
        return x.args[0]
    return MX("neg", x.shape, x.sparsity, (x,))


def transpose(x: MX) -> MX:
    shape = (x.shape[1], x.shape[0])
    if is_zero(x):
        return zeros(shape)
    if x.op == "transpose":
        return x.args[0]
    return MX("transpose", shape, x.sparsity.T, (x,))


def mul(x: MX, y: MX, sparsity: Any = None) -> MX:
    """
    Matrix product x @ y.

    With ``sparsity`` the product is projected onto that pattern: entries
    outside it are dropped, never computed.
    """
    if x.shape[1] != y.shape[0]:
        raise ValueError(f"Dimension mismatch in mul: {x.shape} @ {y.shape}")
    shape = (x.shape[0], y.shape[1])
    mask = (x.sparsity.astype(np.int64) @ y.sparsity.astype(np.int64)) > 0

    projection = None
    if sparsity is not None:
        projection = (
            sparsity.to_mask()
            if isinstance(sparsity, SparsityPattern)
            else np.asarray(sparsity, dtype=bool)
        )
        if projection.shape != shape:
            raise ValueError(
                f"Projection {projection.shape} does not match product {shape}"
            )
        mask = mask & projection
        projection.setflags(write=False)

    if is_zero(x) or is_zero(y) or not mask.any():
        return zeros(shape)
    return MX("mul", shape, mask, (x, y), data=projection)


def horzcat(parts: Sequence[MX]) -> MX:
    """Concatenate matrices with equal row counts side by side."""
    if not parts:
        raise ValueError("horzcat needs at least one operand")
    nrow = parts[0].shape[0]
    for p in parts:
        if p.shape[0] != nrow:
            raise ValueError(f"Row mismatch in horzcat: {p.shape[0]} != {nrow}")
    if len(parts) == 1:
        return parts[0]
    ncol = sum(p.shape[1] for p in parts)
    if all(is_zero(p) for p in parts):
        return zeros((nrow, ncol))
    mask = np.hstack([p.sparsity for p in parts])
    return MX("horzcat", (nrow, ncol), mask, tuple(parts))


def horzsplit(x: MX, offsets: Sequence[int]) -> list[MX]:
    """
    Split x into column blocks.

    Args:
        offsets: Increasing column offsets starting at 0 and ending at
            x.shape[1]
    """
    offsets = list(offsets)
    if not offsets or offsets[0] != 0 or offsets[-1] != x.shape[1]:
        raise ValueError(
            f"offsets must start at 0 and end at {x.shape[1]}, got {offsets}"
        )
    if any(b < a for a, b in zip(offsets, offsets[1:])):
        raise ValueError(f"offsets must be non-decreasing, got {offsets}")
    if len(offsets) == 2:
        return [x]

    parts = []
    for start, stop in zip(offsets, offsets[1:]):
        shape = (x.shape[0], stop - start)
        mask = x.sparsity[:, start:stop]
        if is_zero(x) or not mask.any():
            parts.append(zeros(shape))
        else:
            parts.append(MX("colslice", shape, mask, (x,), data=(start, stop)))
    return parts


def solve(A: MX, B: MX, transpose: bool, solver: SolveProvider) -> MX:
    """
    Solve node X = A^{-1} B (or A^{-T} B).

    A column of X is structurally nonzero iff the same column of B is.
    """
    n = A.shape[0]
    if A.shape != (n, n):
        raise ValueError(f"solve needs a square matrix, got {A.shape}")
    if B.shape[0] != n:
        raise ValueError(f"Dimension mismatch in solve: {A.shape} \\ {B.shape}")
    if is_zero(B):
        return zeros(B.shape)
    columns = B.sparsity.any(axis=0)
    mask = np.broadcast_to(columns, B.shape).copy()
    return MX("solve", B.shape, mask, (A, B), data=(bool(transpose), solver))


def _check_same_shape(x: MX, y: MX, op: str) -> None:
    if x.shape != y.shape:
        raise ValueError(f"Dimension mismatch in {op}: {x.shape} vs {y.shape}")
