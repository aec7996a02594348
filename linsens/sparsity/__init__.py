"""Structural dependency propagation."""

from linsens.sparsity.bitmask import BitMask, bits_of
from linsens.sparsity.propagation import propagate_forward, propagate_reverse

__all__ = [
    "BitMask",
    "bits_of",
    "propagate_forward",
    "propagate_reverse",
]
