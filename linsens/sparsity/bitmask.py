"""Bit-vector container for structural dependency tracking."""

from typing import Any
import numpy as np
from numpy.typing import NDArray

WORD_BITS = 64


class BitMask:
    """
    One 64-bit word per scalar; bit s set means "depends on source s".

    Backed by its own uint64 array, never by numeric storage.
    """

    __slots__ = ("bits",)

    def __init__(self, bits: Any):
        bits = np.asarray(bits)
        if bits.dtype != np.uint64:
            if bits.size and np.any(bits.astype(np.int64, copy=False) < 0):
                raise ValueError("dependency words must be non-negative")
            bits = bits.astype(np.uint64)
        self.bits: NDArray = bits

    @classmethod
    def zeros(cls, shape: Any) -> "BitMask":
        return cls(np.zeros(shape, dtype=np.uint64))

    @classmethod
    def seed(cls, shape: Any, index: Any, bit: int) -> "BitMask":
        """Mask with a single source bit set at ``index``."""
        mask = cls.zeros(shape)
        mask.set_bit(index, bit)
        return mask

    @property
    def shape(self) -> tuple[int, ...]:
        return self.bits.shape

    def set_bit(self, index: Any, bit: int) -> None:
        if not 0 <= bit < WORD_BITS:
            raise ValueError(f"bit must be in [0, {WORD_BITS}), got {bit}")
        self.bits[index] |= np.uint64(1) << np.uint64(bit)

    def any_bits(self) -> bool:
        return bool(np.any(self.bits))

    def reduce(self, axis: Any = None) -> Any:
        """Bitwise OR over an axis (all entries by default)."""
        return np.bitwise_or.reduce(self.bits, axis=axis)

    def clear(self) -> None:
        self.bits[...] = 0

    def depends_on(self, bit: int) -> NDArray:
        """Boolean array: which scalars carry source ``bit``."""
        return ((self.bits >> np.uint64(bit)) & np.uint64(1)).astype(bool)

    def __ior__(self, other: Any) -> "BitMask":
        other_bits = other.bits if isinstance(other, BitMask) else np.uint64(other)
        self.bits |= other_bits
        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BitMask):
            return NotImplemented
        return self.bits.shape == other.bits.shape and np.array_equal(self.bits, other.bits)

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return f"BitMask(shape={self.shape}, set={int(np.count_nonzero(self.bits))})"


def bits_of(word: Any) -> list[int]:
    """Source indices set in one dependency word."""
    word = int(word)
    return [b for b in range(WORD_BITS) if word >> b & 1]
