"""
_bitset.py
==========
Fixed-size leaf-membership bit-vector used by the phylogeny index.

One bit per leaf index, packed into a numpy ``uint64`` word array, so a
tree with L leaves carries L/8 bytes per node instead of L.  Bits past
``n_bits`` in the last word are always zero; ``complement()`` masks them
so that equality and hashing stay well defined.
"""

from typing import Iterable, List

import numpy as np

_WORD_BITS = 64
_ONE = np.uint64(1)


class LeafSet:
    """
    Set of leaf indices in ``[0, n_bits)`` stored as a packed bit-vector.

    Instances are treated as immutable once built: ``|`` and
    ``complement()`` return new objects.
    """

    __slots__ = ("n_bits", "_words")

    def __init__(self, n_bits: int, indices: Iterable[int] = ()) -> None:
        if n_bits < 0:
            raise ValueError(f"n_bits must be non-negative, got {n_bits}")
        self.n_bits = int(n_bits)
        self._words = np.zeros((self.n_bits + _WORD_BITS - 1) // _WORD_BITS, dtype=np.uint64)
        for i in indices:
            self._set(int(i))

    @classmethod
    def singleton(cls, n_bits: int, index: int) -> "LeafSet":
        return cls(n_bits, (index,))

    @classmethod
    def _from_words(cls, n_bits: int, words: np.ndarray) -> "LeafSet":
        out = cls.__new__(cls)
        out.n_bits = n_bits
        out._words = words
        return out

    def _set(self, i: int) -> None:
        if i < 0 or i >= self.n_bits:
            raise IndexError(f"bit {i} out of range for a {self.n_bits}-bit set")
        self._words[i >> 6] |= _ONE << np.uint64(i & 63)

    # ================================================================== #
    # Set operations                                                       #
    # ================================================================== #

    def __contains__(self, i: int) -> bool:
        if i < 0 or i >= self.n_bits:
            return False
        return bool((self._words[i >> 6] >> np.uint64(i & 63)) & _ONE)

    def __or__(self, other: "LeafSet") -> "LeafSet":
        self._check_compatible(other)
        return LeafSet._from_words(self.n_bits, self._words | other._words)

    def issuperset(self, other: "LeafSet") -> bool:
        self._check_compatible(other)
        return bool(np.array_equal(self._words & other._words, other._words))

    def complement(self) -> "LeafSet":
        words = ~self._words
        tail = self.n_bits % _WORD_BITS
        if tail and words.shape[0]:
            words[-1] &= np.uint64((1 << tail) - 1)
        return LeafSet._from_words(self.n_bits, words)

    def count(self) -> int:
        return int(np.unpackbits(self._words.view(np.uint8)).sum())

    def indices(self) -> List[int]:
        return [i for i in range(self.n_bits) if i in self]

    def is_empty(self) -> bool:
        return not self._words.any()

    # ================================================================== #
    # Equality / hashing                                                   #
    # ================================================================== #

    def key(self) -> bytes:
        """Hashable byte key; equal sets of equal size give equal keys."""
        return self._words.tobytes()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LeafSet):
            return NotImplemented
        return self.n_bits == other.n_bits and np.array_equal(self._words, other._words)

    def __hash__(self) -> int:
        return hash((self.n_bits, self.key()))

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        return f"LeafSet(n_bits={self.n_bits}, indices={self.indices()})"

    def _check_compatible(self, other: "LeafSet") -> None:
        if self.n_bits != other.n_bits:
            raise ValueError(
                f"leaf sets of different sizes: {self.n_bits} vs {other.n_bits}"
            )
