"""Temporal hierarchy structure.

Derives everything the reconciliation needs from a single integer, the
highest sampling frequency ``m`` (number of base periods in one top cycle):
the aggregation orders, the aggregation matrix ``K``, the temporal summing
matrix ``R`` and the zero-constraint matrix ``Zt``.

Example for quarterly data with an annual cycle (m = 4):

    k = 4   annual        1 value  per cycle
    k = 2   semi-annual   2 values per cycle
    k = 1   quarterly     4 values per cycle

    stacked dimension kt = 1 + 2 + 4 = 7
"""

from __future__ import annotations

import numbers
from dataclasses import dataclass, field

import numpy as np
from scipy import sparse

from tempreco.core.errors import EInvalidFrequency, EShapeMismatch


def divisors(m: int) -> tuple[int, ...]:
    """Return the positive divisors of ``m`` in descending order."""
    _check_frequency(m)
    small = [k for k in range(1, int(m**0.5) + 1) if m % k == 0]
    large = [m // k for k in small]
    return tuple(sorted(set(small + large), reverse=True))


def _check_frequency(m: object) -> None:
    if isinstance(m, bool) or not isinstance(m, numbers.Integral):
        raise EInvalidFrequency(
            f"Frequency must be an integer, got {type(m).__name__}",
            context={"m": m},
        )
    if m < 1:
        raise EInvalidFrequency(
            f"Frequency must be at least 1, got {m}",
            context={"m": m},
        )


@dataclass(frozen=True)
class TemporalStructure:
    """Temporal aggregation structure of one seasonal cycle.

    Attributes:
        m: Highest sampling frequency per cycle (max. order of aggregation)
        kset: Aggregation orders, the divisors of m from m down to 1
        p: Number of aggregation orders
        ks: Number of aggregated values per cycle (k*)
        kt: Stacked dimension k* + m
        K: Aggregation matrix (k* x m)
        R: Temporal summing matrix (kt x m), bottom m rows are the identity
        Zt: Zero-constraint matrix (k* x kt), Zt @ R = 0

    Example:
        >>> structure = TemporalStructure.from_frequency(4)
        >>> structure.kset
        (4, 2, 1)
        >>> structure.kt
        7
    """

    m: int
    kset: tuple[int, ...] = field(init=False)
    p: int = field(init=False)
    ks: int = field(init=False)
    kt: int = field(init=False)
    K: sparse.csr_matrix = field(init=False, repr=False, compare=False)
    R: sparse.csr_matrix = field(init=False, repr=False, compare=False)
    Zt: sparse.csr_matrix = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        kset = divisors(self.m)
        ks = sum(self.m // k for k in kset[:-1])

        agg = _build_aggregation_matrix(self.m, kset)
        if ks == 0:
            # m = 1: a single level, nothing to aggregate
            r_matrix = sparse.identity(self.m, format="csr")
            zt_matrix = sparse.csr_matrix((0, self.m))
        else:
            r_matrix = sparse.vstack(
                [agg, sparse.identity(self.m, format="csr")], format="csr"
            )
            zt_matrix = sparse.hstack(
                [sparse.identity(ks, format="csr"), -agg], format="csr"
            )

        # Use object.__setattr__ since dataclass is frozen
        object.__setattr__(self, "kset", kset)
        object.__setattr__(self, "p", len(kset))
        object.__setattr__(self, "ks", ks)
        object.__setattr__(self, "kt", ks + self.m)
        object.__setattr__(self, "K", agg)
        object.__setattr__(self, "R", r_matrix)
        object.__setattr__(self, "Zt", zt_matrix)

    @classmethod
    def from_frequency(cls, m: int) -> TemporalStructure:
        """Build the structure for top sampling frequency ``m``."""
        _check_frequency(m)
        return cls(m=int(m))

    @property
    def block_sizes(self) -> dict[int, int]:
        """Number of values per cycle for each aggregation order."""
        return {k: self.m // k for k in self.kset}

    @property
    def bottom_mask(self) -> np.ndarray:
        """Boolean mask of the granular (k = 1) positions in a stacked row."""
        mask = np.zeros(self.kt, dtype=bool)
        mask[self.ks:] = True
        return mask

    def level_index(self) -> np.ndarray:
        """Aggregation order of every position in a stacked row."""
        return np.repeat(np.array(self.kset), [self.m // k for k in self.kset])

    def structural_weights(self) -> np.ndarray:
        """Row sums of R: number of granular values behind each position."""
        return np.asarray(self.R.sum(axis=1)).ravel()

    def positions(self, h: int = 1) -> tuple[np.ndarray, np.ndarray]:
        """Aggregation order and 1-based index of every stacked entry."""
        counts = [h * (self.m // k) for k in self.kset]
        orders = np.repeat(np.array(self.kset), counts)
        index = np.concatenate([np.arange(1, c + 1) for c in counts])
        return orders, index

    def labels(self, h: int = 1) -> list[str]:
        """Names of the stacked vector entries for ``h`` cycles.

        Entries are named ``k{order}h{index}``, the index running within
        each aggregation order across all cycles, e.g. ``k4h1, k2h1, k2h2``.
        """
        orders, index = self.positions(h)
        return [f"k{k}h{i}" for k, i in zip(orders, index)]

    def horizon_from_length(self, n: int, name: str = "basef") -> int:
        """Number of cycles in a stacked vector of length ``n``."""
        if n == 0 or n % self.kt != 0:
            raise EShapeMismatch(
                f"{name} has {n} values, not a multiple of k* + m = {self.kt}",
                context={"length": n, "kt": self.kt, "m": self.m},
            )
        return n // self.kt

    def to_horizon_matrix(self, vector: np.ndarray, name: str = "basef") -> np.ndarray:
        """Rearrange a stacked vector into an (h x kt) matrix, one row per cycle.

        The vector holds each aggregation order in turn (lowest frequency
        first), values in time order within an order. Row ``j`` of the
        result holds the values of cycle ``j`` for every order.
        """
        vector = np.asarray(vector, dtype=float).ravel()
        h = self.horizon_from_length(vector.size, name=name)
        blocks = []
        start = 0
        for k in self.kset:
            width = self.m // k
            stop = start + h * width
            blocks.append(vector[start:stop].reshape(h, width))
            start = stop
        return np.hstack(blocks)

    def to_vector(self, matrix: np.ndarray) -> np.ndarray:
        """Inverse of :meth:`to_horizon_matrix`."""
        matrix = np.atleast_2d(np.asarray(matrix, dtype=float))
        if matrix.shape[1] != self.kt:
            raise EShapeMismatch(
                f"Matrix has {matrix.shape[1]} columns, expected k* + m = {self.kt}",
                context={"shape": matrix.shape, "kt": self.kt},
            )
        parts = []
        start = 0
        for k in self.kset:
            width = self.m // k
            parts.append(matrix[:, start:start + width].ravel())
            start += width
        return np.concatenate(parts)


def _build_aggregation_matrix(m: int, kset: tuple[int, ...]) -> sparse.csr_matrix:
    """Stack one block-summation operator per aggregated order.

    The block for order k sums contiguous groups of k granular values,
    giving m/k rows.
    """
    blocks = [
        sparse.kron(sparse.identity(m // k), np.ones((1, k)), format="csr")
        for k in kset[:-1]
    ]
    if not blocks:
        return sparse.csr_matrix((0, m))
    return sparse.vstack(blocks, format="csr")


__all__ = ["TemporalStructure", "divisors"]
