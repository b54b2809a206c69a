"""Small linear-algebra helpers used by the reconciliation closed forms.

Singular or ill-conditioned systems fall back to the SVD-based
Moore-Penrose pseudo-inverse instead of failing.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy import linalg, sparse

logger = logging.getLogger(__name__)

# Reciprocal condition numbers below this are treated as singular
RCOND_LIMIT = 1e-12


def to_dense(matrix: np.ndarray | sparse.spmatrix) -> np.ndarray:
    """Return a dense float copy of a dense or sparse matrix."""
    if sparse.issparse(matrix):
        return matrix.toarray().astype(float)
    return np.array(matrix, dtype=float)


def is_well_conditioned(a: np.ndarray) -> bool:
    """True when ``a`` can be solved directly with confidence."""
    if a.size == 0:
        return True
    if not np.all(np.isfinite(a)):
        return False
    return 1.0 / np.linalg.cond(a) > RCOND_LIMIT


def solve(
    a: np.ndarray,
    b: np.ndarray,
    label: str = "system",
    notes: list[str] | None = None,
) -> np.ndarray:
    """Solve ``a @ x = b``, using the pseudo-inverse when ``a`` is singular.

    Args:
        a: Square coefficient matrix
        b: Right-hand side(s)
        label: Name of the system, used in log messages
        notes: Optional list collecting advisory messages

    Returns:
        Solution ``x``
    """
    if a.shape[0] == 0:
        return np.zeros((0,) + b.shape[1:])
    if is_well_conditioned(a):
        try:
            return linalg.solve(a, b)
        except linalg.LinAlgError:
            pass
    message = f"{label} is singular or ill-conditioned; using the pseudo-inverse"
    logger.warning(message)
    if notes is not None:
        notes.append(message)
    return linalg.pinv(a) @ b


def inverse(
    a: np.ndarray,
    label: str = "matrix",
    notes: list[str] | None = None,
) -> np.ndarray:
    """Inverse of ``a``, or its pseudo-inverse when ``a`` is singular."""
    return solve(a, np.eye(a.shape[0]), label=label, notes=notes)


def symmetrize(a: np.ndarray) -> np.ndarray:
    """Average ``a`` with its transpose to remove rounding asymmetry."""
    return (a + a.T) / 2.0


__all__ = ["to_dense", "is_well_conditioned", "solve", "inverse", "symmetrize"]
