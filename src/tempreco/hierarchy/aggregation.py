"""Temporal aggregation and projection matrix operations.

Provides functions to aggregate a granular series to every temporal level
and to create the projection matrices of the reconciliation strategies.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from tempreco.core.errors import EShapeMismatch

from . import linalg

if TYPE_CHECKING:
    from .structure import TemporalStructure

logger = logging.getLogger(__name__)


def aggregate_series(
    values: np.ndarray | pd.Series,
    structure: "TemporalStructure",
) -> np.ndarray:
    """Aggregate a granular series to all temporal levels.

    The series must cover whole cycles (a multiple of m values, oldest
    first). The result is a stacked vector ordered from the lowest to the
    highest frequency, the layout expected for base forecasts and
    residuals.

    Example:
        >>> structure = TemporalStructure.from_frequency(4)
        >>> aggregate_series(np.arange(1, 9), structure)
        array([10., 26.,  3.,  7., 11., 15.,  1.,  2.,  3.,  4.,  5.,  6.,  7.,  8.])
    """
    y = np.asarray(values, dtype=float).ravel()
    if y.size == 0 or y.size % structure.m != 0:
        raise EShapeMismatch(
            f"Series length {y.size} is not a multiple of m = {structure.m}",
            context={"length": y.size, "m": structure.m},
            fix_hint="Trim the series to whole seasonal cycles before aggregating",
        )
    return np.concatenate([y.reshape(-1, k).sum(axis=1) for k in structure.kset])


def aggregate_frame(
    df: pd.DataFrame,
    structure: "TemporalStructure",
    value_col: str = "y",
) -> pd.DataFrame:
    """Aggregate a long-format granular series to all temporal levels.

    Returns a DataFrame with columns [k, index, value], one row per
    stacked entry, in stacked order.
    """
    if value_col not in df.columns:
        raise EShapeMismatch(
            f"Column '{value_col}' not found",
            context={"columns": list(df.columns)},
        )
    stacked = aggregate_series(df[value_col].to_numpy(), structure)
    orders, index = structure.positions(stacked.size // structure.kt)
    return pd.DataFrame({"k": orders, "index": index, value_col: stacked})


def create_bottom_up_matrix(structure: "TemporalStructure") -> np.ndarray:
    """Create projection matrix for bottom-up reconciliation.

    Bottom-up keeps the granular forecasts of each cycle and aggregates
    them through R, ignoring the upper levels.

    Returns:
        Projection matrix M of shape (kt, kt) such that
        reconciled = M @ base for one cycle
    """
    selector = np.hstack([np.zeros((structure.m, structure.ks)), np.eye(structure.m)])
    return linalg.to_dense(structure.R) @ selector


def create_projection_matrix(
    structure: "TemporalStructure",
    omega: np.ndarray,
    notes: list[str] | None = None,
) -> np.ndarray:
    """Create the GLS projection matrix from the summing matrix.

    M = R (R' W^(-1) R)^(-1) R' W^(-1)

    Args:
        structure: Temporal structure
        omega: Weighting matrix W of shape (kt, kt)
        notes: Optional list collecting advisory messages

    Returns:
        Projection matrix M of shape (kt, kt)
    """
    r_matrix = linalg.to_dense(structure.R)
    w_inv = linalg.inverse(omega, label="Omega", notes=notes)

    # Compute (R' W^(-1) R) and R' W^(-1)
    rt_w_inv = r_matrix.T @ w_inv
    bracket = rt_w_inv @ r_matrix

    return r_matrix @ linalg.solve(bracket, rt_w_inv, label="R' W^-1 R", notes=notes)


def create_structural_matrix(
    structure: "TemporalStructure",
    omega: np.ndarray,
    notes: list[str] | None = None,
) -> np.ndarray:
    """Create the GLS projection matrix from the zero-constraint matrix.

    G = I - W Zt' (Zt W Zt')^(-1) Zt

    Same operator as :func:`create_projection_matrix`, computed from the
    k* constraint rows instead of the kt summing rows. When Zt W Zt' is
    singular the result is computed through the summing matrix instead,
    which keeps the operator a projection onto coherent forecasts.

    Args:
        structure: Temporal structure
        omega: Weighting matrix W of shape (kt, kt)
        notes: Optional list collecting advisory messages

    Returns:
        Projection matrix G of shape (kt, kt)
    """
    zt = linalg.to_dense(structure.Zt)
    w_z = omega @ zt.T
    bracket = zt @ w_z
    if not linalg.is_well_conditioned(bracket):
        message = "Zt W Zt' is singular or ill-conditioned; using the summing-matrix projection"
        logger.warning(message)
        if notes is not None:
            notes.append(message)
        return create_projection_matrix(structure, omega, notes=notes)

    return np.eye(structure.kt) - w_z @ linalg.solve(
        bracket, zt, label="Zt W Zt'", notes=notes
    )


__all__ = [
    "aggregate_series",
    "aggregate_frame",
    "create_bottom_up_matrix",
    "create_projection_matrix",
    "create_structural_matrix",
]
