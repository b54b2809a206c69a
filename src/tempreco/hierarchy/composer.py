"""Assemble reconciled horizon rows into the labelled result record."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from tempreco.core.results import ReconciliationResult
from tempreco.core.types import OutputDetail, ReconciliationMethod, SolveMode, SolverForm

from . import linalg

if TYPE_CHECKING:
    from .structure import TemporalStructure

# Largest |Zt x| accepted as coherent
COHERENCE_TOL = 1e-6


def coherence_check(
    recf: np.ndarray,
    structure: "TemporalStructure",
    tol: float = COHERENCE_TOL,
) -> bool:
    """True when every horizon row satisfies ``Zt x = 0`` within ``tol``."""
    recf = np.atleast_2d(recf)
    if structure.ks == 0:
        return bool(np.all(np.isfinite(recf)))
    gaps = recf @ linalg.to_dense(structure.Zt).T
    return bool(np.all(np.abs(gaps) < tol))


def count_negatives(recf: np.ndarray) -> int:
    """Number of strictly negative values."""
    return int(np.sum(np.asarray(recf) < 0))


def compose_result(
    recf: np.ndarray,
    structure: "TemporalStructure",
    method: ReconciliationMethod,
    output_detail: OutputDetail = OutputDetail.FULL,
    omega: np.ndarray | None = None,
    nn_check: int | None = None,
    form: SolverForm | None = None,
    solve_mode: SolveMode | None = None,
    M: np.ndarray | None = None,
    G: np.ndarray | None = None,
    S: np.ndarray | None = None,
    info: pd.DataFrame | None = None,
    notes: list[str] | None = None,
) -> ReconciliationResult | pd.Series:
    """Reshape the (h x kt) reconciled matrix and build the output.

    Args:
        recf: Reconciled forecasts, one row per horizon
        structure: Temporal structure
        method: Reconciliation method used
        output_detail: 'summary' returns only the labelled vector
        omega: Weighting matrix used
        nn_check: Negative count before correction (counted on recf if None)
        form: Closed form used
        solve_mode: Solve mode used
        M: Projection matrix (projection form, bottom-up)
        G: Projection matrix (structural form)
        S: Temporal summing matrix
        info: QP diagnostics per horizon
        notes: Advisory messages

    Returns:
        ReconciliationResult, or a labelled pandas Series for 'summary'
    """
    recf = np.atleast_2d(np.asarray(recf, dtype=float))
    h = recf.shape[0]
    vector = pd.Series(
        structure.to_vector(recf),
        index=structure.labels(h),
        name="recf",
    )
    if output_detail is OutputDetail.SUMMARY:
        return vector

    return ReconciliationResult(
        recf=vector,
        method=method,
        omega=None if omega is None else np.asarray(omega, dtype=float),
        nn_check=count_negatives(recf) if nn_check is None else int(nn_check),
        rec_check=coherence_check(recf, structure),
        M=M,
        G=G,
        S=S,
        info=info,
        warnings=list(notes or []),
        form=form,
        solve_mode=solve_mode,
    )


__all__ = ["COHERENCE_TOL", "coherence_check", "count_negatives", "compose_result"]
