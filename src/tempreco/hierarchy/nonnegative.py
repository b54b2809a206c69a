"""Quadratic-program reconciliation and non-negativity enforcement.

Each forecast horizon (one row of the h x kt base forecast matrix) is an
independent quadratic program

    minimise    (x - y)' W^(-1) (x - y)
    subject to  Zt x = 0
                x_bottom >= 0          (non-negative reconciliation only)

A horizon whose solve fails is flagged in the diagnostics table and keeps
the solver's best-effort output; the other horizons are unaffected.
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING, Iterable

import numpy as np
import pandas as pd

from tempreco.core.config import QPSettings
from tempreco.core.errors import QPNonConvergenceWarning
from tempreco.core.types import QPSolverFn

from . import linalg
from .qp import solve_qp as default_solve_qp

if TYPE_CHECKING:
    from .structure import TemporalStructure

logger = logging.getLogger(__name__)

# Reconciled values below -NEGATIVE_TOL trigger the two-stage QP re-solve
NEGATIVE_TOL = 1e-6

INFO_COLUMNS = ["obj_val", "run_time", "iter", "pri_res", "status", "converged"]


def qp_reconcile(
    basef: np.ndarray,
    omega: np.ndarray,
    structure: "TemporalStructure",
    nonnegative: bool = False,
    settings: QPSettings | None = None,
    solve_qp: QPSolverFn | None = None,
    horizons: Iterable[int] | None = None,
    notes: list[str] | None = None,
) -> tuple[np.ndarray, pd.DataFrame]:
    """Reconcile horizons by quadratic programming.

    Args:
        basef: Base forecasts, one row per horizon (h x kt)
        omega: Weighting matrix W (kt x kt)
        structure: Temporal structure
        nonnegative: Bound the granular values below by zero
        settings: Solver settings
        solve_qp: QP capability, defaults to the cvxpy-based solver
        horizons: Zero-based rows to solve (all rows if None)
        notes: Optional list collecting advisory messages

    Returns:
        Tuple of (reconciled h x kt matrix, diagnostics indexed by horizon).
        Rows not in ``horizons`` are returned unchanged.
    """
    settings = settings or QPSettings()
    solver = solve_qp or default_solve_qp
    basef = np.atleast_2d(np.asarray(basef, dtype=float))
    rows = list(range(basef.shape[0])) if horizons is None else list(horizons)

    w_inv = linalg.symmetrize(linalg.inverse(omega, label="Omega", notes=notes))
    p_matrix = 2.0 * w_inv
    zt = linalg.to_dense(structure.Zt)
    bottom = structure.bottom_mask
    lb = np.where(bottom & nonnegative, 0.0, -np.inf)
    ub = np.full(structure.kt, np.inf)

    out = basef.copy()
    records = []
    failed = []
    for row in rows:
        y = basef[row]
        q = -2.0 * w_inv @ y
        x, diag = solver(p_matrix, q, zt, lb, ub, settings)
        x = np.asarray(x, dtype=float).ravel()

        if diag.converged and nonnegative:
            x = clip_to_coherent(x, structure)[0]
        elif not diag.converged:
            failed.append(row + 1)
            logger.warning(
                "QP for horizon %d did not converge (status: %s)", row + 1, diag.status
            )

        out[row] = x
        records.append(
            {
                "h": row + 1,
                "obj_val": diag.obj_val,
                "run_time": diag.run_time,
                "iter": diag.iterations,
                "pri_res": diag.pri_res,
                "status": diag.status,
                "converged": bool(diag.converged),
            }
        )

    if failed:
        message = f"QP did not converge for horizons {failed}"
        warnings.warn(message, QPNonConvergenceWarning, stacklevel=2)
        if notes is not None:
            notes.append(message)

    info = pd.DataFrame.from_records(records, columns=["h"] + INFO_COLUMNS).set_index("h")
    return out, info


def clip_to_coherent(rows: np.ndarray, structure: "TemporalStructure") -> np.ndarray:
    """Zero negative granular values and re-aggregate them through R."""
    rows = np.atleast_2d(np.asarray(rows, dtype=float))
    bottom = np.maximum(rows[:, structure.bottom_mask], 0.0)
    return bottom @ linalg.to_dense(structure.R).T


def negative_horizons(recf: np.ndarray, tol: float = NEGATIVE_TOL) -> list[int]:
    """Zero-based horizons (rows) holding a value below ``-tol``."""
    recf = np.atleast_2d(recf)
    return [int(i) for i in np.flatnonzero(np.any(recf < -tol, axis=1))]


def enforce_nonnegative(
    recf: np.ndarray,
    basef: np.ndarray,
    omega: np.ndarray,
    structure: "TemporalStructure",
    settings: QPSettings | None = None,
    solve_qp: QPSolverFn | None = None,
    notes: list[str] | None = None,
) -> tuple[np.ndarray, pd.DataFrame | None]:
    """Second stage of two-stage non-negative reconciliation.

    Every horizon of the closed-form solution ``recf`` holding a value
    below ``-NEGATIVE_TOL`` is re-solved in full from its base forecasts
    with the non-negativity bounds. Horizons whose negatives all lie within
    the tolerance are clipped at the granular level and re-aggregated.
    Horizons without negatives keep the closed form.

    Returns:
        Tuple of (corrected h x kt matrix, diagnostics of the re-solved
        horizons or None when nothing needed correcting)
    """
    out = np.array(recf, dtype=float, copy=True)
    rows = negative_horizons(out)
    marginal = [r for r in negative_horizons(out, tol=0.0) if r not in rows]
    if marginal:
        out[marginal] = clip_to_coherent(out[marginal], structure)
    if not rows:
        return out, None

    logger.debug("Re-solving %d horizon(s) with negative values", len(rows))
    solved, info = qp_reconcile(
        basef,
        omega,
        structure,
        nonnegative=True,
        settings=settings,
        solve_qp=solve_qp,
        horizons=rows,
        notes=notes,
    )
    out[rows] = solved[rows]
    return out, info


__all__ = [
    "NEGATIVE_TOL",
    "qp_reconcile",
    "clip_to_coherent",
    "negative_horizons",
    "enforce_nonnegative",
]
