"""Result types for temporal reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from tempreco.core.types import ReconciliationMethod, SolveMode, SolverForm


@dataclass(frozen=True)
class ReconciliationResult:
    """Reconciled forecasts with the matrices and diagnostics that produced them.

    Attributes:
        recf: Reconciled forecasts, labelled ``k{order}h{index}`` and ordered
            from the lowest to the highest frequency
        omega: Weighting matrix used (None for bottom-up)
        nn_check: Number of negative values before any non-negativity correction
        rec_check: True when every horizon satisfies the aggregation constraints
        M: Projection matrix (projection form and bottom-up)
        G: Projection matrix of the structural form
        S: Temporal summing matrix R (projection form and bottom-up)
        info: Per-horizon quadratic-program diagnostics
        warnings: Advisory conditions met during the computation
    """

    recf: pd.Series
    method: ReconciliationMethod
    omega: np.ndarray | None = None
    nn_check: int = 0
    rec_check: bool = True
    M: np.ndarray | None = field(default=None, repr=False)
    G: np.ndarray | None = field(default=None, repr=False)
    S: np.ndarray | None = field(default=None, repr=False)
    info: pd.DataFrame | None = None
    warnings: list[str] = field(default_factory=list)
    form: SolverForm | None = None
    solve_mode: SolveMode | None = None

    @property
    def values(self) -> np.ndarray:
        """Reconciled forecasts as a plain array."""
        return self.recf.to_numpy(dtype=float)

    @property
    def failed_horizons(self) -> list[int]:
        """Horizons whose quadratic program did not converge."""
        if self.info is None or self.info.empty:
            return []
        return [int(h) for h in self.info.index[~self.info["converged"].astype(bool)]]

    def level(self, order: int) -> pd.Series:
        """Reconciled forecasts of one aggregation order."""
        prefix = f"k{order}h"
        mask = self.recf.index.str.startswith(prefix)
        return self.recf[mask]

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary, omitting absent entries."""
        out: dict[str, Any] = {
            "recf": self.recf,
            "omega": self.omega,
            "nn_check": self.nn_check,
            "rec_check": self.rec_check,
            "M": self.M,
            "G": self.G,
            "S": self.S,
            "info": self.info,
        }
        return {k: v for k, v in out.items() if v is not None}

    def summary(self) -> dict[str, Any]:
        """Human-readable summary of the reconciliation."""
        return {
            "method": self.method.value,
            "form": self.form.value if self.form is not None else None,
            "solve_mode": self.solve_mode.value if self.solve_mode is not None else None,
            "n_values": int(self.recf.size),
            "nn_check": self.nn_check,
            "rec_check": self.rec_check,
            "failed_horizons": self.failed_horizons,
            "warnings": len(self.warnings),
        }


__all__ = ["ReconciliationResult"]
