"""Forecast reconciliation through temporal hierarchies.

Base forecasts of one series at every temporal aggregation level are
mapped onto the coherent subspace (annual = sum of its quarters, ...)
either by a closed-form GLS projection, in the summing-matrix form or the
equivalent zero-constraint form, or by solving one quadratic program per
horizon, optionally with non-negativity bounds. Bottom-up simply
re-aggregates the granular forecasts.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
import pandas as pd

from tempreco.core.config import QPSettings, ReconcileConfig
from tempreco.core.errors import EInvalidOption, EShapeMismatch
from tempreco.core.results import ReconciliationResult
from tempreco.core.types import (
    OutputDetail,
    QPSolverFn,
    ReconciliationMethod,
    ShrinkFn,
    SolveMode,
    SolverForm,
)

from . import linalg
from .aggregation import (
    create_bottom_up_matrix,
    create_projection_matrix,
    create_structural_matrix,
)
from .composer import compose_result, count_negatives
from .covariance import estimate_covariance
from .nonnegative import enforce_nonnegative, qp_reconcile
from .structure import TemporalStructure

logger = logging.getLogger(__name__)


def _as_vector(basef: Any) -> np.ndarray:
    arr = np.asarray(basef, dtype=float)
    if arr.ndim > 2 or (arr.ndim == 2 and min(arr.shape) != 1):
        raise EShapeMismatch(
            "basef must be a vector",
            context={"shape": arr.shape},
        )
    return arr.ravel()


def _bottom_matrix(
    vector: np.ndarray,
    structure: TemporalStructure,
    bottom_only: bool | None,
) -> np.ndarray:
    """Granular forecasts, one row per cycle, for bottom-up."""
    n = vector.size
    if bottom_only is None:
        bottom_only = n % structure.kt != 0 and n % structure.m == 0
    if bottom_only:
        if n == 0 or n % structure.m != 0:
            raise EShapeMismatch(
                f"basef has {n} granular values, not a multiple of m = {structure.m}",
                context={"length": n, "m": structure.m},
            )
        return vector.reshape(-1, structure.m)
    return structure.to_horizon_matrix(vector)[:, structure.ks:]


class Reconciler:
    """Temporal forecast reconciliation engine.

    Example:
        >>> reconciler = Reconciler(12, ReconcileConfig(method="wlsv"))
        >>> result = reconciler.reconcile(base_forecasts, residuals=residuals)
        >>> result.rec_check
        True
    """

    def __init__(
        self,
        structure: TemporalStructure | int,
        config: ReconcileConfig | None = None,
        shrink: ShrinkFn | None = None,
        solve_qp: QPSolverFn | None = None,
    ) -> None:
        if not isinstance(structure, TemporalStructure):
            structure = TemporalStructure.from_frequency(structure)
        self.structure = structure
        self.config = config or ReconcileConfig()
        self.shrink = shrink
        self.solve_qp = solve_qp

    @property
    def method(self) -> ReconciliationMethod:
        return self.config.method

    def reconcile(
        self,
        basef: np.ndarray,
        residuals: np.ndarray | None = None,
        omega: np.ndarray | None = None,
        bottom_only: bool | None = None,
    ) -> ReconciliationResult | pd.Series:
        """Reconcile base forecasts to be temporally coherent.

        Args:
            basef: Base forecasts for h cycles, ordered from the lowest to the
                highest frequency (h * kt values). Bottom-up also accepts the
                h * m granular forecasts alone.
            residuals: In-sample residuals ordered like basef, or an (N x kt)
                matrix, for the methods that estimate Omega from them
            omega: Weighting matrix for method 'omega'
            bottom_only: Treat basef as granular forecasts only (bottom-up);
                inferred from its length when None

        Returns:
            ReconciliationResult, or the labelled reconciled vector when the
            output detail is 'summary'
        """
        cfg = self.config
        structure = self.structure
        vector = _as_vector(basef)

        if cfg.method is ReconciliationMethod.BOTTOM_UP:
            return self._bottom_up(vector, bottom_only)
        if bottom_only:
            raise EInvalidOption(
                "Granular-only base forecasts can only be reconciled bottom-up",
                context={"method": cfg.method.value},
            )

        base = structure.to_horizon_matrix(vector)
        estimate = estimate_covariance(
            cfg.method,
            structure,
            residuals=residuals,
            mse=cfg.mse,
            use_shrink_library=cfg.use_shrink_library,
            omega=omega,
            shrink=self.shrink,
        )
        omega_used = estimate.omega
        notes = list(estimate.warnings)
        logger.debug(
            "Reconciling %d horizon(s), m=%d, method=%s, form=%s, solve=%s, nn=%s",
            base.shape[0],
            structure.m,
            cfg.method.value,
            cfg.form.value,
            cfg.solve_mode.value,
            cfg.nonnegative,
        )

        if cfg.solve_mode is SolveMode.QP:
            recf, info = qp_reconcile(
                base,
                omega_used,
                structure,
                nonnegative=cfg.nonnegative,
                settings=cfg.qp_settings,
                solve_qp=self.solve_qp,
                notes=notes,
            )
            return compose_result(
                recf,
                structure,
                cfg.method,
                output_detail=cfg.output_detail,
                omega=omega_used,
                nn_check=count_negatives(recf),
                form=None,
                solve_mode=cfg.solve_mode,
                info=info,
                notes=notes,
            )

        matrices: dict[str, np.ndarray] = {}
        if cfg.form is SolverForm.PROJECTION:
            operator = create_projection_matrix(structure, omega_used, notes=notes)
            matrices["M"] = operator
            matrices["S"] = linalg.to_dense(structure.R)
        else:
            operator = create_structural_matrix(structure, omega_used, notes=notes)
            matrices["G"] = operator

        recf = base @ operator.T
        nn_check = count_negatives(recf)
        info = None
        if cfg.nonnegative:
            recf, info = enforce_nonnegative(
                recf,
                base,
                omega_used,
                structure,
                settings=cfg.qp_settings,
                solve_qp=self.solve_qp,
                notes=notes,
            )

        return compose_result(
            recf,
            structure,
            cfg.method,
            output_detail=cfg.output_detail,
            omega=omega_used,
            nn_check=nn_check,
            form=cfg.form,
            solve_mode=cfg.solve_mode,
            info=info,
            notes=notes,
            **matrices,
        )

    def _bottom_up(
        self, vector: np.ndarray, bottom_only: bool | None
    ) -> ReconciliationResult | pd.Series:
        structure = self.structure
        bottom = _bottom_matrix(vector, structure, bottom_only)
        recf = bottom @ linalg.to_dense(structure.R).T
        logger.debug("Bottom-up aggregation of %d cycle(s), m=%d", bottom.shape[0], structure.m)
        return compose_result(
            recf,
            structure,
            ReconciliationMethod.BOTTOM_UP,
            output_detail=self.config.output_detail,
            M=create_bottom_up_matrix(structure),
            S=linalg.to_dense(structure.R),
        )


def reconcile_temporal(
    basef: np.ndarray,
    m: int,
    method: ReconciliationMethod | str,
    residuals: np.ndarray | None = None,
    *,
    mse: bool = True,
    use_shrink_library: bool = False,
    omega: np.ndarray | None = None,
    form: SolverForm | str = SolverForm.PROJECTION,
    solve_mode: SolveMode | str = SolveMode.DIRECT,
    nonnegative: bool = False,
    output_detail: OutputDetail | str = OutputDetail.FULL,
    qp_settings: QPSettings | None = None,
    shrink: ShrinkFn | None = None,
    solve_qp: QPSolverFn | None = None,
    bottom_only: bool | None = None,
) -> ReconciliationResult | pd.Series:
    """Reconcile the temporal-hierarchy forecasts of one series.

    Args:
        basef: Base forecasts ordered [lowest_freq' ... highest_freq']'
        m: Highest sampling frequency per seasonal cycle
        method: 'bu', 'ols', 'struc', 'wlsv', 'wlsh', 'acov', 'strar1',
            'sar1', 'har1', 'shr', 'sam' or 'omega' (descriptive aliases such
            as 'identity' or 'sample-covariance' are accepted)
        residuals: In-sample residuals ordered like basef
        mse: Covariances without mean correction (cross-products over N)
        use_shrink_library: Use scikit-learn's Ledoit-Wolf estimator for 'shr'
        omega: Weighting matrix for method 'omega'
        form: 'projection' (summing matrix) or 'structural' (zero constraints)
        solve_mode: 'direct' closed form or 'qp'
        nonnegative: Require non-negative reconciled forecasts
        output_detail: 'full' record or 'summary' vector
        qp_settings: Quadratic-program solver settings
        shrink: Custom shrinkage estimator
        solve_qp: Custom quadratic-program solver
        bottom_only: basef holds granular forecasts only (bottom-up)

    Returns:
        ReconciliationResult, or the labelled reconciled vector for 'summary'

    Raises:
        EInvalidFrequency: If m is not a positive integer
        EShapeMismatch: If basef or residuals do not fit the structure
        EMissingResiduals: If the method needs residuals and none were given
        EMissingOmega: If method is 'omega' and omega is None
        EInvalidOption: If an option value is unknown

    Example:
        >>> result = reconcile_temporal(basef, m=4, method="ols")
        >>> result.recf["k4h1"] == result.recf[["k1h1", "k1h2", "k1h3", "k1h4"]].sum()
    """
    config = ReconcileConfig(
        method=method,
        form=form,
        solve_mode=solve_mode,
        nonnegative=nonnegative,
        output_detail=output_detail,
        mse=mse,
        use_shrink_library=use_shrink_library,
        qp_settings=qp_settings or QPSettings(),
    )
    reconciler = Reconciler(m, config, shrink=shrink, solve_qp=solve_qp)
    return reconciler.reconcile(basef, residuals=residuals, omega=omega, bottom_only=bottom_only)


def reconcile_forecasts(
    forecasts: pd.DataFrame,
    m: int,
    method: ReconciliationMethod | str = ReconciliationMethod.BOTTOM_UP,
    residuals: pd.DataFrame | np.ndarray | None = None,
    value_col: str = "yhat",
    **kwargs: Any,
) -> pd.DataFrame:
    """Reconcile a long-format forecast DataFrame.

    ``forecasts`` has one row per stacked entry with columns [k, index,
    value_col]: the aggregation order, the 1-based position within that
    order, and the forecast. Residuals may be a DataFrame of the same
    layout or a stacked vector. Returns the frame in stacked order with the
    reconciled values in ``value_col``; other columns are kept.
    """
    missing = [c for c in ("k", "index", value_col) if c not in forecasts.columns]
    if missing:
        raise EShapeMismatch(
            f"Missing forecast columns: {missing}",
            context={"columns": list(forecasts.columns)},
        )

    structure = TemporalStructure.from_frequency(m)
    rank = {k: i for i, k in enumerate(structure.kset)}
    unknown = sorted(set(forecasts["k"]) - set(rank))
    if unknown:
        raise EShapeMismatch(
            f"Aggregation orders {unknown} do not divide m = {m}",
            context={"kset": structure.kset},
        )

    def _stacked(frame: pd.DataFrame, name: str) -> pd.DataFrame:
        out = (
            frame.assign(_rank=frame["k"].map(rank))
            .sort_values(["_rank", "index"])
            .drop(columns="_rank")
            .reset_index(drop=True)
        )
        # Positions within each order must run 1, 2, ... exactly once
        expected = out.groupby("k", sort=False).cumcount() + 1
        if not np.array_equal(out["index"].to_numpy(), expected.to_numpy()):
            raise EShapeMismatch(
                f"{name} index must run 1, 2, ... within each order without gaps or repeats",
                context={"rows": len(out)},
                fix_hint="Provide one row per (k, index) position of whole cycles",
            )
        return out

    ordered = _stacked(forecasts, "Forecast")
    if isinstance(residuals, pd.DataFrame):
        res_col = value_col if value_col in residuals.columns else residuals.columns[-1]
        residuals = _stacked(residuals, "Residual")[res_col].to_numpy(dtype=float)

    kwargs["output_detail"] = OutputDetail.SUMMARY
    reconciled = reconcile_temporal(
        ordered[value_col].to_numpy(dtype=float),
        m,
        method,
        residuals,
        **kwargs,
    )

    orders, index = structure.positions(reconciled.size // structure.kt)
    if reconciled.size == len(ordered):
        if not np.array_equal(ordered["k"].to_numpy(), orders):
            raise EShapeMismatch(
                "Forecast rows per order do not match whole cycles",
                context={"counts": ordered["k"].value_counts().to_dict()},
            )
        return ordered.assign(**{value_col: reconciled.to_numpy()})
    # Granular-only input gains the upper levels
    return pd.DataFrame({"k": orders, "index": index, value_col: reconciled.to_numpy()})


__all__ = ["Reconciler", "reconcile_temporal", "reconcile_forecasts", "ReconciliationMethod"]
