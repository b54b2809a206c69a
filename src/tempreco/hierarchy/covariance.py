"""Forecast-error covariance estimation over the stacked temporal levels.

Each reconciliation method except bottom-up is a choice of weighting
matrix Omega. Methods that need in-sample residuals take them either as a
stacked vector (N whole cycles, ordered like the base forecasts) or as an
(N x kt) matrix with one row per cycle.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

import numpy as np
from scipy import linalg as sla
from sklearn.covariance import LedoitWolf

from tempreco.core.errors import (
    EInvalidOption,
    EMissingOmega,
    EMissingResiduals,
    EShapeMismatch,
    SingularityRiskWarning,
)
from tempreco.core.types import ReconciliationMethod, ShrinkFn

from . import linalg

if TYPE_CHECKING:
    from .structure import TemporalStructure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CovarianceEstimate:
    """Weighting matrix and the advisory notes collected while estimating it.

    Attributes:
        omega: Dense (kt x kt) weighting matrix
        warnings: Singularity-risk messages
        intensity: Shrinkage intensity (shrinkage method, default estimator only)
    """

    omega: np.ndarray
    warnings: list[str] = field(default_factory=list)
    intensity: float | None = None


@dataclass(frozen=True)
class _Residuals:
    """Residuals as a cycle matrix plus one time-ordered vector per order."""

    matrix: np.ndarray
    by_order: dict[int, np.ndarray]

    @property
    def n_cycles(self) -> int:
        return self.matrix.shape[0]


def prepare_residuals(
    residuals: np.ndarray,
    structure: "TemporalStructure",
) -> _Residuals:
    """Arrange residuals into the (N x kt) matrix and per-order sequences."""
    res = np.asarray(residuals, dtype=float)
    if res.ndim == 2 and res.shape[1] != 1:
        if res.shape[1] != structure.kt:
            raise EShapeMismatch(
                f"Residual matrix has {res.shape[1]} columns, expected k* + m = {structure.kt}",
                context={"shape": res.shape, "kt": structure.kt},
            )
        matrix = res
    elif res.ndim <= 2:
        matrix = structure.to_horizon_matrix(res.ravel(), name="res")
    else:
        raise EShapeMismatch(
            f"Residuals must be a vector or a matrix, got {res.ndim} dimensions",
            context={"shape": res.shape},
        )

    by_order: dict[int, np.ndarray] = {}
    start = 0
    for k in structure.kset:
        width = structure.m // k
        by_order[k] = matrix[:, start:start + width].ravel()
        start += width
    return _Residuals(matrix=matrix, by_order=by_order)


def cov_mod(x: np.ndarray, mse: bool = True) -> np.ndarray | float:
    """Covariance of residuals, missing values dropped.

    Args:
        x: Residual vector, or matrix with one column per series
        mse: If True, cross-products over N without mean correction;
             otherwise the unbiased sample (co)variance

    Returns:
        Scalar variance for a vector, covariance matrix for a matrix
    """
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        x = x[np.isfinite(x)]
        if x.size < (1 if mse else 2):
            raise EMissingResiduals(
                "Not enough finite residuals to estimate a variance",
                context={"n": int(x.size)},
            )
        if mse:
            return float(x @ x / x.size)
        return float(np.var(x, ddof=1))

    x = x[np.all(np.isfinite(x), axis=1)]
    n = x.shape[0]
    if n < (1 if mse else 2):
        raise EMissingResiduals(
            "Not enough complete residual rows to estimate a covariance",
            context={"n": n},
        )
    if mse:
        return x.T @ x / n
    return np.atleast_2d(np.cov(x, rowvar=False, ddof=1))


def lag1_autocorrelation(x: np.ndarray) -> float:
    """Lag-1 sample autocorrelation of a sequence, missing values dropped."""
    x = np.asarray(x, dtype=float)
    x = x[np.isfinite(x)]
    if x.size < 2:
        return 0.0
    centered = x - x.mean()
    denom = centered @ centered
    if denom == 0:
        return 0.0
    return float(centered[:-1] @ centered[1:] / denom)


def shrink_estim(x: np.ndarray, mse: bool = True) -> tuple[np.ndarray, float]:
    """Shrink the residual covariance toward its diagonal.

    The intensity minimises the estimated mean squared error of the
    correlations (Schafer and Strimmer, 2005):

        lambda = sum var(r_ij) / sum r_ij^2   (i != j), clipped to [0, 1]

    Args:
        x: Residual matrix (N x n)
        mse: If True, no mean correction (cross-products over N)

    Returns:
        Tuple of (shrunk covariance matrix, shrinkage intensity)
    """
    x = np.asarray(x, dtype=float)
    x = x[np.all(np.isfinite(x), axis=1)]
    n = x.shape[0]
    if n < 2:
        raise EMissingResiduals(
            "Shrinkage needs at least two complete residual rows",
            context={"n": n},
        )

    if mse:
        covm = x.T @ x / n
    else:
        covm = np.atleast_2d(np.cov(x, rowvar=False, ddof=1))

    target = np.diag(np.diag(covm))
    sd = np.sqrt(np.diag(covm))
    sd = np.where(sd > 0, sd, 1.0)
    corm = covm / np.outer(sd, sd)

    # Residuals are scaled without centering in either mode
    xs = x / sd
    v = (1.0 / (n * (n - 1))) * ((xs**2).T @ (xs**2) - (xs.T @ xs) ** 2 / n)
    np.fill_diagonal(v, 0.0)

    d = (corm - np.eye(corm.shape[0])) ** 2
    np.fill_diagonal(d, 0.0)
    lam = float(v.sum() / d.sum()) if d.sum() > 0 else 1.0
    lam = min(max(lam, 0.0), 1.0)

    return lam * target + (1.0 - lam) * covm, lam


def ledoit_wolf_shrink(x: np.ndarray, mse: bool = True) -> np.ndarray:
    """Ledoit-Wolf shrunk covariance of the complete residual rows."""
    x = np.asarray(x, dtype=float)
    x = x[np.all(np.isfinite(x), axis=1)]
    return LedoitWolf(assume_centered=mse).fit(x).covariance_


def _block_diag(blocks: list[np.ndarray]) -> np.ndarray:
    return sla.block_diag(*blocks)


def _ar1_correlation(structure: "TemporalStructure", res: _Residuals) -> np.ndarray:
    """Block-diagonal AR(1) correlation, one Toeplitz block per order."""
    blocks = []
    for k in structure.kset:
        rho = lag1_autocorrelation(res.by_order[k])
        width = structure.m // k
        lags = np.abs(np.subtract.outer(np.arange(width), np.arange(width)))
        blocks.append(np.power(rho, lags))
        logger.debug("AR(1) coefficient for order %d: %.4f", k, rho)
    return _block_diag(blocks)


def _series_variances(
    structure: "TemporalStructure", res: _Residuals, mse: bool
) -> np.ndarray:
    """One pooled variance per order, repeated over the order's positions."""
    var_freq = [cov_mod(res.by_order[k], mse) for k in structure.kset]
    return np.repeat(var_freq, [structure.m // k for k in structure.kset])


def _hierarchy_variances(res: _Residuals, mse: bool) -> np.ndarray:
    return np.diag(np.atleast_2d(cov_mod(res.matrix, mse))).copy()


def _scale(correlation: np.ndarray, variances: np.ndarray) -> np.ndarray:
    d = np.diag(np.sqrt(variances))
    return d @ correlation @ d


@dataclass
class _Context:
    structure: "TemporalStructure"
    residuals: _Residuals | None
    mse: bool
    shrink: ShrinkFn
    omega: np.ndarray | None
    intensity: float | None = None


def _ols(ctx: _Context) -> np.ndarray:
    return np.eye(ctx.structure.kt)


def _struc(ctx: _Context) -> np.ndarray:
    return np.diag(ctx.structure.structural_weights())


def _wlsv(ctx: _Context) -> np.ndarray:
    return np.diag(_series_variances(ctx.structure, ctx.residuals, ctx.mse))


def _wlsh(ctx: _Context) -> np.ndarray:
    return np.diag(_hierarchy_variances(ctx.residuals, ctx.mse))


def _acov(ctx: _Context) -> np.ndarray:
    index = ctx.structure.level_index()
    blocks = [
        np.atleast_2d(cov_mod(ctx.residuals.matrix[:, index == k], ctx.mse))
        for k in ctx.structure.kset
    ]
    return _block_diag(blocks)


def _strar1(ctx: _Context) -> np.ndarray:
    gamma = _ar1_correlation(ctx.structure, ctx.residuals)
    return _scale(gamma, ctx.structure.structural_weights())


def _sar1(ctx: _Context) -> np.ndarray:
    gamma = _ar1_correlation(ctx.structure, ctx.residuals)
    return _scale(gamma, _series_variances(ctx.structure, ctx.residuals, ctx.mse))


def _har1(ctx: _Context) -> np.ndarray:
    gamma = _ar1_correlation(ctx.structure, ctx.residuals)
    return _scale(gamma, _hierarchy_variances(ctx.residuals, ctx.mse))


def _shr(ctx: _Context) -> np.ndarray:
    return np.asarray(ctx.shrink(ctx.residuals.matrix), dtype=float)


def _sam(ctx: _Context) -> np.ndarray:
    return np.atleast_2d(cov_mod(ctx.residuals.matrix, ctx.mse))


def _user(ctx: _Context) -> np.ndarray:
    if ctx.omega is None:
        raise EMissingOmega("Method 'omega' needs a covariance matrix in omega")
    omega = linalg.to_dense(ctx.omega)
    kt = ctx.structure.kt
    if omega.shape != (kt, kt):
        raise EShapeMismatch(
            f"Omega has shape {omega.shape}, expected ({kt}, {kt})",
            context={"shape": omega.shape, "kt": kt},
        )
    return omega


_HANDLERS: dict[ReconciliationMethod, Callable[[_Context], np.ndarray]] = {
    ReconciliationMethod.OLS: _ols,
    ReconciliationMethod.STRUCTURAL: _struc,
    ReconciliationMethod.SERIES_VARIANCE: _wlsv,
    ReconciliationMethod.HIERARCHY_VARIANCE: _wlsh,
    ReconciliationMethod.AUTOCOVARIANCE: _acov,
    ReconciliationMethod.STRUCTURAL_AR1: _strar1,
    ReconciliationMethod.SERIES_AR1: _sar1,
    ReconciliationMethod.HIERARCHY_AR1: _har1,
    ReconciliationMethod.SHRINKAGE: _shr,
    ReconciliationMethod.SAMPLE: _sam,
    ReconciliationMethod.USER: _user,
}

_unhandled = set(ReconciliationMethod) - set(_HANDLERS) - {ReconciliationMethod.BOTTOM_UP}
if _unhandled:
    raise RuntimeError(f"No covariance handler for {sorted(m.value for m in _unhandled)}")


def _singularity_checks(
    method: ReconciliationMethod,
    structure: "TemporalStructure",
    res: _Residuals,
) -> list[str]:
    n = res.n_cycles
    notes = []
    if method is ReconciliationMethod.SAMPLE and n < structure.kt:
        notes.append(
            f"N = {n} < k* + m = {structure.kt}: the sample covariance may be singular"
        )
    if method is ReconciliationMethod.AUTOCOVARIANCE and n < structure.m:
        notes.append(f"N = {n} < m = {structure.m}: the auto-covariance may be singular")
    for note in notes:
        logger.warning(note)
        warnings.warn(note, SingularityRiskWarning, stacklevel=3)
    return notes


def estimate_covariance(
    method: ReconciliationMethod | str,
    structure: "TemporalStructure",
    residuals: np.ndarray | None = None,
    mse: bool = True,
    use_shrink_library: bool = False,
    omega: np.ndarray | None = None,
    shrink: ShrinkFn | None = None,
) -> CovarianceEstimate:
    """Estimate the weighting matrix of a reconciliation method.

    Args:
        method: Reconciliation method (any except bottom-up)
        structure: Temporal structure
        residuals: In-sample residuals, stacked vector or (N x kt) matrix
        mse: Covariances without mean correction
        use_shrink_library: Use scikit-learn's Ledoit-Wolf estimator for 'shr'
        omega: Caller matrix for method 'omega'
        shrink: Custom shrinkage estimator, residual matrix -> covariance

    Returns:
        CovarianceEstimate with the dense weighting matrix

    Raises:
        EMissingResiduals: If the method needs residuals and none were given
        EMissingOmega: If method is 'omega' and omega is None
        EShapeMismatch: If residuals or omega do not fit the structure
    """
    method = ReconciliationMethod.from_string(method)
    if method is ReconciliationMethod.BOTTOM_UP:
        raise EInvalidOption(
            "Bottom-up reconciliation does not use a weighting matrix",
            context={"method": method.value},
        )

    notes: list[str] = []
    res = None
    if method.needs_residuals:
        if residuals is None:
            raise EMissingResiduals(
                f"Method '{method.value}' needs in-sample residuals",
                context={"method": method.value},
            )
        res = prepare_residuals(residuals, structure)
        notes.extend(_singularity_checks(method, structure, res))

    ctx = _Context(
        structure=structure,
        residuals=res,
        mse=mse,
        shrink=shrink,
        omega=omega,
    )
    if method is ReconciliationMethod.SHRINKAGE and shrink is None:
        if use_shrink_library:
            ctx.shrink = lambda x: ledoit_wolf_shrink(x, mse=mse)
        else:

            def _default_shrink(x: np.ndarray) -> np.ndarray:
                shrunk, lam = shrink_estim(x, mse=mse)
                ctx.intensity = lam
                logger.debug("Shrinkage intensity lambda: %.4f", lam)
                return shrunk

            ctx.shrink = _default_shrink

    matrix = _HANDLERS[method](ctx)
    logger.debug("Estimated %s weighting matrix of shape %s", method.value, matrix.shape)
    return CovarianceEstimate(omega=matrix, warnings=notes, intensity=ctx.intensity)


__all__ = [
    "CovarianceEstimate",
    "estimate_covariance",
    "prepare_residuals",
    "cov_mod",
    "lag1_autocorrelation",
    "shrink_estim",
    "ledoit_wolf_shrink",
]
