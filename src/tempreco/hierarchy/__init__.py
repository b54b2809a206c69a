"""Temporal hierarchies and forecast reconciliation.

This module provides tools for reconciling the forecasts of one series made
at several temporal aggregation levels (e.g. monthly, quarterly, annual),
including the hierarchy structure, covariance estimators for the weighting
matrix, closed-form and quadratic-program solvers, and evaluation.

Example:
    >>> from tempreco.hierarchy import TemporalStructure, Reconciler
    >>> from tempreco.core import ReconcileConfig
    >>>
    >>> # Quarterly data with an annual cycle: annual, semi-annual, quarterly
    >>> structure = TemporalStructure.from_frequency(4)
    >>>
    >>> # Reconcile stacked base forecasts
    >>> reconciler = Reconciler(structure, ReconcileConfig(method="wlsv"))
    >>> result = reconciler.reconcile(base_forecasts, residuals=residuals)
"""

from __future__ import annotations

from .aggregation import (
    aggregate_frame,
    aggregate_series,
    create_bottom_up_matrix,
    create_projection_matrix,
    create_structural_matrix,
)
from .composer import coherence_check
from .covariance import CovarianceEstimate, estimate_covariance, shrink_estim
from .evaluator import CoherenceViolation, TemporalEvaluationReport, TemporalEvaluator
from .nonnegative import enforce_nonnegative, qp_reconcile
from .qp import QPDiagnostics, solve_qp
from .reconciliation import (
    Reconciler,
    ReconciliationMethod,
    reconcile_forecasts,
    reconcile_temporal,
)
from .structure import TemporalStructure, divisors

__all__ = [
    # Structure
    "TemporalStructure",
    "divisors",
    # Aggregation
    "aggregate_series",
    "aggregate_frame",
    "create_bottom_up_matrix",
    "create_projection_matrix",
    "create_structural_matrix",
    # Covariance
    "CovarianceEstimate",
    "estimate_covariance",
    "shrink_estim",
    # Quadratic programming
    "QPDiagnostics",
    "solve_qp",
    "qp_reconcile",
    "enforce_nonnegative",
    # Reconciliation
    "Reconciler",
    "ReconciliationMethod",
    "reconcile_temporal",
    "reconcile_forecasts",
    "coherence_check",
    # Evaluation
    "TemporalEvaluator",
    "TemporalEvaluationReport",
    "CoherenceViolation",
]
