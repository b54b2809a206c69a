"""Temporal-hierarchy evaluation metrics and coherence checking.

Provides tools to evaluate forecast quality per aggregation order and to
detect where aggregated values differ from the sum of their granular
values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from . import linalg

if TYPE_CHECKING:
    from .structure import TemporalStructure


@dataclass(frozen=True)
class CoherenceViolation:
    """Single coherence violation record.

    Attributes:
        label: Stacked label of the aggregated value (e.g. 'k4h1')
        order: Aggregation order of the value
        child_labels: Labels of the granular values it should sum
        expected_value: Sum of the granular values
        actual_value: Aggregated value
        difference: Absolute difference between expected and actual
    """

    label: str
    order: int
    child_labels: list[str]
    expected_value: float
    actual_value: float
    difference: float


@dataclass(frozen=True)
class TemporalEvaluationReport:
    """Evaluation report for temporal-hierarchy forecasts.

    Attributes:
        level_metrics: Metrics per aggregation order
        coherence_violations: List of coherence violations found
        coherence_score: Overall coherence score (0-1, higher is better)
        total_violations: Total number of violations
        violation_rate: Proportion of aggregated values violating coherence
    """

    level_metrics: dict[int, dict[str, float]] = field(default_factory=dict)
    coherence_violations: list[CoherenceViolation] = field(default_factory=list)
    coherence_score: float = 0.0
    total_violations: int = 0
    violation_rate: float = 0.0

    @property
    def is_coherent(self) -> bool:
        return self.total_violations == 0

    def to_dict(self) -> dict:
        """Convert report to dictionary."""
        return {
            "level_metrics": self.level_metrics,
            "coherence_violations": [
                {
                    "label": v.label,
                    "order": v.order,
                    "child_labels": v.child_labels,
                    "expected_value": v.expected_value,
                    "actual_value": v.actual_value,
                    "difference": v.difference,
                }
                for v in self.coherence_violations
            ],
            "coherence_score": self.coherence_score,
            "total_violations": self.total_violations,
            "violation_rate": self.violation_rate,
        }


class TemporalEvaluator:
    """Evaluate temporal-hierarchy forecast quality and coherence.

    Example:
        >>> evaluator = TemporalEvaluator(TemporalStructure.from_frequency(12))
        >>> report = evaluator.evaluate(result.recf, actuals=test)
        >>> print(f"Coherence score: {report.coherence_score:.3f}")
        Coherence score: 1.000
    """

    def __init__(self, structure: TemporalStructure):
        self.structure = structure

    def evaluate(
        self,
        forecasts: np.ndarray | pd.Series,
        actuals: np.ndarray | pd.Series | None = None,
        tolerance: float = 1e-6,
    ) -> TemporalEvaluationReport:
        """Evaluate stacked forecasts.

        Args:
            forecasts: Stacked forecast vector (h * kt values)
            actuals: Optional observed values in the same layout
            tolerance: Tolerance for coherence violations

        Returns:
            TemporalEvaluationReport with metrics and violations
        """
        matrix = self.structure.to_horizon_matrix(np.asarray(forecasts, dtype=float))

        level_metrics = {}
        if actuals is not None:
            level_metrics = self._compute_level_metrics(
                matrix, self.structure.to_horizon_matrix(np.asarray(actuals, dtype=float))
            )

        violations = self._detect_violations(matrix, tolerance)
        total_checks = matrix.shape[0] * self.structure.ks

        return TemporalEvaluationReport(
            level_metrics=level_metrics,
            coherence_violations=violations,
            coherence_score=self._compute_coherence_score(matrix, tolerance),
            total_violations=len(violations),
            violation_rate=len(violations) / max(total_checks, 1),
        )

    def _gaps(self, matrix: np.ndarray) -> np.ndarray:
        """Aggregated value minus the sum of its granular values, per cycle."""
        return matrix @ linalg.to_dense(self.structure.Zt).T

    def _compute_level_metrics(
        self,
        forecasts: np.ndarray,
        actuals: np.ndarray,
    ) -> dict[int, dict[str, float]]:
        """Compute MAE, RMSE and MAPE per aggregation order."""
        index = self.structure.level_index()
        result = {}
        for k in self.structure.kset:
            f = forecasts[:, index == k].ravel()
            a = actuals[:, index == k].ravel()
            errors = f - a
            non_zero = a != 0
            result[int(k)] = {
                "mae": float(np.mean(np.abs(errors))),
                "rmse": float(np.sqrt(np.mean(errors**2))),
                "mape": float(np.mean(np.abs(errors[non_zero] / a[non_zero])) * 100)
                if non_zero.any()
                else 0.0,
                "count": int(errors.size),
            }
        return result

    def _detect_violations(
        self,
        matrix: np.ndarray,
        tolerance: float = 1e-6,
    ) -> list[CoherenceViolation]:
        """Detect aggregated values that differ from their granular sum."""
        structure = self.structure
        if structure.ks == 0:
            return []

        h = matrix.shape[0]
        labels = np.array(structure.labels(h), dtype=object)
        label_rows = structure.to_horizon_matrix(np.arange(labels.size, dtype=float)).astype(int)
        agg = linalg.to_dense(structure.K)
        orders = structure.level_index()
        gaps = self._gaps(matrix)

        violations = []
        for row in range(h):
            bottom = matrix[row, structure.ks:]
            for i in np.flatnonzero(np.abs(gaps[row]) > tolerance):
                children = np.flatnonzero(agg[i])
                violations.append(
                    CoherenceViolation(
                        label=str(labels[label_rows[row, i]]),
                        order=int(orders[i]),
                        child_labels=[
                            str(labels[label_rows[row, structure.ks + c]]) for c in children
                        ],
                        expected_value=float(bottom[children].sum()),
                        actual_value=float(matrix[row, i]),
                        difference=float(abs(gaps[row, i])),
                    )
                )
        return violations

    def _compute_coherence_score(
        self,
        matrix: np.ndarray,
        tolerance: float = 1e-6,
    ) -> float:
        """Score is 1.0 if perfectly coherent, decreases with violations."""
        if self.structure.ks == 0:
            return 1.0
        gaps = np.abs(self._gaps(matrix))
        total_abs_sum = float(np.abs(matrix[:, : self.structure.ks]).sum())
        total_violation = float(gaps[gaps > tolerance].sum())
        if total_abs_sum == 0:
            return 1.0 if total_violation == 0 else 0.0
        return max(0.0, 1.0 - (total_violation / total_abs_sum))

    def compute_improvement(
        self,
        base_forecasts: np.ndarray | pd.Series,
        reconciled_forecasts: np.ndarray | pd.Series,
        actuals: np.ndarray | pd.Series,
    ) -> dict[str, float]:
        """Percentage improvement of reconciled vs base forecasts."""
        base = np.asarray(base_forecasts, dtype=float)
        reconciled = np.asarray(reconciled_forecasts, dtype=float)
        actual = np.asarray(actuals, dtype=float)

        base_metrics = _overall_metrics(base, actual)
        reconciled_metrics = _overall_metrics(reconciled, actual)

        improvement = {}
        for metric in ["mae", "rmse", "mape"]:
            if base_metrics[metric] > 0:
                improvement[metric] = (
                    (base_metrics[metric] - reconciled_metrics[metric])
                    / base_metrics[metric]
                ) * 100
            else:
                improvement[metric] = 0.0
        return improvement


def _overall_metrics(forecasts: np.ndarray, actuals: np.ndarray) -> dict[str, float]:
    errors = forecasts - actuals
    if errors.size == 0:
        return {"mae": 0.0, "rmse": 0.0, "mape": 0.0}
    non_zero = actuals != 0
    mape = (
        float(np.mean(np.abs(errors[non_zero] / actuals[non_zero])) * 100)
        if non_zero.any()
        else 0.0
    )
    return {
        "mae": float(np.mean(np.abs(errors))),
        "rmse": float(np.sqrt(np.mean(errors**2))),
        "mape": mape,
    }


__all__ = ["CoherenceViolation", "TemporalEvaluationReport", "TemporalEvaluator"]
