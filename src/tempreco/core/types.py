"""Shared type definitions for tempreco.

Closed option enumerations and the callable signatures of the pluggable
collaborators (shrinkage estimator, quadratic-program solver).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable

import numpy as np

from tempreco.core.errors import EInvalidOption


class _OptionEnum(Enum):
    """Enum that also accepts descriptive aliases when parsed from strings."""

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {}

    @classmethod
    def from_string(cls, value: Any) -> Any:
        """Parse a member from its value, name or alias (case-insensitive)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip()
            for member in cls:
                if key == member.value or key.upper() == member.name:
                    return member
            alias = cls._aliases().get(key.lower())
            if alias is not None:
                return cls(alias)
        raise EInvalidOption(
            f"Unknown {cls.__name__} '{value}'",
            context={
                "accepted": [m.value for m in cls] + sorted(cls._aliases()),
            },
        )


class ReconciliationMethod(_OptionEnum):
    """Available reconciliation methods (one weighting matrix each)."""

    BOTTOM_UP = "bu"
    OLS = "ols"
    STRUCTURAL = "struc"
    SERIES_VARIANCE = "wlsv"
    HIERARCHY_VARIANCE = "wlsh"
    AUTOCOVARIANCE = "acov"
    STRUCTURAL_AR1 = "strar1"
    SERIES_AR1 = "sar1"
    HIERARCHY_AR1 = "har1"
    SHRINKAGE = "shr"
    SAMPLE = "sam"
    USER = "omega"

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {
            "bottom-up": "bu",
            "bottom_up": "bu",
            "identity": "ols",
            "structural-scaling": "struc",
            "per-level-variance": "wlsv",
            "per-hierarchy-node-variance": "wlsh",
            "blockwise-autocovariance": "acov",
            "structural-ar1": "strar1",
            "per-level-ar1": "sar1",
            "per-node-ar1": "har1",
            "shrinkage": "shr",
            "sample-covariance": "sam",
            "user-supplied": "omega",
        }

    @property
    def needs_residuals(self) -> bool:
        return self in _RESIDUAL_METHODS


_RESIDUAL_METHODS = frozenset(
    {
        ReconciliationMethod.SERIES_VARIANCE,
        ReconciliationMethod.HIERARCHY_VARIANCE,
        ReconciliationMethod.AUTOCOVARIANCE,
        ReconciliationMethod.STRUCTURAL_AR1,
        ReconciliationMethod.SERIES_AR1,
        ReconciliationMethod.HIERARCHY_AR1,
        ReconciliationMethod.SHRINKAGE,
        ReconciliationMethod.SAMPLE,
    }
)


class SolverForm(_OptionEnum):
    """Closed-form representation used for the GLS projection."""

    PROJECTION = "projection"
    STRUCTURAL = "structural"

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {"m": "projection", "s": "structural"}


class SolveMode(_OptionEnum):
    """Closed-form solution or numerical quadratic program."""

    DIRECT = "direct"
    QP = "qp"

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {"closed-form": "direct", "closed_form": "direct", "osqp": "qp"}


class OutputDetail(_OptionEnum):
    """How much of the reconciliation record to return."""

    SUMMARY = "summary"
    FULL = "full"

    @classmethod
    def _aliases(cls) -> dict[str, str]:
        return {"recf": "summary", "list": "full", "all": "full"}


# shrink(residual_matrix) -> covariance matrix
ShrinkFn = Callable[[np.ndarray], np.ndarray]

# solve_qp(P, q, A, lb, ub, settings) -> (x, diagnostics)
QPSolverFn = Callable[..., Any]

__all__ = [
    "ReconciliationMethod",
    "SolverForm",
    "SolveMode",
    "OutputDetail",
    "ShrinkFn",
    "QPSolverFn",
]
