"""Core module - configuration, option types, errors and result records."""

from tempreco.core.config import QPSettings, ReconcileConfig
from tempreco.core.errors import (
    EInvalidFrequency,
    EInvalidOption,
    EMissingOmega,
    EMissingResiduals,
    EShapeMismatch,
    QPNonConvergenceWarning,
    SingularityRiskWarning,
    TempRecoError,
)
from tempreco.core.results import ReconciliationResult
from tempreco.core.types import OutputDetail, ReconciliationMethod, SolveMode, SolverForm

__all__ = [
    # Config
    "QPSettings",
    "ReconcileConfig",
    # Options
    "ReconciliationMethod",
    "SolverForm",
    "SolveMode",
    "OutputDetail",
    # Results
    "ReconciliationResult",
    # Errors
    "TempRecoError",
    "EInvalidFrequency",
    "EShapeMismatch",
    "EMissingResiduals",
    "EMissingOmega",
    "EInvalidOption",
    "SingularityRiskWarning",
    "QPNonConvergenceWarning",
]
