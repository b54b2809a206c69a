"""tempreco - Forecast reconciliation through temporal hierarchies.

Makes base forecasts of one series at every temporal aggregation level
coherent: each aggregated value equals the sum of the granular values it
covers.

Input contract:
    Base forecasts and residuals are stacked vectors ordered from the
    lowest to the highest frequency, e.g. for quarterly data (m = 4) and
    one year ahead: [annual, semi-annual x 2, quarterly x 4].

Basic usage:
    >>> from tempreco import reconcile_temporal
    >>> result = reconcile_temporal(basef, m=4, method="ols")
    >>> print(result.recf)

Advanced usage:
    >>> from tempreco import ReconcileConfig, Reconciler
    >>> config = ReconcileConfig.two_stage(method="shr")
    >>> result = Reconciler(12, config).reconcile(basef, residuals=res)
"""

__version__ = "0.1.0"

# Core API
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

# Temporal hierarchies
from tempreco.hierarchy import (
    Reconciler,
    TemporalEvaluator,
    TemporalStructure,
    aggregate_series,
    reconcile_forecasts,
    reconcile_temporal,
)

__all__ = [
    "__version__",
    # Main entry points
    "reconcile_temporal",
    "reconcile_forecasts",
    "Reconciler",
    # Structure
    "TemporalStructure",
    "aggregate_series",
    "TemporalEvaluator",
    # Configuration
    "ReconcileConfig",
    "QPSettings",
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
