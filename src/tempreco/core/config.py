"""Configuration for temporal reconciliation.

Solver settings and reconciliation options are explicit frozen objects passed
by value to every call. Nothing here is global or mutated after creation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from importlib import metadata
from typing import Any

from tempreco.core.types import OutputDetail, ReconciliationMethod, SolveMode, SolverForm


@dataclass(frozen=True)
class QPSettings:
    """Settings for the quadratic-program solver.

    Args:
        eps_abs: Absolute convergence tolerance
        eps_rel: Relative convergence tolerance
        polish: Whether to run the solution polishing step
        polish_refine_iter: Iterative refinement steps during polishing
        max_iter: Maximum number of solver iterations
        verbose: Print solver output
        solver: Name of the cvxpy solver backend
    """

    eps_abs: float = 1e-5
    eps_rel: float = 1e-5
    polish: bool = True
    polish_refine_iter: int = 100
    max_iter: int = 10000
    verbose: bool = False
    solver: str = "OSQP"

    def __post_init__(self) -> None:
        if self.eps_abs < 0 or self.eps_rel < 0:
            raise ValueError(
                f"Tolerances must be non-negative, got eps_abs={self.eps_abs}, eps_rel={self.eps_rel}"
            )
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be at least 1, got {self.max_iter}")
        if self.polish_refine_iter < 0:
            raise ValueError("polish_refine_iter must be non-negative")

    def to_solver_options(self) -> dict[str, Any]:
        """Keyword arguments forwarded to ``cvxpy.Problem.solve``."""
        options: dict[str, Any] = {"verbose": self.verbose}
        if self.solver.upper() == "OSQP":
            options.update(
                eps_abs=self.eps_abs,
                eps_rel=self.eps_rel,
                max_iter=self.max_iter,
                polish_refine_iter=self.polish_refine_iter,
            )
            options[_osqp_polish_key()] = self.polish
        return options


def _osqp_polish_key() -> str:
    """OSQP 1.0 renamed the 'polish' setting to 'polishing'."""
    try:
        major = int(metadata.version("osqp").split(".")[0])
    except (metadata.PackageNotFoundError, ValueError):
        return "polish"
    return "polishing" if major >= 1 else "polish"


@dataclass(frozen=True)
class ReconcileConfig:
    """Options of one temporal reconciliation.

    Args:
        method: Reconciliation method (weighting matrix to use)
        form: Closed form used by the direct solver ('projection' or 'structural')
        solve_mode: 'direct' closed form or 'qp' numerical solution
        nonnegative: Require non-negative reconciled forecasts
        output_detail: 'full' record or 'summary' (reconciled vector only)
        mse: Covariances without mean correction (cross-products over N)
        use_shrink_library: Use scikit-learn's Ledoit-Wolf estimator for 'shr'
        qp_settings: Quadratic-program solver settings
    """

    method: ReconciliationMethod = ReconciliationMethod.OLS
    form: SolverForm = SolverForm.PROJECTION
    solve_mode: SolveMode = SolveMode.DIRECT
    nonnegative: bool = False
    output_detail: OutputDetail = OutputDetail.FULL
    mse: bool = True
    use_shrink_library: bool = False
    qp_settings: QPSettings = field(default_factory=QPSettings)

    def __post_init__(self) -> None:
        # Accept plain strings for every option
        object.__setattr__(self, "method", ReconciliationMethod.from_string(self.method))
        object.__setattr__(self, "form", SolverForm.from_string(self.form))
        object.__setattr__(self, "solve_mode", SolveMode.from_string(self.solve_mode))
        object.__setattr__(
            self, "output_detail", OutputDetail.from_string(self.output_detail)
        )
        if self.qp_settings is None:
            object.__setattr__(self, "qp_settings", QPSettings())

    @classmethod
    def two_stage(
        cls, method: ReconciliationMethod | str = ReconciliationMethod.OLS
    ) -> ReconcileConfig:
        """Closed form first, QP re-solve only where negatives appear."""
        return cls(method=method, solve_mode=SolveMode.DIRECT, nonnegative=True)

    @classmethod
    def nonnegative_qp(
        cls, method: ReconciliationMethod | str = ReconciliationMethod.OLS
    ) -> ReconcileConfig:
        """Always solve the non-negative quadratic program."""
        return cls(method=method, solve_mode=SolveMode.QP, nonnegative=True)

    def with_options(self, **changes: Any) -> ReconcileConfig:
        """Return a copy with some options replaced."""
        return replace(self, **changes)


__all__ = ["QPSettings", "ReconcileConfig"]
