"""Core error types with rich context.

Fatal conditions are raised as one of a handful of error classes that carry
an error code, the offending arguments and a fix hint. Advisory conditions
are warnings: they are emitted, logged and recorded in the result record,
but never stop the computation.
"""

from __future__ import annotations

from typing import Any


class TempRecoError(Exception):
    """Base exception with rich context.

    All errors in tempreco use this class with specific error_code
    values instead of creating many subclasses.
    """

    error_code: str = "E_UNKNOWN"
    fix_hint: str = ""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        fix_hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if fix_hint:
            self.fix_hint = fix_hint

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.context:
            parts.append(f"(context: {self.context})")
        if self.fix_hint:
            parts.append(f"[hint: {self.fix_hint}]")
        return " ".join(parts)


class EInvalidFrequency(TempRecoError):
    """Top sampling frequency is not a positive integer."""

    error_code = "E_INVALID_FREQUENCY"
    fix_hint = "m must be a positive integer, e.g. 12 for monthly data with an annual cycle"


class EShapeMismatch(TempRecoError):
    """Forecast, residual or weighting matrix shape does not fit the structure."""

    error_code = "E_SHAPE_MISMATCH"
    fix_hint = "Vectors must hold h * (k* + m) values ordered from the lowest to the highest frequency"


class EMissingResiduals(TempRecoError):
    """Covariance method needs in-sample residuals but none were given."""

    error_code = "E_MISSING_RESIDUALS"
    fix_hint = "Pass residuals or pick a method that needs none (bu, ols, struc)"


class EMissingOmega(TempRecoError):
    """User-supplied weighting matrix selected but not provided."""

    error_code = "E_MISSING_OMEGA"
    fix_hint = "Pass omega=<(k* + m) x (k* + m) matrix> together with method='omega'"


class EInvalidOption(TempRecoError):
    """Unknown method, solver form, solve mode or output detail."""

    error_code = "E_INVALID_OPTION"
    fix_hint = "Check the accepted values listed in the error context"


class SingularityRiskWarning(UserWarning):
    """Residual history is too short for the chosen covariance estimator."""


class QPNonConvergenceWarning(UserWarning):
    """Quadratic program did not reach its tolerance for some horizons."""


# Error registry for lookup
ERROR_REGISTRY: dict[str, type[TempRecoError]] = {
    "E_INVALID_FREQUENCY": EInvalidFrequency,
    "E_SHAPE_MISMATCH": EShapeMismatch,
    "E_MISSING_RESIDUALS": EMissingResiduals,
    "E_MISSING_OMEGA": EMissingOmega,
    "E_INVALID_OPTION": EInvalidOption,
}


def get_error_class(error_code: str) -> type[TempRecoError]:
    """Get error class by code."""
    return ERROR_REGISTRY.get(error_code, TempRecoError)


__all__ = [
    "TempRecoError",
    "EInvalidFrequency",
    "EShapeMismatch",
    "EMissingResiduals",
    "EMissingOmega",
    "EInvalidOption",
    "SingularityRiskWarning",
    "QPNonConvergenceWarning",
    "ERROR_REGISTRY",
    "get_error_class",
]
