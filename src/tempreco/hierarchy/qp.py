"""Quadratic-program capability.

Solves

    minimise    0.5 x' P x + q' x
    subject to  A x = 0,  lb <= x <= ub

with cvxpy (OSQP backend by default). Every call builds its own problem, so
calls share no solver state and can run independently.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass

import cvxpy as cp
import numpy as np

from tempreco.core.config import QPSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QPDiagnostics:
    """Outcome of one quadratic-program solve.

    Attributes:
        status: Solver status string (e.g. 'optimal', 'infeasible')
        converged: True when the solver reached its tolerance
        iterations: Number of solver iterations (-1 if unreported)
        run_time: Wall time of the solve in seconds
        obj_val: Objective value at the returned point
        pri_res: Largest violation of the constraints at the returned point
    """

    status: str
    converged: bool
    iterations: int
    run_time: float
    obj_val: float
    pri_res: float

    def to_dict(self) -> dict:
        return asdict(self)


def _constraint_residual(
    x: np.ndarray, A: np.ndarray, lb: np.ndarray, ub: np.ndarray
) -> float:
    if not np.all(np.isfinite(x)):
        return float("inf")
    parts = [np.zeros(1)]
    if A.shape[0]:
        parts.append(np.abs(A @ x))
    parts.append(np.maximum(lb - x, 0.0)[np.isfinite(lb)])
    parts.append(np.maximum(x - ub, 0.0)[np.isfinite(ub)])
    return float(np.max(np.concatenate(parts)))


def solve_qp(
    P: np.ndarray,
    q: np.ndarray,
    A: np.ndarray,
    lb: np.ndarray,
    ub: np.ndarray,
    settings: QPSettings | None = None,
) -> tuple[np.ndarray, QPDiagnostics]:
    """Solve an equality-constrained, box-bounded quadratic program.

    Args:
        P: Symmetric positive semi-definite objective matrix (n x n)
        q: Linear objective term (n,)
        A: Equality constraint matrix (r x n), constraints A x = 0
        lb: Lower bounds (n,), -inf where unbounded
        ub: Upper bounds (n,), +inf where unbounded
        settings: Solver settings

    Returns:
        Tuple of (solution, diagnostics). The solution is the solver's
        best-effort point; it is all-NaN when the solver returned none.
    """
    settings = settings or QPSettings()
    n = q.shape[0]
    P = (np.asarray(P, dtype=float) + np.asarray(P, dtype=float).T) / 2.0
    A = np.asarray(A, dtype=float).reshape(-1, n)
    lb = np.asarray(lb, dtype=float)
    ub = np.asarray(ub, dtype=float)

    x = cp.Variable(n)
    objective = cp.Minimize(0.5 * cp.quad_form(x, cp.psd_wrap(P)) + q @ x)
    constraints = []
    if A.shape[0]:
        constraints.append(A @ x == 0)
    eye = np.eye(n)
    lower = np.flatnonzero(np.isfinite(lb))
    if lower.size:
        constraints.append(eye[lower] @ x >= lb[lower])
    upper = np.flatnonzero(np.isfinite(ub))
    if upper.size:
        constraints.append(eye[upper] @ x <= ub[upper])

    problem = cp.Problem(objective, constraints)
    start = time.perf_counter()
    try:
        problem.solve(solver=settings.solver, **settings.to_solver_options())
        status = str(problem.status)
    except cp.SolverError as exc:
        logger.warning("QP solver failed: %s", exc)
        status = "solver_error"
    run_time = time.perf_counter() - start

    solution = x.value
    if solution is None:
        solution = np.full(n, np.nan)
    solution = np.asarray(solution, dtype=float).ravel()

    stats = getattr(problem, "solver_stats", None)
    iterations = getattr(stats, "num_iters", None) if stats is not None else None
    solve_time = getattr(stats, "solve_time", None) if stats is not None else None
    obj_val = problem.value if problem.value is not None else np.nan

    diagnostics = QPDiagnostics(
        status=status,
        converged=status == cp.OPTIMAL,
        iterations=int(iterations) if iterations is not None else -1,
        run_time=float(solve_time) if solve_time is not None else run_time,
        obj_val=float(obj_val),
        pri_res=_constraint_residual(solution, A, lb, ub),
    )
    return solution, diagnostics


__all__ = ["QPDiagnostics", "solve_qp"]
