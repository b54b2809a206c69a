"""Tests for quadratic-program and non-negative reconciliation."""

from __future__ import annotations

import numpy as np
import pytest

from tempreco.core.config import QPSettings, ReconcileConfig
from tempreco.core.errors import QPNonConvergenceWarning
from tempreco.hierarchy import (
    Reconciler,
    TemporalStructure,
    aggregate_series,
    reconcile_temporal,
    solve_qp,
)
from tempreco.hierarchy.nonnegative import (
    INFO_COLUMNS,
    clip_to_coherent,
    negative_horizons,
    qp_reconcile,
)
from tempreco.hierarchy.qp import QPDiagnostics


@pytest.fixture
def structure():
    """Two granular periods per cycle (kt = 3)."""
    return TemporalStructure.from_frequency(2)


@pytest.fixture
def negative_basef():
    """Two cycles; OLS leaves a negative value in the second one only."""
    # annual x 2, then half-years x 4; cycle 1 = [10, 4, 6], cycle 2 = [0, 10, -8]
    return np.array([10.0, 0.0, 4.0, 6.0, 10.0, -8.0])


def _diagnostics(converged=True, status="optimal"):
    return QPDiagnostics(
        status=status,
        converged=converged,
        iterations=25,
        run_time=0.001,
        obj_val=1.0,
        pri_res=0.0,
    )


class FakeSolver:
    """Records calls and returns scripted solutions."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, P, q, A, lb, ub, settings):
        self.calls.append({"q": q, "lb": lb, "ub": ub, "settings": settings})
        x, converged = self.outcomes.pop(0)
        status = "optimal" if converged else "max_iter_reached"
        return np.asarray(x, dtype=float), _diagnostics(converged, status)


class TestSolveQP:
    """Test the cvxpy-based quadratic-program capability."""

    def test_equality_constrained(self, structure):
        y = np.array([10.0, 4.0, 8.0])
        zt = structure.Zt.toarray()
        x, diag = solve_qp(
            2.0 * np.eye(3), -2.0 * y, zt, np.full(3, -np.inf), np.full(3, np.inf)
        )

        r_matrix = structure.R.toarray()
        expected = r_matrix @ np.linalg.solve(r_matrix.T @ r_matrix, r_matrix.T @ y)
        np.testing.assert_allclose(x, expected, atol=1e-3)
        assert diag.converged
        assert diag.status == "optimal"
        assert diag.pri_res < 1e-3

    def test_bounds(self):
        x, diag = solve_qp(
            2.0 * np.eye(2),
            np.array([4.0, -2.0]),
            np.zeros((0, 2)),
            np.zeros(2),
            np.full(2, np.inf),
        )
        np.testing.assert_allclose(x, [0.0, 1.0], atol=1e-3)
        assert diag.converged

    def test_diagnostics_to_dict(self):
        assert set(_diagnostics().to_dict()) == {
            "status", "converged", "iterations", "run_time", "obj_val", "pri_res",
        }


class TestNonNegativeQP:
    """Test non-negative reconciliation with the real solver."""

    def test_known_solution(self):
        # min |x - y|^2 with x0 = x1 + x2, x >= 0 gives x = [5, 5, 0]
        result = reconcile_temporal(
            np.array([0.0, 10.0, -8.0]), m=2, method="ols",
            solve_mode="qp", nonnegative=True,
        )
        np.testing.assert_allclose(result.values, [5.0, 5.0, 0.0], atol=1e-3)
        assert result.rec_check
        assert result.nn_check == 0

    def test_two_stage_is_non_negative(self, negative_basef):
        result = reconcile_temporal(negative_basef, m=2, method="ols", nonnegative=True)

        assert np.all(result.values >= -1e-8)
        assert result.rec_check
        assert result.nn_check == 1
        assert list(result.info.index) == [2]

    def test_two_stage_preset(self, negative_basef):
        config = ReconcileConfig.two_stage("struc")
        result = Reconciler(2, config).reconcile(negative_basef)
        assert np.all(result.values >= -1e-8)

    def test_monthly_qp(self):
        monthly = TemporalStructure.from_frequency(12)
        rng = np.random.default_rng(11)
        basef = rng.normal(loc=1.0, scale=3.0, size=monthly.kt)
        result = reconcile_temporal(
            basef, m=12, method="struc", solve_mode="qp", nonnegative=True
        )

        assert np.all(result.values >= -1e-8)
        assert result.rec_check
        assert result.failed_horizons == []


class TestTwoStage:
    """Test two-stage correction with an injected solver."""

    def test_only_negative_rows_resolved(self, negative_basef):
        solver = FakeSolver([([5.0, 5.0, 0.0], True)])
        result = reconcile_temporal(
            negative_basef, m=2, method="ols", nonnegative=True, solve_qp=solver
        )

        assert len(solver.calls) == 1
        # first cycle is coherent and keeps the closed form
        np.testing.assert_allclose(result.values, [10.0, 5.0, 4.0, 6.0, 5.0, 0.0])
        assert list(result.info.index) == [2]

    def test_bottom_bounds_passed(self, negative_basef):
        solver = FakeSolver([([5.0, 5.0, 0.0], True)])
        reconcile_temporal(negative_basef, m=2, method="ols", nonnegative=True, solve_qp=solver)

        lb = solver.calls[0]["lb"]
        assert np.isneginf(lb[0])
        np.testing.assert_array_equal(lb[1:], [0.0, 0.0])

    def test_tolerance_negatives_clipped(self, negative_basef):
        solver = FakeSolver([([5.0, 5.000001, -1e-6], True)])
        result = reconcile_temporal(
            negative_basef, m=2, method="ols", nonnegative=True, solve_qp=solver
        )

        assert np.all(result.values >= 0)
        assert result.rec_check

    def test_marginal_negatives_clipped_without_solve(self):
        quarterly = TemporalStructure.from_frequency(4)
        coherent = aggregate_series(np.array([5.0, -5e-7, 3.0, 2.0]), quarterly)
        solver = FakeSolver([])
        result = reconcile_temporal(
            coherent, m=4, method="ols", nonnegative=True, solve_qp=solver
        )

        assert solver.calls == []
        assert result.info is None
        assert np.all(result.values >= -1e-8)
        assert result.rec_check
        assert result.recf["k1h2"] == 0.0
        assert result.recf["k4h1"] == pytest.approx(10.0)

    def test_no_negatives_no_solve(self):
        solver = FakeSolver([])
        result = reconcile_temporal(
            np.array([10.0, 4.0, 6.0]), m=2, method="ols", nonnegative=True, solve_qp=solver
        )
        assert solver.calls == []
        assert result.info is None

    def test_settings_forwarded(self, negative_basef):
        solver = FakeSolver([([5.0, 5.0, 0.0], True)])
        settings = QPSettings(eps_abs=1e-8, max_iter=50)
        reconcile_temporal(
            negative_basef, m=2, method="ols", nonnegative=True,
            solve_qp=solver, qp_settings=settings,
        )
        assert solver.calls[0]["settings"] is settings


class TestQPFailures:
    """Test that a failed horizon does not abort the others."""

    def test_failed_horizon_flagged(self, negative_basef):
        solver = FakeSolver([
            ([np.nan, np.nan, np.nan], False),
            ([3.0, 1.0, 2.0], True),
        ])
        with pytest.warns(QPNonConvergenceWarning, match=r"horizons \[1\]"):
            result = reconcile_temporal(
                negative_basef, m=2, method="ols", solve_mode="qp", solve_qp=solver
            )

        assert len(solver.calls) == 2
        assert result.failed_horizons == [1]
        assert not result.rec_check
        assert result.recf["k2h2"] == 3.0
        assert result.recf[["k1h3", "k1h4"]].tolist() == [1.0, 2.0]
        assert any("did not converge" in w for w in result.warnings)

    def test_info_table(self, structure, negative_basef):
        solver = FakeSolver([([10.0, 4.0, 6.0], True), ([3.0, 1.0, 2.0], True)])
        _, info = qp_reconcile(
            structure.to_horizon_matrix(negative_basef),
            np.eye(3),
            structure,
            solve_qp=solver,
        )

        assert list(info.columns) == INFO_COLUMNS
        assert info.index.name == "h"
        assert list(info.index) == [1, 2]
        assert info["converged"].all()
        assert info["iter"].tolist() == [25, 25]


class TestNegativeHorizons:
    """Test detection of rows holding negatives."""

    def test_rows(self):
        recf = np.array([[1.0, 0.0], [1.0, -0.5], [-1e-9, 2.0]])
        assert negative_horizons(recf) == [1]

    def test_custom_tolerance(self):
        recf = np.array([[-1e-9, 2.0]])
        assert negative_horizons(recf, tol=0.0) == [0]


class TestClipToCoherent:
    """Test granular clipping with re-aggregation."""

    def test_upper_levels_rebuilt(self, structure):
        rows = np.array([[9.0, 10.0, -1.0], [3.0, 1.0, 2.0]])
        clipped = clip_to_coherent(rows, structure)
        np.testing.assert_array_equal(clipped, [[10.0, 10.0, 0.0], [3.0, 1.0, 2.0]])

    def test_single_row(self, structure):
        clipped = clip_to_coherent(np.array([0.0, 2.0, -1e-7]), structure)
        assert clipped.shape == (1, 3)
        np.testing.assert_array_equal(clipped[0], [2.0, 2.0, 0.0])
