"""Tests for temporal hierarchy structure."""

from __future__ import annotations

import numpy as np
import pytest

from tempreco.core.errors import EInvalidFrequency, EShapeMismatch
from tempreco.hierarchy import TemporalStructure, divisors


@pytest.fixture
def quarterly():
    """Quarterly data with an annual cycle."""
    return TemporalStructure.from_frequency(4)


@pytest.fixture
def monthly():
    """Monthly data with an annual cycle."""
    return TemporalStructure.from_frequency(12)


class TestDivisors:
    """Test aggregation order enumeration."""

    def test_monthly(self):
        assert divisors(12) == (12, 6, 4, 3, 2, 1)

    def test_prime(self):
        assert divisors(7) == (7, 1)

    def test_one(self):
        assert divisors(1) == (1,)

    def test_square(self):
        assert divisors(9) == (9, 3, 1)


class TestTemporalStructure:
    """Test TemporalStructure dimensions and matrices."""

    def test_quarterly_dimensions(self, quarterly):
        assert quarterly.kset == (4, 2, 1)
        assert quarterly.p == 3
        assert quarterly.ks == 3
        assert quarterly.kt == 7

    def test_monthly_dimensions(self, monthly):
        assert monthly.ks == 16
        assert monthly.kt == 28
        assert monthly.K.shape == (16, 12)
        assert monthly.R.shape == (28, 12)
        assert monthly.Zt.shape == (16, 28)

    def test_quarterly_summing_matrix(self, quarterly):
        expected = np.array([
            [1, 1, 1, 1],  # annual
            [1, 1, 0, 0],  # first half
            [0, 0, 1, 1],  # second half
            [1, 0, 0, 0],
            [0, 1, 0, 0],
            [0, 0, 1, 0],
            [0, 0, 0, 1],
        ])
        np.testing.assert_array_equal(quarterly.R.toarray(), expected)

    @pytest.mark.parametrize("m", [2, 3, 4, 6, 7, 12, 24])
    def test_bottom_rows_are_identity(self, m):
        structure = TemporalStructure.from_frequency(m)
        np.testing.assert_array_equal(structure.R.toarray()[structure.ks:], np.eye(m))

    @pytest.mark.parametrize("m", [2, 3, 4, 6, 7, 12, 24])
    def test_constraints_annihilate_summing_matrix(self, m):
        structure = TemporalStructure.from_frequency(m)
        product = structure.Zt.toarray() @ structure.R.toarray()
        np.testing.assert_array_equal(product, np.zeros((structure.ks, m)))

    def test_structural_weights(self, quarterly):
        np.testing.assert_array_equal(
            quarterly.structural_weights(), [4, 2, 2, 1, 1, 1, 1]
        )

    def test_level_index(self, quarterly):
        np.testing.assert_array_equal(quarterly.level_index(), [4, 2, 2, 1, 1, 1, 1])

    def test_bottom_mask(self, quarterly):
        assert quarterly.bottom_mask.tolist() == [False] * 3 + [True] * 4

    def test_block_sizes(self, monthly):
        assert monthly.block_sizes == {12: 1, 6: 2, 4: 3, 3: 4, 2: 6, 1: 12}

    def test_single_level(self):
        structure = TemporalStructure.from_frequency(1)
        assert structure.kset == (1,)
        assert structure.ks == 0
        assert structure.kt == 1
        assert structure.Zt.shape == (0, 1)
        np.testing.assert_array_equal(structure.R.toarray(), [[1.0]])

    def test_numpy_integer_accepted(self):
        structure = TemporalStructure.from_frequency(np.int64(4))
        assert structure.kt == 7

    def test_equality(self):
        assert TemporalStructure.from_frequency(4) == TemporalStructure.from_frequency(4)
        assert TemporalStructure.from_frequency(4) != TemporalStructure.from_frequency(6)


class TestInvalidFrequency:
    """Test rejection of invalid frequencies."""

    @pytest.mark.parametrize("m", [0, -4])
    def test_non_positive(self, m):
        with pytest.raises(EInvalidFrequency, match="at least 1"):
            TemporalStructure.from_frequency(m)

    @pytest.mark.parametrize("m", [2.5, 4.0, "4", None])
    def test_non_integer(self, m):
        with pytest.raises(EInvalidFrequency, match="must be an integer"):
            TemporalStructure.from_frequency(m)

    def test_bool_rejected(self):
        with pytest.raises(EInvalidFrequency):
            TemporalStructure.from_frequency(True)

    def test_direct_construction_validated(self):
        with pytest.raises(EInvalidFrequency):
            TemporalStructure(m=0)

    def test_error_code(self):
        with pytest.raises(EInvalidFrequency) as exc_info:
            divisors(0)
        assert exc_info.value.error_code == "E_INVALID_FREQUENCY"


class TestLabelsAndLayout:
    """Test stacked vector labels and horizon layout."""

    def test_labels_single_cycle(self, quarterly):
        assert quarterly.labels() == [
            "k4h1", "k2h1", "k2h2", "k1h1", "k1h2", "k1h3", "k1h4",
        ]

    def test_labels_two_cycles(self):
        structure = TemporalStructure.from_frequency(2)
        assert structure.labels(2) == ["k2h1", "k2h2", "k1h1", "k1h2", "k1h3", "k1h4"]

    def test_positions(self):
        structure = TemporalStructure.from_frequency(2)
        orders, index = structure.positions(2)
        assert orders.tolist() == [2, 2, 1, 1, 1, 1]
        assert index.tolist() == [1, 2, 1, 2, 3, 4]

    def test_to_horizon_matrix(self):
        structure = TemporalStructure.from_frequency(2)
        # [annual 1, annual 2, half 1..4]
        vector = np.array([10.0, 20.0, 4.0, 6.0, 9.0, 11.0])
        matrix = structure.to_horizon_matrix(vector)
        np.testing.assert_array_equal(matrix, [[10, 4, 6], [20, 9, 11]])

    def test_round_trip(self, monthly):
        rng = np.random.default_rng(0)
        vector = rng.normal(size=3 * monthly.kt)
        np.testing.assert_array_equal(
            monthly.to_vector(monthly.to_horizon_matrix(vector)), vector
        )

    def test_horizon_from_length(self, quarterly):
        assert quarterly.horizon_from_length(14) == 2

    @pytest.mark.parametrize("n", [0, 5, 8])
    def test_bad_length(self, quarterly, n):
        with pytest.raises(EShapeMismatch, match="not a multiple"):
            quarterly.horizon_from_length(n)

    def test_to_vector_wrong_width(self, quarterly):
        with pytest.raises(EShapeMismatch):
            quarterly.to_vector(np.zeros((2, 5)))
