"""Unit tests for statistical utilities."""

import pytest
import numpy as np
from scipy.stats import spearmanr

from celltype_transfer.utils import (
    MAD_SCALE,
    lower_outlier_bound,
    robust_zscore,
    scaled_mad,
    spearman_matrix,
    standardized_ranks,
)


class TestRobustStatistics:
    """Tests for MAD-based statistics."""

    def test_scaled_mad(self):
        median, mad = scaled_mad([1.0, 2.0, 3.0, 4.0, 100.0])
        assert median == 3.0
        assert mad == pytest.approx(1.0 * MAD_SCALE)

    def test_non_finite_values_ignored(self):
        median, mad = scaled_mad([1.0, np.nan, 3.0, np.inf])
        assert median == 2.0
        assert mad == pytest.approx(MAD_SCALE)

    def test_empty_input(self):
        median, mad = scaled_mad([])
        assert np.isnan(median) and np.isnan(mad)

    def test_lower_outlier_bound(self):
        median, mad, lower = lower_outlier_bound([1.0, 2.0, 3.0, 4.0, 5.0], nmads=3)
        assert median == 3.0
        assert lower == pytest.approx(3.0 - 3 * MAD_SCALE)

    def test_robust_zscore(self):
        z = robust_zscore([1.0, 2.0, 3.0, np.nan])
        assert np.isnan(z[3])
        assert z[1] == 0.0
        assert z[0] == pytest.approx(-1 / MAD_SCALE)

    def test_robust_zscore_constant(self):
        assert robust_zscore([2.0, 2.0, 2.0]).tolist() == [0.0, 0.0, 0.0]


class TestRankCorrelation:
    """Tests for standardized ranks and Spearman matrices."""

    def test_standardized_ranks_unit_norm(self):
        rng = np.random.RandomState(0)
        ranks = standardized_ranks(rng.normal(size=(20, 4)))
        np.testing.assert_allclose(ranks.mean(axis=0), 0, atol=1e-12)
        np.testing.assert_allclose((ranks ** 2).sum(axis=0), 1)

    def test_constant_column_is_zero(self):
        matrix = np.column_stack([np.ones(5), np.arange(5.0)])
        ranks = standardized_ranks(matrix)
        assert (ranks[:, 0] == 0).all()

    def test_rejects_vectors(self):
        with pytest.raises(ValueError, match="2-D"):
            standardized_ranks(np.arange(5.0))

    def test_matches_scipy_spearman(self):
        rng = np.random.RandomState(1)
        test = rng.normal(size=(30, 3))
        reference = rng.normal(size=(30, 4))
        test[:5, 0] = 1.0  # ties

        result = spearman_matrix(test, reference)
        assert result.shape == (3, 4)
        for i in range(3):
            for j in range(4):
                expected = spearmanr(test[:, i], reference[:, j])[0]
                assert result[i, j] == pytest.approx(expected)
