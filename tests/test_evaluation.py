"""Tests for held-out evaluation."""

import numpy as np
import pandas as pd
import pytest

from credibilitymixed.estimators import GrandMeanModel, GroupMeansModel, RandomInterceptModel
from credibilitymixed.evaluation import compare_models, rmse


class TestRmse:
    """Tests for the rmse function."""

    def test_basic(self):
        """Test a hand-computed value."""
        # errors 3 and 4 -> sqrt((9 + 16) / 2)
        assert rmse([0.0, 0.0], [3.0, 4.0]) == pytest.approx(np.sqrt(12.5))

    def test_identical_is_zero(self):
        """Test RMSE of a series against itself is zero."""
        x = np.random.default_rng(0).normal(size=50)

        assert rmse(x, x) == 0

    def test_non_negative(self):
        """Test RMSE is never negative."""
        rng = np.random.default_rng(1)
        for _ in range(10):
            assert rmse(rng.normal(size=20), rng.normal(size=20)) >= 0

    def test_accepts_series(self):
        """Test pandas inputs are accepted."""
        assert rmse(pd.Series([1.0, 2.0]), pd.Series([1.0, 4.0])) == pytest.approx(np.sqrt(2))

    def test_length_mismatch(self):
        """Test unequal lengths raise."""
        with pytest.raises(ValueError, match="same length"):
            rmse([1.0, 2.0], [1.0])

    def test_empty(self):
        """Test empty inputs raise."""
        with pytest.raises(ValueError, match="empty"):
            rmse([], [])


class TestCompareModels:
    """Tests for compare_models function."""

    def test_table(self, baseline_data):
        """Test one sorted RMSE row per model."""
        train, test = baseline_data
        models = {
            "grand_mean": GrandMeanModel().fit(train),
            "group_means": GroupMeansModel().fit(train),
            "random_intercept": RandomInterceptModel().fit(train),
        }

        table = compare_models(test, models)

        assert set(table.index) == set(models)
        assert table.index.name == "model"
        assert table["rmse"].is_monotonic_increasing
        assert (table["rmse"] > 0).all()

    def test_pooling_beats_grand_mean(self, baseline_data):
        """Test the mixed model beats complete pooling on held-out data."""
        train, test = baseline_data
        table = compare_models(
            test,
            {
                "grand_mean": GrandMeanModel().fit(train),
                "random_intercept": RandomInterceptModel().fit(train),
            },
        )

        assert table.loc["random_intercept", "rmse"] < table.loc["grand_mean", "rmse"]
