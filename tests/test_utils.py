"""Tests for data generation and utility functions."""

import numpy as np
import pandas as pd
import pytest

from credibilitymixed.exceptions import InvalidConfigurationError
from credibilitymixed.utils import (
    add_categorical_columns,
    generate_grouped_data,
    generate_grouped_data_with_means,
    group_summary,
    validate_generator_params,
    validate_grouped_data,
)


class TestGenerateGroupedData:
    """Tests for generate_grouped_data function."""

    def test_baseline_row_counts(self, baseline_data):
        """Test baseline parameters give 1000 train and 300 test rows."""
        train, test = baseline_data

        assert len(train) == 1000
        assert len(test) == 300

    def test_columns(self, baseline_data):
        """Test output has group and response columns."""
        train, test = baseline_data

        for df in (train, test):
            assert list(df.columns) == ["group_id", "response"]
            assert df["response"].dtype == np.float64

    def test_group_ids_in_range(self, baseline_data):
        """Test every group_id lies in 1..n_groups."""
        train, test = baseline_data

        for df in (train, test):
            ids = df["group_id"].astype(int)
            assert ids.min() == 1
            assert ids.max() == 100

    def test_categorical_levels_match(self, baseline_data):
        """Test train and test share exactly the levels 1..n_groups."""
        train, test = baseline_data

        assert train["group_id"].dtype.name == "category"
        assert list(train["group_id"].cat.categories) == list(range(1, 101))
        assert list(test["group_id"].cat.categories) == list(range(1, 101))

    def test_round_robin_order(self):
        """Test row i belongs to group (i mod n_groups) + 1."""
        train, test = generate_grouped_data(
            0, 1, 1, n_groups=4, obs_per_group=3, test_obs_per_group=2,
            rng=np.random.default_rng(0),
        )

        assert train["group_id"].astype(int).tolist() == [1, 2, 3, 4] * 3
        assert test["group_id"].astype(int).tolist() == [1, 2, 3, 4] * 2

    def test_balanced_groups(self, baseline_data):
        """Test every group has the same number of rows."""
        train, test = baseline_data

        assert (train["group_id"].value_counts() == 10).all()
        assert (test["group_id"].value_counts() == 3).all()

    def test_same_seed_reproducible(self):
        """Test identical seeds give identical data."""
        a_train, a_test = generate_grouped_data(100, 40, 40, rng=np.random.default_rng(7))
        b_train, b_test = generate_grouped_data(100, 40, 40, rng=np.random.default_rng(7))

        pd.testing.assert_frame_equal(a_train, b_train)
        pd.testing.assert_frame_equal(a_test, b_test)

    def test_stream_advances(self):
        """Test successive calls on one generator give different data."""
        rng = np.random.default_rng(7)
        first, _ = generate_grouped_data(100, 40, 40, rng=rng)
        second, _ = generate_grouped_data(100, 40, 40, rng=rng)

        assert not np.allclose(first["response"], second["response"])

    def test_zero_between_group_spread(self):
        """Test sd_groups=0 gives every group the common mean."""
        _, _, means = generate_grouped_data_with_means(
            50, 0, 1, n_groups=10, rng=np.random.default_rng(1)
        )

        np.testing.assert_array_equal(means, np.full(10, 50.0))

    def test_test_reuses_latent_means(self):
        """Test train and test group means track the same latent means."""
        train, test, means = generate_grouped_data_with_means(
            0, 100, 1, n_groups=50, obs_per_group=10, test_obs_per_group=10,
            rng=np.random.default_rng(3),
        )

        train_means = train.groupby("group_id", observed=True)["response"].mean()
        test_means = test.groupby("group_id", observed=True)["response"].mean()

        # Within-group noise is tiny relative to the spread of latent means
        np.testing.assert_allclose(train_means.values, means, atol=2)
        np.testing.assert_allclose(test_means.values, means, atol=2)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"sd_obs": 0},
            {"sd_obs": -1},
            {"sd_groups": -1},
            {"n_groups": 0},
            {"obs_per_group": 0},
            {"test_obs_per_group": 0},
            {"n_groups": 2.5},
        ],
    )
    def test_invalid_parameters(self, kwargs):
        """Test invalid parameters raise InvalidConfigurationError."""
        params = {"mu_groups": 100, "sd_groups": 40, "sd_obs": 40}
        params.update(kwargs)

        with pytest.raises(InvalidConfigurationError):
            generate_grouped_data(**params, rng=np.random.default_rng(0))

    def test_single_group_allowed(self):
        """Test generation itself accepts a single group."""
        train, test = generate_grouped_data(
            100, 40, 40, n_groups=1, rng=np.random.default_rng(0)
        )

        assert len(train) == 10
        assert len(test) == 3


class TestValidateGeneratorParams:
    """Tests for validate_generator_params function."""

    def test_valid_params(self):
        """Test valid parameters pass."""
        validate_generator_params(0, 1, 1, 1, 1)

    def test_error_context(self):
        """Test the error names the offending parameter."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            validate_generator_params(1, -2, 10, 10, 3)

        assert exc_info.value.context == {"sd_obs": -2}


class TestAddCategoricalColumns:
    """Tests for add_categorical_columns function."""

    def test_fixed_levels(self):
        """Test levels are 1..n_groups even for unseen groups."""
        df = pd.DataFrame({"group_id": [1, 3], "response": [1.0, 2.0]})

        result = add_categorical_columns(df, n_groups=4)

        assert list(result["group_id"].cat.categories) == [1, 2, 3, 4]

    def test_observed_levels(self):
        """Test levels default to the sorted observed values."""
        df = pd.DataFrame({"group_id": [3, 1, 3], "response": [1.0, 2.0, 3.0]})

        result = add_categorical_columns(df)

        assert list(result["group_id"].cat.categories) == [1, 3]

    def test_does_not_modify_input(self):
        """Test input DataFrame is not modified."""
        df = pd.DataFrame({"group_id": [1, 2], "response": [1.0, 2.0]})

        add_categorical_columns(df)

        assert df["group_id"].dtype.name != "category"

    def test_missing_column(self):
        """Test missing column raises."""
        with pytest.raises(ValueError, match="not found"):
            add_categorical_columns(pd.DataFrame({"response": [1.0]}))


class TestValidateGroupedData:
    """Tests for validate_grouped_data function."""

    def test_valid_data(self, baseline_data):
        """Test generated data passes validation."""
        train, _ = baseline_data
        validate_grouped_data(train)

    def test_missing_columns(self):
        """Test missing columns raise."""
        with pytest.raises(ValueError, match="missing columns"):
            validate_grouped_data(pd.DataFrame({"group_id": [1]}))

    def test_empty(self):
        """Test empty data raises."""
        with pytest.raises(ValueError, match="at least one row"):
            validate_grouped_data(pd.DataFrame({"group_id": [], "response": []}))

    def test_nan_response(self):
        """Test NaN responses raise."""
        df = pd.DataFrame({"group_id": [1, 2], "response": [1.0, np.nan]})

        with pytest.raises(ValueError, match="NaN"):
            validate_grouped_data(df)


class TestGroupSummary:
    """Tests for group_summary function."""

    def test_statistics(self):
        """Test per-group count, mean and variance."""
        df = pd.DataFrame({"group_id": [1, 2, 1, 2], "response": [1.0, 5.0, 3.0, 7.0]})

        summary = group_summary(df)

        assert summary.loc[1, "n"] == 2
        assert summary.loc[1, "mean"] == 2.0
        assert summary.loc[2, "mean"] == 6.0
        assert summary.loc[2, "var"] == 2.0
