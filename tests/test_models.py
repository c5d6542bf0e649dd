"""Tests for model fitting functions."""

import numpy as np
import pandas as pd
import pytest

import bambi as bmb
import pymc as pm

from credibilitymixed.exceptions import InvalidConfigurationError
from credibilitymixed.models import (
    build_random_intercept_bambi_model,
    build_random_intercept_pymc_model,
    check_known_groups,
    fit_grand_mean,
    fit_group_means,
    fit_random_intercept,
    group_labels,
    mixed_variance_components,
    predict_random_intercept,
    with_plain_groups,
)
from credibilitymixed.utils import add_categorical_columns


@pytest.fixture
def sample_data():
    """Two groups of two observations: group 1 = [1, 3], group 2 = [5, 7]."""
    df = pd.DataFrame({
        "group_id": [1, 2, 1, 2],
        "response": [1.0, 5.0, 3.0, 7.0],
    })
    return add_categorical_columns(df, n_groups=2)


class TestFitGrandMean:
    """Tests for fit_grand_mean function."""

    def test_intercept_is_mean(self, sample_data):
        """Test the intercept equals the response mean."""
        results = fit_grand_mean(sample_data)

        assert results.params["Intercept"] == pytest.approx(4.0)

    def test_degrees_of_freedom(self, sample_data):
        """Test residual df is n - 1."""
        results = fit_grand_mean(sample_data)

        assert results.df_resid == 3

    def test_residuals(self, sample_data):
        """Test residuals are response minus grand mean."""
        results = fit_grand_mean(sample_data)

        np.testing.assert_allclose(results.resid, [-3.0, 1.0, -1.0, 3.0])


class TestFitGroupMeans:
    """Tests for fit_group_means function."""

    def test_degrees_of_freedom(self, sample_data):
        """Test residual df is n - n_groups."""
        results = fit_group_means(sample_data)

        assert results.df_resid == 2

    def test_residuals(self, sample_data):
        """Test residuals are response minus own group mean."""
        results = fit_group_means(sample_data)

        np.testing.assert_allclose(results.resid, [-1.0, -1.0, 1.0, 1.0])

    def test_unused_levels_not_counted(self, sample_data):
        """Test declared but unobserved levels do not consume df."""
        data = add_categorical_columns(sample_data, n_groups=5)

        results = fit_group_means(data)

        assert results.df_resid == 2

    def test_baseline_df(self, baseline_data):
        """Test df on the baseline data is 1000 - 100."""
        train, _ = baseline_data

        assert fit_group_means(train).df_resid == 900


class TestFitRandomIntercept:
    """Tests for fit_random_intercept and its helpers."""

    def test_intercept_is_grand_mean(self, baseline_data):
        """Test the GLS intercept equals the grand mean for balanced data."""
        train, _ = baseline_data

        results = fit_random_intercept(train)

        assert results.fe_params["Intercept"] == pytest.approx(
            train["response"].mean(), rel=1e-6
        )

    def test_random_effects_per_group(self, baseline_data):
        """Test one random effect per group."""
        train, _ = baseline_data

        results = fit_random_intercept(train)

        assert len(results.random_effects) == 100

    def test_variance_components_positive(self, baseline_data):
        """Test variance components are positive in the baseline regime."""
        train, _ = baseline_data

        sigma_a2, sigma2 = mixed_variance_components(fit_random_intercept(train))

        assert sigma_a2 > 0
        assert sigma2 > 0

    def test_predictions_shrink_towards_mean(self, baseline_data):
        """Test BLUPs lie between the grand mean and the group means."""
        train, _ = baseline_data
        results = fit_random_intercept(train)

        pred = predict_random_intercept(results, train)
        grand = train["response"].mean()
        group = train.groupby("group_id", observed=True)["response"].transform("mean")

        lower = np.minimum(grand, group.values) - 1e-6
        upper = np.maximum(grand, group.values) + 1e-6
        assert ((pred >= lower) & (pred <= upper)).all()

    def test_unknown_group(self, baseline_data):
        """Test predicting an unseen group raises."""
        train, _ = baseline_data
        results = fit_random_intercept(train)

        new = pd.DataFrame({"group_id": [101], "response": [0.0]})

        with pytest.raises(InvalidConfigurationError, match="Unknown group"):
            predict_random_intercept(results, new)


class TestGroupHelpers:
    """Tests for group label helpers."""

    def test_group_labels_from_categorical(self, sample_data):
        """Test categorical labels become plain integers."""
        labels = group_labels(sample_data)

        assert labels.dtype == np.int64
        assert labels.tolist() == [1, 2, 1, 2]

    def test_with_plain_groups(self, sample_data):
        """Test the group column loses its categorical dtype."""
        result = with_plain_groups(sample_data)

        assert result["group_id"].dtype.name != "category"
        assert sample_data["group_id"].dtype.name == "category"

    def test_check_known_groups(self, sample_data):
        """Test unknown levels are named in the error context."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            check_known_groups(pd.DataFrame({"group_id": [1, 9]}), [1, 2])

        assert exc_info.value.context["unknown_groups"] == [9]

        check_known_groups(sample_data, [1, 2])


class TestBuildBayesianModels:
    """Tests for Bayesian random-intercept model builders."""

    def test_bambi_model_creation(self, sample_data):
        """Test basic Bambi model creation."""
        model = build_random_intercept_bambi_model(sample_data)

        assert isinstance(model, bmb.Model)

    def test_pymc_model_creation(self, sample_data):
        """Test PyMC model creation and variable names."""
        model = build_random_intercept_pymc_model(sample_data)

        assert isinstance(model, pm.Model)
        var_names = {v.name for v in model.free_RVs}
        assert {"intercept", "sigma_group", "z_group", "sigma"} <= var_names
        assert list(model.coords["group"]) == [1, 2]

    def test_pymc_custom_priors(self, sample_data):
        """Test custom priors are accepted."""
        model = build_random_intercept_pymc_model(
            sample_data,
            priors={"intercept": {"mu": 0, "sigma": 5}, "sigma": {"sigma": 2}},
        )

        assert isinstance(model, pm.Model)
