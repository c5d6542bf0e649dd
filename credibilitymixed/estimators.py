"""
High-level estimator classes for grouped credibility data.

This module provides scikit-learn-style estimator classes for the three
pooling strategies compared by Buhlmann credibility theory:

- `GrandMeanModel`: complete pooling, every group gets the overall mean.
- `GroupMeansModel`: no pooling, every group gets its own sample mean.
- `RandomInterceptModel`: partial pooling via a linear mixed model, whose
  predictions are credibility-weighted blends of the two above.

`BayesianRandomIntercept` fits the partial-pooling model by MCMC and exposes
the posterior distribution of the credibility factor.
"""

from __future__ import annotations

from typing import Any, Literal, Protocol

import arviz as az
import bambi as bmb
import numpy as np
import pandas as pd
import pymc as pm
import xarray as xr

from .models import (
    RANDOM_INTERCEPT_FORMULA,
    build_random_intercept_bambi_model,
    build_random_intercept_pymc_model,
    check_known_groups,
    extract_parameter_summary,
    fit_grand_mean,
    fit_group_means,
    fit_model,
    fit_random_intercept,
    group_labels,
    mixed_variance_components,
    predict_bambi_posterior,
    predict_pymc_posterior,
    predict_random_intercept,
    with_plain_groups,
)
from .utils import GROUP_COLUMN, RESPONSE_COLUMN, validate_grouped_data


class FittedModel(Protocol):
    """Protocol for fitted models consumed by the credibility estimators."""

    @property
    def resid(self) -> np.ndarray:
        ...

    @property
    def df_resid(self) -> float:
        ...

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        ...


class _PooledModel:
    """Shared fitted-state handling for the statsmodels-backed estimators."""

    name = "model"

    def __init__(self):
        # Fitted attributes (set by fit())
        self.results_: Any = None
        self.data_: pd.DataFrame | None = None
        self.groups_: np.ndarray | None = None
        self._is_fitted: bool = False

    def fit(self, data: pd.DataFrame):
        """
        Fit the model to grouped training data.

        Parameters
        ----------
        data : pd.DataFrame
            Training data with "group_id" and "response" columns.

        Returns
        -------
        self
            The fitted estimator.
        """
        validate_grouped_data(data)

        self.data_ = data.copy()
        self.groups_ = np.unique(group_labels(data))
        self.results_ = self._fit_results(data)

        self._is_fitted = True
        return self

    def _fit_results(self, data: pd.DataFrame) -> Any:
        raise NotImplementedError

    @property
    def resid(self) -> np.ndarray:
        """Training residuals, one per training row."""
        self._check_is_fitted()
        return np.asarray(self.results_.resid, dtype=np.float64)

    @property
    def df_resid(self) -> float:
        """Residual degrees of freedom."""
        self._check_is_fitted()
        return float(self.results_.df_resid)

    @property
    def n_obs(self) -> int:
        self._check_is_fitted()
        return len(self.data_)

    def fitted_values(self) -> np.ndarray:
        """Predictions for the training rows."""
        self._check_is_fitted()
        return self.predict(self.data_)

    def _check_is_fitted(self) -> None:
        """Check if the model has been fitted."""
        if not self._is_fitted:
            raise ValueError(
                "Model has not been fitted. Call fit() before using this method."
            )

    def __repr__(self) -> str:
        fitted_str = "fitted" if self._is_fitted else "not fitted"
        return f"{type(self).__name__}(status={fitted_str})"


class GrandMeanModel(_PooledModel):
    """
    Complete-pooling estimator.

    Predicts the overall training mean for every group, ignoring group
    membership. Residual degrees of freedom are ``n - 1``.

    Attributes
    ----------
    results_ : RegressionResultsWrapper
        Fitted statsmodels OLS results.
    grand_mean_ : float
        The fitted intercept.
    """

    name = "grand_mean"

    def _fit_results(self, data: pd.DataFrame) -> Any:
        results = fit_grand_mean(data)
        self.grand_mean_ = float(results.params["Intercept"])
        return results

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        """
        Predict the grand mean for each row of ``data``.

        Parameters
        ----------
        data : pd.DataFrame
            Rows to predict.

        Returns
        -------
        np.ndarray
            Constant prediction per row.
        """
        self._check_is_fitted()
        return np.full(len(data), self.grand_mean_, dtype=np.float64)


class GroupMeansModel(_PooledModel):
    """
    No-pooling estimator.

    Predicts each group's own training sample mean. Residual degrees of
    freedom are ``n - n_groups_observed``. Groups absent from the training
    data have no coefficient and cannot be predicted.

    Attributes
    ----------
    results_ : RegressionResultsWrapper
        Fitted statsmodels OLS results on group indicators.
    """

    name = "group_means"

    def _fit_results(self, data: pd.DataFrame) -> Any:
        return fit_group_means(data)

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        """
        Predict each row's group sample mean.

        Raises
        ------
        InvalidConfigurationError
            If ``data`` contains a group not seen during fitting.
        """
        self._check_is_fitted()
        check_known_groups(data, self.groups_)
        return np.asarray(
            self.results_.predict(with_plain_groups(data)), dtype=np.float64
        )

    def group_means(self) -> pd.Series:
        """Fitted mean per training group, indexed by group_id."""
        self._check_is_fitted()
        index = pd.Index(self.groups_, name=GROUP_COLUMN)
        rows = pd.DataFrame({GROUP_COLUMN: self.groups_})
        return pd.Series(self.predict(rows), index=index, name="mean")


class RandomInterceptModel(_PooledModel):
    """
    Partial-pooling estimator (random-intercept linear mixed model).

    Fits ``response ~ 1`` with a random intercept per group using
    statsmodels MixedLM. Each group's prediction is the fixed intercept plus
    its best linear unbiased predictor, which shrinks the group sample mean
    towards the overall mean by the credibility factor.

    Parameters
    ----------
    reml : bool, optional
        Fit by restricted maximum likelihood. Default is True.
    fit_kwargs : dict, optional
        Extra keyword arguments for ``MixedLM.fit`` (e.g. ``method``).

    Attributes
    ----------
    results_ : MixedLMResultsWrapper
        Fitted statsmodels mixed model results.
    """

    name = "random_intercept"

    def __init__(self, reml: bool = True, fit_kwargs: dict[str, Any] | None = None):
        super().__init__()
        self.reml = reml
        self.fit_kwargs = fit_kwargs or {}

    def _fit_results(self, data: pd.DataFrame) -> Any:
        return fit_random_intercept(data, reml=self.reml, **self.fit_kwargs)

    @property
    def df_resid(self) -> float:
        """Residual degrees of freedom: ``n`` minus fixed-effect parameters."""
        self._check_is_fitted()
        return float(self.n_obs - self.results_.model.k_fe)

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        """
        Predict each row's group BLUP.

        Raises
        ------
        InvalidConfigurationError
            If ``data`` contains a group not seen during fitting.
        """
        self._check_is_fitted()
        return predict_random_intercept(self.results_, data)

    def variance_components(self) -> tuple[float, float]:
        """
        Estimated variance components.

        Returns
        -------
        tuple[float, float]
            ``(sigma_a2, sigma2)``: between-group variance (VHM) and
            within-group variance (EPV).
        """
        self._check_is_fitted()
        return mixed_variance_components(self.results_)

    def implied_credibility(self, obs_per_group: float) -> float:
        """
        Credibility factor implied by the fitted variance components.

        Parameters
        ----------
        obs_per_group : float
            Number of observations per group.

        Returns
        -------
        float
            ``n * sigma_a2 / (n * sigma_a2 + sigma2)``.
        """
        sigma_a2, sigma2 = self.variance_components()
        return obs_per_group * sigma_a2 / (obs_per_group * sigma_a2 + sigma2)

    def get_random_effects(self) -> pd.DataFrame:
        """
        Predicted random effects by group.

        Returns
        -------
        pd.DataFrame
            Indexed by group_id with columns: random_effect, prediction.
        """
        self._check_is_fitted()
        intercept = float(self.results_.fe_params["Intercept"])
        effects = pd.Series(
            {int(g): float(re.iloc[0]) for g, re in self.results_.random_effects.items()},
            name="random_effect",
        ).sort_index()
        effects.index.name = GROUP_COLUMN

        result = effects.to_frame()
        result["prediction"] = intercept + result["random_effect"]
        return result


class BayesianRandomIntercept:
    """
    Bayesian random-intercept model fitted by MCMC.

    The Gaussian model::

        y_i = intercept + b_{g(i)} + eps_i,
        b_g ~ Normal(0, sigma_group),  eps_i ~ Normal(0, sigma)

    gives posterior group means that shrink towards the intercept. The
    posterior of ``n * sigma_group^2 / (n * sigma_group^2 + sigma^2)`` is
    the distribution of the Buhlmann credibility factor.

    Parameters
    ----------
    formula : str, optional
        Bambi formula. Only used for the bambi backend.
        Default is "response ~ 1 + (1|group_id)".
    priors : dict, optional
        Prior specifications passed to the model builder.
    draws : int, optional
        Number of posterior samples per chain. Default is 2000.
    tune : int, optional
        Number of tuning samples. Default is 1000.
    chains : int, optional
        Number of MCMC chains. Default is 4.
    target_accept : float, optional
        Target acceptance probability for NUTS sampler. Default is 0.9.
    random_seed : int, optional
        Random seed for reproducibility.
    backend : {"bambi", "pymc"}, optional
        Modeling backend. Default is "bambi".

    Attributes
    ----------
    model_ : bmb.Model or pm.Model
        The fitted model.
    idata : az.InferenceData
        ArviZ InferenceData object with posterior samples.
    data_ : pd.DataFrame
        The training data.

    Examples
    --------
    >>> import numpy as np
    >>> from credibilitymixed.utils import generate_grouped_data
    >>> from credibilitymixed.estimators import BayesianRandomIntercept
    >>> train, test = generate_grouped_data(100, 40, 40, n_groups=20,
    ...                                     rng=np.random.default_rng(3))
    >>> model = BayesianRandomIntercept(draws=500, tune=500, chains=2)
    >>> model.fit(train)
    >>> z = model.posterior_credibility(obs_per_group=10)
    """

    _SIGMA_NAMES = {
        "bambi": (f"1|{GROUP_COLUMN}_sigma", "sigma"),
        "pymc": ("sigma_group", "sigma"),
    }

    def __init__(
        self,
        formula: str = RANDOM_INTERCEPT_FORMULA,
        priors: dict[str, Any] | None = None,
        draws: int = 2000,
        tune: int = 1000,
        chains: int = 4,
        target_accept: float = 0.9,
        random_seed: int | None = None,
        backend: Literal["bambi", "pymc"] = "bambi",
    ):
        if backend not in self._SIGMA_NAMES:
            raise ValueError(
                f"Unknown backend '{backend}'. Supported backends: "
                f"{list(self._SIGMA_NAMES)}"
            )

        self.formula = formula
        self.priors = priors
        self.draws = draws
        self.tune = tune
        self.chains = chains
        self.target_accept = target_accept
        self.random_seed = random_seed
        self.backend = backend

        # Fitted attributes (set by fit())
        self.model_: bmb.Model | pm.Model | None = None
        self.idata: az.InferenceData | None = None
        self.data_: pd.DataFrame | None = None
        self._is_fitted: bool = False

    def fit(self, data: pd.DataFrame) -> "BayesianRandomIntercept":
        """
        Fit the model to grouped training data.

        Parameters
        ----------
        data : pd.DataFrame
            Training data with "group_id" and "response" columns.

        Returns
        -------
        self
            The fitted estimator.
        """
        self.model_ = self.build_model(data)

        self.idata = fit_model(
            self.model_,
            draws=self.draws,
            tune=self.tune,
            chains=self.chains,
            target_accept=self.target_accept,
            random_seed=self.random_seed,
        )

        self._is_fitted = True
        return self

    def build_model(self, data: pd.DataFrame) -> bmb.Model | pm.Model:
        """
        Build (but do not fit) the model for ``data``.

        Returns
        -------
        bmb.Model or pm.Model
            Depending on the backend.
        """
        validate_grouped_data(data)
        self.data_ = data.copy()

        if self.backend == "pymc":
            return build_random_intercept_pymc_model(self.data_, priors=self.priors)

        priors = self.priors
        if priors is None:
            # Data-adaptive intercept prior on the response scale
            response = np.asarray(self.data_[RESPONSE_COLUMN], dtype=np.float64)
            response_mean = response.mean()
            intercept_sigma = max(response.std(), abs(response_mean) * 0.5, 1.0)
            priors = {
                "Intercept": bmb.Prior("Normal", mu=response_mean, sigma=intercept_sigma),
            }

        return build_random_intercept_bambi_model(
            self.data_, formula=self.formula, priors=priors
        )

    def predict_posterior(self, data: pd.DataFrame) -> xr.DataArray:
        """
        Posterior draws of each row's expected response.

        Returns
        -------
        xr.DataArray
            Dims (chain, draw, obs).
        """
        self._check_is_fitted()
        if self.backend == "pymc":
            return predict_pymc_posterior(self.model_, self.idata, data)
        check_known_groups(data, np.unique(group_labels(self.data_)))
        return predict_bambi_posterior(self.model_, self.idata, data)

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        """Posterior mean of each row's expected response."""
        return self.predict_posterior(data).mean(dim=["chain", "draw"]).values

    def posterior_credibility(self, obs_per_group: float) -> xr.DataArray:
        """
        Posterior draws of the credibility factor.

        Parameters
        ----------
        obs_per_group : float
            Number of observations per group.

        Returns
        -------
        xr.DataArray
            ``n * sigma_group^2 / (n * sigma_group^2 + sigma^2)`` per draw,
            dims (chain, draw).
        """
        self._check_is_fitted()
        group_name, resid_name = self._SIGMA_NAMES[self.backend]
        posterior = self.idata.posterior

        between = obs_per_group * posterior[group_name] ** 2
        z = between / (between + posterior[resid_name] ** 2)
        return z.rename("credibility")

    def get_parameter_summary(
        self,
        var_names: list[str] | None = None,
        hdi_prob: float = 0.94,
    ) -> pd.DataFrame:
        """
        Get summary statistics for model parameters.

        Parameters
        ----------
        var_names : list[str], optional
            Parameter names to include. Defaults to the variance parameters.
        hdi_prob : float, optional
            Probability mass for HDI. Default is 0.94.

        Returns
        -------
        pd.DataFrame
            Summary statistics for parameters.
        """
        self._check_is_fitted()
        if var_names is None:
            var_names = list(self._SIGMA_NAMES[self.backend])
        return extract_parameter_summary(self.idata, var_names=var_names, hdi_prob=hdi_prob)

    def _check_is_fitted(self) -> None:
        """Check if the model has been fitted."""
        if not self._is_fitted:
            raise ValueError(
                "Model has not been fitted. Call fit() before using this method."
            )

    def __repr__(self) -> str:
        fitted_str = "fitted" if self._is_fitted else "not fitted"
        return (
            f"BayesianRandomIntercept(\n"
            f"    formula='{self.formula}',\n"
            f"    backend='{self.backend}',\n"
            f"    draws={self.draws},\n"
            f"    tune={self.tune},\n"
            f"    status={fitted_str}\n"
            f")"
        )
