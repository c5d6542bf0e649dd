"""
Low-level model fitting functions for grouped credibility data.

This module provides functions to fit the three competing estimators of a
group's expected response with statsmodels:

- complete pooling: ordinary least squares on an intercept only;
- no pooling: ordinary least squares on group indicators;
- partial pooling: a random-intercept linear mixed model fitted by REML.

It also builds Bayesian random-intercept models with Bambi or PyMC, which
give the same shrinkage structure with posterior uncertainty.
"""

from __future__ import annotations

from typing import Any

import arviz as az
import bambi as bmb
import numpy as np
import pandas as pd
import pymc as pm
import statsmodels.formula.api as smf
import xarray as xr
from statsmodels.regression.linear_model import RegressionResultsWrapper
from statsmodels.regression.mixed_linear_model import MixedLMResultsWrapper

from .exceptions import InvalidConfigurationError
from .utils import GROUP_COLUMN, RESPONSE_COLUMN, validate_grouped_data

GRAND_MEAN_FORMULA = f"{RESPONSE_COLUMN} ~ 1"
GROUP_MEANS_FORMULA = f"{RESPONSE_COLUMN} ~ C({GROUP_COLUMN})"
RANDOM_INTERCEPT_FORMULA = f"{RESPONSE_COLUMN} ~ 1 + (1|{GROUP_COLUMN})"


def fit_grand_mean(data: pd.DataFrame) -> RegressionResultsWrapper:
    """
    Fit the complete-pooling model (intercept-only OLS).

    Parameters
    ----------
    data : pd.DataFrame
        Training data with "group_id" and "response" columns.

    Returns
    -------
    RegressionResultsWrapper
        Fitted statsmodels OLS results. Residual degrees of freedom are
        ``n - 1``.
    """
    validate_grouped_data(data)
    return smf.ols(GRAND_MEAN_FORMULA, data=data).fit()


def fit_group_means(data: pd.DataFrame) -> RegressionResultsWrapper:
    """
    Fit the no-pooling model (OLS on group indicators).

    Parameters
    ----------
    data : pd.DataFrame
        Training data with a categorical "group_id" column.

    Returns
    -------
    RegressionResultsWrapper
        Fitted statsmodels OLS results. Residual degrees of freedom are
        ``n - n_groups_observed``.
    """
    validate_grouped_data(data)
    return smf.ols(GROUP_MEANS_FORMULA, data=with_plain_groups(data)).fit()


def fit_random_intercept(
    data: pd.DataFrame,
    reml: bool = True,
    **kwargs: Any,
) -> MixedLMResultsWrapper:
    """
    Fit the partial-pooling model (random intercept per group).

    Parameters
    ----------
    data : pd.DataFrame
        Training data with "group_id" and "response" columns.
    reml : bool, optional
        Use restricted maximum likelihood. Default is True; for balanced
        designs the REML variance components coincide with the ANOVA
        moment estimators whenever those are positive.
    **kwargs
        Additional arguments passed to ``MixedLM.fit``.

    Returns
    -------
    MixedLMResultsWrapper
        Fitted statsmodels mixed model results.
    """
    validate_grouped_data(data)
    groups = group_labels(data)
    model = smf.mixedlm(GRAND_MEAN_FORMULA, data=data, groups=groups)
    return model.fit(reml=reml, **kwargs)


def group_labels(data: pd.DataFrame) -> np.ndarray:
    """Return the group column as a plain integer array."""
    values = data[GROUP_COLUMN]
    if isinstance(values.dtype, pd.CategoricalDtype):
        values = values.astype(values.cat.categories.dtype)
    return np.asarray(values, dtype=np.int64)


def check_known_groups(data: pd.DataFrame, known_groups) -> None:
    """
    Ensure every group in ``data`` was present in the training data.

    Raises
    ------
    InvalidConfigurationError
        If prediction data contains groups with no fitted coefficient.
    """
    labels = group_labels(data)
    unknown = np.setdiff1d(np.unique(labels), np.asarray(list(known_groups)))
    if len(unknown) > 0:
        raise InvalidConfigurationError(
            f"Unknown group levels in prediction data: {unknown.tolist()}",
            context={"unknown_groups": unknown.tolist()},
        )


def with_plain_groups(data: pd.DataFrame) -> pd.DataFrame:
    """
    Copy of ``data`` with integer group labels.

    Formula levels then come from the groups actually present in the rows,
    so levels with no training rows never enter the design matrix.
    """
    data = data.copy()
    data[GROUP_COLUMN] = group_labels(data)
    return data


def predict_random_intercept(
    results: MixedLMResultsWrapper,
    data: pd.DataFrame,
) -> np.ndarray:
    """
    Best linear unbiased predictions for the groups in ``data``.

    The prediction for group ``g`` is the estimated fixed intercept plus the
    predicted random effect (BLUP) for ``g``.

    Parameters
    ----------
    results : MixedLMResultsWrapper
        Fitted random-intercept model.
    data : pd.DataFrame
        Rows to predict; only the "group_id" column is used.

    Returns
    -------
    np.ndarray
        Predicted response per row.
    """
    random_effects = results.random_effects
    check_known_groups(data, random_effects.keys())

    intercept = float(results.fe_params["Intercept"])
    effects = {int(g): float(re.iloc[0]) for g, re in random_effects.items()}

    labels = group_labels(data)
    return intercept + np.array([effects[int(g)] for g in labels], dtype=np.float64)


def mixed_variance_components(results: MixedLMResultsWrapper) -> tuple[float, float]:
    """
    Extract (between-group, within-group) variance estimates.

    Returns
    -------
    tuple[float, float]
        ``(sigma_a2, sigma2)``: the random-intercept variance and the
        residual variance.
    """
    sigma_a2 = float(np.asarray(results.cov_re)[0, 0])
    sigma2 = float(results.scale)
    return sigma_a2, sigma2


def build_random_intercept_bambi_model(
    data: pd.DataFrame,
    formula: str = RANDOM_INTERCEPT_FORMULA,
    priors: dict[str, Any] | None = None,
) -> bmb.Model:
    """
    Build a Bambi Gaussian random-intercept model.

    Parameters
    ----------
    data : pd.DataFrame
        Grouped data with "group_id" and "response" columns.
    formula : str, optional
        Bambi formula. Default is "response ~ 1 + (1|group_id)".
    priors : dict, optional
        Dictionary of prior specifications. Keys are parameter names,
        values are bambi.Prior objects.

    Returns
    -------
    bmb.Model
        A Bambi model object ready for fitting.

    Examples
    --------
    >>> import numpy as np
    >>> from credibilitymixed.utils import generate_grouped_data
    >>> from credibilitymixed.models import build_random_intercept_bambi_model
    >>> train, _ = generate_grouped_data(100, 40, 40, n_groups=5,
    ...                                  rng=np.random.default_rng(0))
    >>> model = build_random_intercept_bambi_model(train)
    """
    validate_grouped_data(data)

    return bmb.Model(
        formula=formula,
        data=data,
        family="gaussian",
        priors=priors,
    )


def build_random_intercept_pymc_model(
    data: pd.DataFrame,
    priors: dict[str, Any] | None = None,
) -> pm.Model:
    """
    Build a PyMC Gaussian random-intercept model.

    Uses a non-centred parameterisation::

        y_i = intercept + sigma_group * z[g(i)] + eps_i
        z ~ Normal(0, 1),  eps_i ~ Normal(0, sigma)

    Parameters
    ----------
    data : pd.DataFrame
        Grouped data with "group_id" and "response" columns.
    priors : dict, optional
        Custom prior specifications. Recognised keys:
        - "intercept": {"mu": ..., "sigma": ...}
        - "sigma_group": {"sigma": ...} (HalfNormal scale)
        - "sigma": {"sigma": ...} (HalfNormal scale)
        Defaults are scaled to the response.

    Returns
    -------
    pm.Model
        A PyMC model object.
    """
    validate_grouped_data(data)
    priors = priors or {}

    y = np.asarray(data[RESPONSE_COLUMN], dtype=np.float64)
    n_obs = len(y)

    group_codes, group_levels = pd.factorize(group_labels(data), sort=True)

    # Data-adaptive defaults
    response_mean = float(y.mean())
    response_scale = float(max(y.std(), 1.0))

    coords = {
        "group": group_levels,
        "obs": np.arange(n_obs),
    }

    with pm.Model(coords=coords) as model:
        group_idx = pm.Data("group_idx", group_codes, dims="obs")

        intercept_prior = priors.get("intercept", {})
        intercept = pm.Normal(
            "intercept",
            mu=intercept_prior.get("mu", response_mean),
            sigma=intercept_prior.get("sigma", 2 * response_scale),
        )

        group_sigma_prior = priors.get("sigma_group", {})
        sigma_group = pm.HalfNormal(
            "sigma_group", sigma=group_sigma_prior.get("sigma", response_scale)
        )
        z_group = pm.Normal("z_group", mu=0, sigma=1, dims="group")
        group_effect = pm.Deterministic(
            "group_effect", sigma_group * z_group, dims="group"
        )

        sigma_prior = priors.get("sigma", {})
        sigma = pm.HalfNormal("sigma", sigma=sigma_prior.get("sigma", response_scale))

        pm.Normal(
            "y",
            mu=intercept + group_effect[group_idx],
            sigma=sigma,
            observed=y,
            dims="obs",
        )

    return model


def fit_model(
    model: bmb.Model | pm.Model,
    draws: int = 2000,
    tune: int = 1000,
    chains: int = 4,
    target_accept: float = 0.9,
    random_seed: int | None = None,
    **kwargs: Any,
) -> az.InferenceData:
    """
    Fit a Bambi or PyMC model using MCMC.

    Parameters
    ----------
    model : bmb.Model or pm.Model
        The model to fit.
    draws : int, optional
        Number of posterior samples per chain. Default is 2000.
    tune : int, optional
        Number of tuning samples. Default is 1000.
    chains : int, optional
        Number of MCMC chains. Default is 4.
    target_accept : float, optional
        Target acceptance probability for NUTS. Default is 0.9.
    random_seed : int, optional
        Random seed for reproducibility.
    **kwargs
        Additional arguments passed to the sampler.

    Returns
    -------
    az.InferenceData
        ArviZ InferenceData object with posterior samples.
    """
    if isinstance(model, bmb.Model):
        init_kwargs = kwargs.pop("init", None)
        if init_kwargs is None:
            init_kwargs = "adapt_diag"

        idata = model.fit(
            draws=draws,
            tune=tune,
            chains=chains,
            target_accept=target_accept,
            random_seed=random_seed,
            init=init_kwargs,
            **kwargs,
        )
    else:
        with model:
            idata = pm.sample(
                draws=draws,
                tune=tune,
                chains=chains,
                target_accept=target_accept,
                random_seed=random_seed,
                return_inferencedata=True,
                **kwargs,
            )

    return idata


def predict_bambi_posterior(
    model: bmb.Model,
    idata: az.InferenceData,
    data: pd.DataFrame,
) -> xr.DataArray:
    """
    Posterior samples of the expected response for new rows (Bambi).

    Parameters
    ----------
    model : bmb.Model
        The fitted Bambi model.
    idata : az.InferenceData
        The inference data from model fitting.
    data : pd.DataFrame
        Rows to predict.

    Returns
    -------
    xr.DataArray
        Expected response with dims (chain, draw, obs).
    """
    # Use kind="response_params" as "mean" is deprecated in newer Bambi
    try:
        pred = model.predict(idata, data=data, kind="response_params", inplace=False)
    except (TypeError, ValueError):
        pred = model.predict(idata, data=data, kind="mean", inplace=False)

    for name in ("mu", f"{RESPONSE_COLUMN}_mean"):
        if name in pred.posterior:
            mean = pred.posterior[name]
            break
    else:
        raise ValueError("Could not find mean predictions in Bambi output")

    obs_dim = [d for d in mean.dims if d not in ("chain", "draw")][0]
    return mean.rename({obs_dim: "obs"})


def predict_pymc_posterior(
    model: pm.Model,
    idata: az.InferenceData,
    data: pd.DataFrame,
) -> xr.DataArray:
    """
    Posterior samples of the expected response for new rows (PyMC).

    Computes ``intercept + group_effect[g]`` from the posterior draws.

    Parameters
    ----------
    model : pm.Model
        The fitted PyMC model from `build_random_intercept_pymc_model`.
    idata : az.InferenceData
        The inference data from model fitting.
    data : pd.DataFrame
        Rows to predict.

    Returns
    -------
    xr.DataArray
        Expected response with dims (chain, draw, obs).
    """
    levels = list(model.coords["group"])  # type: ignore
    check_known_groups(data, levels)

    level_to_idx = {int(level): idx for idx, level in enumerate(levels)}
    codes = np.array([level_to_idx[int(g)] for g in group_labels(data)])

    posterior = idata.posterior  # type: ignore
    intercept = posterior["intercept"].values  # shape: (chains, draws)
    group_effect = posterior["group_effect"].values  # shape: (chains, draws, n_group)

    mu = intercept[:, :, np.newaxis] + group_effect[:, :, codes]

    n_chains, n_draws = intercept.shape
    coords = {
        "chain": np.arange(n_chains),
        "draw": np.arange(n_draws),
        "obs": np.arange(len(data)),
    }
    return xr.DataArray(mu, dims=["chain", "draw", "obs"], coords=coords)


def extract_parameter_summary(
    idata: az.InferenceData,
    var_names: list[str] | None = None,
    filter_vars: str | None = None,
    hdi_prob: float = 0.94,
) -> pd.DataFrame:
    """
    Extract summary statistics for model parameters.

    Parameters
    ----------
    idata : az.InferenceData
        InferenceData object with posterior samples.
    var_names : list[str], optional
        Parameter names to include. If None, includes all.
    hdi_prob : float, optional
        Probability mass for HDI. Default is 0.94.

    Returns
    -------
    pd.DataFrame
        Summary statistics for parameters.
    """
    return az.summary(idata, var_names=var_names, filter_vars=filter_vars, hdi_prob=hdi_prob) # type: ignore
