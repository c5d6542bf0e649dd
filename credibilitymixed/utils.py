"""
Utility functions for grouped credibility data.

This module provides helpers for generating synthetic one-level hierarchical
data (groups with latent means and noisy observations), enforcing the
categorical encoding that the model fitters rely on, and summarizing groups.
"""

from __future__ import annotations

import numbers

import numpy as np
import pandas as pd

from .exceptions import InvalidConfigurationError

GROUP_COLUMN = "group_id"
RESPONSE_COLUMN = "response"


def generate_grouped_data(
    mu_groups: float,
    sd_groups: float,
    sd_obs: float,
    n_groups: int = 100,
    obs_per_group: int = 10,
    test_obs_per_group: int = 3,
    rng: np.random.Generator | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Generate grouped train and test datasets sharing latent group means.

    Parameters
    ----------
    mu_groups : float
        Mean of the distribution of latent group means.
    sd_groups : float
        Standard deviation of latent group means (between-group spread).
        Must be non-negative.
    sd_obs : float
        Standard deviation of observations around their group mean
        (within-group spread). Must be positive.
    n_groups : int, optional
        Number of groups. Default is 100.
    obs_per_group : int, optional
        Training observations per group. Default is 10.
    test_obs_per_group : int, optional
        Held-out observations per group. Default is 3.
    rng : numpy.random.Generator, optional
        Random source. If None, a fresh unseeded generator is used; pass a
        seeded generator for reproducible output.

    Returns
    -------
    tuple[pd.DataFrame, pd.DataFrame]
        A tuple of (train, test) DataFrames with columns:
        - group_id: Categorical group label with levels 1..n_groups
        - response: Observed value

    Examples
    --------
    >>> import numpy as np
    >>> from credibilitymixed.utils import generate_grouped_data
    >>> train, test = generate_grouped_data(
    ...     100, 40, 40, rng=np.random.default_rng(1)
    ... )
    >>> len(train), len(test)
    (1000, 300)
    """
    train, test, _ = generate_grouped_data_with_means(
        mu_groups=mu_groups,
        sd_groups=sd_groups,
        sd_obs=sd_obs,
        n_groups=n_groups,
        obs_per_group=obs_per_group,
        test_obs_per_group=test_obs_per_group,
        rng=rng,
    )
    return train, test


def generate_grouped_data_with_means(
    mu_groups: float,
    sd_groups: float,
    sd_obs: float,
    n_groups: int = 100,
    obs_per_group: int = 10,
    test_obs_per_group: int = 3,
    rng: np.random.Generator | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame, np.ndarray]:
    """
    Generate grouped datasets and also return the latent group means.

    Same as `generate_grouped_data`, with the drawn latent means appended
    to the result. Row ``i`` of either dataset belongs to group
    ``(i mod n_groups) + 1``, so groups are interleaved rather than blocked.

    Returns
    -------
    tuple[pd.DataFrame, pd.DataFrame, np.ndarray]
        (train, test, group_means) where ``group_means[k]`` is the latent
        mean of group ``k + 1``.
    """
    validate_generator_params(
        sd_groups=sd_groups,
        sd_obs=sd_obs,
        n_groups=n_groups,
        obs_per_group=obs_per_group,
        test_obs_per_group=test_obs_per_group,
    )

    if rng is None:
        rng = np.random.default_rng()

    group_means = rng.normal(loc=mu_groups, scale=sd_groups, size=n_groups)

    train = _sample_observations(group_means, sd_obs, obs_per_group, rng)
    test = _sample_observations(group_means, sd_obs, test_obs_per_group, rng)

    return train, test, group_means


def _sample_observations(
    group_means: np.ndarray,
    sd_obs: float,
    obs_per_group: int,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Draw obs_per_group observations per group, recycling group indices."""
    n_groups = len(group_means)
    group_idx = np.arange(n_groups * obs_per_group) % n_groups

    response = rng.normal(loc=group_means[group_idx], scale=sd_obs)

    df = pd.DataFrame(
        {
            GROUP_COLUMN: group_idx + 1,
            RESPONSE_COLUMN: response.astype(np.float64),
        }
    )
    return add_categorical_columns(df, n_groups=n_groups)


def validate_generator_params(
    sd_groups: float,
    sd_obs: float,
    n_groups: int,
    obs_per_group: int,
    test_obs_per_group: int,
) -> None:
    """
    Validate data generator parameters.

    Raises
    ------
    InvalidConfigurationError
        If any parameter is out of range or a count is not an integer.
    """
    counts = {
        "n_groups": n_groups,
        "obs_per_group": obs_per_group,
        "test_obs_per_group": test_obs_per_group,
    }
    for name, value in counts.items():
        if isinstance(value, bool) or not isinstance(value, numbers.Integral):
            raise InvalidConfigurationError(
                f"{name} must be an integer, got {value!r}",
                context={name: value},
            )
        if value < 1:
            raise InvalidConfigurationError(
                f"{name} must be at least 1, got {value}",
                context={name: value},
            )

    if not np.isfinite(sd_groups) or sd_groups < 0:
        raise InvalidConfigurationError(
            f"sd_groups must be non-negative, got {sd_groups}",
            context={"sd_groups": sd_groups},
        )

    if not np.isfinite(sd_obs) or sd_obs <= 0:
        raise InvalidConfigurationError(
            f"sd_obs must be positive, got {sd_obs}",
            context={"sd_obs": sd_obs},
        )


def add_categorical_columns(
    df: pd.DataFrame,
    n_groups: int | None = None,
    column: str = GROUP_COLUMN,
) -> pd.DataFrame:
    """
    Convert the group column to a categorical with fixed integer levels.

    Parameters
    ----------
    df : pd.DataFrame
        Input DataFrame.
    n_groups : int, optional
        If given, levels are exactly 1..n_groups, so groups with no rows
        still exist as levels. If None, levels are the sorted observed values.
    column : str, optional
        Column to convert. Default is "group_id".

    Returns
    -------
    pd.DataFrame
        Copy of the DataFrame with the column converted.
    """
    df = df.copy()

    if column not in df.columns:
        raise ValueError(f"Column '{column}' not found in DataFrame")

    values = df[column]
    if isinstance(values.dtype, pd.CategoricalDtype):
        values = values.astype(values.cat.categories.dtype)
    values = values.astype(int)

    if n_groups is not None:
        levels = list(range(1, n_groups + 1))
    else:
        levels = sorted(values.unique().tolist())

    df[column] = pd.Categorical(values, categories=levels)
    return df


def validate_grouped_data(df: pd.DataFrame) -> None:
    """
    Validate that a DataFrame is suitable for the grouped model fitters.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to validate.

    Raises
    ------
    ValueError
        If the data is missing columns, empty, or has non-finite responses.
    """
    missing = [c for c in (GROUP_COLUMN, RESPONSE_COLUMN) if c not in df.columns]
    if missing:
        raise ValueError(f"Grouped data is missing columns: {missing}")

    if len(df) == 0:
        raise ValueError("Grouped data must contain at least one row")

    response = np.asarray(df[RESPONSE_COLUMN], dtype=np.float64)
    if not np.isfinite(response).all():
        raise ValueError("Response contains NaN or infinite values")

    if df[GROUP_COLUMN].isna().any():
        raise ValueError("Group column contains missing labels")


def group_summary(df: pd.DataFrame) -> pd.DataFrame:
    """
    Per-group sample statistics.

    Parameters
    ----------
    df : pd.DataFrame
        Grouped data with "group_id" and "response" columns.

    Returns
    -------
    pd.DataFrame
        Indexed by group_id with columns: n, mean, var (sample variance,
        ddof=1; NaN for single-observation groups).
    """
    validate_grouped_data(df)

    summary = df.groupby(GROUP_COLUMN, observed=True)[RESPONSE_COLUMN].agg(
        n="count", mean="mean", var="var"
    )
    return summary
