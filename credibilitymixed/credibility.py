"""
Buhlmann credibility estimation from fitted pooling models.

The credibility factor Z weights the no-pooling (group mean) estimate
against the complete-pooling (grand mean) estimate:

    prediction_g = Z * group_mean_g + (1 - Z) * grand_mean

Z is derived from a one-way analysis of variance of the two fitted models:

    MSA      = (SSE1 - SSE2) / (df1 - df2)     mean square among groups
    MSRes    = SSE2 / df2                      mean square within groups
    sigma_A2 = (MSA - MSRes) / n               VHM, between-group variance
    sigma2   = MSRes                           EPV, within-group variance
    Z        = n * sigma_A2 / (n * sigma_A2 + sigma2)

The moment estimator of sigma_A2 is not constrained to be non-negative, so
Z may fall outside [0, 1]. Such values are returned unchanged.

References
----------
Buhlmann, H. and Gisler, A. (2005). A Course in Credibility Theory and its
Applications. Springer.
Frees, E. W., Young, V. R. and Luo, Y. (1999). A longitudinal data analysis
interpretation of credibility models. Insurance: Mathematics and Economics,
24(3), 229-247.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Literal
import warnings

import numpy as np

from .exceptions import (
    DegenerateDivisionError,
    InvalidConfigurationError,
    NumericalAnomalyWarning,
)

if TYPE_CHECKING:
    from .estimators import FittedModel


@dataclass(frozen=True)
class VarianceComponents:
    """
    Container for the one-way ANOVA decomposition behind a credibility factor.

    Attributes
    ----------
    sse1 : float
        Residual sum of squares of the grand-mean model.
    sse2 : float
        Residual sum of squares of the group-means model.
    df1 : float
        Residual degrees of freedom of the grand-mean model.
    df2 : float
        Residual degrees of freedom of the group-means model.
    msa : float
        Mean square among groups.
    ms_res : float
        Mean square residual (within groups).
    sigma_a2 : float
        Between-group variance component (VHM). May be negative.
    sigma2 : float
        Within-group variance component (EPV).
    obs_per_group : float
        Observations per group used to scale sigma_a2.
    z : float
        Credibility factor.
    """

    sse1: float
    sse2: float
    df1: float
    df2: float
    msa: float
    ms_res: float
    sigma_a2: float
    sigma2: float
    obs_per_group: float
    z: float

    @property
    def credibility_constant(self) -> float:
        """Buhlmann's k = sigma2 / sigma_A2 (EPV / VHM)."""
        if self.sigma_a2 == 0:
            return float("inf")
        return self.sigma2 / self.sigma_a2

    @property
    def is_anomalous(self) -> bool:
        """True when sigma_a2 < 0 or Z lies outside [0, 1]."""
        return self.sigma_a2 < 0 or not 0.0 <= self.z <= 1.0

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


def estimate_variance_components(
    grand_mean_model: FittedModel,
    group_means_model: FittedModel,
    obs_per_group: float,
) -> VarianceComponents:
    """
    Estimate variance components and the credibility factor.

    Parameters
    ----------
    grand_mean_model : FittedModel
        Fitted complete-pooling model.
    group_means_model : FittedModel
        Fitted no-pooling model on the same training data.
    obs_per_group : float
        Number of observations per group.

    Returns
    -------
    VarianceComponents
        The full decomposition, including ``z``.

    Raises
    ------
    InvalidConfigurationError
        If obs_per_group is not a positive finite number.
    DegenerateDivisionError
        If ``df1 == df2`` (a single group), ``df2 == 0`` (one observation
        per group), or the credibility denominator vanishes.
    """
    if not np.isfinite(obs_per_group) or obs_per_group <= 0:
        raise InvalidConfigurationError(
            f"obs_per_group must be positive, got {obs_per_group}",
            context={"obs_per_group": obs_per_group},
        )

    sse1 = float(np.sum(np.square(grand_mean_model.resid)))
    sse2 = float(np.sum(np.square(group_means_model.resid)))
    df1 = float(grand_mean_model.df_resid)
    df2 = float(group_means_model.df_resid)

    df_among = df1 - df2
    if df_among == 0:
        raise DegenerateDivisionError(
            "df1 - df2",
            df_among,
            "Cannot estimate the among-group mean square: both models have "
            f"{df1:g} residual degrees of freedom (fewer than two groups?)",
            context={"df1": df1, "df2": df2},
        )
    if df2 == 0:
        raise DegenerateDivisionError(
            "df2",
            df2,
            "Cannot estimate the within-group mean square: the group-means "
            "model has no residual degrees of freedom (one observation per group?)",
            context={"df1": df1, "df2": df2},
        )

    msa = (sse1 - sse2) / df_among
    ms_res = sse2 / df2

    sigma_a2 = (msa - ms_res) / obs_per_group
    sigma2 = ms_res

    z = credibility_from_components(sigma_a2, sigma2, obs_per_group)

    components = VarianceComponents(
        sse1=sse1,
        sse2=sse2,
        df1=df1,
        df2=df2,
        msa=msa,
        ms_res=ms_res,
        sigma_a2=sigma_a2,
        sigma2=sigma2,
        obs_per_group=float(obs_per_group),
        z=z,
    )

    if components.is_anomalous:
        warnings.warn(
            f"Moment estimate of the between-group variance is {sigma_a2:.6g}, "
            f"giving a credibility factor of {z:.6g} outside [0, 1]. "
            "The value is returned unclamped.",
            NumericalAnomalyWarning,
            stacklevel=2,
        )

    return components


def credibility_factor(
    grand_mean_model: FittedModel,
    group_means_model: FittedModel,
    obs_per_group: float,
) -> float:
    """
    Buhlmann credibility factor from two fitted pooling models.

    See `estimate_variance_components` for parameters and errors.

    Returns
    -------
    float
        The credibility factor Z.

    Examples
    --------
    >>> import numpy as np
    >>> from credibilitymixed import GrandMeanModel, GroupMeansModel
    >>> from credibilitymixed.utils import generate_grouped_data
    >>> train, _ = generate_grouped_data(100, 40, 40, rng=np.random.default_rng(0))
    >>> z = credibility_factor(
    ...     GrandMeanModel().fit(train), GroupMeansModel().fit(train), 10
    ... )
    """
    return estimate_variance_components(
        grand_mean_model, group_means_model, obs_per_group
    ).z


def credibility_from_components(
    sigma_a2: float,
    sigma2: float,
    obs_per_group: float,
) -> float:
    """
    Closed-form credibility factor ``n / (n + sigma2 / sigma_a2)``.

    Evaluated as ``n * sigma_a2 / (n * sigma_a2 + sigma2)`` so that
    ``sigma_a2 == 0`` gives Z = 0 instead of dividing by zero.

    Raises
    ------
    DegenerateDivisionError
        If ``n * sigma_a2 + sigma2 == 0``.
    """
    between = sigma_a2 * obs_per_group
    denominator = between + sigma2
    if denominator == 0:
        raise DegenerateDivisionError(
            "sigma_a2 * obs_per_group + sigma2",
            denominator,
            context={"sigma_a2": sigma_a2, "sigma2": sigma2},
        )
    return between / denominator


def credibility_weighted_predictions(
    pred1: np.ndarray | float,
    pred2: np.ndarray,
    z: float,
) -> np.ndarray:
    """
    Blend complete-pooling and no-pooling predictions.

    Parameters
    ----------
    pred1 : array-like or float
        Grand-mean predictions.
    pred2 : array-like
        Group-mean predictions.
    z : float
        Credibility factor.

    Returns
    -------
    np.ndarray
        ``z * pred2 + (1 - z) * pred1``.
    """
    pred2 = np.asarray(pred2, dtype=np.float64)
    pred1 = np.broadcast_to(np.asarray(pred1, dtype=np.float64), pred2.shape)
    return z * pred2 + (1 - z) * pred1


def implied_weights(
    pred1: np.ndarray | float,
    pred2: np.ndarray,
    pred3: np.ndarray,
    on_degenerate: Literal["raise", "nan"] = "raise",
) -> np.ndarray:
    """
    Recover the per-row mixing weight of a shrinkage prediction.

    Solves ``pred3 = Z * pred2 + (1 - Z) * pred1`` for Z row by row:

        Z_row = 1 - (pred3 - pred2) / (pred1 - pred2)

    Parameters
    ----------
    pred1 : array-like or float
        Grand-mean predictions (a scalar is broadcast).
    pred2 : array-like
        Group-mean predictions.
    pred3 : array-like
        Random-intercept predictions.
    on_degenerate : {"raise", "nan"}, optional
        What to do for rows where ``pred1 == pred2``:
        - "raise" (default): raise DegenerateDivisionError
        - "nan": return NaN for those rows and warn

    Returns
    -------
    np.ndarray
        Implied weight per row.

    Raises
    ------
    ValueError
        If the prediction lengths differ.
    DegenerateDivisionError
        If any row has ``pred1 == pred2`` and ``on_degenerate="raise"``.
    """
    if on_degenerate not in ("raise", "nan"):
        raise ValueError(f"Unknown on_degenerate policy: {on_degenerate}")

    pred2 = np.asarray(pred2, dtype=np.float64)
    pred3 = np.asarray(pred3, dtype=np.float64)
    if pred2.shape != pred3.shape:
        raise ValueError(
            f"Prediction lengths differ: pred2 has {pred2.shape}, pred3 has {pred3.shape}"
        )

    pred1 = np.asarray(pred1, dtype=np.float64)
    if pred1.ndim > 0 and pred1.shape != pred2.shape:
        raise ValueError(
            f"Prediction lengths differ: pred1 has {pred1.shape}, pred2 has {pred2.shape}"
        )
    pred1 = np.broadcast_to(pred1, pred2.shape)

    spread = pred1 - pred2
    degenerate = spread == 0
    if degenerate.any():
        rows = np.flatnonzero(degenerate)
        if on_degenerate == "raise":
            raise DegenerateDivisionError(
                "pred1 - pred2",
                0.0,
                f"Grand mean equals the group mean for {len(rows)} row(s) "
                f"(first: {rows[:5].tolist()}); the mixing weight is undefined",
                context={"rows": rows.tolist()},
            )
        warnings.warn(
            f"Mixing weight undefined for {len(rows)} row(s) where the grand "
            "mean equals the group mean; returning NaN for them.",
            NumericalAnomalyWarning,
            stacklevel=2,
        )

    weights = np.full(pred2.shape, np.nan)
    ok = ~degenerate
    weights[ok] = 1 - (pred3[ok] - pred2[ok]) / spread[ok]
    return weights


@dataclass(frozen=True)
class MixingCheck:
    """
    Result of comparing implied per-row weights against a credibility factor.

    Attributes
    ----------
    n_rows : int
        Number of rows with a defined weight.
    min_weight : float
        Smallest implied weight.
    max_weight : float
        Largest implied weight.
    max_abs_deviation : float
        Largest ``|Z_row - z|``.
    is_constant : bool
        Whether all weights agree with each other within tolerance.
    matches : bool
        Whether all weights agree with ``z`` within tolerance.
    """

    n_rows: int
    min_weight: float
    max_weight: float
    max_abs_deviation: float
    is_constant: bool
    matches: bool


def check_mixing_equivalence(
    weights: np.ndarray,
    z: float,
    rtol: float = 1e-4,
    atol: float = 1e-8,
) -> MixingCheck:
    """
    Check that implied weights are constant and equal to ``z``.

    NaN weights (degenerate rows) are ignored.

    Parameters
    ----------
    weights : np.ndarray
        Per-row weights from `implied_weights`.
    z : float
        Credibility factor from `credibility_factor`.
    rtol, atol : float, optional
        Tolerances as in ``numpy.isclose``.

    Returns
    -------
    MixingCheck
        Summary of the comparison.
    """
    weights = np.asarray(weights, dtype=np.float64)
    finite = weights[np.isfinite(weights)]
    if len(finite) == 0:
        raise ValueError("No finite weights to check")

    return MixingCheck(
        n_rows=int(len(finite)),
        min_weight=float(finite.min()),
        max_weight=float(finite.max()),
        max_abs_deviation=float(np.max(np.abs(finite - z))),
        is_constant=bool(np.allclose(finite, finite[0], rtol=rtol, atol=atol)),
        matches=bool(np.allclose(finite, z, rtol=rtol, atol=atol)),
    )
