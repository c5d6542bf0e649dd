"""Held-out prediction error for the pooling estimators."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from .utils import RESPONSE_COLUMN

if TYPE_CHECKING:
    from .estimators import FittedModel


def rmse(observed, predicted) -> float:
    """
    Root mean squared error.

    Parameters
    ----------
    observed : array-like
        Observed values.
    predicted : array-like
        Predicted values, same length as ``observed``.

    Returns
    -------
    float
        ``sqrt(mean((observed - predicted)^2))``.

    Raises
    ------
    ValueError
        If the inputs are empty or differ in length.
    """
    observed = np.asarray(observed, dtype=np.float64)
    predicted = np.asarray(predicted, dtype=np.float64)

    if observed.shape != predicted.shape:
        raise ValueError(
            f"observed and predicted must have the same length, "
            f"got {observed.shape} and {predicted.shape}"
        )
    if observed.size == 0:
        raise ValueError("Cannot compute RMSE of empty inputs")

    return float(np.sqrt(np.mean((observed - predicted) ** 2)))


def compare_models(
    test: pd.DataFrame,
    models: Mapping[str, FittedModel],
) -> pd.DataFrame:
    """
    Held-out RMSE for several fitted models.

    Parameters
    ----------
    test : pd.DataFrame
        Held-out data with "group_id" and "response" columns.
    models : mapping of str to FittedModel
        Fitted models keyed by display name.

    Returns
    -------
    pd.DataFrame
        Indexed by model name with a single "rmse" column, sorted from
        best to worst.
    """
    observed = test[RESPONSE_COLUMN].to_numpy(dtype=np.float64)

    scores = {name: rmse(observed, model.predict(test)) for name, model in models.items()}

    result = pd.DataFrame({"rmse": pd.Series(scores, dtype=np.float64)})
    result.index.name = "model"
    return result.sort_values("rmse")
