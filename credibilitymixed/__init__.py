"""
Credibility Mixed - Linear Mixed Models as Buhlmann Credibility.

This package demonstrates that the predictions of a random-intercept linear
mixed model are credibility-weighted averages of the complete-pooling
(grand mean) and no-pooling (group mean) estimates, and that the weight is
the Buhlmann credibility factor

    Z = n / (n + sigma2 / sigma_A2)

estimated from the residual sums of squares of the two simpler models.
Model fitting is delegated to statsmodels; Bayesian partial pooling is
available through Bambi and PyMC.

Example
-------
>>> import numpy as np
>>> from credibilitymixed import (
...     GrandMeanModel, GroupMeansModel, RandomInterceptModel,
...     credibility_factor, generate_grouped_data, implied_weights,
... )
>>>
>>> # Simulate 100 groups with 10 training and 3 held-out rows each
>>> rng = np.random.default_rng(42)
>>> train, test = generate_grouped_data(100, 40, 40, rng=rng)
>>>
>>> # Fit the three pooling strategies
>>> m1 = GrandMeanModel().fit(train)
>>> m2 = GroupMeansModel().fit(train)
>>> m3 = RandomInterceptModel().fit(train)
>>>
>>> # The mixed model's weight equals the credibility factor
>>> z = credibility_factor(m1, m2, obs_per_group=10)
>>> weights = implied_weights(
...     m1.fitted_values(), m2.fitted_values(), m3.fitted_values()
... )

References
----------
Buhlmann, H. and Gisler, A. (2005). A Course in Credibility Theory and its
Applications. Springer.
"""

from importlib.metadata import PackageNotFoundError, version

# Version
try:
    __version__ = version("credibilitymixed")
except PackageNotFoundError:
    __version__ = "0.1.0"

# Credibility estimation
from .credibility import (
    MixingCheck,
    VarianceComponents,
    check_mixing_equivalence,
    credibility_factor,
    credibility_from_components,
    credibility_weighted_predictions,
    estimate_variance_components,
    implied_weights,
)

# Estimators
from .estimators import (
    BayesianRandomIntercept,
    FittedModel,
    GrandMeanModel,
    GroupMeansModel,
    RandomInterceptModel,
)

# Evaluation
from .evaluation import compare_models, rmse

# Errors
from .exceptions import (
    CredibilityError,
    DegenerateDivisionError,
    InvalidConfigurationError,
    NumericalAnomalyWarning,
    ScenarioError,
)

# Scenarios
from .scenarios import (
    DEFAULT_SCENARIOS,
    ScenarioConfig,
    ScenarioResult,
    run_experiment,
    run_scenario,
    summarize_results,
)

# Utility functions
from .utils import (
    add_categorical_columns,
    generate_grouped_data,
    generate_grouped_data_with_means,
    group_summary,
    validate_grouped_data,
)

__all__ = [
    # Version
    "__version__",
    # Credibility
    "credibility_factor",
    "estimate_variance_components",
    "credibility_from_components",
    "credibility_weighted_predictions",
    "implied_weights",
    "check_mixing_equivalence",
    "VarianceComponents",
    "MixingCheck",
    # Estimators
    "FittedModel",
    "GrandMeanModel",
    "GroupMeansModel",
    "RandomInterceptModel",
    "BayesianRandomIntercept",
    # Evaluation
    "rmse",
    "compare_models",
    # Errors
    "CredibilityError",
    "InvalidConfigurationError",
    "DegenerateDivisionError",
    "ScenarioError",
    "NumericalAnomalyWarning",
    # Scenarios
    "ScenarioConfig",
    "ScenarioResult",
    "DEFAULT_SCENARIOS",
    "run_scenario",
    "run_experiment",
    "summarize_results",
    # Utility functions
    "generate_grouped_data",
    "generate_grouped_data_with_means",
    "add_categorical_columns",
    "validate_grouped_data",
    "group_summary",
]
