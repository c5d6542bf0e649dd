"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from credibilitymixed.utils import generate_grouped_data


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests (MCMC fitting)",
    )


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: mark test as slow (MCMC fitting)")


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is provided."""
    if config.getoption("--run-slow"):
        return

    skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def baseline_data(rng):
    """Baseline train/test split: 100 groups, 10 train and 3 test rows each."""
    return generate_grouped_data(
        mu_groups=100, sd_groups=40, sd_obs=40,
        n_groups=100, obs_per_group=10, test_obs_per_group=3,
        rng=rng,
    )
