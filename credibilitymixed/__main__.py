"""Command-line report: ``python -m credibilitymixed``."""

from __future__ import annotations

import argparse
import logging
import sys

import pandas as pd

from .exceptions import ScenarioError
from .scenarios import (
    DEFAULT_SCENARIOS,
    DEFAULT_SEED,
    run_experiment,
    summarize_results,
    with_overrides,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="credibilitymixed",
        description=(
            "Compare grand-mean, group-mean and random-intercept estimators "
            "on simulated grouped data and report the Buhlmann credibility factor."
        ),
    )
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED, help="Random seed.")
    parser.add_argument(
        "--reseed-each",
        action="store_true",
        help="Re-seed before every scenario instead of sharing one stream.",
    )
    parser.add_argument("--n-groups", type=int, default=None, help="Override n_groups.")
    parser.add_argument(
        "--obs-per-group", type=int, default=None, help="Override obs_per_group."
    )
    parser.add_argument(
        "--test-obs-per-group", type=int, default=None, help="Override test_obs_per_group."
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {
        key: value
        for key, value in {
            "n_groups": args.n_groups,
            "obs_per_group": args.obs_per_group,
            "test_obs_per_group": args.test_obs_per_group,
        }.items()
        if value is not None
    }
    scenarios = [with_overrides(config, **overrides) for config in DEFAULT_SCENARIOS]

    try:
        results = run_experiment(scenarios, seed=args.seed, reseed_each=args.reseed_each)
    except ScenarioError as exc:
        logging.getLogger("credibilitymixed").error("%s", exc)
        return 1

    with pd.option_context("display.width", 200, "display.max_columns", None):
        print(summarize_results(results).T.to_string())
    return 0


if __name__ == "__main__":
    sys.exit(main())
