"""
Exception and warning types for credibility estimation.

All errors derive from ``CredibilityError``, which is a ``ValueError`` so
callers that already guard against invalid inputs keep working. Each error
carries a ``context`` dict with the offending quantities.
"""

from __future__ import annotations

from typing import Any


class CredibilityError(ValueError):
    """
    Base class for errors raised by this package.

    Parameters
    ----------
    message : str
        Human-readable error description.
    context : dict, optional
        Structured metadata describing the failure.
    """

    def __init__(self, message: str = "", *, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context: dict[str, Any] = context or {}


class InvalidConfigurationError(CredibilityError):
    """Raised when generator, scenario or prediction inputs are invalid."""


class DegenerateDivisionError(CredibilityError):
    """
    Raised when an estimator would divide by zero.

    Parameters
    ----------
    quantity : str
        Name of the denominator that vanished, e.g. ``"df2"``.
    value : float
        The offending denominator value.
    message : str, optional
        Override for the default message.
    context : dict, optional
        Additional metadata.
    """

    def __init__(
        self,
        quantity: str,
        value: float = 0.0,
        message: str | None = None,
        *,
        context: dict[str, Any] | None = None,
    ):
        if message is None:
            message = f"Degenerate division: {quantity} = {value!r}"
        super().__init__(message, context=context)
        self.quantity = quantity
        self.value = value


class ScenarioError(CredibilityError):
    """
    Raised by the scenario runner when any stage of a scenario fails.

    The original exception is available as ``__cause__``.
    """

    def __init__(
        self,
        scenario: str,
        stage: str,
        message: str = "",
        *,
        context: dict[str, Any] | None = None,
    ):
        full_message = f"Scenario '{scenario}' failed at stage '{stage}'"
        if message:
            full_message = f"{full_message}: {message}"
        super().__init__(full_message, context=context)
        self.scenario = scenario
        self.stage = stage


class NumericalAnomalyWarning(UserWarning):
    """Emitted for valid but counter-intuitive estimates, e.g. negative VHM."""
