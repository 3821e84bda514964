"""
Exceptions raised by the Cox AIPW estimation engine.
"""


class CoxAIPWError(Exception):
    """Base class for all errors raised by cox_aipw."""


class InvalidConfig(CoxAIPWError, ValueError):
    """An option (fold count, horizon, floors, model or mode name, weights) is out of range."""


class DegenerateFold(CoxAIPWError, RuntimeError):
    """
    A training subset cannot support a nuisance fit.

    Raised when the subset has no events for the event-time model, no
    censorings for the censoring-time model, or a single group for the
    propensity model.
    """


class NonConvergence(CoxAIPWError, RuntimeError):
    """Newton-Raphson did not find a stable root of the estimating equation."""
