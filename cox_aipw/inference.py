"""
Inference at the solved log hazard ratio: sandwich standard error, baseline
cumulative hazard with group survival curves, and the time-varying beta(t)
diagnostic.
"""

from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from .solver import EstimatingEquation


class BetaTDiagnostic(NamedTuple):
    """Points (x, y) of the time-varying log hazard ratio, before smoothing."""

    x: np.ndarray
    y: np.ndarray


@dataclass(frozen=True)
class InfluenceTerms:
    """
    matrix : (n, m) per-observation, per-time influence contributions
    dLambda0 : (G, m) baseline hazard increments per risk-set group
    A_bar : (G, m) risk-set ratio per group
    """

    matrix: np.ndarray
    dLambda0: np.ndarray
    A_bar: np.ndarray


def influence_terms(equation: EstimatingEquation, beta) -> InfluenceTerms:
    """
    dLambda0_g = sum_g(dN0) / sum_g(w * Gamma(beta, 0)) and the influence matrix

        dN1 - A_bar * dN0 - w * dLambda0 * (Gamma(beta, 1) - A_bar * Gamma(beta, 0))

    with group quantities broadcast back to the rows of each group.
    """
    mats = equation.matrices
    groups = equation.groups
    risk = equation.risk_set_sums(beta)
    dLambda0 = np.divide(equation.dN0_sums, risk,
                         out=np.zeros_like(risk), where=risk != 0)
    A_bar = equation.A_bar(beta)

    g1, g0 = mats.gamma(beta)
    row_A_bar = A_bar[groups]
    matrix = (mats.dN1 - row_A_bar * mats.dN0
              - mats.weights[:, None] * dLambda0[groups] * (g1 - row_A_bar * g0))
    return InfluenceTerms(matrix=matrix, dLambda0=dLambda0, A_bar=A_bar)


def sandwich_variance(equation: EstimatingEquation, beta, terms: InfluenceTerms = None):
    """
    Model-based standard error sqrt(K / U'(beta)^2 / n), where K is the mean
    squared per-observation influence summed over time.
    """
    if terms is None:
        terms = influence_terms(equation, beta)
    K = np.mean(terms.matrix.sum(axis=1) ** 2)
    nu = equation.dU(beta)
    return float(np.sqrt(K / nu ** 2 / equation.n))


def baseline_cumulative_hazard(dLambda0, envelope=True):
    """
    Lambda0 over the grid from per-group increments (G, m).

    Identical group rows are counted once before averaging. Augmented
    increments can be negative, so the plain running sum may dip below 0 or
    decrease. With ``envelope=True`` it is reported as its non-negative,
    non-decreasing envelope so that the derived survival curves are proper;
    ``envelope=False`` returns the running sum itself.
    """
    increments = np.unique(dLambda0, axis=0).mean(axis=0)
    running = np.cumsum(increments)
    if not envelope:
        return running
    return np.maximum.accumulate(np.maximum(running, 0.0))


def survival_curves(Lambda0, beta):
    """S0(t) = exp(-Lambda0(t)), S1(t) = exp(-Lambda0(t) * exp(beta))."""
    return np.exp(-Lambda0), np.exp(-Lambda0 * np.exp(beta))


def time_varying_diagnostic(equation: EstimatingEquation, beta, grid,
                            terms: InfluenceTerms = None) -> BetaTDiagnostic:
    """
    Scaled residuals per grid time, recentred around beta.

    r(t) = mean_i influence(i, t) / mean_i [(A_bar - A_bar^2) * dN0](i, t).
    Times where r is undefined (0/0, division by zero) are dropped, then
    y = r - mean(r) + beta.
    """
    if terms is None:
        terms = influence_terms(equation, beta)
    numer = terms.matrix.sum(axis=0)
    denom = np.sum((terms.A_bar - terms.A_bar ** 2) * equation.dN0_sums, axis=0)
    with np.errstate(divide='ignore', invalid='ignore'):
        scaled = numer / denom
    keep = np.isfinite(scaled)
    if not keep.any():
        return BetaTDiagnostic(x=np.array([]), y=np.array([]))
    y = scaled[keep] - scaled[keep].mean() + beta
    return BetaTDiagnostic(x=np.asarray(grid)[keep], y=y)
