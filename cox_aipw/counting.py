"""
Counting-process quantities for the doubly-robust estimating equation.

Every matrix here has shape (n, m): one row per observation, one column per
grid time. Per-observation vectors (group, propensity, weights) are (n,) and
broadcast across columns as (n, 1).

The builders return ``EstimatingEquationMatrices``. The weighted risk-set
functional splits into a part that does not depend on beta and a part tilted
by exp(beta):

    Gamma(beta, 1) = exp(beta) * tilted
    Gamma(beta, 0) = untilted + exp(beta) * tilted
"""

from dataclasses import dataclass

import numpy as np

from .config import Augmentation
from .crossfit import NuisancePredictions
from .time_grid import FollowUp


@dataclass(frozen=True)
class EstimatingEquationMatrices:
    """
    dN1, dN0 : (n, m) weighted augmented counting-process increments
    untilted, tilted : (n, m) risk-set terms (unweighted)
    weights : (n,) observation weights
    """

    dN1: np.ndarray
    dN0: np.ndarray
    untilted: np.ndarray
    tilted: np.ndarray
    weights: np.ndarray

    def gamma(self, beta):
        """Return (Gamma(beta, 1), Gamma(beta, 0)), each (n, m)."""
        g1 = np.exp(beta) * self.tilted
        return g1, self.untilted + g1


def counting_processes(follow: FollowUp):
    """
    At-risk indicator and jump indicators.

    Y[i, j] = 1 while grid time j <= rank_i (still at risk at its own time).
    dN_T[i, j] = 1 at j = rank_i for events, dN_C likewise for censorings
    strictly before tau.
    """
    cols = np.arange(follow.n_res)[None, :]
    rank = follow.rank[:, None]
    at_risk = (cols <= rank).astype(float)
    jump = (cols == rank).astype(float)
    return at_risk, jump * follow.event[:, None], jump * follow.censored[:, None]


def hazard_increments(curves):
    """Increments of -log S: the first value followed by successive differences."""
    return np.diff(-np.log(curves), axis=1, prepend=0.0)


def survival_increments(curves):
    """Increments of S starting from S(0) = 1."""
    return np.diff(curves, axis=1, prepend=1.0)


def _treatment_censoring_matrices(follow, group, pred, weights, censoring):
    """AIPTCW (censoring=True) and AIPTW (censoring=False)."""
    A = group[:, None]
    ps = pred.propensity[:, None]
    at_risk, dN_T, dN_C = counting_processes(follow)

    # probability of the observed group and of remaining uncensored
    S_cPS = A * ps * pred.censor1 + (1 - A) * (1 - ps) * pred.censor0
    w = A / ps + (1 - A) / (1 - ps)
    S_t = np.where(A == 1, pred.event1, pred.event0)

    if censoring:
        J0 = np.cumsum(
            (dN_C - at_risk * hazard_increments(pred.censor0))
            / ((1 - ps) * pred.event0 * pred.censor0), axis=1)
        J1 = np.cumsum(
            (dN_C - at_risk * hazard_increments(pred.censor1))
            / (ps * pred.event1 * pred.censor1), axis=1)
    else:
        J0 = J1 = 0.0
    aug0 = 1 + (1 - A) * J0
    aug1 = 1 + A * J1

    dS_t = survival_increments(S_t)
    dS_t0 = survival_increments(pred.event0)
    dS_t1 = survival_increments(pred.event1)
    observed = dN_T / S_cPS + w * dS_t

    wt = weights[:, None]
    dN1 = (A * observed - aug1 * dS_t1) * wt
    dN0 = (observed - aug0 * dS_t0 - aug1 * dS_t1) * wt

    ipw = at_risk / S_cPS - S_t * w
    untilted = (1 - A) * ipw + aug0 * pred.event0
    tilted = A * ipw + aug1 * pred.event1
    return EstimatingEquationMatrices(dN1, dN0, untilted, tilted, weights)


def _censoring_matrices(follow, group, pred, weights):
    """AIPCW: factual curves, censoring martingale only."""
    A = group[:, None]
    at_risk, dN_T, dN_C = counting_processes(follow)
    S_t = np.where(A == 1, pred.event1, pred.event0)
    S_c = np.where(A == 1, pred.censor1, pred.censor0)

    dM_c = dN_C - at_risk * hazard_increments(S_c)
    J = np.cumsum(dM_c / S_t / S_c, axis=1)
    dN = (dN_T / S_c - J * survival_increments(S_t)) * weights[:, None]

    base = at_risk / S_c + J * S_t
    return EstimatingEquationMatrices(
        dN1=A * dN, dN0=dN,
        untilted=(1 - A) * base, tilted=A * base,
        weights=weights,
    )


def build_estimating_matrices(follow: FollowUp, group, predictions: NuisancePredictions,
                              weights, augmentation) -> EstimatingEquationMatrices:
    """
    Build the counting-process quantities for the chosen augmentation.

    ``predictions`` must already be clipped (see trimming.clip_predictions).
    """
    augmentation = Augmentation.parse(augmentation)
    group = np.asarray(group, dtype=float)
    weights = np.asarray(weights, dtype=float)
    if augmentation is Augmentation.AIPCW:
        return _censoring_matrices(follow, group, predictions, weights)
    return _treatment_censoring_matrices(
        follow, group, predictions, weights,
        censoring=augmentation is Augmentation.AIPTCW,
    )
