"""
Estimating-Equation Solver

U(beta) = (1/n) * sum_{i,t} [dN1 - A_bar(beta) * dN0]
U'(beta) = (1/n) * sum_{i,t} [(A_bar^2 - A_bar) * dN0]

A_bar(beta) is the ratio of weighted risk-set means E[Gamma(beta, 1)] /
E[Gamma(beta, 0)] at each grid time, taken within each risk-set group: the
cross-fitting folds, or the whole sample without cross-fitting. Because the
ratio of group means equals the ratio of group sums, only (G, m) column sums
are needed per Newton step.
"""

import logging
from dataclasses import dataclass

import numpy as np
from scipy.optimize import brentq, newton

from .counting import EstimatingEquationMatrices
from .exceptions import NonConvergence

log = logging.getLogger(__name__)

NEWTON_TOL = float(np.sqrt(np.finfo(float).eps))
NEWTON_MAXITER = 100
MIN_DERIVATIVE = 1e-12
BRACKET_HALF_WIDTH = 20.0
BRACKET_POINTS = 801


def group_column_sums(values, groups, n_groups):
    """Column sums of an (n, m) matrix within each group -> (n_groups, m)."""
    out = np.zeros((n_groups, values.shape[1]))
    np.add.at(out, groups, values)
    return out


def risk_set_groups(folds, cross_fit):
    """Zero-based risk-set group of every row and the number of groups."""
    if not cross_fit:
        return np.zeros(len(folds), dtype=int), 1
    labels, groups = np.unique(folds, return_inverse=True)
    return groups, len(labels)


@dataclass(frozen=True)
class RootResult:
    beta: float
    U: float
    dU: float
    iterations: int
    converged: bool


class EstimatingEquation:
    """
    U(beta) and its derivative for fixed counting-process matrices.

    Parameters
    ----------
    matrices : EstimatingEquationMatrices
    groups : array (n,)
        Zero-based risk-set group of every row.
    n_groups : int
    """

    def __init__(self, matrices: EstimatingEquationMatrices, groups, n_groups):
        self.matrices = matrices
        self.groups = np.asarray(groups, dtype=int)
        self.n_groups = n_groups
        self.n = len(self.groups)
        w = matrices.weights[:, None]
        self.tilted_sums = group_column_sums(w * matrices.tilted, self.groups, n_groups)
        self.untilted_sums = group_column_sums(w * matrices.untilted, self.groups, n_groups)
        self.dN0_sums = group_column_sums(matrices.dN0, self.groups, n_groups)
        self.dN1_total = float(matrices.dN1.sum())

    def risk_set_sums(self, beta):
        """Weighted column sums of Gamma(beta, 0) per group, (G, m)."""
        return self.untilted_sums + np.exp(beta) * self.tilted_sums

    def A_bar(self, beta):
        """Risk-set ratio per group, (G, m); 0 where the risk set is empty."""
        numer = np.exp(beta) * self.tilted_sums
        denom = self.risk_set_sums(beta)
        return np.divide(numer, denom, out=np.zeros_like(numer), where=denom != 0)

    def U(self, beta):
        A_bar = self.A_bar(beta)
        return (self.dN1_total - np.sum(A_bar * self.dN0_sums)) / self.n

    def dU(self, beta):
        A_bar = self.A_bar(beta)
        return np.sum((A_bar ** 2 - A_bar) * self.dN0_sums) / self.n

    def _has_pole(self, lo, hi):
        """True if a risk-set sum carrying dN0 mass changes sign on [lo, hi]."""
        active = self.dN0_sums != 0
        with np.errstate(over='ignore'):
            sign_lo = np.sign(self.risk_set_sums(lo))[active]
            sign_hi = np.sign(self.risk_set_sums(hi))[active]
        return bool(np.any(sign_lo != sign_hi))

    def _bracketed_root(self, beta0, tol, maxiter):
        """
        Scan beta0 +/- BRACKET_HALF_WIDTH for sign changes of U and run Brent's
        method on the pole-free bracket closest to beta0.

        Returns (beta, iterations), or None when no such bracket exists.
        """
        grid = beta0 + np.linspace(-BRACKET_HALF_WIDTH, BRACKET_HALF_WIDTH, BRACKET_POINTS)
        with np.errstate(over='ignore', invalid='ignore'):
            values = np.array([self.U(b) for b in grid])
        lo_vals, hi_vals = values[:-1], values[1:]
        crossing = (np.isfinite(lo_vals) & np.isfinite(hi_vals)
                    & (np.sign(lo_vals) * np.sign(hi_vals) <= 0))
        candidates = [j for j in np.flatnonzero(crossing)
                      if not self._has_pole(grid[j], grid[j + 1])]
        if not candidates:
            return None
        j = min(candidates, key=lambda j: abs(grid[j] + grid[j + 1] - 2 * beta0))
        beta, info = brentq(self.U, grid[j], grid[j + 1], xtol=tol, maxiter=maxiter,
                            full_output=True)
        return float(beta), int(info.iterations)

    def solve(self, beta0=0.0, tol=NEWTON_TOL, maxiter=NEWTON_MAXITER) -> RootResult:
        """
        Root of U by Newton-Raphson from beta0.

        Weighted risk-set sums can be negative at late grid times, which puts
        poles in U. If Newton-Raphson leaves the basin (non-finite U, flat
        derivative, iteration cap), the root is bracketed on a grid around
        beta0, skipping brackets that straddle a pole, and refined with
        Brent's method. NonConvergence is raised only when both fail.
        """
        def func(beta):
            with np.errstate(over='ignore', invalid='ignore'):
                value = self.U(beta)
            if not np.isfinite(value):
                raise NonConvergence(f"U(beta) is not finite at beta={beta}")
            return value

        def fprime(beta):
            with np.errstate(over='ignore', invalid='ignore'):
                value = self.dU(beta)
            if not np.isfinite(value) or abs(value) < MIN_DERIVATIVE:
                raise NonConvergence(f"U'(beta) is degenerate ({value}) at beta={beta}")
            return value

        beta0 = float(beta0)
        try:
            beta, info = newton(func, beta0, fprime=fprime, tol=tol,
                                maxiter=maxiter, full_output=True, disp=True)
            iterations = int(info.iterations)
            log.debug("Newton-Raphson converged to beta=%.6g in %d iterations",
                      beta, iterations)
        except RuntimeError as exc:
            log.debug("Newton-Raphson failed from beta0=%g (%s), bracketing", beta0, exc)
            found = self._bracketed_root(beta0, tol, maxiter)
            if found is None:
                raise NonConvergence(f"no root of U(beta) near beta0={beta0}: {exc}") from exc
            beta, iterations = found
            log.debug("Brent's method converged to beta=%.6g in %d iterations",
                      beta, iterations)

        beta = float(beta)
        return RootResult(beta=beta, U=float(self.U(beta)), dU=float(self.dU(beta)),
                          iterations=iterations, converged=True)
