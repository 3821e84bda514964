"""
Follow-up preparation: study horizon, tie breaking, the global time grid and
cross-fitting folds.
"""

import logging
from dataclasses import dataclass

import numpy as np

from .exceptions import InvalidConfig

log = logging.getLogger(__name__)

TIE_PERTURBATION = 1e-6


@dataclass(frozen=True)
class FollowUp:
    """
    Follow-up data after horizon clipping and tie breaking.

    Attributes
    ----------
    time : array (n,)
        Observed times, clipped to tau and made distinct below tau.
    event : array (n,)
        Event indicator Delta (0 for every time originally beyond tau).
    censored : array (n,)
        Censoring indicator Delta_c = (1 - Delta) * (time < tau).
    rank : array (n,)
        Index of each observation's time in ``grid``.
    grid : array (m,)
        Strictly increasing distinct times; the canonical prediction grid.
    tau : float
        Study horizon.
    """

    time: np.ndarray
    event: np.ndarray
    censored: np.ndarray
    rank: np.ndarray
    grid: np.ndarray
    tau: float

    @property
    def n_res(self) -> int:
        return len(self.grid)


def _break_ties(time, tau, perturbation):
    """
    Make every time below tau distinct.

    Rows are ordered stably by (time, row index). Inside a tie group of size g
    at value t the j-th row moves to t + j * eps, with
    eps = min(perturbation, (t_next - t) / g) so that no row reaches the next
    distinct time t_next (or tau). eps is raised to the float spacing at t
    when the perturbation would be lost to rounding, as it is for large times.
    The first row of each group is unchanged.
    """
    out = time.copy()
    idx = np.flatnonzero(out < tau)
    if len(idx) < 2:
        return out
    idx = idx[np.argsort(out[idx], kind='stable')]
    values = out[idx]
    starts = np.flatnonzero(np.r_[True, values[1:] != values[:-1]])
    ends = np.r_[starts[1:], len(values)]
    for start, end in zip(starts, ends):
        size = end - start
        if size < 2:
            continue
        t = values[start]
        t_next = values[end] if end < len(values) else tau
        eps = max(min(perturbation, (t_next - t) / size), np.spacing(t))
        if t + (size - 1) * eps >= t_next:
            raise InvalidConfig(f"cannot separate {size} rows tied at t={t!r} below {t_next!r}")
        out[idx[start:end]] = t + eps * np.arange(size)
    return out


def build_follow_up(time, event, tau=None, perturbation=TIE_PERTURBATION) -> FollowUp:
    """
    Apply the study horizon, break ties and build the global time grid.

    Times beyond tau are recensored (event set to 0) and clipped to tau.
    Times clipped to tau may coincide; they share the last grid point.
    """
    time = np.asarray(time, dtype=float).ravel()
    event = np.asarray(event, dtype=float).ravel().copy()
    if tau is None:
        tau = float(time.max())
    tau = float(tau)
    if not np.isfinite(tau) or tau <= 0:
        raise InvalidConfig(f"tau must be a positive finite number, got {tau!r}")

    beyond = time > tau
    event[beyond] = 0.0
    if event.sum() == 0:
        raise InvalidConfig(f"tau={tau} precedes every observed event time")
    if beyond.any():
        log.debug("Recensored %d observations beyond tau=%g", int(beyond.sum()), tau)

    time = _break_ties(time, tau, perturbation)
    time = np.minimum(time, tau)

    grid = np.unique(time)
    rank = np.searchsorted(grid, time)
    censored = (1.0 - event) * (time < tau)
    return FollowUp(
        time=time, event=event, censored=censored,
        rank=rank, grid=grid, tau=tau,
    )


def assign_folds(n, k):
    """
    Split n observations into k contiguous near-equal folds labelled 1..k.

    No shuffling is done; shuffle the rows beforehand if needed.
    """
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)):
        raise InvalidConfig(f"k must be an integer, got {k!r}")
    if k < 1 or k > n:
        raise InvalidConfig(f"k must lie in [1, {n}], got {k}")
    folds = np.empty(n, dtype=int)
    for label, chunk in enumerate(np.array_split(np.arange(n), k), start=1):
        folds[chunk] = label
    return folds
