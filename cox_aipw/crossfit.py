"""
Cross-Fitting Orchestrator

Fits the nuisance adapters out-of-fold and assembles full-sample prediction
matrices on the global time grid. Each fold is an independent unit of work
returning an immutable slice; slices are merged by fold membership once all
folds are done.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from joblib import Parallel, delayed
from sklearn.base import clone

from .exceptions import DegenerateFold

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NuisancePredictions:
    """
    Full-sample nuisance predictions.

    event0, event1 : (n, m) S_T(t | A=a, Z) on the grid
    censor0, censor1 : (n, m) S_C(t | A=a, Z), or None when censoring is not modelled
    propensity : (n,) P(A=1 | Z), or None when the group assignment is not modelled
    """

    event0: np.ndarray
    event1: np.ndarray
    censor0: Optional[np.ndarray] = None
    censor1: Optional[np.ndarray] = None
    propensity: Optional[np.ndarray] = None


@dataclass(frozen=True)
class _FoldSlice:
    index: np.ndarray
    predictions: NuisancePredictions


def carry_forward(curves):
    """
    Fill unknown survival cells along the time axis.

    A cell is unknown when it is NaN or exactly 0. An unknown first column is
    set to 1 (nobody has failed at the start of follow-up); any later unknown
    cell takes the last known value to its left.

    curves : (n, m) array. Returns a new (n, m) array.
    """
    curves = np.array(curves, dtype=float, copy=True)
    unknown = np.isnan(curves) | (curves == 0)
    first = unknown[:, 0]
    curves[first, 0] = 1.0
    unknown[:, 0] = False

    m = curves.shape[1]
    last_known = np.where(unknown, 0, np.arange(m)[None, :])
    last_known = np.maximum.accumulate(last_known, axis=1)
    return np.take_along_axis(curves, last_known, axis=1)


def _check_events(event, role, fold):
    if np.sum(event) == 0:
        where = 'full sample' if fold is None else f'training subset of fold {fold}'
        raise DegenerateFold(f"{role} model: no {role} events in the {where}")


def _fit_predict(train, test, covariates, group, follow, weights,
                 T_model, C_model, PS_model, fold=None):
    """
    Fit every required nuisance on ``train`` rows and predict on ``test`` rows.

    Training weights are rescaled to mean 1 so that penalized adapters see
    the same effective penalty whatever the scale of the weights.
    """
    X_tr, X_te = covariates[train], covariates[test]
    A_tr = group[train]
    time_tr = follow.time[train]
    w_tr = weights[train]
    if w_tr.mean() <= 0:
        where = 'full sample' if fold is None else f'training subset of fold {fold}'
        raise DegenerateFold(f"all weights are zero in the {where}")
    w_tr = w_tr / w_tr.mean()

    _check_events(follow.event[train], 'event', fold)
    event_model = clone(T_model, safe=False).fit(
        X_tr, A_tr, time_tr, follow.event[train], sample_weight=w_tr
    )
    event0, event1 = event_model.predict_survival(X_te, follow.grid)

    censor0 = censor1 = None
    if C_model is not None:
        _check_events(follow.censored[train], 'censoring', fold)
        censor_model = clone(C_model, safe=False).fit(
            X_tr, A_tr, time_tr, follow.censored[train], sample_weight=w_tr
        )
        censor0, censor1 = censor_model.predict_survival(X_te, follow.grid)

    propensity = None
    if PS_model is not None:
        if len(np.unique(A_tr)) < 2:
            where = 'full sample' if fold is None else f'training subset of fold {fold}'
            raise DegenerateFold(f"propensity model: only one group in the {where}")
        ps_model = clone(PS_model, safe=False).fit(X_tr, A_tr, sample_weight=w_tr)
        propensity = np.asarray(ps_model.predict_propensity(X_te), dtype=float)

    if fold is not None:
        log.debug("Fold %s: trained on %d rows, predicted %d rows", fold, len(train), len(test))

    return _FoldSlice(
        index=test,
        predictions=NuisancePredictions(event0, event1, censor0, censor1, propensity),
    )


def _merge(slices):
    """Stack per-fold slices and restore the original row order."""
    order = np.argsort(np.concatenate([s.index for s in slices]), kind='stable')

    def stack(name):
        parts = [getattr(s.predictions, name) for s in slices]
        if parts[0] is None:
            return None
        return np.concatenate(parts, axis=0)[order]

    return NuisancePredictions(
        event0=stack('event0'),
        event1=stack('event1'),
        censor0=stack('censor0'),
        censor1=stack('censor1'),
        propensity=stack('propensity'),
    )


def fit_predict_nuisances(covariates, group, follow, weights, folds,
                          T_model, C_model=None, PS_model=None,
                          cross_fit=True, n_jobs=1):
    """
    Produce full-sample nuisance predictions, out-of-fold when cross-fitting.

    Parameters
    ----------
    covariates : array (n, p)
    group : array (n,)
        Binary group indicator A.
    follow : FollowUp
        Adjusted times, event and censoring indicators, global grid.
    weights : array (n,)
    folds : array (n,)
        Fold labels 1..k.
    T_model, C_model, PS_model : adapters
        Templates cloned for every fit. Pass None to skip a role.
    cross_fit : bool
        If False, fit once on the full sample and predict on it.
    n_jobs : int
        Folds run through joblib when cross-fitting.

    Returns
    -------
    NuisancePredictions with survival matrices carried forward over unknown
    cells.
    """
    covariates = np.asarray(covariates, dtype=float)
    group = np.asarray(group, dtype=float)
    weights = np.asarray(weights, dtype=float)
    models = dict(T_model=T_model, C_model=C_model, PS_model=PS_model)

    if cross_fit:
        labels = np.unique(folds)
        log.debug("Cross-fitting nuisances over %d folds", len(labels))
        slices = Parallel(n_jobs=n_jobs)(
            delayed(_fit_predict)(
                np.flatnonzero(folds != label), np.flatnonzero(folds == label),
                covariates, group, follow, weights, fold=int(label), **models
            )
            for label in labels
        )
    else:
        everyone = np.arange(len(group))
        slices = [_fit_predict(everyone, everyone, covariates, group, follow,
                               weights, **models)]

    merged = _merge(slices)
    return NuisancePredictions(
        event0=carry_forward(merged.event0),
        event1=carry_forward(merged.event1),
        censor0=None if merged.censor0 is None else carry_forward(merged.censor0),
        censor1=None if merged.censor1 is None else carry_forward(merged.censor1),
        propensity=merged.propensity,
    )
