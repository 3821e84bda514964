"""
Nuisance Estimator Adapters

Thin strategies around lifelines, scikit-survival and scikit-learn that expose
the interface the cross-fitting orchestrator consumes:

Survival roles (event time T, censoring time C):
    fit(X, A, time, event, sample_weight=None) -> self
    predict_survival(X, time_grid) -> (S(t | A=0, X), S(t | A=1, X))

Propensity role:
    fit(X, A, sample_weight=None) -> self
    predict_propensity(X) -> P(A=1 | X)

Survival predictions are (n, len(time_grid)) arrays. Grid times outside the
fitted model's support are NaN; the engine carries the last known value
forward over them. All adapters are scikit-learn estimators so that the
orchestrator can ``clone`` a fresh copy per fold.
"""

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, clone
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression

from lifelines import CoxPHFitter, KaplanMeierFitter
from sksurv.ensemble import RandomSurvivalForest
from sksurv.util import Surv

from .exceptions import InvalidConfig


def _design_matrix(X, A):
    """Group indicator followed by covariates, with stable column names."""
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    col_names = ['A'] + [f'cxf{i}' for i in range(X.shape[1])]
    return pd.DataFrame(np.column_stack([np.asarray(A, dtype=float), X]),
                        columns=col_names)


def _align_to_grid(values, support, time_grid):
    """
    Place predictions made on ``support`` into the columns of ``time_grid``.

    Grid times that are not support times are left as NaN.
    """
    out = np.full((values.shape[0], len(time_grid)), np.nan)
    out[:, np.isin(time_grid, support)] = values[:, np.isin(support, time_grid)]
    return out


# =============================================================================
# Survival adapters
# =============================================================================

class CoxNuisance(BaseEstimator):
    """
    Cox PH working model for S(t | A, X) via lifelines.

    Covariates that are constant in the training subset are dropped. If none
    remain (group included) the model reduces to a weighted Kaplan-Meier fit.
    Predictions are made at the training subset's distinct times.

    Parameters
    ----------
    penalizer : float
        L2 regularization strength passed to CoxPHFitter.
    """

    def __init__(self, penalizer=0.01):
        self.penalizer = penalizer

    def _make_fitter(self):
        return CoxPHFitter(penalizer=self.penalizer)

    def fit(self, X, A, time, event, sample_weight=None):
        time = np.asarray(time, dtype=float)
        event = np.asarray(event, dtype=float)
        weights = np.ones(len(time)) if sample_weight is None else np.asarray(sample_weight, dtype=float)
        design = _design_matrix(X, A)

        self.columns_ = [c for c in design.columns if design[c].nunique() > 1]
        self.support_ = np.unique(time)
        self.max_time_ = float(time.max())

        if not self.columns_:
            self.fitter_ = KaplanMeierFitter()
            self.fitter_.fit(time, event_observed=event, weights=weights)
            return self

        df = design[self.columns_].copy()
        df['_duration'] = time
        df['_event'] = event
        df['_weight'] = weights
        self.fitter_ = self._make_fitter()
        self.fitter_.fit(df, duration_col='_duration', event_col='_event',
                         weights_col='_weight')
        return self

    def _evaluation_times(self, time_grid):
        return self.support_

    def _predict_on_times(self, design, times):
        if isinstance(self.fitter_, KaplanMeierFitter):
            curve = self.fitter_.survival_function_at_times(times).to_numpy()
            return np.tile(curve, (len(design), 1))
        surv = self.fitter_.predict_survival_function(design[self.columns_], times=times)
        # surv has shape (len(times), n); rows=times, cols=samples
        return surv.values.T

    def predict_survival(self, X, time_grid):
        time_grid = np.asarray(time_grid, dtype=float)
        times = self._evaluation_times(time_grid)
        n = np.asarray(X).shape[0]
        curves = []
        for a in (0, 1):
            design = _design_matrix(X, np.full(n, a))
            curves.append(_align_to_grid(self._predict_on_times(design, times), times, time_grid))
        return curves[0], curves[1]


class SplineNuisance(CoxNuisance):
    """
    Flexible hazard regression: Cox model with a cubic-spline baseline hazard.

    The baseline is smooth, so predictions are made at every grid time inside
    (0, max training time]; later grid times are left to the carry-forward.
    """

    def __init__(self, penalizer=0.01, n_baseline_knots=4):
        self.penalizer = penalizer
        self.n_baseline_knots = n_baseline_knots

    def _make_fitter(self):
        return CoxPHFitter(baseline_estimation_method='spline',
                           n_baseline_knots=self.n_baseline_knots,
                           penalizer=self.penalizer)

    def _evaluation_times(self, time_grid):
        if isinstance(self.fitter_, KaplanMeierFitter):
            return self.support_
        return time_grid[(time_grid > 0) & (time_grid <= self.max_time_)]


class RSFNuisance(BaseEstimator):
    """
    Random survival forest working model via scikit-survival.

    Predictions are made at the forest's unique training times.
    """

    def __init__(self, n_estimators=100, min_samples_leaf=15, max_features=2,
                 random_state=0, n_jobs=None):
        self.n_estimators = n_estimators
        self.min_samples_leaf = min_samples_leaf
        self.max_features = max_features
        self.random_state = random_state
        self.n_jobs = n_jobs

    def fit(self, X, A, time, event, sample_weight=None):
        design = _design_matrix(X, A).to_numpy()
        y = Surv.from_arrays(event=np.asarray(event).astype(bool),
                             time=np.asarray(time, dtype=float))
        self.forest_ = RandomSurvivalForest(
            n_estimators=self.n_estimators,
            min_samples_leaf=self.min_samples_leaf,
            max_features=min(self.max_features, design.shape[1]),
            random_state=self.random_state,
            n_jobs=self.n_jobs,
        )
        if sample_weight is not None:
            self.forest_.fit(design, y, sample_weight=np.asarray(sample_weight, dtype=float))
        else:
            self.forest_.fit(design, y)
        return self

    def predict_survival(self, X, time_grid):
        time_grid = np.asarray(time_grid, dtype=float)
        support = self.forest_.unique_times_
        n = np.asarray(X).shape[0]
        curves = []
        for a in (0, 1):
            design = _design_matrix(X, np.full(n, a)).to_numpy()
            surv = self.forest_.predict_survival_function(design, return_array=True)
            curves.append(_align_to_grid(surv, support, time_grid))
        return curves[0], curves[1]


# =============================================================================
# Propensity adapter
# =============================================================================

class PropensityNuisance(BaseEstimator):
    """
    P(A=1 | X) from any scikit-learn classifier with predict_proba().

    Parameters
    ----------
    estimator : classifier, default=None
        If None, uses LogisticRegression.
    """

    def __init__(self, estimator=None):
        self.estimator = estimator

    def fit(self, X, A, sample_weight=None):
        X = np.asarray(X, dtype=float)
        A = np.asarray(A).ravel().astype(int)
        template = self.estimator if self.estimator is not None else LogisticRegression(max_iter=1000)
        self.estimator_ = clone(template)
        if sample_weight is not None:
            self.estimator_.fit(X, A, sample_weight=np.asarray(sample_weight, dtype=float))
        else:
            self.estimator_.fit(X, A)
        return self

    def predict_propensity(self, X):
        proba = self.estimator_.predict_proba(np.asarray(X, dtype=float))
        treated_col = list(self.estimator_.classes_).index(1)
        return proba[:, treated_col]


# =============================================================================
# Registry
# =============================================================================

SURVIVAL_MODELS = {
    'Cox': CoxNuisance,
    'Spline': SplineNuisance,
    'RSF': RSFNuisance,
}

PROPENSITY_MODELS = {
    'logit': lambda: PropensityNuisance(LogisticRegression(max_iter=1000)),
    'RF': lambda: PropensityNuisance(
        RandomForestClassifier(n_estimators=500, min_samples_leaf=20, random_state=0)
    ),
    'GBM': lambda: PropensityNuisance(
        GradientBoostingClassifier(n_estimators=200, max_depth=1, random_state=0)
    ),
}
PROPENSITY_MODELS['twang'] = PROPENSITY_MODELS['GBM']


def resolve_survival_model(model):
    """Return a survival adapter for a registry name or an adapter instance."""
    if isinstance(model, str):
        if model not in SURVIVAL_MODELS:
            raise InvalidConfig(
                f"unsupported survival model {model!r}; choose from {sorted(SURVIVAL_MODELS)}"
            )
        return SURVIVAL_MODELS[model]()
    if not (hasattr(model, 'fit') and hasattr(model, 'predict_survival')):
        raise InvalidConfig(f"{model!r} does not implement fit() and predict_survival()")
    return model


def resolve_propensity_model(model):
    """Return a propensity adapter for a registry name or an adapter instance."""
    if isinstance(model, str):
        if model not in PROPENSITY_MODELS:
            raise InvalidConfig(
                f"unsupported propensity model {model!r}; choose from {sorted(PROPENSITY_MODELS)}"
            )
        return PROPENSITY_MODELS[model]()
    if not (hasattr(model, 'fit') and hasattr(model, 'predict_propensity')):
        raise InvalidConfig(f"{model!r} does not implement fit() and predict_propensity()")
    return model
