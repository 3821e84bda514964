"""
Cox AIPW estimator.

Doubly robust estimation of the marginal log hazard ratio between two groups
under a Cox marginal structural model, for observational or randomized data
with possibly informative right censoring.

Pipeline (one call to ``CoxAIPW.fit``):
    1. build_follow_up()          horizon, tie breaking, global time grid
    2. assign_folds()             contiguous cross-fitting folds
    3. fit_predict_nuisances()    out-of-fold S_T, S_C and propensity predictions
    4. clip_predictions()         floors on survival and propensity
    5. build_estimating_matrices() counting-process quantities
    6. EstimatingEquation.solve() Newton-Raphson for beta
    7. inference                  sandwich SE, Lambda0, survival curves, beta(t)
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.stats import norm

from .config import CoxAIPWConfig
from .counting import build_estimating_matrices
from .crossfit import fit_predict_nuisances
from .exceptions import InvalidConfig
from .inference import (
    BetaTDiagnostic,
    baseline_cumulative_hazard,
    influence_terms,
    sandwich_variance,
    survival_curves,
    time_varying_diagnostic,
)
from .solver import EstimatingEquation, risk_set_groups
from .time_grid import assign_folds, build_follow_up
from .trimming import clip_predictions

log = logging.getLogger(__name__)


@dataclass
class CoxAIPWResult:
    """
    Output of one estimation run.

    beta : float
        Estimated marginal log hazard ratio (group 1 vs group 0).
    model_se : float
        Model-based asymptotic standard error of beta.
    baseline_cum_hazard : pd.Series
        Lambda0 evaluated at every grid time (index), as the non-negative,
        non-decreasing envelope of the running sum of increments.
    baseline_cum_hazard_running_sum : pd.Series
        The running sum itself, which can decrease where augmented
        increments are negative.
    survival_group0, survival_group1 : pd.Series
        Counterfactual survival curves of the two groups on the grid.
    beta_t_diagnostic : BetaTDiagnostic
        (x, y) points of the time-varying log hazard ratio.
    """

    beta: float
    model_se: float
    baseline_cum_hazard: pd.Series
    baseline_cum_hazard_running_sum: pd.Series
    survival_group0: pd.Series
    survival_group1: pd.Series
    beta_t_diagnostic: BetaTDiagnostic
    time_grid: np.ndarray
    tau: float
    augmentation: str
    n_iterations: int

    @property
    def hazard_ratio(self) -> float:
        return float(np.exp(self.beta))

    def confidence_interval(self, level=0.95):
        """Wald interval beta +/- z * model_se."""
        z = norm.ppf(0.5 + level / 2.0)
        return self.beta - z * self.model_se, self.beta + z * self.model_se

    def summary(self, level=0.95) -> pd.DataFrame:
        lo, hi = self.confidence_interval(level)
        return pd.DataFrame([{
            'augmentation': self.augmentation,
            'beta': self.beta,
            'model_se': self.model_se,
            'hazard_ratio': self.hazard_ratio,
            'ci_lower': lo,
            'ci_upper': hi,
            'z': self.beta / self.model_se,
            'p': 2 * norm.sf(abs(self.beta / self.model_se)),
        }])


def _split_columns(data, duration_col, event_col, group_col):
    """
    Pull (time, event, group, covariates) out of a DataFrame.

    Without explicit names the first three columns are time, event and group;
    every other column is a covariate.
    """
    df = pd.DataFrame(data)
    if df.shape[1] < 4:
        raise ValueError("data needs time, event and group columns plus at least one covariate")
    names = list(df.columns)
    duration_col = names[0] if duration_col is None else duration_col
    event_col = names[1] if event_col is None else event_col
    group_col = names[2] if group_col is None else group_col
    for col in (duration_col, event_col, group_col):
        if col not in df.columns:
            raise ValueError(f"column {col!r} not found in data")
    covariate_cols = [c for c in names if c not in (duration_col, event_col, group_col)]

    if df[[duration_col, event_col, group_col] + covariate_cols].isna().any().any():
        raise ValueError("data contains missing values")
    time = df[duration_col].to_numpy(dtype=float)
    event = df[event_col].to_numpy(dtype=float)
    group = df[group_col].to_numpy(dtype=float)
    if not np.all(np.isfinite(time)) or np.any(time < 0):
        raise ValueError("observed times must be finite and non-negative")
    if not np.isin(event, (0, 1)).all():
        raise ValueError("event indicator must be 0 or 1")
    if not np.isin(group, (0, 1)).all():
        raise ValueError("group indicator must be 0 or 1")
    covariates = df[covariate_cols].to_numpy(dtype=float)
    return time, event, group, covariates


def _check_weights(weights, n):
    if weights is None:
        return np.ones(n)
    weights = np.asarray(weights, dtype=float).ravel()
    if len(weights) != n:
        raise InvalidConfig(f"weights has length {len(weights)}, expected {n}")
    if not np.all(np.isfinite(weights)) or np.any(weights < 0) or weights.sum() <= 0:
        raise InvalidConfig("weights must be finite, non-negative and not all zero")
    return weights


class CoxAIPW:
    """
    Doubly robust Cox marginal structural model for a binary group.

    Parameters
    ----------
    T_model : str or adapter, default='Cox'
        Working model for the event time given (A, Z): 'Cox', 'Spline', 'RSF'.
    C_model : str or adapter, default='Cox'
        Working model for the censoring time given (A, Z): 'Cox', 'Spline', 'RSF'.
    PS_model : str or adapter, default='logit'
        Working model for P(A=1 | Z): 'logit', 'RF', 'GBM' (alias 'twang').
    tau : float, default=None
        Study horizon. Later times are recensored at tau. Defaults to the
        largest observed time.
    k : int, default=5
        Number of cross-fitting folds.
    beta0 : float, default=0
        Starting value of Newton-Raphson.
    min_S : float, default=0.05
        Floor for predicted survival probabilities of T and C.
    min_PS : float, default=0.1
        Propensity scores are clipped to [min_PS, 1 - min_PS].
    augmentation : {'AIPTCW', 'AIPTW', 'AIPCW'}, default='AIPTCW'
        'AIPTCW' for observational data with informative censoring, 'AIPTW'
        for observational data with random censoring, 'AIPCW' for randomized
        group assignment with informative censoring.
    cross_fit : bool, default=True
        Fit nuisances out-of-fold. Without cross-fitting the nuisance
        estimators must converge fast enough on their own; this is not checked.
    n_jobs : int, default=1
        Parallel jobs for the fold loop.

    Attributes
    ----------
    result_ : CoxAIPWResult
    """

    def __init__(self, T_model='Cox', C_model='Cox', PS_model='logit', tau=None,
                 k=5, beta0=0.0, min_S=0.05, min_PS=0.1, augmentation='AIPTCW',
                 cross_fit=True, n_jobs=1):
        self.config = CoxAIPWConfig(
            T_model=T_model, C_model=C_model, PS_model=PS_model, tau=tau, k=k,
            beta0=beta0, min_S=min_S, min_PS=min_PS, augmentation=augmentation,
            cross_fit=cross_fit, n_jobs=n_jobs,
        )

    def fit(self, data, weights=None, duration_col=None, event_col=None, group_col=None):
        """
        Estimate the log hazard ratio.

        Parameters
        ----------
        data : DataFrame
            Observed time, event indicator (1=event, 0=censored), binary group
            and baseline covariates.
        weights : array (n,), optional
            Observation weights (equal weights by default). Only their
            relative sizes matter.
        duration_col, event_col, group_col : str, optional
            Column names. By default the first three columns, in that order.
        """
        cfg = self.config
        time, event, group, covariates = _split_columns(data, duration_col, event_col, group_col)
        n = len(time)
        weights = _check_weights(weights, n)

        follow = build_follow_up(time, event, tau=cfg.tau)
        folds = assign_folds(n, cfg.k)
        log.debug("n=%d, grid size=%d, tau=%g, augmentation=%s, cross_fit=%s",
                  n, follow.n_res, follow.tau, cfg.augmentation.value, cfg.cross_fit)

        predictions = fit_predict_nuisances(
            covariates, group, follow, weights, folds,
            T_model=cfg.T_model,
            C_model=cfg.C_model if cfg.augmentation.models_censoring else None,
            PS_model=cfg.PS_model if cfg.augmentation.uses_propensity else None,
            cross_fit=cfg.cross_fit,
            n_jobs=cfg.n_jobs,
        )
        predictions = clip_predictions(predictions, cfg.augmentation,
                                       min_S=cfg.min_S, min_PS=cfg.min_PS)
        matrices = build_estimating_matrices(follow, group, predictions, weights,
                                             cfg.augmentation)

        groups, n_groups = risk_set_groups(folds, cfg.cross_fit)
        equation = EstimatingEquation(matrices, groups, n_groups)
        root = equation.solve(beta0=cfg.beta0)
        beta = root.beta

        terms = influence_terms(equation, beta)
        model_se = sandwich_variance(equation, beta, terms)
        Lambda0 = baseline_cumulative_hazard(terms.dLambda0)
        surv0, surv1 = survival_curves(Lambda0, beta)
        index = pd.Index(follow.grid, name='time')

        self.result_ = CoxAIPWResult(
            beta=beta,
            model_se=model_se,
            baseline_cum_hazard=pd.Series(Lambda0, index=index, name='Lambda0'),
            baseline_cum_hazard_running_sum=pd.Series(
                baseline_cumulative_hazard(terms.dLambda0, envelope=False),
                index=index, name='Lambda0',
            ),
            survival_group0=pd.Series(surv0, index=index, name='survival0'),
            survival_group1=pd.Series(surv1, index=index, name='survival1'),
            beta_t_diagnostic=time_varying_diagnostic(equation, beta, follow.grid, terms),
            time_grid=follow.grid,
            tau=follow.tau,
            augmentation=cfg.augmentation.value,
            n_iterations=root.iterations,
        )
        log.info("Cox AIPW (%s): beta=%.4f, se=%.4f", cfg.augmentation.value, beta, model_se)
        return self

    @property
    def beta_(self):
        return self.result_.beta

    @property
    def model_se_(self):
        return self.result_.model_se


def cox_aipw(data, weights=None, duration_col=None, event_col=None, group_col=None,
             **options) -> CoxAIPWResult:
    """
    Single-call estimation: ``CoxAIPW(**options).fit(data, ...).result_``.
    """
    return CoxAIPW(**options).fit(
        data, weights=weights, duration_col=duration_col,
        event_col=event_col, group_col=group_col,
    ).result_
