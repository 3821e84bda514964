"""Deterministic nuisance adapters for exercising the estimation core."""

import numpy as np
from sklearn.base import BaseEstimator


class ExponentialSurvival(BaseEstimator):
    """S_a(t) = exp(-rate_a * t) for every row; ignores the training data."""

    def __init__(self, rate0=0.3, rate1=0.2):
        self.rate0 = rate0
        self.rate1 = rate1

    def fit(self, X, A, time, event, sample_weight=None):
        self.n_train_ = len(time)
        return self

    def predict_survival(self, X, time_grid):
        n = np.asarray(X).shape[0]
        grid = np.asarray(time_grid, dtype=float)[None, :]
        ones = np.ones((n, 1))
        return ones * np.exp(-self.rate0 * grid), ones * np.exp(-self.rate1 * grid)


class ConstantPropensity(BaseEstimator):
    def __init__(self, p=0.5):
        self.p = p

    def fit(self, X, A, sample_weight=None):
        return self

    def predict_propensity(self, X):
        return np.full(np.asarray(X).shape[0], self.p)


class CovariateEchoSurvival(BaseEstimator):
    """
    Survival equal to the first covariate divided by ``scale`` at every grid
    time, for both groups. Identifies which row a prediction belongs to.
    """

    def __init__(self, scale=100.0):
        self.scale = scale

    def fit(self, X, A, time, event, sample_weight=None):
        return self

    def predict_survival(self, X, time_grid):
        X = np.asarray(X, dtype=float)
        curve = np.repeat(X[:, [0]] / self.scale, len(time_grid), axis=1)
        return curve, curve.copy()


class TrainingMeanPropensity(BaseEstimator):
    """Predicts the mean first covariate of the training rows for every row."""

    def fit(self, X, A, sample_weight=None):
        self.mean_ = float(np.asarray(X, dtype=float)[:, 0].mean())
        return self

    def predict_propensity(self, X):
        return np.full(np.asarray(X).shape[0], self.mean_)


class WeightMeanPropensity(BaseEstimator):
    """Predicts the mean training ``sample_weight`` for every row."""

    def fit(self, X, A, sample_weight=None):
        self.mean_ = float(np.mean(sample_weight))
        return self

    def predict_propensity(self, X):
        return np.full(np.asarray(X).shape[0], self.mean_)
