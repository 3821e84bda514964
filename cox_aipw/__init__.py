"""
cox_aipw: Doubly Robust Cox Marginal Structural Model

Estimates the marginal log hazard ratio between two groups from right-censored
data with an augmented inverse-probability-weighted estimating equation and
cross-fitted nuisance models (event time, censoring time, propensity score).

Estimator:
    CoxAIPW: estimator class, fit(data) -> self with result_
    cox_aipw: single-call entry point returning CoxAIPWResult

Nuisance adapters:
    CoxNuisance, SplineNuisance, RSFNuisance: survival working models
    PropensityNuisance: propensity score from any scikit-learn classifier
"""

from .bootstrap import BootstrapResult, bayesian_bootstrap
from .config import Augmentation, CoxAIPWConfig
from .data_generation import (
    SimulationConfig,
    marginal_log_hazard_ratio,
    simulate_cox_msm,
)
from .exceptions import CoxAIPWError, DegenerateFold, InvalidConfig, NonConvergence
from .models import CoxAIPW, CoxAIPWResult, cox_aipw
from .nuisance import CoxNuisance, PropensityNuisance, RSFNuisance, SplineNuisance

__all__ = [
    # Estimator
    'CoxAIPW',
    'CoxAIPWResult',
    'cox_aipw',
    'CoxAIPWConfig',
    'Augmentation',
    # Nuisance adapters
    'CoxNuisance',
    'SplineNuisance',
    'RSFNuisance',
    'PropensityNuisance',
    # Bootstrap
    'bayesian_bootstrap',
    'BootstrapResult',
    # Data generation
    'SimulationConfig',
    'simulate_cox_msm',
    'marginal_log_hazard_ratio',
    # Errors
    'CoxAIPWError',
    'InvalidConfig',
    'DegenerateFold',
    'NonConvergence',
]
